from passlib.context import CryptContext

from chirp.config import settings


class CredentialHasher:
    """Salted one-way password hashing over bcrypt.

    pbkdf2_sha256 stays registered as a deprecated scheme so digests written by
    older deployments still verify and get upgraded on the next login.
    """

    def __init__(self, rounds: int | None = None):
        self.rounds = rounds if rounds is not None else settings.BCRYPT_ROUNDS
        self._context = CryptContext(
            schemes=["bcrypt", "pbkdf2_sha256"],
            deprecated="auto",
            bcrypt__rounds=self.rounds,
        )

    def hash(self, plaintext: str) -> str:
        return self._context.hash(plaintext)

    def verify(self, plaintext: str, digest: str | None) -> bool:
        if not digest:
            return False
        try:
            return self._context.verify(plaintext, digest)
        except (ValueError, TypeError):
            # unknown or malformed digest
            return False

    def needs_rehash(self, digest: str) -> bool:
        try:
            return self._context.needs_update(digest)
        except ValueError:
            return True

    def dummy_verify(self) -> None:
        self._context.dummy_verify()
