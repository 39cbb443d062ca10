import hashlib
import logging
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from chirp.models import RefreshToken

logger = logging.getLogger(__name__)


class DuplicateTokenIdError(RuntimeError):
    """A refresh token id is already stored. Not meant for clients."""

    def __init__(self, token_id: str):
        super().__init__(f"Refresh token id {token_id} already exists")
        self.token_id = token_id


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def db_datetime(db: Session, value: datetime) -> datetime:
    bind = db.get_bind()
    if bind and bind.dialect.name == "sqlite":
        return _as_utc(value).replace(tzinfo=None)
    return value


class RefreshTokenStore:
    """Server-side records of issued refresh tokens.

    Only the SHA-256 of the raw token is persisted. Revocation is a conditional
    single-row update, so of two concurrent revocations exactly one reports
    success.
    """

    def __init__(self, db: Session):
        self.db = db

    def create(self, token_id: str, account_id: str, raw_token: str, expires_at: datetime) -> RefreshToken:
        """Persist a new record. The caller owns the transaction."""
        if self.db.get(RefreshToken, token_id) is not None:
            logger.error("Refresh token id collision for user id=%s", account_id)
            raise DuplicateTokenIdError(token_id)

        record = RefreshToken(
            id=token_id,
            user_id=account_id,
            token_hash=hash_token(raw_token),
            expires_at=db_datetime(self.db, expires_at),
            is_revoked=False,
        )
        self.db.add(record)
        try:
            self.db.flush()
        except IntegrityError as exc:
            logger.error("Refresh token id collision for user id=%s", account_id)
            raise DuplicateTokenIdError(token_id) from exc
        return record

    def find_active(self, token_id: str, raw_token: str) -> RefreshToken | None:
        return (
            self.db.query(RefreshToken)
            .filter(
                RefreshToken.id == token_id,
                RefreshToken.token_hash == hash_token(raw_token),
                RefreshToken.is_revoked.is_(False),
                RefreshToken.expires_at > db_datetime(self.db, utcnow()),
            )
            .first()
        )

    def revoke(self, token_id: str, account_id: str | None = None) -> bool:
        query = self.db.query(RefreshToken).filter(
            RefreshToken.id == token_id,
            RefreshToken.is_revoked.is_(False),
        )
        if account_id is not None:
            query = query.filter(RefreshToken.user_id == account_id)
        updated = query.update({RefreshToken.is_revoked: True}, synchronize_session=False)
        return updated == 1

    def revoke_all_for_account(self, account_id: str) -> int:
        return (
            self.db.query(RefreshToken)
            .filter(
                RefreshToken.user_id == account_id,
                RefreshToken.is_revoked.is_(False),
            )
            .update({RefreshToken.is_revoked: True}, synchronize_session=False)
        )
