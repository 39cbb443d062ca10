"""
Signing and verification of access and refresh tokens.

Access and refresh tokens are HS256 JWTs signed with two independent secrets
and carrying the same issuer/audience tags. The codec is stateless: refresh
token bookkeeping lives in ``chirp.services.auth_tokens``.
"""
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from jose import ExpiredSignatureError, JWTError, jwt

from chirp.config import settings
from chirp.errors import AuthenticationError, BadRequestError

TOKEN_TYPE_ACCESS = "access"
TOKEN_TYPE_REFRESH = "refresh"


class TokenError(AuthenticationError):
    pass


class TokenExpiredError(TokenError):
    pass


class TokenInvalidError(TokenError):
    pass


@dataclass(frozen=True)
class AccessClaims:
    user_id: str
    email: str
    username: str
    expires_at: datetime


@dataclass(frozen=True)
class RefreshClaims:
    token_id: str
    user_id: str
    expires_at: datetime


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    token_id: str


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenCodec:
    def __init__(
        self,
        access_secret: str,
        refresh_secret: str,
        algorithm: str = "HS256",
        access_expires: timedelta = timedelta(minutes=15),
        refresh_expires: timedelta = timedelta(days=7),
        issuer: str = "chirp-api",
        audience: str = "chirp-users",
    ):
        self.access_secret = access_secret
        self.refresh_secret = refresh_secret
        self.algorithm = algorithm
        self.access_expires = access_expires
        self.refresh_expires = refresh_expires
        self.issuer = issuer
        self.audience = audience

    @classmethod
    def from_settings(cls) -> "TokenCodec":
        return cls(
            access_secret=settings.JWT_ACCESS_SECRET,
            refresh_secret=settings.JWT_REFRESH_SECRET,
            algorithm=settings.JWT_ALGORITHM,
            access_expires=timedelta(minutes=settings.JWT_ACCESS_EXPIRE_MINUTES),
            refresh_expires=timedelta(days=settings.JWT_REFRESH_EXPIRE_DAYS),
            issuer=settings.JWT_ISSUER,
            audience=settings.JWT_AUDIENCE,
        )

    def _encode(self, claims: dict[str, Any], secret: str, lifetime: timedelta) -> str:
        now = _utcnow()
        to_encode = {
            **claims,
            "iss": self.issuer,
            "aud": self.audience,
            "iat": now,
            "exp": now + lifetime,
        }
        return jwt.encode(to_encode, secret, algorithm=self.algorithm)

    def _decode(self, token: str, secret: str, token_type: str, label: str) -> dict[str, Any]:
        try:
            payload = jwt.decode(
                token,
                secret,
                algorithms=[self.algorithm],
                audience=self.audience,
                issuer=self.issuer,
            )
        except ExpiredSignatureError as exc:
            raise TokenExpiredError(f"{label.capitalize()} token expired") from exc
        except JWTError as exc:
            raise TokenInvalidError(f"Invalid {label} token") from exc

        if payload.get("type") != token_type or not payload.get("userId"):
            raise TokenInvalidError(f"Invalid {label} token")
        return payload

    def issue_access(self, account_id: str, email: str, username: str) -> str:
        claims = {
            "userId": account_id,
            "email": email,
            "username": username,
            "type": TOKEN_TYPE_ACCESS,
            "jti": uuid.uuid4().hex,
        }
        return self._encode(claims, self.access_secret, self.access_expires)

    def issue_refresh(self, account_id: str) -> tuple[str, str]:
        token_id = str(uuid.uuid4())
        claims = {"tokenId": token_id, "userId": account_id, "type": TOKEN_TYPE_REFRESH}
        return self._encode(claims, self.refresh_secret, self.refresh_expires), token_id

    def issue_pair(self, account_id: str, email: str, username: str) -> TokenPair:
        access_token = self.issue_access(account_id, email, username)
        refresh_token, token_id = self.issue_refresh(account_id)
        return TokenPair(access_token=access_token, refresh_token=refresh_token, token_id=token_id)

    def verify_access(self, token: str) -> AccessClaims:
        payload = self._decode(token, self.access_secret, TOKEN_TYPE_ACCESS, "access")
        return AccessClaims(
            user_id=payload["userId"],
            email=payload.get("email", ""),
            username=payload.get("username", ""),
            expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
        )

    def verify_refresh(self, token: str) -> RefreshClaims:
        payload = self._decode(token, self.refresh_secret, TOKEN_TYPE_REFRESH, "refresh")
        token_id = payload.get("tokenId")
        if not token_id:
            raise TokenInvalidError("Invalid refresh token")
        return RefreshClaims(
            token_id=token_id,
            user_id=payload["userId"],
            expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
        )

    def refresh_expires_at(self) -> datetime:
        return _utcnow() + self.refresh_expires

    @staticmethod
    def decode_unverified(token: str) -> dict[str, Any]:
        """Read claims without checking the signature. Never use for authorization."""
        try:
            return jwt.get_unverified_claims(token)
        except JWTError as exc:
            raise BadRequestError("Invalid token format") from exc

    def get_token_expiration(self, token: str) -> datetime | None:
        try:
            exp = self.decode_unverified(token).get("exp")
        except BadRequestError:
            return None
        if exp is None:
            return None
        return datetime.fromtimestamp(exp, tz=timezone.utc)

    def is_token_expired(self, token: str) -> bool:
        expiration = self.get_token_expiration(token)
        if expiration is None:
            return True
        return expiration <= _utcnow()
