import logging
import secrets
from datetime import timedelta

from sqlalchemy import or_
from sqlalchemy.orm import Session

from chirp.config import settings
from chirp.errors import AuthenticationError
from chirp.models import PasswordResetCode
from chirp.services.auth_tokens import db_datetime, utcnow

logger = logging.getLogger(__name__)

OTP_LENGTH = 6


class InvalidOrExpiredCodeError(AuthenticationError):
    def __init__(self):
        super().__init__("Invalid or expired OTP")


class OneTimeCodeManager:
    """Numeric single-use password reset codes, at most one live code per email."""

    def __init__(self, db: Session, expires_in_minutes: int | None = None):
        self.db = db
        self.expires_in_minutes = (
            expires_in_minutes if expires_in_minutes is not None else settings.OTP_EXPIRE_MINUTES
        )

    @staticmethod
    def generate() -> str:
        return str(secrets.randbelow(10**OTP_LENGTH)).zfill(OTP_LENGTH)

    def store(self, email: str, code: str, account_id: str) -> PasswordResetCode:
        self.db.query(PasswordResetCode).filter(PasswordResetCode.email == email).delete(
            synchronize_session=False
        )
        record = PasswordResetCode(
            email=email,
            code=code,
            user_id=account_id,
            expires_at=db_datetime(self.db, utcnow() + timedelta(minutes=self.expires_in_minutes)),
            is_used=False,
        )
        self.db.add(record)
        self.db.flush()
        return record

    def find_live(self, email: str, code: str):
        return (
            self.db.query(PasswordResetCode.id, PasswordResetCode.user_id)
            .filter(
                PasswordResetCode.email == email,
                PasswordResetCode.code == code,
                PasswordResetCode.is_used.is_(False),
                PasswordResetCode.expires_at > db_datetime(self.db, utcnow()),
            )
            .first()
        )

    def consume(self, code_id: int) -> bool:
        updated = (
            self.db.query(PasswordResetCode)
            .filter(
                PasswordResetCode.id == code_id,
                PasswordResetCode.is_used.is_(False),
            )
            .update({PasswordResetCode.is_used: True}, synchronize_session=False)
        )
        return updated == 1

    def verify(self, email: str, code: str) -> str:
        """Consume the matching live code and return the account id it is bound to."""
        candidate = self.find_live(email, code)
        if candidate is None:
            raise InvalidOrExpiredCodeError()

        # a concurrent verify of the same code loses here
        if not self.consume(candidate.id):
            logger.warning("Reset code id=%s was consumed concurrently", candidate.id)
            raise InvalidOrExpiredCodeError()
        return candidate.user_id

    def has_active_code(self, email: str) -> bool:
        return (
            self.db.query(PasswordResetCode.id)
            .filter(
                PasswordResetCode.email == email,
                PasswordResetCode.is_used.is_(False),
                PasswordResetCode.expires_at > db_datetime(self.db, utcnow()),
            )
            .first()
            is not None
        )

    def purge(self, email: str | None = None) -> int:
        query = self.db.query(PasswordResetCode).filter(
            or_(
                PasswordResetCode.is_used.is_(True),
                PasswordResetCode.expires_at <= db_datetime(self.db, utcnow()),
            )
        )
        if email is not None:
            query = query.filter(PasswordResetCode.email == email)
        return query.delete(synchronize_session=False)
