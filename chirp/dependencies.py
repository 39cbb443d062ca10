from functools import lru_cache
from typing import Annotated

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from chirp.errors import AuthenticationError
from chirp.models import get_db
from chirp.schemas.auth import UserOut
from chirp.services.email_service import EmailNotifier
from chirp.services.jwt_service import TokenCodec
from chirp.services.password_hasher import CredentialHasher
from chirp.services.session_service import SessionService

security = HTTPBearer(auto_error=False)


@lru_cache
def get_hasher() -> CredentialHasher:
    return CredentialHasher()


@lru_cache
def get_token_codec() -> TokenCodec:
    return TokenCodec.from_settings()


def get_notifier() -> EmailNotifier:
    return EmailNotifier()


def get_session_service(
    db: Annotated[Session, Depends(get_db)],
    hasher: Annotated[CredentialHasher, Depends(get_hasher)],
    codec: Annotated[TokenCodec, Depends(get_token_codec)],
    notifier: Annotated[EmailNotifier, Depends(get_notifier)],
) -> SessionService:
    return SessionService(db=db, hasher=hasher, codec=codec, notifier=notifier)


def get_current_user_optional(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    service: Annotated[SessionService, Depends(get_session_service)],
) -> UserOut | None:
    if not credentials:
        return None
    try:
        return service.verify_token_and_get_user(credentials.credentials)
    except AuthenticationError:
        return None


def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    service: Annotated[SessionService, Depends(get_session_service)],
) -> UserOut:
    if not credentials:
        raise AuthenticationError("Access token required")
    return service.verify_token_and_get_user(credentials.credentials)
