"""
Session flows: register, login, password reset, refresh, logout.

``SessionService`` owns the transaction of every flow: it commits once the
flow succeeded and rolls back otherwise. Errors the caller is meant to see
(conflicts, bad credentials, missing records) propagate unchanged; any other
failure is logged and re-raised as a flow-specific ``BadRequestError`` so
storage or library details never reach the client.
"""
import functools
import logging
from collections.abc import Callable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from chirp.errors import (
    AppError,
    AuthenticationError,
    BadRequestError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from chirp.models import User
from chirp.schemas.auth import (
    AuthData,
    AuthResponse,
    MessageResponse,
    TokenData,
    TokenResponse,
    UserData,
    UserOut,
    UserResponse,
)
from chirp.services.auth_tokens import RefreshTokenStore, utcnow
from chirp.services.email_service import EmailNotifier
from chirp.services.jwt_service import TokenCodec, TokenError, TokenPair
from chirp.services.otp_service import OneTimeCodeManager
from chirp.services.password_hasher import CredentialHasher

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS = "Invalid email or password"
ACCOUNT_DEACTIVATED = "Account is deactivated"
INVALID_REFRESH_TOKEN = "Invalid refresh token"
FORGOT_PASSWORD_MESSAGE = "If an account with this email exists, a password reset OTP has been sent"
PASSWORD_RESET_MESSAGE = "Password has been successfully reset"
LOGOUT_MESSAGE = "Successfully logged out"
LOGOUT_ALL_MESSAGE = "Logged out from all devices"


def _flow(
    failure_message: str,
    passthrough: tuple[type[AppError], ...] = (),
    wrap: type[AppError] = BadRequestError,
):
    def decorator(method: Callable) -> Callable:
        @functools.wraps(method)
        def wrapper(self: "SessionService", *args, **kwargs):
            try:
                return method(self, *args, **kwargs)
            except passthrough:
                self.db.rollback()
                raise
            except Exception as exc:
                self.db.rollback()
                logger.exception("%s: %s failed", failure_message, method.__name__)
                raise wrap(failure_message) from exc

        return wrapper

    return decorator


class SessionService:
    def __init__(
        self,
        db: Session,
        hasher: CredentialHasher,
        codec: TokenCodec,
        token_store: RefreshTokenStore | None = None,
        codes: OneTimeCodeManager | None = None,
        notifier: EmailNotifier | None = None,
    ):
        self.db = db
        self.hasher = hasher
        self.codec = codec
        self.token_store = token_store or RefreshTokenStore(db)
        self.codes = codes or OneTimeCodeManager(db)
        self.notifier = notifier or EmailNotifier()

    def _notify(self, send: Callable[..., None], *args) -> None:
        try:
            send(*args)
        except Exception:
            logger.exception("Notification %s failed", getattr(send, "__name__", send))

    def _grant_session(self, user: User) -> TokenPair:
        pair = self.codec.issue_pair(user.id, user.email, user.username)
        self.token_store.create(
            token_id=pair.token_id,
            account_id=user.id,
            raw_token=pair.refresh_token,
            expires_at=self.codec.refresh_expires_at(),
        )
        return pair

    def _auth_response(self, user: User, pair: TokenPair) -> AuthResponse:
        return AuthResponse(
            data=AuthData(
                user=UserOut.from_user(user),
                access_token=pair.access_token,
                refresh_token=pair.refresh_token,
            )
        )

    def _check_identity_free(self, email: str, username: str) -> None:
        if self.db.query(User.id).filter(User.email == email).first():
            raise ConflictError("Email already registered", details={"field": "email"})
        if self.db.query(User.id).filter(User.username == username).first():
            raise ConflictError("Username already taken", details={"field": "username"})

    @_flow("Registration failed", passthrough=(ConflictError, ValidationError))
    def register(
        self,
        email: str,
        username: str,
        password: str,
        first_name: str | None = None,
        last_name: str | None = None,
    ) -> AuthResponse:
        self._check_identity_free(email, username)

        user = User(
            email=email,
            username=username,
            first_name=first_name,
            last_name=last_name,
            hashed_password=self.hasher.hash(password),
        )
        self.db.add(user)
        try:
            self.db.flush()
        except IntegrityError:
            # a concurrent registration took the email or username after the check
            self.db.rollback()
            self._check_identity_free(email, username)
            raise

        pair = self._grant_session(user)
        self.db.commit()
        self.db.refresh(user)
        logger.info("Registered user id=%s", user.id)

        self._notify(self.notifier.send_welcome_email, user.email, user.username)
        return self._auth_response(user, pair)

    @_flow("Login failed", passthrough=(AuthenticationError,))
    def login(self, email: str, password: str) -> AuthResponse:
        user = self.db.query(User).filter(User.email == email).first()
        if user is None:
            self.hasher.dummy_verify()
            raise AuthenticationError(INVALID_CREDENTIALS)
        if not self.hasher.verify(password, user.hashed_password):
            raise AuthenticationError(INVALID_CREDENTIALS)
        if not user.is_active:
            raise AuthenticationError(ACCOUNT_DEACTIVATED)

        if self.hasher.needs_rehash(user.hashed_password):
            user.hashed_password = self.hasher.hash(password)
        user.last_login_at = utcnow()

        pair = self._grant_session(user)
        self.db.commit()
        self.db.refresh(user)
        logger.info("User id=%s logged in", user.id)
        return self._auth_response(user, pair)

    @_flow("Failed to process password reset request", passthrough=(AuthenticationError,))
    def forgot_password(self, email: str) -> MessageResponse:
        generic = MessageResponse(message=FORGOT_PASSWORD_MESSAGE)
        user = self.db.query(User).filter(User.email == email).first()
        if user is None:
            return generic
        if not user.is_active:
            raise AuthenticationError(ACCOUNT_DEACTIVATED)

        code = self.codes.generate()
        self.codes.store(user.email, code, user.id)
        self.db.commit()
        logger.info("Issued password reset code for user id=%s", user.id)

        self._notify(self.notifier.send_otp_email, user.email, code, user.username)
        return generic

    @_flow("Failed to reset password", passthrough=(AuthenticationError, NotFoundError))
    def reset_password(self, email: str, code: str, new_password: str) -> MessageResponse:
        account_id = self.codes.verify(email, code)
        user = self.db.get(User, account_id)
        if user is None:
            raise NotFoundError("User")

        user.hashed_password = self.hasher.hash(new_password)
        revoked = self.token_store.revoke_all_for_account(user.id)
        self.db.commit()
        logger.info("Password reset for user id=%s, revoked %s refresh tokens", user.id, revoked)

        self._notify(self.notifier.send_password_changed_email, user.email, user.username)
        return MessageResponse(message=PASSWORD_RESET_MESSAGE)

    @_flow("Failed to refresh token", passthrough=(AuthenticationError,))
    def refresh(self, refresh_token: str) -> TokenResponse:
        claims = self.codec.verify_refresh(refresh_token)
        record = self.token_store.find_active(claims.token_id, refresh_token)
        if record is None:
            raise AuthenticationError(INVALID_REFRESH_TOKEN)

        user = self.db.get(User, record.user_id)
        if user is None:
            raise AuthenticationError(INVALID_REFRESH_TOKEN)
        if not user.is_active:
            raise AuthenticationError(ACCOUNT_DEACTIVATED)

        # losing this update means another request already rotated the token
        if not self.token_store.revoke(record.id):
            raise AuthenticationError(INVALID_REFRESH_TOKEN)

        pair = self._grant_session(user)
        self.db.commit()
        return TokenResponse(
            data=TokenData(access_token=pair.access_token, refresh_token=pair.refresh_token)
        )

    def logout(self, refresh_token: str) -> MessageResponse:
        """Revoke the token if it is ours. Reports success either way."""
        try:
            claims = self.codec.verify_refresh(refresh_token)
            if self.token_store.revoke(claims.token_id, claims.user_id):
                logger.info("User id=%s logged out", claims.user_id)
            self.db.commit()
        except TokenError:
            logger.debug("Logout with unusable refresh token")
        except Exception:
            self.db.rollback()
            logger.exception("Logout failed to revoke refresh token")
        return MessageResponse(message=LOGOUT_MESSAGE)

    @_flow("Failed to log out from all devices", passthrough=(NotFoundError,))
    def logout_all(self, account_id: str) -> MessageResponse:
        if self.db.get(User, account_id) is None:
            raise NotFoundError("User")
        revoked = self.token_store.revoke_all_for_account(account_id)
        self.db.commit()
        logger.info("User id=%s logged out from all devices (%s tokens)", account_id, revoked)
        return MessageResponse(message=LOGOUT_ALL_MESSAGE)

    @_flow("Failed to get user information", passthrough=(NotFoundError, AuthenticationError))
    def get_current_user(self, account_id: str) -> UserResponse:
        user = self.db.get(User, account_id)
        if user is None:
            raise NotFoundError("User")
        if not user.is_active:
            raise AuthenticationError(ACCOUNT_DEACTIVATED)
        return UserResponse(data=UserData(user=UserOut.from_user(user)))

    @_flow("Invalid token", passthrough=(AuthenticationError,), wrap=AuthenticationError)
    def verify_token_and_get_user(self, access_token: str) -> UserOut:
        try:
            claims = self.codec.verify_access(access_token)
        except TokenError as exc:
            raise AuthenticationError("Invalid token") from exc

        user = self.db.get(User, claims.user_id)
        if user is None:
            raise AuthenticationError("User not found")
        if not user.is_active:
            raise AuthenticationError(ACCOUNT_DEACTIVATED)
        return UserOut.from_user(user)
