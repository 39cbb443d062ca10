from typing import Annotated

from fastapi import APIRouter, Depends, status
from fastapi.security import HTTPAuthorizationCredentials

from chirp.dependencies import get_current_user, get_session_service, security
from chirp.errors import ValidationError
from chirp.schemas.auth import (
    AuthResponse,
    ForgotPasswordRequest,
    LoginRequest,
    LogoutRequest,
    MessageResponse,
    RefreshTokenRequest,
    RegisterRequest,
    ResetPasswordRequest,
    TokenResponse,
    UserData,
    UserOut,
    UserResponse,
)
from chirp.services.rate_limit import RateLimiter
from chirp.services.session_service import SessionService

router = APIRouter()

register_limit = RateLimiter(max_requests=5)
login_limit = RateLimiter(max_requests=10)
forgot_password_limit = RateLimiter(max_requests=3)
reset_password_limit = RateLimiter(max_requests=3)
refresh_limit = RateLimiter(max_requests=20)

Service = Annotated[SessionService, Depends(get_session_service)]
CurrentUser = Annotated[UserOut, Depends(get_current_user)]


@router.post(
    "/register",
    response_model=AuthResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a new account",
    dependencies=[Depends(register_limit)],
)
def register(body: RegisterRequest, service: Service):
    """Create the account and return it together with a fresh token pair."""
    return service.register(
        email=body.email,
        username=body.username,
        password=body.password,
        first_name=body.first_name,
        last_name=body.last_name,
    )


@router.post(
    "/login",
    response_model=AuthResponse,
    summary="Login and get access/refresh tokens",
    dependencies=[Depends(login_limit)],
)
def login(body: LoginRequest, service: Service):
    return service.login(email=body.email, password=body.password)


@router.post(
    "/forgot-password",
    response_model=MessageResponse,
    summary="Request a password reset code",
    dependencies=[Depends(forgot_password_limit)],
)
def forgot_password(body: ForgotPasswordRequest, service: Service):
    """Email a one-time code. The response does not reveal whether the account exists."""
    return service.forgot_password(email=body.email)


@router.post(
    "/reset-password",
    response_model=MessageResponse,
    summary="Reset password with a one-time code",
    dependencies=[Depends(reset_password_limit)],
)
def reset_password(body: ResetPasswordRequest, service: Service):
    """Set a new password and sign the account out everywhere."""
    return service.reset_password(email=body.email, code=body.otp, new_password=body.new_password)


@router.post(
    "/refresh-token",
    response_model=TokenResponse,
    summary="Rotate the refresh token and get a new pair",
    dependencies=[Depends(refresh_limit)],
)
def refresh_token(body: RefreshTokenRequest, service: Service):
    return service.refresh(body.refresh_token)


@router.post(
    "/logout",
    response_model=MessageResponse,
    summary="Logout by revoking refresh token",
)
def logout(body: LogoutRequest, service: Service):
    """Revoke refresh token. Always returns success message."""
    return service.logout(body.refresh_token)


@router.get(
    "/me",
    response_model=UserResponse,
    summary="Get current authenticated account",
)
def me(current_user: CurrentUser, service: Service):
    return service.get_current_user(current_user.id)


@router.post(
    "/logout-all",
    response_model=MessageResponse,
    summary="Revoke every refresh token of the current account",
)
def logout_all(current_user: CurrentUser, service: Service):
    return service.logout_all(current_user.id)


@router.get(
    "/check-token",
    response_model=UserResponse,
    summary="Validate an access token",
)
def check_token(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    service: Service,
):
    if not credentials:
        raise ValidationError("Token required")
    user = service.verify_token_and_get_user(credentials.credentials)
    return UserResponse(data=UserData(user=user))
