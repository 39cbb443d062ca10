import re
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

PASSWORD_RE = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[@$!%*?&])[A-Za-z\d@$!%*?&]{8,128}$")
USERNAME_RE = re.compile(r"^[a-zA-Z0-9_]{3,20}$")
OTP_RE = re.compile(r"^\d{6}$")

PASSWORD_RULES = (
    "Password must contain at least 8 characters, one uppercase, one lowercase, "
    "one number, and one special character"
)


def _check_password(value: str) -> str:
    if len(value) > 128:
        raise ValueError("Password must be at most 128 characters")
    if not PASSWORD_RE.match(value):
        raise ValueError(PASSWORD_RULES)
    return value


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class RegisterRequest(CamelModel):
    email: EmailStr
    username: str
    password: str
    first_name: str | None = Field(default=None, alias="firstName", min_length=1, max_length=50)
    last_name: str | None = Field(default=None, alias="lastName", min_length=1, max_length=50)

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {"email": "a@x.com", "username": "alice", "password": "Aa1!aaaa", "firstName": "Alice"}
            ]
        },
        populate_by_name=True,
    )

    @field_validator("username")
    @classmethod
    def validate_username(cls, v: str) -> str:
        if not USERNAME_RE.match(v):
            raise ValueError("Username must be 3-20 characters, alphanumeric and underscore only")
        return v

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        return _check_password(v)


class LoginRequest(CamelModel):
    email: EmailStr
    password: str = Field(min_length=1)


class ForgotPasswordRequest(CamelModel):
    email: EmailStr


class ResetPasswordRequest(CamelModel):
    email: EmailStr
    otp: str
    new_password: str = Field(alias="newPassword")

    @field_validator("otp")
    @classmethod
    def validate_otp(cls, v: str) -> str:
        if not OTP_RE.match(v):
            raise ValueError("OTP must be exactly 6 digits")
        return v

    @field_validator("new_password")
    @classmethod
    def validate_new_password(cls, v: str) -> str:
        return _check_password(v)


class RefreshTokenRequest(CamelModel):
    refresh_token: str = Field(alias="refreshToken", min_length=1)


class LogoutRequest(CamelModel):
    refresh_token: str = Field(alias="refreshToken", min_length=1)


class UserOut(CamelModel):
    id: str
    email: str
    username: str
    first_name: str | None = Field(default=None, alias="firstName")
    last_name: str | None = Field(default=None, alias="lastName")
    is_active: bool = Field(alias="isActive")
    is_email_verified: bool = Field(alias="isEmailVerified")
    last_login_at: datetime | None = Field(default=None, alias="lastLoginAt")
    created_at: datetime | None = Field(default=None, alias="createdAt")
    updated_at: datetime | None = Field(default=None, alias="updatedAt")

    @classmethod
    def from_user(cls, user) -> "UserOut":
        return cls(
            id=user.id,
            email=user.email,
            username=user.username,
            first_name=user.first_name,
            last_name=user.last_name,
            is_active=user.is_active,
            is_email_verified=user.is_email_verified,
            last_login_at=user.last_login_at,
            created_at=user.created_at,
            updated_at=user.updated_at,
        )


class TokenData(CamelModel):
    access_token: str = Field(alias="accessToken")
    refresh_token: str = Field(alias="refreshToken")


class AuthData(TokenData):
    user: UserOut


class UserData(CamelModel):
    user: UserOut


class AuthResponse(CamelModel):
    success: Literal[True] = True
    data: AuthData


class TokenResponse(CamelModel):
    success: Literal[True] = True
    data: TokenData


class UserResponse(CamelModel):
    success: Literal[True] = True
    data: UserData


class MessageResponse(CamelModel):
    success: Literal[True] = True
    message: str
