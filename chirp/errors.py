"""
Application error taxonomy and the FastAPI handlers that render it.

Every error that reaches the HTTP boundary is rendered with the same envelope:

    {"success": false,
     "error": {"message", "code", "statusCode", "timestamp", "path", "details"?}}
"""
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from chirp.config import settings

logger = logging.getLogger(__name__)


class ErrorType(str, Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    AUTHENTICATION_ERROR = "AUTHENTICATION_ERROR"
    AUTHORIZATION_ERROR = "AUTHORIZATION_ERROR"
    NOT_FOUND_ERROR = "NOT_FOUND_ERROR"
    CONFLICT_ERROR = "CONFLICT_ERROR"
    BAD_REQUEST_ERROR = "BAD_REQUEST_ERROR"
    RATE_LIMIT_ERROR = "RATE_LIMIT_ERROR"
    INTERNAL_SERVER_ERROR = "INTERNAL_SERVER_ERROR"


HTTP_STATUS_CODES: dict[ErrorType, int] = {
    ErrorType.VALIDATION_ERROR: status.HTTP_400_BAD_REQUEST,
    ErrorType.AUTHENTICATION_ERROR: status.HTTP_401_UNAUTHORIZED,
    ErrorType.AUTHORIZATION_ERROR: status.HTTP_403_FORBIDDEN,
    ErrorType.NOT_FOUND_ERROR: status.HTTP_404_NOT_FOUND,
    ErrorType.CONFLICT_ERROR: status.HTTP_409_CONFLICT,
    ErrorType.BAD_REQUEST_ERROR: status.HTTP_400_BAD_REQUEST,
    ErrorType.RATE_LIMIT_ERROR: status.HTTP_429_TOO_MANY_REQUESTS,
    ErrorType.INTERNAL_SERVER_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


class AppError(Exception):
    """Base class for errors that are safe to show to the caller."""

    def __init__(
        self,
        message: str,
        error_type: ErrorType,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_type = error_type
        self.status_code = status_code or HTTP_STATUS_CODES[error_type]
        self.details = details


class ValidationError(AppError):
    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, ErrorType.VALIDATION_ERROR, details=details)


class AuthenticationError(AppError):
    def __init__(self, message: str = "Authentication failed", details: dict[str, Any] | None = None):
        super().__init__(message, ErrorType.AUTHENTICATION_ERROR, details=details)


class AuthorizationError(AppError):
    def __init__(self, message: str = "Access denied", details: dict[str, Any] | None = None):
        super().__init__(message, ErrorType.AUTHORIZATION_ERROR, details=details)


class NotFoundError(AppError):
    def __init__(self, resource: str, details: dict[str, Any] | None = None):
        super().__init__(f"{resource} not found", ErrorType.NOT_FOUND_ERROR, details=details)


class ConflictError(AppError):
    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, ErrorType.CONFLICT_ERROR, details=details)


class BadRequestError(AppError):
    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, ErrorType.BAD_REQUEST_ERROR, details=details)


class RateLimitError(AppError):
    def __init__(self, message: str = "Rate limit exceeded", details: dict[str, Any] | None = None):
        super().__init__(message, ErrorType.RATE_LIMIT_ERROR, details=details)


def error_payload(
    message: str,
    code: ErrorType,
    status_code: int,
    path: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    error: dict[str, Any] = {
        "message": message,
        "code": code.value,
        "statusCode": status_code,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "path": path,
    }
    if details:
        error["details"] = details
    return {"success": False, "error": error}


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    logger.warning(
        "%s %s -> %s %s: %s",
        request.method,
        request.url.path,
        exc.status_code,
        exc.error_type.value,
        exc.message,
    )
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == status.HTTP_401_UNAUTHORIZED else None
    return JSONResponse(
        status_code=exc.status_code,
        content=error_payload(exc.message, exc.error_type, exc.status_code, request.url.path, exc.details),
        headers=headers,
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    message = "Validation failed"
    details = None
    if errors:
        first = errors[0]
        # pydantic prefixes messages raised from validators
        message = str(first.get("msg", message)).removeprefix("Value error, ")
        location = [str(part) for part in first.get("loc", ()) if part != "body"]
        details = {"constraint": first.get("type")}
        if location:
            details["field"] = ".".join(location)
    logger.warning("Validation error on %s %s: %s", request.method, request.url.path, message)
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_payload(
            message,
            ErrorType.VALIDATION_ERROR,
            status.HTTP_400_BAD_REQUEST,
            request.url.path,
            details,
        ),
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    details = None
    if settings.is_development:
        details = {"type": exc.__class__.__name__, "message": str(exc)}
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_payload(
            "Internal server error",
            ErrorType.INTERNAL_SERVER_ERROR,
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            request.url.path,
            details,
        ),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
