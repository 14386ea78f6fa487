"""
shared/exceptions.py
Error taxonomy shared by every service. Each error is an HTTPException
with a fixed status code and a machine-readable `error` code; the
handlers in main.py render them as {"message": ..., "error": ...}.
"""

from typing import Any, Optional

from fastapi import HTTPException, status


class AppError(HTTPException):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    error: str = "internal"
    default_message: str = "An internal server error occurred"

    def __init__(self, message: Optional[str] = None, headers: Optional[dict[str, Any]] = None):
        super().__init__(
            status_code=self.status_code,
            detail=message or self.default_message,
            headers=headers,
        )


class Unauthenticated(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    error = "unauthenticated"
    default_message = "Authentication required"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message, headers={"WWW-Authenticate": "Bearer"})


class Forbidden(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    error = "forbidden"
    default_message = "Forbidden"


class NotFound(AppError):
    """Also raised when the entity exists but is not owned by the caller."""
    status_code = status.HTTP_404_NOT_FOUND
    error = "not_found"
    default_message = "Not found"


class ValidationError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    error = "validation_error"
    default_message = "Missing or invalid fields."


class InvalidTransition(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    error = "invalid_transition"
    default_message = "Invalid status transition."


class AlreadySettled(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    error = "already_settled"
    default_message = "Appointment has already been paid."


class StoreConflict(AppError):
    error = "conflict"
    default_message = "The request conflicted with a concurrent update. Please retry."


class GatewayUnavailable(AppError):
    error = "gateway_unavailable"
    default_message = "Payment gateway is temporarily unavailable."


def error_code_for(exc: HTTPException) -> str:
    """Machine code for any HTTPException, including FastAPI/Starlette ones."""
    if isinstance(exc, AppError):
        return exc.error
    return {
        400: "validation_error",
        401: "unauthenticated",
        403: "forbidden",
        404: "not_found",
        405: "method_not_allowed",
        429: "rate_limited",
    }.get(exc.status_code, "internal" if exc.status_code >= 500 else "error")
