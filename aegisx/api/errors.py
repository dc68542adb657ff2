"""Shared API error types and helpers."""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from aegisx.auth.errors import (
    AuthError,
    ConflictError,
    InfrastructureError,
    InvalidCredentialsError,
    InvalidTokenError,
    NotFoundError,
    PolicyViolationError,
    RateLimitedError,
    TokenExpiredError,
    UnauthenticatedError,
    UnauthorizedError,
)


class ApiErrorCode(StrEnum):
    """Machine-readable API error codes."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    AUTH_MISSING_TOKEN = "AUTH_MISSING_TOKEN"
    AUTH_INVALID_CREDENTIALS = "AUTH_INVALID_CREDENTIALS"
    AUTH_TOKEN_INVALID = "AUTH_TOKEN_INVALID"
    AUTH_TOKEN_EXPIRED = "AUTH_TOKEN_EXPIRED"
    AUTH_FORBIDDEN = "AUTH_FORBIDDEN"
    AUTH_RATE_LIMITED = "AUTH_RATE_LIMITED"
    PASSWORD_POLICY_VIOLATION = "PASSWORD_POLICY_VIOLATION"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    INFRASTRUCTURE_ERROR = "INFRASTRUCTURE_ERROR"
    REQUEST_TOO_LARGE = "REQUEST_TOO_LARGE"
    INTERNAL_SERVER_ERROR = "INTERNAL_SERVER_ERROR"


# Most specific kinds first; lookups walk the exception MRO.
ERROR_STATUS_CODES: dict[type[AuthError], int] = {
    InvalidCredentialsError: 401,
    TokenExpiredError: 401,
    InvalidTokenError: 401,
    UnauthorizedError: 403,
    PolicyViolationError: 422,
    NotFoundError: 404,
    ConflictError: 409,
    UnauthenticatedError: 401,
    RateLimitedError: 429,
    InfrastructureError: 503,
}


def status_for_error(exc: AuthError) -> int:
    """Resolve the HTTP status of a domain error kind."""
    for klass in type(exc).__mro__:
        status = ERROR_STATUS_CODES.get(klass)  # type: ignore[arg-type]
        if status is not None:
            return status
    return 500


def auth_error_payload(exc: AuthError) -> dict[str, Any]:
    """Render a domain error; the operator ``reason`` is never included."""
    payload: dict[str, Any] = {"error_code": exc.code, "message": exc.message}
    if isinstance(exc, PolicyViolationError):
        payload["details"] = {"violations": list(exc.violations)}
    elif isinstance(exc, RateLimitedError):
        payload["details"] = {"retry_after": exc.retry_after}
    return payload


def to_error_payload(detail: Any, status_code: int) -> dict[str, str]:
    """Normalize HTTP exception detail into stable error payload."""
    if isinstance(detail, dict):
        error_code = str(detail.get("error_code") or f"HTTP_{status_code}")
        message = str(detail.get("message") or detail.get("detail") or "HTTP error")
        return {"error_code": error_code, "message": message}
    return {
        "error_code": f"HTTP_{status_code}",
        "message": str(detail or "HTTP error"),
    }
