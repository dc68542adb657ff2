"""Public API response contracts."""

from aegisx.api.contracts.models import (
    ApiErrorResponse,
    ApiKeyListResponse,
    AuthMeResponse,
    AuthSessionResponse,
    ChangePasswordResponse,
    HealthResponse,
    LogoutResponse,
    PasswordResetRequestedResponse,
)

__all__ = [
    "ApiErrorResponse",
    "ApiKeyListResponse",
    "AuthMeResponse",
    "AuthSessionResponse",
    "ChangePasswordResponse",
    "HealthResponse",
    "LogoutResponse",
    "PasswordResetRequestedResponse",
]
