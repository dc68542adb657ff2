"""Pydantic API response models used in OpenAPI contracts."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

from aegisx.auth.models import ApiKeyMetadata, UserProfile


class ApiErrorResponse(BaseModel):
    """Stable error envelope for API responses."""

    error_code: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error message")
    details: dict[str, Any] | None = Field(
        default=None, description="Structured error details, e.g. policy violations"
    )


class HealthResponse(BaseModel):
    """Health check response payload."""

    status: Literal["ok"]
    storage: Literal["mongodb", "file"]


class AuthSessionResponse(BaseModel):
    """Authentication session response payload."""

    access_token: str
    refresh_token: str
    token_type: str
    expires_in: int
    user: UserProfile | None = None


class AuthMeResponse(BaseModel):
    """Current user endpoint response payload."""

    user: UserProfile
    auth_method: Literal["bearer", "api_key"]


class LogoutResponse(BaseModel):
    """Logout response payload."""

    status: Literal["ok"]


class ChangePasswordResponse(BaseModel):
    """Password change response payload."""

    status: Literal["ok"]
    revoked_sessions: int


class PasswordResetRequestedResponse(BaseModel):
    """Forgot-password response; identical whether or not the email exists."""

    status: Literal["accepted"]


class ApiKeyListResponse(BaseModel):
    """Api key listing payload."""

    items: list[ApiKeyMetadata]
    count: int
