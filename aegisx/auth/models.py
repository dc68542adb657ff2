"""Pydantic models for authentication domain."""

from __future__ import annotations

import ipaddress
from typing import Literal

from pydantic import BaseModel, Field, field_validator

TokenType = Literal["access", "refresh"]


class AuthUser(BaseModel):
    """Persisted auth user model."""

    user_id: str
    email: str
    password_hash: str
    first_name: str = ""
    last_name: str = ""
    phone_number: str | None = None
    roles: list[str] = Field(default_factory=list)
    is_active: bool = True
    created_at: int = 0
    updated_at: int = 0
    last_login_at: int | None = None
    # previous password hashes, newest first
    password_history: list[str] = Field(default_factory=list)


class UserProfile(BaseModel):
    """User view returned to callers; never carries the password hash."""

    user_id: str
    email: str
    first_name: str = ""
    last_name: str = ""
    phone_number: str | None = None
    roles: list[str] = Field(default_factory=list)
    is_active: bool = True
    created_at: int = 0
    last_login_at: int | None = None

    @classmethod
    def from_user(cls, user: AuthUser) -> "UserProfile":
        hidden = {"password_hash", "password_history", "updated_at"}
        return cls.model_validate(user.model_dump(exclude=hidden))


class RefreshTokenRecord(BaseModel):
    """Refresh token persistence record."""

    jti: str
    user_id: str
    token_hash: str
    expires_at: int
    revoked: bool = False


class RevokedAccessToken(BaseModel):
    """Access token identifier rejected until its natural expiry."""

    jti: str
    user_id: str = ""
    expires_at: int


class PasswordResetRecord(BaseModel):
    """Single-use password reset grant; only the token hash is stored."""

    token_hash: str
    user_id: str
    expires_at: int
    created_at: int
    used: bool = False


class PasswordResetIssued(BaseModel):
    """Reset token handed to the delivery channel, never to the requester."""

    user_id: str
    email: str
    token: str
    expires_at: int


class ApiKeyRecord(BaseModel):
    """Persisted api key; the secret itself is only kept as a hash."""

    key_id: str
    user_id: str
    name: str
    key_hash: str
    prefix: str
    scopes: list[str] = Field(default_factory=list)
    ip_whitelist: list[str] | None = None
    expires_at: int | None = None
    revoked: bool = False
    created_at: int
    revoked_at: int | None = None


class ApiKeyMetadata(BaseModel):
    """Listing view of an api key."""

    key_id: str
    user_id: str
    name: str
    prefix: str
    scopes: list[str]
    ip_whitelist: list[str] | None = None
    expires_at: int | None = None
    revoked: bool
    created_at: int
    revoked_at: int | None = None

    @classmethod
    def from_record(cls, record: ApiKeyRecord) -> "ApiKeyMetadata":
        return cls.model_validate(record.model_dump(exclude={"key_hash"}))


class ApiKeyCreated(BaseModel):
    """Creation result; ``key`` is the only time the plaintext is exposed."""

    key_id: str
    key: str
    prefix: str
    name: str
    scopes: list[str]
    ip_whitelist: list[str] | None = None
    expires_at: int | None = None
    created_at: int


class TokenPayload(BaseModel):
    """Claims embedded in a signed token."""

    sub: str
    email: str
    roles: list[str] = Field(default_factory=list)
    type: TokenType
    iat: int
    exp: int
    jti: str
    iss: str = ""


class TokenPair(BaseModel):
    """Access and refresh token minted together."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int


class PasswordValidationResult(BaseModel):
    """Outcome of a password policy check."""

    is_valid: bool
    errors: list[str] = Field(default_factory=list)


class RequestContext(BaseModel):
    """Origin details of the request that triggered a flow."""

    ip: str = ""
    user_agent: str = ""


class IdentityContext(BaseModel):
    """Caller identity established by token or api-key verification."""

    user_id: str
    email: str = ""
    roles: list[str] = Field(default_factory=list)
    auth_method: Literal["bearer", "api_key"] = "bearer"
    key_id: str | None = None
    scopes: list[str] = Field(default_factory=list)


class RegisterRequest(BaseModel):
    """Registration request payload."""

    email: str = Field(min_length=3)
    password: str = Field(min_length=1)
    first_name: str = Field(min_length=1)
    last_name: str = Field(min_length=1)
    phone_number: str | None = None


class RegisterResult(BaseModel):
    """Registration response payload."""

    user: UserProfile
    message: str


class LoginRequest(BaseModel):
    """Login request payload."""

    email: str = Field(min_length=3)
    password: str = Field(min_length=1)


class LoginResult(BaseModel):
    """Login response payload with tokens."""

    user: UserProfile
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int


class RefreshRequest(BaseModel):
    """Refresh request payload."""

    refresh_token: str = Field(min_length=1)


class LogoutRequest(BaseModel):
    """Logout request payload."""

    refresh_token: str | None = None


class ChangePasswordRequest(BaseModel):
    """Password change request payload."""

    current_password: str = Field(min_length=1)
    new_password: str = Field(min_length=1)


class ForgotPasswordRequest(BaseModel):
    """Password reset request payload."""

    email: str = Field(min_length=3)


class ResetPasswordRequest(BaseModel):
    """Password reset completion payload."""

    token: str = Field(min_length=1)
    new_password: str = Field(min_length=1)


class CreateApiKeyRequest(BaseModel):
    """Api key creation request payload."""

    name: str = Field(min_length=1, max_length=100)
    scopes: list[str] = Field(min_length=1)
    ip_whitelist: list[str] | None = None
    expires_at: int | None = None

    @field_validator("ip_whitelist")
    @classmethod
    def _check_ip_whitelist(cls, value: list[str] | None) -> list[str] | None:
        for entry in value or []:
            ipaddress.ip_network(entry.strip(), strict=False)
        return value
