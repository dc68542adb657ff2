"""Authentication API router."""

from __future__ import annotations

from fastapi import APIRouter, Header, Request

from aegisx.api.contracts import (
    ApiErrorResponse,
    ApiKeyListResponse,
    AuthMeResponse,
    AuthSessionResponse,
    ChangePasswordResponse,
    LogoutResponse,
    PasswordResetRequestedResponse,
)
from aegisx.auth.middleware import extract_bearer_token, request_context
from aegisx.auth.models import (
    ApiKeyCreated,
    ApiKeyMetadata,
    ChangePasswordRequest,
    CreateApiKeyRequest,
    ForgotPasswordRequest,
    IdentityContext,
    LoginRequest,
    LoginResult,
    LogoutRequest,
    RefreshRequest,
    RegisterRequest,
    RegisterResult,
    ResetPasswordRequest,
)
from aegisx.auth.service import AuthService

_UNAUTHORIZED = {401: {"model": ApiErrorResponse}}


def _identity(request: Request) -> IdentityContext | None:
    return getattr(request.state, "identity", None)


def create_auth_router(service: AuthService) -> APIRouter:
    """Build authentication router with session, profile and api key endpoints."""
    router = APIRouter(prefix="/api/auth", tags=["auth"])

    @router.post(
        "/register",
        response_model=RegisterResult,
        status_code=201,
        responses={409: {"model": ApiErrorResponse}, 422: {"model": ApiErrorResponse}},
    )
    def register(req: RegisterRequest, request: Request) -> RegisterResult:
        """Create a user account; tokens are obtained through login."""
        return service.register(req, request_context(request))

    @router.post(
        "/login",
        response_model=LoginResult,
        responses={**_UNAUTHORIZED, 429: {"model": ApiErrorResponse}},
    )
    def login(req: LoginRequest, request: Request) -> LoginResult:
        """Authenticate user and return token pair."""
        return service.login(req, request_context(request))

    @router.post(
        "/refresh",
        response_model=AuthSessionResponse,
        responses=_UNAUTHORIZED,
    )
    def refresh(req: RefreshRequest, request: Request) -> AuthSessionResponse:
        """Rotate refresh token and issue new session tokens."""
        pair = service.refresh(req.refresh_token, request_context(request))
        return AuthSessionResponse(**pair.model_dump())

    @router.post("/logout", response_model=LogoutResponse, responses=_UNAUTHORIZED)
    def logout(
        request: Request,
        req: LogoutRequest | None = None,
        authorization: str | None = Header(default=None),
    ) -> LogoutResponse:
        """Invalidate the supplied refresh token and the bearer access token."""
        service.logout(
            req.refresh_token if req else None,
            access_token=extract_bearer_token(authorization) or None,
            context=request_context(request),
        )
        return LogoutResponse(status="ok")

    @router.get("/me", response_model=AuthMeResponse, responses=_UNAUTHORIZED)
    def me(request: Request) -> AuthMeResponse:
        """Return the profile of the authenticated caller."""
        identity = _identity(request)
        profile = service.get_profile(identity, request_context(request))
        return AuthMeResponse(user=profile, auth_method=identity.auth_method)  # type: ignore[union-attr]

    @router.post(
        "/change-password",
        response_model=ChangePasswordResponse,
        responses={**_UNAUTHORIZED, 422: {"model": ApiErrorResponse}},
    )
    def change_password(req: ChangePasswordRequest, request: Request) -> ChangePasswordResponse:
        """Replace the caller's password and end all of their sessions."""
        revoked = service.change_password(_identity(request), req, request_context(request))
        return ChangePasswordResponse(status="ok", revoked_sessions=revoked)

    @router.post(
        "/forgot-password",
        response_model=PasswordResetRequestedResponse,
        status_code=202,
        responses={422: {"model": ApiErrorResponse}},
    )
    def forgot_password(
        req: ForgotPasswordRequest, request: Request
    ) -> PasswordResetRequestedResponse:
        """Send a reset token to the account owner, if the account exists."""
        service.forgot_password(req, request_context(request))
        return PasswordResetRequestedResponse(status="accepted")

    @router.post(
        "/reset-password",
        response_model=ChangePasswordResponse,
        responses={**_UNAUTHORIZED, 422: {"model": ApiErrorResponse}},
    )
    def reset_password(req: ResetPasswordRequest, request: Request) -> ChangePasswordResponse:
        """Set a new password with a reset token and end all sessions."""
        revoked = service.reset_password(req, request_context(request))
        return ChangePasswordResponse(status="ok", revoked_sessions=revoked)

    @router.post(
        "/api-keys",
        response_model=ApiKeyCreated,
        status_code=201,
        responses={**_UNAUTHORIZED, 403: {"model": ApiErrorResponse}},
    )
    def create_api_key(req: CreateApiKeyRequest, request: Request) -> ApiKeyCreated:
        """Create an api key; the plaintext key is only returned here."""
        return service.create_api_key(_identity(request), req, request_context(request))

    @router.get("/api-keys", response_model=ApiKeyListResponse, responses=_UNAUTHORIZED)
    def list_api_keys(request: Request) -> ApiKeyListResponse:
        """List the caller's api keys without their secrets."""
        items = service.list_api_keys(_identity(request))
        return ApiKeyListResponse(items=items, count=len(items))

    @router.delete(
        "/api-keys/{key_id}",
        response_model=ApiKeyMetadata,
        responses={**_UNAUTHORIZED, 404: {"model": ApiErrorResponse}},
    )
    def revoke_api_key(key_id: str, request: Request) -> ApiKeyMetadata:
        """Revoke one of the caller's api keys."""
        return service.revoke_api_key(_identity(request), key_id, request_context(request))

    return router
