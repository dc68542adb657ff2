"""HTTP middleware that resolves the caller identity on protected API routes."""

from __future__ import annotations

from typing import Callable

from fastapi import Request
from starlette.concurrency import run_in_threadpool

from aegisx.api.http_setup import auth_error_response
from aegisx.auth.errors import AuthError, UnauthenticatedError
from aegisx.auth.models import RequestContext
from aegisx.auth.service import AuthService

PUBLIC_PATHS = frozenset(
    {
        "/api/health",
        "/api/auth/login",
        "/api/auth/refresh",
        "/api/auth/logout",
        "/api/auth/register",
        "/api/auth/forgot-password",
        "/api/auth/reset-password",
    }
)

SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


def extract_bearer_token(authorization: str | None) -> str:
    """Extract bearer token from authorization header value."""
    parts = (authorization or "").strip().split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return ""
    return parts[1].strip()


def request_context(request: Request) -> RequestContext:
    """Origin details of an incoming request."""
    return RequestContext(
        ip=(request.client.host if request.client else "") or "",
        user_agent=request.headers.get("user-agent", ""),
    )


def required_scope(method: str, path: str) -> str:
    """Scope an api key needs for a route.

    ``GET /api/auth/api-keys`` needs ``read:api-keys``; any unsafe method on
    ``/api/orders/1`` needs ``write:orders``.
    """
    segments = [segment for segment in path.split("/") if segment]
    if segments and segments[0] == "api":
        segments = segments[1:]
    if len(segments) > 1 and segments[0] == "auth":
        segments = segments[1:]
    resource = segments[0] if segments else "root"
    action = "read" if method.upper() in SAFE_METHODS else "write"
    return f"{action}:{resource}"


def create_auth_middleware(service: AuthService) -> Callable:
    """Create middleware that accepts a bearer access token or an X-API-Key header."""

    async def auth_middleware(request: Request, call_next: Callable):
        """Validate auth for protected API paths and attach identity to request state."""
        path = request.url.path
        if not path.startswith("/api/") or path in PUBLIC_PATHS:
            return await call_next(request)

        token = extract_bearer_token(request.headers.get("authorization"))
        api_key = request.headers.get("x-api-key", "").strip()
        try:
            if token:
                identity = await run_in_threadpool(service.verify_access_token, token)
            elif api_key:
                identity = await run_in_threadpool(
                    service.authenticate_api_key,
                    api_key,
                    required_scope(request.method, path),
                    request_context(request),
                )
            else:
                raise UnauthenticatedError("Missing bearer token or api key")
        except AuthError as exc:
            return auth_error_response(exc)

        request.state.identity = identity
        return await call_next(request)

    return auth_middleware
