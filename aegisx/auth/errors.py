"""Domain error kinds raised by the authentication core.

Each error carries a stable ``code`` and a client-facing ``message``. The
``reason`` is operator detail: it goes to logs and audit events, never into
an HTTP response for the security-sensitive kinds.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for authentication core failures."""

    code = "AUTH_ERROR"
    default_message = "Authentication error"

    def __init__(self, message: str | None = None, *, reason: str = "") -> None:
        self.message = message or self.default_message
        self.reason = reason or self.message
        super().__init__(self.message)


class InvalidCredentialsError(AuthError):
    code = "AUTH_INVALID_CREDENTIALS"
    default_message = "Invalid email or password"


class InvalidTokenError(AuthError):
    code = "AUTH_TOKEN_INVALID"
    default_message = "Invalid or expired token"


class TokenExpiredError(InvalidTokenError):
    code = "AUTH_TOKEN_EXPIRED"
    default_message = "Token expired"


class UnauthorizedError(AuthError):
    """Scope or origin denial for an otherwise identified caller."""

    code = "AUTH_FORBIDDEN"
    default_message = "Access denied"


class UnauthenticatedError(AuthError):
    code = "AUTH_MISSING_TOKEN"
    default_message = "Authentication required"


class PolicyViolationError(AuthError):
    """Password rejected by the policy; lists every violated rule."""

    code = "PASSWORD_POLICY_VIOLATION"
    default_message = "Password does not meet policy requirements"

    def __init__(self, violations: list[str], *, reason: str = "") -> None:
        self.violations = list(violations)
        super().__init__(reason=reason or "; ".join(self.violations))


class NotFoundError(AuthError):
    code = "NOT_FOUND"
    default_message = "Resource not found"


class ConflictError(AuthError):
    code = "CONFLICT"
    default_message = "Resource already exists"


class InfrastructureError(AuthError):
    """Storage or delivery failure; never reported as an auth failure."""

    code = "INFRASTRUCTURE_ERROR"
    default_message = "Service temporarily unavailable"


class RateLimitedError(AuthError):
    """Login attempts for an (email, ip) pair are locked for a while."""

    code = "AUTH_RATE_LIMITED"
    default_message = "Too many login attempts"

    def __init__(self, retry_after: int, *, reason: str = "") -> None:
        self.retry_after = max(0, int(retry_after))
        super().__init__(
            f"Too many login attempts. Retry after {self.retry_after} seconds.",
            reason=reason or "login_locked",
        )
