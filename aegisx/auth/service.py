"""Authentication flows: register, login, refresh, logout, profile, api keys."""

from __future__ import annotations

import logging
import secrets
import time
import uuid
from contextlib import contextmanager
from typing import Callable, Iterator, Protocol

from aegisx.auth.api_keys import ApiKeyService, ApiKeyStore
from aegisx.auth.audit import AuditPublisher, make_event
from aegisx.auth.errors import (
    AuthError,
    ConflictError,
    InvalidCredentialsError,
    InvalidTokenError,
    NotFoundError,
    PolicyViolationError,
    RateLimitedError,
    TokenExpiredError,
    UnauthenticatedError,
    UnauthorizedError,
)
from aegisx.auth.models import (
    ApiKeyCreated,
    ApiKeyMetadata,
    AuthUser,
    ChangePasswordRequest,
    CreateApiKeyRequest,
    ForgotPasswordRequest,
    IdentityContext,
    LoginRequest,
    LoginResult,
    PasswordResetIssued,
    PasswordResetRecord,
    RegisterRequest,
    RegisterResult,
    RequestContext,
    ResetPasswordRequest,
    TokenPair,
    UserProfile,
)
from aegisx.auth.passwords import PasswordService
from aegisx.auth.reset_delivery import ResetTokenSender, sender_from_config
from aegisx.auth.tokens import REASON_REFRESH_REUSED, TokenService, TokenStore, hash_token
from aegisx.core.config import AuthConfig

LOGGER = logging.getLogger(__name__)

COMPROMISED_PASSWORD_MESSAGE = "Password has appeared in a known data breach"
SAME_PASSWORD_MESSAGE = "New password must differ from the current password"
RECENT_PASSWORD_MESSAGE = "Password was used recently"


class UserStore(TokenStore, ApiKeyStore, Protocol):
    """User records plus token revocation state, api keys and reset grants."""

    def get_user_by_email(self, email: str) -> AuthUser | None: ...
    def get_user_by_id(self, user_id: str) -> AuthUser | None: ...
    def create_user(self, user: AuthUser) -> None: ...
    def upsert_user(self, user: AuthUser) -> None: ...
    def update_last_login(self, user_id: str, timestamp: int) -> None: ...
    def revoke_user_refresh_tokens(self, user_id: str) -> int: ...
    def save_password_reset(self, record: PasswordResetRecord) -> None: ...
    def get_password_reset(self, token_hash: str) -> PasswordResetRecord | None: ...
    def consume_password_reset(self, token_hash: str, now: int) -> bool: ...


class LoginThrottle(Protocol):
    """Failed-login accounting per (email, client ip)."""

    def check(self, email: str, client_ip: str) -> None: ...
    def record_failure(self, email: str, client_ip: str) -> bool: ...
    def reset(self, email: str, client_ip: str) -> None: ...


class AuthService:
    """Composes password, token and api-key services over the user store.

    The service keeps no state of its own. Every flow emits an audit event
    whatever its outcome; security failures leave with a generic message and
    the specific reason only travels in the audit event.
    """

    def __init__(
        self,
        repo: UserStore,
        config: AuthConfig,
        *,
        audit: AuditPublisher,
        passwords: PasswordService | None = None,
        tokens: TokenService | None = None,
        api_keys: ApiKeyService | None = None,
        login_throttle: LoginThrottle | None = None,
        reset_sender: ResetTokenSender | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize service dependencies."""
        self._repo = repo
        self._config = config
        self._audit = audit
        self._clock = clock
        self._passwords = passwords or PasswordService(
            rounds=config.password_hash_rounds, policy=config.password_policy
        )
        self._tokens = tokens or TokenService(config, repo, clock=clock)
        self._api_keys = api_keys or ApiKeyService(config, repo, clock=clock)
        self._throttle = login_throttle
        self._reset_sender = reset_sender or sender_from_config(config)
        self._dummy_hash = ""

    def _now(self) -> int:
        return int(self._clock())

    def _emit(
        self,
        action: str,
        *,
        actor: str | None,
        context: RequestContext | None,
        target: str | None = None,
        reason: str | None = None,
        details: dict | None = None,
    ) -> None:
        self._audit.publish(
            make_event(
                action,
                actor=actor,
                context=context,
                target=target,
                reason=reason,
                details=details,
            )
        )

    @contextmanager
    def _audit_failure(
        self,
        action: str,
        *,
        actor: str | None,
        context: RequestContext | None,
        target: str | None = None,
    ) -> Iterator[None]:
        try:
            yield
        except AuthError as exc:
            self._emit(action, actor=actor, context=context, target=target, reason=exc.reason)
            raise

    def _subject_for_logging(self, token: str) -> str | None:
        payload = self._tokens.decode(token or "")
        sub = payload.get("sub") if payload else None
        return sub if isinstance(sub, str) else None

    def _compare_against_dummy(self, password: str) -> None:
        """Spend the same hashing time when the user does not exist."""
        if not self._dummy_hash:
            self._dummy_hash = self._passwords.hash(PasswordService.generate_random(16))
        self._passwords.compare(password, self._dummy_hash)

    def bootstrap_admin_user(self) -> None:
        """Ensure bootstrap admin user exists when configured."""
        email = self._config.admin_email
        if not email or not self._config.admin_password:
            return
        if self._repo.get_user_by_email(email) is not None:
            return
        now = self._now()
        self._repo.upsert_user(
            AuthUser(
                user_id=uuid.uuid4().hex,
                email=email,
                password_hash=self._passwords.hash(self._config.admin_password),
                first_name="Admin",
                roles=["admin"],
                created_at=now,
                updated_at=now,
            )
        )
        LOGGER.info("admin_user_bootstrapped")

    def _check_password(self, password: str) -> None:
        result = self._passwords.validate(password)
        violations = list(result.errors)
        if self._passwords.is_compromised(password):
            violations.append(COMPROMISED_PASSWORD_MESSAGE)
        if violations:
            raise PolicyViolationError(violations)

    def _check_new_password(self, user: AuthUser, password: str) -> None:
        """Policy check plus reuse of the current or a recent password."""
        self._check_password(password)
        if self._passwords.compare(password, user.password_hash):
            raise PolicyViolationError([SAME_PASSWORD_MESSAGE])
        recent = user.password_history[: max(0, self._config.password_history_count)]
        if any(self._passwords.compare(password, old) for old in recent):
            raise PolicyViolationError([RECENT_PASSWORD_MESSAGE])

    def _store_password(self, user: AuthUser, password: str) -> None:
        keep = max(0, self._config.password_history_count)
        history = [user.password_hash, *user.password_history][:keep]
        self._repo.upsert_user(
            user.model_copy(
                update={
                    "password_hash": self._passwords.hash(password),
                    "password_history": history,
                    "updated_at": self._now(),
                }
            )
        )

    def register(
        self, req: RegisterRequest, context: RequestContext | None = None
    ) -> RegisterResult:
        """Validate, hash and persist a new user; no tokens are issued."""
        email = req.email.strip().lower()
        with self._audit_failure("user.register_failed", actor=None, context=context, target=email):
            self._check_password(req.password)
            if self._repo.get_user_by_email(email) is not None:
                raise ConflictError(
                    "User with this email already exists", reason="email already registered"
                )
            now = self._now()
            user = AuthUser(
                user_id=uuid.uuid4().hex,
                email=email,
                password_hash=self._passwords.hash(req.password),
                first_name=req.first_name.strip(),
                last_name=req.last_name.strip(),
                phone_number=(req.phone_number or "").strip() or None,
                roles=list(self._config.default_roles),
                is_active=True,
                created_at=now,
                updated_at=now,
            )
            self._repo.create_user(user)

        self._emit("user.registered", actor=user.user_id, context=context, target=user.user_id)
        LOGGER.info("user_registered", extra={"user_id": user.user_id})
        return RegisterResult(
            user=UserProfile.from_user(user), message="User registered successfully"
        )

    def login(self, req: LoginRequest, context: RequestContext | None = None) -> LoginResult:
        """Authenticate credentials and issue access/refresh token pair."""
        email = req.email.strip().lower()
        client_ip = (context.ip if context else "") or "unknown"
        if self._throttle is not None:
            try:
                self._throttle.check(email, client_ip)
            except RateLimitedError as exc:
                self._emit(
                    "login.rate_limited",
                    actor=None,
                    context=context,
                    target=email,
                    reason=exc.reason,
                    details={"retry_after": exc.retry_after},
                )
                LOGGER.warning("login_rate_limited", extra={"reason": exc.reason})
                raise
        user = self._repo.get_user_by_email(email)

        reason = ""
        if user is None:
            self._compare_against_dummy(req.password)
            reason = "user_not_found"
        elif not self._passwords.compare(req.password, user.password_hash):
            reason = "invalid_password"
        elif not user.is_active:
            reason = "account_inactive"

        if user is None or reason:
            self._emit(
                "login.failed",
                actor=user.user_id if user else None,
                context=context,
                target=email,
                reason=reason,
            )
            LOGGER.info("login_failed", extra={"reason": reason})
            if self._throttle is not None and self._throttle.record_failure(email, client_ip):
                self._emit(
                    "login.locked",
                    actor=user.user_id if user else None,
                    context=context,
                    target=email,
                    reason=reason,
                )
                LOGGER.warning("login_locked", extra={"reason": reason})
            raise InvalidCredentialsError(reason=reason)

        with self._audit_failure("login.failed", actor=user.user_id, context=context, target=email):
            pair = self._tokens.issue_pair(user.user_id, user.email, user.roles)
            now = self._now()
            self._repo.update_last_login(user.user_id, now)
        if self._throttle is not None:
            self._throttle.reset(email, client_ip)

        self._emit("login.success", actor=user.user_id, context=context, target=user.user_id)
        LOGGER.info("login_succeeded", extra={"user_id": user.user_id})
        profile = UserProfile.from_user(user.model_copy(update={"last_login_at": now}))
        return LoginResult(
            user=profile,
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            token_type=pair.token_type,
            expires_in=pair.expires_in,
        )

    def refresh(self, refresh_token: str, context: RequestContext | None = None) -> TokenPair:
        """Validate refresh token and rotate token pair."""
        try:
            claims = self._tokens.verify(refresh_token, "refresh")
            user = self._repo.get_user_by_id(claims.sub)
            if user is None or not user.is_active:
                self._tokens.revoke_refresh(refresh_token)
                raise InvalidTokenError(reason="Unknown or inactive user")
            pair = self._tokens.refresh(refresh_token, email=user.email, roles=user.roles)
        except InvalidTokenError as exc:
            reused = exc.reason == REASON_REFRESH_REUSED
            self._emit(
                "token.refresh_reused" if reused else "token.refresh_failed",
                actor=self._subject_for_logging(refresh_token),
                context=context,
                reason=exc.reason,
            )
            if reused:
                LOGGER.warning("refresh_token_reused")
            raise

        self._emit("token.refreshed", actor=user.user_id, context=context, target=user.user_id)
        return pair

    def logout(
        self,
        refresh_token: str | None = None,
        *,
        access_token: str | None = None,
        context: RequestContext | None = None,
    ) -> None:
        """Revoke the presented refresh token and, if given, the access token.

        A second logout with the same refresh token raises ``InvalidTokenError``.
        An expired or invalid access token next to a valid refresh token is
        ignored; it can no longer authorize anything.
        """
        actor: str | None = None
        try:
            if not refresh_token and not access_token:
                raise InvalidTokenError(reason="No token presented")
            if refresh_token:
                actor = self._tokens.revoke_refresh(refresh_token).sub
            if access_token:
                try:
                    payload = self._tokens.revoke_access(access_token)
                    actor = actor or payload.sub
                except InvalidTokenError:
                    if not refresh_token:
                        raise
        except InvalidTokenError as exc:
            self._emit(
                "logout.failed",
                actor=actor or self._subject_for_logging(refresh_token or access_token or ""),
                context=context,
                reason=exc.reason,
            )
            raise

        self._emit("logout.success", actor=actor, context=context, target=actor)

    def get_profile(
        self, identity: IdentityContext | None, context: RequestContext | None = None
    ) -> UserProfile:
        """Return the profile of an already verified identity."""
        actor = identity.user_id if identity else None
        with self._audit_failure("profile.read_failed", actor=actor, context=context, target=actor):
            if identity is None:
                raise UnauthenticatedError()
            user = self._repo.get_user_by_id(identity.user_id)
            if user is None:
                raise NotFoundError("User not found", reason=f"user {identity.user_id} missing")
        self._emit("profile.read", actor=user.user_id, context=context, target=user.user_id)
        return UserProfile.from_user(user)

    def change_password(
        self,
        identity: IdentityContext | None,
        req: ChangePasswordRequest,
        context: RequestContext | None = None,
    ) -> int:
        """Replace the password and revoke every outstanding refresh token.

        Returns the number of refresh tokens revoked.
        """
        actor = identity.user_id if identity else None
        with self._audit_failure("password.change_failed", actor=actor, context=context, target=actor):
            if identity is None:
                raise UnauthenticatedError()
            user = self._repo.get_user_by_id(identity.user_id)
            if user is None:
                raise NotFoundError("User not found", reason=f"user {identity.user_id} missing")
            if not self._passwords.compare(req.current_password, user.password_hash):
                raise InvalidCredentialsError(
                    "Current password is incorrect", reason="invalid_current_password"
                )
            self._check_new_password(user, req.new_password)
            self._store_password(user, req.new_password)
            revoked = self._repo.revoke_user_refresh_tokens(user.user_id)

        self._emit(
            "password.changed",
            actor=user.user_id,
            context=context,
            target=user.user_id,
            details={"revoked_refresh_tokens": revoked},
        )
        return revoked

    def forgot_password(
        self, req: ForgotPasswordRequest, context: RequestContext | None = None
    ) -> None:
        """Issue a reset token to the owner of the email, if there is one.

        The caller learns nothing: unknown and inactive accounts return the
        same way as a delivered token, only the audit event tells them apart.
        Issuing a token invalidates the earlier ones of the same user.
        """
        email = req.email.strip().lower()
        user = self._repo.get_user_by_email(email)
        if user is None or not user.is_active:
            reason = "user_not_found" if user is None else "account_inactive"
            self._emit(
                "password.reset_requested",
                actor=user.user_id if user else None,
                context=context,
                target=email,
                reason=reason,
            )
            LOGGER.info("password_reset_skipped", extra={"reason": reason})
            return

        now = self._now()
        token = secrets.token_urlsafe(32)
        expires_at = now + self._config.password_reset_ttl_seconds
        self._repo.save_password_reset(
            PasswordResetRecord(
                token_hash=hash_token(token),
                user_id=user.user_id,
                expires_at=expires_at,
                created_at=now,
            )
        )
        delivered = True
        try:
            self._reset_sender.send(
                PasswordResetIssued(
                    user_id=user.user_id, email=user.email, token=token, expires_at=expires_at
                )
            )
        except Exception as exc:
            delivered = False
            LOGGER.warning(
                "password_reset_delivery_failed",
                extra={"user_id": user.user_id, "reason": type(exc).__name__},
            )
        self._emit(
            "password.reset_requested",
            actor=user.user_id,
            context=context,
            target=user.user_id,
            details={"delivered": delivered, "expires_at": expires_at},
        )

    def reset_password(
        self, req: ResetPasswordRequest, context: RequestContext | None = None
    ) -> int:
        """Set a new password with a reset token and end every session.

        The token is consumed by a compare-and-set, so concurrent use lets
        exactly one request through. Returns the number of refresh tokens
        revoked.
        """
        token_hash = hash_token(req.token)
        with self._audit_failure("password.reset_failed", actor=None, context=context):
            grant = self._repo.get_password_reset(token_hash)
            if grant is None or grant.used:
                raise InvalidTokenError(reason="reset token unknown or already used")
            now = self._now()
            if grant.expires_at <= now:
                raise TokenExpiredError(reason="reset token expired")
            user = self._repo.get_user_by_id(grant.user_id)
            if user is None or not user.is_active:
                raise InvalidTokenError(reason="reset token owner missing or inactive")
            self._check_new_password(user, req.new_password)
            if not self._repo.consume_password_reset(token_hash, now):
                raise InvalidTokenError(reason="reset token already used")
            self._store_password(user, req.new_password)
            revoked = self._repo.revoke_user_refresh_tokens(user.user_id)

        self._emit(
            "password.reset_completed",
            actor=user.user_id,
            context=context,
            target=user.user_id,
            details={"revoked_refresh_tokens": revoked},
        )
        LOGGER.info("password_reset_completed", extra={"user_id": user.user_id})
        return revoked

    def revoke_user_sessions(
        self,
        user_id: str,
        *,
        actor: str | None = None,
        context: RequestContext | None = None,
    ) -> int:
        """Revoke every outstanding refresh token of a user."""
        revoked = self._repo.revoke_user_refresh_tokens(user_id)
        self._emit(
            "session.revoked_all",
            actor=actor or user_id,
            context=context,
            target=user_id,
            details={"revoked_refresh_tokens": revoked},
        )
        LOGGER.info("user_sessions_revoked", extra={"user_id": user_id})
        return revoked

    def verify_access_token(self, token: str) -> IdentityContext:
        """Validate access token and return the caller identity."""
        payload = self._tokens.verify(token, "access")
        return IdentityContext(
            user_id=payload.sub,
            email=payload.email,
            roles=payload.roles,
            auth_method="bearer",
        )

    def authenticate_api_key(
        self,
        presented_key: str,
        required_scope: str,
        context: RequestContext | None = None,
    ) -> IdentityContext:
        """Authorize an api key for a scope and origin; denials are audited."""
        ctx = context or RequestContext()
        with self._audit_failure("api_key.denied", actor=None, context=ctx, target=required_scope):
            record = self._api_keys.authorize(presented_key, required_scope, ctx.ip)
            owner = self._repo.get_user_by_id(record.user_id)
            if owner is None or not owner.is_active:
                raise UnauthorizedError(reason="api key owner missing or inactive")
        return IdentityContext(
            user_id=owner.user_id,
            email=owner.email,
            roles=owner.roles,
            auth_method="api_key",
            key_id=record.key_id,
            scopes=record.scopes,
        )

    def create_api_key(
        self,
        identity: IdentityContext | None,
        req: CreateApiKeyRequest,
        context: RequestContext | None = None,
    ) -> ApiKeyCreated:
        """Create a key for the calling user; the plaintext is returned once."""
        actor = identity.user_id if identity else None
        with self._audit_failure("api_key.create_failed", actor=actor, context=context):
            if identity is None:
                raise UnauthenticatedError()
            if identity.auth_method == "api_key":
                raise UnauthorizedError(reason="api keys cannot mint api keys")
            created = self._api_keys.create(
                identity.user_id,
                req.name,
                req.scopes,
                ip_whitelist=req.ip_whitelist,
                expires_at=req.expires_at,
            )
        self._emit(
            "api_key.created",
            actor=identity.user_id,
            context=context,
            target=created.key_id,
            details={"name": created.name, "scopes": created.scopes},
        )
        LOGGER.info("api_key_created", extra={"user_id": identity.user_id, "key_id": created.key_id})
        return created

    def list_api_keys(self, identity: IdentityContext | None) -> list[ApiKeyMetadata]:
        if identity is None:
            raise UnauthenticatedError()
        return self._api_keys.list_keys(identity.user_id)

    def revoke_api_key(
        self,
        identity: IdentityContext | None,
        key_id: str,
        context: RequestContext | None = None,
    ) -> ApiKeyMetadata:
        """Revoke a key owned by the caller; foreign keys look absent."""
        actor = identity.user_id if identity else None
        with self._audit_failure("api_key.revoke_failed", actor=actor, context=context, target=key_id):
            if identity is None:
                raise UnauthenticatedError()
            existing = self._api_keys.get(key_id)
            if existing is None or existing.user_id != identity.user_id:
                raise NotFoundError("API key not found", reason=f"api key {key_id} not owned by caller")
            record = self._api_keys.revoke(key_id)
        self._emit(
            "api_key.revoked",
            actor=identity.user_id,
            context=context,
            target=key_id,
            details={"name": record.name},
        )
        return ApiKeyMetadata.from_record(record)

    def revoke_user_api_keys(
        self,
        user_id: str,
        *,
        actor: str | None = None,
        context: RequestContext | None = None,
    ) -> int:
        """Revoke every active key of a user, one audit event per key."""
        revoked = self._api_keys.revoke_all(user_id)
        for record in revoked:
            self._emit(
                "api_key.revoked",
                actor=actor or user_id,
                context=context,
                target=record.key_id,
                details={"name": record.name, "reason": "user_revocation"},
            )
        return len(revoked)
