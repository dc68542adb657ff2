"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

_TRUTHY = {"1", "true", "yes", "on"}


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in _TRUTHY


@dataclass(frozen=True)
class PasswordPolicy:
    """Password rules applied on registration and password change."""

    min_length: int = 8
    max_length: int | None = 128
    require_uppercase: bool = True
    require_lowercase: bool = True
    require_numbers: bool = True
    require_special_chars: bool = False


@dataclass(frozen=True)
class AuthConfig:
    """Token, hashing and api-key settings."""

    secret_key: str
    access_token_ttl_seconds: int = 900
    refresh_token_ttl_seconds: int = 604800
    issuer: str = "aegisx"
    refresh_secret_key: str = ""
    password_hash_rounds: int = 120_000
    api_key_bytes: int = 32
    api_key_prefix: str = "ak"
    default_roles: tuple[str, ...] = ("user",)
    admin_email: str = ""
    admin_password: str = ""
    password_policy: PasswordPolicy = field(default_factory=PasswordPolicy)
    password_history_count: int = 5
    password_reset_ttl_seconds: int = 3600
    password_reset_webhook_url: str = ""

    @property
    def signing_key_for_refresh(self) -> str:
        """Return the refresh secret, falling back to the access secret."""
        return self.refresh_secret_key or self.secret_key


@dataclass(frozen=True)
class StorageConfig:
    """Persistence backend settings."""

    runtime_dir: Path
    mongodb_uri: str = ""
    mongodb_db: str = "aegisx"
    timeout_ms: int = 3000


@dataclass(frozen=True)
class AuditConfig:
    """Audit event delivery settings."""

    webhook_url: str = ""
    timeout_seconds: float = 2.0
    max_workers: int = 2
    max_pending: int = 1000


@dataclass(frozen=True)
class LoggingConfig:
    """Structured logging configuration."""

    level: str


@dataclass(frozen=True)
class SecurityConfig:
    """API perimeter security settings."""

    cors_allowed_origins: list[str]
    request_max_bytes: int
    state_sqlite_path: str
    login_rate_limit_max_attempts: int
    login_rate_limit_window_seconds: int
    login_rate_limit_lock_seconds: int


@dataclass(frozen=True)
class AppConfig:
    """Top-level application configuration."""

    auth: AuthConfig
    storage: StorageConfig
    audit: AuditConfig
    logging: LoggingConfig
    security: SecurityConfig

    @staticmethod
    def from_env() -> "AppConfig":
        """Build app config from process environment."""
        secret_key = (
            os.getenv("AUTH_SECRET_KEY", "").strip() or "dev-insecure-secret-change-me"
        )
        max_length_raw = os.getenv("PASSWORD_MAX_LENGTH", "128").strip()
        policy = PasswordPolicy(
            min_length=int(os.getenv("PASSWORD_MIN_LENGTH", "8")),
            max_length=int(max_length_raw) if max_length_raw else None,
            require_uppercase=_env_bool("PASSWORD_REQUIRE_UPPERCASE", "1"),
            require_lowercase=_env_bool("PASSWORD_REQUIRE_LOWERCASE", "1"),
            require_numbers=_env_bool("PASSWORD_REQUIRE_NUMBERS", "1"),
            require_special_chars=_env_bool("PASSWORD_REQUIRE_SPECIAL_CHARS", "0"),
        )
        auth = AuthConfig(
            secret_key=secret_key,
            refresh_secret_key=os.getenv("AUTH_REFRESH_SECRET_KEY", "").strip(),
            access_token_ttl_seconds=int(
                os.getenv("AUTH_ACCESS_TOKEN_TTL_SECONDS", "900")
            ),
            refresh_token_ttl_seconds=int(
                os.getenv("AUTH_REFRESH_TOKEN_TTL_SECONDS", "604800")
            ),
            issuer=os.getenv("AUTH_ISSUER", "aegisx").strip() or "aegisx",
            password_hash_rounds=int(os.getenv("PASSWORD_HASH_ROUNDS", "120000")),
            api_key_bytes=int(os.getenv("API_KEY_BYTES", "32")),
            api_key_prefix=os.getenv("API_KEY_PREFIX", "ak").strip() or "ak",
            default_roles=tuple(
                role.strip()
                for role in os.getenv("AUTH_DEFAULT_ROLES", "user").split(",")
                if role.strip()
            ),
            admin_email=os.getenv("AUTH_ADMIN_EMAIL", "").strip().lower(),
            admin_password=os.getenv("AUTH_ADMIN_PASSWORD", "").strip(),
            password_policy=policy,
            password_history_count=int(os.getenv("PASSWORD_HISTORY_COUNT", "5")),
            password_reset_ttl_seconds=int(
                os.getenv("PASSWORD_RESET_TOKEN_TTL_SECONDS", "3600")
            ),
            password_reset_webhook_url=os.getenv("PASSWORD_RESET_WEBHOOK_URL", "").strip(),
        )
        storage = StorageConfig(
            runtime_dir=Path(os.getenv("RUNTIME_DIR", "runtime").strip() or "runtime"),
            mongodb_uri=os.getenv("MONGODB_URI", "").strip(),
            mongodb_db=os.getenv("MONGODB_DB", "aegisx").strip() or "aegisx",
            timeout_ms=int(os.getenv("MONGODB_TIMEOUT_MS", "3000")),
        )
        audit = AuditConfig(
            webhook_url=os.getenv("AUDIT_WEBHOOK_URL", "").strip(),
            timeout_seconds=float(os.getenv("AUDIT_TIMEOUT_SECONDS", "2")),
            max_workers=int(os.getenv("AUDIT_MAX_WORKERS", "2")),
            max_pending=int(os.getenv("AUDIT_MAX_PENDING", "1000")),
        )
        log_level = os.getenv("LOG_LEVEL", "INFO").strip() or "INFO"
        cors_allowed_origins = [
            origin.strip()
            for origin in os.getenv(
                "CORS_ALLOWED_ORIGINS",
                "http://localhost:3000,http://127.0.0.1:3000",
            ).split(",")
            if origin.strip()
        ]
        security = SecurityConfig(
            cors_allowed_origins=cors_allowed_origins,
            request_max_bytes=int(os.getenv("REQUEST_MAX_BYTES", str(1024 * 1024))),
            state_sqlite_path=(
                os.getenv("STATE_SQLITE_PATH", "runtime/app_state.db").strip()
                or "runtime/app_state.db"
            ),
            login_rate_limit_max_attempts=int(
                os.getenv("LOGIN_RATE_LIMIT_MAX_ATTEMPTS", "5")
            ),
            login_rate_limit_window_seconds=int(
                os.getenv("LOGIN_RATE_LIMIT_WINDOW_SECONDS", "300")
            ),
            login_rate_limit_lock_seconds=int(
                os.getenv("LOGIN_RATE_LIMIT_LOCK_SECONDS", "600")
            ),
        )
        return AppConfig(
            auth=auth,
            storage=storage,
            audit=audit,
            logging=LoggingConfig(level=log_level),
            security=security,
        )
