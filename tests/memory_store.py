from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from aegisx.auth.errors import ConflictError
from aegisx.auth.models import (
    ApiKeyRecord,
    AuthUser,
    PasswordResetRecord,
    RefreshTokenRecord,
    RevokedAccessToken,
)
from aegisx.core.config import (
    AppConfig,
    AuditConfig,
    AuthConfig,
    LoggingConfig,
    PasswordPolicy,
    SecurityConfig,
    StorageConfig,
)


def auth_config(**overrides) -> AuthConfig:
    values = {
        "secret_key": "test-secret",
        "access_token_ttl_seconds": 300,
        "refresh_token_ttl_seconds": 1200,
        "issuer": "aegisx-test",
        "password_hash_rounds": 1000,
        "password_policy": PasswordPolicy(),
    }
    values.update(overrides)
    return AuthConfig(**values)


class FakeClock:
    def __init__(self, now: float = 1_700_000_000) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@dataclass
class MemoryStore:
    users: dict[str, AuthUser] = field(default_factory=dict)
    refresh_tokens: dict[str, RefreshTokenRecord] = field(default_factory=dict)
    revoked_access: dict[str, RevokedAccessToken] = field(default_factory=dict)
    api_keys: dict[str, ApiKeyRecord] = field(default_factory=dict)
    password_resets: dict[str, PasswordResetRecord] = field(default_factory=dict)

    def get_user_by_email(self, email: str) -> AuthUser | None:
        key = email.strip().lower()
        return next((user for user in self.users.values() if user.email == key), None)

    def get_user_by_id(self, user_id: str) -> AuthUser | None:
        return self.users.get(user_id)

    def create_user(self, user: AuthUser) -> None:
        if self.get_user_by_email(user.email) is not None:
            raise ConflictError()
        self.users[user.user_id] = user

    def upsert_user(self, user: AuthUser) -> None:
        self.users[user.user_id] = user

    def update_last_login(self, user_id: str, timestamp: int) -> None:
        user = self.users[user_id]
        self.users[user_id] = user.model_copy(update={"last_login_at": timestamp})

    def save_refresh_token(self, record: RefreshTokenRecord) -> None:
        self.refresh_tokens[record.jti] = record

    def get_refresh_token(self, jti: str) -> RefreshTokenRecord | None:
        return self.refresh_tokens.get(jti)

    def revoke_refresh_token(self, jti: str) -> bool:
        record = self.refresh_tokens.get(jti)
        if record is None or record.revoked:
            return False
        self.refresh_tokens[jti] = record.model_copy(update={"revoked": True})
        return True

    def revoke_user_refresh_tokens(self, user_id: str) -> int:
        count = 0
        for jti, record in list(self.refresh_tokens.items()):
            if record.user_id == user_id and not record.revoked:
                self.refresh_tokens[jti] = record.model_copy(update={"revoked": True})
                count += 1
        return count

    def revoke_access_token(self, record: RevokedAccessToken) -> None:
        self.revoked_access[record.jti] = record

    def is_access_token_revoked(self, jti: str) -> bool:
        return jti in self.revoked_access

    def save_password_reset(self, record: PasswordResetRecord) -> None:
        for token_hash, existing in list(self.password_resets.items()):
            if existing.user_id == record.user_id:
                self.password_resets[token_hash] = existing.model_copy(update={"used": True})
        self.password_resets[record.token_hash] = record

    def get_password_reset(self, token_hash: str) -> PasswordResetRecord | None:
        return self.password_resets.get(token_hash)

    def consume_password_reset(self, token_hash: str, now: int) -> bool:
        record = self.password_resets.get(token_hash)
        if record is None or record.used or record.expires_at <= now:
            return False
        self.password_resets[token_hash] = record.model_copy(update={"used": True})
        return True

    def save_api_key(self, record: ApiKeyRecord) -> None:
        self.api_keys[record.key_id] = record

    def get_api_key(self, key_id: str) -> ApiKeyRecord | None:
        return self.api_keys.get(key_id)

    def get_api_key_by_hash(self, key_hash: str) -> ApiKeyRecord | None:
        return next((key for key in self.api_keys.values() if key.key_hash == key_hash), None)

    def list_api_keys(self, user_id: str) -> list[ApiKeyRecord]:
        keys = [key for key in self.api_keys.values() if key.user_id == user_id]
        return sorted(keys, key=lambda item: item.created_at, reverse=True)

    def revoke_api_key(self, key_id: str, revoked_at: int) -> ApiKeyRecord | None:
        record = self.api_keys.get(key_id)
        if record is None:
            return None
        if not record.revoked:
            record = record.model_copy(update={"revoked": True, "revoked_at": revoked_at})
            self.api_keys[key_id] = record
        return record


def app_config(runtime_dir: Path, *, request_max_bytes: int = 64 * 1024, **auth_overrides) -> AppConfig:
    return AppConfig(
        auth=auth_config(**auth_overrides),
        storage=StorageConfig(runtime_dir=runtime_dir),
        audit=AuditConfig(max_workers=1),
        logging=LoggingConfig(level="WARNING"),
        security=SecurityConfig(
            cors_allowed_origins=["http://localhost:3000"],
            request_max_bytes=request_max_bytes,
            state_sqlite_path=str(runtime_dir / "state.db"),
            login_rate_limit_max_attempts=3,
            login_rate_limit_window_seconds=300,
            login_rate_limit_lock_seconds=600,
        ),
    )
