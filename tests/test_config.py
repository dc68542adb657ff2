from __future__ import annotations

from pathlib import Path

import pytest

from aegisx.core.config import AppConfig, AuthConfig


def test_from_env_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "AUTH_ACCESS_TOKEN_TTL_SECONDS",
        "AUTH_REFRESH_TOKEN_TTL_SECONDS",
        "AUTH_DEFAULT_ROLES",
        "PASSWORD_MIN_LENGTH",
        "PASSWORD_REQUIRE_SPECIAL_CHARS",
        "MONGODB_URI",
        "RUNTIME_DIR",
    ):
        monkeypatch.delenv(name, raising=False)

    config = AppConfig.from_env()

    assert config.auth.access_token_ttl_seconds == 900
    assert config.auth.refresh_token_ttl_seconds == 604800
    assert config.auth.default_roles == ("user",)
    assert config.auth.password_policy.min_length == 8
    assert config.auth.password_policy.require_special_chars is False
    assert config.storage.mongodb_uri == ""
    assert config.storage.runtime_dir == Path("runtime")


def test_from_env_reads_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AUTH_SECRET_KEY", "s3cret")
    monkeypatch.setenv("AUTH_ACCESS_TOKEN_TTL_SECONDS", "60")
    monkeypatch.setenv("AUTH_DEFAULT_ROLES", "user, auditor")
    monkeypatch.setenv("AUTH_ADMIN_EMAIL", " Admin@Test.Local ")
    monkeypatch.setenv("PASSWORD_REQUIRE_SPECIAL_CHARS", "true")
    monkeypatch.setenv("PASSWORD_MAX_LENGTH", "")
    monkeypatch.setenv("AUDIT_WEBHOOK_URL", "https://audit.test/hook")
    monkeypatch.setenv("CORS_ALLOWED_ORIGINS", "https://a.test, https://b.test")
    monkeypatch.setenv("PASSWORD_HISTORY_COUNT", "3")
    monkeypatch.setenv("PASSWORD_RESET_TOKEN_TTL_SECONDS", "900")
    monkeypatch.setenv("AUDIT_MAX_PENDING", "50")

    config = AppConfig.from_env()

    assert config.auth.secret_key == "s3cret"
    assert config.auth.access_token_ttl_seconds == 60
    assert config.auth.default_roles == ("user", "auditor")
    assert config.auth.admin_email == "admin@test.local"
    assert config.auth.password_policy.require_special_chars is True
    assert config.auth.password_policy.max_length is None
    assert config.audit.webhook_url == "https://audit.test/hook"
    assert config.security.cors_allowed_origins == ["https://a.test", "https://b.test"]
    assert config.auth.password_history_count == 3
    assert config.auth.password_reset_ttl_seconds == 900
    assert config.audit.max_pending == 50


def test_refresh_signing_key_falls_back_to_access_secret() -> None:
    assert AuthConfig(secret_key="a").signing_key_for_refresh == "a"
    assert AuthConfig(secret_key="a", refresh_secret_key="b").signing_key_for_refresh == "b"
