from __future__ import annotations

import pytest

from aegisx.auth.passwords import (
    DIGITS,
    LOWERCASE,
    SPECIAL_CHARS,
    UPPERCASE,
    PasswordService,
)
from aegisx.core.config import PasswordPolicy


def _service(**policy) -> PasswordService:
    return PasswordService(rounds=1000, policy=PasswordPolicy(**policy))


def test_hash_and_compare() -> None:
    service = _service()
    stored = service.hash("Secret123")

    assert service.compare("Secret123", stored)
    assert not service.compare("Secret124", stored)
    assert not service.compare("Secret123", "garbage")


def test_validate_accepts_password_meeting_default_policy() -> None:
    result = _service().validate("Secret123")

    assert result.is_valid
    assert result.errors == []


def test_validate_reports_every_violation() -> None:
    result = _service(require_special_chars=True).validate("abc")

    assert not result.is_valid
    assert len(result.errors) == 4
    assert any("at least 8" in error for error in result.errors)
    assert any("uppercase" in error for error in result.errors)
    assert any("number" in error for error in result.errors)
    assert any("special" in error for error in result.errors)


def test_validate_enforces_max_length() -> None:
    result = _service(max_length=10).validate("Secret123456")

    assert result.errors == ["Password must not exceed 10 characters"]


def test_validate_uses_per_call_policy() -> None:
    service = _service()
    relaxed = PasswordPolicy(
        min_length=3,
        require_uppercase=False,
        require_numbers=False,
    )

    assert not service.validate("abcd").is_valid
    assert service.validate("abcd", relaxed).is_valid


def test_generate_random_contains_every_class() -> None:
    for length in (4, 12, 40):
        password = PasswordService.generate_random(length)

        assert len(password) == length
        assert any(char in LOWERCASE for char in password)
        assert any(char in UPPERCASE for char in password)
        assert any(char in DIGITS for char in password)
        assert any(char in SPECIAL_CHARS for char in password)


def test_generate_random_rejects_short_lengths() -> None:
    with pytest.raises(ValueError):
        PasswordService.generate_random(3)


def test_generated_passwords_satisfy_strict_policy() -> None:
    service = _service(require_special_chars=True)

    assert service.validate(PasswordService.generate_random(16)).is_valid


def test_is_compromised_hook_defaults_to_false() -> None:
    assert PasswordService.is_compromised("password") is False
