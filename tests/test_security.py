from __future__ import annotations

import pytest

from aegisx.core.security import (
    ExpiredTokenError,
    _b64url_encode,
    build_signed_token,
    decode_signed_token,
    decode_unverified_token,
    hash_password,
    verify_password,
)


def test_hash_password_is_salted_and_verifiable() -> None:
    first = hash_password("Secret123", 1000)
    second = hash_password("Secret123", 1000)

    assert first != second
    assert first.startswith("pbkdf2_sha256$1000$")
    assert verify_password("Secret123", first)
    assert verify_password("Secret123", second)
    assert not verify_password("secret123", first)


@pytest.mark.parametrize("stored", ["", "not-a-hash", "md5$1$a$b", "pbkdf2_sha256$x$a$b"])
def test_verify_password_rejects_malformed_hashes(stored: str) -> None:
    assert verify_password("anything", stored) is False


def test_signed_token_round_trip() -> None:
    token = build_signed_token({"sub": "u1", "exp": 2_000}, "key")

    assert decode_signed_token(token, "key", now=1_000)["sub"] == "u1"


def test_signed_token_rejects_wrong_key_and_tampering() -> None:
    token = build_signed_token({"sub": "u1", "exp": 2_000}, "key")
    header, _payload, signature = token.split(".")
    forged_payload = _b64url_encode(b'{"sub":"admin","exp":2000}')

    with pytest.raises(ValueError, match="signature"):
        decode_signed_token(token, "other-key", now=1_000)
    with pytest.raises(ValueError, match="signature"):
        decode_signed_token(f"{header}.{forged_payload}.{signature}", "key", now=1_000)


def test_signed_token_rejects_other_algorithms() -> None:
    token = build_signed_token({"sub": "u1", "exp": 2_000}, "key")
    _header, payload, signature = token.split(".")
    none_header = _b64url_encode(b'{"alg":"none","typ":"JWT"}')

    with pytest.raises(ValueError, match="algorithm"):
        decode_signed_token(f"{none_header}.{payload}.{signature}", "key", now=1_000)


def test_signed_token_expiry_is_inclusive() -> None:
    token = build_signed_token({"sub": "u1", "exp": 2_000}, "key")

    decode_signed_token(token, "key", now=1_999)
    with pytest.raises(ExpiredTokenError):
        decode_signed_token(token, "key", now=2_000)


def test_signed_token_requires_integer_expiry() -> None:
    token = build_signed_token({"sub": "u1"}, "key")

    with pytest.raises(ValueError, match="expiry"):
        decode_signed_token(token, "key", now=0)


@pytest.mark.parametrize("token", ["", "abc", "a.b", "a.!!!.c"])
def test_decode_unverified_token_rejects_malformed_tokens(token: str) -> None:
    with pytest.raises(ValueError):
        decode_unverified_token(token)
