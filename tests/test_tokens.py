from __future__ import annotations

import pytest

from aegisx.auth.errors import InvalidTokenError, TokenExpiredError
from aegisx.auth.tokens import REASON_REFRESH_REUSED, TokenService, hash_token
from aegisx.core.security import build_signed_token
from tests.memory_store import FakeClock, MemoryStore, auth_config


def _service(**overrides) -> tuple[TokenService, MemoryStore, FakeClock]:
    store = MemoryStore()
    clock = FakeClock()
    return TokenService(auth_config(**overrides), store, clock=clock), store, clock


def test_issue_pair_persists_hashed_refresh_token() -> None:
    service, store, _clock = _service()

    pair = service.issue_pair("u1", "user@test.local", ["user"])
    claims = service.verify(pair.refresh_token, "refresh")
    record = store.get_refresh_token(claims.jti)

    assert pair.token_type == "bearer"
    assert pair.expires_in == 300
    assert record is not None
    assert record.token_hash == hash_token(pair.refresh_token)
    assert record.token_hash != pair.refresh_token
    assert record.expires_at == claims.exp


def test_verify_returns_claims_for_access_token() -> None:
    service, _store, clock = _service()

    pair = service.issue_pair("u1", "user@test.local", ["admin"])
    claims = service.verify(pair.access_token, "access")

    assert claims.sub == "u1"
    assert claims.email == "user@test.local"
    assert claims.roles == ["admin"]
    assert claims.iss == "aegisx-test"
    assert claims.exp - claims.iat == 300
    assert claims.iat == int(clock.now)


def test_verify_rejects_type_mismatch() -> None:
    service, _store, _clock = _service()
    pair = service.issue_pair("u1", "user@test.local", [])

    with pytest.raises(InvalidTokenError):
        service.verify(pair.refresh_token, "access")
    with pytest.raises(InvalidTokenError):
        service.verify(pair.access_token, "refresh")


def test_separate_refresh_secret_is_used_for_refresh_tokens() -> None:
    service, _store, _clock = _service(refresh_secret_key="refresh-secret")
    pair = service.issue_pair("u1", "user@test.local", [])

    service.verify(pair.refresh_token, "refresh")
    with pytest.raises(InvalidTokenError):
        TokenService(auth_config(), MemoryStore()).verify(pair.refresh_token, "refresh")


def test_verify_rejects_expired_access_token() -> None:
    service, _store, clock = _service()
    pair = service.issue_pair("u1", "user@test.local", [])

    clock.advance(300)

    with pytest.raises(TokenExpiredError):
        service.verify(pair.access_token, "access")


def test_verify_rejects_foreign_issuer_and_bad_claims() -> None:
    service, _store, clock = _service()
    now = int(clock.now)
    foreign = build_signed_token(
        {"sub": "u1", "email": "x", "type": "access", "iat": now, "exp": now + 60, "jti": "j", "iss": "other"},
        "test-secret",
    )
    incomplete = build_signed_token(
        {"type": "access", "exp": now + 60, "iss": "aegisx-test"}, "test-secret"
    )

    with pytest.raises(InvalidTokenError, match="Invalid or expired token"):
        service.verify(foreign, "access")
    with pytest.raises(InvalidTokenError):
        service.verify(incomplete, "access")
    with pytest.raises(InvalidTokenError):
        service.verify("not-a-token", "access")


def test_refresh_rotates_and_consumes_old_token() -> None:
    service, _store, _clock = _service()
    pair = service.issue_pair("u1", "user@test.local", ["user"])

    rotated = service.refresh(pair.refresh_token)

    assert rotated.refresh_token != pair.refresh_token
    assert service.verify(rotated.refresh_token, "refresh").sub == "u1"
    with pytest.raises(InvalidTokenError) as exc:
        service.refresh(pair.refresh_token)
    assert exc.value.reason == REASON_REFRESH_REUSED


def test_refresh_applies_fresh_claims() -> None:
    service, _store, _clock = _service()
    pair = service.issue_pair("u1", "old@test.local", ["user"])

    rotated = service.refresh(pair.refresh_token, email="new@test.local", roles=["admin"])
    claims = service.verify(rotated.access_token, "access")

    assert claims.email == "new@test.local"
    assert claims.roles == ["admin"]


def test_refresh_rejects_unknown_or_mismatched_records() -> None:
    service, store, _clock = _service()
    pair = service.issue_pair("u1", "user@test.local", [])
    jti = service.verify(pair.refresh_token, "refresh").jti

    store.refresh_tokens[jti] = store.refresh_tokens[jti].model_copy(update={"token_hash": "other"})
    with pytest.raises(InvalidTokenError):
        service.refresh(pair.refresh_token)

    del store.refresh_tokens[jti]
    with pytest.raises(InvalidTokenError):
        service.refresh(pair.refresh_token)


def test_revoke_refresh_is_single_use() -> None:
    service, _store, _clock = _service()
    pair = service.issue_pair("u1", "user@test.local", [])

    payload = service.revoke_refresh(pair.refresh_token)

    assert payload.sub == "u1"
    with pytest.raises(InvalidTokenError):
        service.revoke_refresh(pair.refresh_token)


def test_revoked_access_token_is_rejected_until_expiry() -> None:
    service, store, _clock = _service()
    pair = service.issue_pair("u1", "user@test.local", [])

    payload = service.revoke_access(pair.access_token)

    assert store.revoked_access[payload.jti].expires_at == payload.exp
    with pytest.raises(InvalidTokenError):
        service.verify(pair.access_token, "access")


def test_decode_and_expiry_inspection_without_verification() -> None:
    service, _store, clock = _service()
    pair = service.issue_pair("u1", "user@test.local", [])

    decoded = service.decode(pair.access_token)

    assert decoded is not None
    assert decoded["sub"] == "u1"
    assert service.decode("garbage") is None
    assert service.is_expired(pair.access_token) is False
    assert service.is_expired("garbage") is True

    expiration = service.expiration_date(pair.access_token)
    assert expiration is not None
    assert int(expiration.timestamp()) == int(clock.now) + 300
    assert service.expiration_date("garbage") is None

    clock.advance(301)
    assert service.is_expired(pair.access_token) is True
