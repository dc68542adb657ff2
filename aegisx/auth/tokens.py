"""Issuance, verification, rotation and inspection of signed bearer tokens."""

from __future__ import annotations

import hashlib
import hmac
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Protocol

from pydantic import ValidationError

from aegisx.auth.errors import InvalidTokenError, TokenExpiredError
from aegisx.auth.models import (
    RefreshTokenRecord,
    RevokedAccessToken,
    TokenPair,
    TokenPayload,
    TokenType,
)
from aegisx.core.config import AuthConfig
from aegisx.core.security import (
    ExpiredTokenError,
    build_signed_token,
    decode_signed_token,
    decode_unverified_token,
)

REASON_REFRESH_REUSED = "refresh_token_reused"


class TokenStore(Protocol):
    """Revocation state the token service reads and writes."""

    def save_refresh_token(self, record: RefreshTokenRecord) -> None: ...
    def get_refresh_token(self, jti: str) -> RefreshTokenRecord | None: ...
    def revoke_refresh_token(self, jti: str) -> bool: ...
    def revoke_access_token(self, record: RevokedAccessToken) -> None: ...
    def is_access_token_revoked(self, jti: str) -> bool: ...


def hash_token(token: str) -> str:
    """Hash raw token for storage/comparison."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class TokenService:
    """Signs access/refresh pairs and enforces single-use refresh rotation.

    Token states: issued -> valid -> (expired | revoked). Expiry is passive and
    checked from the ``exp`` claim alone; revocation is recorded in the store
    by ``jti`` (never by the token itself).
    """

    def __init__(
        self,
        config: AuthConfig,
        store: TokenStore,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config
        self._store = store
        self._clock = clock

    @property
    def access_ttl_seconds(self) -> int:
        return self._config.access_token_ttl_seconds

    def _now(self) -> int:
        return int(self._clock())

    def _secret(self, token_type: TokenType) -> str:
        if token_type == "refresh":
            return self._config.signing_key_for_refresh
        return self._config.secret_key

    def _ttl(self, token_type: TokenType) -> int:
        if token_type == "refresh":
            return self._config.refresh_token_ttl_seconds
        return self._config.access_token_ttl_seconds

    def _sign(self, token_type: TokenType, subject: str, email: str, roles: list[str], now: int) -> tuple[str, TokenPayload]:
        payload = TokenPayload(
            sub=subject,
            email=email,
            roles=list(roles),
            type=token_type,
            iat=now,
            exp=now + self._ttl(token_type),
            jti=uuid.uuid4().hex,
            iss=self._config.issuer,
        )
        return build_signed_token(payload.model_dump(), self._secret(token_type)), payload

    def issue_pair(self, subject: str, email: str, roles: list[str]) -> TokenPair:
        """Mint an access and a refresh token from the same base claims."""
        now = self._now()
        access_token, _ = self._sign("access", subject, email, roles, now)
        refresh_token, refresh_payload = self._sign("refresh", subject, email, roles, now)

        self._store.save_refresh_token(
            RefreshTokenRecord(
                jti=refresh_payload.jti,
                user_id=subject,
                token_hash=hash_token(refresh_token),
                expires_at=refresh_payload.exp,
                revoked=False,
            )
        )
        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            token_type="bearer",
            expires_in=self._config.access_token_ttl_seconds,
        )

    def verify(self, token: str, expected_type: TokenType) -> TokenPayload:
        """Return trusted claims or raise ``InvalidTokenError``/``TokenExpiredError``."""
        try:
            raw = decode_signed_token(token, self._secret(expected_type), now=self._now())
        except ExpiredTokenError as exc:
            raise TokenExpiredError(reason=str(exc)) from exc
        except ValueError as exc:
            raise InvalidTokenError(reason=str(exc)) from exc

        if raw.get("type") != expected_type:
            raise InvalidTokenError(reason=f"Expected {expected_type} token")
        if raw.get("iss") != self._config.issuer:
            raise InvalidTokenError(reason="Invalid token issuer")
        try:
            payload = TokenPayload.model_validate(raw)
        except ValidationError as exc:
            raise InvalidTokenError(reason="Invalid token claims") from exc

        if expected_type == "refresh":
            record = self._store.get_refresh_token(payload.jti)
            if record is None:
                raise InvalidTokenError(reason="Unknown refresh token")
            if record.revoked:
                raise InvalidTokenError(reason=REASON_REFRESH_REUSED)
            if not hmac.compare_digest(record.token_hash, hash_token(token)):
                raise InvalidTokenError(reason="Refresh token mismatch")
        elif self._store.is_access_token_revoked(payload.jti):
            raise InvalidTokenError(reason="Access token revoked")
        return payload

    def refresh(
        self,
        refresh_token: str,
        *,
        email: str | None = None,
        roles: list[str] | None = None,
    ) -> TokenPair:
        """Rotate a refresh token into a new pair; the old token is consumed.

        ``email``/``roles`` override the claims carried by the old token when
        the caller has fresher values for the same subject.
        """
        payload = self.verify(refresh_token, "refresh")
        if not self._store.revoke_refresh_token(payload.jti):
            raise InvalidTokenError(reason=REASON_REFRESH_REUSED)
        return self.issue_pair(
            payload.sub,
            payload.email if email is None else email,
            payload.roles if roles is None else roles,
        )

    def revoke_refresh(self, refresh_token: str) -> TokenPayload:
        """Consume a refresh token without issuing a new pair."""
        payload = self.verify(refresh_token, "refresh")
        if not self._store.revoke_refresh_token(payload.jti):
            raise InvalidTokenError(reason=REASON_REFRESH_REUSED)
        return payload

    def revoke_access(self, access_token: str) -> TokenPayload:
        """Reject a still-valid access token until its natural expiry."""
        payload = self.verify(access_token, "access")
        self._store.revoke_access_token(
            RevokedAccessToken(jti=payload.jti, user_id=payload.sub, expires_at=payload.exp)
        )
        return payload

    @staticmethod
    def decode(token: str) -> dict[str, Any] | None:
        """Read claims without verification; for inspection and logging only."""
        try:
            return decode_unverified_token(token)
        except ValueError:
            return None

    def is_expired(self, token: str) -> bool:
        """Return whether ``exp`` has passed; missing or invalid ``exp`` counts as expired."""
        exp = self._exp_claim(token)
        return exp is None or exp <= self._now()

    def expiration_date(self, token: str) -> datetime | None:
        exp = self._exp_claim(token)
        if exp is None:
            return None
        return datetime.fromtimestamp(exp, tz=timezone.utc)

    def _exp_claim(self, token: str) -> int | None:
        payload = self.decode(token)
        if payload is None:
            return None
        exp = payload.get("exp")
        if not isinstance(exp, int) or isinstance(exp, bool):
            return None
        return exp
