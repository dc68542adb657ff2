"""API key generation, scope/IP authorization and revocation."""

from __future__ import annotations

import hashlib
import ipaddress
import secrets
import time
import uuid
from typing import Callable, Protocol

from aegisx.auth.errors import NotFoundError, UnauthorizedError
from aegisx.auth.models import ApiKeyCreated, ApiKeyMetadata, ApiKeyRecord
from aegisx.core.config import AuthConfig


class ApiKeyStore(Protocol):
    """Persistence the api key service depends on."""

    def save_api_key(self, record: ApiKeyRecord) -> None: ...
    def get_api_key(self, key_id: str) -> ApiKeyRecord | None: ...
    def get_api_key_by_hash(self, key_hash: str) -> ApiKeyRecord | None: ...
    def list_api_keys(self, user_id: str) -> list[ApiKeyRecord]: ...
    def revoke_api_key(self, key_id: str, revoked_at: int) -> ApiKeyRecord | None: ...


def hash_api_key(key: str) -> str:
    """SHA-256 digest used to store and look up api keys."""
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


def scope_covers(granted: str, required: str) -> bool:
    """Return whether a granted scope covers the required one.

    ``*`` covers everything and ``read:*`` covers every ``read:<resource>``.
    """
    if granted == "*" or granted == required:
        return True
    if granted.endswith(":*"):
        return required.startswith(granted[:-1])
    return False


def ip_allowed(request_ip: str, whitelist: list[str]) -> bool:
    """Match an IP against exact addresses or CIDR networks."""
    try:
        address = ipaddress.ip_address(request_ip.strip())
    except ValueError:
        return False
    for entry in whitelist:
        try:
            if address in ipaddress.ip_network(entry.strip(), strict=False):
                return True
        except ValueError:
            continue
    return False


class ApiKeyService:
    """Creates opaque keys and decides whether a presented key may act."""

    def __init__(
        self,
        config: AuthConfig,
        store: ApiKeyStore,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config
        self._store = store
        self._clock = clock

    def create(
        self,
        user_id: str,
        name: str,
        scopes: list[str],
        ip_whitelist: list[str] | None = None,
        expires_at: int | None = None,
    ) -> ApiKeyCreated:
        """Generate and persist a key; the plaintext is only in the return value."""
        for entry in ip_whitelist or []:
            try:
                ipaddress.ip_network(entry.strip(), strict=False)
            except ValueError as exc:
                raise ValueError(f"Invalid IP whitelist entry: {entry}") from exc

        secret = secrets.token_urlsafe(self._config.api_key_bytes)
        key = f"{self._config.api_key_prefix}_{secret}"
        record = ApiKeyRecord(
            key_id=uuid.uuid4().hex,
            user_id=user_id,
            name=name.strip(),
            key_hash=hash_api_key(key),
            prefix=f"{self._config.api_key_prefix}_{secret[:8]}",
            scopes=[scope.strip() for scope in scopes if scope.strip()],
            ip_whitelist=[entry.strip() for entry in ip_whitelist] if ip_whitelist else None,
            expires_at=expires_at,
            revoked=False,
            created_at=int(self._clock()),
        )
        self._store.save_api_key(record)
        return ApiKeyCreated(
            key_id=record.key_id,
            key=key,
            prefix=record.prefix,
            name=record.name,
            scopes=record.scopes,
            ip_whitelist=record.ip_whitelist,
            expires_at=record.expires_at,
            created_at=record.created_at,
        )

    def authorize(self, presented_key: str, required_scope: str, request_ip: str = "") -> ApiKeyRecord:
        """Return the key record when every check passes, else ``UnauthorizedError``."""
        record = self._store.get_api_key_by_hash(hash_api_key(presented_key or ""))
        if record is None:
            raise UnauthorizedError(reason="Unknown api key")

        failures: list[str] = []
        if record.revoked:
            failures.append("api key revoked")
        if record.expires_at is not None and record.expires_at <= int(self._clock()):
            failures.append("api key expired")
        if not any(scope_covers(granted, required_scope) for granted in record.scopes):
            failures.append(f"scope {required_scope} not granted")
        if record.ip_whitelist and not ip_allowed(request_ip or "", record.ip_whitelist):
            failures.append(f"ip {request_ip or 'unknown'} not whitelisted")

        if failures:
            raise UnauthorizedError(reason="; ".join(failures))
        return record

    def revoke(self, key_id: str) -> ApiKeyRecord:
        """Revoke a key; revoking twice is a no-op."""
        record = self._store.revoke_api_key(key_id, int(self._clock()))
        if record is None:
            raise NotFoundError("API key not found", reason=f"api key {key_id} not found")
        return record

    def get(self, key_id: str) -> ApiKeyMetadata | None:
        record = self._store.get_api_key(key_id)
        return ApiKeyMetadata.from_record(record) if record else None

    def list_keys(self, user_id: str) -> list[ApiKeyMetadata]:
        """Key metadata for a user; never includes the secret."""
        return [ApiKeyMetadata.from_record(record) for record in self._store.list_api_keys(user_id)]

    def revoke_all(self, user_id: str) -> list[ApiKeyRecord]:
        """Revoke every active key of a user and return the ones flipped."""
        revoked: list[ApiKeyRecord] = []
        for record in self._store.list_api_keys(user_id):
            if record.revoked:
                continue
            updated = self._store.revoke_api_key(record.key_id, int(self._clock()))
            if updated is not None:
                revoked.append(updated)
        return revoked
