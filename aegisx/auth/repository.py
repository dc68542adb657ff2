"""Repository for users, token revocation state, reset grants and api keys."""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from pathlib import Path
from threading import RLock
from typing import Any, Iterator

from pymongo import MongoClient, ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from aegisx.auth.errors import ConflictError, InfrastructureError
from aegisx.auth.models import (
    ApiKeyRecord,
    AuthUser,
    PasswordResetRecord,
    RefreshTokenRecord,
    RevokedAccessToken,
)
from aegisx.core.config import StorageConfig

LOGGER = logging.getLogger(__name__)

USERS = "auth_users"
REFRESH_TOKENS = "auth_refresh_tokens"
REVOKED_ACCESS = "auth_revoked_access_tokens"
API_KEYS = "auth_api_keys"
PASSWORD_RESETS = "auth_password_resets"

COLLECTIONS = (USERS, REFRESH_TOKENS, REVOKED_ACCESS, API_KEYS, PASSWORD_RESETS)


@contextmanager
def _storage_errors(operation: str) -> Iterator[None]:
    """Translate backend failures into domain error kinds."""
    try:
        yield
    except DuplicateKeyError as exc:
        raise ConflictError(reason=f"{operation}: duplicate key") from exc
    except (PyMongoError, OSError) as exc:
        raise InfrastructureError(reason=f"{operation} failed: {exc}") from exc


class AuthRepository:
    """Auth repository with MongoDB primary and file-store fallback."""

    def __init__(self, config: StorageConfig) -> None:
        """Initialize repository storage backends."""
        self._fallback_dir = config.runtime_dir / "auth_store"
        self._fallback_dir.mkdir(parents=True, exist_ok=True)
        self._lock = RLock()
        self._client: MongoClient | None = None
        self._collections: dict[str, Any] = {}

        if config.mongodb_uri:
            try:
                client: MongoClient = MongoClient(
                    config.mongodb_uri,
                    serverSelectionTimeoutMS=config.timeout_ms,
                    timeoutMS=config.timeout_ms,
                )
                client.admin.command("ping")
                db = client[config.mongodb_db]
                self._collections = {name: db[name] for name in COLLECTIONS}
                self._client = client
            except PyMongoError:
                LOGGER.warning("mongo_unavailable_using_file_store", exc_info=True)
                self._collections = {}

    @property
    def uses_mongo(self) -> bool:
        return bool(self._collections)

    def close(self) -> None:
        """Release the MongoDB client when one is open."""
        if self._client is not None:
            self._client.close()
            self._client = None

    def _mongo(self, name: str) -> Any:
        return self._collections.get(name)

    def _file(self, name: str) -> Path:
        return self._fallback_dir / f"{name}.json"

    def _read_rows(self, name: str) -> list[dict[str, Any]]:
        """Read the rows of a store file; a missing file holds no rows.

        An unreadable file is an outage, not an empty store: reading on would
        forget revocations and the next write would drop every record.
        """
        path = self._file(name)
        if not path.exists():
            return []
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except ValueError as exc:
            raise InfrastructureError(reason=f"store file {path.name} is corrupted: {exc}") from exc
        if not isinstance(payload, list):
            raise InfrastructureError(
                reason=f"store file {path.name} holds {type(payload).__name__}, expected list"
            )
        return payload

    def _write_rows(self, name: str, rows: list[dict[str, Any]]) -> None:
        """Persist list payload to JSON file via atomic replace."""
        path = self._file(name)
        tmp_path = path.with_suffix(".json.tmp")
        tmp_path.write_text(json.dumps(rows, ensure_ascii=False, indent=2), encoding="utf-8")
        tmp_path.replace(path)

    # users

    def get_user_by_email(self, email: str) -> AuthUser | None:
        """Get user by email from storage."""
        key = email.strip().lower()
        with _storage_errors("get_user_by_email"):
            collection = self._mongo(USERS)
            if collection is not None:
                doc = collection.find_one({"email": key}, {"_id": 0})
                return AuthUser.model_validate(doc) if doc else None
            with self._lock:
                for row in self._read_rows(USERS):
                    if str(row.get("email", "")).strip().lower() == key:
                        return AuthUser.model_validate(row)
        return None

    def get_user_by_id(self, user_id: str) -> AuthUser | None:
        """Get user by id from storage."""
        with _storage_errors("get_user_by_id"):
            collection = self._mongo(USERS)
            if collection is not None:
                doc = collection.find_one({"user_id": user_id}, {"_id": 0})
                return AuthUser.model_validate(doc) if doc else None
            with self._lock:
                for row in self._read_rows(USERS):
                    if str(row.get("user_id", "")) == user_id:
                        return AuthUser.model_validate(row)
        return None

    def create_user(self, user: AuthUser) -> None:
        """Insert a new user; raises ``ConflictError`` for a taken email."""
        doc = user.model_copy(update={"email": user.email.strip().lower()}).model_dump()
        with _storage_errors("create_user"):
            collection = self._mongo(USERS)
            if collection is not None:
                collection.insert_one(dict(doc))
                return
            with self._lock:
                rows = self._read_rows(USERS)
                if any(str(row.get("email", "")).lower() == doc["email"] for row in rows):
                    raise ConflictError(reason="create_user: duplicate email")
                rows.append(doc)
                self._write_rows(USERS, rows)

    def upsert_user(self, user: AuthUser) -> None:
        """Create or replace user keyed by user id."""
        doc = user.model_copy(update={"email": user.email.strip().lower()}).model_dump()
        with _storage_errors("upsert_user"):
            collection = self._mongo(USERS)
            if collection is not None:
                collection.update_one({"user_id": user.user_id}, {"$set": doc}, upsert=True)
                return
            with self._lock:
                rows = [
                    row
                    for row in self._read_rows(USERS)
                    if str(row.get("user_id", "")) != user.user_id
                ]
                rows.append(doc)
                self._write_rows(USERS, rows)

    def update_last_login(self, user_id: str, timestamp: int) -> None:
        """Record the time of the latest successful login."""
        with _storage_errors("update_last_login"):
            collection = self._mongo(USERS)
            if collection is not None:
                collection.update_one(
                    {"user_id": user_id}, {"$set": {"last_login_at": timestamp}}
                )
                return
            with self._lock:
                rows = self._read_rows(USERS)
                for row in rows:
                    if str(row.get("user_id", "")) == user_id:
                        row["last_login_at"] = timestamp
                self._write_rows(USERS, rows)

    # refresh tokens

    def save_refresh_token(self, record: RefreshTokenRecord) -> None:
        """Save refresh token record for rotation/revocation."""
        doc = record.model_dump()
        with _storage_errors("save_refresh_token"):
            collection = self._mongo(REFRESH_TOKENS)
            if collection is not None:
                collection.update_one({"jti": record.jti}, {"$set": doc}, upsert=True)
                return
            with self._lock:
                rows = [
                    row for row in self._read_rows(REFRESH_TOKENS) if row.get("jti") != record.jti
                ]
                rows.append(doc)
                self._write_rows(REFRESH_TOKENS, rows)

    def get_refresh_token(self, jti: str) -> RefreshTokenRecord | None:
        """Get refresh token record by jti."""
        with _storage_errors("get_refresh_token"):
            collection = self._mongo(REFRESH_TOKENS)
            if collection is not None:
                doc = collection.find_one({"jti": jti}, {"_id": 0})
                return RefreshTokenRecord.model_validate(doc) if doc else None
            with self._lock:
                for row in self._read_rows(REFRESH_TOKENS):
                    if row.get("jti") == jti:
                        return RefreshTokenRecord.model_validate(row)
        return None

    def revoke_refresh_token(self, jti: str) -> bool:
        """Flip ``revoked`` from false to true.

        Returns ``True`` only for the caller that performed the flip, so two
        concurrent rotations of the same token cannot both proceed.
        """
        with _storage_errors("revoke_refresh_token"):
            collection = self._mongo(REFRESH_TOKENS)
            if collection is not None:
                doc = collection.find_one_and_update(
                    {"jti": jti, "revoked": False},
                    {"$set": {"revoked": True}},
                    projection={"_id": 0, "jti": 1},
                    return_document=ReturnDocument.BEFORE,
                )
                return doc is not None
            with self._lock:
                rows = self._read_rows(REFRESH_TOKENS)
                for row in rows:
                    if row.get("jti") == jti and not row.get("revoked"):
                        row["revoked"] = True
                        self._write_rows(REFRESH_TOKENS, rows)
                        return True
        return False

    def revoke_user_refresh_tokens(self, user_id: str) -> int:
        """Revoke every active refresh token of a user."""
        with _storage_errors("revoke_user_refresh_tokens"):
            collection = self._mongo(REFRESH_TOKENS)
            if collection is not None:
                result = collection.update_many(
                    {"user_id": user_id, "revoked": False}, {"$set": {"revoked": True}}
                )
                return int(result.modified_count)
            with self._lock:
                rows = self._read_rows(REFRESH_TOKENS)
                count = 0
                for row in rows:
                    if row.get("user_id") == user_id and not row.get("revoked"):
                        row["revoked"] = True
                        count += 1
                if count:
                    self._write_rows(REFRESH_TOKENS, rows)
                return count

    def purge_expired_refresh_tokens(self, now: int) -> int:
        """Delete refresh token records past their expiry."""
        with _storage_errors("purge_expired_refresh_tokens"):
            collection = self._mongo(REFRESH_TOKENS)
            if collection is not None:
                return int(collection.delete_many({"expires_at": {"$lt": now}}).deleted_count)
            with self._lock:
                rows = self._read_rows(REFRESH_TOKENS)
                kept = [row for row in rows if int(row.get("expires_at") or 0) >= now]
                self._write_rows(REFRESH_TOKENS, kept)
                return len(rows) - len(kept)

    # access token revocations

    def revoke_access_token(self, record: RevokedAccessToken) -> None:
        """Reject an access token identifier until it expires."""
        doc = record.model_dump()
        with _storage_errors("revoke_access_token"):
            collection = self._mongo(REVOKED_ACCESS)
            if collection is not None:
                collection.update_one({"jti": record.jti}, {"$set": doc}, upsert=True)
                return
            with self._lock:
                rows = [
                    row for row in self._read_rows(REVOKED_ACCESS) if row.get("jti") != record.jti
                ]
                rows.append(doc)
                self._write_rows(REVOKED_ACCESS, rows)

    def is_access_token_revoked(self, jti: str) -> bool:
        """Return whether an access token identifier is on the revocation list."""
        with _storage_errors("is_access_token_revoked"):
            collection = self._mongo(REVOKED_ACCESS)
            if collection is not None:
                return collection.find_one({"jti": jti}, {"_id": 1}) is not None
            with self._lock:
                return any(row.get("jti") == jti for row in self._read_rows(REVOKED_ACCESS))

    def purge_expired_access_revocations(self, now: int) -> int:
        """Drop revocation entries whose tokens have expired anyway."""
        with _storage_errors("purge_expired_access_revocations"):
            collection = self._mongo(REVOKED_ACCESS)
            if collection is not None:
                return int(collection.delete_many({"expires_at": {"$lt": now}}).deleted_count)
            with self._lock:
                rows = self._read_rows(REVOKED_ACCESS)
                kept = [row for row in rows if int(row.get("expires_at") or 0) >= now]
                self._write_rows(REVOKED_ACCESS, kept)
                return len(rows) - len(kept)

    # password resets

    def save_password_reset(self, record: PasswordResetRecord) -> None:
        """Store a reset grant; earlier unused grants of the user stop working."""
        doc = record.model_dump()
        with _storage_errors("save_password_reset"):
            collection = self._mongo(PASSWORD_RESETS)
            if collection is not None:
                collection.update_many(
                    {"user_id": record.user_id, "used": False}, {"$set": {"used": True}}
                )
                collection.insert_one(dict(doc))
                return
            with self._lock:
                rows = self._read_rows(PASSWORD_RESETS)
                for row in rows:
                    if row.get("user_id") == record.user_id:
                        row["used"] = True
                rows.append(doc)
                self._write_rows(PASSWORD_RESETS, rows)

    def get_password_reset(self, token_hash: str) -> PasswordResetRecord | None:
        """Get reset grant by the hash of its token."""
        with _storage_errors("get_password_reset"):
            collection = self._mongo(PASSWORD_RESETS)
            if collection is not None:
                doc = collection.find_one({"token_hash": token_hash}, {"_id": 0})
                return PasswordResetRecord.model_validate(doc) if doc else None
            with self._lock:
                for row in self._read_rows(PASSWORD_RESETS):
                    if row.get("token_hash") == token_hash:
                        return PasswordResetRecord.model_validate(row)
        return None

    def consume_password_reset(self, token_hash: str, now: int) -> bool:
        """Mark an unused, unexpired grant used; ``True`` only for the winner."""
        with _storage_errors("consume_password_reset"):
            collection = self._mongo(PASSWORD_RESETS)
            if collection is not None:
                doc = collection.find_one_and_update(
                    {"token_hash": token_hash, "used": False, "expires_at": {"$gt": now}},
                    {"$set": {"used": True}},
                    projection={"_id": 0, "token_hash": 1},
                    return_document=ReturnDocument.BEFORE,
                )
                return doc is not None
            with self._lock:
                rows = self._read_rows(PASSWORD_RESETS)
                for row in rows:
                    if (
                        row.get("token_hash") == token_hash
                        and not row.get("used")
                        and int(row.get("expires_at") or 0) > now
                    ):
                        row["used"] = True
                        self._write_rows(PASSWORD_RESETS, rows)
                        return True
        return False

    def purge_expired_password_resets(self, now: int) -> int:
        """Delete reset grants past their expiry."""
        with _storage_errors("purge_expired_password_resets"):
            collection = self._mongo(PASSWORD_RESETS)
            if collection is not None:
                return int(collection.delete_many({"expires_at": {"$lt": now}}).deleted_count)
            with self._lock:
                rows = self._read_rows(PASSWORD_RESETS)
                kept = [row for row in rows if int(row.get("expires_at") or 0) >= now]
                self._write_rows(PASSWORD_RESETS, kept)
                return len(rows) - len(kept)

    # api keys

    def save_api_key(self, record: ApiKeyRecord) -> None:
        """Persist a newly created api key."""
        doc = record.model_dump()
        with _storage_errors("save_api_key"):
            collection = self._mongo(API_KEYS)
            if collection is not None:
                collection.insert_one(dict(doc))
                return
            with self._lock:
                rows = self._read_rows(API_KEYS)
                rows.append(doc)
                self._write_rows(API_KEYS, rows)

    def _find_api_key(self, field_name: str, value: str) -> ApiKeyRecord | None:
        collection = self._mongo(API_KEYS)
        if collection is not None:
            doc = collection.find_one({field_name: value}, {"_id": 0})
            return ApiKeyRecord.model_validate(doc) if doc else None
        with self._lock:
            for row in self._read_rows(API_KEYS):
                if row.get(field_name) == value:
                    return ApiKeyRecord.model_validate(row)
        return None

    def get_api_key(self, key_id: str) -> ApiKeyRecord | None:
        """Get api key by identifier."""
        with _storage_errors("get_api_key"):
            return self._find_api_key("key_id", key_id)

    def get_api_key_by_hash(self, key_hash: str) -> ApiKeyRecord | None:
        """Get api key by the hash of its secret."""
        with _storage_errors("get_api_key_by_hash"):
            return self._find_api_key("key_hash", key_hash)

    def list_api_keys(self, user_id: str) -> list[ApiKeyRecord]:
        """List a user's api keys, newest first."""
        with _storage_errors("list_api_keys"):
            collection = self._mongo(API_KEYS)
            if collection is not None:
                docs = list(collection.find({"user_id": user_id}, {"_id": 0}))
            else:
                with self._lock:
                    docs = [row for row in self._read_rows(API_KEYS) if row.get("user_id") == user_id]
        records = [ApiKeyRecord.model_validate(doc) for doc in docs]
        return sorted(records, key=lambda item: item.created_at, reverse=True)

    def revoke_api_key(self, key_id: str, revoked_at: int) -> ApiKeyRecord | None:
        """Mark key revoked; an already revoked key keeps its first ``revoked_at``."""
        with _storage_errors("revoke_api_key"):
            collection = self._mongo(API_KEYS)
            if collection is not None:
                collection.update_one(
                    {"key_id": key_id, "revoked": False},
                    {"$set": {"revoked": True, "revoked_at": revoked_at}},
                )
                doc = collection.find_one({"key_id": key_id}, {"_id": 0})
                return ApiKeyRecord.model_validate(doc) if doc else None
            with self._lock:
                rows = self._read_rows(API_KEYS)
                for row in rows:
                    if row.get("key_id") != key_id:
                        continue
                    if not row.get("revoked"):
                        row["revoked"] = True
                        row["revoked_at"] = revoked_at
                        self._write_rows(API_KEYS, rows)
                    return ApiKeyRecord.model_validate(row)
        return None

