"""Versioned MongoDB schema migrations for auth collections."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable

import pymongo
from pymongo.errors import PyMongoError

from aegisx.core.config import StorageConfig
from aegisx.core.logging import CORRELATION_ID_CTX

LOGGER = logging.getLogger(__name__)

MigrationFn = Callable[[Any], None]


def _migration_20260301_01_auth_indexes(db: Any) -> None:
    db["auth_users"].create_index("email", unique=True)
    db["auth_users"].create_index("user_id", unique=True)
    db["auth_refresh_tokens"].create_index("jti", unique=True)
    db["auth_refresh_tokens"].create_index("user_id")


def _migration_20260301_02_access_revocations(db: Any) -> None:
    db["auth_revoked_access_tokens"].create_index("jti", unique=True)
    db["auth_revoked_access_tokens"].create_index("expires_at")
    db["auth_refresh_tokens"].create_index("expires_at")


def _migration_20260301_03_api_keys(db: Any) -> None:
    db["auth_api_keys"].create_index("key_id", unique=True)
    db["auth_api_keys"].create_index("key_hash", unique=True)
    db["auth_api_keys"].create_index([("user_id", 1), ("created_at", -1)])


def _migration_20260301_04_password_resets(db: Any) -> None:
    db["auth_password_resets"].create_index("token_hash", unique=True)
    db["auth_password_resets"].create_index("user_id")
    db["auth_password_resets"].create_index("expires_at")


MIGRATIONS: list[tuple[str, MigrationFn]] = [
    ("20260301_01_auth_indexes", _migration_20260301_01_auth_indexes),
    ("20260301_02_access_revocations", _migration_20260301_02_access_revocations),
    ("20260301_03_api_keys", _migration_20260301_03_api_keys),
    ("20260301_04_password_resets", _migration_20260301_04_password_resets),
]


def apply_mongo_migrations_to_db(db: Any) -> list[str]:
    """Apply pending migrations to a database handle; returns applied ids."""
    migration_collection = db["schema_migrations"]
    migration_collection.create_index("migration_id", unique=True)

    applied: list[str] = []
    for migration_id, migration_fn in MIGRATIONS:
        if migration_collection.find_one({"migration_id": migration_id}):
            continue
        migration_fn(db)
        migration_collection.insert_one(
            {
                "migration_id": migration_id,
                "applied_at": datetime.now(timezone.utc),
                "correlation_id": CORRELATION_ID_CTX.get(),
            }
        )
        applied.append(migration_id)
    return applied


def apply_mongo_migrations(config: StorageConfig) -> None:
    """Apply MongoDB migrations if a MongoDB URI is configured.

    An unreachable server is logged and skipped; the repository reports the
    outage on first use.
    """
    if not config.mongodb_uri:
        return

    client: Any = pymongo.MongoClient(
        config.mongodb_uri, serverSelectionTimeoutMS=config.timeout_ms
    )
    try:
        client.admin.command("ping")
        applied = apply_mongo_migrations_to_db(client[config.mongodb_db])
        if applied:
            LOGGER.info("mongo_migrations_applied", extra={"action": ",".join(applied)})
    except PyMongoError:
        LOGGER.warning("mongo_migrations_skipped", exc_info=True)
    finally:
        client.close()
