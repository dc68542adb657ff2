from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Any

import pytest

from aegisx.core import mongo_migrations
from aegisx.core.config import StorageConfig
from aegisx.core.migrations import apply_migrations


def test_apply_migrations_creates_login_attempt_table(tmp_path: Path) -> None:
    db_path = tmp_path / "nested" / "state.db"

    applied = apply_migrations(db_path)
    reapplied = apply_migrations(db_path)

    assert applied == ["0001_auth_login_attempts.sql"]
    assert reapplied == []
    connection = sqlite3.connect(str(db_path))
    try:
        tables = {
            row[0]
            for row in connection.execute(
                "SELECT name FROM sqlite_master WHERE type='table'"
            ).fetchall()
        }
        assert {"schema_migrations", "auth_login_attempts"} <= tables
    finally:
        connection.close()


class _Collection:
    def __init__(self) -> None:
        self.indexes: list[tuple[Any, dict[str, Any]]] = []
        self.docs: list[dict[str, Any]] = []

    def create_index(self, keys: Any, **kwargs: Any) -> str:
        self.indexes.append((keys, kwargs))
        return str(keys)

    def find_one(self, query: dict[str, Any]) -> dict[str, Any] | None:
        return next(
            (doc for doc in self.docs if all(doc.get(k) == v for k, v in query.items())),
            None,
        )

    def insert_one(self, doc: dict[str, Any]) -> None:
        self.docs.append(doc)


class _Database:
    def __init__(self) -> None:
        self.collections: dict[str, _Collection] = {}

    def __getitem__(self, name: str) -> _Collection:
        return self.collections.setdefault(name, _Collection())


def test_mongo_migrations_create_unique_indexes_once() -> None:
    db = _Database()

    applied = mongo_migrations.apply_mongo_migrations_to_db(db)
    reapplied = mongo_migrations.apply_mongo_migrations_to_db(db)

    assert len(applied) == len(mongo_migrations.MIGRATIONS)
    assert reapplied == []
    unique_fields = {
        (name, keys)
        for name, collection in db.collections.items()
        for keys, options in collection.indexes
        if options.get("unique")
    }
    assert ("auth_users", "email") in unique_fields
    assert ("auth_refresh_tokens", "jti") in unique_fields
    assert ("auth_revoked_access_tokens", "jti") in unique_fields
    assert ("auth_api_keys", "key_hash") in unique_fields
    assert ("auth_password_resets", "token_hash") in unique_fields


def test_mongo_migrations_skip_without_uri(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    def _fail(*_args: Any, **_kwargs: Any) -> None:
        raise AssertionError("MongoClient must not be created")

    monkeypatch.setattr(mongo_migrations.pymongo, "MongoClient", _fail)

    mongo_migrations.apply_mongo_migrations(StorageConfig(runtime_dir=tmp_path))
