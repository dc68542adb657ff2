"""SQLite migration runner for runtime state tables."""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

LOGGER = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parent / "sql"


def apply_migrations(database_path: Path, migrations_dir: Path = MIGRATIONS_DIR) -> list[str]:
    """Apply pending SQL migrations in file-name order; returns applied ids."""
    database_path.parent.mkdir(parents=True, exist_ok=True)
    applied: list[str] = []
    connection = sqlite3.connect(str(database_path))
    try:
        cursor = connection.cursor()
        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_migrations (
              migration_id TEXT PRIMARY KEY,
              applied_at INTEGER NOT NULL
            )
            """
        )
        for migration_file in sorted(migrations_dir.glob("*.sql")):
            migration_id = migration_file.name
            if cursor.execute(
                "SELECT 1 FROM schema_migrations WHERE migration_id = ?",
                (migration_id,),
            ).fetchone():
                continue
            cursor.executescript(migration_file.read_text(encoding="utf-8"))
            cursor.execute(
                "INSERT INTO schema_migrations(migration_id, applied_at) VALUES (?, strftime('%s','now'))",
                (migration_id,),
            )
            applied.append(migration_id)
        connection.commit()
    finally:
        connection.close()
    if applied:
        LOGGER.info("sqlite_migrations_applied", extra={"action": ",".join(applied)})
    return applied
