"""SQLite migrations for runtime state tables."""

from aegisx.core.migrations.runner import apply_migrations

__all__ = ["apply_migrations"]
