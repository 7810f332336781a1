"""
Database migrations for the local store.

Uses SQLite ALTER TABLE ADD COLUMN for incremental schema evolution.
Each migration is idempotent: columns are only added if absent.

Called automatically from create_schema() after create_all() so both
fresh installs and stores created before sync existed are handled
without manual steps.
"""
from sqlalchemy import text

SYNCABLE_TABLES = ("workspaces", "files", "reviews", "review_files", "issues")


def run_migrations(engine) -> None:
    """Apply all pending schema migrations.

    Safe to call multiple times; checks column existence before altering.
    Supports SQLite only (uses PRAGMA table_info).

    Args:
        engine: SQLAlchemy engine (SQLModel create_engine result).
    """
    with engine.connect() as conn:
        # Sync state: owned by the sync subsystem, NULL means never pushed
        for table in SYNCABLE_TABLES:
            _add_column_if_missing(conn, table, "synced_at", "TIMESTAMP")

        # SyncLog: classified failure kind (early stores only kept the message)
        _add_column_if_missing(conn, "sync_logs", "error_type", "TEXT")

        conn.execute(
            text(
                "CREATE INDEX IF NOT EXISTS idx_sync_logs_entity_completed "
                "ON sync_logs(entity_type, entity_id, completed_at DESC)"
            )
        )
        conn.commit()


def _add_column_if_missing(conn, table: str, column: str, col_type: str) -> None:
    """Add a column to a table if it doesn't already exist.

    Args:
        conn: SQLAlchemy connection.
        table: Table name (lowercase, as SQLite stores it).
        column: Column name to add.
        col_type: SQLite type string, e.g. "INTEGER", "TIMESTAMP", "TEXT".
    """
    result = conn.execute(text(f"PRAGMA table_info({table})"))
    existing_columns = {row[1] for row in result}
    if column not in existing_columns:
        conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {column} {col_type}"))
