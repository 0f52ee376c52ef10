"""DuckDB schema for saved settings."""

import duckdb


def ensure_schema(conn: duckdb.DuckDBPyConnection) -> None:
    """Create tables if they do not exist."""
    conn.execute("""
        CREATE TABLE IF NOT EXISTS saved_settings (
            name          VARCHAR PRIMARY KEY,
            payload       JSON NOT NULL,
            saved_at      TIMESTAMP NOT NULL,
            last_used_at  TIMESTAMP
        )
    """)

    # Migration for existing databases
    _migrate(conn)


def _migrate(conn: duckdb.DuckDBPyConnection) -> None:
    """Add columns that may not exist in older schemas.

    Databases created before recently-used tracking have no ``last_used_at``.
    """
    migrations = [
        "ALTER TABLE saved_settings ADD COLUMN IF NOT EXISTS last_used_at TIMESTAMP",
    ]
    for sql in migrations:
        conn.execute(sql)
