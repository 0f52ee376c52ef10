"""CRUD operations for saved settings in DuckDB."""

import json
from datetime import UTC, datetime

import duckdb

from face_cropper.config import RECENT_SETTINGS_LIMIT
from face_cropper.models import Settings, SettingsSnapshot

_COLUMNS = "name, payload, saved_at"


def save_settings(
    conn: duckdb.DuckDBPyConnection,
    snapshot: SettingsSnapshot,
) -> None:
    """Insert or overwrite a named configuration and mark it as recently used."""
    saved_at = _to_db_time(snapshot.timestamp)
    conn.execute(
        """
        INSERT INTO saved_settings (name, payload, saved_at, last_used_at)
        VALUES (?, ?, ?, ?)
        ON CONFLICT (name) DO UPDATE SET
            payload = EXCLUDED.payload,
            saved_at = EXCLUDED.saved_at,
            last_used_at = EXCLUDED.last_used_at
        """,
        [
            snapshot.name,
            json.dumps(snapshot.settings.to_dict()),
            saved_at,
            saved_at,
        ],
    )


def get_settings(conn: duckdb.DuckDBPyConnection, name: str) -> SettingsSnapshot | None:
    """Look up a configuration by name."""
    result = conn.execute(
        f"SELECT {_COLUMNS} FROM saved_settings WHERE name = ?", [name]
    ).fetchone()
    if result is None:
        return None
    return _row_to_snapshot(result)


def list_settings(conn: duckdb.DuckDBPyConnection) -> list[SettingsSnapshot]:
    """All saved configurations ordered by name."""
    rows = conn.execute(f"SELECT {_COLUMNS} FROM saved_settings ORDER BY name").fetchall()
    return [_row_to_snapshot(row) for row in rows]


def list_recent(
    conn: duckdb.DuckDBPyConnection,
    limit: int = RECENT_SETTINGS_LIMIT,
) -> list[SettingsSnapshot]:
    """Most recently used configurations, newest first."""
    rows = conn.execute(
        f"""
        SELECT {_COLUMNS} FROM saved_settings
        WHERE last_used_at IS NOT NULL
        ORDER BY last_used_at DESC, name
        LIMIT ?
        """,
        [limit],
    ).fetchall()
    return [_row_to_snapshot(row) for row in rows]


def touch_settings(
    conn: duckdb.DuckDBPyConnection,
    name: str,
    used_at: datetime | None = None,
) -> bool:
    """Record that a configuration was loaded. Returns False if it does not exist."""
    if get_settings(conn, name) is None:
        return False
    conn.execute(
        "UPDATE saved_settings SET last_used_at = ? WHERE name = ?",
        [_to_db_time(used_at or datetime.now(UTC)), name],
    )
    return True


def delete_settings(conn: duckdb.DuckDBPyConnection, name: str) -> bool:
    """Delete a configuration. Returns False if it does not exist."""
    if get_settings(conn, name) is None:
        return False
    conn.execute("DELETE FROM saved_settings WHERE name = ?", [name])
    return True


def _to_db_time(value: datetime) -> datetime:
    """Naive UTC datetime for a TIMESTAMP column."""
    if value.tzinfo is not None:
        value = value.astimezone(UTC).replace(tzinfo=None)
    return value


def _row_to_snapshot(row: tuple) -> SettingsSnapshot:
    name, payload, saved_at = row
    data = json.loads(payload) if isinstance(payload, str) else payload
    return SettingsSnapshot(
        name=name,
        settings=Settings.from_dict(data),
        timestamp=saved_at.replace(tzinfo=UTC),
    )
