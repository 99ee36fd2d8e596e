"""event_source rows: which upstream platforms to sync."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection

_COLUMNS = ["id", "name", "api_type", "base_url", "is_active", "created_at"]


def add_source(
    conn: DuckDBPyConnection,
    name: str,
    api_type: str,
    base_url: str | None = None,
    is_active: bool = True,
) -> int:
    """Register a source and return its id."""
    return conn.execute(
        """
        INSERT INTO event_source (name, api_type, base_url, is_active, created_at)
        VALUES (?, ?, ?, ?, ?)
        RETURNING id
        """,
        [name, api_type, base_url, is_active, int(time.time() * 1000)],
    ).fetchone()[0]


def get_source(conn: DuckDBPyConnection, source_id: int) -> dict[str, Any] | None:
    row = conn.execute(
        "SELECT id, name, api_type, base_url, is_active, created_at FROM event_source WHERE id = ?",
        [source_id],
    ).fetchone()
    return dict(zip(_COLUMNS, row)) if row else None


def list_sources(conn: DuckDBPyConnection, active_only: bool = False) -> list[dict[str, Any]]:
    sql = "SELECT id, name, api_type, base_url, is_active, created_at FROM event_source"
    if active_only:
        sql += " WHERE is_active = true"
    rows = conn.execute(sql + " ORDER BY id").fetchall()
    return [dict(zip(_COLUMNS, r)) for r in rows]


def set_source_active(conn: DuckDBPyConnection, source_id: int, is_active: bool) -> None:
    conn.execute("UPDATE event_source SET is_active = ? WHERE id = ?", [is_active, source_id])
