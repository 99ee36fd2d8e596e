"""sync_log audit rows: one per sync run, moved to a terminal state exactly once."""

from __future__ import annotations

from typing import TYPE_CHECKING

from marketlink.models import SyncRun, SyncStatus

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection

_COLUMNS = [
    "id", "source_id", "sync_type", "status", "started_at", "completed_at",
    "events_processed", "events_added", "events_updated", "error_message",
]
_SELECT = f"SELECT {', '.join(_COLUMNS)} FROM sync_log"


def start_run(conn: DuckDBPyConnection, source_id: int, started_at: int, sync_type: str = "manual") -> int:
    """Insert a 'started' row and return its id."""
    return conn.execute(
        """
        INSERT INTO sync_log (source_id, sync_type, status, started_at)
        VALUES (?, ?, ?, ?)
        RETURNING id
        """,
        [source_id, sync_type, SyncStatus.STARTED.value, started_at],
    ).fetchone()[0]


def complete_run(
    conn: DuckDBPyConnection,
    run_id: int,
    completed_at: int,
    processed: int,
    added: int,
    updated: int,
) -> bool:
    """Mark a started run completed. Returns False if it had already left 'started'."""
    row = conn.execute(
        """
        UPDATE sync_log SET
            status = ?,
            completed_at = ?,
            events_processed = ?,
            events_added = ?,
            events_updated = ?
        WHERE id = ? AND status = ?
        RETURNING id
        """,
        [SyncStatus.COMPLETED.value, completed_at, processed, added, updated, run_id, SyncStatus.STARTED.value],
    ).fetchone()
    return row is not None


def fail_run(
    conn: DuckDBPyConnection,
    run_id: int,
    completed_at: int,
    error_message: str,
    processed: int = 0,
    added: int = 0,
    updated: int = 0,
) -> bool:
    """Mark a started run failed with its error message and the progress made so far."""
    row = conn.execute(
        """
        UPDATE sync_log SET
            status = ?,
            completed_at = ?,
            error_message = ?,
            events_processed = ?,
            events_added = ?,
            events_updated = ?
        WHERE id = ? AND status = ?
        RETURNING id
        """,
        [
            SyncStatus.FAILED.value, completed_at, error_message, processed, added, updated,
            run_id, SyncStatus.STARTED.value,
        ],
    ).fetchone()
    return row is not None


def reconcile_stale_runs(conn: DuckDBPyConnection, now: int, timeout_ms: int) -> int:
    """Fail 'started' runs older than timeout_ms (process crashed or was killed mid-run)."""
    rows = conn.execute(
        """
        UPDATE sync_log SET
            status = ?,
            completed_at = ?,
            error_message = 'stale run reconciled: no terminal state recorded'
        WHERE status = ? AND started_at < ?
        RETURNING id
        """,
        [SyncStatus.FAILED.value, now, SyncStatus.STARTED.value, now - timeout_ms],
    ).fetchall()
    return len(rows)


def get_run(conn: DuckDBPyConnection, run_id: int) -> SyncRun | None:
    row = conn.execute(_SELECT + " WHERE id = ?", [run_id]).fetchone()
    return _to_run(row) if row else None


def list_runs(conn: DuckDBPyConnection, source_id: int | None = None, limit: int = 20) -> list[SyncRun]:
    """Most recent runs first."""
    if source_id is None:
        rows = conn.execute(_SELECT + " ORDER BY id DESC LIMIT ?", [limit]).fetchall()
    else:
        rows = conn.execute(
            _SELECT + " WHERE source_id = ? ORDER BY id DESC LIMIT ?", [source_id, limit]
        ).fetchall()
    return [_to_run(r) for r in rows]


def _to_run(row: tuple) -> SyncRun:
    data = dict(zip(_COLUMNS, row))
    for key in ("events_processed", "events_added", "events_updated"):
        data[key] = data[key] or 0
    return SyncRun(**data)
