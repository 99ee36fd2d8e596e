"""SyncRun audit entity and per-record upsert outcomes."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel


class SyncStatus(str, Enum):
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"


class UpsertOutcome(str, Enum):
    INSERTED = "inserted"
    UPDATED = "updated"
    SKIPPED = "skipped"


class SyncRun(BaseModel):
    """One row of sync_log."""

    id: int
    source_id: int
    sync_type: str = "manual"
    status: SyncStatus
    started_at: int  # ms epoch
    completed_at: int | None = None
    events_processed: int = 0
    events_added: int = 0
    events_updated: int = 0
    error_message: str | None = None


class SyncResult(BaseModel):
    """Summary returned to the caller of a successful sync run."""

    source_id: int
    run_id: int | None = None
    processed: int = 0
    added: int = 0
    updated: int = 0
    degraded: int = 0
