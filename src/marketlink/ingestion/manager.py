"""Sync orchestrator - drives an adapter through pagination into the upsert engine."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Protocol

import duckdb
import structlog

from marketlink.config import Settings
from marketlink.errors import ConfigurationError, PersistenceError, SyncCancelled
from marketlink.ingestion.base import PlatformAdapter
from marketlink.ingestion.registry import create_adapter
from marketlink.models import SyncResult, UpsertOutcome
from marketlink.storage.db import ConnectionPool
from marketlink.storage.markets import MarketUpsertEngine, now_ms
from marketlink.storage.sources import get_source, list_sources
from marketlink.storage.sync_log import complete_run, fail_run, reconcile_stale_runs, start_run
from marketlink.storage.taxonomy import seed_categories

log = structlog.get_logger(__name__)

AdapterFactory = Callable[..., PlatformAdapter]


class CancelSignal(Protocol):
    def is_set(self) -> bool: ...


class SyncOrchestrator:
    """Runs sync jobs for configured sources and keeps the sync_log audit trail.

    Each record is written in its own transaction, so progress committed before a
    failure stays committed; the run itself is then marked failed and the error
    re-raised.
    """

    def __init__(
        self,
        pool: ConnectionPool,
        settings: Settings,
        adapter_factory: AdapterFactory = create_adapter,
        engine: MarketUpsertEngine | None = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.pool = pool
        self.settings = settings
        self.adapter_factory = adapter_factory
        self.clock = clock
        self.engine = engine or MarketUpsertEngine(pool, clock=clock)

    def sync_source(
        self,
        source_id: int,
        cancel: CancelSignal | None = None,
        sync_type: str = "manual",
    ) -> SyncResult:
        """Sync one source end to end. Returns counts; raises on any unrecoverable error."""
        with self.pool.connection() as conn:
            source = get_source(conn, source_id)
        if source is None:
            raise ConfigurationError(f"unknown event source {source_id}")
        with self.pool.connection() as conn:
            run_id = start_run(conn, source_id, self.clock(), sync_type=sync_type)
        run_log = log.bind(source_id=source_id, run_id=run_id, api_type=source["api_type"])
        run_log.info("sync_started")

        result = SyncResult(source_id=source_id, run_id=run_id)
        try:
            adapter = self.adapter_factory(source["api_type"], self.settings, source.get("base_url"))
            self._seed_categories(adapter)
            self._run_pages(adapter, source_id, result, cancel)
        except BaseException as e:
            message = str(e) or type(e).__name__
            self._mark_failed(run_id, message, result)
            run_log.error(
                "sync_failed",
                error=message,
                processed=result.processed,
                added=result.added,
                updated=result.updated,
            )
            raise

        with self.pool.connection() as conn:
            complete_run(conn, run_id, self.clock(), result.processed, result.added, result.updated)
        run_log.info(
            "sync_completed",
            processed=result.processed,
            added=result.added,
            updated=result.updated,
            degraded=result.degraded,
        )
        return result

    def _seed_categories(self, adapter: PlatformAdapter) -> None:
        if not adapter.seed_categories:
            return
        try:
            seed_categories(self.pool, list(adapter.seed_categories))
        except duckdb.Error as e:
            raise PersistenceError(f"seeding categories failed: {e}") from e

    def _run_pages(
        self,
        adapter: PlatformAdapter,
        source_id: int,
        result: SyncResult,
        cancel: CancelSignal | None,
    ) -> None:
        cursor = 0
        while result.processed < adapter.max_records:
            _check_cancelled(cancel)
            page = adapter.fetch_page(cursor)
            result.degraded += page.degraded
            for record in page.records:
                _check_cancelled(cancel)
                outcome = self.engine.upsert(
                    source_id,
                    record,
                    policy=adapter.policy,
                    fallback_category=adapter.fallback_category,
                )
                result.processed += 1
                if outcome is UpsertOutcome.INSERTED:
                    result.added += 1
                elif outcome is UpsertOutcome.UPDATED:
                    result.updated += 1
                if result.processed >= adapter.max_records:
                    log.info("sync_ceiling_reached", source_id=source_id, max_records=adapter.max_records)
                    return
            if page.done:
                return
            cursor = page.next_cursor

    def _mark_failed(self, run_id: int, message: str, result: SyncResult) -> None:
        try:
            with self.pool.connection() as conn:
                fail_run(
                    conn,
                    run_id,
                    self.clock(),
                    message,
                    processed=result.processed,
                    added=result.added,
                    updated=result.updated,
                )
        except (duckdb.Error, PersistenceError) as e:
            # Left 'started'; reconcile_stale_runs will close it out later.
            log.error("sync_log_update_failed", run_id=run_id, error=str(e))

    def sync_all(self, max_workers: int = 1) -> dict[int, SyncResult | Exception]:
        """Sync every active source. One source failing does not stop the others."""
        with self.pool.connection() as conn:
            source_ids = [s["id"] for s in list_sources(conn, active_only=True)]
        outcomes: dict[int, SyncResult | Exception] = {}

        def run_one(source_id: int) -> None:
            try:
                outcomes[source_id] = self.sync_source(source_id, sync_type="scheduled")
            except Exception as e:
                log.error("source_sync_failed", source_id=source_id, error=str(e))
                outcomes[source_id] = e

        if max_workers <= 1:
            for source_id in source_ids:
                run_one(source_id)
        else:
            with ThreadPoolExecutor(max_workers=max_workers) as executor:
                list(executor.map(run_one, source_ids))
        return {sid: outcomes[sid] for sid in source_ids}

    def reconcile_stale_runs(self, timeout_sec: int | None = None) -> int:
        """Fail runs stuck in 'started' for longer than the timeout. Returns how many."""
        timeout = self.settings.stale_run_timeout_sec if timeout_sec is None else timeout_sec
        with self.pool.connection() as conn:
            count = reconcile_stale_runs(conn, self.clock(), timeout * 1000)
        if count:
            log.warning("stale_runs_reconciled", count=count)
        return count


def _check_cancelled(cancel: CancelSignal | None) -> None:
    if cancel is not None and cancel.is_set():
        raise SyncCancelled("cancelled")
