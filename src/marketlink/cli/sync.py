"""Sync subcommand: run, all, reconcile, history."""

from __future__ import annotations

import signal
import threading

import typer

from marketlink.errors import MarketLinkError
from marketlink.ingestion.manager import SyncOrchestrator
from marketlink.storage.db import ConnectionPool
from marketlink.storage.sync_log import list_runs

app = typer.Typer(help="Sync markets from sources into the local store")


def _orchestrator(ctx: typer.Context) -> SyncOrchestrator:
    settings = ctx.obj["settings"]
    pool = ConnectionPool(settings.db_path, size=settings.pool_size)
    return SyncOrchestrator(pool, settings)


@app.command("run")
def run_cmd(ctx: typer.Context, source_id: int = typer.Argument(..., help="event_source id")) -> None:
    """Sync one source now (Ctrl+C cancels between records)."""
    orchestrator = _orchestrator(ctx)
    cancel = threading.Event()
    previous = signal.signal(signal.SIGINT, lambda *_: cancel.set())
    try:
        result = orchestrator.sync_source(source_id, cancel=cancel)
    except MarketLinkError as e:
        typer.echo(f"Sync failed: {e}", err=True)
        raise typer.Exit(1)
    finally:
        signal.signal(signal.SIGINT, previous)
        orchestrator.pool.close()
    typer.echo(
        f"Source {source_id}: {result.processed} processed, {result.added} added, "
        f"{result.updated} updated, {result.degraded} skipped as malformed"
    )


@app.command("all")
def all_cmd(
    ctx: typer.Context,
    workers: int = typer.Option(1, "--workers", "-w", help="Sources synced concurrently"),
) -> None:
    """Sync every active source; failures are reported per source."""
    orchestrator = _orchestrator(ctx)
    try:
        outcomes = orchestrator.sync_all(max_workers=workers)
    finally:
        orchestrator.pool.close()
    failed = 0
    for source_id, outcome in outcomes.items():
        if isinstance(outcome, Exception):
            failed += 1
            typer.echo(f"  {source_id:>3}  FAILED  {outcome}")
        else:
            typer.echo(f"  {source_id:>3}  ok      {outcome.processed} processed, {outcome.added} added, {outcome.updated} updated")
    if failed:
        raise typer.Exit(1)


@app.command("reconcile")
def reconcile(
    ctx: typer.Context,
    timeout: int = typer.Option(None, "--timeout", help="Seconds after which a 'started' run is stale"),
) -> None:
    """Mark runs stuck in 'started' as failed."""
    orchestrator = _orchestrator(ctx)
    try:
        count = orchestrator.reconcile_stale_runs(timeout)
    finally:
        orchestrator.pool.close()
    typer.echo(f"Reconciled {count} stale runs.")


@app.command("history")
def history(
    ctx: typer.Context,
    source_id: int = typer.Option(None, "--source", "-s", help="Only this source"),
    limit: int = typer.Option(20, "--limit", "-n"),
) -> None:
    """Show recent sync runs."""
    orchestrator = _orchestrator(ctx)
    try:
        with orchestrator.pool.connection() as conn:
            runs = list_runs(conn, source_id=source_id, limit=limit)
    finally:
        orchestrator.pool.close()
    for r in runs:
        line = (
            f"  {r.id:>4}  src={r.source_id:<3}  {r.status.value:<9}  "
            f"{r.events_processed}/{r.events_added}/{r.events_updated}"
        )
        if r.error_message:
            line += f"  {r.error_message[:60]}"
        typer.echo(line)
