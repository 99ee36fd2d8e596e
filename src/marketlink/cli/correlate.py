"""Correlate command: score the event calendar against stored markets."""

from __future__ import annotations

import datetime as dt
from pathlib import Path

import typer

from marketlink.correlation import correlate, load_calendar
from marketlink.errors import ConfigurationError
from marketlink.storage.db import get_connection, init_schema
from marketlink.storage.markets import list_market_records
from marketlink.urls import format_address


def correlate_cmd(
    ctx: typer.Context,
    calendar: Path | None = typer.Option(None, "--calendar", help="Calendar TOML (default from config)"),
    upcoming: bool = typer.Option(False, "--upcoming", help="Only events dated today or later"),
    min_score: int = typer.Option(2, "--min-score", help="Keep matches scoring above this"),
    limit: int = typer.Option(50, "--limit", "-n"),
) -> None:
    """Print calendar events matched to stored markets, best first."""
    settings = ctx.obj["settings"]
    try:
        events = load_calendar(calendar or settings.calendar_path)
    except ConfigurationError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(1)
    conn = get_connection(settings.db_path)
    init_schema(conn)
    try:
        markets = list_market_records(conn, active_only=True)
    finally:
        conn.close()
    reference = dt.date.today() if upcoming else None
    matches = correlate(events, markets, reference_date=reference, min_score=min_score)
    for m in matches[:limit]:
        title = m.market.title[:60]
        typer.echo(f"  [{m.score:>2}] {m.event.name[:32]:<32}  {m.platform.value:<10}  {title}")
        typer.echo(f"        {m.market.source_url or format_address(m.market.external_id)}")
    typer.echo(f"Total: {len(matches)} matches ({len(events)} events x {len(markets)} markets)")
