"""Sources subcommand: add, list, enable/disable."""

from __future__ import annotations

import typer

from marketlink.ingestion.registry import ADAPTERS
from marketlink.storage.db import get_connection, init_schema
from marketlink.storage.sources import add_source, list_sources, set_source_active

app = typer.Typer(help="Configure upstream market sources")


@app.command("add")
def add(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Display name, e.g. 'Polymarket'"),
    api_type: str = typer.Argument(..., help=f"One of: {', '.join(sorted(ADAPTERS))}"),
    base_url: str | None = typer.Option(None, "--base-url", help="Override the configured endpoint"),
    inactive: bool = typer.Option(False, "--inactive", help="Register without scheduling it"),
) -> None:
    """Register a source."""
    if api_type.lower() not in ADAPTERS:
        typer.echo(f"Unknown api_type {api_type!r}. Known: {', '.join(sorted(ADAPTERS))}")
        raise typer.Exit(1)
    settings = ctx.obj["settings"]
    conn = get_connection(settings.db_path)
    init_schema(conn)
    try:
        source_id = add_source(conn, name, api_type.lower(), base_url=base_url, is_active=not inactive)
        typer.echo(f"Added source {source_id}: {name} ({api_type})")
    finally:
        conn.close()


@app.command("list")
def list_cmd(ctx: typer.Context) -> None:
    """List configured sources."""
    settings = ctx.obj["settings"]
    conn = get_connection(settings.db_path)
    init_schema(conn)
    try:
        rows = list_sources(conn)
        for r in rows:
            flag = "active" if r["is_active"] else "inactive"
            typer.echo(f"  {r['id']:>3}  {r['api_type']:<10}  {flag:<8}  {r['name']}")
        typer.echo(f"Total: {len(rows)} sources")
    finally:
        conn.close()


@app.command("enable")
def enable(ctx: typer.Context, source_id: int) -> None:
    _set_active(ctx, source_id, True)


@app.command("disable")
def disable(ctx: typer.Context, source_id: int) -> None:
    _set_active(ctx, source_id, False)


def _set_active(ctx: typer.Context, source_id: int, is_active: bool) -> None:
    settings = ctx.obj["settings"]
    conn = get_connection(settings.db_path)
    init_schema(conn)
    try:
        set_source_active(conn, source_id, is_active)
        typer.echo(f"Source {source_id} {'enabled' if is_active else 'disabled'}.")
    finally:
        conn.close()
