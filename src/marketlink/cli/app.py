"""Root CLI app - entry point and command registration."""

from pathlib import Path

import typer

from marketlink.config import configure_logging, get_settings

app = typer.Typer(
    name="mlink",
    help="marketlink - Prediction market ingestion and event calendar correlation.",
    no_args_is_help=True,
)


@app.callback()
def main(
    ctx: typer.Context,
    config_dir: Path | None = typer.Option(
        None, "--config-dir", "-C", help="Config directory (default: ./config or package config)"
    ),
    profile: str | None = typer.Option(
        None, "--profile", "-p", help="Config profile (e.g. dev) to overlay on default.toml"
    ),
) -> None:
    """Configure logging and store options in context."""
    settings = get_settings(profile, config_dir)
    configure_logging(settings)
    ctx.obj = {"settings": settings, "config_dir": config_dir, "profile": profile}


# Subcommands registered from other modules
from marketlink.cli import correlate, sources, sync  # noqa: E402

app.add_typer(sources.app, name="sources")
app.add_typer(sync.app, name="sync")
app.command("correlate")(correlate.correlate_cmd)


def run() -> None:
    app()


if __name__ == "__main__":
    run()
