"""Layered TOML configuration: default.toml, then an optional profile overlay."""

from __future__ import annotations

import logging
import os
import sys
import tomllib
from pathlib import Path
from typing import Any

from marketlink.errors import ConfigurationError

# Searched in order: ./config, then the config/ directory next to src/
_PACKAGE_CONFIG = Path(__file__).resolve().parents[3] / "config"
PROFILE_ENV = "MARKETLINK_PROFILE"


def _read_toml(path: Path) -> dict[str, Any]:
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"invalid config file {path}: {e}") from e


def _overlay(base: dict[str, Any], top: dict[str, Any]) -> dict[str, Any]:
    """Merge top onto base table by table; scalar and list values in top replace base."""
    merged = dict(base)
    for key, value in top.items():
        current = merged.get(key)
        merged[key] = _overlay(current, value) if isinstance(current, dict) and isinstance(value, dict) else value
    return merged


def _find_config_dir(config_dir: Path | None = None) -> Path:
    if config_dir is not None:
        return Path(config_dir)
    cwd_config = Path.cwd() / "config"
    return cwd_config if cwd_config.is_dir() else _PACKAGE_CONFIG


def load_config(profile: str | None = None, config_dir: Path | None = None) -> dict[str, Any]:
    """Return the merged config tables. Empty when the directory has no default.toml.

    The profile falls back to $MARKETLINK_PROFILE; a named profile without a file is ignored.
    """
    directory = _find_config_dir(config_dir)
    default_path = directory / "default.toml"
    if not default_path.is_file():
        return {}
    tables = _read_toml(default_path)
    profile = profile or os.environ.get(PROFILE_ENV)
    if profile:
        profile_path = directory / f"{profile}.toml"
        if profile_path.is_file():
            tables = _overlay(tables, _read_toml(profile_path))
    return tables


def get_settings(profile: str | None = None, config_dir: Path | None = None) -> Settings:
    return Settings.from_dict(load_config(profile, config_dir))


class Settings:
    """Typed view over the merged config tables. Every accessor has a default, so Settings() needs no file."""

    def __init__(
        self,
        *,
        storage: dict[str, Any] | None = None,
        http: dict[str, Any] | None = None,
        polymarket: dict[str, Any] | None = None,
        fortytwo: dict[str, Any] | None = None,
        calendar: dict[str, Any] | None = None,
        logging: dict[str, Any] | None = None,
    ):
        self.storage = storage or {}
        self.http = http or {}
        self.polymarket = polymarket or {}
        self.fortytwo = fortytwo or {}
        self.calendar = calendar or {}
        self.logging = logging or {}

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Settings:
        return cls(
            storage=raw.get("storage"),
            http=raw.get("http"),
            polymarket=raw.get("polymarket"),
            fortytwo=raw.get("fortytwo"),
            calendar=raw.get("calendar"),
            logging=raw.get("logging"),
        )

    @property
    def db_path(self) -> str:
        return self.storage.get("db_path", "data/marketlink.duckdb")

    @property
    def pool_size(self) -> int:
        return int(self.storage.get("pool_size", 4))

    @property
    def stale_run_timeout_sec(self) -> int:
        return int(self.storage.get("stale_run_timeout_sec", 3600))

    @property
    def http_timeout_sec(self) -> float:
        return float(self.http.get("timeout_sec", 30.0))

    @property
    def rate_limit_rps(self) -> float:
        return float(self.http.get("rate_limit_rps", 2.0))

    @property
    def polymarket_api_base(self) -> str:
        return self.polymarket.get("api_base", "https://gamma-api.polymarket.com")

    @property
    def fortytwo_graphql_endpoint(self) -> str:
        # Env var wins so deployments can point at a different indexer without a profile
        return os.environ.get("FORTYTWO_GRAPHQL_ENDPOINT") or self.fortytwo.get(
            "graphql_endpoint", ""
        )

    @property
    def fortytwo_volume_decimals(self) -> int:
        return int(self.fortytwo.get("volume_decimals", 0))

    @property
    def calendar_path(self) -> str:
        return self.calendar.get("path", "config/calendar.toml")

    def platform_section(self, api_type: str) -> dict[str, Any]:
        """Return the raw config table for a platform api_type ('polymarket', '42space')."""
        if api_type == "polymarket":
            return self.polymarket
        if api_type in ("42space", "fortytwo"):
            return self.fortytwo
        return {}

    @property
    def logging_level(self) -> str:
        return self.logging.get("level", "INFO").upper()

    @property
    def logging_format(self) -> str:
        return self.logging.get("format", "console")

    @property
    def logging_level_num(self) -> int:
        return getattr(logging, self.logging_level, logging.INFO)


def configure_logging(settings: Settings) -> None:
    """Set up structlog once per process. Log lines go to stderr; stdout is left to CLI output."""
    import structlog

    shared = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    if settings.logging_format == "json":
        renderer = [structlog.processors.dict_tracebacks, structlog.processors.JSONRenderer()]
    else:
        renderer = [structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())]

    structlog.configure(
        processors=shared + renderer,
        wrapper_class=structlog.make_filtering_bound_logger(settings.logging_level_num),
        logger_factory=structlog.WriteLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )
