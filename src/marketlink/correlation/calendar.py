"""Curated event calendar: TOML loading and keyword categorization."""

from __future__ import annotations

import datetime as dt
import tomllib
from pathlib import Path
from typing import Any

import pydantic
import structlog

from marketlink.errors import ConfigurationError
from marketlink.models import CalendarEvent

log = structlog.get_logger(__name__)

EVENT_CATEGORY_KEYWORDS: dict[str, tuple[str, ...]] = {
    "Politics": ("election", "vote", "president", "governor", "senate", "congress", "parliament"),
    "Sports": ("super bowl", "world cup", "olympics", "championship", "finals", "nba", "nfl", "fifa"),
    "Crypto": ("bitcoin", "ethereum", "crypto", "defi", "nft", "blockchain", "halving"),
    "Technology": ("apple", "google", "microsoft", "ai", "gpt", "launch", "release"),
    "Economics": ("fed", "interest rate", "inflation", "gdp", "recession", "earnings"),
    "Entertainment": ("oscars", "grammys", "movie", "film", "album", "concert"),
    "Science": ("nasa", "space", "eclipse", "discovery", "research"),
}


def categorize_event(name: str, description: str = "") -> str:
    """First category whose keywords appear in name + description, else 'General'."""
    text = f"{name} {description}".lower()
    for category, keywords in EVENT_CATEGORY_KEYWORDS.items():
        if any(keyword in text for keyword in keywords):
            return category
    return "General"


def _parse_date(value: Any) -> dt.date | None:
    if value is None or value == "":
        return None
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    return dt.date.fromisoformat(str(value))


def parse_event(raw: dict[str, Any]) -> CalendarEvent:
    """Build a CalendarEvent from a calendar table, inferring category when absent."""
    name = str(raw["name"])
    description = str(raw.get("description") or "")
    return CalendarEvent(
        name=name,
        date=_parse_date(raw.get("date")),
        category=raw.get("category") or categorize_event(name, description),
        subcategory=raw.get("subcategory"),
        description=description,
        keywords=tuple(str(k) for k in raw.get("keywords") or ()),
    )


def load_calendar(path: str | Path) -> list[CalendarEvent]:
    """Load [[events]] from a TOML calendar file. Malformed entries are skipped."""
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"calendar file not found: {path}")
    with open(path, "rb") as f:
        try:
            data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigurationError(f"invalid calendar file {path}: {e}") from e
    events = []
    for raw in data.get("events", []):
        try:
            events.append(parse_event(raw))
        except (KeyError, TypeError, ValueError, pydantic.ValidationError) as e:
            log.warning("calendar_entry_skipped", path=str(path), entry=raw.get("name"), error=str(e))
    log.debug("calendar_loaded", path=str(path), events=len(events))
    return events
