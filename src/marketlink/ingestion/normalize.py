"""Total parsing helpers shared by platform adapters. None of these raise on bad input."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

from marketlink.models import OutcomeRecord


def to_float(value: Any, default: float = 0.0) -> float:
    """Parse a number that may arrive as str/int/float/None; default on anything else."""
    if value is None or isinstance(value, bool):
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def to_optional_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def to_probability(value: Any) -> float | None:
    """A float in [0, 1], or None."""
    p = to_optional_float(value)
    if p is None or not 0.0 <= p <= 1.0:
        return None
    return p


def scale_decimals(value: float, decimals: int) -> float:
    """Convert base units (e.g. wei with decimals=18) to decimal units."""
    if decimals <= 0:
        return value
    return value / (10**decimals)


def parse_json_list(value: Any) -> list[Any]:
    """Lists pass through; JSON-encoded lists are decoded; anything else is []."""
    if isinstance(value, list):
        return value
    if isinstance(value, str) and value:
        try:
            decoded = json.loads(value)
        except (json.JSONDecodeError, TypeError):
            return []
        return decoded if isinstance(decoded, list) else []
    return []


def parse_timestamp(value: Any) -> datetime | None:
    """ISO-8601 strings, epoch seconds or epoch milliseconds -> aware UTC datetime."""
    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, str):
        text = value.strip()
        if text.lstrip("-").isdigit():
            value = int(text)
        else:
            try:
                parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
            except ValueError:
                return None
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return parsed.astimezone(timezone.utc)
    if isinstance(value, (int, float)):
        seconds = value / 1000 if abs(value) >= 1e11 else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    return None


def parse_tags(value: Any) -> list[str]:
    """Tags as plain strings or {'label': ...}/{'name': ...} objects."""
    tags = []
    for item in parse_json_list(value):
        if isinstance(item, str):
            tags.append(item)
        elif isinstance(item, dict):
            label = item.get("label") or item.get("name")
            if isinstance(label, str):
                tags.append(label)
    return tags


def is_affirmative(outcome: OutcomeRecord) -> bool:
    return outcome.name.strip().lower() == "yes" or outcome.outcome_id == "1"


def affirmative_probability(outcomes: list[OutcomeRecord]) -> float | None:
    """Probability of the 'Yes' branch (by name, or ordinal id '1'); None if absent."""
    for outcome in outcomes:
        if is_affirmative(outcome):
            return outcome.probability
    return None
