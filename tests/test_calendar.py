"""Calendar loading and event categorization."""

import datetime as dt
from pathlib import Path

import pytest

from marketlink.correlation import categorize_event, load_calendar
from marketlink.errors import ConfigurationError

SHIPPED_CALENDAR = Path(__file__).resolve().parent.parent / "config" / "calendar.toml"


def test_categorize_event():
    assert categorize_event("Presidential Election") == "Politics"
    assert categorize_event("Winter Olympics Opening") == "Sports"
    assert categorize_event("Something", "bitcoin network upgrade") == "Crypto"
    assert categorize_event("Town Picnic") == "General"


def test_load_calendar(tmp_path):
    path = tmp_path / "calendar.toml"
    path.write_text(
        """
[[events]]
name = "Fed Rate Decision"
date = 2025-12-10
category = "Economics"
keywords = ["fed", "fomc"]

[[events]]
name = "Winter Olympics Opening"
date = "2026-02-06"
description = "Opening ceremony in Milan"

[[events]]
date = 2026-01-01
description = "entry without a name"

[[events]]
name = "Bad Date"
date = "sometime soon"
"""
    )
    events = load_calendar(path)
    assert [e.name for e in events] == ["Fed Rate Decision", "Winter Olympics Opening"]
    fed, olympics = events
    assert fed.date == dt.date(2025, 12, 10)
    assert fed.keywords == ("fed", "fomc")
    assert olympics.category == "Sports"
    assert olympics.date == dt.date(2026, 2, 6)
    assert olympics.keywords == ()


def test_missing_calendar_file(tmp_path):
    with pytest.raises(ConfigurationError):
        load_calendar(tmp_path / "nope.toml")


def test_invalid_toml(tmp_path):
    path = tmp_path / "broken.toml"
    path.write_text("[[events]\nname = ")
    with pytest.raises(ConfigurationError):
        load_calendar(path)


def test_shipped_calendar_loads():
    events = load_calendar(SHIPPED_CALENDAR)
    assert len(events) == 8
    assert all(e.category for e in events)
