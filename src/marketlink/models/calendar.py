"""CalendarEvent and Match - correlation inputs and outputs."""

from __future__ import annotations

import datetime as dt

from pydantic import BaseModel, ConfigDict, Field

from marketlink.models.market import MarketRecord, Platform


class CalendarEvent(BaseModel):
    """Curated real-world event. Immutable once loaded."""

    model_config = ConfigDict(frozen=True)

    name: str
    date: dt.date | None = None
    category: str | None = None
    subcategory: str | None = None
    description: str = ""
    keywords: tuple[str, ...] = Field(default_factory=tuple)


class Match(BaseModel):
    """Scored event-market pair. Derived, never persisted."""

    event: CalendarEvent
    market: MarketRecord
    score: int
    platform: Platform
