"""MarketRecord, OutcomeRecord - canonical, source-agnostic market entities."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator


class Platform(str, Enum):
    """External platforms with an ingestion adapter."""

    POLYMARKET = "polymarket"
    FORTYTWO = "42space"


class MarketStatus(str, Enum):
    ACTIVE = "active"
    PENDING = "pending"
    RESOLVED = "resolved"
    DRAFT = "draft"


class OutcomeRecord(BaseModel):
    """Single outcome (e.g. Yes/No) of a market, in display order."""

    name: str
    probability: float | None = Field(None, ge=0, le=1)
    outcome_id: str | None = None  # platform ordinal/id when the source exposes one


class MarketRecord(BaseModel):
    """Canonical market - platform-agnostic. (platform, external_id) is the natural key."""

    external_id: str = Field(..., min_length=1)
    platform: Platform
    title: str
    description: str = ""
    slug: str = ""
    end_date: datetime | None = None
    probability: float | None = Field(None, ge=0, le=1)
    volume: float = 0.0
    liquidity: float | None = None
    status: MarketStatus = MarketStatus.ACTIVE
    category: str | None = None
    tags: list[str] = Field(default_factory=list)
    outcomes: list[OutcomeRecord] = Field(default_factory=list)
    source_url: str | None = None
    extra: dict[str, Any] = Field(default_factory=dict)

    @field_validator("tags")
    @classmethod
    def _unique_tags(cls, v: list[str]) -> list[str]:
        seen: dict[str, None] = {}
        for tag in v:
            tag = tag.strip()
            if tag:
                seen.setdefault(tag, None)
        return list(seen)

    @model_validator(mode="after")
    def _default_slug(self) -> MarketRecord:
        if not self.slug:
            self.slug = self.external_id.lower()
        return self

    @property
    def search_text(self) -> str:
        """Lowercased question + description, the text correlation matches against."""
        return f"{self.title} {self.description or ''}".lower()
