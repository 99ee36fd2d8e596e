"""Canonical schema (Pydantic) - MarketRecord, CalendarEvent, Match, SyncRun."""

from marketlink.models.calendar import CalendarEvent, Match
from marketlink.models.market import MarketRecord, MarketStatus, OutcomeRecord, Platform
from marketlink.models.sync import SyncResult, SyncRun, SyncStatus, UpsertOutcome

__all__ = [
    "MarketRecord",
    "MarketStatus",
    "OutcomeRecord",
    "Platform",
    "CalendarEvent",
    "Match",
    "SyncRun",
    "SyncResult",
    "SyncStatus",
    "UpsertOutcome",
]
