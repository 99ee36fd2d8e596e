"""Event-market correlation: heuristic scoring of calendar events against markets."""

from marketlink.correlation.calendar import categorize_event, load_calendar
from marketlink.correlation.engine import correlate, group_markets_by_category, score_pair

__all__ = ["categorize_event", "correlate", "group_markets_by_category", "load_calendar", "score_pair"]
