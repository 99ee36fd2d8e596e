"""Correlation engine - keyword, category, date-proximity and token-overlap scoring.

Scoring is additive per (event, market) pair:

* +2 for each event keyword found in the market's lowercased question + description
* +3 when event and market categories are equal (case-sensitive)
* +2 when the event date and market end date are within 7 days, +1 within 30
* +1 for each distinct token longer than 3 characters shared by both texts

Pairs scoring at or below the threshold are dropped. The comparison is all pairs
(events x markets); at calendar scale (tens of events, hundreds of markets) that is
cheap. Bucketing markets by category/keyword token would cut it down but would also
drop pairs that only score on date and token overlap.
"""

from __future__ import annotations

import datetime as dt
from typing import Iterable, Sequence

import structlog

from marketlink.models import CalendarEvent, MarketRecord, Match

log = structlog.get_logger(__name__)

KEYWORD_POINTS = 2
CATEGORY_POINTS = 3
NEAR_DATE_DAYS = 7
NEAR_DATE_POINTS = 2
MONTH_DATE_DAYS = 30
MONTH_DATE_POINTS = 1
MIN_TOKEN_LENGTH = 4
RELEVANCE_THRESHOLD = 2

MARKET_CATEGORY_KEYWORDS: dict[str, tuple[str, ...]] = {
    "Politics": ("election", "president", "congress", "senate", "vote", "trump", "biden"),
    "Crypto": ("bitcoin", "ethereum", "crypto", "btc", "eth", "defi"),
    "Sports": ("nfl", "nba", "super bowl", "world cup", "championship"),
    "Economics": ("recession", "inflation", "fed", "gdp", "unemployment"),
    "Technology": ("ai", "apple", "google", "microsoft", "tech"),
    "Entertainment": ("movie", "oscar", "album", "concert"),
}


def tokenize(text: str) -> set[str]:
    """Whitespace tokens of at least MIN_TOKEN_LENGTH characters, as a set."""
    return {w for w in text.split() if len(w) >= MIN_TOKEN_LENGTH}


def event_text(event: CalendarEvent) -> str:
    return f"{event.name} {event.description or ''} {' '.join(event.keywords)}".lower()


def keyword_score(event: CalendarEvent, market_text: str) -> int:
    hits = 0
    for keyword in event.keywords:
        keyword = keyword.strip().lower()
        if keyword and keyword in market_text:
            hits += 1
    return hits * KEYWORD_POINTS


def category_score(event: CalendarEvent, market: MarketRecord) -> int:
    if event.category and market.category and event.category == market.category:
        return CATEGORY_POINTS
    return 0


def date_score(event_date: dt.date | None, end_date: dt.datetime | None) -> int:
    if event_date is None or end_date is None:
        return 0
    days = abs((event_date - end_date.date()).days)
    if days <= NEAR_DATE_DAYS:
        return NEAR_DATE_POINTS
    if days <= MONTH_DATE_DAYS:
        return MONTH_DATE_POINTS
    return 0


def overlap_score(event_tokens: set[str], market_tokens: set[str]) -> int:
    # Distinct shared tokens; a word repeated in either text still counts once.
    return len(event_tokens & market_tokens)


def _score(
    event: CalendarEvent,
    event_tokens: set[str],
    market: MarketRecord,
    market_text: str,
    market_tokens: set[str],
) -> int:
    return (
        keyword_score(event, market_text)
        + category_score(event, market)
        + date_score(event.date, market.end_date)
        + overlap_score(event_tokens, market_tokens)
    )


def score_pair(event: CalendarEvent, market: MarketRecord) -> int:
    """Relevance score of one event-market pair."""
    text = market.search_text
    return _score(event, tokenize(event_text(event)), market, text, tokenize(text))


def market_key(market: MarketRecord) -> tuple:
    """Identity of a market across sources: its stored id when known, else (platform, external_id)."""
    market_id = market.extra.get("market_id")
    if market_id is not None:
        return ("id", market_id)
    return (market.platform.value, market.external_id)


def correlate(
    events: Iterable[CalendarEvent],
    markets: Sequence[MarketRecord],
    reference_date: dt.date | None = None,
    min_score: int = RELEVANCE_THRESHOLD,
) -> list[Match]:
    """Score every event against every market and return matches, best first.

    Deterministic for the same inputs: ties keep encounter order (events outer,
    markets inner) and each (event name, market_key) pair appears at most once.
    With reference_date, events dated before it are left out; undated events stay.
    """
    prepared = [(m, m.search_text, tokenize(m.search_text)) for m in markets]
    candidates: list[Match] = []
    for event in events:
        if reference_date is not None and event.date is not None and event.date < reference_date:
            continue
        tokens = tokenize(event_text(event))
        for market, text, market_tokens in prepared:
            score = _score(event, tokens, market, text, market_tokens)
            if score > min_score:
                candidates.append(Match(event=event, market=market, score=score, platform=market.platform))

    candidates.sort(key=lambda m: m.score, reverse=True)
    seen: set[tuple[str, tuple]] = set()
    matches: list[Match] = []
    for match in candidates:
        key = (match.event.name, market_key(match.market))
        if key in seen:
            continue
        seen.add(key)
        matches.append(match)
    log.debug("correlated", markets=len(prepared), matches=len(matches))
    return matches


def group_markets_by_category(
    markets: Iterable[MarketRecord],
    per_category: int = 5,
) -> dict[str, list[MarketRecord]]:
    """Bucket markets by keywords in the question (first matching category wins).

    Markets matching no category go to 'Other'. Input order is kept and each bucket
    is cut to per_category entries, so pass markets sorted by volume for a top-N view.
    """
    groups: dict[str, list[MarketRecord]] = {}
    for market in markets:
        question = market.title.lower()
        bucket = next(
            (
                category
                for category, keywords in MARKET_CATEGORY_KEYWORDS.items()
                if any(kw in question for kw in keywords)
            ),
            "Other",
        )
        groups.setdefault(bucket, []).append(market)
    return {category: items[:per_category] for category, items in groups.items()}
