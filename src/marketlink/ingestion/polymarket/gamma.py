"""Polymarket Gamma API adapter - paginated market listings."""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from marketlink.errors import FetchError, TransformError
from marketlink.ingestion.base import PlatformAdapter
from marketlink.ingestion.normalize import (
    affirmative_probability,
    parse_json_list,
    parse_tags,
    parse_timestamp,
    to_float,
    to_optional_float,
    to_probability,
)
from marketlink.models import MarketRecord, MarketStatus, OutcomeRecord, Platform
from marketlink.storage.taxonomy import CategorySeed
from marketlink.urls import build_url

log = structlog.get_logger(__name__)

GAMMA_API_BASE = "https://gamma-api.polymarket.com"


def normalize_condition_id(s: str) -> str:
    """Canonicalize condition_id for matching (Gamma uses 0x + 64 hex, mixed case)."""
    s = (s or "").strip()
    if not s:
        return s
    if s.startswith("0x"):
        return "0x" + s[2:].lower()
    return s.lower() if len(s) == 64 and all(c in "0123456789abcdefABCDEF" for c in s) else s


def parse_outcomes(outcomes_raw: Any, prices_raw: Any) -> list[OutcomeRecord]:
    """Build OutcomeRecords from Gamma 'outcomes' and 'outcomePrices' (often JSON strings).

    A malformed blob yields [] (or prices of None), never an exception.
    """
    names = [str(n) for n in parse_json_list(outcomes_raw) if isinstance(n, (str, int, float))]
    prices = [to_probability(p) for p in parse_json_list(prices_raw)]
    # Align lengths
    while len(prices) < len(names):
        prices.append(None)
    return [OutcomeRecord(name=name, probability=price) for name, price in zip(names, prices)]


def _status(raw: dict[str, Any]) -> MarketStatus:
    if raw.get("closed") is True:
        return MarketStatus.RESOLVED
    if raw.get("active") is False:
        return MarketStatus.DRAFT
    if raw.get("acceptingOrders") is False:
        return MarketStatus.PENDING
    return MarketStatus.ACTIVE


class PolymarketAdapter(PlatformAdapter):
    """Open Polymarket markets, highest volume first."""

    platform = Platform.POLYMARKET
    default_page_size = 100
    default_max_records = 500
    default_volume_growth = 0.10
    seed_categories = (
        CategorySeed("Politics", "#3B82F6", "🏛️"),
        CategorySeed("Crypto", "#F59E0B", "₿"),
        CategorySeed("Sports", "#10B981", "⚽"),
        CategorySeed("Pop Culture", "#EC4899", "🎬"),
        CategorySeed("Science", "#8B5CF6", "🔬"),
        CategorySeed("Economics", "#EF4444", "📈"),
    )

    def _fetch_raw(self, offset: int, limit: int) -> list[Any]:
        url = self.endpoint if self.endpoint.endswith("/markets") else self.endpoint + "/markets"
        params = {
            "limit": limit,
            "offset": offset,
            "closed": "false",
            "order": "volumeNum",
            "ascending": "false",
        }
        try:
            with self._client() as client:
                resp = client.get(url, params=params)
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPError as e:
            raise self._fail(e) from e
        except ValueError as e:
            raise FetchError(self.platform.value, f"invalid JSON body: {e}") from e
        if isinstance(data, dict):
            data = data.get("data", [])
        if not isinstance(data, list):
            raise FetchError(self.platform.value, f"unexpected payload type {type(data).__name__}")
        log.debug("page_fetched", platform=self.platform.value, offset=offset, count=len(data))
        return data

    def raw_id(self, raw: dict[str, Any]) -> str | None:
        value = raw.get("conditionId") or raw.get("id")
        return str(value) if value is not None else None

    def normalize(self, raw: dict[str, Any]) -> MarketRecord:
        condition_id = normalize_condition_id(str(raw.get("conditionId") or raw.get("condition_id") or ""))
        external_id = condition_id or str(raw.get("id") or "")
        if not external_id:
            raise TransformError(self.platform.value, "market has no id", raw_id=None)
        title = raw.get("question") or raw.get("title")
        if not title:
            raise TransformError(self.platform.value, "market has no question", raw_id=external_id)
        slug = str(raw.get("slug") or "")
        outcomes = parse_outcomes(raw.get("outcomes"), raw.get("outcomePrices"))
        return MarketRecord(
            external_id=external_id,
            platform=self.platform,
            title=str(title),
            description=str(raw.get("description") or ""),
            slug=slug,
            end_date=parse_timestamp(raw.get("endDate") or raw.get("endDateIso")),
            probability=affirmative_probability(outcomes),
            volume=to_float(raw.get("volumeNum") or raw.get("volume")),
            liquidity=to_optional_float(raw.get("liquidityNum") or raw.get("liquidity")),
            status=_status(raw),
            category=raw.get("category") or None,
            tags=parse_tags(raw.get("tags")),
            outcomes=outcomes,
            source_url=build_url(self.platform.value, slug or external_id),
            extra={"gamma_id": raw.get("id"), "condition_id": condition_id or None, "slug": slug or None},
        )
