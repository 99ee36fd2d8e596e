"""42.space (FortyTwo protocol) adapter - GraphQL market list over httpx."""

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
    scale_decimals,
    to_float,
    to_optional_float,
    to_probability,
)
from marketlink.models import MarketRecord, MarketStatus, OutcomeRecord, Platform
from marketlink.storage.taxonomy import CategorySeed
from marketlink.urls import build_url

log = structlog.get_logger(__name__)

MARKETS_QUERY = """
query GetActiveMarkets($limit: Int!, $offset: Int!) {
  home_market_list(
    where: { status: { _in: ["active", "pending"] } }
    limit: $limit
    offset: $offset
    order_by: { volume: desc }
  ) {
    market_address
    question
    question_id
    status
    volume
    liquidity
    resolved_outcome
    outcomes
    resolution_timestamp
    created_at
    updated_at
  }
}
"""

_STATUS = {
    "active": MarketStatus.ACTIVE,
    "pending": MarketStatus.PENDING,
    "resolved": MarketStatus.RESOLVED,
    "finalized": MarketStatus.RESOLVED,
}


def parse_outcomes(value: Any) -> list[OutcomeRecord]:
    """Outcomes arrive as a list or a JSON-encoded blob of {outcome_id, name, probability}."""
    outcomes = []
    for item in parse_json_list(value):
        if isinstance(item, str):
            outcomes.append(OutcomeRecord(name=item))
        elif isinstance(item, dict) and item.get("name"):
            outcome_id = item.get("outcome_id")
            outcomes.append(
                OutcomeRecord(
                    name=str(item["name"]),
                    probability=to_probability(item.get("probability")),
                    outcome_id=str(outcome_id) if outcome_id is not None else None,
                )
            )
    return outcomes


class FortyTwoAdapter(PlatformAdapter):
    """Active and pending 42.space markets, highest volume first."""

    platform = Platform.FORTYTWO
    default_page_size = 50
    default_max_records = 200
    default_volume_growth = 0.05
    fallback_category = "General"
    seed_categories = (
        CategorySeed("General", "#6B7280", "🔮"),
        CategorySeed("Politics", "#3B82F6", "🏛️"),
        CategorySeed("Crypto", "#F59E0B", "₿"),
        CategorySeed("Sports", "#10B981", "⚽"),
        CategorySeed("Entertainment", "#EC4899", "🎬"),
        CategorySeed("Technology", "#8B5CF6", "💻"),
    )

    def __init__(self, endpoint: str, *, volume_decimals: int = 0, **kwargs: Any) -> None:
        super().__init__(endpoint, **kwargs)
        self.volume_decimals = volume_decimals

    @classmethod
    def from_config(cls, section: dict[str, Any], **kwargs: Any) -> FortyTwoAdapter:
        adapter = super().from_config(section, **kwargs)
        adapter.volume_decimals = int(section.get("volume_decimals", 0))
        return adapter

    def _fetch_raw(self, offset: int, limit: int) -> list[Any]:
        body = {"query": MARKETS_QUERY, "variables": {"limit": limit, "offset": offset}}
        try:
            with self._client() as client:
                resp = client.post(self.endpoint, json=body)
                resp.raise_for_status()
                payload = resp.json()
        except httpx.HTTPError as e:
            raise self._fail(e) from e
        except ValueError as e:
            raise FetchError(self.platform.value, f"invalid JSON body: {e}") from e
        if not isinstance(payload, dict):
            raise FetchError(self.platform.value, "unexpected GraphQL response")
        if payload.get("errors"):
            messages = "; ".join(str(err.get("message", err)) for err in payload["errors"] if err)
            raise FetchError(self.platform.value, f"GraphQL error: {messages}")
        markets = (payload.get("data") or {}).get("home_market_list") or []
        log.debug("page_fetched", platform=self.platform.value, offset=offset, count=len(markets))
        return markets

    def raw_id(self, raw: dict[str, Any]) -> str | None:
        value = raw.get("market_address")
        return str(value) if value is not None else None

    def normalize(self, raw: dict[str, Any]) -> MarketRecord:
        address = str(raw.get("market_address") or "").strip()
        if not address:
            raise TransformError(self.platform.value, "market has no market_address")
        title = raw.get("question")
        if not title:
            raise TransformError(self.platform.value, "market has no question", raw_id=address)
        outcomes = parse_outcomes(raw.get("outcomes"))
        status = _STATUS.get(str(raw.get("status") or "").lower(), MarketStatus.DRAFT)
        if raw.get("resolved_outcome"):
            status = MarketStatus.RESOLVED
        liquidity = to_optional_float(raw.get("liquidity"))
        return MarketRecord(
            external_id=address,
            platform=self.platform,
            title=str(title),
            # No separate description upstream
            description=str(raw.get("description") or title),
            slug=address.lower(),
            end_date=parse_timestamp(raw.get("resolution_timestamp")),
            probability=affirmative_probability(outcomes),
            volume=scale_decimals(to_float(raw.get("volume")), self.volume_decimals),
            liquidity=scale_decimals(liquidity, self.volume_decimals) if liquidity is not None else None,
            status=status,
            category=raw.get("category") or None,
            tags=parse_tags(raw.get("tags")),
            outcomes=outcomes,
            source_url=build_url(self.platform.value, address),
            extra={
                "question_id": raw.get("question_id"),
                "market_address": address,
                "resolved_outcome": raw.get("resolved_outcome"),
            },
        )
