"""Platform adapters: pagination, normalization totality, fetch failures."""

import json
from datetime import datetime, timezone

import httpx
import pytest

from marketlink.config import Settings
from marketlink.errors import ConfigurationError, FetchError, TransformError
from marketlink.ingestion.fortytwo.client import FortyTwoAdapter
from marketlink.ingestion.polymarket.gamma import PolymarketAdapter, parse_outcomes
from marketlink.ingestion.rate_limit import TokenBucket
from marketlink.ingestion.registry import create_adapter
from marketlink.models import MarketStatus, Platform

ADDRESS = "0xCcF0379a3177bc7CC2257e7c02318327EF2A61De"


def gamma_market(**overrides):
    raw = {
        "id": "512",
        "conditionId": "0xABCDEF",
        "question": "Will Bitcoin reach $100k by 2025?",
        "slug": "will-bitcoin-reach-100k-by-2025",
        "description": "Resolves YES if BTC trades above $100k.",
        "endDate": "2025-12-31T12:00:00Z",
        "volumeNum": 125000.5,
        "liquidityNum": "5000",
        "outcomes": '["Yes", "No"]',
        "outcomePrices": '["0.62", "0.38"]',
        "category": "Crypto",
        "tags": [{"label": "Bitcoin"}, "Crypto"],
        "active": True,
        "closed": False,
    }
    raw.update(overrides)
    return raw


def fortytwo_market(**overrides):
    raw = {
        "market_address": ADDRESS,
        "question": "Who wins the 2028 election?",
        "question_id": "q-77",
        "status": "active",
        "volume": "2500",
        "liquidity": "300",
        "resolved_outcome": None,
        "outcomes": [
            {"outcome_id": "0", "name": "Candidate A", "probability": 0.3},
            {"outcome_id": "1", "name": "Candidate B", "probability": 0.7},
        ],
        "resolution_timestamp": "1830297600",
    }
    raw.update(overrides)
    return raw


def test_polymarket_normalize():
    adapter = PolymarketAdapter("https://gamma.test")
    record = adapter.transform(gamma_market())
    assert record.platform is Platform.POLYMARKET
    assert record.external_id == "0xabcdef"
    assert record.probability == pytest.approx(0.62)
    assert [o.name for o in record.outcomes] == ["Yes", "No"]
    assert record.volume == pytest.approx(125000.5)
    assert record.liquidity == pytest.approx(5000.0)
    assert record.end_date == datetime(2025, 12, 31, 12, tzinfo=timezone.utc)
    assert record.tags == ["Bitcoin", "Crypto"]
    assert record.source_url == "https://polymarket.com/market/will-bitcoin-reach-100k-by-2025"
    assert record.status is MarketStatus.ACTIVE


def test_polymarket_malformed_fields_degrade():
    adapter = PolymarketAdapter("https://gamma.test")
    record = adapter.transform(
        gamma_market(outcomes="[not json", outcomePrices=None, volumeNum=None, volume="n/a", liquidityNum=None, liquidity=None, endDate="soon")
    )
    assert record.outcomes == []
    assert record.probability is None
    assert record.volume == 0.0
    assert record.liquidity is None
    assert record.end_date is None


def test_polymarket_probability_only_from_yes_outcome():
    adapter = PolymarketAdapter("https://gamma.test")
    record = adapter.transform(gamma_market(outcomes='["Lakers", "Celtics"]', outcomePrices='["0.55", "0.45"]'))
    assert record.probability is None
    assert record.outcomes[0].probability == pytest.approx(0.55)


def test_polymarket_status_mapping():
    adapter = PolymarketAdapter("https://gamma.test")
    assert adapter.transform(gamma_market(closed=True)).status is MarketStatus.RESOLVED
    assert adapter.transform(gamma_market(active=False)).status is MarketStatus.DRAFT


def test_parse_outcomes_aligns_missing_prices():
    outcomes = parse_outcomes(["Yes", "No"], '["0.9"]')
    assert [(o.name, o.probability) for o in outcomes] == [("Yes", 0.9), ("No", None)]


def test_transform_rejects_record_without_question():
    adapter = PolymarketAdapter("https://gamma.test")
    with pytest.raises(TransformError):
        adapter.transform(gamma_market(question=None, title=None))
    with pytest.raises(TransformError):
        adapter.transform(["not", "an", "object"])


def test_polymarket_fetch_page_paginates_and_skips_bad_records():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(dict(request.url.params))
        offset = int(request.url.params["offset"])
        if offset == 0:
            return httpx.Response(200, json=[gamma_market(), gamma_market(conditionId="0x02", question="")])
        return httpx.Response(200, json=[])

    adapter = PolymarketAdapter("https://gamma.test", page_size=2, transport=httpx.MockTransport(handler))
    first = adapter.fetch_page(0)
    assert len(first.records) == 1
    assert first.degraded == 1
    assert first.next_cursor == 2
    assert not first.done

    second = adapter.fetch_page(first.next_cursor)
    assert second.records == []
    assert second.done
    assert seen[0]["limit"] == "2"
    assert seen[0]["closed"] == "false"
    assert seen[1]["offset"] == "2"


def test_polymarket_http_error_raises_fetch_error():
    adapter = PolymarketAdapter(
        "https://gamma.test", transport=httpx.MockTransport(lambda r: httpx.Response(503))
    )
    with pytest.raises(FetchError) as exc:
        adapter.fetch_page(0)
    assert exc.value.status_code == 503


def test_fortytwo_normalize_uses_ordinal_affirmative_outcome():
    adapter = FortyTwoAdapter("https://graphql.test")
    record = adapter.transform(fortytwo_market())
    assert record.platform is Platform.FORTYTWO
    assert record.external_id == ADDRESS
    assert record.slug == ADDRESS.lower()
    assert record.probability == pytest.approx(0.7)
    assert record.source_url == f"https://42.space/event/{ADDRESS}"
    assert record.description == record.title
    assert record.extra["question_id"] == "q-77"
    assert record.end_date == datetime(2028, 1, 1, tzinfo=timezone.utc)
    assert record.volume == pytest.approx(2500.0)


def test_fortytwo_outcomes_blob_and_status():
    adapter = FortyTwoAdapter("https://graphql.test")
    blob = json.dumps([{"name": "YES", "probability": "0.25"}, {"name": "NO", "probability": "0.75"}])
    record = adapter.transform(fortytwo_market(outcomes=blob, status="pending"))
    assert record.probability == pytest.approx(0.25)
    assert record.status is MarketStatus.PENDING

    broken = adapter.transform(fortytwo_market(outcomes="{{broken", status="weird"))
    assert broken.outcomes == []
    assert broken.probability is None
    assert broken.status is MarketStatus.DRAFT

    resolved = adapter.transform(fortytwo_market(resolved_outcome="1"))
    assert resolved.status is MarketStatus.RESOLVED


def test_fortytwo_volume_decimals():
    adapter = FortyTwoAdapter("https://graphql.test", volume_decimals=18)
    record = adapter.transform(fortytwo_market(volume=str(3 * 10**18), liquidity=None))
    assert record.volume == pytest.approx(3.0)
    assert record.liquidity is None


def test_fortytwo_fetch_page_posts_graphql():
    bodies = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        bodies.append(body)
        rows = [fortytwo_market()] if body["variables"]["offset"] == 0 else []
        return httpx.Response(200, json={"data": {"home_market_list": rows}})

    adapter = FortyTwoAdapter("https://graphql.test", page_size=50, transport=httpx.MockTransport(handler))
    page = adapter.fetch_page(0)
    assert len(page.records) == 1
    assert page.next_cursor == 1
    assert adapter.fetch_page(1).done
    assert bodies[0]["variables"] == {"limit": 50, "offset": 0}
    assert "home_market_list" in bodies[0]["query"]


def test_fortytwo_graphql_errors_raise_fetch_error():
    transport = httpx.MockTransport(
        lambda r: httpx.Response(200, json={"errors": [{"message": "field 'x' not found"}]})
    )
    adapter = FortyTwoAdapter("https://graphql.test", transport=transport)
    with pytest.raises(FetchError, match="field 'x' not found"):
        adapter.fetch_page(0)


def test_missing_endpoint_is_configuration_error():
    with pytest.raises(ConfigurationError):
        FortyTwoAdapter("")


def test_create_adapter_from_settings():
    settings = Settings.from_dict(
        {
            "polymarket": {"api_base": "https://gamma.test", "page_size": 10, "max_records": 30, "volume_growth": 0.2},
            "fortytwo": {"graphql_endpoint": "https://graphql.test", "volume_decimals": 6},
            "http": {"timeout_sec": 5, "rate_limit_rps": 0},
        }
    )
    poly = create_adapter("polymarket", settings)
    assert isinstance(poly, PolymarketAdapter)
    assert (poly.page_size, poly.max_records, poly.policy.volume_growth) == (10, 30, 0.2)
    assert poly.timeout == 5.0

    ft = create_adapter("42space", settings, base_url="https://other.test/graphql")
    assert isinstance(ft, FortyTwoAdapter)
    assert ft.endpoint == "https://other.test/graphql"
    assert ft.volume_decimals == 6
    assert ft.policy.volume_growth == 0.05
    assert ft.max_records == 200


def test_create_adapter_unknown_api_type():
    with pytest.raises(ConfigurationError):
        create_adapter("augur", Settings())


def test_exhausted_rate_limiter_raises_before_request():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json=[])

    bucket = TokenBucket(rate=0.5, capacity=1, clock=lambda: 0.0, sleep=lambda s: None)
    assert bucket.consume()
    adapter = PolymarketAdapter(
        "https://gamma.test", timeout=1.0, rate_limiter=bucket, transport=httpx.MockTransport(handler)
    )
    with pytest.raises(FetchError, match="rate limit"):
        adapter.fetch_page(0)
    assert calls == []
