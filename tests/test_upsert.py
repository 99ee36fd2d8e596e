"""Market upsert engine: insert, staleness policy, price dedup window, rollback."""

from datetime import datetime, timezone

import duckdb
import pytest

from marketlink.errors import PersistenceError
from marketlink.models import MarketRecord, OutcomeRecord, Platform, UpsertOutcome
from marketlink.storage.markets import (
    MarketUpsertEngine,
    StalenessPolicy,
    count_markets,
    get_market,
    list_market_records,
    price_history,
)
from marketlink.storage.taxonomy import categories_for_market, tags_for_market

SOURCE = 1


def market(probability=0.40, volume=1000.0, **overrides):
    fields = dict(
        external_id="will-btc-100k",
        platform=Platform.POLYMARKET,
        title="Will Bitcoin reach $100k?",
        description="Resolves on Coinbase close.",
        probability=probability,
        volume=volume,
        liquidity=50.0,
        category="Crypto",
        tags=["Bitcoin", "bitcoin", "ETF"],
        outcomes=[
            OutcomeRecord(name="Yes", probability=probability),
            OutcomeRecord(name="No", probability=None if probability is None else round(1 - probability, 4)),
        ],
        source_url="https://polymarket.com/market/will-btc-100k",
        end_date=datetime(2025, 12, 31, tzinfo=timezone.utc),
        extra={"slug": "will-btc-100k"},
    )
    fields.update(overrides)
    return MarketRecord(**fields)


@pytest.fixture
def engine(pool, clock):
    return MarketUpsertEngine(pool, clock=clock)


def test_first_sight_inserts_everything(pool, engine):
    assert engine.upsert(SOURCE, market()) is UpsertOutcome.INSERTED
    with pool.connection() as conn:
        row = get_market(conn, SOURCE, "will-btc-100k")
        assert row["probability"] == pytest.approx(0.40)
        assert row["status"] == "active"
        outcomes = conn.execute(
            """
            SELECT o.name, o.display_order, om.symbol FROM outcome o
            JOIN outcome_metadata om ON om.outcome_id = o.id
            WHERE o.event_id = ? ORDER BY o.display_order
            """,
            [row["id"]],
        ).fetchall()
        assert outcomes == [("Yes", 0, "YES"), ("No", 1, "NO")]
        info = conn.execute("SELECT additional_info FROM event_metadata WHERE event_id = ?", [row["id"]]).fetchone()[0]
        assert '"slug": "will-btc-100k"' in info
        assert [c["slug"] for c in categories_for_market(conn, row["id"])] == ["crypto"]
        assert tags_for_market(conn, row["id"]) == ["Bitcoin", "ETF"]
        assert len(price_history(conn, row["id"])) == 1


def test_no_price_sample_without_probability(pool, engine):
    engine.upsert(SOURCE, market(probability=None))
    with pool.connection() as conn:
        row = get_market(conn, SOURCE, "will-btc-100k")
        assert price_history(conn, row["id"]) == []


def test_repeat_observation_is_skipped(pool, engine):
    assert engine.upsert(SOURCE, market()) is UpsertOutcome.INSERTED
    assert engine.upsert(SOURCE, market()) is UpsertOutcome.SKIPPED
    assert engine.upsert(SOURCE, market()) is UpsertOutcome.SKIPPED
    with pool.connection() as conn:
        assert count_markets(conn, SOURCE) == 1


def test_same_external_id_in_other_source_is_a_different_market(pool, engine):
    engine.upsert(SOURCE, market())
    assert engine.upsert(SOURCE + 1, market()) is UpsertOutcome.INSERTED
    with pool.connection() as conn:
        assert count_markets(conn) == 2


def test_small_probability_move_does_not_update(pool, engine, clock):
    engine.upsert(SOURCE, market(probability=0.40))
    clock.advance(minutes=5)
    assert engine.upsert(SOURCE, market(probability=0.405)) is UpsertOutcome.SKIPPED
    with pool.connection() as conn:
        assert get_market(conn, SOURCE, "will-btc-100k")["probability"] == pytest.approx(0.40)


def test_probability_move_above_one_point_updates(pool, engine, clock):
    engine.upsert(SOURCE, market(probability=0.40))
    clock.advance(minutes=5)
    assert engine.upsert(SOURCE, market(probability=0.46)) is UpsertOutcome.UPDATED
    with pool.connection() as conn:
        row = get_market(conn, SOURCE, "will-btc-100k")
        assert row["probability"] == pytest.approx(0.46)
        assert row["updated_at"] == clock.now
        yes = conn.execute(
            "SELECT probability FROM outcome WHERE event_id = ? AND name = 'Yes'", [row["id"]]
        ).fetchone()[0]
        assert yes == pytest.approx(0.46)
        assert [p for _, p, _ in price_history(conn, row["id"])] == pytest.approx([0.40, 0.46])


def test_volume_growth_threshold_is_per_policy(pool, engine):
    engine.upsert(SOURCE, market(volume=1000.0))
    assert engine.upsert(SOURCE, market(volume=1080.0)) is UpsertOutcome.SKIPPED
    assert engine.upsert(SOURCE, market(volume=1080.0), policy=StalenessPolicy(volume_growth=0.05)) is UpsertOutcome.UPDATED
    assert engine.upsert(SOURCE, market(volume=1200.0)) is UpsertOutcome.UPDATED
    with pool.connection() as conn:
        assert get_market(conn, SOURCE, "will-btc-100k")["volume"] == pytest.approx(1200.0)


def test_staleness_policy_predicates():
    policy = StalenessPolicy(probability_delta=0.01, volume_growth=0.10)
    assert not policy.should_update(0.40, 100.0, market(probability=0.405, volume=100.0))
    assert policy.should_update(0.40, 100.0, market(probability=0.46, volume=100.0))
    assert policy.should_update(0.40, 100.0, market(probability=0.40, volume=111.0))
    assert not policy.should_update(0.40, 100.0, market(probability=0.40, volume=110.0))
    # missing values compare as zero
    assert policy.should_update(None, 0.0, market(probability=0.5, volume=0.0))
    assert not policy.should_update(None, 0.0, market(probability=None, volume=0.0))


def test_price_history_dedup_window(pool, engine, clock):
    engine.upsert(SOURCE, market(probability=0.40, volume=1000.0))
    clock.advance(minutes=10)
    assert engine.upsert(SOURCE, market(probability=0.46, volume=1000.0)) is UpsertOutcome.UPDATED
    # volume jump forces an update; price is within 0.01 of the sample 10 minutes ago
    clock.advance(minutes=10)
    assert engine.upsert(SOURCE, market(probability=0.465, volume=2000.0)) is UpsertOutcome.UPDATED
    with pool.connection() as conn:
        market_id = get_market(conn, SOURCE, "will-btc-100k")["id"]
        assert len(price_history(conn, market_id)) == 2

    # same price outside the one-hour window is sampled again
    clock.advance(hours=2)
    assert engine.upsert(SOURCE, market(probability=0.465, volume=4000.0)) is UpsertOutcome.UPDATED
    with pool.connection() as conn:
        assert len(price_history(conn, market_id)) == 3


def test_update_keeps_url_when_new_one_missing(pool, engine):
    engine.upsert(SOURCE, market())
    engine.upsert(SOURCE, market(probability=0.9, source_url=None))
    with pool.connection() as conn:
        assert get_market(conn, SOURCE, "will-btc-100k")["source_url"] == "https://polymarket.com/market/will-btc-100k"


def test_fallback_category_links_when_record_has_none(pool, engine):
    engine.upsert(SOURCE, market(category=None), fallback_category="General")
    with pool.connection() as conn:
        row = get_market(conn, SOURCE, "will-btc-100k")
        assert row["category"] == "General"
        assert [c["name"] for c in categories_for_market(conn, row["id"])] == ["General"]


class ExplodingEngine(MarketUpsertEngine):
    """Fails after the market row and outcomes were written."""

    def _insert(self, conn, source_id, record, refs):
        super()._insert(conn, source_id, record, refs)
        raise duckdb.ConstraintException("simulated constraint failure")


def test_failed_insert_rolls_back_whole_record(pool, clock):
    engine = ExplodingEngine(pool, clock=clock)
    with pytest.raises(PersistenceError, match="simulated constraint failure"):
        engine.upsert(SOURCE, market())
    with pool.connection() as conn:
        for table in ("event", "event_metadata", "outcome", "outcome_metadata", "event_tag", "event_category", "price_history"):
            assert conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0] == 0, table


def test_list_market_records_round_trips_canonical_fields(pool, engine):
    engine.upsert(SOURCE, market())
    engine.upsert(
        SOURCE,
        market(external_id="0xabc", platform=Platform.FORTYTWO, title="Who wins?", volume=5.0, tags=[], category=None),
        fallback_category="General",
    )
    with pool.connection() as conn:
        records = list_market_records(conn)
        only_42 = list_market_records(conn, platform=Platform.FORTYTWO)
    assert [r.external_id for r in records] == ["will-btc-100k", "0xabc"]
    first = records[0]
    assert first.category == "Crypto"
    assert first.tags == ["Bitcoin", "ETF"]
    assert [o.name for o in first.outcomes] == ["Yes", "No"]
    assert first.end_date == datetime(2025, 12, 31, tzinfo=timezone.utc)
    assert [r.external_id for r in only_42] == ["0xabc"]
    assert only_42[0].category == "General"
