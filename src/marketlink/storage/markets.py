"""Market upsert engine: insert / conditional update / skip, one transaction per record."""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable

import duckdb
import structlog

from marketlink.errors import PersistenceError
from marketlink.models import MarketRecord, MarketStatus, OutcomeRecord, Platform, UpsertOutcome
from marketlink.storage.taxonomy import TaxonomyRefs, link_category, link_tag, resolve_refs

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection

    from marketlink.storage.db import ConnectionPool

log = structlog.get_logger(__name__)

PRICE_DEDUP_WINDOW_MS = 60 * 60 * 1000
PRICE_DEDUP_TOLERANCE = 0.01


def now_ms() -> int:
    return int(time.time() * 1000)


def to_epoch_ms(value: datetime | None) -> int | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)


def from_epoch_ms(value: int | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


@dataclass(frozen=True)
class StalenessPolicy:
    """Decides whether a re-observed market is worth a write.

    Either predicate triggers an update: the probability moved by more than
    `probability_delta` (absolute), or volume grew by more than `volume_growth`
    (relative to the stored value).
    """

    probability_delta: float = 0.01
    volume_growth: float = 0.10

    def should_update(
        self,
        stored_probability: float | None,
        stored_volume: float | None,
        record: MarketRecord,
    ) -> bool:
        moved = abs((stored_probability or 0.0) - (record.probability or 0.0)) > self.probability_delta
        grew = record.volume > (stored_volume or 0.0) * (1 + self.volume_growth)
        return moved or grew


DEFAULT_POLICY = StalenessPolicy()


class MarketUpsertEngine:
    """Owns all writes to event, event_metadata, outcome(_metadata), price_history and
    the market's taxonomy links. Each upsert borrows one pooled connection."""

    def __init__(self, pool: ConnectionPool, clock: Callable[[], int] = now_ms):
        self.pool = pool
        self.clock = clock

    def upsert(
        self,
        source_id: int,
        record: MarketRecord,
        policy: StalenessPolicy = DEFAULT_POLICY,
        fallback_category: str | None = None,
    ) -> UpsertOutcome:
        """Insert a first-seen market, update a materially changed one, or skip it.

        Any database failure rolls the whole record back and raises PersistenceError.
        """
        try:
            refs = resolve_refs(self.pool, record.category or fallback_category, record.tags)
            with self.pool.transaction() as conn:
                existing = conn.execute(
                    "SELECT id, probability, volume FROM event WHERE source_id = ? AND external_id = ?",
                    [source_id, record.external_id],
                ).fetchone()
                if existing is None:
                    market_id = self._insert(conn, source_id, record, refs)
                    log.debug("market_inserted", market_id=market_id, external_id=record.external_id)
                    return UpsertOutcome.INSERTED
                market_id, stored_probability, stored_volume = existing
                if not policy.should_update(stored_probability, stored_volume, record):
                    return UpsertOutcome.SKIPPED
                self._update(conn, market_id, record)
                log.debug("market_updated", market_id=market_id, external_id=record.external_id)
                return UpsertOutcome.UPDATED
        except duckdb.Error as e:
            log.error(
                "market_write_failed",
                source_id=source_id,
                external_id=record.external_id,
                error=str(e),
            )
            raise PersistenceError(f"write failed for {record.external_id}: {e}") from e

    def _insert(
        self,
        conn: DuckDBPyConnection,
        source_id: int,
        record: MarketRecord,
        refs: TaxonomyRefs,
    ) -> int:
        ts = self.clock()
        market_id = conn.execute(
            """
            INSERT INTO event (
                source_id, external_id, platform, title, slug, description,
                end_date, probability, volume, liquidity, source_url,
                status, event_type, category, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 'prediction', ?, ?, ?)
            RETURNING id
            """,
            [
                source_id,
                record.external_id,
                record.platform.value,
                record.title,
                record.slug,
                record.description,
                to_epoch_ms(record.end_date),
                record.probability,
                record.volume,
                record.liquidity,
                record.source_url,
                record.status.value,
                refs.category,
                ts,
                ts,
            ],
        ).fetchone()[0]

        info = {"platform": record.platform.value, "category": record.category, **record.extra}
        conn.execute(
            "INSERT INTO event_metadata (event_id, additional_info) VALUES (?, ?)",
            [market_id, json.dumps(info, default=str)],
        )

        for order, outcome in enumerate(record.outcomes):
            outcome_id = conn.execute(
                """
                INSERT INTO outcome (event_id, name, probability, display_order)
                VALUES (?, ?, ?, ?)
                RETURNING id
                """,
                [market_id, outcome.name, outcome.probability, order],
            ).fetchone()[0]
            conn.execute(
                "INSERT INTO outcome_metadata (outcome_id, symbol, additional_info) VALUES (?, ?, ?)",
                [
                    outcome_id,
                    outcome.name[:10].upper(),
                    json.dumps({"outcome_id": outcome.outcome_id}),
                ],
            )

        if refs.category_id is not None:
            link_category(conn, market_id, refs.category_id, is_primary=True)
        for tag_id in refs.tag_ids:
            link_tag(conn, market_id, tag_id)

        if record.probability is not None:
            conn.execute(
                "INSERT INTO price_history (event_id, timestamp, price, volume_24h) VALUES (?, ?, ?, ?)",
                [market_id, ts, record.probability, record.volume],
            )
        return market_id

    def _update(self, conn: DuckDBPyConnection, market_id: int, record: MarketRecord) -> None:
        ts = self.clock()
        conn.execute(
            """
            UPDATE event SET
                probability = ?,
                volume = ?,
                liquidity = ?,
                source_url = COALESCE(?, source_url),
                status = ?,
                updated_at = ?
            WHERE id = ?
            """,
            [
                record.probability,
                record.volume,
                record.liquidity,
                record.source_url,
                record.status.value,
                ts,
                market_id,
            ],
        )
        for outcome in record.outcomes:
            if outcome.probability is None:
                continue
            conn.execute(
                """
                UPDATE outcome SET probability = ?
                WHERE event_id = ? AND name = ?
                  AND (probability IS NULL OR probability <> ?)
                """,
                [outcome.probability, market_id, outcome.name, outcome.probability],
            )
        if record.probability is not None:
            self._append_price(conn, market_id, ts, record.probability, record.volume)

    def _append_price(
        self,
        conn: DuckDBPyConnection,
        market_id: int,
        ts: int,
        price: float,
        volume: float,
    ) -> bool:
        """Append a sample unless a near-identical one exists within the dedup window."""
        recent = conn.execute(
            """
            SELECT 1 FROM price_history
            WHERE event_id = ? AND timestamp > ? AND ABS(price - ?) < ?
            LIMIT 1
            """,
            [market_id, ts - PRICE_DEDUP_WINDOW_MS, price, PRICE_DEDUP_TOLERANCE],
        ).fetchone()
        if recent is not None:
            return False
        conn.execute(
            "INSERT INTO price_history (event_id, timestamp, price, volume_24h) VALUES (?, ?, ?, ?)",
            [market_id, ts, price, volume],
        )
        return True


def get_market(conn: DuckDBPyConnection, source_id: int, external_id: str) -> dict[str, Any] | None:
    """Return the stored market row for a natural key, or None."""
    row = conn.execute(
        """
        SELECT id, source_id, external_id, platform, title, probability, volume, liquidity,
               source_url, status, category, created_at, updated_at
        FROM event WHERE source_id = ? AND external_id = ?
        """,
        [source_id, external_id],
    ).fetchone()
    if row is None:
        return None
    columns = [
        "id", "source_id", "external_id", "platform", "title", "probability", "volume",
        "liquidity", "source_url", "status", "category", "created_at", "updated_at",
    ]
    return dict(zip(columns, row))


def count_markets(conn: DuckDBPyConnection, source_id: int | None = None) -> int:
    if source_id is None:
        return conn.execute("SELECT COUNT(*) FROM event").fetchone()[0]
    return conn.execute("SELECT COUNT(*) FROM event WHERE source_id = ?", [source_id]).fetchone()[0]


def price_history(conn: DuckDBPyConnection, market_id: int) -> list[tuple[int, float, float | None]]:
    """(timestamp_ms, price, volume_24h) samples for a market, oldest first."""
    return conn.execute(
        "SELECT timestamp, price, volume_24h FROM price_history WHERE event_id = ? ORDER BY timestamp, id",
        [market_id],
    ).fetchall()


def list_market_records(
    conn: DuckDBPyConnection,
    platform: Platform | None = None,
    active_only: bool = False,
) -> list[MarketRecord]:
    """Re-read persisted markets as canonical records (for correlation), highest volume first."""
    where, params = [], []
    if platform is not None:
        where.append("platform = ?")
        params.append(platform.value)
    if active_only:
        where.append("status = 'active'")
    clause = f"WHERE {' AND '.join(where)}" if where else ""
    rows = conn.execute(
        f"""
        SELECT id, external_id, platform, title, description, slug, end_date, probability,
               volume, liquidity, status, category, source_url
        FROM event {clause}
        ORDER BY volume DESC, id
        """,
        params,
    ).fetchall()
    if not rows:
        return []

    outcomes: dict[int, list[OutcomeRecord]] = {}
    for event_id, name, probability, outcome_meta in conn.execute(
        """
        SELECT o.event_id, o.name, o.probability, om.additional_info
        FROM outcome o LEFT JOIN outcome_metadata om ON om.outcome_id = o.id
        ORDER BY o.event_id, o.display_order
        """
    ).fetchall():
        meta = json.loads(outcome_meta) if outcome_meta else {}
        outcomes.setdefault(event_id, []).append(
            OutcomeRecord(name=name, probability=probability, outcome_id=meta.get("outcome_id"))
        )
    tags: dict[int, list[str]] = {}
    for event_id, name in conn.execute(
        "SELECT et.event_id, t.name FROM event_tag et JOIN tag t ON t.id = et.tag_id ORDER BY t.name"
    ).fetchall():
        tags.setdefault(event_id, []).append(name)

    records = []
    for (
        event_id, external_id, platform_value, title, description, slug, end_date,
        probability, volume, liquidity, status, category, source_url,
    ) in rows:
        records.append(
            MarketRecord(
                external_id=external_id,
                platform=Platform(platform_value),
                title=title,
                description=description or "",
                slug=slug or "",
                end_date=from_epoch_ms(end_date),
                probability=probability,
                volume=volume or 0.0,
                liquidity=liquidity,
                status=MarketStatus(status),
                category=category,
                tags=tags.get(event_id, []),
                outcomes=outcomes.get(event_id, []),
                source_url=source_url,
                extra={"market_id": event_id},
            )
        )
    return records
