"""Abstract platform adapter: paginated fetch + normalization to MarketRecord."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import httpx
import pydantic
import structlog

from marketlink.errors import ConfigurationError, FetchError, TransformError
from marketlink.ingestion.rate_limit import TokenBucket
from marketlink.models import MarketRecord, Platform
from marketlink.storage.markets import StalenessPolicy
from marketlink.storage.taxonomy import CategorySeed

log = structlog.get_logger(__name__)


@dataclass
class Page:
    """One page of normalized records. next_cursor is None once the source is exhausted."""

    records: list[MarketRecord] = field(default_factory=list)
    next_cursor: int | None = None
    degraded: int = 0

    @property
    def done(self) -> bool:
        return self.next_cursor is None


class PlatformAdapter(ABC):
    """Fetches one platform's listings page by page and maps them to MarketRecord.

    Stateless between calls: the offset cursor is the only pagination state and it is
    owned by the caller. Implement _fetch_raw and normalize for each platform.
    """

    platform: Platform
    seed_categories: tuple[CategorySeed, ...] = ()
    fallback_category: str | None = None
    default_page_size: int = 100
    default_max_records: int = 500
    default_volume_growth: float = 0.10

    def __init__(
        self,
        endpoint: str,
        *,
        page_size: int | None = None,
        max_records: int | None = None,
        volume_growth: float | None = None,
        timeout: float = 30.0,
        rate_limiter: TokenBucket | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if not endpoint:
            raise ConfigurationError(f"{self.platform.value}: no API endpoint configured")
        self.endpoint = endpoint.rstrip("/")
        self.page_size = page_size or self.default_page_size
        self.max_records = max_records or self.default_max_records
        self.policy = StalenessPolicy(
            volume_growth=self.default_volume_growth if volume_growth is None else volume_growth
        )
        self.timeout = timeout
        self.rate_limiter = rate_limiter
        self.transport = transport

    @classmethod
    def from_config(
        cls,
        section: dict[str, Any],
        *,
        endpoint: str,
        timeout: float,
        rate_limit_rps: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> PlatformAdapter:
        """Build from a platform config table (page_size, max_records, volume_growth)."""
        return cls(
            endpoint,
            page_size=section.get("page_size"),
            max_records=section.get("max_records"),
            volume_growth=section.get("volume_growth"),
            timeout=timeout,
            rate_limiter=TokenBucket(rate=rate_limit_rps) if rate_limit_rps else None,
            transport=transport,
        )

    def fetch_page(self, cursor: int = 0) -> Page:
        """Fetch and normalize the page starting at offset `cursor`.

        Raises FetchError on transport failure or when the rate limiter has no slot
        within the timeout. Malformed records are logged and
        counted in Page.degraded rather than aborting the page.
        """
        if self.rate_limiter is not None and not self.rate_limiter.wait_for_token(timeout=self.timeout):
            raise FetchError(self.platform.value, f"rate limit: no request slot within {self.timeout}s")
        raws = self._fetch_raw(cursor, self.page_size)
        if not raws:
            return Page(records=[], next_cursor=None)
        records: list[MarketRecord] = []
        degraded = 0
        for raw in raws:
            try:
                records.append(self.transform(raw))
            except TransformError as e:
                degraded += 1
                log.warning(
                    "degraded_record",
                    platform=self.platform.value,
                    raw_id=e.raw_id,
                    error=str(e),
                )
        return Page(records=records, next_cursor=cursor + len(raws), degraded=degraded)

    def transform(self, raw: Any) -> MarketRecord:
        """normalize() with every failure mapped to TransformError."""
        if not isinstance(raw, dict):
            raise TransformError(self.platform.value, f"expected object, got {type(raw).__name__}")
        try:
            return self.normalize(raw)
        except TransformError:
            raise
        except (pydantic.ValidationError, KeyError, TypeError, ValueError, AttributeError) as e:
            raise TransformError(self.platform.value, str(e), raw_id=self.raw_id(raw)) from e

    def raw_id(self, raw: dict[str, Any]) -> str | None:
        """Best identifier of a raw record for log lines."""
        value = raw.get("id")
        return str(value) if value is not None else None

    def _client(self) -> httpx.Client:
        return httpx.Client(timeout=self.timeout, transport=self.transport)

    def _fail(self, e: httpx.HTTPError) -> FetchError:
        status = e.response.status_code if isinstance(e, httpx.HTTPStatusError) else None
        log.error("fetch_failed", platform=self.platform.value, status=status, error=str(e))
        return FetchError(self.platform.value, str(e) or type(e).__name__, status_code=status)

    @abstractmethod
    def _fetch_raw(self, offset: int, limit: int) -> list[Any]:
        """Return the raw listing objects at [offset, offset + limit). Raise FetchError on failure."""
        ...

    @abstractmethod
    def normalize(self, raw: dict[str, Any]) -> MarketRecord:
        """Map one raw listing to a MarketRecord. May raise; transform() contains it."""
        ...
