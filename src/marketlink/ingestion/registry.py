"""api_type -> adapter class. Built once at import, read-only afterwards."""

from __future__ import annotations

from types import MappingProxyType
from typing import Mapping

import httpx

from marketlink.config import Settings
from marketlink.errors import ConfigurationError
from marketlink.ingestion.base import PlatformAdapter
from marketlink.ingestion.fortytwo.client import FortyTwoAdapter
from marketlink.ingestion.polymarket.gamma import PolymarketAdapter

ADAPTERS: Mapping[str, type[PlatformAdapter]] = MappingProxyType(
    {
        "polymarket": PolymarketAdapter,
        "42space": FortyTwoAdapter,
        "fortytwo": FortyTwoAdapter,
    }
)


def default_endpoint(api_type: str, settings: Settings) -> str:
    if ADAPTERS.get(api_type) is PolymarketAdapter:
        return settings.polymarket_api_base
    if ADAPTERS.get(api_type) is FortyTwoAdapter:
        return settings.fortytwo_graphql_endpoint
    return ""


def create_adapter(
    api_type: str,
    settings: Settings,
    base_url: str | None = None,
    transport: httpx.BaseTransport | None = None,
) -> PlatformAdapter:
    """Instantiate the adapter for a source. Fails with ConfigurationError before any I/O."""
    key = (api_type or "").strip().lower()
    adapter_cls = ADAPTERS.get(key)
    if adapter_cls is None:
        raise ConfigurationError(f"no adapter for api_type {api_type!r}")
    return adapter_cls.from_config(
        settings.platform_section(key),
        endpoint=base_url or default_endpoint(key, settings),
        timeout=settings.http_timeout_sec,
        rate_limit_rps=settings.rate_limit_rps,
        transport=transport,
    )
