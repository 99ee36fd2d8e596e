"""Canonical market URLs per platform, the reverse lookup, and address helpers."""

from __future__ import annotations

import re
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Callable, Mapping
from urllib.parse import urlsplit

import httpx
import structlog

log = structlog.get_logger(__name__)

UrlBuilder = Callable[[str, Mapping[str, Any]], str]

_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")


def _fortytwo_url(market_address: str, extra: Mapping[str, Any]) -> str:
    # Site routes on the checksummed contract address; accept bare hex too.
    address = market_address if market_address.startswith("0x") else f"0x{market_address}"
    return f"https://42.space/event/{address}"


def _polymarket_url(market_id: str, extra: Mapping[str, Any]) -> str:
    return f"https://polymarket.com/market/{market_id}"


def _manifold_url(market_slug: str, extra: Mapping[str, Any]) -> str:
    username = extra.get("username") or "markets"
    return f"https://manifold.markets/{username}/{market_slug}"


def _metaculus_url(question_id: str, extra: Mapping[str, Any]) -> str:
    return f"https://metaculus.com/questions/{question_id}/"


def _kalshi_url(market_ticker: str, extra: Mapping[str, Any]) -> str:
    return f"https://kalshi.com/markets/{market_ticker}"


def _predictit_url(market_id: str, extra: Mapping[str, Any]) -> str:
    return f"https://www.predictit.org/markets/detail/{market_id}"


def _futuur_url(question_id: str, extra: Mapping[str, Any]) -> str:
    slug = extra.get("slug") or ""
    return f"https://futuur.com/q/{question_id}" + (f"/{slug}" if slug else "")


# Built once at import and never mutated afterwards.
URL_BUILDERS: Mapping[str, UrlBuilder] = MappingProxyType(
    {
        "42space": _fortytwo_url,
        "polymarket": _polymarket_url,
        "manifold": _manifold_url,
        "metaculus": _metaculus_url,
        "kalshi": _kalshi_url,
        "predictit": _predictit_url,
        "futuur": _futuur_url,
    }
)

_PLATFORM_ALIASES: Mapping[str, str] = MappingProxyType({"42": "42space", "fortytwo": "42space"})

# (host suffix, platform, path pattern); the first group is the market id.
_URL_PATTERNS: tuple[tuple[str, str, re.Pattern[str]], ...] = (
    ("42.space", "42space", re.compile(r"^/event/(0x[a-fA-F0-9]+)")),
    ("polymarket.com", "polymarket", re.compile(r"^/(?:market|event)/([^/]+)")),
    ("manifold.markets", "manifold", re.compile(r"^/[^/]+/([^/]+)")),
    ("metaculus.com", "metaculus", re.compile(r"^/questions/(\d+)")),
    ("kalshi.com", "kalshi", re.compile(r"^/markets/([^/]+)")),
    ("predictit.org", "predictit", re.compile(r"^/markets/detail/(\d+)")),
    ("futuur.com", "futuur", re.compile(r"^/q/([^/]+)")),
)


@dataclass(frozen=True)
class ParsedUrl:
    """Result of parse_url. Both fields are None for unrecognized URLs."""

    platform: str | None = None
    id: str | None = None


def normalize_platform(platform: str) -> str:
    key = (platform or "").strip().lower()
    return _PLATFORM_ALIASES.get(key, key)


def build_url(platform: str, market_id: str, extra: Mapping[str, Any] | None = None) -> str | None:
    """Return the canonical market URL, or None when the platform has no template."""
    builder = URL_BUILDERS.get(normalize_platform(platform))
    if builder is None:
        log.warning("no_url_builder", platform=platform)
        return None
    return builder(market_id, extra or {})


def parse_url(url: str) -> ParsedUrl:
    """Best-effort reverse of build_url. Never raises."""
    try:
        parts = urlsplit(url)
    except (TypeError, ValueError):
        return ParsedUrl()
    host = (parts.hostname or "").lower()
    if not host:
        return ParsedUrl()
    for suffix, platform, pattern in _URL_PATTERNS:
        if host == suffix or host.endswith("." + suffix):
            match = pattern.match(parts.path)
            return ParsedUrl(platform=platform, id=match.group(1) if match else None)
    return ParsedUrl()


def is_valid_address(address: str) -> bool:
    """True for a 0x-prefixed 40-hex-digit chain address."""
    return bool(_ADDRESS_RE.match(address or ""))


def format_address(address: str) -> str:
    """Shorten a valid address to 0x1234...abcd; anything else is returned unchanged."""
    if not is_valid_address(address):
        return address
    return f"{address[:6]}...{address[-4:]}"


def check_url_live(
    url: str,
    timeout: float = 10.0,
    transport: httpx.BaseTransport | None = None,
) -> bool:
    """Probe a market URL. True for a 2xx/3xx answer; network failures count as not live."""
    try:
        with httpx.Client(timeout=timeout, follow_redirects=True, transport=transport) as client:
            resp = client.head(url)
            if resp.status_code == 405:
                resp = client.get(url)
    except httpx.HTTPError as e:
        log.info("url_check_failed", url=url, error=str(e))
        return False
    return resp.status_code < 400
