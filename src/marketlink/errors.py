"""Exception taxonomy for ingestion and persistence failures."""

from __future__ import annotations


class MarketLinkError(Exception):
    """Base class for all marketlink errors."""


class ConfigurationError(MarketLinkError):
    """Missing or invalid source configuration (endpoint, api_type, source row).

    Raised before any network call is made.
    """


class FetchError(MarketLinkError):
    """Network, HTTP or GraphQL failure while talking to a platform. Retryable by the caller."""

    def __init__(self, platform: str, message: str, status_code: int | None = None):
        super().__init__(f"{platform}: {message}")
        self.platform = platform
        self.status_code = status_code


class TransformError(MarketLinkError):
    """A single raw record could not be mapped to a MarketRecord. Contained per record."""

    def __init__(self, platform: str, message: str, raw_id: str | None = None):
        super().__init__(f"{platform}: {message}")
        self.platform = platform
        self.raw_id = raw_id


class PersistenceError(MarketLinkError):
    """A market write failed and was rolled back. Fails the enclosing sync run."""


class SyncCancelled(MarketLinkError):
    """A sync run was cancelled between records."""
