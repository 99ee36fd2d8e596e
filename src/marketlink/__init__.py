"""marketlink - prediction market ingestion and event calendar correlation."""

__version__ = "0.1.0"
