"""Shared fixtures: a DuckDB-backed pool on a temp file and a controllable clock."""

from __future__ import annotations

import pytest

from marketlink.storage.db import ConnectionPool

T0 = 1_760_000_000_000  # ms epoch


class FakeClock:
    """Millisecond clock advanced explicitly by tests."""

    def __init__(self, start: int = T0) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, minutes: float = 0, hours: float = 0) -> None:
        self.now += int((minutes * 60 + hours * 3600) * 1000)


@pytest.fixture
def pool(tmp_path):
    p = ConnectionPool(tmp_path / "test.duckdb", size=2)
    yield p
    p.close()


@pytest.fixture
def clock():
    return FakeClock()
