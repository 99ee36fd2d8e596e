"""DuckDB connection, schema init and a small cursor pool."""

from __future__ import annotations

import queue
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Iterator

import duckdb
import structlog

from marketlink.errors import PersistenceError

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection

log = structlog.get_logger(__name__)

SCHEMA_SQL = """
-- Sequences for auto-increment IDs
CREATE SEQUENCE IF NOT EXISTS source_seq START 1;
CREATE SEQUENCE IF NOT EXISTS event_seq START 1;
CREATE SEQUENCE IF NOT EXISTS outcome_seq START 1;
CREATE SEQUENCE IF NOT EXISTS category_seq START 1;
CREATE SEQUENCE IF NOT EXISTS tag_seq START 1;
CREATE SEQUENCE IF NOT EXISTS price_seq START 1;
CREATE SEQUENCE IF NOT EXISTS sync_log_seq START 1;

-- Configured upstream platforms (api_type selects the adapter)
CREATE TABLE IF NOT EXISTS event_source (
    id              BIGINT PRIMARY KEY DEFAULT nextval('source_seq'),
    name            VARCHAR NOT NULL,
    api_type        VARCHAR NOT NULL,
    base_url        VARCHAR,
    is_active       BOOLEAN NOT NULL DEFAULT TRUE,
    created_at      BIGINT
);

-- Markets, keyed naturally by (source_id, external_id)
CREATE TABLE IF NOT EXISTS event (
    id              BIGINT PRIMARY KEY DEFAULT nextval('event_seq'),
    source_id       BIGINT NOT NULL,
    external_id     VARCHAR NOT NULL,
    platform        VARCHAR NOT NULL,
    title           VARCHAR NOT NULL,
    slug            VARCHAR,
    description     VARCHAR,
    end_date        BIGINT,
    probability     DOUBLE,
    volume          DOUBLE,
    liquidity       DOUBLE,
    source_url      VARCHAR,
    status          VARCHAR NOT NULL,
    event_type      VARCHAR NOT NULL DEFAULT 'prediction',
    category        VARCHAR,
    created_at      BIGINT NOT NULL,
    updated_at      BIGINT NOT NULL,
    UNIQUE (source_id, external_id)
);

CREATE TABLE IF NOT EXISTS event_metadata (
    event_id        BIGINT PRIMARY KEY,
    additional_info JSON
);

CREATE TABLE IF NOT EXISTS outcome (
    id              BIGINT PRIMARY KEY DEFAULT nextval('outcome_seq'),
    event_id        BIGINT NOT NULL,
    name            VARCHAR NOT NULL,
    probability     DOUBLE,
    display_order   INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS outcome_metadata (
    outcome_id      BIGINT PRIMARY KEY,
    symbol          VARCHAR,
    additional_info JSON
);

CREATE TABLE IF NOT EXISTS category (
    id              BIGINT PRIMARY KEY DEFAULT nextval('category_seq'),
    name            VARCHAR NOT NULL,
    slug            VARCHAR NOT NULL UNIQUE,
    color           VARCHAR,
    icon            VARCHAR
);

CREATE TABLE IF NOT EXISTS tag (
    id              BIGINT PRIMARY KEY DEFAULT nextval('tag_seq'),
    name            VARCHAR NOT NULL,
    slug            VARCHAR NOT NULL UNIQUE
);

CREATE TABLE IF NOT EXISTS event_category (
    event_id        BIGINT NOT NULL,
    category_id     BIGINT NOT NULL,
    is_primary      BOOLEAN NOT NULL DEFAULT FALSE,
    PRIMARY KEY (event_id, category_id)
);

CREATE TABLE IF NOT EXISTS event_tag (
    event_id        BIGINT NOT NULL,
    tag_id          BIGINT NOT NULL,
    PRIMARY KEY (event_id, tag_id)
);

-- Append-only probability samples
CREATE TABLE IF NOT EXISTS price_history (
    id              BIGINT PRIMARY KEY DEFAULT nextval('price_seq'),
    event_id        BIGINT NOT NULL,
    timestamp       BIGINT NOT NULL,
    price           DOUBLE NOT NULL,
    volume_24h      DOUBLE
);

-- Sync run audit log
CREATE TABLE IF NOT EXISTS sync_log (
    id               BIGINT PRIMARY KEY DEFAULT nextval('sync_log_seq'),
    source_id        BIGINT NOT NULL,
    sync_type        VARCHAR NOT NULL,
    status           VARCHAR NOT NULL,
    started_at       BIGINT NOT NULL,
    completed_at     BIGINT,
    events_processed INTEGER DEFAULT 0,
    events_added     INTEGER DEFAULT 0,
    events_updated   INTEGER DEFAULT 0,
    error_message    VARCHAR
);
"""


def get_connection(db_path: str | Path, read_only: bool = False) -> DuckDBPyConnection:
    """Return a DuckDB connection. Caller must close or use as context manager.
    ':memory:' opens a private in-memory database."""
    if str(db_path) == ":memory:":
        return duckdb.connect(":memory:")
    path = Path(db_path)
    if not read_only:
        path.parent.mkdir(parents=True, exist_ok=True)
    return duckdb.connect(str(path), read_only=read_only)


def init_schema(conn: DuckDBPyConnection) -> None:
    """Create tables and sequences if they do not exist."""
    for stmt in SCHEMA_SQL.split(";"):
        stmt = stmt.strip()
        if stmt:
            try:
                conn.execute(stmt)
            except duckdb.Error as e:
                if "already exists" not in str(e).lower():
                    raise


class ConnectionPool:
    """Hands out DuckDB cursors on one database, at most `size` at a time.

    Each cursor is an independent connection with its own transaction context, so
    concurrent sync runs do not share transaction state. A borrowed cursor always
    goes back to the pool, including when the caller raised.

    reference_lock serializes writes to rows shared across runs (category, tag slugs).
    DuckDB only detects a duplicate key between two open transactions at COMMIT, so
    those writes must not overlap.
    """

    def __init__(self, db_path: str | Path, size: int = 4, acquire_timeout_sec: float = 30.0):
        self.db_path = db_path
        self.size = size
        self.acquire_timeout_sec = acquire_timeout_sec
        self._root = get_connection(db_path)
        init_schema(self._root)
        self._idle: queue.LifoQueue[DuckDBPyConnection] = queue.LifoQueue()
        self._slots = threading.BoundedSemaphore(size)
        self._lock = threading.Lock()
        self.reference_lock = threading.Lock()
        self._closed = False

    @contextmanager
    def connection(self) -> Iterator[DuckDBPyConnection]:
        """Borrow a cursor for the duration of the with-block."""
        if not self._slots.acquire(timeout=self.acquire_timeout_sec):
            raise PersistenceError(
                f"no database connection available within {self.acquire_timeout_sec}s"
            )
        try:
            try:
                conn = self._idle.get_nowait()
            except queue.Empty:
                with self._lock:
                    if self._closed:
                        raise PersistenceError("connection pool is closed")
                    conn = self._root.cursor()
            try:
                yield conn
            finally:
                self._idle.put(conn)
        finally:
            self._slots.release()

    @contextmanager
    def transaction(self) -> Iterator[DuckDBPyConnection]:
        """Borrow a cursor inside BEGIN/COMMIT; ROLLBACK and re-raise on any error."""
        with self.connection() as conn:
            conn.begin()
            try:
                yield conn
            except BaseException:
                conn.rollback()
                raise
            conn.commit()

    def close(self) -> None:
        with self._lock:
            self._closed = True
            while True:
                try:
                    self._idle.get_nowait().close()
                except queue.Empty:
                    break
            self._root.close()
        log.debug("pool_closed", db_path=str(self.db_path))
