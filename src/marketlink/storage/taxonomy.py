"""Category/tag reference rows and their links to markets. Keyed by slug, idempotent."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection

    from marketlink.storage.db import ConnectionPool

_WS_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class CategorySeed:
    """Display metadata for a category an adapter guarantees to exist."""

    name: str
    color: str | None = None
    icon: str | None = None

    @property
    def slug(self) -> str:
        return slugify(self.name)


def slugify(name: str) -> str:
    """'Pop Culture' -> 'pop-culture'."""
    return _WS_RE.sub("-", (name or "").strip().lower())


def ensure_category(
    conn: DuckDBPyConnection,
    name: str,
    color: str | None = None,
    icon: str | None = None,
) -> int:
    """Return the id of the category with name's slug, creating it on first use.

    Not safe against a concurrent transaction creating the same slug; writers that can
    run in parallel go through resolve_refs or seed_categories.
    """
    slug = slugify(name)
    if not slug:
        raise ValueError("category name must not be blank")
    conn.execute(
        """
        INSERT INTO category (name, slug, color, icon)
        VALUES (?, ?, ?, ?)
        ON CONFLICT (slug) DO NOTHING
        """,
        [name.strip(), slug, color, icon],
    )
    return conn.execute("SELECT id FROM category WHERE slug = ?", [slug]).fetchone()[0]


def ensure_tag(conn: DuckDBPyConnection, name: str) -> int:
    """Return the id of the tag with name's slug, creating it on first use."""
    slug = slugify(name)
    if not slug:
        raise ValueError("tag name must not be blank")
    conn.execute(
        "INSERT INTO tag (name, slug) VALUES (?, ?) ON CONFLICT (slug) DO NOTHING",
        [name.strip(), slug],
    )
    return conn.execute("SELECT id FROM tag WHERE slug = ?", [slug]).fetchone()[0]


def ensure_categories(conn: DuckDBPyConnection, seeds: list[CategorySeed]) -> list[int]:
    """Create any missing seed categories; existing rows keep their color/icon."""
    return [ensure_category(conn, s.name, s.color, s.icon) for s in seeds]


@dataclass(frozen=True)
class TaxonomyRefs:
    """Category and tag ids for one market, resolved before its write transaction."""

    category: str | None = None
    category_id: int | None = None
    tag_ids: tuple[int, ...] = ()


def resolve_refs(pool: ConnectionPool, category: str | None, tags: list[str]) -> TaxonomyRefs:
    """Create-or-fetch a market's category and tags in a short committed transaction.

    Runs under the pool's reference_lock, so concurrent runs creating the same slug
    see each other's rows instead of colliding at commit. Tags are deduplicated by slug;
    blank names are dropped.
    """
    if not (category and slugify(category)):
        category = None
    tag_names: dict[str, str] = {}
    for tag in tags:
        slug = slugify(tag)
        if slug:
            tag_names.setdefault(slug, tag)
    if category is None and not tag_names:
        return TaxonomyRefs()
    with pool.connection() as conn:
        existing = _existing_refs(conn, category, list(tag_names))
    if existing is not None:
        return existing
    with pool.reference_lock, pool.transaction() as conn:
        category_id = ensure_category(conn, category) if category else None
        tag_ids = tuple(ensure_tag(conn, name) for name in tag_names.values())
    return TaxonomyRefs(category=category, category_id=category_id, tag_ids=tag_ids)


def _existing_refs(
    conn: DuckDBPyConnection, category: str | None, tag_slugs: list[str]
) -> TaxonomyRefs | None:
    """Refs built from committed rows only; None as soon as any slug is missing."""
    category_id = None
    if category:
        row = conn.execute("SELECT id FROM category WHERE slug = ?", [slugify(category)]).fetchone()
        if row is None:
            return None
        category_id = row[0]
    tag_ids = []
    for slug in tag_slugs:
        row = conn.execute("SELECT id FROM tag WHERE slug = ?", [slug]).fetchone()
        if row is None:
            return None
        tag_ids.append(row[0])
    return TaxonomyRefs(category=category, category_id=category_id, tag_ids=tuple(tag_ids))


def seed_categories(pool: ConnectionPool, seeds: list[CategorySeed]) -> list[int]:
    """ensure_categories in its own transaction under the pool's reference_lock."""
    with pool.reference_lock, pool.transaction() as conn:
        return ensure_categories(conn, seeds)


def link_category(
    conn: DuckDBPyConnection, market_id: int, category_id: int, is_primary: bool = True
) -> None:
    conn.execute(
        """
        INSERT INTO event_category (event_id, category_id, is_primary)
        VALUES (?, ?, ?)
        ON CONFLICT DO NOTHING
        """,
        [market_id, category_id, is_primary],
    )


def link_tag(conn: DuckDBPyConnection, market_id: int, tag_id: int) -> None:
    conn.execute(
        "INSERT INTO event_tag (event_id, tag_id) VALUES (?, ?) ON CONFLICT DO NOTHING",
        [market_id, tag_id],
    )


def categories_for_market(conn: DuckDBPyConnection, market_id: int) -> list[dict]:
    """Linked categories for a market, primary first."""
    rows = conn.execute(
        """
        SELECT c.id, c.name, c.slug, ec.is_primary
        FROM event_category ec
        JOIN category c ON c.id = ec.category_id
        WHERE ec.event_id = ?
        ORDER BY ec.is_primary DESC, c.name
        """,
        [market_id],
    ).fetchall()
    columns = ["id", "name", "slug", "is_primary"]
    return [dict(zip(columns, r)) for r in rows]


def tags_for_market(conn: DuckDBPyConnection, market_id: int) -> list[str]:
    rows = conn.execute(
        """
        SELECT t.name FROM event_tag et JOIN tag t ON t.id = et.tag_id
        WHERE et.event_id = ? ORDER BY t.name
        """,
        [market_id],
    ).fetchall()
    return [r[0] for r in rows]
