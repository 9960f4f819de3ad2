from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

import asyncpg

from .errors import StoreError, StoreUnavailableError
from .models import Link, LinkRow, LinkStats, LinkTypeStats, PageMeta
from .store import batched

logger = logging.getLogger(__name__)

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS page_links (
        id BIGSERIAL PRIMARY KEY,
        source_id TEXT NOT NULL,
        target_id TEXT NOT NULL,
        link_type TEXT NOT NULL,
        relationship TEXT,
        weight REAL NOT NULL DEFAULT 1.0,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        CONSTRAINT page_links_source_target_type_key UNIQUE (source_id, target_id, link_type)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_page_links_source ON page_links(source_id)",
    "CREATE INDEX IF NOT EXISTS idx_page_links_target ON page_links(target_id)",
    "CREATE INDEX IF NOT EXISTS idx_page_links_type ON page_links(link_type)",
]

UPSERT = """
INSERT INTO page_links(source_id, target_id, link_type, relationship, weight)
VALUES($1,$2,$3,$4,$5)
ON CONFLICT(source_id, target_id, link_type)
DO UPDATE SET weight=excluded.weight, relationship=excluded.relationship
"""

LINK_COLUMNS = "id, source_id, target_id, link_type, relationship, weight"

_UNAVAILABLE = (
    OSError,
    asyncio.TimeoutError,
    asyncpg.InterfaceError,
    asyncpg.exceptions.CannotConnectNowError,
    asyncpg.exceptions.TooManyConnectionsError,
)


def _row(r: asyncpg.Record) -> LinkRow:
    return LinkRow(
        id=int(r["id"]),
        source_id=r["source_id"],
        target_id=r["target_id"],
        link_type=r["link_type"],
        relationship=r["relationship"],
        weight=float(r["weight"]),
    )


def _store_error(op: str, e: Exception) -> StoreError:
    logger.error(f"Postgres {op} failed: {e}")
    if isinstance(e, _UNAVAILABLE):
        return StoreUnavailableError(f"{op}: {e}")
    return StoreError(f"{op}: {e}")


@dataclass
class PostgresLinkStore:
    """Link store on a PostgreSQL `page_links` table.

    Page metadata is read from the `wiki_pages` table owned by the page store.
    """

    pool: asyncpg.Pool

    @classmethod
    async def connect(cls, dsn: str, *, min_size: int = 1, max_size: int = 10) -> "PostgresLinkStore":
        try:
            pool = await asyncpg.create_pool(dsn=dsn, min_size=min_size, max_size=max_size)
        except (*_UNAVAILABLE, asyncpg.PostgresError) as e:
            raise StoreUnavailableError(f"cannot connect to postgres: {e}") from e
        return cls(pool=pool)

    async def close(self) -> None:
        await self.pool.close()

    async def _fetch(self, op: str, q: str, *args) -> list[asyncpg.Record]:
        try:
            async with self.pool.acquire() as con:
                return await con.fetch(q, *args)
        except (*_UNAVAILABLE, asyncpg.PostgresError) as e:
            raise _store_error(op, e) from e

    async def ensure_schema(self) -> None:
        try:
            async with self.pool.acquire() as con:
                for q in SCHEMA:
                    await con.execute(q)
        except (*_UNAVAILABLE, asyncpg.PostgresError) as e:
            raise _store_error("ensure_schema", e) from e

    async def sync(self, links: Sequence[Link], *, replace: bool, chunk_size: int = 500) -> int:
        upserted = 0
        try:
            async with self.pool.acquire() as con:
                async with con.transaction():
                    if replace:
                        await con.execute("DELETE FROM page_links")
                    for chunk in batched(links, chunk_size):
                        await con.executemany(
                            UPSERT,
                            [
                                (link.source_id, link.target_id, link.link_type, link.relationship, link.weight)
                                for link in chunk
                            ],
                        )
                        upserted += len(chunk)
        except (*_UNAVAILABLE, asyncpg.PostgresError) as e:
            raise _store_error("sync", e) from e
        return upserted

    async def backlinks(self, target_id: str, *, limit: int) -> list[LinkRow]:
        q = f"""
        SELECT * FROM (
            SELECT DISTINCT ON (source_id) {LINK_COLUMNS}
            FROM page_links
            WHERE target_id = $1
            ORDER BY source_id, weight DESC, id ASC
        ) sub
        ORDER BY sub.weight DESC, sub.source_id ASC
        LIMIT $2
        """
        return [_row(r) for r in await self._fetch("backlinks", q, target_id, limit)]

    async def touching(self, entity_id: str) -> list[LinkRow]:
        # Two index-backed arms instead of an OR scan.
        q = f"""
        SELECT {LINK_COLUMNS} FROM page_links WHERE source_id = $1
        UNION
        SELECT {LINK_COLUMNS} FROM page_links WHERE target_id = $1
        ORDER BY id
        """
        return [_row(r) for r in await self._fetch("touching", q, entity_id)]

    async def neighborhood(self, entity_id: str, *, limit: int) -> list[LinkRow]:
        q = f"""
        SELECT {LINK_COLUMNS} FROM page_links
        WHERE source_id = $1 OR target_id = $1
        ORDER BY weight DESC, id ASC
        LIMIT $2
        """
        return [_row(r) for r in await self._fetch("neighborhood", q, entity_id, limit)]

    async def stats(self) -> LinkStats:
        by_type = await self._fetch(
            "stats",
            """
            SELECT link_type,
                   COUNT(*)::int AS count,
                   ROUND(AVG(weight)::numeric, 2) AS avg_weight
            FROM page_links
            GROUP BY link_type
            ORDER BY count DESC, link_type ASC
            """,
        )
        totals = await self._fetch(
            "stats",
            """
            SELECT COUNT(*)::int AS total,
                   COUNT(DISTINCT source_id)::int AS sources,
                   COUNT(DISTINCT target_id)::int AS targets
            FROM page_links
            """,
        )
        t = totals[0] if totals else None
        return LinkStats(
            total=(t["total"] if t else 0) or 0,
            unique_sources=(t["sources"] if t else 0) or 0,
            unique_targets=(t["targets"] if t else 0) or 0,
            by_type=[
                LinkTypeStats(
                    link_type=r["link_type"],
                    count=r["count"],
                    avg_weight=float(r["avg_weight"]),
                )
                for r in by_type
            ],
        )

    async def lookup_pages(self, ids: Iterable[str]) -> dict[str, PageMeta]:
        wanted = list(dict.fromkeys(ids))
        if not wanted:
            return {}
        rows = await self._fetch(
            "lookup_pages",
            """
            SELECT id, title, entity_type, quality, reader_importance
            FROM wiki_pages
            WHERE id = ANY($1::text[])
            """,
            wanted,
        )
        return {
            r["id"]: PageMeta(
                id=r["id"],
                title=r["title"],
                entity_type=r["entity_type"],
                quality=r["quality"],
                reader_importance=r["reader_importance"],
            )
            for r in rows
        }
