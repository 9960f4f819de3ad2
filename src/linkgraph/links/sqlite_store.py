from __future__ import annotations

import asyncio
import logging
import sqlite3
import threading
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from .errors import StoreError, StoreUnavailableError
from .models import Link, LinkRow, LinkStats, LinkTypeStats, PageMeta
from .store import batched

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS page_links (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  source_id TEXT NOT NULL,
  target_id TEXT NOT NULL,
  link_type TEXT NOT NULL,
  relationship TEXT,
  weight REAL NOT NULL DEFAULT 1.0,
  created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
  UNIQUE(source_id, target_id, link_type)
);

CREATE INDEX IF NOT EXISTS idx_page_links_source ON page_links(source_id);
CREATE INDEX IF NOT EXISTS idx_page_links_target ON page_links(target_id);
CREATE INDEX IF NOT EXISTS idx_page_links_type ON page_links(link_type);

-- stand-in for the page metadata store when running standalone
CREATE TABLE IF NOT EXISTS wiki_pages (
  id TEXT PRIMARY KEY,
  title TEXT,
  entity_type TEXT,
  quality REAL,
  reader_importance REAL
);
"""

UPSERT = """
INSERT INTO page_links(source_id, target_id, link_type, relationship, weight)
VALUES(?,?,?,?,?)
ON CONFLICT(source_id, target_id, link_type)
DO UPDATE SET weight=excluded.weight, relationship=excluded.relationship
"""

LINK_COLUMNS = "id, source_id, target_id, link_type, relationship, weight"

# SQLite's default host-parameter limit is 999 on older builds.
_LOOKUP_CHUNK = 500


def _row(r: tuple) -> LinkRow:
    return LinkRow(
        id=int(r[0]),
        source_id=r[1],
        target_id=r[2],
        link_type=r[3],
        relationship=r[4],
        weight=float(r[5]),
    )


@dataclass
class SQLiteLinkStore:
    """Link store on a single sqlite3 connection.

    `path` may be ":memory:". Every statement runs in a worker thread via
    `asyncio.to_thread`; the lock serializes those threads on the one
    connection, so the event loop keeps serving while a sync is written.
    """

    path: str
    _con: sqlite3.Connection | None = field(default=None, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def _connect(self) -> sqlite3.Connection:
        if self._con is None:
            try:
                con = sqlite3.connect(self.path, check_same_thread=False)
            except sqlite3.Error as e:
                raise StoreUnavailableError(f"cannot open sqlite database {self.path!r}: {e}") from e
            con.execute("PRAGMA journal_mode=WAL")
            self._con = con
        return self._con

    def _read_blocking(self, q: str, params: Sequence = ()) -> list[tuple]:
        with self._lock:
            con = self._connect()
            try:
                return con.execute(q, params).fetchall()
            except sqlite3.OperationalError as e:
                logger.error(f"SQLite read failed: {e}")
                raise StoreUnavailableError(str(e)) from e
            except sqlite3.Error as e:
                logger.error(f"SQLite read failed: {e}")
                raise StoreError(str(e)) from e

    async def _read(self, q: str, params: Sequence = ()) -> list[tuple]:
        return await asyncio.to_thread(self._read_blocking, q, params)

    async def ensure_schema(self) -> None:
        def _create():
            with self._lock:
                con = self._connect()
                con.executescript(SCHEMA)
                con.commit()

        await asyncio.to_thread(_create)

    async def close(self) -> None:
        def _close():
            with self._lock:
                if self._con is not None:
                    self._con.close()
                    self._con = None

        await asyncio.to_thread(_close)

    def _sync_blocking(self, links: Sequence[Link], replace: bool, chunk_size: int) -> int:
        upserted = 0
        with self._lock:
            con = self._connect()
            try:
                # The connection context commits on success and rolls back on error.
                with con:
                    if replace:
                        con.execute("DELETE FROM page_links")
                    for chunk in batched(links, chunk_size):
                        con.executemany(
                            UPSERT,
                            [
                                (link.source_id, link.target_id, link.link_type, link.relationship, link.weight)
                                for link in chunk
                            ],
                        )
                        upserted += len(chunk)
            except sqlite3.OperationalError as e:
                logger.error(f"SQLite sync rolled back: {e}")
                raise StoreUnavailableError(str(e)) from e
            except sqlite3.Error as e:
                logger.error(f"SQLite sync rolled back: {e}")
                raise StoreError(str(e)) from e
        return upserted

    async def sync(self, links: Sequence[Link], *, replace: bool, chunk_size: int = 500) -> int:
        return await asyncio.to_thread(self._sync_blocking, links, replace, chunk_size)

    async def backlinks(self, target_id: str, *, limit: int) -> list[LinkRow]:
        q = f"""
        SELECT {LINK_COLUMNS} FROM (
          SELECT {LINK_COLUMNS},
                 ROW_NUMBER() OVER (PARTITION BY source_id ORDER BY weight DESC, id ASC) AS rn
          FROM page_links
          WHERE target_id = ?
        )
        WHERE rn = 1
        ORDER BY weight DESC, source_id ASC
        LIMIT ?
        """
        return [_row(r) for r in await self._read(q, (target_id, limit))]

    async def touching(self, entity_id: str) -> list[LinkRow]:
        q = f"""
        SELECT {LINK_COLUMNS} FROM page_links WHERE source_id = ?
        UNION
        SELECT {LINK_COLUMNS} FROM page_links WHERE target_id = ?
        ORDER BY id
        """
        return [_row(r) for r in await self._read(q, (entity_id, entity_id))]

    async def neighborhood(self, entity_id: str, *, limit: int) -> list[LinkRow]:
        q = f"""
        SELECT {LINK_COLUMNS} FROM page_links
        WHERE source_id = ? OR target_id = ?
        ORDER BY weight DESC, id ASC
        LIMIT ?
        """
        return [_row(r) for r in await self._read(q, (entity_id, entity_id, limit))]

    async def stats(self) -> LinkStats:
        by_type = await self._read(
            """
            SELECT link_type, COUNT(*) AS count, ROUND(AVG(weight), 2) AS avg_weight
            FROM page_links
            GROUP BY link_type
            ORDER BY count DESC, link_type ASC
            """
        )
        totals = await self._read(
            """
            SELECT COUNT(*), COUNT(DISTINCT source_id), COUNT(DISTINCT target_id)
            FROM page_links
            """
        )
        total, sources, targets = totals[0] if totals else (0, 0, 0)
        return LinkStats(
            total=int(total or 0),
            unique_sources=int(sources or 0),
            unique_targets=int(targets or 0),
            by_type=[
                LinkTypeStats(link_type=r[0], count=int(r[1]), avg_weight=float(r[2]))
                for r in by_type
            ],
        )

    async def lookup_pages(self, ids: Iterable[str]) -> dict[str, PageMeta]:
        out: dict[str, PageMeta] = {}
        for chunk in batched(dict.fromkeys(ids), _LOOKUP_CHUNK):
            marks = ",".join("?" * len(chunk))
            rows = await self._read(
                f"SELECT id, title, entity_type, quality, reader_importance FROM wiki_pages WHERE id IN ({marks})",
                chunk,
            )
            for r in rows:
                out[r[0]] = PageMeta(
                    id=r[0], title=r[1], entity_type=r[2], quality=r[3], reader_importance=r[4]
                )
        return out

    async def put_pages(self, pages: Iterable[PageMeta]) -> int:
        rows = [(p.id, p.title, p.entity_type, p.quality, p.reader_importance) for p in pages]

        def _write():
            with self._lock:
                con = self._connect()
                with con:
                    con.executemany(
                        """
                        INSERT INTO wiki_pages(id, title, entity_type, quality, reader_importance)
                        VALUES(?,?,?,?,?)
                        ON CONFLICT(id) DO UPDATE SET
                          title=excluded.title,
                          entity_type=excluded.entity_type,
                          quality=excluded.quality,
                          reader_importance=excluded.reader_importance
                        """,
                        rows,
                    )

        await asyncio.to_thread(_write)
        return len(rows)
