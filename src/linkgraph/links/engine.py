from __future__ import annotations

import logging
import time
from collections.abc import Iterable, Mapping
from typing import Any

from . import ranking
from .errors import LinkValidationError
from .models import (
    Backlink,
    GraphEdge,
    GraphNode,
    Link,
    LinkStats,
    RelatedEntry,
    display_fields,
)
from .schemas import (
    DEFAULT_BACKLINKS_LIMIT,
    DEFAULT_RELATED_LIMIT,
    MAX_BACKLINKS_LIMIT,
    MAX_RELATED_LIMIT,
    LinkIn,
    check_entity_id,
    check_limit,
    parse_sync_batch,
)
from .store import LinkStore, PageMetadataSource

logger = logging.getLogger(__name__)

MAX_GRAPH_EDGES = 500


class LinkGraph:
    """Ingestion and the read-side resolvers over one link store.

    Stateless apart from its collaborators: every call recomputes from the
    store, and only `sync` writes.
    """

    def __init__(
        self,
        store: LinkStore,
        pages: PageMetadataSource | None = None,
        *,
        chunk_size: int = 500,
    ):
        if chunk_size < 1:
            raise ValueError("chunk_size must be positive")
        self.store = store
        # Both bundled stores also serve page metadata from their database.
        self.pages: PageMetadataSource = pages if pages is not None else store  # type: ignore[assignment]
        self.chunk_size = chunk_size

    async def close(self) -> None:
        await self.store.close()

    async def sync(
        self,
        links: Iterable[Link | LinkIn | Mapping[str, Any]],
        *,
        replace: bool = False,
    ) -> dict[str, int]:
        batch = parse_sync_batch(links, replace=replace)
        rows = [x.to_link() for x in batch.links]

        t0 = time.perf_counter()
        upserted = await self.store.sync(rows, replace=batch.replace, chunk_size=self.chunk_size)
        logger.info(
            f"Synced {upserted} links (replace={batch.replace}) in "
            f"{(time.perf_counter() - t0) * 1000.0:.1f} ms"
        )
        return {"upserted": upserted}

    async def backlinks(self, target_id: str, *, limit: int = DEFAULT_BACKLINKS_LIMIT) -> dict[str, Any]:
        check_entity_id(target_id)
        check_limit(limit, maximum=MAX_BACKLINKS_LIMIT)

        rows = await self.store.backlinks(target_id, limit=limit)
        pages = await self.pages.lookup_pages(r.source_id for r in rows)

        backlinks: list[Backlink] = []
        for r in rows:
            entity_type, title = display_fields(r.source_id, pages.get(r.source_id))
            backlinks.append(
                Backlink(
                    id=r.source_id,
                    type=entity_type,
                    title=title,
                    relationship=r.relationship or None,
                    link_type=r.link_type,
                    weight=r.weight,
                )
            )
        return {
            "targetId": target_id,
            "backlinks": [b.to_dict() for b in backlinks],
            "total": len(backlinks),
        }

    async def related_entries(self, entity_id: str, *, limit: int = DEFAULT_RELATED_LIMIT) -> list[RelatedEntry]:
        check_entity_id(entity_id)
        check_limit(limit, maximum=MAX_RELATED_LIMIT)

        rows = await self.store.touching(entity_id)
        aggregates = ranking.aggregate(ranking.normalize(entity_id, rows))
        if not aggregates:
            return []
        pages = await self.pages.lookup_pages(aggregates.keys())
        candidates = ranking.score_candidates(aggregates, pages, limit=limit)
        return ranking.type_diverse_select(candidates, limit)

    async def related(self, entity_id: str, *, limit: int = DEFAULT_RELATED_LIMIT) -> dict[str, Any]:
        selected = await self.related_entries(entity_id, limit=limit)
        return {
            "entityId": entity_id,
            "related": [e.to_dict() for e in selected],
            "total": len(selected),
        }

    async def graph(self, entity_id: str) -> dict[str, Any]:
        check_entity_id(entity_id)

        rows = await self.store.neighborhood(entity_id, limit=MAX_GRAPH_EDGES)
        ids = [x for r in rows for x in (r.source_id, r.target_id)]
        pages = await self.pages.lookup_pages(ids)

        nodes: dict[str, GraphNode] = {}
        edges: list[GraphEdge] = []
        for r in rows:
            for node_id in (r.source_id, r.target_id):
                if node_id not in nodes:
                    entity_type, title = display_fields(node_id, pages.get(node_id))
                    nodes[node_id] = GraphNode(id=node_id, type=entity_type, title=title)
            edges.append(
                GraphEdge(
                    source=r.source_id,
                    target=r.target_id,
                    link_type=r.link_type,
                    relationship=r.relationship or None,
                    weight=r.weight,
                )
            )
        return {
            "entityId": entity_id,
            "nodes": [n.to_dict() for n in nodes.values()],
            "edges": [e.to_dict() for e in edges],
        }

    async def link_stats(self) -> LinkStats:
        return await self.store.stats()

    async def stats(self) -> dict[str, Any]:
        return (await self.link_stats()).to_dict()


async def connect_engine(cfg) -> LinkGraph:
    """Open the store selected by `cfg` (a LinkGraphSettings) and wrap it."""
    if cfg.backend == "postgres":
        from .postgres_store import PostgresLinkStore

        store = await PostgresLinkStore.connect(
            cfg.postgres_dsn, min_size=cfg.pool_min_size, max_size=cfg.pool_max_size
        )
    elif cfg.backend == "sqlite":
        from .sqlite_store import SQLiteLinkStore

        store = SQLiteLinkStore(path=cfg.sqlite_path)
        await store.ensure_schema()
    else:
        raise LinkValidationError(f"unknown backend: {cfg.backend!r}")
    return LinkGraph(store, chunk_size=cfg.sync_chunk_size)
