from __future__ import annotations

from collections.abc import Iterable, Iterator, Sequence
from itertools import islice
from typing import Protocol, TypeVar

from .models import Link, LinkRow, LinkStats, PageMeta

T = TypeVar("T")


def batched(items: Iterable[T], size: int) -> Iterator[list[T]]:
    it = iter(items)
    while True:
        chunk = list(islice(it, size))
        if not chunk:
            return
        yield chunk


class LinkStore(Protocol):
    """Durable table of directed edges, unique on (source, target, link type)."""

    async def ensure_schema(self) -> None: ...

    async def sync(self, links: Sequence[Link], *, replace: bool, chunk_size: int = 500) -> int:
        """Upsert `links` (deleting everything first if `replace`) in one transaction."""
        ...

    async def backlinks(self, target_id: str, *, limit: int) -> list[LinkRow]:
        """Edges into `target_id`, one per source (highest weight), weight-descending."""
        ...

    async def touching(self, entity_id: str) -> list[LinkRow]:
        """Every edge with `entity_id` at either end, ordered by edge id."""
        ...

    async def neighborhood(self, entity_id: str, *, limit: int) -> list[LinkRow]:
        """Edges with `entity_id` at either end, strongest first, at most `limit`."""
        ...

    async def stats(self) -> LinkStats: ...

    async def close(self) -> None: ...


class PageMetadataSource(Protocol):
    """Read-only lookup into the page metadata store."""

    async def lookup_pages(self, ids: Iterable[str]) -> dict[str, PageMeta]: ...
