from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import asdict, is_dataclass
from typing import Any
from urllib.parse import quote

import httpx
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from linkgraph.links.models import Link
from linkgraph.links.schemas import MAX_BATCH_SIZE
from linkgraph.links.store import batched

logger = logging.getLogger(__name__)


# Sync bodies can carry 5000 links, so writes get more time than connects.
SYNC_TIMEOUT = httpx.Timeout(connect=5.0, read=60.0, write=30.0, pool=5.0)
SYNC_LIMITS = httpx.Limits(max_connections=10, max_keepalive_connections=5)

# Connection-level failures only; HTTP error statuses are returned to the caller.
RETRYABLE = (httpx.TimeoutException, httpx.NetworkError, httpx.RemoteProtocolError)

retry_transient = retry(
    reraise=True,
    stop=stop_after_attempt(4),
    wait=wait_exponential_jitter(initial=0.5, max=8.0),
    retry=retry_if_exception_type(RETRYABLE),
    before_sleep=before_sleep_log(logger, logging.WARNING),
)


def _wire(link: Link | Mapping[str, Any]) -> dict[str, Any]:
    if is_dataclass(link) and not isinstance(link, type):
        d = asdict(link)
        return {
            "sourceId": d["source_id"],
            "targetId": d["target_id"],
            "linkType": d["link_type"],
            "relationship": d["relationship"],
            "weight": d["weight"],
        }
    return dict(link)


class LinkGraphClient:
    """Client for the link graph HTTP service.

    Used by content pipelines to publish edge sets and by tools that read
    backlinks/related pages remotely.
    """

    def __init__(
        self,
        base_url: str,
        *,
        api_key: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={"X-API-Key": api_key} if api_key else None,
            timeout=SYNC_TIMEOUT,
            limits=SYNC_LIMITS,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "LinkGraphClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    @retry_transient
    async def _get(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        r = await self._client.get(path, params=params)
        r.raise_for_status()
        return r.json()

    @retry_transient
    async def sync(self, links: list[Link | Mapping[str, Any]], *, replace: bool = False) -> int:
        r = await self._client.post(
            "/api/links/sync",
            json={"links": [_wire(x) for x in links], "replace": replace},
        )
        r.raise_for_status()
        return int(r.json()["upserted"])

    async def push(
        self,
        links: Iterable[Link | Mapping[str, Any]],
        *,
        replace: bool = False,
        batch_size: int = MAX_BATCH_SIZE,
    ) -> int:
        """Publish an edge set of any size as consecutive sync calls.

        Only the first call carries `replace`, so readers may observe the
        intermediate batches of a multi-batch replace.
        """
        total = 0
        first = True
        for chunk in batched(links, batch_size):
            total += await self.sync(chunk, replace=replace and first)
            first = False
        logger.info(f"Pushed {total} links (replace={replace})")
        return total

    async def backlinks(self, entity_id: str, *, limit: int = 50) -> dict[str, Any]:
        return await self._get(f"/api/links/backlinks/{quote(entity_id, safe='')}", {"limit": limit})

    async def related(self, entity_id: str, *, limit: int = 25) -> dict[str, Any]:
        return await self._get(f"/api/links/related/{quote(entity_id, safe='')}", {"limit": limit})

    async def graph(self, entity_id: str) -> dict[str, Any]:
        return await self._get(f"/api/links/graph/{quote(entity_id, safe='')}")

    async def stats(self) -> dict[str, Any]:
        return await self._get("/api/links/stats")
