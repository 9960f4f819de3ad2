import asyncio

import pytest
import pytest_asyncio

from linkgraph.links.engine import LinkGraph
from linkgraph.links.models import Link, PageMeta
from linkgraph.links.sqlite_store import SQLiteLinkStore


def make_link(source, target, link_type="entity_link", relationship=None, weight=1.0):
    return {
        "sourceId": source,
        "targetId": target,
        "linkType": link_type,
        "relationship": relationship,
        "weight": weight,
    }


@pytest_asyncio.fixture
async def store():
    s = SQLiteLinkStore(path=":memory:")
    await s.ensure_schema()
    yield s
    await s.close()


@pytest.fixture
def engine(store):
    return LinkGraph(store)


@pytest.fixture
def sync_store():
    """A schema-initialized store for synchronous (TestClient / CLI) tests."""
    s = SQLiteLinkStore(path=":memory:")
    asyncio.run(s.ensure_schema())
    yield s
    asyncio.run(s.close())


async def seed_pages(store, *pages: PageMeta) -> None:
    await store.put_pages(pages)


async def seed_links(store, *links: Link) -> None:
    await store.sync(list(links), replace=False)
