import asyncio

import pytest

from conftest import make_link, seed_links, seed_pages
from linkgraph.links.engine import MAX_GRAPH_EDGES, LinkGraph
from linkgraph.links.errors import LinkValidationError, StoreError
from linkgraph.links.models import Link, PageMeta
from linkgraph.links.schemas import MAX_BATCH_SIZE


class TestSync:
    @pytest.mark.asyncio
    async def test_returns_upserted_count(self, engine):
        res = await engine.sync([make_link("a", "b"), make_link("b", "c")])
        assert res == {"upserted": 2}
        assert (await engine.stats())["total"] == 2

    @pytest.mark.asyncio
    async def test_upsert_is_idempotent_last_write_wins(self, engine, store):
        await engine.sync([make_link("a", "b", "yaml_related", "causes", 1.0)])
        await engine.sync([make_link("a", "b", "yaml_related", "enables", 4.0)])

        rows = await store.touching("a")
        assert len(rows) == 1
        assert rows[0].weight == 4.0
        assert rows[0].relationship == "enables"

    @pytest.mark.asyncio
    async def test_different_link_types_coexist(self, engine, store):
        await engine.sync([make_link("a", "b", "shared_tag"), make_link("a", "b", "yaml_related")])
        assert len(await store.touching("a")) == 2

    @pytest.mark.asyncio
    async def test_replace_clears_existing_links(self, engine, store):
        await engine.sync([make_link("a", "b"), make_link("c", "d")])
        await engine.sync([make_link("x", "y")], replace=True)

        stats = await engine.stats()
        assert stats["total"] == 1
        assert await store.touching("a") == []

    @pytest.mark.asyncio
    async def test_store_work_runs_off_the_event_loop(self, store):
        # Hold the connection lock: a read must wait in its worker thread, not on the loop.
        store._lock.acquire()
        try:
            pending = asyncio.create_task(store.stats())
            ticks = 0
            for _ in range(5):
                await asyncio.sleep(0.01)
                ticks += 1
            assert ticks == 5
            assert not pending.done()
        finally:
            store._lock.release()

        assert (await pending).total == 0

    @pytest.mark.asyncio
    async def test_integer_weights_are_accepted(self, engine, store):
        await engine.sync([make_link("a", "b", weight=3)])
        (row,) = await store.touching("a")
        assert row.weight == 3.0

    @pytest.mark.asyncio
    async def test_accepts_link_dataclasses_and_snake_case(self, engine):
        res = await engine.sync(
            [
                Link("a", "b", "similarity", weight=0.5),
                {"source_id": "b", "target_id": "c", "link_type": "name_prefix"},
            ]
        )
        assert res["upserted"] == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "bad",
        [
            make_link("a", "b", link_type="mentions"),
            make_link("", "b"),
            make_link("a", "b", weight=-1.0),
            make_link("a", "b", weight=101.0),
            make_link("a", "b", relationship="x" * 101),
            make_link("a", "b", weight="2"),
            make_link("a", "b", weight=True),
            make_link(7, "b"),
            {"sourceId": "a", "linkType": "entity_link"},
        ],
    )
    async def test_invalid_row_rejects_whole_batch(self, engine, bad):
        await engine.sync([make_link("keep", "me")])
        with pytest.raises(LinkValidationError):
            await engine.sync([make_link("a", "b"), bad], replace=True)

        stats = await engine.stats()
        assert stats["total"] == 1

    @pytest.mark.asyncio
    async def test_empty_and_oversized_batches_are_rejected(self, engine):
        with pytest.raises(LinkValidationError):
            await engine.sync([])
        too_many = [make_link(f"s{i}", "t") for i in range(MAX_BATCH_SIZE + 1)]
        with pytest.raises(LinkValidationError):
            await engine.sync(too_many)

    @pytest.mark.asyncio
    async def test_chunking_is_invisible(self, store):
        engine = LinkGraph(store, chunk_size=3)
        res = await engine.sync([make_link(f"s{i}", "t") for i in range(10)])
        assert res["upserted"] == 10
        assert (await engine.stats())["total"] == 10

    @pytest.mark.asyncio
    async def test_store_failure_mid_batch_rolls_back_replace(self, store):
        await seed_links(store, Link("old", "page", "entity_link"))
        links = [
            Link("a", "b", "entity_link"),
            Link("c", "d", "entity_link", weight=object()),  # unbindable in the 2nd chunk
        ]

        with pytest.raises(StoreError):
            await store.sync(links, replace=True, chunk_size=1)

        rows = await store.touching("old")
        assert [(r.source_id, r.target_id) for r in rows] == [("old", "page")]
        assert await store.touching("a") == []


class TestBacklinks:
    @pytest.mark.asyncio
    async def test_deduplicates_by_max_weight(self, engine):
        await engine.sync(
            [
                make_link("a", "t", "entity_link", weight=1.0),
                make_link("a", "t", "shared_tag", weight=5.0),
            ]
        )
        res = await engine.backlinks("t")
        assert res["total"] == 1
        (b,) = res["backlinks"]
        assert b["id"] == "a"
        assert b["weight"] == 5.0
        assert b["linkType"] == "shared_tag"

    @pytest.mark.asyncio
    async def test_joins_metadata_with_fallbacks(self, engine, store):
        await seed_pages(store, PageMeta(id="known", title="Known Page", entity_type="organization"))
        await engine.sync([make_link("known", "t", weight=2.0), make_link("orphan", "t")])

        res = await engine.backlinks("t")
        assert res["backlinks"] == [
            {"id": "known", "type": "organization", "title": "Known Page", "linkType": "entity_link", "weight": 2.0},
            {"id": "orphan", "type": "concept", "title": "orphan", "linkType": "entity_link", "weight": 1.0},
        ]

    @pytest.mark.asyncio
    async def test_limit_truncates_weakest(self, engine):
        await engine.sync([make_link(f"s{i}", "t", weight=float(i)) for i in range(1, 6)])
        res = await engine.backlinks("t", limit=2)
        assert [b["id"] for b in res["backlinks"]] == ["s5", "s4"]
        assert res["total"] == 2

    @pytest.mark.asyncio
    async def test_no_backlinks_is_empty_not_error(self, engine):
        assert await engine.backlinks("nobody") == {"targetId": "nobody", "backlinks": [], "total": 0}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("limit", [0, 201])
    async def test_limit_bounds(self, engine, limit):
        with pytest.raises(LinkValidationError):
            await engine.backlinks("t", limit=limit)


class TestRelated:
    @pytest.mark.asyncio
    async def test_aggregates_both_directions(self, engine):
        await engine.sync(
            [
                make_link("x", "y", "shared_tag", weight=2.0),
                make_link("y", "x", "similarity", weight=3.0),
            ]
        )
        res = await engine.related("x")
        (e,) = res["related"]
        assert e["id"] == "y"
        # raw 5.0 * default boost 1.25
        assert e["score"] == 6.25

    @pytest.mark.asyncio
    async def test_label_inversion(self, engine):
        await engine.sync([make_link("a", "b", "yaml_related", "causes")])

        from_b = await engine.related("b")
        from_a = await engine.related("a")
        assert from_b["related"][0]["label"] == "caused by"
        assert from_a["related"][0]["label"] == "causes"

    @pytest.mark.asyncio
    async def test_related_label_is_hidden(self, engine):
        await engine.sync([make_link("a", "b", "yaml_related", "related", weight=2.0)])
        (e,) = (await engine.related("a"))["related"]
        assert "label" not in e

    @pytest.mark.asyncio
    async def test_score_floor(self, engine):
        await engine.sync([make_link("x", "weak", "shared_tag", weight=0.72)])
        assert (await engine.related("x"))["related"] == []

    @pytest.mark.asyncio
    async def test_quality_boost_uses_metadata(self, engine, store):
        await seed_pages(
            store,
            PageMeta(id="great", quality=100, reader_importance=100, entity_type="concept"),
            PageMeta(id="plain", quality=0, reader_importance=0, entity_type="concept"),
        )
        await engine.sync([make_link("x", "great", weight=1.0), make_link("x", "plain", weight=2.0)])

        res = await engine.related("x")
        assert [(e["id"], e["score"]) for e in res["related"]] == [("great", 3.75), ("plain", 2.0)]

    @pytest.mark.asyncio
    async def test_type_diversity(self, engine, store):
        pages = [PageMeta(id=f"c{i}", entity_type="concept") for i in range(10)]
        pages.append(PageMeta(id="org", entity_type="organization", title="Some Lab"))
        await seed_pages(store, *pages)
        links = [make_link("x", f"c{i}", weight=10.0 + i) for i in range(10)]
        links.append(make_link("x", "org", weight=1.0))
        await engine.sync(links)

        res = await engine.related("x", limit=5)
        ids = [e["id"] for e in res["related"]]
        assert res["total"] == 5
        assert "org" in ids
        assert ids[:4] == ["c9", "c8", "c7", "c6"]

    @pytest.mark.asyncio
    async def test_no_links_is_empty(self, engine):
        assert await engine.related("lonely") == {"entityId": "lonely", "related": [], "total": 0}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("limit", [0, 51])
    async def test_limit_bounds(self, engine, limit):
        with pytest.raises(LinkValidationError):
            await engine.related("x", limit=limit)

    @pytest.mark.asyncio
    async def test_blank_entity_id(self, engine):
        with pytest.raises(LinkValidationError):
            await engine.related("  ")


class TestGraph:
    @pytest.mark.asyncio
    async def test_nodes_and_edges(self, engine, store):
        await seed_pages(store, PageMeta(id="a", title="Alpha", entity_type="risk"))
        await engine.sync(
            [
                make_link("a", "b", "yaml_related", "causes", 3.0),
                make_link("c", "a", "shared_tag", weight=1.0),
                make_link("b", "c", "entity_link"),  # not touching "a"
            ]
        )
        res = await engine.graph("a")
        assert res["entityId"] == "a"
        assert res["nodes"] == [
            {"id": "a", "type": "risk", "title": "Alpha"},
            {"id": "b", "type": "concept", "title": "b"},
            {"id": "c", "type": "concept", "title": "c"},
        ]
        assert res["edges"] == [
            {"source": "a", "target": "b", "linkType": "yaml_related", "relationship": "causes", "weight": 3.0},
            {"source": "c", "target": "a", "linkType": "shared_tag", "weight": 1.0},
        ]

    @pytest.mark.asyncio
    async def test_edge_cap_drops_weakest(self, engine):
        n = MAX_GRAPH_EDGES + 5
        await engine.sync([make_link("hub", f"n{i}", weight=(i % 100) + 0.5) for i in range(n)])
        res = await engine.graph("hub")
        assert len(res["edges"]) == MAX_GRAPH_EDGES
        assert min(e["weight"] for e in res["edges"]) >= 0.5
        weights = [e["weight"] for e in res["edges"]]
        assert weights == sorted(weights, reverse=True)

    @pytest.mark.asyncio
    async def test_empty_graph(self, engine):
        assert await engine.graph("none") == {"entityId": "none", "nodes": [], "edges": []}


class TestStats:
    @pytest.mark.asyncio
    async def test_empty(self, engine):
        assert await engine.stats() == {"total": 0, "uniqueSources": 0, "uniqueTargets": 0, "byType": []}

    @pytest.mark.asyncio
    async def test_counts_and_averages(self, engine):
        await engine.sync(
            [
                make_link("a", "b", "shared_tag", weight=1.0),
                make_link("a", "c", "shared_tag", weight=2.0),
                make_link("d", "c", "shared_tag", weight=2.0),
                make_link("a", "b", "yaml_related", weight=3.0),
            ]
        )
        stats = await engine.stats()
        assert stats["total"] == 4
        assert stats["uniqueSources"] == 2
        assert stats["uniqueTargets"] == 2
        assert stats["byType"] == [
            {"linkType": "shared_tag", "count": 3, "avgWeight": 1.67},
            {"linkType": "yaml_related", "count": 1, "avgWeight": 3.0},
        ]


@pytest.mark.asyncio
async def test_end_to_end_scenario(engine):
    await engine.sync(
        [
            make_link("A", "B", "yaml_related", "causes", 2.0),
            make_link("C", "B", "shared_tag", None, 1.0),
        ]
    )

    back = await engine.backlinks("B")
    assert [(b["id"], b["weight"]) for b in back["backlinks"]] == [("A", 2.0), ("C", 1.0)]
    assert back["backlinks"][0]["relationship"] == "causes"
    assert "relationship" not in back["backlinks"][1]

    related = {e["id"]: e for e in (await engine.related("B"))["related"]}
    assert related["A"]["label"] == "caused by"
    assert related["A"]["score"] == 2.5
    assert "label" not in related["C"]
    assert related["C"]["score"] == 1.25
