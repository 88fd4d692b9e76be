"""
Test RelationalGraphStore
=========================

SQL fallback traversal over kb_relations.
"""

import pytest
import pytest_asyncio

from hybridkb.models import Entity, Relation
from hybridkb.storage.graph import RelationalGraphStore


def _entity(name):
    return Entity(name=name, entity_type="concept", source_document_id="d1")


@pytest_asyncio.fixture
async def chain(metadata_store):
    """A - B - C - D - E path, plus an isolated X."""
    entities = {name: _entity(name) for name in "ABCDEX"}
    await metadata_store.upsert_entities(list(entities.values()))
    pairs = [("A", "B"), ("B", "C"), ("C", "D"), ("D", "E")]
    await metadata_store.upsert_relations([
        Relation(entities[s].id, "relates_to", entities[o].id, source_document_id="d1") for s, o in pairs
    ])
    return entities


class TestRelationalGraphStore:
    """Frontier expansion by hops."""

    @pytest.mark.asyncio
    async def test_depths(self, metadata_store, chain):
        graph = RelationalGraphStore(metadata_store)

        reached = await graph.traverse([chain["A"].id], max_hops=2)

        assert reached == {chain["B"].id: 1, chain["C"].id: 2}

    @pytest.mark.asyncio
    async def test_both_directions(self, metadata_store, chain):
        graph = RelationalGraphStore(metadata_store)

        reached = await graph.traverse([chain["C"].id], max_hops=1)

        assert set(reached) == {chain["B"].id, chain["D"].id}

    @pytest.mark.asyncio
    async def test_hops_capped_at_three(self, metadata_store, chain):
        graph = RelationalGraphStore(metadata_store)

        reached = await graph.traverse([chain["A"].id], max_hops=10)

        assert chain["D"].id in reached
        assert chain["E"].id not in reached

    @pytest.mark.asyncio
    async def test_isolated_and_empty(self, metadata_store, chain):
        graph = RelationalGraphStore(metadata_store)

        assert await graph.traverse([chain["X"].id]) == {}
        assert await graph.traverse([]) == {}

    @pytest.mark.asyncio
    async def test_limit(self, metadata_store, chain):
        graph = RelationalGraphStore(metadata_store)

        reached = await graph.traverse([chain["C"].id], max_hops=2, limit=1)

        assert len(reached) == 1

    @pytest.mark.asyncio
    async def test_stats_and_connection(self, metadata_store, chain):
        graph = RelationalGraphStore(metadata_store)

        assert graph.is_connected
        stats = await graph.get_stats()
        assert stats["backend"] == "sqlite"
        assert stats["entity_count"] == 6
        assert stats["relation_count"] == 4
