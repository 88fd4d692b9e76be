"""
Test VectorIndex
================

Qdrant adapter against a mocked QdrantClient: point IDs, filters,
payloads and filter-based deletes.
"""

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from qdrant_client.models import MatchAny, MatchValue, PointIdsList

from hybridkb.errors import NotConnectedError, VectorStoreError
from hybridkb.models import Chunk, Entity
from hybridkb.storage.vectors import QdrantConfig, VectorIndex, build_filter, point_id


@pytest.fixture
def qdrant_client():
    client = MagicMock()
    client.get_collections.return_value = SimpleNamespace(collections=[])
    client.count.return_value = SimpleNamespace(count=0)
    client.scroll.return_value = ([], None)
    return client


@pytest.fixture
def vector_index(qdrant_client):
    config = QdrantConfig(chunk_collection="chunks", entity_collection="entities", vector_size=3)
    return VectorIndex(config, client=qdrant_client)


class TestHelpers:
    """point_id and build_filter."""

    def test_point_id_is_deterministic_uuid(self):
        assert point_id("doc-1#0") == point_id("doc-1#0")
        assert point_id("doc-1#0") != point_id("doc-1#1")
        assert len(point_id("doc-1#0")) == 36

    def test_filter_single_source(self):
        query_filter = build_filter(["wiki"])

        condition = query_filter.must[0]
        assert condition.key == "source_id"
        assert isinstance(condition.match, MatchValue)

    def test_filter_many_sources_and_document(self):
        query_filter = build_filter(["wiki", "docs"], document_id="d1")

        assert isinstance(query_filter.must[0].match, MatchAny)
        assert query_filter.must[1].key == "document_id"

    def test_no_filter(self):
        assert build_filter() is None


class TestVectorIndex:
    """Reads, writes and deletes."""

    @pytest.mark.asyncio
    async def test_requires_client(self):
        index = VectorIndex(QdrantConfig())

        with pytest.raises(NotConnectedError):
            await index.query([0.1, 0.2], limit=5)

    @pytest.mark.asyncio
    async def test_ensure_collections_creates_missing(self, vector_index, qdrant_client):
        qdrant_client.get_collections.return_value = SimpleNamespace(
            collections=[SimpleNamespace(name="chunks")]
        )

        await vector_index.ensure_collections()

        created = [call.kwargs["collection_name"] for call in qdrant_client.create_collection.call_args_list]
        assert created == ["entities"]

    @pytest.mark.asyncio
    async def test_upsert_chunks_payload(self, vector_index, qdrant_client):
        chunk = Chunk(chunk_id="d1#0", document_id="d1", chunk_index=0, content="hello",
                      title="Doc", path="docs/d1.md", source_id="docs")

        written = await vector_index.upsert_chunks([chunk], [[0.1, 0.2, 0.3]])

        assert written == 1
        kwargs = qdrant_client.upsert.call_args.kwargs
        assert kwargs["collection_name"] == "chunks"
        point = kwargs["points"][0]
        assert point.id == point_id("d1#0")
        assert point.payload["chunk_id"] == "d1#0"
        assert point.payload["source_id"] == "docs"

    @pytest.mark.asyncio
    async def test_upsert_length_mismatch(self, vector_index):
        chunk = Chunk(chunk_id="d1#0", document_id="d1", chunk_index=0, content="hello")

        with pytest.raises(VectorStoreError):
            await vector_index.upsert_chunks([chunk], [])

    @pytest.mark.asyncio
    async def test_upsert_entities_payload(self, vector_index, qdrant_client):
        entity = Entity(name="Frontier", entity_type="technology", source_document_id="oak")

        await vector_index.upsert_entities([entity], [[0.1, 0.2, 0.3]], source_id="labs")

        kwargs = qdrant_client.upsert.call_args.kwargs
        assert kwargs["collection_name"] == "entities"
        payload = kwargs["points"][0].payload
        assert payload["entity_id"] == entity.id
        assert payload["source_id"] == "labs"
        assert payload["document_id"] == "oak"

    @pytest.mark.asyncio
    async def test_query_maps_payload_ids(self, vector_index, qdrant_client):
        qdrant_client.query_points.return_value = SimpleNamespace(points=[
            SimpleNamespace(id=point_id("d1#0"), score=0.91, payload={"chunk_id": "d1#0", "content": "x"}),
            SimpleNamespace(id=point_id("d1#1"), score=0.55, payload={"chunk_id": "d1#1", "content": "y"}),
        ])

        hits = await vector_index.query([0.1, 0.2, 0.3], limit=2, source_ids=["docs"], min_score=0.3)

        assert [hit.id for hit in hits] == ["d1#0", "d1#1"]
        assert hits[0].score == pytest.approx(0.91)
        kwargs = qdrant_client.query_points.call_args.kwargs
        assert kwargs["collection_name"] == "chunks"
        assert kwargs["score_threshold"] == 0.3
        assert kwargs["query_filter"] is not None

    @pytest.mark.asyncio
    async def test_entity_query_uses_entity_ids(self, vector_index, qdrant_client):
        qdrant_client.query_points.return_value = SimpleNamespace(points=[
            SimpleNamespace(id="uuid", score=0.8, payload={"entity_id": "ent_abc"}),
        ])

        hits = await vector_index.query([0.1, 0.2, 0.3], collection="entities")

        assert hits[0].id == "ent_abc"

    @pytest.mark.asyncio
    async def test_delete_by_filter_removes_scrolled_points(self, vector_index, qdrant_client):
        qdrant_client.scroll.side_effect = [
            ([SimpleNamespace(id="p1"), SimpleNamespace(id="p2")], "p3"),
            ([SimpleNamespace(id="p3")], None),
        ]

        removed = await vector_index.delete_by_filter("chunks", source_id="wiki")

        assert removed == 3
        assert qdrant_client.scroll.call_args_list[1].kwargs["offset"] == "p3"
        kwargs = qdrant_client.delete.call_args.kwargs
        assert kwargs["collection_name"] == "chunks"
        assert isinstance(kwargs["points_selector"], PointIdsList)
        assert kwargs["points_selector"].points == ["p1", "p2", "p3"]

    @pytest.mark.asyncio
    async def test_delete_by_filter_nothing_matched(self, vector_index, qdrant_client):
        removed = await vector_index.delete_by_filter("chunks", document_id="d9")

        assert removed == 0
        qdrant_client.delete.assert_not_called()

    @pytest.mark.asyncio
    async def test_delete_requires_filter(self, vector_index):
        with pytest.raises(VectorStoreError):
            await vector_index.delete_by_filter("chunks")
