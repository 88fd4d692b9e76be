"""
Test MetadataStore
==================

Documents, chunks, entity merge-upserts, the extraction state machine and
source removal, against an in-memory SQLite database.
"""

import pytest

from hybridkb.errors import NotConnectedError
from hybridkb.models import Entity, EntityType, ExtractionState, Relation, RelationType
from hybridkb.storage.metadata import MetadataStore, MetadataStoreConfig


class TestConnection:
    """Lifecycle."""

    @pytest.mark.asyncio
    async def test_requires_connect(self):
        """Queries before connect() raise NotConnectedError."""
        store = MetadataStore(MetadataStoreConfig.for_test())

        with pytest.raises(NotConnectedError):
            await store.count_documents()

    @pytest.mark.asyncio
    async def test_connect_is_idempotent(self, metadata_store):
        await metadata_store.connect()

        assert metadata_store.is_connected
        assert await metadata_store.count_documents() == 0


class TestDocuments:
    """Document upsert and re-sync."""

    @pytest.mark.asyncio
    async def test_upsert_and_skip_unchanged(self, metadata_store, document_factory):
        """Same content hash is a no-op."""
        doc = document_factory("d1", content="first version")

        assert await metadata_store.upsert_document(doc) is True
        assert await metadata_store.upsert_document(document_factory("d1", content="first version")) is False
        assert await metadata_store.count_documents() == 1

    @pytest.mark.asyncio
    async def test_changed_content_replaces_chunks(self, metadata_store, document_factory, index_document):
        """A new hash drops the previous chunks, FTS rows and status rows."""
        await index_document(metadata_store, document_factory("d1", content="v1"), ["old alpha", "old beta"])

        await index_document(metadata_store, document_factory("d1", content="v2"), ["new gamma"])

        assert await metadata_store.count_chunks() == 1
        chunk = await metadata_store.get_chunk("d1#0")
        assert chunk.content == "new gamma"
        assert await metadata_store.get_chunk("d1#1") is None
        stats = await metadata_store.get_extraction_stats()
        assert stats["pending"] == 1

    @pytest.mark.asyncio
    async def test_needs_reindex(self, metadata_store, document_factory):
        doc = document_factory("d1", content="body")
        assert await metadata_store.needs_reindex("d1", doc.content_hash)

        await metadata_store.upsert_document(doc)

        assert not await metadata_store.needs_reindex("d1", doc.content_hash)
        assert await metadata_store.needs_reindex("d1", "other-hash")

    @pytest.mark.asyncio
    async def test_chunks_inherit_document_fields(self, metadata_store, document_factory, index_document):
        """get_chunks joins title, path and source from the document."""
        doc = document_factory("d1", source_id="docs", path="docs/intro.md", content="x")
        await index_document(metadata_store, doc, ["hello world"])

        chunk = await metadata_store.get_chunk("d1#0")

        assert chunk.title == "intro.md"
        assert chunk.path == "docs/intro.md"
        assert chunk.source_id == "docs"

    @pytest.mark.asyncio
    async def test_counts_by_source(self, populated_store):
        assert await populated_store.count_documents() == 3
        assert await populated_store.count_documents("labs") == 2
        assert await populated_store.count_chunks("handbook") == 2
        assert await populated_store.list_document_ids("labs") == ["argonne", "oak"]


class TestEntityUpsert:
    """Merge semantics for entities and relations."""

    @pytest.mark.asyncio
    async def test_merge_raises_confidence_and_fills_description(self, metadata_store):
        """Confidence only increases; an empty description is filled once."""
        first = Entity(name="Kubernetes", entity_type=EntityType.TECHNOLOGY, confidence=0.7,
                       source_document_id="d1")
        await metadata_store.upsert_entities([first])

        again = Entity(name="kubernetes", entity_type=EntityType.TECHNOLOGY, confidence=0.9,
                       description="Container orchestrator", source_document_id="d1")
        assert again.id == first.id
        await metadata_store.upsert_entities([again])

        lower = Entity(name="Kubernetes", entity_type=EntityType.TECHNOLOGY, confidence=0.5,
                       description="Something else", source_document_id="d1")
        await metadata_store.upsert_entities([lower])

        stored = await metadata_store.get_entity(first.id)
        assert stored.confidence == 0.9
        assert stored.description == "Container orchestrator"
        assert stored.name == "Kubernetes"

    @pytest.mark.asyncio
    async def test_relation_merge(self, metadata_store):
        a = Entity(name="API", entity_type="technology", source_document_id="d1")
        b = Entity(name="Gateway", entity_type="technology", source_document_id="d1")
        await metadata_store.upsert_entities([a, b])

        await metadata_store.upsert_relations([Relation(a.id, RelationType.USES, b.id, confidence=0.75)])
        await metadata_store.upsert_relations([Relation(a.id, RelationType.USES, b.id, confidence=0.95)])

        rows = await metadata_store.fetch_all("SELECT confidence FROM kb_relations")
        assert [row["confidence"] for row in rows] == [0.95]


class TestExtractionStateMachine:
    """pending -> extracting -> completed | failed."""

    @pytest.mark.asyncio
    async def test_new_chunks_are_pending(self, populated_store):
        status = await populated_store.get_extraction_status("oak#0")

        assert status.state == ExtractionState.PENDING
        assert status.attempts == 0

    @pytest.mark.asyncio
    async def test_claim_is_exclusive(self, populated_store):
        """Only one caller can move a chunk to extracting."""
        assert await populated_store.claim_chunk("oak#0") is True
        assert await populated_store.claim_chunk("oak#0") is False

        status = await populated_store.get_extraction_status("oak#0")
        assert status.state == ExtractionState.EXTRACTING
        assert status.attempts == 1

    @pytest.mark.asyncio
    async def test_completed_cannot_be_claimed(self, populated_store):
        await populated_store.claim_chunk("oak#0")
        await populated_store.mark_completed("oak#0", entity_count=3, relation_count=1)

        assert await populated_store.claim_chunk("oak#0") is False
        status = await populated_store.get_extraction_status("oak#0")
        assert status.state == ExtractionState.COMPLETED
        assert status.entity_count == 3
        assert status.extracted_at is not None

    @pytest.mark.asyncio
    async def test_failed_can_be_reclaimed(self, populated_store):
        await populated_store.claim_chunk("oak#0")
        await populated_store.mark_failed("oak#0", "provider timeout")

        status = await populated_store.get_extraction_status("oak#0")
        assert status.state == ExtractionState.FAILED
        assert status.error_message == "provider timeout"

        assert await populated_store.claim_chunk("oak#0") is True
        assert (await populated_store.get_extraction_status("oak#0")).error_message is None

    @pytest.mark.asyncio
    async def test_claim_respects_max_attempts(self, populated_store):
        for _ in range(2):
            await populated_store.claim_chunk("oak#0")
            await populated_store.mark_failed("oak#0", "boom")

        assert await populated_store.claim_chunk("oak#0", max_attempts=2) is False
        assert await populated_store.claim_chunk("oak#0", max_attempts=3) is True

    @pytest.mark.asyncio
    async def test_mark_pending_only_from_extracting(self, populated_store):
        """Interrupted chunks go back to pending; completed ones stay completed."""
        await populated_store.claim_chunk("oak#0")
        await populated_store.mark_pending("oak#0")
        assert (await populated_store.get_extraction_status("oak#0")).state == ExtractionState.PENDING

        await populated_store.claim_chunk("oak#1")
        await populated_store.mark_completed("oak#1", 0, 0)
        await populated_store.mark_pending("oak#1")
        assert (await populated_store.get_extraction_status("oak#1")).state == ExtractionState.COMPLETED

    @pytest.mark.asyncio
    async def test_reset_failed_and_stale(self, populated_store):
        await populated_store.claim_chunk("oak#0")
        await populated_store.mark_failed("oak#0", "boom")
        await populated_store.claim_chunk("oak#1")

        assert await populated_store.reset_failed() == 1
        assert await populated_store.reset_stale_extracting() == 1

        pending = await populated_store.list_chunks_by_state(ExtractionState.PENDING)
        assert set(pending) == {"oak#0", "oak#1", "argonne#0", "security#0", "security#1"}

    @pytest.mark.asyncio
    async def test_unknown_chunk_reports_pending(self, metadata_store):
        status = await metadata_store.get_extraction_status("ghost")

        assert status.state == ExtractionState.PENDING


class TestDeleteSource:
    """Relational cleanup of one source."""

    @pytest.mark.asyncio
    async def test_deletes_only_that_source(self, populated_store):
        entity = Entity(name="Frontier", entity_type="technology", source_chunk_id="oak#1",
                        source_document_id="oak")
        other = Entity(name="Gateway", entity_type="technology", source_chunk_id="security#0",
                       source_document_id="security")
        await populated_store.upsert_entities([entity, other])

        deleted = await populated_store.delete_source("labs")

        assert deleted["documents"] == 2
        assert deleted["chunks"] == 3
        assert deleted["entities"] == 1
        assert deleted["extraction_status"] == 3
        assert await populated_store.count_documents() == 1
        assert await populated_store.get_entity(entity.id) is None
        assert await populated_store.get_entity(other.id) is not None

        fts = await populated_store.fetch_all("SELECT chunk_id FROM kb_fts")
        assert {row["chunk_id"] for row in fts} == {"security#0", "security#1"}

    @pytest.mark.asyncio
    async def test_unknown_source_is_noop(self, populated_store):
        deleted = await populated_store.delete_source("nope")

        assert deleted["documents"] == 0
        assert await populated_store.count_documents() == 3
