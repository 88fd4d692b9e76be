"""
hybridkb Test Configuration
===========================

Shared fixtures for all tests.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from hybridkb.config import clear_tuning_cache
from hybridkb.models import Chunk, Document
from hybridkb.storage.metadata import MetadataStore, MetadataStoreConfig
from hybridkb.storage.vectors import QdrantConfig


@pytest.fixture(autouse=True)
def fresh_tuning():
    """Every test starts from a clean tuning cache."""
    clear_tuning_cache()
    yield
    clear_tuning_cache()


# Storage fixtures
@pytest_asyncio.fixture
async def metadata_store():
    """In-memory MetadataStore with the schema created."""
    store = MetadataStore(MetadataStoreConfig.for_test())
    await store.connect()
    yield store
    await store.close()


def make_document(document_id="doc-1", source_id="wiki", path="wiki/page.md", content="", **kwargs):
    return Document(
        document_id=document_id,
        source_id=source_id,
        path=path,
        content=content or f"content of {document_id}",
        **kwargs,
    )


def make_chunks(document_id, texts, source_id="wiki"):
    return [
        Chunk(
            chunk_id=f"{document_id}#{i}",
            document_id=document_id,
            chunk_index=i,
            content=text,
            source_id=source_id,
        )
        for i, text in enumerate(texts)
    ]


async def index(store, document, texts):
    """Store a document and its chunks; returns the chunks."""
    chunks = make_chunks(document.document_id, texts, document.source_id)
    await store.upsert_document(document)
    await store.add_chunks(document.document_id, chunks)
    return chunks


@pytest.fixture
def sample_corpus():
    """Small corpus used by lexical and engine tests: (document, chunk texts) pairs."""
    return [
        (
            make_document("oak", "labs", "labs/oak-ridge.md", title="Oak Ridge National Laboratory",
                          content="oak ridge"),
            [
                "Oak Ridge laboratories were founded in 1943 as part of the Manhattan Project.",
                "The Oak Ridge site hosts the Frontier supercomputer and several research reactors.",
            ],
        ),
        (
            make_document("argonne", "labs", "labs/argonne.md", title="Argonne National Laboratory",
                          content="argonne"),
            [
                "Argonne laboratories in Illinois focus on energy storage and battery research.",
            ],
        ),
        (
            make_document("security", "handbook", "handbook/security.md", title="Security Handbook",
                          content="security"),
            [
                "The threat model lists attackers, assets and trust boundaries for the API gateway.",
                "Rate limiting protects the gateway from credential stuffing and abuse.",
            ],
        ),
    ]


@pytest_asyncio.fixture
async def populated_store(metadata_store, sample_corpus):
    """metadata_store with sample_corpus indexed."""
    for document, texts in sample_corpus:
        await index(metadata_store, document, texts)
    return metadata_store


# Mock fixtures
@pytest.fixture
def mock_embedder():
    """Embedding service stand-in returning fixed 3-d vectors."""
    embedder = MagicMock()
    embedder.embed_async = AsyncMock(return_value=[0.1, 0.2, 0.3])
    embedder.encode_batch_async = AsyncMock(
        side_effect=lambda texts, is_query=False: [[0.1, 0.2, 0.3] for _ in texts]
    )
    embedder.similarity_async = AsyncMock(side_effect=lambda query, passages: [0.5 for _ in passages])
    return embedder


@pytest.fixture
def mock_vector_index():
    """VectorIndex stand-in with async methods and real collection names."""
    vector_index = MagicMock()
    vector_index.config = QdrantConfig(chunk_collection="test_chunks", entity_collection="test_entities")
    vector_index.is_connected = True
    vector_index.query = AsyncMock(return_value=[])
    vector_index.upsert_chunks = AsyncMock(side_effect=lambda chunks, vectors: len(chunks))
    vector_index.upsert_entities = AsyncMock(side_effect=lambda entities, vectors, source_id="": len(entities))
    vector_index.delete_by_filter = AsyncMock(return_value=0)
    vector_index.close = AsyncMock()
    return vector_index


@pytest.fixture
def document_factory():
    """make_document(document_id, source_id, path, content, **kwargs)"""
    return make_document


@pytest.fixture
def index_document():
    """async index(store, document, texts) -> chunks"""
    return index
