"""
Knowledge Base
==============

Core orchestration class that wires every hybridkb component together:
- MetadataStore (SQLite documents, chunks, FTS5, KAG tables)
- VectorIndex (Qdrant chunk + entity collections) and EmbeddingService
- GraphStore (FalkorDB, or the relational fallback)
- HybridSearchEngine (adaptive multi-strategy retrieval)
- EntityExtractor + ExtractionWorkerPool (background KAG extraction)
- KAGSearcher (entity / relation search)

Capabilities are optional: without Qdrant the engine runs lexical-only,
without FalkorDB traversal goes through SQL, without a reachable LLM
provider chunks simply stay ``pending``.

Usage:
    from hybridkb import KnowledgeBase, KnowledgeBaseConfig, Document, Chunk

    kb = KnowledgeBase(KnowledgeBaseConfig())
    await kb.connect()

    doc = Document(document_id="d1", source_id="wiki", path="wiki/oak-ridge.md", content=text)
    await kb.index_document(doc, chunks)

    response = await kb.search("Oak Ridge laboratories", limit=5)
    graph = await kb.kag_search("threat model summary")

    await kb.remove_source("wiki")
    await kb.close()
"""

import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import structlog

from hybridkb.config.environments import EnvironmentConfig
from hybridkb.config.tuning import SearchTuning
from hybridkb.errors import (
    EmptyQueryError,
    ExtractionQueueFullError,
    InvalidMaxHopsError,
    ProviderNotAvailableError,
    TooManyEntityHintsError,
)
from hybridkb.kag.config import ExtractionConfig
from hybridkb.kag.extractor import EntityExtractor, ExtractionWorkerPool
from hybridkb.kag.models import MAX_ENTITY_HINTS, MAX_HOPS, KAGSearchRequest, KAGSearchResult
from hybridkb.kag.providers import create_provider
from hybridkb.kag.providers.base import ExtractionProvider
from hybridkb.kag.searcher import KAGSearcher
from hybridkb.models import Chunk, Document
from hybridkb.retrieval.config import RetrievalConfig
from hybridkb.retrieval.engine import HybridSearchEngine
from hybridkb.retrieval.models import SearchRequest, SearchResponse
from hybridkb.storage.graph import FalkorDBClient, FalkorDBConfig, GraphStore, RelationalGraphStore
from hybridkb.storage.lexical import LexicalIndex
from hybridkb.storage.metadata import MetadataStore, MetadataStoreConfig
from hybridkb.storage.vectors import QdrantConfig, VectorIndex

log = structlog.get_logger()


def _get_env_bool(key: str, default: bool) -> bool:
    return os.environ.get(key, str(default)).lower() in ("1", "true", "yes")


@dataclass
class KnowledgeBaseConfig:
    """
    Configuration for KnowledgeBase.

    Every section defaults from environment variables (see each config
    class). ``HYBRIDKB_ENABLE_VECTORS=false`` runs without Qdrant and
    embeddings.
    """
    metadata: MetadataStoreConfig = field(default_factory=MetadataStoreConfig)
    qdrant: QdrantConfig = field(default_factory=QdrantConfig)
    graph: FalkorDBConfig = field(default_factory=FalkorDBConfig)
    extraction: ExtractionConfig = field(default_factory=ExtractionConfig)
    retrieval: RetrievalConfig = field(default_factory=RetrievalConfig)
    tuning: Optional[SearchTuning] = None
    enable_vectors: bool = field(default_factory=lambda: _get_env_bool("HYBRIDKB_ENABLE_VECTORS", True))
    embedding_model: Optional[str] = None

    @classmethod
    def from_environment(cls, env_config: EnvironmentConfig) -> "KnowledgeBaseConfig":
        """Storage namespaces bound to an environment (test / prod)."""
        return cls(
            metadata=MetadataStoreConfig.from_environment(env_config),
            qdrant=QdrantConfig.from_environment(env_config),
            graph=FalkorDBConfig.from_environment(env_config),
        )

    @classmethod
    def for_test(cls) -> "KnowledgeBaseConfig":
        """In-memory SQLite, no vectors, SQL graph, short extraction budgets."""
        return cls(
            metadata=MetadataStoreConfig.for_test(),
            graph=FalkorDBConfig(backend="sqlite"),
            extraction=ExtractionConfig.for_test(),
            retrieval=RetrievalConfig.for_test(),
            enable_vectors=False,
        )


@dataclass
class IndexingResult:
    """Outcome of indexing one document."""
    document_id: str
    skipped: bool = False
    chunks_indexed: int = 0
    vectors_upserted: int = 0
    chunks_enqueued: int = 0
    errors: List[str] = field(default_factory=list)

    def summary(self) -> Dict[str, Any]:
        return {
            "document_id": self.document_id,
            "skipped": self.skipped,
            "chunks": self.chunks_indexed,
            "vectors": self.vectors_upserted,
            "enqueued": self.chunks_enqueued,
            "errors": len(self.errors),
        }


class KnowledgeBase:
    """
    Unified entry point for indexing, hybrid search and KAG.

    Architecture:
        KnowledgeBase
        ├── MetadataStore (documents, chunks, FTS5, entities, extraction status)
        ├── VectorIndex + EmbeddingService (optional)
        ├── GraphStore (FalkorDB or relational fallback)
        ├── HybridSearchEngine
        ├── EntityExtractor / ExtractionWorkerPool (when KAG is enabled)
        └── KAGSearcher

    Components passed to the constructor are used as is; the others are
    built from the configuration in ``connect()``.
    """

    def __init__(
        self,
        config: Optional[KnowledgeBaseConfig] = None,
        store: Optional[MetadataStore] = None,
        vector_index: Optional[VectorIndex] = None,
        embedder=None,
        graph: Optional[GraphStore] = None,
        provider: Optional[ExtractionProvider] = None,
    ):
        self.config = config or KnowledgeBaseConfig()

        self.store = store or MetadataStore(self.config.metadata)
        self.vector_index = vector_index
        self.embedder = embedder
        self.graph = graph
        self.provider = provider

        # Built in connect()
        self.lexical: Optional[LexicalIndex] = None
        self.engine: Optional[HybridSearchEngine] = None
        self.searcher: Optional[KAGSearcher] = None
        self.extractor: Optional[EntityExtractor] = None
        self.pool: Optional[ExtractionWorkerPool] = None

        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        """
        Connect the stores and build the engines.

        Qdrant, FalkorDB and the extraction provider are optional: a failure
        there is logged and the capability is left out.
        """
        if self._connected:
            log.warning("Already connected")
            return

        log.info("Connecting knowledge base...")
        if not self.store.is_connected:
            await self.store.connect()

        if self.config.enable_vectors:
            await self._connect_vectors()

        await self._connect_graph()

        extraction = self.config.extraction
        if extraction.enabled:
            await self._start_extraction()

        self.searcher = KAGSearcher(
            self.store,
            vector_index=self.vector_index,
            embedder=self.embedder,
            graph=self.graph,
            config=extraction,
        )
        self.lexical = LexicalIndex(self.store)
        self.engine = HybridSearchEngine(
            self.lexical,
            vector_index=self.vector_index,
            embedder=self.embedder,
            entity_searcher=self.searcher if extraction.enabled else None,
            config=self.config.retrieval,
            tuning=self.config.tuning,
        )

        self._connected = True
        log.info(
            "Knowledge base connected",
            semantic=self.engine.semantic_available,
            graph=getattr(self.graph, "name", None),
            extraction=self.pool is not None,
        )

    async def _connect_vectors(self) -> None:
        if self.vector_index is None:
            index = VectorIndex(self.config.qdrant)
            try:
                await index.connect()
                self.vector_index = index
            except Exception as e:
                log.warning(f"Qdrant connection failed, semantic search disabled: {e}")
                return

        if self.embedder is None:
            from hybridkb.storage.vectors.embeddings import EmbeddingService

            try:
                self.embedder = EmbeddingService.get_instance(model_name=self.config.embedding_model)
            except Exception as e:
                log.warning(f"Embedding service initialization failed: {e}")

    async def _connect_graph(self) -> None:
        if self.graph is not None:
            return
        if self.config.graph.backend == "falkordb":
            client = FalkorDBClient(self.config.graph)
            try:
                await client.connect()
                self.graph = client
                return
            except Exception as e:
                log.warning(f"FalkorDB connection failed, using SQL graph: {e}")
        self.graph = RelationalGraphStore(self.store)

    async def _start_extraction(self) -> None:
        extraction = self.config.extraction
        if self.provider is None:
            try:
                self.provider = create_provider(extraction)
            except ProviderNotAvailableError as e:
                log.warning(f"Extraction provider unavailable, chunks stay pending: {e}")
                return

        self.extractor = EntityExtractor(
            self.store,
            self.provider,
            graph=self.graph,
            config=extraction,
            vector_index=self.vector_index,
            embedder=self.embedder,
        )
        self.pool = ExtractionWorkerPool(self.extractor)
        await self.pool.start()
        resumed = await self.pool.resume_pending()
        if resumed:
            log.info(f"Resumed {resumed} pending chunks")

    async def close(self) -> None:
        """Stop the workers and close all connections."""
        if self.pool:
            await self.pool.stop()
        if self.provider:
            await self.provider.close()
        if self.vector_index:
            await self.vector_index.close()
        if isinstance(self.graph, FalkorDBClient):
            await self.graph.close()
        await self.store.close()

        self._connected = False
        log.info("Knowledge base connections closed")

    # ------------------------------------------------------------------
    # Indexing
    # ------------------------------------------------------------------

    async def index_document(self, document: Document, chunks: Sequence[Chunk]) -> IndexingResult:
        """
        Store a document and its chunks, index them (FTS + vectors) and
        queue them for entity extraction.

        Unchanged documents (same content hash) are skipped. A changed
        document replaces its previous chunks and vectors.
        """
        result = IndexingResult(document_id=document.document_id)

        previous = await self.store.get_document(document.document_id)
        if previous is not None and previous["content_hash"] != document.content_hash:
            await self._remove_document_vectors(document.document_id)

        if not await self.store.upsert_document(document):
            result.skipped = True
            return result

        for chunk in chunks:
            chunk.document_id = document.document_id
            chunk.source_id = chunk.source_id or document.source_id
            chunk.title = chunk.title or document.title
            chunk.path = chunk.path or document.path

        result.chunks_indexed = await self.store.add_chunks(document.document_id, chunks)

        if self.vector_index is not None and self.embedder is not None and chunks:
            try:
                vectors = await self.embedder.encode_batch_async([c.content for c in chunks], is_query=False)
                result.vectors_upserted = await self.vector_index.upsert_chunks(chunks, vectors)
            except Exception as e:
                # Lexical search still covers these chunks
                log.warning(f"Vector upsert failed for {document.document_id}: {e}")
                result.errors.append(f"vectors: {e}")

        if self.pool is not None:
            for chunk in chunks:
                try:
                    if await self.pool.enqueue(chunk.chunk_id):
                        result.chunks_enqueued += 1
                except ExtractionQueueFullError:
                    log.info(
                        "Extraction queue full, remaining chunks stay pending",
                        document_id=document.document_id,
                        enqueued=result.chunks_enqueued,
                    )
                    break

        log.info("Document indexed", **result.summary())
        return result

    async def _remove_document_vectors(self, document_id: str) -> None:
        if self.vector_index is not None:
            for collection in (self.vector_index.config.chunk_collection, self.vector_index.config.entity_collection):
                await self.vector_index.delete_by_filter(collection, document_id=document_id)
        if self.graph is not None and self.graph.is_connected:
            await self.graph.delete_by_document(document_id)

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def _require_connected(self) -> None:
        if not self._connected:
            raise RuntimeError("KnowledgeBase not connected. Call connect() first.")

    async def search(self, query: str, **options: Any) -> SearchResponse:
        """
        Hybrid search with the never-zero-results cascade.

        Args:
            query: Free-text query
            **options: SearchRequest fields (mode, limit, min_score,
                semantic_weight, mmr_lambda, enable_mmr, enable_rerank,
                boost_exact_match, source_ids)

        Raises:
            EmptyQueryError: blank query
            QueryTooLongError: query over the configured maximum
        """
        self._require_connected()
        if not query or not query.strip():
            raise EmptyQueryError()
        request = SearchRequest(query=query, **options)
        self.engine.validate(request)
        return await self.engine.search_with_fallback(request)

    async def kag_search(
        self,
        query: str,
        entity_hints: Optional[List[str]] = None,
        max_hops: int = 2,
        limit: int = 20,
        include_relations: bool = True,
        source_id: Optional[str] = None,
    ) -> KAGSearchResult:
        """
        Entity / relation search over the knowledge graph.

        Raises:
            EmptyQueryError: blank query
            TooManyEntityHintsError: more than 20 hints
            InvalidMaxHopsError: max_hops outside 1..3
            KAGDisabledError: KAG disabled in configuration
        """
        self._require_connected()
        if not query or not query.strip():
            raise EmptyQueryError()
        hints = entity_hints or []
        if len(hints) > MAX_ENTITY_HINTS:
            raise TooManyEntityHintsError(len(hints), MAX_ENTITY_HINTS)
        if max_hops < 1 or max_hops > MAX_HOPS:
            raise InvalidMaxHopsError(max_hops, MAX_HOPS)

        request = KAGSearchRequest(
            query=query,
            entity_hints=hints,
            max_hops=max_hops,
            limit=limit,
            include_relations=include_relations,
            source_id=source_id,
        )
        return await self.searcher.search(request)

    # ------------------------------------------------------------------
    # Source removal
    # ------------------------------------------------------------------

    async def remove_source(self, source_id: str) -> Dict[str, int]:
        """
        Remove every trace of a source.

        Order matters: vectors are deleted by payload filter and graph nodes
        by document ID while the relational rows that map the source to its
        documents and chunks still exist; those rows go last. A failure in
        the first two steps aborts before anything relational is touched.

        Returns:
            Deleted counts per store
        """
        self._require_connected()
        document_ids = await self.store.list_document_ids(source_id)
        removed: Dict[str, int] = {}

        if self.vector_index is not None:
            removed["chunk_vectors"] = await self.vector_index.delete_by_filter(
                self.vector_index.config.chunk_collection, source_id=source_id
            )
            removed["entity_vectors"] = await self.vector_index.delete_by_filter(
                self.vector_index.config.entity_collection, source_id=source_id
            )

        if self.graph is not None and self.graph.is_connected:
            graph_nodes = 0
            for document_id in document_ids:
                graph_nodes += await self.graph.delete_by_document(document_id)
            removed["graph_nodes"] = graph_nodes

        removed.update(await self.store.delete_source(source_id))
        log.info(f"Removed source {source_id}", document_count=len(document_ids), **removed)
        return removed

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def retry_failed_extractions(self) -> int:
        """Reset failed chunks (below max attempts) and queue them again."""
        if self.pool is None:
            return 0
        return await self.pool.retry_failed()

    async def get_stats(self) -> Dict[str, Any]:
        self._require_connected()
        return {
            "documents": await self.store.count_documents(),
            "chunks": await self.store.count_chunks(),
            "extraction": await self.store.get_extraction_stats(),
            "kag": await self.searcher.get_stats(),
            "workers": self.pool.get_stats() if self.pool else None,
            "semantic_available": self.engine.semantic_available,
        }
