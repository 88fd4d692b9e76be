"""
hybridkb: Adaptive Hybrid Retrieval + Knowledge Graph
=====================================================

Adaptive hybrid search (FTS5/BM25 + vectors + entities) with rank fusion,
graceful degradation and an LLM-extracted knowledge graph.

Quick Start:
    from hybridkb import KnowledgeBase, KnowledgeBaseConfig

    kb = KnowledgeBase(KnowledgeBaseConfig())
    await kb.connect()

    # Indexing
    await kb.index_document(document, chunks)

    # Hybrid search
    response = await kb.search("Oak Ridge laboratories", limit=5)
    print(response.confidence, [hit.path for hit in response.hits])

    # Knowledge graph
    result = await kb.kag_search("threat model summary")
    print(result.context)

Components:
- core: KnowledgeBase, KnowledgeBaseConfig
- retrieval: HybridSearchEngine, classifier, fusion, post-processing
- kag: extraction providers, validator, worker pool, KAGSearcher
- storage: MetadataStore, LexicalIndex, VectorIndex, FalkorDBClient
- config: environments, search tuning
"""

__version__ = "0.1.0"

# Core API
from hybridkb.core import IndexingResult, KnowledgeBase, KnowledgeBaseConfig

# Convenience exports
from hybridkb.models import Chunk, Document, Entity, Relation
from hybridkb.retrieval.models import SearchMode, SearchRequest, SearchResponse
from hybridkb.kag.models import KAGSearchRequest, KAGSearchResult

__all__ = [
    # Core
    "KnowledgeBase",
    "KnowledgeBaseConfig",
    "IndexingResult",
    # Models
    "Document",
    "Chunk",
    "Entity",
    "Relation",
    "SearchMode",
    "SearchRequest",
    "SearchResponse",
    "KAGSearchRequest",
    "KAGSearchResult",
]
