"""
Knowledge-Augmented Generation (KAG)
====================================

Entity extraction from chunks and graph-aware entity search.

Components:
- config: ExtractionConfig (provider, limits, worker pool)
- providers: Ollama / OpenAI / Anthropic extraction backends
- sanitizer: prompt-injection neutralization for untrusted chunk text
- validator: confidence, name and suspicious-pattern checks
- extractor: per-chunk extraction + cancellation-aware worker pool
- searcher: lexical + semantic entity search, relations, context rendering

Example:
    from hybridkb.kag import EntityExtractor, ExtractionWorkerPool, KAGSearcher, KAGSearchRequest
    from hybridkb.kag.providers import create_provider

    extractor = EntityExtractor(store, create_provider(config), graph=graph, config=config)
    pool = ExtractionWorkerPool(extractor)
    await pool.start()

    searcher = KAGSearcher(store, vector_index, embedder, graph, config)
    result = await searcher.search(KAGSearchRequest(query="threat model"))
"""

from hybridkb.kag.config import ExtractionConfig
from hybridkb.kag.extractor import EntityExtractor, ExtractionWorkerPool
from hybridkb.kag.models import (
    ExtractedEntity,
    ExtractedRelation,
    ExtractionRequest,
    ExtractionResponse,
    ExtractionResult,
    KAGSearchRequest,
    KAGSearchResult,
)
from hybridkb.kag.sanitizer import build_extraction_prompt, sanitize_prompt_input
from hybridkb.kag.searcher import KAGSearcher, format_context, tokenize_query
from hybridkb.kag.validator import ExtractionValidator

__all__ = [
    # Config
    "ExtractionConfig",
    # Extraction
    "EntityExtractor",
    "ExtractionWorkerPool",
    "ExtractionValidator",
    "sanitize_prompt_input",
    "build_extraction_prompt",
    # Search
    "KAGSearcher",
    "format_context",
    "tokenize_query",
    # Models
    "ExtractedEntity",
    "ExtractedRelation",
    "ExtractionRequest",
    "ExtractionResponse",
    "ExtractionResult",
    "KAGSearchRequest",
    "KAGSearchResult",
]
