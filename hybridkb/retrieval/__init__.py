"""
Hybrid Retrieval
================

Adaptive multi-strategy search with rank fusion and graceful degradation.

Components:
- classifier: query intent (exact_quote, entity, conceptual, factual, exploratory)
- executor: parallel fts_exact / fts_relaxed / semantic / entity branches
- agreement: cross-strategy agreement and confidence labels
- fusion: weighted RRF, agreement bonus, exact proper-noun boost
- postprocess: similarity floor, rerank, MMR
- engine: HybridSearchEngine + never-zero-results cascade

Example:
    from hybridkb.retrieval import HybridSearchEngine, SearchRequest

    engine = HybridSearchEngine(lexical, vector_index, embedder)
    response = await engine.search_with_fallback(SearchRequest(query="threat model", limit=5))
    print(response.confidence, response.status, len(response.hits))
"""

from hybridkb.retrieval.agreement import AgreementInfo, compute_agreement, confidence_label, overall_confidence
from hybridkb.retrieval.classifier import classify_query, extract_entities, extract_quoted_phrases
from hybridkb.retrieval.config import RetrievalConfig
from hybridkb.retrieval.engine import HybridSearchEngine
from hybridkb.retrieval.executor import ExecutionResult, StrategyExecutor
from hybridkb.retrieval.fusion import entity_boost, fuse, resolve_weights, strategy_weights
from hybridkb.retrieval.models import (
    Confidence,
    QueryAnalysis,
    QueryType,
    ResponseStatus,
    SearchHit,
    SearchMode,
    SearchRequest,
    SearchResponse,
    SearchStrategy,
    StrategyHit,
    StrategyOutcome,
    StrategyStatus,
)
from hybridkb.retrieval.postprocess import apply_mmr, apply_similarity_floor, rerank

__all__ = [
    # Engine
    "HybridSearchEngine",
    "RetrievalConfig",
    "StrategyExecutor",
    "ExecutionResult",
    # Classifier
    "classify_query",
    "extract_entities",
    "extract_quoted_phrases",
    # Scoring
    "AgreementInfo",
    "compute_agreement",
    "confidence_label",
    "overall_confidence",
    "fuse",
    "resolve_weights",
    "strategy_weights",
    "entity_boost",
    "apply_similarity_floor",
    "rerank",
    "apply_mmr",
    # Models
    "Confidence",
    "QueryAnalysis",
    "QueryType",
    "ResponseStatus",
    "SearchHit",
    "SearchMode",
    "SearchRequest",
    "SearchResponse",
    "SearchStrategy",
    "StrategyHit",
    "StrategyOutcome",
    "StrategyStatus",
]
