"""
Test HybridSearchEngine
=======================

End-to-end search over the sample corpus: planning, degradation,
fatal failures, the fallback cascade and request validation.
"""

import asyncio
import time
from unittest.mock import AsyncMock, MagicMock

import pytest

from hybridkb.config import SearchTuning
from hybridkb.errors import EmptyQueryError, QueryTooLongError
from hybridkb.retrieval.config import RetrievalConfig
from hybridkb.retrieval.engine import (
    NOTE_NO_RESULTS,
    NOTE_PARTIAL,
    NOTE_RELAXED,
    NOTE_SEMANTIC_UNAVAILABLE,
    HybridSearchEngine,
)
from hybridkb.retrieval.models import (
    Confidence,
    QueryAnalysis,
    QueryType,
    ResponseStatus,
    SearchMode,
    SearchRequest,
    SearchStrategy,
    min_confidence,
)
from hybridkb.storage.lexical import LexicalIndex
from hybridkb.storage.vectors.store import VectorHit


@pytest.fixture
def lexical_engine(populated_store):
    """Engine with no vector index: lexical-only."""
    return HybridSearchEngine(LexicalIndex(populated_store), config=RetrievalConfig.for_test(),
                              tuning=SearchTuning())


@pytest.fixture
def hybrid_engine(populated_store, mock_vector_index, mock_embedder):
    return HybridSearchEngine(LexicalIndex(populated_store), mock_vector_index, mock_embedder,
                              config=RetrievalConfig.for_test(), tuning=SearchTuning())


class TestPlanning:
    """Strategy selection by mode and capability."""

    def test_lexical_only_without_vectors(self, lexical_engine):
        analysis = QueryAnalysis("kubernetes", QueryType.EXPLORATORY)

        assert not lexical_engine.semantic_available
        assert lexical_engine.plan_strategies(SearchMode.HYBRID, analysis) == [
            SearchStrategy.FTS_EXACT, SearchStrategy.FTS_RELAXED,
        ]

    def test_hybrid_adds_semantic(self, hybrid_engine):
        analysis = QueryAnalysis("kubernetes", QueryType.EXPLORATORY)

        assert hybrid_engine.plan_strategies(SearchMode.AUTO, analysis) == [
            SearchStrategy.FTS_EXACT, SearchStrategy.FTS_RELAXED, SearchStrategy.SEMANTIC,
        ]
        assert hybrid_engine.plan_strategies(SearchMode.SEMANTIC, analysis) == [SearchStrategy.SEMANTIC]
        assert SearchStrategy.SEMANTIC not in hybrid_engine.plan_strategies(SearchMode.FTS, analysis)

    def test_entity_strategy_for_entity_queries(self, populated_store):
        engine = HybridSearchEngine(LexicalIndex(populated_store), entity_searcher=MagicMock(),
                                    config=RetrievalConfig.for_test(), tuning=SearchTuning())

        entity_plan = engine.plan_strategies(SearchMode.FTS, QueryAnalysis("Oak Ridge", QueryType.ENTITY))
        other_plan = engine.plan_strategies(SearchMode.FTS, QueryAnalysis("oak", QueryType.EXPLORATORY))

        assert SearchStrategy.ENTITY in entity_plan
        assert SearchStrategy.ENTITY not in other_plan

    def test_disconnected_vector_index_is_unavailable(self, hybrid_engine, mock_vector_index):
        mock_vector_index.is_connected = False

        assert not hybrid_engine.semantic_available


class TestSearch:
    """Primary pass."""

    @pytest.mark.asyncio
    async def test_entity_query_lexical_only(self, lexical_engine):
        response = await lexical_engine.search(SearchRequest(query="Oak Ridge laboratories"))

        assert response.query_type == QueryType.ENTITY
        assert response.hits[0].chunk_id == "oak#0"
        assert "fts_exact" in response.hits[0].strategies
        assert response.status == ResponseStatus.PARTIAL
        assert response.degraded
        assert response.note == NOTE_SEMANTIC_UNAVAILABLE
        assert min_confidence(response.confidence, Confidence.MEDIUM) == response.confidence

    @pytest.mark.asyncio
    async def test_fts_mode_is_not_degraded(self, lexical_engine):
        response = await lexical_engine.search(SearchRequest(query="Oak Ridge laboratories", mode=SearchMode.FTS))

        assert response.status == ResponseStatus.FULL
        assert response.note == ""
        assert response.strategies_used == ["fts_exact", "fts_relaxed"]

    @pytest.mark.asyncio
    async def test_semantic_hits_fused(self, hybrid_engine, mock_vector_index):
        mock_vector_index.query.return_value = [
            VectorHit("security#1", 0.74, {
                "content": "Rate limiting protects the gateway from credential stuffing and abuse.",
                "document_id": "security",
                "path": "handbook/security.md",
                "title": "Security Handbook",
            }),
        ]

        response = await hybrid_engine.search(
            SearchRequest(query="how does rate limiting protect the gateway")
        )

        assert response.status == ResponseStatus.FULL
        assert response.hits[0].chunk_id == "security#1"
        assert "semantic" in response.hits[0].strategies
        assert response.hits[0].semantic_score == pytest.approx(0.74)
        assert response.reranked

    @pytest.mark.asyncio
    async def test_literal_phrase_survives_semantic_distractor(self, hybrid_engine, mock_vector_index):
        """A semantically similar but unrelated document ranked first by vectors."""
        mock_vector_index.query.return_value = [
            VectorHit("argonne#0", 0.91, {
                "content": "Argonne laboratories in Illinois focus on energy storage and battery research.",
                "document_id": "argonne",
                "path": "labs/argonne.md",
                "title": "Argonne National Laboratory",
            }),
        ]

        response = await hybrid_engine.search(SearchRequest(query="Oak Ridge laboratories"))

        assert "oak#0" in [hit.chunk_id for hit in response.hits[:3]]
        assert "semantic" in response.strategies_used

    @pytest.mark.asyncio
    async def test_failed_semantic_degrades(self, hybrid_engine, mock_vector_index):
        mock_vector_index.query.side_effect = RuntimeError("connection refused")

        response = await hybrid_engine.search(SearchRequest(query="Oak Ridge laboratories"))

        assert response.status == ResponseStatus.PARTIAL
        assert "semantic" in response.strategies_failed
        assert "Degraded strategies: semantic (failed)" in response.note
        assert response.hits[0].chunk_id == "oak#0"

    @pytest.mark.asyncio
    async def test_all_strategies_failed_is_fatal(self):
        lexical = MagicMock()
        lexical.search = AsyncMock(side_effect=RuntimeError("disk I/O error"))
        engine = HybridSearchEngine(lexical, config=RetrievalConfig.for_test(), tuning=SearchTuning())

        response = await engine.search_with_fallback(SearchRequest(query="Oak Ridge", mode=SearchMode.FTS))

        assert response.status == ResponseStatus.FATAL
        assert response.is_fatal
        assert response.hits == []
        assert response.error
        assert set(response.strategies_failed) == {"fts_exact", "fts_relaxed"}
        assert response.fallback_level == 0

    @pytest.mark.asyncio
    async def test_source_filter(self, lexical_engine):
        response = await lexical_engine.search(SearchRequest(query="laboratories", source_ids=["labs"]))
        excluded = await lexical_engine.search(SearchRequest(query="laboratories", source_ids=["handbook"]))

        assert {hit.document_id for hit in response.hits} <= {"oak", "argonne"}
        assert response.hits
        assert excluded.hits == []

    @pytest.mark.asyncio
    async def test_limit(self, lexical_engine):
        response = await lexical_engine.search(SearchRequest(query="laboratories", limit=1))

        assert len(response.hits) == 1

    @pytest.mark.asyncio
    async def test_deadline_bounds_slow_semantic(self, populated_store, mock_vector_index, mock_embedder):
        async def slow_embed(text):
            await asyncio.sleep(5)
            return [0.1, 0.2, 0.3]

        mock_embedder.embed_async = slow_embed
        config = RetrievalConfig(deadline_ms=300, lexical_timeout_ms=250, semantic_timeout_ms=3000,
                                 semantic_min_score=0.0)
        engine = HybridSearchEngine(LexicalIndex(populated_store), mock_vector_index, mock_embedder,
                                    config=config, tuning=SearchTuning())

        start = time.perf_counter()
        response = await engine.search_with_fallback(SearchRequest(query="Oak Ridge laboratories"))

        assert time.perf_counter() - start < 1.5
        assert response.strategies_failed.keys() == {"semantic"}
        assert "semantic (timed_out)" in response.note
        assert response.hits


class TestFallback:
    """Never-zero-results cascade."""

    @pytest.mark.asyncio
    async def test_primary_hits_skip_fallback(self, lexical_engine):
        response = await lexical_engine.search_with_fallback(SearchRequest(query="Oak Ridge laboratories"))

        assert response.fallback_level == 0

    @pytest.mark.asyncio
    async def test_level_one_relaxed(self, lexical_engine):
        """No chunk has both words, one has 'Frontier'."""
        response = await lexical_engine.search_with_fallback(SearchRequest(query="Frontier mainframe"))

        assert response.fallback_level == 1
        assert response.hits[0].chunk_id == "oak#1"
        assert response.confidence == Confidence.LOW
        assert response.note == f"{NOTE_SEMANTIC_UNAVAILABLE}; {NOTE_RELAXED}"

    @pytest.mark.asyncio
    async def test_level_two_partial_words(self, lexical_engine):
        lexical_engine._relaxed_hits = AsyncMock(return_value=[])

        response = await lexical_engine.search_with_fallback(
            SearchRequest(query="Frontier mainframe", mode=SearchMode.FTS)
        )

        assert response.fallback_level == 2
        assert response.hits[0].chunk_id == "oak#1"
        assert response.confidence == Confidence.SPECULATIVE
        assert response.hits[0].confidence == Confidence.SPECULATIVE
        assert response.note == NOTE_PARTIAL

    @pytest.mark.asyncio
    async def test_level_three_no_results(self, lexical_engine):
        response = await lexical_engine.search_with_fallback(
            SearchRequest(query="quantum entanglement", mode=SearchMode.FTS)
        )

        assert response.fallback_level == 3
        assert response.hits == []
        assert response.confidence == Confidence.NONE
        assert response.note == NOTE_NO_RESULTS
        assert response.suggestions == []

    @pytest.mark.asyncio
    async def test_fallback_disabled(self, populated_store):
        config = RetrievalConfig.for_test()
        config.enable_fallback = False
        engine = HybridSearchEngine(LexicalIndex(populated_store), config=config, tuning=SearchTuning())

        response = await engine.search_with_fallback(SearchRequest(query="Frontier mainframe", mode=SearchMode.FTS))

        assert response.fallback_level == 0
        assert response.hits == []

    @pytest.mark.asyncio
    async def test_suggest_titles(self, lexical_engine):
        suggestions = await lexical_engine.suggest("labor safety")

        assert set(suggestions) == {"Oak Ridge National Laboratory", "Argonne National Laboratory"}


class TestValidation:

    @pytest.mark.asyncio
    async def test_too_long(self, lexical_engine):
        with pytest.raises(QueryTooLongError):
            await lexical_engine.search(SearchRequest(query="x" * 1001))

    @pytest.mark.asyncio
    async def test_empty(self, lexical_engine):
        with pytest.raises(EmptyQueryError):
            await lexical_engine.search(SearchRequest.model_construct(query="   ", mode=SearchMode.AUTO))

    def test_request_rejects_blank_query(self):
        with pytest.raises(ValueError):
            SearchRequest(query="   ")
