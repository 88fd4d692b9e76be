"""
Test StrategyExecutor
=====================

Concurrent fan-out, per-branch timeouts and failure isolation.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from hybridkb.errors import AllStrategiesFailedError
from hybridkb.retrieval.config import RetrievalConfig
from hybridkb.retrieval.executor import StrategyExecutor
from hybridkb.retrieval.models import SearchStrategy, StrategyHit, StrategyStatus
from hybridkb.storage.lexical import LexicalIndex
from hybridkb.storage.vectors.store import VectorHit

LEXICAL = [SearchStrategy.FTS_EXACT, SearchStrategy.FTS_RELAXED]


def deadline_in(seconds):
    return asyncio.get_running_loop().time() + seconds


class TestLexicalBranches:

    @pytest.mark.asyncio
    async def test_both_fts_branches_run(self, populated_store):
        executor = StrategyExecutor(LexicalIndex(populated_store), config=RetrievalConfig.for_test())

        result = await executor.execute("Oak Ridge laboratories", LEXICAL, limit=10, deadline=deadline_in(2))

        assert set(result.outcomes) == {"fts_exact", "fts_relaxed"}
        exact = result.outcomes["fts_exact"]
        assert exact.status == StrategyStatus.OK
        assert [h.chunk_id for h in exact.hits] == ["oak#0"]
        assert exact.hits[0].rank == 1

    @pytest.mark.asyncio
    async def test_no_strategies(self, populated_store):
        executor = StrategyExecutor(LexicalIndex(populated_store))

        result = await executor.execute("anything", [], limit=10, deadline=deadline_in(1))

        assert result.outcomes == {}


class TestSemanticBranch:
    """Embedding + vector lookup mapped to StrategyHits."""

    @pytest.mark.asyncio
    async def test_maps_vector_hits(self, populated_store, mock_embedder, mock_vector_index):
        mock_vector_index.query.return_value = [
            VectorHit("security#1", 0.82, {
                "content": "Rate limiting protects the gateway from credential stuffing and abuse.",
                "document_id": "security",
                "path": "handbook/security.md",
                "title": "Security Handbook",
            }),
        ]
        executor = StrategyExecutor(
            LexicalIndex(populated_store), mock_vector_index, mock_embedder, config=RetrievalConfig.for_test()
        )

        result = await executor.execute("abuse protection", [SearchStrategy.SEMANTIC], limit=5,
                                        deadline=deadline_in(2), source_ids=["handbook"])

        hit = result.outcomes["semantic"].hits[0]
        assert hit.chunk_id == "security#1"
        assert hit.document_id == "security"
        assert hit.score == pytest.approx(0.82)
        assert hit.rank == 1
        assert result.query_vector == [0.1, 0.2, 0.3]
        mock_vector_index.query.assert_awaited_once_with(
            [0.1, 0.2, 0.3], limit=5, source_ids=["handbook"], min_score=None
        )

    @pytest.mark.asyncio
    async def test_unconfigured_semantic_fails_alone(self, populated_store):
        executor = StrategyExecutor(LexicalIndex(populated_store), config=RetrievalConfig.for_test())

        result = await executor.execute(
            "Oak Ridge", LEXICAL + [SearchStrategy.SEMANTIC], limit=10, deadline=deadline_in(2)
        )

        assert result.outcomes["semantic"].status == StrategyStatus.FAILED
        assert "not configured" in result.outcomes["semantic"].error
        assert len(result.succeeded) == 2
        assert "semantic" not in result.hits_by_strategy()


class TestTimeouts:
    """A slow branch never holds up the others."""

    @pytest.mark.asyncio
    async def test_slow_semantic_times_out(self, populated_store, mock_vector_index):
        async def slow_embed(text):
            await asyncio.sleep(5)
            return [0.1, 0.2, 0.3]

        embedder = MagicMock()
        embedder.embed_async = slow_embed
        config = RetrievalConfig(deadline_ms=2000, lexical_timeout_ms=500, semantic_timeout_ms=100)
        executor = StrategyExecutor(LexicalIndex(populated_store), mock_vector_index, embedder, config=config)

        loop = asyncio.get_running_loop()
        started = loop.time()
        result = await executor.execute(
            "Oak Ridge", LEXICAL + [SearchStrategy.SEMANTIC], limit=10, deadline=deadline_in(2)
        )

        assert loop.time() - started < 1.0
        assert result.outcomes["semantic"].status == StrategyStatus.TIMED_OUT
        assert result.outcomes["fts_relaxed"].status == StrategyStatus.OK
        mock_vector_index.query.assert_not_called()

    @pytest.mark.asyncio
    async def test_expired_deadline_fails_everything(self, populated_store):
        executor = StrategyExecutor(LexicalIndex(populated_store), config=RetrievalConfig.for_test())

        with pytest.raises(AllStrategiesFailedError) as exc_info:
            await executor.execute("Oak Ridge", LEXICAL, limit=10, deadline=deadline_in(-1))

        assert set(exc_info.value.failures) == {"fts_exact", "fts_relaxed"}


class TestFailures:

    @pytest.mark.asyncio
    async def test_all_failed_raises(self):
        lexical = MagicMock()
        lexical.search = AsyncMock(side_effect=RuntimeError("database is locked"))
        executor = StrategyExecutor(lexical, config=RetrievalConfig.for_test())

        with pytest.raises(AllStrategiesFailedError) as exc_info:
            await executor.execute("Oak Ridge", LEXICAL, limit=10, deadline=deadline_in(2))

        assert exc_info.value.failures["fts_exact"] == "database is locked"

    @pytest.mark.asyncio
    async def test_entity_branch_assigns_ranks(self, populated_store):
        entity_searcher = MagicMock()
        entity_searcher.search_chunks = AsyncMock(return_value=[
            StrategyHit("oak#1", "oak", "labs/oak-ridge.md", "Oak Ridge", "Frontier", 2.0),
            StrategyHit("oak#0", "oak", "labs/oak-ridge.md", "Oak Ridge", "Manhattan", 1.0),
        ])
        executor = StrategyExecutor(LexicalIndex(populated_store), entity_searcher=entity_searcher,
                                    config=RetrievalConfig.for_test())

        result = await executor.execute("Oak Ridge", [SearchStrategy.ENTITY], limit=10, deadline=deadline_in(2))

        assert [(h.chunk_id, h.rank) for h in result.outcomes["entity"].hits] == [("oak#1", 1), ("oak#0", 2)]
        entity_searcher.search_chunks.assert_awaited_once_with("Oak Ridge", limit=10, source_ids=None)
