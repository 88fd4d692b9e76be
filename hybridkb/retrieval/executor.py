"""
Parallel Strategy Executor
==========================

Runs the selected search strategies concurrently, one task per strategy,
each bounded by its own timeout clipped to the remaining query deadline.

A branch that raises or times out becomes a failed/timed_out
StrategyOutcome and contributes no hits. AllStrategiesFailedError is
raised only when every launched branch failed. Cancelling the caller
cancels every branch.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import structlog

from hybridkb.errors import AllStrategiesFailedError
from hybridkb.retrieval.config import RetrievalConfig
from hybridkb.retrieval.models import (
    SearchStrategy,
    StrategyHit,
    StrategyOutcome,
    StrategyStatus,
)
from hybridkb.retrieval.postprocess import create_snippet
from hybridkb.storage.lexical.index import LexicalHit, LexicalIndex, LexicalMode

log = structlog.get_logger()


@dataclass
class ExecutionResult:
    """Outcomes keyed by strategy name, plus the query embedding if computed."""
    outcomes: Dict[str, StrategyOutcome] = field(default_factory=dict)
    query_vector: Optional[List[float]] = None

    @property
    def succeeded(self) -> List[StrategyOutcome]:
        return [o for o in self.outcomes.values() if o.ok]

    @property
    def failed(self) -> List[StrategyOutcome]:
        return [o for o in self.outcomes.values() if not o.ok]

    def hits_by_strategy(self) -> Dict[str, List[StrategyHit]]:
        return {name: o.hits for name, o in self.outcomes.items() if o.ok}


def lexical_to_strategy_hits(hits: Sequence[LexicalHit]) -> List[StrategyHit]:
    return [
        StrategyHit(
            chunk_id=hit.chunk_id,
            document_id=hit.document_id,
            path=hit.path,
            title=hit.title,
            snippet=hit.snippet,
            score=hit.score,
            rank=position,
            content=hit.content,
        )
        for position, hit in enumerate(hits, start=1)
    ]


class StrategyExecutor:
    """
    Concurrent fan-out over the lexical, semantic and entity strategies.

    Args:
        lexical: FTS5 index (fts_exact / fts_relaxed)
        vector_index: Qdrant adapter (semantic); optional
        embedder: Object exposing ``embed_async(text)``; optional
        entity_searcher: Object exposing ``search_chunks(query, limit, source_ids)``
            returning StrategyHits; optional
        config: Timeouts and semantic threshold

    Example:
        executor = StrategyExecutor(lexical, vector_index, embedder)
        result = await executor.execute(
            "rate limiting",
            [SearchStrategy.FTS_EXACT, SearchStrategy.FTS_RELAXED, SearchStrategy.SEMANTIC],
            limit=30,
            deadline=loop.time() + 5.0,
        )
    """

    def __init__(
        self,
        lexical: LexicalIndex,
        vector_index=None,
        embedder=None,
        entity_searcher=None,
        config: Optional[RetrievalConfig] = None,
    ):
        self.lexical = lexical
        self.vector_index = vector_index
        self.embedder = embedder
        self.entity_searcher = entity_searcher
        self.config = config or RetrievalConfig()

    def _timeout_for(self, strategy: SearchStrategy) -> float:
        if strategy == SearchStrategy.SEMANTIC:
            return self.config.semantic_timeout_ms / 1000.0
        if strategy == SearchStrategy.ENTITY:
            return self.config.entity_timeout_ms / 1000.0
        return self.config.lexical_timeout_ms / 1000.0

    async def execute(
        self,
        query: str,
        strategies: Sequence[SearchStrategy],
        limit: int,
        deadline: float,
        source_ids: Optional[Sequence[str]] = None,
    ) -> ExecutionResult:
        """
        Run ``strategies`` concurrently.

        Args:
            query: Query text
            strategies: Strategies to launch
            limit: Candidates requested from each strategy
            deadline: Absolute ``loop.time()`` after which nothing waits
            source_ids: Restrict to these sources

        Returns:
            ExecutionResult with one outcome per launched strategy

        Raises:
            AllStrategiesFailedError: every launched strategy failed
        """
        result = ExecutionResult()
        if not strategies:
            return result

        tasks = [
            self._run_branch(strategy, query, limit, deadline, source_ids, result)
            for strategy in strategies
        ]
        outcomes = await asyncio.gather(*tasks)

        for outcome in outcomes:
            result.outcomes[outcome.strategy.value] = outcome
            if not outcome.ok:
                log.warning(
                    f"Strategy {outcome.strategy.value} {outcome.status.value}: {outcome.error}",
                    elapsed_ms=round(outcome.elapsed_ms, 1),
                )

        if not result.succeeded:
            raise AllStrategiesFailedError(
                {o.strategy.value: o.error or o.status.value for o in result.failed}
            )

        log.debug(
            "Strategies executed",
            succeeded=[o.strategy.value for o in result.succeeded],
            failed=[o.strategy.value for o in result.failed],
        )
        return result

    async def _run_branch(
        self,
        strategy: SearchStrategy,
        query: str,
        limit: int,
        deadline: float,
        source_ids: Optional[Sequence[str]],
        result: ExecutionResult,
    ) -> StrategyOutcome:
        loop = asyncio.get_running_loop()
        timeout = min(self._timeout_for(strategy), deadline - loop.time())
        start = time.perf_counter()

        if timeout <= 0:
            return StrategyOutcome(strategy, StrategyStatus.TIMED_OUT, error="query deadline exceeded")

        try:
            hits = await asyncio.wait_for(
                self._dispatch(strategy, query, limit, source_ids, result),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            return StrategyOutcome(
                strategy,
                StrategyStatus.TIMED_OUT,
                error=f"timed out after {timeout * 1000:.0f}ms",
                elapsed_ms=(time.perf_counter() - start) * 1000,
            )
        except Exception as e:
            return StrategyOutcome(
                strategy,
                StrategyStatus.FAILED,
                error=str(e) or type(e).__name__,
                elapsed_ms=(time.perf_counter() - start) * 1000,
            )

        return StrategyOutcome(
            strategy,
            StrategyStatus.OK,
            hits=hits,
            elapsed_ms=(time.perf_counter() - start) * 1000,
        )

    async def _dispatch(
        self,
        strategy: SearchStrategy,
        query: str,
        limit: int,
        source_ids: Optional[Sequence[str]],
        result: ExecutionResult,
    ) -> List[StrategyHit]:
        if strategy == SearchStrategy.FTS_EXACT:
            hits = await self.lexical.search(query, limit=limit, mode=LexicalMode.PHRASE, source_ids=source_ids)
            return lexical_to_strategy_hits(hits)

        if strategy == SearchStrategy.FTS_RELAXED:
            hits = await self.lexical.search(query, limit=limit, mode=LexicalMode.PREFIX, source_ids=source_ids)
            return lexical_to_strategy_hits(hits)

        if strategy == SearchStrategy.SEMANTIC:
            return await self._semantic(query, limit, source_ids, result)

        if strategy == SearchStrategy.ENTITY:
            if self.entity_searcher is None:
                raise RuntimeError("entity searcher not configured")
            hits = await self.entity_searcher.search_chunks(query, limit=limit, source_ids=source_ids)
            for position, hit in enumerate(hits, start=1):
                hit.rank = position
            return list(hits)

        raise ValueError(f"unknown strategy: {strategy}")

    async def _semantic(
        self,
        query: str,
        limit: int,
        source_ids: Optional[Sequence[str]],
        result: ExecutionResult,
    ) -> List[StrategyHit]:
        if self.vector_index is None or self.embedder is None:
            raise RuntimeError("semantic search not configured")

        vector = await self.embedder.embed_async(query)
        result.query_vector = vector

        vector_hits = await self.vector_index.query(
            vector,
            limit=limit,
            source_ids=source_ids,
            min_score=self.config.semantic_min_score or None,
        )

        hits = []
        for position, hit in enumerate(vector_hits, start=1):
            payload: Dict[str, Any] = hit.payload
            content = payload.get("content", "")
            hits.append(StrategyHit(
                chunk_id=hit.id,
                document_id=payload.get("document_id", ""),
                path=payload.get("path", ""),
                title=payload.get("title", ""),
                snippet=create_snippet(content),
                score=hit.score,
                rank=position,
                content=content,
            ))
        return hits
