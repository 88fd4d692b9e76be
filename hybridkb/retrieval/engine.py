"""
Hybrid Search Engine
====================

Orchestrates one query end to end:

    classify -> execute strategies (parallel) -> agreement -> RRF fusion
             -> similarity floor -> rerank -> MMR -> SearchResponse

``search_with_fallback`` adds the never-zero-results cascade:

    level 0: primary pass
    level 1: relaxed lexical (any term, prefix), lower floor, no MMR
    level 2: each significant word searched on its own
    level 3: empty result with title suggestions

Every level shares the per-query deadline.
"""

import asyncio
import time
from typing import Awaitable, Dict, List, Optional, Sequence, TypeVar

import structlog

from hybridkb.config.tuning import SearchTuning, load_search_tuning
from hybridkb.errors import AllStrategiesFailedError, EmptyQueryError, QueryTooLongError
from hybridkb.retrieval.agreement import compute_agreement, overall_confidence
from hybridkb.retrieval.classifier import classify_query
from hybridkb.retrieval.config import RetrievalConfig
from hybridkb.retrieval.executor import StrategyExecutor, lexical_to_strategy_hits
from hybridkb.retrieval.fusion import fuse, resolve_weights, sort_hits
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
)
from hybridkb.retrieval.postprocess import (
    apply_mmr,
    apply_similarity_floor,
    rerank,
    score_to_confidence,
)
from hybridkb.storage.lexical.index import LexicalIndex, LexicalMode

log = structlog.get_logger()

T = TypeVar("T")

NOTE_SEMANTIC_UNAVAILABLE = "Semantic search unavailable, using lexical search only"
NOTE_RELAXED = "Using relaxed matching - verify relevance"
NOTE_PARTIAL = "Partial word matching - results may not fully match query"
NOTE_NO_RESULTS = "No matching documents found. Try different search terms or verify documents are indexed."

PARTIAL_WORD_LIMIT = 5
MAX_SUGGESTIONS = 5


def _join_notes(*notes: str) -> str:
    return "; ".join(n for n in notes if n)


def _significant_words(query: str, min_len: int) -> List[str]:
    words = []
    for raw in query.split():
        word = raw.strip("\"'.,;:!?()[]{}")
        if len(word) >= min_len and word.lower() not in (w.lower() for w in words):
            words.append(word)
    return words


class HybridSearchEngine:
    """
    Adaptive hybrid retrieval over the lexical index, the vector index and
    (optionally) the KAG entity searcher.

    Capabilities are injected: without a vector index or embedder the
    engine runs lexical-only and marks responses as degraded.

    Example:
        engine = HybridSearchEngine(LexicalIndex(store), vector_index, embedder)
        response = await engine.search_with_fallback(SearchRequest(query="Oak Ridge laboratories"))
        for hit in response.hits:
            print(hit.path, hit.score, sorted(hit.strategies))
    """

    def __init__(
        self,
        lexical: LexicalIndex,
        vector_index=None,
        embedder=None,
        entity_searcher=None,
        config: Optional[RetrievalConfig] = None,
        tuning: Optional[SearchTuning] = None,
    ):
        self.lexical = lexical
        self.vector_index = vector_index
        self.embedder = embedder
        self.entity_searcher = entity_searcher
        self.config = config or RetrievalConfig()
        self.tuning = tuning or load_search_tuning()
        self.executor = StrategyExecutor(
            lexical,
            vector_index=vector_index,
            embedder=embedder,
            entity_searcher=entity_searcher,
            config=self.config,
        )

    @property
    def semantic_available(self) -> bool:
        if not self.config.enable_semantic or self.vector_index is None or self.embedder is None:
            return False
        return getattr(self.vector_index, "is_connected", True)

    @property
    def entity_available(self) -> bool:
        return self.config.enable_entity_strategy and self.entity_searcher is not None

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def validate(self, request: SearchRequest) -> None:
        if not request.query.strip():
            raise EmptyQueryError()
        if len(request.query) > self.config.max_query_length:
            raise QueryTooLongError(len(request.query), self.config.max_query_length)

    def plan_strategies(self, mode: SearchMode, analysis: QueryAnalysis) -> List[SearchStrategy]:
        """Strategies to launch for a mode and query type."""
        lexical = [SearchStrategy.FTS_EXACT, SearchStrategy.FTS_RELAXED]
        if analysis.query_type == QueryType.ENTITY and self.entity_available:
            lexical.append(SearchStrategy.ENTITY)

        if mode == SearchMode.FTS:
            return lexical
        if mode == SearchMode.SEMANTIC:
            return [SearchStrategy.SEMANTIC] if self.semantic_available else lexical

        strategies = list(lexical)
        if self.semantic_available:
            strategies.insert(2, SearchStrategy.SEMANTIC)
        return strategies

    # ------------------------------------------------------------------
    # Primary pass
    # ------------------------------------------------------------------

    async def search(self, request: SearchRequest, deadline: Optional[float] = None) -> SearchResponse:
        """
        Primary retrieval pass (no fallback cascade).

        Degraded strategies are reported on the response; when every
        strategy fails the response has ``status=fatal`` and ``error`` set.

        Raises:
            EmptyQueryError, QueryTooLongError: invalid request
        """
        self.validate(request)
        start = time.perf_counter()
        loop = asyncio.get_running_loop()
        if deadline is None:
            deadline = loop.time() + self.config.deadline_s

        analysis = classify_query(request.query)
        strategies = self.plan_strategies(request.mode, analysis)
        semantic_missing = request.mode != SearchMode.FTS and not self.semantic_available

        log.debug(
            "Search planned",
            query=request.query[:80],
            query_type=analysis.query_type.value,
            strategies=[s.value for s in strategies],
        )

        try:
            execution = await self.executor.execute(
                request.query,
                strategies,
                limit=self.tuning.candidate_limit(request.limit),
                deadline=deadline,
                source_ids=request.source_ids,
            )
        except AllStrategiesFailedError as e:
            log.error(f"Search failed: {e}", query=request.query[:80])
            return SearchResponse(
                query=request.query,
                query_type=analysis.query_type,
                status=ResponseStatus.FATAL,
                strategies_failed=dict(e.failures),
                degraded=True,
                note=NOTE_SEMANTIC_UNAVAILABLE if semantic_missing else "",
                error=str(e),
                elapsed_ms=(time.perf_counter() - start) * 1000,
            )

        hits_by_strategy = execution.hits_by_strategy()
        executed = list(hits_by_strategy)
        failed = {o.strategy.value: o.error or o.status.value for o in execution.failed}

        info = compute_agreement(hits_by_strategy, executed)
        weights = resolve_weights(self.tuning, analysis.query_type, request.semantic_weight)
        hits = fuse(
            hits_by_strategy,
            info,
            weights,
            self.tuning,
            analysis.query_type,
            entities=analysis.entities,
            boost_exact_match=request.boost_exact_match,
        )

        floor = request.min_score if request.min_score is not None else self.tuning.similarity_floor
        hits, rejected = apply_similarity_floor(hits, floor)

        reranked = False
        if request.enable_rerank and hits:
            remaining = deadline - loop.time()
            if remaining > 0:
                hits, reranked = await rerank(
                    hits,
                    request.query,
                    embedder=self.embedder if self.semantic_available else None,
                    top_n=self.tuning.rerank_top_n,
                    keep=max(self.tuning.rerank_keep, request.limit),
                    timeout=min(self.config.rerank_timeout_ms / 1000.0, remaining),
                )

        mmr_applied = False
        if request.enable_mmr and len(hits) > 1:
            mmr_lambda = request.mmr_lambda if request.mmr_lambda is not None else self.tuning.mmr_lambda
            hits = apply_mmr(hits, request.limit, mmr_lambda)
            mmr_applied = True
        else:
            hits = hits[:request.limit]

        degraded = bool(failed) or semantic_missing
        strategies_with_hits = sum(1 for h in hits_by_strategy.values() if h)

        if executed == [SearchStrategy.SEMANTIC.value] and hits:
            top = max((h.semantic_score or 0.0) for h in hits)
            confidence = score_to_confidence(top)
        else:
            confidence = overall_confidence(hits, strategies_with_hits, degraded)

        notes = []
        if semantic_missing:
            notes.append(NOTE_SEMANTIC_UNAVAILABLE)
        if failed:
            notes.append("Degraded strategies: " + ", ".join(
                f"{name} ({execution.outcomes[name].status.value})" for name in sorted(failed)
            ))

        response = SearchResponse(
            query=request.query,
            hits=hits,
            confidence=confidence,
            query_type=analysis.query_type,
            status=ResponseStatus.PARTIAL if degraded else ResponseStatus.FULL,
            strategies_used=executed,
            strategies_failed=failed,
            degraded=degraded,
            note=_join_notes(*notes),
            rejected_by_floor=rejected,
            reranked=reranked,
            mmr_applied=mmr_applied,
            elapsed_ms=(time.perf_counter() - start) * 1000,
        )

        log.info(
            "Search completed",
            query_type=analysis.query_type.value,
            hits=len(hits),
            confidence=confidence.value,
            status=response.status.value,
            elapsed_ms=round(response.elapsed_ms, 1),
        )
        return response

    # ------------------------------------------------------------------
    # Fallback cascade
    # ------------------------------------------------------------------

    async def search_with_fallback(self, request: SearchRequest) -> SearchResponse:
        """
        Primary pass, then the relaxed / partial / suggestion cascade when it
        returned nothing. Fatal responses are returned as is.
        """
        loop = asyncio.get_running_loop()
        start = time.perf_counter()
        deadline = loop.time() + self.config.deadline_s

        response = await self.search(request, deadline=deadline)
        if response.hits or response.is_fatal or not self.config.enable_fallback:
            return response

        log.debug("Primary pass empty, starting fallback cascade", query=request.query[:80])

        relaxed = await self._bounded(self._relaxed_hits(request), deadline)
        if relaxed:
            return self._fallback_response(response, relaxed, 1, Confidence.LOW, NOTE_RELAXED,
                                           [SearchStrategy.FTS_RELAXED.value], start)

        partial = await self._bounded(self._partial_hits(request), deadline)
        if partial:
            return self._fallback_response(response, partial, 2, Confidence.SPECULATIVE, NOTE_PARTIAL,
                                           [SearchStrategy.FTS_RELAXED.value], start)

        suggestions = await self._bounded(self.suggest(request.query), deadline) or []
        final = self._fallback_response(response, [], 3, Confidence.NONE, NOTE_NO_RESULTS, [], start)
        final.suggestions = suggestions
        return final

    async def _bounded(self, coro: Awaitable[T], deadline: float) -> Optional[T]:
        remaining = deadline - asyncio.get_running_loop().time()
        if remaining <= 0:
            coro.close()
            return None
        try:
            return await asyncio.wait_for(coro, timeout=remaining)
        except asyncio.TimeoutError:
            log.warning("Fallback level timed out")
        except Exception as e:
            log.warning(f"Fallback level failed: {e}")
        return None

    async def _relaxed_hits(self, request: SearchRequest) -> List[SearchHit]:
        analysis = classify_query(request.query)
        lexical_hits = await self.lexical.search(
            request.query,
            limit=request.limit * 2,
            mode=LexicalMode.RELAXED,
            source_ids=request.source_ids,
        )
        if not lexical_hits:
            return []

        hits_by_strategy = {SearchStrategy.FTS_RELAXED.value: lexical_to_strategy_hits(lexical_hits)}
        info = compute_agreement(hits_by_strategy, list(hits_by_strategy))
        hits = fuse(
            hits_by_strategy,
            info,
            resolve_weights(self.tuning, analysis.query_type, request.semantic_weight),
            self.tuning,
            analysis.query_type,
            entities=analysis.entities,
            boost_exact_match=request.boost_exact_match,
        )
        hits, _ = apply_similarity_floor(hits, self.tuning.relaxed_similarity_floor)
        for hit in hits:
            hit.confidence = Confidence.LOW
        return hits[:request.limit]

    async def _partial_hits(self, request: SearchRequest) -> List[SearchHit]:
        words = _significant_words(request.query, 3)
        if not words:
            return []

        results = await asyncio.gather(*[
            self.lexical.search(word, limit=PARTIAL_WORD_LIMIT, mode=LexicalMode.PREFIX,
                                source_ids=request.source_ids)
            for word in words
        ])

        best: Dict[str, SearchHit] = {}
        for lexical_hits in results:
            for position, hit in enumerate(lexical_hits, start=1):
                current = best.get(hit.chunk_id)
                if current is not None and current.score >= hit.score:
                    continue
                best[hit.chunk_id] = SearchHit(
                    chunk_id=hit.chunk_id,
                    document_id=hit.document_id,
                    path=hit.path,
                    title=hit.title,
                    snippet=hit.snippet,
                    score=hit.score,
                    strategies={SearchStrategy.FTS_RELAXED.value},
                    best_rank=position,
                    confidence=Confidence.SPECULATIVE,
                    content=hit.content,
                )
        return sort_hits(list(best.values()))[:request.limit]

    async def suggest(self, query: str) -> List[str]:
        """Document titles matching prefixes of the query's words."""
        suggestions: List[str] = []
        for word in _significant_words(query, 3):
            for title in await self.lexical.suggest(word, limit=MAX_SUGGESTIONS):
                if title not in suggestions:
                    suggestions.append(title)
            if len(suggestions) >= MAX_SUGGESTIONS:
                break
        return suggestions[:MAX_SUGGESTIONS]

    def _fallback_response(
        self,
        primary: SearchResponse,
        hits: Sequence[SearchHit],
        level: int,
        confidence: Confidence,
        note: str,
        strategies: List[str],
        start: float,
    ) -> SearchResponse:
        log.info(f"Fallback level {level} returned {len(hits)} hits", query=primary.query[:80])
        return SearchResponse(
            query=primary.query,
            hits=list(hits),
            confidence=confidence,
            query_type=primary.query_type,
            status=primary.status,
            strategies_used=strategies or primary.strategies_used,
            strategies_failed=primary.strategies_failed,
            degraded=primary.degraded,
            note=_join_notes(primary.note, note),
            fallback_level=level,
            elapsed_ms=(time.perf_counter() - start) * 1000,
        )
