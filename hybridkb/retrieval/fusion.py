"""
Rank Fusion
===========

Weighted Reciprocal Rank Fusion with agreement bonus and exact
proper-noun boost.

    rrf(d)   = sum over strategies s that found d of  w[s] / (k + rank_s(d))
    score(d) = rrf(d) * (1 + agreement(d) * agreement_bonus) * entity_boost(d)

Lexical-family strategies (fts_exact, fts_relaxed, entity) split the
lexical weight evenly among those that ran; semantic gets the semantic
weight. With k = 0 the formula reduces to w[s] / rank.

Ordering is deterministic: score desc, then best rank asc, then chunk_id.
"""

from typing import Dict, Iterable, List, Mapping, Optional, Sequence

import structlog

from hybridkb.config.tuning import SearchTuning, StrategyWeights
from hybridkb.retrieval.agreement import AgreementInfo, confidence_label
from hybridkb.retrieval.models import (
    LEXICAL_STRATEGIES,
    QueryType,
    SearchHit,
    SearchStrategy,
    StrategyHit,
)

log = structlog.get_logger()

_LEXICAL_NAMES = {s.value for s in LEXICAL_STRATEGIES}


def resolve_weights(
    tuning: SearchTuning,
    query_type: QueryType,
    semantic_weight: Optional[float] = None,
) -> StrategyWeights:
    """Query-type weights, optionally overridden by an explicit semantic weight."""
    if semantic_weight is not None:
        return StrategyWeights(semantic=semantic_weight, lexical=1.0 - semantic_weight)
    return tuning.weights_for(query_type)


def strategy_weights(weights: StrategyWeights, executed: Iterable[str]) -> Dict[str, float]:
    """Per-strategy weight for the strategies that actually ran."""
    names = [str(getattr(s, "value", s)) for s in executed]
    lexical = [n for n in names if n in _LEXICAL_NAMES]
    per_lexical = weights.lexical / len(lexical) if lexical else 0.0
    result = {}
    for name in names:
        if name == SearchStrategy.SEMANTIC.value:
            result[name] = weights.semantic
        else:
            result[name] = per_lexical
    return result


def rrf_score(ranks: Mapping[str, int], weights: Mapping[str, float], k: int) -> float:
    """Weighted reciprocal-rank sum for one candidate."""
    return sum(weights.get(name, 0.0) / (k + rank) for name, rank in ranks.items())


def agreement_multiplier(
    found_by: Sequence[str],
    agreement: float,
    tuning: SearchTuning,
    query_type: QueryType,
) -> float:
    """
    (1 + agreement * bonus); semantic-only hits on conceptual queries get at
    least the conceptual boost.
    """
    multiplier = 1.0 + agreement * tuning.agreement_bonus
    if (
        query_type == QueryType.CONCEPTUAL
        and len(found_by) == 1
        and SearchStrategy.SEMANTIC.value in found_by
    ):
        multiplier = max(multiplier, tuning.conceptual_semantic_boost)
    return multiplier


def entity_boost(text: str, entities: Sequence[str], tuning: SearchTuning) -> float:
    """
    Multiplicative boost for exact (case-insensitive) entity mentions.

    Longer entities are checked first; multi-word entities weigh more.
    """
    if not entities:
        return 1.0
    haystack = text.lower()
    boost = 1.0
    for entity in sorted(entities, key=len, reverse=True):
        if entity.lower() in haystack:
            if len(entity.split()) >= 2:
                boost *= tuning.multi_word_entity_boost
            else:
                boost *= tuning.single_word_entity_boost
    return min(boost, tuning.max_entity_boost)


def sort_hits(hits: List[SearchHit]) -> List[SearchHit]:
    return sorted(hits, key=lambda h: (-h.score, h.best_rank or 10**9, h.chunk_id))


def fuse(
    hits_by_strategy: Mapping[str, Sequence[StrategyHit]],
    info: AgreementInfo,
    weights: StrategyWeights,
    tuning: SearchTuning,
    query_type: QueryType,
    entities: Optional[Sequence[str]] = None,
    boost_exact_match: bool = True,
) -> List[SearchHit]:
    """
    Fuse per-strategy lists into one scored, ordered list.

    Args:
        hits_by_strategy: strategy name -> ranked hits
        info: Agreement bookkeeping for the same lists
        weights: Semantic/lexical split for this query
        tuning: RRF k, bonuses, boosts
        query_type: Classified query type
        entities: Proper nouns / capitalized words for the exact-match boost
        boost_exact_match: Apply the entity boost

    Returns:
        SearchHit list sorted by final score
    """
    per_strategy = strategy_weights(weights, info.executed)

    # First occurrence wins for display fields; semantic score kept separately
    representative: Dict[str, StrategyHit] = {}
    semantic_scores: Dict[str, float] = {}
    for strategy, hits in hits_by_strategy.items():
        name = str(getattr(strategy, "value", strategy))
        for hit in hits:
            current = representative.get(hit.chunk_id)
            if current is None or (not current.content and hit.content):
                representative[hit.chunk_id] = hit
            if name == SearchStrategy.SEMANTIC.value:
                semantic_scores.setdefault(hit.chunk_id, hit.score)

    fused: List[SearchHit] = []
    for chunk_id, base in representative.items():
        found = sorted(info.chunk_strategies.get(chunk_id, ()))
        agreement = info.agreement(chunk_id)

        score = rrf_score(info.chunk_ranks.get(chunk_id, {}), per_strategy, tuning.rrf_k)
        score *= agreement_multiplier(found, agreement, tuning, query_type)
        if boost_exact_match and entities:
            score *= entity_boost(f"{base.content or base.snippet} {base.title} {base.path}", entities, tuning)

        fused.append(SearchHit(
            chunk_id=chunk_id,
            document_id=base.document_id,
            path=base.path,
            title=base.title,
            snippet=base.snippet,
            score=score,
            strategies=set(found),
            best_rank=info.chunk_best_rank.get(chunk_id, 0),
            agreement=agreement,
            confidence=confidence_label(len(found), agreement),
            semantic_score=semantic_scores.get(chunk_id),
            content=base.content,
        ))

    ordered = sort_hits(fused)
    log.debug(f"Fused {len(ordered)} candidates from {len(hits_by_strategy)} strategies")
    return ordered
