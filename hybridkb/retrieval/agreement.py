"""
Agreement & Confidence
======================

Tracks which strategies surfaced each chunk and turns that into an
agreement fraction and a confidence label. Pure functions.

Per-hit labels:
    found by >= 3 strategies          -> very_high
    found by 2                        -> high
    found by 1, agreement >= 0.5      -> medium
    otherwise                         -> low
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Sequence, Set

from hybridkb.retrieval.models import (
    Confidence,
    SearchHit,
    StrategyHit,
    min_confidence,
)


@dataclass
class AgreementInfo:
    """
    Cross-strategy bookkeeping for one query.

    Attributes:
        executed: Strategies that ran successfully (agreement denominator)
        chunk_strategies: chunk_id -> strategies that found it
        chunk_ranks: chunk_id -> {strategy: 1-based rank}
        chunk_best_rank: chunk_id -> lowest rank across strategies
    """
    executed: List[str] = field(default_factory=list)
    chunk_strategies: Dict[str, Set[str]] = field(default_factory=dict)
    chunk_ranks: Dict[str, Dict[str, int]] = field(default_factory=dict)
    chunk_best_rank: Dict[str, int] = field(default_factory=dict)

    def found_by(self, chunk_id: str) -> int:
        return len(self.chunk_strategies.get(chunk_id, ()))

    def agreement(self, chunk_id: str) -> float:
        if not self.executed:
            return 0.0
        return min(self.found_by(chunk_id) / len(self.executed), 1.0)


def compute_agreement(
    hits_by_strategy: Mapping[str, Sequence[StrategyHit]],
    executed: Iterable[str],
) -> AgreementInfo:
    """
    Build AgreementInfo from per-strategy ranked lists.

    Ranks are list positions (1-based); a chunk listed twice by the same
    strategy keeps its first (best) position.
    """
    info = AgreementInfo(executed=[str(getattr(s, "value", s)) for s in executed])

    for strategy, hits in hits_by_strategy.items():
        name = str(getattr(strategy, "value", strategy))
        for position, hit in enumerate(hits, start=1):
            ranks = info.chunk_ranks.setdefault(hit.chunk_id, {})
            if name in ranks:
                continue
            ranks[name] = position
            info.chunk_strategies.setdefault(hit.chunk_id, set()).add(name)
            best = info.chunk_best_rank.get(hit.chunk_id)
            if best is None or position < best:
                info.chunk_best_rank[hit.chunk_id] = position

    return info


def confidence_label(found_by: int, agreement: float) -> Confidence:
    """Per-hit confidence from strategy count and agreement fraction."""
    if found_by >= 3:
        return Confidence.VERY_HIGH
    if found_by == 2:
        return Confidence.HIGH
    if found_by == 1 and agreement >= 0.5:
        return Confidence.MEDIUM
    return Confidence.LOW


def overall_confidence(
    hits: Sequence[SearchHit],
    strategies_with_hits: int,
    degraded: bool,
) -> Confidence:
    """
    Response-level confidence.

    very_high when at least half the hits were found by >= 2 strategies,
    high when some were, medium otherwise. Degraded responses are capped
    at medium.
    """
    if not hits:
        return Confidence.NONE

    multi = sum(1 for hit in hits if len(hit.strategies) >= 2)

    if strategies_with_hits >= 2 and multi * 2 >= len(hits):
        label = Confidence.VERY_HIGH
    elif strategies_with_hits >= 2 and multi > 0:
        label = Confidence.HIGH
    elif strategies_with_hits >= 1:
        label = Confidence.MEDIUM
    else:
        label = Confidence.LOW

    if degraded:
        label = min_confidence(label, Confidence.MEDIUM)
    return label
