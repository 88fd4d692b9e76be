"""
Post-Processing
===============

Independently toggleable passes applied to fused results, in order:

1. similarity floor: drop hits with ``score < floor`` (floor <= 0 disables)
2. rerank: top-N rescored as ``score * (1 + cosine(query, chunk))``
3. MMR: diversity-aware selection, ``λ·rel − (1−λ)·maxJaccard·rel``

Also hosts the snippet and score-to-confidence helpers used by the
semantic strategy.
"""

import asyncio
import re
from typing import List, Optional, Sequence, Set, Tuple

import structlog

from hybridkb.retrieval.fusion import sort_hits
from hybridkb.retrieval.models import Confidence, SearchHit

log = structlog.get_logger()

_PUNCT = ".,;:!?\"'()[]{}<>-_/\\*#`~|"
_SENTENCE_END = re.compile(r"[.!?]\s")


def apply_similarity_floor(hits: Sequence[SearchHit], floor: float) -> Tuple[List[SearchHit], int]:
    """
    Drop hits scoring strictly below ``floor``.

    Returns:
        (kept hits, number rejected)
    """
    if floor <= 0:
        return list(hits), 0
    kept = [hit for hit in hits if hit.score >= floor]
    return kept, len(hits) - len(kept)


async def rerank(
    hits: Sequence[SearchHit],
    query: str,
    embedder=None,
    top_n: int = 30,
    keep: int = 10,
    timeout: float = 1.5,
) -> Tuple[List[SearchHit], bool]:
    """
    Rescore the top-N candidates against the query.

    Uses ``embedder.similarity_async(query, passages)`` when an embedder is
    given; on failure, timeout or no embedder falls back to the cosine
    scores recorded by the semantic branch. Candidates beyond ``top_n`` are
    dropped, then the best ``keep`` are returned.

    Returns:
        (reranked hits, True when model scores were used)
    """
    if not hits:
        return [], False

    candidates = list(hits)[:top_n]
    similarities: Optional[List[float]] = None

    if embedder is not None:
        passages = [hit.content or hit.snippet for hit in candidates]
        try:
            similarities = await asyncio.wait_for(embedder.similarity_async(query, passages), timeout=timeout)
        except asyncio.TimeoutError:
            log.warning(f"Rerank timed out after {timeout:.2f}s, using semantic scores")
        except Exception as e:
            log.warning(f"Rerank failed, using semantic scores: {e}")

    used_model = similarities is not None and len(similarities) == len(candidates)
    if not used_model:
        similarities = [hit.semantic_score or 0.0 for hit in candidates]

    for hit, sim in zip(candidates, similarities):
        hit.score = hit.score * (1.0 + max(float(sim), 0.0))

    return sort_hits(candidates)[:keep], used_model


def tokenize(text: str) -> Set[str]:
    """Lowercased words of >= 3 chars with punctuation trimmed."""
    words = set()
    for raw in text.lower().split():
        word = raw.strip(_PUNCT)
        if len(word) >= 3:
            words.add(word)
    return words


def text_similarity(a: Set[str], b: Set[str]) -> float:
    """Jaccard similarity of two token sets."""
    if not a or not b:
        return 0.0
    union = len(a | b)
    return len(a & b) / union if union else 0.0


def apply_mmr(hits: Sequence[SearchHit], limit: int, mmr_lambda: float = 0.7) -> List[SearchHit]:
    """
    Maximal Marginal Relevance selection.

    The top-scoring hit is taken first; each next pick maximizes
    ``λ·rel − (1−λ)·maxSim·rel`` against what has been selected. Selected
    hits keep their original scores.
    """
    if len(hits) <= 1 or limit <= 1:
        return list(hits)[:limit]

    remaining = list(hits)
    tokens = {hit.chunk_id: tokenize(hit.content or hit.snippet) for hit in remaining}

    selected = [remaining.pop(0)]
    while remaining and len(selected) < limit:
        best_idx, best_mmr = 0, float("-inf")
        for idx, hit in enumerate(remaining):
            max_sim = max(text_similarity(tokens[hit.chunk_id], tokens[s.chunk_id]) for s in selected)
            mmr = mmr_lambda * hit.score - (1.0 - mmr_lambda) * max_sim * hit.score
            if mmr > best_mmr:
                best_idx, best_mmr = idx, mmr
        selected.append(remaining.pop(best_idx))

    return selected


def create_snippet(content: str, max_len: int = 300) -> str:
    """
    Leading snippet cut at a sentence boundary in the second half, else at
    a word boundary in the last quarter.
    """
    if len(content) <= max_len:
        return content

    head = content[:max_len]
    ends = [m.start() + 1 for m in _SENTENCE_END.finditer(head)]
    if ends and ends[-1] > max_len // 2:
        return head[:ends[-1]].rstrip()

    space = head.rfind(" ")
    if space > max_len * 3 // 4:
        return head[:space] + "..."
    return head + "..."


def score_to_confidence(score: float) -> Confidence:
    if score >= 0.8:
        return Confidence.HIGH
    if score >= 0.6:
        return Confidence.MEDIUM
    return Confidence.LOW
