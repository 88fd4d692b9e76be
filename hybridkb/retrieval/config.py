"""
Retrieval Configuration
=======================

Runtime budgets and capability switches for the hybrid search engine.
Ranking knobs (weights, RRF k, MMR lambda, ...) live in SearchTuning
(``hybridkb/config/search_tuning.yaml``).

Environment Variables:
    RETRIEVAL_DEADLINE_MS: Overall per-query deadline (default: 5000)
    RETRIEVAL_LEXICAL_TIMEOUT_MS: Budget for each FTS branch (default: 250)
    RETRIEVAL_SEMANTIC_TIMEOUT_MS: Budget for embed + vector query (default: 3000)
    RETRIEVAL_ENTITY_TIMEOUT_MS: Budget for the entity branch (default: 1000)
    RETRIEVAL_RERANK_TIMEOUT_MS: Budget for embedding rerank (default: 1500)
    RETRIEVAL_SEMANTIC_MIN_SCORE: Cosine threshold for vector hits (default: 0.3)
    RETRIEVAL_ENABLE_SEMANTIC: "true"/"false" (default: true)
    RETRIEVAL_ENABLE_ENTITY: "true"/"false" (default: true)
"""

import os
from dataclasses import dataclass, field


def _get_env_int(key: str, default: int) -> int:
    return int(os.environ.get(key, default))


def _get_env_float(key: str, default: float) -> float:
    return float(os.environ.get(key, default))


def _get_env_bool(key: str, default: bool) -> bool:
    return os.environ.get(key, str(default)).lower() in ("1", "true", "yes")


@dataclass
class RetrievalConfig:
    """
    Configuration for HybridSearchEngine.

    Attributes:
        deadline_ms: Overall per-query deadline; no query waits longer
        lexical_timeout_ms: Per-branch budget for FTS searches
        semantic_timeout_ms: Budget for embedding + vector lookup (absorbs cold starts)
        entity_timeout_ms: Budget for the entity strategy
        rerank_timeout_ms: Budget for embedding-based reranking
        semantic_min_score: Minimum cosine similarity for vector hits
        enable_semantic: Run the semantic strategy when a vector index is wired
        enable_entity_strategy: Run the entity strategy for entity queries
        enable_fallback: Run the never-zero-results cascade
        max_query_length: Reject longer queries
        default_limit: Results returned when the request does not say
    """
    deadline_ms: int = field(default_factory=lambda: _get_env_int("RETRIEVAL_DEADLINE_MS", 5000))
    lexical_timeout_ms: int = field(default_factory=lambda: _get_env_int("RETRIEVAL_LEXICAL_TIMEOUT_MS", 250))
    semantic_timeout_ms: int = field(default_factory=lambda: _get_env_int("RETRIEVAL_SEMANTIC_TIMEOUT_MS", 3000))
    entity_timeout_ms: int = field(default_factory=lambda: _get_env_int("RETRIEVAL_ENTITY_TIMEOUT_MS", 1000))
    rerank_timeout_ms: int = field(default_factory=lambda: _get_env_int("RETRIEVAL_RERANK_TIMEOUT_MS", 1500))
    semantic_min_score: float = field(default_factory=lambda: _get_env_float("RETRIEVAL_SEMANTIC_MIN_SCORE", 0.3))
    enable_semantic: bool = field(default_factory=lambda: _get_env_bool("RETRIEVAL_ENABLE_SEMANTIC", True))
    enable_entity_strategy: bool = field(default_factory=lambda: _get_env_bool("RETRIEVAL_ENABLE_ENTITY", True))
    enable_fallback: bool = True
    max_query_length: int = 1000
    default_limit: int = 10

    def __post_init__(self):
        for name in ("deadline_ms", "lexical_timeout_ms", "semantic_timeout_ms",
                     "entity_timeout_ms", "rerank_timeout_ms"):
            value = getattr(self, name)
            if value <= 0:
                raise ValueError(f"{name} must be positive, got {value}")
        if not 0.0 <= self.semantic_min_score <= 1.0:
            raise ValueError(f"semantic_min_score must be in [0, 1], got {self.semantic_min_score}")
        if self.max_query_length <= 0:
            raise ValueError(f"max_query_length must be positive, got {self.max_query_length}")

    @property
    def deadline_s(self) -> float:
        return self.deadline_ms / 1000.0

    @classmethod
    def for_test(cls) -> "RetrievalConfig":
        """Short budgets, semantic on, fallback on."""
        return cls(
            deadline_ms=2000,
            lexical_timeout_ms=500,
            semantic_timeout_ms=1000,
            entity_timeout_ms=500,
            rerank_timeout_ms=500,
            semantic_min_score=0.0,
        )

    def to_dict(self) -> dict:
        return {
            "deadline_ms": self.deadline_ms,
            "lexical_timeout_ms": self.lexical_timeout_ms,
            "semantic_timeout_ms": self.semantic_timeout_ms,
            "entity_timeout_ms": self.entity_timeout_ms,
            "rerank_timeout_ms": self.rerank_timeout_ms,
            "semantic_min_score": self.semantic_min_score,
            "enable_semantic": self.enable_semantic,
            "enable_entity_strategy": self.enable_entity_strategy,
            "enable_fallback": self.enable_fallback,
        }
