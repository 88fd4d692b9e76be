"""
Search Tuning
=============

Pydantic models for the retrieval knobs: per-query-type strategy weights,
RRF constant, agreement bonus, post-processing defaults.

Values are loaded from ``search_tuning.yaml`` next to this module. When the
file is missing or unreadable the built-in defaults are used, so the engine
always starts.

Usage:
    from hybridkb.config import load_search_tuning

    tuning = load_search_tuning()
    weights = tuning.weights_for("conceptual")
    print(weights.semantic, weights.lexical)  # 0.8 0.2
"""

from pathlib import Path
from typing import Any, Dict, Optional

import structlog
import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

log = structlog.get_logger()

DEFAULT_TUNING_PATH = Path(__file__).parent / "search_tuning.yaml"

_TUNING_CACHE: Dict[str, "SearchTuning"] = {}


class StrategyWeights(BaseModel):
    """
    Semantic/lexical split for one query type.

    The two weights must sum to 1.0 (small float tolerance).
    """
    semantic: float = Field(..., ge=0.0, le=1.0)
    lexical: float = Field(..., ge=0.0, le=1.0)

    @model_validator(mode="after")
    def weights_sum_to_one(self) -> "StrategyWeights":
        if abs(self.semantic + self.lexical - 1.0) > 1e-6:
            raise ValueError(
                f"semantic + lexical must equal 1.0, got {self.semantic} + {self.lexical}"
            )
        return self


def _default_query_weights() -> Dict[str, StrategyWeights]:
    return {
        "exact_quote": StrategyWeights(semantic=0.1, lexical=0.9),
        "entity": StrategyWeights(semantic=0.4, lexical=0.6),
        "conceptual": StrategyWeights(semantic=0.8, lexical=0.2),
        "factual": StrategyWeights(semantic=0.5, lexical=0.5),
        "exploratory": StrategyWeights(semantic=0.7, lexical=0.3),
    }


class SearchTuning(BaseModel):
    """
    Retrieval tuning parameters.

    Attributes:
        rrf_k: RRF smoothing constant; 0 gives plain weight/rank
        agreement_bonus: Multiplier applied as (1 + agreement * bonus)
        conceptual_semantic_boost: Extra factor for semantic-only hits on conceptual queries
        multi_word_entity_boost: Boost per matched multi-word proper noun
        single_word_entity_boost: Boost per matched single capitalized word
        max_entity_boost: Cap on the cumulative entity boost
        similarity_floor: Drop fused scores below this (0 disables)
        relaxed_similarity_floor: Floor used by the relaxed fallback level
        mmr_lambda: Relevance/diversity balance for MMR
        rerank_top_n: Candidates considered by the reranker
        rerank_keep: Candidates kept after reranking
        candidate_multiplier: Over-retrieval factor per strategy
        min_candidates: Floor on per-strategy candidate count
        query_weights: Query type -> semantic/lexical split
    """
    rrf_k: int = Field(default=60, ge=0, le=1000)
    agreement_bonus: float = Field(default=0.2, ge=0.0, le=2.0)
    conceptual_semantic_boost: float = Field(default=1.1, ge=1.0, le=2.0)
    multi_word_entity_boost: float = Field(default=1.5, ge=1.0, le=5.0)
    single_word_entity_boost: float = Field(default=1.2, ge=1.0, le=5.0)
    max_entity_boost: float = Field(default=3.0, ge=1.0, le=10.0)
    similarity_floor: float = Field(default=0.001, ge=0.0, le=1.0)
    relaxed_similarity_floor: float = Field(default=0.0001, ge=0.0, le=1.0)
    mmr_lambda: float = Field(default=0.7, ge=0.0, le=1.0)
    rerank_top_n: int = Field(default=30, ge=1, le=500)
    rerank_keep: int = Field(default=10, ge=1, le=500)
    candidate_multiplier: int = Field(default=3, ge=1, le=10)
    min_candidates: int = Field(default=30, ge=1, le=1000)
    query_weights: Dict[str, StrategyWeights] = Field(default_factory=_default_query_weights)

    @field_validator("query_weights")
    @classmethod
    def all_query_types_present(cls, v: Dict[str, StrategyWeights]) -> Dict[str, StrategyWeights]:
        defaults = _default_query_weights()
        merged = dict(defaults)
        merged.update(v)
        unknown = set(v) - set(defaults)
        if unknown:
            raise ValueError(f"unknown query types in query_weights: {sorted(unknown)}")
        return merged

    def weights_for(self, query_type: Any) -> StrategyWeights:
        """Weights for a query type (enum or its string value)."""
        key = getattr(query_type, "value", query_type)
        return self.query_weights.get(key, self.query_weights["exploratory"])

    def candidate_limit(self, limit: int) -> int:
        """Per-strategy candidate count for a requested result limit."""
        return max(limit * self.candidate_multiplier, self.min_candidates)


def load_search_tuning(path: Optional[Path] = None, reload: bool = False) -> SearchTuning:
    """
    Load SearchTuning from YAML, cached per path.

    Args:
        path: YAML file (default: search_tuning.yaml in this package)
        reload: Bypass the cache

    Returns:
        SearchTuning instance (defaults when the file is missing)
    """
    config_path = Path(path) if path else DEFAULT_TUNING_PATH
    cache_key = str(config_path)

    if not reload and cache_key in _TUNING_CACHE:
        return _TUNING_CACHE[cache_key]

    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}
        tuning = SearchTuning(**data.get("search", data))
        log.debug("Loaded search tuning from YAML", path=cache_key)
    except FileNotFoundError:
        log.warning("Search tuning config not found, using defaults", path=cache_key)
        tuning = SearchTuning()

    _TUNING_CACHE[cache_key] = tuning
    return tuning


def clear_tuning_cache() -> None:
    """Drop cached tuning (used by tests and hot reload)."""
    _TUNING_CACHE.clear()
