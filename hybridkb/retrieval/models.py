"""
Retrieval Models
================

Request/response types for hybrid search.

- SearchRequest: validated caller input (pydantic)
- QueryAnalysis: classifier output
- StrategyHit / StrategyOutcome: per-strategy results from the executor
- SearchHit: fused, scored candidate
- SearchResponse: ordered hits plus confidence, status and notes
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from pydantic import BaseModel, Field, field_validator


class QueryType(str, Enum):
    """Query intent, drives the semantic/lexical weight split."""
    EXACT_QUOTE = "exact_quote"
    ENTITY = "entity"
    CONCEPTUAL = "conceptual"
    FACTUAL = "factual"
    EXPLORATORY = "exploratory"


class SearchStrategy(str, Enum):
    FTS_EXACT = "fts_exact"
    FTS_RELAXED = "fts_relaxed"
    SEMANTIC = "semantic"
    ENTITY = "entity"


LEXICAL_STRATEGIES = (SearchStrategy.FTS_EXACT, SearchStrategy.FTS_RELAXED, SearchStrategy.ENTITY)


class SearchMode(str, Enum):
    HYBRID = "hybrid"
    SEMANTIC = "semantic"
    FTS = "fts"
    AUTO = "auto"


class ResponseStatus(str, Enum):
    """Outcome at the caller boundary."""
    FULL = "full"
    PARTIAL = "partial"
    FATAL = "fatal"


class StrategyStatus(str, Enum):
    OK = "ok"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


class Confidence(str, Enum):
    """Confidence labels, strongest first."""
    VERY_HIGH = "very_high"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    SPECULATIVE = "speculative"
    NONE = "none"


CONFIDENCE_ORDER = [
    Confidence.NONE,
    Confidence.SPECULATIVE,
    Confidence.LOW,
    Confidence.MEDIUM,
    Confidence.HIGH,
    Confidence.VERY_HIGH,
]


def min_confidence(a: Confidence, b: Confidence) -> Confidence:
    """The weaker of two labels."""
    return a if CONFIDENCE_ORDER.index(a) <= CONFIDENCE_ORDER.index(b) else b


class SearchRequest(BaseModel):
    """
    Caller-facing search request.

    Optional fields left as None fall back to SearchTuning defaults.
    """
    query: str = Field(..., min_length=1, description="Free-text query")
    mode: SearchMode = Field(default=SearchMode.AUTO, description="hybrid | semantic | fts | auto")
    limit: int = Field(default=10, ge=1, le=100, description="Results to return")
    min_score: Optional[float] = Field(default=None, ge=0.0, le=1.0, description="Similarity floor override")
    semantic_weight: Optional[float] = Field(default=None, ge=0.0, le=1.0, description="Semantic weight override")
    mmr_lambda: Optional[float] = Field(default=None, ge=0.0, le=1.0, description="MMR lambda override")
    enable_mmr: bool = Field(default=True)
    enable_rerank: bool = Field(default=True)
    boost_exact_match: bool = Field(default=True)
    source_ids: Optional[List[str]] = Field(default=None, description="Restrict to these sources")

    @field_validator("query")
    @classmethod
    def query_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("query cannot be empty")
        return v


@dataclass
class QueryAnalysis:
    """
    Classifier output.

    Attributes:
        query: Original query text
        query_type: Detected intent
        has_quoted_phrase: Query contains a quoted substring
        quoted_phrases: The quoted substrings
        proper_nouns: Multi-word capitalized sequences
        entities: proper_nouns plus significant single capitalized words
    """
    query: str
    query_type: QueryType
    has_quoted_phrase: bool = False
    quoted_phrases: List[str] = field(default_factory=list)
    proper_nouns: List[str] = field(default_factory=list)
    entities: List[str] = field(default_factory=list)


@dataclass
class StrategyHit:
    """A candidate as returned by one strategy (rank is 1-based)."""
    chunk_id: str
    document_id: str
    path: str
    title: str
    snippet: str
    score: float
    rank: int = 0
    content: str = ""


@dataclass
class StrategyOutcome:
    """What one strategy branch produced."""
    strategy: SearchStrategy
    status: StrategyStatus
    hits: List[StrategyHit] = field(default_factory=list)
    error: Optional[str] = None
    elapsed_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status == StrategyStatus.OK


@dataclass
class SearchHit:
    """
    Fused search result.

    Attributes:
        chunk_id: Matched chunk
        document_id: Owning document
        path: Document path
        title: Document title
        snippet: Display snippet
        score: Final fused score
        strategies: Strategies that surfaced the chunk
        best_rank: Lowest 1-based rank across strategies
        agreement: found-by / executed strategies
        confidence: Per-hit confidence label
        semantic_score: Cosine similarity from the semantic branch, if any
        content: Chunk text (used by MMR/rerank, not serialized)
    """
    chunk_id: str
    document_id: str
    path: str
    title: str
    snippet: str
    score: float = 0.0
    strategies: Set[str] = field(default_factory=set)
    best_rank: int = 0
    agreement: float = 0.0
    confidence: Confidence = Confidence.LOW
    semantic_score: Optional[float] = None
    content: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chunk_id": self.chunk_id,
            "document_id": self.document_id,
            "path": self.path,
            "title": self.title,
            "snippet": self.snippet,
            "score": round(self.score, 6),
            "strategies": sorted(self.strategies),
            "best_rank": self.best_rank,
            "agreement": round(self.agreement, 3),
            "confidence": self.confidence.value,
        }

    def __repr__(self) -> str:
        return (
            f"<SearchHit(chunk_id={self.chunk_id}, score={self.score:.4f}, "
            f"strategies={sorted(self.strategies)}, confidence={self.confidence.value})>"
        )


@dataclass
class SearchResponse:
    """
    Engine response.

    ``status`` distinguishes full success, partial success (some strategy
    degraded) and fatal failure (every strategy failed). An empty ``hits``
    list with status FULL and confidence NONE means "searched, nothing found".
    """
    query: str
    hits: List[SearchHit] = field(default_factory=list)
    confidence: Confidence = Confidence.NONE
    query_type: Optional[QueryType] = None
    status: ResponseStatus = ResponseStatus.FULL
    strategies_used: List[str] = field(default_factory=list)
    strategies_failed: Dict[str, str] = field(default_factory=dict)
    degraded: bool = False
    note: str = ""
    fallback_level: int = 0
    suggestions: List[str] = field(default_factory=list)
    elapsed_ms: float = 0.0
    rejected_by_floor: int = 0
    reranked: bool = False
    mmr_applied: bool = False
    error: Optional[str] = None

    @property
    def total_hits(self) -> int:
        return len(self.hits)

    @property
    def is_fatal(self) -> bool:
        return self.status == ResponseStatus.FATAL

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query": self.query,
            "hits": [hit.to_dict() for hit in self.hits],
            "total_hits": self.total_hits,
            "confidence": self.confidence.value,
            "query_type": self.query_type.value if self.query_type else None,
            "status": self.status.value,
            "strategies_used": self.strategies_used,
            "strategies_failed": self.strategies_failed,
            "degraded": self.degraded,
            "note": self.note,
            "fallback_level": self.fallback_level,
            "suggestions": self.suggestions,
            "elapsed_ms": round(self.elapsed_ms, 2),
            "error": self.error,
        }
