"""
KAG Models
==========

Dataclasses and models for knowledge-graph extraction and search.

Contents:
- ExtractedEntity / ExtractedRelation: raw provider output (pre-validation)
- ExtractionRequest / ExtractionResponse: provider contract
- ExtractionResult: outcome of extracting one chunk
- KAGSearchRequest: validated caller input (pydantic)
- KAGSearchResult: entities, relations and rendered context
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from hybridkb.models import Entity, Relation

MAX_ENTITY_HINTS = 20
MAX_HOPS = 3


@dataclass
class ExtractedEntity:
    """Entity as returned by an extraction provider."""
    name: str
    type: str = "concept"
    description: str = ""
    confidence: float = 0.8


@dataclass
class ExtractedRelation:
    """Relation as returned by an extraction provider (entity names, not IDs)."""
    subject: str
    predicate: str
    object: str
    confidence: float = 0.8


@dataclass
class ExtractionRequest:
    """
    Input for ExtractionProvider.extract().

    Attributes:
        content: Chunk text
        title: Document title (prompt context)
        section_heading: Section heading (prompt context)
        max_entities: Cap on returned entities
        max_relations: Cap on returned relations
        confidence_threshold: Drop extractions below this confidence
        chunk_id: Chunk being processed (logging only)
    """
    content: str
    title: str = ""
    section_heading: str = ""
    max_entities: int = 20
    max_relations: int = 50
    confidence_threshold: float = 0.7
    chunk_id: Optional[str] = None


@dataclass
class ExtractionResponse:
    entities: List[ExtractedEntity] = field(default_factory=list)
    relations: List[ExtractedRelation] = field(default_factory=list)
    model: str = ""
    tokens_used: int = 0
    processing_time_ms: float = 0.0


@dataclass
class ExtractionResult:
    """
    Outcome of extracting one chunk.

    ``skipped`` is True when the chunk was already completed or claimed by
    another worker.
    """
    chunk_id: str
    entities: List[Entity] = field(default_factory=list)
    relations: List[Relation] = field(default_factory=list)
    skipped: bool = False
    error: Optional[str] = None
    started_at: datetime = field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None

    @property
    def success(self) -> bool:
        return self.error is None

    @property
    def duration_seconds(self) -> float:
        if self.completed_at is None:
            return 0.0
        return (self.completed_at - self.started_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chunk_id": self.chunk_id,
            "entities": len(self.entities),
            "relations": len(self.relations),
            "skipped": self.skipped,
            "error": self.error,
            "duration_seconds": self.duration_seconds,
        }


class KAGSearchRequest(BaseModel):
    """Knowledge-graph query."""
    query: str = Field(..., min_length=1, max_length=1000, description="Free-text query")
    entity_hints: List[str] = Field(default_factory=list, description="Entity names to seed the search")
    max_hops: int = Field(default=2, ge=1, le=MAX_HOPS, description="Graph traversal depth")
    limit: int = Field(default=20, ge=1, le=100, description="Maximum entities")
    include_relations: bool = Field(default=True)
    source_id: Optional[str] = Field(default=None, description="Restrict to one source")

    @field_validator("query")
    @classmethod
    def query_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("query cannot be empty")
        return v

    @field_validator("entity_hints")
    @classmethod
    def hints_bounded(cls, v: List[str]) -> List[str]:
        if len(v) > MAX_ENTITY_HINTS:
            raise ValueError(f"too many entity hints: {len(v)} (max {MAX_ENTITY_HINTS})")
        return [h.strip() for h in v if h and h.strip()]


@dataclass
class KAGSearchResult:
    """
    Knowledge-graph search output.

    Attributes:
        query: Original query
        entities: Ranked entities (scores in ``scores``)
        relations: Relations touching the entities
        context: Markdown rendering for LLM consumption
        total_entities: Candidates found before the limit
        scores: entity_id -> fused score
        semantic_used: Entity vector search contributed
        graph_used: Graph traversal contributed
    """
    query: str
    entities: List[Entity] = field(default_factory=list)
    relations: List[Relation] = field(default_factory=list)
    context: str = ""
    total_entities: int = 0
    scores: Dict[str, float] = field(default_factory=dict)
    semantic_used: bool = False
    graph_used: bool = False
    elapsed_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query": self.query,
            "entities": [
                dict(e.to_dict(), score=round(self.scores.get(e.id, 0.0), 4)) for e in self.entities
            ],
            "relations": [r.to_dict() for r in self.relations],
            "context": self.context,
            "total_entities": self.total_entities,
            "semantic_used": self.semantic_used,
            "graph_used": self.graph_used,
            "elapsed_ms": round(self.elapsed_ms, 2),
        }
