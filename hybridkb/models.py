"""
Core Models
===========

Persistent data model shared by storage, retrieval and KAG.

Contents:
- Document / Chunk: indexed content (cleaned, hashed)
- EntityType / RelationType: closed KAG vocabularies
- Entity / Relation: knowledge graph records with content-derived IDs
- ExtractionState / ExtractionStatus: per-chunk extraction lifecycle

IDs are pure functions of normalized content, so re-extracting a chunk
produces the same records and the upsert merges instead of duplicating.
"""

import hashlib
import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_INLINE_WHITESPACE = re.compile(r"[ \t]+")
_BLANK_LINES = re.compile(r"\n{3,}")


def clean_content(text: str) -> str:
    """
    Normalize raw document text before indexing.

    - CRLF/CR -> LF
    - control characters removed (newlines and tabs kept)
    - runs of spaces/tabs collapsed
    - more than two consecutive newlines collapsed to two
    - trailing whitespace trimmed per line and overall

    Example:
        >>> clean_content("Hello\\r\\n\\r\\n\\r\\n\\r\\nWorld   !")
        'Hello\\n\\nWorld !'
    """
    if not text:
        return ""
    result = text.replace("\r\n", "\n").replace("\r", "\n")
    result = _CONTROL_CHARS.sub("", result)
    result = _INLINE_WHITESPACE.sub(" ", result)
    result = "\n".join(line.rstrip() for line in result.split("\n"))
    result = _BLANK_LINES.sub("\n\n", result)
    return result.strip()


def compute_content_hash(text: str) -> str:
    """SHA-256 hex digest of the cleaned text."""
    return hashlib.sha256(clean_content(text).encode("utf-8")).hexdigest()


def _id_key(name: str) -> str:
    return " ".join(name.split()).lower()


def generate_entity_id(name: str, entity_type: str, source_document_id: str) -> str:
    """
    Deterministic entity ID.

    Example:
        >>> generate_entity_id("Kubernetes", "technology", "doc-1")[:4]
        'ent_'
    """
    key = f"{_id_key(name)}|{entity_type}|{source_document_id}"
    return "ent_" + hashlib.sha256(key.encode("utf-8")).hexdigest()[:16]


def generate_relation_id(subject_id: str, predicate: str, object_id: str) -> str:
    """Deterministic relation ID."""
    key = f"{subject_id}|{predicate}|{object_id}"
    return "rel_" + hashlib.sha256(key.encode("utf-8")).hexdigest()[:16]


@dataclass
class Document:
    """
    Indexed document.

    Attributes:
        document_id: Stable document identifier
        source_id: Owning source (connector, folder, ...)
        path: Path or URI of the document
        title: Display title
        content: Cleaned full text (not persisted, used for hashing)
        content_hash: SHA-256 of the cleaned content
        mime_type: MIME type
        metadata: Free-form extra fields
    """
    document_id: str
    source_id: str
    path: str
    title: str = ""
    content: str = ""
    content_hash: str = ""
    mime_type: str = "text/plain"
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.content:
            self.content = clean_content(self.content)
            if not self.content_hash:
                self.content_hash = compute_content_hash(self.content)
        if not self.title:
            self.title = self.path.rsplit("/", 1)[-1]


@dataclass
class Chunk:
    """A contiguous slice of a document; the unit of retrieval and extraction."""
    chunk_id: str
    document_id: str
    chunk_index: int
    content: str
    title: str = ""
    path: str = ""
    source_id: str = ""
    section_heading: str = ""

    def __post_init__(self):
        self.content = clean_content(self.content)


class EntityType(str, Enum):
    """Closed set of entity types."""
    CONCEPT = "concept"
    PERSON = "person"
    ORGANIZATION = "organization"
    TECHNOLOGY = "technology"
    LOCATION = "location"
    SECTION = "section"


class RelationType(str, Enum):
    """Closed set of relation predicates."""
    MENTIONS = "mentions"
    DEFINES = "defines"
    RELATES_TO = "relates_to"
    CONTAINS = "contains"
    PART_OF = "part_of"
    USES = "uses"


@dataclass
class Entity:
    """
    Knowledge graph node.

    The ID is derived from (normalized name, type, source document) when not
    given explicitly.
    """
    name: str
    entity_type: EntityType
    description: str = ""
    confidence: float = 1.0
    source_chunk_id: str = ""
    source_document_id: str = ""
    id: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if isinstance(self.entity_type, str):
            self.entity_type = EntityType(self.entity_type)
        if not self.id:
            self.id = generate_entity_id(self.name, self.entity_type.value, self.source_document_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.entity_type.value,
            "description": self.description,
            "confidence": self.confidence,
            "source_chunk_id": self.source_chunk_id,
            "source_document_id": self.source_document_id,
        }


@dataclass
class Relation:
    """Knowledge graph edge between two entity IDs."""
    subject_id: str
    predicate: RelationType
    object_id: str
    confidence: float = 1.0
    source_chunk_id: str = ""
    source_document_id: str = ""
    id: str = ""
    subject_name: str = ""
    object_name: str = ""

    def __post_init__(self):
        if isinstance(self.predicate, str):
            self.predicate = RelationType(self.predicate)
        if not self.id:
            self.id = generate_relation_id(self.subject_id, self.predicate.value, self.object_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "subject_id": self.subject_id,
            "subject_name": self.subject_name,
            "predicate": self.predicate.value,
            "object_id": self.object_id,
            "object_name": self.object_name,
            "confidence": self.confidence,
            "source_chunk_id": self.source_chunk_id,
        }


class ExtractionState(str, Enum):
    """Per-chunk extraction lifecycle."""
    PENDING = "pending"
    EXTRACTING = "extracting"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class ExtractionStatus:
    """Extraction status row for one chunk."""
    chunk_id: str
    state: ExtractionState = ExtractionState.PENDING
    entity_count: int = 0
    relation_count: int = 0
    error_message: Optional[str] = None
    attempts: int = 0
    extracted_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
