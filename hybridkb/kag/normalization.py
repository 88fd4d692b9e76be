"""
Name & Type Normalization
=========================

Normalization of entity names, types and predicates returned by the LLM.

Example:
    >>> normalize_name("  Kubernetes   Ingress. ")
    'Kubernetes Ingress'
    >>> normalize_entity_type("company")
    'organization'
    >>> normalize_predicate("depends_on")
    'uses'
"""

import re
import unicodedata

from hybridkb.models import EntityType, RelationType

_NAME_TRIM = ".,;:!?\"'()[]{}<>"
_WHITESPACE = re.compile(r"\s+")

ENTITY_TYPE_SYNONYMS = {
    "concept": EntityType.CONCEPT,
    "idea": EntityType.CONCEPT,
    "topic": EntityType.CONCEPT,
    "theme": EntityType.CONCEPT,
    "event": EntityType.CONCEPT,
    "document": EntityType.CONCEPT,
    "organization": EntityType.ORGANIZATION,
    "organisation": EntityType.ORGANIZATION,
    "company": EntityType.ORGANIZATION,
    "institution": EntityType.ORGANIZATION,
    "org": EntityType.ORGANIZATION,
    "group": EntityType.ORGANIZATION,
    "person": EntityType.PERSON,
    "individual": EntityType.PERSON,
    "human": EntityType.PERSON,
    "people": EntityType.PERSON,
    "section": EntityType.SECTION,
    "heading": EntityType.SECTION,
    "chapter": EntityType.SECTION,
    "technology": EntityType.TECHNOLOGY,
    "tech": EntityType.TECHNOLOGY,
    "tool": EntityType.TECHNOLOGY,
    "framework": EntityType.TECHNOLOGY,
    "protocol": EntityType.TECHNOLOGY,
    "software": EntityType.TECHNOLOGY,
    "library": EntityType.TECHNOLOGY,
    "location": EntityType.LOCATION,
    "place": EntityType.LOCATION,
    "region": EntityType.LOCATION,
    "country": EntityType.LOCATION,
    "city": EntityType.LOCATION,
}

PREDICATE_SYNONYMS = {
    "mentions": RelationType.MENTIONS,
    "reference": RelationType.MENTIONS,
    "references": RelationType.MENTIONS,
    "refers_to": RelationType.MENTIONS,
    "cites": RelationType.MENTIONS,
    "defines": RelationType.DEFINES,
    "definition": RelationType.DEFINES,
    "explains": RelationType.DEFINES,
    "relates_to": RelationType.RELATES_TO,
    "related": RelationType.RELATES_TO,
    "related_to": RelationType.RELATES_TO,
    "associated": RelationType.RELATES_TO,
    "connected": RelationType.RELATES_TO,
    "similar_to": RelationType.RELATES_TO,
    "created_by": RelationType.RELATES_TO,
    "contains": RelationType.CONTAINS,
    "includes": RelationType.CONTAINS,
    "has": RelationType.CONTAINS,
    "part_of": RelationType.PART_OF,
    "belongs_to": RelationType.PART_OF,
    "member_of": RelationType.PART_OF,
    "uses": RelationType.USES,
    "implements": RelationType.USES,
    "applies": RelationType.USES,
    "depends_on": RelationType.USES,
    "requires": RelationType.USES,
    "needs": RelationType.USES,
    "used_by": RelationType.USES,
}


def strip_control_chars(text: str, keep_newlines: bool = False) -> str:
    """Remove Unicode control characters (optionally keeping \\n, \\r and \\t)."""
    keep = "\n\r\t" if keep_newlines else ""
    return "".join(
        ch for ch in text
        if ch in keep or not unicodedata.category(ch).startswith("C")
    )


def normalize_name(name: str, max_length: int = 500) -> str:
    """
    Clean an entity name: strip control chars, collapse whitespace, trim
    surrounding punctuation, truncate.
    """
    if not name:
        return ""
    result = strip_control_chars(name)
    result = _WHITESPACE.sub(" ", result).strip()
    result = result.strip(_NAME_TRIM).strip()
    return result[:max_length]


def name_key(name: str) -> str:
    """Case-insensitive comparison key for entity names."""
    return normalize_name(name).lower()


def normalize_entity_type(value: str) -> EntityType:
    """Map a free-form type to the closed set; unknown -> concept."""
    key = _WHITESPACE.sub("_", (value or "").strip().lower())
    return ENTITY_TYPE_SYNONYMS.get(key, EntityType.CONCEPT)


def normalize_predicate(value: str) -> RelationType:
    """Map a free-form predicate to the closed set; unknown -> relates_to."""
    key = _WHITESPACE.sub("_", (value or "").strip().lower()).replace("-", "_")
    return PREDICATE_SYNONYMS.get(key, RelationType.RELATES_TO)
