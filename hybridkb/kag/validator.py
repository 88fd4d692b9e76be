"""
Extraction Validator
====================

Filters low-quality and potentially injected provider output before it
reaches the stores.

Rules:
- confidence in [0, 1] and >= threshold
- name non-empty and <= 500 chars after normalization
- no suspicious patterns in name or description
- description trimmed to 2000 chars
- type / predicate mapped to the closed sets
- relations must connect two distinct validated entities

Rejections are logged at DEBUG and dropped.
"""

import logging
import re
from typing import List, Optional, Sequence, Tuple

from hybridkb.errors import (
    DanglingRelationError,
    EmptyEntityNameError,
    EntityNameTooLongError,
    InvalidConfidenceError,
    SelfRelationError,
    SuspiciousContentError,
    ValidationError,
)
from hybridkb.kag.models import ExtractedEntity, ExtractedRelation
from hybridkb.kag.normalization import (
    name_key,
    normalize_entity_type,
    normalize_name,
    normalize_predicate,
    strip_control_chars,
)
from hybridkb.models import Entity, Relation

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 500
MAX_DESCRIPTION_LENGTH = 2000

SUSPICIOUS_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"ignore\s+(previous|all|above)",
        r"disregard\s+(the|all|previous)",
        r"forget\s+(everything|all|previous)",
        r"<script",
        r"javascript:",
        r"on(error|load|click)\s*=",
        r"eval\s*\(",
        r"exec\s*\(",
        r"system\s*\(",
        r"__proto__",
        r"constructor\s*\[",
    )
]


def find_suspicious(text: str) -> Optional[str]:
    """Pattern that matched, or None."""
    if not text:
        return None
    for pattern in SUSPICIOUS_PATTERNS:
        if pattern.search(text):
            return pattern.pattern
    return None


def normalize_description(text: str, max_length: int = MAX_DESCRIPTION_LENGTH) -> str:
    text = strip_control_chars((text or "").strip(), keep_newlines=True)
    if len(text) > max_length:
        text = text[:max_length] + "..."
    return text


class ExtractionValidator:
    """
    Validates provider output and converts it into Entity / Relation.

    Example:
        validator = ExtractionValidator(confidence_threshold=0.7)
        entities, relations = validator.validate_batch(
            response.entities, response.relations, chunk_id="c1", document_id="d1"
        )
    """

    def __init__(
        self,
        confidence_threshold: float = 0.7,
        max_name_length: int = MAX_NAME_LENGTH,
        max_description_length: int = MAX_DESCRIPTION_LENGTH,
    ):
        self.confidence_threshold = confidence_threshold
        self.max_name_length = max_name_length
        self.max_description_length = max_description_length

    def _check_confidence(self, value: float) -> None:
        if value < 0.0 or value > 1.0:
            raise InvalidConfidenceError(value)
        if value < self.confidence_threshold:
            raise ValidationError(f"confidence {value:.2f} below threshold {self.confidence_threshold:.2f}")

    def validate_entity(self, extracted: ExtractedEntity, chunk_id: str, document_id: str) -> Entity:
        """
        Validate one extracted entity.

        Raises:
            ValidationError: the entity is rejected
        """
        self._check_confidence(extracted.confidence)

        raw_name = " ".join((extracted.name or "").split())
        if len(raw_name) > self.max_name_length:
            raise EntityNameTooLongError(len(raw_name), self.max_name_length)
        name = normalize_name(raw_name, self.max_name_length)
        if not name:
            raise EmptyEntityNameError()

        for text in (name, extracted.description):
            pattern = find_suspicious(text)
            if pattern:
                raise SuspiciousContentError(pattern)

        return Entity(
            name=name,
            entity_type=normalize_entity_type(extracted.type),
            description=normalize_description(extracted.description, self.max_description_length),
            confidence=extracted.confidence,
            source_chunk_id=chunk_id,
            source_document_id=document_id,
        )

    def validate_relation(
        self,
        extracted: ExtractedRelation,
        entities: Sequence[Entity],
        chunk_id: str,
        document_id: str,
    ) -> Relation:
        """
        Validate one extracted relation against the already-validated entities.

        Raises:
            ValidationError: the relation is rejected
        """
        self._check_confidence(extracted.confidence)

        subject_name = normalize_name(extracted.subject, self.max_name_length)
        object_name = normalize_name(extracted.object, self.max_name_length)
        if not subject_name or not object_name:
            raise EmptyEntityNameError()

        for text in (subject_name, object_name):
            pattern = find_suspicious(text)
            if pattern:
                raise SuspiciousContentError(pattern)

        by_name = {name_key(e.name): e for e in entities}
        subject = by_name.get(name_key(subject_name))
        obj = by_name.get(name_key(object_name))
        if subject is None:
            raise DanglingRelationError(subject_name)
        if obj is None:
            raise DanglingRelationError(object_name)
        if subject.id == obj.id:
            raise SelfRelationError(subject_name)

        return Relation(
            subject_id=subject.id,
            predicate=normalize_predicate(extracted.predicate),
            object_id=obj.id,
            confidence=extracted.confidence,
            source_chunk_id=chunk_id,
            source_document_id=document_id,
            subject_name=subject.name,
            object_name=obj.name,
        )

    def validate_batch(
        self,
        extracted_entities: Sequence[ExtractedEntity],
        extracted_relations: Sequence[ExtractedRelation],
        chunk_id: str,
        document_id: str,
    ) -> Tuple[List[Entity], List[Relation]]:
        """Validate entities first, then relations against the kept entities."""
        entities: List[Entity] = []
        seen = set()
        for extracted in extracted_entities:
            try:
                entity = self.validate_entity(extracted, chunk_id, document_id)
            except ValidationError as e:
                logger.debug(f"Entity rejected ({extracted.name!r}): {e}")
                continue
            if entity.id in seen:
                continue
            seen.add(entity.id)
            entities.append(entity)

        relations: List[Relation] = []
        seen = set()
        for extracted in extracted_relations:
            try:
                relation = self.validate_relation(extracted, entities, chunk_id, document_id)
            except ValidationError as e:
                logger.debug(f"Relation rejected ({extracted.subject!r} -> {extracted.object!r}): {e}")
                continue
            if relation.id in seen:
                continue
            seen.add(relation.id)
            relations.append(relation)

        return entities, relations
