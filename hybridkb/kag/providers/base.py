"""
Extraction Provider Base
========================

Abstract interface for LLM entity-extraction providers, plus the
shared aiohttp plumbing and tolerant JSON parsing.

Parsing stages:
1. unescape common LLM quirks (``\\_``, ``\\*``, ``\\#``, ``\\[``, ``\\]``)
2. locate the first ``{`` and its balanced closing ``}``
3. json.loads, coercing string/float fields and dropping malformed items
4. when the object is truncated or unparsable, salvage the ``entities``
   array alone (relations are lost)
"""

import json
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

import aiohttp

from hybridkb.errors import (
    ExtractionError,
    InvalidExtractionResponseError,
    ProviderNotAvailableError,
)
from hybridkb.kag.models import (
    ExtractedEntity,
    ExtractedRelation,
    ExtractionRequest,
    ExtractionResponse,
)
from hybridkb.kag.sanitizer import build_extraction_prompt

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 0.8

SYSTEM_PROMPT = (
    "You are an expert knowledge graph extractor. Extract entities and relationships "
    "from text and return valid JSON only."
)

_QUIRKS = [("\\_", "_"), ("\\*", "*"), ("\\#", "#"), ("\\[", "["), ("\\]", "]")]


# ---------------------------------------------------------------------------
# Tolerant JSON parsing
# ---------------------------------------------------------------------------

def coerce_str(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        return ", ".join(v for v in value if isinstance(v, str))
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def coerce_float(value: Any, default: float = DEFAULT_CONFIDENCE) -> float:
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return default
    return default


def find_balanced(text: str, start: int, open_ch: str, close_ch: str) -> int:
    """Index of the bracket closing the one at ``start``, or -1 (string-aware)."""
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if escaped:
            escaped = False
            continue
        if ch == "\\" and in_string:
            escaped = True
            continue
        if ch == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if ch == open_ch:
            depth += 1
        elif ch == close_ch:
            depth -= 1
            if depth == 0:
                return i
    return -1


def _to_entity(raw: Any) -> Optional[ExtractedEntity]:
    if not isinstance(raw, dict):
        return None
    name = coerce_str(raw.get("name")).strip()
    if not name:
        return None
    return ExtractedEntity(
        name=name,
        type=coerce_str(raw.get("type")) or "concept",
        description=coerce_str(raw.get("description")),
        confidence=coerce_float(raw.get("confidence")),
    )


def _to_relation(raw: Any) -> Optional[ExtractedRelation]:
    if not isinstance(raw, dict):
        return None
    subject = coerce_str(raw.get("subject")).strip()
    obj = coerce_str(raw.get("object")).strip()
    if not subject or not obj:
        return None
    return ExtractedRelation(
        subject=subject,
        predicate=coerce_str(raw.get("predicate")) or "relates_to",
        object=obj,
        confidence=coerce_float(raw.get("confidence")),
    )


def salvage_entities(text: str) -> List[ExtractedEntity]:
    """
    Recover the ``entities`` array from truncated or broken JSON.

    Raises:
        InvalidExtractionResponseError: nothing recoverable
    """
    key = text.find('"entities"')
    if key < 0:
        raise InvalidExtractionResponseError("no entities field found")
    start = text.find("[", key)
    if start < 0:
        raise InvalidExtractionResponseError("no entities array found")

    end = find_balanced(text, start, "[", "]")
    if end < 0:
        last_obj = text.rfind("}")
        if last_obj <= start:
            raise InvalidExtractionResponseError("cannot salvage entities array")
        array = text[start:last_obj + 1] + "]"
    else:
        array = text[start:end + 1]

    try:
        raw = json.loads(array)
    except json.JSONDecodeError as e:
        raise InvalidExtractionResponseError(f"salvage parse failed: {e}")

    return [e for e in (_to_entity(item) for item in raw) if e is not None]


def parse_extraction_response(text: str) -> Tuple[List[ExtractedEntity], List[ExtractedRelation]]:
    """
    Parse an LLM completion into entities and relations.

    Raises:
        InvalidExtractionResponseError: no usable JSON
    """
    for old, new in _QUIRKS:
        text = text.replace(old, new)

    start = text.find("{")
    if start < 0:
        raise InvalidExtractionResponseError("no JSON found in response")
    text = text[start:]

    end = find_balanced(text, 0, "{", "}")
    if end < 0:
        logger.debug("Extraction JSON truncated, salvaging entities")
        return salvage_entities(text), []

    try:
        data = json.loads(text[:end + 1])
    except json.JSONDecodeError:
        logger.debug("Extraction JSON invalid, salvaging entities")
        return salvage_entities(text[:end + 1]), []

    if not isinstance(data, dict):
        raise InvalidExtractionResponseError("top-level JSON is not an object")

    entities = [e for e in (_to_entity(r) for r in data.get("entities") or []) if e is not None]
    relations = [r for r in (_to_relation(x) for x in data.get("relations") or []) if r is not None]
    return entities, relations


def filter_response(
    entities: List[ExtractedEntity],
    relations: List[ExtractedRelation],
    request: ExtractionRequest,
) -> Tuple[List[ExtractedEntity], List[ExtractedRelation]]:
    """Apply the request's confidence threshold and caps."""
    threshold = request.confidence_threshold
    if threshold > 0:
        entities = [e for e in entities if e.confidence >= threshold]
        relations = [r for r in relations if r.confidence >= threshold]
    return entities[:request.max_entities], relations[:request.max_relations]


# ---------------------------------------------------------------------------
# Provider interface
# ---------------------------------------------------------------------------

class ExtractionProvider(ABC):
    """
    Closed interface for LLM extraction backends.

    Subclasses implement ``name``, ``is_available`` and ``_complete``
    (send the prompt, return the raw completion text). ``extract`` handles
    prompt building, parsing and filtering.
    """

    def __init__(self, model: str, timeout_s: float = 60.0):
        self.model = model
        self.timeout_s = timeout_s
        self.session: Optional[aiohttp.ClientSession] = None

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider identifier (ollama, openai, anthropic)."""

    @abstractmethod
    async def is_available(self) -> bool:
        """Cheap readiness check."""

    @abstractmethod
    async def _complete(self, prompt: str) -> Tuple[str, int]:
        """Send the prompt; return (completion text, tokens used)."""

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout_s)
            )
        return self.session

    async def close(self):
        """Close the aiohttp session."""
        if self.session and not self.session.closed:
            await self.session.close()

    async def _post_json(self, url: str, payload: Dict[str, Any], headers: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        session = await self._get_session()
        try:
            async with session.post(url, json=payload, headers=headers) as response:
                if response.status != 200:
                    error_text = await response.text()
                    logger.error(f"{self.name} API error {response.status}: {error_text[:500]}")
                    raise ExtractionError(f"{self.name} API error: {response.status} - {error_text[:200]}")
                return await response.json()
        except aiohttp.ClientError as e:
            raise ProviderNotAvailableError(self.name, str(e))

    async def extract(self, request: ExtractionRequest) -> ExtractionResponse:
        """
        Extract entities and relations from one chunk.

        Raises:
            ProviderNotAvailableError: transport failure
            InvalidExtractionResponseError: unusable completion
            ExtractionError: non-200 response
        """
        if not request.content or not request.content.strip():
            return ExtractionResponse(model=self.model)

        start = time.perf_counter()
        prompt = build_extraction_prompt(
            request.content,
            title=request.title,
            section_heading=request.section_heading,
            max_entities=request.max_entities,
            max_relations=request.max_relations,
            confidence_threshold=request.confidence_threshold,
        )

        completion, tokens = await self._complete(prompt)
        entities, relations = parse_extraction_response(completion)
        entities, relations = filter_response(entities, relations, request)

        elapsed = (time.perf_counter() - start) * 1000
        logger.debug(
            f"{self.name} extracted {len(entities)} entities, {len(relations)} relations "
            f"in {elapsed:.0f}ms (chunk={request.chunk_id})"
        )
        return ExtractionResponse(
            entities=entities,
            relations=relations,
            model=self.model,
            tokens_used=tokens,
            processing_time_ms=elapsed,
        )

    async def warm_up(self) -> None:
        """Preload the model; providers without cold starts do nothing."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(model={self.model})"
