"""
hybridkb Errors
===============

Exception hierarchy shared by storage, retrieval and KAG subsystems.

Degraded strategies and empty result sets are NOT exceptions: they are
reported on the SearchResponse. Exceptions are reserved for caller
mistakes, unavailable capabilities and fatal failures.

Usage:
    from hybridkb.errors import KAGDisabledError, ExtractionQueueFullError

    try:
        await pool.enqueue(chunk)
    except ExtractionQueueFullError:
        log.warning("Queue saturated, chunk stays pending")
"""

from typing import Optional


class HybridKBError(Exception):
    """Base class for all hybridkb errors."""


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------

class StorageError(HybridKBError):
    """A backing store failed."""


class NotConnectedError(StorageError):
    """Operation attempted before connect()."""

    def __init__(self, store: str):
        super().__init__(f"Not connected to {store}. Call connect() first.")
        self.store = store


class VectorStoreError(StorageError):
    """Vector index operation failed."""


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------

class SearchError(HybridKBError):
    """Base class for search errors."""


class InvalidQueryError(SearchError):
    """Query rejected before execution."""


class EmptyQueryError(InvalidQueryError):
    def __init__(self):
        super().__init__("query cannot be empty")


class QueryTooLongError(InvalidQueryError):
    def __init__(self, length: int, max_length: int):
        super().__init__(f"query too long: {length} characters (max {max_length})")
        self.length = length
        self.max_length = max_length


class AllStrategiesFailedError(SearchError):
    """Every launched search strategy failed or timed out."""

    def __init__(self, failures: Optional[dict] = None):
        self.failures = failures or {}
        detail = ", ".join(f"{k}: {v}" for k, v in self.failures.items())
        super().__init__(f"all search strategies failed ({detail})" if detail else "all search strategies failed")


# ---------------------------------------------------------------------------
# KAG
# ---------------------------------------------------------------------------

class KAGError(HybridKBError):
    """Base class for knowledge graph errors."""


class KAGDisabledError(KAGError):
    def __init__(self):
        super().__init__("KAG is disabled in configuration")


class InvalidMaxHopsError(KAGError):
    def __init__(self, max_hops: int, limit: int = 3):
        super().__init__(f"max_hops must be between 1 and {limit}, got {max_hops}")


class TooManyEntityHintsError(KAGError):
    def __init__(self, count: int, limit: int):
        super().__init__(f"too many entity hints: {count} (max {limit})")


class GraphNotConnectedError(KAGError):
    def __init__(self):
        super().__init__("graph database not connected")


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------

class ExtractionError(HybridKBError):
    """Entity extraction failed for a chunk."""

    def __init__(self, message: str, chunk_id: Optional[str] = None, recoverable: bool = True):
        super().__init__(message)
        self.chunk_id = chunk_id
        self.recoverable = recoverable


class ExtractionTimeoutError(ExtractionError):
    def __init__(self, timeout: float, chunk_id: Optional[str] = None):
        super().__init__(f"extraction timed out after {timeout:.1f}s", chunk_id=chunk_id)
        self.timeout = timeout


class ProviderNotAvailableError(ExtractionError):
    def __init__(self, provider: str, reason: str = ""):
        msg = f"extraction provider not available: {provider}"
        if reason:
            msg = f"{msg} ({reason})"
        super().__init__(msg)
        self.provider = provider


class InvalidExtractionResponseError(ExtractionError):
    def __init__(self, reason: str):
        super().__init__(f"invalid extraction response: {reason}", recoverable=False)


class ExtractionQueueFullError(ExtractionError):
    def __init__(self, chunk_id: Optional[str] = None):
        super().__init__("extraction queue is full", chunk_id=chunk_id)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

class ConfigurationError(HybridKBError, ValueError):
    """Invalid configuration value."""


class InvalidProviderError(ConfigurationError):
    def __init__(self, provider: str):
        super().__init__(f"invalid extraction provider: {provider} (must be ollama, openai or anthropic)")
        self.provider = provider


class InvalidGraphBackendError(ConfigurationError):
    def __init__(self, backend: str):
        super().__init__(f"invalid graph backend: {backend} (must be falkordb or sqlite)")


# ---------------------------------------------------------------------------
# Entity validation
# ---------------------------------------------------------------------------

class ValidationError(HybridKBError):
    """An extracted entity or relation was rejected."""


class EmptyEntityNameError(ValidationError):
    def __init__(self):
        super().__init__("entity name cannot be empty")


class EntityNameTooLongError(ValidationError):
    def __init__(self, length: int, limit: int):
        super().__init__(f"entity name too long: {length} characters (max {limit})")


class InvalidConfidenceError(ValidationError):
    def __init__(self, value: float):
        super().__init__(f"confidence must be in [0, 1], got {value}")


class SuspiciousContentError(ValidationError):
    def __init__(self, pattern: str):
        super().__init__(f"suspicious content matched pattern: {pattern}")


class SelfRelationError(ValidationError):
    def __init__(self, name: str):
        super().__init__(f"relation subject and object are the same entity: {name}")


class DanglingRelationError(ValidationError):
    def __init__(self, name: str):
        super().__init__(f"relation references unknown entity: {name}")
