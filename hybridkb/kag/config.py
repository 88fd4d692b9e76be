"""
KAG Configuration
=================

Extraction provider selection, limits and worker pool sizing.

Environment Variables:
    KAG_ENABLED: "true"/"false" (default: true)
    KAG_PROVIDER: ollama | openai | anthropic (default: ollama)
    OLLAMA_HOST: Ollama base URL (default: http://localhost:11434)
    OLLAMA_MODEL: Ollama model (default: mistral:7b-instruct-q4_K_M)
    OLLAMA_KEEP_ALIVE: How long Ollama keeps the model loaded (default: 30m)
    OPENAI_API_KEY / OPENAI_MODEL / OPENAI_BASE_URL
    ANTHROPIC_API_KEY / ANTHROPIC_MODEL
    KAG_CONFIDENCE_THRESHOLD: Minimum confidence to keep an extraction (default: 0.7)
    KAG_MAX_ENTITIES_PER_CHUNK: default 20
    KAG_MAX_RELATIONS_PER_CHUNK: default 50
    KAG_EXTRACTION_TIMEOUT_S: Per-chunk provider timeout (default: 60)
    KAG_MAX_RETRIES: Provider retries per attempt (default: 2)
    KAG_MAX_ATTEMPTS: Attempts before a failed chunk stays failed (default: 3)
    KAG_WORKERS: Background workers (default: 2)
    KAG_QUEUE_SIZE: Bounded queue capacity (default: 100)
"""

import os
from dataclasses import dataclass, field
from typing import Optional

from hybridkb.errors import ConfigurationError, InvalidProviderError

PROVIDERS = ("ollama", "openai", "anthropic")


def _get_env_str(key: str, default: str) -> str:
    return os.environ.get(key, default)


def _get_env_int(key: str, default: int) -> int:
    return int(os.environ.get(key, default))


def _get_env_float(key: str, default: float) -> float:
    return float(os.environ.get(key, default))


def _get_env_bool(key: str, default: bool) -> bool:
    return os.environ.get(key, str(default)).lower() in ("1", "true", "yes")


@dataclass
class ExtractionConfig:
    """
    Configuration for entity extraction and the KAG subsystem.

    Attributes:
        enabled: KAG search and extraction on/off
        provider: Extraction backend (ollama, openai, anthropic)
        ollama_host: Ollama base URL
        ollama_model: Ollama model tag
        ollama_keep_alive: Model keep-alive passed to Ollama
        openai_api_key: OpenAI key (required for provider=openai)
        openai_model: OpenAI model
        openai_base_url: OpenAI-compatible base URL
        anthropic_api_key: Anthropic key (required for provider=anthropic)
        anthropic_model: Anthropic model
        confidence_threshold: Minimum confidence for entities/relations
        max_entities_per_chunk: Cap on entities per chunk
        max_relations_per_chunk: Cap on relations per chunk
        timeout_s: Provider timeout per call
        max_retries: Retries per extraction attempt
        max_attempts: Attempts before retry_failed() stops resetting a chunk
        num_workers: Background workers
        queue_size: Bounded queue capacity
    """
    enabled: bool = field(default_factory=lambda: _get_env_bool("KAG_ENABLED", True))
    provider: str = field(default_factory=lambda: _get_env_str("KAG_PROVIDER", "ollama"))

    ollama_host: str = field(default_factory=lambda: _get_env_str("OLLAMA_HOST", "http://localhost:11434"))
    ollama_model: str = field(default_factory=lambda: _get_env_str("OLLAMA_MODEL", "mistral:7b-instruct-q4_K_M"))
    ollama_keep_alive: str = field(default_factory=lambda: _get_env_str("OLLAMA_KEEP_ALIVE", "30m"))

    openai_api_key: Optional[str] = field(default_factory=lambda: os.environ.get("OPENAI_API_KEY"))
    openai_model: str = field(default_factory=lambda: _get_env_str("OPENAI_MODEL", "gpt-4o-mini"))
    openai_base_url: str = field(default_factory=lambda: _get_env_str("OPENAI_BASE_URL", "https://api.openai.com/v1"))

    anthropic_api_key: Optional[str] = field(default_factory=lambda: os.environ.get("ANTHROPIC_API_KEY"))
    anthropic_model: str = field(default_factory=lambda: _get_env_str("ANTHROPIC_MODEL", "claude-3-5-haiku-latest"))

    confidence_threshold: float = field(default_factory=lambda: _get_env_float("KAG_CONFIDENCE_THRESHOLD", 0.7))
    max_entities_per_chunk: int = field(default_factory=lambda: _get_env_int("KAG_MAX_ENTITIES_PER_CHUNK", 20))
    max_relations_per_chunk: int = field(default_factory=lambda: _get_env_int("KAG_MAX_RELATIONS_PER_CHUNK", 50))
    timeout_s: float = field(default_factory=lambda: _get_env_float("KAG_EXTRACTION_TIMEOUT_S", 60.0))
    max_retries: int = field(default_factory=lambda: _get_env_int("KAG_MAX_RETRIES", 2))
    max_attempts: int = field(default_factory=lambda: _get_env_int("KAG_MAX_ATTEMPTS", 3))
    num_workers: int = field(default_factory=lambda: _get_env_int("KAG_WORKERS", 2))
    queue_size: int = field(default_factory=lambda: _get_env_int("KAG_QUEUE_SIZE", 100))

    def __post_init__(self):
        self.provider = self.provider.lower()
        if self.provider not in PROVIDERS:
            raise InvalidProviderError(self.provider)
        if not 0.0 <= self.confidence_threshold <= 1.0:
            raise ConfigurationError(
                f"confidence_threshold must be in [0, 1], got {self.confidence_threshold}"
            )
        if self.max_entities_per_chunk <= 0 or self.max_relations_per_chunk <= 0:
            raise ConfigurationError("per-chunk entity/relation limits must be positive")
        if self.timeout_s <= 0:
            raise ConfigurationError(f"timeout_s must be positive, got {self.timeout_s}")
        if self.max_retries < 0:
            raise ConfigurationError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.num_workers <= 0 or self.queue_size <= 0:
            raise ConfigurationError("num_workers and queue_size must be positive")

    @classmethod
    def for_test(cls) -> "ExtractionConfig":
        """Ollama provider, no retries, small pool, short timeout."""
        return cls(
            enabled=True,
            provider="ollama",
            timeout_s=5.0,
            max_retries=0,
            max_attempts=3,
            num_workers=2,
            queue_size=10,
        )

    def to_dict(self) -> dict:
        """Serializable view (API keys masked)."""
        return {
            "enabled": self.enabled,
            "provider": self.provider,
            "ollama_host": self.ollama_host,
            "ollama_model": self.ollama_model,
            "openai_model": self.openai_model,
            "openai_api_key": "***" if self.openai_api_key else None,
            "anthropic_model": self.anthropic_model,
            "anthropic_api_key": "***" if self.anthropic_api_key else None,
            "confidence_threshold": self.confidence_threshold,
            "max_entities_per_chunk": self.max_entities_per_chunk,
            "max_relations_per_chunk": self.max_relations_per_chunk,
            "timeout_s": self.timeout_s,
            "max_retries": self.max_retries,
            "num_workers": self.num_workers,
            "queue_size": self.queue_size,
        }
