"""
Qdrant Configuration
====================

Environment Variables:
    QDRANT_HOST: Host del server (default: localhost)
    QDRANT_PORT: Porta HTTP (default: 6333)
    QDRANT_CHUNK_COLLECTION: Chunk vectors (default: hybridkb_chunks)
    QDRANT_ENTITY_COLLECTION: Entity vectors (default: hybridkb_entities)
    QDRANT_TIMEOUT_S: Request timeout in seconds (default: 5)
    EMBEDDING_DIMENSION: Vector size (default: 768)
"""

import os
from dataclasses import dataclass, field


def _get_env_str(key: str, default: str) -> str:
    """Read environment variable as string."""
    return os.environ.get(key, default)


def _get_env_int(key: str, default: int) -> int:
    """Read environment variable as int."""
    return int(os.environ.get(key, default))


@dataclass
class QdrantConfig:
    """
    Qdrant connection and collection settings.

    Attributes:
        host: Qdrant host
        port: Qdrant HTTP port
        chunk_collection: Collection for chunk vectors
        entity_collection: Collection for KAG entity vectors
        vector_size: Embedding dimension
        timeout_s: Client timeout in seconds
    """
    host: str = field(default_factory=lambda: _get_env_str("QDRANT_HOST", "localhost"))
    port: int = field(default_factory=lambda: _get_env_int("QDRANT_PORT", 6333))
    chunk_collection: str = field(default_factory=lambda: _get_env_str("QDRANT_CHUNK_COLLECTION", "hybridkb_chunks"))
    entity_collection: str = field(default_factory=lambda: _get_env_str("QDRANT_ENTITY_COLLECTION", "hybridkb_entities"))
    vector_size: int = field(default_factory=lambda: _get_env_int("EMBEDDING_DIMENSION", 768))
    timeout_s: int = field(default_factory=lambda: _get_env_int("QDRANT_TIMEOUT_S", 5))

    def __post_init__(self):
        if self.vector_size <= 0:
            raise ValueError(f"vector_size must be positive, got {self.vector_size}")

    @classmethod
    def from_environment(cls, env_config) -> "QdrantConfig":
        return cls(
            chunk_collection=env_config.chunk_collection,
            entity_collection=env_config.entity_collection,
        )
