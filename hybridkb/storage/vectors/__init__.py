"""
hybridkb Vector Storage
=======================

Qdrant collections for chunk and entity vectors.

Components:
- VectorIndex: async adapter over qdrant-client
- QdrantConfig: env-driven connection settings

The sentence-transformers EmbeddingService lives in
``hybridkb.storage.vectors.embeddings`` and is imported explicitly, so the
model stack is only loaded where embeddings are produced.

Example:
    from hybridkb.storage.vectors import VectorIndex, QdrantConfig
    from hybridkb.storage.vectors.embeddings import EmbeddingService

    index = VectorIndex(QdrantConfig())
    await index.connect()
    vector = await EmbeddingService.get_instance().embed_async("rate limiting")
    hits = await index.query(vector, limit=10)
"""

from hybridkb.storage.vectors.config import QdrantConfig
from hybridkb.storage.vectors.store import VectorIndex, VectorHit, build_filter, point_id

__all__ = [
    "QdrantConfig",
    "VectorIndex",
    "VectorHit",
    "build_filter",
    "point_id",
]
