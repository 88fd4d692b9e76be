"""
Storage Layer
=============

Backing stores for hybrid retrieval and the knowledge graph.

Components:
- metadata/: SQLite documents, chunks, KAG tables, extraction status
- lexical/: FTS5/BM25 search over chunks
- vectors/: Qdrant chunk + entity collections, sentence-transformers embeddings
- graph/: FalkorDB (or SQL fallback) entity graph

Architecture:
    Query
      |
      +-------------------+-------------------+
      |                   |                   |
      v                   v                   v
  [SQLite FTS5]       [Qdrant]           [FalkorDB]
  BM25 chunks       chunk vectors      entity graph
      |             entity vectors          |
      |                   |                 |
      +---------+---------+--------+--------+
                |                  |
                v                  v
        chunk rankings      entity neighbourhood
                |                  |
                v                  v
           rank fusion        KAG context

Source removal order: vectors (by filter) -> graph nodes -> relational rows.
"""

from hybridkb.storage.metadata import MetadataStore, MetadataStoreConfig
from hybridkb.storage.lexical import LexicalIndex, LexicalHit, LexicalMode
from hybridkb.storage.vectors import VectorIndex, VectorHit, QdrantConfig
from hybridkb.storage.graph import GraphStore, FalkorDBClient, FalkorDBConfig, RelationalGraphStore

__all__ = [
    # Metadata
    "MetadataStore",
    "MetadataStoreConfig",
    # Lexical
    "LexicalIndex",
    "LexicalHit",
    "LexicalMode",
    # Vectors
    "VectorIndex",
    "VectorHit",
    "QdrantConfig",
    # Graph
    "GraphStore",
    "FalkorDBClient",
    "FalkorDBConfig",
    "RelationalGraphStore",
]
