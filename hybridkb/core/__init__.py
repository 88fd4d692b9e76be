"""
hybridkb Core
=============

Orchestration layer: one object that owns the stores, the hybrid search
engine, the extraction workers and the KAG searcher.

Example:
    from hybridkb import KnowledgeBase

    kb = KnowledgeBase()
    await kb.connect()
    response = await kb.search("rate limiting middleware")
"""

from .knowledge_base import IndexingResult, KnowledgeBase, KnowledgeBaseConfig

__all__ = [
    "KnowledgeBase",
    "KnowledgeBaseConfig",
    "IndexingResult",
]
