"""
Lexical Storage
===============

FTS5/BM25 search over indexed chunks.
"""

from .index import (
    LexicalIndex,
    LexicalHit,
    LexicalMode,
    build_fts_query,
    highlight_snippet,
)

__all__ = [
    "LexicalIndex",
    "LexicalHit",
    "LexicalMode",
    "build_fts_query",
    "highlight_snippet",
]
