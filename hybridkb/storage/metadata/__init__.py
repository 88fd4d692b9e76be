"""
Metadata Storage
================

SQLite store for documents, chunks, FTS rows, KAG entities/relations and
extraction status.
"""

from .config import MetadataStoreConfig
from .store import MetadataStore

__all__ = [
    "MetadataStoreConfig",
    "MetadataStore",
]
