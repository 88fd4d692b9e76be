"""
hybridkb Graph Storage
======================

Knowledge graph backends.

Components:
- GraphStore: backend contract (upsert_node, upsert_edge, traverse, delete_by_document)
- FalkorDBClient: Cypher backend on FalkorDB
- RelationalGraphStore: SQL fallback over kb_relations
- FalkorDBConfig: connection settings (GRAPH_BACKEND selects the backend)

Example:
    from hybridkb.storage.graph import FalkorDBClient, FalkorDBConfig

    client = FalkorDBClient(FalkorDBConfig(graph_name="hybridkb_test_kg"))
    await client.connect()
"""

from hybridkb.storage.graph.base import GraphStore
from hybridkb.storage.graph.config import FalkorDBConfig
from hybridkb.storage.graph.client import FalkorDBClient
from hybridkb.storage.graph.relational import RelationalGraphStore

__all__ = [
    "GraphStore",
    "FalkorDBConfig",
    "FalkorDBClient",
    "RelationalGraphStore",
]
