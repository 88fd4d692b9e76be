"""
Graph Store Interface
=====================

Contract shared by the FalkorDB client and the relational fallback.
The graph is an ID-keyed edge list: nodes are entity IDs, edges are
relation records referencing those IDs.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable

from hybridkb.models import Entity, Relation


class GraphStore(ABC):
    """Abstract knowledge-graph backend."""

    name: str = "graph"

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        ...

    @abstractmethod
    async def upsert_node(self, entity: Entity) -> None:
        """Create or merge an entity node."""

    @abstractmethod
    async def upsert_edge(self, relation: Relation) -> None:
        """Create or merge a relation edge between two existing nodes."""

    @abstractmethod
    async def traverse(self, start_ids: Iterable[str], max_hops: int = 2, limit: int = 100) -> Dict[str, int]:
        """
        Entities reachable from ``start_ids`` within ``max_hops``.

        Returns:
            Mapping entity_id -> hop distance (start nodes excluded)
        """

    @abstractmethod
    async def delete_by_document(self, document_id: str) -> int:
        """Delete nodes (and their edges) extracted from a document; returns nodes deleted."""

    @abstractmethod
    async def get_stats(self) -> Dict[str, Any]:
        ...
