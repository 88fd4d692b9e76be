"""
Relational Graph Store
======================

Graph backend over the kb_entities / kb_relations tables, used when
FalkorDB is not configured or unreachable.

Nodes and edges already live in the metadata store (the extractor writes
them there first), so upserts are no-ops here. Traversal is an iterative
frontier expansion, one SQL round-trip per hop.
"""

from typing import Any, Dict, Iterable

import structlog

from hybridkb.models import Entity, Relation
from hybridkb.storage.graph.base import GraphStore
from hybridkb.storage.metadata.store import MetadataStore

log = structlog.get_logger()

MAX_TRAVERSAL_HOPS = 3


class RelationalGraphStore(GraphStore):
    """
    SQL-backed graph traversal.

    Example:
        graph = RelationalGraphStore(metadata_store)
        reachable = await graph.traverse(["ent_ab12..."], max_hops=2)
    """

    name = "sqlite"

    def __init__(self, store: MetadataStore):
        self.store = store

    @property
    def is_connected(self) -> bool:
        return self.store.is_connected

    async def upsert_node(self, entity: Entity) -> None:
        return None

    async def upsert_edge(self, relation: Relation) -> None:
        return None

    async def traverse(self, start_ids: Iterable[str], max_hops: int = 2, limit: int = 100) -> Dict[str, int]:
        start = set(start_ids)
        if not start:
            return {}
        hops = max(1, min(int(max_hops), MAX_TRAVERSAL_HOPS))

        visited = set(start)
        reached: Dict[str, int] = {}
        frontier = set(start)

        for depth in range(1, hops + 1):
            if not frontier:
                break
            rows = await self.store.fetch_all(
                "SELECT subject_id, object_id FROM kb_relations "
                "WHERE subject_id IN :ids OR object_id IN :ids",
                {"ids": sorted(frontier)},
            )
            next_frontier = set()
            for row in rows:
                for neighbor in (row["subject_id"], row["object_id"]):
                    if neighbor not in visited:
                        visited.add(neighbor)
                        next_frontier.add(neighbor)
                        reached[neighbor] = depth
            frontier = next_frontier
            if len(reached) >= limit:
                break

        ordered = sorted(reached.items(), key=lambda item: (item[1], item[0]))[:limit]
        return dict(ordered)

    async def delete_by_document(self, document_id: str) -> int:
        # Rows are removed by MetadataStore.delete_source
        return 0

    async def get_stats(self) -> Dict[str, Any]:
        entities = await self.store.fetch_one("SELECT COUNT(*) AS n FROM kb_entities")
        relations = await self.store.fetch_one("SELECT COUNT(*) AS n FROM kb_relations")
        return {
            "backend": self.name,
            "entity_count": entities["n"],
            "relation_count": relations["n"],
        }
