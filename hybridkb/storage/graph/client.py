"""
FalkorDB Client
===============

Async client for FalkorDB graph database.

FalkorDB runs on Redis protocol and supports Cypher queries. falkordb-py
is synchronous, so every query runs in the default executor.

Graph layout:
    (:Entity {id, name, type, description, confidence,
              source_chunk_id, source_document_id})
    (:Entity)-[:RELATES_TO|USES|... {id, confidence, source_chunk_id}]->(:Entity)
"""

import structlog
import asyncio
from typing import Dict, List, Any, Iterable, Optional

from falkordb import FalkorDB, Graph

from hybridkb.errors import GraphNotConnectedError
from hybridkb.models import Entity, Relation, RelationType
from hybridkb.storage.graph.base import GraphStore
from hybridkb.storage.graph.config import FalkorDBConfig

log = structlog.get_logger()

MAX_TRAVERSAL_HOPS = 3


class FalkorDBClient(GraphStore):
    """
    Async client for FalkorDB graph database.

    Example:
        client = FalkorDBClient(config)
        await client.connect()

        await client.upsert_node(entity)
        await client.upsert_edge(relation)
        reachable = await client.traverse([entity.id], max_hops=2)

        await client.close()
    """

    name = "falkordb"

    def __init__(self, config: Optional[FalkorDBConfig] = None):
        self.config = config or FalkorDBConfig()
        self._db: Optional[FalkorDB] = None
        self._graph: Optional[Graph] = None
        self._connected = False

        log.info(
            f"FalkorDBClient initialized - "
            f"host={self.config.host}:{self.config.port}, "
            f"graph={self.config.graph_name}"
        )

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self):
        """Establish connection to FalkorDB."""
        if self._connected:
            log.debug("Already connected to FalkorDB")
            return

        loop = asyncio.get_event_loop()
        await loop.run_in_executor(None, self._connect_sync)

        log.info(f"Connected to FalkorDB at {self.config.host}:{self.config.port}")

    def _connect_sync(self):
        """Synchronous connection (called in executor)."""
        self._db = FalkorDB(
            host=self.config.host,
            port=self.config.port,
            password=self.config.password,
        )
        self._graph = self._db.select_graph(self.config.graph_name)
        # Index on id keeps MERGE and traversal starts O(log n)
        try:
            self._graph.query("CREATE INDEX FOR (e:Entity) ON (e.id)")
        except Exception as e:
            log.debug(f"Entity index not created: {e}")
        self._connected = True

    async def close(self):
        """Close connection."""
        if not self._connected:
            return

        # Connection is owned by the redis pool
        self._connected = False
        self._db = None
        self._graph = None
        log.info("Disconnected from FalkorDB")

    async def query(
        self,
        cypher: str,
        params: Optional[Dict[str, Any]] = None
    ) -> List[Dict[str, Any]]:
        """
        Execute Cypher query.

        Args:
            cypher: Cypher query string
            params: Query parameters

        Returns:
            List of result records as dicts
        """
        if not self._connected:
            raise GraphNotConnectedError()

        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(
            None,
            self._query_sync,
            cypher,
            params or {}
        )

    def _query_sync(self, cypher: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Execute query synchronously (called in executor)."""
        try:
            result = self._graph.query(cypher, params, timeout=self.config.timeout_ms)

            records = []
            if result.result_set:
                headers = result.header

                for row in result.result_set:
                    record = {}
                    for i, header in enumerate(headers):
                        # header format is [type, alias]
                        col_name = header[1] if len(header) > 1 else f"col_{i}"
                        value = row[i]

                        if hasattr(value, 'properties'):
                            record[col_name] = {
                                "properties": value.properties,
                                "labels": getattr(value, 'labels', []),
                                "id": getattr(value, 'id', None),
                            }
                        else:
                            record[col_name] = value

                    records.append(record)

            log.debug(
                f"Query executed: {cypher[:100]}... "
                f"(params={list(params.keys())}) -> {len(records)} records"
            )
            return records

        except Exception as e:
            log.error(f"Query failed: {cypher[:100]}... Error: {e}")
            raise

    async def upsert_node(self, entity: Entity) -> None:
        """MERGE an entity node; confidence only increases, empty description gets filled."""
        cypher = """
            MERGE (e:Entity {id: $id})
            ON CREATE SET e.name = $name, e.type = $type, e.description = $description,
                          e.confidence = $confidence, e.source_chunk_id = $chunk,
                          e.source_document_id = $document
            ON MATCH SET e.confidence = CASE WHEN $confidence > e.confidence
                                             THEN $confidence ELSE e.confidence END,
                         e.description = CASE WHEN e.description = ''
                                              THEN $description ELSE e.description END
        """
        await self.query(cypher, {
            "id": entity.id,
            "name": entity.name,
            "type": entity.entity_type.value,
            "description": entity.description,
            "confidence": entity.confidence,
            "chunk": entity.source_chunk_id,
            "document": entity.source_document_id,
        })

    async def upsert_edge(self, relation: Relation) -> None:
        """MERGE a relation edge; both endpoint nodes must already exist."""
        # Relationship types cannot be parameters; the predicate comes from a closed enum
        rel_type = RelationType(relation.predicate).value.upper()
        cypher = f"""
            MATCH (s:Entity {{id: $subject}}), (o:Entity {{id: $object}})
            MERGE (s)-[r:{rel_type} {{id: $id}}]->(o)
            ON CREATE SET r.confidence = $confidence, r.source_chunk_id = $chunk,
                          r.source_document_id = $document
            ON MATCH SET r.confidence = CASE WHEN $confidence > r.confidence
                                             THEN $confidence ELSE r.confidence END
        """
        await self.query(cypher, {
            "id": relation.id,
            "subject": relation.subject_id,
            "object": relation.object_id,
            "confidence": relation.confidence,
            "chunk": relation.source_chunk_id,
            "document": relation.source_document_id,
        })

    async def traverse(self, start_ids: Iterable[str], max_hops: int = 2, limit: int = 100) -> Dict[str, int]:
        """
        Undirected variable-length traversal from a set of entities.

        Args:
            start_ids: Entity IDs to start from
            max_hops: Maximum path length (clamped to 1..3)
            limit: Maximum entities returned

        Returns:
            entity_id -> shortest hop distance found
        """
        ids = list(start_ids)
        if not ids:
            return {}
        hops = max(1, min(int(max_hops), MAX_TRAVERSAL_HOPS))

        cypher = f"""
            MATCH (start:Entity) WHERE start.id IN $ids
            MATCH path = (start)-[*1..{hops}]-(n:Entity)
            WHERE NOT n.id IN $ids
            RETURN n.id AS id, min(length(path)) AS depth
            ORDER BY depth ASC
            LIMIT {int(limit)}
        """
        results = await self.query(cypher, {"ids": ids})
        return {row["id"]: int(row["depth"]) for row in results if row.get("id")}

    async def delete_by_document(self, document_id: str) -> int:
        """Detach-delete all nodes extracted from a document."""
        counted = await self.query(
            "MATCH (e:Entity {source_document_id: $document}) RETURN count(e) AS n",
            {"document": document_id},
        )
        count = int(counted[0]["n"]) if counted else 0
        if count:
            await self.query(
                "MATCH (e:Entity {source_document_id: $document}) DETACH DELETE e",
                {"document": document_id},
            )
        log.debug(f"Deleted {count} graph nodes for document {document_id}")
        return count

    async def get_stats(self) -> Dict[str, Any]:
        nodes = await self.query("MATCH (e:Entity) RETURN count(e) AS n")
        edges = await self.query("MATCH ()-[r]->() RETURN count(r) AS n")
        return {
            "backend": self.name,
            "graph_name": self.config.graph_name,
            "entity_count": int(nodes[0]["n"]) if nodes else 0,
            "relation_count": int(edges[0]["n"]) if edges else 0,
        }

    async def health_check(self) -> bool:
        """
        Check if FalkorDB is healthy and reachable.

        Returns:
            True if healthy, False otherwise
        """
        try:
            if not self._connected:
                await self.connect()

            await self.query("RETURN 1")
            return True

        except Exception as e:
            log.error(f"Health check failed: {e}")
            return False
