"""
Vector Index
============

Qdrant adapter holding two collections:
- chunks: one point per chunk (payload: chunk_id, document_id, chunk_index,
  path, title, content, source_id)
- entities: one point per KAG entity (payload: entity_id, name, type,
  description, confidence, source_document_id, source_id)

qdrant-client is synchronous; every call runs in the default executor.
Qdrant point IDs must be UUIDs or integers, so string IDs are mapped to a
deterministic UUIDv5 and the original ID is kept in the payload.
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import structlog
from qdrant_client import QdrantClient
from qdrant_client.models import (
    Distance,
    FieldCondition,
    Filter,
    PointIdsList,
    MatchAny,
    MatchValue,
    PointStruct,
    VectorParams,
)

from hybridkb.errors import NotConnectedError, VectorStoreError
from hybridkb.models import Chunk, Entity
from hybridkb.storage.vectors.config import QdrantConfig

log = structlog.get_logger()

DELETE_PAGE_SIZE = 1000


def point_id(raw_id: str) -> str:
    """Deterministic Qdrant point ID for a string chunk/entity ID."""
    return str(uuid.uuid5(uuid.NAMESPACE_DNS, raw_id))


def build_filter(
    source_ids: Optional[Sequence[str]] = None,
    document_id: Optional[str] = None,
) -> Optional[Filter]:
    """Qdrant payload filter on source and/or document."""
    must = []
    if source_ids:
        ids = list(source_ids)
        if len(ids) == 1:
            must.append(FieldCondition(key="source_id", match=MatchValue(value=ids[0])))
        else:
            must.append(FieldCondition(key="source_id", match=MatchAny(any=ids)))
    if document_id:
        must.append(FieldCondition(key="document_id", match=MatchValue(value=document_id)))
    return Filter(must=must) if must else None


@dataclass
class VectorHit:
    """One vector search match."""
    id: str
    score: float
    payload: Dict[str, Any] = field(default_factory=dict)


class VectorIndex:
    """
    Async facade over a QdrantClient.

    Example:
        index = VectorIndex(QdrantConfig())
        await index.connect()
        await index.upsert_chunks(chunks, vectors)
        hits = await index.query(query_vector, limit=30, source_ids=["docs"])
        removed = await index.delete_by_filter(index.config.chunk_collection, source_id="docs")
    """

    def __init__(self, config: Optional[QdrantConfig] = None, client: Optional[QdrantClient] = None):
        self.config = config or QdrantConfig()
        self._client = client
        self._connected = client is not None

        log.info(
            f"VectorIndex initialized - "
            f"host={self.config.host}:{self.config.port}, "
            f"chunks={self.config.chunk_collection}, "
            f"entities={self.config.entity_collection}"
        )

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def _run(self, fn, *args, **kwargs):
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, lambda: fn(*args, **kwargs))

    def _require_client(self) -> QdrantClient:
        if not self._connected or self._client is None:
            raise NotConnectedError("Qdrant")
        return self._client

    async def connect(self):
        """Create the client and make sure both collections exist."""
        if self._connected:
            log.debug("Already connected to Qdrant")
            return
        self._client = QdrantClient(
            host=self.config.host,
            port=self.config.port,
            timeout=self.config.timeout_s,
        )
        self._connected = True
        await self.ensure_collections()
        log.info(f"Connected to Qdrant at {self.config.host}:{self.config.port}")

    async def close(self):
        if not self._connected:
            return
        client = self._client
        self._client = None
        self._connected = False
        await self._run(client.close)
        log.info("Disconnected from Qdrant")

    async def ensure_collections(self) -> None:
        """Create chunk and entity collections when missing."""
        client = self._require_client()
        response = await self._run(client.get_collections)
        existing = {c.name for c in response.collections}
        for name in (self.config.chunk_collection, self.config.entity_collection):
            if name in existing:
                continue
            await self._run(
                client.create_collection,
                collection_name=name,
                vectors_config=VectorParams(size=self.config.vector_size, distance=Distance.COSINE),
            )
            log.info(f"Created Qdrant collection: {name}")

    async def health_check(self) -> bool:
        try:
            client = self._require_client()
            await self._run(client.get_collections)
            return True
        except Exception as e:
            log.warning(f"Qdrant health check failed: {e}")
            return False

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def upsert_chunks(self, chunks: Sequence[Chunk], vectors: Sequence[List[float]]) -> int:
        """Upsert chunk vectors; returns points written."""
        if len(chunks) != len(vectors):
            raise VectorStoreError(f"chunks/vectors length mismatch: {len(chunks)} != {len(vectors)}")
        if not chunks:
            return 0
        client = self._require_client()
        points = [
            PointStruct(
                id=point_id(chunk.chunk_id),
                vector=list(vector),
                payload={
                    "chunk_id": chunk.chunk_id,
                    "document_id": chunk.document_id,
                    "chunk_index": chunk.chunk_index,
                    "path": chunk.path,
                    "title": chunk.title,
                    "content": chunk.content,
                    "source_id": chunk.source_id,
                },
            )
            for chunk, vector in zip(chunks, vectors)
        ]
        await self._run(client.upsert, collection_name=self.config.chunk_collection, points=points)
        log.debug(f"Upserted {len(points)} chunk vectors")
        return len(points)

    async def upsert_entities(
        self,
        entities: Sequence[Entity],
        vectors: Sequence[List[float]],
        source_id: str = "",
    ) -> int:
        """Upsert entity vectors; returns points written."""
        if len(entities) != len(vectors):
            raise VectorStoreError(f"entities/vectors length mismatch: {len(entities)} != {len(vectors)}")
        if not entities:
            return 0
        client = self._require_client()
        points = [
            PointStruct(
                id=point_id(entity.id),
                vector=list(vector),
                payload={
                    "entity_id": entity.id,
                    "name": entity.name,
                    "type": entity.entity_type.value,
                    "description": entity.description,
                    "confidence": entity.confidence,
                    "document_id": entity.source_document_id,
                    "source_id": source_id,
                },
            )
            for entity, vector in zip(entities, vectors)
        ]
        await self._run(client.upsert, collection_name=self.config.entity_collection, points=points)
        log.debug(f"Upserted {len(points)} entity vectors")
        return len(points)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def query(
        self,
        vector: List[float],
        limit: int = 10,
        source_ids: Optional[Sequence[str]] = None,
        collection: Optional[str] = None,
        min_score: Optional[float] = None,
    ) -> List[VectorHit]:
        """
        Nearest-neighbour search.

        Args:
            vector: Query embedding
            limit: Maximum hits
            source_ids: Restrict to these sources
            collection: Defaults to the chunk collection
            min_score: Qdrant score threshold

        Returns:
            Hits ordered by descending similarity; ``id`` is the original
            chunk/entity ID from the payload.
        """
        client = self._require_client()
        collection_name = collection or self.config.chunk_collection
        id_key = "entity_id" if collection_name == self.config.entity_collection else "chunk_id"

        response = await self._run(
            client.query_points,
            collection_name=collection_name,
            query=list(vector),
            query_filter=build_filter(source_ids),
            limit=limit,
            score_threshold=min_score,
            with_payload=True,
        )

        hits = []
        for point in response.points:
            payload = point.payload or {}
            hits.append(VectorHit(
                id=str(payload.get(id_key, point.id)),
                score=float(point.score),
                payload=payload,
            ))
        return hits

    async def count(self, collection: Optional[str] = None, query_filter: Optional[Filter] = None) -> int:
        client = self._require_client()
        result = await self._run(
            client.count,
            collection_name=collection or self.config.chunk_collection,
            count_filter=query_filter,
            exact=True,
        )
        return result.count

    # ------------------------------------------------------------------
    # Deletes
    # ------------------------------------------------------------------

    async def delete_by_filter(
        self,
        collection: str,
        source_id: Optional[str] = None,
        document_id: Optional[str] = None,
    ) -> int:
        """
        Delete every point matching the source/document filter.

        Matching IDs are scrolled first and exactly those points are deleted,
        so the returned count is the number of points removed.

        Returns:
            Number of points deleted
        """
        query_filter = build_filter([source_id] if source_id else None, document_id)
        if query_filter is None:
            raise VectorStoreError("delete_by_filter requires source_id or document_id")

        client = self._require_client()
        ids = []
        offset = None
        while True:
            points, offset = await self._run(
                client.scroll,
                collection_name=collection,
                scroll_filter=query_filter,
                limit=DELETE_PAGE_SIZE,
                offset=offset,
                with_payload=False,
                with_vectors=False,
            )
            ids.extend(point.id for point in points)
            if offset is None:
                break
        if not ids:
            return 0

        await self._run(
            client.delete,
            collection_name=collection,
            points_selector=PointIdsList(points=ids),
            wait=True,
        )
        log.info(f"Deleted {len(ids)} points from {collection}", source_id=source_id, document_id=document_id)
        return len(ids)
