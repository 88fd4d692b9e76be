"""
Metadata Store
==============

Relational store (SQLite via SQLAlchemy async + aiosqlite) for:
- kb_documents / kb_chunks: indexed content
- kb_fts: FTS5 full-text index over chunks (read by LexicalIndex)
- kb_entities / kb_relations: KAG records (merge-upserted)
- kb_extraction_status: per-chunk extraction lifecycle

Per-chunk mutual exclusion for extraction is a conditional UPDATE
(``claim_chunk``): only one worker can move a chunk out of
pending/failed into extracting.

Usage:
    store = MetadataStore(MetadataStoreConfig.for_test())
    await store.connect()

    await store.upsert_document(Document(document_id="d1", source_id="s1", path="a.md", content="..."))
    await store.add_chunks("d1", chunks)

    if await store.claim_chunk("d1#0"):
        ...
        await store.mark_completed("d1#0", entity_count=3, relation_count=1)

    await store.close()
"""

import asyncio
from contextlib import asynccontextmanager, nullcontext
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

import structlog
from sqlalchemy import bindparam, text
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from hybridkb.errors import NotConnectedError
from hybridkb.models import (
    Chunk,
    Document,
    Entity,
    ExtractionState,
    ExtractionStatus,
    Relation,
)
from hybridkb.storage.metadata.config import MetadataStoreConfig

log = structlog.get_logger()


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS kb_documents (
    document_id TEXT PRIMARY KEY,
    source_id TEXT NOT NULL,
    path TEXT NOT NULL,
    title TEXT NOT NULL DEFAULT '',
    mime_type TEXT NOT NULL DEFAULT 'text/plain',
    content_hash TEXT NOT NULL DEFAULT '',
    indexed_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_kb_documents_source ON kb_documents(source_id);
CREATE TABLE IF NOT EXISTS kb_chunks (
    chunk_id TEXT PRIMARY KEY,
    document_id TEXT NOT NULL,
    chunk_index INTEGER NOT NULL,
    content TEXT NOT NULL,
    section_heading TEXT NOT NULL DEFAULT ''
);
CREATE INDEX IF NOT EXISTS idx_kb_chunks_document ON kb_chunks(document_id);
CREATE VIRTUAL TABLE IF NOT EXISTS kb_fts USING fts5(
    content,
    title,
    path,
    chunk_id UNINDEXED,
    tokenize = 'porter unicode61'
);
CREATE TABLE IF NOT EXISTS kb_entities (
    entity_id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    entity_type TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    confidence REAL NOT NULL,
    source_chunk_id TEXT NOT NULL DEFAULT '',
    source_document_id TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_kb_entities_name ON kb_entities(name);
CREATE INDEX IF NOT EXISTS idx_kb_entities_document ON kb_entities(source_document_id);
CREATE TABLE IF NOT EXISTS kb_relations (
    relation_id TEXT PRIMARY KEY,
    subject_id TEXT NOT NULL,
    predicate TEXT NOT NULL,
    object_id TEXT NOT NULL,
    confidence REAL NOT NULL,
    source_chunk_id TEXT NOT NULL DEFAULT '',
    source_document_id TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_kb_relations_subject ON kb_relations(subject_id);
CREATE INDEX IF NOT EXISTS idx_kb_relations_object ON kb_relations(object_id);
CREATE TABLE IF NOT EXISTS kb_extraction_status (
    chunk_id TEXT PRIMARY KEY,
    status TEXT NOT NULL DEFAULT 'pending',
    entity_count INTEGER NOT NULL DEFAULT 0,
    relation_count INTEGER NOT NULL DEFAULT 0,
    error_message TEXT,
    attempts INTEGER NOT NULL DEFAULT 0,
    extracted_at TEXT,
    updated_at TEXT NOT NULL
)
"""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class MetadataStore:
    """
    Async relational store for documents, chunks, FTS and KAG tables.

    Example:
        store = MetadataStore()
        await store.connect()
        stats = await store.get_extraction_stats()
        await store.close()
    """

    def __init__(self, config: Optional[MetadataStoreConfig] = None):
        self.config = config or MetadataStoreConfig()
        self._engine = None
        self._connected = False
        # a single shared connection in memory mode; transactions must not interleave
        self._lock = asyncio.Lock() if self.config.is_memory else None

        log.info(f"MetadataStore initialized - database={self.config.database_path}")

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self):
        """Open the engine and create the schema."""
        if self._connected:
            log.debug("Already connected to metadata store")
            return

        if self.config.is_memory:
            self._engine = create_async_engine(
                self.config.get_connection_string(),
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
                echo=self.config.echo,
            )
        else:
            Path(self.config.database_path).parent.mkdir(parents=True, exist_ok=True)
            self._engine = create_async_engine(
                self.config.get_connection_string(),
                echo=self.config.echo,
            )

        await self._create_schema()
        self._connected = True
        log.info(f"Connected to metadata store at {self.config.database_path}")

    async def _create_schema(self):
        async with self._engine.begin() as conn:
            for statement in SCHEMA_SQL.split(";"):
                statement = statement.strip()
                if statement:
                    await conn.execute(text(statement))

    async def close(self):
        """Dispose the engine."""
        if not self._connected:
            return
        await self._engine.dispose()
        self._engine = None
        self._connected = False
        log.info("Disconnected from metadata store")

    def _require_engine(self):
        if not self._connected:
            raise NotConnectedError("metadata store")
        return self._engine

    @asynccontextmanager
    async def _begin(self):
        engine = self._require_engine()
        async with self._lock or nullcontext():
            async with engine.begin() as conn:
                yield conn

    @asynccontextmanager
    async def _connect(self):
        engine = self._require_engine()
        async with self._lock or nullcontext():
            async with engine.connect() as conn:
                yield conn

    # ------------------------------------------------------------------
    # Generic SQL helpers (shared with LexicalIndex, KAG searcher, graph fallback)
    # ------------------------------------------------------------------

    @staticmethod
    def _build(sql: str, params: Dict[str, Any]):
        stmt = text(sql)
        expanding = [k for k, v in params.items() if isinstance(v, (list, tuple, set))]
        if expanding:
            stmt = stmt.bindparams(*(bindparam(k, expanding=True) for k in expanding))
        return stmt

    async def fetch_all(self, sql: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """
        Run a SELECT and return rows as dicts.

        List/tuple/set parameters are bound as expanding IN lists.
        """
        params = {k: (list(v) if isinstance(v, set) else v) for k, v in (params or {}).items()}
        async with self._connect() as conn:
            result = await conn.execute(self._build(sql, params), params)
            return [dict(row) for row in result.mappings().all()]

    async def fetch_one(self, sql: str, params: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
        rows = await self.fetch_all(sql, params)
        return rows[0] if rows else None

    async def execute(self, sql: str, params: Optional[Dict[str, Any]] = None) -> int:
        """Run a write statement in its own transaction; returns rowcount."""
        params = {k: (list(v) if isinstance(v, set) else v) for k, v in (params or {}).items()}
        async with self._begin() as conn:
            result = await conn.execute(self._build(sql, params), params)
            return result.rowcount or 0

    # ------------------------------------------------------------------
    # Documents and chunks
    # ------------------------------------------------------------------

    async def get_document(self, document_id: str) -> Optional[Dict[str, Any]]:
        return await self.fetch_one(
            "SELECT * FROM kb_documents WHERE document_id = :document_id",
            {"document_id": document_id},
        )

    async def needs_reindex(self, document_id: str, content_hash: str) -> bool:
        """True when the document is unknown or its cleaned content changed."""
        existing = await self.get_document(document_id)
        return existing is None or existing["content_hash"] != content_hash

    async def upsert_document(self, document: Document) -> bool:
        """
        Insert or re-sync a document.

        Documents are immutable except when the content hash changes; in that
        case the old chunks and FTS rows are dropped so the caller can add the
        new ones.

        Returns:
            True if the document was written, False if unchanged.
        """
        existing = await self.get_document(document.document_id)
        if existing is not None and existing["content_hash"] == document.content_hash:
            log.debug(f"Document unchanged, skipping: {document.document_id}")
            return False

        async with self._begin() as conn:
            if existing is not None:
                await self._delete_document_chunks(conn, document.document_id)
            await conn.execute(
                text(
                    "INSERT OR REPLACE INTO kb_documents "
                    "(document_id, source_id, path, title, mime_type, content_hash, indexed_at) "
                    "VALUES (:document_id, :source_id, :path, :title, :mime_type, :content_hash, :indexed_at)"
                ),
                {
                    "document_id": document.document_id,
                    "source_id": document.source_id,
                    "path": document.path,
                    "title": document.title,
                    "mime_type": document.mime_type,
                    "content_hash": document.content_hash,
                    "indexed_at": _now(),
                },
            )
        log.debug(f"Document stored: {document.document_id}", resync=existing is not None)
        return True

    async def _delete_document_chunks(self, conn, document_id: str):
        await conn.execute(
            text(
                "DELETE FROM kb_fts WHERE chunk_id IN "
                "(SELECT chunk_id FROM kb_chunks WHERE document_id = :document_id)"
            ),
            {"document_id": document_id},
        )
        await conn.execute(
            text(
                "DELETE FROM kb_extraction_status WHERE chunk_id IN "
                "(SELECT chunk_id FROM kb_chunks WHERE document_id = :document_id)"
            ),
            {"document_id": document_id},
        )
        await conn.execute(
            text("DELETE FROM kb_chunks WHERE document_id = :document_id"),
            {"document_id": document_id},
        )

    async def add_chunks(self, document_id: str, chunks: Sequence[Chunk]) -> int:
        """
        Store chunks, index them in FTS and register them as pending extraction.

        Returns:
            Number of chunks written
        """
        document = await self.get_document(document_id)
        title = document["title"] if document else ""
        path = document["path"] if document else ""
        now = _now()

        async with self._begin() as conn:
            for chunk in chunks:
                await conn.execute(
                    text("DELETE FROM kb_fts WHERE chunk_id = :chunk_id"),
                    {"chunk_id": chunk.chunk_id},
                )
                await conn.execute(
                    text(
                        "INSERT OR REPLACE INTO kb_chunks "
                        "(chunk_id, document_id, chunk_index, content, section_heading) "
                        "VALUES (:chunk_id, :document_id, :chunk_index, :content, :section_heading)"
                    ),
                    {
                        "chunk_id": chunk.chunk_id,
                        "document_id": document_id,
                        "chunk_index": chunk.chunk_index,
                        "content": chunk.content,
                        "section_heading": chunk.section_heading,
                    },
                )
                await conn.execute(
                    text(
                        "INSERT INTO kb_fts (content, title, path, chunk_id) "
                        "VALUES (:content, :title, :path, :chunk_id)"
                    ),
                    {
                        "content": chunk.content,
                        "title": chunk.title or title,
                        "path": chunk.path or path,
                        "chunk_id": chunk.chunk_id,
                    },
                )
                await conn.execute(
                    text(
                        "INSERT OR IGNORE INTO kb_extraction_status (chunk_id, status, updated_at) "
                        "VALUES (:chunk_id, 'pending', :now)"
                    ),
                    {"chunk_id": chunk.chunk_id, "now": now},
                )

        log.debug(f"Stored {len(chunks)} chunks for {document_id}")
        return len(chunks)

    async def get_chunks(self, chunk_ids: Iterable[str]) -> Dict[str, Chunk]:
        """Chunks by ID, joined with their document metadata."""
        ids = list(chunk_ids)
        if not ids:
            return {}
        rows = await self.fetch_all(
            "SELECT c.chunk_id, c.document_id, c.chunk_index, c.content, c.section_heading, "
            "d.title, d.path, d.source_id "
            "FROM kb_chunks c JOIN kb_documents d ON d.document_id = c.document_id "
            "WHERE c.chunk_id IN :ids",
            {"ids": ids},
        )
        return {
            row["chunk_id"]: Chunk(
                chunk_id=row["chunk_id"],
                document_id=row["document_id"],
                chunk_index=row["chunk_index"],
                content=row["content"],
                title=row["title"],
                path=row["path"],
                source_id=row["source_id"],
                section_heading=row["section_heading"],
            )
            for row in rows
        }

    async def get_chunk(self, chunk_id: str) -> Optional[Chunk]:
        return (await self.get_chunks([chunk_id])).get(chunk_id)

    async def count_documents(self, source_id: Optional[str] = None) -> int:
        if source_id:
            row = await self.fetch_one(
                "SELECT COUNT(*) AS n FROM kb_documents WHERE source_id = :source_id",
                {"source_id": source_id},
            )
        else:
            row = await self.fetch_one("SELECT COUNT(*) AS n FROM kb_documents")
        return row["n"]

    async def count_chunks(self, source_id: Optional[str] = None) -> int:
        if source_id:
            row = await self.fetch_one(
                "SELECT COUNT(*) AS n FROM kb_chunks c JOIN kb_documents d "
                "ON d.document_id = c.document_id WHERE d.source_id = :source_id",
                {"source_id": source_id},
            )
        else:
            row = await self.fetch_one("SELECT COUNT(*) AS n FROM kb_chunks")
        return row["n"]

    async def list_document_ids(self, source_id: str) -> List[str]:
        rows = await self.fetch_all(
            "SELECT document_id FROM kb_documents WHERE source_id = :source_id ORDER BY document_id",
            {"source_id": source_id},
        )
        return [row["document_id"] for row in rows]

    # ------------------------------------------------------------------
    # Entities and relations
    # ------------------------------------------------------------------

    async def upsert_entities(self, entities: Sequence[Entity]) -> int:
        """
        Merge-upsert entities.

        On conflict the confidence only increases and an empty description
        is filled; name and type never change for an existing ID.
        """
        if not entities:
            return 0
        now = _now()
        async with self._begin() as conn:
            for entity in entities:
                await conn.execute(
                    text(
                        "INSERT INTO kb_entities (entity_id, name, entity_type, description, confidence, "
                        "source_chunk_id, source_document_id, created_at, updated_at) "
                        "VALUES (:id, :name, :type, :description, :confidence, :chunk, :document, :now, :now) "
                        "ON CONFLICT(entity_id) DO UPDATE SET "
                        "confidence = MAX(kb_entities.confidence, excluded.confidence), "
                        "description = CASE WHEN kb_entities.description = '' "
                        "THEN excluded.description ELSE kb_entities.description END, "
                        "updated_at = excluded.updated_at"
                    ),
                    {
                        "id": entity.id,
                        "name": entity.name,
                        "type": entity.entity_type.value,
                        "description": entity.description,
                        "confidence": entity.confidence,
                        "chunk": entity.source_chunk_id,
                        "document": entity.source_document_id,
                        "now": now,
                    },
                )
        return len(entities)

    async def upsert_relations(self, relations: Sequence[Relation]) -> int:
        """Merge-upsert relations (confidence only increases)."""
        if not relations:
            return 0
        now = _now()
        async with self._begin() as conn:
            for relation in relations:
                await conn.execute(
                    text(
                        "INSERT INTO kb_relations (relation_id, subject_id, predicate, object_id, confidence, "
                        "source_chunk_id, source_document_id, created_at, updated_at) "
                        "VALUES (:id, :subject, :predicate, :object, :confidence, :chunk, :document, :now, :now) "
                        "ON CONFLICT(relation_id) DO UPDATE SET "
                        "confidence = MAX(kb_relations.confidence, excluded.confidence), "
                        "updated_at = excluded.updated_at"
                    ),
                    {
                        "id": relation.id,
                        "subject": relation.subject_id,
                        "predicate": relation.predicate.value,
                        "object": relation.object_id,
                        "confidence": relation.confidence,
                        "chunk": relation.source_chunk_id,
                        "document": relation.source_document_id,
                        "now": now,
                    },
                )
        return len(relations)

    async def get_entity(self, entity_id: str) -> Optional[Entity]:
        row = await self.fetch_one(
            "SELECT * FROM kb_entities WHERE entity_id = :id", {"id": entity_id}
        )
        return self.row_to_entity(row) if row else None

    @staticmethod
    def row_to_entity(row: Dict[str, Any]) -> Entity:
        return Entity(
            id=row["entity_id"],
            name=row["name"],
            entity_type=row["entity_type"],
            description=row.get("description") or "",
            confidence=row["confidence"],
            source_chunk_id=row.get("source_chunk_id") or "",
            source_document_id=row.get("source_document_id") or "",
            created_at=_parse_ts(row.get("created_at")),
            updated_at=_parse_ts(row.get("updated_at")),
        )

    # ------------------------------------------------------------------
    # Extraction status
    # ------------------------------------------------------------------

    async def get_extraction_status(self, chunk_id: str) -> ExtractionStatus:
        """Status of a chunk; unknown chunks are reported as pending."""
        row = await self.fetch_one(
            "SELECT * FROM kb_extraction_status WHERE chunk_id = :chunk_id",
            {"chunk_id": chunk_id},
        )
        if row is None:
            return ExtractionStatus(chunk_id=chunk_id)
        return ExtractionStatus(
            chunk_id=row["chunk_id"],
            state=ExtractionState(row["status"]),
            entity_count=row["entity_count"],
            relation_count=row["relation_count"],
            error_message=row["error_message"],
            attempts=row["attempts"],
            extracted_at=_parse_ts(row["extracted_at"]),
            updated_at=_parse_ts(row["updated_at"]),
        )

    async def ensure_pending(self, chunk_ids: Iterable[str]) -> None:
        """Create pending status rows for chunks that have none."""
        now = _now()
        async with self._begin() as conn:
            for chunk_id in chunk_ids:
                await conn.execute(
                    text(
                        "INSERT OR IGNORE INTO kb_extraction_status (chunk_id, status, updated_at) "
                        "VALUES (:chunk_id, 'pending', :now)"
                    ),
                    {"chunk_id": chunk_id, "now": now},
                )

    async def claim_chunk(self, chunk_id: str, max_attempts: Optional[int] = None) -> bool:
        """
        Atomically move a chunk from pending/failed to extracting.

        Returns:
            True if this caller owns the chunk now
        """
        await self.ensure_pending([chunk_id])
        sql = (
            "UPDATE kb_extraction_status SET status = 'extracting', attempts = attempts + 1, "
            "error_message = NULL, updated_at = :now "
            "WHERE chunk_id = :chunk_id AND status IN ('pending', 'failed')"
        )
        params: Dict[str, Any] = {"chunk_id": chunk_id, "now": _now()}
        if max_attempts is not None:
            sql += " AND attempts < :max_attempts"
            params["max_attempts"] = max_attempts
        return await self.execute(sql, params) == 1

    async def mark_completed(self, chunk_id: str, entity_count: int, relation_count: int) -> None:
        now = _now()
        await self.execute(
            "UPDATE kb_extraction_status SET status = 'completed', entity_count = :entities, "
            "relation_count = :relations, error_message = NULL, extracted_at = :now, updated_at = :now "
            "WHERE chunk_id = :chunk_id",
            {"chunk_id": chunk_id, "entities": entity_count, "relations": relation_count, "now": now},
        )

    async def mark_failed(self, chunk_id: str, error_message: str) -> None:
        await self.execute(
            "UPDATE kb_extraction_status SET status = 'failed', error_message = :error, updated_at = :now "
            "WHERE chunk_id = :chunk_id",
            {"chunk_id": chunk_id, "error": error_message[:1000], "now": _now()},
        )

    async def mark_pending(self, chunk_id: str) -> None:
        """Return an interrupted chunk to the queue state."""
        await self.execute(
            "UPDATE kb_extraction_status SET status = 'pending', updated_at = :now "
            "WHERE chunk_id = :chunk_id AND status = 'extracting'",
            {"chunk_id": chunk_id, "now": _now()},
        )

    async def list_chunks_by_state(self, state: ExtractionState, limit: int = 1000) -> List[str]:
        rows = await self.fetch_all(
            "SELECT chunk_id FROM kb_extraction_status WHERE status = :status "
            "ORDER BY updated_at, chunk_id LIMIT :limit",
            {"status": state.value, "limit": limit},
        )
        return [row["chunk_id"] for row in rows]

    async def reset_failed(self, max_attempts: Optional[int] = None) -> int:
        """Move failed chunks back to pending; returns how many."""
        sql = "UPDATE kb_extraction_status SET status = 'pending', updated_at = :now WHERE status = 'failed'"
        params: Dict[str, Any] = {"now": _now()}
        if max_attempts is not None:
            sql += " AND attempts < :max_attempts"
            params["max_attempts"] = max_attempts
        return await self.execute(sql, params)

    async def reset_stale_extracting(self) -> int:
        """Chunks left in extracting by a crashed process go back to pending."""
        return await self.execute(
            "UPDATE kb_extraction_status SET status = 'pending', updated_at = :now WHERE status = 'extracting'",
            {"now": _now()},
        )

    async def get_extraction_stats(self) -> Dict[str, int]:
        """Counts per state plus total entities and relations."""
        stats = {state.value: 0 for state in ExtractionState}
        rows = await self.fetch_all(
            "SELECT status, COUNT(*) AS n FROM kb_extraction_status GROUP BY status"
        )
        for row in rows:
            stats[row["status"]] = row["n"]
        stats["total_entities"] = (await self.fetch_one("SELECT COUNT(*) AS n FROM kb_entities"))["n"]
        stats["total_relations"] = (await self.fetch_one("SELECT COUNT(*) AS n FROM kb_relations"))["n"]
        return stats

    # ------------------------------------------------------------------
    # Source removal
    # ------------------------------------------------------------------

    async def delete_source(self, source_id: str) -> Dict[str, int]:
        """
        Delete every relational row belonging to a source, in one transaction.

        Must run after vector and graph cleanup: the chunk rows deleted here
        are the source -> chunk mapping those steps rely on.

        Returns:
            Rows deleted per table
        """
        params = {"source_id": source_id}
        docs_subquery = "SELECT document_id FROM kb_documents WHERE source_id = :source_id"
        chunks_subquery = f"SELECT chunk_id FROM kb_chunks WHERE document_id IN ({docs_subquery})"
        deleted: Dict[str, int] = {}

        async with self._begin() as conn:
            statements = [
                ("relations", f"DELETE FROM kb_relations WHERE source_document_id IN ({docs_subquery})"),
                ("entities", f"DELETE FROM kb_entities WHERE source_document_id IN ({docs_subquery})"),
                ("extraction_status", f"DELETE FROM kb_extraction_status WHERE chunk_id IN ({chunks_subquery})"),
                ("fts", f"DELETE FROM kb_fts WHERE chunk_id IN ({chunks_subquery})"),
                ("chunks", f"DELETE FROM kb_chunks WHERE document_id IN ({docs_subquery})"),
                ("documents", "DELETE FROM kb_documents WHERE source_id = :source_id"),
            ]
            for name, sql in statements:
                result = await conn.execute(text(sql), params)
                deleted[name] = result.rowcount or 0

        log.info(f"Deleted relational rows for source {source_id}", **deleted)
        return deleted
