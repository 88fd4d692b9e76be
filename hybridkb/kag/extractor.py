"""
Entity Extraction Pipeline
==========================

Per-chunk extraction and the background worker pool.

Flow per chunk:

    status check (skip completed)
      -> claim (pending|failed -> extracting, conditional UPDATE)
      -> sanitize + provider call (timeout, bounded retries)
      -> validate
      -> merge-upsert into the metadata store (and graph when connected)
      -> completed with counts | failed with the error message

Entity and relation IDs are pure functions of normalized content, so
re-extracting a chunk merges into the same rows.

Example:
    extractor = EntityExtractor(store, create_provider(config), graph=falkordb, config=config)
    pool = ExtractionWorkerPool(extractor)
    await pool.start()
    await pool.enqueue("chunk-1")
    await pool.stop()
"""

import asyncio
import logging
from datetime import datetime
from typing import List, Optional, Set

from hybridkb.errors import (
    ExtractionError,
    ExtractionQueueFullError,
    ExtractionTimeoutError,
)
from hybridkb.kag.config import ExtractionConfig
from hybridkb.kag.models import ExtractionRequest, ExtractionResponse, ExtractionResult
from hybridkb.kag.providers.base import ExtractionProvider
from hybridkb.kag.validator import ExtractionValidator
from hybridkb.models import Chunk, ExtractionState
from hybridkb.storage.graph.base import GraphStore
from hybridkb.storage.metadata.store import MetadataStore
from hybridkb.storage.vectors.store import VectorIndex

logger = logging.getLogger(__name__)

RETRY_BACKOFF_S = 0.5
MAX_BACKOFF_S = 5.0


class EntityExtractor:
    """
    Extracts entities and relations from single chunks.

    Args:
        store: Metadata store (status table, entities, relations)
        provider: LLM extraction provider
        graph: Optional graph store; written only when connected
        config: Limits, threshold, timeout, retries
        validator: Defaults to ExtractionValidator(config.confidence_threshold)
        vector_index: Optional Qdrant index; entity vectors written when set
        embedder: Embedding service paired with vector_index
    """

    def __init__(
        self,
        store: MetadataStore,
        provider: ExtractionProvider,
        graph: Optional[GraphStore] = None,
        config: Optional[ExtractionConfig] = None,
        validator: Optional[ExtractionValidator] = None,
        vector_index: Optional[VectorIndex] = None,
        embedder=None,
    ):
        self.store = store
        self.provider = provider
        self.graph = graph
        self.config = config or ExtractionConfig()
        self.validator = validator or ExtractionValidator(self.config.confidence_threshold)
        self.vector_index = vector_index
        self.embedder = embedder

    def build_request(self, chunk: Chunk) -> ExtractionRequest:
        return ExtractionRequest(
            content=chunk.content,
            title=chunk.title,
            section_heading=chunk.section_heading,
            max_entities=self.config.max_entities_per_chunk,
            max_relations=self.config.max_relations_per_chunk,
            confidence_threshold=self.config.confidence_threshold,
            chunk_id=chunk.chunk_id,
        )

    async def _call_provider(self, request: ExtractionRequest) -> ExtractionResponse:
        """Provider call with timeout and bounded retries on recoverable errors."""
        attempts = self.config.max_retries + 1
        last_error: Optional[ExtractionError] = None

        for attempt in range(attempts):
            try:
                return await asyncio.wait_for(
                    self.provider.extract(request),
                    timeout=self.config.timeout_s,
                )
            except asyncio.TimeoutError:
                last_error = ExtractionTimeoutError(self.config.timeout_s, request.chunk_id)
            except ExtractionError as e:
                if not e.recoverable:
                    raise
                last_error = e

            if attempt + 1 < attempts:
                delay = min(RETRY_BACKOFF_S * (2 ** attempt), MAX_BACKOFF_S)
                logger.warning(
                    f"Extraction attempt {attempt + 1}/{attempts} failed for {request.chunk_id}: "
                    f"{last_error}; retrying in {delay:.1f}s"
                )
                await asyncio.sleep(delay)

        raise last_error

    async def extract_chunk(self, chunk: Chunk) -> ExtractionResult:
        """
        Extract one chunk.

        Already-completed chunks and chunks claimed by another worker are
        skipped. Failures are recorded on the status row and returned in
        ``result.error``; cancellation puts the chunk back to pending.
        """
        result = ExtractionResult(chunk_id=chunk.chunk_id)

        status = await self.store.get_extraction_status(chunk.chunk_id)
        if status.state == ExtractionState.COMPLETED:
            result.skipped = True
            result.completed_at = datetime.now()
            return result

        if not await self.store.claim_chunk(chunk.chunk_id, max_attempts=self.config.max_attempts):
            logger.debug(f"Chunk {chunk.chunk_id} claimed elsewhere or out of attempts, skipping")
            result.skipped = True
            result.completed_at = datetime.now()
            return result

        try:
            response = await self._call_provider(self.build_request(chunk))

            entities, relations = self.validator.validate_batch(
                response.entities,
                response.relations,
                chunk_id=chunk.chunk_id,
                document_id=chunk.document_id,
            )

            await self.store.upsert_entities(entities)
            await self.store.upsert_relations(relations)
            await self._write_graph(entities, relations)
            await self._write_vectors(entities, chunk.source_id)

            await self.store.mark_completed(chunk.chunk_id, len(entities), len(relations))
            result.entities = entities
            result.relations = relations
            logger.info(
                f"Extracted {len(entities)} entities, {len(relations)} relations from {chunk.chunk_id}"
            )

        except asyncio.CancelledError:
            await asyncio.shield(self.store.mark_pending(chunk.chunk_id))
            raise

        except Exception as e:
            logger.error(f"Extraction failed for {chunk.chunk_id}: {e}")
            result.error = str(e) or type(e).__name__
            await self.store.mark_failed(chunk.chunk_id, result.error)

        result.completed_at = datetime.now()
        return result

    async def _write_graph(self, entities, relations) -> None:
        if self.graph is None or not self.graph.is_connected:
            return
        for entity in entities:
            try:
                await self.graph.upsert_node(entity)
            except Exception as e:
                logger.debug(f"Graph upsert failed for entity {entity.id}: {e}")
        for relation in relations:
            try:
                await self.graph.upsert_edge(relation)
            except Exception as e:
                logger.debug(f"Graph upsert failed for relation {relation.id}: {e}")

    async def _write_vectors(self, entities, source_id: str) -> None:
        if self.vector_index is None or self.embedder is None or not entities:
            return
        texts = [
            f"{e.name} ({e.entity_type.value}): {e.description}" if e.description else e.name
            for e in entities
        ]
        try:
            vectors = await self.embedder.encode_batch_async(texts, is_query=False)
            await self.vector_index.upsert_entities(entities, vectors, source_id=source_id)
        except Exception as e:
            # Entity search stays lexical for these entities
            logger.warning(f"Entity vector upsert failed ({len(entities)} entities): {e}")


class ExtractionWorkerPool:
    """
    Bounded queue of chunk IDs drained by a fixed set of worker tasks.

    The status table is the source of truth: a chunk waiting in the queue
    is ``pending``, so anything left unprocessed by ``stop()`` is picked up
    again by ``resume_pending()``.
    """

    def __init__(self, extractor: EntityExtractor, num_workers: Optional[int] = None, queue_size: Optional[int] = None):
        self.extractor = extractor
        self.store = extractor.store
        self.num_workers = num_workers or extractor.config.num_workers
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size or extractor.config.queue_size)
        self._workers: List[asyncio.Task] = []
        self._queued: Set[str] = set()
        self.processed = 0
        self.failed = 0

    @property
    def is_running(self) -> bool:
        return any(not task.done() for task in self._workers)

    async def start(self) -> None:
        """Reset chunks stranded in ``extracting`` and launch the workers."""
        if self.is_running:
            return
        stale = await self.store.reset_stale_extracting()
        if stale:
            logger.info(f"Reset {stale} stale extracting chunks to pending")
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"kag-extractor-{i}")
            for i in range(self.num_workers)
        ]
        logger.info(f"Extraction worker pool started ({self.num_workers} workers)")

    async def enqueue(self, chunk_id: str) -> bool:
        """
        Queue a chunk without blocking.

        Returns:
            False if the chunk is already queued

        Raises:
            ExtractionQueueFullError: queue at capacity (chunk stays pending)
        """
        await self.store.ensure_pending([chunk_id])
        if chunk_id in self._queued:
            return False
        try:
            self.queue.put_nowait(chunk_id)
        except asyncio.QueueFull:
            raise ExtractionQueueFullError(chunk_id)
        self._queued.add(chunk_id)
        return True

    async def _worker(self, worker_id: int) -> None:
        logger.debug(f"Extraction worker {worker_id} started")
        while True:
            chunk_id = await self.queue.get()
            self._queued.discard(chunk_id)
            try:
                chunk = await self.store.get_chunk(chunk_id)
                if chunk is None:
                    logger.warning(f"Chunk {chunk_id} no longer exists, skipping")
                    continue
                result = await self.extractor.extract_chunk(chunk)
                if result.error:
                    self.failed += 1
                elif not result.skipped:
                    self.processed += 1
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.failed += 1
                logger.error(f"Worker {worker_id} error on {chunk_id}: {e}")
            finally:
                self.queue.task_done()

    async def join(self) -> None:
        """Wait until every queued chunk has been processed."""
        await self.queue.join()

    async def stop(self) -> None:
        """
        Cancel the workers.

        In-flight chunks are reset to pending by the extractor; queued chunks
        were never claimed and are still pending.
        """
        for task in self._workers:
            task.cancel()
        if self._workers:
            await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []

        while not self.queue.empty():
            self.queue.get_nowait()
            self.queue.task_done()
        self._queued.clear()
        logger.info("Extraction worker pool stopped")

    async def resume_pending(self, limit: int = 1000) -> int:
        """
        Enqueue pending chunks until the queue is full.

        Returns:
            Number of chunks enqueued
        """
        enqueued = 0
        for chunk_id in await self.store.list_chunks_by_state(ExtractionState.PENDING, limit=limit):
            try:
                if await self.enqueue(chunk_id):
                    enqueued += 1
            except ExtractionQueueFullError:
                logger.info(f"Queue full after resuming {enqueued} pending chunks")
                break
        return enqueued

    async def retry_failed(self) -> int:
        """
        Reset failed chunks (below max_attempts) to pending and enqueue them.

        Returns:
            Number of chunks reset
        """
        reset = await self.store.reset_failed(self.extractor.config.max_attempts)
        if reset:
            logger.info(f"Retrying {reset} failed chunks")
            await self.resume_pending()
        return reset

    def get_stats(self) -> dict:
        return {
            "running": self.is_running,
            "workers": self.num_workers,
            "queued": self.queue.qsize(),
            "capacity": self.queue.maxsize,
            "processed": self.processed,
            "failed": self.failed,
        }
