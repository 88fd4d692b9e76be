"""
Test ExtractionWorkerPool
=========================

Bounded queue, workers, stop/resume and retry of failed chunks.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from hybridkb.errors import ExtractionQueueFullError, InvalidExtractionResponseError
from hybridkb.kag.config import ExtractionConfig
from hybridkb.kag.extractor import EntityExtractor, ExtractionWorkerPool
from hybridkb.kag.models import ExtractedEntity, ExtractionResponse
from hybridkb.models import ExtractionState


@pytest.fixture
def provider():
    mock = MagicMock()
    mock.extract = AsyncMock(return_value=ExtractionResponse(
        entities=[ExtractedEntity("Oak Ridge", "organization", confidence=0.9)],
    ))
    return mock


@pytest.fixture
def extractor(populated_store, provider):
    return EntityExtractor(populated_store, provider, config=ExtractionConfig.for_test())


class TestQueue:

    @pytest.mark.asyncio
    async def test_duplicate_enqueue(self, extractor):
        pool = ExtractionWorkerPool(extractor)

        assert await pool.enqueue("oak#0") is True
        assert await pool.enqueue("oak#0") is False
        assert pool.queue.qsize() == 1

    @pytest.mark.asyncio
    async def test_full_queue_keeps_chunk_pending(self, extractor, populated_store):
        pool = ExtractionWorkerPool(extractor, queue_size=1)
        await pool.enqueue("oak#0")

        with pytest.raises(ExtractionQueueFullError):
            await pool.enqueue("oak#1")

        status = await populated_store.get_extraction_status("oak#1")
        assert status.state == ExtractionState.PENDING


class TestWorkers:
    """Workers drain the queue."""

    @pytest.mark.asyncio
    async def test_processes_queued_chunks(self, extractor, populated_store):
        pool = ExtractionWorkerPool(extractor)
        await pool.start()
        try:
            await pool.enqueue("oak#0")
            await pool.enqueue("oak#1")
            await pool.join()
        finally:
            await pool.stop()

        assert pool.processed == 2
        for chunk_id in ("oak#0", "oak#1"):
            status = await populated_store.get_extraction_status(chunk_id)
            assert status.state == ExtractionState.COMPLETED

    @pytest.mark.asyncio
    async def test_failures_counted(self, extractor, provider):
        provider.extract.side_effect = InvalidExtractionResponseError("garbage")
        pool = ExtractionWorkerPool(extractor, num_workers=1)
        await pool.start()
        try:
            await pool.enqueue("oak#0")
            await pool.join()
        finally:
            await pool.stop()

        assert pool.failed == 1
        assert pool.processed == 0

    @pytest.mark.asyncio
    async def test_missing_chunk_skipped(self, extractor, provider):
        pool = ExtractionWorkerPool(extractor, num_workers=1)
        await pool.start()
        try:
            await pool.enqueue("ghost#0")
            await pool.join()
        finally:
            await pool.stop()

        provider.extract.assert_not_called()
        assert pool.processed == 0

    @pytest.mark.asyncio
    async def test_start_resets_stale_extracting(self, extractor, populated_store):
        await populated_store.claim_chunk("oak#0")
        pool = ExtractionWorkerPool(extractor)

        await pool.start()
        try:
            status = await populated_store.get_extraction_status("oak#0")
        finally:
            await pool.stop()

        assert status.state == ExtractionState.PENDING
        assert not pool.is_running


class TestRecovery:
    """Status table is the source of truth across stop/resume."""

    @pytest.mark.asyncio
    async def test_stop_then_resume(self, extractor, populated_store):
        pool = ExtractionWorkerPool(extractor)
        await pool.enqueue("oak#0")
        await pool.stop()

        assert pool.queue.empty()
        enqueued = await pool.resume_pending()

        assert enqueued == await populated_store.count_chunks()

    @pytest.mark.asyncio
    async def test_resume_stops_when_full(self, extractor):
        pool = ExtractionWorkerPool(extractor, queue_size=2)

        assert await pool.resume_pending() == 2

    @pytest.mark.asyncio
    async def test_retry_failed(self, extractor, populated_store):
        await populated_store.claim_chunk("oak#0")
        await populated_store.mark_failed("oak#0", "provider down")
        pool = ExtractionWorkerPool(extractor)

        reset = await pool.retry_failed()

        assert reset == 1
        assert (await populated_store.get_extraction_status("oak#0")).state == ExtractionState.PENDING
        assert pool.queue.qsize() > 0

    @pytest.mark.asyncio
    async def test_retry_respects_max_attempts(self, extractor, populated_store):
        for _ in range(3):
            await populated_store.claim_chunk("oak#0")
            await populated_store.mark_failed("oak#0", "provider down")
        pool = ExtractionWorkerPool(extractor)

        assert await pool.retry_failed() == 0

    @pytest.mark.asyncio
    async def test_requeued_exhausted_chunk_skipped(self, extractor, populated_store, provider):
        for _ in range(3):
            await populated_store.claim_chunk("oak#0")
            await populated_store.mark_failed("oak#0", "provider down")
        pool = ExtractionWorkerPool(extractor, num_workers=1)
        await pool.start()
        try:
            assert await pool.enqueue("oak#0") is True
            await pool.join()
        finally:
            await pool.stop()

        provider.extract.assert_not_called()
        status = await populated_store.get_extraction_status("oak#0")
        assert status.state == ExtractionState.FAILED
        assert status.attempts == 3

    @pytest.mark.asyncio
    async def test_stats(self, extractor):
        pool = ExtractionWorkerPool(extractor, num_workers=3, queue_size=7)

        stats = pool.get_stats()

        assert stats == {"running": False, "workers": 3, "queued": 0, "capacity": 7, "processed": 0, "failed": 0}
