"""
Tests for docmind/services/orchestrator.py driven through the job worker.

Covers the full upload -> queue -> process path, re-analysis, retry
exhaustion on storage timeouts, and deletion while a job is running.
"""

import asyncio
import uuid

import pytest
from sqlalchemy import select

from docmind.core.errors import PermanentProviderError, TransientProviderError, UnsupportedMediaType
from docmind.models import Analysis, File, FileStatus, JobStatus, KnowledgeChunk, ProcessingJob
from docmind.repositories.file_repository import FileRepository
from docmind.services.embedding_service import EmbeddingService
from docmind.services.analyzer import Analyzer
from docmind.services.file_service import FileService
from docmind.services.job_queue import ClaimedJob, JobQueue
from docmind.services.orchestrator import AnalysisOrchestrator, FileGone, knowledge_text
from docmind.schemas.analysis import AnalysisResult
from docmind.utils.text_chunker import Chunker
from docmind.worker import JobWorker
from tests.conftest import FakeAIClient, MemoryStorage

TEXT = "".join(f"Sentence number {i} about quarterly revenue. " for i in range(12))


class SlowStorage(MemoryStorage):
    """Every download outlives the storage timeout."""

    async def _download(self, locator):
        self.downloads += 1
        await asyncio.sleep(1)
        return b""


def _pipeline(session_factory, ai_client, storage):
    queue = JobQueue(session_factory, max_attempts=3, backoff_seconds=0)
    orchestrator = AnalysisOrchestrator(
        session_factory=session_factory,
        storage=storage,
        analyzer=Analyzer(ai_client),
        embedding_service=EmbeddingService(ai_client, dimensions=8, backoff_seconds=0),
        chunker=Chunker(200, 50),
    )
    return queue, JobWorker(queue, orchestrator, concurrency=2, poll_seconds=0.01)


async def _upload(session_factory, storage, queue, data, media_type="text/plain", name="report.txt", user_id=None):
    user_id = user_id or str(uuid.uuid4())
    async with session_factory() as db:
        file = await FileService(db, storage, queue).upload(user_id, name, media_type, data)
        return file.id, user_id


async def _file(session_factory, file_id):
    async with session_factory() as db:
        return await db.get(File, file_id)


async def _chunks(session_factory, file_id):
    async with session_factory() as db:
        result = await db.execute(
            select(KnowledgeChunk).where(KnowledgeChunk.file_id == file_id).order_by(KnowledgeChunk.chunk_index)
        )
        return list(result.scalars().all())


async def _jobs(session_factory, file_id):
    async with session_factory() as db:
        result = await db.execute(select(ProcessingJob).where(ProcessingJob.file_id == file_id))
        return list(result.scalars().all())


class TestHappyPath:
    """Upload through completion."""

    @pytest.mark.asyncio
    async def test_text_file_completes(self, session_factory, ai_client, storage):
        queue, worker = _pipeline(session_factory, ai_client, storage)
        file_id, _ = await _upload(session_factory, storage, queue, TEXT.encode())

        assert (await _file(session_factory, file_id)).status == FileStatus.PENDING.value
        assert await worker.drain() == 1

        file = await _file(session_factory, file_id)
        assert file.status == FileStatus.COMPLETED.value
        assert file.error_message is None

        chunks = await _chunks(session_factory, file_id)
        assert [c.chunk_index for c in chunks] == list(range(len(chunks)))
        assert Chunker(200, 50).reassemble([c.content for c in chunks]) == TEXT
        assert all(len(c.embedding) == 8 for c in chunks)

        async with session_factory() as db:
            analysis = (await db.execute(select(Analysis).where(Analysis.file_id == file_id))).scalar_one()
        assert analysis.variant == "document"
        assert analysis.model == "fake-analysis"
        assert (await _jobs(session_factory, file_id))[0].status == JobStatus.COMPLETED.value

    @pytest.mark.asyncio
    async def test_image_chunks_analysis_text(self, session_factory, ai_client, storage):
        """Images have no extracted text; their knowledge is the rendered analysis."""
        queue, worker = _pipeline(session_factory, ai_client, storage)
        file_id, _ = await _upload(session_factory, storage, queue, b"\x89PNG fake", "image/png", "photo.png")

        await worker.drain()

        chunks = await _chunks(session_factory, file_id)
        assert (await _file(session_factory, file_id)).status == FileStatus.COMPLETED.value
        assert chunks
        assert "A short report about quarterly revenue." in chunks[0].content
        assert ai_client.complete_calls[0]["image"] == b"\x89PNG fake"

    @pytest.mark.asyncio
    async def test_degraded_analysis_still_completes(self, session_factory, storage):
        ai_client = FakeAIClient(analysis_response="no json here")
        queue, worker = _pipeline(session_factory, ai_client, storage)
        file_id, _ = await _upload(session_factory, storage, queue, TEXT.encode())

        await worker.drain()

        assert (await _file(session_factory, file_id)).status == FileStatus.COMPLETED.value
        async with session_factory() as db:
            analysis = (await db.execute(select(Analysis).where(Analysis.file_id == file_id))).scalar_one()
        assert analysis.degraded is True


class TestReanalysis:
    @pytest.mark.asyncio
    async def test_reanalysis_is_idempotent(self, session_factory, ai_client, storage):
        """Processing the same file twice leaves one analysis and an identical chunk set."""
        queue, worker = _pipeline(session_factory, ai_client, storage)
        file_id, user_id = await _upload(session_factory, storage, queue, TEXT.encode())
        await worker.drain()
        first = [(c.chunk_index, c.content, c.embedding) for c in await _chunks(session_factory, file_id)]

        async with session_factory() as db:
            assert await FileService(db, storage, queue).reanalyze(file_id, user_id) is True
        assert (await _file(session_factory, file_id)).status == FileStatus.PENDING.value
        await worker.drain()

        second_rows = await _chunks(session_factory, file_id)
        assert [(c.chunk_index, c.content, c.embedding) for c in second_rows] == first
        assert len({c.generation for c in second_rows}) == 1
        async with session_factory() as db:
            analyses = (await db.execute(select(Analysis).where(Analysis.file_id == file_id))).scalars().all()
        assert len(analyses) == 1
        assert (await _file(session_factory, file_id)).status == FileStatus.COMPLETED.value


class TestFailures:
    """Retry policy and terminal failures."""

    @pytest.mark.asyncio
    async def test_download_timeout_exhausts_retries(self, session_factory, ai_client):
        """Three timed-out downloads end in `failed` with a recorded error."""
        storage = SlowStorage(timeout=0.01)
        queue, worker = _pipeline(session_factory, ai_client, storage)
        file_id, _ = await _upload(session_factory, storage, queue, TEXT.encode())

        await worker.drain()

        file = await _file(session_factory, file_id)
        assert file.status == FileStatus.FAILED.value
        assert file.error_message
        assert storage.downloads == 3
        (job,) = await _jobs(session_factory, file_id)
        assert job.status == JobStatus.FAILED.value
        assert job.attempts == 3
        assert await _chunks(session_factory, file_id) == []

    @pytest.mark.asyncio
    async def test_transient_error_then_success(self, session_factory, ai_client, storage):
        queue, worker = _pipeline(session_factory, ai_client, storage)
        file_id, _ = await _upload(session_factory, storage, queue, TEXT.encode())
        calls = []

        async def flaky(locator):
            calls.append(locator)
            if len(calls) == 1:
                raise TransientProviderError("connection reset")

        storage.before_download = flaky
        await worker.drain()

        assert (await _file(session_factory, file_id)).status == FileStatus.COMPLETED.value
        assert (await _jobs(session_factory, file_id))[0].attempts == 2

    @pytest.mark.asyncio
    async def test_malformed_document_not_retried(self, session_factory, ai_client, storage):
        queue, worker = _pipeline(session_factory, ai_client, storage)
        file_id, _ = await _upload(
            session_factory, storage, queue, b"definitely not a pdf", "application/pdf", "broken.pdf"
        )

        await worker.drain()

        file = await _file(session_factory, file_id)
        assert file.status == FileStatus.FAILED.value
        assert "PDF" in file.error_message
        assert storage.downloads == 1
        assert ai_client.complete_calls == []

    @pytest.mark.asyncio
    async def test_missing_file_record_fails_job(self, session_factory, ai_client, storage):
        queue, worker = _pipeline(session_factory, ai_client, storage)

        with pytest.raises(FileGone):
            await worker.orchestrator.process(str(uuid.uuid4()), str(uuid.uuid4()))

        ghost = ClaimedJob(id=str(uuid.uuid4()), file_id=str(uuid.uuid4()), user_id="u", attempts=1, max_attempts=3)
        assert await worker.orchestrator.run_job(ghost, queue) is None
        assert storage.downloads == 0

    @pytest.mark.asyncio
    async def test_provider_detail_not_shown_on_file(self, session_factory, storage):
        """The file record carries the client-safe message, never the provider body."""

        class RejectingClient(FakeAIClient):
            async def complete(self, prompt, image=None, image_media_type="image/jpeg"):
                raise PermanentProviderError("Error code: 401 - {'error': 'invalid key sk-live-123'}")

        queue, worker = _pipeline(session_factory, RejectingClient(), storage)
        file_id, _ = await _upload(session_factory, storage, queue, TEXT.encode())

        await worker.drain()

        file = await _file(session_factory, file_id)
        assert file.status == FileStatus.FAILED.value
        assert file.error_message == PermanentProviderError.public_message
        assert "sk-live-123" not in file.error_message

    @pytest.mark.asyncio
    async def test_unreadable_media_type_fails_before_download(self, session_factory, ai_client, storage):
        queue, worker = _pipeline(session_factory, ai_client, storage)
        user_id = str(uuid.uuid4())
        async with session_factory() as db:
            file = await FileRepository(db).create(
                user_id, "blob.bin", "application/octet-stream", 4, f"{user_id}/blob.bin"
            )
            file_id = file.id
            await db.commit()

        with pytest.raises(UnsupportedMediaType):
            await worker.orchestrator.process(file_id, user_id)
        assert storage.downloads == 0


class TestDeletionDuringProcessing:
    """The file disappears while its job is running."""

    @pytest.mark.asyncio
    async def test_delete_during_analysis(self, session_factory, storage):
        """The worker does not crash and writes no chunks for the deleted file."""
        holder = {}

        class DeletingClient(FakeAIClient):
            async def complete(self, prompt, image=None, image_media_type="image/jpeg"):
                async with session_factory() as db:
                    await FileService(db, storage, holder["queue"]).delete(holder["file_id"], holder["user_id"])
                return await super().complete(prompt, image, image_media_type)

        ai_client = DeletingClient()
        queue, worker = _pipeline(session_factory, ai_client, storage)
        file_id, user_id = await _upload(session_factory, storage, queue, TEXT.encode())
        holder.update(queue=queue, file_id=file_id, user_id=user_id)

        assert await worker.drain() == 1

        assert await _file(session_factory, file_id) is None
        assert await _chunks(session_factory, file_id) == []
        assert await _jobs(session_factory, file_id) == []
        assert ai_client.embed_calls == []
        assert await queue.claim_next() is None

    @pytest.mark.asyncio
    async def test_delete_before_download(self, session_factory, ai_client, storage):
        queue, worker = _pipeline(session_factory, ai_client, storage)
        file_id, user_id = await _upload(session_factory, storage, queue, TEXT.encode())

        async def delete_first(locator):
            async with session_factory() as db:
                await FileService(db, storage, queue).delete(file_id, user_id)

        storage.before_download = delete_first
        await worker.drain()

        assert await _file(session_factory, file_id) is None
        assert await _chunks(session_factory, file_id) == []
        assert ai_client.complete_calls == []


class TestKnowledgeText:
    def test_prefers_extracted_text(self):
        analysis = AnalysisResult(summary="s")
        assert knowledge_text("body", analysis) == "body"

    def test_falls_back_to_analysis(self):
        analysis = AnalysisResult(summary="About cats", key_points=["cats sleep"])
        assert knowledge_text(None, analysis) == analysis.as_text()
        assert knowledge_text("   ", analysis) == analysis.as_text()
