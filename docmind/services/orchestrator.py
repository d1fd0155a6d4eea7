# docmind/services/orchestrator.py
"""
Analysis pipeline for one file.

    load -> processing -> download -> extract -> analyze -> persist analysis
         -> chunk + embed -> replace knowledge -> completed

`process` raises on failure; `run_job` turns the outcome into queue and file
status transitions. A file deleted while its job runs ends the job quietly:
nothing is retried and no chunks are written for it.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from docmind.core.errors import DocMindError, NotFound, UnsupportedMediaType, is_retryable
from docmind.models import FileStatus
from docmind.repositories.analysis_repository import AnalysisRepository
from docmind.repositories.file_repository import FileRepository
from docmind.repositories.knowledge_repository import KnowledgeRepository
from docmind.schemas.analysis import AnalysisResult
from docmind.schemas.knowledge import ChunkCreate
from docmind.services.analyzer import Analyzer, variant_for
from docmind.services.embedding_service import EmbeddingService
from docmind.services.job_queue import ClaimedJob, JobQueue
from docmind.services.storage import StorageBackend
from docmind.utils.content_extractor import extract_text, is_extractable, is_image
from docmind.utils.text_chunker import Chunker

logger = logging.getLogger(__name__)


class FileGone(NotFound):
    """The file record disappeared before or during processing."""


@dataclass
class ProcessingOutcome:
    file_id: str
    chunk_count: int
    degraded: bool


def knowledge_text(extracted: Optional[str], analysis: AnalysisResult) -> str:
    """Text that gets chunked: the extracted text, else the rendered analysis."""
    if extracted is not None and extracted.strip():
        return extracted
    return analysis.as_text()


def failure_message(exc: BaseException) -> str:
    """What the file record shows for a failed run; provider detail stays in the logs."""
    if isinstance(exc, DocMindError):
        return exc.client_message()
    return "Processing failed"


class AnalysisOrchestrator:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        storage: StorageBackend,
        analyzer: Analyzer,
        embedding_service: EmbeddingService,
        chunker: Chunker,
    ):
        self.session_factory = session_factory
        self.storage = storage
        self.analyzer = analyzer
        self.embedding_service = embedding_service
        self.chunker = chunker

    async def _file_exists(self, file_id: str) -> bool:
        async with self.session_factory() as db:
            return await FileRepository(db).get(file_id) is not None

    async def _build_chunks(self, user_id: str, file_id: str, text: str) -> List[ChunkCreate]:
        if not text.strip():
            return []
        pieces = self.chunker.chunk(text)
        vectors = await self.embedding_service.create_embeddings_for_chunks(pieces)
        return [
            ChunkCreate(
                user_id=user_id,
                file_id=file_id,
                chunk_index=index,
                content=piece,
                embedding=vector,
                metadata={"chunk_count": len(pieces)},
            )
            for index, (piece, vector) in enumerate(zip(pieces, vectors))
        ]

    async def process(self, file_id: str, user_id: str) -> ProcessingOutcome:
        async with self.session_factory() as db:
            files = FileRepository(db)

            file = await files.get(file_id, user_id=user_id)
            if file is None:
                raise FileGone(f"File {file_id} not found")
            name, media_type, locator = file.name, file.media_type, file.storage_path
            if not is_image(media_type) and not is_extractable(media_type):
                raise UnsupportedMediaType(f"Cannot process media type '{media_type}'")

            if not await files.update_status(file_id, FileStatus.PROCESSING):
                raise FileGone(f"File {file_id} was deleted")
            logger.info("File %s: processing (%s, %s)", file_id, name, media_type)

            data = await self.storage.download(locator)
            logger.debug("File %s: downloaded %d bytes", file_id, len(data))

            content: Union[str, bytes]
            extracted: Optional[str] = None
            if is_image(media_type):
                content = data
            else:
                extracted = extract_text(data, media_type)
                content = extracted

            result = await self.analyzer.analyze(content, media_type, file_name=name)
            variant = variant_for(media_type).value
            await AnalysisRepository(db).replace(file_id, result, variant, self.analyzer.model_name)
            logger.info("File %s: analysis stored (variant=%s, degraded=%s)", file_id, variant, result.degraded)

            text = knowledge_text(extracted, result)
            entries = await self._build_chunks(user_id, file_id, text)
            try:
                count = await KnowledgeRepository(db, self.embedding_service.dimensions).replace_for_file(
                    user_id, file_id, entries
                )
            except NotFound as exc:
                raise FileGone(str(exc)) from exc

            if not await files.update_status(file_id, FileStatus.COMPLETED):
                raise FileGone(f"File {file_id} was deleted")
            logger.info("File %s: completed with %d chunks", file_id, count)
            return ProcessingOutcome(file_id=file_id, chunk_count=count, degraded=result.degraded)

    async def _mark_failed(self, file_id: str, message: str) -> None:
        async with self.session_factory() as db:
            if not await FileRepository(db).update_status(file_id, FileStatus.FAILED, message):
                logger.info("File %s: gone before it could be marked failed", file_id)

    async def run_job(self, job: ClaimedJob, queue: JobQueue) -> Optional[ProcessingOutcome]:
        """Process one claimed job and record the outcome on the queue and the file."""
        try:
            outcome = await self.process(job.file_id, job.user_id)
        except FileGone as exc:
            logger.warning("File %s: %s; job %s ends without retry", job.file_id, exc, job.id)
            await queue.fail(job, exc)
            return None
        except Exception as exc:
            if not await self._file_exists(job.file_id):
                logger.warning("File %s deleted during processing (%s); job %s ends", job.file_id, exc, job.id)
                await queue.fail(job, exc)
                return None

            if is_retryable(exc):
                logger.warning(
                    "File %s: attempt %d/%d failed: %s", job.file_id, job.attempts, job.max_attempts, exc
                )
                if await queue.retry_or_fail(job, exc):
                    return None
            else:
                logger.exception("File %s: processing failed", job.file_id)
                if not await queue.fail(job, exc):
                    return None

            await self._mark_failed(job.file_id, failure_message(exc))
            logger.error("File %s: failed", job.file_id)
            return None

        if not await queue.complete(job):
            logger.warning("File %s: job %s finished after losing its lease", job.file_id, job.id)
        return outcome
