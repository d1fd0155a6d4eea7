# docmind/services/file_service.py
import logging
from typing import List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from docmind.core.config import settings
from docmind.core.errors import NotFound, PersistenceError, UnsupportedMediaType, ValidationError
from docmind.models import Analysis, File, FileStatus
from docmind.repositories.analysis_repository import AnalysisRepository
from docmind.repositories.file_repository import FileRepository
from docmind.services.job_queue import JobQueue
from docmind.services.storage import StorageBackend, build_locator, sanitize_file_name
from docmind.utils.content_extractor import normalize_media_type

logger = logging.getLogger(__name__)

ALLOWED_UPLOAD_TYPES = {
    "application/pdf",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "text/plain",
    "text/csv",
    "application/json",
    "image/jpeg",
    "image/png",
    "image/webp",
    "text/javascript",
    "text/typescript",
}


def validate_upload(name: str, media_type: str, size: int, max_size: int = settings.MAX_UPLOAD_SIZE_BYTES) -> str:
    """Check size and type; returns the sanitized file name."""
    if size <= 0:
        raise ValidationError("Empty file")
    if size > max_size:
        raise ValidationError(f"File size exceeds {max_size // (1024 * 1024)}MB limit")
    mt = normalize_media_type(media_type)
    if mt not in ALLOWED_UPLOAD_TYPES:
        raise UnsupportedMediaType(f"Unsupported file type: {media_type or 'unknown'}")
    return sanitize_file_name(name)


class FileService:
    def __init__(self, db: AsyncSession, storage: StorageBackend, queue: JobQueue):
        self.db = db
        self.storage = storage
        self.queue = queue
        self.files = FileRepository(db)

    async def upload(self, user_id: str, name: str, media_type: str, data: bytes) -> File:
        """
        Store the bytes, then create the pending file and its processing job
        in one commit. If the commit fails the stored object is removed again.
        """
        safe_name = validate_upload(name, media_type, len(data))
        media_type = normalize_media_type(media_type)

        locator = build_locator(user_id, safe_name)
        await self.storage.upload(data, locator)

        try:
            file = await self.files.create(
                user_id=user_id,
                name=safe_name,
                media_type=media_type,
                size_bytes=len(data),
                storage_path=locator,
                metadata={"original_name": name} if name != safe_name else {},
            )
            await self.queue.enqueue(self.db, file.id, user_id)
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.error("Could not record upload %s: %s", locator, exc)
            await self._discard_object(locator)
            raise PersistenceError(f"Could not record upload: {exc}") from exc

        logger.info("File %s uploaded by %s (%s, %d bytes), job queued", file.id, user_id, media_type, len(data))
        return file

    async def list_files(self, user_id: str, skip: int = 0, limit: int = 20) -> List[File]:
        return await self.files.list_for_user(user_id, skip=skip, limit=limit)

    async def get_file(self, file_id: str, user_id: str) -> File:
        file = await self.files.get(file_id, user_id=user_id)
        if file is None:
            raise NotFound("File not found")
        return file

    async def get_detail(self, file_id: str, user_id: str) -> Tuple[File, Optional[Analysis]]:
        file = await self.get_file(file_id, user_id)
        analysis = await AnalysisRepository(self.db).get_for_file(file_id)
        return file, analysis

    async def reanalyze(self, file_id: str, user_id: str) -> bool:
        """
        Queue a fresh run for the file. Returns False when a run was already
        waiting; a run in progress finishes first.
        """
        file = await self.get_file(file_id, user_id)
        job = await self.queue.enqueue(self.db, file.id, user_id)
        queued_now = job in self.db.new
        if file.status != FileStatus.PROCESSING.value:
            file.status = FileStatus.PENDING.value
            file.error_message = None
        try:
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            raise PersistenceError(f"Could not queue file {file_id}: {exc}") from exc
        logger.info("File %s queued for re-analysis", file_id)
        return queued_now

    async def delete(self, file_id: str, user_id: str) -> None:
        """Remove the record (analysis, chunks and jobs cascade) and the stored object."""
        try:
            file = await self.files.delete(file_id, user_id)
        except SQLAlchemyError as exc:
            await self.db.rollback()
            raise PersistenceError(f"Could not delete file {file_id}: {exc}") from exc
        if file is None:
            raise NotFound("File not found")
        await self._discard_object(file.storage_path)
        logger.info("File %s deleted (was %s)", file_id, file.status)

    async def _discard_object(self, locator: str) -> None:
        try:
            await self.storage.delete(locator)
        except NotFound:
            pass
        except Exception as exc:
            # the record is gone; an orphaned object only costs storage
            logger.warning("Could not delete stored object %s: %s", locator, exc)
