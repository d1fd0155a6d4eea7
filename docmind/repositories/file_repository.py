# docmind/repositories/file_repository.py
import uuid
from typing import Dict, Iterable, List, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from docmind.db.base import utcnow
from docmind.models import File, FileStatus, JobStatus, ProcessingJob


class FileRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(
        self,
        user_id: str,
        name: str,
        media_type: str,
        size_bytes: int,
        storage_path: str,
        metadata: Optional[dict] = None,
    ) -> File:
        """Add a pending file to the session; the caller commits."""
        file = File(
            id=str(uuid.uuid4()),
            user_id=user_id,
            name=name,
            media_type=media_type,
            size_bytes=size_bytes,
            storage_path=storage_path,
            status=FileStatus.PENDING.value,
            file_metadata=metadata or {},
        )
        self.db.add(file)
        await self.db.flush()
        return file

    async def get(self, file_id: str, user_id: Optional[str] = None) -> Optional[File]:
        query = select(File).where(File.id == file_id)
        if user_id is not None:
            query = query.where(File.user_id == user_id)
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def list_for_user(self, user_id: str, skip: int = 0, limit: int = 20) -> List[File]:
        result = await self.db.execute(
            select(File)
            .where(File.user_id == user_id)
            .order_by(File.created_at.desc())
            .offset(skip)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def names_for(self, user_id: str, file_ids: Iterable[str]) -> Dict[str, str]:
        ids = list(set(file_ids))
        if not ids:
            return {}
        result = await self.db.execute(
            select(File.id, File.name).where(File.user_id == user_id, File.id.in_(ids))
        )
        return {row.id: row.name for row in result}

    async def update_status(
        self,
        file_id: str,
        status: FileStatus,
        error_message: Optional[str] = None,
    ) -> bool:
        """Set the status; False when the file no longer exists."""
        result = await self.db.execute(
            update(File)
            .where(File.id == file_id)
            .values(status=status.value, error_message=error_message, updated_at=utcnow())
        )
        await self.db.commit()
        return result.rowcount > 0

    async def delete(self, file_id: str, user_id: str) -> Optional[File]:
        file = await self.get(file_id, user_id=user_id)
        if file is None:
            return None
        await self.db.execute(delete(File).where(File.id == file_id, File.user_id == user_id))
        await self.db.commit()
        return file

    async def pending_without_jobs(self, limit: int = 100) -> List[File]:
        """Pending files with no live job: uploads whose enqueue never happened."""
        live_job = (
            select(ProcessingJob.id)
            .where(
                ProcessingJob.file_id == File.id,
                ProcessingJob.status.in_([JobStatus.QUEUED.value, JobStatus.RUNNING.value]),
            )
            .exists()
        )
        result = await self.db.execute(
            select(File)
            .where(File.status == FileStatus.PENDING.value, ~live_job)
            .order_by(File.created_at.asc())
            .limit(limit)
        )
        return list(result.scalars().all())
