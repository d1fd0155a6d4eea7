# docmind/services/job_queue.py
"""
Durable file-processing queue on the `processing_jobs` table.

A file has at most one queued and at most one running job; both limits are
enforced by partial unique indexes, so two workers (or two processes) racing
on the same file resolve through an IntegrityError instead of a lock.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from docmind.core.config import settings
from docmind.db.base import utcnow
from docmind.models import FileStatus, JobStatus, ProcessingJob
from docmind.repositories.file_repository import FileRepository

logger = logging.getLogger(__name__)

CLAIM_BATCH = 10
MAX_ERROR_LENGTH = 2000


@dataclass(frozen=True)
class ClaimedJob:
    id: str
    file_id: str
    user_id: str
    attempts: int
    max_attempts: int


def _error_text(error) -> str:
    text = str(error) or type(error).__name__
    return text[:MAX_ERROR_LENGTH]


class JobQueue:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        max_attempts: int = settings.JOB_MAX_ATTEMPTS,
        backoff_seconds: float = settings.JOB_BACKOFF_SECONDS,
        lease_seconds: int = settings.JOB_LEASE_SECONDS,
    ):
        self.session_factory = session_factory
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.lease_seconds = lease_seconds

    def backoff_for(self, attempts: int) -> float:
        return self.backoff_seconds * (2 ** max(attempts - 1, 0))

    async def enqueue(self, session: AsyncSession, file_id: str, user_id: str) -> ProcessingJob:
        """
        Add a queued job inside the caller's transaction; the caller commits.

        Returns the already-queued job when there is one.
        """
        existing = await session.execute(
            select(ProcessingJob).where(
                ProcessingJob.file_id == file_id,
                ProcessingJob.status == JobStatus.QUEUED.value,
            )
        )
        job = existing.scalar_one_or_none()
        if job is not None:
            return job

        job = ProcessingJob(
            file_id=file_id,
            user_id=user_id,
            status=JobStatus.QUEUED.value,
            attempts=0,
            max_attempts=self.max_attempts,
            run_after=utcnow(),
        )
        session.add(job)
        return job

    async def claim_next(self) -> Optional[ClaimedJob]:
        """Move the oldest due queued job to running, skipping files that already have a running job."""
        async with self.session_factory() as session:
            now = utcnow()
            candidates = (
                await session.execute(
                    select(ProcessingJob.id)
                    .where(
                        ProcessingJob.status == JobStatus.QUEUED.value,
                        ProcessingJob.run_after <= now,
                    )
                    .order_by(ProcessingJob.run_after.asc(), ProcessingJob.created_at.asc())
                    .limit(CLAIM_BATCH)
                )
            ).scalars().all()

            for job_id in candidates:
                try:
                    result = await session.execute(
                        update(ProcessingJob)
                        .where(
                            ProcessingJob.id == job_id,
                            ProcessingJob.status == JobStatus.QUEUED.value,
                        )
                        .values(
                            status=JobStatus.RUNNING.value,
                            attempts=ProcessingJob.attempts + 1,
                            locked_at=now,
                            updated_at=now,
                        )
                    )
                    await session.commit()
                except IntegrityError:
                    # another job for this file is running
                    await session.rollback()
                    continue
                if result.rowcount != 1:
                    continue

                job = await session.get(ProcessingJob, job_id)
                if job is None:
                    continue
                logger.debug("Claimed job %s for file %s (attempt %d)", job.id, job.file_id, job.attempts)
                return ClaimedJob(
                    id=job.id,
                    file_id=job.file_id,
                    user_id=job.user_id,
                    attempts=job.attempts,
                    max_attempts=job.max_attempts,
                )
        return None

    @staticmethod
    async def _mark(
        session: AsyncSession,
        job_id: str,
        status: JobStatus,
        error: Optional[str] = None,
        attempts: Optional[int] = None,
    ) -> bool:
        """
        Set a job's status. With `attempts`, only the run that holds the
        lease for that attempt may do so.
        """
        conditions = [ProcessingJob.id == job_id]
        if attempts is not None:
            conditions += [
                ProcessingJob.status == JobStatus.RUNNING.value,
                ProcessingJob.attempts == attempts,
            ]
        result = await session.execute(
            update(ProcessingJob)
            .where(*conditions)
            .values(status=status.value, locked_at=None, last_error=error, updated_at=utcnow())
        )
        await session.commit()
        # zero rows: the job was deleted with its file, or another run owns it
        return result.rowcount > 0

    async def _finish(self, job: ClaimedJob, status: JobStatus, error: Optional[str] = None) -> bool:
        async with self.session_factory() as session:
            owned = await self._mark(session, job.id, status, error, attempts=job.attempts)
        if not owned:
            logger.warning(
                "Job %s attempt %d no longer holds its lease; %s not recorded", job.id, job.attempts, status.value
            )
        return owned

    async def complete(self, job: ClaimedJob) -> bool:
        return await self._finish(job, JobStatus.COMPLETED)

    async def fail(self, job: ClaimedJob, error) -> bool:
        """Mark `job` failed. Returns False when this run no longer owns it."""
        return await self._finish(job, JobStatus.FAILED, _error_text(error))

    async def heartbeat(self, job: ClaimedJob) -> bool:
        """Renew the lease of a running job. False means the lease was lost."""
        async with self.session_factory() as session:
            now = utcnow()
            result = await session.execute(
                update(ProcessingJob)
                .where(
                    ProcessingJob.id == job.id,
                    ProcessingJob.status == JobStatus.RUNNING.value,
                    ProcessingJob.attempts == job.attempts,
                )
                .values(locked_at=now, updated_at=now)
            )
            await session.commit()
        return result.rowcount > 0

    async def retry_or_fail(self, job: ClaimedJob, error) -> bool:
        """
        Reschedule `job` with exponential backoff, or mark it failed when its
        attempts are used up. Returns False only when this run must mark the
        file failed; a job taken over by another run counts as rescheduled.
        """
        message = _error_text(error)
        if job.attempts >= job.max_attempts:
            if not await self.fail(job, message):
                return True
            logger.warning("Job %s for file %s failed after %d attempts", job.id, job.file_id, job.attempts)
            return False

        delay = self.backoff_for(job.attempts)
        async with self.session_factory() as session:
            try:
                result = await session.execute(
                    update(ProcessingJob)
                    .where(
                        ProcessingJob.id == job.id,
                        ProcessingJob.status == JobStatus.RUNNING.value,
                        ProcessingJob.attempts == job.attempts,
                    )
                    .values(
                        status=JobStatus.QUEUED.value,
                        locked_at=None,
                        last_error=message,
                        run_after=utcnow() + timedelta(seconds=delay),
                        updated_at=utcnow(),
                    )
                )
                await session.commit()
            except IntegrityError:
                # a fresh job (reanalyze) is already queued for the file
                await session.rollback()
                await self._mark(
                    session, job.id, JobStatus.FAILED, "superseded by a newer job", attempts=job.attempts
                )
                return True

        if result.rowcount == 0:
            # deleted with its file, or reclaimed after the lease expired
            return True
        logger.info(
            "Job %s for file %s rescheduled in %.1fs (attempt %d/%d)",
            job.id, job.file_id, delay, job.attempts, job.max_attempts,
        )
        return True

    async def reconcile(self) -> Dict[str, int]:
        """
        Requeue running jobs whose lease expired and enqueue jobs for pending
        files that have none.
        """
        requeued = expired_failed = orphans = 0
        cutoff = utcnow() - timedelta(seconds=self.lease_seconds)

        async with self.session_factory() as session:
            stale = (
                await session.execute(
                    select(
                        ProcessingJob.id,
                        ProcessingJob.file_id,
                        ProcessingJob.attempts,
                        ProcessingJob.max_attempts,
                    ).where(
                        ProcessingJob.status == JobStatus.RUNNING.value,
                        ProcessingJob.locked_at < cutoff,
                    )
                )
            ).all()

            files = FileRepository(session)
            for row in stale:
                if row.attempts >= row.max_attempts:
                    if await self._mark(
                        session, row.id, JobStatus.FAILED, "Processing lease expired", attempts=row.attempts
                    ):
                        await files.update_status(row.file_id, FileStatus.FAILED, "Processing was interrupted")
                        expired_failed += 1
                    continue
                try:
                    await session.execute(
                        update(ProcessingJob)
                        .where(
                            ProcessingJob.id == row.id,
                            ProcessingJob.status == JobStatus.RUNNING.value,
                            ProcessingJob.locked_at < cutoff,
                        )
                        .values(
                            status=JobStatus.QUEUED.value,
                            locked_at=None,
                            run_after=utcnow(),
                            updated_at=utcnow(),
                        )
                    )
                    await session.commit()
                    requeued += 1
                except IntegrityError:
                    await session.rollback()
                    await self._mark(
                        session, row.id, JobStatus.FAILED, "superseded by a newer job", attempts=row.attempts
                    )

            orphaned = [(f.id, f.user_id) for f in await files.pending_without_jobs()]
            for file_id, user_id in orphaned:
                await self.enqueue(session, file_id, user_id)
                try:
                    await session.commit()
                    orphans += 1
                except IntegrityError:
                    await session.rollback()

        if requeued or expired_failed or orphans:
            logger.info(
                "Reconcile: %d stale jobs requeued, %d failed, %d orphaned uploads enqueued",
                requeued, expired_failed, orphans,
            )
        return {"requeued": requeued, "failed": expired_failed, "orphans": orphans}
