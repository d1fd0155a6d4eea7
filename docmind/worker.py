# docmind/worker.py
"""
Job worker pool.

Runs WORKER_CONCURRENCY loops that claim jobs from the processing queue and
run them through the analysis orchestrator, plus a periodic reconcile sweep.

    python -m docmind.worker
"""

import asyncio
import logging
import signal
from collections import defaultdict
from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from docmind.core.config import settings
from docmind.core.logging import configure_logging
from docmind.db.init_db import init_db
from docmind.db.session import AsyncSessionLocal, engine
from docmind.services.ai_client import AIClient
from docmind.services.analyzer import Analyzer
from docmind.services.embedding_service import EmbeddingService
from docmind.services.job_queue import ClaimedJob, JobQueue
from docmind.services.orchestrator import AnalysisOrchestrator
from docmind.services.storage import StorageBackend, build_storage
from docmind.utils.text_chunker import Chunker

logger = logging.getLogger(__name__)

RECONCILE_INTERVAL_SECONDS = 60.0


def build_orchestrator(
    session_factory: async_sessionmaker[AsyncSession],
    ai_client: Optional[AIClient] = None,
    storage: Optional[StorageBackend] = None,
) -> AnalysisOrchestrator:
    ai_client = ai_client or AIClient()
    return AnalysisOrchestrator(
        session_factory=session_factory,
        storage=storage or build_storage(),
        analyzer=Analyzer(ai_client),
        embedding_service=EmbeddingService(ai_client),
        chunker=Chunker(settings.CHUNK_SIZE, settings.CHUNK_OVERLAP),
    )


class JobWorker:
    """
    Bounded pool of asyncio loops pulling from the job queue.

    Within one process a per-file lock keeps two loops off the same file even
    if the queue hands out a second job for it; across processes the queue's
    unique running-job index does the same.
    """

    def __init__(
        self,
        queue: JobQueue,
        orchestrator: AnalysisOrchestrator,
        concurrency: int = settings.WORKER_CONCURRENCY,
        poll_seconds: float = settings.JOB_POLL_SECONDS,
        reconcile_seconds: float = RECONCILE_INTERVAL_SECONDS,
        heartbeat_seconds: Optional[float] = None,
    ):
        self.queue = queue
        self.orchestrator = orchestrator
        self.concurrency = max(1, concurrency)
        self.poll_seconds = poll_seconds
        self.reconcile_seconds = reconcile_seconds
        if heartbeat_seconds is None:
            heartbeat_seconds = max(queue.lease_seconds / 3.0, 1.0)
        self.heartbeat_seconds = heartbeat_seconds
        self._file_locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = defaultdict(int)
        self._tasks: List[asyncio.Task] = []
        self._running = False
        self._wakeup = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._running

    def notify(self) -> None:
        """Wake idle loops early, e.g. right after an upload enqueued a job."""
        self._wakeup.set()

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._tasks = [
            asyncio.create_task(self._loop(i), name=f"docmind-worker-{i}")
            for i in range(self.concurrency)
        ]
        self._tasks.append(asyncio.create_task(self._reconcile_loop(), name="docmind-reconcile"))
        logger.info("Job worker started with %d concurrent loops", self.concurrency)

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        self._wakeup.set()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Job worker stopped")

    async def run_once(self) -> bool:
        """Claim and run a single job. Returns False when nothing was due."""
        job = await self.queue.claim_next()
        if job is None:
            return False
        await self._run(job)
        return True

    async def drain(self) -> int:
        """Run due jobs until the queue has none left; used by tests and one-off runs."""
        count = 0
        while await self.run_once():
            count += 1
        return count

    async def _run(self, job: ClaimedJob) -> None:
        lock = self._file_locks.setdefault(job.file_id, asyncio.Lock())
        self._lock_users[job.file_id] += 1
        try:
            async with lock:
                logger.info("Running job %s for file %s (attempt %d)", job.id, job.file_id, job.attempts)
                work = asyncio.ensure_future(self.orchestrator.run_job(job, self.queue))
                lease = asyncio.ensure_future(self._keep_lease(job, work))
                try:
                    await work
                except asyncio.CancelledError:
                    if not (lease.done() and not lease.cancelled() and lease.result()):
                        raise
                    logger.warning("Job %s for file %s cancelled after losing its lease", job.id, job.file_id)
                finally:
                    lease.cancel()
                    await asyncio.gather(lease, return_exceptions=True)
        finally:
            self._lock_users[job.file_id] -= 1
            if self._lock_users[job.file_id] == 0:
                del self._lock_users[job.file_id]
                self._file_locks.pop(job.file_id, None)

    async def _keep_lease(self, job: ClaimedJob, work: "asyncio.Future") -> bool:
        """Renew the lease until `work` finishes. Returns True if the lease was lost."""
        while not work.done():
            await asyncio.sleep(self.heartbeat_seconds)
            if work.done():
                break
            try:
                owned = await self.queue.heartbeat(job)
            except SQLAlchemyError:
                logger.exception("Lease renewal failed for job %s", job.id)
                continue
            if not owned:
                work.cancel()
                return True
        return False

    async def _idle(self) -> None:
        try:
            await asyncio.wait_for(self._wakeup.wait(), timeout=self.poll_seconds)
        except asyncio.TimeoutError:
            pass
        self._wakeup.clear()

    async def _loop(self, index: int) -> None:
        while self._running:
            try:
                if not await self.run_once():
                    await self._idle()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Worker loop %d: unexpected error", index)
                await asyncio.sleep(self.poll_seconds)

    async def _reconcile_loop(self) -> None:
        while self._running:
            try:
                await self.queue.reconcile()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Reconcile sweep failed")
            await asyncio.sleep(self.reconcile_seconds)


def build_worker(session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal) -> JobWorker:
    return JobWorker(JobQueue(session_factory), build_orchestrator(session_factory))


async def main() -> None:
    configure_logging()
    await init_db(engine)
    worker = build_worker()

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            pass

    await worker.start()
    try:
        await stop.wait()
    finally:
        await worker.stop()
        await engine.dispose()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
