"""
Background queue worker.
Polls the job table and runs one stage handler at a time.
"""

import asyncio
import time
from typing import Any, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from novelforge.config import config
from novelforge.jobs.checkpoint import CheckpointManager
from novelforge.jobs.database import JobDatabase
from novelforge.jobs.errors import UnknownJobTypeError, format_error_details
from novelforge.jobs.models import Job
from novelforge.jobs.rate_limit import RateLimitHandler
from novelforge.jobs.stages import StageHandlers
from novelforge.utils.logging import job_logger as logger


class QueueWorker:
    """
    Background worker that processes pipeline jobs.

    Polls the database every poll interval for the oldest pending job,
    dispatches it to its stage handler, and applies the retry / pause /
    fail policy around whatever the handler raises. Exactly one job runs
    at a time.
    """

    def __init__(
        self,
        job_db: JobDatabase,
        checkpoints: CheckpointManager,
        handlers: StageHandlers,
        rate_limit_handler: RateLimitHandler,
        poll_interval_seconds: Optional[float] = None,
        max_attempts: Optional[int] = None,
        shutdown_timeout_seconds: Optional[float] = None,
        resources: Optional[List[Any]] = None
    ):
        self.job_db = job_db
        self.checkpoints = checkpoints
        self.handlers = handlers
        self.rate_limit_handler = rate_limit_handler

        self.poll_interval = poll_interval_seconds or config.QUEUE_POLL_INTERVAL_SECONDS
        self.max_attempts = max_attempts or config.MAX_JOB_RETRY_ATTEMPTS
        self.shutdown_timeout = (
            shutdown_timeout_seconds
            if shutdown_timeout_seconds is not None
            else config.GRACEFUL_SHUTDOWN_TIMEOUT_SECONDS
        )

        # Stores opened for this worker, closed with it
        self._resources = list(resources or [])

        self.scheduler = AsyncIOScheduler()
        self._running = False
        self._is_processing = False  # Prevent concurrent job processing
        self._current_job_id: Optional[str] = None
        self._idle = asyncio.Event()
        self._idle.set()

    async def initialize(self):
        """Recover jobs a crashed process left behind"""
        stale = await self.job_db.recover_stale_jobs()
        if stale:
            logger.warning(
                "Recovered stale jobs",
                count=len(stale),
                job_ids=[job.id for job in stale],
            )

        # Nobody is waiting on these any more; the next pickup re-pauses
        # them if the limit still holds
        paused = await self.rate_limit_handler.get_paused_jobs_count()
        if paused:
            await self.rate_limit_handler.resume_all_paused()

        logger.info(
            "Queue worker initialized",
            poll_interval=self.poll_interval,
            max_attempts=self.max_attempts,
        )

    # =========================================================================
    # Polling
    # =========================================================================

    async def process_jobs(self):
        """
        One poll cycle.
        Called by the scheduler every poll_interval seconds.
        """
        if not self._running or self._is_processing:
            return

        try:
            await self.process_next_job()
        except Exception as e:
            # A broken tick must not stop the loop
            logger.error("Worker error", error=format_error_details(e))

    async def process_next_job(self) -> Optional[Job]:
        """Pick up and run the next eligible job. Returns it, or None on an idle tick."""
        self._is_processing = True
        self._idle.clear()
        try:
            job = await self.job_db.pickup_next()
            if job is None:
                return None

            self._current_job_id = job.id
            await self.execute_job(job)
            return job
        finally:
            self._is_processing = False
            self._current_job_id = None
            self._idle.set()

    async def execute_job(self, job: Job):
        """Run the stage handler for a job that is already marked running"""
        logger.info(
            "Processing job",
            job_id=job.id,
            type=job.type,
            target_id=job.target_id,
            attempt=job.attempts + 1,
        )

        try:
            handler = self.handlers.get_handler(job.type)
        except UnknownJobTypeError as e:
            # Retrying cannot fix a missing handler
            await self.job_db.mark_failed(job.id, job.attempts + 1, format_error_details(e))
            logger.error("Unknown job type", job_id=job.id, type=job.type)
            return

        recovery = self.checkpoints.restore_for_recovery(job)
        start_time = time.time()

        try:
            result = await handler(job, recovery)
            # Follow-ups inherit the parent's queue position so they run next
            follow_up_ids = await self.job_db.complete_job(
                job.id,
                result.follow_up_jobs,
                created_at=job.created_at,
            )
        except Exception as e:
            if self.rate_limit_handler.is_rate_limit_error(e):
                logger.warning("Rate limit hit, pausing queue", job_id=job.id, error=str(e))
                await self.rate_limit_handler.handle_rate_limit(job)
                return
            await self.retry_or_fail(job, e)
            return

        for follow_up, follow_up_id in zip(result.follow_up_jobs, follow_up_ids):
            logger.info(
                "Queued follow-up job",
                job_id=follow_up_id,
                type=follow_up.type.value,
                parent_job_id=job.id,
            )

        logger.info(
            "Job completed",
            job_id=job.id,
            type=job.type,
            duration_seconds=round(time.time() - start_time, 2),
        )

    async def retry_or_fail(self, job: Job, error: BaseException):
        """Count the failed attempt, then requeue or give up"""
        attempts = job.attempts + 1
        details = format_error_details(error)

        if attempts >= self.max_attempts:
            await self.job_db.mark_failed(job.id, attempts, details)
            logger.error(
                "Job failed permanently",
                job_id=job.id,
                type=job.type,
                attempts=attempts,
                error=str(error),
            )
        else:
            await self.job_db.mark_pending(job.id, attempts, details)
            logger.warning(
                "Job failed, will retry",
                job_id=job.id,
                type=job.type,
                attempts=attempts,
                max_attempts=self.max_attempts,
                error=str(error),
            )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self):
        """Start the background worker"""
        self._running = True
        self.scheduler.add_job(
            self.process_jobs,
            trigger=IntervalTrigger(seconds=self.poll_interval),
            id="queue_worker",
            name="Process pipeline jobs",
            replace_existing=True,
            max_instances=1,  # Prevent overlapping runs
            coalesce=True
        )

        self.scheduler.start()
        logger.info("Queue worker started", poll_interval=self.poll_interval)

    async def stop(self, timeout: Optional[float] = None) -> bool:
        """
        Stop polling and wait for the in-flight job.

        Returns True when the worker went idle, False when the timeout
        expired first. Shutting the scheduler down cancels whatever is
        still running; the job row stays 'running' and is recovered on
        the next start.
        """
        self._running = False
        timeout = self.shutdown_timeout if timeout is None else timeout

        if self.scheduler.running:
            self.scheduler.pause()

        finished = True
        if self._is_processing:
            logger.info(
                "Waiting for current job to finish",
                job_id=self._current_job_id,
                timeout_seconds=timeout,
            )
            try:
                await asyncio.wait_for(self._idle.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                finished = False
                logger.warning(
                    "Shutdown timeout reached, abandoning current job",
                    job_id=self._current_job_id,
                )

        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)

        logger.info("Queue worker stopped")
        return finished

    async def close(self):
        """Close the job database and every store opened for this worker"""
        await self.job_db.close()
        for resource in self._resources:
            await resource.close()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_processing(self) -> bool:
        """Check if worker is currently processing a job"""
        return self._is_processing

    @property
    def current_job(self) -> Optional[str]:
        """Get the ID of the currently processing job"""
        return self._current_job_id


async def create_queue_worker(
    job_db_path: Optional[str] = None,
    chapter_db_path: Optional[str] = None,
    poll_interval: Optional[float] = None
) -> QueueWorker:
    """Open the stores and wire the production collaborators into a worker."""
    # Import here to avoid circular imports
    from novelforge.agents import EditorialAgent, GenerationService, SpecialistAgent
    from novelforge.database import ChapterStore, MetricsStore
    from novelforge.jobs.session_tracker import SessionTracker

    job_db = JobDatabase(job_db_path or config.job_db_path)
    await job_db.connect()

    chapters = ChapterStore(chapter_db_path or config.chapter_db_path)
    await chapters.connect()

    metrics = MetricsStore(chapter_db_path or config.chapter_db_path)
    await metrics.connect()

    session_tracker = SessionTracker(job_db)
    generation = GenerationService(session_tracker)
    checkpoints = CheckpointManager(job_db)

    handlers = StageHandlers(
        checkpoints=checkpoints,
        chapters=chapters,
        metrics=metrics,
        generation=generation,
        editorial=EditorialAgent(generation),
        specialists=SpecialistAgent(generation),
    )

    worker = QueueWorker(
        job_db=job_db,
        checkpoints=checkpoints,
        handlers=handlers,
        rate_limit_handler=RateLimitHandler(job_db, session_tracker),
        poll_interval_seconds=poll_interval,
        resources=[chapters, metrics],
    )
    await worker.initialize()
    return worker


# Global worker instance
_worker_instance: Optional[QueueWorker] = None


async def start_queue_worker(
    job_db_path: Optional[str] = None,
    chapter_db_path: Optional[str] = None,
    poll_interval: Optional[float] = None
) -> QueueWorker:
    """
    Start the background queue worker.
    Call this during FastAPI startup.
    """
    global _worker_instance

    if _worker_instance is None:
        _worker_instance = await create_queue_worker(
            job_db_path=job_db_path,
            chapter_db_path=chapter_db_path,
            poll_interval=poll_interval
        )
        _worker_instance.start()

    return _worker_instance


async def stop_queue_worker(timeout: Optional[float] = None):
    """
    Stop the background queue worker.
    Call this during FastAPI shutdown.
    """
    global _worker_instance

    if _worker_instance is not None:
        await _worker_instance.stop(timeout)
        await _worker_instance.close()
        _worker_instance = None


def get_worker() -> Optional[QueueWorker]:
    """Get the current worker instance (for status checks)"""
    return _worker_instance
