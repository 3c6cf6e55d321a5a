"""
Job queue manager.
Provides the high-level interface for creating and managing pipeline jobs.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from novelforge.config import config
from novelforge.jobs.database import JobDatabase
from novelforge.jobs.models import CHAPTER_WORKFLOW, Job, JobStatus, JobType, QueueStats
from novelforge.jobs.session_tracker import SessionTracker
from novelforge.utils.logging import job_logger as logger


class JobQueue:
    """
    High-level interface for the job queue.

    Usage:
        queue = JobQueue()
        await queue.initialize()

        # Queue the whole chain for a chapter
        job_ids = await queue.queue_chapter_workflow(chapter_id)

        # Check status
        job = await queue.get_job(job_ids["generate_chapter"])
    """

    def __init__(self, db_path: Optional[str] = None):
        self.db = JobDatabase(db_path or config.job_db_path)
        self.session_tracker = SessionTracker(self.db)
        self._initialized = False

    async def initialize(self):
        """Initialize the database connection"""
        if not self._initialized:
            await self.db.connect()
            self._initialized = True

    async def _ensure(self):
        if not self._initialized:
            await self.initialize()

    async def create_job(
        self,
        job_type: str,
        target_id: str,
        payload: Optional[Dict[str, Any]] = None
    ) -> str:
        """
        Queue a single job.

        Raises ValueError for a type no stage handler exists for.
        Returns the job_id.
        """
        await self._ensure()

        job_type = JobType(job_type)
        job_id = await self.db.create_job(job_type.value, target_id, payload=payload)
        logger.info("Job created", job_id=job_id, type=job_type.value, target_id=target_id)
        return job_id

    async def queue_chapter_workflow(self, chapter_id: str) -> Dict[str, str]:
        """
        Queue every stage of a chapter in pipeline order.

        Timestamps are spaced by one microsecond so FIFO order matches the
        chain even when the clock does not advance between inserts.
        Returns {job_type: job_id}.
        """
        await self._ensure()

        base = datetime.now(timezone.utc)
        job_ids: Dict[str, str] = {}
        for offset, job_type in enumerate(CHAPTER_WORKFLOW):
            created_at = (base + timedelta(microseconds=offset)).isoformat(timespec="microseconds")
            job_ids[job_type.value] = await self.db.create_job(
                job_type.value, chapter_id, created_at=created_at
            )

        logger.info("Chapter workflow queued", chapter_id=chapter_id, jobs=len(job_ids))
        return job_ids

    async def get_queue_stats(self) -> QueueStats:
        await self._ensure()
        return await self.db.get_stats()

    async def get_session_stats(self) -> Dict[str, Any]:
        await self._ensure()
        return await self.session_tracker.get_session_stats()

    async def get_job(self, job_id: str) -> Optional[Job]:
        await self._ensure()
        return await self.db.get_job_by_id(job_id)

    async def get_status(self, job_id: str) -> Optional[Dict[str, Any]]:
        """
        Get the current status of a job.

        Returns:
            Dict with status info or None if job not found
        """
        job = await self.get_job(job_id)
        if not job:
            return None

        return {
            "job_id": job.id,
            "type": job.type,
            "target_id": job.target_id,
            "status": job.status.value,
            "attempts": job.attempts,
            "error": job.error,
            "created_at": job.created_at,
            "started_at": job.started_at,
            "completed_at": job.completed_at,
        }

    async def list_jobs(
        self,
        status: Optional[JobStatus] = None,
        limit: int = 100,
        offset: int = 0
    ) -> List[Job]:
        await self._ensure()
        return await self.db.list_jobs(status=status, limit=limit, offset=offset)

    async def count_jobs(self, status: Optional[JobStatus] = None) -> int:
        await self._ensure()
        return await self.db.count_jobs(status)

    async def retry_job(self, job_id: str) -> bool:
        """Send a failed job back to pending. False when the job is not failed."""
        await self._ensure()
        retried = await self.db.retry_job(job_id)
        if retried:
            logger.info("Job queued for retry", job_id=job_id)
        return retried

    async def delete_job(self, job_id: str) -> bool:
        await self._ensure()
        return await self.db.delete_job(job_id)

    async def delete_jobs(
        self,
        status: Optional[JobStatus] = None,
        job_ids: Optional[List[str]] = None
    ) -> int:
        await self._ensure()
        deleted = await self.db.delete_jobs(status=status, job_ids=job_ids)
        logger.info(
            "Jobs deleted",
            count=deleted,
            status=status.value if status else None,
        )
        return deleted

    async def cleanup_old_jobs(self, days: int = 30) -> int:
        await self._ensure()
        return await self.db.cleanup_old_jobs(days)

    async def close(self):
        """Close the database connection"""
        if self._initialized:
            await self.db.close()
            self._initialized = False


# Global queue instance (initialized on first use)
_queue_instance: Optional[JobQueue] = None


async def get_queue(db_path: Optional[str] = None) -> JobQueue:
    """
    Get or create the global queue instance.

    This ensures we reuse the same database connection across the app.
    """
    global _queue_instance

    if _queue_instance is None:
        _queue_instance = JobQueue(db_path)
        await _queue_instance.initialize()

    return _queue_instance


async def close_queue():
    """Close the global queue instance"""
    global _queue_instance

    if _queue_instance is not None:
        await _queue_instance.close()
        _queue_instance = None
