"""
Pause-and-resume handling for upstream rate limits.

When a stage handler hits a rate limit or overload signal, the job is
paused and the worker sleeps until the usage session resets, then every
paused job goes back to pending in one step. The limit is global, so all
paused jobs resume together.
"""

import asyncio
from collections.abc import Mapping
from typing import Any, Awaitable, Callable, Optional

from novelforge.config import config
from novelforge.jobs.database import JobDatabase
from novelforge.jobs.errors import RateLimitError
from novelforge.jobs.models import Job
from novelforge.jobs.session_tracker import SessionTracker
from novelforge.utils.logging import rate_limit_logger as logger


RATE_LIMIT_STATUS_CODES = (429, 529)
RATE_LIMIT_ERROR_TYPES = ("rate_limit_error", "overloaded_error")
RATE_LIMIT_PHRASES = (
    "rate limit",
    "rate_limit",
    "too many requests",
    "overloaded",
    "too fast",
)


class RateLimitHandler:
    """Pauses work on rate limits and resumes it when the session resets."""

    def __init__(
        self,
        job_db: JobDatabase,
        session_tracker: SessionTracker,
        fallback_wait_seconds: Optional[float] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ):
        self.job_db = job_db
        self.session_tracker = session_tracker
        self.fallback_wait_seconds = (
            fallback_wait_seconds
            if fallback_wait_seconds is not None
            else config.rate_limit_fallback_seconds
        )
        self._sleep = sleep

    @staticmethod
    def is_rate_limit_error(error: Optional[BaseException]) -> bool:
        """
        Recognize hard rate limits (429, rate_limit_error) and soft overload
        signals (529, "overloaded", "too fast"). Both mean: back off.
        """
        if error is None:
            return False

        if isinstance(error, RateLimitError):
            return True

        for attr in ("status_code", "status"):
            status = getattr(error, attr, None)
            if isinstance(status, int) and status in RATE_LIMIT_STATUS_CODES:
                return True

        for attr in ("body", "error"):
            if _error_type(getattr(error, attr, None)) in RATE_LIMIT_ERROR_TYPES:
                return True

        message = str(error).lower()
        return any(phrase in message for phrase in RATE_LIMIT_PHRASES)

    async def handle_rate_limit(self, job: Job):
        """
        Pause ``job``, wait until the session resets, then resume all paused jobs.

        Falls back to the fixed conservative wait when no session is being
        tracked, since then there is no reset time to trust.
        """
        await self.job_db.mark_paused(job.id)
        logger.info("Job paused on rate limit", job_id=job.id, type=job.type)

        session = await self.session_tracker.get_current_session()
        if session is None or session.session_resets_at is None:
            await self.handle_rate_limit_fallback()
            return

        wait_ms = await self.session_tracker.get_time_until_reset()

        if wait_ms == 0:
            logger.info("Session already reset, resuming immediately")
            await self.session_tracker.clear_session()
            await self.resume_all_paused()
            return

        logger.info(
            "Waiting for session reset",
            wait_minutes=round(wait_ms / 60000, 1),
            resets_at=session.session_resets_at.isoformat(),
        )

        await self._sleep(wait_ms / 1000)

        await self.session_tracker.clear_session()
        await self.resume_all_paused()

    async def handle_rate_limit_fallback(self):
        """Conservative fixed wait when session data is unavailable."""
        logger.warning(
            "Using conservative fallback wait",
            wait_minutes=round(self.fallback_wait_seconds / 60, 1),
        )

        await self._sleep(self.fallback_wait_seconds)

        await self.session_tracker.clear_session()
        await self.resume_all_paused()

    async def resume_all_paused(self) -> int:
        count = await self.job_db.resume_all_paused()
        logger.info("Paused jobs resumed", count=count)
        return count

    async def get_paused_jobs_count(self) -> int:
        return await self.job_db.count_paused()


def _error_type(value: Any) -> Optional[str]:
    """Pull ``type`` out of an SDK error body: {"type": ...} or {"error": {"type": ...}}."""
    if not isinstance(value, Mapping):
        return None
    nested = value.get("error")
    if isinstance(nested, Mapping) and nested.get("type"):
        return nested.get("type")
    return value.get("type")
