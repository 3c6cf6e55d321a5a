"""
Tracks the upstream completion API's usage window.

Claude subscriptions enforce a rolling window: the first request opens a
session, and the limit resets a fixed time after that. Knowing when the
window opened lets the rate-limit handler sleep exactly until the reset.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from novelforge.config import config
from novelforge.jobs.database import JobDatabase
from novelforge.utils.logging import rate_limit_logger as logger


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SessionInfo:
    is_active: bool
    session_started_at: Optional[datetime]
    session_resets_at: Optional[datetime]
    requests_this_session: int


class SessionTracker:
    """
    Reads and writes the single session_tracking row.

    Writers (the generation service) call record_usage() before every
    completion request; the rate-limit handler reads the reset time.
    """

    def __init__(
        self,
        job_db: JobDatabase,
        session_duration: Optional[timedelta] = None,
        clock: Callable[[], datetime] = _utc_now
    ):
        self.job_db = job_db
        self.session_duration = session_duration or timedelta(
            seconds=config.session_duration_seconds
        )
        self._clock = clock

    async def get_current_session(self) -> Optional[SessionInfo]:
        """Return the active session, or None if no session is open"""
        row = await self.job_db.get_session_row()
        if not row or not row["is_active"]:
            return None

        return SessionInfo(
            is_active=True,
            session_started_at=_parse(row["session_started_at"]),
            session_resets_at=_parse(row["session_resets_at"]),
            requests_this_session=row["requests_this_session"],
        )

    async def get_time_until_reset(self) -> int:
        """Milliseconds until the window resets. 0 if no session or already past."""
        session = await self.get_current_session()
        if session is None or session.session_resets_at is None:
            return 0

        remaining = session.session_resets_at - self._clock()
        return max(0, int(remaining.total_seconds() * 1000))

    async def record_usage(self):
        """Count one completion request, opening a new session when needed."""
        session = await self.get_current_session()
        now = self._clock()

        if session is None or (session.session_resets_at and session.session_resets_at <= now):
            resets_at = now + self.session_duration
            await self.job_db.start_session(now.isoformat(), resets_at.isoformat())
            logger.info("Usage session started", resets_at=resets_at.isoformat())
            return

        await self.job_db.increment_session_requests()

    async def clear_session(self):
        await self.job_db.clear_session()
        logger.info("Usage session cleared")

    async def get_session_stats(self) -> Dict[str, Any]:
        session = await self.get_current_session()
        if session is None:
            return {
                "is_active": False,
                "requests_this_session": 0,
                "session_started_at": None,
                "session_resets_at": None,
                "time_remaining_seconds": 0,
            }

        remaining_ms = await self.get_time_until_reset()
        return {
            "is_active": True,
            "requests_this_session": session.requests_this_session,
            "session_started_at": session.session_started_at.isoformat() if session.session_started_at else None,
            "session_resets_at": session.session_resets_at.isoformat() if session.session_resets_at else None,
            "time_remaining_seconds": remaining_ms // 1000,
        }


def _parse(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
