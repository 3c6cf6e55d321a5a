"""
Centralized logging system for NovelForge.

Every message goes to stdlib logging and to an in-memory buffer. The queue
admin endpoints read the buffer: recent logs across the pipeline, and the
history of a single job (entries whose metadata names its ``job_id``).
"""

import logging
from collections import deque
from datetime import datetime, timezone
from enum import Enum
from threading import Lock
from typing import Any, Dict, List, Optional


class LogLevel(str, Enum):
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class LogEntry:
    """One buffered message, tagged with the job it concerns (if any)."""

    def __init__(
        self,
        level: LogLevel,
        message: str,
        source: str = "system",
        metadata: Optional[Dict[str, Any]] = None
    ):
        self.timestamp = datetime.now(timezone.utc)
        self.level = level
        self.message = message
        self.source = source
        self.metadata = metadata or {}
        self.job_id: Optional[str] = self.metadata.get("job_id")

    def matches(
        self,
        level: Optional[LogLevel] = None,
        source: Optional[str] = None,
        job_id: Optional[str] = None
    ) -> bool:
        if level and self.level != level:
            return False
        if source and self.source != source:
            return False
        if job_id and self.job_id != job_id:
            return False
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "level": self.level.value,
            "message": self.message,
            "source": self.source,
            "job_id": self.job_id,
            "metadata": self.metadata
        }


class LogBuffer:
    """Bounded, thread-safe buffer of the most recent log entries."""

    def __init__(self, max_size: int = 1000):
        self._buffer: deque = deque(maxlen=max_size)
        self._lock = Lock()

    def add(self, entry: LogEntry):
        with self._lock:
            self._buffer.append(entry)

    def _snapshot(self) -> List[LogEntry]:
        with self._lock:
            return list(self._buffer)

    def get_recent(
        self,
        limit: int = 100,
        level: Optional[LogLevel] = None,
        source: Optional[str] = None,
        job_id: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Most recent entries first, optionally filtered."""
        entries = [e for e in reversed(self._snapshot()) if e.matches(level, source, job_id)]
        return [e.to_dict() for e in entries[:limit]]

    def get_job_history(self, job_id: str) -> List[Dict[str, Any]]:
        """Everything still buffered about one job, oldest first."""
        return [e.to_dict() for e in self._snapshot() if e.job_id == job_id]

    def get_stats(self) -> Dict[str, Any]:
        entries = self._snapshot()
        by_level: Dict[str, int] = {}
        by_source: Dict[str, int] = {}
        jobs = set()

        for entry in entries:
            by_level[entry.level.value] = by_level.get(entry.level.value, 0) + 1
            by_source[entry.source] = by_source.get(entry.source, 0) + 1
            if entry.job_id:
                jobs.add(entry.job_id)

        return {
            "total": len(entries),
            "by_level": by_level,
            "by_source": by_source,
            "jobs_seen": len(jobs)
        }

    def clear(self):
        with self._lock:
            self._buffer.clear()


# Global log buffer instance
_log_buffer = LogBuffer()


def get_log_buffer() -> LogBuffer:
    """Get the global log buffer instance."""
    return _log_buffer


class AppLogger:
    """
    Logger bound to a pipeline component.

    Keyword arguments become entry metadata; pass ``job_id=`` to attach the
    message to a job's history.
    """

    def __init__(self, source: str):
        self.source = source
        self._logger = logging.getLogger(f"novelforge.{source}")

    def _log(self, level: LogLevel, message: str, metadata: Dict[str, Any]):
        _log_buffer.add(LogEntry(level, message, self.source, metadata))

        extra_msg = f" | {metadata}" if metadata else ""
        self._logger.log(getattr(logging, level.value.upper()), f"{message}{extra_msg}")

    def debug(self, message: str, **metadata):
        self._log(LogLevel.DEBUG, message, metadata)

    def info(self, message: str, **metadata):
        self._log(LogLevel.INFO, message, metadata)

    def warning(self, message: str, **metadata):
        self._log(LogLevel.WARNING, message, metadata)

    def error(self, message: str, **metadata):
        self._log(LogLevel.ERROR, message, metadata)

    def critical(self, message: str, **metadata):
        self._log(LogLevel.CRITICAL, message, metadata)


def get_logger(source: str) -> AppLogger:
    """Get an AppLogger for a specific source/module."""
    return AppLogger(source)


def configure_logging(level: str = "INFO"):
    """Configure stdlib logging for entry points (worker process, API)."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    # The scheduler warns on every skipped tick while a long job runs
    logging.getLogger("apscheduler.executors.default").setLevel(logging.ERROR)


# Pre-configured loggers for the pipeline components
job_logger = AppLogger("queue_worker")
checkpoint_logger = AppLogger("checkpoint")
rate_limit_logger = AppLogger("rate_limit")
generation_logger = AppLogger("generation")
api_logger = AppLogger("api")
