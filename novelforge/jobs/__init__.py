"""
Durable job pipeline for chapter generation and editorial passes.

Components:
- JobDatabase: SQLite-backed job storage (jobs, session row, target locks)
- CheckpointManager: per-job progress markers for crash recovery
- SessionTracker / RateLimitHandler: pause-and-resume on upstream limits
- StageHandlers: one handler per job type
- JobQueue: High-level queue interface
- QueueWorker: Background worker that processes jobs

Usage:
    # In API endpoint - queue a chapter
    from novelforge.jobs import get_queue
    queue = await get_queue()
    job_ids = await queue.queue_chapter_workflow(chapter_id)

    # In FastAPI startup - start worker
    from novelforge.jobs import start_queue_worker, stop_queue_worker
    await start_queue_worker()

    # Check job status
    status = await queue.get_status(job_id)
"""

from novelforge.jobs.models import (
    JobStatus,
    JobType,
    Job,
    Checkpoint,
    QueueStats,
    FollowUpJob,
    StageResult,
    RecoveryState,
    CHAPTER_WORKFLOW,
)
from novelforge.jobs.errors import (
    RateLimitError,
    UnknownJobTypeError,
    CheckpointDecodeError,
    format_error_details,
)
from novelforge.jobs.database import JobDatabase
from novelforge.jobs.checkpoint import CheckpointManager
from novelforge.jobs.session_tracker import SessionTracker, SessionInfo
from novelforge.jobs.rate_limit import RateLimitHandler
from novelforge.jobs.stages import StageHandlers
from novelforge.jobs.queue import JobQueue, get_queue, close_queue
from novelforge.jobs.worker import (
    QueueWorker,
    create_queue_worker,
    start_queue_worker,
    stop_queue_worker,
    get_worker
)

__all__ = [
    # Models
    "JobStatus",
    "JobType",
    "Job",
    "Checkpoint",
    "QueueStats",
    "FollowUpJob",
    "StageResult",
    "RecoveryState",
    "CHAPTER_WORKFLOW",

    # Errors
    "RateLimitError",
    "UnknownJobTypeError",
    "CheckpointDecodeError",
    "format_error_details",

    # Storage and recovery
    "JobDatabase",
    "CheckpointManager",
    "SessionTracker",
    "SessionInfo",
    "RateLimitHandler",
    "StageHandlers",

    # Queue
    "JobQueue",
    "get_queue",
    "close_queue",

    # Worker
    "QueueWorker",
    "create_queue_worker",
    "start_queue_worker",
    "stop_queue_worker",
    "get_worker",
]
