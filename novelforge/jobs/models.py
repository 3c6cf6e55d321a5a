"""
Data model for the job pipeline: job types, statuses, job records,
checkpoints and the values stage handlers hand back to the worker.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError

from novelforge.jobs.errors import CheckpointDecodeError


class JobStatus(str, Enum):
    """Status values for pipeline jobs"""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    PAUSED = "paused"
    FAILED = "failed"


class JobType(str, Enum):
    """Stage kinds. Each one maps to exactly one stage handler."""
    GENERATE_CHAPTER = "generate_chapter"
    DEV_EDIT = "dev_edit"
    AUTHOR_REVISION = "author_revision"
    LINE_EDIT = "line_edit"
    CONTINUITY_CHECK = "continuity_check"
    COPY_EDIT = "copy_edit"
    PROOFREAD = "proofread"
    SENSITIVITY_REVIEW = "sensitivity_review"
    RESEARCH_REVIEW = "research_review"
    BETA_READER_REVIEW = "beta_reader_review"
    OPENING_REVIEW = "opening_review"
    DIALOGUE_REVIEW = "dialogue_review"
    HOOK_REVIEW = "hook_review"
    GENERATE_SUMMARY = "generate_summary"
    UPDATE_STATES = "update_states"


# Order in which a chapter's jobs are enqueued. author_revision is absent:
# it is only ever created by dev_edit.
CHAPTER_WORKFLOW: List[JobType] = [
    JobType.GENERATE_CHAPTER,
    JobType.DEV_EDIT,
    JobType.LINE_EDIT,
    JobType.CONTINUITY_CHECK,
    JobType.COPY_EDIT,
    JobType.PROOFREAD,
    JobType.SENSITIVITY_REVIEW,
    JobType.RESEARCH_REVIEW,
    JobType.BETA_READER_REVIEW,
    JobType.OPENING_REVIEW,
    JobType.DIALOGUE_REVIEW,
    JobType.HOOK_REVIEW,
    JobType.GENERATE_SUMMARY,
    JobType.UPDATE_STATES,
]


def utc_now() -> str:
    # Fixed precision keeps string order equal to time order
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


CHECKPOINT_VERSION = 1


class Checkpoint(BaseModel):
    """
    Progress marker embedded in a job row.

    Serialized with camelCase keys:
    ``{jobId, step, data, completedSteps, timestamp, version}``.
    """

    job_id: str = Field(alias="jobId")
    step: str
    data: Dict[str, Any] = Field(default_factory=dict)
    completed_steps: List[str] = Field(default_factory=list, alias="completedSteps")
    timestamp: str = Field(default_factory=utc_now)
    version: int = CHECKPOINT_VERSION

    model_config = {"populate_by_name": True}

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_json(cls, raw: str) -> "Checkpoint":
        """Decode a stored checkpoint, raising CheckpointDecodeError on bad data."""
        try:
            checkpoint = cls.model_validate_json(raw)
        except ValidationError as e:
            raise CheckpointDecodeError(f"Invalid checkpoint: {e.errors()[0]['msg']}") from e
        if checkpoint.version > CHECKPOINT_VERSION:
            raise CheckpointDecodeError(
                f"Checkpoint version {checkpoint.version} is newer than supported ({CHECKPOINT_VERSION})"
            )
        return checkpoint


@dataclass
class Job:
    """One unit of scheduled work against a target entity."""
    id: str
    type: str
    target_id: str
    status: JobStatus
    attempts: int = 0
    checkpoint: Optional[str] = None
    error: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Any) -> "Job":
        return cls(
            id=row["job_id"],
            type=row["type"],
            target_id=row["target_id"],
            status=JobStatus(row["status"]),
            attempts=row["attempts"],
            checkpoint=row["checkpoint"],
            error=row["error"],
            payload=json.loads(row["payload"]) if row["payload"] else {},
            created_at=row["created_at"],
            started_at=row["started_at"],
            completed_at=row["completed_at"],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "target_id": self.target_id,
            "status": self.status.value,
            "attempts": self.attempts,
            "checkpoint": json.loads(self.checkpoint) if self.checkpoint else None,
            "error": self.error,
            "payload": self.payload,
            "created_at": self.created_at,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
        }


@dataclass
class QueueStats:
    pending: int = 0
    running: int = 0
    completed: int = 0
    paused: int = 0
    failed: int = 0
    total: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "pending": self.pending,
            "running": self.running,
            "completed": self.completed,
            "paused": self.paused,
            "failed": self.failed,
            "total": self.total,
        }


@dataclass
class RecoveryState:
    """What a handler needs to resume a job that crashed mid-stage."""
    resume_step: str
    data: Dict[str, Any]
    completed_steps: List[str]


@dataclass
class FollowUpJob:
    """A job a handler wants enqueued once its own job completes."""
    type: JobType
    target_id: str
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass
class StageResult:
    """Return value of every stage handler."""
    follow_up_jobs: List[FollowUpJob] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
