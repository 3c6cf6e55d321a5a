"""
Checkpoint manager.

Persists a per-job progress marker inside the job row so a job that was
interrupted by a crash can resume from its last completed step.
"""

from typing import Any, Dict, List, Optional

from novelforge.jobs.database import JobDatabase
from novelforge.jobs.errors import CheckpointDecodeError
from novelforge.jobs.models import Checkpoint, Job, RecoveryState
from novelforge.utils.logging import checkpoint_logger as logger


class CheckpointManager:
    """
    Reads and writes the checkpoint column of a job.

    Checkpoints narrate progress. They do not gate correctness: each stage
    handler is responsible for making its own steps safe to re-run.
    """

    def __init__(self, job_db: JobDatabase):
        self.job_db = job_db

    async def save(
        self,
        job_id: str,
        step: str,
        data: Optional[Dict[str, Any]] = None
    ) -> Checkpoint:
        """Overwrite the checkpoint, keeping the completed steps recorded so far."""
        completed_steps: List[str] = []
        try:
            existing = await self.get(job_id)
        except CheckpointDecodeError as e:
            logger.warning("Discarding unreadable checkpoint", job_id=job_id, error=str(e))
            existing = None
        if existing:
            completed_steps = list(existing.completed_steps)

        checkpoint = Checkpoint(
            job_id=job_id,
            step=step,
            data=data or {},
            completed_steps=completed_steps,
        )
        await self.job_db.set_checkpoint(job_id, checkpoint.to_json())
        logger.debug("Checkpoint saved", job_id=job_id, step=step)
        return checkpoint

    async def get(self, job_id: str) -> Optional[Checkpoint]:
        """Return the stored checkpoint, None if absent. Raises CheckpointDecodeError on bad data."""
        raw = await self.job_db.get_checkpoint(job_id)
        if not raw:
            return None
        return Checkpoint.from_json(raw)

    async def mark_step_completed(self, job_id: str, step: str):
        """Append ``step`` to completedSteps. No-op when the job has no checkpoint."""
        checkpoint = await self.get(job_id)
        if checkpoint is None:
            return
        if step in checkpoint.completed_steps:
            return

        checkpoint.completed_steps.append(step)
        await self.job_db.set_checkpoint(job_id, checkpoint.to_json())

    async def is_step_completed(self, job_id: str, step: str) -> bool:
        checkpoint = await self.get(job_id)
        return checkpoint is not None and step in checkpoint.completed_steps

    async def get_completed_steps(self, job_id: str) -> List[str]:
        checkpoint = await self.get(job_id)
        return list(checkpoint.completed_steps) if checkpoint else []

    async def clear(self, job_id: str):
        await self.job_db.set_checkpoint(job_id, None)

    def restore_for_recovery(self, job: Job) -> Optional[RecoveryState]:
        """
        Inspect the checkpoint a job was picked up with.

        Returns None when there is nothing to resume or the stored data is
        corrupt, in which case the job simply starts over.
        """
        if not job.checkpoint:
            return None

        try:
            checkpoint = Checkpoint.from_json(job.checkpoint)
        except CheckpointDecodeError as e:
            logger.error("Failed to restore checkpoint", job_id=job.id, error=str(e))
            return None

        logger.info(
            "Restoring job from checkpoint",
            job_id=job.id,
            step=checkpoint.step,
            completed_steps=checkpoint.completed_steps,
        )
        return RecoveryState(
            resume_step=checkpoint.step,
            data=checkpoint.data,
            completed_steps=list(checkpoint.completed_steps),
        )
