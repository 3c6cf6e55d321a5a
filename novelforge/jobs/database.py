"""
Database schema for the job queue.
Uses aiosqlite for async SQLite operations.

Holds three tables:
- jobs: one row per job, with its embedded checkpoint
- session_tracking: single row describing the upstream usage window
- target_locks: targets whose pending jobs must not be picked up
"""

import asyncio
import json
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiosqlite

from novelforge.jobs.models import FollowUpJob, Job, JobStatus, QueueStats, utc_now


class JobDatabase:
    """Handles job queue database operations"""

    def __init__(self, db_path: str = "novelforge_jobs.db"):
        self.db_path = db_path
        self._conn: Optional[aiosqlite.Connection] = None
        # Serializes the explicit BEGIN ... COMMIT blocks on this connection
        self._write_lock = asyncio.Lock()

    async def connect(self):
        """Connect to database and create tables if needed"""
        db_file = Path(self.db_path)
        db_dir = db_file.parent
        if db_dir and str(db_dir) != "." and not db_dir.exists():
            db_dir.mkdir(parents=True, exist_ok=True)

        self._conn = await aiosqlite.connect(self.db_path, timeout=30.0)
        self._conn.row_factory = aiosqlite.Row
        await self._conn.execute("PRAGMA journal_mode=WAL")
        await self._create_tables()

    async def _create_tables(self):
        """Create required tables"""
        await self._conn.execute("""
            CREATE TABLE IF NOT EXISTS jobs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                job_id TEXT UNIQUE NOT NULL,
                type TEXT NOT NULL,
                target_id TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'pending',

                checkpoint TEXT,  -- JSON: {jobId, step, data, completedSteps, timestamp}
                payload TEXT,     -- JSON input handed over by the job that created this one
                error TEXT,
                attempts INTEGER NOT NULL DEFAULT 0,

                created_at TEXT NOT NULL,
                started_at TEXT,
                completed_at TEXT
            )
        """)

        await self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_jobs_status
            ON jobs(status, created_at)
        """)

        await self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_jobs_target
            ON jobs(target_id, type)
        """)

        await self._conn.execute("""
            CREATE TABLE IF NOT EXISTS session_tracking (
                id INTEGER PRIMARY KEY CHECK (id = 1),
                session_started_at TEXT,
                session_resets_at TEXT,
                is_active INTEGER NOT NULL DEFAULT 0,
                requests_this_session INTEGER NOT NULL DEFAULT 0
            )
        """)

        await self._conn.execute("""
            INSERT OR IGNORE INTO session_tracking (id, is_active, requests_this_session)
            VALUES (1, 0, 0)
        """)

        await self._conn.execute("""
            CREATE TABLE IF NOT EXISTS target_locks (
                target_id TEXT PRIMARY KEY,
                is_locked INTEGER NOT NULL DEFAULT 0,
                updated_at TEXT NOT NULL
            )
        """)

        await self._conn.commit()

    # =========================================================================
    # Job Creation
    # =========================================================================

    async def create_job(
        self,
        job_type: str,
        target_id: str,
        payload: Optional[Dict[str, Any]] = None,
        created_at: Optional[str] = None
    ) -> str:
        """
        Create a new pending job.

        ``created_at`` may be given to place the job at an earlier queue
        position (follow-up jobs inherit their parent's position).

        Returns the job_id.
        """
        job_id = f"job_{uuid.uuid4().hex[:12]}"

        await self._conn.execute("""
            INSERT INTO jobs
            (job_id, type, target_id, status, payload, attempts, created_at)
            VALUES (?, ?, ?, 'pending', ?, 0, ?)
        """, (
            job_id,
            str(job_type),
            target_id,
            json.dumps(payload) if payload else None,
            created_at or utc_now()
        ))
        await self._conn.commit()
        return job_id

    # =========================================================================
    # Pickup
    # =========================================================================

    async def pickup_next(self) -> Optional[Job]:
        """
        Claim the oldest pending job whose target is not locked.

        SELECT and UPDATE run inside one IMMEDIATE transaction and the
        UPDATE only applies while the row is still 'pending', so a job
        claimed by another connection in between yields None instead of
        being processed twice.
        """
        async with self._write_lock:
            await self._conn.execute("BEGIN IMMEDIATE")
            try:
                cursor = await self._conn.execute("""
                    SELECT j.* FROM jobs j
                    LEFT JOIN target_locks tl ON j.target_id = tl.target_id
                    WHERE j.status = 'pending'
                    AND (tl.is_locked IS NULL OR tl.is_locked = 0)
                    ORDER BY j.created_at ASC, j.id ASC
                    LIMIT 1
                """)
                row = await cursor.fetchone()
                if row is None:
                    await self._conn.rollback()
                    return None

                started_at = utc_now()
                cursor = await self._conn.execute("""
                    UPDATE jobs
                    SET status = 'running', started_at = ?
                    WHERE job_id = ? AND status = 'pending'
                """, (started_at, row["job_id"]))

                if cursor.rowcount == 0:
                    await self._conn.rollback()
                    return None

                await self._conn.commit()
            except BaseException:
                await self._conn.rollback()
                raise

        job = Job.from_row(row)
        job.status = JobStatus.RUNNING
        job.started_at = started_at
        return job

    # =========================================================================
    # Status Transitions
    # =========================================================================

    async def mark_running(self, job_id: str):
        await self._conn.execute("""
            UPDATE jobs
            SET status = 'running', started_at = ?
            WHERE job_id = ?
        """, (utc_now(), job_id))
        await self._conn.commit()

    async def mark_completed(self, job_id: str):
        """Mark a job completed. The checkpoint is cleared in the same write."""
        await self._conn.execute("""
            UPDATE jobs
            SET status = 'completed', completed_at = ?, checkpoint = NULL
            WHERE job_id = ?
        """, (utc_now(), job_id))
        await self._conn.commit()

    async def complete_job(
        self,
        job_id: str,
        follow_ups: List[FollowUpJob],
        created_at: Optional[str] = None
    ) -> List[str]:
        """
        Enqueue a job's follow-ups and mark it completed in one transaction.

        Either every follow-up row and the completion are written, or none
        of them are and the job is still 'running'. Follow-ups take
        ``created_at`` as their queue position.

        Returns the follow-up job_ids.
        """
        follow_up_ids = []
        async with self._write_lock:
            await self._conn.execute("BEGIN IMMEDIATE")
            try:
                for follow_up in follow_ups:
                    follow_up_id = f"job_{uuid.uuid4().hex[:12]}"
                    await self._conn.execute("""
                        INSERT INTO jobs
                        (job_id, type, target_id, status, payload, attempts, created_at)
                        VALUES (?, ?, ?, 'pending', ?, 0, ?)
                    """, (
                        follow_up_id,
                        follow_up.type.value,
                        follow_up.target_id,
                        json.dumps(follow_up.payload) if follow_up.payload else None,
                        created_at or utc_now()
                    ))
                    follow_up_ids.append(follow_up_id)

                await self._conn.execute("""
                    UPDATE jobs
                    SET status = 'completed', completed_at = ?, checkpoint = NULL
                    WHERE job_id = ?
                """, (utc_now(), job_id))
                await self._conn.commit()
            except BaseException:
                await self._conn.rollback()
                raise

        return follow_up_ids

    async def mark_pending(self, job_id: str, attempts: int, error: str):
        """Send a job back to the queue for another attempt"""
        await self._conn.execute("""
            UPDATE jobs
            SET status = 'pending', attempts = ?, error = ?
            WHERE job_id = ?
        """, (attempts, error, job_id))
        await self._conn.commit()

    async def mark_failed(self, job_id: str, attempts: int, error: str):
        """Mark a job as permanently failed"""
        await self._conn.execute("""
            UPDATE jobs
            SET status = 'failed', attempts = ?, error = ?, completed_at = ?
            WHERE job_id = ?
        """, (attempts, error, utc_now(), job_id))
        await self._conn.commit()

    async def mark_paused(self, job_id: str):
        await self._conn.execute("""
            UPDATE jobs
            SET status = 'paused'
            WHERE job_id = ?
        """, (job_id,))
        await self._conn.commit()

    async def resume_all_paused(self) -> int:
        """Move every paused job back to pending. Returns how many moved."""
        cursor = await self._conn.execute("""
            UPDATE jobs
            SET status = 'pending'
            WHERE status = 'paused'
        """)
        await self._conn.commit()
        return cursor.rowcount

    async def recover_stale_jobs(self) -> List[Job]:
        """
        Reset jobs left 'running' by a process that died.

        Checkpoints are kept so the handler can resume. Returns the jobs
        that were reset.
        """
        cursor = await self._conn.execute("""
            SELECT * FROM jobs WHERE status = 'running'
        """)
        stale = [Job.from_row(row) for row in await cursor.fetchall()]
        if not stale:
            return []

        await self._conn.execute("""
            UPDATE jobs
            SET status = 'pending',
                error = 'Reset after restart - job was running when the worker stopped',
                started_at = NULL
            WHERE status = 'running'
        """)
        await self._conn.commit()
        return stale

    async def retry_job(self, job_id: str) -> bool:
        """Give a failed job a fresh set of attempts"""
        cursor = await self._conn.execute("""
            UPDATE jobs
            SET status = 'pending', attempts = 0, completed_at = NULL
            WHERE job_id = ? AND status = 'failed'
        """, (job_id,))
        await self._conn.commit()
        return cursor.rowcount > 0

    # =========================================================================
    # Checkpoint Column
    # =========================================================================

    async def get_checkpoint(self, job_id: str) -> Optional[str]:
        cursor = await self._conn.execute("""
            SELECT checkpoint FROM jobs WHERE job_id = ?
        """, (job_id,))
        row = await cursor.fetchone()
        return row["checkpoint"] if row else None

    async def set_checkpoint(self, job_id: str, checkpoint: Optional[str]):
        await self._conn.execute("""
            UPDATE jobs SET checkpoint = ? WHERE job_id = ?
        """, (checkpoint, job_id))
        await self._conn.commit()

    # =========================================================================
    # Queries
    # =========================================================================

    async def get_job_by_id(self, job_id: str) -> Optional[Job]:
        cursor = await self._conn.execute("""
            SELECT * FROM jobs WHERE job_id = ?
        """, (job_id,))
        row = await cursor.fetchone()
        return Job.from_row(row) if row else None

    async def list_jobs(
        self,
        status: Optional[JobStatus] = None,
        limit: int = 100,
        offset: int = 0
    ) -> List[Job]:
        """List jobs, newest first"""
        if status:
            cursor = await self._conn.execute("""
                SELECT * FROM jobs
                WHERE status = ?
                ORDER BY created_at DESC, id DESC
                LIMIT ? OFFSET ?
            """, (status.value, limit, offset))
        else:
            cursor = await self._conn.execute("""
                SELECT * FROM jobs
                ORDER BY created_at DESC, id DESC
                LIMIT ? OFFSET ?
            """, (limit, offset))

        return [Job.from_row(row) for row in await cursor.fetchall()]

    async def count_jobs(self, status: Optional[JobStatus] = None) -> int:
        if status:
            cursor = await self._conn.execute(
                "SELECT COUNT(*) AS count FROM jobs WHERE status = ?", (status.value,)
            )
        else:
            cursor = await self._conn.execute("SELECT COUNT(*) AS count FROM jobs")
        row = await cursor.fetchone()
        return row["count"] if row else 0

    async def count_paused(self) -> int:
        return await self.count_jobs(JobStatus.PAUSED)

    async def get_stats(self) -> QueueStats:
        """Count jobs by status"""
        cursor = await self._conn.execute("""
            SELECT status, COUNT(*) AS count
            FROM jobs
            GROUP BY status
        """)
        stats = QueueStats()
        for row in await cursor.fetchall():
            setattr(stats, row["status"], row["count"])
            stats.total += row["count"]
        return stats

    async def find_latest_job(self, target_id: str, job_type: str) -> Optional[Job]:
        cursor = await self._conn.execute("""
            SELECT * FROM jobs
            WHERE target_id = ? AND type = ?
            ORDER BY created_at DESC, id DESC
            LIMIT 1
        """, (target_id, str(job_type)))
        row = await cursor.fetchone()
        return Job.from_row(row) if row else None

    # =========================================================================
    # Deletion
    # =========================================================================

    async def delete_job(self, job_id: str) -> bool:
        """Delete one job. A running job is left in place and False is returned."""
        cursor = await self._conn.execute(
            "DELETE FROM jobs WHERE job_id = ? AND status != 'running'", (job_id,)
        )
        await self._conn.commit()
        return cursor.rowcount > 0

    async def delete_jobs(
        self,
        status: Optional[JobStatus] = None,
        job_ids: Optional[List[str]] = None
    ) -> int:
        """Delete jobs by id list or by status. Running jobs are never deleted."""
        if job_ids:
            placeholders = ",".join("?" for _ in job_ids)
            cursor = await self._conn.execute(
                f"DELETE FROM jobs WHERE job_id IN ({placeholders}) AND status != 'running'",
                job_ids
            )
        elif status and status != JobStatus.RUNNING:
            cursor = await self._conn.execute(
                "DELETE FROM jobs WHERE status = ?", (status.value,)
            )
        else:
            return 0
        await self._conn.commit()
        return cursor.rowcount

    async def cleanup_old_jobs(self, days: int = 30) -> int:
        """Remove completed/failed jobs older than specified days"""
        cutoff = (datetime.now(timezone.utc) - timedelta(days=days)).isoformat()

        cursor = await self._conn.execute("""
            DELETE FROM jobs
            WHERE status IN ('completed', 'failed')
            AND created_at < ?
        """, (cutoff,))
        await self._conn.commit()
        return cursor.rowcount

    # =========================================================================
    # Target Locks
    # =========================================================================

    async def set_target_lock(self, target_id: str, locked: bool):
        """Lock a target so its pending jobs are skipped by pickup"""
        await self._conn.execute("""
            INSERT INTO target_locks (target_id, is_locked, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT(target_id) DO UPDATE SET
                is_locked = excluded.is_locked,
                updated_at = excluded.updated_at
        """, (target_id, 1 if locked else 0, utc_now()))
        await self._conn.commit()

    # =========================================================================
    # Session Tracking Row
    # =========================================================================

    async def get_session_row(self) -> Optional[Dict[str, Any]]:
        cursor = await self._conn.execute("""
            SELECT session_started_at, session_resets_at, is_active, requests_this_session
            FROM session_tracking
            WHERE id = 1
        """)
        row = await cursor.fetchone()
        return dict(row) if row else None

    async def start_session(self, started_at: str, resets_at: str):
        await self._conn.execute("""
            UPDATE session_tracking
            SET session_started_at = ?,
                session_resets_at = ?,
                is_active = 1,
                requests_this_session = 1
            WHERE id = 1
        """, (started_at, resets_at))
        await self._conn.commit()

    async def increment_session_requests(self):
        await self._conn.execute("""
            UPDATE session_tracking
            SET requests_this_session = requests_this_session + 1
            WHERE id = 1
        """)
        await self._conn.commit()

    async def clear_session(self):
        await self._conn.execute("""
            UPDATE session_tracking
            SET session_started_at = NULL,
                session_resets_at = NULL,
                is_active = 0,
                requests_this_session = 0
            WHERE id = 1
        """)
        await self._conn.commit()

    async def close(self):
        """Close database connection"""
        if self._conn:
            await self._conn.close()
            self._conn = None
