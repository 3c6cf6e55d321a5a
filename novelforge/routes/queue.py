"""
Queue Admin API Routes

Provides endpoints to inspect and manage the pipeline job queue:
- Queue and session statistics
- Job listing, lookup, creation and retry
- Chapter workflow enqueue
- Deletion of finished jobs
- Recent log entries, and the log history of a single job
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from novelforge.jobs.models import JobStatus, JobType
from novelforge.jobs.queue import JobQueue, get_queue
from novelforge.jobs.worker import get_worker
from novelforge.utils.logging import LogLevel, api_logger as logger, get_log_buffer

router = APIRouter(prefix="/api/queue", tags=["queue"])


# ===== Models =====

class CreateJobRequest(BaseModel):
    """Queue a single job."""
    type: JobType
    target_id: str
    payload: Optional[Dict[str, Any]] = None


class CreateJobResponse(BaseModel):
    job_id: str
    type: str
    target_id: str
    status: str


class JobListResponse(BaseModel):
    jobs: List[Dict[str, Any]]
    total: int
    limit: int
    offset: int


async def queue_dependency() -> JobQueue:
    return await get_queue()


def _parse_status(status: Optional[str]) -> Optional[JobStatus]:
    if status is None:
        return None
    try:
        return JobStatus(status.lower())
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid status: {status}")


# ===== Statistics =====

@router.get("/stats")
async def get_stats(queue: JobQueue = Depends(queue_dependency)):
    """Job counts by status, the upstream session window and worker state."""
    stats = await queue.get_queue_stats()
    session = await queue.get_session_stats()

    worker = get_worker()
    return {
        "queue": stats.to_dict(),
        "session": session,
        "worker": {
            "running": worker.is_running if worker else False,
            "processing": worker.is_processing if worker else False,
            "current_job": worker.current_job if worker else None,
        },
    }


# ===== Jobs =====

@router.get("/jobs", response_model=JobListResponse)
async def list_jobs(
    status: Optional[str] = Query(None, description="Filter by status (pending, running, completed, paused, failed)"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    queue: JobQueue = Depends(queue_dependency)
):
    """List jobs, newest first."""
    status_filter = _parse_status(status)
    jobs = await queue.list_jobs(status=status_filter, limit=limit, offset=offset)
    total = await queue.count_jobs(status_filter)

    return JobListResponse(
        jobs=[job.to_dict() for job in jobs],
        total=total,
        limit=limit,
        offset=offset
    )


@router.get("/jobs/{job_id}")
async def get_job(job_id: str, queue: JobQueue = Depends(queue_dependency)):
    job = await queue.get_job(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return job.to_dict()


@router.get("/jobs/{job_id}/logs")
async def get_job_logs(job_id: str, queue: JobQueue = Depends(queue_dependency)):
    """Buffered log entries about one job, oldest first."""
    job = await queue.get_job(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return {
        "job_id": job_id,
        "status": job.status.value,
        "logs": get_log_buffer().get_job_history(job_id),
    }


@router.post("/jobs", response_model=CreateJobResponse, status_code=201)
async def create_job(request: CreateJobRequest, queue: JobQueue = Depends(queue_dependency)):
    """Queue a single job. Unknown types are rejected by validation (422)."""
    job_id = await queue.create_job(request.type.value, request.target_id, payload=request.payload)

    return CreateJobResponse(
        job_id=job_id,
        type=request.type.value,
        target_id=request.target_id,
        status=JobStatus.PENDING.value
    )


@router.post("/chapters/{chapter_id}/workflow", status_code=201)
async def queue_chapter_workflow(chapter_id: str, queue: JobQueue = Depends(queue_dependency)):
    """Queue the full generation and editing chain for a chapter."""
    job_ids = await queue.queue_chapter_workflow(chapter_id)
    return {"chapter_id": chapter_id, "jobs": job_ids}


@router.post("/jobs/{job_id}/retry")
async def retry_job(job_id: str, queue: JobQueue = Depends(queue_dependency)):
    """Give a failed job a fresh set of attempts."""
    job = await queue.get_job(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")

    if not await queue.retry_job(job_id):
        raise HTTPException(
            status_code=409,
            detail=f"Only failed jobs can be retried (status: {job.status.value})"
        )

    logger.info("Job retry requested", job_id=job_id)
    return {"job_id": job_id, "status": JobStatus.PENDING.value}


@router.delete("/jobs/{job_id}")
async def delete_job(job_id: str, queue: JobQueue = Depends(queue_dependency)):
    job = await queue.get_job(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")

    if not await queue.delete_job(job_id):
        raise HTTPException(status_code=409, detail="Running jobs cannot be deleted")
    return {"deleted": job_id}


@router.delete("/jobs")
async def delete_jobs(
    status: Optional[str] = Query(None, description="Delete every job with this status"),
    ids: Optional[str] = Query(None, description="Comma-separated job ids"),
    queue: JobQueue = Depends(queue_dependency)
):
    """Bulk delete by status or by id list. Running jobs are never deleted."""
    job_ids = [job_id.strip() for job_id in ids.split(",") if job_id.strip()] if ids else []
    status_filter = _parse_status(status)

    if not job_ids and status_filter is None:
        raise HTTPException(status_code=400, detail="Provide either status or ids")
    if status_filter == JobStatus.RUNNING and not job_ids:
        raise HTTPException(status_code=400, detail="Running jobs cannot be deleted")

    deleted = await queue.delete_jobs(status=status_filter, job_ids=job_ids or None)
    return {"deleted": deleted}


# ===== Logs =====

@router.get("/logs")
async def get_logs(
    limit: int = Query(100, ge=1, le=500),
    level: Optional[str] = Query(None, description="Filter by level (debug, info, warning, error, critical)"),
    source: Optional[str] = Query(None, description="Filter by source"),
    job_id: Optional[str] = Query(None, description="Only entries about this job")
):
    """Get recent log entries from the in-memory buffer."""
    log_buffer = get_log_buffer()

    level_filter = None
    if level:
        try:
            level_filter = LogLevel(level.lower())
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Invalid log level: {level}")

    return {
        "logs": log_buffer.get_recent(limit=limit, level=level_filter, source=source, job_id=job_id),
        "stats": log_buffer.get_stats()
    }
