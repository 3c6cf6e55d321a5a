import pytest

from novelforge.jobs.models import CHAPTER_WORKFLOW, JobStatus, JobType
from novelforge.jobs.queue import JobQueue


@pytest.fixture
async def queue(tmp_path):
    queue = JobQueue(str(tmp_path / "jobs.db"))
    await queue.initialize()
    yield queue
    await queue.close()


async def test_create_job(queue):
    job_id = await queue.create_job("proofread", "chapter_1")

    status = await queue.get_status(job_id)
    assert status["status"] == "pending"
    assert status["type"] == "proofread"
    assert status["attempts"] == 0


async def test_create_job_rejects_unknown_type(queue):
    with pytest.raises(ValueError):
        await queue.create_job("translate_chapter", "chapter_1")


async def test_get_status_of_missing_job(queue):
    assert await queue.get_status("job_missing") is None


async def test_workflow_is_picked_up_in_chain_order(queue):
    job_ids = await queue.queue_chapter_workflow("chapter_1")

    assert len(job_ids) == len(CHAPTER_WORKFLOW)
    assert JobType.AUTHOR_REVISION.value not in job_ids

    picked = []
    while (job := await queue.db.pickup_next()) is not None:
        picked.append(job.type)
    assert picked == [job_type.value for job_type in CHAPTER_WORKFLOW]


async def test_stats_and_listing(queue):
    await queue.queue_chapter_workflow("chapter_1")

    stats = await queue.get_queue_stats()
    assert stats.pending == len(CHAPTER_WORKFLOW)

    jobs = await queue.list_jobs(status=JobStatus.PENDING, limit=3)
    assert len(jobs) == 3
    # Newest first
    assert jobs[0].type == JobType.UPDATE_STATES.value
    assert await queue.count_jobs(JobStatus.PENDING) == len(CHAPTER_WORKFLOW)


async def test_session_stats_without_session(queue):
    stats = await queue.get_session_stats()

    assert stats["is_active"] is False


async def test_retry_and_delete(queue):
    job_id = await queue.create_job("copy_edit", "chapter_1")
    assert await queue.retry_job(job_id) is False

    await queue.db.mark_failed(job_id, 3, "boom")
    assert await queue.retry_job(job_id) is True
    assert (await queue.get_job(job_id)).status == JobStatus.PENDING

    assert await queue.delete_jobs(status=JobStatus.PENDING) == 1
    assert await queue.get_job(job_id) is None
