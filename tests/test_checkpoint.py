import json

import pytest

from novelforge.jobs.errors import CheckpointDecodeError
from novelforge.jobs.models import CHECKPOINT_VERSION, JobType


@pytest.fixture
async def job_id(job_db):
    return await job_db.create_job(JobType.GENERATE_CHAPTER.value, "chapter_1")


async def test_save_and_get(checkpoints, job_id):
    await checkpoints.save(job_id, "context_assembled", {"estimated_tokens": 120})

    checkpoint = await checkpoints.get(job_id)

    assert checkpoint.job_id == job_id
    assert checkpoint.step == "context_assembled"
    assert checkpoint.data == {"estimated_tokens": 120}
    assert checkpoint.completed_steps == []
    assert checkpoint.version == CHECKPOINT_VERSION


async def test_stored_json_uses_camel_case_keys(checkpoints, job_db, job_id):
    await checkpoints.save(job_id, "started")
    await checkpoints.mark_step_completed(job_id, "started")

    stored = json.loads(await job_db.get_checkpoint(job_id))

    assert stored["jobId"] == job_id
    assert stored["completedSteps"] == ["started"]
    assert {"step", "data", "timestamp"} <= set(stored)


async def test_save_keeps_completed_steps(checkpoints, job_id):
    await checkpoints.save(job_id, "started")
    await checkpoints.mark_step_completed(job_id, "started")

    await checkpoints.save(job_id, "status_updated", {"chapter_id": "chapter_1"})

    checkpoint = await checkpoints.get(job_id)
    assert checkpoint.step == "status_updated"
    assert checkpoint.completed_steps == ["started"]


async def test_mark_step_completed_without_checkpoint_is_noop(checkpoints, job_id):
    await checkpoints.mark_step_completed(job_id, "started")

    assert await checkpoints.get(job_id) is None
    assert await checkpoints.get_completed_steps(job_id) == []


async def test_mark_step_completed_never_duplicates(checkpoints, job_id):
    await checkpoints.save(job_id, "started")
    await checkpoints.mark_step_completed(job_id, "started")
    await checkpoints.mark_step_completed(job_id, "started")
    await checkpoints.mark_step_completed(job_id, "content_generated")

    assert await checkpoints.get_completed_steps(job_id) == ["started", "content_generated"]
    assert await checkpoints.is_step_completed(job_id, "content_generated")
    assert not await checkpoints.is_step_completed(job_id, "completed")


async def test_clear_removes_checkpoint(checkpoints, job_id):
    await checkpoints.save(job_id, "started")
    await checkpoints.clear(job_id)

    assert await checkpoints.get(job_id) is None


async def test_get_raises_on_corrupt_data(checkpoints, job_db, job_id):
    await job_db.set_checkpoint(job_id, "{not json")

    with pytest.raises(CheckpointDecodeError):
        await checkpoints.get(job_id)


async def test_get_rejects_newer_version(checkpoints, job_db, job_id):
    await job_db.set_checkpoint(job_id, json.dumps({
        "jobId": job_id,
        "step": "started",
        "data": {},
        "completedSteps": [],
        "timestamp": "2026-01-01T00:00:00+00:00",
        "version": CHECKPOINT_VERSION + 1,
    }))

    with pytest.raises(CheckpointDecodeError):
        await checkpoints.get(job_id)


async def test_save_over_corrupt_checkpoint_starts_fresh(checkpoints, job_db, job_id):
    await job_db.set_checkpoint(job_id, "garbage")

    await checkpoints.save(job_id, "started")

    checkpoint = await checkpoints.get(job_id)
    assert checkpoint.step == "started"
    assert checkpoint.completed_steps == []


async def test_restore_for_recovery(checkpoints, job_db, job_id):
    await checkpoints.save(job_id, "content_generated", {"content": "Draft"})
    await checkpoints.mark_step_completed(job_id, "content_generated")
    job = await job_db.get_job_by_id(job_id)

    recovery = checkpoints.restore_for_recovery(job)

    assert recovery.resume_step == "content_generated"
    assert recovery.data == {"content": "Draft"}
    assert recovery.completed_steps == ["content_generated"]


async def test_restore_for_recovery_without_checkpoint(checkpoints, job_db, job_id):
    job = await job_db.get_job_by_id(job_id)

    assert checkpoints.restore_for_recovery(job) is None


async def test_restore_for_recovery_with_corrupt_checkpoint(checkpoints, job_db, job_id):
    await job_db.set_checkpoint(job_id, '{"step": 42}')
    job = await job_db.get_job_by_id(job_id)

    assert checkpoints.restore_for_recovery(job) is None
