import pytest

from novelforge.jobs.errors import UnknownJobTypeError
from novelforge.jobs.models import JobType, RecoveryState
from novelforge.jobs.stages import (
    CHAPTER_MAX_TOKENS,
    SUMMARY_MAX_TOKENS,
    ChapterNotFoundError,
    StageHandlers,
)
from tests.conftest import STORY_BIBLE
from tests.fakes import FakeEditorial, FakeSpecialists


async def _job(job_db, job_type, target_id, payload=None):
    await job_db.create_job(job_type.value, target_id, payload=payload)
    return await job_db.pickup_next()


def _handlers(checkpoints, chapter_store, metrics_store, generation, editorial=None, specialists=None):
    return StageHandlers(
        checkpoints=checkpoints,
        chapters=chapter_store,
        metrics=metrics_store,
        generation=generation,
        editorial=editorial or FakeEditorial(),
        specialists=specialists or FakeSpecialists(),
    )


def test_every_job_type_has_a_handler(handlers):
    for job_type in JobType:
        assert callable(handlers.get_handler(job_type.value))


def test_unknown_job_type(handlers):
    with pytest.raises(UnknownJobTypeError):
        handlers.get_handler("translate_chapter")


# =========================================================================
# generate_chapter
# =========================================================================

async def test_generate_chapter(handlers, job_db, checkpoints, chapter_store, metrics_store, generation, chapter_id):
    job = await _job(job_db, JobType.GENERATE_CHAPTER, chapter_id)

    result = await handlers.generate_chapter(job)

    chapter = await chapter_store.get_chapter(chapter_id)
    assert chapter.content == "Generated chapter text."
    assert chapter.status == "editing"
    assert chapter.word_count == 3
    assert result.metadata == {"word_count": 3}

    assert len(generation.calls) == 1
    assert generation.calls[0]["max_tokens"] == CHAPTER_MAX_TOKENS
    assert generation.calls[0]["temperature"] == 1.0
    assert "Mara finds the bottle" in generation.calls[0]["messages"][0]["content"]

    assert await checkpoints.get_completed_steps(job.id) == [
        "started", "status_updated", "context_assembled", "content_generated", "completed",
    ]
    assert await metrics_store.get_totals(chapter_id) == {
        "input_tokens": 100, "output_tokens": 50, "requests": 1,
    }


async def test_generate_chapter_includes_previous_summary(
    handlers, job_db, chapter_store, generation, project_id, chapter_id
):
    await chapter_store.update_summary(chapter_id, "Mara found the bottle.")
    second = await chapter_store.create_chapter(project_id, 2)
    job = await _job(job_db, JobType.GENERATE_CHAPTER, second)

    await handlers.generate_chapter(job)

    assert "Mara found the bottle." in generation.calls[0]["messages"][0]["content"]


async def test_generate_chapter_failure_reverts_status(handlers, job_db, chapter_store, generation, chapter_id):
    generation.responses.append(RuntimeError("connection reset"))
    job = await _job(job_db, JobType.GENERATE_CHAPTER, chapter_id)

    with pytest.raises(RuntimeError):
        await handlers.generate_chapter(job)

    chapter = await chapter_store.get_chapter(chapter_id)
    assert chapter.status == "pending"
    assert chapter.content is None


async def test_generate_chapter_resumes_from_checkpointed_content(
    handlers, job_db, checkpoints, chapter_store, generation, chapter_id
):
    job = await _job(job_db, JobType.GENERATE_CHAPTER, chapter_id)
    recovery = RecoveryState(
        resume_step="content_generated",
        data={"chapter_id": chapter_id, "content": "Recovered draft text"},
        completed_steps=["started", "status_updated", "context_assembled", "content_generated"],
    )

    await handlers.generate_chapter(job, recovery)

    assert generation.calls == []
    chapter = await chapter_store.get_chapter(chapter_id)
    assert chapter.content == "Recovered draft text"
    assert chapter.status == "editing"


async def test_generate_chapter_missing_chapter(handlers, job_db):
    job = await _job(job_db, JobType.GENERATE_CHAPTER, "chapter_missing")

    with pytest.raises(ChapterNotFoundError):
        await handlers.generate_chapter(job)


# =========================================================================
# Editorial chain
# =========================================================================

async def test_dev_edit_approved_has_no_follow_up(handlers, job_db, checkpoints, written_chapter_id):
    job = await _job(job_db, JobType.DEV_EDIT, written_chapter_id)

    result = await handlers.developmental_edit(job)

    assert result.follow_up_jobs == []
    assert "dev_edit_complete" in await checkpoints.get_completed_steps(job.id)


async def test_dev_edit_rejected_requests_author_revision(
    checkpoints, chapter_store, metrics_store, generation, job_db, written_chapter_id
):
    handlers = _handlers(checkpoints, chapter_store, metrics_store, generation, FakeEditorial(approved=False))
    job = await _job(job_db, JobType.DEV_EDIT, written_chapter_id)

    result = await handlers.developmental_edit(job)

    [follow_up] = result.follow_up_jobs
    assert follow_up.type == JobType.AUTHOR_REVISION
    assert follow_up.target_id == written_chapter_id
    feedback = follow_up.payload["dev_edit_result"]
    assert feedback["approved"] is False
    assert feedback["suggestions"][0]["issue"] == "slow middle"


async def test_author_revision_uses_payload(handlers, job_db, chapter_store, editorial, written_chapter_id):
    feedback = {"approved": False, "suggestions": [{"issue": "slow middle"}], "flags": []}
    job = await _job(job_db, JobType.AUTHOR_REVISION, written_chapter_id, payload={"dev_edit_result": feedback})

    await handlers.author_revision(job)

    assert editorial.feedback == feedback
    chapter = await chapter_store.get_chapter(written_chapter_id)
    assert chapter.content == "Revised chapter text."
    assert chapter.word_count == 3


async def test_author_revision_without_feedback_fails(handlers, job_db, written_chapter_id):
    job = await _job(job_db, JobType.AUTHOR_REVISION, written_chapter_id)

    with pytest.raises(ValueError):
        await handlers.author_revision(job)


async def test_line_edit_applies_content_and_flags(
    checkpoints, chapter_store, metrics_store, generation, job_db, written_chapter_id
):
    flag = {"id": "flag_1", "type": "needs_author", "description": "Which lamp?"}
    editorial = FakeEditorial(edited_content="Mara climbed. The lamp was cold.", flags=[flag])
    handlers = _handlers(checkpoints, chapter_store, metrics_store, generation, editorial)
    job = await _job(job_db, JobType.LINE_EDIT, written_chapter_id)

    await handlers.line_edit(job)

    chapter = await chapter_store.get_chapter(written_chapter_id)
    assert chapter.content == "Mara climbed. The lamp was cold."
    assert chapter.flags == [flag]
    assert editorial.calls == ["line_edit"]


async def test_edit_without_changes_keeps_content(handlers, job_db, chapter_store, editorial, written_chapter_id):
    job = await _job(job_db, JobType.COPY_EDIT, written_chapter_id)

    await handlers.copy_edit(job)

    chapter = await chapter_store.get_chapter(written_chapter_id)
    assert chapter.content == "Mara climbed the stairs. The lamp was cold."
    assert editorial.calls == ["copy_edit"]


async def test_continuity_check(handlers, job_db, editorial, written_chapter_id):
    job = await _job(job_db, JobType.CONTINUITY_CHECK, written_chapter_id)

    await handlers.continuity_check(job)

    assert editorial.calls == ["continuity_check"]


async def test_proofread_refreshes_word_count(
    checkpoints, chapter_store, metrics_store, generation, job_db, written_chapter_id
):
    editorial = FakeEditorial(edited_content="Mara climbed the long stone stairs.")
    handlers = _handlers(checkpoints, chapter_store, metrics_store, generation, editorial)
    job = await _job(job_db, JobType.PROOFREAD, written_chapter_id)

    result = await handlers.proofread(job)

    assert result.metadata == {"word_count": 6}
    assert (await chapter_store.get_chapter(written_chapter_id)).word_count == 6


async def test_editorial_error_propagates(
    checkpoints, chapter_store, metrics_store, generation, job_db, written_chapter_id
):
    editorial = FakeEditorial(error=ValueError("Failed to parse line edit response"))
    handlers = _handlers(checkpoints, chapter_store, metrics_store, generation, editorial)
    job = await _job(job_db, JobType.LINE_EDIT, written_chapter_id)

    with pytest.raises(ValueError):
        await handlers.line_edit(job)


# =========================================================================
# Specialist reviews
# =========================================================================

async def test_specialist_review_unchanged_content(handlers, job_db, chapter_store, specialists, written_chapter_id):
    job = await _job(job_db, JobType.DIALOGUE_REVIEW, written_chapter_id)

    result = await handlers.specialist_review(job)

    assert specialists.calls == ["dialogue"]
    assert result.metadata == {"score": 8.0}
    chapter = await chapter_store.get_chapter(written_chapter_id)
    assert chapter.content == "Mara climbed the stairs. The lamp was cold."


async def test_specialist_review_applies_revision_and_flags(
    checkpoints, chapter_store, metrics_store, generation, job_db, written_chapter_id
):
    flag = {"id": "flag_2", "type": "sensitivity", "description": "Check dialect"}
    specialists = FakeSpecialists(edited_content="Mara climbed the stairs.", flags=[flag])
    handlers = _handlers(checkpoints, chapter_store, metrics_store, generation, specialists=specialists)
    job = await _job(job_db, JobType.SENSITIVITY_REVIEW, written_chapter_id)

    await handlers.specialist_review(job)

    chapter = await chapter_store.get_chapter(written_chapter_id)
    assert chapter.content == "Mara climbed the stairs."
    assert chapter.flags == [flag]
    assert specialists.calls == ["sensitivity"]


async def test_opening_review_skips_later_chapters(handlers, job_db, specialists, written_chapter_id):
    job = await _job(job_db, JobType.OPENING_REVIEW, written_chapter_id)

    result = await handlers.specialist_review(job)

    assert result.metadata == {"skipped": True}
    assert specialists.calls == []


async def test_opening_review_runs_for_first_chapter(handlers, job_db, chapter_store, specialists, chapter_id):
    await chapter_store.update_content(chapter_id, "The first line.")
    job = await _job(job_db, JobType.OPENING_REVIEW, chapter_id)

    await handlers.specialist_review(job)

    assert specialists.calls == ["opening"]


# =========================================================================
# Finalization
# =========================================================================

async def test_generate_summary(handlers, job_db, chapter_store, generation, written_chapter_id):
    generation.responses.append("  Mara finds the lamp cold.  ")
    job = await _job(job_db, JobType.GENERATE_SUMMARY, written_chapter_id)

    await handlers.generate_summary(job)

    assert (await chapter_store.get_chapter(written_chapter_id)).summary == "Mara finds the lamp cold."
    assert generation.calls[0]["max_tokens"] == SUMMARY_MAX_TOKENS
    assert generation.calls[0]["temperature"] == 0.7


async def test_generate_summary_without_content_fails(handlers, job_db, chapter_id):
    job = await _job(job_db, JobType.GENERATE_SUMMARY, chapter_id)

    with pytest.raises(ValueError):
        await handlers.generate_summary(job)


async def test_update_states_writes_story_bible(
    handlers, job_db, chapter_store, generation, project_id, written_chapter_id
):
    generation.responses.append(
        'Here you go:\n{"Mara": {"location": "lighthouse"}, "Tobias": {"location": "dock"}}'
    )
    job = await _job(job_db, JobType.UPDATE_STATES, written_chapter_id)

    result = await handlers.update_states(job)

    bible = await chapter_store.get_story_bible(project_id)
    states = {c["name"]: c.get("currentState") for c in bible["characters"]}
    assert states == {"Mara": {"location": "lighthouse"}, "Tobias": {"location": "dock"}}
    assert result.metadata == {"updated_characters": ["Mara", "Tobias"]}
    assert (await chapter_store.get_chapter(written_chapter_id)).status == "completed"
    assert "Mara, Tobias" in generation.calls[0]["messages"][0]["content"]


async def test_update_states_unparsable_output_still_completes(
    handlers, job_db, chapter_store, generation, project_id, written_chapter_id
):
    generation.responses.append("I could not determine the states.")
    job = await _job(job_db, JobType.UPDATE_STATES, written_chapter_id)

    await handlers.update_states(job)

    assert await chapter_store.get_story_bible(project_id) == STORY_BIBLE
    assert (await chapter_store.get_chapter(written_chapter_id)).status == "completed"


async def test_update_states_without_story_bible(handlers, job_db, chapter_store, generation):
    project_id = await chapter_store.create_project("Untitled")
    chapter_id = await chapter_store.create_chapter(project_id, 1, content="Some words.", status="editing")
    job = await _job(job_db, JobType.UPDATE_STATES, chapter_id)

    await handlers.update_states(job)

    assert generation.calls == []
    assert (await chapter_store.get_chapter(chapter_id)).status == "completed"


async def test_update_states_without_scene_characters(handlers, job_db, chapter_store, generation, project_id):
    chapter_id = await chapter_store.create_chapter(
        project_id, 3, scene_cards=[{"goal": "A storm"}], content="Rain fell.", status="editing"
    )
    job = await _job(job_db, JobType.UPDATE_STATES, chapter_id)

    await handlers.update_states(job)

    assert generation.calls == []
    assert (await chapter_store.get_chapter(chapter_id)).status == "completed"

