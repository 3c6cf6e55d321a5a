"""
Stage handlers: one coroutine per job type.

Every handler follows the same shape: save a 'started' checkpoint, run its
sub-steps (each closed by a checkpoint), call the generation collaborator,
apply the result to the chapter and save a 'completed' checkpoint. Errors
propagate to the worker, which owns the retry / pause / fail policy.
Handlers never enqueue jobs themselves; they return follow-ups in their
StageResult and the worker enqueues them.
"""

from typing import Any, Awaitable, Callable, Dict, List, Optional

from novelforge.jobs.checkpoint import CheckpointManager
from novelforge.jobs.contracts import (
    Chapter,
    ChapterRepository,
    EditorialClient,
    EditResult,
    GenerationClient,
    MetricsSink,
    SpecialistClient,
    TokenUsage,
    count_words,
)
from novelforge.jobs.errors import UnknownJobTypeError
from novelforge.jobs.models import FollowUpJob, Job, JobType, RecoveryState, StageResult
from novelforge.jobs import prompts
from novelforge.utils.logging import get_logger

logger = get_logger("stages")

StageHandler = Callable[[Job, Optional[RecoveryState]], Awaitable[StageResult]]

CHAPTER_MAX_TOKENS = 4096
SUMMARY_MAX_TOKENS = 500
STATES_MAX_TOKENS = 1000

# Job type -> review kind passed to the specialist agent
SPECIALIST_REVIEWS = {
    JobType.SENSITIVITY_REVIEW: "sensitivity",
    JobType.RESEARCH_REVIEW: "research",
    JobType.BETA_READER_REVIEW: "beta_reader",
    JobType.OPENING_REVIEW: "opening",
    JobType.DIALOGUE_REVIEW: "dialogue",
    JobType.HOOK_REVIEW: "hook",
}


class ChapterNotFoundError(Exception):
    pass


class StageHandlers:
    """
    Registry of stage handlers keyed by JobType.

    The registry is checked for completeness at construction, so a job
    type without a handler is caught at startup rather than at dispatch.
    """

    def __init__(
        self,
        checkpoints: CheckpointManager,
        chapters: ChapterRepository,
        metrics: MetricsSink,
        generation: GenerationClient,
        editorial: EditorialClient,
        specialists: SpecialistClient
    ):
        self.checkpoints = checkpoints
        self.chapters = chapters
        self.metrics = metrics
        self.generation = generation
        self.editorial = editorial
        self.specialists = specialists

        self.registry: Dict[JobType, StageHandler] = {
            JobType.GENERATE_CHAPTER: self.generate_chapter,
            JobType.DEV_EDIT: self.developmental_edit,
            JobType.AUTHOR_REVISION: self.author_revision,
            JobType.LINE_EDIT: self.line_edit,
            JobType.CONTINUITY_CHECK: self.continuity_check,
            JobType.COPY_EDIT: self.copy_edit,
            JobType.PROOFREAD: self.proofread,
            JobType.GENERATE_SUMMARY: self.generate_summary,
            JobType.UPDATE_STATES: self.update_states,
        }
        for job_type in SPECIALIST_REVIEWS:
            self.registry[job_type] = self.specialist_review

        missing = set(JobType) - set(self.registry)
        if missing:
            raise RuntimeError(f"No stage handler for: {sorted(t.value for t in missing)}")

    def get_handler(self, job_type: str) -> StageHandler:
        try:
            return self.registry[JobType(job_type)]
        except ValueError:
            raise UnknownJobTypeError(f"Unknown job type: {job_type}") from None

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _checkpoint(self, job: Job, step: str, data: Optional[Dict[str, Any]] = None):
        """Record that ``step`` was reached."""
        await self.checkpoints.save(job.id, step, {"chapter_id": job.target_id, **(data or {})})
        await self.checkpoints.mark_step_completed(job.id, step)

    async def _require_chapter(self, chapter_id: str) -> Chapter:
        chapter = await self.chapters.get_chapter(chapter_id)
        if chapter is None:
            raise ChapterNotFoundError(f"Chapter not found: {chapter_id}")
        return chapter

    async def _track(self, chapter_id: str, usage: Optional[TokenUsage]):
        if usage is None or (usage.input_tokens == 0 and usage.output_tokens == 0):
            return
        await self.metrics.track_tokens(chapter_id, usage.input_tokens, usage.output_tokens)

    async def _apply_edit_result(self, chapter: Chapter, result: EditResult):
        if result.edited_content and result.edited_content != chapter.content:
            await self.chapters.update_content(chapter.id, result.edited_content)
        if result.flags:
            await self.chapters.append_flags(chapter.id, result.flags)

    @staticmethod
    def _resumable(recovery: Optional[RecoveryState], step: str, key: str) -> Optional[Any]:
        """Value saved under ``key`` when the job crashed at or after ``step``."""
        if recovery is None or step not in recovery.completed_steps:
            return None
        return recovery.data.get(key)

    # =========================================================================
    # Chapter Generation
    # =========================================================================

    async def generate_chapter(self, job: Job, recovery: Optional[RecoveryState] = None) -> StageResult:
        chapter_id = job.target_id
        logger.info("generate_chapter: Processing chapter", chapter_id=chapter_id)

        await self._checkpoint(job, "started")

        try:
            chapter = await self._require_chapter(chapter_id)

            content = self._resumable(recovery, "content_generated", "content")
            if content:
                logger.info("generate_chapter: Reusing content from checkpoint", chapter_id=chapter_id)
                await self._checkpoint(job, "content_generated", {"content": content})
            else:
                await self.chapters.update_status(chapter_id, "writing")
                await self._checkpoint(job, "status_updated")

                story_bible = None
                if chapter.project_id:
                    story_bible = await self.chapters.get_story_bible(chapter.project_id)
                previous_summary = await self.chapters.get_previous_summary(chapter_id)
                user_prompt = prompts.build_chapter_prompt(chapter, story_bible, previous_summary)
                await self._checkpoint(job, "context_assembled", {
                    "estimated_tokens": len(user_prompt) // 4,
                })

                response = await self.generation.create_completion_with_usage(
                    system=prompts.CHAPTER_SYSTEM_PROMPT,
                    messages=[{"role": "user", "content": user_prompt}],
                    max_tokens=CHAPTER_MAX_TOKENS,
                    temperature=1.0,
                )
                content = response.content
                await self._track(chapter_id, response.usage)

                await self._checkpoint(job, "content_generated", {
                    "content": content,
                    "word_count": count_words(content),
                    "input_tokens": response.usage.input_tokens,
                    "output_tokens": response.usage.output_tokens,
                })

            await self.chapters.update_content(chapter_id, content, status="editing")
            word_count = count_words(content)
            logger.info("generate_chapter: Chapter generated", chapter_id=chapter_id, word_count=word_count)

            await self._checkpoint(job, "completed", {"word_count": word_count})
            return StageResult(metadata={"word_count": word_count})

        except Exception as e:
            logger.error("generate_chapter: Error generating chapter", chapter_id=chapter_id, error=str(e))
            # Never leave the chapter stuck in 'writing'
            await self.chapters.update_status(chapter_id, "pending")
            raise

    # =========================================================================
    # Editorial Chain
    # =========================================================================

    async def developmental_edit(self, job: Job, recovery: Optional[RecoveryState] = None) -> StageResult:
        chapter_id = job.target_id
        logger.info("dev_edit: Processing chapter", chapter_id=chapter_id)

        await self._checkpoint(job, "started")
        chapter = await self._require_chapter(chapter_id)

        result = await self.editorial.developmental_edit(chapter)
        await self._track(chapter_id, result.usage)

        await self._checkpoint(job, "dev_edit_complete", {
            "suggestions_count": len(result.suggestions),
            "flags_count": len(result.flags),
            "needs_revision": not result.approved,
        })

        await self._apply_edit_result(chapter, result)

        follow_ups: List[FollowUpJob] = []
        if not result.approved:
            logger.info("dev_edit: Chapter needs revision, queueing author_revision", chapter_id=chapter_id)
            follow_ups.append(FollowUpJob(
                type=JobType.AUTHOR_REVISION,
                target_id=chapter_id,
                payload={"dev_edit_result": result.to_dict()},
            ))

        logger.info("dev_edit: Complete", flags_count=len(result.flags), approved=result.approved)
        await self._checkpoint(job, "completed")
        return StageResult(follow_up_jobs=follow_ups, metadata={"approved": result.approved})

    async def author_revision(self, job: Job, recovery: Optional[RecoveryState] = None) -> StageResult:
        chapter_id = job.target_id
        logger.info("author_revision: Processing chapter", chapter_id=chapter_id)

        await self._checkpoint(job, "started")

        feedback = job.payload.get("dev_edit_result")
        if not feedback:
            raise ValueError("No developmental edit feedback found for revision")

        content = self._resumable(recovery, "content_generated", "content")
        if content:
            logger.info("author_revision: Reusing revision from checkpoint", chapter_id=chapter_id)
            await self._checkpoint(job, "content_generated", {"content": content})
        else:
            chapter = await self._require_chapter(chapter_id)
            revision = await self.editorial.author_revision(chapter, feedback)
            await self._track(chapter_id, revision.usage)
            content = revision.content
            await self._checkpoint(job, "content_generated", {"content": content})

        await self.chapters.update_content(chapter_id, content)
        logger.info("author_revision: Revision complete", chapter_id=chapter_id)

        await self._checkpoint(job, "completed")
        return StageResult()

    async def _editorial_pass(
        self,
        job: Job,
        name: str,
        run: Callable[[Chapter], Awaitable[EditResult]]
    ) -> EditResult:
        chapter_id = job.target_id
        logger.info(f"{name}: Processing chapter", chapter_id=chapter_id)

        await self._checkpoint(job, "started")
        chapter = await self._require_chapter(chapter_id)

        result = await run(chapter)
        await self._track(chapter_id, result.usage)

        await self._checkpoint(job, f"{name}_complete", {
            "suggestions_count": len(result.suggestions),
            "flags_count": len(result.flags),
        })

        await self._apply_edit_result(chapter, result)
        logger.info(f"{name}: Complete", flags_count=len(result.flags))
        return result

    async def line_edit(self, job: Job, recovery: Optional[RecoveryState] = None) -> StageResult:
        await self._editorial_pass(job, "line_edit", self.editorial.line_edit)
        await self._checkpoint(job, "completed")
        return StageResult()

    async def continuity_check(self, job: Job, recovery: Optional[RecoveryState] = None) -> StageResult:
        async def run(chapter: Chapter) -> EditResult:
            story_bible = None
            if chapter.project_id:
                story_bible = await self.chapters.get_story_bible(chapter.project_id)
            return await self.editorial.continuity_edit(chapter, story_bible)

        await self._editorial_pass(job, "continuity_check", run)
        await self._checkpoint(job, "completed")
        return StageResult()

    async def copy_edit(self, job: Job, recovery: Optional[RecoveryState] = None) -> StageResult:
        await self._editorial_pass(job, "copy_edit", self.editorial.copy_edit)
        await self._checkpoint(job, "completed")
        return StageResult()

    async def proofread(self, job: Job, recovery: Optional[RecoveryState] = None) -> StageResult:
        await self._editorial_pass(job, "proofread", self.editorial.proofread)

        # Last editing step: word count reflects the final text
        word_count = await self.chapters.refresh_word_count(job.target_id)

        await self._checkpoint(job, "completed", {"word_count": word_count})
        return StageResult(metadata={"word_count": word_count})

    # =========================================================================
    # Specialist Reviews
    # =========================================================================

    async def specialist_review(self, job: Job, recovery: Optional[RecoveryState] = None) -> StageResult:
        review_type = SPECIALIST_REVIEWS[JobType(job.type)]
        chapter_id = job.target_id
        logger.info(f"{job.type}: Processing chapter", chapter_id=chapter_id)

        await self._checkpoint(job, "started")
        chapter = await self._require_chapter(chapter_id)

        # The opening specialist only looks at the first chapter
        if job.type == JobType.OPENING_REVIEW and chapter.chapter_number != 1:
            logger.info("opening_review: Not chapter 1, skipping", chapter_id=chapter_id)
            await self._checkpoint(job, "completed", {"skipped": True})
            return StageResult(metadata={"skipped": True})

        result = await self.specialists.review(review_type, chapter)
        await self._track(chapter_id, result.usage)

        if result.edited_content and result.edited_content != result.original_content:
            await self.chapters.update_content(chapter_id, result.edited_content)

        if result.flags:
            await self.chapters.append_flags(chapter_id, result.flags)

        logger.info(
            f"{job.type}: Complete",
            score=result.score,
            findings_count=len(result.findings),
        )
        await self._checkpoint(job, "completed")
        return StageResult(metadata={"score": result.score})

    # =========================================================================
    # Finalization
    # =========================================================================

    async def generate_summary(self, job: Job, recovery: Optional[RecoveryState] = None) -> StageResult:
        chapter_id = job.target_id
        logger.info("generate_summary: Processing chapter", chapter_id=chapter_id)

        await self._checkpoint(job, "started")

        chapter = await self._require_chapter(chapter_id)
        if not chapter.content:
            raise ValueError("Chapter content not found")

        response = await self.generation.create_completion_with_usage(
            system=prompts.SUMMARY_SYSTEM_PROMPT,
            messages=[{"role": "user", "content": prompts.build_summary_prompt(chapter.content)}],
            max_tokens=SUMMARY_MAX_TOKENS,
            temperature=0.7,
        )
        await self._track(chapter_id, response.usage)

        await self._checkpoint(job, "summary_generated")

        await self.chapters.update_summary(chapter_id, response.content.strip())
        logger.info("generate_summary: Summary saved", chapter_number=chapter.chapter_number)

        await self._checkpoint(job, "completed")
        return StageResult()

    async def update_states(self, job: Job, recovery: Optional[RecoveryState] = None) -> StageResult:
        """
        Sync character states into the story bible, then mark the chapter
        completed. This is the last stage of the chain and the only one
        that finishes the chapter.
        """
        chapter_id = job.target_id
        logger.info("update_states: Processing chapter", chapter_id=chapter_id)

        await self._checkpoint(job, "started")

        chapter = await self._require_chapter(chapter_id)
        if not chapter.content:
            raise ValueError("Chapter data not found")

        story_bible = None
        if chapter.project_id:
            story_bible = await self.chapters.get_story_bible(chapter.project_id)

        if not story_bible or not story_bible.get("characters"):
            logger.info("update_states: No story bible found, skipping state update")
            return await self._finish_chapter(job)

        character_names: List[str] = []
        for scene in chapter.scene_cards:
            for name in scene.get("characters", []):
                if name not in character_names:
                    character_names.append(name)

        if not character_names:
            logger.info("update_states: No characters to update")
            return await self._finish_chapter(job)

        response = await self.generation.create_completion_with_usage(
            system=prompts.STATES_SYSTEM_PROMPT,
            messages=[{"role": "user", "content": prompts.build_states_prompt(chapter.content, character_names)}],
            max_tokens=STATES_MAX_TOKENS,
            temperature=0.5,
        )
        await self._track(chapter_id, response.usage)

        await self._checkpoint(job, "states_analyzed")

        try:
            state_updates = prompts.extract_json_object(response.content)
        except ValueError as e:
            # Unparseable output is not worth a retry; the chapter still finishes
            logger.error(
                "update_states: Failed to parse state updates",
                error=str(e),
                response=response.content[:500],
            )
            return await self._finish_chapter(job)

        updated = []
        for character in story_bible["characters"]:
            name = character.get("name")
            if name in state_updates:
                character["currentState"] = state_updates[name]
                updated.append(name)

        await self.chapters.update_story_bible(chapter.project_id, story_bible)
        logger.info("update_states: Character states updated", characters=updated)

        return await self._finish_chapter(job, {"updated_characters": updated})

    async def _finish_chapter(self, job: Job, data: Optional[Dict[str, Any]] = None) -> StageResult:
        await self.chapters.update_status(job.target_id, "completed")
        logger.info("Chapter marked as completed", chapter_id=job.target_id)
        await self._checkpoint(job, "completed", data)
        return StageResult(metadata=data or {})
