"""
EditorialAgent: the editing passes run after a chapter is drafted.

The editorial chain, in pipeline order:
  Developmental edit → (Author revision) → Line edit → Continuity → Copy edit → Proofread

Developmental and continuity passes analyze and return JSON; the others
return the edited chapter text directly. Nothing here writes to storage:
the stage handlers apply the results.
"""

import json
import re
import uuid
from typing import Any, Dict, List, Optional

from novelforge.jobs.contracts import (
    Chapter,
    CompletionResult,
    EditResult,
    GenerationClient,
)
from novelforge.jobs.prompts import extract_json_object
from novelforge.utils.logging import get_logger

logger = get_logger("editorial")


# Inline markers editors leave for the author: [NEEDS AUTHOR: reason]
AUTHOR_MARKER = re.compile(r"\[NEEDS AUTHOR:\s*([^\]]+)\]")


DEV_EDIT_SYSTEM = """You are a developmental editor for fiction. Your expertise is in story structure, pacing, character development, and plot logic.

Analyze the chapter for:
1. **Plot & Structure**: Does the scene accomplish its goals? Is there a clear arc?
2. **Pacing**: Too slow? Too rushed? Are there dead spots?
3. **Character Consistency**: Do characters act on their established motivations?
4. **Conflict & Tension**: Does tension escalate appropriately?
5. **Emotional Beats**: Do emotional moments land?

Be specific. Point to exact locations in the text. For moderate to major issues that need addressing, create a FLAG."""

REVISION_SYSTEM = """You are the author of this novel. Your developmental editor has reviewed a chapter you wrote.

Revise the chapter to address the editor's concerns while keeping the core plot beats,
the character voices and the genre and tone of the story. Make substantive revisions
where needed, not just surface changes."""

LINE_EDIT_SYSTEM = """You are a line editor for fiction. Polish the chapter at the sentence and paragraph level:
vary sentence rhythm, prefer active voice, strengthen showing through concrete sensory detail,
make dialogue natural and character-specific, cut redundancy and replace clichés.

Make direct edits. Mark sections that need author attention with [NEEDS AUTHOR: reason]."""

CONTINUITY_SYSTEM = """You are a continuity editor for fiction. Catch inconsistencies in character names,
physical descriptions, character knowledge, timeline, locations, world rules, relationships
and object tracking. For each inconsistency, give the conflicting information and suggest a fix."""

COPY_EDIT_SYSTEM = """You are a copy editor for fiction. Fix grammar, punctuation, spelling and
capitalization, and keep formatting consistent (scene breaks as * * *).

Do NOT change word choice, sentence structure, or prose style unless it is a clear grammatical error."""

PROOFREAD_SYSTEM = """You are a proofreader doing the final pass before publication. Fix typos,
doubled or missing words and broken punctuation only. Change nothing else."""


class EditorialAgent:
    """Runs each editing pass through the shared generation service."""

    def __init__(self, generation: GenerationClient):
        self.generation = generation

    async def developmental_edit(self, chapter: Chapter) -> EditResult:
        content = _require_content(chapter)

        prompt = f"""Review this chapter for developmental issues.

CHAPTER NUMBER: {chapter.chapter_number}

EXPECTED SCENE GOALS:
{json.dumps(chapter.scene_cards, indent=2)}

CHAPTER CONTENT:
{content}

Provide your analysis in this JSON format:
{{
  "overallAssessment": "1-2 sentence summary of chapter quality",
  "suggestions": [
    {{
      "type": "plot|character|pacing",
      "location": "paragraph or scene reference",
      "issue": "what's the problem",
      "suggestion": "how to fix it",
      "severity": "minor|moderate|major"
    }}
  ],
  "flags": [
    {{
      "type": "unresolved|needs_review|plot_hole",
      "severity": "minor|major|critical",
      "description": "what needs attention",
      "location": "where in the chapter"
    }}
  ],
  "needsRevision": true,
  "revisionGuidance": "If needsRevision is true, clear guidance for the author on what to fix"
}}

Output only valid JSON, no commentary:"""

        response = await self.generation.create_completion_with_usage(
            system=DEV_EDIT_SYSTEM,
            messages=[{"role": "user", "content": prompt}],
            max_tokens=2000,
            temperature=0.7,
        )
        analysis = extract_json_object(response.content)

        result = EditResult(
            approved=not analysis.get("needsRevision", False),
            flags=_flags(analysis.get("flags"), "developmental"),
            suggestions=list(analysis.get("suggestions") or []),
            revision_guidance=analysis.get("revisionGuidance"),
            usage=response.usage,
        )
        logger.info(
            "Developmental edit complete",
            chapter_id=chapter.id,
            suggestions=len(result.suggestions),
            needs_revision=not result.approved,
        )
        return result

    async def author_revision(self, chapter: Chapter, feedback: Dict[str, Any]) -> CompletionResult:
        content = _require_content(chapter)

        suggestions = feedback.get("suggestions") or []
        has_major = any(s.get("severity") == "major" for s in suggestions if isinstance(s, dict))

        sections = [
            "Revise this chapter based on the developmental editor's feedback.",
            f"ORIGINAL CHAPTER:\n{content}",
            f"DEVELOPMENTAL EDITOR FEEDBACK:\n{json.dumps(suggestions, indent=2)}",
        ]
        if feedback.get("revision_guidance"):
            sections.append(f"EDITOR'S GUIDANCE:\n{feedback['revision_guidance']}")
        if has_major:
            sections.append(
                "REVISION GUIDANCE:\nPay special attention to the major issues identified above. "
                "These need significant revision."
            )
        sections.append("Output the revised chapter:")

        response = await self.generation.create_completion_with_usage(
            system=REVISION_SYSTEM,
            messages=[{"role": "user", "content": "\n\n".join(sections)}],
            max_tokens=4096,
            temperature=1.0,
        )
        return CompletionResult(content=response.content.strip(), usage=response.usage)

    async def line_edit(self, chapter: Chapter) -> EditResult:
        return await self._rewrite(
            chapter,
            system=LINE_EDIT_SYSTEM,
            instruction="Polish this chapter at the line level. Focus on prose quality, dialogue, and sensory details.",
            temperature=0.8,
            source="line_edit",
        )

    async def continuity_edit(self, chapter: Chapter, story_bible: Optional[Dict[str, Any]]) -> EditResult:
        content = _require_content(chapter)

        prompt = f"""Check this chapter for continuity errors.

STORY BIBLE:
{json.dumps(story_bible or {}, indent=2)}

CURRENT CHAPTER:
{content}

Provide your analysis in this JSON format:
{{
  "errors": [
    {{
      "location": "where in current chapter",
      "issue": "what's inconsistent",
      "conflictsWith": "what it conflicts with",
      "suggestion": "how to fix it",
      "severity": "minor|moderate|major"
    }}
  ],
  "flags": [
    {{
      "type": "continuity_error",
      "severity": "minor|major|critical",
      "description": "description of the continuity issue",
      "location": "where in the chapter"
    }}
  ]
}}

Output only valid JSON, no commentary:"""

        response = await self.generation.create_completion_with_usage(
            system=CONTINUITY_SYSTEM,
            messages=[{"role": "user", "content": prompt}],
            max_tokens=2000,
            temperature=0.5,
        )
        analysis = extract_json_object(response.content)

        suggestions = [
            {**error, "type": "continuity"}
            for error in (analysis.get("errors") or [])
            if isinstance(error, dict)
        ]
        flags = _flags(analysis.get("flags"), "continuity")
        return EditResult(
            approved=not flags,
            flags=flags,
            suggestions=suggestions,
            usage=response.usage,
        )

    async def copy_edit(self, chapter: Chapter) -> EditResult:
        return await self._rewrite(
            chapter,
            system=COPY_EDIT_SYSTEM,
            instruction="Copy edit this chapter. Fix grammar, punctuation, and style issues.",
            temperature=0.3,
            source="copy_edit",
        )

    async def proofread(self, chapter: Chapter) -> EditResult:
        return await self._rewrite(
            chapter,
            system=PROOFREAD_SYSTEM,
            instruction="Proofread this chapter.",
            temperature=0.2,
            source="proofread",
        )

    async def _rewrite(
        self,
        chapter: Chapter,
        system: str,
        instruction: str,
        temperature: float,
        source: str
    ) -> EditResult:
        """Passes that return the edited chapter text itself."""
        content = _require_content(chapter)

        prompt = f"""{instruction}

CHAPTER CONTENT:
{content}

Output the edited chapter text:"""

        response = await self.generation.create_completion_with_usage(
            system=system,
            messages=[{"role": "user", "content": prompt}],
            max_tokens=4096,
            temperature=temperature,
        )
        edited = response.content.strip()

        return EditResult(
            approved=True,
            edited_content=edited or None,
            flags=extract_author_flags(edited, source),
            usage=response.usage,
        )


def extract_author_flags(text: str, source: str) -> List[Dict[str, Any]]:
    """Turn [NEEDS AUTHOR: ...] markers into flags."""
    return [
        _flag("needs_review", "major", match.strip(), "See marked location in chapter text", source)
        for match in AUTHOR_MARKER.findall(text or "")
    ]


def _flags(raw: Any, source: str) -> List[Dict[str, Any]]:
    flags = []
    for item in raw or []:
        if not isinstance(item, dict):
            continue
        flags.append(_flag(
            item.get("type", "needs_review"),
            item.get("severity", "minor"),
            item.get("description", ""),
            item.get("location"),
            source,
        ))
    return flags


def _flag(flag_type: str, severity: str, description: str, location: Optional[str], source: str) -> Dict[str, Any]:
    return {
        "id": f"flag_{uuid.uuid4().hex[:12]}",
        "type": flag_type,
        "severity": severity,
        "description": description,
        "location": location,
        "source": source,
        "resolved": False,
    }


def _require_content(chapter: Chapter) -> str:
    if not chapter.content:
        raise ValueError(f"Chapter content not found: {chapter.id}")
    return chapter.content
