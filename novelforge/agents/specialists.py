"""
SpecialistAgent: focused reviews that run after the editorial chain.

- sensitivity: harmful stereotypes, cultural accuracy, representation
- research: historical and technical accuracy
- beta_reader: simulated reader engagement and confusion points
- opening: first-page hook (chapter 1 only, enforced by the stage handler)
- dialogue: natural dialogue and distinct character voices
- hook: chapter endings that pull the reader forward

Each review may return a revised chapter; the stage handler only writes
it back when it differs from the original.
"""

from typing import Any, Dict, List, Optional

from novelforge.agents.editorial import extract_author_flags
from novelforge.jobs.contracts import Chapter, GenerationClient, SpecialistResult
from novelforge.jobs.prompts import extract_json_object
from novelforge.utils.logging import get_logger

logger = get_logger("specialists")


SPECIALIST_REVIEWS = {
    "sensitivity": {
        "system": """You are a professional sensitivity reader with expertise in diverse representation,
cultural authenticity, and inclusive storytelling. Review fiction for harmful stereotypes, inaccurate
cultural depictions, tokenized characters, microaggressions, ableist language and unframed
anachronistic attitudes. Quote problematic passages and suggest alternative phrasing.""",
        "finding_types": "stereotype|cultural_accuracy|representation|microaggression|disability|historical",
        "flag_type": "sensitivity_concern",
        "revise": "If major or critical findings exist, provide the full revised chapter. Otherwise, output the original.",
        "score_field": None,
        "max_tokens": 6000,
        "temperature": 0.3,
    },
    "research": {
        "system": """You are a fact-checker and research specialist for fiction. Your expertise spans
historical accuracy, technical details, and real-world consistency. Flag anachronisms, wrong
technical or procedural details and geographic errors, and suggest accurate alternatives.""",
        "finding_types": "anachronism|technical|geographic|procedural|cultural",
        "flag_type": "research_needed",
        "revise": "If major findings exist, provide the full revised chapter with corrections. Otherwise, output the original.",
        "score_field": None,
        "max_tokens": 6000,
        "temperature": 0.2,
    },
    "beta_reader": {
        "system": """You are a beta reader providing authentic reader reactions. Report where you were
confused, bored, surprised or moved, which characters you cared about, and whether you would keep
reading. Be honest, not polite.""",
        "finding_types": "confusion|pacing|engagement|character_connection",
        "flag_type": "reader_concern",
        "revise": None,
        "score_field": "overallEngagement",
        "max_tokens": 4000,
        "temperature": 0.7,
    },
    "opening": {
        "system": """You are an opening lines specialist. Your expertise is crafting first pages that hook
readers instantly. Judge the first line, the first paragraph and the first page: voice, intrigue,
character and stakes. Rewrite the opening when it does not compel.""",
        "finding_types": "first_line|first_paragraph|voice|stakes",
        "flag_type": "weak_opening",
        "revise": "If the opening needs work, provide the full chapter with a revised opening. Otherwise, output the original.",
        "score_field": "firstLineScore",
        "max_tokens": 5000,
        "temperature": 0.5,
    },
    "dialogue": {
        "system": """You are a dialogue specialist. Your expertise is crafting natural, distinctive dialogue
that reveals character. Flag on-the-nose lines, info-dumps, indistinct voices and weak beats or tags,
and tighten the dialogue where needed.""",
        "finding_types": "voice|on_the_nose|info_dump|tags|subtext",
        "flag_type": "dialogue_issue",
        "revise": "If dialogue needs revision, provide the full revised chapter. Otherwise, output the original.",
        "score_field": "overallDialogueScore",
        "max_tokens": 5000,
        "temperature": 0.4,
    },
    "hook": {
        "system": """You are a chapter ending specialist. Your expertise is crafting endings that compel
readers to continue. Judge whether the final page leaves an open question, rising tension or an
emotional turn, and strengthen the ending when it lets the reader put the book down.""",
        "finding_types": "resolution|tension|question|momentum",
        "flag_type": "weak_hook",
        "revise": "If the ending needs a stronger hook, provide the full chapter with a revised ending. Otherwise, output the original.",
        "score_field": "hookStrengthScore",
        "max_tokens": 4000,
        "temperature": 0.5,
    },
}


class SpecialistAgent:
    """Runs one specialist review through the shared generation service."""

    def __init__(self, generation: GenerationClient):
        self.generation = generation

    async def review(self, review_type: str, chapter: Chapter) -> SpecialistResult:
        """
        Run a specialist review.

        Args:
            review_type: key of SPECIALIST_REVIEWS
            chapter: chapter under review (must have content)

        Returns:
            SpecialistResult; an unparseable reply yields no findings and
            leaves the content unchanged
        """
        profile = SPECIALIST_REVIEWS.get(review_type)
        if profile is None:
            raise ValueError(f"Unknown specialist review: {review_type}")
        if not chapter.content:
            raise ValueError(f"Chapter content not found: {chapter.id}")

        response = await self.generation.create_completion_with_usage(
            system=profile["system"],
            messages=[{"role": "user", "content": self._build_prompt(profile, chapter)}],
            max_tokens=profile["max_tokens"],
            temperature=profile["temperature"],
        )

        try:
            parsed = extract_json_object(response.content)
        except ValueError as e:
            logger.warning(
                "Could not parse specialist response",
                review_type=review_type,
                chapter_id=chapter.id,
                error=str(e),
            )
            parsed = {}

        edited = parsed.get("revisedContent") if profile["revise"] else None
        if isinstance(edited, str) and edited.strip():
            edited = edited.strip()
        else:
            edited = chapter.content

        findings = [f for f in parsed.get("findings") or [] if isinstance(f, dict)]
        flags = self._flags(review_type, parsed.get("flags"))
        flags.extend(extract_author_flags(edited, review_type))

        score = _score(parsed.get(profile["score_field"])) if profile["score_field"] else None

        logger.info(
            "Specialist review complete",
            review_type=review_type,
            chapter_id=chapter.id,
            findings=len(findings),
            score=score,
        )
        return SpecialistResult(
            original_content=chapter.content,
            edited_content=edited,
            flags=flags,
            findings=findings,
            score=score,
            usage=response.usage,
        )

    def _build_prompt(self, profile: Dict[str, Any], chapter: Chapter) -> str:
        score_line = ""
        if profile["score_field"]:
            score_line = f'\n  "{profile["score_field"]}": 1-10,'

        revise_line = ""
        if profile["revise"]:
            revise_line = f'\n  "revisedContent": "{profile["revise"]}",'

        finding_types = profile["finding_types"]
        flag_type = profile["flag_type"]

        return f"""Review chapter {chapter.chapter_number}.

CHAPTER CONTENT:
{chapter.content}

Provide your analysis in this JSON format:
{{
  "overallAssessment": "1-2 sentence summary",{score_line}{revise_line}
  "findings": [
    {{
      "type": "{finding_types}",
      "location": "quote or paragraph reference",
      "issue": "what's wrong",
      "suggestion": "how to fix it",
      "severity": "minor|moderate|major|critical"
    }}
  ],
  "flags": [
    {{
      "type": "{flag_type}",
      "severity": "minor|major|critical",
      "description": "what needs attention",
      "location": "where in chapter"
    }}
  ]
}}

Output only valid JSON, no commentary:"""

    @staticmethod
    def _flags(review_type: str, raw: Any) -> List[Dict[str, Any]]:
        flags = []
        for item in raw or []:
            if isinstance(item, dict):
                flags.append({**item, "source": review_type, "resolved": False})
        return flags


def _score(value: Any) -> Optional[float]:
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None
