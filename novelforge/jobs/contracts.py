"""
Contracts between the job pipeline and the collaborators it drives.

Stage handlers only depend on these protocols and value types, so the
generation agents and stores can be swapped for fakes in tests.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol


@dataclass
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass
class CompletionResult:
    content: str
    usage: TokenUsage = field(default_factory=TokenUsage)


@dataclass
class Chapter:
    """The target entity most jobs operate on."""
    id: str
    project_id: Optional[str]
    chapter_number: int
    status: str
    content: Optional[str] = None
    word_count: int = 0
    summary: Optional[str] = None
    flags: List[Dict[str, Any]] = field(default_factory=list)
    scene_cards: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class EditResult:
    """Outcome of one editorial pass."""
    approved: bool = True
    edited_content: Optional[str] = None
    flags: List[Dict[str, Any]] = field(default_factory=list)
    suggestions: List[Dict[str, Any]] = field(default_factory=list)
    revision_guidance: Optional[str] = None
    usage: Optional[TokenUsage] = None

    def to_dict(self) -> Dict[str, Any]:
        """Feedback handed to the author revision job (content excluded)."""
        return {
            "approved": self.approved,
            "flags": self.flags,
            "suggestions": self.suggestions,
            "revision_guidance": self.revision_guidance,
        }


@dataclass
class SpecialistResult:
    """Outcome of one specialist review."""
    original_content: str
    edited_content: str
    flags: List[Dict[str, Any]] = field(default_factory=list)
    findings: List[str] = field(default_factory=list)
    score: Optional[float] = None
    usage: Optional[TokenUsage] = None


class GenerationClient(Protocol):
    async def create_completion(
        self,
        system: str,
        messages: List[Dict[str, str]],
        max_tokens: int = 4096,
        temperature: float = 0.7
    ) -> str: ...

    async def create_completion_with_usage(
        self,
        system: str,
        messages: List[Dict[str, str]],
        max_tokens: int = 4096,
        temperature: float = 0.7
    ) -> CompletionResult: ...


class EditorialClient(Protocol):
    async def developmental_edit(self, chapter: Chapter) -> EditResult: ...

    async def author_revision(self, chapter: Chapter, feedback: Dict[str, Any]) -> CompletionResult: ...

    async def line_edit(self, chapter: Chapter) -> EditResult: ...

    async def continuity_edit(self, chapter: Chapter, story_bible: Optional[Dict[str, Any]]) -> EditResult: ...

    async def copy_edit(self, chapter: Chapter) -> EditResult: ...

    async def proofread(self, chapter: Chapter) -> EditResult: ...


class SpecialistClient(Protocol):
    async def review(self, review_type: str, chapter: Chapter) -> SpecialistResult: ...


class ChapterRepository(Protocol):
    async def get_chapter(self, chapter_id: str) -> Optional[Chapter]: ...

    async def update_status(self, chapter_id: str, status: str): ...

    async def update_content(
        self,
        chapter_id: str,
        content: str,
        status: Optional[str] = None
    ): ...

    async def append_flags(self, chapter_id: str, flags: List[Dict[str, Any]]): ...

    async def update_summary(self, chapter_id: str, summary: str): ...

    async def refresh_word_count(self, chapter_id: str) -> int: ...

    async def get_previous_summary(self, chapter_id: str) -> Optional[str]: ...

    async def get_story_bible(self, project_id: str) -> Optional[Dict[str, Any]]: ...

    async def update_story_bible(self, project_id: str, story_bible: Dict[str, Any]): ...


class MetricsSink(Protocol):
    async def track_tokens(self, target_id: str, input_tokens: int, output_tokens: int): ...


def count_words(text: Optional[str]) -> int:
    return len(text.split()) if text else 0
