"""
Agents that call Claude on behalf of the pipeline stages.

- GenerationService: shared ChatAnthropic wrapper (session usage, rate limits)
- EditorialAgent: developmental edit, author revision, line/continuity/copy edit, proofread
- SpecialistAgent: sensitivity, research, beta reader, opening, dialogue and hook reviews
"""

from novelforge.agents.generation import GenerationService
from novelforge.agents.editorial import EditorialAgent
from novelforge.agents.specialists import SpecialistAgent, SPECIALIST_REVIEWS

__all__ = [
    "GenerationService",
    "EditorialAgent",
    "SpecialistAgent",
    "SPECIALIST_REVIEWS",
]
