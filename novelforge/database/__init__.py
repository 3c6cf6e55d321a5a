"""
NovelForge Database Layer

Stores for the entities pipeline jobs operate on. The job queue keeps its
own tables in novelforge.jobs.database.
"""

from .chapters import ChapterStore
from .metrics import MetricsStore

__all__ = [
    "ChapterStore",
    "MetricsStore",
]
