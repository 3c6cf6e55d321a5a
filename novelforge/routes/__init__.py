"""HTTP routes for NovelForge."""

from novelforge.routes.queue import router as queue_router

__all__ = ["queue_router"]
