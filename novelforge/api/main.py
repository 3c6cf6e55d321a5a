"""
FastAPI application for the NovelForge queue service.

Serves the queue admin routes and, when ENABLE_QUEUE_WORKER is set, runs
the queue worker inside the API process.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from novelforge.config import config
from novelforge.jobs import close_queue, get_queue, get_worker, start_queue_worker, stop_queue_worker
from novelforge.jobs.errors import format_error_details
from novelforge.routes import queue_router
from novelforge.utils.logging import api_logger as logger, configure_logging


app = FastAPI(
    title="NovelForge",
    description="Durable job pipeline for chapter generation and editing",
    version="0.1.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(queue_router)


# ===== Health Check =====

@app.get("/health")
async def health_check():
    """Health check endpoint - must be fast and reliable."""
    worker = get_worker()
    return {
        "status": "healthy",
        "worker_running": worker.is_running if worker else False,
        "generation_configured": config.can_generate
    }


# ===== Error Handlers =====

@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Global exception handler."""
    logger.error("Unhandled API error", path=str(request.url.path), error=format_error_details(exc))
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "detail": str(exc) if config.DEBUG else "An error occurred",
            "type": type(exc).__name__
        }
    )


# ===== Startup Event =====

@app.on_event("startup")
async def startup_event():
    """Open the queue and start the worker."""
    configure_logging(config.LOG_LEVEL)
    logger.info(
        "NovelForge API starting",
        environment=config.ENVIRONMENT,
        job_db=config.job_db_path,
        worker_enabled=config.ENABLE_QUEUE_WORKER,
    )

    await get_queue()

    if not config.ENABLE_QUEUE_WORKER:
        logger.info("Queue worker disabled (run novelforge.jobs.run_worker separately)")
        return

    if not config.can_generate:
        logger.warning("ANTHROPIC_API_KEY is not set, generation jobs will fail")

    await start_queue_worker()


# ===== Shutdown Event =====

@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on shutdown."""
    logger.info("NovelForge API shutting down")

    # Let the in-flight job finish before the connections go away
    await stop_queue_worker()
    await close_queue()

    logger.info("Shutdown complete")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "novelforge.api.main:app",
        host=config.API_HOST,
        port=config.API_PORT,
        reload=config.DEBUG,
        log_level=config.LOG_LEVEL.lower()
    )
