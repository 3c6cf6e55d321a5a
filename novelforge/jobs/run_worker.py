#!/usr/bin/env python3
"""
Standalone queue worker process.

Run this as a separate process from the web server so long generation
calls never hold up API workers.

Usage:
    python -m novelforge.jobs.run_worker
"""

import asyncio
import signal

from novelforge.config import config
from novelforge.jobs.errors import format_error_details
from novelforge.jobs.worker import create_queue_worker
from novelforge.utils.logging import configure_logging, job_logger as logger


async def main():
    """Run the queue worker as a standalone process."""
    configure_logging(config.LOG_LEVEL)

    logger.info(
        "Starting standalone queue worker",
        job_db=config.job_db_path,
        chapter_db=config.chapter_db_path,
        poll_interval=config.QUEUE_POLL_INTERVAL_SECONDS,
    )

    if not config.can_generate:
        logger.warning("ANTHROPIC_API_KEY is not set, generation jobs will fail")

    # Handle shutdown signals gracefully
    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def handle_shutdown(signum):
        logger.info("Received signal, shutting down", signal=signum)
        shutdown_event.set()

    for signum in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(signum, handle_shutdown, signum)

    worker = None
    try:
        worker = await create_queue_worker()
        worker.start()

        logger.info("Worker running. Press Ctrl+C to stop.")

        # Keep running until shutdown signal
        await shutdown_event.wait()

    except Exception as e:
        logger.error("Worker error", error=format_error_details(e))
        raise
    finally:
        if worker is not None:
            logger.info("Shutting down worker...")
            await worker.stop()
            await worker.close()
        logger.info("Worker stopped.")


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
