"""Utility modules for NovelForge."""

from novelforge.utils.logging import (
    get_logger,
    get_log_buffer,
    configure_logging,
    LogLevel,
    LogEntry,
    AppLogger,
    job_logger,
    checkpoint_logger,
    rate_limit_logger,
    generation_logger,
    api_logger,
)

__all__ = [
    "get_logger",
    "get_log_buffer",
    "configure_logging",
    "LogLevel",
    "LogEntry",
    "AppLogger",
    "job_logger",
    "checkpoint_logger",
    "rate_limit_logger",
    "generation_logger",
    "api_logger",
]
