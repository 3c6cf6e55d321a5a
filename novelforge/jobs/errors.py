"""
Exceptions raised inside the job pipeline and the formatter that turns
any exception into the diagnostic string stored on a job.
"""

import sqlite3
import traceback
from datetime import datetime
from typing import Optional


class RateLimitError(Exception):
    """The upstream completion API asked us to back off (429 / 529)."""

    def __init__(self, message: str, reset_time: Optional[datetime] = None):
        super().__init__(message)
        self.reset_time = reset_time


class UnknownJobTypeError(Exception):
    """A job carries a type no stage handler is registered for. Never retried."""
    pass


class CheckpointDecodeError(Exception):
    """A stored checkpoint could not be decoded."""
    pass


MAX_STACK_LINES = 5


def format_error_details(error: Optional[BaseException]) -> str:
    """
    Build the diagnostic string stored on a job.

    Includes, when available: an error code, the message, the offending
    SQL and the first few lines of the stack trace.
    """
    if error is None:
        return "Unknown error"

    parts = []

    code = getattr(error, "code", None)
    if code is None and isinstance(error, sqlite3.Error):
        code = getattr(error, "sqlite_errorname", None)
    if code:
        parts.append(f"[{code}]")

    message = str(error)
    if message:
        parts.append(message)
    else:
        parts.append(type(error).__name__)

    sql = getattr(error, "sql", None)
    if sql:
        parts.append(f"\n\nSQL: {sql}")

    if error.__traceback__ is not None:
        frames = traceback.format_tb(error.__traceback__)
        stack_lines = "".join(frames).rstrip().splitlines()[:MAX_STACK_LINES]
        if stack_lines:
            parts.append("\n\nStack:\n" + "\n".join(stack_lines))

    return " ".join(parts) or "Unknown error"
