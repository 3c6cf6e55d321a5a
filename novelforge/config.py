"""
Application configuration management using Pydantic Settings.

This module provides a type-safe, centralized configuration system
that loads from environment variables with sensible defaults.
"""

import os

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppConfig(BaseSettings):
    """
    Application configuration loaded from environment variables.

    All settings can be overridden via .env file or environment variables.
    Settings are validated at startup using Pydantic.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # ===== API Keys =====
    ANTHROPIC_API_KEY: str | None = Field(
        default=None,
        description="Anthropic API key for Claude (required for chapter generation and editing)"
    )

    # ===== LLM Configuration =====
    MODEL_NAME: str = Field(
        default="claude-sonnet-4-5-20250929",
        description="Claude model used by every pipeline stage"
    )

    LLM_TIMEOUT_SECONDS: float = Field(
        default=300.0,
        ge=10.0,
        description="Request timeout for a single completion call"
    )

    # ===== Storage =====
    JOB_DB_PATH: str = Field(
        default="novelforge_jobs.db",
        description="SQLite file holding jobs, checkpoints and session tracking"
    )

    CHAPTER_DB_PATH: str = Field(
        default="novelforge.db",
        description="SQLite file holding projects, chapters and token metrics"
    )

    STORAGE_PATH: str | None = Field(
        default=None,
        description="Persistent volume mount. If set, database files are placed under it"
    )

    @property
    def job_db_path(self) -> str:
        """Get job DB path, using persistent storage if available."""
        if self.STORAGE_PATH:
            return os.path.join(self.STORAGE_PATH, os.path.basename(self.JOB_DB_PATH))
        return self.JOB_DB_PATH

    @property
    def chapter_db_path(self) -> str:
        """Get chapter DB path, using persistent storage if available."""
        if self.STORAGE_PATH:
            return os.path.join(self.STORAGE_PATH, os.path.basename(self.CHAPTER_DB_PATH))
        return self.CHAPTER_DB_PATH

    # ===== Queue Worker =====
    QUEUE_POLL_INTERVAL_SECONDS: float = Field(
        default=1.0,
        gt=0,
        le=60,
        description="Seconds between two polls of the job table"
    )

    MAX_JOB_RETRY_ATTEMPTS: int = Field(
        default=3,
        ge=1,
        le=20,
        description="Attempts before a job is marked permanently failed"
    )

    GRACEFUL_SHUTDOWN_TIMEOUT_SECONDS: float = Field(
        default=60.0,
        ge=0,
        description="How long stop() waits for the in-flight job"
    )

    ENABLE_QUEUE_WORKER: bool = Field(
        default=True,
        description="Start the queue worker inside the API process"
    )

    # ===== Rate Limiting =====
    RATE_LIMIT_FALLBACK_MINUTES: float = Field(
        default=30.0,
        gt=0,
        description="Conservative wait when no session reset time is known"
    )

    SESSION_DURATION_HOURS: float = Field(
        default=5.0,
        gt=0,
        le=24,
        description="Length of the upstream usage window (Claude sessions reset every 5 hours)"
    )

    @field_validator('ENABLE_QUEUE_WORKER', 'DEBUG', mode='before')
    @classmethod
    def parse_bool_string(cls, v):
        """Parse boolean from string values (platform env vars are strings)."""
        if isinstance(v, bool):
            return v
        if isinstance(v, str):
            return v.lower() in ("true", "1", "yes", "on")
        return False

    # ===== Application Settings =====
    ENVIRONMENT: str = Field(
        default="development",
        description="Environment mode: development or production"
    )

    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)"
    )

    DEBUG: bool = Field(
        default=False,
        description="Include exception details in API error responses"
    )

    # ===== API Server =====
    API_HOST: str = Field(default="0.0.0.0", description="API server host")
    API_PORT: int = Field(default=8000, ge=1, le=65535, description="API server port")

    # ===== Computed Properties =====

    @property
    def session_duration_seconds(self) -> float:
        return self.SESSION_DURATION_HOURS * 3600

    @property
    def rate_limit_fallback_seconds(self) -> float:
        return self.RATE_LIMIT_FALLBACK_MINUTES * 60

    @property
    def can_generate(self) -> bool:
        """Check if the generation service has credentials."""
        return self.ANTHROPIC_API_KEY is not None


# Global configuration instance
# Import this in other modules: from novelforge.config import config
config = AppConfig()


if __name__ == "__main__":
    print("Configuration loaded successfully!")
    print(f"Model: {config.MODEL_NAME}")
    print(f"Job DB: {config.job_db_path}")
    print(f"Chapter DB: {config.chapter_db_path}")
    print(f"Poll interval: {config.QUEUE_POLL_INTERVAL_SECONDS}s")
    print(f"Max attempts: {config.MAX_JOB_RETRY_ATTEMPTS}")
    print(f"Generation: {'✓' if config.can_generate else '✗'}")
