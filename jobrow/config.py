"""
Settings for the command line worker.

Loaded from ``JOBROW_*`` environment variables and an optional ``.env``
file. The library itself never reads them: ``Queue``, ``Worker`` and
``AdvisoryLock`` take their configuration as constructor arguments.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="JOBROW_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: str = "sqlite:///jobrow.sqlite"
    db_max_retries: int = 5
    db_retry_delay: float = 0.05

    # Worker
    queue: str = "default"
    sleep: float = 3.0
    max_jobs: int = 0
    max_attempts: int = 3
    backoff: int = 60
    reclaim_after: int | None = None

    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
