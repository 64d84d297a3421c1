"""Application settings powered by Pydantic BaseSettings."""

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.sources.backoff import BackoffPolicy
from src.sources.constants import (
    BACKOFF_LADDER,
    DEFAULT_CHECK_INTERVAL_MINUTES,
    JITTER_PCT,
    MAX_BACKOFF_LEVEL,
    MAX_RETRY_MINUTES,
    QUIET_AFTER_DAYS,
    SOURCE_VALIDATION_TIMEOUT_SECONDS,
)


class AppSettings(BaseSettings):
    """Centralized environment configuration.

    Every value can be overridden with a ``SOURCE_HEALTH_`` prefixed
    environment variable or a ``.env`` file, e.g.
    ``SOURCE_HEALTH_BACKOFF_LADDER=[1,2,4]``.
    """

    model_config = SettingsConfigDict(
        env_prefix="SOURCE_HEALTH_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    db_path: Path = Path("state/sources.sqlite")

    validation_timeout_seconds: float = Field(
        default=SOURCE_VALIDATION_TIMEOUT_SECONDS, gt=0.0, le=300.0
    )
    base_interval_minutes: int = Field(
        default=DEFAULT_CHECK_INTERVAL_MINUTES, ge=1, le=7 * 24 * 60
    )
    backoff_ladder: tuple[int, ...] = BACKOFF_LADDER
    jitter_pct: float = Field(default=JITTER_PCT, ge=0.0, lt=1.0)
    max_backoff_level: int = Field(default=MAX_BACKOFF_LEVEL, ge=1, le=1000)
    max_retry_minutes: int = Field(default=MAX_RETRY_MINUTES, ge=1)

    quiet_days: int = Field(default=QUIET_AFTER_DAYS, ge=1)

    max_workers: int = Field(default=4, ge=1, le=64)
    request_timeout_seconds: float = Field(default=10.0, gt=0.0, le=120.0)
    user_agent: str = "source-health/0.1 (+feed checker)"

    json_logs: bool = False
    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        """Normalize the log level name."""
        return v.strip().upper()

    def backoff_policy(self) -> BackoffPolicy:
        """Build the backoff policy from these settings."""
        return BackoffPolicy(
            base_interval_minutes=self.base_interval_minutes,
            ladder=self.backoff_ladder,
            jitter_pct=self.jitter_pct,
            max_backoff_level=self.max_backoff_level,
            max_retry_minutes=self.max_retry_minutes,
            validation_timeout_seconds=self.validation_timeout_seconds,
        )


def get_settings() -> AppSettings:
    """Get a settings instance."""
    return AppSettings()
