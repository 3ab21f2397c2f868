"""Scheduler configuration settings."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class SchedulerSettings(BaseSettings):
    """
    Configuration settings for the background jobs.

    Settings can be configured via environment variables with SCHEDULER__ prefix.
    """

    enabled: bool = Field(
        default=True,
        description="Whether in-process background jobs are started",
    )

    quota_recovery_enabled: bool = Field(
        default=True,
        description="Run shared pool recovery in-process (disable when an external cron does it)",
    )

    token_refresh_enabled: bool = Field(
        default=True,
        description="Proactively refresh tokens before they expire",
    )

    token_refresh_interval_seconds: int = Field(
        default=60,
        ge=5,
        le=3600,
        description="Seconds between proactive refresh checks",
    )

    token_refresh_buffer_seconds: int = Field(
        default=600,
        ge=0,
        le=86400,
        description="Refresh tokens expiring within this many seconds",
    )

    token_refresh_max_retries: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts per account on transport errors",
    )

    model_config = SettingsConfigDict(
        env_prefix="SCHEDULER__",
        case_sensitive=False,
    )
