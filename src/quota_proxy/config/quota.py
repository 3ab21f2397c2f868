"""Quota ledger policy settings."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class QuotaSettings(BaseSettings):
    """Quota policy constants.

    A shared pool holds ``capacity_per_account`` units per contributing
    account and regains ``recovery_fraction`` of its ceiling on every
    recovery run.
    """

    model_config = SettingsConfigDict(
        env_prefix="QUOTA__",
        case_sensitive=False,
        extra="ignore",
    )

    capacity_per_account: float = Field(
        default=2.0,
        gt=0,
        description="Shared pool units contributed by each valid shared account",
    )
    dedicated_allotment: float = Field(
        default=1.0,
        gt=0,
        description="Initial balance of a newly created dedicated quota row",
    )
    recovery_fraction: float = Field(
        default=0.2,
        gt=0,
        le=1.0,
        description="Fraction of max_balance restored per recovery run",
    )
    recovery_interval_seconds: int = Field(
        default=3600,
        ge=60,
        description="Cadence of the in-process recovery job",
    )
