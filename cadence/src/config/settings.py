"""
Application settings configuration for cadence.

Centralized settings loaded from environment variables.
"""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


class AppSettings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Environment Variables:
        CADENCE_EXPANSION_HORIZON_DAYS: Days ahead of today that expansion
            jobs materialize occurrences for (default: 90)
        CADENCE_MAX_OCCURRENCES: Upper bound on occurrences produced by a
            single expansion (default: 1000)
        CADENCE_DEFAULT_TIME_FIELD: Name of the time-range field on target
            record types (default: "time_slot")
        CADENCE_DEFAULT_TIMEZONE: IANA timezone used when a series declares
            none (default: "UTC")
        CADENCE_SUMMARY_INSTANCE_LIMIT: Instances listed per group summary
            (default: 100)
        CADENCE_JOB_MAX_ATTEMPTS: Attempts before an expansion job is marked
            failed (default: 3)
    """

    expansion_horizon_days: int = Field(
        default=90,
        validation_alias="CADENCE_EXPANSION_HORIZON_DAYS",
        ge=1,
        le=3660,
    )

    max_occurrences: int = Field(
        default=1000,
        validation_alias="CADENCE_MAX_OCCURRENCES",
        ge=1,
        description="Hard cap on occurrences generated per expansion call"
    )

    default_time_field: str = Field(
        default="time_slot",
        validation_alias="CADENCE_DEFAULT_TIME_FIELD",
    )

    default_timezone: str = Field(
        default="UTC",
        validation_alias="CADENCE_DEFAULT_TIMEZONE",
    )

    summary_instance_limit: int = Field(
        default=100,
        validation_alias="CADENCE_SUMMARY_INSTANCE_LIMIT",
        ge=1,
    )

    job_max_attempts: int = Field(
        default=3,
        validation_alias="CADENCE_JOB_MAX_ATTEMPTS",
        ge=1,
        le=20,
    )

    class Config:
        env_file = ".env"
        extra = "ignore"

    @field_validator("default_timezone")
    @classmethod
    def validate_default_timezone(cls, v: str) -> str:
        """Reject timezone names the tz database does not know."""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone: {v}")
        return v


@lru_cache()
def get_settings() -> AppSettings:
    """
    Get cached application settings.

    Returns:
        AppSettings instance (cached after first call)
    """
    return AppSettings()
