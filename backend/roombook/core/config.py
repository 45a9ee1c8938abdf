# backend/roombook/core/config.py
import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import Field, ValidationInfo, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def is_running_tests() -> bool:
    """
    Detect if code is running under pytest.

    PYTEST_CURRENT_TEST is set automatically by pytest during test runs, and is
    not expected to be present in production environments.
    """
    return os.getenv("PYTEST_CURRENT_TEST") is not None


logger = logging.getLogger(__name__)

# Load .env file only if not in CI
if not os.getenv("CI"):
    env_path = Path(__file__).parent.parent.parent / ".env"  # Goes up to backend/.env
    logger.debug(f"[CONFIG] Looking for .env at: {env_path}")
    load_dotenv(env_path)


class Settings(BaseSettings):
    """Runtime configuration for the booking engine."""

    environment: str = Field(default="development", alias="ENVIRONMENT")
    database_url: str = Field(
        default="sqlite:///./roombook.sqlite3",
        alias="DATABASE_URL",
        description="SQLAlchemy URL of the booking database",
    )
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Calendar
    business_timezone: str = Field(
        default="America/Sao_Paulo",
        alias="BUSINESS_TIMEZONE",
        description="IANA zone used for every day/hour classification",
    )

    # Booking rules
    cleaning_buffer_minutes: int = Field(
        default=30,
        alias="CLEANING_BUFFER_MINUTES",
        description="Minutes appended to the end of each existing booking before overlap checks",
    )
    min_advance_minutes: int = Field(
        default=30,
        alias="MIN_ADVANCE_MINUTES",
        description="Minimum minutes between now and a booking start",
    )
    max_booking_window_days: int = Field(
        default=30,
        alias="MAX_BOOKING_WINDOW_DAYS",
        description="Bookings may not start more than this many days after today",
    )
    booking_min_hours: int = Field(default=1, alias="BOOKING_MIN_HOURS")
    booking_max_hours: int = Field(default=8, alias="BOOKING_MAX_HOURS")
    cancellation_refund_hours: int = Field(
        default=24,
        alias="CANCELLATION_REFUND_HOURS",
        description="Cancellations at least this far ahead return consumed credits",
    )

    # Shift-day protection
    turno_protection_enabled: bool = Field(default=True, alias="TURNO_PROTECTION_ENABLED")
    turno_protection_window_days: int = Field(default=30, alias="TURNO_PROTECTION_WINDOW_DAYS")

    # Money
    min_payable_amount_cents: int = Field(
        default=100,
        alias="MIN_PAYABLE_AMOUNT_CENTS",
        description="Discounts never push a payable amount below this floor",
    )

    # Rate limiting
    rate_limit_enabled: bool = Field(default=True, alias="RATE_LIMIT_ENABLED")
    rate_limit_max_requests: int = Field(default=15, alias="RATE_LIMIT_MAX_REQUESTS")
    rate_limit_window_seconds: int = Field(default=60, alias="RATE_LIMIT_WINDOW_SECONDS")
    rate_limit_backoff_base_seconds: int = Field(default=10, alias="RATE_LIMIT_BACKOFF_BASE_SECONDS")
    rate_limit_backoff_max_seconds: int = Field(default=120, alias="RATE_LIMIT_BACKOFF_MAX_SECONDS")
    rate_limit_backoff_reset_seconds: int = Field(
        default=600,
        alias="RATE_LIMIT_BACKOFF_RESET_SECONDS",
        description="Quiet period after which the block counter starts over",
    )
    rate_limit_cleanup_interval_seconds: int = Field(
        default=300, alias="RATE_LIMIT_CLEANUP_INTERVAL_SECONDS"
    )

    model_config = SettingsConfigDict(
        env_file=".env" if not os.getenv("CI") else None,
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator(
        "rate_limit_max_requests",
        "rate_limit_window_seconds",
        "rate_limit_backoff_base_seconds",
        "turno_protection_window_days",
        "max_booking_window_days",
        "booking_min_hours",
    )
    @classmethod
    def _require_positive(cls, value: int, info: ValidationInfo) -> int:
        if value <= 0:
            raise ValueError(f"{info.field_name} must be positive")
        return value

    @field_validator("cleaning_buffer_minutes", "min_advance_minutes", "min_payable_amount_cents")
    @classmethod
    def _require_non_negative(cls, value: int, info: ValidationInfo) -> int:
        if value < 0:
            raise ValueError(f"{info.field_name} must not be negative")
        return value

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: object) -> str:
        if value is None:
            return "INFO"
        return str(value).strip().upper() or "INFO"

    @model_validator(mode="after")
    def _check_ranges(self) -> "Settings":
        if self.rate_limit_backoff_max_seconds < self.rate_limit_backoff_base_seconds:
            raise ValueError("RATE_LIMIT_BACKOFF_MAX_SECONDS must be >= RATE_LIMIT_BACKOFF_BASE_SECONDS")
        if self.booking_max_hours < self.booking_min_hours:
            raise ValueError("BOOKING_MAX_HOURS must be >= BOOKING_MIN_HOURS")
        return self

    @property
    def is_production(self) -> bool:
        return self.environment.strip().lower() in {"prod", "production"}


settings = Settings()
