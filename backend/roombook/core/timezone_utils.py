# backend/roombook/core/timezone_utils.py
"""
Timezone utilities for the reservation engine.

The business operates in a single civil timezone. Every classification of
an instant into a day, weekday or hour goes through these helpers so the
server's own locale never leaks into booking rules.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional

import pytz

from .config import settings


def get_business_timezone() -> pytz.BaseTzInfo:
    """Return the configured business timezone as a pytz object."""
    return pytz.timezone(settings.business_timezone)


def ensure_utc(dt: datetime) -> datetime:
    """
    Normalize a datetime to an aware UTC value.

    Naive values are treated as UTC; SQLite hands timestamps back without
    tzinfo even for timezone-aware columns.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_business_time(dt: datetime) -> datetime:
    """Convert an instant to the business timezone."""
    return ensure_utc(dt).astimezone(get_business_timezone())


def business_now(now: Optional[datetime] = None) -> datetime:
    return to_business_time(now or utc_now())


def business_today(now: Optional[datetime] = None) -> date:
    """Get 'today' on the business calendar."""
    return business_now(now).date()


def get_business_date(dt: datetime) -> date:
    return to_business_time(dt).date()


def get_business_hour(dt: datetime) -> int:
    return to_business_time(dt).hour


def get_business_weekday(dt: datetime) -> int:
    """Business weekday with Monday=0 ... Sunday=6."""
    return to_business_time(dt).weekday()


def is_saturday(dt: datetime) -> bool:
    return get_business_weekday(dt) == 5


def is_sunday(dt: datetime) -> bool:
    return get_business_weekday(dt) == 6


def create_business_datetime(day: date, hour: int, minute: int = 0) -> datetime:
    """
    Build the UTC instant for a civil time on the business calendar.

    Args:
        day: Business calendar date
        hour: Hour of day (0-24; 24 means midnight of the next day)
        minute: Minute of hour

    Returns:
        Timezone-aware UTC datetime
    """
    tz = get_business_timezone()
    extra_days, hour = divmod(hour, 24)
    local = tz.localize(datetime.combine(day + timedelta(days=extra_days), time(hour, minute)))
    return local.astimezone(timezone.utc)


def business_day_bounds(day: date) -> tuple[datetime, datetime]:
    """UTC instants of the start of `day` and of the following day."""
    return create_business_datetime(day, 0), create_business_datetime(day + timedelta(days=1), 0)


def minutes_between(start: datetime, end: datetime) -> float:
    return (ensure_utc(end) - ensure_utc(start)).total_seconds() / 60
