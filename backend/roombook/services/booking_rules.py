# backend/roombook/services/booking_rules.py
"""
Calendar rules for bookings: opening hours, shift blocks, the universal
booking window and the cancellation/reschedule policy.

Every function classifies instants on the business calendar (see
core.timezone_utils), never the server's local time.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import List, Optional, Tuple

from ..core.config import settings
from ..core.constants import (
    SATURDAY,
    SATURDAY_CLOSE_HOUR,
    SATURDAY_OPEN_HOUR,
    SATURDAY_SHIFT_BLOCKS,
    SHIFT_DURATION_HOURS,
    SUNDAY,
    WEEKDAY_CLOSE_HOUR,
    WEEKDAY_OPEN_HOUR,
    WEEKDAY_SHIFT_BLOCKS,
)
from ..core.exceptions import BookingWindowExceededException
from ..core.timezone_utils import (
    business_today,
    create_business_datetime,
    ensure_utc,
    get_business_date,
    to_business_time,
    utc_now,
)


@dataclass(frozen=True)
class BusinessHours:
    start: int
    end: int


@dataclass(frozen=True)
class TimeSlot:
    start: datetime
    end: datetime


@dataclass(frozen=True)
class BookingWindowResult:
    valid: bool
    max_allowed_date: date
    error: Optional[str] = None


def get_business_hours_for_day(day: date) -> Optional[BusinessHours]:
    """Opening hours for a business date, or None when closed (Sunday)."""
    weekday = day.weekday()
    if weekday == SUNDAY:
        return None
    if weekday == SATURDAY:
        return BusinessHours(SATURDAY_OPEN_HOUR, SATURDAY_CLOSE_HOUR)
    return BusinessHours(WEEKDAY_OPEN_HOUR, WEEKDAY_CLOSE_HOUR)


def get_business_hours_for_date(dt: datetime) -> Optional[BusinessHours]:
    return get_business_hours_for_day(get_business_date(dt))


def is_within_business_hours(dt: datetime) -> bool:
    hours = get_business_hours_for_date(dt)
    if not hours:
        return False
    return hours.start <= to_business_time(dt).hour < hours.end


def is_booking_within_business_hours(start: datetime, end: datetime) -> bool:
    """
    True when [start, end) fits entirely inside one day's opening hours.

    Ending exactly at closing time is allowed.
    """
    local_start = to_business_time(start)
    local_end = to_business_time(end)
    hours = get_business_hours_for_day(local_start.date())
    if not hours:
        return False
    if local_end.date() != local_start.date():
        return False
    if local_start.hour < hours.start:
        return False
    if local_end.hour > hours.end or (local_end.hour == hours.end and local_end.minute > 0):
        return False
    return True


def generate_time_slots(day: date) -> List[TimeSlot]:
    """Hourly slots over a business day's opening hours; empty on Sunday."""
    hours = get_business_hours_for_day(day)
    if not hours:
        return []
    return [
        TimeSlot(create_business_datetime(day, hour), create_business_datetime(day, hour + 1))
        for hour in range(hours.start, hours.end)
    ]


def get_shift_blocks_for_day(day: date) -> Tuple[Tuple[int, int], ...]:
    weekday = day.weekday()
    if weekday == SUNDAY:
        return ()
    if weekday == SATURDAY:
        return SATURDAY_SHIFT_BLOCKS
    return WEEKDAY_SHIFT_BLOCKS


def is_valid_shift_block(start: datetime, end: datetime) -> bool:
    """True when [start, end) is exactly one canonical shift block of its day."""
    local_start = to_business_time(start)
    local_end = to_business_time(end)
    if local_start.minute or local_start.second or local_end.minute or local_end.second:
        return False
    if local_end.date() != local_start.date():
        return False
    if local_end.hour - local_start.hour != SHIFT_DURATION_HOURS:
        return False
    return (local_start.hour, local_end.hour) in get_shift_blocks_for_day(local_start.date())


def get_max_booking_date(now: Optional[datetime] = None, max_days: Optional[int] = None) -> date:
    days = max_days if max_days is not None else settings.max_booking_window_days
    return business_today(now) + timedelta(days=days)


def validate_booking_window(
    start: datetime, now: Optional[datetime] = None, max_days: Optional[int] = None
) -> BookingWindowResult:
    """
    Check that a booking does not start beyond the booking window.

    A booking exactly `max_days` after today is allowed; one day more is not.
    """
    days = max_days if max_days is not None else settings.max_booking_window_days
    max_date = get_max_booking_date(now, days)
    if get_business_date(start) > max_date:
        return BookingWindowResult(
            valid=False,
            max_allowed_date=max_date,
            error=f"Reservas podem ser feitas com no máximo {days} dias de antecedência",
        )
    return BookingWindowResult(valid=True, max_allowed_date=max_date)


def ensure_within_booking_window(start: datetime, now: Optional[datetime] = None) -> None:
    result = validate_booking_window(start, now)
    if not result.valid:
        raise BookingWindowExceededException(
            settings.max_booking_window_days, result.max_allowed_date.isoformat()
        )


def hours_until(start: datetime, now: Optional[datetime] = None) -> float:
    return (ensure_utc(start) - ensure_utc(now or utc_now())).total_seconds() / 3600


def can_cancel_with_refund(start: datetime, now: Optional[datetime] = None) -> bool:
    return hours_until(start, now) >= settings.cancellation_refund_hours


def can_reschedule(start: datetime, now: Optional[datetime] = None) -> bool:
    return hours_until(start, now) >= settings.cancellation_refund_hours


def is_booking_in_past(start: datetime, now: Optional[datetime] = None) -> bool:
    return ensure_utc(start) < ensure_utc(now or utc_now())
