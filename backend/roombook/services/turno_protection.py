# backend/roombook/services/turno_protection.py
"""
Shift-day protection window.

Weekdays are sold to fixed-shift customers far in advance. To keep that
inventory whole, plain-hourly products may only be bought for a weekday
that is at most `turno_protection_window_days` after today. Shift and
day-pass products are always allowed, and weekends are never protected.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
import logging
from typing import Iterable, List, Optional, Tuple, Union

from ..core.config import settings
from ..core.constants import FRIDAY, MONDAY
from ..core.enums import HOURLY_PRODUCTS, SHIFT_PRODUCTS, ProductType
from ..core.exceptions import TurnoProtectionException
from ..core.timezone_utils import business_today, get_business_date

logger = logging.getLogger(__name__)

TURNO_PROTECTION_ERROR_CODE = "TURNO_PROTECTION_30D"
TURNO_PROTECTION_ERROR_MESSAGE = (
    "Para manter disponibilidade de turnos, horas avulsas e pacotes por hora "
    "só podem ser comprados para datas dentro de {days} dias."
)

DateLike = Union[date, datetime]


@dataclass(frozen=True)
class TurnoProtectionResult:
    blocked: bool
    code: Optional[str] = None
    reason: Optional[str] = None
    max_allowed_date: Optional[date] = None
    days_until_allowed: Optional[int] = None


def _as_business_date(value: DateLike) -> date:
    if isinstance(value, datetime):
        return get_business_date(value)
    return value


def _as_product_type(product_type: Optional[Union[str, ProductType]]) -> Optional[ProductType]:
    if product_type is None:
        return None
    try:
        return ProductType(product_type)
    except ValueError:
        return None


def is_turno_day(value: DateLike) -> bool:
    """Monday through Friday on the business calendar."""
    return MONDAY <= _as_business_date(value).weekday() <= FRIDAY


def is_within_turno_protection_window(
    value: DateLike, protection_days: Optional[int] = None, today: Optional[date] = None
) -> bool:
    days = protection_days if protection_days is not None else settings.turno_protection_window_days
    reference = today or business_today()
    return _as_business_date(value) <= reference + timedelta(days=days)


def is_hourly_product(product_type: Optional[Union[str, ProductType]]) -> bool:
    return _as_product_type(product_type) in HOURLY_PRODUCTS


def is_shift_product(product_type: Optional[Union[str, ProductType]]) -> bool:
    return _as_product_type(product_type) in SHIFT_PRODUCTS


def get_max_hourly_booking_date(today: Optional[date] = None, window_days: Optional[int] = None) -> date:
    days = window_days if window_days is not None else settings.turno_protection_window_days
    return (today or business_today()) + timedelta(days=days)


def should_block_hourly_purchase(
    value: DateLike,
    product_type: Optional[Union[str, ProductType]],
    *,
    today: Optional[date] = None,
    window_days: Optional[int] = None,
) -> TurnoProtectionResult:
    """
    Decide whether an hourly purchase for `value` must be refused.

    Blocked only when the product is plain-hourly, the day is a shift day,
    and the day is MORE than the window away from today.
    """
    if not settings.turno_protection_enabled:
        return TurnoProtectionResult(blocked=False)
    if not is_hourly_product(product_type):
        return TurnoProtectionResult(blocked=False)

    target = _as_business_date(value)
    if not is_turno_day(target):
        return TurnoProtectionResult(blocked=False)

    days = window_days if window_days is not None else settings.turno_protection_window_days
    reference = today or business_today()
    if is_within_turno_protection_window(target, days, reference):
        return TurnoProtectionResult(blocked=False)

    max_allowed = get_max_hourly_booking_date(reference, days)
    return TurnoProtectionResult(
        blocked=True,
        code=TURNO_PROTECTION_ERROR_CODE,
        reason=TURNO_PROTECTION_ERROR_MESSAGE.format(days=days),
        max_allowed_date=max_allowed,
        days_until_allowed=(target - max_allowed).days,
    )


def validate_dates_for_turno_protection(
    values: Iterable[DateLike],
    product_type: Optional[Union[str, ProductType]],
    *,
    today: Optional[date] = None,
) -> List[Tuple[DateLike, TurnoProtectionResult]]:
    """Return only the dates that are blocked, with their result."""
    blocked = []
    for value in values:
        result = should_block_hourly_purchase(value, product_type, today=today)
        if result.blocked:
            blocked.append((value, result))
    return blocked


def ensure_hourly_purchase_allowed(
    value: DateLike,
    product_type: Optional[Union[str, ProductType]],
    *,
    today: Optional[date] = None,
) -> None:
    """Raise TurnoProtectionException when the purchase is blocked."""
    result = should_block_hourly_purchase(value, product_type, today=today)
    if result.blocked:
        logger.info(
            "Hourly purchase blocked by shift protection",
            extra={"product_type": str(product_type), "date": _as_business_date(value).isoformat()},
        )
        raise TurnoProtectionException(
            result.reason or TURNO_PROTECTION_ERROR_MESSAGE.format(days=settings.turno_protection_window_days),
            details={
                "max_allowed_date": result.max_allowed_date.isoformat() if result.max_allowed_date else None,
                "days_until_allowed": result.days_until_allowed,
            },
        )
