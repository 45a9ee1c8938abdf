# backend/roombook/services/credit_usage.py
"""
Credit usage compatibility rules.

A credit's usage type restricts which booking shapes it can pay for. The
rules live in a static table keyed by CreditUsageType; the error codes are
a client-facing contract and must not change.

Legacy credits (no usage type) stay permissive on duration: they pay any
weekday booking, and only the legacy SATURDAY credit type is tied to
Saturdays.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Dict, Optional, Protocol, Union

from ..core.constants import HOURLY_DURATION_MINUTES, SATURDAY, SUNDAY
from ..core.enums import CreditUsageErrorCode as Code
from ..core.exceptions import CreditUsageException
from ..core.timezone_utils import get_business_weekday, minutes_between
from ..models.credit import CreditType, CreditUsageType
from .booking_rules import is_valid_shift_block


class CreditLike(Protocol):
    type: str
    usage_type: Optional[str]


@dataclass(frozen=True)
class CreditUsageValidation:
    valid: bool
    code: Optional[str] = None
    message: Optional[str] = None

    @classmethod
    def ok(cls) -> "CreditUsageValidation":
        return cls(valid=True)

    @classmethod
    def fail(cls, code: Code) -> "CreditUsageValidation":
        return cls(valid=False, code=code.value, message=ERROR_MESSAGES[code])


ERROR_MESSAGES: Dict[Code, str] = {
    Code.HOURLY_MUST_BE_1H: "Créditos de hora avulsa só podem ser usados em reservas de 1 hora",
    Code.HOURLY_NOT_ON_SATURDAY: "Créditos de hora avulsa não podem ser usados aos sábados",
    Code.SHIFT_INVALID_BLOCK: "Créditos de turno só podem ser usados nos blocos 08-12, 12-16 ou 16-20",
    Code.SHIFT_NOT_ON_SATURDAY: "Créditos de turno não podem ser usados aos sábados",
    Code.SATURDAY_HOURLY_MUST_BE_1H: "Créditos de hora de sábado só podem ser usados em reservas de 1 hora",
    Code.SATURDAY_HOURLY_WRONG_DAY: "Créditos de hora de sábado só podem ser usados aos sábados",
    Code.SATURDAY_SHIFT_INVALID_BLOCK: "Créditos de turno de sábado só podem ser usados no bloco 08-12",
    Code.SATURDAY_SHIFT_WRONG_DAY: "Créditos de turno de sábado só podem ser usados aos sábados",
    Code.SATURDAY_REQUIRES_SATURDAY_CREDIT: "Reservas aos sábados exigem crédito de sábado",
    Code.SATURDAY_CREDIT_WRONG_DAY: "Créditos de sábado só podem ser usados aos sábados",
    Code.SUNDAY_CLOSED: "O espaço não abre aos domingos",
}


@dataclass(frozen=True)
class _BookingShape:
    weekday: int
    minutes: float
    is_shift_block: bool

    @property
    def saturday(self) -> bool:
        return self.weekday == SATURDAY

    @property
    def one_hour(self) -> bool:
        return self.minutes == HOURLY_DURATION_MINUTES


Rule = Callable[[_BookingShape], CreditUsageValidation]


def _hourly(shape: _BookingShape) -> CreditUsageValidation:
    if shape.saturday:
        return CreditUsageValidation.fail(Code.HOURLY_NOT_ON_SATURDAY)
    if not shape.one_hour:
        return CreditUsageValidation.fail(Code.HOURLY_MUST_BE_1H)
    return CreditUsageValidation.ok()


def _shift(shape: _BookingShape) -> CreditUsageValidation:
    if shape.saturday:
        return CreditUsageValidation.fail(Code.SHIFT_NOT_ON_SATURDAY)
    if not shape.is_shift_block:
        return CreditUsageValidation.fail(Code.SHIFT_INVALID_BLOCK)
    return CreditUsageValidation.ok()


def _saturday_hourly(shape: _BookingShape) -> CreditUsageValidation:
    if not shape.saturday:
        return CreditUsageValidation.fail(Code.SATURDAY_HOURLY_WRONG_DAY)
    if not shape.one_hour:
        return CreditUsageValidation.fail(Code.SATURDAY_HOURLY_MUST_BE_1H)
    return CreditUsageValidation.ok()


def _saturday_shift(shape: _BookingShape) -> CreditUsageValidation:
    if not shape.saturday:
        return CreditUsageValidation.fail(Code.SATURDAY_SHIFT_WRONG_DAY)
    if not shape.is_shift_block:
        return CreditUsageValidation.fail(Code.SATURDAY_SHIFT_INVALID_BLOCK)
    return CreditUsageValidation.ok()


USAGE_RULES: Dict[CreditUsageType, Rule] = {
    CreditUsageType.HOURLY: _hourly,
    CreditUsageType.SHIFT: _shift,
    CreditUsageType.SATURDAY_HOURLY: _saturday_hourly,
    CreditUsageType.SATURDAY_SHIFT: _saturday_shift,
}


def _legacy_rule(credit_type: Optional[str], shape: _BookingShape) -> CreditUsageValidation:
    saturday_credit = credit_type == CreditType.SATURDAY.value
    if saturday_credit and not shape.saturday:
        return CreditUsageValidation.fail(Code.SATURDAY_CREDIT_WRONG_DAY)
    if not saturday_credit and shape.saturday:
        return CreditUsageValidation.fail(Code.SATURDAY_REQUIRES_SATURDAY_CREDIT)
    return CreditUsageValidation.ok()


def _usage_type_of(credit: CreditLike) -> Optional[CreditUsageType]:
    raw = getattr(credit, "usage_type", None)
    if raw is None:
        return None
    return CreditUsageType(raw)


def validate_credit_usage(credit: CreditLike, start: datetime, end: datetime) -> CreditUsageValidation:
    """
    Check a credit against a candidate booking [start, end).

    Returns:
        CreditUsageValidation with `valid` and, on failure, a stable `code`
    """
    weekday = get_business_weekday(start)
    if weekday == SUNDAY:
        return CreditUsageValidation.fail(Code.SUNDAY_CLOSED)

    shape = _BookingShape(
        weekday=weekday,
        minutes=minutes_between(start, end),
        is_shift_block=is_valid_shift_block(start, end),
    )
    usage_type = _usage_type_of(credit)
    if usage_type is None:
        return _legacy_rule(getattr(credit, "type", None), shape)
    return USAGE_RULES[usage_type](shape)


def ensure_credit_usage(credit: CreditLike, start: datetime, end: datetime) -> None:
    result = validate_credit_usage(credit, start, end)
    if not result.valid:
        raise CreditUsageException(result.code or "CREDIT_USAGE_INVALID", result.message or "")


def is_credit_compatible_with_booking(
    credit: CreditLike, booking_day: Union[date, datetime], is_shift_booking: bool
) -> bool:
    """
    Coarse compatibility used by catalog screens before times are picked.

    Legacy credits follow only the Saturday split; tagged credits must match
    both the day kind and hourly-vs-shift.
    """
    if isinstance(booking_day, datetime):
        weekday = get_business_weekday(booking_day)
    else:
        weekday = booking_day.weekday()
    if weekday == SUNDAY:
        return False
    saturday = weekday == SATURDAY

    usage_type = _usage_type_of(credit)
    if usage_type is None:
        return saturday == (getattr(credit, "type", None) == CreditType.SATURDAY.value)

    expected = {
        CreditUsageType.HOURLY: (False, False),
        CreditUsageType.SHIFT: (False, True),
        CreditUsageType.SATURDAY_HOURLY: (True, False),
        CreditUsageType.SATURDAY_SHIFT: (True, True),
    }[usage_type]
    return expected == (saturday, is_shift_booking)


def is_credit_eligible_for_room(credit_room_tier: Optional[int], room_tier: int) -> bool:
    """
    Tier rule: unscoped credits work anywhere; a credit bought for a room of
    tier T pays for rooms of tier T or a lower rank (numerically >= T).
    """
    if credit_room_tier is None:
        return True
    return credit_room_tier <= room_tier
