# backend/roombook/core/enums.py
"""Closed vocabularies shared across services."""

from enum import Enum


class ProductType(str, Enum):
    """Sellable product shapes."""

    HOURLY_RATE = "HOURLY_RATE"
    PACKAGE_5H = "PACKAGE_5H"
    PACKAGE_10H = "PACKAGE_10H"
    PACKAGE_20H = "PACKAGE_20H"
    PACKAGE_40H = "PACKAGE_40H"
    SATURDAY_HOUR = "SATURDAY_HOUR"
    SATURDAY_5H = "SATURDAY_5H"
    SHIFT = "SHIFT"
    SHIFT_FIXED = "SHIFT_FIXED"
    SATURDAY_SHIFT = "SATURDAY_SHIFT"
    DAY_PASS = "DAY_PASS"


HOURLY_PRODUCTS = frozenset(
    {
        ProductType.HOURLY_RATE,
        ProductType.PACKAGE_5H,
        ProductType.PACKAGE_10H,
        ProductType.PACKAGE_20H,
        ProductType.PACKAGE_40H,
        ProductType.SATURDAY_HOUR,
        ProductType.SATURDAY_5H,
    }
)

SHIFT_PRODUCTS = frozenset(
    {
        ProductType.SHIFT,
        ProductType.SHIFT_FIXED,
        ProductType.SATURDAY_SHIFT,
        ProductType.DAY_PASS,
    }
)


class DiscountKind(str, Enum):
    FIXED = "fixed"
    PERCENT = "percent"


class CreditUsageErrorCode(str, Enum):
    """Stable codes returned by the credit usage validator."""

    HOURLY_MUST_BE_1H = "HOURLY_MUST_BE_1H"
    HOURLY_NOT_ON_SATURDAY = "HOURLY_NOT_ON_SATURDAY"
    SHIFT_INVALID_BLOCK = "SHIFT_INVALID_BLOCK"
    SHIFT_NOT_ON_SATURDAY = "SHIFT_NOT_ON_SATURDAY"
    SATURDAY_HOURLY_MUST_BE_1H = "SATURDAY_HOURLY_MUST_BE_1H"
    SATURDAY_HOURLY_WRONG_DAY = "SATURDAY_HOURLY_WRONG_DAY"
    SATURDAY_SHIFT_INVALID_BLOCK = "SATURDAY_SHIFT_INVALID_BLOCK"
    SATURDAY_SHIFT_WRONG_DAY = "SATURDAY_SHIFT_WRONG_DAY"
    SATURDAY_REQUIRES_SATURDAY_CREDIT = "SATURDAY_REQUIRES_SATURDAY_CREDIT"
    SATURDAY_CREDIT_WRONG_DAY = "SATURDAY_CREDIT_WRONG_DAY"
    SUNDAY_CLOSED = "SUNDAY_CLOSED"
