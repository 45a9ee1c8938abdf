# backend/roombook/schemas/__init__.py
"""Pydantic schemas for the reservation engine."""

from .booking import BookingCancellation, BookingCreate, BookingResult, normalize_coupon_code
from .coupon import (
    CouponRecordMode,
    CouponRecordResult,
    CouponRestoreResult,
    CouponSnapshot,
    CouponUsageCheck,
    DiscountResult,
)
from .credit import ConsumedCredit, CreditAllocation, CreditSummary, RoomCreditBalance

__all__ = [
    "BookingCancellation",
    "BookingCreate",
    "BookingResult",
    "ConsumedCredit",
    "CouponRecordMode",
    "CouponRecordResult",
    "CouponRestoreResult",
    "CouponSnapshot",
    "CouponUsageCheck",
    "CreditAllocation",
    "CreditSummary",
    "DiscountResult",
    "RoomCreditBalance",
    "normalize_coupon_code",
]
