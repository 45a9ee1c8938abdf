"""
Database models for the reservation engine.

- Room: bookable spaces ranked by tier
- Booking: reservations with their payment breakdown
- Credit / BookingCreditUsage: the pre-paid credit ledger
- CouponUsage: per (user, code, context) coupon redemptions
"""

from .booking import BLOCKING_STATUSES, Booking, BookingStatus
from .coupon_usage import CouponUsage, CouponUsageContext, CouponUsageStatus
from .credit import BookingCreditUsage, Credit, CreditStatus, CreditType, CreditUsageType
from .room import Room

__all__ = [
    "BLOCKING_STATUSES",
    "Booking",
    "BookingCreditUsage",
    "BookingStatus",
    "CouponUsage",
    "CouponUsageContext",
    "CouponUsageStatus",
    "Credit",
    "CreditStatus",
    "CreditType",
    "CreditUsageType",
    "Room",
]
