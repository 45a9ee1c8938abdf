# backend/roombook/schemas/booking.py
"""
Booking request/response schemas.

A booking carries its own interval and payment breakdown. Coupon codes
are normalized here so every layer below sees the canonical form.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import Field, field_validator, model_validator

from ..core.enums import ProductType
from ..models.booking import BookingStatus
from ._strict_base import StrictModel, StrictRequestModel
from .credit import ConsumedCredit
from .coupon import CouponRecordMode


def normalize_coupon_code(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    code = value.strip().upper()
    return code or None


class BookingCreate(StrictRequestModel):
    """Create a booking for a room interval, optionally paid with credits and a coupon."""

    user_id: str = Field(..., min_length=1, description="Booking owner")
    room_id: str = Field(..., min_length=1, description="Room to book")
    start_time: datetime = Field(..., description="Start instant (timezone-aware)")
    end_time: datetime = Field(..., description="End instant (timezone-aware)")
    product_type: ProductType = Field(ProductType.HOURLY_RATE, description="Product being bought")
    use_credits: bool = Field(False, description="Pay with the user's credit balance first")
    coupon_code: Optional[str] = Field(None, max_length=50)
    require_coupon: bool = Field(
        False,
        description="Client insists the coupon be applied; rejected if credits cover everything",
    )

    @field_validator("coupon_code", mode="before")
    @classmethod
    def _normalize_coupon(cls, value: Optional[str]) -> Optional[str]:
        return normalize_coupon_code(value)

    @field_validator("start_time", "end_time")
    @classmethod
    def _require_aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            raise ValueError("datetime must include a timezone offset")
        return value

    @model_validator(mode="after")
    def _validate_interval(self) -> "BookingCreate":
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class BookingResult(StrictModel):
    booking_id: str
    status: BookingStatus
    gross_amount: int
    discount_amount: int
    net_amount: int
    credits_used: int
    amount_to_pay_cash: int
    consumed_credits: List[ConsumedCredit] = Field(default_factory=list)
    coupon_code: Optional[str] = None
    coupon_mode: Optional[CouponRecordMode] = None


class BookingCancellation(StrictModel):
    booking_id: str
    cancelled: bool
    coupon_restored: bool = False
    restored_coupon_code: Optional[str] = None
    refund_credit_ids: List[str] = Field(default_factory=list)
    refunded_cents: int = 0
