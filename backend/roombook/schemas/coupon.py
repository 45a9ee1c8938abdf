# backend/roombook/schemas/coupon.py
"""Coupon DTOs."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import Field, model_validator

from ..core.enums import DiscountKind
from ._strict_base import StrictModel


class CouponRecordMode(str, Enum):
    CREATED = "CREATED"
    CLAIMED_RESTORED = "CLAIMED_RESTORED"


class DiscountResult(StrictModel):
    gross_cents: int = Field(..., ge=0)
    final_cents: int = Field(..., ge=0)
    discount_cents: int = Field(..., ge=0)
    applied: bool = False
    coupon_code: Optional[str] = None

    @model_validator(mode="after")
    def _amounts_add_up(self) -> "DiscountResult":
        if self.gross_cents != self.final_cents + self.discount_cents:
            raise ValueError("gross_cents must equal final_cents + discount_cents")
        return self


class CouponSnapshot(StrictModel):
    """Frozen copy of a coupon's terms stored on the booking."""

    code: str
    kind: DiscountKind
    value: int = Field(..., description="Cents for fixed coupons, percent for percent coupons")
    single_use_per_user: bool
    description: str
    applied_at: datetime


class CouponUsageCheck(StrictModel):
    can_use: bool
    code: Optional[str] = Field(None, description="Error code when can_use is False")
    reason: Optional[str] = None


class CouponRecordResult(StrictModel):
    ok: bool
    mode: CouponRecordMode
    usage_id: Optional[str] = None


class CouponRestoreResult(StrictModel):
    restored: bool
    coupon_code: Optional[str] = None
