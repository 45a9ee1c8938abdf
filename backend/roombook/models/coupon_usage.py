# backend/roombook/models/coupon_usage.py
"""
Coupon usage records.

One row per (user, coupon code, context). The unique constraint is what
serializes concurrent redemptions: a second writer gets an IntegrityError.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
import ulid

from ..database import Base


class CouponUsageStatus(str, Enum):
    USED = "USED"
    RESTORED = "RESTORED"


class CouponUsageContext(str, Enum):
    BOOKING = "BOOKING"
    CREDIT_PURCHASE = "CREDIT_PURCHASE"


class CouponUsage(Base):
    __tablename__ = "coupon_usages"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    user_id: Mapped[str] = mapped_column(String(26), nullable=False)
    coupon_code: Mapped[str] = mapped_column(String(50), nullable=False)
    context: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=CouponUsageStatus.USED.value)
    booking_id: Mapped[Optional[str]] = mapped_column(String(26), ForeignKey("bookings.id"), nullable=True)
    credit_id: Mapped[Optional[str]] = mapped_column(String(26), ForeignKey("credits.id"), nullable=True)
    restored_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("user_id", "coupon_code", "context", name="uq_coupon_usages_identity"),
    )

    def __repr__(self) -> str:
        return f"<CouponUsage(user_id={self.user_id}, code={self.coupon_code}, context={self.context}, status={self.status})>"
