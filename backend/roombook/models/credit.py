# backend/roombook/models/credit.py
"""
Credit ledger models.

A Credit is a pre-paid grant. Its remaining amount only ever goes down,
and only through the conditional decrement in CreditRepository. Refunds
are issued as new grants.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship
import ulid

from ..database import Base


class CreditStatus(str, Enum):
    PENDING = "PENDING"  # Purchase not yet paid
    CONFIRMED = "CONFIRMED"
    USED = "USED"


class CreditType(str, Enum):
    """Where a credit came from. SATURDAY marks legacy Saturday-only grants."""

    MANUAL = "MANUAL"
    PURCHASE = "PURCHASE"
    SATURDAY = "SATURDAY"
    SUBLET = "SUBLET"
    REFUND = "REFUND"


class CreditUsageType(str, Enum):
    """Booking shapes a credit may pay for. None means legacy/unrestricted."""

    HOURLY = "HOURLY"
    SHIFT = "SHIFT"
    SATURDAY_HOURLY = "SATURDAY_HOURLY"
    SATURDAY_SHIFT = "SATURDAY_SHIFT"


class Credit(Base):
    """Pre-paid balance grant owned by a user."""

    __tablename__ = "credits"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    user_id: Mapped[str] = mapped_column(String(26), nullable=False)
    room_id: Mapped[Optional[str]] = mapped_column(
        String(26), ForeignKey("rooms.id"), nullable=True, comment="Null means usable on any room"
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False, comment="Original amount in cents")
    remaining_amount: Mapped[int] = mapped_column(Integer, nullable=False, comment="Remaining amount in cents")
    type: Mapped[str] = mapped_column(String(20), nullable=False, default=CreditType.MANUAL.value)
    usage_type: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=CreditStatus.CONFIRMED.value)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    used_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    source_booking_id: Mapped[Optional[str]] = mapped_column(
        String(26), ForeignKey("bookings.id"), nullable=True, comment="Booking whose cancellation issued this grant"
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )

    room = relationship("Room", lazy="joined")

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_credits_amount_positive"),
        CheckConstraint(
            "remaining_amount >= 0 AND remaining_amount <= amount",
            name="ck_credits_remaining_range",
        ),
        Index("ix_credits_user_status", "user_id", "status"),
    )

    def __repr__(self) -> str:
        return f"<Credit(id={self.id}, remaining={self.remaining_amount}/{self.amount}, status={self.status})>"


class BookingCreditUsage(Base):
    """How much of which credit paid for a booking."""

    __tablename__ = "booking_credit_usages"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    booking_id: Mapped[str] = mapped_column(String(26), ForeignKey("bookings.id"), nullable=False, index=True)
    credit_id: Mapped[str] = mapped_column(String(26), ForeignKey("credits.id"), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False, comment="Cents drawn from the credit")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )

    booking = relationship("Booking", back_populates="credit_usages")
    credit = relationship("Credit")

    __table_args__ = (CheckConstraint("amount > 0", name="ck_booking_credit_usages_amount_positive"),)

    def __repr__(self) -> str:
        return f"<BookingCreditUsage(booking_id={self.booking_id}, credit_id={self.credit_id}, amount={self.amount})>"
