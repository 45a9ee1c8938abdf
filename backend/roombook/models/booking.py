# backend/roombook/models/booking.py
"""
Booking model for the reservation engine.

A booking holds its own interval and a full breakdown of how it was paid:
gross price, coupon discount, and the split of the net amount between
cash and consumed credits. Bookings are never physically deleted;
cancellation is a status transition.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from sqlalchemy import JSON, CheckConstraint, DateTime, ForeignKey, Index, Integer, String, literal_column, text
from sqlalchemy.dialects.postgresql import ExcludeConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship
import ulid

from ..core.config import settings
from ..database import Base


class BookingStatus(str, Enum):
    """Booking lifecycle statuses."""

    PENDING = "PENDING"  # Waiting for cash payment
    CONFIRMED = "CONFIRMED"  # Paid, or fully covered by credit
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"
    NO_SHOW = "NO_SHOW"


# Statuses that hold the room
BLOCKING_STATUSES = (BookingStatus.PENDING.value, BookingStatus.CONFIRMED.value)


class Booking(Base):
    """Reservation of a room for a time interval."""

    __tablename__ = "bookings"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    user_id: Mapped[str] = mapped_column(String(26), nullable=False, index=True)
    room_id: Mapped[str] = mapped_column(String(26), ForeignKey("rooms.id"), nullable=False)
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=BookingStatus.PENDING.value)
    product_type: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)

    # Amounts in cents
    gross_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    discount_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    net_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    amount_paid_cash: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    credits_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    coupon_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    coupon_snapshot: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)

    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, onupdate=lambda: datetime.now(timezone.utc)
    )

    room = relationship("Room", lazy="joined")
    credit_usages = relationship("BookingCreditUsage", back_populates="booking", lazy="selectin")

    __table_args__ = (
        CheckConstraint("end_time > start_time", name="ck_bookings_interval"),
        CheckConstraint("gross_amount = net_amount + discount_amount", name="ck_bookings_gross_split"),
        CheckConstraint("net_amount = amount_paid_cash + credits_used", name="ck_bookings_net_split"),
        CheckConstraint(
            "discount_amount >= 0 AND amount_paid_cash >= 0 AND credits_used >= 0",
            name="ck_bookings_amounts_non_negative",
        ),
        Index("ix_bookings_room_interval", "room_id", "start_time", "end_time"),
        # Needs the btree_gist extension; the cleaning buffer is fixed at DDL time
        ExcludeConstraint(
            ("room_id", "="),
            (
                literal_column(
                    "tstzrange(start_time, end_time + interval '%d minutes', '[)')"
                    % settings.cleaning_buffer_minutes
                ),
                "&&",
            ),
            name="bookings_no_overlap",
            using="gist",
            where=text("status IN ('PENDING', 'CONFIRMED')"),
        ).ddl_if(dialect="postgresql"),
    )

    @property
    def is_paid(self) -> bool:
        return self.paid_at is not None

    def __repr__(self) -> str:
        return f"<Booking(id={self.id}, room_id={self.room_id}, status={self.status})>"
