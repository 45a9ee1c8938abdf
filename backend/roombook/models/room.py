# backend/roombook/models/room.py
"""
Room model.

Rooms are ranked by tier: tier 1 is the premium tier and higher numbers
rank lower. The tier decides which room-scoped credits may be spent on
the room.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column
import ulid

from ..database import Base


class Room(Base):
    """A bookable physical space."""

    __tablename__ = "rooms"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    slug: Mapped[str] = mapped_column(String(120), unique=True, nullable=False)
    tier: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    hourly_price_cents: Mapped[int] = mapped_column(Integer, nullable=False, comment="Weekday price per hour in cents")
    saturday_hourly_price_cents: Mapped[Optional[int]] = mapped_column(
        Integer, nullable=True, comment="Saturday price per hour in cents, falls back to weekday price"
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        CheckConstraint("tier >= 1", name="ck_rooms_tier_positive"),
        CheckConstraint("hourly_price_cents >= 0", name="ck_rooms_price_non_negative"),
    )

    def price_per_hour_cents(self, saturday: bool) -> int:
        if saturday and self.saturday_hourly_price_cents is not None:
            return self.saturday_hourly_price_cents
        return self.hourly_price_cents

    def __repr__(self) -> str:
        return f"<Room(slug={self.slug}, tier={self.tier})>"
