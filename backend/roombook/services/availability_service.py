# backend/roombook/services/availability_service.py
"""
Availability checks for rooms.

A candidate interval is free when no PENDING/CONFIRMED booking of the room
overlaps it once the cleaning buffer is appended to each existing booking,
and when it starts at least `min_advance_minutes` from now. A conflict is a
normal negative answer, never an exception. Nothing here writes.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
import logging
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.timezone_utils import ensure_utc, to_business_time
from ..models.booking import Booking
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .booking_rules import generate_time_slots

logger = logging.getLogger(__name__)


def intervals_conflict(
    new_start: datetime,
    new_end: datetime,
    existing_start: datetime,
    existing_end: datetime,
    buffer_minutes: int = 0,
) -> bool:
    """
    Standard three-way overlap test with a buffer after the existing booking.

    The new interval starts during, ends during, or encloses the buffered
    existing interval.
    """
    new_start = ensure_utc(new_start)
    new_end = ensure_utc(new_end)
    existing_start = ensure_utc(existing_start)
    buffered_end = ensure_utc(existing_end) + timedelta(minutes=buffer_minutes)

    starts_during = existing_start <= new_start < buffered_end
    ends_during = existing_start < new_end <= buffered_end
    encloses = new_start <= existing_start and new_end >= buffered_end
    return starts_during or ends_during or encloses


class AvailabilityService(BaseService):
    """Read-only availability checker."""

    def __init__(self, db: Session, booking_repository=None, **kwargs: Any):
        super().__init__(db, **kwargs)
        self.repository = booking_repository or RepositoryFactory.create_booking_repository(db)

    @property
    def buffer_minutes(self) -> int:
        return settings.cleaning_buffer_minutes

    def meets_min_advance(self, start: datetime, now: Optional[datetime] = None) -> bool:
        now = ensure_utc(now or self.now())
        return ensure_utc(start) - now >= timedelta(minutes=settings.min_advance_minutes)

    def get_conflicts(
        self,
        room_id: str,
        start: datetime,
        end: datetime,
        exclude_booking_id: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Conflicting bookings for diagnostics (id, interval, status)."""
        bookings = self._conflicting_bookings(room_id, start, end, exclude_booking_id)
        return [
            {
                "booking_id": booking.id,
                "start_time": ensure_utc(booking.start_time),
                "end_time": ensure_utc(booking.end_time),
                "status": booking.status,
            }
            for booking in bookings
        ]

    def _conflicting_bookings(
        self,
        room_id: str,
        start: datetime,
        end: datetime,
        exclude_booking_id: Optional[str],
    ) -> List[Booking]:
        candidates = self.repository.get_blocking_bookings(
            room_id,
            start,
            end,
            buffer_minutes=self.buffer_minutes,
            exclude_booking_id=exclude_booking_id,
        )
        return [
            booking
            for booking in candidates
            if intervals_conflict(start, end, booking.start_time, booking.end_time, self.buffer_minutes)
        ]

    @BaseService.measure_operation("check_availability")
    def check_availability(
        self,
        room_id: str,
        start: datetime,
        end: datetime,
        exclude_booking_id: Optional[str] = None,
        *,
        now: Optional[datetime] = None,
        enforce_min_advance: bool = True,
    ) -> bool:
        """
        Decide whether [start, end) is free on the room.

        Args:
            room_id: Room to check
            start: Candidate start
            end: Candidate end
            exclude_booking_id: Booking to ignore (editing an existing booking)
            now: Reference time, defaults to the service clock
            enforce_min_advance: Apply the minimum advance notice rule

        Returns:
            True when available
        """
        if ensure_utc(end) <= ensure_utc(start):
            return False
        if enforce_min_advance and not self.meets_min_advance(start, now):
            return False
        conflicts = self._conflicting_bookings(room_id, start, end, exclude_booking_id)
        if conflicts:
            self.logger.debug(
                "Room %s unavailable %s-%s: %d conflict(s)", room_id, start, end, len(conflicts)
            )
        return not conflicts

    @BaseService.measure_operation("get_slot_grid")
    def get_slot_grid(
        self, room_id: str, day: date, *, now: Optional[datetime] = None
    ) -> List[Dict[str, Any]]:
        """
        Per-hour grid of a business day for calendar rendering.

        Returns:
            [{"hour", "start", "end", "available"}, ...], empty on closed days
        """
        slots = generate_time_slots(day)
        if not slots:
            return []
        now = ensure_utc(now or self.now())
        existing: Sequence[Booking] = self.repository.get_room_bookings_between(
            room_id,
            slots[0].start - timedelta(minutes=self.buffer_minutes),
            slots[-1].end,
        )
        grid = []
        for slot in slots:
            available = self.meets_min_advance(slot.start, now) and not any(
                intervals_conflict(
                    slot.start, slot.end, booking.start_time, booking.end_time, self.buffer_minutes
                )
                for booking in existing
            )
            grid.append(
                {
                    "hour": to_business_time(slot.start).hour,
                    "start": slot.start,
                    "end": slot.end,
                    "available": available,
                }
            )
        return grid
