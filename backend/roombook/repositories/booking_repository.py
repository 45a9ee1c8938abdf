# backend/roombook/repositories/booking_repository.py
"""
Booking Repository for the reservation engine.

Overlap queries used by the availability checker, plus the conditional
status transitions used by payment confirmation and cancellation.
"""

from datetime import datetime, timedelta
import logging
from typing import Any, Iterable, List, Optional

from sqlalchemy import and_, insert, literal, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
import ulid

from ..core.exceptions import RepositoryException
from ..core.timezone_utils import ensure_utc
from ..models.booking import BLOCKING_STATUSES, Booking
from ..models.credit import BookingCreditUsage
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class BookingRepository(BaseRepository[Booking]):
    """Repository for booking data access."""

    def __init__(self, db: Session):
        super().__init__(db, Booking)

    def get_blocking_bookings(
        self,
        room_id: str,
        start: datetime,
        end: datetime,
        *,
        buffer_minutes: int = 0,
        exclude_booking_id: Optional[str] = None,
    ) -> List[Booking]:
        """
        Return PENDING/CONFIRMED bookings that collide with [start, end).

        The buffer is appended to the end of every existing booking, so the
        predicate is `existing.start < end AND existing.end + buffer > start`,
        written as `existing.end > start - buffer` to stay dialect neutral.
        """
        try:
            start_utc = ensure_utc(start)
            end_utc = ensure_utc(end)
            query = self.db.query(Booking).filter(
                and_(
                    Booking.room_id == room_id,
                    Booking.status.in_(BLOCKING_STATUSES),
                    Booking.start_time < end_utc,
                    Booking.end_time > start_utc - timedelta(minutes=buffer_minutes),
                )
            )
            if exclude_booking_id:
                query = query.filter(Booking.id != exclude_booking_id)
            return list(query.order_by(Booking.start_time.asc()).all())
        except SQLAlchemyError as exc:
            self.logger.error("Failed to load blocking bookings for room %s: %s", room_id, str(exc))
            raise RepositoryException("Failed to load blocking bookings") from exc

    def create_if_slot_free(self, *, buffer_minutes: int = 0, **values: Any) -> Optional[Booking]:
        """
        Insert a booking only if no blocking booking collides with its interval.

        The overlap check and the insert are one `INSERT ... SELECT ... WHERE
        NOT EXISTS` statement. On PostgreSQL the `bookings_no_overlap`
        exclusion constraint also catches two such inserts racing under READ
        COMMITTED; that violation is reported the same way.

        Returns None when the slot was taken.
        """
        values.setdefault("id", str(ulid.ULID()))
        # Omitted columns fall back to their defaults or NULL
        values = {key: value for key, value in values.items() if value is not None}
        table = Booking.__table__
        start_utc = ensure_utc(values["start_time"])
        end_utc = ensure_utc(values["end_time"])
        try:
            overlap = select(Booking.id).where(
                Booking.room_id == values["room_id"],
                Booking.status.in_(BLOCKING_STATUSES),
                Booking.start_time < end_utc,
                Booking.end_time > start_utc - timedelta(minutes=buffer_minutes),
            ).correlate(None)
            row = select(*[literal(value, type_=table.c[key].type).label(key) for key, value in values.items()])
            stmt = insert(table).from_select(list(values), row.where(~overlap.exists()))
            result = self.db.execute(stmt)
        except IntegrityError as exc:
            if "bookings_no_overlap" in str(exc.orig):
                self.logger.warning("Exclusion constraint rejected booking on room %s", values["room_id"])
                return None
            raise
        except SQLAlchemyError as exc:
            self.logger.error("Failed to create booking on room %s: %s", values["room_id"], str(exc))
            raise RepositoryException("Failed to create booking") from exc

        if result.rowcount != 1:
            return None
        return self.db.get(Booking, values["id"])

    def get_room_bookings_between(
        self, room_id: str, range_start: datetime, range_end: datetime
    ) -> List[Booking]:
        """Blocking bookings touching [range_start, range_end), used for slot grids."""
        try:
            return list(
                self.db.query(Booking)
                .filter(
                    Booking.room_id == room_id,
                    Booking.status.in_(BLOCKING_STATUSES),
                    Booking.start_time < ensure_utc(range_end),
                    Booking.end_time > ensure_utc(range_start),
                )
                .order_by(Booking.start_time.asc())
                .all()
            )
        except SQLAlchemyError as exc:
            self.logger.error("Failed to load bookings for room %s: %s", room_id, str(exc))
            raise RepositoryException("Failed to load room bookings") from exc

    def transition_status(
        self,
        booking_id: str,
        *,
        from_statuses: Iterable[str],
        to_status: str,
        **values: Any,
    ) -> bool:
        """
        Conditionally move a booking between statuses.

        Returns True only if this call performed the transition.
        """
        try:
            stmt = (
                update(Booking)
                .where(Booking.id == booking_id, Booking.status.in_(list(from_statuses)))
                .values(status=to_status, **values)
                .execution_options(synchronize_session=False)
            )
            result = self.db.execute(stmt)
            return result.rowcount == 1
        except SQLAlchemyError as exc:
            self.logger.error("Failed to transition booking %s: %s", booking_id, str(exc))
            raise RepositoryException("Failed to update booking status") from exc

    def add_credit_usage(self, booking_id: str, credit_id: str, amount_cents: int) -> BookingCreditUsage:
        try:
            usage = BookingCreditUsage(booking_id=booking_id, credit_id=credit_id, amount=amount_cents)
            self.db.add(usage)
            self.db.flush()
            return usage
        except SQLAlchemyError as exc:
            self.logger.error("Failed to record credit usage for booking %s: %s", booking_id, str(exc))
            raise RepositoryException("Failed to record credit usage") from exc

    def get_credit_usages(self, booking_id: str) -> List[BookingCreditUsage]:
        try:
            return list(
                self.db.query(BookingCreditUsage)
                .filter(BookingCreditUsage.booking_id == booking_id)
                .order_by(BookingCreditUsage.created_at.asc(), BookingCreditUsage.id.asc())
                .all()
            )
        except SQLAlchemyError as exc:
            self.logger.error("Failed to load credit usages for booking %s: %s", booking_id, str(exc))
            raise RepositoryException("Failed to load credit usages") from exc
