# backend/roombook/services/booking_service.py
"""
Booking Service for the reservation engine.

Orchestrates a booking end to end: calendar rules, availability, pricing,
credit allocation and coupon redemption, all committed as one unit.
"""

from __future__ import annotations

from datetime import datetime
import logging
from typing import Any, List, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import (
    BookingConflictException,
    InsufficientNoticeException,
    NotFoundException,
    OutsideBusinessHoursException,
    ValidationException,
)
from ..core.timezone_utils import business_today, ensure_utc, is_saturday, minutes_between
from ..models.booking import BLOCKING_STATUSES, Booking, BookingStatus
from ..models.coupon_usage import CouponUsageContext
from ..models.room import Room
from ..repositories.factory import RepositoryFactory
from ..schemas.booking import BookingCancellation, BookingCreate, BookingResult
from ..schemas.coupon import CouponRecordResult, DiscountResult
from ..schemas.credit import CreditAllocation
from .audit_service import AuditService
from .availability_service import AvailabilityService
from .base import BaseService
from .booking_rules import (
    can_cancel_with_refund,
    ensure_within_booking_window,
    is_booking_in_past,
    is_booking_within_business_hours,
)
from .coupon_service import CouponService, apply_discount, create_coupon_snapshot
from .credit_service import CreditService
from .turno_protection import ensure_hourly_purchase_allowed

logger = logging.getLogger(__name__)


def calculate_booking_total_cents(room: Room, start: datetime, hours: int) -> int:
    """Gross price: room hourly price for the booking's day times hours."""
    if hours <= 0:
        raise ValidationException("hours must be positive", code="INVALID_DURATION")
    return room.price_per_hour_cents(is_saturday(start)) * hours


class BookingService(BaseService):
    """
    Service layer for booking operations.

    Credits are drawn first; a coupon only ever discounts the cash that is
    left after credits. A booking fully covered by credit never touches the
    coupon tables.
    """

    def __init__(self, db: Session, audit_service: Optional[AuditService] = None, **kwargs: Any):
        super().__init__(db, **kwargs)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.room_repository = RepositoryFactory.create_room_repository(db)
        self.availability_service = AvailabilityService(db, self.booking_repository, clock=self.clock)
        self.credit_service = CreditService(db, clock=self.clock)
        self.coupon_service = CouponService(db, clock=self.clock)
        self.audit_service = audit_service or AuditService()

    def get_booking(self, booking_id: str) -> Booking:
        booking = self.booking_repository.get_by_id(booking_id)
        if not booking:
            raise NotFoundException(f"Booking {booking_id} not found", code="BOOKING_NOT_FOUND")
        return booking

    def _get_active_room(self, room_id: str) -> Room:
        room = self.room_repository.get_by_id(room_id)
        if not room or not room.is_active:
            raise NotFoundException(f"Room {room_id} not found", code="ROOM_NOT_FOUND")
        return room

    def _validate_interval(self, start: datetime, end: datetime, now: datetime) -> int:
        """Calendar checks that need no storage. Returns the duration in hours."""
        if is_booking_in_past(start, now):
            raise ValidationException("Cannot book a time in the past", code="BOOKING_IN_PAST")

        minutes = minutes_between(start, end)
        if minutes % 60 != 0:
            raise ValidationException("Bookings must be whole hours", code="INVALID_DURATION")
        hours = int(minutes // 60)
        if not settings.booking_min_hours <= hours <= settings.booking_max_hours:
            raise ValidationException(
                f"Bookings must last between {settings.booking_min_hours} and "
                f"{settings.booking_max_hours} hours",
                code="INVALID_DURATION",
                details={"hours": hours},
            )

        if not is_booking_within_business_hours(start, end):
            raise OutsideBusinessHoursException(details={"start_time": start.isoformat(), "end_time": end.isoformat()})
        return hours

    @BaseService.measure_operation("create_booking")
    def create_booking(self, request: BookingCreate, *, now: Optional[datetime] = None) -> BookingResult:
        """
        Create a booking, paying with credits and a coupon as requested.

        Every check and every read happens before the first write. Credit
        decrements, the booking row and the coupon usage are then written in
        one transaction; any failure rolls all of them back.

        Raises:
            ValidationException: bad interval, past start, invalid duration
            OutsideBusinessHoursException: interval leaves business hours
            BookingWindowExceededException: start beyond the booking window
            TurnoProtectionException: hourly product on a protected shift day
            BookingConflictException: room taken, buffer included
            CouponInvalidException / CouponAlreadyUsedException: coupon refused
            CouponRequiresCashPaymentException: coupon demanded with no cash left
            InsufficientNoticeException: cash booking starting too soon
            InsufficientCreditsException / CreditConsumedByAnotherException /
            PartialConsumptionException: credit allocation failed
        """
        now = ensure_utc(now or self.now())
        start = ensure_utc(request.start_time)
        end = ensure_utc(request.end_time)
        user_id = request.user_id

        hours = self._validate_interval(start, end, now)
        room = self._get_active_room(request.room_id)
        ensure_within_booking_window(start, now)
        ensure_hourly_purchase_allowed(start, request.product_type, today=business_today(now))

        if not self.availability_service.check_availability(
            room.id, start, end, now=now, enforce_min_advance=False
        ):
            raise BookingConflictException(
                details={"conflicts": self.availability_service.get_conflicts(room.id, start, end)}
            )

        gross = calculate_booking_total_cents(room, start, hours)

        planned_credits = 0
        if request.use_credits:
            balance = self.credit_service.get_balance_for_room(user_id, room.id, start, end, now=now)
            planned_credits = min(balance, gross)
        residual_cash = gross - planned_credits

        coupon_code = self.coupon_service.resolve_coupon_for_payment(
            user_id,
            request.coupon_code,
            CouponUsageContext.BOOKING,
            residual_cash,
            require_coupon=request.require_coupon,
        )
        if coupon_code:
            discount = apply_discount(residual_cash, coupon_code)
        else:
            discount = DiscountResult(gross_cents=residual_cash, final_cents=residual_cash, discount_cents=0)
        cash_due = discount.final_cents

        if cash_due > 0 and not self.availability_service.meets_min_advance(start, now):
            raise InsufficientNoticeException(settings.min_advance_minutes, minutes_between(now, start))

        status = BookingStatus.PENDING if cash_due > 0 else BookingStatus.CONFIRMED
        snapshot = create_coupon_snapshot(coupon_code, now) if coupon_code else None
        coupon_result: Optional[CouponRecordResult] = None

        with self.transaction():
            allocation = self.credit_service.allocate_credits(
                user_id, room.id, planned_credits, start, end, now=now, use_transaction=False
            )
            booking = self.booking_repository.create_if_slot_free(
                buffer_minutes=self.availability_service.buffer_minutes,
                user_id=user_id,
                room_id=room.id,
                start_time=start,
                end_time=end,
                status=status.value,
                product_type=request.product_type.value,
                gross_amount=gross,
                discount_amount=discount.discount_cents,
                net_amount=allocation.total_consumed_cents + cash_due,
                amount_paid_cash=cash_due,
                credits_used=allocation.total_consumed_cents,
                coupon_code=coupon_code,
                coupon_snapshot=snapshot.model_dump(mode="json") if snapshot else None,
                paid_at=now if cash_due == 0 else None,
            )
            if booking is None:
                # Lost the slot after the availability read; credit decrements roll back.
                # No further reads: PostgreSQL aborts the transaction on an exclusion violation.
                raise BookingConflictException(
                    details={"room_id": room.id, "start_time": start.isoformat(), "end_time": end.isoformat()}
                )
            for consumed in allocation.consumed:
                self.booking_repository.add_credit_usage(booking.id, consumed.credit_id, consumed.amount_cents)
            if coupon_code:
                coupon_result = self.coupon_service.record_coupon_usage_idempotent(
                    user_id, coupon_code, CouponUsageContext.BOOKING, booking_id=booking.id
                )

        self.logger.info(
            "Booking %s created as %s",
            booking.id,
            status.value,
            extra={
                "user_id": user_id,
                "room_id": room.id,
                "gross_cents": gross,
                "credits_cents": allocation.total_consumed_cents,
                "cash_cents": cash_due,
            },
        )
        self._audit_created(booking, allocation, coupon_result)

        return BookingResult(
            booking_id=booking.id,
            status=status,
            gross_amount=gross,
            discount_amount=discount.discount_cents,
            net_amount=booking.net_amount,
            credits_used=allocation.total_consumed_cents,
            amount_to_pay_cash=cash_due,
            consumed_credits=allocation.consumed,
            coupon_code=coupon_code,
            coupon_mode=coupon_result.mode if coupon_result else None,
        )

    @BaseService.measure_operation("confirm_payment")
    def confirm_payment(
        self, booking_id: str, amount_paid_cents: int, *, now: Optional[datetime] = None
    ) -> bool:
        """
        Mark a PENDING booking paid once the cash amount arrived.

        Returns False when the booking was no longer PENDING (already paid or
        cancelled); the conditional update decides, not the read.
        """
        booking = self.get_booking(booking_id)
        if amount_paid_cents != booking.amount_paid_cash:
            raise ValidationException(
                "Paid amount does not match the amount due",
                code="PAYMENT_AMOUNT_MISMATCH",
                details={"expected_cents": booking.amount_paid_cash, "received_cents": amount_paid_cents},
            )
        now = ensure_utc(now or self.now())
        with self.transaction():
            confirmed = self.booking_repository.transition_status(
                booking_id,
                from_statuses=[BookingStatus.PENDING.value],
                to_status=BookingStatus.CONFIRMED.value,
                paid_at=now,
            )

        if confirmed:
            self.logger.info("Booking %s paid", booking_id, extra={"amount_cents": amount_paid_cents})
            self.audit_service.log(
                "booking.paid",
                "booking",
                resource_id=booking_id,
                actor_id=booking.user_id,
                metadata={"amount_cents": amount_paid_cents},
                timestamp=now,
            )
        else:
            self.logger.warning("Booking %s was not pending; payment not applied", booking_id)
        return confirmed

    @BaseService.measure_operation("cancel_booking")
    def cancel_booking(
        self, booking_id: str, *, now: Optional[datetime] = None, actor_id: Optional[str] = None
    ) -> BookingCancellation:
        """
        Cancel a booking.

        An unpaid booking gives its coupon and its credits back. A paid
        booking returns consumed credits, as a new grant, only when cancelled
        early enough.
        """
        now = ensure_utc(now or self.now())
        booking = self.get_booking(booking_id)

        with self.transaction():
            cancelled = self.booking_repository.transition_status(
                booking_id,
                from_statuses=BLOCKING_STATUSES,
                to_status=BookingStatus.CANCELLED.value,
                cancelled_at=now,
            )
            if not cancelled:
                self.logger.info("Booking %s not cancellable (status %s)", booking_id, booking.status)
                return BookingCancellation(booking_id=booking_id, cancelled=False)

            # Payment state as of the transition, not as first read
            self.booking_repository.refresh(booking)

            restored_code = None
            coupon_restored = False
            if booking.coupon_code:
                restore = self.coupon_service.restore_coupon_usage(
                    booking_id=booking.id, was_paid=booking.is_paid
                )
                coupon_restored = restore.restored
                restored_code = restore.coupon_code if restore.restored else None

            refunds = []
            # Unpaid bookings give credits back at any time; paid ones only with notice
            if booking.credits_used > 0 and (not booking.is_paid or can_cancel_with_refund(booking.start_time, now)):
                refunds = self.credit_service.refund_booking_credits(booking)

        refund_ids: List[str] = [credit.id for credit in refunds]
        refunded = sum(credit.amount for credit in refunds)
        self.logger.info(
            "Booking %s cancelled",
            booking_id,
            extra={"coupon_restored": coupon_restored, "refunded_cents": refunded},
        )
        self.audit_service.log(
            "booking.cancelled",
            "booking",
            resource_id=booking_id,
            actor_id=actor_id or booking.user_id,
            metadata={
                "coupon_restored": coupon_restored,
                "refunded_cents": refunded,
                "refund_credit_ids": refund_ids,
            },
            timestamp=now,
        )
        return BookingCancellation(
            booking_id=booking_id,
            cancelled=True,
            coupon_restored=coupon_restored,
            restored_coupon_code=restored_code,
            refund_credit_ids=refund_ids,
            refunded_cents=refunded,
        )

    def _audit_created(
        self,
        booking: Booking,
        allocation: CreditAllocation,
        coupon_result: Optional[CouponRecordResult],
    ) -> None:
        self.audit_service.log(
            "booking.created",
            "booking",
            resource_id=booking.id,
            actor_id=booking.user_id,
            metadata={
                "status": booking.status,
                "gross_cents": booking.gross_amount,
                "credits_cents": allocation.total_consumed_cents,
                "cash_cents": booking.amount_paid_cash,
                "credit_ids": [c.credit_id for c in allocation.consumed],
                "coupon_code": booking.coupon_code,
                "coupon_mode": coupon_result.mode if coupon_result else None,
            },
        )
