from datetime import date, timedelta
from unittest.mock import Mock, patch

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from roombook.core.config import settings
from roombook.core.enums import ProductType
from roombook.core.exceptions import (
    BookingConflictException,
    BookingWindowExceededException,
    CouponAlreadyUsedException,
    CouponRequiresCashPaymentException,
    CreditConsumedByAnotherException,
    InsufficientNoticeException,
    NotFoundException,
    OutsideBusinessHoursException,
    TurnoProtectionException,
    ValidationException,
)
from roombook.database import Base
from roombook.models.booking import Booking, BookingStatus
from roombook.models.coupon_usage import CouponUsage, CouponUsageContext, CouponUsageStatus
from roombook.models.credit import BookingCreditUsage, Credit, CreditStatus, CreditType
from roombook.models.room import Room
from roombook.schemas.booking import BookingCreate
from roombook.schemas.coupon import CouponRecordMode, CouponUsageCheck
from roombook.services.audit_service import AuditService
from roombook.services.booking_service import BookingService, calculate_booking_total_cents

from backend.tests._utils.calendar import FIXED_NOW, MONDAY, SATURDAY, SUNDAY, TUESDAY, at

USER = "user-booking"


@pytest.fixture
def sink() -> Mock:
    return Mock()


@pytest.fixture
def service(unit_db, clock, sink) -> BookingService:
    return BookingService(unit_db, audit_service=AuditService(sink=sink), clock=clock)


def request(room, start, end, **overrides) -> BookingCreate:
    return BookingCreate(user_id=USER, room_id=room.id, start_time=start, end_time=end, **overrides)


def tuesday(room, **overrides) -> BookingCreate:
    return request(room, at(TUESDAY, 10), at(TUESDAY, 11), **overrides)


def bookings(unit_db):
    unit_db.expire_all()
    return unit_db.query(Booking).filter(Booking.user_id == USER).all()


def coupon_rows(unit_db):
    unit_db.expire_all()
    return unit_db.query(CouponUsage).filter(CouponUsage.user_id == USER).all()


def remaining(unit_db, credit: Credit) -> int:
    unit_db.expire_all()
    return unit_db.get(Credit, credit.id).remaining_amount


class TestPricing:
    def test_weekday_and_saturday_prices(self, make_room) -> None:
        room = make_room(hourly_price_cents=6000, saturday_hourly_price_cents=5000)

        assert calculate_booking_total_cents(room, at(TUESDAY, 10), 2) == 12000
        assert calculate_booking_total_cents(room, at(SATURDAY, 9), 1) == 5000

    def test_saturday_falls_back_to_weekday_price(self, room) -> None:
        assert calculate_booking_total_cents(room, at(SATURDAY, 9), 1) == 6000

    def test_rejects_non_positive_hours(self, room) -> None:
        with pytest.raises(ValidationException):
            calculate_booking_total_cents(room, at(TUESDAY, 10), 0)


class TestCreateBookingPayment:
    def test_cash_booking_is_pending(self, service, room, unit_db) -> None:
        result = service.create_booking(tuesday(room))

        assert result.status == BookingStatus.PENDING
        assert (result.gross_amount, result.net_amount, result.amount_to_pay_cash) == (6000, 6000, 6000)
        assert result.credits_used == 0
        assert result.coupon_code is None

        booking = bookings(unit_db)[0]
        assert booking.paid_at is None
        assert booking.product_type == ProductType.HOURLY_RATE.value
        assert not service.availability_service.check_availability(room.id, at(TUESDAY, 10), at(TUESDAY, 11))

    def test_cash_booking_with_coupon(self, service, room, unit_db) -> None:
        result = service.create_booking(tuesday(room, coupon_code=" teste50 "))

        assert result.coupon_code == "TESTE50"
        assert result.coupon_mode == CouponRecordMode.CREATED
        assert (result.discount_amount, result.amount_to_pay_cash, result.net_amount) == (500, 5500, 5500)

        booking = bookings(unit_db)[0]
        assert booking.coupon_snapshot["code"] == "TESTE50"
        rows = coupon_rows(unit_db)
        assert [(r.booking_id, r.status) for r in rows] == [(booking.id, CouponUsageStatus.USED.value)]

    def test_full_credit_booking_is_confirmed(self, service, room, make_credit, unit_db) -> None:
        credit = make_credit(USER, 10000)

        result = service.create_booking(tuesday(room, use_credits=True))

        assert result.status == BookingStatus.CONFIRMED
        assert result.credits_used == 6000
        assert result.amount_to_pay_cash == 0
        assert [(c.credit_id, c.amount_cents) for c in result.consumed_credits] == [(credit.id, 6000)]
        assert remaining(unit_db, credit) == 4000

        booking = bookings(unit_db)[0]
        assert booking.paid_at is not None
        usages = unit_db.query(BookingCreditUsage).filter(BookingCreditUsage.booking_id == booking.id).all()
        assert [(u.credit_id, u.amount) for u in usages] == [(credit.id, 6000)]

    def test_full_credit_ignores_optional_coupon(self, service, room, make_credit, unit_db) -> None:
        make_credit(USER, 10000)

        result = service.create_booking(tuesday(room, use_credits=True, coupon_code="ARTHEMI10"))

        assert result.coupon_code is None
        assert result.discount_amount == 0
        assert coupon_rows(unit_db) == []

    def test_full_credit_with_required_coupon_is_refused(self, service, room, make_credit, unit_db) -> None:
        credit = make_credit(USER, 10000)

        with pytest.raises(CouponRequiresCashPaymentException):
            service.create_booking(tuesday(room, use_credits=True, coupon_code="TESTE50", require_coupon=True))

        assert bookings(unit_db) == []
        assert remaining(unit_db, credit) == 10000

    def test_partial_credit_discounts_only_the_cash(self, service, room, make_credit, unit_db) -> None:
        credit = make_credit(USER, 2000)

        result = service.create_booking(tuesday(room, use_credits=True, coupon_code="ARTHEMI10"))

        # 10% of the 4000 left after credits
        assert result.credits_used == 2000
        assert result.discount_amount == 400
        assert result.amount_to_pay_cash == 3600
        assert result.net_amount == 5600
        assert result.gross_amount == result.net_amount + result.discount_amount
        assert result.status == BookingStatus.PENDING
        assert remaining(unit_db, credit) == 0

    def test_credits_ignored_unless_requested(self, service, room, make_credit, unit_db) -> None:
        credit = make_credit(USER, 10000)

        result = service.create_booking(tuesday(room))

        assert result.credits_used == 0
        assert remaining(unit_db, credit) == 10000

    def test_used_coupon_rejected_before_any_write(self, service, room, make_credit, unit_db) -> None:
        credit = make_credit(USER, 2000)
        service.create_booking(request(room, at(TUESDAY, 14), at(TUESDAY, 15), coupon_code="TESTE50"))

        with pytest.raises(CouponAlreadyUsedException):
            service.create_booking(tuesday(room, use_credits=True, coupon_code="TESTE50"))

        assert len(bookings(unit_db)) == 1
        assert remaining(unit_db, credit) == 2000

    def test_saturday_price(self, service, make_room) -> None:
        room = make_room(saturday_hourly_price_cents=5000)

        result = service.create_booking(request(room, at(SATURDAY, 9), at(SATURDAY, 10)))

        assert result.gross_amount == 5000


class TestCreateBookingRules:
    def test_conflict(self, service, room, make_booking) -> None:
        existing = make_booking(room, at(TUESDAY, 9), at(TUESDAY, 10))

        with pytest.raises(BookingConflictException) as exc_info:
            service.create_booking(tuesday(room))

        assert [c["booking_id"] for c in exc_info.value.details["conflicts"]] == [existing.id]

    def test_past_start(self, service, room) -> None:
        with pytest.raises(ValidationException) as exc_info:
            service.create_booking(request(room, at(MONDAY, 8), at(MONDAY, 9)))

        assert exc_info.value.code == "BOOKING_IN_PAST"

    @pytest.mark.parametrize("end", [(TUESDAY, 10, 30), (TUESDAY, 19, 0)])
    def test_invalid_duration(self, service, room, end) -> None:
        with pytest.raises(ValidationException) as exc_info:
            service.create_booking(request(room, at(TUESDAY, 10), at(*end)))

        assert exc_info.value.code == "INVALID_DURATION"

    @pytest.mark.parametrize(
        "start, end",
        [((TUESDAY, 19), (TUESDAY, 21)), ((SATURDAY, 11), (SATURDAY, 13)), ((SUNDAY, 10), (SUNDAY, 11))],
    )
    def test_outside_business_hours(self, service, room, start, end) -> None:
        with pytest.raises(OutsideBusinessHoursException):
            service.create_booking(request(room, at(*start), at(*end)))

    def test_booking_window(self, service, room) -> None:
        day = MONDAY + timedelta(days=31)

        with pytest.raises(BookingWindowExceededException):
            service.create_booking(request(room, at(day, 10), at(day, 11)))

    def test_hourly_product_past_turno_window(self, service, room, monkeypatch) -> None:
        monkeypatch.setattr(settings, "max_booking_window_days", 60)
        day = date(2026, 4, 2)  # Thursday, 31 days out

        with pytest.raises(TurnoProtectionException):
            service.create_booking(request(room, at(day, 10), at(day, 11)))

        result = service.create_booking(
            request(room, at(day, 8), at(day, 12), product_type=ProductType.SHIFT_FIXED)
        )
        assert result.gross_amount == 24000

    def test_unknown_or_inactive_room(self, service, make_room) -> None:
        inactive = make_room(is_active=False)

        with pytest.raises(NotFoundException) as exc_info:
            service.create_booking(tuesday(inactive))

        assert exc_info.value.code == "ROOM_NOT_FOUND"

    def test_min_advance_applies_to_cash_only(self, service, room, make_credit) -> None:
        start = FIXED_NOW  # Monday 09:00 local
        end = start + timedelta(hours=1)

        with pytest.raises(InsufficientNoticeException):
            service.create_booking(request(room, start, end))

        make_credit(USER, 6000)
        result = service.create_booking(request(room, start, end, use_credits=True))
        assert result.status == BookingStatus.CONFIRMED


class TestCreateBookingAtomicity:
    def test_lost_credit_race_leaves_nothing(self, service, room, make_credit, unit_db) -> None:
        credit = make_credit(USER, 2000)

        with patch.object(service.credit_service.credit_repository, "try_consume", return_value=False):
            with pytest.raises(CreditConsumedByAnotherException):
                service.create_booking(tuesday(room, use_credits=True, coupon_code="TESTE50"))

        assert bookings(unit_db) == []
        assert coupon_rows(unit_db) == []
        assert remaining(unit_db, credit) == 2000

    def test_coupon_insert_race_rolls_back_booking_and_credits(
        self, service, room, make_credit, unit_db
    ) -> None:
        credit = make_credit(USER, 2000)
        unit_db.add(
            CouponUsage(
                user_id=USER,
                coupon_code="TESTE50",
                context=CouponUsageContext.BOOKING.value,
                status=CouponUsageStatus.USED.value,
            )
        )
        unit_db.commit()

        # The other request's row landed after our usage check
        with patch.object(
            service.coupon_service, "check_coupon_usage", return_value=CouponUsageCheck(can_use=True)
        ):
            with pytest.raises(IntegrityError):
                service.create_booking(tuesday(room, use_credits=True, coupon_code="TESTE50"))

        assert bookings(unit_db) == []
        assert remaining(unit_db, credit) == 2000
        assert len(coupon_rows(unit_db)) == 1


class TestCreateBookingTwoSessions:
    """Two sessions on one file database, so each commit is visible to the other."""

    @pytest.fixture
    def sessions(self, tmp_path):
        engine = create_engine(f"sqlite:///{tmp_path / 'race.sqlite3'}", future=True)
        Base.metadata.create_all(engine)
        factory = sessionmaker(bind=engine, expire_on_commit=False)
        first, second = factory(), factory()
        try:
            yield first, second
        finally:
            first.close()
            second.close()
            engine.dispose()

    def test_second_writer_loses_the_slot(self, sessions) -> None:
        db_a, db_b = sessions
        room = Room(name="Sala A", slug="sala-a", tier=1, hourly_price_cents=6000)
        credit = Credit(
            user_id=USER,
            amount=6000,
            remaining_amount=6000,
            type=CreditType.MANUAL.value,
            status=CreditStatus.CONFIRMED.value,
            created_at=FIXED_NOW - timedelta(days=30),
        )
        db_a.add_all([room, credit])
        db_a.commit()

        service_a = BookingService(db_a, audit_service=AuditService(sink=Mock()), clock=lambda: FIXED_NOW)
        service_b = BookingService(db_b, audit_service=AuditService(sink=Mock()), clock=lambda: FIXED_NOW)
        other = BookingCreate(
            user_id="user-rival", room_id=room.id, start_time=at(TUESDAY, 10), end_time=at(TUESDAY, 11)
        )
        original_check = service_a.availability_service.check_availability

        def check_then_lose_race(*args, **kwargs):
            free = original_check(*args, **kwargs)
            service_b.create_booking(other)
            return free

        with patch.object(service_a.availability_service, "check_availability", side_effect=check_then_lose_race):
            with pytest.raises(BookingConflictException):
                service_a.create_booking(tuesday(room, use_credits=True))

        db_a.expire_all()
        blocking = db_a.query(Booking).filter(Booking.room_id == room.id).all()
        assert [(b.user_id, b.status) for b in blocking] == [("user-rival", BookingStatus.PENDING.value)]
        assert db_a.get(Credit, credit.id).remaining_amount == 6000
        assert db_a.query(BookingCreditUsage).count() == 0


class TestConfirmPayment:
    def test_confirm_once(self, service, room, unit_db) -> None:
        result = service.create_booking(tuesday(room, coupon_code="TESTE50"))

        assert service.confirm_payment(result.booking_id, 5500) is True
        assert service.confirm_payment(result.booking_id, 5500) is False

        booking = bookings(unit_db)[0]
        assert booking.status == BookingStatus.CONFIRMED.value
        assert booking.paid_at is not None

    def test_amount_mismatch(self, service, room) -> None:
        result = service.create_booking(tuesday(room))

        with pytest.raises(ValidationException) as exc_info:
            service.confirm_payment(result.booking_id, 5999)

        assert exc_info.value.code == "PAYMENT_AMOUNT_MISMATCH"

    def test_unknown_booking(self, service) -> None:
        with pytest.raises(NotFoundException):
            service.confirm_payment("missing", 100)


class TestCancelBooking:
    def test_unpaid_cancel_restores_coupon_for_reuse(self, service, room) -> None:
        first = service.create_booking(tuesday(room, coupon_code="TESTE50"))

        cancellation = service.cancel_booking(first.booking_id)

        assert cancellation.cancelled is True
        assert cancellation.coupon_restored is True
        assert cancellation.restored_coupon_code == "TESTE50"

        second = service.create_booking(
            request(room, at(TUESDAY, 14), at(TUESDAY, 15), coupon_code="TESTE50")
        )
        assert second.coupon_mode == CouponRecordMode.CLAIMED_RESTORED

    def test_paid_cancel_keeps_coupon_used(self, service, room, unit_db) -> None:
        result = service.create_booking(tuesday(room, coupon_code="TESTE50"))
        service.confirm_payment(result.booking_id, 5500)

        cancellation = service.cancel_booking(result.booking_id)

        assert cancellation.cancelled is True
        assert cancellation.coupon_restored is False
        assert coupon_rows(unit_db)[0].status == CouponUsageStatus.USED.value

    def test_early_cancel_refunds_credits(self, service, room, make_credit, unit_db) -> None:
        make_credit(USER, 6000)
        result = service.create_booking(tuesday(room, use_credits=True))

        # Tuesday 10:00 is 25 hours after the fixed clock
        cancellation = service.cancel_booking(result.booking_id)

        assert cancellation.refunded_cents == 6000
        assert len(cancellation.refund_credit_ids) == 1
        refund = unit_db.get(Credit, cancellation.refund_credit_ids[0])
        assert refund.type == CreditType.REFUND.value
        assert refund.source_booking_id == result.booking_id
        assert service.credit_service.get_available_balance(USER) == 6000

    def test_late_cancel_keeps_credits(self, service, room, make_credit) -> None:
        make_credit(USER, 6000)
        result = service.create_booking(request(room, at(MONDAY, 15), at(MONDAY, 16), use_credits=True))

        cancellation = service.cancel_booking(result.booking_id)

        assert cancellation.cancelled is True
        assert cancellation.refund_credit_ids == []
        assert service.credit_service.get_available_balance(USER) == 0

    def test_late_cancel_of_unpaid_booking_refunds_credits(self, service, room, make_credit) -> None:
        make_credit(USER, 2000)
        result = service.create_booking(request(room, at(MONDAY, 15), at(MONDAY, 16), use_credits=True))
        assert result.status == BookingStatus.PENDING
        assert result.amount_to_pay_cash == 4000

        cancellation = service.cancel_booking(result.booking_id)

        assert cancellation.cancelled is True
        assert len(cancellation.refund_credit_ids) == 1
        assert service.credit_service.get_available_balance(USER) == 2000

    def test_second_cancel_is_a_no_op(self, service, room) -> None:
        result = service.create_booking(tuesday(room))

        assert service.cancel_booking(result.booking_id).cancelled is True
        assert service.cancel_booking(result.booking_id).cancelled is False

    def test_cancel_frees_the_slot(self, service, room) -> None:
        result = service.create_booking(tuesday(room))
        service.cancel_booking(result.booking_id)

        assert service.create_booking(tuesday(room)).status == BookingStatus.PENDING


class TestAudit:
    def test_events_reach_the_sink(self, service, room, sink) -> None:
        result = service.create_booking(tuesday(room))
        service.confirm_payment(result.booking_id, 6000)
        service.cancel_booking(result.booking_id, actor_id="admin-1")

        events = [c.args[0] for c in sink.emit.call_args_list]
        assert [e["action"] for e in events] == ["booking.created", "booking.paid", "booking.cancelled"]
        assert events[0]["resource_id"] == result.booking_id
        assert events[0]["metadata"]["cash_cents"] == 6000
        assert events[2]["actor_id"] == "admin-1"

    def test_failing_sink_does_not_fail_the_booking(self, service, room, sink, unit_db) -> None:
        sink.emit.side_effect = RuntimeError("sink down")

        result = service.create_booking(tuesday(room))

        assert result.status == BookingStatus.PENDING
        assert len(bookings(unit_db)) == 1
