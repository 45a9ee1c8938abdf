from datetime import datetime, timezone
from itertools import count
from typing import Optional

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from roombook.database import Base

# Import models so Base.metadata is populated for create_all.
import roombook.models  # noqa: F401
from roombook.models.booking import Booking, BookingStatus
from roombook.models.credit import Credit, CreditStatus, CreditType
from roombook.models.room import Room
from roombook.ratelimit import clear_rate_limit_store

from backend.tests._utils.calendar import FIXED_NOW


@pytest.fixture(scope="session")
def _unit_engine():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        future=True,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # pysqlite's own transaction handling breaks SAVEPOINT; let SQLAlchemy drive it
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(scope="function")
def unit_db(_unit_engine) -> Session:
    """
    Provide a session bound to an outer transaction that is rolled back.

    Service-level commit/rollback only touch a savepoint.
    """
    connection = _unit_engine.connect()
    transaction = connection.begin()
    session = Session(
        bind=connection,
        expire_on_commit=False,
        join_transaction_mode="create_savepoint",
    )
    try:
        yield session
    finally:
        session.close()
        transaction.rollback()
        connection.close()


@pytest.fixture
def clock():
    return lambda: FIXED_NOW


@pytest.fixture(autouse=True)
def _reset_rate_limiter():
    clear_rate_limit_store()
    yield
    clear_rate_limit_store()


_seq = count(1)


@pytest.fixture
def make_room(unit_db):
    def _make(
        *,
        tier: int = 1,
        hourly_price_cents: int = 6000,
        saturday_hourly_price_cents: Optional[int] = None,
        is_active: bool = True,
    ) -> Room:
        n = next(_seq)
        room = Room(
            name=f"Sala {n}",
            slug=f"sala-{n}",
            tier=tier,
            hourly_price_cents=hourly_price_cents,
            saturday_hourly_price_cents=saturday_hourly_price_cents,
            is_active=is_active,
        )
        unit_db.add(room)
        unit_db.commit()
        return room

    return _make


@pytest.fixture
def room(make_room) -> Room:
    return make_room()


@pytest.fixture
def make_credit(unit_db):
    def _make(
        user_id: str,
        amount: int,
        *,
        remaining: Optional[int] = None,
        room_id: Optional[str] = None,
        credit_type: CreditType = CreditType.MANUAL,
        usage_type: Optional[str] = None,
        status: CreditStatus = CreditStatus.CONFIRMED,
        expires_at: Optional[datetime] = None,
        created_at: Optional[datetime] = None,
    ) -> Credit:
        credit = Credit(
            user_id=user_id,
            amount=amount,
            remaining_amount=amount if remaining is None else remaining,
            room_id=room_id,
            type=credit_type.value,
            usage_type=usage_type,
            status=status.value,
            expires_at=expires_at,
            created_at=created_at or datetime(2026, 1, 1, tzinfo=timezone.utc),
        )
        unit_db.add(credit)
        unit_db.commit()
        return credit

    return _make


@pytest.fixture
def make_booking(unit_db):
    def _make(
        room: Room,
        start: datetime,
        end: datetime,
        *,
        user_id: str = "user-other",
        status: BookingStatus = BookingStatus.CONFIRMED,
        amount: int = 6000,
    ) -> Booking:
        booking = Booking(
            user_id=user_id,
            room_id=room.id,
            start_time=start,
            end_time=end,
            status=status.value,
            gross_amount=amount,
            discount_amount=0,
            net_amount=amount,
            amount_paid_cash=amount,
            credits_used=0,
        )
        unit_db.add(booking)
        unit_db.commit()
        return booking

    return _make
