# backend/roombook/repositories/factory.py
"""
Repository Factory for the reservation engine.

Provides centralized creation of repository instances so services can be
handed fakes in tests.
"""

from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

# Avoid circular imports
if TYPE_CHECKING:
    from .booking_repository import BookingRepository
    from .coupon_usage_repository import CouponUsageRepository
    from .credit_repository import CreditRepository
    from .room_repository import RoomRepository


class RepositoryFactory:
    """Factory class for creating repository instances."""

    @staticmethod
    def create_booking_repository(db: Session) -> "BookingRepository":
        from .booking_repository import BookingRepository

        return BookingRepository(db)

    @staticmethod
    def create_credit_repository(db: Session) -> "CreditRepository":
        from .credit_repository import CreditRepository

        return CreditRepository(db)

    @staticmethod
    def create_coupon_usage_repository(db: Session) -> "CouponUsageRepository":
        from .coupon_usage_repository import CouponUsageRepository

        return CouponUsageRepository(db)

    @staticmethod
    def create_room_repository(db: Session) -> "RoomRepository":
        from .room_repository import RoomRepository

        return RoomRepository(db)
