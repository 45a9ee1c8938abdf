"""
Repository layer for the reservation engine.

Key Components:
- BaseRepository: Foundation for all repositories
- RepositoryFactory: Factory for creating repository instances
- BookingRepository: overlap queries and conditional status transitions
- CreditRepository: consumption-ordered reads and the conditional decrement
- CouponUsageRepository: claim / insert / restore of coupon usages
- RoomRepository: room lookups and tiers

Usage:
    from roombook.repositories import RepositoryFactory

    repository = RepositoryFactory.create_credit_repository(db)
    consumed = repository.try_consume(credit_id, 1500, now=now)
"""

from .base_repository import BaseRepository, IRepository
from .booking_repository import BookingRepository
from .coupon_usage_repository import CouponUsageRepository
from .credit_repository import CreditRepository
from .factory import RepositoryFactory
from .room_repository import RoomRepository

__all__ = [
    "BaseRepository",
    "BookingRepository",
    "CouponUsageRepository",
    "CreditRepository",
    "IRepository",
    "RepositoryFactory",
    "RoomRepository",
]
