# backend/roombook/repositories/coupon_usage_repository.py
"""
Coupon usage repository.

Every state change is a single conditional statement. The insert path
deliberately lets IntegrityError escape: catching it here would leave
the surrounding transaction in an aborted state on PostgreSQL.
"""

from datetime import datetime
import logging
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..core.timezone_utils import ensure_utc
from ..models.coupon_usage import CouponUsage, CouponUsageStatus
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class CouponUsageRepository(BaseRepository[CouponUsage]):
    def __init__(self, db: Session):
        super().__init__(db, CouponUsage)

    def find_usage(self, user_id: str, coupon_code: str, context: str) -> Optional[CouponUsage]:
        try:
            return (
                self.db.query(CouponUsage)
                .filter(
                    CouponUsage.user_id == user_id,
                    CouponUsage.coupon_code == coupon_code,
                    CouponUsage.context == context,
                )
                .populate_existing()
                .first()
            )
        except SQLAlchemyError as exc:
            self.logger.error("Failed to read coupon usage: %s", str(exc))
            raise RepositoryException("Failed to read coupon usage") from exc

    def has_active_usage(self, user_id: str, coupon_code: str, context: str) -> bool:
        try:
            return (
                self.db.query(CouponUsage.id)
                .filter(
                    CouponUsage.user_id == user_id,
                    CouponUsage.coupon_code == coupon_code,
                    CouponUsage.context == context,
                    CouponUsage.status == CouponUsageStatus.USED.value,
                )
                .first()
                is not None
            )
        except SQLAlchemyError as exc:
            self.logger.error("Failed to check coupon usage: %s", str(exc))
            raise RepositoryException("Failed to check coupon usage") from exc

    def claim_restored(
        self,
        user_id: str,
        coupon_code: str,
        context: str,
        *,
        booking_id: Optional[str],
        credit_id: Optional[str],
        now: datetime,
    ) -> bool:
        """RESTORED -> USED for this identity. True when this call claimed it."""
        try:
            result = self.db.execute(
                update(CouponUsage)
                .where(
                    CouponUsage.user_id == user_id,
                    CouponUsage.coupon_code == coupon_code,
                    CouponUsage.context == context,
                    CouponUsage.status == CouponUsageStatus.RESTORED.value,
                )
                .values(
                    status=CouponUsageStatus.USED.value,
                    booking_id=booking_id,
                    credit_id=credit_id,
                    restored_at=None,
                    updated_at=ensure_utc(now),
                )
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1
        except SQLAlchemyError as exc:
            self.logger.error("Failed to claim restored coupon usage: %s", str(exc))
            raise RepositoryException("Failed to claim coupon usage") from exc

    def insert_usage(
        self,
        user_id: str,
        coupon_code: str,
        context: str,
        *,
        booking_id: Optional[str],
        credit_id: Optional[str],
    ) -> CouponUsage:
        """Plain insert; a uniqueness race raises IntegrityError to the caller."""
        usage = CouponUsage(
            user_id=user_id,
            coupon_code=coupon_code,
            context=context,
            status=CouponUsageStatus.USED.value,
            booking_id=booking_id,
            credit_id=credit_id,
        )
        try:
            self.db.add(usage)
            self.db.flush()
        except IntegrityError:
            # Left unwrapped so the caller aborts its whole transaction
            self.logger.warning("Coupon %s already recorded for user %s in %s", coupon_code, user_id, context)
            raise
        except SQLAlchemyError as exc:
            self.logger.error("Failed to insert coupon usage: %s", str(exc))
            raise RepositoryException("Failed to insert coupon usage") from exc
        return usage

    def find_active_by_link(
        self, *, booking_id: Optional[str] = None, credit_id: Optional[str] = None
    ) -> Optional[CouponUsage]:
        if not booking_id and not credit_id:
            return None
        try:
            query = self.db.query(CouponUsage).filter(
                CouponUsage.status == CouponUsageStatus.USED.value
            )
            if booking_id:
                query = query.filter(CouponUsage.booking_id == booking_id)
            else:
                query = query.filter(CouponUsage.credit_id == credit_id)
            return query.first()
        except SQLAlchemyError as exc:
            self.logger.error("Failed to find coupon usage by link: %s", str(exc))
            raise RepositoryException("Failed to find coupon usage") from exc

    def mark_restored(self, usage_id: str, *, now: datetime) -> bool:
        """USED -> RESTORED for one row. True when this call restored it."""
        try:
            result = self.db.execute(
                update(CouponUsage)
                .where(
                    CouponUsage.id == usage_id,
                    CouponUsage.status == CouponUsageStatus.USED.value,
                )
                .values(
                    status=CouponUsageStatus.RESTORED.value,
                    restored_at=ensure_utc(now),
                    updated_at=ensure_utc(now),
                )
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1
        except SQLAlchemyError as exc:
            self.logger.error("Failed to restore coupon usage %s: %s", usage_id, str(exc))
            raise RepositoryException("Failed to restore coupon usage") from exc
