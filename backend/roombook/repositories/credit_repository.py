# backend/roombook/repositories/credit_repository.py
"""
Credit Repository for the reservation engine.

Reads eligible credits in consumption order and performs the conditional
decrement that is the only write path to `remaining_amount`.
"""

from __future__ import annotations

from datetime import datetime
import logging
from typing import List, Optional

from sqlalchemy import and_, case, func, or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..core.timezone_utils import ensure_utc
from ..models.credit import Credit, CreditStatus
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class CreditRepository(BaseRepository[Credit]):
    """Repository for credit ledger queries and conditional writes."""

    def __init__(self, db: Session):
        super().__init__(db, Credit)
        self.logger = logging.getLogger(__name__)

    def _spendable_filter(self, user_id: str, now: datetime):
        now_utc = ensure_utc(now)
        return and_(
            Credit.user_id == user_id,
            Credit.status == CreditStatus.CONFIRMED.value,
            Credit.remaining_amount > 0,
            or_(Credit.expires_at.is_(None), Credit.expires_at > now_utc),
        )

    def get_spendable_credits(self, *, user_id: str, now: datetime) -> List[Credit]:
        """
        Return confirmed, non-empty, unexpired credits for a user.

        Ordered by soonest expiry (no expiry last), then creation time, then id,
        so the value most at risk of expiring is spent first. Rows already in
        the session are overwritten with the database state.
        """
        try:
            query = (
                self.db.query(Credit)
                .filter(self._spendable_filter(user_id, now))
                .populate_existing()
                .order_by(
                    Credit.expires_at.asc().nullslast(),
                    Credit.created_at.asc(),
                    Credit.id.asc(),
                )
            )
            return list(query.all())
        except SQLAlchemyError as exc:
            self.logger.error("Failed to get spendable credits: %s", str(exc))
            raise RepositoryException("Failed to get spendable credits") from exc

    def get_total_spendable(self, *, user_id: str, now: datetime) -> int:
        try:
            total = (
                self.db.query(func.coalesce(func.sum(Credit.remaining_amount), 0))
                .filter(self._spendable_filter(user_id, now))
                .scalar()
            )
            return int(total or 0)
        except SQLAlchemyError as exc:
            self.logger.error("Failed to sum credits: %s", str(exc))
            raise RepositoryException("Failed to sum credits") from exc

    def count_expired_with_balance(self, *, now: datetime, user_id: Optional[str] = None) -> int:
        try:
            query = self.db.query(func.count(Credit.id)).filter(
                Credit.remaining_amount > 0,
                Credit.status == CreditStatus.CONFIRMED.value,
                Credit.expires_at.is_not(None),
                Credit.expires_at <= ensure_utc(now),
            )
            if user_id:
                query = query.filter(Credit.user_id == user_id)
            return int(query.scalar() or 0)
        except SQLAlchemyError as exc:
            self.logger.error("Failed to count expired credits: %s", str(exc))
            raise RepositoryException("Failed to count expired credits") from exc

    def try_consume(self, credit_id: str, amount_cents: int, *, now: datetime) -> bool:
        """
        Atomically subtract `amount_cents` from a credit.

        The predicate `remaining_amount >= amount` is evaluated by the
        database at write time; zero affected rows means another writer got
        there first. A credit drained to zero is flipped to USED in the same
        statement.
        """
        new_remaining = Credit.remaining_amount - amount_cents
        stmt = (
            update(Credit)
            .where(
                Credit.id == credit_id,
                Credit.status == CreditStatus.CONFIRMED.value,
                Credit.remaining_amount >= amount_cents,
            )
            .values(
                remaining_amount=new_remaining,
                status=case(
                    (new_remaining == 0, CreditStatus.USED.value),
                    else_=Credit.status,
                ),
                used_at=case((new_remaining == 0, ensure_utc(now)), else_=Credit.used_at),
            )
            .execution_options(synchronize_session=False)
        )
        try:
            result = self.db.execute(stmt)
        except SQLAlchemyError as exc:
            self.logger.error("Conditional decrement failed for credit %s: %s", credit_id, str(exc))
            raise RepositoryException("Failed to consume credit") from exc
        return result.rowcount == 1

    def confirm_pending(self, credit_id: str) -> bool:
        """PENDING -> CONFIRMED, once."""
        try:
            result = self.db.execute(
                update(Credit)
                .where(Credit.id == credit_id, Credit.status == CreditStatus.PENDING.value)
                .values(status=CreditStatus.CONFIRMED.value)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1
        except SQLAlchemyError as exc:
            self.logger.error("Failed to confirm credit %s: %s", credit_id, str(exc))
            raise RepositoryException("Failed to confirm credit") from exc
