# backend/roombook/services/credit_service.py
"""
Credit ledger allocator.

Covers a required amount from a user's credit grants, soonest expiry
first. Each draw is a conditional decrement in the database; losing a race
aborts the whole allocation rather than silently skipping the credit.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timedelta
import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from ..core.exceptions import (
    CreditConsumedByAnotherException,
    InsufficientCreditsException,
    NotFoundException,
    PartialConsumptionException,
    ValidationException,
)
from ..core.timezone_utils import ensure_utc
from ..models.booking import Booking
from ..models.credit import Credit, CreditStatus, CreditType, CreditUsageType
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from ..schemas.credit import ConsumedCredit, CreditAllocation, CreditSummary, RoomCreditBalance
from .base import BaseService
from .credit_usage import is_credit_eligible_for_room, validate_credit_usage

logger = logging.getLogger(__name__)

DEFAULT_BOOKING_LENGTH = timedelta(hours=1)


class CreditService(BaseService):
    """Credit balance, allocation and issuance."""

    def __init__(self, db: Session, **kwargs: Any):
        super().__init__(db, **kwargs)
        self.credit_repository = RepositoryFactory.create_credit_repository(db)
        self.room_repository = RepositoryFactory.create_room_repository(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)

    # Eligibility

    def _room_tier(self, room_id: Optional[str]) -> Optional[int]:
        if room_id is None:
            return None
        room = self.room_repository.get_by_id(room_id)
        if not room:
            raise NotFoundException(f"Room {room_id} not found", code="ROOM_NOT_FOUND")
        return room.tier

    def get_eligible_credits(
        self,
        user_id: str,
        room_id: Optional[str],
        start: datetime,
        end: Optional[datetime] = None,
        *,
        now: Optional[datetime] = None,
    ) -> List[Credit]:
        """
        Spendable credits that may pay for this booking, in consumption order.

        Filters on owner, CONFIRMED status, positive balance and expiry in the
        query, then on room tier and usage type.
        """
        end = end or start + DEFAULT_BOOKING_LENGTH
        now = now or self.now()
        room_tier = self._room_tier(room_id)
        credits = self.credit_repository.get_spendable_credits(user_id=user_id, now=now)

        tiers = self.room_repository.get_tiers(c.room_id for c in credits if c.room_id)
        eligible = []
        for credit in credits:
            if room_tier is not None and credit.room_id is not None:
                if not is_credit_eligible_for_room(tiers.get(credit.room_id), room_tier):
                    continue
            if not validate_credit_usage(credit, start, end).valid:
                continue
            eligible.append(credit)
        return eligible

    def get_balance_for_room(
        self,
        user_id: str,
        room_id: Optional[str],
        start: datetime,
        end: Optional[datetime] = None,
        *,
        now: Optional[datetime] = None,
    ) -> int:
        """Cents the user could spend on this booking right now."""
        return sum(
            c.remaining_amount for c in self.get_eligible_credits(user_id, room_id, start, end, now=now)
        )

    # Allocation

    @BaseService.measure_operation("allocate_credits")
    def allocate_credits(
        self,
        user_id: str,
        room_id: Optional[str],
        required_cents: int,
        start: datetime,
        end: Optional[datetime] = None,
        *,
        now: Optional[datetime] = None,
        use_transaction: bool = True,
    ) -> CreditAllocation:
        """
        Consume credits covering `required_cents`, all or nothing.

        Args:
            user_id: Credit owner
            room_id: Room being booked (tier filter); None skips the tier filter
            required_cents: Amount to cover
            start: Booking start
            end: Booking end, defaults to one hour after start
            now: Reference time for expiry
            use_transaction: Commit/rollback here; pass False when the caller
                owns the transaction and will roll back on error

        Raises:
            InsufficientCreditsException: visible balance is below the requirement
            CreditConsumedByAnotherException: a conditional decrement matched no row
            PartialConsumptionException: real-time balance fell short after the pre-check
        """
        if required_cents < 0:
            raise ValidationException("required_cents must not be negative", code="INVALID_AMOUNT")
        if required_cents == 0:
            return CreditAllocation()

        now = now or self.now()
        end = end or start + DEFAULT_BOOKING_LENGTH

        # Optimistic pre-check; the conditional decrements below are the real guard
        available = self.get_balance_for_room(user_id, room_id, start, end, now=now)
        if available < required_cents:
            prometheus_metrics.inc_credit_allocation_failure("INSUFFICIENT_CREDITS")
            self.logger.warning(
                "Insufficient credits",
                extra={"user_id": user_id, "available_cents": available, "required_cents": required_cents},
            )
            raise InsufficientCreditsException(available, required_cents)

        if use_transaction:
            with self.transaction():
                allocation = self._consume(user_id, room_id, required_cents, start, end, now)
        else:
            allocation = self._consume(user_id, room_id, required_cents, start, end, now)

        prometheus_metrics.inc_credits_consumed(allocation.total_consumed_cents)
        self.logger.info(
            "Allocated %d cents from %d credit(s)",
            allocation.total_consumed_cents,
            len(allocation.consumed),
            extra={"user_id": user_id, "room_id": room_id},
        )
        return allocation

    def _consume(
        self,
        user_id: str,
        room_id: Optional[str],
        required_cents: int,
        start: datetime,
        end: datetime,
        now: datetime,
    ) -> CreditAllocation:
        credits = self.get_eligible_credits(user_id, room_id, start, end, now=now)
        consumed: List[ConsumedCredit] = []
        still_needed = required_cents

        for credit in credits:
            if still_needed <= 0:
                break
            take = min(credit.remaining_amount, still_needed)
            if take <= 0:
                continue
            if not self.credit_repository.try_consume(credit.id, take, now=now):
                prometheus_metrics.inc_credit_allocation_failure("CREDIT_CONSUMED_BY_ANOTHER")
                self.logger.warning("Credit %s consumed by another request", credit.id)
                raise CreditConsumedByAnotherException(credit.id)
            consumed.append(ConsumedCredit(credit_id=credit.id, amount_cents=take))
            still_needed -= take

        total = required_cents - still_needed
        if still_needed > 0:
            prometheus_metrics.inc_credit_allocation_failure("PARTIAL_CONSUMPTION")
            self.logger.warning(
                "Partial credit consumption",
                extra={"user_id": user_id, "consumed_cents": total, "expected_cents": required_cents},
            )
            raise PartialConsumptionException(total, required_cents)

        return CreditAllocation(consumed=consumed, total_consumed_cents=total)

    # Balances

    def get_available_balance(self, user_id: str, *, now: Optional[datetime] = None) -> int:
        """Total spendable cents regardless of room or usage type."""
        return self.credit_repository.get_total_spendable(user_id=user_id, now=now or self.now())

    def get_credit_summary(self, user_id: str, *, now: Optional[datetime] = None) -> CreditSummary:
        now = now or self.now()
        credits = self.credit_repository.get_spendable_credits(user_id=user_id, now=now)
        by_room: Dict[Optional[str], int] = defaultdict(int)
        for credit in credits:
            by_room[credit.room_id] += credit.remaining_amount
        return CreditSummary(
            user_id=user_id,
            available_cents=sum(by_room.values()),
            by_room=[
                RoomCreditBalance(room_id=room_id, available_cents=amount)
                for room_id, amount in sorted(by_room.items(), key=lambda item: item[0] or "")
            ],
            expired_with_balance=self.credit_repository.count_expired_with_balance(now=now, user_id=user_id),
        )

    def count_expired_credits(self, *, now: Optional[datetime] = None) -> int:
        """Expiry is evaluated at read time; this only reports stranded balances."""
        return self.credit_repository.count_expired_with_balance(now=now or self.now())

    # Issuance

    @BaseService.measure_operation("issue_credit")
    def issue_credit(
        self,
        user_id: str,
        amount_cents: int,
        credit_type: CreditType = CreditType.MANUAL,
        *,
        room_id: Optional[str] = None,
        usage_type: Optional[CreditUsageType] = None,
        expires_at: Optional[datetime] = None,
        expires_in_days: Optional[int] = None,
        source_booking_id: Optional[str] = None,
        status: CreditStatus = CreditStatus.CONFIRMED,
        use_transaction: bool = True,
    ) -> Credit:
        """Create a new credit grant with remaining == amount."""
        if amount_cents <= 0:
            raise ValidationException("Credit amount must be positive", code="INVALID_AMOUNT")
        if expires_at is None and expires_in_days is not None:
            expires_at = self.now() + timedelta(days=expires_in_days)

        fields = dict(
            user_id=user_id,
            room_id=room_id,
            amount=amount_cents,
            remaining_amount=amount_cents,
            type=CreditType(credit_type).value,
            usage_type=CreditUsageType(usage_type).value if usage_type else None,
            status=CreditStatus(status).value,
            expires_at=ensure_utc(expires_at) if expires_at else None,
            source_booking_id=source_booking_id,
        )
        if use_transaction:
            with self.transaction():
                credit = self.credit_repository.create(**fields)
        else:
            credit = self.credit_repository.create(**fields)

        self.logger.info(
            "Issued credit %s of %d cents",
            credit.id,
            amount_cents,
            extra={"user_id": user_id, "credit_type": fields["type"]},
        )
        return credit

    def confirm_credit(self, credit_id: str) -> bool:
        """Promote a paid purchase from PENDING to CONFIRMED. Idempotent."""
        with self.transaction():
            confirmed = self.credit_repository.confirm_pending(credit_id)
        if confirmed:
            self.logger.info("Credit %s confirmed", credit_id)
        return confirmed

    def refund_booking_credits(self, booking: Booking, *, use_transaction: bool = False) -> List[Credit]:
        """
        Return the credits a cancelled booking consumed as new grants.

        `remaining_amount` never goes up, so the refund is a fresh REFUND
        credit per (room scope, usage type) that was drawn from; legacy
        Saturday credits come back as Saturday credits.
        """
        usages = self.booking_repository.get_credit_usages(booking.id)
        groups: Dict[Tuple[Optional[str], Optional[str], str], Dict[str, Any]] = {}
        for usage in usages:
            credit = usage.credit
            refund_type = (
                CreditType.SATURDAY.value
                if credit.type == CreditType.SATURDAY.value
                else CreditType.REFUND.value
            )
            key = (credit.room_id, credit.usage_type, refund_type)
            group = groups.setdefault(key, {"amount": 0, "expires_at": credit.expires_at, "no_expiry": False})
            group["amount"] += usage.amount
            if credit.expires_at is None:
                group["no_expiry"] = True
            elif group["expires_at"] is not None and ensure_utc(credit.expires_at) > ensure_utc(group["expires_at"]):
                group["expires_at"] = credit.expires_at

        issued: List[Credit] = []
        for (room_id, usage_type, refund_type), group in groups.items():
            issued.append(
                self.issue_credit(
                    booking.user_id,
                    group["amount"],
                    CreditType(refund_type),
                    room_id=room_id,
                    usage_type=CreditUsageType(usage_type) if usage_type else None,
                    expires_at=None if group["no_expiry"] else group["expires_at"],
                    source_booking_id=booking.id,
                    use_transaction=use_transaction,
                )
            )
        return issued
