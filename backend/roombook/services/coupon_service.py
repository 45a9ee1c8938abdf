# backend/roombook/services/coupon_service.py
"""
Coupon catalog, discount math and the coupon usage state machine.

Per (user, code, context) a usage is absent, USED or RESTORED:

- absent -> USED: first redemption inserts a row
- RESTORED -> USED: a later redemption claims the existing row
- USED -> RESTORED: the consuming booking is cancelled before payment

The claim and the insert are two separate statements. When two requests
race, the unique constraint rejects one insert and that IntegrityError
goes straight back to the caller, which aborts its transaction.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.enums import DiscountKind
from ..core.exceptions import (
    CouponAlreadyUsedException,
    CouponInvalidException,
    CouponRequiresCashPaymentException,
    ValidationException,
)
from ..models.coupon_usage import CouponUsageContext, CouponUsageStatus
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from ..schemas.booking import normalize_coupon_code
from ..schemas.coupon import (
    CouponRecordMode,
    CouponRecordResult,
    CouponRestoreResult,
    CouponSnapshot,
    CouponUsageCheck,
    DiscountResult,
)
from .base import BaseService

logger = logging.getLogger(__name__)


class CouponCode(str, Enum):
    TESTE50 = "TESTE50"
    ARTHEMI10 = "ARTHEMI10"
    PRIMEIRACOMPRA = "PRIMEIRACOMPRA"


@dataclass(frozen=True)
class CouponDefinition:
    kind: DiscountKind
    value: int  # cents for FIXED, percent for PERCENT
    description: str
    single_use_per_user: bool = False


COUPON_CATALOG: Dict[CouponCode, CouponDefinition] = {
    CouponCode.TESTE50: CouponDefinition(DiscountKind.FIXED, 500, "Desconto teste R$5,00"),
    CouponCode.ARTHEMI10: CouponDefinition(DiscountKind.PERCENT, 10, "10% de desconto"),
    CouponCode.PRIMEIRACOMPRA: CouponDefinition(
        DiscountKind.PERCENT, 15, "15% primeira compra", single_use_per_user=True
    ),
}


def get_coupon_info(code: Optional[str]) -> Optional[CouponDefinition]:
    normalized = normalize_coupon_code(code)
    if not normalized:
        return None
    try:
        return COUPON_CATALOG[CouponCode(normalized)]
    except ValueError:
        return None


def is_valid_coupon(code: Optional[str]) -> bool:
    return get_coupon_info(code) is not None


def _percent_of(amount_cents: int, percent: int) -> int:
    # Integer half-up rounding
    return (amount_cents * percent + 50) // 100


def apply_discount(amount_cents: int, code: Optional[str], *, min_payable_cents: Optional[int] = None) -> DiscountResult:
    """
    Apply a coupon to an amount.

    The final amount never drops below the minimum payable floor, except
    that amounts already under the floor have no floor at all. Always
    `gross == final + discount`.
    """
    if amount_cents < 0:
        raise ValidationException("amount must not be negative", code="INVALID_AMOUNT")

    coupon = get_coupon_info(code)
    if coupon is None:
        return DiscountResult(gross_cents=amount_cents, final_cents=amount_cents, discount_cents=0)

    if coupon.kind == DiscountKind.FIXED:
        calculated = coupon.value
    else:
        calculated = _percent_of(amount_cents, coupon.value)

    floor_cents = settings.min_payable_amount_cents if min_payable_cents is None else min_payable_cents
    minimum = floor_cents if amount_cents >= floor_cents else 0
    final = max(minimum, amount_cents - calculated)
    return DiscountResult(
        gross_cents=amount_cents,
        final_cents=final,
        discount_cents=amount_cents - final,
        applied=True,
        coupon_code=normalize_coupon_code(code),
    )


def create_coupon_snapshot(code: Optional[str], now: datetime) -> Optional[CouponSnapshot]:
    """Freeze the coupon's terms for storage on the booking."""
    coupon = get_coupon_info(code)
    if coupon is None:
        return None
    return CouponSnapshot(
        code=normalize_coupon_code(code) or "",
        kind=coupon.kind,
        value=coupon.value,
        single_use_per_user=coupon.single_use_per_user,
        description=coupon.description,
        applied_at=now,
    )


class CouponService(BaseService):
    """Eligibility checks and usage transitions for coupons."""

    def __init__(self, db: Session, **kwargs: Any):
        super().__init__(db, **kwargs)
        self.repository = RepositoryFactory.create_coupon_usage_repository(db)

    def check_coupon_usage(
        self, user_id: str, code: str, context: CouponUsageContext
    ) -> CouponUsageCheck:
        """
        Decide whether the user may redeem `code` in `context`.

        Always reads current storage state. Single-use coupons are blocked
        by a USED row in any context; every coupon is blocked by a USED row
        for the same context.
        """
        normalized = normalize_coupon_code(code)
        coupon = get_coupon_info(normalized)
        if coupon is None or normalized is None:
            return CouponUsageCheck(can_use=False, code="COUPON_INVALID", reason="Cupom inválido")

        context_value = CouponUsageContext(context).value
        used = self.repository.has_active_usage(user_id, normalized, context_value)
        if not used and coupon.single_use_per_user:
            other_contexts = [c.value for c in CouponUsageContext if c.value != context_value]
            used = any(self.repository.has_active_usage(user_id, normalized, other) for other in other_contexts)

        if used:
            return CouponUsageCheck(
                can_use=False,
                code="COUPON_ALREADY_USED",
                reason=f"Cupom {normalized} já foi utilizado",
            )
        return CouponUsageCheck(can_use=True)

    def ensure_coupon_usable(self, user_id: str, code: str, context: CouponUsageContext) -> str:
        """Raise the matching coupon exception unless usable; returns the normalized code."""
        check = self.check_coupon_usage(user_id, code, context)
        normalized = normalize_coupon_code(code) or ""
        if check.can_use:
            return normalized
        if check.code == "COUPON_INVALID":
            raise CouponInvalidException(normalized)
        raise CouponAlreadyUsedException(normalized)

    def resolve_coupon_for_payment(
        self,
        user_id: str,
        code: Optional[str],
        context: CouponUsageContext,
        cash_amount_cents: int,
        *,
        require_coupon: bool = False,
    ) -> Optional[str]:
        """
        Gate coupon handling on the payment shape.

        With no cash left to pay the coupon is ignored without touching
        storage, unless the client insisted on it, which is an error. With
        cash remaining the coupon is validated and must pass.

        Returns:
            The normalized code to apply, or None when no coupon applies
        """
        normalized = normalize_coupon_code(code)
        if not normalized:
            return None
        if cash_amount_cents <= 0:
            if require_coupon:
                raise CouponRequiresCashPaymentException(normalized)
            self.logger.debug("Coupon %s ignored: nothing to pay in cash", normalized)
            return None
        return self.ensure_coupon_usable(user_id, normalized, context)

    @staticmethod
    def ensure_coupon_allows_credit_purchase(code: Optional[str], credit_covers_all: bool) -> None:
        """
        Purchase-with-credit rule: a coupon may ride along with a partial
        credit payment, but not when credit pays everything.
        """
        normalized = normalize_coupon_code(code)
        if normalized and credit_covers_all:
            raise CouponRequiresCashPaymentException(normalized)

    @BaseService.measure_operation("record_coupon_usage")
    def record_coupon_usage_idempotent(
        self,
        user_id: str,
        code: str,
        context: CouponUsageContext,
        *,
        booking_id: Optional[str] = None,
        credit_id: Optional[str] = None,
    ) -> CouponRecordResult:
        """
        Mark the coupon USED for this identity.

        Step 1 claims a RESTORED row with a conditional update. Step 2 inserts
        a new row. A uniqueness violation from step 2 is not handled here.
        Does not commit.
        """
        normalized = normalize_coupon_code(code)
        if not normalized:
            raise CouponInvalidException(code or "")
        context_value = CouponUsageContext(context).value
        link_booking = booking_id if context_value == CouponUsageContext.BOOKING.value else None
        link_credit = credit_id if context_value == CouponUsageContext.CREDIT_PURCHASE.value else None

        if self.repository.claim_restored(
            user_id,
            normalized,
            context_value,
            booking_id=link_booking,
            credit_id=link_credit,
            now=self.now(),
        ):
            prometheus_metrics.inc_coupon_redemption(CouponRecordMode.CLAIMED_RESTORED.value)
            self.logger.info("Coupon %s re-claimed", normalized, extra={"user_id": user_id})
            usage = self.repository.find_usage(user_id, normalized, context_value)
            return CouponRecordResult(
                ok=True, mode=CouponRecordMode.CLAIMED_RESTORED, usage_id=usage.id if usage else None
            )

        usage = self.repository.insert_usage(
            user_id, normalized, context_value, booking_id=link_booking, credit_id=link_credit
        )
        prometheus_metrics.inc_coupon_redemption(CouponRecordMode.CREATED.value)
        self.logger.info("Coupon %s redeemed", normalized, extra={"user_id": user_id})
        return CouponRecordResult(ok=True, mode=CouponRecordMode.CREATED, usage_id=usage.id)

    @BaseService.measure_operation("restore_coupon_usage")
    def restore_coupon_usage(
        self,
        booking_id: Optional[str] = None,
        *,
        credit_id: Optional[str] = None,
        was_paid: bool,
    ) -> CouponRestoreResult:
        """
        Release the coupon consumed by a booking/credit cancelled before payment.

        A paid booking keeps its coupon USED forever. Does not commit.
        """
        usage = self.repository.find_active_by_link(booking_id=booking_id, credit_id=credit_id)
        if usage is None:
            return CouponRestoreResult(restored=False)
        if was_paid:
            self.logger.info("Coupon %s kept: booking was paid", usage.coupon_code)
            return CouponRestoreResult(restored=False, coupon_code=usage.coupon_code)

        restored = self.repository.mark_restored(usage.id, now=self.now())
        if restored:
            prometheus_metrics.inc_coupon_redemption(CouponUsageStatus.RESTORED.value)
            self.logger.info("Coupon %s restored", usage.coupon_code, extra={"user_id": usage.user_id})
        return CouponRestoreResult(restored=restored, coupon_code=usage.coupon_code)
