# backend/roombook/schemas/credit.py
"""Credit ledger DTOs. Every amount is integer cents."""

from typing import List, Optional

from pydantic import Field

from ._strict_base import StrictModel


class ConsumedCredit(StrictModel):
    credit_id: str
    amount_cents: int = Field(..., gt=0)


class CreditAllocation(StrictModel):
    """Outcome of a successful allocation."""

    consumed: List[ConsumedCredit] = Field(default_factory=list)
    total_consumed_cents: int = Field(0, ge=0)


class RoomCreditBalance(StrictModel):
    room_id: Optional[str] = Field(None, description="None for credits usable on any room")
    available_cents: int = Field(..., ge=0)


class CreditSummary(StrictModel):
    user_id: str
    available_cents: int = Field(..., ge=0)
    by_room: List[RoomCreditBalance] = Field(default_factory=list)
    expired_with_balance: int = Field(0, ge=0)
