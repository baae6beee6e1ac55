"""
Ledger (transaction) data models
"""

from pydantic import BaseModel, Field
from datetime import datetime
from enum import Enum
from typing import Optional
from .base import FrozenEntity


class TransactionType(str, Enum):
    """Ledger entry type"""
    BALANCE_RECHARGE = "balance_recharge"   # deposit at the payment counter
    MEAL_SCHEDULE = "meal_schedule"         # meal booked, money taken
    REFUND = "refund"                       # early cancellation
    MEAL_REDEMPTION = "meal_redemption"     # audit only, no money
    BALANCE_ADJUSTMENT = "balance_adjustment"


class Transaction(FrozenEntity):
    """Immutable ledger entry"""
    id: int = Field(..., description="Transaction ID")
    user_id: int = Field(..., description="Owner user ID")
    type: TransactionType = Field(..., description="Type")
    amount: int = Field(..., description="Signed amount (millimes)")
    processed_by: Optional[int] = Field(None, description="Actor user ID")
    meal_schedule_id: Optional[int] = Field(None, description="Related schedule")
    description: Optional[str] = Field(None, description="Remark")
    created_at: datetime = Field(..., description="Creation time")


class LedgerResult(BaseModel):
    """Outcome of one applied ledger entry"""
    transaction: Transaction
    previous_balance: int
    new_balance: int
