"""
Ledger request schemas
"""

from pydantic import BaseModel, Field
from typing import Optional


class AdjustBalanceRequest(BaseModel):
    """Admin adjustment by a signed delta"""
    user_id: int = Field(..., description="User ID")
    amount: int = Field(..., description="Signed delta (millimes), non-zero")
    description: Optional[str] = Field(None, max_length=200, description="Remark")


class SetBalanceRequest(BaseModel):
    """Admin adjustment to an absolute balance"""
    user_id: int = Field(..., description="User ID")
    target_balance: int = Field(..., description="Balance after the adjustment (millimes)")
    description: Optional[str] = Field(None, max_length=200, description="Remark")
