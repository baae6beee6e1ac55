"""
Payment counter request schemas
"""

from pydantic import BaseModel, Field
from typing import Optional


class DepositRequest(BaseModel):
    """Counter deposit"""
    cin: str = Field(..., min_length=1, description="Student identity number")
    amount: int = Field(..., gt=0, description="Deposit (millimes)")
    description: Optional[str] = Field(None, max_length=200, description="Remark")
