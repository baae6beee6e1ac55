"""
Counter verification request schemas
"""

from pydantic import BaseModel, Field
from datetime import date
from typing import Optional
from ..models.meal_schedule import MealTime


class VerifyMealRequest(BaseModel):
    """Verify a scheduled meal by CIN"""
    cin: str = Field(..., min_length=1, description="Student identity number")
    meal_time: MealTime = Field(..., description="Meal time")
    verification_date: Optional[date] = Field(None, description="Service date, defaults to today")


class ManualVerifyRequest(VerifyMealRequest):
    """Verification entered by hand, optionally forced"""
    force: bool = Field(False, description="Waive the window and schedule checks")
    notes: Optional[str] = Field(None, max_length=500, description="Reason for the override")
