"""
Meal schedule request schemas
"""

from pydantic import BaseModel, Field
from datetime import date
from typing import List
from ..models.meal_schedule import MealSlot, MealTime


class ScheduleMealRequest(BaseModel):
    """Book one meal"""
    meal_time: MealTime = Field(..., description="Meal time")
    meal_date: date = Field(..., description="Service date")
    use_student_rate: bool = Field(False, description="Teacher booking at the student price")


class BatchScheduleRequest(BaseModel):
    """Book several meals at once"""
    meals: List[MealSlot] = Field(..., min_length=1, description="Slots to book")
    use_student_rate: bool = Field(False, description="Teacher booking at the student price")


class BatchCancelRequest(BaseModel):
    """Cancel several meals at once"""
    meals: List[MealSlot] = Field(..., min_length=1, description="Slots to cancel")
