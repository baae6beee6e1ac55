"""
Meal schedule data models

A MealSchedule row is one booked slot (user, service date, meal time).
Slots with no row are represented by MealSlotView with the virtual
NOT_CREATED status, which never reaches the database.
"""

from pydantic import BaseModel, Field
from datetime import date, datetime
from enum import Enum
from typing import Optional, Tuple
from .base import FrozenEntity


class MealTime(str, Enum):
    """Meal time"""
    LUNCH = "lunch"
    DINNER = "dinner"


class ScheduleStatus(str, Enum):
    """Stored schedule status"""
    SCHEDULED = "scheduled"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    REDEEMED = "redeemed"
    EXPIRED = "expired"


class SlotStatus(str, Enum):
    """Status as shown to readers, including the virtual not_created state"""
    NOT_CREATED = "not_created"
    SCHEDULED = "scheduled"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    REDEEMED = "redeemed"
    EXPIRED = "expired"


class StatusHistoryEntry(FrozenEntity):
    """One status transition"""
    status: ScheduleStatus
    timestamp: datetime

    def to_json(self) -> dict:
        return {"status": self.status.value, "timestamp": self.timestamp.isoformat()}


class MealSlot(BaseModel):
    """A (date, meal time) pair requested by a client"""
    meal_date: date = Field(..., description="Service date")
    meal_time: MealTime = Field(..., description="Meal time")

    @property
    def key(self) -> Tuple[date, MealTime]:
        return (self.meal_date, self.meal_time)


class MealSchedule(FrozenEntity):
    """Persisted meal schedule"""
    id: int = Field(..., description="Schedule ID")
    user_id: int = Field(..., description="Owner user ID")
    meal_time: MealTime = Field(..., description="Meal time")
    service_date: date = Field(..., description="Service date")
    scheduled_at: datetime = Field(..., description="Service timestamp")
    meal_cost: int = Field(..., description="Price charged at booking (millimes)")
    status: ScheduleStatus = Field(..., description="Stored status")
    status_history: Tuple[StatusHistoryEntry, ...] = Field(default=(), description="Transition log")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def with_transition(self, status: ScheduleStatus, at: datetime,
                        meal_cost: Optional[int] = None) -> "MealSchedule":
        """Return a copy moved to `status` with one more history entry."""
        entry = StatusHistoryEntry(status=status, timestamp=at)
        update = {
            "status": status,
            "status_history": self.status_history + (entry,),
            "updated_at": at,
        }
        if meal_cost is not None:
            update["meal_cost"] = meal_cost
        return self.model_copy(update=update)


class MealSlotView(BaseModel):
    """Read-side view of a slot, stored or virtual"""
    id: Optional[int] = Field(None, description="Schedule ID, None for virtual slots")
    user_id: int = Field(..., description="Owner user ID")
    meal_time: MealTime = Field(..., description="Meal time")
    service_date: date = Field(..., description="Service date")
    scheduled_at: datetime = Field(..., description="Service timestamp")
    meal_cost: Optional[int] = Field(None, description="Price charged at booking (millimes)")
    status: SlotStatus = Field(..., description="Display status")
    stored_status: Optional[ScheduleStatus] = Field(None, description="Status as persisted")
    status_history: Tuple[StatusHistoryEntry, ...] = Field(default=())
    can_schedule: bool = Field(False, description="Slot can be booked now")
    can_cancel: bool = Field(False, description="Slot can be cancelled now")


class MealStats(BaseModel):
    """Schedule counts per stored status"""
    total: int = 0
    scheduled: int = 0
    redeemed: int = 0
    cancelled: int = 0
    refunded: int = 0
    expired: int = 0


class DayMeals(BaseModel):
    """Lunch and dinner slots of one calendar day"""
    day: date
    lunch: MealSlotView
    dinner: MealSlotView
