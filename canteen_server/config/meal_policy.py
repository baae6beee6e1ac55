"""
Meal pricing and time-window policy

Passed explicitly into every orchestrator so that pricing, overdraft
allowances and clock windows never live in module-level state.
"""

from datetime import time, timedelta
from typing import Dict, Tuple

from pydantic import BaseModel, Field

from ..models.meal_schedule import MealTime
from ..models.user import Role


class MealPolicy(BaseModel):
    """Role pricing, overdraft limits and meal-time windows"""

    meal_costs: Dict[Role, int] = Field(
        default_factory=lambda: {Role.STUDENT: 200, Role.TEACHER: 2000},
        description="Meal cost per role (millimes)",
    )
    max_meals_in_red: Dict[Role, int] = Field(
        default_factory=lambda: {Role.STUDENT: 5, Role.TEACHER: 5},
        description="How many meal costs a balance may go negative by",
    )
    default_meal_cost: int = Field(200, ge=0)
    default_max_meals_in_red: int = Field(3, ge=0)

    service_times: Dict[MealTime, time] = Field(
        default_factory=lambda: {MealTime.LUNCH: time(11, 45), MealTime.DINNER: time(17, 45)},
    )
    booking_grace: Dict[MealTime, timedelta] = Field(
        default_factory=lambda: {MealTime.LUNCH: timedelta(hours=2), MealTime.DINNER: timedelta(hours=1)},
    )
    refund_cutoff: timedelta = Field(timedelta(hours=3))
    # [start, end) clock windows during which counter staff may verify a meal
    verification_windows: Dict[MealTime, Tuple[time, time]] = Field(
        default_factory=lambda: {
            MealTime.LUNCH: (time(12, 0), time(15, 0)),
            MealTime.DINNER: (time(18, 0), time(21, 0)),
        },
    )
    self_redeem_before: timedelta = Field(timedelta(minutes=30))
    self_redeem_after: timedelta = Field(timedelta(hours=3))

    def meal_cost_for(self, role: Role) -> int:
        return self.meal_costs.get(role, self.default_meal_cost)

    def max_meals_in_red_for(self, role: Role) -> int:
        return self.max_meals_in_red.get(role, self.default_max_meals_in_red)

    def overdraft_allowance(self, role: Role, meal_cost: int) -> int:
        """Amount the balance may go below zero, in millimes"""
        return self.max_meals_in_red_for(role) * meal_cost
