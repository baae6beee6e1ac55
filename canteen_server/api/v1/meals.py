"""
Meal schedule routes
Booking, cancellation, self-service redemption and schedule views
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query

from ...core.error_handler import create_success_response
from ...core.exceptions import MealScheduleNotFoundError
from ...core.security import Actor, get_current_actor
from ...models.meal_schedule import MealTime, SlotStatus
from ...models.user import Role
from ...schemas.meal import BatchCancelRequest, BatchScheduleRequest, ScheduleMealRequest
from ...services.meal_service import MealService
from ...services.redemption_service import RedemptionService
from ..deps import get_meal_service, get_redemption_service

router = APIRouter()


@router.post("/schedule")
def schedule_meal(
    req: ScheduleMealRequest,
    actor: Actor = Depends(get_current_actor),
    service: MealService = Depends(get_meal_service),
):
    """Book one meal for the caller"""
    schedule = service.schedule_meal(actor.user_id, req.meal_time, req.meal_date,
                                     use_student_rate=req.use_student_rate)
    return create_success_response(schedule, "Meal scheduled")


@router.post("/schedule/batch")
def schedule_many_meals(
    req: BatchScheduleRequest,
    actor: Actor = Depends(get_current_actor),
    service: MealService = Depends(get_meal_service),
):
    """Book several meals, all or nothing"""
    schedules = service.schedule_many_meals(actor.user_id, req.meals,
                                            use_student_rate=req.use_student_rate)
    return create_success_response(schedules, f"{len(schedules)} meals scheduled")


@router.post("/cancel/batch")
def cancel_many_meals(
    req: BatchCancelRequest,
    actor: Actor = Depends(get_current_actor),
    service: MealService = Depends(get_meal_service),
):
    cancelled = service.cancel_many_meals(actor.user_id, req.meals)
    return create_success_response(cancelled, f"{len(cancelled)} meals cancelled")


@router.post("/{meal_id}/cancel")
def cancel_meal(
    meal_id: int,
    actor: Actor = Depends(get_current_actor),
    service: MealService = Depends(get_meal_service),
):
    """Cancel one of the caller's meals; refunded when early enough"""
    schedule = service.cancel_meal(meal_id, actor.user_id)
    return create_success_response(schedule, f"Meal {schedule.status.value}")


@router.post("/redeem")
def redeem_meal(
    actor: Actor = Depends(get_current_actor),
    service: RedemptionService = Depends(get_redemption_service),
):
    schedule = service.redeem_meal(actor.user_id)
    return create_success_response(schedule, "Meal redeemed")


@router.get("/me")
def get_my_meals(
    meal_time: Optional[MealTime] = Query(None),
    status: Optional[SlotStatus] = Query(None),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    actor: Actor = Depends(get_current_actor),
    service: MealService = Depends(get_meal_service),
):
    meals = service.get_user_meals(actor.user_id, meal_time=meal_time, status=status,
                                   start_date=start_date, end_date=end_date)
    return create_success_response(meals)


@router.get("/calendar")
def get_meal_calendar(
    start_date: Optional[date] = Query(None, description="First day, defaults to this week's Monday"),
    days: int = Query(6, ge=1, le=31),
    actor: Actor = Depends(get_current_actor),
    service: MealService = Depends(get_meal_service),
):
    return create_success_response(service.get_meal_calendar(actor.user_id, start_date, days))


@router.get("/stats")
def get_meal_stats(
    actor: Actor = Depends(get_current_actor),
    service: MealService = Depends(get_meal_service),
):
    """Own counts, or counts over every user for admins"""
    user_id = None if actor.role == Role.ADMIN else actor.user_id
    return create_success_response(service.get_meal_stats(user_id))


@router.get("/{meal_id}")
def get_meal(
    meal_id: int,
    actor: Actor = Depends(get_current_actor),
    service: MealService = Depends(get_meal_service),
):
    schedule = service.get_meal(meal_id)
    if schedule.user_id != actor.user_id and actor.role != Role.ADMIN:
        raise MealScheduleNotFoundError("Meal not found", details={"meal_id": meal_id})
    return create_success_response(schedule)
