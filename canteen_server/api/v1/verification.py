"""
Counter verification routes
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends

from ...core.error_handler import create_success_response
from ...core.security import Actor, require_roles
from ...models.user import Role
from ...schemas.verification import ManualVerifyRequest, VerifyMealRequest
from ...services.redemption_service import RedemptionService
from ..deps import get_redemption_service

router = APIRouter()

verification_staff = require_roles(Role.VERIFICATION_STAFF, Role.ADMIN)


@router.post("/verify")
def verify_meal(
    req: VerifyMealRequest,
    actor: Actor = Depends(verification_staff),
    service: RedemptionService = Depends(get_redemption_service),
):
    """Redeem a student's scheduled meal at the counter"""
    verification_date = req.verification_date or service.clock().date()
    result = service.verify_meal(req.cin, req.meal_time, verification_date, actor.user_id)
    return create_success_response(result, "Meal verified")


@router.post("/manual")
def manual_verify_meal(
    req: ManualVerifyRequest,
    actor: Actor = Depends(verification_staff),
    service: RedemptionService = Depends(get_redemption_service),
):
    verification_date = req.verification_date or service.clock().date()
    result = service.manual_verify_meal(req.cin, req.meal_time, verification_date, actor.user_id,
                                        force=req.force, notes=req.notes)
    return create_success_response(result, "Meal verified")


@router.get("/period")
def get_meal_period_status(
    actor: Actor = Depends(verification_staff),
    service: RedemptionService = Depends(get_redemption_service),
):
    return create_success_response(service.get_meal_period_status())


@router.get("/students/{cin}")
def get_student_meal_status(
    cin: str,
    day: Optional[date] = None,
    actor: Actor = Depends(verification_staff),
    service: RedemptionService = Depends(get_redemption_service),
):
    """Lunch and dinner status of a student, today unless a day is given"""
    result = service.get_student_meal_status(cin, day or service.clock().date())
    return create_success_response(result)
