"""
Payment counter routes
"""

from fastapi import APIRouter, Depends

from ...core.error_handler import create_success_response
from ...core.security import Actor, require_roles
from ...models.user import Role
from ...schemas.payment import DepositRequest
from ...services.payment_service import PaymentService
from ..deps import get_payment_service

router = APIRouter()

counter_staff = require_roles(Role.PAYMENT_STAFF, Role.ADMIN)


@router.post("/deposits")
def create_deposit(
    req: DepositRequest,
    actor: Actor = Depends(counter_staff),
    service: PaymentService = Depends(get_payment_service),
):
    """Credit a student's balance at the counter"""
    result = service.create_deposit(req.cin, req.amount, actor.user_id, req.description)
    return create_success_response(result, "Deposit recorded")


@router.get("/students/{cin}")
def get_student(
    cin: str,
    actor: Actor = Depends(counter_staff),
    service: PaymentService = Depends(get_payment_service),
):
    return create_success_response(service.get_student_by_cin(cin))
