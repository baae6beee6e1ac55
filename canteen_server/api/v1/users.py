"""
User routes
"""

from fastapi import APIRouter, Depends

from ...core.error_handler import create_success_response
from ...core.security import Actor, get_current_actor, require_roles
from ...models.user import Role, User, UserCreate
from ...schemas.user import UserProfileResponse, UserStatusRequest
from ...services.consistency_service import ConsistencyService
from ...services.user_service import UserService
from ..deps import get_consistency_service, get_user_service

router = APIRouter()

admin_only = require_roles(Role.ADMIN)


def _profile(user: User) -> UserProfileResponse:
    return UserProfileResponse(
        user_id=user.id,
        cin=user.cin,
        full_name=user.full_name,
        email=user.email,
        role=user.role,
        balance=user.balance,
        is_active=user.is_active,
    )


@router.get("/me")
def get_my_profile(
    actor: Actor = Depends(get_current_actor),
    service: UserService = Depends(get_user_service),
):
    return create_success_response(_profile(service.get_user(actor.user_id)))


@router.get("/consistency")
def check_consistency(
    actor: Actor = Depends(admin_only),
    service: ConsistencyService = Depends(get_consistency_service),
):
    """Audit balances against the ledger"""
    result = service.check_ledger_consistency(actor.user_id)
    return create_success_response(result.to_dict())


@router.post("")
def create_user(
    req: UserCreate,
    actor: Actor = Depends(admin_only),
    service: UserService = Depends(get_user_service),
):
    user = service.create_user(req, created_by=actor.user_id)
    return create_success_response(_profile(user), "User created")


@router.post("/{user_id}/status")
def set_user_status(
    user_id: int,
    req: UserStatusRequest,
    actor: Actor = Depends(admin_only),
    service: UserService = Depends(get_user_service),
):
    """Soft-deactivate or reactivate an account"""
    user = service.set_active(user_id, req.is_active, operator_id=actor.user_id)
    return create_success_response(_profile(user), "User status updated")
