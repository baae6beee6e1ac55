"""
Ledger routes
Own history for every user, balance adjustments for admins
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from ...core.error_handler import create_success_response
from ...core.security import Actor, get_current_actor, require_roles
from ...models.transaction import TransactionType
from ...models.user import Role
from ...schemas.transaction import AdjustBalanceRequest, SetBalanceRequest
from ...services.ledger_service import LedgerService
from ..deps import get_ledger_service

router = APIRouter()

admin_only = require_roles(Role.ADMIN)


@router.get("/me")
def get_my_transactions(
    tx_type: Optional[TransactionType] = Query(None, alias="type", description="Filter by entry type"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    actor: Actor = Depends(get_current_actor),
    service: LedgerService = Depends(get_ledger_service),
):
    history = service.get_user_transaction_history(actor.user_id, tx_type, limit, offset)
    return create_success_response(history)


@router.post("/adjust")
def adjust_balance(
    req: AdjustBalanceRequest,
    actor: Actor = Depends(admin_only),
    service: LedgerService = Depends(get_ledger_service),
):
    """Add a signed delta to a user's balance"""
    result = service.adjust_balance(req.user_id, req.amount, actor.user_id, req.description)
    return create_success_response(result, "Balance adjusted")


@router.post("/set-balance")
def set_balance(
    req: SetBalanceRequest,
    actor: Actor = Depends(admin_only),
    service: LedgerService = Depends(get_ledger_service),
):
    """Move a user's balance to an absolute value via a delta entry"""
    result = service.set_balance(req.user_id, req.target_balance, actor.user_id, req.description)
    return create_success_response(result, "Balance adjusted")
