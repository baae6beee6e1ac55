"""
Service lookups for route handlers.
Services are built once in create_app and kept on app.state.
"""

from fastapi import Request

from ..services.consistency_service import ConsistencyService
from ..services.ledger_service import LedgerService
from ..services.meal_service import MealService
from ..services.payment_service import PaymentService
from ..services.redemption_service import RedemptionService
from ..services.user_service import UserService


def get_meal_service(request: Request) -> MealService:
    return request.app.state.meal_service


def get_redemption_service(request: Request) -> RedemptionService:
    return request.app.state.redemption_service


def get_payment_service(request: Request) -> PaymentService:
    return request.app.state.payment_service


def get_ledger_service(request: Request) -> LedgerService:
    return request.app.state.ledger_service


def get_user_service(request: Request) -> UserService:
    return request.app.state.user_service


def get_consistency_service(request: Request) -> ConsistencyService:
    return request.app.state.consistency_service
