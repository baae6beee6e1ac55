"""
API routes and endpoints.
"""

from fastapi import APIRouter
from ..schemas.common import ERROR_RESPONSES
from .v1 import meals, payments, transactions, users, verification

api_router = APIRouter(responses=ERROR_RESPONSES)

api_router.include_router(meals.router, prefix="/meals", tags=["meals"])
api_router.include_router(payments.router, prefix="/payments", tags=["payments"])
api_router.include_router(verification.router, prefix="/verification", tags=["verification"])
api_router.include_router(transactions.router, prefix="/transactions", tags=["transactions"])
api_router.include_router(users.router, prefix="/users", tags=["users"])
