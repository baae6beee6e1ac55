"""
Business logic services.
Contains service layer implementations for core business operations.
"""

from .consistency_service import ConsistencyService
from .expiry_service import ExpiryService
from .ledger_service import LedgerService
from .meal_service import MealService
from .payment_service import PaymentService
from .redemption_service import RedemptionService
from .user_service import UserService

__all__ = [
    "ConsistencyService",
    "ExpiryService",
    "LedgerService",
    "MealService",
    "PaymentService",
    "RedemptionService",
    "UserService",
]
