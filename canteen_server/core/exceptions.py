"""
Custom exception classes
Precise error kinds for the balance and meal-scheduling engine
"""

from typing import Any, Dict, Optional


class BaseApplicationError(Exception):
    """Base application error"""

    default_code = "APPLICATION_ERROR"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.error_code = error_code or self.default_code
        self.details = details or {}
        super().__init__(self.message)


class NotFoundError(BaseApplicationError):
    """Referenced resource does not exist"""
    default_code = "RESOURCE_NOT_FOUND"


class UserNotFoundError(NotFoundError):
    default_code = "USER_NOT_FOUND"


class MealScheduleNotFoundError(NotFoundError):
    default_code = "MEAL_NOT_FOUND"


class TransactionNotFoundError(NotFoundError):
    default_code = "TRANSACTION_NOT_FOUND"


class PermissionDeniedError(BaseApplicationError):
    """Actor may not perform the action"""
    default_code = "PERMISSION_DENIED"


class AccountInactiveError(PermissionDeniedError):
    default_code = "ACCOUNT_INACTIVE"


class AuthenticationError(BaseApplicationError):
    default_code = "AUTHENTICATION_REQUIRED"


class ConflictError(BaseApplicationError):
    """Duplicate resource"""
    default_code = "DUPLICATE_RESOURCE"


class DuplicateScheduleError(ConflictError):
    """Slot already booked for this user"""
    default_code = "DUPLICATE_SCHEDULE"


class BadRequestError(BaseApplicationError):
    """Business rule violation on otherwise valid input"""
    default_code = "BAD_REQUEST"


class ValidationError(BadRequestError):
    default_code = "VALIDATION_ERROR"


class InsufficientBalanceError(BadRequestError):
    default_code = "INSUFFICIENT_BALANCE"


class InvalidTransitionError(BadRequestError):
    default_code = "MEAL_STATUS_TRANSITION_INVALID"


class OutsideTimeWindowError(BadRequestError):
    default_code = "OUTSIDE_TIME_WINDOW"


class DatabaseError(BaseApplicationError):
    """Storage failure, the unit of work was rolled back"""
    default_code = "INTERNAL_ERROR"


class ConstraintViolationError(DatabaseError):
    default_code = "CONSTRAINT_VIOLATION"


class ConcurrencyError(DatabaseError):
    """Write-write conflict detected by the store"""
    default_code = "CONCURRENCY_CONFLICT"
