"""
Transaction type policy
Maps each ledger entry type to the signed amount that is stored and the
balance it produces. Pure functions, no I/O.

| type               | input   | stored amount | balance effect     |
|--------------------|---------|---------------|--------------------|
| balance_recharge   | > 0     | +amount       | balance + amount   |
| refund             | > 0     | +amount       | balance + amount   |
| meal_schedule      | > 0     | -amount       | balance - amount   |
| meal_redemption    | == 0    | 0             | unchanged          |
| balance_adjustment | != 0    | +amount       | balance + amount   |

balance_adjustment is a signed delta like every other type. Callers that
want to reach an absolute balance use LedgerService.set_balance, which
turns the target into a delta under the same lock.
"""

from typing import NamedTuple

from ..core.exceptions import ValidationError
from ..models.transaction import TransactionType


class PolicyOutcome(NamedTuple):
    stored_amount: int
    new_balance: int


def _require_int(amount) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValidationError("Amount must be an integer number of millimes",
                              details={"amount": amount})
    return amount


def signed_amount(tx_type: TransactionType, amount: int) -> int:
    """Stored (signed) amount for a caller-supplied amount"""
    amount = _require_int(amount)
    tx_type = TransactionType(tx_type)

    if tx_type in (TransactionType.BALANCE_RECHARGE, TransactionType.REFUND):
        if amount <= 0:
            raise ValidationError(f"{tx_type.value} amount must be positive",
                                  details={"amount": amount})
        return amount

    if tx_type == TransactionType.MEAL_SCHEDULE:
        if amount <= 0:
            raise ValidationError("Meal cost must be positive", details={"amount": amount})
        return -amount

    if tx_type == TransactionType.MEAL_REDEMPTION:
        if amount != 0:
            raise ValidationError("Meal redemption entries carry no amount",
                                  details={"amount": amount})
        return 0

    if tx_type == TransactionType.BALANCE_ADJUSTMENT:
        if amount == 0:
            raise ValidationError("Adjustment amount must not be zero")
        return amount

    raise ValidationError(f"Unsupported transaction type: {tx_type}")


def apply_policy(tx_type: TransactionType, amount: int, current_balance: int) -> PolicyOutcome:
    """Stored amount and resulting balance for one entry"""
    stored = signed_amount(tx_type, amount)
    return PolicyOutcome(stored_amount=stored, new_balance=current_balance + stored)


def adjustment_to_target(current_balance: int, target_balance: int) -> int:
    """Delta that moves current_balance to target_balance"""
    return _require_int(target_balance) - current_balance
