"""
Payment counter service
Deposits into student balances, looked up by CIN.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from ..core.database import DatabaseManager, db_manager
from ..core.exceptions import ValidationError
from ..models.transaction import LedgerResult, TransactionType
from ..models.user import StudentInfo
from .audit import write_log
from .ledger_service import LedgerService
from .user_service import fetch_user_by_cin, require_active

logger = logging.getLogger(__name__)


class PaymentService:
    """Deposit handling at the payment counter"""

    def __init__(self, db: Optional[DatabaseManager] = None,
                 clock: Optional[Callable[[], datetime]] = None,
                 ledger: Optional[LedgerService] = None):
        self.db = db or db_manager
        self.clock = clock or datetime.now
        self.ledger = ledger or LedgerService(self.db, self.clock)

    def create_deposit(self, cin: str, amount: int, processed_by: int,
                       description: Optional[str] = None) -> LedgerResult:
        """
        Credit a student's balance

        Args:
            cin: student identity number
            amount: deposit in millimes, must be positive
            processed_by: payment staff user

        Raises:
            UserNotFoundError: no user with this CIN
            AccountInactiveError: account deactivated
            ValidationError: non-positive amount
        """
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ValidationError("Deposit amount must be a positive integer",
                                  details={"amount": amount})

        with self.db.transaction() as conn:
            user = require_active(fetch_user_by_cin(conn, cin))
            result = self.ledger.apply_in(conn, user.id, TransactionType.BALANCE_RECHARGE, amount,
                                          processed_by, description=description or "counter deposit")
            write_log(conn, "balance_recharge", self.clock(), user_id=user.id, actor_id=processed_by,
                      detail={
                          "transaction_id": result.transaction.id,
                          "amount": amount,
                          "balance_before": result.previous_balance,
                          "balance_after": result.new_balance,
                      })

        logger.info("Deposit of %s millimes for user %s by %s", amount, user.id, processed_by)
        return result

    def get_student_by_cin(self, cin: str) -> StudentInfo:
        with self.db.transaction() as conn:
            return StudentInfo.from_user(fetch_user_by_cin(conn, cin))
