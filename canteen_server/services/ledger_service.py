"""
Ledger service
The only code path that changes users.balance.

Main features:
- apply one signed entry to one user atomically (entry insert + balance update)
- join an orchestrator's unit of work so the entry and the schedule change
  share a commit boundary
- absolute balance targets converted to adjustment deltas under the lock
- transaction history queries

Invariant: users.balance == SUM(transactions.amount) for every user.
"""

import logging
from datetime import datetime
from typing import Callable, List, Optional

from pydantic import BaseModel

from ..core.database import DatabaseManager, db_manager, row_to_dict
from ..core.exceptions import TransactionNotFoundError, UserNotFoundError, ValidationError
from ..models.transaction import LedgerResult, Transaction, TransactionType
from .audit import write_log
from .transaction_policy import adjustment_to_target, apply_policy

logger = logging.getLogger(__name__)

TRANSACTION_COLUMNS = "id, user_id, type, amount, processed_by, meal_schedule_id, description, created_at"


class TransactionHistory(BaseModel):
    """One page of a user's ledger"""
    transactions: List[Transaction]
    total_count: int
    limit: int
    offset: int
    has_more: bool


class LedgerService:
    """Ledger primitive"""

    def __init__(self, db: Optional[DatabaseManager] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        self.db = db or db_manager
        self.clock = clock or datetime.now

    def apply_transaction(self, user_id: int, tx_type: TransactionType, amount: int,
                          processed_by: Optional[int], *, meal_schedule_id: Optional[int] = None,
                          description: Optional[str] = None) -> LedgerResult:
        """
        Apply one ledger entry in its own unit of work

        Args:
            user_id: owner of the balance
            tx_type: entry type, decides sign and validation
            amount: caller-side amount in millimes (see transaction_policy)
            processed_by: actor, may equal user_id for self-service
            meal_schedule_id: related schedule row, if any
            description: free-text remark

        Returns:
            LedgerResult with the stored entry and balances before/after

        Raises:
            UserNotFoundError: user does not exist
            ValidationError: amount not valid for the type
        """
        with self.db.transaction() as conn:
            return self.apply_in(conn, user_id, tx_type, amount, processed_by,
                                 meal_schedule_id=meal_schedule_id, description=description)

    def apply_in(self, conn, user_id: int, tx_type: TransactionType, amount: int,
                 processed_by: Optional[int], *, meal_schedule_id: Optional[int] = None,
                 description: Optional[str] = None) -> LedgerResult:
        """Apply one entry inside the caller's open unit of work"""
        tx_type = TransactionType(tx_type)
        row = conn.execute("SELECT balance FROM users WHERE id = ?", [user_id]).fetchone()
        if not row:
            raise UserNotFoundError("User not found", details={"user_id": user_id})

        previous_balance = row[0]
        outcome = apply_policy(tx_type, amount, previous_balance)
        now = self.clock()

        cursor = conn.execute(
            f"""
            INSERT INTO transactions(user_id, type, amount, processed_by, meal_schedule_id, description, created_at)
            VALUES (?,?,?,?,?,?,?)
            RETURNING {TRANSACTION_COLUMNS}
            """,
            [user_id, tx_type.value, outcome.stored_amount, processed_by,
             meal_schedule_id, description, now],
        )
        transaction = Transaction(**row_to_dict(cursor))

        conn.execute(
            "UPDATE users SET balance = ?, updated_at = ? WHERE id = ?",
            [outcome.new_balance, now, user_id],
        )

        logger.debug("Ledger %s user=%s amount=%s balance %s -> %s",
                     tx_type.value, user_id, outcome.stored_amount,
                     previous_balance, outcome.new_balance)

        return LedgerResult(
            transaction=transaction,
            previous_balance=previous_balance,
            new_balance=outcome.new_balance,
        )

    def adjust_balance(self, user_id: int, delta: int, processed_by: int,
                       description: Optional[str] = None) -> LedgerResult:
        """Admin adjustment by a signed delta"""
        with self.db.transaction() as conn:
            result = self.apply_in(conn, user_id, TransactionType.BALANCE_ADJUSTMENT, delta,
                                   processed_by, description=description)
            self._log_adjustment(conn, result, processed_by)
        return result

    def set_balance(self, user_id: int, target_balance: int, processed_by: int,
                    description: Optional[str] = None) -> LedgerResult:
        """
        Move a balance to an absolute value

        The delta is computed from the balance read inside the locked unit
        of work, so a concurrent deposit cannot be overwritten.
        """
        with self.db.transaction() as conn:
            row = conn.execute("SELECT balance FROM users WHERE id = ?", [user_id]).fetchone()
            if not row:
                raise UserNotFoundError("User not found", details={"user_id": user_id})
            delta = adjustment_to_target(row[0], target_balance)
            if delta == 0:
                raise ValidationError("Balance already equals the target",
                                      details={"balance": row[0]})
            result = self.apply_in(conn, user_id, TransactionType.BALANCE_ADJUSTMENT, delta,
                                   processed_by, description=description)
            self._log_adjustment(conn, result, processed_by)
        return result

    def _log_adjustment(self, conn, result: LedgerResult, processed_by: int):
        write_log(conn, "balance_adjustment", self.clock(),
                  user_id=result.transaction.user_id, actor_id=processed_by,
                  detail={
                      "transaction_id": result.transaction.id,
                      "amount": result.transaction.amount,
                      "balance_before": result.previous_balance,
                      "balance_after": result.new_balance,
                  })

    def get_balance(self, user_id: int) -> int:
        row = self.db.execute_one("SELECT balance FROM users WHERE id = ?", [user_id])
        if not row:
            raise UserNotFoundError("User not found", details={"user_id": user_id})
        return row[0]

    def get_transaction(self, transaction_id: int) -> Transaction:
        row = self.db.fetch_dict(
            f"SELECT {TRANSACTION_COLUMNS} FROM transactions WHERE id = ?", [transaction_id]
        )
        if not row:
            raise TransactionNotFoundError("Transaction not found",
                                           details={"transaction_id": transaction_id})
        return Transaction(**row)

    def get_user_transaction_history(self, user_id: int,
                                     tx_type: Optional[TransactionType] = None,
                                     limit: int = 50, offset: int = 0) -> TransactionHistory:
        """Newest entries first"""
        conditions = ["user_id = ?"]
        params: list = [user_id]
        if tx_type:
            conditions.append("type = ?")
            params.append(TransactionType(tx_type).value)
        where_clause = " AND ".join(conditions)

        rows = self.db.fetch_dicts(
            f"""
            SELECT {TRANSACTION_COLUMNS} FROM transactions
            WHERE {where_clause}
            ORDER BY created_at DESC, id DESC
            LIMIT ? OFFSET ?
            """,
            params + [limit, offset],
        )
        total_count = self.db.execute_one(
            f"SELECT COUNT(*) FROM transactions WHERE {where_clause}", params
        )[0]

        return TransactionHistory(
            transactions=[Transaction(**row) for row in rows],
            total_count=total_count,
            limit=limit,
            offset=offset,
            has_more=offset + len(rows) < total_count,
        )
