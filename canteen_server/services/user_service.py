"""
User service
Account creation, lookup and soft (de)activation. Balances are never
written here; they change only through LedgerService.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from ..core.database import DatabaseManager, db_manager, row_to_dict
from ..core.exceptions import AccountInactiveError, ConflictError, ConstraintViolationError, UserNotFoundError
from ..models.user import User, UserCreate
from .audit import write_log

logger = logging.getLogger(__name__)

USER_COLUMNS = "id, cin, first_name, last_name, email, role, balance, is_active, created_at, updated_at"


def fetch_user(conn, user_id: int) -> User:
    """Load a user inside an open unit of work"""
    row = row_to_dict(conn.execute(f"SELECT {USER_COLUMNS} FROM users WHERE id = ?", [user_id]))
    if not row:
        raise UserNotFoundError("User not found", details={"user_id": user_id})
    return User(**row)


def fetch_user_by_cin(conn, cin: str) -> User:
    row = row_to_dict(conn.execute(f"SELECT {USER_COLUMNS} FROM users WHERE cin = ?", [cin]))
    if not row:
        raise UserNotFoundError("Student not found with this CIN", details={"cin": cin})
    return User(**row)


def require_active(user: User) -> User:
    if not user.is_active:
        raise AccountInactiveError("Account is inactive", details={"user_id": user.id})
    return user


class UserService:
    """User service"""

    def __init__(self, db: Optional[DatabaseManager] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        self.db = db or db_manager
        self.clock = clock or datetime.now

    def create_user(self, user_data: UserCreate, created_by: Optional[int] = None) -> User:
        """Register an account with a zero balance"""
        now = self.clock()
        try:
            with self.db.transaction() as conn:
                row = row_to_dict(conn.execute(
                    f"""
                    INSERT INTO users(cin, first_name, last_name, email, role, balance, is_active, created_at, updated_at)
                    VALUES (?,?,?,?,?,0,TRUE,?,?)
                    RETURNING {USER_COLUMNS}
                    """,
                    [user_data.cin, user_data.first_name, user_data.last_name,
                     user_data.email, user_data.role.value, now, now],
                ))
                user = User(**row)
                write_log(conn, "user_create", now, user_id=user.id, actor_id=created_by,
                          detail={"cin": user.cin, "role": user.role})
        except ConstraintViolationError:
            raise ConflictError("A user with this CIN already exists",
                                details={"cin": user_data.cin})
        logger.info("Created user %s (%s)", user.id, user.role.value)
        return user

    def get_user(self, user_id: int) -> User:
        with self.db.transaction() as conn:
            return fetch_user(conn, user_id)

    def get_user_by_cin(self, cin: str) -> User:
        with self.db.transaction() as conn:
            return fetch_user_by_cin(conn, cin)

    def set_active(self, user_id: int, is_active: bool, operator_id: Optional[int] = None) -> User:
        """Soft-deactivate or reactivate an account"""
        now = self.clock()
        with self.db.transaction() as conn:
            user = fetch_user(conn, user_id)
            if user.is_active != is_active:
                conn.execute(
                    "UPDATE users SET is_active = ?, updated_at = ? WHERE id = ?",
                    [is_active, now, user_id],
                )
                write_log(conn, "user_status_change", now, user_id=user_id, actor_id=operator_id,
                          detail={"is_active": is_active})
            return fetch_user(conn, user_id)
