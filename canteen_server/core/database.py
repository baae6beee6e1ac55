"""
Database connection and schema management
Wraps a single DuckDB connection and provides the unit-of-work used by
every balance-affecting operation.

Tables:
- users: accounts and their prepaid balance
- meal_schedules: one row per booked (user, date, meal time) slot
- transactions: immutable ledger entries
- logs: business audit trail
"""

import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Generator, List, Optional

import duckdb

from .exceptions import (
    BaseApplicationError,
    ConcurrencyError,
    ConstraintViolationError,
    DatabaseError,
)
from ..config.settings import settings

logger = logging.getLogger(__name__)

# Full schema definition, ids come from sequences
SCHEMA_SQL = r"""
CREATE SEQUENCE IF NOT EXISTS users_id_seq;
CREATE TABLE IF NOT EXISTS users (
  id INTEGER DEFAULT nextval('users_id_seq') PRIMARY KEY,
  cin TEXT UNIQUE NOT NULL,
  first_name TEXT NOT NULL,
  last_name TEXT NOT NULL,
  email TEXT,
  role TEXT CHECK(role IN ('admin','payment_staff','verification_staff','student','teacher','normal_user')) NOT NULL,
  balance BIGINT NOT NULL DEFAULT 0,  -- millimes
  is_active BOOLEAN NOT NULL DEFAULT TRUE,
  created_at TIMESTAMP NOT NULL,
  updated_at TIMESTAMP NOT NULL
);

CREATE SEQUENCE IF NOT EXISTS meal_schedules_id_seq;
CREATE TABLE IF NOT EXISTS meal_schedules (
  id INTEGER DEFAULT nextval('meal_schedules_id_seq') PRIMARY KEY,
  user_id INTEGER NOT NULL,
  meal_time TEXT CHECK(meal_time IN ('lunch','dinner')) NOT NULL,
  service_date DATE NOT NULL,
  scheduled_at TIMESTAMP NOT NULL,  -- service date combined with the meal-time clock
  meal_cost BIGINT NOT NULL,
  status TEXT CHECK(status IN ('scheduled','cancelled','refunded','redeemed','expired')) NOT NULL,
  status_history TEXT NOT NULL,  -- JSON array of {status, timestamp}, append-only
  created_at TIMESTAMP NOT NULL,
  updated_at TIMESTAMP NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS uniq_schedule_user_slot ON meal_schedules(user_id, service_date, meal_time);
CREATE INDEX IF NOT EXISTS idx_schedules_status ON meal_schedules(status);

CREATE SEQUENCE IF NOT EXISTS transactions_id_seq;
CREATE TABLE IF NOT EXISTS transactions (
  id INTEGER DEFAULT nextval('transactions_id_seq') PRIMARY KEY,
  user_id INTEGER NOT NULL,
  type TEXT CHECK(type IN ('balance_recharge','meal_schedule','refund','meal_redemption','balance_adjustment')) NOT NULL,
  amount BIGINT NOT NULL,  -- signed millimes
  processed_by INTEGER,
  meal_schedule_id INTEGER,
  description TEXT,
  created_at TIMESTAMP NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_transactions_user ON transactions(user_id);
CREATE INDEX IF NOT EXISTS idx_transactions_processed_by ON transactions(processed_by);

CREATE SEQUENCE IF NOT EXISTS logs_id_seq;
CREATE TABLE IF NOT EXISTS logs (
  log_id INTEGER DEFAULT nextval('logs_id_seq') PRIMARY KEY,
  user_id INTEGER,  -- user the event is about
  actor_id INTEGER,  -- user who performed it
  action TEXT,
  detail_json TEXT,
  created_at TIMESTAMP NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_logs_user ON logs(user_id);
CREATE INDEX IF NOT EXISTS idx_logs_action ON logs(action);
"""


def rows_to_dicts(cursor) -> List[Dict[str, Any]]:
    """Turn the pending result of a DuckDB cursor into dicts"""
    columns = [col[0] for col in cursor.description]
    return [dict(zip(columns, row)) for row in cursor.fetchall()]


def row_to_dict(cursor) -> Optional[Dict[str, Any]]:
    columns = [col[0] for col in cursor.description]
    row = cursor.fetchone()
    return dict(zip(columns, row)) if row else None


class DatabaseManager:
    """Database manager, owns the connection and the unit of work"""

    def __init__(self, db_path: Optional[str] = None):
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._lock = threading.RLock()
        self._depth = 0
        self.db_path = db_path or self._get_db_path_from_settings()

    def _get_db_path_from_settings(self) -> str:
        """Read the database path from settings"""
        db_url = settings.database_url
        if db_url.startswith("duckdb://"):
            db_url = db_url.replace("duckdb://", "", 1)
        if db_url in ("", "/:memory:", ":memory:"):
            return ":memory:"
        return db_url

    @property
    def connection(self) -> duckdb.DuckDBPyConnection:
        """Lazily opened connection"""
        with self._lock:
            if self._connection is None:
                if self.db_path != ":memory:":
                    Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
                try:
                    self._connection = duckdb.connect(self.db_path)
                    self._connection.execute(SCHEMA_SQL)
                except duckdb.Error as e:
                    self._connection = None
                    raise DatabaseError(f"Failed to initialize database: {e}")
                logger.info("Opened database %s", self.db_path)
            return self._connection

    def init_database(self):
        """Create tables if missing"""
        with self._lock:
            self.connection.execute(SCHEMA_SQL)

    def close(self):
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None

    @contextmanager
    def transaction(self) -> Generator[duckdb.DuckDBPyConnection, None, None]:
        """
        Unit of work.

        Holds the process-wide lock for the whole block, so a balance
        read-modify-write can never interleave with another one. Nested
        calls on the same thread join the outer unit. Any exception rolls
        everything back; DuckDB errors are translated into DatabaseError
        subclasses, application errors pass through unchanged.
        """
        with self._lock:
            conn = self.connection
            if self._depth > 0:
                self._depth += 1
                try:
                    yield conn
                finally:
                    self._depth -= 1
                return

            conn.execute("BEGIN TRANSACTION")
            self._depth = 1
            try:
                yield conn
                conn.execute("COMMIT")
            except Exception as e:
                self._rollback(conn)
                raise self._translate_error(e) from e
            finally:
                self._depth = 0

    def _rollback(self, conn: duckdb.DuckDBPyConnection):
        try:
            conn.execute("ROLLBACK")
        except duckdb.Error as e:
            # a failed COMMIT has already aborted the transaction
            logger.debug("Rollback skipped: %s", e)

    @staticmethod
    def _translate_error(error: Exception) -> Exception:
        if isinstance(error, BaseApplicationError):
            return error
        if isinstance(error, duckdb.ConstraintException):
            return ConstraintViolationError(f"Constraint violated: {error}")
        if isinstance(error, duckdb.TransactionException) or "conflict" in str(error).lower():
            return ConcurrencyError("Concurrent update detected, please retry")
        if isinstance(error, duckdb.Error):
            logger.error("Database operation failed: %s", error)
            return DatabaseError(f"Database operation failed: {error}")
        return error

    def execute_query(self, query: str, params: Optional[list] = None) -> list:
        """Run a query and return all rows"""
        with self._lock:
            try:
                return self.connection.execute(query, params or []).fetchall()
            except duckdb.Error as e:
                raise DatabaseError(f"Query execution failed: {e}")

    def execute_one(self, query: str, params: Optional[list] = None) -> Optional[tuple]:
        """Run a query and return the first row"""
        with self._lock:
            try:
                return self.connection.execute(query, params or []).fetchone()
            except duckdb.Error as e:
                raise DatabaseError(f"Query execution failed: {e}")

    def fetch_dicts(self, query: str, params: Optional[list] = None) -> List[Dict[str, Any]]:
        """Run a query and return rows as dicts"""
        with self._lock:
            try:
                return rows_to_dicts(self.connection.execute(query, params or []))
            except duckdb.Error as e:
                raise DatabaseError(f"Query execution failed: {e}")

    def fetch_dict(self, query: str, params: Optional[list] = None) -> Optional[Dict[str, Any]]:
        with self._lock:
            try:
                return row_to_dict(self.connection.execute(query, params or []))
            except duckdb.Error as e:
                raise DatabaseError(f"Query execution failed: {e}")


# Global database manager instance
db_manager = DatabaseManager()
