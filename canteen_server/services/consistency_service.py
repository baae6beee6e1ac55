"""
Data consistency checks
Audits the ledger and schedule tables against the invariants the
orchestrators maintain.

Checks:
- users.balance equals the sum of the user's transaction amounts
- each schedule's status equals the last entry of its status history
- at most one scheduled row per (user, date, meal time)
"""

import json
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from ..core.database import DatabaseManager, db_manager
from .audit import write_log


class ConsistencyCheckResult:
    """Consistency check result"""

    def __init__(self, checked_at: datetime):
        self.checked_at = checked_at
        self.issues: List[Dict[str, Any]] = []
        self.statistics: Dict[str, Any] = {}

    def add_issue(self, issue_type: str, description: str, details: Dict[str, Any] = None):
        self.issues.append({
            'type': issue_type,
            'description': description,
            'details': details or {},
        })

    @property
    def is_consistent(self) -> bool:
        return not self.issues

    def to_dict(self) -> Dict[str, Any]:
        return {
            'issues': self.issues,
            'statistics': self.statistics,
            'summary': {
                'total_issues': len(self.issues),
                'status': 'healthy' if self.is_consistent else 'issues_found',
                'checked_at': self.checked_at.isoformat(),
            },
        }


class ConsistencyService:
    """Data consistency service"""

    def __init__(self, db: Optional[DatabaseManager] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        self.db = db or db_manager
        self.clock = clock or datetime.now

    def check_ledger_consistency(self, operator_id: Optional[int] = None) -> ConsistencyCheckResult:
        """
        Run every check in one snapshot

        Args:
            operator_id: admin requesting the check, recorded in the audit row

        Returns:
            ConsistencyCheckResult with one issue per violation found
        """
        now = self.clock()
        result = ConsistencyCheckResult(now)

        with self.db.transaction() as conn:
            result.statistics = self._collect_statistics(conn)
            self._check_user_balance_consistency(conn, result)
            self._check_status_history(conn, result)
            self._check_duplicate_schedules(conn, result)
            write_log(conn, "consistency_check", now, actor_id=operator_id, detail={
                "total_issues": len(result.issues),
                "statistics": result.statistics,
            })

        return result

    def _collect_statistics(self, conn) -> Dict[str, Any]:
        users = conn.execute("""
            SELECT COUNT(*), COALESCE(SUM(balance), 0), COALESCE(MIN(balance), 0)
            FROM users
        """).fetchone()
        ledger = conn.execute("""
            SELECT
                COUNT(*),
                COALESCE(SUM(CASE WHEN amount > 0 THEN amount ELSE 0 END), 0),
                COALESCE(SUM(CASE WHEN amount < 0 THEN -amount ELSE 0 END), 0)
            FROM transactions
        """).fetchone()
        schedules = conn.execute("SELECT COUNT(*) FROM meal_schedules").fetchone()

        return {
            'users': {'total': users[0], 'total_balance': users[1], 'min_balance': users[2]},
            'ledger': {'total_entries': ledger[0], 'total_credits': ledger[1], 'total_debits': ledger[2]},
            'meal_schedules': {'total': schedules[0]},
        }

    def _check_user_balance_consistency(self, conn, result: ConsistencyCheckResult):
        rows = conn.execute("""
            SELECT
                u.id,
                u.cin,
                u.balance AS user_balance,
                COALESCE(SUM(t.amount), 0) AS ledger_balance
            FROM users u
            LEFT JOIN transactions t ON u.id = t.user_id
            GROUP BY u.id, u.cin, u.balance
            HAVING u.balance != COALESCE(SUM(t.amount), 0)
        """).fetchall()

        for row in rows:
            result.add_issue(
                'balance_mismatch',
                f"Balance of user {row[1]} differs from its ledger",
                {
                    'user_id': row[0],
                    'user_balance': row[2],
                    'ledger_balance': row[3],
                    'difference': row[2] - row[3],
                },
            )

    def _check_status_history(self, conn, result: ConsistencyCheckResult):
        for meal_id, status, history_text in conn.execute(
            "SELECT id, status, status_history FROM meal_schedules"
        ).fetchall():
            history = json.loads(history_text or "[]")
            last = history[-1]['status'] if history else None
            if last != status:
                result.add_issue(
                    'status_history_mismatch',
                    f"Meal {meal_id} status does not match its history",
                    {'meal_id': meal_id, 'status': status, 'last_history_status': last},
                )

    def _check_duplicate_schedules(self, conn, result: ConsistencyCheckResult):
        rows = conn.execute("""
            SELECT user_id, service_date, meal_time, COUNT(*)
            FROM meal_schedules
            WHERE status = 'scheduled'
            GROUP BY user_id, service_date, meal_time
            HAVING COUNT(*) > 1
        """).fetchall()

        for row in rows:
            result.add_issue(
                'duplicate_schedules',
                f"User {row[0]} has {row[3]} scheduled rows for {row[2]} on {row[1]}",
                {'user_id': row[0], 'service_date': str(row[1]), 'meal_time': row[2],
                 'duplicate_count': row[3]},
            )
