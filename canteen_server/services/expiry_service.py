"""
Expiry sweep
Persists the expired status of scheduled meals that can no longer be
booked, cancelled or verified. Read paths already show such meals as
expired; the sweep makes the stored state agree.
"""

import logging
from datetime import datetime
from typing import Callable, List, Optional

from ..config.meal_policy import MealPolicy
from ..config.settings import settings
from ..core.database import DatabaseManager, db_manager, rows_to_dicts
from ..models.meal_schedule import MealSchedule, ScheduleStatus
from . import meal_state
from .audit import write_log
from .meal_service import SCHEDULE_COLUMNS, persist_transition, schedule_from_row

logger = logging.getLogger(__name__)


class ExpiryService:
    """Marks overdue scheduled meals as expired"""

    def __init__(self, db: Optional[DatabaseManager] = None,
                 policy: Optional[MealPolicy] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        self.db = db or db_manager
        self.policy = policy or settings.meal_policy
        self.clock = clock or datetime.now

    def expire_overdue_meals(self) -> List[MealSchedule]:
        """
        Expire every scheduled meal whose booking deadline and verification
        window have both passed. No money moves.

        Returns:
            the rows that were expired by this run
        """
        now = self.clock()
        expired: List[MealSchedule] = []
        with self.db.transaction() as conn:
            # coarse filter; the exact rule is applied per row below
            candidates = rows_to_dicts(conn.execute(
                f"""
                SELECT {SCHEDULE_COLUMNS} FROM meal_schedules
                WHERE status = ? AND service_date <= ?
                ORDER BY scheduled_at
                """,
                [ScheduleStatus.SCHEDULED.value, now.date()],
            ))
            for row in candidates:
                schedule = schedule_from_row(row)
                if not meal_state.is_sweepable(schedule.status, schedule.meal_time,
                                               schedule.scheduled_at, now, self.policy):
                    continue
                expired.append(persist_transition(
                    conn, schedule, schedule.with_transition(ScheduleStatus.EXPIRED, now)
                ))
            if expired:
                write_log(conn, "meals_expired", now, detail={
                    "meal_ids": [schedule.id for schedule in expired],
                })

        if expired:
            logger.info("Expired %d overdue meals", len(expired))
        return expired
