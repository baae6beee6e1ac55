"""
Meal redemption service
Counter verification and self-service redemption of scheduled meals.

Main features:
- staff verification by CIN, gated by the meal-time verification window
- self-service redemption of the nearest scheduled meal
- forced verification for emergencies, recorded with a zero-amount entry
- current/next meal period lookup for the counter screen
- per-student lunch and dinner status for a day

Money moves at booking time; redemption only writes a zero-amount
meal_redemption entry naming who served the meal.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Callable, Dict, Optional

from pydantic import BaseModel

from ..config.meal_policy import MealPolicy
from ..config.settings import settings
from ..core.database import DatabaseManager, db_manager, row_to_dict
from ..core.exceptions import MealScheduleNotFoundError, OutsideTimeWindowError
from ..models.meal_schedule import DayMeals, MealSchedule, MealTime, ScheduleStatus
from ..models.transaction import Transaction, TransactionType
from ..models.user import StudentInfo
from . import meal_state
from .audit import write_log
from .ledger_service import LedgerService
from .meal_service import (
    SCHEDULE_COLUMNS,
    find_schedule,
    persist_transition,
    schedule_from_row,
    slot_view,
    virtual_slot_view,
)
from .user_service import fetch_user, fetch_user_by_cin, require_active

logger = logging.getLogger(__name__)


class VerificationResult(BaseModel):
    """What the counter screen shows after a verification"""
    schedule: Optional[MealSchedule]
    transaction: Transaction
    student_info: StudentInfo


class StudentMealStatus(BaseModel):
    """A student's lunch and dinner for one day, as seen at the counter"""
    student_info: StudentInfo
    meals: DayMeals


class MealPeriodStatus(BaseModel):
    """Verification window state at a point in time"""
    now: datetime
    current_meal_time: Optional[MealTime] = None
    current_window_end: Optional[datetime] = None
    next_meal_time: MealTime
    next_window_start: datetime


class RedemptionService:
    """Redemption orchestrator"""

    def __init__(self, db: Optional[DatabaseManager] = None,
                 policy: Optional[MealPolicy] = None,
                 clock: Optional[Callable[[], datetime]] = None,
                 ledger: Optional[LedgerService] = None):
        self.db = db or db_manager
        self.policy = policy or settings.meal_policy
        self.clock = clock or datetime.now
        self.ledger = ledger or LedgerService(self.db, self.clock)

    def verify_meal(self, cin: str, meal_time: MealTime, verification_date: date,
                    verified_by: int) -> VerificationResult:
        """
        Verify a student's scheduled meal at the counter

        Args:
            cin: student identity number
            meal_time: lunch or dinner
            verification_date: service date being verified
            verified_by: staff user performing the verification

        Returns:
            VerificationResult: redeemed schedule, audit entry, student summary

        Raises:
            UserNotFoundError / AccountInactiveError: unknown or deactivated student
            OutsideTimeWindowError: verification_date is not today, or the current
                clock time is outside the meal's window
            MealScheduleNotFoundError: no scheduled meal for that slot
        """
        return self._verify(cin, MealTime(meal_time), verification_date, verified_by,
                            force=False, notes=None)

    def manual_verify_meal(self, cin: str, meal_time: MealTime, verification_date: date,
                           verified_by: int, force: bool = False,
                           notes: Optional[str] = None) -> VerificationResult:
        """
        Verification entered by hand at the counter

        With force the window and the scheduled-row requirement are waived;
        a zero-amount meal_redemption entry is still recorded, and a matching
        scheduled row is marked redeemed when one exists.
        """
        return self._verify(cin, MealTime(meal_time), verification_date, verified_by,
                            force=force, notes=notes)

    def _verify(self, cin: str, meal_time: MealTime, verification_date: date,
                verified_by: int, force: bool, notes: Optional[str]) -> VerificationResult:
        now = self.clock()
        with self.db.transaction() as conn:
            user = require_active(fetch_user_by_cin(conn, cin))

            if not force and verification_date != now.date():
                raise OutsideTimeWindowError(
                    "Only meals of the current day can be verified",
                    details={"service_date": verification_date.isoformat(),
                             "today": now.date().isoformat()},
                )
            if not force and not meal_state.in_verification_window(meal_time, now, self.policy):
                start, end = self.policy.verification_windows[meal_time]
                raise OutsideTimeWindowError(
                    f"{meal_time.value.capitalize()} can only be verified between "
                    f"{start.strftime('%H:%M')} and {end.strftime('%H:%M')}",
                    details={"meal_time": meal_time.value, "now": now.isoformat()},
                )

            existing = find_schedule(conn, user.id, verification_date, meal_time)
            scheduled = None
            if existing and existing.status == ScheduleStatus.SCHEDULED:
                # a row already past its own window counts as expired
                stale = meal_state.is_sweepable(existing.status, meal_time,
                                                existing.scheduled_at, now, self.policy)
                scheduled = None if stale else existing
            if scheduled is None and not force:
                raise MealScheduleNotFoundError(
                    "No scheduled meal found for this student",
                    details={"cin": cin, "meal_time": meal_time.value,
                             "service_date": verification_date.isoformat()},
                )

            redeemed = None
            if scheduled is not None:
                redeemed = persist_transition(
                    conn, scheduled, scheduled.with_transition(ScheduleStatus.REDEEMED, now)
                )

            description = f"{meal_time.value} {verification_date.isoformat()} verified"
            if notes:
                description = f"{description}: {notes}"
            result = self.ledger.apply_in(
                conn, user.id, TransactionType.MEAL_REDEMPTION, 0, verified_by,
                meal_schedule_id=redeemed.id if redeemed else None,
                description=description,
            )
            write_log(conn, "meal_force_verify" if force else "meal_verify", now,
                      user_id=user.id, actor_id=verified_by, detail={
                          "meal_id": redeemed.id if redeemed else None,
                          "meal_time": meal_time,
                          "service_date": verification_date,
                          "notes": notes,
                      })
            student = fetch_user(conn, user.id)

        if force:
            logger.warning("Forced verification of %s %s for user %s by %s",
                           meal_time.value, verification_date, user.id, verified_by)
        return VerificationResult(
            schedule=redeemed,
            transaction=result.transaction,
            student_info=StudentInfo.from_user(student),
        )

    def redeem_meal(self, user_id: int) -> MealSchedule:
        """
        Self-service redemption of the most recent scheduled meal whose
        service time lies between self_redeem_before ago and
        self_redeem_after from now

        Raises:
            MealScheduleNotFoundError: no scheduled meal in that range
        """
        now = self.clock()
        with self.db.transaction() as conn:
            user = require_active(fetch_user(conn, user_id))
            row = row_to_dict(conn.execute(
                f"""
                SELECT {SCHEDULE_COLUMNS} FROM meal_schedules
                WHERE user_id = ? AND status = ? AND service_date = ?
                  AND scheduled_at BETWEEN ? AND ?
                ORDER BY scheduled_at DESC
                LIMIT 1
                """,
                [user.id, ScheduleStatus.SCHEDULED.value, now.date(),
                 now - self.policy.self_redeem_before, now + self.policy.self_redeem_after],
            ))
            if not row:
                raise MealScheduleNotFoundError("No meal available to redeem right now")
            schedule = schedule_from_row(row)
            redeemed = persist_transition(
                conn, schedule, schedule.with_transition(ScheduleStatus.REDEEMED, now)
            )
            self.ledger.apply_in(conn, user.id, TransactionType.MEAL_REDEMPTION, 0, user.id,
                                 meal_schedule_id=redeemed.id, description="self-service redemption")
            write_log(conn, "meal_redeem", now, user_id=user.id, actor_id=user.id,
                      detail={"meal_id": redeemed.id})
        return redeemed

    def get_student_meal_status(self, cin: str, day: date) -> StudentMealStatus:
        """
        Lunch and dinner status of a student on one day, looked up by CIN

        Slots without a stored row are reported as not_created. Read only;
        works for deactivated accounts too so staff can explain a refusal.
        """
        now = self.clock()
        with self.db.transaction() as conn:
            user = fetch_user_by_cin(conn, cin)
            slots = {}
            for meal_time in MealTime:
                schedule = find_schedule(conn, user.id, day, meal_time)
                slots[meal_time] = (slot_view(schedule, now, self.policy) if schedule
                                    else virtual_slot_view(user.id, day, meal_time, now, self.policy))

        return StudentMealStatus(
            student_info=StudentInfo.from_user(user),
            meals=DayMeals(day=day, lunch=slots[MealTime.LUNCH], dinner=slots[MealTime.DINNER]),
        )

    def get_meal_period_status(self) -> MealPeriodStatus:
        """Active verification window, if any, and the next one to open"""
        now = self.clock()
        current: Optional[MealTime] = None
        current_end: Optional[datetime] = None
        upcoming: Dict[MealTime, datetime] = {}

        for meal_time in MealTime:
            start, end = meal_state.verification_window(meal_time, now.date(), self.policy)
            if start <= now < end:
                current, current_end = meal_time, end
            if start > now:
                upcoming[meal_time] = start

        if upcoming:
            next_meal = min(upcoming, key=upcoming.get)
            next_start = upcoming[next_meal]
        else:
            tomorrow = now.date() + timedelta(days=1)
            starts = {meal_time: meal_state.verification_window(meal_time, tomorrow, self.policy)[0]
                      for meal_time in MealTime}
            next_meal = min(starts, key=starts.get)
            next_start = starts[next_meal]

        return MealPeriodStatus(
            now=now,
            current_meal_time=current,
            current_window_end=current_end,
            next_meal_time=next_meal,
            next_window_start=next_start,
        )
