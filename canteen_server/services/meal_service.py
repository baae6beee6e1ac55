"""
Meal scheduling service
Coordinates balance checks, the ledger and the schedule state machine for
booking and cancelling meals.

Main features:
- single and batch booking with role pricing and overdraft limits
- single and batch cancellation with the refund cutoff rule
- re-booking of cancelled/refunded slots on the same row
- read paths with lazy expiry and virtual not_created slots

Business rules:
- one row per (user, service date, meal time), enforced by a unique index
- balance may go negative by at most max_meals_in_red meal costs
- a batch is all-or-nothing
- every ledger entry commits together with the schedule change it pays for
"""

import json
import logging
from datetime import date, datetime, timedelta
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from ..config.meal_policy import MealPolicy
from ..config.settings import settings
from ..core.database import DatabaseManager, db_manager, row_to_dict
from ..core.exceptions import (
    BadRequestError,
    ConcurrencyError,
    ConstraintViolationError,
    DuplicateScheduleError,
    InsufficientBalanceError,
    InvalidTransitionError,
    MealScheduleNotFoundError,
    OutsideTimeWindowError,
    ValidationError,
)
from ..models.meal_schedule import (
    DayMeals,
    MealSchedule,
    MealSlot,
    MealSlotView,
    MealStats,
    MealTime,
    ScheduleStatus,
    SlotStatus,
    StatusHistoryEntry,
)
from ..models.transaction import TransactionType
from ..models.user import Role, User
from . import meal_state
from .audit import write_log
from .ledger_service import LedgerService
from .user_service import fetch_user, require_active

logger = logging.getLogger(__name__)

SCHEDULE_COLUMNS = ("id, user_id, meal_time, service_date, scheduled_at, meal_cost, "
                    "status, status_history, created_at, updated_at")


def schedule_from_row(row: Dict) -> MealSchedule:
    """Build the entity from a meal_schedules row"""
    history = json.loads(row.get("status_history") or "[]")
    data = dict(row)
    data["status_history"] = tuple(StatusHistoryEntry(**entry) for entry in history)
    return MealSchedule(**data)


def history_json(schedule: MealSchedule) -> str:
    return json.dumps([entry.to_json() for entry in schedule.status_history])


def find_schedule(conn, user_id: int, service_date: date,
                  meal_time: MealTime) -> Optional[MealSchedule]:
    row = row_to_dict(conn.execute(
        f"""
        SELECT {SCHEDULE_COLUMNS} FROM meal_schedules
        WHERE user_id = ? AND service_date = ? AND meal_time = ?
        """,
        [user_id, service_date, MealTime(meal_time).value],
    ))
    return schedule_from_row(row) if row else None


def persist_transition(conn, before: MealSchedule, after: MealSchedule) -> MealSchedule:
    """
    Write a transition computed by MealSchedule.with_transition.

    The UPDATE is guarded on the previous status; if another writer moved
    the row first nothing matches and the unit of work is aborted.
    """
    row = conn.execute(
        """
        UPDATE meal_schedules
        SET status = ?, status_history = ?, meal_cost = ?, updated_at = ?
        WHERE id = ? AND status = ?
        RETURNING id
        """,
        [after.status.value, history_json(after), after.meal_cost, after.updated_at,
         before.id, before.status.value],
    ).fetchone()
    if not row:
        raise ConcurrencyError("Meal schedule changed concurrently, please retry",
                               details={"meal_id": before.id})
    return after


def slot_view(schedule: MealSchedule, now: datetime, policy: MealPolicy) -> MealSlotView:
    args = (schedule.meal_time, schedule.scheduled_at, now, policy)
    return MealSlotView(
        id=schedule.id,
        user_id=schedule.user_id,
        meal_time=schedule.meal_time,
        service_date=schedule.service_date,
        scheduled_at=schedule.scheduled_at,
        meal_cost=schedule.meal_cost,
        status=meal_state.display_status(schedule.status, *args),
        stored_status=schedule.status,
        status_history=schedule.status_history,
        can_schedule=meal_state.can_schedule(schedule.status, *args),
        can_cancel=meal_state.can_cancel(schedule.status, *args),
    )


def virtual_slot_view(user_id: int, day: date, meal_time: MealTime, now: datetime,
                      policy: MealPolicy) -> MealSlotView:
    """View of a slot with no stored row"""
    service_at = meal_state.service_timestamp(day, meal_time, policy)
    args = (meal_time, service_at, now, policy)
    return MealSlotView(
        user_id=user_id,
        meal_time=meal_time,
        service_date=day,
        scheduled_at=service_at,
        status=meal_state.display_status(None, *args),
        can_schedule=meal_state.can_schedule(None, *args),
        can_cancel=False,
    )


class MealService:
    """Scheduling/cancellation orchestrator and schedule read paths"""

    def __init__(self, db: Optional[DatabaseManager] = None,
                 policy: Optional[MealPolicy] = None,
                 clock: Optional[Callable[[], datetime]] = None,
                 ledger: Optional[LedgerService] = None):
        self.db = db or db_manager
        self.policy = policy or settings.meal_policy
        self.clock = clock or datetime.now
        self.ledger = ledger or LedgerService(self.db, self.clock)

    # ------------------------------------------------------------------
    # booking
    # ------------------------------------------------------------------

    def schedule_meal(self, user_id: int, meal_time: MealTime, meal_date: date,
                      use_student_rate: bool = False) -> MealSchedule:
        """
        Book one meal

        Args:
            user_id: user booking the meal (also recorded as processor)
            meal_time: lunch or dinner
            meal_date: service date
            use_student_rate: teachers may book at the student price

        Returns:
            MealSchedule: the booked row

        Raises:
            UserNotFoundError / AccountInactiveError: unknown or deactivated user
            InsufficientBalanceError: balance + overdraft cannot cover the cost
            DuplicateScheduleError: slot already scheduled
            InvalidTransitionError: slot already served or expired
            OutsideTimeWindowError: booking deadline passed
        """
        meal_time = MealTime(meal_time)
        now = self.clock()
        try:
            with self.db.transaction() as conn:
                user = require_active(fetch_user(conn, user_id))
                meal_cost = self._meal_cost(user, use_student_rate)
                self._check_affordable(user, meal_cost, 1)

                existing = find_schedule(conn, user_id, meal_date, meal_time)
                self._check_bookable(existing, meal_time, meal_date, now)
                schedule = self._book(conn, user_id, existing, meal_time, meal_date, meal_cost, now)

                result = self.ledger.apply_in(
                    conn, user_id, TransactionType.MEAL_SCHEDULE, meal_cost, user_id,
                    meal_schedule_id=schedule.id,
                    description=f"{meal_time.value} {meal_date.isoformat()}",
                )
                write_log(conn, "meal_schedule", now, user_id=user_id, actor_id=user_id, detail={
                    "meal_id": schedule.id,
                    "meal_time": meal_time,
                    "service_date": meal_date,
                    "meal_cost": meal_cost,
                    "rebooked": existing is not None,
                    "balance_before": result.previous_balance,
                    "balance_after": result.new_balance,
                })
        except ConstraintViolationError:
            raise DuplicateScheduleError(
                "Meal already scheduled for this time and date",
                details={"meal_time": meal_time.value, "service_date": meal_date.isoformat()},
            )
        return schedule

    def schedule_many_meals(self, user_id: int, meals: Sequence[MealSlot],
                            use_student_rate: bool = False) -> List[MealSchedule]:
        """
        Book several meals in one unit of work

        The combined cost is checked once against balance + overdraft and a
        single meal_schedule entry is recorded for the batch. Any scheduled
        or unbookable slot fails the whole batch.
        """
        slots = self._unique_slots(meals)
        now = self.clock()
        try:
            with self.db.transaction() as conn:
                user = require_active(fetch_user(conn, user_id))
                meal_cost = self._meal_cost(user, use_student_rate)
                total_cost = meal_cost * len(slots)
                self._check_affordable(user, meal_cost, len(slots))

                existing = {slot.key: find_schedule(conn, user_id, slot.meal_date, slot.meal_time)
                            for slot in slots}
                already = [slot for slot in slots
                           if existing[slot.key] is not None
                           and existing[slot.key].status == ScheduleStatus.SCHEDULED]
                if already:
                    raise DuplicateScheduleError(
                        "Some meals are already scheduled",
                        details={"slots": [self._slot_detail(slot) for slot in already]},
                    )
                for slot in slots:
                    self._check_bookable(existing[slot.key], slot.meal_time, slot.meal_date, now)

                booked = [self._book(conn, user_id, existing[slot.key], slot.meal_time,
                                     slot.meal_date, meal_cost, now)
                          for slot in slots]

                result = self.ledger.apply_in(
                    conn, user_id, TransactionType.MEAL_SCHEDULE, total_cost, user_id,
                    description=f"batch of {len(booked)} meals",
                )
                write_log(conn, "meal_schedule_batch", now, user_id=user_id, actor_id=user_id, detail={
                    "meal_ids": [schedule.id for schedule in booked],
                    "meal_cost": meal_cost,
                    "total_cost": total_cost,
                    "balance_before": result.previous_balance,
                    "balance_after": result.new_balance,
                })
        except ConstraintViolationError:
            raise DuplicateScheduleError("Some meals are already scheduled")
        return booked

    def _unique_slots(self, meals: Sequence[MealSlot]) -> List[MealSlot]:
        if not meals:
            raise ValidationError("At least one meal is required")
        seen = set()
        for slot in meals:
            if slot.key in seen:
                raise ValidationError("The same meal is requested twice",
                                      details=self._slot_detail(slot))
            seen.add(slot.key)
        return list(meals)

    @staticmethod
    def _slot_detail(slot: MealSlot) -> Dict[str, str]:
        return {"meal_date": slot.meal_date.isoformat(), "meal_time": slot.meal_time.value}

    def _meal_cost(self, user: User, use_student_rate: bool) -> int:
        if use_student_rate:
            if user.role != Role.TEACHER:
                raise ValidationError("Student rate is only available to teachers")
            return self.policy.meal_cost_for(Role.STUDENT)
        return self.policy.meal_cost_for(user.role)

    def _check_affordable(self, user: User, meal_cost: int, count: int):
        total_cost = meal_cost * count
        allowance = self.policy.overdraft_allowance(user.role, meal_cost)
        if user.balance < total_cost - allowance:
            affordable = max(0, (user.balance + allowance) // meal_cost) if meal_cost else 0
            raise InsufficientBalanceError(
                f"Insufficient balance, you can only afford {affordable} meals",
                details={
                    "balance": user.balance,
                    "total_cost": total_cost,
                    "overdraft_allowance": allowance,
                    "affordable_meals": affordable,
                },
            )

    def _check_bookable(self, existing: Optional[MealSchedule], meal_time: MealTime,
                        meal_date: date, now: datetime):
        status = existing.status if existing else None
        if existing is not None and existing.status == ScheduleStatus.SCHEDULED:
            raise DuplicateScheduleError(
                "Meal already scheduled for this time and date",
                details={"meal_id": existing.id},
            )
        meal_state.check_transition(status, ScheduleStatus.SCHEDULED)
        service_at = meal_state.service_timestamp(meal_date, meal_time, self.policy)
        if not meal_state.can_schedule(status, meal_time, service_at, now, self.policy):
            raise OutsideTimeWindowError(
                "Booking is closed for this meal",
                details={"meal_time": meal_time.value, "service_date": meal_date.isoformat()},
            )

    def _book(self, conn, user_id: int, existing: Optional[MealSchedule], meal_time: MealTime,
              meal_date: date, meal_cost: int, now: datetime) -> MealSchedule:
        if existing is not None:
            return persist_transition(conn, existing,
                                      existing.with_transition(ScheduleStatus.SCHEDULED, now,
                                                               meal_cost=meal_cost))

        service_at = meal_state.service_timestamp(meal_date, meal_time, self.policy)
        history = [StatusHistoryEntry(status=ScheduleStatus.SCHEDULED, timestamp=now).to_json()]
        row = row_to_dict(conn.execute(
            f"""
            INSERT INTO meal_schedules(user_id, meal_time, service_date, scheduled_at, meal_cost,
                                       status, status_history, created_at, updated_at)
            VALUES (?,?,?,?,?,?,?,?,?)
            RETURNING {SCHEDULE_COLUMNS}
            """,
            [user_id, meal_time.value, meal_date, service_at, meal_cost,
             ScheduleStatus.SCHEDULED.value, json.dumps(history), now, now],
        ))
        return schedule_from_row(row)

    # ------------------------------------------------------------------
    # cancellation
    # ------------------------------------------------------------------

    def cancel_meal(self, meal_id: int, user_id: int,
                    processed_by: Optional[int] = None) -> MealSchedule:
        """
        Cancel one scheduled meal

        More than refund_cutoff before service the meal becomes refunded and
        its cost is returned; closer to service it becomes cancelled and no
        money moves.

        Raises:
            MealScheduleNotFoundError: meal missing or owned by someone else
            BadRequestError: already cancelled/refunded
            InvalidTransitionError: meal already served or expired
            OutsideTimeWindowError: cancellation deadline passed
        """
        processed_by = processed_by if processed_by is not None else user_id
        now = self.clock()
        with self.db.transaction() as conn:
            row = row_to_dict(conn.execute(
                f"SELECT {SCHEDULE_COLUMNS} FROM meal_schedules WHERE id = ? AND user_id = ?",
                [meal_id, user_id],
            ))
            if not row:
                raise MealScheduleNotFoundError("Meal not found", details={"meal_id": meal_id})
            schedule = schedule_from_row(row)
            self._check_cancellable(schedule, now)

            outcome = meal_state.cancel_outcome(schedule.scheduled_at, now, self.policy)
            updated = persist_transition(conn, schedule, schedule.with_transition(outcome, now))

            detail = {"meal_id": schedule.id, "status": outcome, "refund": 0}
            if outcome == ScheduleStatus.REFUNDED:
                result = self.ledger.apply_in(
                    conn, user_id, TransactionType.REFUND, schedule.meal_cost, processed_by,
                    meal_schedule_id=schedule.id, description="meal cancelled before cutoff",
                )
                detail.update(refund=schedule.meal_cost, balance_after=result.new_balance)
            write_log(conn, "meal_cancel", now, user_id=user_id, actor_id=processed_by, detail=detail)
        return updated

    def cancel_many_meals(self, user_id: int, meals: Sequence[MealSlot]) -> List[MealSchedule]:
        """
        Cancel several meals in one unit of work

        Only slots that are scheduled and still inside their cancellation
        window are touched; refunds are summed into one refund entry.
        """
        slots = self._unique_slots(meals)
        now = self.clock()
        with self.db.transaction() as conn:
            found = [schedule for schedule in
                     (find_schedule(conn, user_id, slot.meal_date, slot.meal_time) for slot in slots)
                     if schedule is not None]
            if not found:
                raise MealScheduleNotFoundError("No meals found")

            cancelled: List[MealSchedule] = []
            refund_total = 0
            for schedule in found:
                if not meal_state.can_cancel(schedule.status, schedule.meal_time,
                                             schedule.scheduled_at, now, self.policy):
                    continue
                outcome = meal_state.cancel_outcome(schedule.scheduled_at, now, self.policy)
                cancelled.append(persist_transition(conn, schedule,
                                                    schedule.with_transition(outcome, now)))
                if outcome == ScheduleStatus.REFUNDED:
                    refund_total += schedule.meal_cost

            if refund_total:
                self.ledger.apply_in(conn, user_id, TransactionType.REFUND, refund_total, user_id,
                                     description=f"batch cancellation of {len(cancelled)} meals")
            if cancelled:
                write_log(conn, "meal_cancel_batch", now, user_id=user_id, actor_id=user_id, detail={
                    "meal_ids": [schedule.id for schedule in cancelled],
                    "refund": refund_total,
                })
        return cancelled

    def _check_cancellable(self, schedule: MealSchedule, now: datetime):
        if schedule.status in (ScheduleStatus.CANCELLED, ScheduleStatus.REFUNDED):
            raise BadRequestError("Meal is already cancelled", error_code="MEAL_ALREADY_CANCELLED",
                                  details={"meal_id": schedule.id})
        if schedule.status in (ScheduleStatus.REDEEMED, ScheduleStatus.EXPIRED):
            raise InvalidTransitionError("Cannot cancel a served meal",
                                         details={"meal_id": schedule.id, "status": schedule.status.value})
        if not meal_state.can_cancel(schedule.status, schedule.meal_time,
                                     schedule.scheduled_at, now, self.policy):
            raise OutsideTimeWindowError("Cancellation is closed for this meal",
                                         details={"meal_id": schedule.id})

    # ------------------------------------------------------------------
    # read paths
    # ------------------------------------------------------------------

    def get_meal(self, meal_id: int) -> MealSchedule:
        row = self.db.fetch_dict(
            f"SELECT {SCHEDULE_COLUMNS} FROM meal_schedules WHERE id = ?", [meal_id]
        )
        if not row:
            raise MealScheduleNotFoundError("Meal not found", details={"meal_id": meal_id})
        return schedule_from_row(row)

    def get_user_meals(self, user_id: int, meal_time: Optional[MealTime] = None,
                       status: Optional[SlotStatus] = None,
                       start_date: Optional[date] = None,
                       end_date: Optional[date] = None) -> List[MealSlotView]:
        """User's stored meals, newest first, with display status applied"""
        conditions = ["user_id = ?"]
        params: list = [user_id]
        if meal_time:
            conditions.append("meal_time = ?")
            params.append(MealTime(meal_time).value)
        if start_date:
            conditions.append("service_date >= ?")
            params.append(start_date)
        if end_date:
            conditions.append("service_date <= ?")
            params.append(end_date)

        rows = self.db.fetch_dicts(
            f"""
            SELECT {SCHEDULE_COLUMNS} FROM meal_schedules
            WHERE {' AND '.join(conditions)}
            ORDER BY scheduled_at DESC
            """,
            params,
        )
        now = self.clock()
        views = [slot_view(schedule_from_row(row), now, self.policy) for row in rows]
        if status:
            views = [view for view in views if view.status == SlotStatus(status)]
        return views

    def get_meal_calendar(self, user_id: int, start_date: Optional[date] = None,
                          days: int = 6) -> List[DayMeals]:
        """
        Lunch and dinner for each day from start_date (default: this week's Monday)

        Days without a stored row get virtual not_created slots.
        """
        now = self.clock()
        if start_date is None:
            start_date = now.date() - timedelta(days=now.weekday())
        end_date = start_date + timedelta(days=days - 1)

        stored: Dict[Tuple[date, MealTime], MealSchedule] = {}
        for row in self.db.fetch_dicts(
            f"""
            SELECT {SCHEDULE_COLUMNS} FROM meal_schedules
            WHERE user_id = ? AND service_date BETWEEN ? AND ?
            """,
            [user_id, start_date, end_date],
        ):
            schedule = schedule_from_row(row)
            stored[(schedule.service_date, schedule.meal_time)] = schedule

        calendar = []
        for offset in range(days):
            day = start_date + timedelta(days=offset)
            slots = {}
            for meal_time in MealTime:
                schedule = stored.get((day, meal_time))
                slots[meal_time] = (slot_view(schedule, now, self.policy) if schedule
                                    else virtual_slot_view(user_id, day, meal_time, now, self.policy))
            calendar.append(DayMeals(day=day, lunch=slots[MealTime.LUNCH],
                                     dinner=slots[MealTime.DINNER]))
        return calendar

    def get_meal_stats(self, user_id: Optional[int] = None) -> MealStats:
        """Counts per stored status"""
        query = "SELECT status, COUNT(*) FROM meal_schedules"
        params: list = []
        if user_id is not None:
            query += " WHERE user_id = ?"
            params.append(user_id)
        query += " GROUP BY status"

        stats = MealStats()
        for status, count in self.db.execute_query(query, params):
            setattr(stats, status, count)
            stats.total += count
        return stats
