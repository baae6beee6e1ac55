"""
Meal schedule state machine
Lifecycle and time-window eligibility of one (user, date, meal time) slot.

    not_created -> scheduled -> redeemed | cancelled | refunded | expired
    cancelled | refunded -> scheduled   (re-booking reuses the row)
    redeemed, expired: terminal

Every window is measured from the service timestamp, i.e. the service date
combined with the configured clock time of the meal.
"""

from datetime import date, datetime
from typing import Dict, FrozenSet, Optional, Union

from ..config.meal_policy import MealPolicy
from ..core.exceptions import InvalidTransitionError
from ..models.meal_schedule import MealTime, ScheduleStatus, SlotStatus

AnyStatus = Union[SlotStatus, ScheduleStatus, str]

TRANSITIONS: Dict[SlotStatus, FrozenSet[ScheduleStatus]] = {
    SlotStatus.NOT_CREATED: frozenset({ScheduleStatus.SCHEDULED}),
    SlotStatus.SCHEDULED: frozenset({
        ScheduleStatus.REDEEMED,
        ScheduleStatus.CANCELLED,
        ScheduleStatus.REFUNDED,
        ScheduleStatus.EXPIRED,
    }),
    SlotStatus.CANCELLED: frozenset({ScheduleStatus.SCHEDULED}),
    SlotStatus.REFUNDED: frozenset({ScheduleStatus.SCHEDULED}),
    SlotStatus.REDEEMED: frozenset(),
    SlotStatus.EXPIRED: frozenset(),
}

SCHEDULABLE = frozenset({SlotStatus.NOT_CREATED, SlotStatus.CANCELLED, SlotStatus.REFUNDED})


def _slot_status(status: Optional[AnyStatus]) -> SlotStatus:
    if status is None:
        return SlotStatus.NOT_CREATED
    if isinstance(status, SlotStatus):
        return status
    if isinstance(status, ScheduleStatus):
        return SlotStatus(status.value)
    return SlotStatus(status)


def service_timestamp(service_date: date, meal_time: MealTime, policy: MealPolicy) -> datetime:
    return datetime.combine(service_date, policy.service_times[MealTime(meal_time)])


def booking_deadline(meal_time: MealTime, service_at: datetime, policy: MealPolicy) -> datetime:
    """Last moment a slot can be booked or cancelled"""
    return service_at + policy.booking_grace[MealTime(meal_time)]


def is_past_deadline(meal_time: MealTime, service_at: datetime, now: datetime,
                     policy: MealPolicy) -> bool:
    return now >= booking_deadline(meal_time, service_at, policy)


def can_schedule(status: Optional[AnyStatus], meal_time: MealTime, service_at: datetime,
                 now: datetime, policy: MealPolicy) -> bool:
    return (_slot_status(status) in SCHEDULABLE
            and not is_past_deadline(meal_time, service_at, now, policy))


def can_cancel(status: Optional[AnyStatus], meal_time: MealTime, service_at: datetime,
               now: datetime, policy: MealPolicy) -> bool:
    return (_slot_status(status) == SlotStatus.SCHEDULED
            and not is_past_deadline(meal_time, service_at, now, policy))


def cancel_outcome(service_at: datetime, now: datetime, policy: MealPolicy) -> ScheduleStatus:
    """Refund when more than the cutoff remains before service, plain cancel otherwise"""
    if service_at - now > policy.refund_cutoff:
        return ScheduleStatus.REFUNDED
    return ScheduleStatus.CANCELLED


def display_status(status: Optional[AnyStatus], meal_time: MealTime, service_at: datetime,
                   now: datetime, policy: MealPolicy) -> SlotStatus:
    """Status shown to readers: open slots past their deadline read as expired"""
    current = _slot_status(status)
    if current in (SlotStatus.SCHEDULED, SlotStatus.NOT_CREATED) and \
            is_past_deadline(meal_time, service_at, now, policy):
        return SlotStatus.EXPIRED
    return current


def verification_window(meal_time: MealTime, service_date: date,
                        policy: MealPolicy) -> tuple:
    start, end = policy.verification_windows[MealTime(meal_time)]
    return datetime.combine(service_date, start), datetime.combine(service_date, end)


def in_verification_window(meal_time: MealTime, now: datetime, policy: MealPolicy) -> bool:
    start, end = policy.verification_windows[MealTime(meal_time)]
    return start <= now.time() < end


def is_sweepable(status: Optional[AnyStatus], meal_time: MealTime, service_at: datetime,
                 now: datetime, policy: MealPolicy) -> bool:
    """
    Whether the stored row can be persisted as expired.

    Requires the booking deadline and the verification window of that day
    to have both passed, so the sweep never races a legitimate redemption.
    """
    if _slot_status(status) != SlotStatus.SCHEDULED:
        return False
    _, window_end = verification_window(meal_time, service_at.date(), policy)
    return is_past_deadline(meal_time, service_at, now, policy) and now >= window_end


def check_transition(current: Optional[AnyStatus], target: ScheduleStatus):
    """Raise InvalidTransitionError unless current -> target is allowed"""
    source = _slot_status(current)
    target = ScheduleStatus(target)
    if target not in TRANSITIONS[source]:
        raise InvalidTransitionError(
            f"Cannot move a meal from {source.value} to {target.value}",
            details={"from": source.value, "to": target.value},
        )
