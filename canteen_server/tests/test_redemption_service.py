from datetime import datetime, timedelta

import pytest

from ..core.exceptions import (
    AccountInactiveError,
    BadRequestError,
    MealScheduleNotFoundError,
    OutsideTimeWindowError,
    UserNotFoundError,
)
from ..models.meal_schedule import MealTime, ScheduleStatus, SlotStatus
from ..models.transaction import TransactionType
from ..services.redemption_service import RedemptionService


def at(day, hour, minute=0):
    return datetime(day.year, day.month, day.day, hour, minute)


class TestVerifyMeal:

    def test_redeems_and_records_zero_entry(self, meal_service, redemption_service, ledger, student,
                                            verifier, tomorrow, clock, assert_consistent):
        schedule = meal_service.schedule_meal(student.id, MealTime.LUNCH, tomorrow)
        clock.set(at(tomorrow, 12, 30))

        result = redemption_service.verify_meal(student.cin, MealTime.LUNCH, tomorrow, verifier.id)

        assert result.schedule.id == schedule.id
        assert result.schedule.status == ScheduleStatus.REDEEMED
        assert len(result.schedule.status_history) == 2
        assert result.transaction.type == TransactionType.MEAL_REDEMPTION
        assert result.transaction.amount == 0
        assert result.transaction.processed_by == verifier.id
        assert result.transaction.meal_schedule_id == schedule.id
        assert result.student_info.current_balance == 800
        assert ledger.get_balance(student.id) == 800
        assert_consistent()

    def test_verifiable_after_booking_deadline(self, meal_service, redemption_service, student,
                                               verifier, tomorrow, clock):
        meal_service.schedule_meal(student.id, MealTime.LUNCH, tomorrow)
        clock.set(at(tomorrow, 14, 30))
        result = redemption_service.verify_meal(student.cin, MealTime.LUNCH, tomorrow, verifier.id)
        assert result.schedule.status == ScheduleStatus.REDEEMED

    @pytest.mark.parametrize("hour, minute", [(11, 59), (15, 0), (19, 0)])
    def test_outside_lunch_window(self, meal_service, redemption_service, student, verifier,
                                  tomorrow, clock, hour, minute):
        meal_service.schedule_meal(student.id, MealTime.LUNCH, tomorrow)
        clock.set(at(tomorrow, hour, minute))

        with pytest.raises(OutsideTimeWindowError):
            redemption_service.verify_meal(student.cin, MealTime.LUNCH, tomorrow, verifier.id)
        assert meal_service.get_user_meals(student.id)[0].stored_status == ScheduleStatus.SCHEDULED

    def test_window_checked_whatever_the_status(self, meal_service, redemption_service, student,
                                                verifier, tomorrow, clock):
        meal_service.schedule_meal(student.id, MealTime.DINNER, tomorrow)
        clock.set(at(tomorrow, 18, 10))
        redemption_service.verify_meal(student.cin, MealTime.DINNER, tomorrow, verifier.id)

        clock.set(at(tomorrow, 21, 0))
        with pytest.raises(BadRequestError):
            redemption_service.verify_meal(student.cin, MealTime.DINNER, tomorrow, verifier.id)

    def test_no_scheduled_meal(self, meal_service, redemption_service, student, verifier,
                               tomorrow, clock):
        schedule = meal_service.schedule_meal(student.id, MealTime.LUNCH, tomorrow)
        meal_service.cancel_meal(schedule.id, student.id)

        clock.set(at(tomorrow, 12, 30))
        with pytest.raises(MealScheduleNotFoundError):
            redemption_service.verify_meal(student.cin, MealTime.LUNCH, tomorrow, verifier.id)

        clock.set(at(tomorrow, 18, 30))
        with pytest.raises(MealScheduleNotFoundError):
            redemption_service.verify_meal(student.cin, MealTime.DINNER, tomorrow, verifier.id)

    def test_future_day_rejected(self, meal_service, redemption_service, student, verifier,
                                 tomorrow, clock):
        friday = tomorrow + timedelta(days=3)
        schedule = meal_service.schedule_meal(student.id, MealTime.LUNCH, friday)
        clock.set(at(tomorrow, 12, 30))

        with pytest.raises(OutsideTimeWindowError):
            redemption_service.verify_meal(student.cin, MealTime.LUNCH, friday, verifier.id)
        assert meal_service.get_meal(schedule.id).status == ScheduleStatus.SCHEDULED

    def test_past_day_rejected_before_sweep(self, meal_service, redemption_service, student,
                                            verifier, tomorrow, clock):
        schedule = meal_service.schedule_meal(student.id, MealTime.LUNCH, tomorrow)
        clock.set(at(tomorrow + timedelta(days=1), 12, 30))
        assert meal_service.get_user_meals(student.id)[0].status == SlotStatus.EXPIRED

        with pytest.raises(OutsideTimeWindowError):
            redemption_service.verify_meal(student.cin, MealTime.LUNCH, tomorrow, verifier.id)
        assert meal_service.get_meal(schedule.id).status == ScheduleStatus.SCHEDULED

    def test_cannot_verify_twice(self, meal_service, redemption_service, student, verifier,
                                 tomorrow, clock):
        meal_service.schedule_meal(student.id, MealTime.LUNCH, tomorrow)
        clock.set(at(tomorrow, 12, 30))
        redemption_service.verify_meal(student.cin, MealTime.LUNCH, tomorrow, verifier.id)
        with pytest.raises(MealScheduleNotFoundError):
            redemption_service.verify_meal(student.cin, MealTime.LUNCH, tomorrow, verifier.id)

    def test_unknown_or_inactive_student(self, redemption_service, user_service, student, verifier,
                                         tomorrow, clock):
        clock.set(at(tomorrow, 12, 30))
        with pytest.raises(UserNotFoundError):
            redemption_service.verify_meal("NOPE", MealTime.LUNCH, tomorrow, verifier.id)

        user_service.set_active(student.id, False)
        with pytest.raises(AccountInactiveError):
            redemption_service.verify_meal(student.cin, MealTime.LUNCH, tomorrow, verifier.id)


class TestManualVerify:

    def test_without_force_behaves_like_verify(self, redemption_service, student, verifier,
                                               tomorrow, clock):
        clock.set(at(tomorrow, 9, 0))
        with pytest.raises(OutsideTimeWindowError):
            redemption_service.manual_verify_meal(student.cin, MealTime.LUNCH, tomorrow, verifier.id)

    def test_forced_without_schedule(self, redemption_service, ledger, student, verifier,
                                     tomorrow, clock, test_db, assert_consistent):
        clock.set(at(tomorrow, 9, 0))
        result = redemption_service.manual_verify_meal(
            student.cin, MealTime.LUNCH, tomorrow, verifier.id, force=True, notes="card lost"
        )

        assert result.schedule is None
        assert result.transaction.amount == 0
        assert result.transaction.meal_schedule_id is None
        assert "card lost" in result.transaction.description
        assert ledger.get_balance(student.id) == 1000
        action = test_db.execute_one("SELECT action FROM logs WHERE actor_id = ? ORDER BY log_id DESC",
                                     [verifier.id])[0]
        assert action == "meal_force_verify"
        assert_consistent()

    def test_forced_marks_scheduled_row(self, meal_service, redemption_service, student, verifier,
                                        tomorrow, clock):
        schedule = meal_service.schedule_meal(student.id, MealTime.DINNER, tomorrow)
        clock.set(at(tomorrow, 16, 0))
        result = redemption_service.manual_verify_meal(
            student.cin, MealTime.DINNER, tomorrow, verifier.id, force=True
        )
        assert result.schedule.id == schedule.id
        assert result.schedule.status == ScheduleStatus.REDEEMED

    def test_forced_leaves_stale_row_alone(self, meal_service, redemption_service, student,
                                           verifier, tomorrow, clock):
        schedule = meal_service.schedule_meal(student.id, MealTime.LUNCH, tomorrow)
        clock.set(at(tomorrow + timedelta(days=1), 9, 0))

        result = redemption_service.manual_verify_meal(
            student.cin, MealTime.LUNCH, tomorrow, verifier.id, force=True
        )
        assert result.schedule is None
        assert meal_service.get_meal(schedule.id).status == ScheduleStatus.SCHEDULED


class TestRedeemMeal:

    def test_redeems_upcoming_meal(self, meal_service, redemption_service, ledger, student,
                                   tomorrow, clock):
        schedule = meal_service.schedule_meal(student.id, MealTime.DINNER, tomorrow)
        clock.set(at(tomorrow, 15, 0))

        redeemed = redemption_service.redeem_meal(student.id)

        assert redeemed.id == schedule.id
        assert redeemed.status == ScheduleStatus.REDEEMED
        entry = ledger.get_user_transaction_history(student.id, TransactionType.MEAL_REDEMPTION)
        assert entry.transactions[0].processed_by == student.id

    def test_window_edges(self, meal_service, redemption_service, student, tomorrow, clock):
        meal_service.schedule_meal(student.id, MealTime.DINNER, tomorrow)

        clock.set(at(tomorrow, 14, 44))
        with pytest.raises(MealScheduleNotFoundError):
            redemption_service.redeem_meal(student.id)

        clock.set(at(tomorrow, 18, 16))
        with pytest.raises(MealScheduleNotFoundError):
            redemption_service.redeem_meal(student.id)

        clock.set(at(tomorrow, 18, 15))
        assert redemption_service.redeem_meal(student.id).status == ScheduleStatus.REDEEMED

    def test_skips_meals_outside_range(self, meal_service, redemption_service, student, tomorrow, clock):
        meal_service.schedule_meal(student.id, MealTime.LUNCH, tomorrow)
        dinner = meal_service.schedule_meal(student.id, MealTime.DINNER, tomorrow)
        clock.set(at(tomorrow, 15, 0))

        assert redemption_service.redeem_meal(student.id).id == dinner.id

    def test_only_todays_meals(self, meal_service, test_db, policy, clock, ledger, student, tomorrow):
        wide = RedemptionService(test_db, policy.model_copy(update={"self_redeem_after": timedelta(days=2)}),
                                 clock, ledger)
        meal_service.schedule_meal(student.id, MealTime.LUNCH, tomorrow)
        clock.set(at(tomorrow - timedelta(days=1), 20, 0))

        with pytest.raises(MealScheduleNotFoundError):
            wide.redeem_meal(student.id)


class TestMealPeriodStatus:

    def test_during_lunch(self, redemption_service, tomorrow, clock):
        clock.set(at(tomorrow, 12, 30))
        status = redemption_service.get_meal_period_status()
        assert status.current_meal_time == MealTime.LUNCH
        assert status.current_window_end == at(tomorrow, 15, 0)
        assert status.next_meal_time == MealTime.DINNER
        assert status.next_window_start == at(tomorrow, 18, 0)

    def test_after_dinner(self, redemption_service, tomorrow, clock):
        clock.set(at(tomorrow, 22, 0))
        status = redemption_service.get_meal_period_status()
        assert status.current_meal_time is None
        assert status.next_meal_time == MealTime.LUNCH
        assert status.next_window_start == at(tomorrow + timedelta(days=1), 12, 0)


class TestStudentMealStatus:

    def test_stored_and_missing_slots(self, meal_service, redemption_service, student, tomorrow):
        schedule = meal_service.schedule_meal(student.id, MealTime.LUNCH, tomorrow)

        status = redemption_service.get_student_meal_status(student.cin, tomorrow)

        assert status.student_info.user_id == student.id
        assert status.student_info.current_balance == 800
        assert status.meals.day == tomorrow
        assert status.meals.lunch.id == schedule.id
        assert status.meals.lunch.status == SlotStatus.SCHEDULED
        assert status.meals.dinner.id is None
        assert status.meals.dinner.status == SlotStatus.NOT_CREATED

    def test_display_status_follows_clock(self, meal_service, redemption_service, student,
                                          tomorrow, clock):
        meal_service.schedule_meal(student.id, MealTime.LUNCH, tomorrow)
        clock.set(at(tomorrow, 14, 0))

        status = redemption_service.get_student_meal_status(student.cin, tomorrow)
        assert status.meals.lunch.status == SlotStatus.EXPIRED
        assert status.meals.lunch.stored_status == ScheduleStatus.SCHEDULED
        assert status.meals.dinner.status == SlotStatus.NOT_CREATED

    def test_unknown_student(self, redemption_service, tomorrow):
        with pytest.raises(UserNotFoundError):
            redemption_service.get_student_meal_status("NOPE", tomorrow)
