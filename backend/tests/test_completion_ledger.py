import threading
from datetime import datetime, timedelta, timezone

import pytest

from conftest import NOW, days_ago

from goalcoach.core.context import RequestContext
from goalcoach.core.errors import AlreadyAtCapacity, HabitNotFound
from goalcoach.models import GoalStatus, HabitCompletion, HabitDefinition, HabitInstance, User
from goalcoach.services.completion_ledger import CompletionLedger
from goalcoach.services.goal_progress import ProgressAggregator
from goalcoach.services.habit_rebalancer import HabitGoalRebalancer


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


def completions_for(db, habit_id):
    return db.query(HabitCompletion).filter(HabitCompletion.habit_definition_id == habit_id).all()


class TestDailyCapacity:
    def test_second_completion_on_same_local_day_is_rejected(self, db, ctx, factory):
        habit = factory.habit()
        ledger = CompletionLedger(db, ctx)

        ledger.log_completion(habit.id, completed_at=NOW)
        with pytest.raises(AlreadyAtCapacity) as exc_info:
            ledger.log_completion(habit.id, completed_at=NOW + timedelta(hours=2))

        assert str(exc_info.value) == "Habit already completed today"
        assert exc_info.value.count == 1
        assert exc_info.value.capacity == 1
        assert len(completions_for(db, habit.id)) == 1

    def test_next_local_day_is_a_fresh_period(self, db, ctx, factory):
        habit = factory.habit()
        ledger = CompletionLedger(db, ctx)

        ledger.log_completion(habit.id, completed_at=NOW)
        # 00:30 CDT on Thursday
        ledger.log_completion(habit.id, completed_at=utc(2025, 3, 13, 5, 30))

        assert len(completions_for(db, habit.id)) == 2

    def test_late_evening_counts_toward_the_users_day(self, db, factory):
        user = User(email="west@example.com", timezone="America/Los_Angeles")
        db.add(user)
        db.commit()
        habit = factory.habit(user=user)
        ctx = RequestContext.for_user(user, now=utc(2025, 1, 11, 9, 30))
        ledger = CompletionLedger(db, ctx)

        ledger.log_completion(habit.id, completed_at=utc(2025, 1, 10, 20, 0))  # noon PST, Jan 10
        with pytest.raises(AlreadyAtCapacity):
            ledger.log_completion(habit.id, completed_at=utc(2025, 1, 11, 7, 30))  # 23:30 PST, Jan 10
        ledger.log_completion(habit.id, completed_at=utc(2025, 1, 11, 9, 0))  # 01:00 PST, Jan 11

        assert len(completions_for(db, habit.id)) == 2


class TestPeriodCapacity:
    def test_weekly_habit_allows_target_completions_per_week(self, db, ctx, factory):
        habit = factory.habit()
        goal = factory.goal()
        factory.link(habit, goal, target=8, cadence="weekly", per_period_target=2)
        ledger = CompletionLedger(db, ctx)

        ledger.log_completion(habit.id, completed_at=utc(2025, 3, 10, 15, 0))  # Monday
        ledger.log_completion(habit.id, completed_at=utc(2025, 3, 12, 15, 0))  # Wednesday
        with pytest.raises(AlreadyAtCapacity) as exc_info:
            ledger.log_completion(habit.id, completed_at=utc(2025, 3, 14, 15, 0))  # Friday
        ledger.log_completion(habit.id, completed_at=utc(2025, 3, 17, 15, 0))  # next Monday

        assert str(exc_info.value) == "Habit already completed 2/2 times for this weekly period"
        assert exc_info.value.cadence == "weekly"
        assert len(completions_for(db, habit.id)) == 3

    def test_period_status_reports_count_and_capacity(self, db, ctx, factory):
        habit = factory.habit()
        goal = factory.goal()
        factory.link(habit, goal, target=8, cadence="weekly", per_period_target=2)
        ledger = CompletionLedger(db, ctx)

        fresh = ledger.period_status(habit.id)
        ledger.log_completion(habit.id, completed_at=utc(2025, 3, 10, 15, 0))
        logged = ledger.period_status(habit.id)

        assert (fresh.state, fresh.count, fresh.capacity) == ("not_yet_logged", 0, 2)
        assert (logged.state, logged.count, logged.can_complete) == ("logged", 1, True)
        assert logged.window.start == utc(2025, 3, 10, 5, 0)

        ledger.log_completion(habit.id, completed_at=NOW)
        full = ledger.period_status(habit.id)
        assert full.state == "at_capacity"
        assert not full.can_complete

    def test_completion_slots_are_numbered_within_the_period(self, db, ctx, factory):
        habit = factory.habit()
        goal = factory.goal()
        factory.link(habit, goal, target=9, cadence="monthly", per_period_target=3)
        ledger = CompletionLedger(db, ctx)

        slots = [
            ledger.log_completion(habit.id, completed_at=NOW - timedelta(days=n)).completion.period_slot
            for n in (3, 2, 1)
        ]

        assert slots == [0, 1, 2]


class TestOwnership:
    def test_unknown_habit(self, db, ctx):
        with pytest.raises(HabitNotFound):
            CompletionLedger(db, ctx).log_completion("does-not-exist", completed_at=NOW)

    def test_other_users_habit_is_not_found(self, db, ctx, factory):
        stranger = User(email="stranger@example.com", timezone="UTC")
        db.add(stranger)
        db.commit()
        habit = factory.habit(user=stranger)

        with pytest.raises(HabitNotFound):
            CompletionLedger(db, ctx).log_completion(habit.id, completed_at=NOW)
        assert completions_for(db, habit.id) == []


class TestDerivedFields:
    def test_completion_updates_cached_counters_and_streaks(self, db, ctx, factory):
        habit = factory.habit()
        factory.completion(habit, days_ago(2))
        factory.completion(habit, days_ago(1))

        result = CompletionLedger(db, ctx).log_completion(habit.id, completed_at=NOW, notes="5k easy")

        assert (result.current_streak, result.longest_streak) == (3, 3)
        habit = db.get(HabitDefinition, habit.id)
        assert habit.global_completions == 3
        assert habit.current_streak == 3
        assert habit.longest_streak == 3
        assert result.completion.notes == "5k easy"

    def test_longest_streak_never_decreases(self, db, ctx, factory):
        habit = factory.habit()
        habit.longest_streak = 7
        db.commit()

        result = CompletionLedger(db, ctx).log_completion(habit.id, completed_at=NOW)

        assert result.longest_streak == 1
        assert db.get(HabitDefinition, habit.id).longest_streak == 7

    def test_refresh_cached_streaks_recomputes_from_ledger(self, db, ctx, factory):
        habit = factory.habit()
        for n in (4, 3, 1, 0):
            factory.completion(habit, days_ago(n))

        current, longest = CompletionLedger(db, ctx).refresh_cached_streaks(habit.id)

        assert (current, longest) == (2, 2)
        assert db.get(HabitDefinition, habit.id).global_completions == 4

    def test_completion_counts_toward_every_linked_goal(self, db, ctx, factory):
        habit = factory.habit()
        first = factory.goal(title="Get fit")
        second = factory.goal(title="Run a 10k")
        archived = factory.goal(title="Old plan", status=GoalStatus.ARCHIVED)
        first_link = factory.link(habit, first, target=10)
        second_link = factory.link(habit, second, target=4, current=1)
        archived_link = factory.link(habit, archived, target=10)

        result = CompletionLedger(db, ctx).log_completion(habit.id, completed_at=NOW)

        changes = {change.goal_instance_id: change for change in result.goals}
        assert set(changes) == {first.id, second.id}
        assert (changes[first.id].old_percent, changes[first.id].new_percent) == (0, 10)
        assert changes[first.id].milestone_reached is None
        assert (changes[second.id].old_percent, changes[second.id].new_percent) == (25, 50)
        assert changes[second.id].milestone_reached == 50

        assert db.get(HabitInstance, first_link.id).current_value == 1
        assert db.get(HabitInstance, second_link.id).current_value == 2
        assert db.get(HabitInstance, archived_link.id).current_value == 0
        assert db.get(HabitInstance, first_link.id).goal_specific_streak == 1

    def test_rejected_completion_leaves_goals_untouched(self, db, ctx, factory):
        habit = factory.habit()
        link = factory.link(habit, factory.goal(), target=10)
        ledger = CompletionLedger(db, ctx)

        ledger.log_completion(habit.id, completed_at=NOW)
        with pytest.raises(AlreadyAtCapacity):
            ledger.log_completion(habit.id, completed_at=NOW)

        assert db.get(HabitInstance, link.id).current_value == 1
        assert db.get(HabitDefinition, habit.id).global_completions == 1


    def test_failure_while_updating_goals_rolls_back_everything(self, db, ctx, factory, monkeypatch):
        habit = factory.habit()
        factory.completion(habit, days_ago(3))
        habit.global_completions = 1
        habit.longest_streak = 4
        db.commit()
        first = factory.link(habit, factory.goal(title="Get fit"), target=10, current=2)
        second = factory.link(habit, factory.goal(title="Run a 10k"), target=4, current=1)

        progress_for = ProgressAggregator.progress_for
        calls = []

        def flaky_progress_for(self, goal):
            calls.append(goal.id)
            # before and after for the first goal, then fail on the second
            if len(calls) == 3:
                raise RuntimeError("progress store unavailable")
            return progress_for(self, goal)

        monkeypatch.setattr(ProgressAggregator, "progress_for", flaky_progress_for)

        with pytest.raises(RuntimeError):
            CompletionLedger(db, ctx).log_completion(habit.id, completed_at=NOW)

        assert len(completions_for(db, habit.id)) == 1
        stored = db.get(HabitDefinition, habit.id)
        assert stored.global_completions == 1
        assert stored.longest_streak == 4
        assert stored.current_streak == 0
        assert db.get(HabitInstance, first.id).current_value == 2
        assert db.get(HabitInstance, second.id).current_value == 1


class TestCadenceChanges:
    def test_backdated_completion_after_switch_from_weekly_to_daily(self, db, ctx, factory):
        habit = factory.habit()
        weekly_goal = factory.goal(title="Run twice a week")
        factory.link(habit, weekly_goal, target=8, cadence="weekly", per_period_target=2)
        ledger = CompletionLedger(db, ctx)
        ledger.log_completion(habit.id, completed_at=utc(2025, 3, 11, 15, 0))  # Tuesday
        ledger.log_completion(habit.id, completed_at=utc(2025, 3, 12, 15, 0))  # Wednesday

        HabitGoalRebalancer(db, ctx).swap_habits(weekly_goal.id, [habit.id])
        factory.link(habit, factory.goal(title="Run every day"), target=30, cadence="daily")

        # Monday's local day starts at the same instant as the old weekly period
        result = ledger.log_completion(habit.id, completed_at=utc(2025, 3, 10, 15, 0))

        assert result.completion.period_start.replace(tzinfo=None) == datetime(2025, 3, 10, 5, 0)
        assert result.completion.period_slot == 2
        assert len(completions_for(db, habit.id)) == 3

    def test_daily_capacity_still_applies_after_the_switch(self, db, ctx, factory):
        habit = factory.habit()
        weekly_goal = factory.goal(title="Run twice a week")
        factory.link(habit, weekly_goal, target=8, cadence="weekly", per_period_target=2)
        ledger = CompletionLedger(db, ctx)
        ledger.log_completion(habit.id, completed_at=utc(2025, 3, 11, 15, 0))

        HabitGoalRebalancer(db, ctx).swap_habits(weekly_goal.id, [habit.id])
        factory.link(habit, factory.goal(title="Run every day"), target=30, cadence="daily")

        ledger.log_completion(habit.id, completed_at=utc(2025, 3, 10, 15, 0))
        with pytest.raises(AlreadyAtCapacity):
            ledger.log_completion(habit.id, completed_at=utc(2025, 3, 10, 20, 0))

def test_concurrent_completions_respect_capacity(db, session_factory, ctx, factory):
    habit_id = factory.habit().id
    # Release the fixture session's write lock before the workers start
    db.rollback()
    workers = 5
    barrier = threading.Barrier(workers)
    outcomes = []
    lock = threading.Lock()

    def complete():
        session = session_factory()
        try:
            barrier.wait()
            CompletionLedger(session, ctx).log_completion(habit_id, completed_at=NOW)
            outcome = "ok"
        except AlreadyAtCapacity:
            outcome = "full"
        finally:
            session.close()
        with lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=complete) for _ in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(outcomes) == ["full"] * (workers - 1) + ["ok"]

    session = session_factory()
    try:
        assert len(completions_for(session, habit_id)) == 1
    finally:
        session.close()
