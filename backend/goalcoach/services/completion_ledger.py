"""
Completion Ledger - Append-only habit completions, capacity checks and streaks

Every completion is stamped with the start of the frequency period it counts
against and the lowest slot index still free under that start. The unique constraint on
(habit, user, period_start, slot) rejects a second writer that raced past the
capacity check, and the habit row lock serializes writers where the database
supports it.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Tuple
import logging

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from goalcoach.core.config import settings
from goalcoach.core.context import RequestContext, ensure_utc
from goalcoach.core.errors import AlreadyAtCapacity, HabitNotFound
from goalcoach.models import GoalInstance, GoalStatus, HabitCompletion, HabitDefinition, HabitInstance
from goalcoach.services.goal_progress import GoalProgressCalculator, ProgressAggregator
from goalcoach.services.habit_frequency import FrequencySettings, active_window, frequency_for_habit
from goalcoach.services.habit_streaks import HabitStreakCalculator
from goalcoach.services.time_windows import TimeWindow, local_date

logger = logging.getLogger(__name__)


@dataclass
class GoalProgressChange:
    goal_instance_id: str
    habit_instance_id: str
    old_percent: int
    new_percent: int
    milestone_reached: Optional[int] = None


@dataclass
class CompletionResult:
    completion: HabitCompletion
    current_streak: int
    longest_streak: int
    goals: List[GoalProgressChange] = field(default_factory=list)


@dataclass
class PeriodStatus:
    habit_id: str
    frequency: FrequencySettings
    window: TimeWindow
    count: int
    capacity: int

    @property
    def can_complete(self) -> bool:
        return self.count < self.capacity

    @property
    def state(self) -> str:
        if self.count == 0:
            return "not_yet_logged"
        if self.count < self.capacity:
            return "logged"
        return "at_capacity"


class CompletionLedger:
    """Records completions for the requesting user and keeps derived fields fresh"""

    def __init__(self, db: Session, ctx: RequestContext):
        self.db = db
        self.ctx = ctx

    def get_habit(self, habit_id: str, lock: bool = False) -> HabitDefinition:
        query = self.db.query(HabitDefinition).filter(
            HabitDefinition.id == habit_id,
            HabitDefinition.user_id == self.ctx.user_id
        )
        if lock:
            query = query.with_for_update()
        habit = query.first()
        if habit is None:
            raise HabitNotFound(habit_id)
        return habit

    def count_in_window(self, habit_id: str, window: TimeWindow) -> int:
        return self.db.query(func.count(HabitCompletion.id)).filter(
            HabitCompletion.habit_definition_id == habit_id,
            HabitCompletion.user_id == self.ctx.user_id,
            HabitCompletion.completed_at >= window.start,
            HabitCompletion.completed_at <= window.end
        ).scalar() or 0

    def period_status(self, habit_id: str, at: Optional[datetime] = None) -> PeriodStatus:
        """Where the habit stands in the period containing at (default: now)"""
        habit = self.get_habit(habit_id)
        frequency = frequency_for_habit(self.db, habit.id) or FrequencySettings()
        window, capacity = active_window(frequency, ensure_utc(at or self.ctx.now), self.ctx.timezone)
        return PeriodStatus(
            habit_id=habit.id,
            frequency=frequency,
            window=window,
            count=self.count_in_window(habit.id, window),
            capacity=capacity,
        )

    def log_completion(
        self,
        habit_id: str,
        completed_at: Optional[datetime] = None,
        notes: Optional[str] = None
    ) -> CompletionResult:
        """Append a completion unless the habit's current period is full.

        Raises AlreadyAtCapacity when it is, HabitNotFound when the habit does
        not belong to the user. The insert, counters and goal propagation commit
        together or not at all.
        """
        completed_at = ensure_utc(completed_at or self.ctx.now)
        attempts = max(1, settings.completion_insert_attempts)

        for attempt in range(1, attempts + 1):
            try:
                result = self._append(habit_id, completed_at, notes)
                self.db.commit()
            except IntegrityError:
                # Another writer took this period slot first; recount and retry
                self.db.rollback()
                logger.warning(f"Completion slot conflict for habit {habit_id} (attempt {attempt}/{attempts})")
                if attempt == attempts:
                    raise
                continue
            except AlreadyAtCapacity as e:
                self.db.rollback()
                logger.warning(f"Habit {habit_id} at capacity: {e}")
                raise
            except Exception:
                self.db.rollback()
                raise

            logger.info(
                f"✅ Habit {habit_id} completed at {completed_at.isoformat()} "
                f"(streak {result.current_streak}, longest {result.longest_streak}, "
                f"{len(result.goals)} goal(s) updated)"
            )
            return result

    def _append(self, habit_id: str, completed_at: datetime, notes: Optional[str]) -> CompletionResult:
        habit = self.get_habit(habit_id, lock=True)
        frequency = frequency_for_habit(self.db, habit.id) or FrequencySettings()
        window, capacity = active_window(frequency, completed_at, self.ctx.timezone)

        count = self.count_in_window(habit.id, window)
        if count >= capacity:
            raise AlreadyAtCapacity(habit.id, count, capacity, frequency.frequency.value, window)

        completion = HabitCompletion(
            habit_definition_id=habit.id,
            user_id=self.ctx.user_id,
            completed_at=completed_at,
            notes=notes or None,
            period_start=window.start,
            period_slot=self._free_slot(habit.id, window.start),
        )
        self.db.add(completion)
        self.db.flush()

        current_streak, longest_streak = self.compute_streaks(habit.id)
        self._refresh_habit_cache(habit, current_streak, longest_streak)
        goals = self._propagate_to_goals(habit, current_streak)

        return CompletionResult(
            completion=completion,
            current_streak=current_streak,
            longest_streak=longest_streak,
            goals=goals,
        )

    def _free_slot(self, habit_id: str, period_start: datetime) -> int:
        """Lowest slot unused under period_start.

        Rows stamped under an earlier cadence can share the same period start,
        so the slot is not simply the count of completions in the window.
        """
        taken = {
            row.period_slot for row in self.db.query(HabitCompletion.period_slot).filter(
                HabitCompletion.habit_definition_id == habit_id,
                HabitCompletion.user_id == self.ctx.user_id,
                HabitCompletion.period_start == period_start
            )
        }
        slot = 0
        while slot in taken:
            slot += 1
        return slot

    def compute_streaks(
        self,
        habit_id: str,
        user_id: Optional[str] = None,
        tz_name: Optional[str] = None
    ) -> Tuple[int, int]:
        """(current, longest) streak recomputed from the ledger"""
        user_id = user_id or self.ctx.user_id
        tz_name = tz_name or self.ctx.timezone

        rows = self.db.query(HabitCompletion.completed_at).filter(
            HabitCompletion.habit_definition_id == habit_id,
            HabitCompletion.user_id == user_id
        ).all()

        days = HabitStreakCalculator.completion_days((row.completed_at for row in rows), tz_name)
        today = local_date(self.ctx.now, tz_name)
        return HabitStreakCalculator.calculate_streak(days, today)

    def refresh_cached_streaks(self, habit_id: str) -> Tuple[int, int]:
        """Rewrite a habit's cached streak fields from the ledger"""
        try:
            habit = self.get_habit(habit_id, lock=True)
            current_streak, longest_streak = self.compute_streaks(habit.id)
            self._refresh_habit_cache(habit, current_streak, longest_streak)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return current_streak, longest_streak

    def _refresh_habit_cache(self, habit: HabitDefinition, current_streak: int, longest_streak: int):
        habit.global_completions = self.db.query(func.count(HabitCompletion.id)).filter(
            HabitCompletion.habit_definition_id == habit.id
        ).scalar() or 0
        habit.current_streak = current_streak
        habit.longest_streak = max(habit.longest_streak or 0, longest_streak)
        habit.updated_at = self.ctx.now

    def _propagate_to_goals(self, habit: HabitDefinition, current_streak: int) -> List[GoalProgressChange]:
        """Count the completion toward every non-archived goal the habit feeds"""
        aggregator = ProgressAggregator(self.db, self.ctx)
        rows = (
            self.db.query(HabitInstance, GoalInstance)
            .join(GoalInstance, HabitInstance.goal_instance_id == GoalInstance.id)
            .filter(
                HabitInstance.habit_definition_id == habit.id,
                GoalInstance.user_id == self.ctx.user_id,
                GoalInstance.status != GoalStatus.ARCHIVED
            )
            .order_by(HabitInstance.created_at, HabitInstance.id)
            .with_for_update()
            .all()
        )

        changes = []
        for instance, goal in rows:
            before = aggregator.progress_for(goal)

            instance.current_value = (instance.current_value or 0) + 1
            instance.goal_specific_streak = current_streak
            instance.updated_at = self.ctx.now
            self.db.flush()

            after = aggregator.progress_for(goal)
            milestone = GoalProgressCalculator.milestone_crossed(before.percent, after.percent)
            if milestone:
                logger.info(f"🎯 Goal {goal.id} reached {milestone}% milestone")

            changes.append(GoalProgressChange(
                goal_instance_id=goal.id,
                habit_instance_id=instance.id,
                old_percent=before.percent,
                new_percent=after.percent,
                milestone_reached=milestone,
            ))

        return changes
