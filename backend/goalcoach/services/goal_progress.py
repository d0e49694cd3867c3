"""
Goal Progress Service - Blends habit-driven and manual progress into a goal percentage

    habit_based = min(average(min(current / target, 1) * 100 per linked habit), cap)
    combined    = clamp(habit_based + manual_offset, 0, 100)

The cap (90 by default) keeps habit automation from silently completing a
goal; the remainder comes from a manual report or an explicit completion.
"""

from dataclasses import dataclass, asdict
from typing import Iterable, List, Optional, Sequence, Tuple
import logging
import math

from sqlalchemy.orm import Session

from goalcoach.core.config import settings
from goalcoach.core.context import RequestContext
from goalcoach.core.errors import GoalNotFound
from goalcoach.models import GoalInstance, GoalStatus, HabitInstance

logger = logging.getLogger(__name__)


@dataclass
class GoalProgress:
    goal_instance_id: str
    habit_based_progress: float
    manual_offset: float
    combined: float
    percent: int
    is_complete: bool
    habit_count: int

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ProgressUpdate:
    goal_instance_id: str
    old_percent: int
    new_percent: int
    manual_offset: float
    milestone_reached: Optional[int]
    completed: bool


def clamp(value: float, lower: float = 0.0, upper: float = 100.0) -> float:
    return max(lower, min(upper, value))


def round_percent(value: float) -> int:
    """Round half up, so 62.5 displays as 63"""
    return int(math.floor(value + 0.5))


class GoalProgressCalculator:
    """Pure progress arithmetic, independent of storage"""

    @staticmethod
    def habit_fraction(current_value: Optional[float], target_value: Optional[float]) -> float:
        target = target_value or 0
        if target <= 0:
            return 0.0
        return min((current_value or 0) / target, 1.0) * 100

    @staticmethod
    def habit_based_progress(
        counts: Iterable[Tuple[Optional[float], Optional[float]]],
        cap: Optional[float] = None
    ) -> float:
        """Average habit fraction over (current, target) pairs, capped"""
        cap = settings.habit_progress_cap if cap is None else cap
        fractions = [GoalProgressCalculator.habit_fraction(current, target) for current, target in counts]
        if not fractions:
            return 0.0
        return min(sum(fractions) / len(fractions), cap)

    @staticmethod
    def combine(habit_based: float, manual_offset: Optional[float], status: Optional[str] = None) -> float:
        if status == GoalStatus.COMPLETED:
            return 100.0
        return clamp(habit_based + (manual_offset or 0.0))

    @staticmethod
    def milestone_crossed(
        old_percent: float,
        new_percent: float,
        milestones: Optional[Sequence[int]] = None
    ) -> Optional[int]:
        """Highest milestone passed going from old_percent to new_percent, if any"""
        milestones = settings.progress_milestones if milestones is None else milestones
        crossed = [m for m in milestones if old_percent < m <= new_percent]
        return max(crossed) if crossed else None


class ProgressAggregator:
    """Computes and adjusts goal progress for the requesting user"""

    def __init__(self, db: Session, ctx: RequestContext):
        self.db = db
        self.ctx = ctx

    def get_goal(self, goal_instance_id: str, lock: bool = False) -> GoalInstance:
        query = self.db.query(GoalInstance).filter(
            GoalInstance.id == goal_instance_id,
            GoalInstance.user_id == self.ctx.user_id
        )
        if lock:
            query = query.with_for_update()
        goal = query.first()
        if goal is None:
            raise GoalNotFound(goal_instance_id)
        return goal

    def linked_habits(self, goal_instance_id: str) -> List[HabitInstance]:
        return self.db.query(HabitInstance).filter(
            HabitInstance.goal_instance_id == goal_instance_id
        ).all()

    def habit_based_progress_for(self, goal: GoalInstance) -> float:
        habits = self.linked_habits(goal.id)
        return GoalProgressCalculator.habit_based_progress(
            (h.current_value, h.target_value) for h in habits
        )

    def progress_for(self, goal: GoalInstance) -> GoalProgress:
        habits = self.linked_habits(goal.id)
        habit_based = GoalProgressCalculator.habit_based_progress(
            (h.current_value, h.target_value) for h in habits
        )
        manual_offset = goal.manual_progress_offset or 0.0
        combined = GoalProgressCalculator.combine(habit_based, manual_offset, goal.status)
        percent = round_percent(combined)
        return GoalProgress(
            goal_instance_id=goal.id,
            habit_based_progress=habit_based,
            manual_offset=manual_offset,
            combined=combined,
            percent=percent,
            is_complete=goal.status == GoalStatus.COMPLETED or percent >= 100,
            habit_count=len(habits),
        )

    def compute_goal_progress(self, goal_instance_id: str) -> GoalProgress:
        """Read-only; safe to call outside a transaction"""
        return self.progress_for(self.get_goal(goal_instance_id))

    def report_progress(
        self,
        goal_instance_id: str,
        percent: Optional[float] = None,
        increment: Optional[float] = None
    ) -> ProgressUpdate:
        """Record user-reported progress by adjusting the manual offset.

        An explicit percent is reached exactly (capped below 100); otherwise the
        offset grows by an increment clamped to [0, max_progress_increment];
        lowering progress takes an explicit percent.
        """
        try:
            goal = self.get_goal(goal_instance_id, lock=True)
            before = self.progress_for(goal)

            if percent is not None:
                desired = clamp(percent, 0.0, settings.max_reported_progress)
                delta = desired - before.combined
            elif increment is not None:
                delta = clamp(increment, 0.0, settings.max_progress_increment)
            else:
                delta = settings.default_progress_increment

            goal.manual_progress_offset = before.manual_offset + delta
            self.db.flush()

            after = self.progress_for(goal)
            if after.percent >= 100 and goal.status != GoalStatus.COMPLETED:
                goal.status = GoalStatus.COMPLETED
                goal.completed_at = self.ctx.now

            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        milestone = GoalProgressCalculator.milestone_crossed(before.percent, after.percent)
        logger.info(
            f"Goal {goal_instance_id} progress {before.percent}% -> {after.percent}% "
            f"(offset {before.manual_offset:.1f} -> {after.manual_offset:.1f})"
        )
        return ProgressUpdate(
            goal_instance_id=goal_instance_id,
            old_percent=before.percent,
            new_percent=after.percent,
            manual_offset=after.manual_offset,
            milestone_reached=milestone,
            completed=after.percent >= 100,
        )

    def complete_goal(self, goal_instance_id: str) -> GoalProgress:
        """Mark a goal completed; its progress reads 100 from then on"""
        try:
            goal = self.get_goal(goal_instance_id, lock=True)
            if goal.status != GoalStatus.COMPLETED:
                goal.status = GoalStatus.COMPLETED
                goal.completed_at = self.ctx.now
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"🎉 Goal {goal_instance_id} marked complete")
        return self.progress_for(goal)
