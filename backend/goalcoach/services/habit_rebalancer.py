"""
Habit Rebalancer - Swap the habits behind a goal without moving its progress

The combined percentage shown before the swap is preserved by re-solving the
goal's manual offset against the new habit set:

    offset = clamp(combined_before - habit_based_after, 0, 100)
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence
import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from goalcoach.core.context import RequestContext
from goalcoach.models import GoalInstance, HabitCompletion, HabitDefinition, HabitInstance
from goalcoach.services.goal_progress import ProgressAggregator, clamp
from goalcoach.services.habit_frequency import calculate_frequency_settings

logger = logging.getLogger(__name__)


@dataclass
class NewHabit:
    title: str
    description: Optional[str] = None
    cadence: Optional[str] = None
    per_period_target: Optional[int] = None


@dataclass
class AddedHabit:
    habit_definition_id: str
    habit_instance_id: str
    title: str


@dataclass
class RebalanceResult:
    goal_instance_id: str
    removed: List[str] = field(default_factory=list)
    added: List[AddedHabit] = field(default_factory=list)
    combined_before: float = 0.0
    habit_based_after: float = 0.0
    manual_offset: float = 0.0


class HabitGoalRebalancer:
    def __init__(self, db: Session, ctx: RequestContext):
        self.db = db
        self.ctx = ctx
        self.aggregator = ProgressAggregator(db, ctx)

    def swap_habits(
        self,
        goal_instance_id: str,
        remove_habit_ids: Sequence[str] = (),
        new_habits: Sequence[NewHabit] = ()
    ) -> RebalanceResult:
        """Detach and attach habits on a goal in one transaction"""
        remove_habit_ids = list(dict.fromkeys(remove_habit_ids or []))
        try:
            # Habit rows before the goal row, the order log_completion takes them in
            self._lock_habits(remove_habit_ids)
            goal = self.aggregator.get_goal(goal_instance_id, lock=True)
            before = self.aggregator.progress_for(goal)

            removed = [
                habit_id for habit_id in remove_habit_ids
                if self._detach(goal, habit_id)
            ]
            added = [self._attach(goal, new_habit) for new_habit in new_habits or []]
            self.db.flush()

            habit_based_after = self.aggregator.habit_based_progress_for(goal)
            offset = clamp(before.combined - habit_based_after)
            goal.manual_progress_offset = offset

            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            f"🔄 Rebalanced goal {goal_instance_id}: -{len(removed)} +{len(added)} habits, "
            f"progress held at {before.combined:.1f}% (habits {habit_based_after:.1f} + offset {offset:.1f})"
        )
        return RebalanceResult(
            goal_instance_id=goal_instance_id,
            removed=removed,
            added=added,
            combined_before=before.combined,
            habit_based_after=habit_based_after,
            manual_offset=offset,
        )

    def _lock_habits(self, habit_ids: Sequence[str]) -> List[HabitDefinition]:
        if not habit_ids:
            return []
        return (
            self.db.query(HabitDefinition)
            .filter(
                HabitDefinition.id.in_(habit_ids),
                HabitDefinition.user_id == self.ctx.user_id
            )
            .order_by(HabitDefinition.id)
            .with_for_update()
            .all()
        )

    def _detach(self, goal: GoalInstance, habit_id: str) -> bool:
        instance = self.db.query(HabitInstance).filter(
            HabitInstance.goal_instance_id == goal.id,
            HabitInstance.habit_definition_id == habit_id
        ).first()
        if instance is None:
            logger.warning(f"Habit {habit_id} is not linked to goal {goal.id}, nothing to remove")
            return False

        self.db.delete(instance)
        self.db.flush()

        remaining = self.db.query(func.count(HabitInstance.id)).filter(
            HabitInstance.habit_definition_id == habit_id
        ).scalar() or 0
        if remaining == 0:
            # Keep the definition and its completions; only hide it
            habit = self.db.query(HabitDefinition).filter(
                HabitDefinition.id == habit_id,
                HabitDefinition.user_id == self.ctx.user_id
            ).first()
            if habit is not None:
                habit.is_active = False
                habit.updated_at = self.ctx.now
                has_history = self.db.query(HabitCompletion.id).filter(
                    HabitCompletion.habit_definition_id == habit_id
                ).first() is not None
                reason = "preserving completion history" if has_history else "no completion history"
                logger.info(f"Archived orphaned habit {habit_id} ({reason})")

        return True

    def _attach(self, goal: GoalInstance, new_habit: NewHabit) -> AddedHabit:
        title = (new_habit.title or "").strip()
        if not title:
            raise ValueError("Habit title is required")

        habit = self.db.query(HabitDefinition).filter(
            HabitDefinition.user_id == self.ctx.user_id,
            HabitDefinition.name == title
        ).order_by(HabitDefinition.created_at, HabitDefinition.id).first()

        if habit is None:
            habit = HabitDefinition(
                user_id=self.ctx.user_id,
                name=title,
                description=new_habit.description or "",
                is_active=True,
            )
            self.db.add(habit)
            self.db.flush()
        elif not habit.is_active:
            habit.is_active = True
            habit.updated_at = self.ctx.now
            logger.info(f"Reactivated archived habit {habit.id} for new goal link")

        existing = self.db.query(HabitInstance).filter(
            HabitInstance.goal_instance_id == goal.id,
            HabitInstance.habit_definition_id == habit.id
        ).first()
        if existing is not None:
            logger.info(f"Habit {habit.id} already linked to goal {goal.id}, keeping existing link")
            return AddedHabit(habit_definition_id=habit.id, habit_instance_id=existing.id, title=title)

        frequency = calculate_frequency_settings(
            goal.target_date, new_habit.cadence, new_habit.per_period_target, now=self.ctx.now
        )
        instance = HabitInstance(
            habit_definition_id=habit.id,
            goal_instance_id=goal.id,
            user_id=self.ctx.user_id,
            target_value=frequency.target_value,
            current_value=0,
            goal_specific_streak=0,
            frequency_settings=frequency.to_json(),
        )
        self.db.add(instance)
        self.db.flush()

        return AddedHabit(habit_definition_id=habit.id, habit_instance_id=instance.id, title=title)
