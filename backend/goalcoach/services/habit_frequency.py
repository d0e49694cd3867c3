"""
Habit Frequency Policy - Active period and per-period capacity for a habit
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Tuple, Union
import logging
import math

from sqlalchemy import case
from sqlalchemy.orm import Session

from goalcoach.core.config import settings
from goalcoach.core.context import ensure_utc, utcnow
from goalcoach.services.time_windows import Cadence, TimeWindow, resolve_period

logger = logging.getLogger(__name__)

DAYS_PER_PERIOD = {
    Cadence.DAILY: 1,
    Cadence.WEEKLY: 7,
    Cadence.MONTHLY: 30,
}


@dataclass(frozen=True)
class FrequencySettings:
    frequency: Cadence = Cadence.DAILY
    per_period_target: int = 1
    periods_count: int = 1

    @property
    def target_value(self) -> int:
        return self.per_period_target * self.periods_count

    @classmethod
    def from_json(cls, data: Optional[Dict[str, Any]]) -> "FrequencySettings":
        """Parse the stored {frequency, perPeriodTarget, periodsCount} payload"""
        if not data:
            return cls()
        return cls(
            frequency=Cadence.parse(data.get("frequency")),
            per_period_target=_positive_int(data.get("perPeriodTarget"), 1),
            periods_count=_positive_int(data.get("periodsCount"), 1),
        )

    def to_json(self) -> Dict[str, Any]:
        return {
            "frequency": self.frequency.value,
            "perPeriodTarget": self.per_period_target,
            "periodsCount": self.periods_count,
        }


def _positive_int(value: Any, default: int) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return default
    return parsed if parsed > 0 else default


def active_window(
    frequency: Optional[FrequencySettings],
    now_utc: datetime,
    tz_name: Optional[str]
) -> Tuple[TimeWindow, int]:
    """Window of the period containing now_utc and how many completions it allows"""
    frequency = frequency or FrequencySettings()
    window = resolve_period(now_utc, tz_name, frequency.frequency)
    return window, frequency.per_period_target


def calculate_frequency_settings(
    target_date: Optional[datetime],
    cadence: Union[Cadence, str, None] = None,
    per_period_target: Optional[int] = None,
    now: Optional[datetime] = None
) -> FrequencySettings:
    """Spread a per-period target over the time left before a goal's target date"""
    cadence = Cadence.parse(cadence)
    per_period_target = _positive_int(per_period_target, 1)
    now = ensure_utc(now) if now else utcnow()

    if target_date is None:
        days_remaining = settings.default_goal_horizon_days
    else:
        seconds = (ensure_utc(target_date) - now).total_seconds()
        days_remaining = math.ceil(seconds / timedelta(days=1).total_seconds())
    days_remaining = max(1, days_remaining)

    periods_count = max(1, math.ceil(days_remaining / DAYS_PER_PERIOD[cadence]))
    return FrequencySettings(
        frequency=cadence,
        per_period_target=per_period_target,
        periods_count=periods_count,
    )


def frequency_for_habit(db: Session, habit_id: str) -> Optional[FrequencySettings]:
    """Frequency governing a habit's capacity.

    A habit linked to several goals follows its oldest link under an active goal,
    then its oldest link overall. Unlinked habits have no settings (daily, once).
    """
    from goalcoach.models import HabitInstance, GoalInstance, GoalStatus

    instance = (
        db.query(HabitInstance)
        .join(GoalInstance, HabitInstance.goal_instance_id == GoalInstance.id)
        .filter(HabitInstance.habit_definition_id == habit_id)
        .order_by(
            case((GoalInstance.status == GoalStatus.ACTIVE, 0), else_=1),
            HabitInstance.created_at,
            HabitInstance.id,
        )
        .first()
    )
    if instance is None or not instance.frequency_settings:
        return None
    return FrequencySettings.from_json(instance.frequency_settings)
