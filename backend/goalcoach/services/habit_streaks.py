"""
Habit Streak Service - Streak calculation over local calendar days
"""

from datetime import datetime, date, timedelta
from typing import Iterable, Optional, Set, Tuple
import logging

from goalcoach.services.time_windows import local_date

logger = logging.getLogger(__name__)


class HabitStreakCalculator:
    """Calculates current and longest streaks from a set of completion days.

    A streak counts consecutive local calendar days with at least one
    completion, whatever the habit's cadence.
    """

    @staticmethod
    def completion_days(completed_at: Iterable[datetime], tz_name: Optional[str]) -> Set[date]:
        """Map completion instants to the distinct local days they fall on"""
        return {local_date(instant, tz_name) for instant in completed_at}

    @staticmethod
    def calculate_streak(
        completion_dates: Iterable[date],
        as_of_date: date
    ) -> Tuple[int, int]:
        """
        Calculate current and longest streaks for a habit

        Args:
            completion_dates: Local dates when the habit was completed (duplicates allowed)
            as_of_date: The user's local "today"

        Returns:
            (current_streak, longest_streak)
        """
        days = set(completion_dates)
        if not days:
            return 0, 0

        current_streak = HabitStreakCalculator._calculate_current_streak(days, as_of_date)
        longest_streak = HabitStreakCalculator._calculate_longest_streak(sorted(days))

        return current_streak, longest_streak

    @staticmethod
    def _calculate_current_streak(days: Set[date], as_of_date: date) -> int:
        """Consecutive days ending today, or ending yesterday if today is not logged yet"""
        cursor = as_of_date
        if cursor not in days:
            cursor -= timedelta(days=1)

        streak = 0
        while cursor in days:
            streak += 1
            cursor -= timedelta(days=1)

        return streak

    @staticmethod
    def _calculate_longest_streak(sorted_days: list) -> int:
        """Longest run of consecutive days anywhere in the history"""
        longest_streak = 0
        run = 0
        last_day = None

        for day in sorted_days:
            if last_day is not None and day == last_day + timedelta(days=1):
                run += 1
            else:
                run = 1
            longest_streak = max(longest_streak, run)
            last_day = day

        return longest_streak
