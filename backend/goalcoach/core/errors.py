"""
Typed errors that cross the engine boundary.

Calendar and arithmetic problems are handled locally with safe defaults; only
identity and capacity conflicts are raised to callers.
"""

from typing import Optional


class EngineError(Exception):
    """Base class for errors surfaced by the habit/goal engine"""


class AlreadyAtCapacity(EngineError):
    """The habit was already logged the maximum number of times for its period.

    Callers should present this as "already done" and never retry automatically.
    """

    def __init__(self, habit_id: str, count: int, capacity: int, cadence: str, window=None):
        self.habit_id = habit_id
        self.count = count
        self.capacity = capacity
        self.cadence = cadence
        self.window = window
        if cadence == "daily" and capacity == 1:
            message = "Habit already completed today"
        else:
            message = f"Habit already completed {count}/{capacity} times for this {cadence} period"
        super().__init__(message)


class NotFound(EngineError):
    entity = "Resource"

    def __init__(self, identifier: Optional[str] = None):
        self.identifier = identifier
        super().__init__(f"{self.entity} not found")


class HabitNotFound(NotFound):
    entity = "Habit"


class GoalNotFound(NotFound):
    entity = "Goal"
