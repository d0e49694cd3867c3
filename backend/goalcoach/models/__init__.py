from .user import User
from .goal import GoalDefinition, GoalInstance, GoalStatus
from .habit import HabitDefinition, HabitInstance, HabitCompletion
