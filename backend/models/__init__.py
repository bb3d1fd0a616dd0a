# Import all models so they register with SQLAlchemy Base.metadata
# This ensures Base.metadata.create_all() creates all tables

from models.routine import RoutineTemplate
from models.routine_log import RoutineLog
from models.goal import Goal, GoalProgressLog, goal_routines
from models.notification import Notification

__all__ = [
    "RoutineTemplate",
    "RoutineLog",
    "Goal",
    "GoalProgressLog",
    "goal_routines",
    "Notification",
]
