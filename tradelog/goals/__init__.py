"""
Goals — monthly targets and their progress against the trade ledger.

  goal_models.py      — Goal / GoalProgress dataclasses
  goal_repository.py  — persisted goals, upsert by (type, period)
  goal_progress.py    — realized and with-unrealized progress per goal
  reminders.py        — weekly review and month-end goal check reminders
"""

from tradelog.goals.goal_models import Goal, GoalProgress, GoalStatus, GoalType
from tradelog.goals.goal_progress import evaluate, evaluate_goal
from tradelog.goals.goal_repository import GoalRepository
from tradelog.goals.reminders import Reminder, ReminderKind, ReminderService

__all__ = [
    "Goal", "GoalProgress", "GoalStatus", "GoalType",
    "evaluate", "evaluate_goal",
    "GoalRepository",
    "Reminder", "ReminderKind", "ReminderService",
]
