"""
Reminders — recurring journal chores derived from completion markers
=====================================================================

  weekly_review          due 7 days after the last completed review; shown
                         until the first review has been completed
  month_end_goal_check   shown from the 25th of a month until it is
                         completed for that month

Only the completion markers are persisted. The active list is recomputed
from the clock on every call, so nothing has to be scheduled.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from enum import Enum
from typing import Callable, List, Optional

from tradelog.journal.local_store import MONTH_END_KEY, WEEKLY_REVIEW_KEY, KeyValueStore
from tradelog.journal.trade_models import to_iso, utc_now

logger = logging.getLogger("reminders")

REVIEW_INTERVAL = timedelta(days=7)
MONTH_END_DAY = 25


class ReminderKind(str, Enum):
    WEEKLY_REVIEW = "weekly_review"
    MONTH_END_GOAL_CHECK = "month_end_goal_check"


@dataclass
class Reminder:
    kind: ReminderKind
    title: str
    description: str
    due_at: str                  # YYYY-MM-DD
    is_overdue: bool

    @property
    def id(self) -> str:
        return self.kind.value

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "title": self.title,
            "description": self.description,
            "dueAt": self.due_at,
            "isOverdue": self.is_overdue,
        }


def period_of(day: date) -> str:
    return f"{day.year:04d}-{day.month:02d}"


def _is_overdue(now: datetime, due: date) -> bool:
    return now > datetime.combine(due, time.min, tzinfo=timezone.utc)


class ReminderService:

    def __init__(self, store: KeyValueStore, clock: Optional[Callable[[], datetime]] = None):
        self._store = store
        self._clock = clock or utc_now

    def _now(self) -> datetime:
        now = self._clock()
        if now.tzinfo is None:
            return now.replace(tzinfo=timezone.utc)
        return now.astimezone(timezone.utc)

    def _last_review(self) -> Optional[datetime]:
        raw = self._store.read(WEEKLY_REVIEW_KEY)
        if not raw:
            return None
        try:
            completed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            logger.warning("Ignoring unreadable weekly review marker %r", raw)
            return None
        if completed.tzinfo is None:
            completed = completed.replace(tzinfo=timezone.utc)
        return completed

    def list_active(self) -> List[Reminder]:
        now = self._now()
        today = now.date()
        reminders: List[Reminder] = []

        last_review = self._last_review()
        review_due = today if last_review is None else last_review.astimezone(timezone.utc).date() + REVIEW_INTERVAL
        if last_review is None or today >= review_due:
            reminders.append(Reminder(
                kind=ReminderKind.WEEKLY_REVIEW,
                title="Weekly Journal Review",
                description="Review your trades and journal notes for the last 7 days.",
                due_at=review_due.isoformat(),
                is_overdue=_is_overdue(now, review_due),
            ))

        if today.day >= MONTH_END_DAY and self._store.read(MONTH_END_KEY) != period_of(today):
            month_end_due = today.replace(day=MONTH_END_DAY)
            reminders.append(Reminder(
                kind=ReminderKind.MONTH_END_GOAL_CHECK,
                title="Month-End Goal Check",
                description="Review your monthly goals and progress before month close.",
                due_at=month_end_due.isoformat(),
                is_overdue=_is_overdue(now, month_end_due),
            ))

        return reminders

    def complete(self, kind: ReminderKind) -> List[Reminder]:
        now = self._now()
        if kind == ReminderKind.WEEKLY_REVIEW:
            key, value = WEEKLY_REVIEW_KEY, to_iso(now)
        else:
            key, value = MONTH_END_KEY, period_of(now.date())
        if not self._store.write(key, value):
            logger.error("Reminder %s completion not persisted", kind.value)
        return self.list_active()
