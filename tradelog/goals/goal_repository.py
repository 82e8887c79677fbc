"""
Goal Repository — persisted goal collection with upsert-by-(type, period)
==========================================================================

Same read-modify-write discipline as the trade ledger: every call loads the
latest persisted goals, applies one change and writes the whole array back.
"""

from __future__ import annotations
import json
import logging
from datetime import datetime
from typing import Any, Callable, List, Mapping, Optional

from tradelog.goals.goal_models import Goal, GoalType
from tradelog.journal.local_store import GOALS_KEY, KeyValueStore
from tradelog.journal.record_parser import parse_collection, to_number
from tradelog.journal.trade_models import random_id, to_iso, utc_now

logger = logging.getLogger("goal_repository")


def parse_goal(raw: Any) -> Optional[Goal]:
    """Validated Goal, or None when the record lacks an id, a known type or a period."""
    if not isinstance(raw, Mapping) or not isinstance(raw.get("id"), str):
        return None
    try:
        goal_type = GoalType(raw.get("type"))
    except ValueError:
        logger.warning("Dropping goal %s with unknown type %r", raw.get("id"), raw.get("type"))
        return None
    period = raw.get("period")
    if not isinstance(period, str):
        return None

    created_at = raw.get("createdAt") if isinstance(raw.get("createdAt"), str) else to_iso(utc_now())
    updated_at = raw.get("updatedAt") if isinstance(raw.get("updatedAt"), str) else created_at
    return Goal(
        id=raw["id"],
        type=goal_type,
        period=period,
        target=to_number(raw.get("target")),
        created_at=created_at,
        updated_at=updated_at,
    )


class GoalRepository:

    def __init__(self, store: KeyValueStore, clock: Optional[Callable[[], datetime]] = None):
        self._store = store
        self._clock = clock or utc_now

    def _now(self) -> str:
        return to_iso(self._clock())

    def list_goals(self) -> List[Goal]:
        raw = self._store.read(GOALS_KEY)
        if not raw:
            return []
        goals = parse_collection(raw, parse_goal)
        self.save_goals(goals)
        return goals

    def save_goals(self, goals: List[Goal]) -> None:
        if not self._store.write(GOALS_KEY, json.dumps([g.to_dict() for g in goals])):
            logger.error("Goal collection not persisted (%d goals)", len(goals))

    def upsert_goal(self, goal_type: GoalType, period: str, target: float) -> List[Goal]:
        goals = self.list_goals()
        now = self._now()
        existing = next((g for g in goals if g.type == goal_type and g.period == period), None)

        if existing is not None:
            goals = [
                Goal(id=g.id, type=g.type, period=g.period, target=target,
                     created_at=g.created_at, updated_at=now)
                if g.id == existing.id else g
                for g in goals
            ]
        else:
            goals = goals + [Goal(
                id=random_id("goal"), type=goal_type, period=period, target=target,
                created_at=now, updated_at=now,
            )]

        self.save_goals(goals)
        return goals

    def delete_goal(self, goal_id: str) -> List[Goal]:
        goals = [g for g in self.list_goals() if g.id != goal_id]
        self.save_goals(goals)
        return goals
