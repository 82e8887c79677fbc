"""Goal models: a numeric target for one calendar month, plus its computed progress."""

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum


class GoalType(str, Enum):
    MONTHLY_PNL = "monthly_pnl"
    MONTHLY_WIN_RATE = "monthly_win_rate"
    MONTHLY_TRADE_COUNT = "monthly_trade_count"


class GoalStatus(str, Enum):
    ON_TRACK = "on_track"
    AT_RISK = "at_risk"
    ACHIEVED = "achieved"


@dataclass
class Goal:
    id: str
    type: GoalType
    period: str                  # YYYY-MM
    target: float
    created_at: str = ""
    updated_at: str = ""

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type.value,
            "period": self.period,
            "target": self.target,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


@dataclass
class GoalProgress:
    """Ephemeral; recomputed from the goal and the trades of its period."""
    goal: Goal
    current: float
    current_with_unrealized: float
    status: GoalStatus
    status_with_unrealized: GoalStatus
    progress_percent: float
    progress_percent_with_unrealized: float

    def to_dict(self) -> dict:
        return {
            "goal": self.goal.to_dict(),
            "current": self.current,
            "currentWithUnrealized": self.current_with_unrealized,
            "status": self.status.value,
            "statusWithUnrealized": self.status_with_unrealized.value,
            "progressPercent": self.progress_percent,
            "progressPercentWithUnrealized": self.progress_percent_with_unrealized,
        }
