"""
Goal Progress Evaluator
=======================

Per goal: filter trades to the goal's month, then compute two readings.
  current                  — closed trades only, realized P&L
  current_with_unrealized  — every trade of the month, total P&L
"""

from __future__ import annotations
import math
from typing import Iterable, List

from tradelog.goals.goal_models import Goal, GoalProgress, GoalStatus, GoalType
from tradelog.journal.trade_models import Trade, TradeStatus

ON_TRACK_RATIO = 0.7


def clamp_percent(value: float) -> float:
    if not math.isfinite(value):
        return 0.0
    return max(0.0, min(100.0, value))


def status_for(current: float, target: float) -> GoalStatus:
    # A zero target means no meaningful goal was set.
    if target == 0:
        return GoalStatus.ON_TRACK
    if current >= target:
        return GoalStatus.ACHIEVED
    return GoalStatus.ON_TRACK if current >= target * ON_TRACK_RATIO else GoalStatus.AT_RISK


def in_period(date: str, period: str) -> bool:
    return date[:7] == period


def _win_rate(wins: int, total: int) -> float:
    return wins / total * 100 if total > 0 else 0.0


def _progress(value: float, target: float) -> float:
    return 0.0 if target == 0 else clamp_percent(value / target * 100)


def evaluate_goal(goal: Goal, trades: Iterable[Trade]) -> GoalProgress:
    period_trades = [t for t in trades if in_period(t.date, goal.period)]
    closed = [t for t in period_trades if t.status == TradeStatus.CLOSED]

    current = 0.0
    with_unrealized = 0.0
    if goal.type == GoalType.MONTHLY_PNL:
        current = sum(t.realized_pnl for t in closed)
        with_unrealized = sum(t.total_pnl for t in period_trades)
    elif goal.type == GoalType.MONTHLY_TRADE_COUNT:
        current = float(len(closed))
        with_unrealized = float(len(period_trades))
    elif goal.type == GoalType.MONTHLY_WIN_RATE:
        current = _win_rate(sum(1 for t in closed if t.realized_pnl > 0), len(closed))
        with_unrealized = _win_rate(sum(1 for t in period_trades if t.total_pnl > 0), len(period_trades))

    return GoalProgress(
        goal=goal,
        current=current,
        current_with_unrealized=with_unrealized,
        status=status_for(current, goal.target),
        status_with_unrealized=status_for(with_unrealized, goal.target),
        progress_percent=_progress(current, goal.target),
        progress_percent_with_unrealized=_progress(with_unrealized, goal.target),
    )


def evaluate(goals: Iterable[Goal], trades: Iterable[Trade]) -> List[GoalProgress]:
    trades = list(trades)
    return [evaluate_goal(goal, trades) for goal in goals]
