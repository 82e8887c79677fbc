"""
Journal Analytics — grouped performance over the trade ledger
=============================================================

Groups trades by setup, emotion and weekday and reports, per group, the
trade count, win rate and P&L. Scores use total P&L (realized + marked)
by default, or realized only when unrealized is excluded.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass, field
from datetime import date as date_cls
from typing import Callable, Dict, Iterable, List, Optional

from tradelog.journal.trade_math import round_to_2
from tradelog.journal.trade_models import Trade

logger = logging.getLogger("journal_analytics")

WEEK_DAYS = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]
MIN_TRADES_FOR_RANKING = 3


@dataclass
class GroupPerformance:
    key: str
    trades: int
    win_rate: float
    pnl: float

    def to_dict(self) -> dict:
        return {"key": self.key, "trades": self.trades, "winRate": self.win_rate, "pnl": self.pnl}


@dataclass
class AnalyticsSummary:
    setup_performance: List[GroupPerformance] = field(default_factory=list)
    emotion_performance: List[GroupPerformance] = field(default_factory=list)
    weekday_performance: List[GroupPerformance] = field(default_factory=list)
    best_setup: Optional[GroupPerformance] = None
    worst_setup: Optional[GroupPerformance] = None

    def to_dict(self) -> dict:
        return {
            "setupPerformance": [g.to_dict() for g in self.setup_performance],
            "emotionPerformance": [g.to_dict() for g in self.emotion_performance],
            "weekdayPerformance": [g.to_dict() for g in self.weekday_performance],
            "bestSetup": self.best_setup.to_dict() if self.best_setup else None,
            "worstSetup": self.worst_setup.to_dict() if self.worst_setup else None,
        }


def score_trade(trade: Trade, include_unrealized: bool) -> float:
    return trade.total_pnl if include_unrealized else trade.realized_pnl


def weekday_from_iso_date(value: str) -> str:
    try:
        parsed = date_cls.fromisoformat(value[:10])
    except ValueError:
        return "Unknown"
    # isoweekday: Monday=1 .. Sunday=7
    return WEEK_DAYS[parsed.isoweekday() % 7]


def _stripped(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return value.strip() or None


def grouped_performance(trades: Iterable[Trade], group_by: Callable[[Trade], Optional[str]],
                        include_unrealized: bool) -> List[GroupPerformance]:
    groups: Dict[str, Dict[str, float]] = {}
    for trade in trades:
        key = group_by(trade)
        if not key:
            continue
        value = score_trade(trade, include_unrealized)
        group = groups.setdefault(key, {"pnl": 0.0, "trades": 0, "wins": 0})
        group["pnl"] += value
        group["trades"] += 1
        if value > 0:
            group["wins"] += 1

    result = [
        GroupPerformance(
            key=key,
            trades=int(g["trades"]),
            win_rate=g["wins"] / g["trades"] * 100 if g["trades"] else 0.0,
            pnl=round_to_2(g["pnl"]),
        )
        for key, g in groups.items()
    ]
    result.sort(key=lambda g: g.pnl, reverse=True)
    return result


def build_analytics_summary(trades: Iterable[Trade], include_unrealized: bool = True) -> AnalyticsSummary:
    trades = list(trades)
    setups = grouped_performance(trades, lambda t: _stripped(t.setup), include_unrealized)
    emotions = grouped_performance(trades, lambda t: _stripped(t.emotion), include_unrealized)

    by_weekday = {g.key: g for g in grouped_performance(
        trades, lambda t: weekday_from_iso_date(t.date), include_unrealized)}
    weekdays = [by_weekday[day] for day in WEEK_DAYS if day in by_weekday]

    eligible = [g for g in setups if g.trades >= MIN_TRADES_FOR_RANKING]
    return AnalyticsSummary(
        setup_performance=setups,
        emotion_performance=emotions,
        weekday_performance=weekdays,
        best_setup=eligible[0] if eligible else None,
        worst_setup=eligible[-1] if eligible else None,
    )
