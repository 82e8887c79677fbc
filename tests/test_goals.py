"""
Tests for monthly goals: repository upsert semantics and progress evaluation.
"""

from __future__ import annotations

import json

import pytest

from tradelog.goals.goal_models import Goal, GoalStatus, GoalType
from tradelog.goals.goal_progress import clamp_percent, evaluate, evaluate_goal, status_for
from tradelog.goals.goal_repository import GoalRepository, parse_goal
from tradelog.journal.local_store import GOALS_KEY, MemoryKeyValueStore
from tradelog.journal.trade_models import AddExitLegInput


class TestGoalRepository:

    def test_upsert_creates_then_updates_same_period(self, goal_repo):
        created = goal_repo.upsert_goal(GoalType.MONTHLY_PNL, "2024-03", 5000)[0]
        goals = goal_repo.upsert_goal(GoalType.MONTHLY_PNL, "2024-03", 8000)

        assert len(goals) == 1
        assert goals[0].id == created.id
        assert goals[0].target == 8000
        assert goals[0].created_at == created.created_at
        assert goals[0].updated_at > created.updated_at

    def test_different_type_or_period_adds_goal(self, goal_repo):
        goal_repo.upsert_goal(GoalType.MONTHLY_PNL, "2024-03", 5000)
        goal_repo.upsert_goal(GoalType.MONTHLY_PNL, "2024-04", 5000)
        goals = goal_repo.upsert_goal(GoalType.MONTHLY_WIN_RATE, "2024-03", 60)

        assert [(g.type, g.period) for g in goals] == [
            (GoalType.MONTHLY_PNL, "2024-03"),
            (GoalType.MONTHLY_PNL, "2024-04"),
            (GoalType.MONTHLY_WIN_RATE, "2024-03"),
        ]

    def test_delete_goal(self, goal_repo):
        goal = goal_repo.upsert_goal(GoalType.MONTHLY_TRADE_COUNT, "2024-03", 20)[0]
        assert goal_repo.delete_goal(goal.id) == []
        assert goal_repo.list_goals() == []

    def test_bad_records_dropped(self, clock):
        payload = [
            {"id": "g1", "type": "monthly_pnl", "period": "2024-03", "target": 100,
             "createdAt": "2024-03-01T00:00:00.000Z", "updatedAt": "2024-03-01T00:00:00.000Z"},
            {"id": "g2", "type": "yearly_pnl", "period": "2024", "target": 1},
            {"type": "monthly_pnl", "period": "2024-03"},
            42,
        ]
        store = MemoryKeyValueStore({GOALS_KEY: json.dumps(payload)})
        goals = GoalRepository(store, clock=clock).list_goals()
        assert [g.id for g in goals] == ["g1"]

    def test_parse_goal_accepts_numeric_strings(self):
        goal = parse_goal({"id": "g", "type": "monthly_trade_count", "period": "2024-05", "target": "12"})
        assert goal.target == 12.0
        assert goal.updated_at == goal.created_at


class TestStatus:

    @pytest.mark.parametrize("current,target,expected", [
        (100, 100, GoalStatus.ACHIEVED),
        (120, 100, GoalStatus.ACHIEVED),
        (70, 100, GoalStatus.ON_TRACK),
        (69.99, 100, GoalStatus.AT_RISK),
        (-50, 100, GoalStatus.AT_RISK),
        (0, 0, GoalStatus.ON_TRACK),
    ])
    def test_status_thresholds(self, current, target, expected):
        assert status_for(current, target) == expected

    def test_clamp_percent(self):
        assert clamp_percent(150) == 100
        assert clamp_percent(-10) == 0
        assert clamp_percent(float("nan")) == 0


class TestProgress:

    @pytest.fixture
    def trades(self, ledger, open_input):
        # March: one winner closed, one loser closed, one open with a mark
        win = ledger.create_open_trade(open_input(symbol="WIN", date="2024-03-04"))[0]
        ledger.add_exit_leg(win.id, AddExitLegInput(date="2024-03-05", quantity=10, exit_price=110))
        loss = ledger.create_open_trade(open_input(symbol="LOSS", date="2024-03-11"))[0]
        ledger.add_exit_leg(loss.id, AddExitLegInput(date="2024-03-12", quantity=10, exit_price=97))
        ledger.create_open_trade(open_input(symbol="OPEN", date="2024-03-20", mark_price=105))
        # April trade must not count towards March goals
        ledger.create_open_trade(open_input(symbol="APR", date="2024-04-01", mark_price=200))
        return ledger.list_trades()

    def test_monthly_pnl(self, trades):
        goal = Goal(id="g", type=GoalType.MONTHLY_PNL, period="2024-03", target=100)
        progress = evaluate_goal(goal, trades)

        assert progress.current == 70.0
        assert progress.current_with_unrealized == 120.0
        assert progress.status == GoalStatus.ON_TRACK
        assert progress.status_with_unrealized == GoalStatus.ACHIEVED
        assert progress.progress_percent == 70.0
        assert progress.progress_percent_with_unrealized == 100.0

    def test_monthly_trade_count(self, trades):
        goal = Goal(id="g", type=GoalType.MONTHLY_TRADE_COUNT, period="2024-03", target=10)
        progress = evaluate_goal(goal, trades)

        assert progress.current == 2
        assert progress.current_with_unrealized == 3
        assert progress.status == GoalStatus.AT_RISK

    def test_monthly_win_rate(self, trades):
        goal = Goal(id="g", type=GoalType.MONTHLY_WIN_RATE, period="2024-03", target=50)
        progress = evaluate_goal(goal, trades)

        assert progress.current == 50.0
        assert progress.current_with_unrealized == pytest.approx(200 / 3)
        assert progress.status == GoalStatus.ACHIEVED

    def test_empty_period(self, trades):
        goal = Goal(id="g", type=GoalType.MONTHLY_WIN_RATE, period="2023-12", target=50)
        progress = evaluate(goals=[goal], trades=trades)[0]
        assert progress.current == 0.0
        assert progress.progress_percent == 0.0
        assert progress.to_dict()["status"] == "at_risk"
