"""
Tests for the pure metrics calculator: leg P&L, remaining quantity,
realized / unrealized / total P&L and the derived open/closed status.
"""

from __future__ import annotations

import pytest

from tradelog.journal.trade_math import (
    compute_metrics,
    derive_status,
    leg_pnl,
    remaining_quantity,
    round_to_2,
    with_computed_metrics,
)
from tradelog.journal.trade_models import ExitLeg, Trade, TradeDirection, TradeStatus


def _trade(direction=TradeDirection.LONG, entry=100.0, qty=10.0, legs=None, mark=None) -> Trade:
    return Trade(
        id="trade_1", date="2024-03-01", symbol="AAPL", direction=direction,
        entry_price=entry, quantity=qty, exit_legs=list(legs or []), mark_price=mark,
        mark_price_updated_at="2024-03-01T10:00:00.000Z" if mark is not None else None,
    )


def _leg(qty: float, price: float, fees=None, leg_id="leg_1") -> ExitLeg:
    return ExitLeg(id=leg_id, date="2024-03-02", quantity=qty, exit_price=price, fees=fees)


class TestRounding:

    def test_half_rounds_away_from_zero(self):
        assert round_to_2(1.005) == 1.01
        assert round_to_2(2.675) == 2.68

    def test_plain_values_unchanged(self):
        assert round_to_2(198.0) == 198.0
        assert round_to_2(-12.34) == -12.34

    def test_non_finite_becomes_zero(self):
        assert round_to_2(float("nan")) == 0.0
        assert round_to_2(float("inf")) == 0.0


class TestLegPnl:

    def test_long_full_exit_with_fee(self):
        assert leg_pnl(TradeDirection.LONG, 100, 120, 10, 2) == 198.0

    def test_short_profit_when_price_falls(self):
        assert leg_pnl(TradeDirection.SHORT, 50, 40, 2) == 20.0

    def test_short_loss_when_price_rises(self):
        assert leg_pnl(TradeDirection.SHORT, 50, 55, 2, 1) == -11.0


class TestMetrics:

    def test_remaining_quantity_never_negative(self):
        trade = _trade(qty=5, legs=[_leg(3, 110), _leg(3, 110, leg_id="leg_2")])
        assert remaining_quantity(trade) == 0.0

    def test_partial_exit_realized_and_unrealized(self):
        trade = _trade(qty=10, legs=[_leg(4, 110)], mark=105)
        metrics = compute_metrics(trade)

        assert metrics.remaining_quantity == 6
        assert metrics.realized_pnl == 40.0
        assert metrics.unrealized_pnl == 30.0
        assert metrics.total_pnl == 70.0
        assert metrics.realized_pnl_percent == 4.0
        assert metrics.total_pnl_percent == 7.0

    def test_realized_independent_of_mark(self):
        legs = [_leg(4, 110)]
        without_mark = compute_metrics(_trade(legs=legs))
        with_mark = compute_metrics(_trade(legs=legs, mark=250))
        assert without_mark.realized_pnl == with_mark.realized_pnl == 40.0

    def test_no_mark_means_no_unrealized(self):
        assert compute_metrics(_trade()).unrealized_pnl == 0.0

    def test_status_tracks_remaining(self):
        assert derive_status(_trade(legs=[_leg(9.9999995, 110)])) == TradeStatus.CLOSED
        assert derive_status(_trade(legs=[_leg(9, 110)])) == TradeStatus.OPEN


class TestWithComputedMetrics:

    def test_closing_clears_mark_and_its_timestamp(self):
        trade = with_computed_metrics(_trade(legs=[_leg(10, 120, fees=2)], mark=130))

        assert trade.status == TradeStatus.CLOSED
        assert trade.mark_price is None
        assert trade.mark_price_updated_at is None
        assert trade.realized_pnl == 198.0
        assert trade.unrealized_pnl == 0.0
        assert trade.total_pnl == 198.0

    def test_returns_copy(self):
        original = _trade(legs=[_leg(2, 110)])
        computed = with_computed_metrics(original)

        assert computed is not original
        assert computed.exit_legs is not original.exit_legs
        assert original.realized_pnl == 0.0
        assert computed.realized_pnl == 20.0

    @pytest.mark.parametrize("direction,mark,expected", [
        (TradeDirection.LONG, 90.0, -100.0),
        (TradeDirection.SHORT, 90.0, 100.0),
    ])
    def test_unrealized_follows_direction(self, direction, mark, expected):
        trade = with_computed_metrics(_trade(direction=direction, mark=mark))
        assert trade.unrealized_pnl == expected
        assert trade.status == TradeStatus.OPEN
