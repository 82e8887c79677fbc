"""
Trade Metrics Calculator
========================

Pure functions: per-leg P&L, remaining quantity, realized/unrealized/total
P&L and the open/closed status. with_computed_metrics() is the only place
derived trade fields are produced; every mutation re-runs it.
"""

from __future__ import annotations
import math
import sys
from dataclasses import replace
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional

from tradelog.journal.trade_models import (
    ExitLeg, Trade, TradeDirection, TradeMetrics, TradeStatus,
)

EPSILON = 0.000001


def round_to_2(value: float) -> float:
    """Round half away from zero at 2 dp, nudged by machine epsilon."""
    if not math.isfinite(value):
        return 0.0
    scaled = Decimal(repr((value + sys.float_info.epsilon) * 100))
    return float(scaled.quantize(Decimal("1"), rounding=ROUND_HALF_UP)) / 100


def leg_pnl(direction: TradeDirection, entry_price: float, exit_price: float,
            quantity: float, fees: float = 0) -> float:
    if direction == TradeDirection.LONG:
        gross = (exit_price - entry_price) * quantity
    else:
        gross = (entry_price - exit_price) * quantity
    return round_to_2(gross - fees)


def exited_quantity(exit_legs: Iterable[ExitLeg]) -> float:
    return sum(leg.quantity for leg in exit_legs)


def remaining_quantity(trade: Trade) -> float:
    return max(0.0, round_to_2(trade.quantity - exited_quantity(trade.exit_legs)))


def _percent_of_notional(pnl: float, notional: float) -> float:
    return round_to_2(pnl / notional * 100) if notional > 0 else 0.0


def compute_metrics(trade: Trade) -> TradeMetrics:
    realized = round_to_2(sum(
        leg_pnl(trade.direction, trade.entry_price, leg.exit_price, leg.quantity, leg.fees or 0)
        for leg in trade.exit_legs
    ))

    remaining = remaining_quantity(trade)
    unrealized = 0.0
    if trade.mark_price is not None:
        unrealized = leg_pnl(trade.direction, trade.entry_price, trade.mark_price, remaining)

    total = round_to_2(realized + unrealized)
    notional = trade.entry_price * trade.quantity

    return TradeMetrics(
        remaining_quantity=remaining,
        realized_pnl=realized,
        unrealized_pnl=unrealized,
        total_pnl=total,
        realized_pnl_percent=_percent_of_notional(realized, notional),
        total_pnl_percent=_percent_of_notional(total, notional),
    )


def derive_status(trade: Trade) -> TradeStatus:
    return TradeStatus.CLOSED if remaining_quantity(trade) <= EPSILON else TradeStatus.OPEN


def with_computed_metrics(trade: Trade) -> Trade:
    """Copy of `trade` with every derived field refreshed; a closed trade loses its mark."""
    metrics = compute_metrics(trade)
    status = TradeStatus.CLOSED if metrics.remaining_quantity <= EPSILON else TradeStatus.OPEN
    mark_price: Optional[float] = trade.mark_price
    mark_price_updated_at = trade.mark_price_updated_at
    if status == TradeStatus.CLOSED:
        mark_price = None
        mark_price_updated_at = None
        if trade.mark_price is not None:
            metrics = compute_metrics(replace(trade, mark_price=None))

    return replace(
        trade,
        status=status,
        mark_price=mark_price,
        mark_price_updated_at=mark_price_updated_at,
        remaining_quantity=metrics.remaining_quantity,
        realized_pnl=metrics.realized_pnl,
        unrealized_pnl=metrics.unrealized_pnl,
        total_pnl=metrics.total_pnl,
        realized_pnl_percent=metrics.realized_pnl_percent,
        total_pnl_percent=metrics.total_pnl_percent,
        exit_legs=list(trade.exit_legs),
    )
