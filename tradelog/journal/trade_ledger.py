"""
Trade Ledger — validated mutations over the persisted trade collection
======================================================================

Every operation is read-modify-write against the full collection: load the
latest persisted trades, apply one change, recompute metrics, persist the
whole array. A rejected mutation is not an error for the caller: the
unchanged collection is returned and the reason is logged.

Concurrent writers on different devices are reconciled by the sync layer,
not here.
"""

from __future__ import annotations
import json
import logging
import math
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Callable, Dict, List, Mapping, Optional

from tradelog.journal.local_store import TRADES_KEY, KeyValueStore
from tradelog.journal.record_parser import parse_collection, parse_trade
from tradelog.journal.trade_math import (
    EPSILON, exited_quantity, remaining_quantity, with_computed_metrics,
)
from tradelog.journal.trade_models import (
    AddExitLegInput, CreateOpenTradeInput, ExitLeg, Trade, TradeStatus,
    TradeUpdate, random_id, to_iso, utc_now,
)
from tradelog.utils.exceptions import ValidationError

logger = logging.getLogger("trade_ledger")


def is_positive_number(value: Optional[float]) -> bool:
    return value is not None and math.isfinite(value) and value > 0


def same_price(a: Optional[float], b: Optional[float]) -> bool:
    if a is None and b is None:
        return True
    if a is None or b is None:
        return False
    return abs(a - b) < EPSILON


def _as_float(value: Optional[float]) -> Optional[float]:
    return None if value is None else float(value)


def _check_fees(fees: Optional[float]) -> None:
    if fees is not None and (not math.isfinite(fees) or fees < 0):
        raise ValidationError(f"fees must be a non-negative number, got {fees}")


@dataclass
class MarkApplyResult:
    trades: List[Trade]
    changed: bool
    updated_trade_ids: List[str] = field(default_factory=list)


class TradeLedger:
    """
    Owns the persisted trades. Trades are only ever changed through these
    operations; callers get copies and must diff to detect a rejection.
    """

    def __init__(self, store: KeyValueStore,
                 clock: Optional[Callable[[], datetime]] = None,
                 id_factory: Callable[[str], str] = random_id):
        self._store = store
        self._clock = clock or utc_now
        self._new_id = id_factory

    def _now(self) -> str:
        return to_iso(self._clock())

    # ─── LOAD / SAVE ────────────────────────────────────────────

    def list_trades(self) -> List[Trade]:
        """Load, migrate and normalize; malformed records are dropped individually."""
        raw = self._store.read(TRADES_KEY)
        if not raw:
            return []
        trades = parse_collection(raw, parse_trade)
        trades.sort(key=lambda t: t.date, reverse=True)
        self.save_trades(trades)
        return trades

    def save_trades(self, trades: List[Trade]) -> None:
        payload = json.dumps([t.to_dict() for t in trades])
        if not self._store.write(TRADES_KEY, payload):
            logger.error("Trade collection not persisted (%d trades)", len(trades))

    def _reject(self, operation: str, trade_id: str, error: ValidationError) -> None:
        logger.debug("Rejected %s on %s: %s", operation, trade_id or "<new>", error.message)

    @staticmethod
    def _index_of(trades: List[Trade], trade_id: str) -> int:
        for i, trade in enumerate(trades):
            if trade.id == trade_id:
                return i
        return -1

    # ─── CREATE ─────────────────────────────────────────────────

    def _validate_create(self, data: CreateOpenTradeInput) -> None:
        if not is_positive_number(data.entry_price):
            raise ValidationError("entry price must be positive")
        if not is_positive_number(data.quantity):
            raise ValidationError("quantity must be positive")
        if data.mark_price is not None and not is_positive_number(data.mark_price):
            raise ValidationError("mark price must be positive")
        leg = data.initial_exit_leg
        if leg is not None:
            if not is_positive_number(leg.exit_price) or not is_positive_number(leg.quantity):
                raise ValidationError("initial exit leg needs a positive price and quantity")
            if leg.quantity > data.quantity:
                raise ValidationError("initial exit leg exceeds the trade quantity")
            _check_fees(leg.fees)

    def create_open_trade(self, data: CreateOpenTradeInput) -> List[Trade]:
        trades = self.list_trades()
        try:
            self._validate_create(data)
        except ValidationError as e:
            self._reject("create_open_trade", "", e)
            return trades

        timestamp = self._now()
        legs = []
        if data.initial_exit_leg is not None:
            leg = data.initial_exit_leg
            legs.append(ExitLeg(
                id=self._new_id("leg"), date=leg.date, quantity=float(leg.quantity),
                exit_price=float(leg.exit_price), fees=_as_float(leg.fees), note=leg.note,
            ))

        trade = with_computed_metrics(Trade(
            id=self._new_id("trade"),
            date=data.date,
            symbol=data.symbol.strip().upper(),
            direction=data.direction,
            entry_price=float(data.entry_price),
            quantity=float(data.quantity),
            exit_legs=legs,
            mark_price=_as_float(data.mark_price),
            mark_price_updated_at=None if data.mark_price is None else timestamp,
            setup=data.setup,
            emotion=data.emotion,
            notes=data.notes,
            created_at=timestamp,
            updated_at=timestamp,
            user_id=data.user_id,
        ))

        updated = [trade] + trades
        self.save_trades(updated)
        logger.info("Trade opened: %s %s %s x%s @ %s", trade.id, trade.direction.value,
                    trade.symbol, trade.quantity, trade.entry_price)
        return updated

    # ─── UPDATE ─────────────────────────────────────────────────

    def update_trade(self, trade_id: str, updates: TradeUpdate) -> List[Trade]:
        trades = self.list_trades()
        idx = self._index_of(trades, trade_id)
        if idx < 0:
            return trades
        trade = trades[idx]

        next_quantity = updates.quantity if updates.quantity is not None else trade.quantity
        next_entry = updates.entry_price if updates.entry_price is not None else trade.entry_price
        try:
            if not is_positive_number(next_entry) or not is_positive_number(next_quantity):
                raise ValidationError("entry price and quantity must stay positive")
            if next_quantity + EPSILON < exited_quantity(trade.exit_legs):
                raise ValidationError("quantity cannot drop below the quantity already exited")
            if updates.has_mark_price and updates.mark_price is not None \
                    and not is_positive_number(updates.mark_price):
                raise ValidationError("mark price must be positive")
        except ValidationError as e:
            self._reject("update_trade", trade_id, e)
            return trades

        timestamp = self._now()
        mark_price = trade.mark_price
        mark_price_updated_at = trade.mark_price_updated_at
        if updates.has_mark_price:
            mark_price = _as_float(updates.mark_price)
            mark_price_updated_at = None if mark_price is None else timestamp

        merged = with_computed_metrics(replace(
            trade,
            date=updates.date if updates.date is not None else trade.date,
            symbol=updates.symbol.strip().upper() if updates.symbol else trade.symbol,
            direction=updates.direction if updates.direction is not None else trade.direction,
            entry_price=float(next_entry),
            quantity=float(next_quantity),
            setup=updates.setup if updates.setup is not None else trade.setup,
            emotion=updates.emotion if updates.emotion is not None else trade.emotion,
            notes=updates.notes if updates.notes is not None else trade.notes,
            mark_price=mark_price,
            mark_price_updated_at=mark_price_updated_at,
            updated_at=timestamp,
        ))

        trades[idx] = merged
        self.save_trades(trades)
        return trades

    # ─── EXITS ──────────────────────────────────────────────────

    def add_exit_leg(self, trade_id: str, leg: AddExitLegInput) -> List[Trade]:
        trades = self.list_trades()
        idx = self._index_of(trades, trade_id)
        if idx < 0:
            return trades
        trade = trades[idx]

        try:
            if not is_positive_number(leg.exit_price) or not is_positive_number(leg.quantity):
                raise ValidationError("exit leg needs a positive price and quantity")
            remaining = remaining_quantity(trade)
            if leg.quantity > remaining:
                raise ValidationError(f"exit quantity {leg.quantity} exceeds remaining {remaining}")
            _check_fees(leg.fees)
        except ValidationError as e:
            self._reject("add_exit_leg", trade_id, e)
            return trades

        updated = with_computed_metrics(replace(
            trade,
            exit_legs=trade.exit_legs + [ExitLeg(
                id=self._new_id("leg"), date=leg.date, quantity=float(leg.quantity),
                exit_price=float(leg.exit_price), fees=_as_float(leg.fees), note=leg.note,
            )],
            updated_at=self._now(),
        ))

        trades[idx] = updated
        self.save_trades(trades)
        if updated.status == TradeStatus.CLOSED:
            logger.info("Trade closed: %s realized=%.2f", updated.id, updated.realized_pnl)
        return trades

    # ─── MARKS ──────────────────────────────────────────────────

    def update_mark_price(self, trade_id: str, mark_price: Optional[float]) -> List[Trade]:
        """None clears the mark. An equal price or a closed trade is skipped without a timestamp bump."""
        trades = self.list_trades()
        if mark_price is not None and not is_positive_number(mark_price):
            self._reject("update_mark_price", trade_id, ValidationError("mark price must be positive"))
            return trades

        idx = self._index_of(trades, trade_id)
        if idx < 0:
            return trades
        trade = trades[idx]
        if trade.status == TradeStatus.CLOSED or same_price(trade.mark_price, mark_price):
            return trades

        timestamp = self._now()
        trades[idx] = with_computed_metrics(replace(
            trade,
            mark_price=_as_float(mark_price),
            mark_price_updated_at=None if mark_price is None else timestamp,
            updated_at=timestamp,
        ))
        self.save_trades(trades)
        return trades

    def apply_marks_by_symbol(self, prices_by_symbol: Mapping[str, float]) -> MarkApplyResult:
        """Apply quotes to every open trade of each symbol; persists only when something moved."""
        prices: Dict[str, float] = {s.strip().upper(): p for s, p in prices_by_symbol.items()}
        trades = self.list_trades()
        timestamp = self._now()
        updated_ids: List[str] = []

        next_trades = []
        for trade in trades:
            price = prices.get(trade.symbol.upper())
            if trade.status == TradeStatus.CLOSED or not is_positive_number(price) \
                    or same_price(trade.mark_price, price):
                next_trades.append(trade)
                continue
            updated_ids.append(trade.id)
            next_trades.append(with_computed_metrics(replace(
                trade,
                mark_price=float(price),
                mark_price_updated_at=timestamp,
                updated_at=timestamp,
            )))

        if not updated_ids:
            return MarkApplyResult(trades=trades, changed=False)

        self.save_trades(next_trades)
        logger.info("Applied marks to %d open trade(s)", len(updated_ids))
        return MarkApplyResult(trades=next_trades, changed=True, updated_trade_ids=updated_ids)

    # ─── DELETE ─────────────────────────────────────────────────

    def delete_trade(self, trade_id: str) -> List[Trade]:
        trades = [t for t in self.list_trades() if t.id != trade_id]
        self.save_trades(trades)
        return trades

    def clear(self) -> List[Trade]:
        self.save_trades([])
        return []
