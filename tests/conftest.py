"""
Shared fixtures for the journal, pricing and sync tests.

Everything runs against the in-memory key/value store and a ticking clock
so timestamps are deterministic and strictly increasing.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from tradelog.api.pricing import PriceBatch, PriceQuote
from tradelog.goals.goal_repository import GoalRepository
from tradelog.journal.local_store import MemoryKeyValueStore
from tradelog.journal.trade_ledger import TradeLedger
from tradelog.journal.trade_models import CreateOpenTradeInput, TradeDirection
from tradelog.utils.config import Settings
from tradelog.utils.exceptions import TransportFailure


# ─── Time ───────────────────────────────────────────────────

class TickingClock:
    """Returns a UTC datetime one second later on every call."""

    def __init__(self, start: Optional[datetime] = None, step: timedelta = timedelta(seconds=1)):
        self.now = start or datetime(2024, 3, 1, 10, 0, 0, tzinfo=timezone.utc)
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + self.step
        return current


class ManualClock:
    """Monotonic-style float clock advanced by hand."""

    def __init__(self, start: float = 1000.0):
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


# ─── Fake price sources ─────────────────────────────────────

class FakePriceSource:
    """
    Batch endpoint either answers from `prices` or fails with `batch_status`.
    Single lookups answer from `prices`; anything missing is unresolved.
    """

    def __init__(self, prices: dict[str, float], batch_status: Optional[int] = None):
        self.prices = dict(prices)
        self.batch_status = batch_status
        self.batch_calls: list[list[str]] = []
        self.single_calls: list[str] = []

    async def fetch_batch(self, symbols: list[str]) -> PriceBatch:
        self.batch_calls.append(list(symbols))
        if self.batch_status is not None:
            raise TransportFailure(f"Batch API error: {self.batch_status}", self.batch_status)
        batch = PriceBatch()
        for symbol in symbols:
            if symbol in self.prices:
                batch.prices[symbol] = self.prices[symbol]
            else:
                batch.failed.append(symbol)
        return batch

    async def fetch_single(self, symbol: str) -> Optional[PriceQuote]:
        self.single_calls.append(symbol)
        if symbol not in self.prices:
            return None
        return PriceQuote(symbol=symbol, price=self.prices[symbol],
                          timestamp=datetime(2024, 3, 1, tzinfo=timezone.utc))


# ─── Fixtures ───────────────────────────────────────────────

@pytest.fixture
def settings() -> Settings:
    return Settings(
        price_cache_ttl_seconds=300,
        multi_fetch_delay_seconds=0.3,
        provider_batch_delay_seconds=0.2,
        sync_debounce_seconds=0,
        supabase_url="",
        supabase_key="",
    )


@pytest.fixture
def store() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()


@pytest.fixture
def clock() -> TickingClock:
    return TickingClock()


@pytest.fixture
def ledger(store, clock) -> TradeLedger:
    return TradeLedger(store, clock=clock)


@pytest.fixture
def goal_repo(store, clock) -> GoalRepository:
    return GoalRepository(store, clock=clock)


def _open_input(symbol: str = "AAPL", direction: TradeDirection = TradeDirection.LONG,
                entry_price: float = 100.0, quantity: float = 10.0,
                date: str = "2024-03-01", **extra) -> CreateOpenTradeInput:
    return CreateOpenTradeInput(
        date=date, symbol=symbol, direction=direction,
        entry_price=entry_price, quantity=quantity, **extra,
    )


@pytest.fixture
def open_input():
    """Factory for CreateOpenTradeInput with sensible defaults."""
    return _open_input


@pytest.fixture
def manual_clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def price_source():
    """Factory: price_source({"A": 1.0}, batch_status=500)."""
    return FakePriceSource
