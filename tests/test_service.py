"""
Tests for the journal service facade:
  - refresh_marks applies rounded quotes and reports price changes
  - a second refresh while one is in flight is a no-op
  - unexpected failures yield None and release the guard
  - mutations notify cloud sync
"""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock

import pytest

from tradelog.api.pricing import HttpPriceSource, PriceBatch, PriceService, ProviderPriceSource
from tradelog.api.service import JournalService, price_change_for
from tradelog.goals.goal_models import GoalType
from tradelog.goals.reminders import ReminderKind
from tradelog.journal.trade_models import AddExitLegInput
from tradelog.utils.config import Settings


class BlockingSource:
    """Batch call parks until released so a refresh can be caught mid-flight."""

    def __init__(self, prices: dict[str, float]):
        self.prices = prices
        self.release = asyncio.Event()
        self.entered = asyncio.Event()

    async def fetch_batch(self, symbols):
        self.entered.set()
        await self.release.wait()
        return PriceBatch(prices={s: self.prices[s] for s in symbols if s in self.prices},
                          failed=[s for s in symbols if s not in self.prices])

    async def fetch_single(self, symbol):
        return None


class ExplodingSource:
    async def fetch_batch(self, symbols):
        raise RuntimeError("unexpected payload")

    async def fetch_single(self, symbol):
        return None


@pytest.fixture
def build_service(ledger, goal_repo, settings):
    def _build(source, sync=None) -> JournalService:
        return JournalService(ledger, goal_repo, PriceService(source, settings=settings), sync)
    return _build


class TestRefreshMarks:

    @pytest.mark.asyncio
    async def test_applies_rounded_prices(self, build_service, price_source, open_input):
        service = build_service(price_source({"AAPL": 110.123, "TCS": 50.0}))
        trade = service.create_open_trade(open_input())[0]
        service.create_open_trade(open_input(symbol="MISSING"))

        result = await service.refresh_marks()

        assert result.refreshed_count == 1
        assert result.updated_trade_ids == [trade.id]
        assert result.failed == ["MISSING"]
        change = result.price_changes[0]
        assert (change.old_mark, change.new_mark, change.change, change.change_percent) == \
            (100.0, 110.12, 10.12, 10.12)

        marked = next(t for t in service.list_trades() if t.id == trade.id)
        assert marked.mark_price == 110.12
        assert marked.unrealized_pnl == 101.2

    @pytest.mark.asyncio
    async def test_no_open_trades_returns_empty_result(self, build_service, price_source, open_input):
        source = price_source({"AAPL": 120.0})
        service = build_service(source)
        trade = service.create_open_trade(open_input())[0]
        service.add_exit_leg(trade.id, AddExitLegInput(date="2024-03-02", quantity=10, exit_price=105))

        result = await service.refresh_marks()

        assert result.refreshed_count == 0
        assert result.updated_trade_ids == []
        assert source.batch_calls == []

    @pytest.mark.asyncio
    async def test_unchanged_price_is_not_reported(self, build_service, price_source, open_input):
        service = build_service(price_source({"AAPL": 105.0}))
        service.create_open_trade(open_input(mark_price=105))

        result = await service.refresh_marks()
        assert result.refreshed_count == 1
        assert result.price_changes == []

    @pytest.mark.asyncio
    async def test_concurrent_refresh_is_skipped(self, build_service, open_input):
        source = BlockingSource({"AAPL": 101.0})
        service = build_service(source)
        service.create_open_trade(open_input())

        first = asyncio.create_task(service.refresh_marks())
        await source.entered.wait()

        assert service.is_refreshing
        assert await service.refresh_marks() is None

        source.release.set()
        result = await first
        assert result.refreshed_count == 1
        assert not service.is_refreshing

    @pytest.mark.asyncio
    async def test_failure_returns_none_and_releases_guard(self, build_service, price_source, open_input):
        service = build_service(ExplodingSource())
        service.create_open_trade(open_input())

        assert await service.refresh_marks() is None
        assert not service.is_refreshing

    def test_price_change_against_previous_mark(self, ledger, open_input):
        trade = ledger.create_open_trade(open_input(mark_price=120))[0]
        change = price_change_for(trade, 114.0)
        assert change.old_mark == 120
        assert change.change == -6.0
        assert change.change_percent == -5.0


class TestFacade:

    def test_mutations_notify_sync(self, build_service, price_source, open_input):
        sync = MagicMock()
        service = build_service(price_source({}), sync=sync)

        trade = service.create_open_trade(open_input())[0]
        service.update_mark_price(trade.id, 101)
        service.upsert_goal(GoalType.MONTHLY_PNL, "2024-03", 500)
        service.delete_trade(trade.id)

        assert sync.notify_local_change.call_count == 4

    def test_read_models(self, build_service, price_source, open_input):
        service = build_service(price_source({}))
        trade = service.create_open_trade(open_input(setup="breakout"))[0]
        service.add_exit_leg(trade.id, AddExitLegInput(date="2024-03-02", quantity=10, exit_price=103))
        service.upsert_goal(GoalType.MONTHLY_PNL, "2024-03", 100)

        progress = service.goal_progress()[0]
        assert progress.current == 30.0
        assert service.analytics().setup_performance[0].pnl == 30.0

    @pytest.mark.asyncio
    async def test_sign_in_without_sync_is_a_no_op(self, build_service, price_source):
        service = build_service(price_source({}))
        await service.on_sign_in("u1")
        service.on_sign_out()
        assert service.sync is None


class TestFromSettings:

    @pytest.mark.parametrize("price_source,source_type", [
        ("provider", ProviderPriceSource),
        ("http", HttpPriceSource),
    ])
    def test_wiring_without_remote_store(self, tmp_path, price_source, source_type):
        settings = Settings(store_path=str(tmp_path / "journal.db"), price_source=price_source,
                            supabase_url="", supabase_key="")
        service = JournalService.from_settings(settings)

        assert service.sync is None
        assert isinstance(service.prices._source, source_type)
        assert service.list_trades() == []

    def test_configured_remote_store_enables_sync(self, tmp_path):
        settings = Settings(store_path=str(tmp_path / "journal.db"),
                            supabase_url="https://project.supabase.co", supabase_key="anon")
        service = JournalService.from_settings(settings)
        assert service.sync is not None
        assert service.sync.user_id is None


class TestReminders:

    def test_completed_reminder_is_persisted_with_the_journal(self, tmp_path):
        settings = Settings(store_path=str(tmp_path / "journal.db"), supabase_url="", supabase_key="")
        service = JournalService.from_settings(settings)
        assert ReminderKind.WEEKLY_REVIEW in [r.kind for r in service.active_reminders()]

        remaining = service.complete_reminder(ReminderKind.WEEKLY_REVIEW)

        assert ReminderKind.WEEKLY_REVIEW not in [r.kind for r in remaining]
        reopened = JournalService.from_settings(settings)
        assert ReminderKind.WEEKLY_REVIEW not in [r.kind for r in reopened.active_reminders()]
