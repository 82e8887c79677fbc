"""
Journal Service — the single entry point a UI talks to
━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
Wires the trade ledger, goal repository, price service and cloud sync:
• mutations go to the ledger / goal repo, then cloud sync is told
• refresh_marks() pulls quotes for every open trade under an in-flight guard
• read models: goal progress, grouped analytics and active reminders
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from tradelog.api.pricing import (
    HttpPriceSource, PriceService, PriceSource, ProviderPriceSource, normalize_symbol,
)
from tradelog.api.quote_provider import YahooQuoteProvider
from tradelog.goals.goal_models import Goal, GoalProgress, GoalType
from tradelog.goals.goal_progress import evaluate
from tradelog.goals.goal_repository import GoalRepository
from tradelog.goals.reminders import Reminder, ReminderKind, ReminderService
from tradelog.journal.journal_analytics import AnalyticsSummary, build_analytics_summary
from tradelog.journal.local_store import MemoryKeyValueStore, SqliteKeyValueStore
from tradelog.journal.trade_ledger import TradeLedger
from tradelog.journal.trade_math import EPSILON, round_to_2
from tradelog.journal.trade_models import (
    AddExitLegInput, CreateOpenTradeInput, Trade, TradeUpdate,
)
from tradelog.sync.reconciler import CloudSync
from tradelog.sync.remote_store import SupabaseRemoteStore
from tradelog.utils.config import Settings, get_settings
from tradelog.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class PriceChange:
    trade_id: str
    symbol: str
    old_mark: float
    new_mark: float
    change: float
    change_percent: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "tradeId": self.trade_id,
            "symbol": self.symbol,
            "oldMark": self.old_mark,
            "newMark": self.new_mark,
            "change": self.change,
            "changePercent": self.change_percent,
        }


@dataclass
class RefreshResult:
    refreshed_count: int = 0
    updated_trade_ids: list[str] = field(default_factory=list)
    price_changes: list[PriceChange] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "refreshedCount": self.refreshed_count,
            "updatedTradeIds": list(self.updated_trade_ids),
            "priceChanges": [c.to_dict() for c in self.price_changes],
            "failed": list(self.failed),
        }


def price_change_for(trade: Trade, new_mark: float) -> PriceChange:
    """Change against the previous mark, or against entry when the trade had none."""
    old_mark = trade.mark_price if trade.mark_price is not None else trade.entry_price
    change = round_to_2(new_mark - old_mark)
    change_percent = round_to_2(change / old_mark * 100) if old_mark > 0 else 0.0
    return PriceChange(
        trade_id=trade.id, symbol=trade.symbol, old_mark=old_mark,
        new_mark=new_mark, change=change, change_percent=change_percent,
    )


class JournalService:
    def __init__(
        self,
        ledger: TradeLedger,
        goals: GoalRepository,
        prices: PriceService,
        sync: Optional[CloudSync] = None,
        reminders: Optional[ReminderService] = None,
    ) -> None:
        self._ledger = ledger
        self._goals = goals
        self._prices = prices
        self._sync = sync
        self._reminders = reminders or ReminderService(MemoryKeyValueStore())
        self._refresh_in_flight = False

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> JournalService:
        """Production wiring: SQLite on disk, quotes in-process or over HTTP, cloud sync when configured."""
        settings = settings or get_settings()
        store = SqliteKeyValueStore(settings.store_path)
        ledger = TradeLedger(store)
        goals = GoalRepository(store)
        source: PriceSource
        if settings.price_source == "http":
            source = HttpPriceSource(settings)
        else:
            source = ProviderPriceSource(YahooQuoteProvider(settings))
        prices = PriceService(source, settings=settings)
        remote = SupabaseRemoteStore(settings)
        sync = CloudSync(ledger, goals, remote, settings) if remote.configured else None
        if sync is None:
            logger.info("cloud_sync_disabled", reason="remote store not configured")
        return cls(ledger, goals, prices, sync, ReminderService(store))

    @property
    def ledger(self) -> TradeLedger:
        return self._ledger

    @property
    def prices(self) -> PriceService:
        return self._prices

    @property
    def sync(self) -> Optional[CloudSync]:
        return self._sync

    @property
    def is_refreshing(self) -> bool:
        return self._refresh_in_flight

    def _changed(self) -> None:
        if self._sync is not None:
            self._sync.notify_local_change()

    # ─── Trades ─────────────────────────────────────────────────

    def list_trades(self) -> list[Trade]:
        return self._ledger.list_trades()

    def create_open_trade(self, data: CreateOpenTradeInput) -> list[Trade]:
        trades = self._ledger.create_open_trade(data)
        self._changed()
        return trades

    def update_trade(self, trade_id: str, updates: TradeUpdate) -> list[Trade]:
        trades = self._ledger.update_trade(trade_id, updates)
        self._changed()
        return trades

    def add_exit_leg(self, trade_id: str, leg: AddExitLegInput) -> list[Trade]:
        trades = self._ledger.add_exit_leg(trade_id, leg)
        self._changed()
        return trades

    def update_mark_price(self, trade_id: str, mark_price: Optional[float]) -> list[Trade]:
        trades = self._ledger.update_mark_price(trade_id, mark_price)
        self._changed()
        return trades

    def delete_trade(self, trade_id: str) -> list[Trade]:
        trades = self._ledger.delete_trade(trade_id)
        self._changed()
        return trades

    # ─── Goals ──────────────────────────────────────────────────

    def list_goals(self) -> list[Goal]:
        return self._goals.list_goals()

    def upsert_goal(self, goal_type: GoalType, period: str, target: float) -> list[Goal]:
        goals = self._goals.upsert_goal(goal_type, period, target)
        self._changed()
        return goals

    def delete_goal(self, goal_id: str) -> list[Goal]:
        goals = self._goals.delete_goal(goal_id)
        self._changed()
        return goals

    def goal_progress(self) -> list[GoalProgress]:
        return evaluate(self._goals.list_goals(), self._ledger.list_trades())

    def analytics(self, include_unrealized: bool = True) -> AnalyticsSummary:
        return build_analytics_summary(self._ledger.list_trades(), include_unrealized)

    # ─── Reminders ──────────────────────────────────────────────

    def active_reminders(self) -> list[Reminder]:
        return self._reminders.list_active()

    def complete_reminder(self, kind: ReminderKind) -> list[Reminder]:
        return self._reminders.complete(kind)

    # ─── Marks ──────────────────────────────────────────────────

    async def refresh_marks(self) -> Optional[RefreshResult]:
        """
        Quote every open trade's symbol and apply the prices. Returns None when
        a refresh is already running or the refresh failed unexpectedly.
        """
        if self._refresh_in_flight:
            logger.info("mark_refresh_already_running")
            return None

        self._refresh_in_flight = True
        try:
            open_trades = [t for t in self._ledger.list_trades() if t.is_open]
            if not open_trades:
                return RefreshResult()

            symbols = list(dict.fromkeys(normalize_symbol(t.symbol) for t in open_trades))
            batch = await self._prices.get_many(symbols)
            rounded: dict[str, float] = {s: round_to_2(p) for s, p in batch.prices.items()}

            changes = [
                c for c in (
                    price_change_for(t, rounded[normalize_symbol(t.symbol)])
                    for t in open_trades if normalize_symbol(t.symbol) in rounded
                )
                if abs(c.change) >= EPSILON
            ]
            applied = self._ledger.apply_marks_by_symbol(rounded)
            if applied.changed:
                self._changed()

            result = RefreshResult(
                refreshed_count=len(rounded),
                updated_trade_ids=[c.trade_id for c in changes],
                price_changes=changes,
                failed=list(batch.failed),
            )
            logger.info(
                "marks_refreshed", open_trades=len(open_trades), symbols=len(symbols),
                priced=result.refreshed_count, moved=len(changes), failed=result.failed,
            )
            return result
        except Exception as e:
            logger.error("mark_refresh_failed", error=str(e), exc_info=True)
            return None
        finally:
            self._refresh_in_flight = False

    # ─── Identity ───────────────────────────────────────────────

    async def on_sign_in(self, user_id: str) -> None:
        if self._sync is not None:
            await self._sync.on_identity_available(user_id)

    def on_sign_out(self) -> None:
        if self._sync is not None:
            self._sync.on_identity_departed()
