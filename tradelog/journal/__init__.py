"""
Trade Journal — ledger, metrics and persistence
================================================

  trade_models.py      — Trade / ExitLeg dataclasses and mutation inputs
  trade_math.py        — pure P&L and status calculator
  record_parser.py     — per-record parsing with versioned legacy migration
  local_store.py       — key/value storage (SQLite or in-memory)
  trade_ledger.py      — validated read-modify-write mutations
  journal_analytics.py — grouped performance by setup / emotion / weekday
"""

from tradelog.journal.trade_models import (
    AddExitLegInput,
    CreateOpenTradeInput,
    ExitLeg,
    Trade,
    TradeDirection,
    TradeMetrics,
    TradeStatus,
    TradeUpdate,
    UNSET,
)
from tradelog.journal.trade_math import (
    compute_metrics,
    derive_status,
    leg_pnl,
    remaining_quantity,
    round_to_2,
    with_computed_metrics,
)
from tradelog.journal.local_store import MemoryKeyValueStore, SqliteKeyValueStore
from tradelog.journal.trade_ledger import MarkApplyResult, TradeLedger
from tradelog.journal.journal_analytics import AnalyticsSummary, build_analytics_summary

__all__ = [
    # Models
    "AddExitLegInput", "CreateOpenTradeInput", "ExitLeg", "Trade",
    "TradeDirection", "TradeMetrics", "TradeStatus", "TradeUpdate", "UNSET",
    # Metrics
    "compute_metrics", "derive_status", "leg_pnl", "remaining_quantity",
    "round_to_2", "with_computed_metrics",
    # Engines
    "MemoryKeyValueStore", "SqliteKeyValueStore", "TradeLedger", "MarkApplyResult",
    "AnalyticsSummary", "build_analytics_summary",
]
