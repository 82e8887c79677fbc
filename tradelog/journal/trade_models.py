"""
Trade Journal Data Models
=========================

Trade     — one opened position with its ordered partial-exit legs
ExitLeg   — one closing fill (own date, quantity, price, fee)
Inputs    — CreateOpenTradeInput / TradeUpdate / AddExitLegInput

All models are dataclasses with to_dict() producing the persisted camelCase
shape shared with the remote store. Parsing the other way lives in
record_parser.py because persisted data is untrusted.
Timestamps are ISO-8601 strings so they order lexicographically.
"""

from __future__ import annotations
import random
import string
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Dict, Any, List, Union


SCHEMA_VERSION = 2


# ── Enums ────────────────────────────────────────────────────

class TradeDirection(str, Enum):
    LONG = "long"
    SHORT = "short"


class TradeStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


# ── Helpers ──────────────────────────────────────────────────

_ID_ALPHABET = string.ascii_lowercase + string.digits


def random_id(prefix: str) -> str:
    """`<prefix>_<epoch-ms>_<7 base36 chars>`, same shape the web client writes."""
    suffix = "".join(random.choices(_ID_ALPHABET, k=7))
    return f"{prefix}_{int(time.time() * 1000)}_{suffix}"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(moment: datetime) -> str:
    """Millisecond ISO-8601 with a trailing Z so strings sort chronologically."""
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc).replace(tzinfo=None)
    return moment.isoformat(timespec="milliseconds") + "Z"


def _drop_none(d: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in d.items() if v is not None}


# ── Entities ─────────────────────────────────────────────────

@dataclass
class ExitLeg:
    """Single partial (or full) closing fill. Immutable once appended."""
    id: str
    date: str                    # YYYY-MM-DD
    quantity: float
    exit_price: float
    fees: Optional[float] = None
    note: Optional[str] = None

    def to_dict(self) -> dict:
        return _drop_none({
            "id": self.id,
            "date": self.date,
            "quantity": self.quantity,
            "exitPrice": self.exit_price,
            "fees": self.fees,
            "note": self.note,
        })


@dataclass
class Trade:
    """
    One opened position. Derived P&L fields are owned by trade_math and are
    recomputed after every structural change; never set them by hand.
    """
    # ── Identification ──
    id: str
    date: str
    symbol: str
    direction: TradeDirection
    entry_price: float
    quantity: float              # original size, exits never shrink it

    # ── Lifecycle ──
    status: TradeStatus = TradeStatus.OPEN
    exit_legs: List[ExitLeg] = field(default_factory=list)
    mark_price: Optional[float] = None
    mark_price_updated_at: Optional[str] = None

    # ── Free text ──
    setup: Optional[str] = None
    emotion: Optional[str] = None
    notes: Optional[str] = None

    # ── Derived ──
    remaining_quantity: float = 0.0
    realized_pnl: float = 0.0
    unrealized_pnl: float = 0.0
    total_pnl: float = 0.0
    realized_pnl_percent: float = 0.0
    total_pnl_percent: float = 0.0

    # ── Bookkeeping ──
    created_at: str = ""
    updated_at: str = ""
    user_id: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.status == TradeStatus.OPEN

    def to_dict(self) -> dict:
        return _drop_none({
            "schemaVersion": SCHEMA_VERSION,
            "id": self.id,
            "date": self.date,
            "symbol": self.symbol,
            "direction": self.direction.value,
            "entryPrice": self.entry_price,
            "quantity": self.quantity,
            "status": self.status.value,
            "exitLegs": [leg.to_dict() for leg in self.exit_legs],
            "markPrice": self.mark_price,
            "markPriceUpdatedAt": self.mark_price_updated_at,
            "setup": self.setup,
            "emotion": self.emotion,
            "notes": self.notes,
            "realizedPnl": self.realized_pnl,
            "unrealizedPnl": self.unrealized_pnl,
            "totalPnl": self.total_pnl,
            "realizedPnlPercent": self.realized_pnl_percent,
            "totalPnlPercent": self.total_pnl_percent,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "userId": self.user_id,
        })


@dataclass
class TradeMetrics:
    remaining_quantity: float
    realized_pnl: float
    unrealized_pnl: float
    total_pnl: float
    realized_pnl_percent: float
    total_pnl_percent: float


# ── Mutation inputs ──────────────────────────────────────────

@dataclass
class AddExitLegInput:
    date: str
    quantity: float
    exit_price: float
    fees: Optional[float] = None
    note: Optional[str] = None


@dataclass
class CreateOpenTradeInput:
    date: str
    symbol: str
    direction: TradeDirection
    entry_price: float
    quantity: float
    setup: Optional[str] = None
    emotion: Optional[str] = None
    notes: Optional[str] = None
    mark_price: Optional[float] = None
    initial_exit_leg: Optional[AddExitLegInput] = None
    user_id: Optional[str] = None


class _Unset:
    """Marks a TradeUpdate field the caller did not supply."""

    _instance: Optional["_Unset"] = None

    def __new__(cls) -> "_Unset":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET = _Unset()


@dataclass
class TradeUpdate:
    """
    Partial update. Fields left as None keep the current value, except
    mark_price where None explicitly clears the mark and UNSET leaves it.
    """
    date: Optional[str] = None
    symbol: Optional[str] = None
    direction: Optional[TradeDirection] = None
    entry_price: Optional[float] = None
    quantity: Optional[float] = None
    setup: Optional[str] = None
    emotion: Optional[str] = None
    notes: Optional[str] = None
    mark_price: Union[float, None, _Unset] = UNSET

    @property
    def has_mark_price(self) -> bool:
        return self.mark_price is not UNSET
