"""
Persisted Record Parsing
========================

Trade ingestion points (local store, remote store) go through here.
Records are parsed one at a time so a single corrupt entry is dropped
instead of invalidating the whole collection.

Trade shapes are dispatched by schema version:
  v1 — legacy: one embedded exitPrice, no exitLegs list
  v2 — current: ordered exitLegs, derived fields recomputed on load
"""

from __future__ import annotations
import json
import logging
import math
from typing import Any, Callable, Dict, List, Mapping, Optional, TypeVar

from tradelog.journal.trade_math import with_computed_metrics
from tradelog.journal.trade_models import (
    ExitLeg, Trade, TradeDirection, TradeStatus,
    random_id, to_iso, utc_now,
)
from tradelog.utils.exceptions import MalformedPersistedData

logger = logging.getLogger("record_parser")

T = TypeVar("T")

LEGACY_SCHEMA_VERSION = 1
CURRENT_SCHEMA_VERSION = 2


# ── Coercion helpers ─────────────────────────────────────────

def to_number(value: Any, fallback: float = 0.0) -> float:
    """Finite numbers and numeric strings pass; anything else is `fallback`."""
    if isinstance(value, bool):
        return fallback
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else fallback
    if isinstance(value, str):
        try:
            parsed = float(value.strip())
        except ValueError:
            return fallback
        return parsed if math.isfinite(parsed) else fallback
    return fallback


def _opt_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def _direction(value: Any) -> TradeDirection:
    return TradeDirection.SHORT if value == "short" else TradeDirection.LONG


# ── Version detection ────────────────────────────────────────

def detect_schema_version(raw: Any) -> Optional[int]:
    if not isinstance(raw, Mapping):
        return None
    explicit = raw.get("schemaVersion")
    if isinstance(explicit, int) and not isinstance(explicit, bool):
        return explicit
    if not isinstance(raw.get("exitLegs"), list) and "exitPrice" in raw:
        return LEGACY_SCHEMA_VERSION
    return CURRENT_SCHEMA_VERSION


# ── Trade parsers ────────────────────────────────────────────

def parse_legacy_trade(raw: Mapping[str, Any]) -> Trade:
    """Migrate a v1 record into one synthesized exit leg covering the full size."""
    created_at = to_iso(utc_now())
    today = created_at[:10]
    quantity = to_number(raw.get("quantity"))
    exit_price = to_number(raw.get("exitPrice"))
    date = _opt_str(raw.get("date")) or today
    has_exit = exit_price > 0

    legs = []
    if has_exit:
        legs.append(ExitLeg(
            id=random_id("leg"),
            date=date,
            quantity=quantity,
            exit_price=exit_price,
        ))

    raw_id = raw.get("id")
    trade = Trade(
        id=str(raw_id) if raw_id is not None else random_id("trade"),
        date=date,
        symbol=str(raw.get("symbol") or "").upper(),
        direction=_direction(raw.get("direction")),
        entry_price=to_number(raw.get("entryPrice")),
        quantity=quantity,
        status=TradeStatus.CLOSED if has_exit else TradeStatus.OPEN,
        exit_legs=legs,
        setup=_opt_str(raw.get("setup")),
        emotion=_opt_str(raw.get("emotion")),
        notes=_opt_str(raw.get("notes")),
        created_at=created_at,
        updated_at=created_at,
    )
    return with_computed_metrics(trade)


def _parse_leg(raw: Mapping[str, Any], fallback_date: str) -> ExitLeg:
    fees = raw.get("fees")
    return ExitLeg(
        id=_opt_str(raw.get("id")) or random_id("leg"),
        date=_opt_str(raw.get("date")) or fallback_date,
        quantity=to_number(raw.get("quantity")),
        exit_price=to_number(raw.get("exitPrice")),
        fees=None if fees is None else to_number(fees),
        note=_opt_str(raw.get("note")),
    )


def parse_trade_v2(raw: Mapping[str, Any]) -> Trade:
    trade_id = raw.get("id")
    if not isinstance(trade_id, str):
        raise MalformedPersistedData("trade record has no string id")

    created_at = _opt_str(raw.get("createdAt")) or to_iso(utc_now())
    updated_at = _opt_str(raw.get("updatedAt")) or created_at
    fallback_date = created_at[:10]
    raw_legs = raw.get("exitLegs")
    mark = raw.get("markPrice")

    trade = Trade(
        id=trade_id,
        date=_opt_str(raw.get("date")) or fallback_date,
        symbol=(_opt_str(raw.get("symbol")) or "").upper(),
        direction=_direction(raw.get("direction")),
        entry_price=to_number(raw.get("entryPrice")),
        quantity=to_number(raw.get("quantity")),
        status=TradeStatus.CLOSED if raw.get("status") == "closed" else TradeStatus.OPEN,
        exit_legs=[
            _parse_leg(leg, fallback_date)
            for leg in (raw_legs if isinstance(raw_legs, list) else [])
            if isinstance(leg, Mapping)
        ],
        mark_price=None if mark is None else to_number(mark),
        mark_price_updated_at=_opt_str(raw.get("markPriceUpdatedAt")),
        setup=_opt_str(raw.get("setup")),
        emotion=_opt_str(raw.get("emotion")),
        notes=_opt_str(raw.get("notes")),
        created_at=created_at,
        updated_at=updated_at,
        user_id=_opt_str(raw.get("userId")),
    )
    return with_computed_metrics(trade)


TRADE_PARSERS: Dict[int, Callable[[Mapping[str, Any]], Trade]] = {
    LEGACY_SCHEMA_VERSION: parse_legacy_trade,
    CURRENT_SCHEMA_VERSION: parse_trade_v2,
}


def parse_trade(raw: Any) -> Optional[Trade]:
    """Validated Trade, or None when this one record must be rejected."""
    version = detect_schema_version(raw)
    if version is None:
        logger.debug("Dropping non-object trade record: %r", type(raw).__name__)
        return None
    parser = TRADE_PARSERS.get(version)
    if parser is None:
        logger.warning("Dropping trade record with unknown schema version %s", version)
        return None
    try:
        return parser(raw)
    except MalformedPersistedData as e:
        logger.warning("Dropping malformed trade record: %s", e.message)
        return None


# ── Collections ──────────────────────────────────────────────

def parse_collection(payload: Any, parse_one: Callable[[Any], Optional[T]]) -> List[T]:
    """
    Accepts JSON text or an already-decoded list. Unparseable text or a
    non-array decodes to an empty collection; bad records are dropped.
    """
    if payload is None:
        return []
    if isinstance(payload, (str, bytes)):
        try:
            payload = json.loads(payload)
        except (ValueError, TypeError) as e:
            logger.error("Persisted collection is not valid JSON: %s", e)
            return []
    if not isinstance(payload, list):
        logger.error("Persisted collection is not an array (got %s)", type(payload).__name__)
        return []

    parsed = []
    for raw in payload:
        item = parse_one(raw)
        if item is not None:
            parsed.append(item)
    dropped = len(payload) - len(parsed)
    if dropped:
        logger.warning("Dropped %d malformed record(s) of %d", dropped, len(payload))
    return parsed
