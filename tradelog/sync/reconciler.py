"""
Reconciler — last-write-wins merge and the cloud sync lifecycle
━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
Provides:
• merge_by_latest / merge_trades / merge_goals: union by id, the record
  with the greater updatedAt wins in its entirety
• CloudSync: hydrate once per identity (pull, merge, save, push back),
  then push debounced snapshots whenever local state drifts from the
  last one the remote accepted

A push that resolves after the identity changed is discarded by comparing
the generation it was scheduled under with the current one. Upserts run
one at a time, so the newest snapshot is always the last one written.
"""

from __future__ import annotations

import asyncio
import json
from datetime import datetime
from typing import Awaitable, Callable, Iterable, Optional, Protocol, TypeVar

from tradelog.goals.goal_models import Goal
from tradelog.goals.goal_repository import GoalRepository, parse_goal
from tradelog.journal.record_parser import parse_collection, parse_trade
from tradelog.journal.trade_ledger import TradeLedger
from tradelog.journal.trade_models import Trade, to_iso, utc_now
from tradelog.sync.remote_store import RemoteStore
from tradelog.utils.config import Settings, get_settings
from tradelog.utils.exceptions import RemoteStoreError
from tradelog.utils.logger import get_logger

logger = get_logger(__name__)


class Versioned(Protocol):
    id: str
    updated_at: str

    def to_dict(self) -> dict: ...


V = TypeVar("V", bound=Versioned)


# ────────────────────────────────────────────────────────────────
# Merge
# ────────────────────────────────────────────────────────────────

def _canonical(record: Versioned) -> str:
    return json.dumps(record.to_dict(), sort_keys=True, separators=(",", ":"))


def _newer(a: V, b: V) -> V:
    if a.updated_at != b.updated_at:
        return a if a.updated_at > b.updated_at else b
    # Equal timestamps: pick by content so both argument orders agree.
    return a if _canonical(a) >= _canonical(b) else b


def merge_by_latest(local: Iterable[V], remote: Iterable[V]) -> list[V]:
    """Union by id in first-seen order (local, then remote-only records)."""
    merged: dict[str, V] = {}
    for record in list(local) + list(remote):
        current = merged.get(record.id)
        merged[record.id] = record if current is None else _newer(current, record)
    return list(merged.values())


def merge_trades(local: Iterable[Trade], remote: Iterable[Trade]) -> list[Trade]:
    """Newest trade date first, then most recently updated, then id for a total order."""
    merged = merge_by_latest(local, remote)
    merged.sort(key=lambda t: t.id, reverse=True)
    merged.sort(key=lambda t: (t.date, t.updated_at), reverse=True)
    return merged


def merge_goals(local: Iterable[Goal], remote: Iterable[Goal]) -> list[Goal]:
    return merge_by_latest(local, remote)


def snapshot_of(trades: Iterable[Trade], goals: Iterable[Goal]) -> str:
    """Canonical text of the synced state; equal text means nothing to push."""
    return json.dumps(
        {"trades": [t.to_dict() for t in trades], "goals": [g.to_dict() for g in goals]},
        sort_keys=True, separators=(",", ":"),
    )


# ────────────────────────────────────────────────────────────────
# Cloud Sync
# ────────────────────────────────────────────────────────────────

class CloudSync:
    def __init__(
        self,
        ledger: TradeLedger,
        goals: GoalRepository,
        remote: RemoteStore,
        settings: Optional[Settings] = None,
        debounce_seconds: Optional[float] = None,
        clock: Optional[Callable[[], datetime]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._settings = settings or get_settings()
        self._ledger = ledger
        self._goals = goals
        self._remote = remote
        self._debounce = self._settings.sync_debounce_seconds if debounce_seconds is None else debounce_seconds
        self._clock = clock or utc_now
        self._sleep = sleep

        self._user_id: Optional[str] = None
        self._hydrated = False
        self._generation = 0
        self._push_seq = 0
        self._last_synced: Optional[str] = None
        self._notice: Optional[str] = None
        self._pending: Optional[asyncio.Task] = None
        self._pending_quiet = False
        self._push_lock = asyncio.Lock()
        self._tasks: set[asyncio.Task] = set()

    @property
    def user_id(self) -> Optional[str]:
        return self._user_id

    @property
    def is_hydrated(self) -> bool:
        return self._hydrated

    @property
    def notice(self) -> Optional[str]:
        """Last sync problem worth showing to the user, cleared by the next successful push."""
        return self._notice

    def _current_state(self) -> tuple[list[Trade], list[Goal]]:
        return self._ledger.list_trades(), self._goals.list_goals()

    # ─── Identity ───────────────────────────────────────────────

    async def on_identity_available(self, user_id: str) -> None:
        self._cancel_quiet_push()
        self._generation += 1
        generation = self._generation
        self._user_id = user_id
        self._hydrated = False
        self._last_synced = None

        try:
            remote = await self._remote.fetch(user_id)
        except RemoteStoreError as e:
            if generation != self._generation:
                return
            logger.warning("cloud_hydrate_failed", user_id=user_id, error=e.message, code=e.error_code)
            self._notice = f"Cloud sync unavailable: {e.message}"
            self._hydrated = True
            return

        if generation != self._generation:
            logger.debug("cloud_hydrate_discarded", user_id=user_id)
            return

        remote_trades = parse_collection(remote.trades if remote else [], parse_trade)
        remote_goals = parse_collection(remote.goals if remote else [], parse_goal)
        local_trades, local_goals = self._current_state()

        trades = merge_trades(local_trades, remote_trades)
        goals = merge_goals(local_goals, remote_goals)
        self._ledger.save_trades(trades)
        self._goals.save_goals(goals)
        self._hydrated = True
        logger.info(
            "cloud_hydrated", user_id=user_id, trades=len(trades), goals=len(goals),
            remote_trades=len(remote_trades), local_trades=len(local_trades),
        )

        snapshot = snapshot_of(trades, goals)
        try:
            async with self._push_lock:
                await self._push(user_id, trades, goals)
        except RemoteStoreError as e:
            if generation == self._generation:
                logger.warning("cloud_initial_push_failed", user_id=user_id, error=e.message)
                self._notice = f"Signed in, but cloud write failed: {e.message}"
            return
        if generation == self._generation:
            self._last_synced = snapshot
            self._notice = None

    def on_identity_departed(self) -> None:
        self._cancel_quiet_push()
        self._generation += 1
        self._user_id = None
        self._hydrated = False
        self._last_synced = None
        self._notice = None
        logger.info("cloud_sync_detached")

    # ─── Debounced push ─────────────────────────────────────────

    def notify_local_change(self) -> None:
        if self._user_id is None or not self._hydrated:
            return
        trades, goals = self._current_state()
        snapshot = snapshot_of(trades, goals)
        if snapshot == self._last_synced:
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("cloud_push_skipped_no_loop")
            return

        self._cancel_quiet_push()
        self._push_seq += 1
        task = loop.create_task(
            self._push_after_quiet(self._generation, self._push_seq, self._user_id, trades, goals, snapshot),
            name=f"cloud-push-{self._push_seq}",
        )
        task.add_done_callback(self._task_exception_handler)
        self._pending = task
        self._pending_quiet = True
        self._tasks.add(task)

    async def _push_after_quiet(self, generation: int, seq: int, user_id: str,
                                trades: list[Trade], goals: list[Goal], snapshot: str) -> None:
        if self._debounce > 0:
            await self._sleep(self._debounce)
        # Upserts are serialised so an older snapshot can never land after a newer one.
        async with self._push_lock:
            if generation != self._generation or seq != self._push_seq:
                return
            self._pending_quiet = False

            try:
                await self._push(user_id, trades, goals)
            except RemoteStoreError as e:
                if generation == self._generation:
                    logger.warning("cloud_push_failed", user_id=user_id, error=e.message)
                    self._notice = f"Cloud sync failed: {e.message}"
                return

        if generation != self._generation or seq != self._push_seq:
            # A newer push is queued behind this one and will record its own snapshot.
            logger.debug("cloud_push_result_superseded", user_id=user_id, seq=seq)
            return
        self._last_synced = snapshot
        self._notice = None

    async def _push(self, user_id: str, trades: list[Trade], goals: list[Goal]) -> None:
        await self._remote.upsert(
            user_id,
            [t.to_dict() for t in trades],
            [g.to_dict() for g in goals],
            to_iso(self._clock()),
        )
        logger.debug("cloud_pushed", user_id=user_id, trades=len(trades), goals=len(goals))

    def _cancel_quiet_push(self) -> None:
        """Only a push still in its quiet period is cancelled; an in-flight upsert is left to finish."""
        if self._pending is not None and not self._pending.done() and self._pending_quiet:
            self._pending.cancel()
        self._pending = None
        self._pending_quiet = False

    def _task_exception_handler(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("background_task_failed", task=task.get_name(), error=str(exc), exc_info=exc)

    async def wait_idle(self) -> None:
        """Wait for every scheduled push to finish or be cancelled."""
        while self._tasks:
            await asyncio.wait(list(self._tasks))

