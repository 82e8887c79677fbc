"""
Cloud Sync — merge local and remote state, then keep the remote current.

  remote_store.py — per-user remote row (PostgREST or in-memory)
  reconciler.py   — last-write-wins merge and the debounced sync lifecycle
"""

from tradelog.sync.remote_store import (
    InMemoryRemoteStore,
    RemoteSnapshot,
    RemoteStore,
    SupabaseRemoteStore,
)
from tradelog.sync.reconciler import CloudSync, merge_by_latest, merge_goals, merge_trades

__all__ = [
    "InMemoryRemoteStore", "RemoteSnapshot", "RemoteStore", "SupabaseRemoteStore",
    "CloudSync", "merge_by_latest", "merge_goals", "merge_trades",
]
