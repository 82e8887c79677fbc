"""
Local Storage — key/value collections persisted on this device
==============================================================

Two collection keys, "trades" and "goals", each hold a JSON array; the
reminder keys hold a single timestamp or period string.
Access returns an optional value; a missing key or a failing backend is a
normal branch (None / False), never an exception for the caller.
"""

from __future__ import annotations
import logging
import os
import sqlite3
import threading
from typing import Dict, Optional, Protocol

logger = logging.getLogger("local_store")

TRADES_KEY = "trades"
GOALS_KEY = "goals"
WEEKLY_REVIEW_KEY = "reminders.weekly_review.completed_at"
MONTH_END_KEY = "reminders.month_end.completed_period"


class KeyValueStore(Protocol):
    def read(self, key: str) -> Optional[str]: ...

    def write(self, key: str, value: str) -> bool: ...

    def delete(self, key: str) -> None: ...


class MemoryKeyValueStore:
    """Process-local store, used in tests and when no disk is wanted."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def read(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def write(self, key: str, value: str) -> bool:
        self._data[key] = value
        return True

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class SqliteKeyValueStore:
    """
    SQLite-backed store. Thread-safe via one connection per thread.
    """

    def __init__(self, db_path: str = "data/tradelog.db"):
        self._db_path = db_path
        os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)
        self._local = threading.local()
        self._init_db()
        logger.info("SqliteKeyValueStore initialized: %s", db_path)

    def _get_conn(self) -> sqlite3.Connection:
        if not hasattr(self._local, "conn") or self._local.conn is None:
            self._local.conn = sqlite3.connect(self._db_path, timeout=10)
            self._local.conn.row_factory = sqlite3.Row
            self._local.conn.execute("PRAGMA journal_mode=WAL")
            self._local.conn.execute("PRAGMA synchronous=NORMAL")
        return self._local.conn

    def _init_db(self):
        conn = self._get_conn()
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS kv_store (
                key         TEXT PRIMARY KEY,
                value       TEXT NOT NULL,
                updated_at  TEXT DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
            );
        """)
        conn.commit()

    def read(self, key: str) -> Optional[str]:
        try:
            row = self._get_conn().execute(
                "SELECT value FROM kv_store WHERE key = ?", (key,)).fetchone()
        except sqlite3.Error as e:
            logger.error("Failed to read %s: %s", key, e)
            return None
        return row["value"] if row else None

    def write(self, key: str, value: str) -> bool:
        conn = self._get_conn()
        try:
            conn.execute("""
                INSERT OR REPLACE INTO kv_store (key, value, updated_at)
                VALUES (?, ?, strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
            """, (key, value))
            conn.commit()
        except sqlite3.Error as e:
            logger.error("Failed to write %s: %s", key, e)
            return False
        return True

    def delete(self, key: str) -> None:
        conn = self._get_conn()
        try:
            conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
            conn.commit()
        except sqlite3.Error as e:
            logger.error("Failed to delete %s: %s", key, e)

    def close(self) -> None:
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            conn.close()
            self._local.conn = None
