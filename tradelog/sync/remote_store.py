"""
Remote Store — one row of trades and goals per user in the cloud
━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
Provides:
• RemoteStore protocol used by the reconciler
• SupabaseRemoteStore: PostgREST over aiohttp, upsert on conflict user_id
• InMemoryRemoteStore: process-local stand-in for offline use and tests

Payloads are raw JSON arrays; parsing and validation happen in the
reconciler so that one bad record never poisons the rest.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

import aiohttp

from tradelog.utils.config import Settings, get_settings
from tradelog.utils.exceptions import RemoteStoreError
from tradelog.utils.logger import get_logger, sanitize_log_data

logger = get_logger(__name__)

MISSING_TABLE_CODE = "42P01"


@dataclass
class RemoteSnapshot:
    user_id: str
    trades: list[Any] = field(default_factory=list)
    goals: list[Any] = field(default_factory=list)
    updated_at: Optional[str] = None


class RemoteStore(Protocol):
    async def fetch(self, user_id: str) -> Optional[RemoteSnapshot]:
        """None when the user has no row yet. Raises RemoteStoreError."""
        ...

    async def upsert(self, user_id: str, trades: list[dict], goals: list[dict], updated_at: str) -> None:
        """Overwrites the user's row. Raises RemoteStoreError."""
        ...


class InMemoryRemoteStore:
    def __init__(self) -> None:
        self.rows: dict[str, RemoteSnapshot] = {}
        self.upsert_count = 0

    async def fetch(self, user_id: str) -> Optional[RemoteSnapshot]:
        row = self.rows.get(user_id)
        if row is None:
            return None
        return RemoteSnapshot(user_id, list(row.trades), list(row.goals), row.updated_at)

    async def upsert(self, user_id: str, trades: list[dict], goals: list[dict], updated_at: str) -> None:
        self.upsert_count += 1
        self.rows[user_id] = RemoteSnapshot(user_id, list(trades), list(goals), updated_at)


class SupabaseRemoteStore:
    """
    Table layout: user_id (primary key), trades jsonb, goals jsonb, updated_at.
    Row-level security scopes reads and writes to the signed-in user, so the
    caller supplies the user's access token.
    """

    def __init__(self, settings: Optional[Settings] = None, access_token: Optional[str] = None) -> None:
        self._settings = settings or get_settings()
        self._access_token = access_token
        self._session: Optional[aiohttp.ClientSession] = None
        logger.debug("remote_store_created", **sanitize_log_data({
            "supabase_url": self._settings.supabase_url,
            "supabase_key": self._settings.supabase_key,
            "table": self._settings.sync_table,
        }))

    @property
    def configured(self) -> bool:
        return bool(self._settings.supabase_url and self._settings.supabase_key)

    def set_access_token(self, token: Optional[str]) -> None:
        self._access_token = token

    @property
    def _table_path(self) -> str:
        return f"/rest/v1/{self._settings.sync_table}"

    def _headers(self) -> dict[str, str]:
        token = self._access_token or self._settings.supabase_key
        return {
            "apikey": self._settings.supabase_key,
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                base_url=self._settings.supabase_url.rstrip("/"),
                timeout=aiohttp.ClientTimeout(total=self._settings.http_timeout_seconds),
            )
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    async def _raise_for_error(self, response: aiohttp.ClientResponse) -> None:
        if response.status < 400:
            return
        try:
            body = await response.json(content_type=None)
        except (aiohttp.ContentTypeError, ValueError):
            body = None
        code = body.get("code") if isinstance(body, dict) else None
        message = body.get("message") if isinstance(body, dict) else None
        if code == MISSING_TABLE_CODE:
            raise RemoteStoreError(
                f"Cloud table '{self._settings.sync_table}' is missing", response.status, code
            )
        raise RemoteStoreError(message or f"Remote store error ({response.status})", response.status, code)

    async def fetch(self, user_id: str) -> Optional[RemoteSnapshot]:
        if not self.configured:
            raise RemoteStoreError("Remote store is not configured")
        params = {"select": "user_id,trades,goals,updated_at", "user_id": f"eq.{user_id}"}
        try:
            session = await self._get_session()
            async with session.get(self._table_path, params=params, headers=self._headers()) as response:
                await self._raise_for_error(response)
                rows = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise RemoteStoreError(f"Remote store unreachable: {e}") from e

        if not isinstance(rows, list) or not rows:
            logger.info("remote_row_missing", user_id=user_id)
            return None
        row = rows[0] if isinstance(rows[0], dict) else {}
        return RemoteSnapshot(
            user_id=user_id,
            trades=row.get("trades") if isinstance(row.get("trades"), list) else [],
            goals=row.get("goals") if isinstance(row.get("goals"), list) else [],
            updated_at=row.get("updated_at"),
        )

    async def upsert(self, user_id: str, trades: list[dict], goals: list[dict], updated_at: str) -> None:
        if not self.configured:
            raise RemoteStoreError("Remote store is not configured")
        headers = self._headers()
        headers["Prefer"] = "resolution=merge-duplicates,return=minimal"
        body = {"user_id": user_id, "trades": trades, "goals": goals, "updated_at": updated_at}
        try:
            session = await self._get_session()
            async with session.post(
                self._table_path, params={"on_conflict": "user_id"}, json=body, headers=headers
            ) as response:
                await self._raise_for_error(response)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise RemoteStoreError(f"Remote store unreachable: {e}") from e
        logger.debug("remote_row_upserted", user_id=user_id, trades=len(trades), goals=len(goals))
