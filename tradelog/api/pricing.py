"""
Pricing Service — cached mark prices with graceful degradation
━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
Provides:
• PriceCache: TTL cache keyed by normalized symbol, lazily evicted
• PriceSource: where quotes come from (this project's HTTP endpoints, or the
  quote provider directly)
• PriceService: single and batch lookups; a failed batch call degrades to
  sequential single calls, and unresolved symbols are reported, never raised
"""

from __future__ import annotations

import asyncio
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Iterable, Optional, Protocol

import aiohttp

from tradelog.api.quote_provider import YahooQuoteProvider, positive_price
from tradelog.utils.config import Settings, get_settings
from tradelog.utils.exceptions import TransportFailure
from tradelog.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_SOURCE = "Yahoo Finance"
SYMBOL_PATTERN = re.compile(r"^[A-Z0-9.-]{1,20}$")


@dataclass
class PriceQuote:
    symbol: str
    price: float
    timestamp: datetime
    source: str = DEFAULT_SOURCE
    resolved_symbol: Optional[str] = None


@dataclass
class PriceBatch:
    prices: dict[str, float] = field(default_factory=dict)
    failed: list[str] = field(default_factory=list)


def normalize_symbol(symbol: str) -> str:
    return symbol.strip().upper()


def friendly_error_message(status: int) -> str:
    if status == 404:
        return "Symbol not found"
    if status == 429:
        return "Too many requests, please wait"
    if status >= 500:
        return "Price service temporarily unavailable"
    return f"Request failed ({status})"


# ────────────────────────────────────────────────────────────────
# Sources
# ────────────────────────────────────────────────────────────────

class PriceSource(Protocol):
    async def fetch_batch(self, symbols: list[str]) -> PriceBatch:
        """Raises TransportFailure when the batch call fails as a whole."""
        ...

    async def fetch_single(self, symbol: str) -> Optional[PriceQuote]:
        """Never raises; None when the symbol could not be priced."""
        ...


class HttpPriceSource:
    """Client for the /price and /prices endpoints served by tradelog.api.webapp."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                base_url=self._settings.price_api_base_url,
                headers={"Accept": "application/json"},
                timeout=aiohttp.ClientTimeout(total=self._settings.http_timeout_seconds),
            )
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    async def fetch_batch(self, symbols: list[str]) -> PriceBatch:
        session = await self._get_session()
        try:
            async with session.get("/prices", params={"symbols": ",".join(symbols)}) as response:
                if response.status != 200:
                    logger.warning("batch_api_failed", status=response.status,
                                   reason=friendly_error_message(response.status))
                    raise TransportFailure(f"Batch API error: {response.status}", response.status)
                payload = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportFailure(f"Batch API unreachable: {e}") from e

        if not isinstance(payload, dict):
            raise TransportFailure("Batch API returned a non-object payload")
        batch = PriceBatch()
        for symbol, price in (payload.get("prices") or {}).items():
            parsed = positive_price(price)
            if parsed is not None:
                batch.prices[normalize_symbol(symbol)] = parsed
        failed = payload.get("failed")
        if isinstance(failed, list):
            batch.failed = [normalize_symbol(s) for s in failed if isinstance(s, str)]
        return batch

    async def fetch_single(self, symbol: str) -> Optional[PriceQuote]:
        try:
            session = await self._get_session()
            async with session.get("/price", params={"symbol": symbol}) as response:
                if response.status != 200:
                    logger.warning("price_api_failed", symbol=symbol,
                                   reason=friendly_error_message(response.status))
                    return None
                data: Any = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning("price_api_unreachable", symbol=symbol, error=str(e))
            return None

        if not isinstance(data, dict):
            return None
        price = positive_price(data.get("price"))
        if price is None:
            logger.warning("price_api_invalid_price", symbol=symbol)
            return None
        timestamp = datetime.now(timezone.utc)
        if isinstance(data.get("timestamp"), str):
            try:
                timestamp = datetime.fromisoformat(data["timestamp"].replace("Z", "+00:00"))
            except ValueError:
                pass
        return PriceQuote(
            symbol=data["symbol"] if isinstance(data.get("symbol"), str) else normalize_symbol(symbol),
            price=price,
            timestamp=timestamp,
            source=data["source"] if isinstance(data.get("source"), str) else DEFAULT_SOURCE,
            resolved_symbol=data.get("resolvedSymbol"),
        )


class ProviderPriceSource:
    """Talks to the quote provider in-process, skipping the HTTP hop."""

    def __init__(self, provider: YahooQuoteProvider) -> None:
        self._provider = provider

    async def fetch_batch(self, symbols: list[str]) -> PriceBatch:
        quotes = await self._provider.resolve_many(symbols)
        return PriceBatch(prices=dict(quotes.prices), failed=list(quotes.failed))

    async def fetch_single(self, symbol: str) -> Optional[PriceQuote]:
        resolution = await self._provider.resolve(symbol)
        if resolution.price is None:
            return None
        return PriceQuote(
            symbol=resolution.symbol,
            price=resolution.price,
            timestamp=datetime.now(timezone.utc),
            resolved_symbol=resolution.resolved_symbol,
        )


# ────────────────────────────────────────────────────────────────
# Cache
# ────────────────────────────────────────────────────────────────

@dataclass
class _CacheEntry:
    price: float
    fetched_at: float


class PriceCache:
    """
    TTL cache owned by whoever builds the PriceService. Stale entries are
    evicted on lookup; nothing runs in the background.
    """

    def __init__(self, ttl_seconds: float = 300.0, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[str, _CacheEntry] = {}

    def get(self, symbol: str) -> Optional[float]:
        key = normalize_symbol(symbol)
        entry = self._entries.get(key)
        if entry is None:
            logger.debug("price_cache_miss", symbol=key)
            return None
        if self._clock() - entry.fetched_at > self._ttl:
            logger.debug("price_cache_stale", symbol=key)
            del self._entries[key]
            return None
        logger.debug("price_cache_hit", symbol=key)
        return entry.price

    def set(self, symbol: str, price: float) -> None:
        self._entries[normalize_symbol(symbol)] = _CacheEntry(price=price, fetched_at=self._clock())

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


# ────────────────────────────────────────────────────────────────
# Service
# ────────────────────────────────────────────────────────────────

class PriceService:
    def __init__(
        self,
        source: PriceSource,
        cache: Optional[PriceCache] = None,
        settings: Optional[Settings] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._settings = settings or get_settings()
        self._source = source
        self._cache = cache or PriceCache(self._settings.price_cache_ttl_seconds)
        self._sleep = sleep
        self._loading_count = 0

    @property
    def cache(self) -> PriceCache:
        return self._cache

    @property
    def is_loading(self) -> bool:
        return self._loading_count > 0

    def validate_symbol(self, symbol: str) -> bool:
        normalized = normalize_symbol(symbol)
        return bool(normalized) and SYMBOL_PATTERN.match(normalized) is not None

    def clear_cache(self) -> None:
        self._cache.clear()

    def _start_loading(self) -> None:
        self._loading_count += 1

    def _stop_loading(self) -> None:
        self._loading_count = max(0, self._loading_count - 1)

    async def fetch_price(self, symbol: str) -> Optional[PriceQuote]:
        raw = normalize_symbol(symbol)
        if not self.validate_symbol(raw):
            logger.warning("invalid_symbol", symbol=symbol)
            return None

        cached = self._cache.get(raw)
        if cached is not None:
            return PriceQuote(
                symbol=raw, price=cached, timestamp=datetime.now(timezone.utc),
                source=f"{DEFAULT_SOURCE} (cached)",
            )

        self._start_loading()
        try:
            result = await self._source.fetch_single(raw)
            if result is None:
                return None
            self._cache.set(raw, result.price)
            return result
        finally:
            self._stop_loading()

    async def get_mark_price(self, symbol: str) -> Optional[float]:
        result = await self.fetch_price(symbol)
        return result.price if result else None

    async def get_many(self, symbols: Iterable[str]) -> PriceBatch:
        """Prices for every symbol that could be resolved; the rest land in `failed`."""
        requested = [s for s in dict.fromkeys(normalize_symbol(sym) for sym in symbols) if s]
        result = PriceBatch()

        uncached: list[str] = []
        rejected: list[str] = []
        for symbol in requested:
            if not self.validate_symbol(symbol):
                rejected.append(symbol)
                continue
            cached = self._cache.get(symbol)
            if cached is not None:
                result.prices[symbol] = cached
            else:
                uncached.append(symbol)
        if rejected:
            logger.warning("invalid_symbols", symbols=rejected)

        if uncached:
            await self._fetch_uncached(uncached, result)

        result.failed = [s for s in requested if s not in result.prices]
        return result

    async def _fetch_uncached(self, uncached: list[str], result: PriceBatch) -> None:
        self._start_loading()
        try:
            try:
                batch = await self._source.fetch_batch(uncached)
                for symbol, price in batch.prices.items():
                    key = normalize_symbol(symbol)
                    result.prices[key] = price
                    self._cache.set(key, price)
                if batch.failed:
                    logger.warning("batch_failed_symbols", symbols=batch.failed)
            except TransportFailure as e:
                logger.warning("batch_degraded_to_sequential", error=str(e), symbols=len(uncached))
                await self._fetch_sequentially(uncached, result)
        finally:
            self._stop_loading()

    async def _fetch_sequentially(self, symbols: list[str], result: PriceBatch) -> None:
        delay = self._settings.multi_fetch_delay_seconds
        for index, symbol in enumerate(symbols):
            if index > 0:
                await self._sleep(delay)
            single = await self._source.fetch_single(symbol)
            if single is not None:
                result.prices[symbol] = single.price
                self._cache.set(symbol, single.price)

    async def refresh_marks_for(self, open_trades: Iterable[Any]) -> dict[str, float]:
        """trade id → price for trades whose symbol could be priced."""
        open_trades = list(open_trades)
        batch = await self.get_many(t.symbol for t in open_trades)
        by_trade_id: dict[str, float] = {}
        for trade in open_trades:
            price = batch.prices.get(normalize_symbol(trade.symbol))
            if price is not None:
                by_trade_id[trade.id] = price
        return by_trade_id
