"""
Quote Provider — upstream market quotes and symbol search
━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
Provides:
• Candidate symbol resolution across the two supported markets
• Single and sequential batch quote lookup
• Free-text symbol search (suggestions)

Ticker symbols are ambiguous across markets, so a bare symbol is tried as
primary-suffix, then secondary-suffix, then bare; the first positive price
wins. An explicit suffix is only ever tried literally.
"""

from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional
from urllib.parse import quote

import aiohttp
from aiolimiter import AsyncLimiter

from tradelog.api.schemas import SymbolSuggestion
from tradelog.utils.config import Settings, get_settings
from tradelog.utils.exceptions import TransportFailure
from tradelog.utils.logger import get_logger

logger = get_logger(__name__)

REQUEST_HEADERS: dict[str, str] = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36",
    "Accept": "application/json",
    "Accept-Language": "en-US,en;q=0.9",
}

MAX_SUGGESTIONS = 8


@dataclass
class Resolution:
    symbol: str
    resolved_symbol: str
    price: Optional[float] = None

    @property
    def found(self) -> bool:
        return self.price is not None


@dataclass
class BatchQuote:
    prices: dict[str, float] = field(default_factory=dict)
    failed: list[str] = field(default_factory=list)


def positive_price(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value) if math.isfinite(value) and value > 0 else None


class YahooQuoteProvider:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._settings = settings or get_settings()
        self._session: Optional[aiohttp.ClientSession] = None
        self._limiter = AsyncLimiter(self._settings.provider_rate_limit, 1)
        self._sleep = sleep

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers=REQUEST_HEADERS,
                timeout=aiohttp.ClientTimeout(total=self._settings.http_timeout_seconds),
            )
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    async def _get_json(self, url: str, params: Optional[dict[str, Any]] = None) -> Any:
        try:
            async with self._limiter:
                session = await self._get_session()
                async with session.get(url, params=params) as response:
                    if response.status == 429:
                        logger.warning("provider_rate_limited", url=url)
                        raise TransportFailure("Too many requests, please wait", 429)
                    if response.status != 200:
                        raise TransportFailure(f"Provider request failed ({response.status})", response.status)
                    return await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportFailure(f"Provider unreachable: {e}") from e

    # ────────────────────────────────────────────────────────
    # Candidate Resolution
    # ────────────────────────────────────────────────────────

    def candidate_symbols(self, raw_symbol: str, raw_mode: bool = False) -> list[str]:
        cleaned = raw_symbol.strip().upper()
        if not cleaned:
            return []
        if raw_mode or "." in cleaned:
            return [cleaned]
        return [
            f"{cleaned}{self._settings.primary_suffix}",
            f"{cleaned}{self._settings.secondary_suffix}",
            cleaned,
        ]

    async def fetch_quote(self, candidate: str) -> Optional[float]:
        """regularMarketPrice for one literal provider symbol, or None."""
        url = f"{self._settings.quote_base_url}/{quote(candidate, safe='')}"
        try:
            data = await self._get_json(url, {"interval": "1d", "range": "1d"})
        except TransportFailure as e:
            logger.debug("quote_fetch_failed", candidate=candidate, error=str(e))
            return None
        try:
            meta = data["chart"]["result"][0]["meta"]
        except (KeyError, IndexError, TypeError):
            return None
        return positive_price(meta.get("regularMarketPrice") if isinstance(meta, dict) else None)

    async def resolve(self, raw_symbol: str, raw_mode: bool = False) -> Resolution:
        cleaned = raw_symbol.strip().upper()
        candidates = self.candidate_symbols(cleaned, raw_mode)
        for candidate in candidates:
            price = await self.fetch_quote(candidate)
            if price is not None:
                logger.debug("symbol_resolved", symbol=cleaned, resolved=candidate, price=price)
                return Resolution(symbol=cleaned, resolved_symbol=candidate, price=price)
        return Resolution(symbol=cleaned, resolved_symbol=candidates[0] if candidates else cleaned)

    async def resolve_many(self, symbols: list[str], delay: Optional[float] = None) -> BatchQuote:
        """Sequential resolution with a courtesy delay between symbols."""
        pause = self._settings.provider_batch_delay_seconds if delay is None else delay
        unique = list(dict.fromkeys(s.strip().upper() for s in symbols if s.strip()))
        result = BatchQuote()
        for index, symbol in enumerate(unique):
            if index > 0 and pause > 0:
                await self._sleep(pause)
            resolution = await self.resolve(symbol)
            if resolution.price is None:
                result.failed.append(symbol)
            else:
                result.prices[symbol] = resolution.price
        if result.failed:
            logger.info("batch_partial_failure", failed=result.failed, resolved=len(result.prices))
        return result

    # ────────────────────────────────────────────────────────
    # Search
    # ────────────────────────────────────────────────────────

    def _display_symbol(self, provider_symbol: str) -> str:
        normalized = provider_symbol.strip().upper()
        for suffix in (self._settings.primary_suffix, self._settings.secondary_suffix):
            if normalized.endswith(suffix):
                return normalized[: -len(suffix)]
        return normalized

    def _is_supported_market(self, provider_symbol: str) -> bool:
        return (
            provider_symbol.endswith(self._settings.primary_suffix)
            or provider_symbol.endswith(self._settings.secondary_suffix)
            or "." not in provider_symbol
        )

    async def search(self, query: str, limit: int = MAX_SUGGESTIONS) -> list[SymbolSuggestion]:
        """Raises TransportFailure when the provider cannot be reached."""
        data = await self._get_json(
            self._settings.quote_search_url,
            {"q": query, "lang": "en-US", "quotesCount": 10, "newsCount": 0},
        )
        quotes = data.get("quotes") if isinstance(data, dict) else None
        suggestions: list[SymbolSuggestion] = []
        for item in quotes or []:
            if not isinstance(item, dict):
                continue
            symbol = item.get("symbol")
            if not isinstance(symbol, str) or not symbol:
                continue
            provider_symbol = symbol.upper()
            if not self._is_supported_market(provider_symbol):
                continue
            display = self._display_symbol(provider_symbol)
            suggestions.append(SymbolSuggestion(
                symbol=display,
                resolved_symbol=provider_symbol,
                name=item.get("shortname") or item.get("longname") or display,
                exchange=item.get("exchDisp") or "",
            ))
            if len(suggestions) >= limit:
                break
        return suggestions
