from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from tradelog.api.pricing import normalize_symbol
from tradelog.api.quote_provider import YahooQuoteProvider
from tradelog.api.schemas import (
    BatchPriceResponse, ErrorResponse, PriceResponse, SymbolSearchResponse,
)
from tradelog.journal.trade_models import to_iso
from tradelog.utils.exceptions import TransportFailure
from tradelog.utils.logger import get_logger

logger = get_logger(__name__)

_provider: Optional[YahooQuoteProvider] = None


def get_provider() -> YahooQuoteProvider:
    global _provider
    if _provider is None:
        _provider = YahooQuoteProvider()
    return _provider


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    if _provider is not None:
        await _provider.close()


app = FastAPI(title="Trade Log Price API", version="1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "OPTIONS"],
    allow_headers=["Content-Type"],
)


def _now_iso() -> str:
    return to_iso(datetime.now(timezone.utc))


def _is_truthy(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in ("1", "true")


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    if exc.status_code == 405:
        message = "Method not allowed"
    return JSONResponse(ErrorResponse(error=message).to_wire(), status_code=exc.status_code)


# ─── Quotes ─────────────────────────────────────────────────

@app.get("/price")
async def get_price(
    symbol: Optional[str] = None,
    raw: Optional[str] = None,
    provider: YahooQuoteProvider = Depends(get_provider),
) -> dict:
    if not symbol or not symbol.strip():
        raise HTTPException(400, "Symbol is required")
    cleaned = normalize_symbol(symbol)
    try:
        resolution = await provider.resolve(cleaned, raw_mode=_is_truthy(raw))
    except Exception as e:
        logger.error("price_endpoint_failed", symbol=cleaned, error=str(e))
        raise HTTPException(500, "Failed to fetch price")
    if resolution.price is None:
        logger.info("price_not_found", symbol=cleaned)
        raise HTTPException(404, f"Price not found for {cleaned}")

    return PriceResponse(
        symbol=resolution.symbol,
        resolved_symbol=resolution.resolved_symbol,
        price=resolution.price,
        timestamp=_now_iso(),
    ).to_wire()


@app.get("/prices")
async def get_prices(
    symbols: Optional[str] = None,
    provider: YahooQuoteProvider = Depends(get_provider),
) -> dict:
    requested = [s for s in (normalize_symbol(p) for p in (symbols or "").split(",")) if s]
    if not requested:
        raise HTTPException(400, "Symbols are required")
    try:
        batch = await provider.resolve_many(requested)
    except Exception as e:
        logger.error("prices_endpoint_failed", symbols=requested, error=str(e))
        raise HTTPException(500, "Failed to fetch prices")
    return BatchPriceResponse(
        prices=batch.prices, failed=batch.failed, timestamp=_now_iso(),
    ).to_wire()


# ─── Search ─────────────────────────────────────────────────

@app.get("/symbols")
async def search_symbols(
    q: Optional[str] = None,
    provider: YahooQuoteProvider = Depends(get_provider),
) -> dict:
    query = (q or "").strip()
    if not query:
        raise HTTPException(400, "Query is required")
    try:
        suggestions = await provider.search(query)
    except TransportFailure as e:
        logger.warning("symbol_search_failed", query=query, error=str(e))
        raise HTTPException(500, "Failed to fetch suggestions")
    return SymbolSearchResponse(query=query, suggestions=suggestions).to_wire()


@app.options("/{path:path}")
async def preflight(path: str) -> Response:
    return Response(status_code=200)
