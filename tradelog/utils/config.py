from __future__ import annotations

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    price_api_base_url: str = Field(default="http://localhost:3000", description="Base URL of the price endpoints")
    quote_base_url: str = Field(
        default="https://query1.finance.yahoo.com/v8/finance/chart", description="Quote provider chart URL"
    )
    quote_search_url: str = Field(
        default="https://query1.finance.yahoo.com/v1/finance/search", description="Quote provider search URL"
    )
    price_source: str = Field(default="provider", description="\"provider\" (in-process) or \"http\" (price endpoints)")
    primary_suffix: str = Field(default=".NS", description="Market suffix tried first for bare symbols")
    secondary_suffix: str = Field(default=".BO", description="Market suffix tried second for bare symbols")

    price_cache_ttl_seconds: float = Field(default=300.0, description="Price cache time-to-live")
    multi_fetch_delay_seconds: float = Field(default=0.3, description="Delay between sequential single fetches")
    provider_batch_delay_seconds: float = Field(default=0.2, description="Delay between symbols in a batch request")
    provider_rate_limit: float = Field(default=5.0, description="Quote provider requests per second")
    http_timeout_seconds: float = Field(default=15.0, description="Total timeout for outbound HTTP calls")

    store_path: str = Field(default="data/tradelog.db", description="Local SQLite store path")

    supabase_url: str = Field(default="", description="Remote store (PostgREST) base URL")
    supabase_key: str = Field(default="", description="Remote store anon key")
    sync_table: str = Field(default="user_trading_data", description="Remote table holding one row per user")
    sync_debounce_seconds: float = Field(default=1.2, description="Quiet period before pushing local changes")

    log_level: str = Field(default="INFO", description="Logging level")
    log_file: str = Field(default="logs/tradelog.log", description="Log file path")

    host: str = Field(default="0.0.0.0", description="HTTP bind host")
    port: int = Field(default=3000, description="HTTP bind port")

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    global _settings
    _settings = Settings()
    return _settings
