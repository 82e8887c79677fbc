"""
Tests for logging setup: optional file handler, service context and
credential redaction.
"""

from __future__ import annotations

import logging
from unittest.mock import patch

import pytest
import structlog

from tradelog.utils.config import Settings
from tradelog.utils.logger import REDACTED, redact_sensitive, sanitize_log_data, setup_logging


@pytest.fixture
def basic_config():
    with patch("tradelog.utils.logger.logging.basicConfig") as basic:
        yield basic
    for handler in basic.call_args.kwargs["handlers"]:
        handler.close()
    structlog.contextvars.clear_contextvars()
    structlog.reset_defaults()


class TestSetupLogging:

    def test_empty_log_file_skips_file_handler(self, basic_config):
        setup_logging(Settings(log_file="", log_level="DEBUG"))

        kwargs = basic_config.call_args.kwargs
        assert not any(isinstance(h, logging.FileHandler) for h in kwargs["handlers"])
        assert kwargs["level"] == logging.DEBUG

    def test_log_file_directory_is_created(self, tmp_path, basic_config):
        log_file = tmp_path / "logs" / "tradelog.log"
        setup_logging(Settings(log_file=str(log_file)))

        assert log_file.parent.is_dir()
        handlers = basic_config.call_args.kwargs["handlers"]
        assert any(isinstance(h, logging.FileHandler) for h in handlers)

    def test_service_name_is_bound(self, basic_config):
        setup_logging(Settings(log_file=""), service="tradelog-price-api")
        assert structlog.contextvars.get_contextvars() == {"service": "tradelog-price-api"}


class TestRedaction:

    def test_processor_redacts_event_fields(self):
        event = redact_sensitive(None, "info", {"event": "remote_store_created", "supabase_key": "anon",
                                                "table": "user_trading_data"})
        assert event == {"event": "remote_store_created", "supabase_key": REDACTED,
                         "table": "user_trading_data"}

    def test_nested_and_mixed_case_keys(self):
        sanitized = sanitize_log_data({"headers": {"Authorization": "Bearer jwt", "Accept": "*/*"}})
        assert sanitized == {"headers": {"Authorization": REDACTED, "Accept": "*/*"}}
