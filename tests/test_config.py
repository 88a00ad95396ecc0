"""Tests for settings and logging."""

import io
import logging

import pytest
from pydantic import ValidationError

from meterway.config import GatewaySettings
from meterway.types import TokenLimits
from meterway.utils.logging import StructuredLogger, configure_logging, get_logger


class TestGatewaySettings:
    """Tests for GatewaySettings."""

    def test_defaults(self):
        settings = GatewaySettings()

        assert settings.openai_api_key is None
        assert settings.request_timeout == 120.0
        assert settings.max_retries == 3
        assert settings.default_limits == TokenLimits(global_limit=1_000_000, monthly_limit=100_000)

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        monkeypatch.setenv("ANTHROPIC_API_KEY", "")
        monkeypatch.setenv("OPENROUTER_APP_NAME", "Meterway")
        monkeypatch.setenv("DEFAULT_TOKEN_LIMIT_MONTHLY", "0")
        monkeypatch.setenv("AI_REQUEST_TIMEOUT", "30")
        monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)

        settings = GatewaySettings.from_env()

        assert settings.openai_api_key == "sk-test"
        assert settings.anthropic_api_key is None
        assert settings.openrouter_api_key is None
        assert settings.openrouter_app_name == "Meterway"
        assert settings.default_limits.monthly_limit == 0
        assert settings.request_timeout == 30.0

    def test_negative_limit_rejected(self):
        with pytest.raises(ValidationError):
            GatewaySettings(default_token_limit_global=-1)


class TestLogging:
    """Tests for the logging helpers."""

    def test_configure_logging_with_custom_handler(self, root_logger):
        buffer = io.StringIO()

        configure_logging("debug", format_string="%(levelname)s %(name)s %(message)s",
                          handler=logging.StreamHandler(buffer))
        get_logger("quota").debug("checked")

        assert buffer.getvalue() == "DEBUG meterway.quota checked\n"
        assert root_logger.propagate is False

    def test_structured_logger_appends_context(self, caplog):
        log = StructuredLogger("gateway").with_context(provider="openai")

        with caplog.at_level(logging.INFO, logger="meterway.gateway"):
            log.info("AI chat completed", tokens=120)

        assert caplog.records[-1].name == "meterway.gateway"
        assert caplog.records[-1].getMessage() == "AI chat completed | provider=openai tokens=120"

    def test_with_context_does_not_mutate_parent(self, caplog):
        parent = StructuredLogger("usage")
        parent.with_context(user_id="u1")

        with caplog.at_level(logging.WARNING, logger="meterway.usage"):
            parent.warning("plain")

        assert caplog.records[-1].getMessage() == "plain"

    def test_configure_logging_twice_keeps_one_handler(self, root_logger):
        buffer = io.StringIO()

        configure_logging("info", handler=logging.StreamHandler(io.StringIO()))
        configure_logging("info", format_string="%(message)s", handler=logging.StreamHandler(buffer))
        get_logger("gateway").info("once")

        assert len(root_logger.handlers) == 1
        assert buffer.getvalue() == "once\n"
