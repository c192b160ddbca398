"""Tests for structured logging configuration."""

import json
import logging
import sys
from unittest.mock import patch

from checkpoint.app.core.logging import (
    ContextFilter,
    JSONFormatter,
    get_log_context,
    get_logger,
    get_logging_config,
)


def make_record(msg: str = "Test message", **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="test",
        level=logging.WARNING,
        pathname="test.py",
        lineno=1,
        msg=msg,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:
    """Test JSON formatter for structured logging."""

    def test_basic_json_format(self):
        data = json.loads(JSONFormatter().format(make_record()))

        assert data["level"] == "WARNING"
        assert data["logger"] == "test"
        assert data["message"] == "Test message"
        assert "timestamp" in data
        assert data["source"]["file"] == "test.py"
        assert data["source"]["line"] == 1

    def test_json_format_with_context(self):
        record = make_record(
            "Rate limit exceeded",
            rate_limit_key="checkpoint:token_bucket:api:ab12",
            remaining=-1,
        )

        data = json.loads(JSONFormatter().format(record))

        assert data["rate_limit_key"] == "checkpoint:token_bucket:api:ab12"
        assert data["remaining"] == -1
        assert "extra" not in data

    def test_none_context_fields_omitted(self):
        record = make_record()
        ContextFilter().filter(record)

        data = json.loads(JSONFormatter().format(record))

        assert "rate_limit_key" not in data
        assert "path" not in data

    def test_unknown_extras_grouped(self):
        data = json.loads(JSONFormatter().format(make_record(bucket_size=4)))
        assert data["extra"] == {"bucket_size": 4}

    def test_exception_info(self):
        try:
            raise ValueError("boom")
        except ValueError:
            record = make_record()
            record.exc_info = sys.exc_info()

        data = json.loads(JSONFormatter().format(record))
        assert any("ValueError: boom" in line for line in data["exception"])


class TestContextFilter:
    def test_adds_defaults(self):
        record = make_record()
        assert ContextFilter().filter(record) is True
        assert record.rate_limit_key is None
        assert record.scope is None

    def test_keeps_existing_values(self):
        record = make_record(rate_limit_key="k")
        ContextFilter().filter(record)
        assert record.rate_limit_key == "k"


class TestLoggingConfig:
    def test_text_format(self):
        with patch("checkpoint.app.core.logging.settings") as mock_settings:
            mock_settings.log_format = "text"
            mock_settings.log_level = "debug"
            config = get_logging_config()

        assert config["handlers"]["console"]["formatter"] == "standard"
        assert config["loggers"]["checkpoint"]["level"] == "DEBUG"

    def test_json_format(self):
        with patch("checkpoint.app.core.logging.settings") as mock_settings:
            mock_settings.log_format = "json"
            mock_settings.log_level = "INFO"
            config = get_logging_config()

        assert config["handlers"]["console"]["formatter"] == "json"
        assert config["formatters"]["json"]["()"] == "checkpoint.app.core.logging.JSONFormatter"

    def test_structured_format(self):
        with patch("checkpoint.app.core.logging.settings") as mock_settings:
            mock_settings.log_format = "structured"
            mock_settings.log_level = "INFO"
            config = get_logging_config()

        assert config["handlers"]["console"]["formatter"] == "structured"


class TestHelpers:
    def test_get_logger(self):
        assert get_logger().name == "checkpoint"
        assert get_logger("checkpoint.test").name == "checkpoint.test"

    def test_get_log_context_filters_none(self):
        context = get_log_context(rate_limit_key="k", path=None, remaining=2)
        assert context == {"rate_limit_key": "k", "remaining": 2}
