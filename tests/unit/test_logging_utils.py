"""
Unit tests for logging_utils module.

Tests cover:
- sanitize_for_log: CRLF injection prevention
- get_safe_error_info: Safe exception logging
- get_safe_error_message_for_user: User-safe error messages
- JsonFormatter / configure_logging: structured output
"""

import json
import logging

from src.lambdas.shared.store import StoreError
from src.lib.logging_utils import (
    JsonFormatter,
    configure_logging,
    get_safe_error_info,
    get_safe_error_message_for_user,
    sanitize_for_log,
)


class TestSanitizeForLog:
    """Tests for sanitize_for_log function."""

    def test_removes_newlines(self):
        result = sanitize_for_log("line1\nline2\nline3")
        assert result == "line1 line2 line3"

    def test_removes_carriage_returns_and_tabs(self):
        assert sanitize_for_log("a\rb\tc") == "a b c"

    def test_removes_control_characters(self):
        result = sanitize_for_log("text\x00\x1fnull")
        assert "\x00" not in result
        assert "\x1f" not in result

    def test_truncates_long_input(self):
        result = sanitize_for_log("a" * 300)
        assert len(result) == 203  # 200 + "..."
        assert result.endswith("...")

    def test_custom_max_length(self):
        assert len(sanitize_for_log("a" * 100, max_length=50)) == 53

    def test_converts_non_strings(self):
        assert sanitize_for_log(12345) == "12345"


class TestGetSafeErrorInfo:
    """Tests for get_safe_error_info function."""

    def test_returns_only_type(self):
        info = get_safe_error_info(ValueError("secret upstream body"))
        assert info == {"error_type": "ValueError"}


class TestGetSafeErrorMessageForUser:
    """Tests for get_safe_error_message_for_user function."""

    def test_store_error_message(self):
        assert get_safe_error_message_for_user(StoreError("x")) == "History store unavailable"

    def test_value_error_message(self):
        assert get_safe_error_message_for_user(ValueError("x")) == "Invalid input provided"

    def test_unknown_error_is_generic(self):
        message = get_safe_error_message_for_user(RuntimeError("internal detail"))
        assert message == "An error occurred processing your request"
        assert "internal" not in message


class TestJsonFormatter:
    """Tests for structured log output."""

    def test_includes_extra_fields(self):
        record = logging.LogRecord(
            "src.lambdas.ingestion.pump", logging.INFO, __file__, 1, "Run complete", (), None
        )
        record.dataset = "swaps"
        record.batches_stored = 2

        data = json.loads(JsonFormatter().format(record))

        assert data["message"] == "Run complete"
        assert data["level"] == "INFO"
        assert data["logger"] == "src.lambdas.ingestion.pump"
        assert data["dataset"] == "swaps"
        assert data["batches_stored"] == 2

    def test_omits_reserved_attributes(self):
        record = logging.LogRecord("x", logging.INFO, __file__, 1, "m", (), None)
        data = json.loads(JsonFormatter().format(record))
        assert "pathname" not in data
        assert "lineno" not in data


class TestConfigureLogging:
    """Tests for configure_logging."""

    def _our_handlers(self):
        return [h for h in logging.getLogger().handlers if getattr(h, "_midgard_vault", False)]

    def test_repeated_calls_do_not_duplicate_handler(self):
        root = logging.getLogger()
        original_level = root.level
        try:
            configure_logging("INFO", "json")
            configure_logging("DEBUG", "text")

            handlers = self._our_handlers()
            assert len(handlers) == 1
            assert not isinstance(handlers[0].formatter, JsonFormatter)
            assert root.level == logging.DEBUG
        finally:
            for handler in self._our_handlers():
                root.removeHandler(handler)
            root.setLevel(original_level)

    def test_json_format_uses_json_formatter(self):
        root = logging.getLogger()
        original_level = root.level
        try:
            configure_logging("INFO", "json")
            assert isinstance(self._our_handlers()[0].formatter, JsonFormatter)
        finally:
            for handler in self._our_handlers():
                root.removeHandler(handler)
            root.setLevel(original_level)
