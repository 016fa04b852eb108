"""
Logging Utilities
=================

Structured logging setup and log-safe helpers shared by the API and the
ingestion job.

For On-Call Engineers:
    Logs are JSON lines by default (LOG_FORMAT=json). Query by `message`
    and by the structured fields passed via `extra=`, e.g.:

        fields @timestamp, message, dataset, state, error_type
        | filter logger like /ingestion/
        | filter level = "ERROR"

For Developers:
    - Use logging.getLogger(__name__) in every module
    - Pass context through `extra={...}`, never by formatting user input
      into the message
    - Pass user-controlled values through sanitize_for_log()
    - Log exceptions with get_safe_error_info(e)

Security Notes:
    - Control characters are stripped to prevent log injection (CWE-117)
    - Exception messages are not logged by get_safe_error_info()
"""

import json
import logging
import re
from datetime import UTC, datetime
from typing import Any

# Maximum length for logged user input to prevent log flooding
MAX_LOG_INPUT_LENGTH = 200

# LogRecord attributes that are not user-supplied `extra` fields
_RESERVED_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "asctime"}


def sanitize_for_log(value: Any, max_length: int = MAX_LOG_INPUT_LENGTH) -> str:
    """
    Sanitize a value for safe logging by removing CRLF and limiting length.

    Args:
        value: Value to sanitize (will be converted to string)
        max_length: Maximum length of output (default: 200)

    Returns:
        Sanitized string safe for logging

    Example:
        >>> sanitize_for_log("error\\n[FAKE] Admin logged in")
        'error [FAKE] Admin logged in'
    """
    text = str(value)

    # Remove CRLF characters to prevent log injection
    text = text.replace("\r", " ").replace("\n", " ").replace("\t", " ")

    # Remove other control characters
    text = re.sub(r"[\x00-\x1f\x7f-\x9f]", " ", text)

    if len(text) > max_length:
        text = text[:max_length] + "..."

    return text


def get_safe_error_info(exception: Exception) -> dict[str, str]:
    """
    Extract safe information from an exception for logging.

    Returns only the exception type, NOT the message, which may carry
    upstream response bodies or request input.

    Example:
        >>> try:
        ...     raise ValueError("user input here")
        ... except Exception as e:
        ...     get_safe_error_info(e)
        {'error_type': 'ValueError'}
    """
    return {"error_type": type(exception).__name__}


def get_safe_error_message_for_user(exception: Exception) -> str:
    """
    Get a generic error message to return to API clients.

    Internal details should be logged separately.
    """
    error_messages = {
        "ValueError": "Invalid input provided",
        "KeyError": "Required field missing",
        "TimeoutError": "Request timed out",
        "StoreError": "History store unavailable",
    }

    exception_type = type(exception).__name__
    return error_messages.get(
        exception_type, "An error occurred processing your request"
    )


class JsonFormatter(logging.Formatter):
    """
    Format log records as one JSON object per line.

    Fields passed through `extra=` are merged into the top-level object.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_ATTRS and not key.startswith("_"):
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def configure_logging(level: str = "INFO", fmt: str = "json") -> None:
    """
    Install a single stream handler on the root logger.

    Safe to call more than once; an existing handler installed by this
    function is replaced rather than duplicated.

    Args:
        level: Root log level name
        fmt: "json" for JsonFormatter, anything else for plain text
    """
    root = logging.getLogger()
    for handler in list(root.handlers):
        if getattr(handler, "_midgard_vault", False):
            root.removeHandler(handler)

    handler = logging.StreamHandler()
    handler._midgard_vault = True  # type: ignore[attr-defined]
    if fmt == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
    root.addHandler(handler)
    root.setLevel(level.upper())
