"""Lenient numeric coercion for upstream payloads and query parameters.

Midgard encodes most numbers as JSON strings ("12345") and some as numbers.
One rule applies everywhere:

- int / float values are used as-is (booleans are rejected)
- strings are stripped and parsed
- None, "" and "null" coerce to 0
- anything else raises CoercionError
"""

import math
from typing import Any

_NULL_STRINGS = {"", "null", "none"}


class CoercionError(ValueError):
    """Raised when a value cannot be coerced to a number."""


def _is_null(value: Any) -> bool:
    if value is None:
        return True
    return isinstance(value, str) and value.strip().lower() in _NULL_STRINGS


def coerce_float(value: Any) -> float:
    """
    Coerce a string or number to float.

    Raises:
        CoercionError: If the value is not numeric or not finite
    """
    if _is_null(value):
        return 0.0
    if isinstance(value, bool):
        raise CoercionError(f"Boolean is not a number: {value!r}")
    if isinstance(value, int | float):
        result = float(value)
    elif isinstance(value, str):
        try:
            result = float(value.strip())
        except ValueError as e:
            raise CoercionError(f"Not a number: {value!r}") from e
    else:
        raise CoercionError(f"Expected a string or number, got {type(value).__name__}")

    if not math.isfinite(result):
        raise CoercionError(f"Number is not finite: {value!r}")
    return result


def coerce_int(value: Any) -> int:
    """
    Coerce a string or number to int.

    Integral floats ("3600.0", 3600.0) are accepted; fractional values are not.

    Raises:
        CoercionError: If the value is not an integral number
    """
    if _is_null(value):
        return 0
    if isinstance(value, bool):
        raise CoercionError(f"Boolean is not a number: {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            pass
    number = coerce_float(value)
    if not number.is_integer():
        raise CoercionError(f"Not an integer: {value!r}")
    return int(number)


def parse_optional_int(value: Any, default: int | None = None) -> int | None:
    """
    Parse a request parameter, returning `default` when absent or invalid.

    Unlike coerce_int, empty input means "not given" rather than zero.
    """
    if value is None or (isinstance(value, str) and value.strip() == ""):
        return default
    try:
        return coerce_int(value)
    except CoercionError:
        return default
