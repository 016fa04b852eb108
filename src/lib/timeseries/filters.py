"""
Compact comparison filters for history queries.

Clients send filters as strings such as ``assetDepth>1000`` or
``totalCount<=5``. Each is parsed into a typed FilterCondition. Input that
does not match the grammar exactly is rejected by the parser; the query
layer drops rejected filters instead of failing the request.

Grammar::

    filter   := field operator number
    field    := [A-Za-z_][A-Za-z0-9_]*
    operator := ">=" | "<=" | ">" | "<" | "="

Two-character operators are matched before their one-character prefixes.
"""

import logging
import math
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any

from src.lib.logging_utils import sanitize_for_log

logger = logging.getLogger(__name__)

MAX_FILTER_LENGTH = 128

_FILTER_PATTERN = re.compile(
    r"^\s*(?P<field>[A-Za-z_][A-Za-z0-9_]*)\s*"
    r"(?P<op>>=|<=|>|<|=)\s*"
    r"(?P<value>[-+]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][-+]?\d+)?)\s*$"
)


class FilterParseError(ValueError):
    """Raised when a filter string does not match the filter grammar."""


class FilterOperator(str, Enum):
    """Comparison operators accepted in filter strings."""

    GREATER_EQ = ">="
    LESS_EQ = "<="
    GREATER = ">"
    LESS = "<"
    EQUAL = "="

    def compare(self, left: float, right: float) -> bool:
        """Apply this operator to two numbers."""
        if self is FilterOperator.GREATER_EQ:
            return left >= right
        if self is FilterOperator.LESS_EQ:
            return left <= right
        if self is FilterOperator.GREATER:
            return left > right
        if self is FilterOperator.LESS:
            return left < right
        return left == right


@dataclass(frozen=True)
class FilterCondition:
    """A single parsed `(field, operator, value)` condition."""

    field: str
    operator: FilterOperator
    value: float

    def matches(self, sample: dict[str, Any]) -> bool:
        """
        Evaluate the condition against one sample.

        A sample without the field, or with a non-numeric value, does not match.
        """
        raw = sample.get(self.field)
        if isinstance(raw, bool) or not isinstance(raw, int | float):
            return False
        return self.operator.compare(float(raw), self.value)

    def __str__(self) -> str:
        return f"{self.field}{self.operator.value}{self.value:g}"


def parse_filter(text: str) -> FilterCondition:
    """
    Parse one compact filter string.

    Args:
        text: Filter such as "assetDepth>=1000"

    Returns:
        FilterCondition

    Raises:
        FilterParseError: If the string is empty, too long, uses an unknown
            operator, has more than one operator or a non-numeric value.

    Example:
        >>> parse_filter("assetDepth>=1000")
        FilterCondition(field='assetDepth', operator=<FilterOperator.GREATER_EQ: '>='>, value=1000.0)
    """
    if not text or len(text) > MAX_FILTER_LENGTH:
        raise FilterParseError("Filter is empty or too long")

    match = _FILTER_PATTERN.match(text)
    if match is None:
        raise FilterParseError(f"Filter does not match grammar: {text!r}")

    value = float(match.group("value"))
    if not math.isfinite(value):
        raise FilterParseError(f"Filter value is not finite: {text!r}")

    return FilterCondition(
        field=match.group("field"),
        operator=FilterOperator(match.group("op")),
        value=value,
    )


def parse_filters(
    raw_filters: list[str] | None,
    allowed_fields: set[str] | frozenset[str] | None = None,
) -> list[FilterCondition]:
    """
    Parse a list of filter strings, dropping the ones that cannot be used.

    Args:
        raw_filters: Filter strings from the request (may be None)
        allowed_fields: When given, filters on other fields are dropped

    Returns:
        Parsed conditions in request order. They combine with logical AND.
    """
    conditions: list[FilterCondition] = []
    for raw in raw_filters or []:
        try:
            condition = parse_filter(raw)
        except FilterParseError:
            logger.debug(
                "Dropping malformed filter",
                extra={"filter": sanitize_for_log(raw, max_length=MAX_FILTER_LENGTH)},
            )
            continue

        if allowed_fields is not None and condition.field not in allowed_fields:
            logger.debug(
                "Dropping filter on unknown field",
                extra={"field": sanitize_for_log(condition.field)},
            )
            continue

        conditions.append(condition)
    return conditions
