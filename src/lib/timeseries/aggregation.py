"""
Per-field reduction of samples into buckets.

Reducer semantics match document-store group accumulators:
- SUM: missing or non-numeric values count as zero
- AVG: missing or non-numeric values are ignored; no values gives 0.0
- PUSH: collects the raw value of every sample (nested records)
"""

from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Any


class Reducer(str, Enum):
    """How a field is reduced within a bucket."""

    SUM = "sum"
    AVG = "avg"
    PUSH = "push"


class FieldKind(str, Enum):
    """Numeric kind of a sample field."""

    INT = "int"
    FLOAT = "float"
    NESTED = "nested"


@dataclass(frozen=True)
class FieldReducer:
    """Reduction rule for one sample field."""

    name: str
    reducer: Reducer
    kind: FieldKind = FieldKind.FLOAT


def _numeric(value: Any) -> float | int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        return value
    return None


def reduce_field(values: Iterable[Any], rule: FieldReducer) -> Any:
    """
    Reduce the values of one field across a group.

    Args:
        values: Raw field values, one per sample (None for missing)
        rule: Reduction rule

    Returns:
        The reduced value. SUM of an INT field stays an int.
    """
    if rule.reducer is Reducer.PUSH:
        return [v for v in values if v is not None]

    numbers = [n for n in (_numeric(v) for v in values) if n is not None]

    if rule.reducer is Reducer.SUM:
        total = sum(numbers)
        return int(total) if rule.kind is FieldKind.INT else float(total)

    if not numbers:
        return 0.0
    return sum(numbers) / len(numbers)


def reduce_group(
    samples: list[dict[str, Any]], rules: Iterable[FieldReducer]
) -> dict[str, Any]:
    """
    Reduce a group of samples field by field.

    Args:
        samples: Samples belonging to one bucket
        rules: Reduction rule per output field

    Returns:
        Dict of field name to reduced value

    Raises:
        ValueError: If samples is empty
    """
    if not samples:
        raise ValueError("Cannot reduce an empty sample group")

    return {
        rule.name: reduce_field((s.get(rule.name) for s in samples), rule)
        for rule in rules
    }
