"""Utility functions for shared Lambda code."""

from src.lambdas.shared.utils.conversion import (
    CoercionError,
    coerce_float,
    coerce_int,
    parse_optional_int,
)

__all__ = [
    "CoercionError",
    "coerce_float",
    "coerce_int",
    "parse_optional_int",
]
