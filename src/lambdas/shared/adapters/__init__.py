"""Upstream history API adapters."""

from src.lambdas.shared.adapters.base import (
    AdapterError,
    BaseAdapter,
    MalformedResponseError,
    RateLimitError,
)
from src.lambdas.shared.adapters.midgard import MidgardAdapter

__all__ = [
    "BaseAdapter",
    "AdapterError",
    "RateLimitError",
    "MalformedResponseError",
    "MidgardAdapter",
]
