"""
Time-series library for interval history queries.

This module provides utilities for:
- Interval resolution and bucket alignment
- Compact filter parsing
- Per-field bucket reduction
- Typed aggregation pipelines
"""

from src.lib.timeseries.aggregation import (
    FieldKind,
    FieldReducer,
    Reducer,
    reduce_field,
    reduce_group,
)
from src.lib.timeseries.bucket import (
    align_down,
    interval_seconds_or_default,
    resolve_interval,
)
from src.lib.timeseries.filters import (
    FilterCondition,
    FilterOperator,
    FilterParseError,
    parse_filter,
    parse_filters,
)
from src.lib.timeseries.models import (
    DEFAULT_INTERVAL,
    MAX_TIMESTAMP,
    Bucket,
    BucketPage,
    Interval,
)
from src.lib.timeseries.pipeline import (
    PipelineError,
    QueryPipeline,
    execute_pipeline,
)

__all__ = [
    "Interval",
    "DEFAULT_INTERVAL",
    "MAX_TIMESTAMP",
    "Bucket",
    "BucketPage",
    "resolve_interval",
    "interval_seconds_or_default",
    "align_down",
    "FilterCondition",
    "FilterOperator",
    "FilterParseError",
    "parse_filter",
    "parse_filters",
    "FieldKind",
    "FieldReducer",
    "Reducer",
    "reduce_field",
    "reduce_group",
    "PipelineError",
    "QueryPipeline",
    "execute_pipeline",
]
