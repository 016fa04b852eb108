"""Shared models for the Midgard history service.

This module exports the dataset schemas and upstream decoding models used
by both the API and the ingestion job:
- DatasetSchema: per-dataset fields, reducers, routes and store partitions
- HistoryBatch: one decoded upstream page
- EarningsPool: nested per-pool earnings record
"""

from src.lambdas.shared.models.datasets import (
    INGESTION_ORDER,
    SCHEMAS,
    Dataset,
    DatasetSchema,
    get_schema,
)
from src.lambdas.shared.models.history import (
    EarningsPool,
    HistoryBatch,
    SchemaMismatchError,
    decode_history,
)

__all__ = [
    "Dataset",
    "DatasetSchema",
    "SCHEMAS",
    "INGESTION_ORDER",
    "get_schema",
    "EarningsPool",
    "HistoryBatch",
    "SchemaMismatchError",
    "decode_history",
]
