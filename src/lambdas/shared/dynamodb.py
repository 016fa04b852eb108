"""
DynamoDB Helper Module
======================

Provides DynamoDB table access with retry configuration for the history store.

For On-Call Engineers:
    - If you see `ProvisionedThroughputExceededException`, the ingestion job
      is writing faster than the table allows. Table uses on-demand billing.
    - Retry logic handles transient failures automatically (3 attempts with backoff).
    - Inspect one dataset with:
      aws dynamodb query --table-name <name> \
        --key-condition-expression "pk = :p" \
        --expression-attribute-values '{":p": {"S": "swaps_history"}}' \
        --scan-index-forward false --max-items 1

For Developers:
    - All functions use parameterized expressions to prevent NoSQL injection.
    - Keys use composite format: pk=<dataset partition>, sk=<padded start>#<record id>.
    - Never construct Key expressions with string concatenation.
"""

import logging
import math
import os
from decimal import Decimal
from typing import Any

import boto3
from boto3.dynamodb.types import Binary
from botocore.config import Config

# Structured logging for CloudWatch
logger = logging.getLogger(__name__)

# Retry configuration for transient failures
# On-Call Note: Increase max_attempts if seeing intermittent throttling
RETRY_CONFIG = Config(
    retries={
        "max_attempts": 3,
        "mode": "adaptive",  # Automatically adjusts to throttling
    },
    connect_timeout=5,
    read_timeout=10,
)

PARTITION_KEY = "pk"
SORT_KEY = "sk"

# Width of the zero-padded start time in sort keys (fits 2**63 - 1)
SORT_KEY_TIME_WIDTH = 20
SORT_KEY_SEPARATOR = "#"
# Sorts after every record id sharing a start time prefix
SORT_KEY_UPPER_SUFFIX = "\uffff"


def get_dynamodb_resource(region_name: str | None = None) -> Any:
    """
    Get a DynamoDB resource with retry configuration.

    Args:
        region_name: AWS region (defaults to AWS_DEFAULT_REGION env var)

    Returns:
        boto3 DynamoDB resource

    On-Call Note:
        If this fails with credential errors, check:
        1. Execution role has dynamodb:Query and dynamodb:PutItem
        2. Region matches table location
    """
    region = (
        region_name
        or os.environ.get("AWS_DEFAULT_REGION")
        or os.environ.get("AWS_REGION")
    )
    if not region:
        raise ValueError(
            "AWS_DEFAULT_REGION or AWS_REGION environment variable must be set"
        )

    return boto3.resource(
        "dynamodb",
        region_name=region,
        config=RETRY_CONFIG,
    )


def get_table(table_name: str | None = None, region_name: str | None = None) -> Any:
    """
    Get a DynamoDB table resource.

    Args:
        table_name: Table name (defaults to HISTORY_TABLE, then DYNAMODB_TABLE)
        region_name: AWS region

    Returns:
        boto3 DynamoDB Table resource

    On-Call Note:
        If table not found, verify:
        1. HISTORY_TABLE env var is set correctly
        2. Table exists: aws dynamodb describe-table --table-name <name>
    """
    name = (
        table_name
        or os.environ.get("HISTORY_TABLE")
        or os.environ.get("DYNAMODB_TABLE")
    )
    if not name:
        raise ValueError(
            "Table name required: set HISTORY_TABLE env var or pass table_name"
        )

    resource = get_dynamodb_resource(region_name)
    return resource.Table(name)


def format_sort_key_time(timestamp: int) -> str:
    """
    Zero-pad a timestamp so lexical order matches numeric order.

    Negative timestamps are clamped to zero.

    Example:
        >>> format_sort_key_time(1700000000)
        '00000000001700000000'
    """
    return str(max(0, timestamp)).zfill(SORT_KEY_TIME_WIDTH)


def build_history_key(partition: str, start_time: int, record_id: str) -> dict[str, str]:
    """
    Build the key of one stored history batch.

    Schema: pk=partition, sk=<padded start>#<record id>

    Args:
        partition: Dataset partition name (e.g., "swaps_history")
        start_time: Batch meta startTime
        record_id: Unique record id

    Returns:
        Dict with pk and sk keys
    """
    return {
        PARTITION_KEY: partition,
        SORT_KEY: f"{format_sort_key_time(start_time)}{SORT_KEY_SEPARATOR}{record_id}",
    }


def sort_key_upper_bound(timestamp: int) -> str:
    """Sort key that is >= every key whose start time is <= timestamp."""
    return f"{format_sort_key_time(timestamp)}{SORT_KEY_SEPARATOR}{SORT_KEY_UPPER_SUFFIX}"


def to_dynamodb_value(value: Any) -> Any:
    """
    Recursively convert Python values into types boto3 accepts.

    Floats become Decimal (via str to keep the printed precision). Non-finite
    floats cannot be stored and are dropped to None.
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        return Decimal(str(value))
    if isinstance(value, dict):
        return {k: to_dynamodb_value(v) for k, v in value.items()}
    if isinstance(value, list | tuple):
        return [to_dynamodb_value(v) for v in value]
    return value


def parse_dynamodb_item(item: dict[str, Any]) -> dict[str, Any]:
    """
    Convert DynamoDB item to standard Python dict.

    Handles:
    - Decimal → int/float conversion
    - Binary → bytes conversion
    - Set → list conversion
    - Nested structures

    Args:
        item: DynamoDB item (from Table.get_item, scan, query)

    Returns:
        Python dict with JSON-serializable types

    On-Call Note:
        If you see Decimal serialization errors in logs, ensure all numeric
        values pass through this function before JSON encoding.
    """
    if not item:
        return {}

    result = {}
    for key, value in item.items():
        result[key] = _convert_value(value)

    return result


def _convert_value(value: Any) -> Any:
    """
    Recursively convert DynamoDB types to Python types.

    Internal helper for parse_dynamodb_item.
    """
    if isinstance(value, Decimal):
        # Convert Decimal to int if whole number, else float
        if value % 1 == 0:
            return int(value)
        return float(value)
    elif isinstance(value, Binary):
        return value.value
    elif isinstance(value, set):
        return list(value)
    elif isinstance(value, dict):
        return {k: _convert_value(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [_convert_value(v) for v in value]
    return value
