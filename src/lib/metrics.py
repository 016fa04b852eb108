"""
CloudWatch Metrics
==================

Custom metrics for the ingestion job.

For On-Call Engineers:
    Metrics emitted (namespace "MidgardVault", dimensions Environment and
    Dataset):
    - IngestionBatchesStored: upstream pages persisted in one cycle
    - IngestionSamplesStored: raw intervals persisted in one cycle
    - IngestionFailures: dataset runs that ended in FAILED
    - IngestionLatencyMs: wall time of one dataset run

    View with:
    aws cloudwatch get-metric-statistics \
      --namespace MidgardVault \
      --metric-name IngestionFailures \
      --start-time <time> --end-time <time> \
      --period 3600 --statistics Sum

For Developers:
    - Metric emission never raises; failures are logged
    - Emission is gated by METRICS_ENABLED at the call site
"""

import logging
import os
import time
from datetime import UTC, datetime
from typing import Any

import boto3
from botocore.config import Config

logger = logging.getLogger(__name__)

RETRY_CONFIG = Config(
    retries={
        "max_attempts": 3,
        "mode": "adaptive",
    },
    connect_timeout=5,
    read_timeout=10,
)

METRIC_NAMESPACE = "MidgardVault"

# CloudWatch allows up to 1000 metrics per PutMetricData call
MAX_METRICS_PER_CALL = 1000


def get_cloudwatch_client(region_name: str | None = None) -> Any:
    """
    Get a CloudWatch client with retry configuration.

    Args:
        region_name: AWS region (defaults to AWS_REGION, then us-east-1)

    Returns:
        boto3 CloudWatch client
    """
    region = region_name or os.environ.get("AWS_REGION", "us-east-1")

    return boto3.client(
        "cloudwatch",
        region_name=region,
        config=RETRY_CONFIG,
    )


def _metric_datum(
    name: str,
    value: float,
    unit: str,
    dimensions: dict[str, str] | None,
    environment: str,
) -> dict[str, Any]:
    datum_dimensions = [{"Name": "Environment", "Value": environment}]
    if dimensions:
        datum_dimensions.extend({"Name": k, "Value": v} for k, v in dimensions.items())

    return {
        "MetricName": name,
        "Value": value,
        "Unit": unit,
        "Timestamp": datetime.now(UTC),
        "Dimensions": datum_dimensions,
    }


def emit_metrics_batch(
    metrics: list[dict[str, Any]],
    region_name: str | None = None,
) -> None:
    """
    Emit multiple metrics with as few API calls as possible.

    Args:
        metrics: Dicts with keys name, value, and optional unit, dimensions
        region_name: AWS region

    Example:
        >>> emit_metrics_batch([
        ...     {"name": "IngestionBatchesStored", "value": 3},
        ...     {"name": "IngestionLatencyMs", "value": 812.4, "unit": "Milliseconds"},
        ... ])
    """
    if not metrics:
        return

    environment = os.environ.get("ENVIRONMENT", "dev")
    metric_data = [
        _metric_datum(
            metric["name"],
            metric["value"],
            metric.get("unit") or "Count",
            metric.get("dimensions"),
            environment,
        )
        for metric in metrics
    ]

    try:
        client = get_cloudwatch_client(region_name)
        for i in range(0, len(metric_data), MAX_METRICS_PER_CALL):
            client.put_metric_data(
                Namespace=METRIC_NAMESPACE,
                MetricData=metric_data[i : i + MAX_METRICS_PER_CALL],
            )
        logger.debug("Emitted metrics", extra={"count": len(metric_data)})
    except Exception as e:
        # Metrics must never break ingestion
        logger.error(
            "Failed to emit metrics",
            extra={"count": len(metric_data), "error_type": type(e).__name__},
        )


class Timer:
    """
    Context manager measuring elapsed wall time in milliseconds.

    Example:
        >>> with Timer() as timer:
        ...     run_dataset()
        >>> timer.elapsed_ms
    """

    def __init__(self) -> None:
        self.start_time: float = 0
        self.elapsed_ms: float = 0

    def __enter__(self) -> "Timer":
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.elapsed_ms = (time.perf_counter() - self.start_time) * 1000
        return False
