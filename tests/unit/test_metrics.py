"""
Unit Tests for CloudWatch Metrics
=================================

Tests for metric emission and the Timer helper.

For On-Call Engineers:
    These tests verify:
    - Metrics are emitted to the MidgardVault namespace
    - Every datum carries the Environment dimension
    - Emission failures are logged and never raised

For Developers:
    - Tests use moto to mock CloudWatch, or patch the client factory when
      the outgoing request itself is asserted
"""

import os
import time
from unittest.mock import MagicMock, patch

import boto3
import pytest
from moto import mock_aws

from src.lib.metrics import (
    MAX_METRICS_PER_CALL,
    METRIC_NAMESPACE,
    Timer,
    emit_metrics_batch,
    get_cloudwatch_client,
)
from tests.conftest import assert_error_logged


@pytest.fixture
def cloudwatch_env(aws_credentials):
    """Mocked CloudWatch with ENVIRONMENT=dev."""
    os.environ["ENVIRONMENT"] = "dev"
    with mock_aws():
        yield boto3.client("cloudwatch", region_name="us-east-1")


class TestGetCloudWatchClient:
    """Tests for get_cloudwatch_client function."""

    def test_get_client_default_region(self, aws_credentials):
        with mock_aws():
            client = get_cloudwatch_client()
            assert client.meta.region_name == "us-east-1"

    def test_get_client_custom_region(self, aws_credentials):
        with mock_aws():
            client = get_cloudwatch_client(region_name="us-west-2")
            assert client.meta.region_name == "us-west-2"


class TestEmitMetricsBatchCloudWatch:
    """Tests for emit_metrics_batch against mocked CloudWatch."""

    def test_metric_reaches_cloudwatch(self, cloudwatch_env):
        emit_metrics_batch(
            [{"name": "IngestionFailures", "value": 1, "dimensions": {"Dataset": "swaps"}}]
        )

        metrics = cloudwatch_env.list_metrics(Namespace=METRIC_NAMESPACE)["Metrics"]
        assert [m["MetricName"] for m in metrics] == ["IngestionFailures"]
        dimensions = {d["Name"]: d["Value"] for d in metrics[0]["Dimensions"]}
        assert dimensions == {"Environment": "dev", "Dataset": "swaps"}

    def test_default_unit_is_count(self):
        client = MagicMock()
        with patch("src.lib.metrics.get_cloudwatch_client", return_value=client):
            emit_metrics_batch([{"name": "IngestionBatchesStored", "value": 3}])

        datum = client.put_metric_data.call_args.kwargs["MetricData"][0]
        assert datum["Unit"] == "Count"
        assert datum["Value"] == 3


class TestEmitMetricsBatch:
    """Tests for emit_metrics_batch function."""

    def test_empty_batch_makes_no_call(self):
        with patch("src.lib.metrics.get_cloudwatch_client") as factory:
            emit_metrics_batch([])
        factory.assert_not_called()

    def test_batch_sends_one_call(self):
        client = MagicMock()
        metrics = [
            {"name": "IngestionBatchesStored", "value": 2},
            {"name": "IngestionLatencyMs", "value": 812.4, "unit": "Milliseconds"},
        ]
        with patch("src.lib.metrics.get_cloudwatch_client", return_value=client):
            emit_metrics_batch(metrics)

        client.put_metric_data.assert_called_once()
        kwargs = client.put_metric_data.call_args.kwargs
        assert kwargs["Namespace"] == METRIC_NAMESPACE
        assert [d["Unit"] for d in kwargs["MetricData"]] == ["Count", "Milliseconds"]

    def test_large_batch_is_chunked(self):
        client = MagicMock()
        metrics = [{"name": "M", "value": i} for i in range(MAX_METRICS_PER_CALL + 1)]
        with patch("src.lib.metrics.get_cloudwatch_client", return_value=client):
            emit_metrics_batch(metrics)

        assert client.put_metric_data.call_count == 2

    def test_failure_is_logged_not_raised(self, caplog):
        client = MagicMock()
        client.put_metric_data.side_effect = RuntimeError("throttled")
        with patch("src.lib.metrics.get_cloudwatch_client", return_value=client):
            emit_metrics_batch([{"name": "IngestionFailures", "value": 1}])

        assert_error_logged(caplog, "Failed to emit metrics")


class TestTimer:
    """Tests for Timer context manager."""

    def test_measures_elapsed_time(self):
        with Timer() as timer:
            time.sleep(0.01)
        assert timer.elapsed_ms >= 10

    def test_does_not_swallow_exceptions(self):
        with pytest.raises(ValueError):
            with Timer():
                raise ValueError("boom")
