"""
Pytest Configuration and Shared Fixtures
=========================================

Common fixtures used across all test modules.

For On-Call Engineers:
    If tests fail with AWS credential errors:
    1. Ensure moto is properly mocking (check @mock_aws decorator)
    2. Verify AWS env vars are set in fixtures

    If a test fails with "Expected ERROR log ... not found", the code path
    under test no longer logs the failure it is supposed to report.

For Developers:
    - Import fixtures by name in test files (pytest auto-discovers conftest.py)
    - All AWS access uses moto mocks (no real AWS calls)
    - The default store backend in tests is "memory"
    - Add new shared fixtures here, test-specific fixtures in test files
"""

import logging
import os
from typing import Any

import pytest

from src.lambdas.shared.config import ServiceConfig
from src.lambdas.shared.store import InMemorySeriesStore

# Set default test environment variables at module load time
# This allows test files to import modules that read env vars at import time
os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")
os.environ.setdefault("AWS_REGION", "us-east-1")
os.environ.setdefault("AWS_DEFAULT_REGION", "us-east-1")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("HISTORY_TABLE", "test-midgard-history")
os.environ.setdefault("LOG_FORMAT", "text")
os.environ.setdefault("INGESTION_ENABLED", "false")
os.environ.setdefault("METRICS_ENABLED", "false")

HISTORY_TABLE = "test-midgard-history"


@pytest.fixture(autouse=True)
def reset_env_vars():
    """
    Reset environment variables before each test.

    Ensures tests don't pollute each other's environment.
    """
    # Store original env
    original_env = os.environ.copy()

    yield

    # Restore original env
    os.environ.clear()
    os.environ.update(original_env)


@pytest.fixture
def aws_credentials():
    """
    Set up mock AWS credentials for moto.

    Use this fixture when testing AWS SDK calls.
    All tests using this fixture will use moto mocks.
    """
    os.environ["AWS_ACCESS_KEY_ID"] = "testing"
    os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
    os.environ["AWS_SECURITY_TOKEN"] = "testing"
    os.environ["AWS_SESSION_TOKEN"] = "testing"
    os.environ["AWS_REGION"] = "us-east-1"

    yield

    # Cleanup handled by reset_env_vars


@pytest.fixture
def service_config() -> ServiceConfig:
    """Configuration for tests: in-memory store, no scheduler, no metrics."""
    return ServiceConfig(
        environment="test",
        store_backend="memory",
        history_table=HISTORY_TABLE,
        lookback_seconds=86400,
        log_format="text",
    )


@pytest.fixture
def memory_store():
    """Fresh in-memory store, closed after the test."""
    store = InMemorySeriesStore()
    yield store
    store.close()


def create_history_table(dynamodb_client: Any, table_name: str = HISTORY_TABLE) -> None:
    """Create the DynamoDB history table for testing."""
    dynamodb_client.create_table(
        TableName=table_name,
        KeySchema=[
            {"AttributeName": "pk", "KeyType": "HASH"},
            {"AttributeName": "sk", "KeyType": "RANGE"},
        ],
        AttributeDefinitions=[
            {"AttributeName": "pk", "AttributeType": "S"},
            {"AttributeName": "sk", "AttributeType": "S"},
        ],
        BillingMode="PAY_PER_REQUEST",
    )


# =============================================================================
# Log Validation Helpers
# =============================================================================
#
# Production code logs normally (never test-aware). Tests explicitly assert
# on expected logs using caplog.


def assert_error_logged(caplog, pattern: str):
    """
    Helper to assert an ERROR log was captured.

    Args:
        caplog: pytest caplog fixture
        pattern: String pattern to search for in log messages

    Raises:
        AssertionError: If no ERROR log matches the pattern

    Example:
        def test_store_failure(caplog):
            result = pump.run("swaps")
            assert result.state is IngestionState.FAILED
            assert_error_logged(caplog, "Ingestion run failed")
    """
    assert any(
        pattern in record.message
        for record in caplog.records
        if record.levelno >= logging.ERROR
    ), f"Expected ERROR log matching '{pattern}' not found"


def assert_warning_logged(caplog, pattern: str):
    """
    Helper to assert a WARNING log was captured.

    Args:
        caplog: pytest caplog fixture
        pattern: String pattern to search for in log messages

    Raises:
        AssertionError: If no WARNING log matches the pattern
    """
    assert any(
        pattern in record.message
        for record in caplog.records
        if record.levelno == logging.WARNING
    ), f"Expected WARNING log matching '{pattern}' not found"
