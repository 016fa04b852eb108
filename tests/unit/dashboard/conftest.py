"""
Dashboard Test Fixtures
=======================

Shared fixtures for history API unit tests.

For On-Call Engineers:
    These fixtures build the FastAPI app over a fresh in-memory store.
    Fresh stores are created per test (no shared state).

For Developers:
    - Seed data with store.insert_batch() or the seed_* helpers
    - Test-specific fixtures belong in individual test files
"""

import pytest
from fastapi.testclient import TestClient

from src.lambdas.dashboard.handler import create_app
from src.lambdas.dashboard.history import HistoryQueryService


@pytest.fixture
def history_service(memory_store):
    """HistoryQueryService over the in-memory store."""
    return HistoryQueryService(memory_store)


@pytest.fixture
def api_client(service_config, memory_store):
    """
    TestClient for the history API.

    The lifespan is not entered, so the scheduler never starts and the
    store stays open for the whole test.
    """
    app = create_app(service_config, memory_store)
    return TestClient(app)
