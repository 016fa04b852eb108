"""
Unit tests for the history API endpoints and app wiring.

For On-Call Engineers:
    These tests exercise the same routes the Lambda Function URL serves.
    A 503 from a history route means the store read failed.
"""

import os
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from src.lambdas.dashboard.handler import create_app, get_cors_origins
from src.lambdas.shared.models.datasets import (
    DEPTH_SCHEMA,
    EARNINGS_SCHEMA,
    RUNEPOOL_SCHEMA,
    SWAPS_SCHEMA,
)
from src.lambdas.shared.models.history import decode_history
from src.lambdas.shared.store import InMemorySeriesStore, StoreError
from tests.conftest import assert_error_logged
from tests.fixtures.midgard_payloads import (
    HOUR,
    depth_interval,
    earnings_interval,
    history_payload,
    hourly_swaps,
    runepool_interval,
)


def seed(store, schema, intervals):
    batch = decode_history(schema, history_payload(intervals))
    store.insert_batch(schema, batch.meta, batch.intervals)


class TestHistoryRoutes:
    @pytest.mark.parametrize(
        "route,schema,builder",
        [
            ("/api/depth-history", DEPTH_SCHEMA, depth_interval),
            ("/api/earnings-history", EARNINGS_SCHEMA, earnings_interval),
            ("/api/rune-pool-history", RUNEPOOL_SCHEMA, runepool_interval),
        ],
    )
    def test_each_dataset_route(self, api_client, memory_store, route, schema, builder):
        seed(memory_store, schema, [builder(0), builder(HOUR)])

        response = api_client.get(route, params={"interval": "day"})

        assert response.status_code == 200
        body = response.json()
        assert body["meta"] == {"startTime": 0, "endTime": 7200}
        assert len(body["intervals"]) == 1
        expected_keys = ["startTime", "endTime"] + [f.name for f in schema.fields]
        assert list(body["intervals"][0]) == expected_keys

    def test_swaps_route(self, api_client, memory_store):
        seed(memory_store, SWAPS_SCHEMA, hourly_swaps(0, 3))

        response = api_client.get("/api/swaps-history", params={"count": "2"})

        assert response.status_code == 200
        body = response.json()
        assert [i["startTime"] for i in body["intervals"]] == [0, HOUR]
        assert body["intervals"][0]["totalCount"] == 3

    def test_empty_result(self, api_client):
        response = api_client.get(
            "/api/swaps-history", params={"from": "1000", "to": "2000"}
        )

        assert response.status_code == 200
        assert response.json() == {
            "meta": {"startTime": 1000, "endTime": 2000},
            "intervals": [],
        }

    def test_repeated_filters(self, api_client, memory_store):
        seed(
            memory_store,
            DEPTH_SCHEMA,
            [
                depth_interval(0, assetDepth=500),
                depth_interval(HOUR, assetDepth=1500, units=10),
                depth_interval(2 * HOUR, assetDepth=1500, units=900),
            ],
        )

        response = api_client.get(
            "/api/depth-history?filters=assetDepth>1000&filters=units<100"
        )

        assert response.status_code == 200
        assert [i["startTime"] for i in response.json()["intervals"]] == [HOUR]

    def test_lenient_parameters(self, api_client, memory_store):
        seed(memory_store, SWAPS_SCHEMA, hourly_swaps(0, 2))

        response = api_client.get(
            "/api/swaps-history",
            params={
                "count": "lots",
                "from": "yesterday",
                "interval": "fortnight",
                "sort": "nope",
                "order": "sideways",
                "filters": "garbage",
            },
        )

        assert response.status_code == 200
        assert len(response.json()["intervals"]) == 2

    def test_page_and_limit(self, api_client, memory_store):
        seed(memory_store, SWAPS_SCHEMA, hourly_swaps(0, 5))

        response = api_client.get(
            "/api/swaps-history", params={"page": "3", "limit": "2"}
        )

        assert [i["startTime"] for i in response.json()["intervals"]] == [4 * HOUR]

    def test_unknown_route(self, api_client):
        assert api_client.get("/api/prices-history").status_code == 404

    def test_store_failure_is_503(self, api_client, memory_store, caplog):
        with patch.object(
            memory_store, "query_buckets", side_effect=StoreError("DynamoDB error: X")
        ):
            response = api_client.get("/api/swaps-history")

        assert response.status_code == 503
        assert response.json() == {"detail": "History store unavailable"}
        assert_error_logged(caplog, "History store read failed")

    def test_unexpected_failure_is_500(self, api_client, memory_store, caplog):
        with patch.object(
            memory_store, "query_buckets", side_effect=RuntimeError("internal detail")
        ):
            response = api_client.get("/api/earnings-history")

        assert response.status_code == 500
        assert "internal detail" not in response.text
        assert_error_logged(caplog, "History query failed")


class TestHealth:
    def test_healthy(self, api_client):
        response = api_client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["store_backend"] == "memory"

    def test_unhealthy(self, api_client, memory_store):
        with patch.object(memory_store, "ping", return_value=False):
            response = api_client.get("/health")

        assert response.status_code == 503
        assert response.json()["status"] == "unhealthy"


class TestAppWiring:
    def test_store_created_lazily_without_lifespan(self, service_config):
        app = create_app(service_config)
        client = TestClient(app)

        assert client.get("/api/swaps-history").status_code == 200
        assert isinstance(app.state.store, InMemorySeriesStore)

    def test_lifespan_creates_and_closes_store(self, service_config):
        app = create_app(service_config)

        with TestClient(app) as client:
            store = app.state.store
            assert isinstance(store, InMemorySeriesStore)
            assert client.get("/health").status_code == 200
            assert app.state.scheduler is None

        assert app.state.store is None

    def test_lifespan_keeps_provided_store(self, service_config, memory_store):
        app = create_app(service_config, memory_store)

        with TestClient(app):
            assert app.state.store is memory_store


class TestCorsOrigins:
    def test_explicit_origins(self):
        os.environ["CORS_ORIGINS"] = "https://a.example, https://b.example"
        assert get_cors_origins("prod") == ["https://a.example", "https://b.example"]

    def test_dev_defaults_to_localhost(self):
        os.environ.pop("CORS_ORIGINS", None)
        assert "http://localhost:3000" in get_cors_origins("dev")

    def test_prod_without_origins_is_empty(self, caplog):
        os.environ.pop("CORS_ORIGINS", None)
        assert get_cors_origins("prod") == []
        assert_error_logged(caplog, "CORS_ORIGINS not configured")
