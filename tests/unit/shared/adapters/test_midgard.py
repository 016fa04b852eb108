"""Unit tests for Midgard adapter."""

import json
from unittest.mock import MagicMock, patch

import httpx
import pytest

from src.lambdas.shared.adapters.base import (
    AdapterError,
    BaseAdapter,
    MalformedResponseError,
    RateLimitError,
)
from src.lambdas.shared.adapters.midgard import MidgardAdapter
from tests.conftest import assert_error_logged
from tests.fixtures.midgard_payloads import history_payload, hourly_swaps


@pytest.fixture
def midgard_adapter():
    """Create Midgard adapter for testing."""
    adapter = MidgardAdapter(base_url="https://midgard.test/v2/history/")
    yield adapter
    adapter.close()


def ok_response(body) -> MagicMock:
    response = MagicMock()
    response.status_code = 200
    response.is_success = True
    response.json.return_value = body
    return response


class TestMidgardAdapterInit:
    """Tests for MidgardAdapter initialization."""

    def test_defaults(self):
        adapter = MidgardAdapter()
        assert adapter.base_url == MidgardAdapter.BASE_URL
        assert adapter.timeout == MidgardAdapter.TIMEOUT

    def test_trailing_slash_stripped(self, midgard_adapter: MidgardAdapter):
        assert midgard_adapter.base_url == "https://midgard.test/v2/history"

    def test_get_history_is_the_only_abstract_member(self):
        assert BaseAdapter.__abstractmethods__ == frozenset({"get_history"})

    def test_client_has_timeout_and_accept_header(self):
        adapter = MidgardAdapter(timeout=5.0)
        client = adapter.client
        assert client.headers["Accept"] == "application/json"
        assert client.timeout.read == 5.0
        adapter.close()

    def test_client_is_reused(self, midgard_adapter: MidgardAdapter):
        assert midgard_adapter.client is midgard_adapter.client


class TestMidgardGetHistory:
    """Tests for Midgard get_history method."""

    def test_get_history_success(self, midgard_adapter: MidgardAdapter):
        body = history_payload(hourly_swaps(3600, 2))

        with patch.object(
            midgard_adapter.client, "get", return_value=ok_response(body)
        ) as mock_get:
            result = midgard_adapter.get_history("swaps", 3600)

        assert result == body
        assert mock_get.call_args[0][0] == "/swaps"
        assert mock_get.call_args[1]["params"] == {
            "interval": "hour",
            "count": 400,
            "from": 3600,
        }

    def test_count_capped_at_400(self, midgard_adapter: MidgardAdapter):
        with patch.object(
            midgard_adapter.client, "get", return_value=ok_response({})
        ) as mock_get:
            midgard_adapter.get_history("earnings", 0, count=1000, interval="day")

        params = mock_get.call_args[1]["params"]
        assert params["count"] == 400
        assert params["interval"] == "day"

    def test_pool_path(self, midgard_adapter: MidgardAdapter):
        with patch.object(
            midgard_adapter.client, "get", return_value=ok_response({})
        ) as mock_get:
            midgard_adapter.get_history("depths/BTC.BTC", 0)

        assert mock_get.call_args[0][0] == "/depths/BTC.BTC"

    def test_rate_limit(self, midgard_adapter: MidgardAdapter):
        response = MagicMock()
        response.status_code = 429
        response.headers = {"Retry-After": "30"}

        with patch.object(midgard_adapter.client, "get", return_value=response):
            with pytest.raises(RateLimitError) as exc_info:
                midgard_adapter.get_history("swaps", 0)

        assert exc_info.value.retry_after == 30
        assert exc_info.value.status_code == 429

    def test_rate_limit_without_header_defaults(self, midgard_adapter: MidgardAdapter):
        response = MagicMock()
        response.status_code = 429
        response.headers = {}

        with patch.object(midgard_adapter.client, "get", return_value=response):
            with pytest.raises(RateLimitError) as exc_info:
                midgard_adapter.get_history("swaps", 0)

        assert exc_info.value.retry_after == 60

    def test_server_error(self, midgard_adapter: MidgardAdapter):
        response = MagicMock()
        response.status_code = 503
        response.is_success = False
        response.text = "upstream unavailable"

        with patch.object(midgard_adapter.client, "get", return_value=response):
            with pytest.raises(AdapterError) as exc_info:
                midgard_adapter.get_history("swaps", 0)

        assert exc_info.value.status_code == 503
        assert not isinstance(exc_info.value, MalformedResponseError)

    def test_non_json_body(self, midgard_adapter: MidgardAdapter):
        response = ok_response(None)
        response.json.side_effect = json.JSONDecodeError("Expecting value", "<html>", 0)
        response.content = b"<html>"

        with patch.object(midgard_adapter.client, "get", return_value=response):
            with pytest.raises(MalformedResponseError):
                midgard_adapter.get_history("swaps", 0)

    def test_transport_error(self, midgard_adapter: MidgardAdapter, caplog):
        with patch.object(
            midgard_adapter.client,
            "get",
            side_effect=httpx.ConnectTimeout("timed out"),
        ):
            with pytest.raises(AdapterError, match="ConnectTimeout"):
                midgard_adapter.get_history("swaps", 0)

        assert_error_logged(caplog, "Midgard request failed")

    def test_real_response_object(self, midgard_adapter: MidgardAdapter):
        request = httpx.Request("GET", "https://midgard.test/v2/history/swaps")
        response = httpx.Response(200, content=b"not json", request=request)

        with patch.object(midgard_adapter.client, "get", return_value=response):
            with pytest.raises(MalformedResponseError):
                midgard_adapter.get_history("swaps", 0)


class TestMidgardClose:
    """Tests for client lifecycle."""

    def test_close_resets_client(self, midgard_adapter: MidgardAdapter):
        _ = midgard_adapter.client
        midgard_adapter.close()
        assert midgard_adapter._client is None

    def test_context_manager_closes(self):
        with MidgardAdapter() as adapter:
            _ = adapter.client
        assert adapter._client is None
