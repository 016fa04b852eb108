"""Midgard history API adapter."""

import json
import logging
from typing import Any

import httpx

from src.lambdas.shared.adapters.base import (
    AdapterError,
    BaseAdapter,
    MalformedResponseError,
    RateLimitError,
)
from src.lib.logging_utils import sanitize_for_log

logger = logging.getLogger(__name__)

# Upstream page size limit
MAX_PAGE_COUNT = 400


class MidgardAdapter(BaseAdapter):
    """Adapter for the THORChain Midgard `/v2/history` endpoints.

    Midgard provides hourly (and coarser) history for:
    - depths/{pool}: pool depth, price and unit levels
    - earnings: protocol and per-pool earnings
    - swaps: swap counts and volumes
    - runepool: RUNEPool members and units

    No authentication is required. Every request carries a bounded timeout.
    """

    BASE_URL = "https://midgard.ninerealms.com/v2/history"
    TIMEOUT = 30.0

    def __init__(self, base_url: str | None = None, timeout: float | None = None):
        """Initialize Midgard adapter.

        Args:
            base_url: History API base URL (default: public Nine Realms node)
            timeout: Per-request timeout in seconds
        """
        self.base_url = (base_url or self.BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else self.TIMEOUT
        self._client: httpx.Client | None = None

    @property
    def client(self) -> httpx.Client:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.Client(
                base_url=self.base_url,
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
        return self._client

    def _handle_response(self, response: httpx.Response) -> Any:
        """Handle API response and raise appropriate errors.

        Args:
            response: HTTP response

        Returns:
            Parsed JSON response

        Raises:
            RateLimitError: On 429 status
            AdapterError: On other non-2xx statuses
            MalformedResponseError: When the body is not JSON
        """
        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            raise RateLimitError(
                "Midgard rate limit exceeded",
                retry_after=int(retry_after) if retry_after and retry_after.isdigit() else 60,
            )

        if not response.is_success:
            raise AdapterError(
                f"Midgard API error: {response.status_code} - {response.text[:200]}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise MalformedResponseError(
                f"Midgard returned a non-JSON body ({len(response.content)} bytes)",
                status_code=response.status_code,
            ) from e

    def get_history(
        self,
        path: str,
        from_ts: int,
        count: int = MAX_PAGE_COUNT,
        interval: str = "hour",
    ) -> Any:
        """Fetch one page of history.

        Issues `GET {base}/{path}?interval={interval}&count={count}&from={from_ts}`.

        Args:
            path: Endpoint path (e.g. "depths/BTC.BTC", "swaps")
            from_ts: Unix timestamp of the first interval
            count: Maximum intervals (capped at 400)
            interval: Upstream interval name

        Returns:
            Parsed JSON body

        Raises:
            AdapterError: On transport or HTTP errors
            MalformedResponseError: When the body is not JSON
        """
        params = {
            "interval": interval,
            "count": min(count, MAX_PAGE_COUNT),
            "from": from_ts,
        }

        try:
            response = self.client.get(f"/{path.lstrip('/')}", params=params)
        except httpx.RequestError as e:
            logger.error(
                "Midgard request failed",
                extra={
                    "path": sanitize_for_log(path),
                    "from": from_ts,
                    "error_type": type(e).__name__,
                },
            )
            raise AdapterError(f"Midgard request failed: {type(e).__name__}") from e

        return self._handle_response(response)

    def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            self._client.close()
            self._client = None

    def __enter__(self) -> "MidgardAdapter":
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit."""
        self.close()
