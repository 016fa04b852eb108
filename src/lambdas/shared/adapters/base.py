"""Base adapter class for upstream history APIs."""

import logging
from abc import ABC, abstractmethod
from typing import Any

logger = logging.getLogger(__name__)


class AdapterError(Exception):
    """Base exception for adapter errors (transport failures and HTTP errors)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class RateLimitError(AdapterError):
    """Raised when API rate limit is exceeded."""

    def __init__(self, message: str, retry_after: int | None = None):
        super().__init__(message, status_code=429)
        self.retry_after = retry_after


class MalformedResponseError(AdapterError):
    """Raised when a successful response body is not valid JSON."""

    pass


class BaseAdapter(ABC):
    """Base class for history API adapters."""

    @abstractmethod
    def get_history(
        self,
        path: str,
        from_ts: int,
        count: int = 400,
        interval: str = "hour",
    ) -> Any:
        """Fetch one page of history starting at from_ts.

        Args:
            path: Endpoint path below the history base URL (e.g. "swaps")
            from_ts: Unix timestamp of the first interval
            count: Maximum intervals to return
            interval: Upstream interval name

        Returns:
            Parsed JSON body

        Raises:
            AdapterError: On transport or HTTP errors
            MalformedResponseError: When the body is not JSON
        """
        pass

    def close(self) -> None:
        """Release network resources."""
        pass
