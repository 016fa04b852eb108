"""
Time-series data models.

Interval names follow the Midgard history API (`?interval=hour`), so the
same vocabulary is accepted by the ingestion side and the query side.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

# Upper bound used when a caller leaves `to` open
MAX_TIMESTAMP = 2**63 - 1


class Interval(str, Enum):
    """
    Named bucket widths supported by the history endpoints.

    Month, quarter and year are fixed-length (30, 90 and 365 days) so every
    bucket boundary is a multiple of its width since the epoch.
    """

    FIVE_MINUTES = "5min"
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    QUARTER = "quarter"
    YEAR = "year"

    @property
    def duration_seconds(self) -> int:
        """Return the duration of this interval in seconds."""
        mapping = {
            "5min": 300,
            "hour": 3600,
            "day": 86400,
            "week": 604800,
            "month": 2592000,
            "quarter": 7776000,
            "year": 31536000,
        }
        return mapping[self.value]


DEFAULT_INTERVAL = Interval.HOUR


class Bucket(BaseModel):
    """
    One aggregated window of a dataset.

    `bucket_start` is the aligned group key. `start_time`/`end_time` are
    the observed MIN(startTime)/MAX(endTime) of the samples inside it and
    are what the public API reports.
    """

    bucket_start: int = Field(description="Aligned bucket boundary")
    start_time: int = Field(description="Earliest sample start in bucket")
    end_time: int = Field(description="Latest sample end in bucket")
    sample_count: int = Field(default=0, description="Samples reduced into bucket")
    values: dict[str, Any] = Field(
        default_factory=dict, description="Reduced field values by public name"
    )


class BucketPage(BaseModel):
    """A page of buckets plus the observed time range of the page."""

    buckets: list[Bucket] = Field(default_factory=list)
    observed_start: int
    observed_end: int
