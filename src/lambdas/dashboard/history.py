"""History query service for the dashboard API.

One generic procedure serves every dataset: the dataset schema decides
which fields are reduced and how, which fields may be filtered and sorted,
and how buckets are shaped for the response.

Request handling is lenient. Unparsable numbers fall back to defaults,
malformed or unknown filters are dropped, unknown sort fields fall back to
ascending bucket start, and an empty result is a normal response whose meta
echoes the requested range.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from src.lambdas.shared.models.datasets import (
    END_TIME,
    START_TIME,
    Dataset,
    DatasetSchema,
    get_schema,
)
from src.lambdas.shared.models.history import EarningsPool
from src.lambdas.shared.store import SeriesStore
from src.lambdas.shared.utils.conversion import parse_optional_int
from src.lib.timeseries import (
    MAX_TIMESTAMP,
    Bucket,
    align_down,
    interval_seconds_or_default,
    parse_filters,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HistoryQuery:
    """Validated query parameters for one history request.

    `count` selects count mode; `page`/`limit` select page mode. Both may
    be present, in which case the count cap applies first.
    """

    interval: str | None = None
    from_ts: int = 0
    to_ts: int = MAX_TIMESTAMP
    count: int | None = None
    page: int | None = None
    limit: int | None = None
    filters: tuple[str, ...] = field(default_factory=tuple)
    sort: str | None = None
    descending: bool = False

    @classmethod
    def from_params(
        cls,
        interval: str | None = None,
        count: Any = None,
        limit: Any = None,
        page: Any = None,
        from_: Any = None,
        to: Any = None,
        filters: Iterable[str] | None = None,
        sort: str | None = None,
        order: str | None = None,
    ) -> "HistoryQuery":
        """Build a query from raw request values, applying defaults.

        Args:
            interval: Interval name (5min, hour, day, week, month, quarter, year)
            count: Count-mode page size
            limit: Page-mode page size
            page: Page-mode page number
            from_: Lower bound (unix seconds)
            to: Upper bound (unix seconds)
            filters: Compact filter strings such as "assetDepth>1000"
            sort: Output field to sort by
            order: "asc" or "desc"
        """
        normalized_order = (order or "asc").strip().lower()
        return cls(
            interval=interval.strip().lower() if interval else None,
            from_ts=parse_optional_int(from_, 0),
            to_ts=parse_optional_int(to, MAX_TIMESTAMP),
            count=parse_optional_int(count),
            page=parse_optional_int(page),
            limit=parse_optional_int(limit),
            filters=tuple(f for f in (filters or []) if f),
            sort=sort.strip() if sort and sort.strip() else None,
            descending=normalized_order == "desc",
        )


class HistoryMeta(BaseModel):
    """Observed time range of the returned page."""

    startTime: int
    endTime: int


class HistoryResponse(BaseModel):
    """Response body for every history endpoint."""

    meta: HistoryMeta
    intervals: list[dict[str, Any]] = Field(default_factory=list)


def flatten_pools(pushed: Any) -> list[dict[str, Any]]:
    """Flatten pushed per-sample pool lists into one list.

    Entries that are not lists, and pool records that do not validate, are
    dropped rather than failing the query.
    """
    if not isinstance(pushed, list):
        return []

    pools = []
    for sample_pools in pushed:
        if not isinstance(sample_pools, list):
            continue
        for entry in sample_pools:
            try:
                pools.append(EarningsPool.model_validate(entry).model_dump())
            except ValidationError:
                continue
    return pools


def shape_bucket(schema: DatasetSchema, bucket: Bucket) -> dict[str, Any]:
    """Map a bucket onto the dataset's public interval fields."""
    shaped: dict[str, Any] = {
        START_TIME: bucket.start_time,
        END_TIME: bucket.end_time,
    }
    for rule in schema.fields:
        value = bucket.values.get(rule.name)
        if rule.name == schema.nested_field:
            shaped[rule.name] = flatten_pools(value)
        else:
            shaped[rule.name] = value
    return shaped


class HistoryQueryService:
    """Runs history queries against a SeriesStore.

    Attributes:
        store: Store the queries read from (shared, never written).
    """

    def __init__(self, store: SeriesStore) -> None:
        self.store = store

    def query(self, dataset: Dataset | str, query: HistoryQuery) -> HistoryResponse:
        """Run one history query.

        Args:
            dataset: Dataset to query
            query: Parsed request parameters

        Returns:
            HistoryResponse with meta and shaped intervals

        Raises:
            StoreError: If the store read fails
        """
        schema = get_schema(dataset)
        interval_seconds = interval_seconds_or_default(query.interval)
        aligned_from = align_down(query.from_ts, interval_seconds)
        conditions = parse_filters(query.filters, allowed_fields=schema.filterable_fields)

        page = self.store.query_buckets(
            schema,
            aligned_from,
            query.to_ts,
            interval_seconds,
            filters=conditions,
            sort_by=query.sort,
            descending=query.descending,
            count=query.count,
            page=query.page,
            limit=query.limit,
        )

        if page.buckets:
            meta = HistoryMeta(startTime=page.observed_start, endTime=page.observed_end)
        else:
            # Empty results echo the raw `from`, not the aligned one, and `to`
            # as given, so from=1000 stays 1000 even for day buckets
            meta = HistoryMeta(startTime=query.from_ts, endTime=query.to_ts)

        logger.debug(
            "History query complete",
            extra={
                "dataset": schema.name,
                "interval_seconds": interval_seconds,
                "filters_applied": len(conditions),
                "bucket_count": len(page.buckets),
            },
        )

        return HistoryResponse(
            meta=meta,
            intervals=[shape_bucket(schema, bucket) for bucket in page.buckets],
        )
