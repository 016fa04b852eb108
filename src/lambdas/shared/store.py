"""
Series Store
============

Append-only storage of ingested history batches plus the bucketed query
that serves the API.

One record is stored per upstream response per dataset. A record holds the
response meta and the embedded list of raw samples; samples are never
normalized into one row per sample.

For On-Call Engineers:
    - StoreError in ingestion logs means the batch was NOT stored and the
      checkpoint was not advanced; the next cycle retries from the same point.
    - /health reports store connectivity (DescribeTable for DynamoDB).
    - Records are never updated or deleted by the service.

For Developers:
    - SeriesStore.aggregate() is the single execution entry point; every
      query is a typed stage tuple from QueryPipeline.
    - Backends only supply candidate records. DynamoSeriesStore pushes the
      record range match down into the key condition and a filter
      expression; every other stage runs in execute_pipeline().
    - The store handle is created once per process (see create_store) and
      must be closed explicitly.
"""

import copy
import json
import logging
import threading
import time
import uuid
import zlib
from abc import ABC, abstractmethod
from collections.abc import Iterable, Iterator, Sequence
from typing import Any

from boto3.dynamodb.conditions import Attr, Key
from boto3.dynamodb.types import Binary
from botocore.exceptions import BotoCoreError, ClientError

from src.lambdas.shared.config import ServiceConfig
from src.lambdas.shared.dynamodb import (
    PARTITION_KEY,
    SORT_KEY,
    build_history_key,
    get_table,
    parse_dynamodb_item,
    sort_key_upper_bound,
    to_dynamodb_value,
)
from src.lambdas.shared.models.datasets import (
    END_TIME,
    START_TIME,
    Dataset,
    DatasetSchema,
    get_schema,
)
from src.lib.timeseries.filters import FilterCondition
from src.lib.timeseries.models import Bucket, BucketPage
from src.lib.timeseries.pipeline import (
    BUCKET_START_KEY,
    SAMPLE_COUNT_KEY,
    QueryPipeline,
    RecordRangeMatch,
    Stage,
    execute_pipeline,
)

logger = logging.getLogger(__name__)

# Page size limits shared by count mode and page mode
DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 400

# Records read per page while looking for the latest usable checkpoint
CHECKPOINT_SCAN_PAGE = 25


class StoreError(Exception):
    """
    Raised when the backing store fails.

    On-Call Note:
        The message carries the DynamoDB error code when one is available.
    """

    pass


_record_clock_lock = threading.Lock()
_last_record_ns = 0


def new_record_id() -> str:
    """Record id that sorts by insertion time, then randomly.

    The time prefix is strictly increasing within a process, so a later
    insert always sorts after an earlier one.
    """
    global _last_record_ns
    with _record_clock_lock:
        _last_record_ns = max(time.time_ns(), _last_record_ns + 1)
        stamp = _last_record_ns
    return f"{stamp:020d}-{uuid.uuid4().hex[:12]}"


def _resolve_schema(dataset: Dataset | str | DatasetSchema) -> DatasetSchema:
    if isinstance(dataset, DatasetSchema):
        return dataset
    return get_schema(dataset)


def _positive_or_default(value: int | None, default: int) -> int:
    if value is None or value <= 0:
        return default
    return value


def _is_safe_marker(start: Any, end: Any) -> bool:
    """A record end marker is a usable checkpoint only when it is past its start."""
    if isinstance(start, bool) or isinstance(end, bool):
        return False
    if not isinstance(start, int) or not isinstance(end, int):
        return False
    return end > start


def build_bucket_pipeline(
    schema: DatasetSchema,
    from_ts: int,
    to_ts: int,
    interval_seconds: int,
    filters: Iterable[FilterCondition] = (),
    sort_by: str | None = None,
    descending: bool = False,
    count: int | None = None,
    page: int | None = None,
    limit: int | None = None,
) -> tuple[Stage, ...]:
    """
    Build the bucket query for one dataset.

    Samples repeated across records (retried or overlapping pages) count
    once, from the newest record.

    Pagination:
        - count mode (default): first min(count, 400) buckets
        - page mode (page or limit given): skip (page-1)*limit, take limit
        - both given: the count cap applies first, then page mode

    Sorting:
        sort_by must name a numeric output field or startTime/endTime;
        anything else falls back to ascending bucket start.
    """
    pipeline = (
        QueryPipeline()
        .match_records(from_ts, to_ts)
        .unwind()
        .dedupe()
        .match_samples(from_ts, to_ts)
        .filter(filters)
        .group(interval_seconds, schema.fields)
    )

    if sort_by and sort_by in schema.sortable_fields:
        pipeline.sort(sort_by, descending)
    else:
        pipeline.sort()

    page_mode = page is not None or limit is not None
    if count is not None or not page_mode:
        pipeline.limit(min(_positive_or_default(count, DEFAULT_PAGE_SIZE), MAX_PAGE_SIZE))

    if page_mode:
        page_size = min(_positive_or_default(limit, DEFAULT_PAGE_SIZE), MAX_PAGE_SIZE)
        page_number = max(1, page or 1)
        pipeline.skip((page_number - 1) * page_size).limit(page_size)

    return pipeline.build()


def _row_to_bucket(row: dict[str, Any]) -> Bucket:
    values = dict(row)
    return Bucket(
        bucket_start=values.pop(BUCKET_START_KEY),
        start_time=values.pop(START_TIME),
        end_time=values.pop(END_TIME),
        sample_count=values.pop(SAMPLE_COUNT_KEY, 0),
        values=values,
    )


class SeriesStore(ABC):
    """Append-only store of history batches with pipeline execution."""

    @abstractmethod
    def insert_batch(
        self,
        dataset: Dataset | str | DatasetSchema,
        meta: dict[str, Any],
        samples: list[dict[str, Any]],
    ) -> str:
        """
        Append one upstream response as one record.

        Args:
            dataset: Dataset the batch belongs to
            meta: Coerced response meta (must contain startTime/endTime)
            samples: Coerced interval samples

        Returns:
            The new record id

        Raises:
            StoreError: If the write fails
        """

    @abstractmethod
    def _candidate_records(
        self, schema: DatasetSchema, record_range: RecordRangeMatch | None
    ) -> Iterator[dict[str, Any]]:
        """Yield records of a dataset, optionally pre-filtered by range."""

    @abstractmethod
    def last_checkpoint(self, dataset: Dataset | str | DatasetSchema) -> int | None:
        """
        Return the endTime of the latest-starting record whose endTime is
        past its startTime. Records with a blank or stale end marker are
        skipped so the checkpoint never regresses to them.

        Returns:
            The checkpoint, or None when the dataset has no records

        Raises:
            StoreError: If the read fails
        """

    @abstractmethod
    def ping(self) -> bool:
        """Return True when the store is reachable."""

    def close(self) -> None:
        """Release backend resources."""

    def aggregate(
        self, dataset: Dataset | str | DatasetSchema, stages: Sequence[Stage]
    ) -> list[dict[str, Any]]:
        """
        Execute a stage tuple against one dataset.

        A leading RecordRangeMatch is offered to the backend for pushdown;
        it is still applied by the executor, so pushdown only has to be a
        superset.
        """
        schema = _resolve_schema(dataset)
        record_range = None
        if stages and isinstance(stages[0], RecordRangeMatch):
            record_range = stages[0]
        return execute_pipeline(self._candidate_records(schema, record_range), stages)

    def query_buckets(
        self,
        dataset: Dataset | str | DatasetSchema,
        from_ts: int,
        to_ts: int,
        interval_seconds: int,
        filters: Iterable[FilterCondition] = (),
        sort_by: str | None = None,
        descending: bool = False,
        count: int | None = None,
        page: int | None = None,
        limit: int | None = None,
    ) -> BucketPage:
        """
        Run the bucketed history query.

        Args:
            dataset: Dataset to query
            from_ts: Inclusive lower bound on sample startTime
            to_ts: Inclusive upper bound on sample startTime
            interval_seconds: Bucket width
            filters: Conditions ANDed over samples before grouping
            sort_by: Output field to sort by
            descending: Sort direction for sort_by
            count: Count-mode page size
            page: Page-mode page number (1-based)
            limit: Page-mode page size

        Returns:
            BucketPage. observed_start/observed_end fall back to
            from_ts/to_ts when no bucket matched.

        Raises:
            StoreError: If the read fails
        """
        schema = _resolve_schema(dataset)
        stages = build_bucket_pipeline(
            schema,
            from_ts,
            to_ts,
            interval_seconds,
            filters=filters,
            sort_by=sort_by,
            descending=descending,
            count=count,
            page=page,
            limit=limit,
        )
        buckets = [_row_to_bucket(row) for row in self.aggregate(schema, stages)]

        return BucketPage(
            buckets=buckets,
            observed_start=buckets[0].start_time if buckets else from_ts,
            observed_end=buckets[-1].end_time if buckets else to_ts,
        )


class InMemorySeriesStore(SeriesStore):
    """
    Process-local store for development and tests.

    Records are deep-copied on the way in and out so callers can never
    mutate stored batches.
    """

    def __init__(self) -> None:
        self._records: dict[str, list[tuple[tuple[int, str], dict[str, Any]]]] = {}
        self._lock = threading.Lock()

    def insert_batch(self, dataset, meta, samples) -> str:
        schema = _resolve_schema(dataset)
        record_id = new_record_id()
        record = {
            "id": record_id,
            "meta": copy.deepcopy(meta),
            "intervals": copy.deepcopy(samples),
        }
        order_key = (int(meta.get(START_TIME) or 0), record_id)
        with self._lock:
            self._records.setdefault(schema.partition, []).append((order_key, record))
        return record_id

    def _candidate_records(self, schema, record_range):
        with self._lock:
            records = [record for _, record in self._records.get(schema.partition, [])]
        for record in records:
            yield copy.deepcopy(record)

    def last_checkpoint(self, dataset) -> int | None:
        schema = _resolve_schema(dataset)
        with self._lock:
            entries = sorted(self._records.get(schema.partition, []), key=lambda e: e[0])
        for _, record in reversed(entries):
            meta = record["meta"]
            if _is_safe_marker(meta.get(START_TIME), meta.get(END_TIME)):
                return meta[END_TIME]
        return None

    def record_count(self, dataset: Dataset | str | DatasetSchema) -> int:
        """Number of stored records for a dataset."""
        schema = _resolve_schema(dataset)
        with self._lock:
            return len(self._records.get(schema.partition, []))

    def ping(self) -> bool:
        return True

    def close(self) -> None:
        with self._lock:
            self._records.clear()


def _compress_samples(samples: list[dict[str, Any]]) -> Binary:
    payload = json.dumps(samples, separators=(",", ":")).encode("utf-8")
    return Binary(zlib.compress(payload))


def _decompress_samples(blob: bytes) -> list[dict[str, Any]]:
    try:
        return json.loads(zlib.decompress(blob).decode("utf-8"))
    except (zlib.error, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise StoreError(f"Corrupt intervals payload: {type(e).__name__}") from e


class DynamoSeriesStore(SeriesStore):
    """
    DynamoDB-backed store.

    Item layout:
        pk          dataset partition (e.g. "swaps_history")
        sk          zero-padded meta startTime + "#" + record id
        record_id   record id
        start_time  meta startTime (number)
        end_time    meta endTime (number)
        meta        meta as a native map
        sample_count number of samples
        intervals   zlib-compressed JSON list of samples (binary)

    Samples are compressed because a 400-sample page of swaps or earnings
    exceeds the 400 KB item limit as a native list.
    """

    def __init__(self, table_name: str, region_name: str | None = None) -> None:
        self.table_name = table_name
        self.region_name = region_name
        self._table = None

    @property
    def table(self) -> Any:
        """Lazy-initialized DynamoDB table resource."""
        if self._table is None:
            self._table = get_table(self.table_name, self.region_name)
        return self._table

    def insert_batch(self, dataset, meta, samples) -> str:
        schema = _resolve_schema(dataset)
        record_id = new_record_id()
        start_time = int(meta.get(START_TIME) or 0)
        end_time = int(meta.get(END_TIME) or 0)

        item = {
            **build_history_key(schema.partition, start_time, record_id),
            "record_id": record_id,
            "start_time": start_time,
            "end_time": end_time,
            "meta": to_dynamodb_value(meta),
            "sample_count": len(samples),
            "intervals": _compress_samples(samples),
        }

        try:
            self.table.put_item(Item=item)
        except ClientError as e:
            code = e.response["Error"]["Code"]
            logger.error(
                "Failed to store history batch",
                extra={"dataset": schema.name, "error_code": code},
            )
            raise StoreError(f"DynamoDB error: {code}") from e
        except BotoCoreError as e:
            raise StoreError(f"DynamoDB error: {type(e).__name__}") from e

        logger.debug(
            "Stored history batch",
            extra={
                "dataset": schema.name,
                "record_id": record_id,
                "sample_count": len(samples),
            },
        )
        return record_id

    def _query_pages(self, **kwargs: Any) -> Iterator[dict[str, Any]]:
        try:
            while True:
                response = self.table.query(**kwargs)
                yield from response.get("Items", [])
                last_key = response.get("LastEvaluatedKey")
                if not last_key:
                    return
                kwargs["ExclusiveStartKey"] = last_key
        except ClientError as e:
            raise StoreError(f"DynamoDB error: {e.response['Error']['Code']}") from e
        except BotoCoreError as e:
            raise StoreError(f"DynamoDB error: {type(e).__name__}") from e

    def _candidate_records(self, schema, record_range):
        key_condition = Key(PARTITION_KEY).eq(schema.partition)
        kwargs: dict[str, Any] = {}
        if record_range is not None:
            key_condition = key_condition & Key(SORT_KEY).lte(
                sort_key_upper_bound(record_range.end)
            )
            kwargs["FilterExpression"] = Attr("end_time").gte(record_range.start)

        for raw in self._query_pages(KeyConditionExpression=key_condition, **kwargs):
            item = parse_dynamodb_item(raw)
            yield {
                "id": item.get("record_id"),
                "meta": item.get("meta") or {},
                "intervals": _decompress_samples(item["intervals"]),
            }

    def last_checkpoint(self, dataset) -> int | None:
        schema = _resolve_schema(dataset)
        items = self._query_pages(
            KeyConditionExpression=Key(PARTITION_KEY).eq(schema.partition),
            ScanIndexForward=False,
            Limit=CHECKPOINT_SCAN_PAGE,
            ProjectionExpression="start_time, end_time",
        )
        for raw in items:
            item = parse_dynamodb_item(raw)
            if _is_safe_marker(item.get("start_time"), item.get("end_time")):
                return item["end_time"]
        return None

    def ping(self) -> bool:
        try:
            self.table.meta.client.describe_table(TableName=self.table_name)
            return True
        except (ClientError, BotoCoreError) as e:
            logger.warning(
                "Store health check failed",
                extra={"table": self.table_name, "error_type": type(e).__name__},
            )
            return False

    def close(self) -> None:
        if self._table is not None:
            self._table.meta.client.close()
            self._table = None


def create_store(config: ServiceConfig) -> SeriesStore:
    """
    Create the store selected by STORE_BACKEND.

    Args:
        config: Service configuration

    Returns:
        A SeriesStore instance (callers own it and must close it)
    """
    if config.store_backend == "memory":
        logger.info("Using in-memory series store")
        return InMemorySeriesStore()

    logger.info(
        "Using DynamoDB series store",
        extra={"table": config.history_table, "region": config.aws_region},
    )
    return DynamoSeriesStore(config.history_table, config.aws_region)
