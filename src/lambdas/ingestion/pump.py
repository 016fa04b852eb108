"""
Ingestion Pump
==============

Per-dataset state machine that pages through the upstream history API from
the dataset checkpoint and appends each page to the Series Store.

    IDLE -> FETCHING -> PARSING -> STORING -> ADVANCING -> FETCHING | DONE
    PARSING with no intervals -> DONE
    PARSING with an end marker that cannot advance the cursor -> DONE
    any step on error -> FAILED

For On-Call Engineers:
    - FAILED during FETCHING: upstream unreachable or returned an HTTP
      error. Nothing was written for that page.
    - FAILED during PARSING: upstream body was not JSON or did not match
      the dataset schema. Nothing was written for that page.
    - FAILED during STORING: the store write failed; the cursor did not move.
    - Every failure is retried by the next cycle from the persisted
      checkpoint. Pages stored before the failure are kept.

For Developers:
    - DONE and FAILED are terminal for one run.
    - The cursor only moves forward: a page whose end marker does not
      exceed the cursor ends the run unstored, so the loop always
      terminates and a blank marker never becomes the checkpoint.
    - Overlap with earlier pages is tolerated; gaps are not.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from src.lambdas.ingestion.checkpoint import CheckpointResolver
from src.lambdas.shared.adapters.base import (
    AdapterError,
    BaseAdapter,
    MalformedResponseError,
)
from src.lambdas.shared.config import DEFAULT_DEPTH_POOL
from src.lambdas.shared.models.datasets import (
    END_TIME,
    Dataset,
    DatasetSchema,
    get_schema,
)
from src.lambdas.shared.models.history import (
    HistoryBatch,
    SchemaMismatchError,
    decode_history,
)
from src.lambdas.shared.store import SeriesStore, StoreError
from src.lib.logging_utils import get_safe_error_info

logger = logging.getLogger(__name__)

PAGE_COUNT = 400
PAGE_INTERVAL = "hour"


class IngestionState(str, Enum):
    """States of one ingestion run."""

    IDLE = "idle"
    FETCHING = "fetching"
    PARSING = "parsing"
    STORING = "storing"
    ADVANCING = "advancing"
    DONE = "done"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (IngestionState.DONE, IngestionState.FAILED)


@dataclass
class PumpResult:
    """Outcome of one ingestion run for one dataset."""

    dataset: str
    state: IngestionState = IngestionState.IDLE
    start_cursor: int | None = None
    cursor: int | None = None
    batches_stored: int = 0
    samples_stored: int = 0
    failed_in: IngestionState | None = None
    error_type: str | None = None
    transitions: list[IngestionState] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.state is IngestionState.DONE

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {
            "dataset": self.dataset,
            "state": self.state.value,
            "start_cursor": self.start_cursor,
            "cursor": self.cursor,
            "batches_stored": self.batches_stored,
            "samples_stored": self.samples_stored,
            "failed_in": self.failed_in.value if self.failed_in else None,
            "error_type": self.error_type,
        }


def usable_end_marker(batch: HistoryBatch, cursor: int) -> int | None:
    """
    End marker a stored page may advance the cursor to.

    The meta endTime is used when it lies past both the cursor and the meta
    startTime. Otherwise the latest sample endTime stands in under the same
    rule. None means the page cannot advance the cursor and is not stored,
    so a blank or stale marker can never become the dataset checkpoint.
    """
    floor = max(cursor, batch.start_time)
    for candidate in (batch.end_time, batch.last_sample_end):
        if candidate is not None and candidate > floor:
            return candidate
    return None


class IngestionPump:
    """Drives ingestion of one dataset per run.

    Attributes:
        store: Destination store (append-only)
        adapter: Upstream history adapter
        checkpoints: Resolver for the starting cursor
        depth_pool: Pool whose depth history is ingested
    """

    def __init__(
        self,
        store: SeriesStore,
        adapter: BaseAdapter,
        checkpoints: CheckpointResolver,
        depth_pool: str = DEFAULT_DEPTH_POOL,
    ) -> None:
        self.store = store
        self.adapter = adapter
        self.checkpoints = checkpoints
        self.depth_pool = depth_pool

    def _transition(self, result: PumpResult, state: IngestionState) -> None:
        logger.debug(
            "Ingestion state change",
            extra={
                "dataset": result.dataset,
                "from_state": result.state.value,
                "to_state": state.value,
                "cursor": result.cursor,
            },
        )
        result.state = state
        result.transitions.append(state)

    def _fail(self, result: PumpResult, error: Exception) -> PumpResult:
        result.failed_in = result.state
        result.error_type = type(error).__name__
        logger.error(
            "Ingestion run failed",
            extra={
                "dataset": result.dataset,
                "failed_in": result.state.value,
                "cursor": result.cursor,
                "batches_stored": result.batches_stored,
                **get_safe_error_info(error),
            },
        )
        self._transition(result, IngestionState.FAILED)
        return result

    def run(
        self, dataset: Dataset | str | DatasetSchema, until: int | None = None
    ) -> PumpResult:
        """Ingest one dataset from its checkpoint up to `until`.

        Args:
            dataset: Dataset to ingest
            until: Stop once the cursor reaches this time (default: now)

        Returns:
            PumpResult in state DONE or FAILED. Never raises for upstream,
            decode or store errors.
        """
        schema = dataset if isinstance(dataset, DatasetSchema) else get_schema(dataset)
        stop_at = int(until) if until is not None else int(time.time())
        result = PumpResult(dataset=schema.name)
        path = schema.path_for(self.depth_pool)

        try:
            result.start_cursor = result.cursor = self.checkpoints.resolve(schema)
        except StoreError as e:
            return self._fail(result, e)

        self._transition(result, IngestionState.FETCHING)
        while True:
            try:
                payload = self.adapter.get_history(
                    path, result.cursor, count=PAGE_COUNT, interval=PAGE_INTERVAL
                )
            except MalformedResponseError as e:
                # A body that is not JSON is a decode failure, not transport
                self._transition(result, IngestionState.PARSING)
                return self._fail(result, e)
            except AdapterError as e:
                return self._fail(result, e)

            self._transition(result, IngestionState.PARSING)
            try:
                batch = decode_history(schema, payload)
            except SchemaMismatchError as e:
                return self._fail(result, e)

            if batch.is_empty:
                self._transition(result, IngestionState.DONE)
                break

            end_time = usable_end_marker(batch, result.cursor)
            if end_time is None:
                logger.info(
                    "Upstream marker did not advance, stopping",
                    extra={
                        "dataset": schema.name,
                        "cursor": result.cursor,
                        "end_time": batch.end_time,
                    },
                )
                self._transition(result, IngestionState.DONE)
                break

            meta = batch.meta
            if end_time != batch.end_time:
                logger.warning(
                    "Upstream end marker unusable, using last sample end",
                    extra={
                        "dataset": schema.name,
                        "cursor": result.cursor,
                        "end_time": batch.end_time,
                        "sample_end": end_time,
                    },
                )
                meta = {**batch.meta, END_TIME: end_time}

            self._transition(result, IngestionState.STORING)
            try:
                self.store.insert_batch(schema, meta, batch.intervals)
            except StoreError as e:
                return self._fail(result, e)
            result.batches_stored += 1
            result.samples_stored += len(batch.intervals)

            self._transition(result, IngestionState.ADVANCING)
            result.cursor = end_time
            if result.cursor >= stop_at:
                self._transition(result, IngestionState.DONE)
                break

            self._transition(result, IngestionState.FETCHING)

        logger.info(
            "Ingestion run complete",
            extra={
                "dataset": schema.name,
                "start_cursor": result.start_cursor,
                "cursor": result.cursor,
                "batches_stored": result.batches_stored,
                "samples_stored": result.samples_stored,
            },
        )
        return result
