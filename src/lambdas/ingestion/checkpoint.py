"""Checkpoint resolution for resumable ingestion.

The checkpoint of a dataset is the endTime of its most recently started
stored batch. A dataset with no batches starts one lookback window ago,
aligned down to the hour so that repeated resolution within the same hour
returns the same value. Nothing is written; the store is the only state.
"""

import logging
import time
from collections.abc import Callable

from src.lambdas.shared.models.datasets import DatasetSchema
from src.lambdas.shared.store import SeriesStore
from src.lib.timeseries.bucket import align_down

logger = logging.getLogger(__name__)

HOUR_SECONDS = 3600


class CheckpointResolver:
    """Resolves the next ingestion start time per dataset.

    Attributes:
        store: Store holding previously ingested batches
        lookback_seconds: Window used when a dataset is empty
    """

    def __init__(
        self,
        store: SeriesStore,
        lookback_seconds: int,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.store = store
        self.lookback_seconds = lookback_seconds
        self._clock = clock

    def default_start(self) -> int:
        """Start time for a dataset that has never been ingested."""
        now = int(self._clock() if self._clock else time.time())
        return align_down(now - self.lookback_seconds, HOUR_SECONDS)

    def resolve(self, schema: DatasetSchema) -> int:
        """Return the timestamp the next fetch should start from.

        Raises:
            StoreError: If the store cannot be read
        """
        checkpoint = self.store.last_checkpoint(schema)
        if checkpoint is not None:
            return int(checkpoint)

        start = self.default_start()
        logger.info(
            "No stored batches, starting from lookback window",
            extra={
                "dataset": schema.name,
                "start": start,
                "lookback_seconds": self.lookback_seconds,
            },
        )
        return start
