"""In-process ingestion scheduler.

Runs one ingestion cycle per fixed period as an asyncio task alongside the
API. The blocking cycle runs in a worker thread. The next tick is due one
period after the previous tick started; a cycle that overruns the period
delays the next tick, so cycles never overlap.

Cancellation (application shutdown) stops the loop. A worker thread cannot
be interrupted, so shutdown waits up to stop_timeout_seconds for the cycle in
flight before its adapter is closed and the caller closes the store. An
abandoned cycle loses nothing: the next start re-resolves every checkpoint
from the store.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from src.lambdas.ingestion.handler import run_ingestion_cycle
from src.lambdas.shared.adapters.base import BaseAdapter
from src.lambdas.shared.adapters.midgard import MidgardAdapter
from src.lambdas.shared.config import ServiceConfig
from src.lambdas.shared.store import SeriesStore
from src.lib.logging_utils import get_safe_error_info

logger = logging.getLogger(__name__)

STOP_TIMEOUT_SECONDS = 30.0


class IngestionScheduler:
    """Fixed-period, non-overlapping ingestion loop.

    Attributes:
        store: Store shared with the API
        config: Service configuration
        period_seconds: Time between tick starts
        stop_timeout_seconds: How long shutdown waits for a running cycle
        cycles_completed: Number of cycles run so far
        last_summary: Summary of the most recent cycle
    """

    def __init__(
        self,
        store: SeriesStore,
        config: ServiceConfig,
        adapter_factory: Callable[[], BaseAdapter] | None = None,
        period_seconds: float | None = None,
        stop_timeout_seconds: float = STOP_TIMEOUT_SECONDS,
    ) -> None:
        self.store = store
        self.config = config
        self.period_seconds = (
            period_seconds
            if period_seconds is not None
            else config.ingestion_interval_seconds
        )
        self.stop_timeout_seconds = stop_timeout_seconds
        self._adapter_factory = adapter_factory or self._default_adapter
        self._task: asyncio.Task | None = None
        self._cycle: asyncio.Future | None = None
        self.cycles_completed = 0
        self.last_summary: dict[str, Any] | None = None

    def _default_adapter(self) -> BaseAdapter:
        return MidgardAdapter(
            base_url=self.config.midgard_base_url,
            timeout=self.config.midgard_timeout_seconds,
        )

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> dict[str, Any] | None:
        """Run one cycle in a worker thread.

        Returns:
            The cycle summary, or None if the cycle could not be started
        """
        try:
            adapter = self._adapter_factory()
        except Exception as e:
            logger.error("Failed to create upstream adapter", extra=get_safe_error_info(e))
            return None

        cycle = asyncio.ensure_future(
            asyncio.to_thread(run_ingestion_cycle, self.store, adapter, self.config)
        )
        self._cycle = cycle
        try:
            summary = await asyncio.shield(cycle)
        except asyncio.CancelledError:
            await self._wait_for_cycle(cycle)
            raise
        finally:
            self._cycle = None
            adapter.close()

        self.cycles_completed += 1
        self.last_summary = summary
        return summary

    async def _wait_for_cycle(self, cycle: asyncio.Future) -> None:
        try:
            await asyncio.wait_for(asyncio.shield(cycle), self.stop_timeout_seconds)
        except TimeoutError:
            logger.warning(
                "Ingestion cycle still running at shutdown",
                extra={"timeout_seconds": self.stop_timeout_seconds},
            )
        except Exception as e:
            logger.error(
                "Ingestion cycle failed during shutdown", extra=get_safe_error_info(e)
            )

    async def _run_forever(self) -> None:
        loop = asyncio.get_running_loop()
        while True:
            tick_start = loop.time()
            await self.run_once()
            delay = max(0.0, tick_start + self.period_seconds - loop.time())
            logger.debug("Next ingestion cycle scheduled", extra={"delay_seconds": delay})
            await asyncio.sleep(delay)

    def start(self) -> None:
        """Start the loop on the running event loop (idempotent)."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run_forever(), name="ingestion-scheduler")
        logger.info(
            "Ingestion scheduler started",
            extra={"period_seconds": self.period_seconds},
        )

    async def stop(self) -> None:
        """Cancel the loop and wait for it to finish.

        Returns once the cycle in flight has finished and its adapter is
        closed, or after stop_timeout_seconds if the cycle is still running.
        """
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        finally:
            self._task = None
        logger.info(
            "Ingestion scheduler stopped",
            extra={"cycles_completed": self.cycles_completed},
        )
