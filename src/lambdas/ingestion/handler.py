"""
History Ingestion Handler
=========================

Runs one ingestion cycle: every dataset is pumped sequentially from its
checkpoint up to the cycle start time.

Entry points:
- run_ingestion_cycle(): used by the in-process scheduler
- lambda_handler(): EventBridge-triggered Lambda (hourly)

For On-Call Engineers:
    Each dataset logs "Ingestion run complete" or "Ingestion run failed".
    A failed dataset does not stop the others; it is retried next cycle
    from its persisted checkpoint.

    Quick commands:
    # Check recent invocations
    aws logs tail /aws/lambda/${environment}-midgard-ingestion --since 1h

    # Check failures
    aws cloudwatch get-metric-statistics \
      --namespace MidgardVault \
      --metric-name IngestionFailures \
      --start-time $(date -d '1 day ago' -u +%Y-%m-%dT%H:%M:%SZ) \
      --end-time $(date -u +%Y-%m-%dT%H:%M:%SZ) \
      --period 3600 --statistics Sum

For Developers:
    Cycle workflow:
    1. Fix `until` to the cycle start time
    2. For each dataset in INGESTION_ORDER run IngestionPump
    3. Collect per-dataset results into a summary
    4. Emit CloudWatch metrics when METRICS_ENABLED
"""

import logging
import time
from typing import Any

from src.lambdas.ingestion.checkpoint import CheckpointResolver
from src.lambdas.ingestion.pump import IngestionPump, IngestionState, PumpResult
from src.lambdas.shared.adapters.base import BaseAdapter
from src.lambdas.shared.adapters.midgard import MidgardAdapter
from src.lambdas.shared.config import ServiceConfig, get_config
from src.lambdas.shared.models.datasets import INGESTION_ORDER, get_schema
from src.lambdas.shared.store import SeriesStore, create_store
from src.lib.logging_utils import configure_logging, get_safe_error_info, sanitize_for_log
from src.lib.metrics import Timer, emit_metrics_batch

# Structured logging
logger = logging.getLogger(__name__)

# Reused across warm Lambda invocations
_store: SeriesStore | None = None


def _emit_cycle_metrics(
    results: list[PumpResult], latencies_ms: dict[str, float], region: str
) -> None:
    """Emit per-dataset ingestion metrics to CloudWatch.

    Args:
        results: Pump results of the cycle
        latencies_ms: Wall time per dataset
        region: AWS region
    """
    metrics = []
    for result in results:
        dimensions = {"Dataset": result.dataset}
        metrics.extend(
            [
                {
                    "name": "IngestionBatchesStored",
                    "value": result.batches_stored,
                    "unit": "Count",
                    "dimensions": dimensions,
                },
                {
                    "name": "IngestionSamplesStored",
                    "value": result.samples_stored,
                    "unit": "Count",
                    "dimensions": dimensions,
                },
                {
                    "name": "IngestionFailures",
                    "value": 0 if result.succeeded else 1,
                    "unit": "Count",
                    "dimensions": dimensions,
                },
                {
                    "name": "IngestionLatencyMs",
                    "value": latencies_ms.get(result.dataset, 0.0),
                    "unit": "Milliseconds",
                    "dimensions": dimensions,
                },
            ]
        )

    emit_metrics_batch(metrics, region_name=region)


def run_ingestion_cycle(
    store: SeriesStore,
    adapter: BaseAdapter,
    config: ServiceConfig,
    until: int | None = None,
) -> dict[str, Any]:
    """Run one ingestion cycle over every dataset.

    Args:
        store: Destination store
        adapter: Upstream history adapter
        config: Service configuration
        until: Cycle end time (default: now, fixed at cycle start)

    Returns:
        Summary dict with per-dataset results. Never raises.
    """
    cycle_until = int(until) if until is not None else int(time.time())
    pump = IngestionPump(
        store=store,
        adapter=adapter,
        checkpoints=CheckpointResolver(store, config.lookback_seconds),
        depth_pool=config.depth_pool,
    )

    results: list[PumpResult] = []
    latencies_ms: dict[str, float] = {}

    with Timer() as cycle_timer:
        for dataset in INGESTION_ORDER:
            schema = get_schema(dataset)
            with Timer() as timer:
                try:
                    result = pump.run(schema, until=cycle_until)
                except Exception as e:
                    # Unexpected bug in one dataset must not stop the others
                    logger.error(
                        "Ingestion run crashed",
                        extra={"dataset": schema.name, **get_safe_error_info(e)},
                    )
                    result = PumpResult(
                        dataset=schema.name,
                        state=IngestionState.FAILED,
                        error_type=type(e).__name__,
                    )
            latencies_ms[schema.name] = timer.elapsed_ms
            results.append(result)

    summary = {
        "until": cycle_until,
        "datasets_succeeded": sum(1 for r in results if r.succeeded),
        "datasets_failed": sum(1 for r in results if not r.succeeded),
        "batches_stored": sum(r.batches_stored for r in results),
        "samples_stored": sum(r.samples_stored for r in results),
        "execution_time_ms": round(cycle_timer.elapsed_ms, 2),
        "results": [r.to_dict() for r in results],
    }

    if config.metrics_enabled:
        _emit_cycle_metrics(results, latencies_ms, config.aws_region)

    logger.info(
        "Ingestion cycle completed",
        extra={k: v for k, v in summary.items() if k != "results"},
    )
    return summary


def _get_store(config: ServiceConfig) -> SeriesStore:
    global _store
    if _store is None:
        _store = create_store(config)
    return _store


def lambda_handler(event: dict[str, Any], context: Any) -> dict[str, Any]:
    """
    Main Lambda handler for history ingestion.

    Triggered by EventBridge scheduler every hour.

    Args:
        event: EventBridge scheduled event
        context: Lambda context (contains aws_request_id)

    Returns:
        Response with status and summary
    """
    request_id = getattr(context, "aws_request_id", "unknown")

    try:
        config = get_config()
        configure_logging(config.log_level, config.log_format)

        logger.info(
            "History ingestion started",
            extra={
                "request_id": sanitize_for_log(request_id[:8]),
                "event_source": event.get("source", "unknown"),
            },
        )

        with MidgardAdapter(
            base_url=config.midgard_base_url,
            timeout=config.midgard_timeout_seconds,
        ) as adapter:
            summary = run_ingestion_cycle(_get_store(config), adapter, config)

        return {
            "statusCode": 200 if summary["datasets_failed"] == 0 else 207,
            "body": {"summary": summary},
        }

    except Exception as e:
        logger.error("History ingestion failed", extra=get_safe_error_info(e))

        return {
            "statusCode": 500,
            "body": {
                "error": "Internal error",
                "code": "INTERNAL_ERROR",
            },
        }
