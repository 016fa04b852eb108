"""History API Router.

Wires the history query service to FastAPI endpoints. This router is
included by handler.py.

Endpoints (all GET, same query parameters):
- /api/depth-history - pool depth history for the configured pool
- /api/earnings-history - protocol earnings, with per-pool breakdown
- /api/swaps-history - swap counts and volumes
- /api/rune-pool-history - RUNEPool members and units

Query parameters:
    interval  5min | hour | day | week | month | quarter | year (default hour)
    count     number of buckets (default 10, max 400)
    limit     page size in page mode (default 10, max 400)
    page      page number in page mode (default 1)
    from      lower bound, unix seconds (default 0)
    to        upper bound, unix seconds (default open)
    filters   repeatable, e.g. filters=assetDepth>1000&filters=units<=5
    sort      output field to sort by (default bucket start)
    order     asc | desc

Parameters are parsed leniently: unparsable values fall back to defaults
instead of rejecting the request.
"""

import logging

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from src.lambdas.dashboard.history import (
    HistoryQuery,
    HistoryQueryService,
    HistoryResponse,
)
from src.lambdas.shared.models.datasets import Dataset
from src.lambdas.shared.store import SeriesStore, StoreError, create_store
from src.lib.logging_utils import get_safe_error_info, get_safe_error_message_for_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["history"])


def get_store(request: Request) -> SeriesStore:
    """Dependency returning the process-wide store.

    The lifespan handler creates the store. Under Lambda the lifespan is
    off, so the first request creates it and later invocations reuse it.
    """
    store = getattr(request.app.state, "store", None)
    if store is None:
        store = create_store(request.app.state.config)
        request.app.state.store = store
    return store


def get_history_service(store: SeriesStore = Depends(get_store)) -> HistoryQueryService:
    """Dependency to get HistoryQueryService."""
    return HistoryQueryService(store)


def get_history_query(
    interval: str | None = Query(None, description="Bucket interval name"),
    count: str | None = Query(None, description="Number of buckets (max 400)"),
    limit: str | None = Query(None, description="Page size (max 400)"),
    page: str | None = Query(None, description="Page number, 1-based"),
    from_: str | None = Query(None, alias="from", description="Start, unix seconds"),
    to: str | None = Query(None, description="End, unix seconds"),
    filters: list[str] | None = Query(None, description="Filters such as units>5"),
    sort: str | None = Query(None, description="Field to sort by"),
    order: str | None = Query(None, description="asc or desc"),
) -> HistoryQuery:
    """Dependency parsing the shared history query parameters."""
    return HistoryQuery.from_params(
        interval=interval,
        count=count,
        limit=limit,
        page=page,
        from_=from_,
        to=to,
        filters=filters,
        sort=sort,
        order=order,
    )


def _run_query(
    dataset: Dataset, service: HistoryQueryService, query: HistoryQuery
) -> HistoryResponse | JSONResponse:
    try:
        return service.query(dataset, query)
    except StoreError as e:
        logger.error(
            "History store read failed",
            extra={"dataset": dataset.value, **get_safe_error_info(e)},
        )
        return JSONResponse(
            status_code=503,
            content={"detail": get_safe_error_message_for_user(e)},
        )
    except Exception as e:
        logger.error(
            "History query failed",
            extra={"dataset": dataset.value, **get_safe_error_info(e)},
        )
        return JSONResponse(
            status_code=500,
            content={"detail": get_safe_error_message_for_user(e)},
        )


@router.get("/depth-history", response_model=HistoryResponse)
def get_depth_history(
    query: HistoryQuery = Depends(get_history_query),
    service: HistoryQueryService = Depends(get_history_service),
):
    """Pool depth history, averaged per bucket."""
    return _run_query(Dataset.DEPTH, service, query)


@router.get("/earnings-history", response_model=HistoryResponse)
def get_earnings_history(
    query: HistoryQuery = Depends(get_history_query),
    service: HistoryQueryService = Depends(get_history_service),
):
    """Earnings history with the per-pool breakdown flattened per bucket."""
    return _run_query(Dataset.EARNINGS, service, query)


@router.get("/swaps-history", response_model=HistoryResponse)
def get_swaps_history(
    query: HistoryQuery = Depends(get_history_query),
    service: HistoryQueryService = Depends(get_history_service),
):
    """Swap counts and volumes, summed per bucket."""
    return _run_query(Dataset.SWAPS, service, query)


@router.get("/rune-pool-history", response_model=HistoryResponse)
def get_rune_pool_history(
    query: HistoryQuery = Depends(get_history_query),
    service: HistoryQueryService = Depends(get_history_service),
):
    """RUNEPool member count (averaged) and units (summed)."""
    return _run_query(Dataset.RUNEPOOL, service, query)


def include_routers(app):
    """Include the history router in the FastAPI app."""
    app.include_router(router)
