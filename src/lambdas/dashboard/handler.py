"""
Dashboard API Handler
=====================

FastAPI application serving the Midgard history API.

For On-Call Engineers:
    If the API is not accessible:
    1. Check /health: "unhealthy" means the store is unreachable
    2. Verify CORS_ORIGINS for the calling origin (required in prod)
    3. Verify HISTORY_TABLE exists and the role can query it
    4. Empty "intervals" with a valid "meta" is a normal response: check
       the ingestion logs for the dataset

For Developers:
    - create_app() builds the app; the module-level `app` uses get_config()
    - The store is created once in the lifespan handler, stored on
      app.state, injected into routes via Depends(get_store) and into the
      ingestion scheduler, then closed at shutdown
    - Set INGESTION_ENABLED=true to run ingestion in-process
    - Uses Mangum adapter for Lambda Function URL compatibility (lifespan
      off; the store is created lazily by the first request)
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from mangum import Mangum

from src.lambdas.dashboard.router import get_store, include_routers
from src.lambdas.ingestion.scheduler import IngestionScheduler
from src.lambdas.shared.config import ServiceConfig, get_config
from src.lambdas.shared.store import SeriesStore, create_store
from src.lib.logging_utils import configure_logging

# Structured logging
logger = logging.getLogger(__name__)


def get_cors_origins(environment: str) -> list[str]:
    """
    Get CORS allowed origins from environment.

    Returns localhost for dev/test, specific domains for production.
    Production REQUIRES explicit CORS_ORIGINS configuration.
    """
    cors_origins = os.environ.get("CORS_ORIGINS", "")
    if cors_origins:
        return [origin.strip() for origin in cors_origins.split(",") if origin.strip()]

    # Default: environment-based CORS (dev/test only)
    if environment in ("dev", "test", "preprod"):
        # Allow localhost for local development and preprod testing
        return ["http://localhost:3000", "http://127.0.0.1:3000"]

    # Production: no defaults, must be explicitly configured via CORS_ORIGINS
    logger.error(
        "CORS_ORIGINS not configured for production - API will reject cross-origin requests",
        extra={"environment": environment},
    )
    return []


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Creates the shared store, starts the ingestion scheduler when enabled,
    and tears both down on shutdown.
    """
    config: ServiceConfig = app.state.config
    if getattr(app.state, "store", None) is None:
        app.state.store = create_store(config)

    scheduler = None
    if config.ingestion_enabled:
        scheduler = IngestionScheduler(app.state.store, config)
        scheduler.start()
    app.state.scheduler = scheduler

    logger.info(
        "History API starting",
        extra={
            "environment": config.environment,
            "store_backend": config.store_backend,
            "ingestion_enabled": config.ingestion_enabled,
        },
    )
    try:
        yield
    finally:
        # The store must outlive any cycle still writing to it
        if scheduler is not None:
            await scheduler.stop()
        app.state.store.close()
        app.state.store = None
        logger.info("History API shutting down")


def create_app(
    config: ServiceConfig | None = None, store: SeriesStore | None = None
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        config: Service configuration (default: loaded from environment)
        store: Pre-built store; when omitted the lifespan creates one

    Returns:
        Configured FastAPI app
    """
    config = config or get_config()
    configure_logging(config.log_level, config.log_format)

    app = FastAPI(
        title="Midgard Vault",
        description="Bucketed history of Midgard depth, earnings, swaps and RUNEPool data",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.store = store
    app.state.scheduler = None

    cors_origins = get_cors_origins(config.environment)
    if cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=cors_origins,
            allow_credentials=False,
            allow_methods=["GET", "OPTIONS"],
            allow_headers=["Content-Type"],
        )
        logger.info(
            "CORS configured",
            extra={"allowed_origins": cors_origins, "environment": config.environment},
        )

    include_routers(app)

    @app.get("/health")
    def health_check(store: SeriesStore = Depends(get_store)):
        """
        Health check endpoint with store connectivity test.

        On-Call Note:
            If health check fails:
            1. Check the DynamoDB table exists
            2. Verify the role has dynamodb:DescribeTable permission
        """
        if store.ping():
            return JSONResponse(
                {
                    "status": "healthy",
                    "store_backend": config.store_backend,
                    "environment": config.environment,
                }
            )

        return JSONResponse(
            status_code=503,
            content={
                "status": "unhealthy",
                "error": "History store unavailable",
                "store_backend": config.store_backend,
            },
        )

    return app


# Create FastAPI app
app = create_app()

# Mangum adapter for AWS Lambda
handler = Mangum(app, lifespan="off")


# Lambda handler function
def lambda_handler(event: dict[str, Any], context: Any) -> dict[str, Any]:
    """
    AWS Lambda entry point.

    Wraps the FastAPI app with Mangum for Lambda Function URL compatibility.

    Args:
        event: Lambda event (API Gateway or Function URL format)
        context: Lambda context

    Returns:
        HTTP response dict
    """
    logger.info(
        "History API invoked",
        extra={
            "path": event.get("rawPath", event.get("path", "unknown")),
            "method": event.get("requestContext", {})
            .get("http", {})
            .get("method", "unknown"),
        },
    )

    return handler(event, context)
