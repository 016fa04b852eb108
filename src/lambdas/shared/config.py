"""
Service Configuration
=====================

Parses and validates configuration from environment variables. Shared by
the API (dashboard) and the ingestion job so both see the same store and
upstream settings.

For On-Call Engineers:
    Environment variables:
    - STORE_BACKEND: "dynamodb" (default) or "memory"
    - HISTORY_TABLE: DynamoDB table name (fallback: DYNAMODB_TABLE)
    - MIDGARD_BASE_URL: Upstream history API base URL
    - INGESTION_LOOKBACK_SECONDS: Default checkpoint window for empty datasets
    - INGESTION_INTERVAL_SECONDS: Period of the in-process scheduler
    - INGESTION_ENABLED: Start the in-process scheduler with the API
    - METRICS_ENABLED: Emit CloudWatch metrics from ingestion

    If the service fails at start-up with ConfigurationError, the message
    names the offending variable.

For Developers:
    - Use get_config() to load all configuration
    - Configuration is validated on load
"""

import logging
import os
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DEFAULT_MIDGARD_BASE_URL = "https://midgard.ninerealms.com/v2/history"
DEFAULT_HISTORY_TABLE = "midgard-history"
DEFAULT_DEPTH_POOL = "BTC.BTC"

# Default checkpoint window when a dataset has never been ingested
DEFAULT_LOOKBACK_SECONDS = 24 * 3600
MAX_LOOKBACK_SECONDS = 6 * 30 * 24 * 3600

DEFAULT_INGESTION_INTERVAL_SECONDS = 3600
MIN_INGESTION_INTERVAL_SECONDS = 60

DEFAULT_TIMEOUT_SECONDS = 30.0

STORE_BACKENDS = ("dynamodb", "memory")
LOG_FORMATS = ("json", "text")


class ConfigurationError(Exception):
    """
    Raised when configuration is invalid or missing.

    On-Call Note:
        This error means the service cannot start. Check environment
        variables and the start-up log line for details.
    """

    pass


@dataclass(frozen=True)
class ServiceConfig:
    """
    Validated service configuration.

    All fields are validated on instantiation.
    """

    environment: str = "dev"
    store_backend: str = "dynamodb"
    history_table: str = DEFAULT_HISTORY_TABLE
    aws_region: str = "us-east-1"
    midgard_base_url: str = DEFAULT_MIDGARD_BASE_URL
    midgard_timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    depth_pool: str = DEFAULT_DEPTH_POOL
    lookback_seconds: int = DEFAULT_LOOKBACK_SECONDS
    ingestion_interval_seconds: int = DEFAULT_INGESTION_INTERVAL_SECONDS
    ingestion_enabled: bool = False
    metrics_enabled: bool = False
    log_level: str = "INFO"
    log_format: str = "json"

    def __post_init__(self):
        """Validate configuration after initialization."""
        self._validate()

    def _validate(self):
        """
        Validate all configuration values.

        Raises:
            ConfigurationError: If any validation fails
        """
        if self.store_backend not in STORE_BACKENDS:
            raise ConfigurationError(
                f"STORE_BACKEND must be one of {STORE_BACKENDS}, got {self.store_backend!r}"
            )

        if self.store_backend == "dynamodb" and not self.history_table:
            raise ConfigurationError("HISTORY_TABLE is required for the dynamodb backend")

        if not self.midgard_base_url.startswith(("http://", "https://")):
            raise ConfigurationError(
                f"MIDGARD_BASE_URL must be an http(s) URL: {self.midgard_base_url}"
            )

        if self.midgard_timeout_seconds <= 0:
            raise ConfigurationError("MIDGARD_TIMEOUT_SECONDS must be positive")

        if not self.depth_pool:
            raise ConfigurationError("DEPTH_POOL cannot be empty")

        if not 0 < self.lookback_seconds <= MAX_LOOKBACK_SECONDS:
            raise ConfigurationError(
                f"INGESTION_LOOKBACK_SECONDS must be in (0, {MAX_LOOKBACK_SECONDS}], "
                f"got {self.lookback_seconds}"
            )

        if self.ingestion_interval_seconds < MIN_INGESTION_INTERVAL_SECONDS:
            raise ConfigurationError(
                f"INGESTION_INTERVAL_SECONDS must be at least "
                f"{MIN_INGESTION_INTERVAL_SECONDS}, got {self.ingestion_interval_seconds}"
            )

        if self.log_format not in LOG_FORMATS:
            raise ConfigurationError(
                f"LOG_FORMAT must be one of {LOG_FORMATS}, got {self.log_format!r}"
            )


def _env_bool(key: str, default: bool) -> bool:
    raw = os.environ.get(key)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(key: str, default: int) -> int:
    raw = os.environ.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigurationError(f"{key} must be an integer, got {raw!r}") from e


def _env_float(key: str, default: float) -> float:
    raw = os.environ.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigurationError(f"{key} must be a number, got {raw!r}") from e


def get_config() -> ServiceConfig:
    """
    Load and validate configuration from environment variables.

    Returns:
        ServiceConfig with all settings

    Raises:
        ConfigurationError: If a variable is missing or invalid
    """
    # Cloud-agnostic: Use CLOUD_REGION, fallback to AWS_REGION
    aws_region = (
        os.environ.get("CLOUD_REGION") or os.environ.get("AWS_REGION") or "us-east-1"
    )

    config = ServiceConfig(
        environment=os.environ.get("ENVIRONMENT", "dev"),
        store_backend=os.environ.get("STORE_BACKEND", "dynamodb").strip().lower(),
        history_table=os.environ.get("HISTORY_TABLE")
        or os.environ.get("DYNAMODB_TABLE", DEFAULT_HISTORY_TABLE),
        aws_region=aws_region,
        midgard_base_url=os.environ.get(
            "MIDGARD_BASE_URL", DEFAULT_MIDGARD_BASE_URL
        ).rstrip("/"),
        midgard_timeout_seconds=_env_float(
            "MIDGARD_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS
        ),
        depth_pool=os.environ.get("DEPTH_POOL", DEFAULT_DEPTH_POOL),
        lookback_seconds=_env_int("INGESTION_LOOKBACK_SECONDS", DEFAULT_LOOKBACK_SECONDS),
        ingestion_interval_seconds=_env_int(
            "INGESTION_INTERVAL_SECONDS", DEFAULT_INGESTION_INTERVAL_SECONDS
        ),
        ingestion_enabled=_env_bool("INGESTION_ENABLED", False),
        metrics_enabled=_env_bool("METRICS_ENABLED", False),
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
        log_format=os.environ.get("LOG_FORMAT", "json").strip().lower(),
    )

    logger.info(
        "Configuration loaded",
        extra={
            "environment": config.environment,
            "store_backend": config.store_backend,
            "history_table": config.history_table,
            "lookback_seconds": config.lookback_seconds,
            "ingestion_enabled": config.ingestion_enabled,
        },
    )

    return config
