#!/usr/bin/env python3
"""
Local development server for the history API.

This script runs the Lambda handler locally using a simple HTTP server,
allowing the API to be exercised without deploying to AWS.

Usage:
    python scripts/run-local-api.py

    Or with custom port:
    PORT=8000 python scripts/run-local-api.py

Environment Variables:
    PORT: Server port (default: 8000)
    ENVIRONMENT: Environment name (default: local)
    INGEST_ON_START: Run one ingestion cycle against Midgard before serving
        (default: false; needs network access)
    INGESTION_LOOKBACK_SECONDS: How far back the first cycle reaches
    LOCAL_ORIGIN: Origin allowed by the CORS headers (default: http://localhost:3000)

The server uses a mock DynamoDB table via moto for local development.
This enables full API functionality without AWS credentials.
"""

import logging
import os
import sys
from http.server import BaseHTTPRequestHandler, HTTPServer
from urllib.parse import parse_qs, urlparse

# Configure logging before other imports
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

LOCAL_TABLE = "local-midgard-history"
LOCAL_ORIGIN = os.environ.get("LOCAL_ORIGIN", "http://localhost:3000")

# Set environment variables BEFORE importing the handler
os.environ.setdefault("ENVIRONMENT", "local")
os.environ.setdefault("STORE_BACKEND", "dynamodb")
os.environ.setdefault("HISTORY_TABLE", LOCAL_TABLE)
os.environ.setdefault("AWS_DEFAULT_REGION", "us-east-1")
os.environ.setdefault("AWS_REGION", "us-east-1")
os.environ.setdefault("CLOUD_REGION", "us-east-1")
os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")
os.environ.setdefault("LOG_FORMAT", "text")


def create_mock_tables():
    """Create the mock history table using moto."""
    import boto3
    from moto import mock_aws

    # Start moto mock
    mock = mock_aws()
    mock.start()

    dynamodb = boto3.resource("dynamodb", region_name="us-east-1")
    dynamodb.create_table(
        TableName=LOCAL_TABLE,
        KeySchema=[
            {"AttributeName": "pk", "KeyType": "HASH"},
            {"AttributeName": "sk", "KeyType": "RANGE"},
        ],
        AttributeDefinitions=[
            {"AttributeName": "pk", "AttributeType": "S"},
            {"AttributeName": "sk", "AttributeType": "S"},
        ],
        BillingMode="PAY_PER_REQUEST",
    )

    logger.info(f"Created mock DynamoDB table: {LOCAL_TABLE}")
    return mock


def ingest_once():
    """Run one ingestion cycle into the mock table."""
    from src.lambdas.ingestion.handler import lambda_handler as ingestion_handler

    result = ingestion_handler({"source": "local"}, _FakeLambdaContext())
    summary = result.get("body", {}).get("summary", {})
    logger.info(
        f"Ingestion finished with status {result.get('statusCode')}: "
        f"{summary.get('batches_stored', 0)} batches, "
        f"{summary.get('samples_stored', 0)} samples"
    )


class _FakeLambdaContext:
    """Minimal Lambda context for local invocation."""

    function_name = "local-history-api"
    memory_limit_in_mb = 512
    invoked_function_arn = (
        "arn:aws:lambda:us-east-1:000000000000:function:local-history-api"
    )
    aws_request_id = "local-request-id"
class LambdaProxyHandler(BaseHTTPRequestHandler):
    """Translates local HTTP requests into API Gateway proxy events."""

    def _build_event(self, method: str) -> dict:
        parsed = urlparse(self.path)
        headers = {k.lower(): v for k, v in self.headers.items()}
        multi_params = parse_qs(parsed.query) if parsed.query else None

        return {
            "httpMethod": method,
            "path": parsed.path,
            "headers": headers,
            "multiValueHeaders": {k: [v] for k, v in headers.items()},
            "queryStringParameters": (
                {k: v[-1] for k, v in multi_params.items()} if multi_params else None
            ),
            # Repeated ?filters=... values survive only here
            "multiValueQueryStringParameters": multi_params,
            "body": None,
            "isBase64Encoded": False,
            "requestContext": {
                "identity": {"sourceIp": "127.0.0.1"},
                "requestId": "local-request",
            },
        }

    def _send_cors_headers(self) -> None:
        self.send_header("Access-Control-Allow-Origin", LOCAL_ORIGIN)
        self.send_header("Access-Control-Allow-Methods", "GET, OPTIONS")
        self.send_header("Access-Control-Allow-Headers", "*")

    def do_GET(self):
        from src.lambdas.dashboard.handler import lambda_handler

        response = lambda_handler(self._build_event("GET"), _FakeLambdaContext())
        body = response.get("body") or ""

        self.send_response(response.get("statusCode", 500))
        self._send_cors_headers()
        for key, value in (response.get("headers") or {}).items():
            self.send_header(key, value)
        self.end_headers()
        self.wfile.write(body.encode() if isinstance(body, str) else body)

    def do_OPTIONS(self):
        self.send_response(204)
        self._send_cors_headers()
        self.end_headers()


def main():
    """Run the local development server."""
    from src.lambdas.shared.models.datasets import SCHEMAS

    port = int(os.environ.get("PORT", "8000"))

    logger.info("Setting up mock DynamoDB table...")
    mock = create_mock_tables()

    try:
        if os.environ.get("INGEST_ON_START", "").lower() in ("1", "true", "yes"):
            logger.info("Running one ingestion cycle against Midgard...")
            ingest_once()

        server = HTTPServer(("127.0.0.1", port), LambdaProxyHandler)
        logger.info(f"History API listening on http://localhost:{port}")
        for schema in SCHEMAS.values():
            logger.info(f"  GET http://localhost:{port}{schema.route}?interval=day&count=7")

        try:
            server.serve_forever()
        except KeyboardInterrupt:
            logger.info("Shutting down...")
        finally:
            server.server_close()
    finally:
        mock.stop()


if __name__ == "__main__":
    # Add repo root to path for `src.` imports
    repo_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    sys.path.insert(0, repo_root)

    main()
