"""
Prometheus metrics instrumentation for the fiat conversion service.

This module sets up FastAPI instrumentation to expose metrics in Prometheus format
at the /metrics endpoint with optional authentication.
"""

from prometheus_fastapi_instrumentator import Instrumentator
from prometheus_client import Counter, Histogram
from fastapi import Request, HTTPException, status
import os

conversions_total = Counter(
    "virdis_conversions_total",
    "Conversion transactions by terminal status",
    ["status", "method"],
)

rate_refresh_total = Counter(
    "virdis_rate_refresh_total",
    "Exchange rate refresh attempts",
    ["outcome"],  # success, fallback, unavailable
)

payout_latency = Histogram(
    "virdis_payout_latency_seconds",
    "Time spent waiting on the payout provider",
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)

estimate_requests = Counter(
    "virdis_estimate_requests_total",
    "Conversion estimate requests served",
)


def estimate_instrumentor(info):
    """Count successful estimate previews."""
    if info.request.url.path.endswith("/estimate") and info.method == "POST":
        if info.response and info.response.status_code < 400:
            estimate_requests.inc()


def init_metrics(app):
    """
    Initialize Prometheus metrics instrumentation for the FastAPI app.

    Args:
        app: FastAPI application instance

    Returns:
        Instrumentator instance
    """
    inst = Instrumentator(
        should_group_status_codes=False,
        should_ignore_untemplated=True,
    )
    inst.add(estimate_instrumentor)
    inst.instrument(app).expose(app, endpoint="/metrics", include_in_schema=False)
    return inst


def add_metrics_auth_middleware(app):
    """
    Add middleware to protect the /metrics endpoint in production.
    For production use, set METRICS_AUTH_TOKEN environment variable.
    """

    @app.middleware("http")
    async def metrics_auth_middleware(request: Request, call_next):
        if request.url.path == "/metrics":
            if os.getenv("ENVIRONMENT", "development") == "development":
                return await call_next(request)

            auth_header = request.headers.get("X-Metrics-Auth")
            expected_token = os.getenv("METRICS_AUTH_TOKEN")

            if expected_token and auth_header == expected_token:
                return await call_next(request)

            # Allow internal network access (VPN/private networks)
            client_ip = request.client.host if request.client else None
            if client_ip and (
                client_ip.startswith("10.")
                or client_ip.startswith("192.168.")
                or client_ip.startswith("172.")
            ):
                return await call_next(request)

            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Metrics endpoint access denied",
            )

        return await call_next(request)
