import os
import time

import structlog
from fastapi import Request

from core.logging import BusinessEvents


async def log_api_entry(request: Request, call_next):
    """Middleware to log API entries with the calling merchant and outcome"""
    # Get a fresh logger each time to ensure test configurations are respected
    log = structlog.get_logger(__name__)

    # Optionally omit query params in demo mode
    demo_mode = os.getenv("DEMO_MODE", "").lower() in {"1", "true", "yes"}
    started = time.perf_counter()
    response = await call_next(request)

    # Request bodies carry banking details and are never logged
    log.info(
        BusinessEvents.API_ENTRY,
        method=request.method,
        url=str(request.url),
        merchant_id=request.headers.get("x-merchant-id"),
        client_host=request.client.host if request.client else None,
        query_params=None if demo_mode else dict(request.query_params),
        status_code=response.status_code,
        duration_ms=round((time.perf_counter() - started) * 1000, 1),
    )
    return response
