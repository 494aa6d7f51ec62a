"""
Audit Middleware Module

This module provides middleware for logging all mutating API requests that
result in 2xx/3xx responses. Every settings change and conversion request is
recorded in the audit_logs table.
"""

from collections.abc import Callable

import structlog
from fastapi import Request, Response
from sqlalchemy.orm import Session
from starlette.middleware.base import BaseHTTPMiddleware

from db import models
from db.models import AuditAction

log = structlog.get_logger(__name__)


def determine_action(request: Request) -> AuditAction:
    """Determine the audit action based on the request path and method."""
    path = request.url.path
    # Payment pipeline callbacks
    if "/webhook/" in path:
        return AuditAction.payment_event
    # Conversion lifecycle
    if path.endswith("/cancel"):
        return AuditAction.conversion_cancelled
    if "/convert/" in path:
        return AuditAction.conversion_requested
    if path.endswith("/estimate"):
        return AuditAction.estimate_requested
    # Settings changes; anything else under /settings is an update
    if path.endswith("/settings/toggle"):
        return AuditAction.settings_toggled
    if path.endswith("/settings") and request.method == "DELETE":
        return AuditAction.settings_deactivated
    return AuditAction.settings_updated


class AuditMiddleware(BaseHTTPMiddleware):
    """Middleware to audit mutating /api requests with successful responses."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        # Process the request
        response = await call_next(request)

        # Only mutating calls are audited, never the metrics endpoint
        if request.method in [
            "POST",
            "PUT",
            "DELETE",
        ] and not request.url.path.startswith("/metrics"):
            try:
                # grab the route's session if it exists, else skip audit
                db: Session | None = getattr(request.state, "db", None)
                if not db:
                    return response

                # log only 2xx/3xx responses under /api
                if 200 <= response.status_code < 400 and request.url.path.startswith(
                    "/api"
                ):
                    db.add(
                        models.AuditLog(
                            # Caller identity as sent by the auth gateway
                            merchant_id=request.headers.get("x-merchant-id"),
                            action=determine_action(request),
                            # No request body: settings payloads carry banking details
                            payload={
                                "method": request.method,
                                "path": str(request.url.path),
                                "status": response.status_code,
                            },
                        )
                    )
                    db.commit()
            except Exception as e:
                # A failed audit write never changes the response
                log.error("audit.session_failed", path=request.url.path, error=str(e))

        return response
