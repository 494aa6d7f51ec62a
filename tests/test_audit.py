"""
Test module for audit logging functionality.

This module tests:
- Action mapping for mutating endpoints
- AuditMiddleware behavior without a database session
- Audit rows written for successful settings and conversion requests
"""

from unittest.mock import MagicMock

import pytest

from core.audit import AuditMiddleware, determine_action
from db.models import AuditAction, AuditLog
from tests.conftest import MERCHANT_ID
from tests.test_api import BASE, SETTINGS_PAYLOAD


def make_request(method, path):
    request = MagicMock()
    request.method = method
    request.url.path = path
    return request


@pytest.mark.parametrize(
    "method,path,expected",
    [
        ("POST", "/api/v1/fiat-conversion/settings", AuditAction.settings_updated),
        ("PUT", "/api/v1/fiat-conversion/settings/toggle", AuditAction.settings_toggled),
        ("DELETE", "/api/v1/fiat-conversion/settings", AuditAction.settings_deactivated),
        ("POST", "/api/v1/fiat-conversion/convert/12", AuditAction.conversion_requested),
        (
            "POST",
            "/api/v1/fiat-conversion/conversions/conv_1/cancel",
            AuditAction.conversion_cancelled,
        ),
        ("POST", "/api/v1/fiat-conversion/estimate", AuditAction.estimate_requested),
        ("POST", "/api/v1/webhook/payment-completed", AuditAction.payment_event),
    ],
)
def test_determine_action(method, path, expected):
    assert determine_action(make_request(method, path)) == expected


@pytest.mark.asyncio
async def test_audit_middleware_initialization():
    """Test audit middleware initialization."""
    app = MagicMock()
    middleware = AuditMiddleware(app)

    assert middleware.app == app


@pytest.mark.asyncio
async def test_audit_middleware_without_session():
    """Dispatch should pass the response through when no DB session is attached."""
    middleware = AuditMiddleware(MagicMock())

    request = make_request("POST", "/api/v1/fiat-conversion/settings")
    request.state = MagicMock()
    request.state.db = None

    async def mock_call_next(request):
        response = MagicMock()
        response.status_code = 200
        return response

    response = await middleware.dispatch(request, mock_call_next)
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_audit_middleware_swallows_audit_failure():
    """A failing audit write must not replace the route's response."""
    middleware = AuditMiddleware(MagicMock())

    request = make_request("POST", "/api/v1/fiat-conversion/settings")
    request.headers = {"x-merchant-id": MERCHANT_ID}
    request.state = MagicMock()
    request.state.db.commit.side_effect = RuntimeError("db gone")

    async def mock_call_next(request):
        response = MagicMock()
        response.status_code = 200
        return response

    response = await middleware.dispatch(request, mock_call_next)
    assert response.status_code == 200


def test_settings_update_is_audited(client, merchant_headers, test_db_session):
    response = client.post(
        f"{BASE}/settings", json=SETTINGS_PAYLOAD, headers=merchant_headers
    )
    assert response.status_code == 200

    logs = test_db_session.query(AuditLog).all()
    assert len(logs) == 1
    assert logs[0].merchant_id == MERCHANT_ID
    assert logs[0].action == AuditAction.settings_updated
    assert logs[0].payload == {
        "method": "POST",
        "path": f"{BASE}/settings",
        "status": 200,
    }


def test_failed_requests_are_not_audited(client, merchant_headers, test_db_session):
    response = client.delete(f"{BASE}/settings", headers=merchant_headers)
    assert response.status_code == 404

    assert test_db_session.query(AuditLog).count() == 0


def test_reads_are_not_audited(client, merchant_headers, test_db_session):
    client.get(f"{BASE}/settings", headers=merchant_headers)

    assert test_db_session.query(AuditLog).count() == 0
