import json
import logging
from types import SimpleNamespace

from starlette.requests import Request
from starlette.responses import Response

from app.branchstock.middleware.observability import build_request_log_payload


def test_build_request_log_payload():
    scope = {
        "type": "http",
        "method": "POST",
        "path": "/branchstock/transfers/abc/actions",
        "headers": [],
        "route": SimpleNamespace(path="/branchstock/transfers/{transfer_id}/actions"),
    }
    request = Request(scope)
    request.state.trace_id = "trace-1"
    request.state.tenant_id = "tenant-1"
    request.state.user_id = "user-1"
    request.state.error_code = "INSUFFICIENT_STOCK"
    response = Response(status_code=409)

    payload = build_request_log_payload(
        request=request,
        response=response,
        latency_ms=12.3456,
        db_time_ms=4.5678,
        db_queries=3,
    )

    assert payload["trace_id"] == "trace-1"
    assert payload["tenant_id"] == "tenant-1"
    assert payload["route"] == "/branchstock/transfers/{transfer_id}/actions"
    assert payload["method"] == "POST"
    assert payload["status_code"] == 409
    assert payload["latency_ms"] == 12.35
    assert payload["db_time_ms"] == 4.57
    assert payload["db_queries"] == 3
    assert payload["error_code"] == "INSUFFICIENT_STOCK"


def test_build_request_log_payload_without_response():
    request = Request({"type": "http", "method": "GET", "path": "/health", "headers": []})

    payload = build_request_log_payload(request=request, response=None, latency_ms=1.0, db_time_ms=None)

    assert payload["route"] == "/health"
    assert payload["status_code"] == 500
    assert payload["db_time_ms"] is None
    assert payload["db_queries"] is None
    assert payload["trace_id"] == ""


def test_transfer_transition_logged(client, db_session, caplog):
    from tests.transfer_helpers import create_product, create_tenant_user, create_transfer, login

    tenant, origin, destination, user = create_tenant_user(db_session, suffix="logs")
    product = create_product(db_session, tenant, sku="SKU-1")
    token = login(client, user.username)

    with caplog.at_level(logging.INFO, logger="app.branchstock.services.transfers"):
        created = create_transfer(client, token, origin, destination, [(product, 1)], key="logs-1")

    events = [
        json.loads(record.getMessage())
        for record in caplog.records
        if record.name == "app.branchstock.services.transfers"
    ]
    assert events
    assert events[-1]["event"] == "transfer_transition"
    assert events[-1]["action"] == "create"
    assert events[-1]["to_status"] == "DRAFT"
    assert events[-1]["transfer_id"] == created["id"]
    assert events[-1]["tenant_id"] == str(tenant.id)
