from decimal import Decimal

from app.branchstock.core.error_catalog import ErrorCatalog
from app.branchstock.db.models import AuditEvent, IdempotencyRecord, StockMovement
from tests.transfer_helpers import (
    auth_headers,
    create_product,
    create_tenant_user,
    create_transfer,
    login,
    set_stock,
    stock_rows,
    transfer_action,
)


def _payload(origin, destination, product, transaction_id="txn-idem-1"):
    return {
        "transaction_id": transaction_id,
        "origin_store_id": str(origin.id),
        "destination_store_id": str(destination.id),
        "lines": [{"product_id": str(product.id), "qty": "2"}],
    }


def test_transfer_create_replay_and_conflict(client, db_session):
    tenant, origin, destination, user = create_tenant_user(db_session, suffix="idem")
    product = create_product(db_session, tenant, sku="SKU-1")
    token = login(client, user.username)
    headers = auth_headers(token, "transfer-idem-1")
    payload = _payload(origin, destination, product)

    first = client.post("/branchstock/transfers", headers=headers, json=payload)
    assert first.status_code == 201

    replay = client.post("/branchstock/transfers", headers=headers, json=payload)
    assert replay.status_code == 201
    assert replay.json() == first.json()
    assert replay.headers.get("X-Idempotency-Result") == ErrorCatalog.IDEMPOTENCY_REPLAY.code

    conflict = client.post(
        "/branchstock/transfers",
        headers=headers,
        json=_payload(origin, destination, product, transaction_id="txn-idem-2"),
    )
    assert conflict.status_code == 409
    assert conflict.json()["code"] == ErrorCatalog.IDEMPOTENCY_KEY_REUSED_WITH_DIFFERENT_PAYLOAD.code

    listed = client.get("/branchstock/transfers", headers=auth_headers(token))
    assert len(listed.json()["rows"]) == 1


def test_transfer_mutations_require_key_and_transaction_id(client, db_session):
    tenant, origin, destination, user = create_tenant_user(db_session, suffix="keys")
    product = create_product(db_session, tenant, sku="SKU-1")
    token = login(client, user.username)

    missing_key = client.post(
        "/branchstock/transfers",
        headers=auth_headers(token),
        json=_payload(origin, destination, product),
    )
    assert missing_key.status_code == 400
    assert missing_key.json()["code"] == ErrorCatalog.IDEMPOTENCY_KEY_REQUIRED.code

    missing_transaction = client.post(
        "/branchstock/transfers",
        headers=auth_headers(token, "keys-1"),
        json={**_payload(origin, destination, product), "transaction_id": None},
    )
    assert missing_transaction.status_code == 422
    assert missing_transaction.json()["details"]["message"] == "transaction_id is required"


def test_transfer_action_replay_applies_once(client, db_session):
    tenant, origin, destination, user = create_tenant_user(db_session, suffix="actionidem")
    product = create_product(db_session, tenant, sku="SKU-1")
    set_stock(db_session, tenant, origin, product, 10)
    token = login(client, user.username)
    created = create_transfer(client, token, origin, destination, [(product, 3)], key="actionidem-1")

    first = transfer_action(client, token, created["id"], "dispatch", key="actionidem-2")
    replay = transfer_action(client, token, created["id"], "dispatch", key="actionidem-2")

    assert first.status_code == 200
    assert replay.status_code == 200
    assert replay.json() == first.json()
    assert replay.headers.get("X-Idempotency-Result") == ErrorCatalog.IDEMPOTENCY_REPLAY.code
    assert stock_rows(client, token)[(str(origin.id), str(product.id))] == Decimal("7")
    assert db_session.query(StockMovement).count() == 1


def test_transfer_failed_action_is_replayed(client, db_session):
    tenant, origin, destination, user = create_tenant_user(db_session, suffix="failidem")
    product = create_product(db_session, tenant, sku="SKU-1")
    token = login(client, user.username)
    created = create_transfer(client, token, origin, destination, [(product, 3)], key="failidem-1")

    first = transfer_action(client, token, created["id"], "dispatch", key="failidem-2")
    assert first.status_code == 409
    assert first.json()["code"] == ErrorCatalog.INSUFFICIENT_STOCK.code

    record = (
        db_session.query(IdempotencyRecord).filter(IdempotencyRecord.idempotency_key == "failidem-2").one()
    )
    assert record.state == "failed"
    assert record.status_code == 409

    replay = transfer_action(client, token, created["id"], "dispatch", key="failidem-2")
    assert replay.status_code == 409
    assert replay.json() == first.json()
    assert replay.headers.get("X-Idempotency-Result") == ErrorCatalog.IDEMPOTENCY_REPLAY.code


def test_transfer_audit_events(client, db_session):
    tenant, origin, destination, user = create_tenant_user(db_session, suffix="audit")
    product = create_product(db_session, tenant, sku="SKU-1")
    set_stock(db_session, tenant, origin, product, 10)
    token = login(client, user.username)
    created = create_transfer(client, token, origin, destination, [(product, 3)], key="audit-1")
    assert transfer_action(client, token, created["id"], "dispatch", key="audit-2").status_code == 200
    line_id = created["lines"][0]["id"]
    received = transfer_action(
        client,
        token,
        created["id"],
        "receive",
        key="audit-3",
        receive_lines=[{"line_id": line_id, "qty": "2"}],
    )
    assert received.status_code == 200

    events = (
        db_session.query(AuditEvent)
        .filter(AuditEvent.entity_id == created["id"])
        .order_by(AuditEvent.created_at)
        .all()
    )
    assert [event.action for event in events] == ["transfer.create", "transfer.dispatch", "transfer.receive"]
    assert all(event.result == "success" for event in events)
    assert all(event.actor == user.username for event in events)

    dispatch_event = events[1]
    assert dispatch_event.before_payload == {"status": "DRAFT"}
    assert dispatch_event.after_payload == {"status": "DISPATCHED"}
    assert dispatch_event.event_metadata["transaction_id"] == "txn-audit-2"

    receive_event = events[2]
    reconciliation = receive_event.event_metadata["reconciliation"]
    assert reconciliation["has_discrepancies"] is True
    assert Decimal(reconciliation["shortage_qty"]) == Decimal("1")
