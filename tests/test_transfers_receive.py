import uuid
from decimal import Decimal

import pytest

from app.branchstock.core.error_catalog import ErrorCatalog, ValidationError
from app.branchstock.db.models import StockMovement
from app.branchstock.services.transfers import TransferLineInput, TransferService
from tests.transfer_helpers import (
    auth_headers,
    create_product,
    create_tenant_user,
    create_transfer,
    login,
    scope_for,
    set_stock,
    stock_rows,
    transfer_action,
)


def _dispatched_transfer(client, db_session, *, suffix: str, lines):
    tenant, origin, destination, user = create_tenant_user(db_session, suffix=suffix)
    products = []
    for index, qty in enumerate(lines):
        product = create_product(db_session, tenant, sku=f"SKU-{index}")
        set_stock(db_session, tenant, origin, product, 20)
        products.append((product, qty))
    token = login(client, user.username)
    created = create_transfer(client, token, origin, destination, products, key=f"{suffix}-create")
    dispatched = transfer_action(client, token, created["id"], "dispatch", key=f"{suffix}-dispatch")
    assert dispatched.status_code == 200
    return token, origin, destination, [product for product, _qty in products], dispatched.json()


def test_transfer_receive_in_full_by_default(client, db_session):
    token, origin, destination, products, transfer = _dispatched_transfer(
        client, db_session, suffix="full", lines=[4, 2]
    )

    response = transfer_action(client, token, transfer["id"], "receive", key="full-receive")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "RECEIVED"
    assert body["received_at"] is not None
    assert body["has_discrepancies"] is False
    assert body["allowed_actions"] == []
    assert body["reconciliation"]["has_discrepancies"] is False
    assert body["reconciliation"]["lines"] == []
    for line in body["lines"]:
        assert Decimal(line["qty_received"]) == Decimal(line["qty_dispatched"])
        assert line["discrepancy_type"] == "NONE"
        assert Decimal(line["discrepancy_qty"]) == Decimal("0")

    stock = stock_rows(client, token)
    assert stock[(str(destination.id), str(products[0].id))] == Decimal("4")
    assert stock[(str(destination.id), str(products[1].id))] == Decimal("2")
    assert stock[(str(origin.id), str(products[0].id))] == Decimal("16")


def test_transfer_receive_shortage_and_overage(client, db_session):
    token, _origin, destination, products, transfer = _dispatched_transfer(
        client, db_session, suffix="mixed", lines=[5, 2]
    )
    by_product = {line["product_id"]: line for line in transfer["lines"]}
    short_line = by_product[str(products[0].id)]
    over_line = by_product[str(products[1].id)]

    response = transfer_action(
        client,
        token,
        transfer["id"],
        "receive",
        key="mixed-receive",
        receive_lines=[
            {"line_id": short_line["id"], "qty": "3"},
            {"line_id": over_line["id"], "qty": "4"},
        ],
    )

    assert response.status_code == 200
    body = response.json()
    assert body["has_discrepancies"] is True
    lines = {line["id"]: line for line in body["lines"]}
    assert lines[short_line["id"]]["discrepancy_type"] == "SHORTAGE"
    assert Decimal(lines[short_line["id"]]["discrepancy_qty"]) == Decimal("2")
    assert lines[over_line["id"]]["discrepancy_type"] == "OVERAGE"
    assert Decimal(lines[over_line["id"]]["discrepancy_qty"]) == Decimal("2")

    reconciliation = body["reconciliation"]
    assert reconciliation["has_discrepancies"] is True
    assert Decimal(reconciliation["shortage_qty"]) == Decimal("2")
    assert Decimal(reconciliation["overage_qty"]) == Decimal("2")
    assert {item["kind"] for item in reconciliation["lines"]} == {"SHORTAGE", "OVERAGE"}

    stock = stock_rows(client, token)
    assert stock[(str(destination.id), str(products[0].id))] == Decimal("3")
    assert stock[(str(destination.id), str(products[1].id))] == Decimal("4")


def test_transfer_receive_zero_records_full_shortage(client, db_session):
    token, _origin, destination, products, transfer = _dispatched_transfer(
        client, db_session, suffix="zero", lines=[3]
    )
    line = transfer["lines"][0]

    response = transfer_action(
        client,
        token,
        transfer["id"],
        "receive",
        key="zero-receive",
        receive_lines=[{"line_id": line["id"], "qty": "0"}],
    )

    assert response.status_code == 200
    received = response.json()["lines"][0]
    assert Decimal(received["qty_received"]) == Decimal("0")
    assert received["discrepancy_type"] == "SHORTAGE"
    assert Decimal(received["discrepancy_qty"]) == Decimal("3")
    assert stock_rows(client, token).get((str(destination.id), str(products[0].id)), Decimal("0")) == Decimal("0")
    assert db_session.query(StockMovement).filter(StockMovement.action == "RECEIVE").count() == 0


def test_transfer_receive_rejects_bad_lines(client, db_session):
    token, _origin, _destination, _products, transfer = _dispatched_transfer(
        client, db_session, suffix="badlines", lines=[3]
    )
    line = transfer["lines"][0]

    unknown = transfer_action(
        client,
        token,
        transfer["id"],
        "receive",
        key="badlines-1",
        receive_lines=[{"line_id": str(uuid.uuid4()), "qty": "1"}],
    )
    assert unknown.status_code == 422
    assert unknown.json()["details"]["message"] == "unknown line on transfer"

    negative = transfer_action(
        client,
        token,
        transfer["id"],
        "receive",
        key="badlines-2",
        receive_lines=[{"line_id": line["id"], "qty": "-1"}],
    )
    assert negative.status_code == 422
    assert negative.json()["details"]["message"] == "received quantity must not be negative"

    repeated = transfer_action(
        client,
        token,
        transfer["id"],
        "receive",
        key="badlines-3",
        receive_lines=[{"line_id": line["id"], "qty": "1"}, {"line_id": line["id"], "qty": "2"}],
    )
    assert repeated.status_code == 422

    detail = client.get(f"/branchstock/transfers/{transfer['id']}", headers=auth_headers(token))
    assert detail.json()["status"] == "DISPATCHED"
    assert detail.json()["lines"][0]["qty_received"] is None


def test_transfer_receive_requires_dispatched(client, db_session):
    tenant, origin, destination, user = create_tenant_user(db_session, suffix="draftreceive")
    product = create_product(db_session, tenant, sku="SKU-1")
    token = login(client, user.username)
    created = create_transfer(client, token, origin, destination, [(product, 1)], key="dr-1")

    response = transfer_action(client, token, created["id"], "receive", key="dr-2")

    assert response.status_code == 409
    assert response.json()["code"] == ErrorCatalog.TRANSFER_INVALID_STATE.code
    assert response.json()["details"]["current_status"] == "DRAFT"
    assert stock_rows(client, token) == {}


def test_transfer_receive_twice_credits_once(client, db_session):
    token, _origin, destination, products, transfer = _dispatched_transfer(
        client, db_session, suffix="twicereceive", lines=[2]
    )

    assert transfer_action(client, token, transfer["id"], "receive", key="tr-1").status_code == 200
    again = transfer_action(client, token, transfer["id"], "receive", key="tr-2")

    assert again.status_code == 409
    assert again.json()["details"]["current_status"] == "RECEIVED"
    assert again.json()["details"]["allowed_actions"] == []
    assert stock_rows(client, token)[(str(destination.id), str(products[0].id))] == Decimal("2")


def test_transfer_receive_rejects_same_line_in_other_case(client, db_session):
    token, _origin, destination, products, transfer = _dispatched_transfer(
        client, db_session, suffix="casedup", lines=[3]
    )
    line = transfer["lines"][0]

    response = transfer_action(
        client,
        token,
        transfer["id"],
        "receive",
        key="casedup-1",
        receive_lines=[
            {"line_id": line["id"], "qty": "2"},
            {"line_id": line["id"].upper(), "qty": "9"},
        ],
    )

    assert response.status_code == 422
    assert response.json()["code"] == ErrorCatalog.VALIDATION_ERROR.code
    assert response.json()["details"]["message"] == "line repeated in received quantities"
    detail = client.get(f"/branchstock/transfers/{transfer['id']}", headers=auth_headers(token))
    assert detail.json()["status"] == "DISPATCHED"
    assert (str(destination.id), str(products[0].id)) not in stock_rows(client, token)


def test_service_receive_rejects_repeated_line_pairs(db_session):
    tenant, origin, destination, user = create_tenant_user(db_session, suffix="pairs")
    product = create_product(db_session, tenant, sku="SKU-1")
    set_stock(db_session, tenant, origin, product, 5)
    service = TransferService(db_session)
    scope = scope_for(tenant, user)
    transfer = service.create(scope, origin.id, destination.id, [TransferLineInput(str(product.id), Decimal("3"))])
    service.dispatch(scope, transfer.id)
    line_id = str(transfer.lines[0].id)

    with pytest.raises(ValidationError) as excinfo:
        service.receive(scope, transfer.id, [(line_id, Decimal("2")), (line_id.upper(), Decimal("9"))])
    assert excinfo.value.details["line_id"] == line_id

    received = service.receive(scope, transfer.id, [(line_id.upper(), Decimal("2"))])
    assert received.status == "RECEIVED"
    assert received.lines[0].qty_received == Decimal("2")
    assert received.lines[0].discrepancy_type == "SHORTAGE"
