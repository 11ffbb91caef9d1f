from tests.transfer_helpers import (
    create_product,
    create_tenant_user,
    create_transfer,
    login,
    transfer_action,
)


def test_metrics_count_transfer_outcomes(client, db_session):
    tenant, origin, destination, user = create_tenant_user(db_session, suffix="metrics")
    product = create_product(db_session, tenant, sku="SKU-1")
    token = login(client, user.username)
    created = create_transfer(client, token, origin, destination, [(product, 2)], key="metrics-1")
    assert transfer_action(client, token, created["id"], "dispatch", key="metrics-2").status_code == 409
    assert transfer_action(client, token, created["id"], "dispatch", key="metrics-2").status_code == 409

    response = client.get("/branchstock/ops/metrics")

    assert response.status_code == 200
    body = response.text
    assert 'transfer_transitions_total{action="create",result="success"} 1.0' in body
    assert 'transfer_transitions_total{action="dispatch",result="insufficient_stock"} 1.0' in body
    assert 'insufficient_stock_total{action="DISPATCH"} 1.0' in body
    assert "idempotency_replay_total 1.0" in body
    assert "http_requests_total" in body
