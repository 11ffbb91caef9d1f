from app.branchstock.core.error_catalog import ErrorCatalog
from app.branchstock.core.security import decode_token
from tests.transfer_helpers import PASSWORD, create_tenant_user


def test_login_by_username_or_email(client, db_session):
    tenant, origin, _destination, user = create_tenant_user(db_session, suffix="auth")

    response = client.post(
        "/branchstock/auth/login",
        json={"username_or_email": user.email, "password": PASSWORD},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["token_type"] == "bearer"
    assert body["must_change_password"] is False
    claims = decode_token(body["access_token"])
    assert claims["sub"] == str(user.id)
    assert claims["tenant_id"] == str(tenant.id)
    assert claims["store_id"] == str(origin.id)
    assert claims["role"] == "ADMIN"


def test_login_rejects_bad_password(client, db_session):
    _tenant, _origin, _destination, user = create_tenant_user(db_session, suffix="badpass")

    response = client.post(
        "/branchstock/auth/login",
        json={"username_or_email": user.username, "password": "wrong"},
    )

    assert response.status_code == 401
    assert response.json()["code"] == ErrorCatalog.INVALID_CREDENTIALS.code


def test_login_rejects_inactive_user(client, db_session):
    _tenant, _origin, _destination, user = create_tenant_user(db_session, suffix="inactive")
    user.status = "suspended"
    db_session.commit()

    response = client.post(
        "/branchstock/auth/login",
        json={"username_or_email": user.username, "password": PASSWORD},
    )

    assert response.status_code == 403
    assert response.json()["code"] == ErrorCatalog.USER_INACTIVE.code
