import uuid

import pytest

from app.branchstock.core.context import TenantScope, build_request_context, require_tenant_scope
from app.branchstock.core.error_catalog import AppError, ErrorCatalog, TenantContextMissingError
from app.branchstock.core.scope import build_tenant_scope, enforce_destination_store, resolve_tenant_id
from app.branchstock.core.security import TokenData
from app.branchstock.services.transfers import TransferLineInput, TransferService


def _token(role: str, *, tenant_id: str = "tenant-a", store_id: str | None = "store-a") -> TokenData:
    return TokenData(
        sub="user-1",
        tenant_id=tenant_id,
        store_id=store_id,
        role=role,
        username="user",
    )


def test_scope_requires_tenant():
    with pytest.raises(TenantContextMissingError):
        TenantScope(tenant_id="")
    with pytest.raises(TenantContextMissingError):
        TenantScope(tenant_id="   ")

    tenant_id = uuid.uuid4()
    scope = TenantScope(tenant_id=tenant_id, user_id=uuid.UUID(int=1))
    assert scope.tenant_id == str(tenant_id)
    assert scope.user_id == str(uuid.UUID(int=1))
    assert require_tenant_scope(scope) is scope


def test_require_tenant_scope_rejects_other_values():
    for value in (None, "tenant-a", {"tenant_id": "tenant-a"}):
        with pytest.raises(TenantContextMissingError) as excinfo:
            require_tenant_scope(value)
        assert excinfo.value.error == ErrorCatalog.TENANT_CONTEXT_MISSING


def test_resolve_tenant_id_rules():
    assert resolve_tenant_id(_token("ADMIN"), None) == "tenant-a"
    assert resolve_tenant_id(_token("ADMIN"), "tenant-a") == "tenant-a"
    with pytest.raises(AppError) as excinfo:
        resolve_tenant_id(_token("ADMIN"), "tenant-b")
    assert excinfo.value.error == ErrorCatalog.CROSS_TENANT_ACCESS_DENIED

    assert resolve_tenant_id(_token("SUPERADMIN"), "tenant-b") == "tenant-b"
    with pytest.raises(AppError) as excinfo:
        resolve_tenant_id(_token("superadmin"), None)
    assert excinfo.value.error == ErrorCatalog.TENANT_CONTEXT_MISSING


def test_build_tenant_scope_carries_trace():
    context = build_request_context(
        user_id="user-1", tenant_id="tenant-a", store_id="store-a", role="ADMIN", trace_id="trace-9"
    )
    scope = build_tenant_scope(_token("ADMIN"), context)
    assert scope == TenantScope(tenant_id="tenant-a", user_id="user-1", trace_id="trace-9")


def test_enforce_destination_store():
    enforce_destination_store(_token("ADMIN", store_id="store-a"), "store-b")
    enforce_destination_store(_token("MANAGER", store_id="store-b"), "store-b")
    with pytest.raises(AppError) as excinfo:
        enforce_destination_store(_token("MANAGER", store_id="store-a"), "store-b")
    assert excinfo.value.error == ErrorCatalog.STORE_SCOPE_MISMATCH
    with pytest.raises(AppError):
        enforce_destination_store(_token("USER", store_id=None), "store-b")


def test_transfer_service_refuses_unscoped_calls(db_session):
    service = TransferService(db_session)
    transfer_id = str(uuid.uuid4())

    calls = [
        lambda: service.get(None, transfer_id),
        lambda: service.get_by_code("tenant-a", "TRF-000001"),
        lambda: service.list(None),
        lambda: service.create(None, "a", "b", [TransferLineInput(str(uuid.uuid4()), 1)]),
        lambda: service.dispatch(None, transfer_id),
        lambda: service.receive(None, transfer_id, {}),
        lambda: service.cancel(None, transfer_id),
        lambda: service.upsert_line(None, transfer_id, str(uuid.uuid4()), 1),
        lambda: service.remove_line(None, transfer_id, str(uuid.uuid4())),
    ]
    for call in calls:
        with pytest.raises(TenantContextMissingError):
            call()
