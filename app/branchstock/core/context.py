from dataclasses import dataclass

from app.branchstock.core.error_catalog import TenantContextMissingError


@dataclass(frozen=True)
class RequestContext:
    user_id: str | None
    tenant_id: str | None
    store_id: str | None
    role: str | None
    trace_id: str


@dataclass(frozen=True)
class TenantScope:
    """Explicit tenant binding handed to every ledger and transfer operation.

    A scope cannot exist without a tenant id, so any code path holding one is
    already bound to exactly one tenant.
    """

    tenant_id: str
    user_id: str | None = None
    trace_id: str = ""

    def __post_init__(self):
        if not self.tenant_id or not str(self.tenant_id).strip():
            raise TenantContextMissingError()
        object.__setattr__(self, "tenant_id", str(self.tenant_id))
        if self.user_id is not None:
            object.__setattr__(self, "user_id", str(self.user_id))


def require_tenant_scope(scope) -> TenantScope:
    if not isinstance(scope, TenantScope):
        raise TenantContextMissingError()
    return scope


def build_request_context(
    *,
    user_id: str | None,
    tenant_id: str | None,
    store_id: str | None,
    role: str | None,
    trace_id: str,
) -> RequestContext:
    return RequestContext(
        user_id=user_id,
        tenant_id=tenant_id,
        store_id=store_id,
        role=role,
        trace_id=trace_id,
    )

