from app.branchstock.core.context import RequestContext, TenantScope
from app.branchstock.core.error_catalog import AppError, ErrorCatalog
from app.branchstock.core.security import TokenData


SUPERADMIN_ROLES = {"SUPERADMIN", "PLATFORM_ADMIN"}
DEFAULT_BROAD_STORE_ROLES = {"SUPERADMIN", "PLATFORM_ADMIN", "ADMIN"}


def _normalize_role(role: str | None) -> str:
    return (role or "").upper()


def is_superadmin(role: str | None) -> bool:
    return _normalize_role(role) in SUPERADMIN_ROLES


def resolve_tenant_id(token_data: TokenData, tenant_id: str | None) -> str:
    """Pick the tenant a request operates on.

    Superadmins must name the tenant explicitly; everyone else is pinned to
    the tenant in their token and may only repeat it.
    """
    if is_superadmin(token_data.role):
        if not tenant_id:
            raise AppError(ErrorCatalog.TENANT_CONTEXT_MISSING)
        return tenant_id
    if not token_data.tenant_id:
        raise AppError(ErrorCatalog.TENANT_CONTEXT_MISSING)
    if tenant_id and tenant_id != token_data.tenant_id:
        raise AppError(ErrorCatalog.CROSS_TENANT_ACCESS_DENIED)
    return token_data.tenant_id


def build_tenant_scope(token_data: TokenData, context: RequestContext, tenant_id: str | None = None) -> TenantScope:
    return TenantScope(
        tenant_id=resolve_tenant_id(token_data, tenant_id),
        user_id=token_data.sub,
        trace_id=context.trace_id,
    )


def enforce_destination_store(token_data: TokenData, destination_store_id: str) -> None:
    role = _normalize_role(token_data.role)
    if role in DEFAULT_BROAD_STORE_ROLES:
        return
    if not token_data.store_id or str(token_data.store_id) != str(destination_store_id):
        raise AppError(
            ErrorCatalog.STORE_SCOPE_MISMATCH,
            details={
                "message": "only users of the destination store can receive this transfer",
                "destination_store_id": str(destination_store_id),
            },
        )
