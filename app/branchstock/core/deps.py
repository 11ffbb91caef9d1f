from fastapi import Depends, Request
from jose import JWTError
from pydantic import ValidationError as PydanticValidationError

from app.branchstock.core.context import RequestContext, build_request_context
from app.branchstock.core.error_catalog import AppError, ErrorCatalog
from app.branchstock.core.metrics import metrics
from app.branchstock.core.security import TokenData, oauth2_scheme, token_data_from
from app.branchstock.db.session import get_db
from app.branchstock.repos.users import UserRepository
from app.branchstock.services.rbac import RBACService


def get_current_token_data(token: str = Depends(oauth2_scheme)) -> TokenData:
    try:
        return token_data_from(token)
    except (JWTError, PydanticValidationError) as exc:
        raise AppError(ErrorCatalog.INVALID_TOKEN) from exc


def require_active_user(token_data: TokenData = Depends(get_current_token_data), db=Depends(get_db)):
    """Load the token's user and reject it when it was disabled after login."""
    user = UserRepository(db).get_by_id(token_data.sub)
    if user is None or str(user.tenant_id) != token_data.tenant_id:
        raise AppError(ErrorCatalog.INVALID_TOKEN)
    if not user.is_active or user.status != "active":
        raise AppError(ErrorCatalog.USER_INACTIVE)
    return user


def require_permission(permission_key: str):
    def dependency(request: Request, token_data: TokenData = Depends(get_current_token_data)) -> RequestContext:
        if not RBACService().is_allowed(token_data.role, permission_key):
            metrics.increment_rbac_denied()
            raise AppError(ErrorCatalog.PERMISSION_DENIED, details={"permission": permission_key})
        return build_request_context(
            user_id=token_data.sub,
            tenant_id=token_data.tenant_id,
            store_id=token_data.store_id,
            role=token_data.role,
            trace_id=getattr(request.state, "trace_id", ""),
        )

    return dependency
