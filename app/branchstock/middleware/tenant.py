from jose import JWTError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from app.branchstock.core.security import decode_token


def _bearer_claims(request: Request) -> dict:
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() != "bearer" or not token:
        return {}
    try:
        return decode_token(token.strip())
    except JWTError:
        return {}


class TenantContextMiddleware(BaseHTTPMiddleware):
    """Expose the caller's tenant and user id to request logging.

    Nothing here authorizes; endpoints resolve the tenant again through their
    token dependencies and reject invalid tokens there.
    """

    async def dispatch(self, request: Request, call_next):
        claims = _bearer_claims(request)
        request.state.tenant_id = claims.get("tenant_id")
        request.state.user_id = claims.get("sub")
        return await call_next(request)
