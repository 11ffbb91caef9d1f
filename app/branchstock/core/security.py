from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi.security import OAuth2PasswordBearer
from jose import jwt
from passlib.context import CryptContext
from pydantic import BaseModel

from app.branchstock.core.config import settings

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/branchstock/auth/login")


class TokenData(BaseModel):
    """Claims carried by a branchstock access token.

    ``tenant_id`` is the only tenant source for a request; ``store_id`` is the
    user's assigned branch and gates who may receive a transfer.
    """

    sub: str
    tenant_id: str
    store_id: str | None = None
    role: str
    username: str | None = None


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def _user_claims(user) -> dict[str, Any]:
    return {
        "sub": str(user.id),
        "tenant_id": str(user.tenant_id),
        "store_id": str(user.store_id) if user.store_id else None,
        "role": user.role,
        "username": user.username,
    }


def create_user_access_token(user, expires_in: timedelta | None = None) -> str:
    issued_at = datetime.now(timezone.utc)
    lifetime = expires_in or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    claims = _user_claims(user) | {"iat": issued_at, "exp": issued_at + lifetime}
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_token(token: str) -> dict[str, Any]:
    return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])


def token_data_from(token: str) -> TokenData:
    # exp/iat and any unknown claims are ignored by the model
    return TokenData.model_validate(decode_token(token))
