from fastapi import APIRouter, Depends, Request

from app.branchstock.db.session import get_db
from app.branchstock.schemas.auth import LoginRequest, TokenResponse
from app.branchstock.services.auth import AuthService

router = APIRouter()


@router.post("/login", response_model=TokenResponse, summary="Login (JSON)")
def login(request: Request, payload: LoginRequest, db=Depends(get_db)):
    user, token = AuthService(db).login(payload.username_or_email, payload.password)
    return TokenResponse(
        access_token=token,
        must_change_password=user.must_change_password,
        trace_id=getattr(request.state, "trace_id", ""),
    )
