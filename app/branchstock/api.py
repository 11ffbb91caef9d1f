from fastapi import APIRouter

from app.branchstock.core.config import settings
from app.branchstock.routers.auth import router as auth_router
from app.branchstock.routers.health import router as health_router
from app.branchstock.routers.metrics import router as metrics_router
from app.branchstock.routers.stock import router as stock_router
from app.branchstock.routers.transfers import router as transfers_router

api_router = APIRouter()
api_router.include_router(health_router)
api_router.include_router(auth_router, prefix="/branchstock/auth", tags=["auth"])
api_router.include_router(stock_router, tags=["stock"])
api_router.include_router(transfers_router, tags=["transfers"])
if settings.METRICS_ENABLED:
    api_router.include_router(metrics_router, tags=["ops"])
