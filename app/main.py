from fastapi import FastAPI

from app.branchstock.api import api_router
from app.branchstock.core.config import settings
from app.branchstock.core.errors import setup_exception_handlers
from app.branchstock.core.logging import configure_logging
from app.branchstock.middleware.observability import ObservabilityMiddleware
from app.branchstock.middleware.tenant import TenantContextMiddleware
from app.branchstock.middleware.trace import TraceIdMiddleware


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title=settings.APP_NAME)
    app.add_middleware(TenantContextMiddleware)
    app.add_middleware(TraceIdMiddleware)
    app.add_middleware(ObservabilityMiddleware)
    setup_exception_handlers(app)
    app.include_router(api_router)
    return app


app = create_app()
