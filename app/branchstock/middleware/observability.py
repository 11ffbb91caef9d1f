from __future__ import annotations

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from app.branchstock.core.db_timing import get_db_query_count, get_db_time_ms, start_db_timer, stop_db_timer
from app.branchstock.core.logging import log_json, log_json_warning
from app.branchstock.core.metrics import metrics

logger = logging.getLogger("branchstock.request")


def _route_template(request: Request) -> str:
    scope_route = request.scope.get("route")
    route = getattr(scope_route, "path", None) if scope_route is not None else None
    return route or request.url.path


def build_request_log_payload(
    *,
    request: Request,
    response: Response | None,
    latency_ms: float,
    db_time_ms: float | None,
    db_queries: int | None = None,
) -> dict:
    return {
        "event": "http_request",
        "trace_id": getattr(request.state, "trace_id", ""),
        "tenant_id": getattr(request.state, "tenant_id", None),
        "user_id": getattr(request.state, "user_id", None),
        "route": _route_template(request),
        "method": request.method,
        "status_code": getattr(response, "status_code", 500),
        "latency_ms": round(latency_ms, 2),
        "db_time_ms": round(db_time_ms, 2) if db_time_ms is not None else None,
        "db_queries": db_queries,
        "error_code": getattr(request.state, "error_code", None),
        "error_class": getattr(request.state, "error_class", None),
    }


class ObservabilityMiddleware(BaseHTTPMiddleware):
    """One JSON log line and one metrics sample per request.

    Server errors are logged at WARNING so they stand out from routine
    business rejections such as 409s.
    """

    async def dispatch(self, request: Request, call_next):
        started = time.perf_counter()
        timer = start_db_timer()
        response: Response | None = None
        try:
            response = await call_next(request)
            return response
        finally:
            latency_ms = (time.perf_counter() - started) * 1000
            payload = build_request_log_payload(
                request=request,
                response=response,
                latency_ms=latency_ms,
                db_time_ms=get_db_time_ms(),
                db_queries=get_db_query_count(),
            )
            stop_db_timer(timer)
            emit = log_json_warning if payload["status_code"] >= 500 else log_json
            emit(logger, payload)
            metrics.record_http_request(
                route=payload["route"],
                method=payload["method"],
                status_code=payload["status_code"],
                latency_ms=latency_ms,
            )
