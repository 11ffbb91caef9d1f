import logging
from decimal import Decimal

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError

from app.branchstock.core.error_catalog import AppError, ErrorCatalog, ErrorDefinition
from app.branchstock.core.logging import log_json
from app.branchstock.core.metrics import metrics


logger = logging.getLogger(__name__)

_HTTP_STATUS_CODES = {
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
}

_LOCK_TIMEOUT_MARKERS = (
    "lock timeout",
    "deadlock detected",
    "database is locked",
    "could not obtain lock",
)


def _trace_id(request: Request) -> str:
    return getattr(request.state, "trace_id", "")


def _is_lock_timeout(exc: Exception) -> bool:
    if not isinstance(exc, OperationalError):
        return False
    message = str(exc).lower()
    return any(marker in message for marker in _LOCK_TIMEOUT_MARKERS)


def _json_safe(value):
    if isinstance(value, Decimal):
        return format(value, "f")
    if isinstance(value, dict):
        return {key: _json_safe(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(item) for item in value]
    return value


def _validation_error_details(exc: RequestValidationError) -> dict:
    errors = []
    for error in exc.errors():
        loc = list(error.get("loc", []))
        field = ".".join(str(item) for item in loc if item not in {"body", "query", "path", "header"}) or None
        errors.append(
            {
                "field": field,
                "message": error.get("msg", "Invalid value"),
                "type": error.get("type", "validation_error"),
            }
        )
    return {"errors": errors}


def _http_error_payload(request: Request, exc: HTTPException) -> dict:
    detail = exc.detail
    if isinstance(detail, dict) and {"code", "message"}.issubset(detail.keys()):
        payload = dict(detail)
        payload.setdefault("details", None)
        payload.setdefault("trace_id", _trace_id(request))
        return payload
    return {
        "code": _HTTP_STATUS_CODES.get(exc.status_code, "HTTP_ERROR"),
        "message": str(detail) if detail is not None else "HTTP error",
        "details": None,
        "trace_id": _trace_id(request),
    }


def error_response(code: str, message: str, details: object, trace_id: str, status_code: int) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "code": code,
            "message": message,
            "details": _json_safe(details),
            "trace_id": trace_id,
        },
    )


def _finish(request: Request, status_code: int, payload: dict, exc: Exception) -> JSONResponse:
    request.state.error_code = payload["code"]
    request.state.error_class = exc.__class__.__name__
    payload = _json_safe(payload)
    context = getattr(request.state, "idempotency", None)
    if context is not None:
        context.record_failure(status_code=status_code, response_body=payload)
    return JSONResponse(status_code=status_code, content=payload)


def _catalog_payload(request: Request, error: ErrorDefinition, details: object) -> dict:
    return {
        "code": error.code,
        "message": error.message,
        "details": details,
        "trace_id": _trace_id(request),
    }


def setup_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        payload = _catalog_payload(request, exc.error, exc.details)
        return _finish(request, exc.error.status_code, payload, exc)

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return _finish(request, exc.status_code, _http_error_payload(request, exc), exc)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        error = ErrorCatalog.VALIDATION_ERROR
        payload = _catalog_payload(request, error, _validation_error_details(exc))
        return _finish(request, error.status_code, payload, exc)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        if _is_lock_timeout(exc):
            metrics.increment_lock_wait_timeout()
            error = ErrorCatalog.LOCK_TIMEOUT
        else:
            error = ErrorCatalog.INTERNAL_ERROR
            log_json(
                logger,
                {
                    "event": "unhandled_exception",
                    "trace_id": _trace_id(request),
                    "path": request.url.path,
                    "error_class": exc.__class__.__name__,
                },
            )
        payload = _catalog_payload(request, error, {"type": exc.__class__.__name__})
        return _finish(request, error.status_code, payload, exc)
