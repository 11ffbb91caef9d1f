import hashlib
import json
from dataclasses import dataclass
from datetime import datetime

from fastapi import Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from app.branchstock.core.error_catalog import AppError, ErrorCatalog
from app.branchstock.core.metrics import metrics
from app.branchstock.db.models import IdempotencyRecord
from app.branchstock.repos.idempotency import IdempotencyKey, IdempotencyRepository


IDEMPOTENCY_HEADER = "Idempotency-Key"
REPLAY_HEADER = "X-Idempotency-Result"

STATE_IN_PROGRESS = "in_progress"
STATE_SUCCEEDED = "succeeded"
STATE_FAILED = "failed"


@dataclass
class IdempotencyReplay:
    status_code: int
    response_body: dict


class IdempotencyContext:
    def __init__(self, record: IdempotencyRecord, repo: IdempotencyRepository):
        self._record = record
        self._repo = repo

    def _finish(self, state: str, status_code: int, response_body: dict) -> None:
        self._record.status_code = status_code
        self._record.response_body = json.dumps(response_body, default=str)
        self._record.state = state
        self._record.updated_at = datetime.utcnow()
        self._repo.save(self._record)

    def record_success(self, *, status_code: int, response_body: dict) -> None:
        self._finish(STATE_SUCCEEDED, status_code, response_body)

    def record_failure(self, *, status_code: int, response_body: dict) -> None:
        # the failed request may have left the session mid-transaction
        self._repo.db.rollback()
        self._finish(STATE_FAILED, status_code, response_body)


class IdempotencyService:
    """Replays the stored response for a repeated ``Idempotency-Key``.

    A key is bound to the request fingerprint it was first used with; reusing
    it with another payload is rejected, and a key whose first request is
    still running answers ``IDEMPOTENCY_REQUEST_IN_PROGRESS``.
    """

    def __init__(self, db):
        self.repo = IdempotencyRepository(db)

    @staticmethod
    def fingerprint(payload: object) -> str:
        payload_bytes = json.dumps(payload, sort_keys=True, default=str).encode("utf-8")
        return hashlib.sha256(payload_bytes).hexdigest()

    def start(
        self,
        *,
        tenant_id: str,
        endpoint: str,
        method: str,
        idempotency_key: str,
        request_hash: str,
    ) -> tuple[IdempotencyContext | None, IdempotencyReplay | None]:
        key = IdempotencyKey(tenant_id, endpoint, method, idempotency_key)
        existing = self.repo.find(key)
        if existing:
            return self._handle_existing(existing, request_hash)

        record = IdempotencyRecord(
            tenant_id=key.tenant_id,
            endpoint=key.endpoint,
            method=key.method,
            idempotency_key=key.idempotency_key,
            request_hash=request_hash,
            state=STATE_IN_PROGRESS,
            status_code=None,
            response_body=None,
        )
        try:
            record = self.repo.save(record)
        except IntegrityError:
            self.repo.db.rollback()
            return self._handle_existing(self.repo.find(key), request_hash)

        return IdempotencyContext(record, self.repo), None

    @staticmethod
    def _handle_existing(
        existing: IdempotencyRecord | None, request_hash: str
    ) -> tuple[IdempotencyContext | None, IdempotencyReplay | None]:
        if existing is None:
            raise AppError(ErrorCatalog.IDEMPOTENCY_REQUEST_IN_PROGRESS)
        if existing.request_hash != request_hash:
            raise AppError(ErrorCatalog.IDEMPOTENCY_KEY_REUSED_WITH_DIFFERENT_PAYLOAD)
        if existing.state == STATE_IN_PROGRESS or existing.response_body is None or existing.status_code is None:
            raise AppError(ErrorCatalog.IDEMPOTENCY_REQUEST_IN_PROGRESS)
        return None, IdempotencyReplay(status_code=existing.status_code, response_body=json.loads(existing.response_body))


def extract_idempotency_key(headers, *, required: bool) -> str | None:
    key = headers.get(IDEMPOTENCY_HEADER)
    if not key and required:
        raise AppError(ErrorCatalog.IDEMPOTENCY_KEY_REQUIRED)
    return key


def require_transaction_id(transaction_id: str | None) -> None:
    if not transaction_id:
        raise AppError(ErrorCatalog.VALIDATION_ERROR, details={"message": "transaction_id is required"})


def begin_idempotent_request(request: Request, db, tenant_id: str, payload: dict):
    """Claim the request's ``Idempotency-Key``.

    Returns ``(context, None)`` for a first attempt, with the context also
    stored on ``request.state`` so error handlers can record the failure, or
    ``(None, response)`` carrying the stored response of an earlier attempt.
    """
    idempotency_key = extract_idempotency_key(request.headers, required=True)
    context, replay = IdempotencyService(db).start(
        tenant_id=tenant_id,
        endpoint=str(request.url.path),
        method=request.method,
        idempotency_key=idempotency_key,
        request_hash=IdempotencyService.fingerprint(payload),
    )
    if replay:
        metrics.increment_idempotency_replay()
        return None, JSONResponse(
            status_code=replay.status_code,
            content=replay.response_body,
            headers={REPLAY_HEADER: ErrorCatalog.IDEMPOTENCY_REPLAY.code},
        )
    request.state.idempotency = context
    return context, None
