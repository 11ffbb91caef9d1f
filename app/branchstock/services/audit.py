import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError

from app.branchstock.db.models import AuditEvent
from app.branchstock.repos.audit import AuditRepository

logger = logging.getLogger(__name__)


@dataclass
class AuditEventPayload:
    tenant_id: str
    user_id: str | None
    store_id: str | None
    trace_id: str | None
    actor: str
    action: str
    entity_type: str | None
    entity_id: str | None
    before: dict | None
    after: dict | None
    metadata: dict | None
    result: str


class AuditService:
    """Best-effort audit trail.

    The audited operation has already committed when an event is written, so
    a failed audit write is logged and rolled back without failing the request.
    """

    def __init__(self, db):
        self.db = db
        self.repo = AuditRepository(db)

    def record_event(self, payload: AuditEventPayload) -> None:
        try:
            self.repo.append(
                AuditEvent(
                    tenant_id=payload.tenant_id,
                    user_id=payload.user_id,
                    store_id=payload.store_id,
                    trace_id=payload.trace_id,
                    actor=payload.actor,
                    action=payload.action,
                    entity_type=payload.entity_type or "unknown",
                    entity_id=payload.entity_id,
                    before_payload=payload.before,
                    after_payload=payload.after,
                    event_metadata=payload.metadata,
                    result=payload.result,
                    created_at=datetime.utcnow(),
                )
            )
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception(
                "Failed to write audit event",
                extra={
                    "action": payload.action,
                    "trace_id": payload.trace_id,
                    "tenant_id": payload.tenant_id,
                    "entity_id": payload.entity_id,
                },
            )
