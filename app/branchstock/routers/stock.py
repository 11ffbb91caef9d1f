from fastapi import APIRouter, Depends, Query, Request

from app.branchstock.core.context import RequestContext
from app.branchstock.core.deps import get_current_token_data, require_active_user, require_permission
from app.branchstock.core.error_catalog import ValidationError
from app.branchstock.core.scope import build_tenant_scope
from app.branchstock.db.session import get_db
from app.branchstock.schemas.stock import (
    StockAdjustmentRequest,
    StockAdjustmentResponse,
    StockLedgerResponse,
    StockLedgerRow,
    StockMovementResponse,
)
from app.branchstock.services.audit import AuditEventPayload, AuditService
from app.branchstock.services.idempotency import begin_idempotent_request, require_transaction_id
from app.branchstock.services.ledger import AdjustmentLine, StockLedger
from app.branchstock.services.rbac import STOCK_ADJUST, STOCK_VIEW


router = APIRouter()


@router.get("/branchstock/stock", response_model=StockLedgerResponse)
def list_stock(
    store_id: str | None = Query(default=None),
    product_id: str | None = Query(default=None),
    tenant_id: str | None = Query(default=None),
    token_data=Depends(get_current_token_data),
    _user=Depends(require_active_user),
    context: RequestContext = Depends(require_permission(STOCK_VIEW)),
    db=Depends(get_db),
):
    scope = build_tenant_scope(token_data, context, tenant_id)
    entries = StockLedger(db).list_entries(scope, store_id=store_id, product_id=product_id)
    return StockLedgerResponse(
        rows=[
            StockLedgerRow(
                store_id=str(entry.store_id),
                product_id=str(entry.product_id),
                qty_on_hand=entry.qty_on_hand,
                updated_at=entry.updated_at,
            )
            for entry in entries
        ]
    )


@router.post("/branchstock/stock/adjustments", response_model=StockAdjustmentResponse, status_code=201)
def adjust_stock(
    request: Request,
    payload: StockAdjustmentRequest,
    token_data=Depends(get_current_token_data),
    current_user=Depends(require_active_user),
    context: RequestContext = Depends(require_permission(STOCK_ADJUST)),
    db=Depends(get_db),
):
    require_transaction_id(payload.transaction_id)
    scope = build_tenant_scope(token_data, context, payload.tenant_id)
    if not payload.lines:
        raise ValidationError("lines must not be empty", field="lines")
    idempotency, replay = begin_idempotent_request(request, db, scope.tenant_id, payload.model_dump(mode="json"))
    if replay:
        return replay

    movements = StockLedger(db).adjust(
        scope,
        [AdjustmentLine(line.store_id, line.product_id, line.delta) for line in payload.lines],
        payload.reason,
    )
    response = StockAdjustmentResponse(
        adjustment_id=str(movements[0].reference_id),
        movements=[
            StockMovementResponse(
                id=str(movement.id),
                store_id=str(movement.store_id),
                product_id=str(movement.product_id),
                delta=movement.delta,
                action=movement.action,
                reference_type=movement.reference_type,
                reference_id=str(movement.reference_id) if movement.reference_id else None,
                reference_line_id=str(movement.reference_line_id) if movement.reference_line_id else None,
                reason=movement.reason,
                created_at=movement.created_at,
            )
            for movement in movements
        ],
        trace_id=scope.trace_id,
    )
    body = response.model_dump(mode="json")
    idempotency.record_success(status_code=201, response_body=body)
    AuditService(db).record_event(
        AuditEventPayload(
            tenant_id=scope.tenant_id,
            user_id=str(current_user.id),
            store_id=str(current_user.store_id) if current_user.store_id else None,
            trace_id=scope.trace_id or None,
            actor=current_user.username,
            action="stock.adjust",
            entity_type="stock_adjustment",
            entity_id=response.adjustment_id,
            before=None,
            after=body,
            metadata={"transaction_id": payload.transaction_id, "reason": payload.reason},
            result="success",
        )
    )
    return response
