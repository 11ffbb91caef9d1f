from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, Query, Request

from app.branchstock.core.config import settings
from app.branchstock.core.context import RequestContext, TenantScope
from app.branchstock.core.deps import get_current_token_data, require_active_user, require_permission
from app.branchstock.core.error_catalog import ValidationError
from app.branchstock.core.scope import build_tenant_scope, enforce_destination_store
from app.branchstock.db.models import Transfer
from app.branchstock.db.session import get_db
from app.branchstock.repos.transfers import TransferQueryFilters
from app.branchstock.schemas.errors import ApiErrorResponse
from app.branchstock.schemas.transfers import (
    TransferActionRequest,
    TransferCreateRequest,
    TransferLineResponse,
    TransferLineUpsertRequest,
    TransferListResponse,
    TransferResponse,
    TransferUpdateRequest,
)
from app.branchstock.services import transfer_states as states
from app.branchstock.services.audit import AuditEventPayload, AuditService
from app.branchstock.services.idempotency import begin_idempotent_request, require_transaction_id
from app.branchstock.services.rbac import TRANSFER_MANAGE, TRANSFER_VIEW
from app.branchstock.services.transfers import TransferLineInput, TransferService, transfer_reconciliation


router = APIRouter()

_ERROR_RESPONSES = {
    403: {"model": ApiErrorResponse},
    404: {"model": ApiErrorResponse},
    409: {"model": ApiErrorResponse},
    422: {"model": ApiErrorResponse},
}


def _optional_str(value) -> str | None:
    return str(value) if value is not None else None


def _transfer_response(transfer: Transfer) -> TransferResponse:
    return TransferResponse(
        id=str(transfer.id),
        tenant_id=str(transfer.tenant_id),
        code=transfer.code,
        origin_store_id=str(transfer.origin_store_id),
        destination_store_id=str(transfer.destination_store_id),
        status=transfer.status,
        notes=transfer.notes,
        has_discrepancies=transfer.has_discrepancies,
        allowed_actions=states.allowed_actions(transfer.status),
        created_by_user_id=_optional_str(transfer.created_by_user_id),
        updated_by_user_id=_optional_str(transfer.updated_by_user_id),
        dispatched_by_user_id=_optional_str(transfer.dispatched_by_user_id),
        received_by_user_id=_optional_str(transfer.received_by_user_id),
        canceled_by_user_id=_optional_str(transfer.canceled_by_user_id),
        created_at=transfer.created_at,
        updated_at=transfer.updated_at,
        dispatched_at=transfer.dispatched_at,
        received_at=transfer.received_at,
        canceled_at=transfer.canceled_at,
        lines=[
            TransferLineResponse(
                id=str(line.id),
                product_id=str(line.product_id),
                qty_dispatched=line.qty_dispatched,
                qty_received=line.qty_received,
                discrepancy_type=line.discrepancy_type,
                discrepancy_qty=line.discrepancy_qty,
                notes=line.notes,
                created_at=line.created_at,
            )
            for line in transfer.lines
        ],
        reconciliation=transfer_reconciliation(transfer),
    )


def _record_audit(
    db,
    scope: TenantScope,
    current_user,
    *,
    action: str,
    transfer_id: str,
    before: dict | None,
    after: dict | None,
    metadata: dict,
) -> None:
    AuditService(db).record_event(
        AuditEventPayload(
            tenant_id=scope.tenant_id,
            user_id=str(current_user.id),
            store_id=_optional_str(current_user.store_id),
            trace_id=scope.trace_id or None,
            actor=current_user.username,
            action=action,
            entity_type="transfer",
            entity_id=transfer_id,
            before=before,
            after=after,
            metadata=metadata,
            result="success",
        )
    )


@router.get(
    "/branchstock/transfers",
    response_model=TransferListResponse,
    description="Newest first. At most TRANSFER_LIST_MAX_ROWS rows are returned; `truncated` is set when more matched.",
)
def list_transfers(
    status: str | None = Query(default=None),
    origin_store_id: str | None = Query(default=None),
    destination_store_id: str | None = Query(default=None),
    from_date: date | None = Query(default=None),
    to_date: date | None = Query(default=None),
    tenant_id: str | None = Query(default=None),
    token_data=Depends(get_current_token_data),
    _user=Depends(require_active_user),
    context: RequestContext = Depends(require_permission(TRANSFER_VIEW)),
    db=Depends(get_db),
):
    scope = build_tenant_scope(token_data, context, tenant_id)
    max_rows = settings.TRANSFER_LIST_MAX_ROWS
    rows = TransferService(db).list(
        scope,
        TransferQueryFilters(
            status=status,
            origin_store_id=origin_store_id,
            destination_store_id=destination_store_id,
            from_date=from_date,
            to_date=to_date,
            limit=max_rows + 1,
        ),
    )
    return TransferListResponse(
        rows=[_transfer_response(transfer) for transfer in rows[:max_rows]],
        limit=max_rows,
        truncated=len(rows) > max_rows,
    )


@router.post(
    "/branchstock/transfers",
    response_model=TransferResponse,
    status_code=201,
    responses=_ERROR_RESPONSES,
)
def create_transfer(
    request: Request,
    payload: TransferCreateRequest,
    token_data=Depends(get_current_token_data),
    current_user=Depends(require_active_user),
    context: RequestContext = Depends(require_permission(TRANSFER_MANAGE)),
    db=Depends(get_db),
):
    require_transaction_id(payload.transaction_id)
    scope = build_tenant_scope(token_data, context, payload.tenant_id)
    idempotency, replay = begin_idempotent_request(request, db, scope.tenant_id, payload.model_dump(mode="json"))
    if replay:
        return replay

    transfer = TransferService(db).create(
        scope,
        payload.origin_store_id,
        payload.destination_store_id,
        [TransferLineInput(line.product_id, line.qty, line.notes) for line in payload.lines],
        notes=payload.notes,
        code=payload.code,
    )
    response = _transfer_response(transfer)
    body = response.model_dump(mode="json")
    idempotency.record_success(status_code=201, response_body=body)
    _record_audit(
        db,
        scope,
        current_user,
        action="transfer.create",
        transfer_id=response.id,
        before=None,
        after=body,
        metadata={"transaction_id": payload.transaction_id, "code": response.code},
    )
    return response


@router.get("/branchstock/transfers/code/{code}", response_model=TransferResponse, responses=_ERROR_RESPONSES)
def get_transfer_by_code(
    code: str,
    tenant_id: str | None = Query(default=None),
    token_data=Depends(get_current_token_data),
    _user=Depends(require_active_user),
    context: RequestContext = Depends(require_permission(TRANSFER_VIEW)),
    db=Depends(get_db),
):
    scope = build_tenant_scope(token_data, context, tenant_id)
    return _transfer_response(TransferService(db).get_by_code(scope, code))


@router.get("/branchstock/transfers/{transfer_id}", response_model=TransferResponse, responses=_ERROR_RESPONSES)
def get_transfer(
    transfer_id: str,
    tenant_id: str | None = Query(default=None),
    token_data=Depends(get_current_token_data),
    _user=Depends(require_active_user),
    context: RequestContext = Depends(require_permission(TRANSFER_VIEW)),
    db=Depends(get_db),
):
    scope = build_tenant_scope(token_data, context, tenant_id)
    return _transfer_response(TransferService(db).get(scope, transfer_id))


@router.patch("/branchstock/transfers/{transfer_id}", response_model=TransferResponse, responses=_ERROR_RESPONSES)
def update_transfer(
    transfer_id: str,
    request: Request,
    payload: TransferUpdateRequest,
    token_data=Depends(get_current_token_data),
    current_user=Depends(require_active_user),
    context: RequestContext = Depends(require_permission(TRANSFER_MANAGE)),
    db=Depends(get_db),
):
    require_transaction_id(payload.transaction_id)
    scope = build_tenant_scope(token_data, context, payload.tenant_id)
    idempotency, replay = begin_idempotent_request(request, db, scope.tenant_id, payload.model_dump(mode="json"))
    if replay:
        return replay

    service = TransferService(db)
    before = _transfer_response(service.get(scope, transfer_id)).model_dump(mode="json")
    transfer = service.update_draft(
        scope,
        transfer_id,
        origin_store_id=payload.origin_store_id,
        destination_store_id=payload.destination_store_id,
        notes=payload.notes,
    )
    response = _transfer_response(transfer)
    body = response.model_dump(mode="json")
    idempotency.record_success(status_code=200, response_body=body)
    _record_audit(
        db,
        scope,
        current_user,
        action="transfer.update",
        transfer_id=response.id,
        before=before,
        after=body,
        metadata={"transaction_id": payload.transaction_id},
    )
    return response


@router.post(
    "/branchstock/transfers/{transfer_id}/lines",
    response_model=TransferResponse,
    responses=_ERROR_RESPONSES,
)
def upsert_transfer_line(
    transfer_id: str,
    request: Request,
    payload: TransferLineUpsertRequest,
    token_data=Depends(get_current_token_data),
    current_user=Depends(require_active_user),
    context: RequestContext = Depends(require_permission(TRANSFER_MANAGE)),
    db=Depends(get_db),
):
    require_transaction_id(payload.transaction_id)
    scope = build_tenant_scope(token_data, context, payload.tenant_id)
    idempotency, replay = begin_idempotent_request(request, db, scope.tenant_id, payload.model_dump(mode="json"))
    if replay:
        return replay

    service = TransferService(db)
    line = service.upsert_line(scope, transfer_id, payload.product_id, payload.qty, notes=payload.notes)
    response = _transfer_response(service.get(scope, transfer_id))
    body = response.model_dump(mode="json")
    idempotency.record_success(status_code=200, response_body=body)
    _record_audit(
        db,
        scope,
        current_user,
        action="transfer.line.upsert",
        transfer_id=response.id,
        before=None,
        after=body,
        metadata={
            "transaction_id": payload.transaction_id,
            "line_id": str(line.id),
            "product_id": payload.product_id,
            "qty": str(payload.qty),
        },
    )
    return response


@router.delete(
    "/branchstock/transfers/{transfer_id}/lines/{line_id}",
    response_model=TransferResponse,
    responses=_ERROR_RESPONSES,
)
def remove_transfer_line(
    transfer_id: str,
    line_id: str,
    request: Request,
    transaction_id: str | None = Query(default=None),
    tenant_id: str | None = Query(default=None),
    token_data=Depends(get_current_token_data),
    current_user=Depends(require_active_user),
    context: RequestContext = Depends(require_permission(TRANSFER_MANAGE)),
    db=Depends(get_db),
):
    require_transaction_id(transaction_id)
    scope = build_tenant_scope(token_data, context, tenant_id)
    idempotency, replay = begin_idempotent_request(
        request,
        db,
        scope.tenant_id,
        {"transaction_id": transaction_id, "transfer_id": transfer_id, "line_id": line_id},
    )
    if replay:
        return replay

    transfer = TransferService(db).remove_line(scope, transfer_id, line_id)
    response = _transfer_response(transfer)
    body = response.model_dump(mode="json")
    idempotency.record_success(status_code=200, response_body=body)
    _record_audit(
        db,
        scope,
        current_user,
        action="transfer.line.remove",
        transfer_id=response.id,
        before=None,
        after=body,
        metadata={"transaction_id": transaction_id, "line_id": line_id},
    )
    return response


@router.post(
    "/branchstock/transfers/{transfer_id}/actions",
    response_model=TransferResponse,
    responses=_ERROR_RESPONSES,
)
def transfer_action(
    transfer_id: str,
    request: Request,
    payload: TransferActionRequest,
    token_data=Depends(get_current_token_data),
    current_user=Depends(require_active_user),
    context: RequestContext = Depends(require_permission(TRANSFER_MANAGE)),
    db=Depends(get_db),
):
    require_transaction_id(payload.transaction_id)
    scope = build_tenant_scope(token_data, context, payload.tenant_id)
    if payload.receive_lines is not None and payload.action != states.ACTION_RECEIVE:
        raise ValidationError("receive_lines only apply to the receive action", action=payload.action)
    idempotency, replay = begin_idempotent_request(request, db, scope.tenant_id, payload.model_dump(mode="json"))
    if replay:
        return replay

    service = TransferService(db)
    current = service.get(scope, transfer_id)
    from_status = current.status
    metadata = {"transaction_id": payload.transaction_id, "from_status": from_status}

    if payload.action == states.ACTION_DISPATCH:
        transfer = service.dispatch(scope, transfer_id)
    elif payload.action == states.ACTION_RECEIVE:
        enforce_destination_store(token_data, current.destination_store_id)
        received = [(item.line_id, item.qty) for item in payload.receive_lines or []]
        transfer = service.receive(scope, transfer_id, received)
        metadata["reconciliation"] = transfer_reconciliation(transfer)
    else:
        transfer = service.cancel(scope, transfer_id)

    response = _transfer_response(transfer)
    body = response.model_dump(mode="json")
    idempotency.record_success(status_code=200, response_body=body)
    _record_audit(
        db,
        scope,
        current_user,
        action=f"transfer.{payload.action}",
        transfer_id=response.id,
        before={"status": from_status},
        after={"status": response.status},
        metadata=metadata,
    )
    return response
