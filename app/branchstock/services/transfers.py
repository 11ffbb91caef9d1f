from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy.exc import IntegrityError

from app.branchstock.core.config import settings
from app.branchstock.core.context import TenantScope, require_tenant_scope
from app.branchstock.core.error_catalog import (
    AppError,
    InsufficientStockError,
    InvalidStateError,
    TransferNotFoundError,
    ValidationError,
)
from app.branchstock.core.logging import log_json
from app.branchstock.core.metrics import metrics
from app.branchstock.db.models import Transfer, TransferLine, coerce_uuid
from app.branchstock.db.session import unit_of_work
from app.branchstock.repos.stores import ProductRepository, StoreRepository
from app.branchstock.repos.transfers import TransferQueryFilters, TransferRepository
from app.branchstock.services import transfer_states as states
from app.branchstock.services.ledger import (
    MOVEMENT_CANCEL_REVERSAL,
    MOVEMENT_DISPATCH,
    MOVEMENT_RECEIVE,
    REFERENCE_TRANSFER,
    LedgerDelta,
    StockLedger,
    to_quantity,
)
from app.branchstock.services.reconciliation import reconcile_line, reconciliation_for_lines, summarize

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


@dataclass(frozen=True)
class TransferLineInput:
    product_id: str
    qty: Decimal
    notes: str | None = None


class TransferService:
    """Transfer lifecycle: DRAFT -> DISPATCHED -> RECEIVED, or CANCELLED.

    Every mutating operation runs as one unit of work whose first write is a
    conditional update of the transfer row filtered by the state the caller
    observed. Ledger movements ride in the same unit of work, so a transition
    and its stock effects commit or roll back together.
    """

    def __init__(self, db):
        self.db = db
        self.repo = TransferRepository(db)
        self.stores = StoreRepository(db)
        self.products = ProductRepository(db)
        self.ledger = StockLedger(db)

    # reads

    def get(self, scope: TenantScope, transfer_id) -> Transfer:
        require_tenant_scope(scope)
        transfer = self.repo.get(scope, transfer_id)
        if transfer is None:
            raise TransferNotFoundError(str(transfer_id))
        return transfer

    def get_by_code(self, scope: TenantScope, code: str) -> Transfer:
        require_tenant_scope(scope)
        transfer = self.repo.get_by_code(scope, code)
        if transfer is None:
            raise TransferNotFoundError(code)
        return transfer

    def list(self, scope: TenantScope, filters: TransferQueryFilters | None = None) -> list[Transfer]:
        require_tenant_scope(scope)
        filters = filters or TransferQueryFilters()
        if filters.status and filters.status.upper() not in states.STATUSES:
            raise ValidationError("unknown transfer status", status=filters.status)
        if filters.from_date and filters.to_date and filters.from_date > filters.to_date:
            raise ValidationError("from_date must not be after to_date")
        return self.repo.list(scope, filters)

    # draft editing

    def create(
        self,
        scope: TenantScope,
        origin_store_id,
        destination_store_id,
        lines: list[TransferLineInput],
        notes: str | None = None,
        code: str | None = None,
    ) -> Transfer:
        require_tenant_scope(scope)
        origin, destination = self._validate_stores(scope, origin_store_id, destination_store_id)
        checked_lines = self._validate_lines(scope, lines)
        explicit_code = self._validate_code(scope, code)

        now = datetime.utcnow()
        with self._track("create"):
            try:
                with unit_of_work(self.db):
                    transfer = Transfer(
                        code=explicit_code or self._generate_code(scope),
                        origin_store_id=origin.id,
                        destination_store_id=destination.id,
                        status=states.DRAFT,
                        notes=notes,
                        has_discrepancies=False,
                        created_by_user_id=scope.user_id,
                        updated_by_user_id=scope.user_id,
                        created_at=now,
                        updated_at=now,
                    )
                    self.repo.add(scope, transfer)
                    for item in checked_lines:
                        transfer.lines.append(
                            TransferLine(
                                tenant_id=scope.tenant_id,
                                product_id=coerce_uuid(item.product_id),
                                qty_dispatched=item.qty,
                                notes=item.notes,
                                created_at=now,
                            )
                        )
            except IntegrityError as exc:
                # the only unique key a valid create can hit is the per-tenant code
                raise ValidationError("transfer code already exists", code=explicit_code) from exc
        self.db.refresh(transfer)
        self._log_transition(scope, transfer, None, "create")
        return transfer

    def update_draft(
        self,
        scope: TenantScope,
        transfer_id,
        origin_store_id=None,
        destination_store_id=None,
        notes: str | None = None,
    ) -> Transfer:
        require_tenant_scope(scope)
        transfer = self.get(scope, transfer_id)
        with self._track(states.ACTION_EDIT):
            self._ensure_allowed(transfer, states.ACTION_EDIT)
            origin, destination = self._validate_stores(
                scope,
                origin_store_id or transfer.origin_store_id,
                destination_store_id or transfer.destination_store_id,
            )
            values = {
                "origin_store_id": origin.id,
                "destination_store_id": destination.id,
            }
            if notes is not None:
                values["notes"] = notes
            with unit_of_work(self.db):
                self._guard(scope, transfer, states.DRAFT, states.ACTION_EDIT, values)
        self.db.refresh(transfer)
        return transfer

    def upsert_line(self, scope: TenantScope, transfer_id, product_id, qty, notes: str | None = None) -> TransferLine:
        require_tenant_scope(scope)
        transfer = self.get(scope, transfer_id)
        with self._track(states.ACTION_EDIT):
            self._ensure_allowed(transfer, states.ACTION_EDIT)
            (item,) = self._validate_lines(scope, [TransferLineInput(product_id, qty, notes)])
            with unit_of_work(self.db):
                self._guard(scope, transfer, states.DRAFT, states.ACTION_EDIT, {})
                line = next(
                    (row for row in self.repo.lines(scope, transfer.id) if str(row.product_id) == str(item.product_id)),
                    None,
                )
                if line is None:
                    line = TransferLine(
                        transfer_id=transfer.id,
                        tenant_id=scope.tenant_id,
                        product_id=coerce_uuid(item.product_id),
                        qty_dispatched=item.qty,
                        notes=item.notes,
                        created_at=datetime.utcnow(),
                    )
                    self.db.add(line)
                else:
                    line.qty_dispatched = item.qty
                    if item.notes is not None:
                        line.notes = item.notes
        self.db.refresh(line)
        self.db.expire(transfer)
        return line

    def remove_line(self, scope: TenantScope, transfer_id, line_id) -> Transfer:
        require_tenant_scope(scope)
        transfer = self.get(scope, transfer_id)
        with self._track(states.ACTION_EDIT):
            self._ensure_allowed(transfer, states.ACTION_EDIT)
            with unit_of_work(self.db):
                self._guard(scope, transfer, states.DRAFT, states.ACTION_EDIT, {})
                line = self.repo.get_line(scope, transfer.id, line_id)
                if line is None:
                    raise ValidationError("line not found on transfer", line_id=str(line_id))
                self.db.delete(line)
        self.db.expire(transfer)
        return transfer

    # transitions

    def dispatch(self, scope: TenantScope, transfer_id) -> Transfer:
        require_tenant_scope(scope)
        transfer = self.get(scope, transfer_id)
        now = datetime.utcnow()
        with self._track(states.ACTION_DISPATCH):
            self._ensure_allowed(transfer, states.ACTION_DISPATCH)
            with unit_of_work(self.db):
                self._guard(
                    scope,
                    transfer,
                    states.DRAFT,
                    states.ACTION_DISPATCH,
                    {
                        "status": states.DISPATCHED,
                        "dispatched_by_user_id": scope.user_id,
                        "dispatched_at": now,
                    },
                )
                # lines re-read under the guard so concurrent draft edits cannot slip in
                lines = self.repo.lines(scope, transfer.id)
                if not lines:
                    raise ValidationError("transfer has no lines to dispatch")
                self.ledger.apply_deltas(
                    scope,
                    [
                        LedgerDelta(str(transfer.origin_store_id), str(line.product_id), -line.qty_dispatched, line.id)
                        for line in lines
                    ],
                    action=MOVEMENT_DISPATCH,
                    reference_type=REFERENCE_TRANSFER,
                    reference_id=transfer.id,
                )
        self.db.refresh(transfer)
        self._log_transition(scope, transfer, states.DRAFT, states.ACTION_DISPATCH)
        return transfer

    def receive(self, scope: TenantScope, transfer_id, received=None) -> Transfer:
        """Receive a dispatched transfer at its destination.

        ``received`` gives the quantity that actually arrived per line, as a
        mapping of line id to quantity or as ``(line_id, qty)`` pairs; a line
        named twice is rejected and lines left out are taken as received in full. Shortages and overages are
        recorded on the lines, never rejected.
        """
        require_tenant_scope(scope)
        transfer = self.get(scope, transfer_id)
        now = datetime.utcnow()
        with self._track(states.ACTION_RECEIVE):
            self._ensure_allowed(transfer, states.ACTION_RECEIVE)
            lines = self.repo.lines(scope, transfer.id)
            quantities = self._received_quantities(lines, received or ())
            discrepancies = {
                str(line.id): reconcile_line(
                    line.qty_dispatched,
                    quantities[str(line.id)],
                    line_id=str(line.id),
                    product_id=str(line.product_id),
                )
                for line in lines
            }
            reconciliation = summarize(discrepancies.values())
            with unit_of_work(self.db):
                self._guard(
                    scope,
                    transfer,
                    states.DISPATCHED,
                    states.ACTION_RECEIVE,
                    {
                        "status": states.RECEIVED,
                        "received_by_user_id": scope.user_id,
                        "received_at": now,
                        "has_discrepancies": reconciliation.has_discrepancies,
                    },
                )
                for line in lines:
                    discrepancy = discrepancies[str(line.id)]
                    line.qty_received = quantities[str(line.id)]
                    line.discrepancy_type = discrepancy.kind
                    line.discrepancy_qty = discrepancy.qty
                self.ledger.apply_deltas(
                    scope,
                    [
                        LedgerDelta(
                            str(transfer.destination_store_id),
                            str(line.product_id),
                            quantities[str(line.id)],
                            line.id,
                        )
                        for line in lines
                    ],
                    action=MOVEMENT_RECEIVE,
                    reference_type=REFERENCE_TRANSFER,
                    reference_id=transfer.id,
                )
        self.db.refresh(transfer)
        self._log_transition(
            scope,
            transfer,
            states.DISPATCHED,
            states.ACTION_RECEIVE,
            reconciliation=reconciliation.as_dict(),
        )
        return transfer

    def cancel(self, scope: TenantScope, transfer_id) -> Transfer:
        require_tenant_scope(scope)
        transfer = self.get(scope, transfer_id)
        now = datetime.utcnow()
        from_status = transfer.status
        with self._track(states.ACTION_CANCEL):
            self._ensure_allowed(transfer, states.ACTION_CANCEL)
            with unit_of_work(self.db):
                self._guard(
                    scope,
                    transfer,
                    from_status,
                    states.ACTION_CANCEL,
                    {
                        "status": states.CANCELLED,
                        "canceled_by_user_id": scope.user_id,
                        "canceled_at": now,
                    },
                )
                if from_status == states.DISPATCHED:
                    # goods never arrived; put the full dispatched quantity back at origin
                    self.ledger.apply_deltas(
                        scope,
                        [
                            LedgerDelta(str(transfer.origin_store_id), str(line.product_id), line.qty_dispatched, line.id)
                            for line in self.repo.lines(scope, transfer.id)
                        ],
                        action=MOVEMENT_CANCEL_REVERSAL,
                        reference_type=REFERENCE_TRANSFER,
                        reference_id=transfer.id,
                    )
        self.db.refresh(transfer)
        self._log_transition(scope, transfer, from_status, states.ACTION_CANCEL)
        return transfer

    # helpers

    def _guard(self, scope: TenantScope, transfer: Transfer, expected_status: str, action: str, values: dict) -> None:
        values = {
            "updated_by_user_id": scope.user_id,
            "updated_at": datetime.utcnow(),
            **values,
        }
        if self.repo.guarded_update(scope, transfer.id, expected_status, values):
            return
        current = self.repo.current_status(scope, transfer.id)
        raise InvalidStateError(
            action=action,
            current_status=current,
            allowed_actions=states.allowed_actions(current),
            transfer_id=str(transfer.id),
        )

    @staticmethod
    def _ensure_allowed(transfer: Transfer, action: str) -> None:
        if states.is_allowed(action, transfer.status):
            return
        raise InvalidStateError(
            action=action,
            current_status=transfer.status,
            allowed_actions=states.allowed_actions(transfer.status),
            transfer_id=str(transfer.id),
        )

    def _validate_stores(self, scope: TenantScope, origin_store_id, destination_store_id):
        origin = self.stores.get_in_tenant(scope, origin_store_id)
        if origin is None:
            raise ValidationError("origin store not found", origin_store_id=str(origin_store_id))
        destination = self.stores.get_in_tenant(scope, destination_store_id)
        if destination is None:
            raise ValidationError("destination store not found", destination_store_id=str(destination_store_id))
        if origin.id == destination.id:
            raise ValidationError("origin and destination must differ", store_id=str(origin.id))
        return origin, destination

    def _validate_lines(self, scope: TenantScope, lines: list[TransferLineInput]) -> list[TransferLineInput]:
        found = self.products.get_many_in_tenant(scope, [item.product_id for item in lines])
        seen: set[str] = set()
        checked = []
        for index, item in enumerate(lines):
            product = found.get(str(coerce_uuid(item.product_id)))
            if product is None:
                raise ValidationError("product not found", line=index, product_id=str(item.product_id))
            product_key = str(product.id)
            if product_key in seen:
                raise ValidationError("product repeated in transfer lines", line=index, product_id=product_key)
            seen.add(product_key)
            qty = to_quantity(item.qty)
            if qty <= ZERO:
                raise ValidationError("qty must be greater than zero", line=index, qty=str(qty))
            checked.append(TransferLineInput(product_key, qty, item.notes))
        return checked

    def _validate_code(self, scope: TenantScope, code: str | None) -> str | None:
        if code is None:
            return None
        code = code.strip()
        if not code:
            raise ValidationError("code must not be blank", field="code")
        if self.repo.code_exists(scope, code):
            raise ValidationError("transfer code already exists", code=code)
        return code

    def _generate_code(self, scope: TenantScope) -> str:
        while True:
            value = self.repo.next_code_value(scope)
            code = f"{settings.TRANSFER_CODE_PREFIX}-{value:0{settings.TRANSFER_CODE_DIGITS}d}"
            # skip values already taken by caller-supplied codes
            if not self.repo.code_exists(scope, code):
                return code

    @staticmethod
    def _received_quantities(lines: list[TransferLine], received) -> dict[str, Decimal]:
        by_id = {str(line.id): line for line in lines}
        quantities = {key: Decimal(line.qty_dispatched) for key, line in by_id.items()}
        pairs = received.items() if isinstance(received, dict) else received
        seen: set[str] = set()
        for raw_id, raw_qty in pairs:
            line_uuid = coerce_uuid(raw_id)
            line_key = str(line_uuid) if line_uuid is not None else str(raw_id)
            if line_key not in by_id:
                raise ValidationError("unknown line on transfer", line_id=str(raw_id))
            if line_key in seen:
                raise ValidationError("line repeated in received quantities", line_id=line_key)
            seen.add(line_key)
            qty = to_quantity(raw_qty, field="qty_received")
            if qty < ZERO:
                raise ValidationError("received quantity must not be negative", line_id=line_key, qty=str(qty))
            quantities[line_key] = qty
        return quantities

    @contextmanager
    def _track(self, action: str):
        try:
            yield
        except InvalidStateError:
            metrics.record_transfer_transition(action=action, result="invalid_state")
            raise
        except InsufficientStockError:
            metrics.record_transfer_transition(action=action, result="insufficient_stock")
            raise
        except AppError:
            metrics.record_transfer_transition(action=action, result="rejected")
            raise
        metrics.record_transfer_transition(action=action, result="success")

    def _log_transition(
        self,
        scope: TenantScope,
        transfer: Transfer,
        from_status: str | None,
        action: str,
        reconciliation: dict | None = None,
    ) -> None:
        payload = {
            "event": "transfer_transition",
            "trace_id": scope.trace_id,
            "tenant_id": scope.tenant_id,
            "user_id": scope.user_id,
            "transfer_id": str(transfer.id),
            "transfer_code": transfer.code,
            "action": action,
            "from_status": from_status,
            "to_status": transfer.status,
            "line_count": len(transfer.lines),
        }
        if reconciliation is not None:
            payload["reconciliation"] = reconciliation
        log_json(logger, payload)


def transfer_reconciliation(transfer: Transfer) -> dict | None:
    if transfer.status != states.RECEIVED:
        return None
    return reconciliation_for_lines(transfer.lines).as_dict()
