from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from app.branchstock.core.context import TenantScope, require_tenant_scope
from app.branchstock.core.error_catalog import InsufficientStockError, ValidationError
from app.branchstock.core.logging import log_json, log_json_warning
from app.branchstock.core.metrics import metrics
from app.branchstock.db.models import QUANTITY_PRECISION, QUANTITY_SCALE, StockMovement, coerce_uuid
from app.branchstock.db.session import unit_of_work
from app.branchstock.repos.ledger import LedgerRepository
from app.branchstock.repos.stores import ProductRepository, StoreRepository

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
QUANTUM = Decimal(1).scaleb(-QUANTITY_SCALE)
MAX_MAGNITUDE = Decimal(1).scaleb(QUANTITY_PRECISION - QUANTITY_SCALE)

MOVEMENT_DISPATCH = "DISPATCH"
MOVEMENT_RECEIVE = "RECEIVE"
MOVEMENT_CANCEL_REVERSAL = "CANCEL_REVERSAL"
MOVEMENT_ADJUSTMENT = "ADJUSTMENT"

REFERENCE_TRANSFER = "TRANSFER"
REFERENCE_ADJUSTMENT = "ADJUSTMENT"

_SHORTFALL_MESSAGES = {
    MOVEMENT_DISPATCH: "insufficient stock at origin",
    MOVEMENT_ADJUSTMENT: "insufficient stock for adjustment",
}


def to_quantity(value, *, field: str = "qty") -> Decimal:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be numeric", field=field)
    try:
        qty = Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f"{field} must be numeric", field=field) from exc
    if not qty.is_finite():
        raise ValidationError(f"{field} must be finite", field=field)
    # must fit the quantity columns exactly; the database would round silently
    if abs(qty) >= MAX_MAGNITUDE:
        raise ValidationError(f"{field} is too large", field=field, value=str(value))
    if qty != qty.quantize(QUANTUM):
        raise ValidationError(
            f"{field} allows at most {QUANTITY_SCALE} decimal places", field=field, value=str(value)
        )
    return qty


@dataclass(frozen=True)
class LedgerDelta:
    store_id: str
    product_id: str
    delta: Decimal
    line_id: str | None = None

    @property
    def key(self) -> tuple[str, str]:
        return str(self.store_id), str(self.product_id)


@dataclass(frozen=True)
class AdjustmentLine:
    store_id: str
    product_id: str
    delta: Decimal


class StockLedger:
    """Quantity on hand per (tenant, store, product).

    ``apply_delta`` and ``apply_deltas`` write inside the caller's unit of
    work and never commit; a raised ``InsufficientStockError`` is the caller's
    signal to roll back. ``adjust`` is a standalone operation and owns its
    own unit of work.
    """

    def __init__(self, db):
        self.db = db
        self.repo = LedgerRepository(db)

    def get_balance(self, scope: TenantScope, store_id, product_id) -> Decimal:
        require_tenant_scope(scope)
        balance = self.repo.get_balance(scope, coerce_uuid(store_id), coerce_uuid(product_id))
        return Decimal(balance) if balance is not None else ZERO

    def list_entries(self, scope: TenantScope, *, store_id=None, product_id=None):
        require_tenant_scope(scope)
        return self.repo.list_entries(
            scope,
            store_id=coerce_uuid(store_id) if store_id else None,
            product_id=coerce_uuid(product_id) if product_id else None,
        )

    def apply_delta(
        self,
        scope: TenantScope,
        store_id,
        product_id,
        delta,
        *,
        action: str,
        reference_type: str,
        reference_id=None,
        reference_line_id=None,
        reason: str | None = None,
    ) -> list[StockMovement]:
        require_tenant_scope(scope)
        return self.apply_deltas(
            scope,
            [LedgerDelta(store_id, product_id, to_quantity(delta, field="delta"), reference_line_id)],
            action=action,
            reference_type=reference_type,
            reference_id=reference_id,
            reason=reason,
        )

    def apply_deltas(
        self,
        scope: TenantScope,
        deltas: list[LedgerDelta],
        *,
        action: str,
        reference_type: str,
        reference_id=None,
        reason: str | None = None,
    ) -> list[StockMovement]:
        require_tenant_scope(scope)
        merged: dict[tuple[str, str], Decimal] = {}
        line_ids: dict[tuple[str, str], list[str]] = {}
        for item in deltas:
            merged[item.key] = merged.get(item.key, ZERO) + Decimal(item.delta)
            if item.line_id is not None:
                line_ids.setdefault(item.key, []).append(str(item.line_id))

        shortfalls = []
        # fixed key order so concurrent batches lock ledger rows in the same sequence
        for key in sorted(merged):
            delta = merged[key]
            if delta == ZERO:
                continue
            store_id, product_id = coerce_uuid(key[0]), coerce_uuid(key[1])
            if self._apply_one(scope, store_id, product_id, delta):
                continue
            available = self.repo.get_balance(scope, store_id, product_id)
            shortfalls.append(
                {
                    "line_ids": line_ids.get(key, []),
                    "store_id": key[0],
                    "product_id": key[1],
                    "requested": str(-delta),
                    "available": str(Decimal(available) if available is not None else ZERO),
                }
            )

        if shortfalls:
            metrics.increment_insufficient_stock(action)
            log_json_warning(
                logger,
                {
                    "event": "ledger_insufficient_stock",
                    "trace_id": scope.trace_id,
                    "tenant_id": scope.tenant_id,
                    "action": action,
                    "reference_id": str(reference_id) if reference_id else None,
                    "shortfalls": shortfalls,
                },
            )
            raise InsufficientStockError(shortfalls, message=_SHORTFALL_MESSAGES.get(action, "insufficient stock"))

        movements = []
        for item in deltas:
            if Decimal(item.delta) == ZERO:
                continue
            movements.append(
                self.repo.add_movement(
                    scope,
                    StockMovement(
                        store_id=coerce_uuid(item.store_id),
                        product_id=coerce_uuid(item.product_id),
                        delta=Decimal(item.delta),
                        action=action,
                        reference_type=reference_type,
                        reference_id=coerce_uuid(reference_id),
                        reference_line_id=coerce_uuid(item.line_id),
                        reason=reason,
                    ),
                )
            )
        return movements

    def _apply_one(self, scope: TenantScope, store_id, product_id, delta: Decimal) -> bool:
        if self.repo.try_apply(scope, store_id, product_id, delta):
            return True
        if delta < ZERO:
            return False
        if self.repo.insert_entry(scope, store_id, product_id, delta):
            return True
        # lost the insert race; the entry exists now
        return self.repo.try_apply(scope, store_id, product_id, delta)

    def adjust(self, scope: TenantScope, lines: list[AdjustmentLine], reason: str) -> list[StockMovement]:
        require_tenant_scope(scope)
        if not lines:
            raise ValidationError("at least one adjustment line is required")
        if not reason or not reason.strip():
            raise ValidationError("reason is required", field="reason")
        stores = StoreRepository(self.db)
        products = ProductRepository(self.db)
        deltas = []
        for index, line in enumerate(lines):
            delta = to_quantity(line.delta, field="delta")
            if delta == ZERO:
                raise ValidationError("adjustment delta must not be zero", line=index)
            if stores.get_in_tenant(scope, line.store_id) is None:
                raise ValidationError("store not found in tenant", line=index, store_id=str(line.store_id))
            if products.get_in_tenant(scope, line.product_id) is None:
                raise ValidationError("product not found in tenant", line=index, product_id=str(line.product_id))
            deltas.append(LedgerDelta(str(line.store_id), str(line.product_id), delta))

        adjustment_id = uuid.uuid4()
        with unit_of_work(self.db):
            movements = self.apply_deltas(
                scope,
                deltas,
                action=MOVEMENT_ADJUSTMENT,
                reference_type=REFERENCE_ADJUSTMENT,
                reference_id=adjustment_id,
                reason=reason.strip(),
            )
        log_json(
            logger,
            {
                "event": "stock_adjustment",
                "adjustment_id": str(adjustment_id),
                "trace_id": scope.trace_id,
                "tenant_id": scope.tenant_id,
                "lines": len(deltas),
                "reason": reason.strip(),
            },
        )
        return movements
