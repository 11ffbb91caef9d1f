from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from app.branchstock.core.context import TenantScope, require_tenant_scope
from app.branchstock.db.models import StockLedgerEntry, StockMovement


class LedgerRepository:
    """Row-level access to ``stock_ledger`` and its movement journal.

    Every statement carries the tenant predicate from the scope. Writes are
    single conditional statements so the non-negative rule is checked by the
    database at the moment the row is locked, never against a value read
    earlier in Python.
    """

    def __init__(self, db):
        self.db = db

    def _key_clause(self, scope: TenantScope, store_id, product_id):
        return (
            StockLedgerEntry.tenant_id == scope.tenant_id,
            StockLedgerEntry.store_id == store_id,
            StockLedgerEntry.product_id == product_id,
        )

    def try_apply(self, scope: TenantScope, store_id, product_id, delta: Decimal) -> bool:
        require_tenant_scope(scope)
        stmt = (
            update(StockLedgerEntry)
            .where(
                *self._key_clause(scope, store_id, product_id),
                (StockLedgerEntry.qty_on_hand + delta) >= 0,
            )
            .values(qty_on_hand=StockLedgerEntry.qty_on_hand + delta, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        return self.db.execute(stmt).rowcount == 1

    def insert_entry(self, scope: TenantScope, store_id, product_id, qty: Decimal) -> bool:
        """Create a missing entry; False when a concurrent writer created it first."""
        require_tenant_scope(scope)
        try:
            with self.db.begin_nested():
                self.db.add(
                    StockLedgerEntry(
                        tenant_id=scope.tenant_id,
                        store_id=store_id,
                        product_id=product_id,
                        qty_on_hand=qty,
                        updated_at=datetime.utcnow(),
                    )
                )
        except IntegrityError:
            return False
        return True

    def get_balance(self, scope: TenantScope, store_id, product_id) -> Decimal | None:
        require_tenant_scope(scope)
        stmt = select(StockLedgerEntry.qty_on_hand).where(*self._key_clause(scope, store_id, product_id))
        return self.db.execute(stmt).scalar_one_or_none()

    def list_entries(self, scope: TenantScope, *, store_id=None, product_id=None) -> list[StockLedgerEntry]:
        require_tenant_scope(scope)
        stmt = select(StockLedgerEntry).where(StockLedgerEntry.tenant_id == scope.tenant_id)
        if store_id is not None:
            stmt = stmt.where(StockLedgerEntry.store_id == store_id)
        if product_id is not None:
            stmt = stmt.where(StockLedgerEntry.product_id == product_id)
        stmt = stmt.order_by(StockLedgerEntry.store_id, StockLedgerEntry.product_id)
        return self.db.execute(stmt).scalars().all()

    def add_movement(self, scope: TenantScope, movement: StockMovement) -> StockMovement:
        require_tenant_scope(scope)
        movement.tenant_id = scope.tenant_id
        movement.user_id = scope.user_id
        self.db.add(movement)
        return movement