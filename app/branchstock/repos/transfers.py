from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from app.branchstock.core.context import TenantScope, require_tenant_scope
from app.branchstock.db.models import Transfer, TransferCodeCounter, TransferLine, coerce_uuid


@dataclass(frozen=True)
class TransferQueryFilters:
    status: str | None = None
    origin_store_id: str | None = None
    destination_store_id: str | None = None
    from_date: date | None = None
    to_date: date | None = None
    limit: int | None = None


class TransferRepository:
    def __init__(self, db):
        self.db = db

    def get(self, scope: TenantScope, transfer_id) -> Transfer | None:
        require_tenant_scope(scope)
        transfer_uuid = coerce_uuid(transfer_id)
        if transfer_uuid is None:
            return None
        stmt = select(Transfer).where(Transfer.id == transfer_uuid, Transfer.tenant_id == scope.tenant_id)
        return self.db.execute(stmt).scalars().first()

    def get_by_code(self, scope: TenantScope, code: str) -> Transfer | None:
        require_tenant_scope(scope)
        stmt = select(Transfer).where(Transfer.code == code, Transfer.tenant_id == scope.tenant_id)
        return self.db.execute(stmt).scalars().first()

    def code_exists(self, scope: TenantScope, code: str) -> bool:
        require_tenant_scope(scope)
        stmt = select(Transfer.id).where(Transfer.code == code, Transfer.tenant_id == scope.tenant_id)
        return self.db.execute(stmt).first() is not None

    def list(self, scope: TenantScope, filters: TransferQueryFilters) -> list[Transfer]:
        require_tenant_scope(scope)
        stmt = select(Transfer).where(Transfer.tenant_id == scope.tenant_id)
        if filters.status:
            stmt = stmt.where(Transfer.status == filters.status.upper())
        if filters.origin_store_id:
            stmt = stmt.where(Transfer.origin_store_id == coerce_uuid(filters.origin_store_id))
        if filters.destination_store_id:
            stmt = stmt.where(Transfer.destination_store_id == coerce_uuid(filters.destination_store_id))
        if filters.from_date:
            stmt = stmt.where(Transfer.created_at >= datetime.combine(filters.from_date, time.min))
        if filters.to_date:
            # inclusive of the whole to_date day
            stmt = stmt.where(Transfer.created_at < datetime.combine(filters.to_date + timedelta(days=1), time.min))
        stmt = stmt.order_by(Transfer.created_at.desc(), Transfer.code.desc())
        if filters.limit:
            stmt = stmt.limit(filters.limit)
        return self.db.execute(stmt).scalars().all()

    def get_line(self, scope: TenantScope, transfer_id, line_id) -> TransferLine | None:
        require_tenant_scope(scope)
        line_uuid = coerce_uuid(line_id)
        if line_uuid is None:
            return None
        stmt = select(TransferLine).where(
            TransferLine.id == line_uuid,
            TransferLine.transfer_id == transfer_id,
            TransferLine.tenant_id == scope.tenant_id,
        )
        return self.db.execute(stmt).scalars().first()

    def current_status(self, scope: TenantScope, transfer_id) -> str | None:
        require_tenant_scope(scope)
        stmt = select(Transfer.status).where(Transfer.id == transfer_id, Transfer.tenant_id == scope.tenant_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def guarded_update(self, scope: TenantScope, transfer_id, expected_status: str, values: dict) -> bool:
        """Update the transfer only while it is still in ``expected_status``.

        Returns False when another unit of work moved the transfer first.
        """
        require_tenant_scope(scope)
        stmt = (
            update(Transfer)
            .where(
                Transfer.id == transfer_id,
                Transfer.tenant_id == scope.tenant_id,
                Transfer.status == expected_status,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return self.db.execute(stmt).rowcount == 1

    def next_code_value(self, scope: TenantScope) -> int:
        require_tenant_scope(scope)
        bump = (
            update(TransferCodeCounter)
            .where(TransferCodeCounter.tenant_id == scope.tenant_id)
            .values(last_value=TransferCodeCounter.last_value + 1)
            .execution_options(synchronize_session=False)
        )
        if self.db.execute(bump).rowcount == 1:
            stmt = select(TransferCodeCounter.last_value).where(TransferCodeCounter.tenant_id == scope.tenant_id)
            return self.db.execute(stmt).scalar_one()
        try:
            with self.db.begin_nested():
                self.db.add(TransferCodeCounter(tenant_id=scope.tenant_id, last_value=1))
        except IntegrityError:
            # another writer created the counter between our update and insert
            self.db.execute(bump)
            stmt = select(TransferCodeCounter.last_value).where(TransferCodeCounter.tenant_id == scope.tenant_id)
            return self.db.execute(stmt).scalar_one()
        return 1

    def add(self, scope: TenantScope, transfer: Transfer) -> Transfer:
        require_tenant_scope(scope)
        transfer.tenant_id = scope.tenant_id
        self.db.add(transfer)
        return transfer

    def lines(self, scope: TenantScope, transfer_id) -> list[TransferLine]:
        """Current lines, re-read from the database even if already loaded."""
        require_tenant_scope(scope)
        stmt = (
            select(TransferLine)
            .where(TransferLine.transfer_id == transfer_id, TransferLine.tenant_id == scope.tenant_id)
            .order_by(TransferLine.created_at, TransferLine.id)
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalars().all()
