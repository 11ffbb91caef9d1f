from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy import func, select

from app.branchstock.core.metrics import metrics
from app.branchstock.db.models import (
    StockLedgerEntry,
    StockMovement,
    Tenant,
    Transfer,
    TransferLine,
    coerce_uuid,
)
from app.branchstock.services import transfer_states as states
from app.branchstock.services.ledger import MOVEMENT_CANCEL_REVERSAL, MOVEMENT_DISPATCH, MOVEMENT_RECEIVE


SEVERITY_CRITICAL = "CRITICAL"
SEVERITY_WARN = "WARN"
ZERO = Decimal("0")


@dataclass(frozen=True)
class IntegrityFinding:
    check_id: str
    severity: str
    tenant_id: str
    message: str
    entity: str
    entity_id: str | None
    details: dict


def resolve_tenants(db, tenant: str) -> list[str]:
    if tenant.lower() == "all":
        return [str(row.id) for row in db.execute(select(Tenant.id)).all()]
    tenant_uuid = coerce_uuid(tenant)
    if tenant_uuid is None:
        raise ValueError(f"invalid tenant id: {tenant}")
    return [str(tenant_uuid)]


def _format_datetime(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat()


def _qty(value) -> Decimal:
    return Decimal(str(value)) if value is not None else ZERO


def _record(check_id: str, findings: list[IntegrityFinding]) -> list[IntegrityFinding]:
    if findings:
        metrics.increment_invariant_violation(check_id, len(findings))
    return findings


def check_negative_ledger_balance(db, tenant_id: str) -> list[IntegrityFinding]:
    rows = db.execute(
        select(StockLedgerEntry.id, StockLedgerEntry.store_id, StockLedgerEntry.product_id, StockLedgerEntry.qty_on_hand)
        .where(StockLedgerEntry.tenant_id == tenant_id)
        .where(StockLedgerEntry.qty_on_hand < 0)
    ).all()
    findings = [
        IntegrityFinding(
            check_id="negative_ledger_balance",
            severity=SEVERITY_CRITICAL,
            tenant_id=tenant_id,
            message="Ledger entry below zero.",
            entity="stock_ledger",
            entity_id=str(row.id),
            details={
                "store_id": str(row.store_id),
                "product_id": str(row.product_id),
                "qty_on_hand": str(row.qty_on_hand),
            },
        )
        for row in rows
    ]
    return _record("negative_ledger_balance", findings)


def check_transfer_same_origin_destination(db, tenant_id: str) -> list[IntegrityFinding]:
    rows = db.execute(
        select(Transfer.id, Transfer.code, Transfer.origin_store_id)
        .where(Transfer.tenant_id == tenant_id)
        .where(Transfer.origin_store_id == Transfer.destination_store_id)
    ).all()
    findings = [
        IntegrityFinding(
            check_id="transfer_same_origin_destination",
            severity=SEVERITY_CRITICAL,
            tenant_id=tenant_id,
            message="Transfer origin and destination are the same store.",
            entity="transfers",
            entity_id=str(row.id),
            details={"code": row.code, "store_id": str(row.origin_store_id)},
        )
        for row in rows
    ]
    return _record("transfer_same_origin_destination", findings)


def _timestamps_consistent(status: str, dispatched_at, received_at, canceled_at) -> bool:
    if status == states.DRAFT:
        return not any([dispatched_at, received_at, canceled_at])
    if status == states.DISPATCHED:
        return dispatched_at is not None and received_at is None and canceled_at is None
    if status == states.RECEIVED:
        return dispatched_at is not None and received_at is not None and canceled_at is None
    if status == states.CANCELLED:
        return canceled_at is not None and received_at is None
    return False


def check_transfer_fsm_timestamps(db, tenant_id: str) -> list[IntegrityFinding]:
    rows = db.execute(
        select(
            Transfer.id,
            Transfer.status,
            Transfer.dispatched_at,
            Transfer.received_at,
            Transfer.canceled_at,
        ).where(Transfer.tenant_id == tenant_id)
    ).all()
    findings = []
    for row in rows:
        if _timestamps_consistent(row.status, row.dispatched_at, row.received_at, row.canceled_at):
            continue
        findings.append(
            IntegrityFinding(
                check_id="transfer_fsm_timestamps",
                severity=SEVERITY_WARN,
                tenant_id=tenant_id,
                message="Transfer state/timestamps inconsistent.",
                entity="transfers",
                entity_id=str(row.id),
                details={
                    "status": row.status,
                    "dispatched_at": _format_datetime(row.dispatched_at),
                    "received_at": _format_datetime(row.received_at),
                    "canceled_at": _format_datetime(row.canceled_at),
                },
            )
        )
    return _record("transfer_fsm_timestamps", findings)


def _journal_by_line(db, tenant_id: str) -> dict[tuple[str, str], Decimal]:
    rows = db.execute(
        select(StockMovement.reference_line_id, StockMovement.action, func.sum(StockMovement.delta))
        .where(StockMovement.tenant_id == tenant_id)
        .where(StockMovement.reference_type == "TRANSFER")
        .group_by(StockMovement.reference_line_id, StockMovement.action)
    ).all()
    return {(str(line_id), action): _qty(total) for line_id, action, total in rows}


def _lines_by_transfer(db, tenant_id: str, status_filter) -> dict:
    rows = db.execute(
        select(Transfer.id, Transfer.code, Transfer.status, TransferLine)
        .join(TransferLine, TransferLine.transfer_id == Transfer.id)
        .where(Transfer.tenant_id == tenant_id)
        .where(status_filter)
    ).all()
    grouped = defaultdict(list)
    for transfer_id, code, status, line in rows:
        grouped[(str(transfer_id), code, status)].append(line)
    return grouped


def check_transfer_dispatch_journal(db, tenant_id: str) -> list[IntegrityFinding]:
    journal = _journal_by_line(db, tenant_id)
    grouped = _lines_by_transfer(db, tenant_id, Transfer.dispatched_at.is_not(None))
    findings = []
    for (transfer_id, code, status), lines in grouped.items():
        mismatched = []
        for line in lines:
            expected = _qty(line.qty_dispatched)
            debited = -journal.get((str(line.id), MOVEMENT_DISPATCH), ZERO)
            reversed_qty = journal.get((str(line.id), MOVEMENT_CANCEL_REVERSAL), ZERO)
            if debited != expected:
                mismatched.append({"line_id": str(line.id), "expected": str(expected), "journal": str(debited)})
            elif status == states.CANCELLED and reversed_qty != expected:
                mismatched.append(
                    {"line_id": str(line.id), "expected_reversal": str(expected), "journal": str(reversed_qty)}
                )
        if mismatched:
            findings.append(
                IntegrityFinding(
                    check_id="transfer_dispatch_journal",
                    severity=SEVERITY_CRITICAL,
                    tenant_id=tenant_id,
                    message="Dispatched quantities do not match the ledger journal.",
                    entity="transfers",
                    entity_id=transfer_id,
                    details={"code": code, "status": status, "lines": mismatched},
                )
            )
    return _record("transfer_dispatch_journal", findings)


def check_transfer_receive_journal(db, tenant_id: str) -> list[IntegrityFinding]:
    journal = _journal_by_line(db, tenant_id)
    grouped = _lines_by_transfer(db, tenant_id, Transfer.status == states.RECEIVED)
    findings = []
    for (transfer_id, code, status), lines in grouped.items():
        mismatched = []
        for line in lines:
            credited = journal.get((str(line.id), MOVEMENT_RECEIVE), ZERO)
            if line.qty_received is None:
                mismatched.append({"line_id": str(line.id), "expected": None, "journal": str(credited)})
            elif credited != _qty(line.qty_received):
                mismatched.append(
                    {"line_id": str(line.id), "expected": str(_qty(line.qty_received)), "journal": str(credited)}
                )
        if mismatched:
            findings.append(
                IntegrityFinding(
                    check_id="transfer_receive_journal",
                    severity=SEVERITY_CRITICAL,
                    tenant_id=tenant_id,
                    message="Received quantities do not match the ledger journal.",
                    entity="transfers",
                    entity_id=transfer_id,
                    details={"code": code, "status": status, "lines": mismatched},
                )
            )
    return _record("transfer_receive_journal", findings)


def run_integrity_checks(db, tenant_id: str) -> list[IntegrityFinding]:
    findings: list[IntegrityFinding] = []
    findings.extend(check_negative_ledger_balance(db, tenant_id))
    findings.extend(check_transfer_same_origin_destination(db, tenant_id))
    findings.extend(check_transfer_fsm_timestamps(db, tenant_id))
    findings.extend(check_transfer_dispatch_journal(db, tenant_id))
    findings.extend(check_transfer_receive_journal(db, tenant_id))
    return findings
