"""Receipt reconciliation.

Compares dispatched and received quantities line by line. Discrepancies are
facts to record, never errors: a shortage means goods went missing in
transit, an overage means more arrived than was sent.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

NONE = "NONE"
SHORTAGE = "SHORTAGE"
OVERAGE = "OVERAGE"

ZERO = Decimal("0")


@dataclass(frozen=True)
class LineDiscrepancy:
    kind: str
    qty: Decimal
    line_id: str | None = None
    product_id: str | None = None

    @property
    def is_discrepant(self) -> bool:
        return self.kind != NONE


@dataclass(frozen=True)
class ReceiptReconciliation:
    has_discrepancies: bool
    shortage_qty: Decimal = ZERO
    overage_qty: Decimal = ZERO
    discrepant_lines: list[LineDiscrepancy] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "has_discrepancies": self.has_discrepancies,
            "shortage_qty": str(self.shortage_qty),
            "overage_qty": str(self.overage_qty),
            "lines": [
                {
                    "line_id": item.line_id,
                    "product_id": item.product_id,
                    "kind": item.kind,
                    "qty": str(item.qty),
                }
                for item in self.discrepant_lines
            ],
        }


def reconcile_line(
    qty_dispatched: Decimal,
    qty_received: Decimal,
    *,
    line_id: str | None = None,
    product_id: str | None = None,
) -> LineDiscrepancy:
    dispatched = Decimal(qty_dispatched)
    received = Decimal(qty_received)
    if received < dispatched:
        return LineDiscrepancy(SHORTAGE, dispatched - received, line_id, product_id)
    if received > dispatched:
        return LineDiscrepancy(OVERAGE, received - dispatched, line_id, product_id)
    return LineDiscrepancy(NONE, ZERO, line_id, product_id)


def summarize(discrepancies) -> ReceiptReconciliation:
    discrepant = [item for item in discrepancies if item.is_discrepant]
    shortage = sum((item.qty for item in discrepant if item.kind == SHORTAGE), ZERO)
    overage = sum((item.qty for item in discrepant if item.kind == OVERAGE), ZERO)
    return ReceiptReconciliation(
        has_discrepancies=bool(discrepant),
        shortage_qty=shortage,
        overage_qty=overage,
        discrepant_lines=discrepant,
    )


def reconciliation_for_lines(lines) -> ReceiptReconciliation:
    """Rebuild the reconciliation of a received transfer from its stored lines."""
    return summarize(
        reconcile_line(
            line.qty_dispatched,
            line.qty_received,
            line_id=str(line.id),
            product_id=str(line.product_id),
        )
        for line in lines
        if line.qty_received is not None
    )
