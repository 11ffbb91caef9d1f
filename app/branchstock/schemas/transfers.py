from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel


class TransferLineCreate(BaseModel):
    product_id: str
    qty: Decimal
    notes: str | None = None


class TransferLineResponse(BaseModel):
    id: str
    product_id: str
    qty_dispatched: Decimal
    qty_received: Decimal | None = None
    discrepancy_type: str | None = None
    discrepancy_qty: Decimal | None = None
    notes: str | None = None
    created_at: datetime


class TransferCreateRequest(BaseModel):
    model_config = {
        "json_schema_extra": {
            "example": {
                "transaction_id": "txn-1",
                "origin_store_id": "7b0f6c7e-4c1d-4b8e-9a55-3c0f1d2e4a10",
                "destination_store_id": "0c3f0b1a-98b2-4a43-bf0e-7f51f0d7c222",
                "notes": "weekly restock",
                "lines": [{"product_id": "d7c7e9e4-2f0b-4c53-8a0a-0b7b3c3d1e11", "qty": 5}],
            }
        }
    }

    transaction_id: str | None
    tenant_id: str | None = None
    origin_store_id: str
    destination_store_id: str
    code: str | None = None
    notes: str | None = None
    lines: list[TransferLineCreate] = []


class TransferUpdateRequest(BaseModel):
    transaction_id: str | None
    tenant_id: str | None = None
    origin_store_id: str | None = None
    destination_store_id: str | None = None
    notes: str | None = None


class TransferLineUpsertRequest(BaseModel):
    transaction_id: str | None
    tenant_id: str | None = None
    product_id: str
    qty: Decimal
    notes: str | None = None


class ReceiveLine(BaseModel):
    line_id: str
    qty: Decimal


class TransferActionRequest(BaseModel):
    model_config = {
        "json_schema_extra": {
            "example": {
                "transaction_id": "txn-2",
                "action": "receive",
                "receive_lines": [{"line_id": "5f2d0c7a-63d1-4a26-9d55-8a7f0e3b1c44", "qty": 4}],
            }
        }
    }

    transaction_id: str | None
    tenant_id: str | None = None
    action: Literal["dispatch", "receive", "cancel"]
    receive_lines: list[ReceiveLine] | None = None


class ReconciliationLine(BaseModel):
    line_id: str | None
    product_id: str | None
    kind: str
    qty: Decimal


class ReconciliationSummary(BaseModel):
    has_discrepancies: bool
    shortage_qty: Decimal
    overage_qty: Decimal
    lines: list[ReconciliationLine]


class TransferResponse(BaseModel):
    id: str
    tenant_id: str
    code: str
    origin_store_id: str
    destination_store_id: str
    status: str
    notes: str | None = None
    has_discrepancies: bool
    allowed_actions: list[str]
    created_by_user_id: str | None = None
    updated_by_user_id: str | None = None
    dispatched_by_user_id: str | None = None
    received_by_user_id: str | None = None
    canceled_by_user_id: str | None = None
    created_at: datetime
    updated_at: datetime | None = None
    dispatched_at: datetime | None = None
    received_at: datetime | None = None
    canceled_at: datetime | None = None
    lines: list[TransferLineResponse]
    reconciliation: ReconciliationSummary | None = None


class TransferListResponse(BaseModel):
    rows: list[TransferResponse]
    limit: int
    truncated: bool = False
