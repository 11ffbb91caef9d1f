from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel


class StockLedgerRow(BaseModel):
    store_id: str
    product_id: str
    qty_on_hand: Decimal
    updated_at: datetime


class StockLedgerResponse(BaseModel):
    rows: list[StockLedgerRow]


class StockAdjustmentLineRequest(BaseModel):
    store_id: str
    product_id: str
    delta: Decimal


class StockAdjustmentRequest(BaseModel):
    model_config = {
        "json_schema_extra": {
            "example": {
                "transaction_id": "txn-adj-1",
                "reason": "cycle count",
                "lines": [
                    {
                        "store_id": "7b0f6c7e-4c1d-4b8e-9a55-3c0f1d2e4a10",
                        "product_id": "d7c7e9e4-2f0b-4c53-8a0a-0b7b3c3d1e11",
                        "delta": "12.5",
                    }
                ],
            }
        }
    }

    transaction_id: str | None
    tenant_id: str | None = None
    reason: str
    lines: list[StockAdjustmentLineRequest]


class StockMovementResponse(BaseModel):
    id: str
    store_id: str
    product_id: str
    delta: Decimal
    action: str
    reference_type: str
    reference_id: str | None = None
    reference_line_id: str | None = None
    reason: str | None = None
    created_at: datetime


class StockAdjustmentResponse(BaseModel):
    adjustment_id: str
    movements: list[StockMovementResponse]
    trace_id: str
