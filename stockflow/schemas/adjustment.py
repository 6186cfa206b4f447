from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from stockflow.schemas.common import PaginationMeta
from stockflow.schemas.stock import LedgerEntryOut


class AdjustmentLineIn(BaseModel):
    item_id: str
    method: str = "REAL_QTY"
    qty_input: int
    delta_direction: Optional[str] = None
    notes: Optional[str] = Field(default=None, max_length=255)


class AdjustmentCreateIn(BaseModel):
    adjustment_type: str
    warehouse_id: Optional[str] = None
    notes: Optional[str] = Field(default=None, max_length=2000)
    items: list[AdjustmentLineIn] = Field(min_length=1)
    submit: bool = False

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "adjustment_type": "DAMAGED",
                "notes": "Water damage in rack B",
                "items": [
                    {"item_id": "itm_123", "method": "REAL_QTY", "qty_input": 65},
                    {"item_id": "itm_456", "method": "DELTA_QTY", "qty_input": 3, "delta_direction": "DECREASE"},
                ],
                "submit": True,
            }
        }
    )


class AdjustmentItemOut(BaseModel):
    id: str
    item_id: str
    method: str
    delta_direction: Optional[str] = None
    qty_system: Optional[int] = None
    qty_input: int
    qty_variance: Optional[int] = None
    notes: Optional[str] = None


class AdjustmentOut(BaseModel):
    id: str
    adjustment_code: str
    adjustment_type: str
    source: str
    stock_opname_id: Optional[str] = None
    warehouse_id: Optional[str] = None
    status: str
    notes: Optional[str] = None
    created_by_user_id: str
    submitted_at: Optional[datetime] = None
    decided_by_user_id: Optional[str] = None
    decided_at: Optional[datetime] = None
    decision_notes: Optional[str] = None
    items: list[AdjustmentItemOut]
    created_at: datetime
    updated_at: datetime


class AdjustmentListOut(BaseModel):
    items: list[AdjustmentOut]
    pagination: PaginationMeta


class AdjustmentTransitionOut(BaseModel):
    adjustment: AdjustmentOut
    ledger_entries: list[LedgerEntryOut]
