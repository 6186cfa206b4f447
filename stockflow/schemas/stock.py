from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from stockflow.schemas.common import PaginationMeta


class ItemOut(BaseModel):
    id: str
    sku: str
    name: str
    uom: str
    current_stock: int
    is_active: bool
    created_at: datetime


class ItemListOut(BaseModel):
    items: list[ItemOut]
    pagination: PaginationMeta


class WarehouseOut(BaseModel):
    id: str
    code: str
    name: str
    is_default: bool


class VendorOut(BaseModel):
    id: str
    code: str
    name: str


class PartnerOut(BaseModel):
    id: str
    code: str
    name: str
    contact: Optional[str] = None


class LedgerEntryOut(BaseModel):
    id: str
    item_id: str
    warehouse_id: Optional[str] = None
    sequence: int
    movement_kind: str
    reference_type: str
    reference_id: str
    reference_code: Optional[str] = None
    quantity_before: int
    quantity_change: int
    quantity_after: int
    note: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(
        from_attributes=True,
        json_schema_extra={
            "example": {
                "id": "sc_9x2k",
                "item_id": "itm_123",
                "warehouse_id": None,
                "sequence": 4,
                "movement_kind": "OUTBOUND",
                "reference_type": "OUTBOUND",
                "reference_id": "out_123",
                "reference_code": "OUT/2026/10/0003",
                "quantity_before": 100,
                "quantity_change": -30,
                "quantity_after": 70,
                "note": None,
                "created_at": "2026-10-19T09:30:00Z",
            }
        },
    )


class LedgerEntryListOut(BaseModel):
    items: list[LedgerEntryOut]
    pagination: PaginationMeta


class ItemStockOut(BaseModel):
    item_id: str
    sku: str
    name: str
    uom: str
    current_stock: int
    last_entry: Optional[LedgerEntryOut] = None


class ReconcileOut(BaseModel):
    item_id: str
    current_stock: int
    replayed_stock: int
    entry_count: int
    chain_ok: bool
    consistent: bool


class OpeningBalanceIn(BaseModel):
    item_id: str
    quantity: int = Field(gt=0)
    warehouse_id: Optional[str] = None
    note: Optional[str] = Field(default=None, max_length=255)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "item_id": "itm_123",
                "quantity": 100,
                "note": "Migrated from spreadsheet",
            }
        }
    )


class StockReportPeriod(BaseModel):
    year: int
    month: int
    start: datetime
    end: datetime


class StockReportOut(BaseModel):
    item_id: str
    sku: str
    name: str
    uom: str
    period: StockReportPeriod
    opening_stock: int
    total_in: int
    total_out: int
    closing_stock: int
    movements: list[LedgerEntryOut]
