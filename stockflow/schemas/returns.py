from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from stockflow.schemas.common import PaginationMeta
from stockflow.schemas.stock import LedgerEntryOut


class ReturnLineIn(BaseModel):
    item_id: str
    quantity: int
    unit_price: Decimal = Decimal("0.00")
    notes: Optional[str] = Field(default=None, max_length=255)


class ReturnCreateIn(BaseModel):
    vendor_id: str
    warehouse_id: Optional[str] = None
    inbound_id: Optional[str] = None
    return_date: Optional[date] = None
    reason: str
    notes: Optional[str] = Field(default=None, max_length=2000)
    items: list[ReturnLineIn] = Field(min_length=1)
    submit: bool = False

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "vendor_id": "ven_001",
                "reason": "DAMAGED",
                "items": [{"item_id": "itm_123", "quantity": 2, "unit_price": "12500.00"}],
                "submit": True,
            }
        }
    )


class ReturnShipIn(BaseModel):
    tracking_number: Optional[str] = Field(default=None, max_length=100)
    notes: Optional[str] = Field(default=None, max_length=1000)


class ReturnItemOut(BaseModel):
    id: str
    item_id: str
    quantity: int
    unit_price: float
    total_price: float
    notes: Optional[str] = None


class ReturnOut(BaseModel):
    id: str
    return_code: str
    vendor_id: str
    warehouse_id: Optional[str] = None
    inbound_id: Optional[str] = None
    return_date: Optional[date] = None
    reason: str
    status: str
    notes: Optional[str] = None
    total_amount: float
    created_by_user_id: str
    submitted_at: Optional[datetime] = None
    approved_by_user_id: Optional[str] = None
    approved_at: Optional[datetime] = None
    rejected_by_user_id: Optional[str] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    shipped_by_user_id: Optional[str] = None
    shipped_at: Optional[datetime] = None
    tracking_number: Optional[str] = None
    completed_by_user_id: Optional[str] = None
    completed_at: Optional[datetime] = None
    kept_by_user_id: Optional[str] = None
    kept_at: Optional[datetime] = None
    items: list[ReturnItemOut]
    created_at: datetime
    updated_at: datetime


class ReturnListOut(BaseModel):
    items: list[ReturnOut]
    pagination: PaginationMeta


class ReturnTransitionOut(BaseModel):
    vendor_return: ReturnOut
    ledger_entries: list[LedgerEntryOut]
