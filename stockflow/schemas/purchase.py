from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from stockflow.schemas.common import PaginationMeta
from stockflow.schemas.inbound import InboundOut


class PurchaseRequestLineIn(BaseModel):
    item_id: str
    quantity: int
    unit_price: Decimal
    notes: Optional[str] = Field(default=None, max_length=255)


class PurchaseRequestCreateIn(BaseModel):
    vendor_id: str
    warehouse_id: Optional[str] = None
    request_date: Optional[date] = None
    notes: Optional[str] = Field(default=None, max_length=2000)
    justification_reason: Optional[str] = Field(default=None, max_length=2000)
    items: list[PurchaseRequestLineIn] = Field(min_length=1)
    submit: bool = False

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "vendor_id": "ven_001",
                "request_date": "2026-10-19",
                "notes": "Restock packing material",
                "items": [
                    {"item_id": "itm_123", "quantity": 50, "unit_price": "12500.00"},
                ],
                "submit": True,
            }
        }
    )


class PurchaseRequestUpdateIn(BaseModel):
    vendor_id: Optional[str] = None
    warehouse_id: Optional[str] = None
    request_date: Optional[date] = None
    notes: Optional[str] = Field(default=None, max_length=2000)
    justification_reason: Optional[str] = Field(default=None, max_length=2000)
    items: Optional[list[PurchaseRequestLineIn]] = Field(default=None, min_length=1)


class PurchaseConfirmIn(BaseModel):
    requires_payment: bool = False
    notes: Optional[str] = Field(default=None, max_length=1000)


class PaymentReleaseIn(BaseModel):
    amount: Decimal = Field(gt=0)
    payment_date: Optional[date] = None
    notes: Optional[str] = Field(default=None, max_length=1000)


class IssuePoIn(BaseModel):
    shipping_tracking_number: Optional[str] = Field(default=None, max_length=100)
    estimated_shipping_date: Optional[date] = None
    notes: Optional[str] = Field(default=None, max_length=1000)

    @field_validator("shipping_tracking_number")
    @classmethod
    def normalize_tracking_number(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        cleaned = value.strip()
        return cleaned or None


class PurchaseRequestItemOut(BaseModel):
    id: str
    item_id: str
    quantity: int
    unit_price: float
    total_price: float
    notes: Optional[str] = None


class PurchaseRequestOut(BaseModel):
    id: str
    pr_number: str
    vendor_id: str
    warehouse_id: Optional[str] = None
    request_date: date
    status: str
    notes: Optional[str] = None
    justification_reason: Optional[str] = None
    total_amount: float
    created_by_user_id: str
    submitted_at: Optional[datetime] = None
    manager_decided_by_user_id: Optional[str] = None
    manager_decided_at: Optional[datetime] = None
    manager_notes: Optional[str] = None
    purchasing_decided_by_user_id: Optional[str] = None
    purchasing_decided_at: Optional[datetime] = None
    purchasing_notes: Optional[str] = None
    requires_payment: bool
    payment_amount: Optional[float] = None
    payment_date: Optional[date] = None
    payment_released_by_user_id: Optional[str] = None
    payment_released_at: Optional[datetime] = None
    finance_notes: Optional[str] = None
    po_number: Optional[str] = None
    po_issued_by_user_id: Optional[str] = None
    po_issued_at: Optional[datetime] = None
    shipping_tracking_number: Optional[str] = None
    estimated_shipping_date: Optional[date] = None
    items: list[PurchaseRequestItemOut]
    created_at: datetime
    updated_at: datetime


class PurchaseRequestListOut(BaseModel):
    items: list[PurchaseRequestOut]
    pagination: PaginationMeta


class IssuePoOut(BaseModel):
    purchase_request: PurchaseRequestOut
    inbound: InboundOut
