from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from stockflow.schemas.common import PaginationMeta
from stockflow.schemas.stock import LedgerEntryOut


class InboundLineIn(BaseModel):
    item_id: str
    expected_qty: int


class InboundCreateIn(BaseModel):
    vendor_id: str
    warehouse_id: Optional[str] = None
    notes: Optional[str] = Field(default=None, max_length=2000)
    items: list[InboundLineIn] = Field(min_length=1)


class InboundLineVerifyIn(BaseModel):
    line_id: str
    received_qty: int
    accepted_qty: int
    rejected_qty: int = 0
    rejection_reason: Optional[str] = None
    notes: Optional[str] = Field(default=None, max_length=1000)


class InboundVerifyIn(BaseModel):
    receive_date: Optional[date] = None
    notes: Optional[str] = Field(default=None, max_length=2000)
    lines: list[InboundLineVerifyIn] = Field(min_length=1)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "receive_date": "2026-10-19",
                "lines": [
                    {"line_id": "ini_1", "received_qty": 45, "accepted_qty": 45, "rejected_qty": 0},
                    {
                        "line_id": "ini_2",
                        "received_qty": 10,
                        "accepted_qty": 8,
                        "rejected_qty": 2,
                        "rejection_reason": "DAMAGED",
                    },
                ],
            }
        }
    )


class InboundResolveIn(BaseModel):
    resolution: str
    notes: Optional[str] = Field(default=None, max_length=1000)


class InboundReceiveRemainderIn(BaseModel):
    quantity: int
    notes: Optional[str] = Field(default=None, max_length=1000)


class InboundItemOut(BaseModel):
    id: str
    item_id: str
    expected_qty: int
    received_qty: int
    accepted_qty: int
    rejected_qty: int
    stocked_qty: int
    discrepancy_type: str
    rejection_reason: Optional[str] = None
    discrepancy_notes: Optional[str] = None
    issue_status: str
    resolution: Optional[str] = None
    resolution_notes: Optional[str] = None
    resolved_by_user_id: Optional[str] = None
    resolved_at: Optional[datetime] = None


class InboundOut(BaseModel):
    id: str
    grn_number: str
    purchase_request_id: Optional[str] = None
    vendor_id: str
    warehouse_id: Optional[str] = None
    receive_date: Optional[date] = None
    status: str
    notes: Optional[str] = None
    created_by_user_id: str
    verified_by_user_id: Optional[str] = None
    verified_at: Optional[datetime] = None
    verification_notes: Optional[str] = None
    completed_at: Optional[datetime] = None
    items: list[InboundItemOut]
    created_at: datetime
    updated_at: datetime


class InboundListOut(BaseModel):
    items: list[InboundOut]
    pagination: PaginationMeta


class InboundTransitionOut(BaseModel):
    inbound: InboundOut
    ledger_entries: list[LedgerEntryOut]


class InboundIssueOut(BaseModel):
    inbound_id: str
    grn_number: str
    line_id: str
    item_id: str
    discrepancy_type: str
    quantity: int
    issue_status: str
    resolution: Optional[str] = None


class InboundIssueListOut(BaseModel):
    items: list[InboundIssueOut]
