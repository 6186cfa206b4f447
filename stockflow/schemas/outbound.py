from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from stockflow.schemas.common import PaginationMeta
from stockflow.schemas.stock import LedgerEntryOut


class OutboundLineIn(BaseModel):
    item_id: str
    requested_qty: int
    notes: Optional[str] = Field(default=None, max_length=255)


class OutboundCreateIn(BaseModel):
    partner_id: Optional[str] = None
    warehouse_id: Optional[str] = None
    purpose: Optional[str] = Field(default=None, max_length=255)
    notes: Optional[str] = Field(default=None, max_length=2000)
    items: list[OutboundLineIn] = Field(min_length=1)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "partner_id": "ptn_001",
                "purpose": "Production line A",
                "items": [{"item_id": "itm_123", "requested_qty": 30}],
            }
        }
    )


class OutboundReleaseLineIn(BaseModel):
    line_id: str
    released_qty: int


class OutboundReleaseIn(BaseModel):
    # Lines not listed release nothing; omit ``lines`` to release every line in full.
    lines: Optional[list[OutboundReleaseLineIn]] = None
    notes: Optional[str] = Field(default=None, max_length=1000)


class OutboundItemOut(BaseModel):
    id: str
    item_id: str
    requested_qty: int
    released_qty: int
    notes: Optional[str] = None


class OutboundOut(BaseModel):
    id: str
    outbound_code: str
    partner_id: Optional[str] = None
    warehouse_id: Optional[str] = None
    purpose: Optional[str] = None
    notes: Optional[str] = None
    status: str
    created_by_user_id: str
    approved_by_user_id: Optional[str] = None
    approved_at: Optional[datetime] = None
    released_by_user_id: Optional[str] = None
    released_at: Optional[datetime] = None
    rejected_by_user_id: Optional[str] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    items: list[OutboundItemOut]
    created_at: datetime
    updated_at: datetime


class OutboundListOut(BaseModel):
    items: list[OutboundOut]
    pagination: PaginationMeta


class OutboundTransitionOut(BaseModel):
    outbound: OutboundOut
    ledger_entries: list[LedgerEntryOut]
