from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from stockflow.schemas.adjustment import AdjustmentOut
from stockflow.schemas.common import PaginationMeta


class OpnameCreateIn(BaseModel):
    title: str = Field(min_length=3, max_length=255)
    warehouse_id: Optional[str] = None
    scheduled_date: Optional[date] = None
    notes: Optional[str] = Field(default=None, max_length=2000)
    # Defaults to every active item when omitted.
    item_ids: Optional[list[str]] = Field(default=None, min_length=1)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "title": "Q4 full count, main warehouse",
                "scheduled_date": "2026-10-31",
                "item_ids": ["itm_123", "itm_456"],
            }
        }
    )


class SheetCountIn(BaseModel):
    item_id: str
    counted_qty: int
    notes: Optional[str] = Field(default=None, max_length=255)


class SheetCountsIn(BaseModel):
    counts: list[SheetCountIn] = Field(min_length=1)


class SheetSubmitIn(BaseModel):
    counter_name: Optional[str] = Field(default=None, max_length=120)


class SheetCompareIn(BaseModel):
    sheet_a_id: str
    sheet_b_id: str

    @model_validator(mode="after")
    def validate_distinct_sheets(self) -> "SheetCompareIn":
        if self.sheet_a_id == self.sheet_b_id:
            raise ValueError("sheet_a_id and sheet_b_id must be different")
        return self


class OpnameFinalizeIn(BaseModel):
    sheet_id: Optional[str] = None
    create_adjustment: bool = True
    notes: Optional[str] = Field(default=None, max_length=2000)


class OpnameCountOut(BaseModel):
    id: str
    item_id: str
    system_qty: int
    final_qty: Optional[int] = None
    variance: Optional[int] = None
    is_matching: Optional[bool] = None


class OpnameOut(BaseModel):
    id: str
    opname_code: str
    title: str
    warehouse_id: Optional[str] = None
    scheduled_date: Optional[date] = None
    status: str
    notes: Optional[str] = None
    created_by_user_id: str
    matched_sheet_id: Optional[str] = None
    finalized_by_user_id: Optional[str] = None
    finalized_at: Optional[datetime] = None
    adjustment_id: Optional[str] = None
    counts: list[OpnameCountOut]
    created_at: datetime
    updated_at: datetime


class OpnameListOut(BaseModel):
    items: list[OpnameOut]
    pagination: PaginationMeta


class CountingSheetLineOut(BaseModel):
    id: str
    item_id: str
    counted_qty: Optional[int] = None
    notes: Optional[str] = None


class CountingSheetOut(BaseModel):
    id: str
    stock_opname_id: str
    sheet_number: int
    status: str
    recount_round: int
    counter_user_id: Optional[str] = None
    counter_name: Optional[str] = None
    counter_role: Optional[str] = None
    submitted_at: Optional[datetime] = None
    compared_with_sheet_id: Optional[str] = None
    rejection_reason: Optional[str] = None
    counted_lines: int
    total_lines: int
    lines: list[CountingSheetLineOut]


class CountingSheetListOut(BaseModel):
    items: list[CountingSheetOut]


class SheetMismatchOut(BaseModel):
    item_id: str
    sheet_a_qty: Optional[int] = None
    sheet_b_qty: Optional[int] = None


class SheetComparisonOut(BaseModel):
    matched: bool
    mismatches: list[SheetMismatchOut]
    sheet_a: CountingSheetOut
    sheet_b: CountingSheetOut


class VarianceLineOut(BaseModel):
    item_id: str
    system_qty: int
    counted_qty: int
    variance: int


class VarianceOut(BaseModel):
    opname_id: str
    sheet_id: str
    lines: list[VarianceLineOut]
    total_variance_lines: int


class OpnameFinalizeOut(BaseModel):
    opname: OpnameOut
    variances: list[VarianceLineOut]
    adjustment: Optional[AdjustmentOut] = None
