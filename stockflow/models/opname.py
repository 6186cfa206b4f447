import enum
from datetime import date, datetime
from typing import Optional

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from stockflow.db.base import Base


class OpnameStatus(str, enum.Enum):
    SCHEDULED = "SCHEDULED"
    COUNTING_IN_PROGRESS = "COUNTING_IN_PROGRESS"
    COUNTING_COMPLETE = "COUNTING_COMPLETE"
    FINALIZED = "FINALIZED"
    COMPLETED_WITH_ADJUSTMENT = "COMPLETED_WITH_ADJUSTMENT"


class CountingSheetStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    COUNTING = "COUNTING"
    SUBMITTED = "SUBMITTED"
    MATCHED = "MATCHED"
    REJECTED = "REJECTED"


class StockOpname(Base):
    __tablename__ = "stock_opnames"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    opname_code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    warehouse_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("warehouses.id"), nullable=True)
    scheduled_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    status: Mapped[str] = mapped_column(String(30), nullable=False, default=OpnameStatus.SCHEDULED.value)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_by_user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False)
    matched_sheet_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    finalized_by_user_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("users.id"), nullable=True)
    finalized_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    adjustment_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        Index("ix_stock_opnames_status_created_at", "status", "created_at"),
    )


class StockOpnameCount(Base):
    """
    Per-item system quantity captured once when the session is created.
    ``system_qty`` is a point-in-time copy and is never refreshed; ``final_qty``
    and ``variance`` are filled in at finalization.
    """
    __tablename__ = "stock_opname_counts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    stock_opname_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("stock_opnames.id"), nullable=False, index=True
    )
    item_id: Mapped[str] = mapped_column(String(36), ForeignKey("items.id"), nullable=False)
    system_qty: Mapped[int] = mapped_column(Integer, nullable=False)
    final_qty: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    variance: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    is_matching: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)

    __table_args__ = (
        UniqueConstraint("stock_opname_id", "item_id", name="uq_stock_opname_counts_opname_item"),
    )


class CountingSheet(Base):
    __tablename__ = "counting_sheets"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    stock_opname_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("stock_opnames.id"), nullable=False, index=True
    )
    sheet_number: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=CountingSheetStatus.DRAFT.value)
    recount_round: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

    counter_user_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("users.id"), nullable=True)
    counter_name: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    counter_role: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    submitted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    compared_with_sheet_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        UniqueConstraint("stock_opname_id", "sheet_number", name="uq_counting_sheets_opname_number"),
    )


class CountingSheetLine(Base):
    __tablename__ = "counting_sheet_lines"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    counting_sheet_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("counting_sheets.id"), nullable=False, index=True
    )
    item_id: Mapped[str] = mapped_column(String(36), ForeignKey("items.id"), nullable=False)
    counted_qty: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    __table_args__ = (
        UniqueConstraint("counting_sheet_id", "item_id", name="uq_counting_sheet_lines_sheet_item"),
    )
