import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from stockflow.db.base import Base


class AdjustmentStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class AdjustmentType(str, enum.Enum):
    OPNAME_RESULT = "OPNAME_RESULT"
    MANUAL_WRITEOFF = "MANUAL_WRITEOFF"
    DAMAGED = "DAMAGED"
    EXPIRED = "EXPIRED"
    OTHER = "OTHER"


class AdjustmentSource(str, enum.Enum):
    MANUAL = "MANUAL"
    OPNAME = "OPNAME"


class AdjustmentMethod(str, enum.Enum):
    REAL_QTY = "REAL_QTY"
    DELTA_QTY = "DELTA_QTY"


class DeltaDirection(str, enum.Enum):
    INCREASE = "INCREASE"
    DECREASE = "DECREASE"


class StockAdjustment(Base):
    __tablename__ = "stock_adjustments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    adjustment_code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    adjustment_type: Mapped[str] = mapped_column(String(30), nullable=False)
    source: Mapped[str] = mapped_column(String(20), nullable=False, default=AdjustmentSource.MANUAL.value)
    stock_opname_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("stock_opnames.id"), nullable=True, index=True
    )
    warehouse_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("warehouses.id"), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=AdjustmentStatus.DRAFT.value)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_by_user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    submitted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    decided_by_user_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("users.id"), nullable=True)
    decided_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    decision_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        Index("ix_stock_adjustments_status_created_at", "status", "created_at"),
    )


class StockAdjustmentItem(Base):
    __tablename__ = "stock_adjustment_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    stock_adjustment_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("stock_adjustments.id"), nullable=False, index=True
    )
    item_id: Mapped[str] = mapped_column(String(36), ForeignKey("items.id"), nullable=False, index=True)
    method: Mapped[str] = mapped_column(String(20), nullable=False)
    delta_direction: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)

    # Point-in-time copy of items.current_stock taken when the adjustment is submitted.
    qty_system: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    qty_input: Mapped[int] = mapped_column(Integer, nullable=False)
    qty_variance: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
