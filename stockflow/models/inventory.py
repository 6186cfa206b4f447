import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from stockflow.db.base import Base


class StockMovementKind(str, enum.Enum):
    INBOUND = "INBOUND"
    OUTBOUND = "OUTBOUND"
    ADJUSTMENT_IN = "ADJUSTMENT_IN"
    ADJUSTMENT_OUT = "ADJUSTMENT_OUT"
    RETURN_OUT = "RETURN_OUT"
    RETURN_IN = "RETURN_IN"


INCREASING_KINDS = frozenset(
    {StockMovementKind.INBOUND, StockMovementKind.ADJUSTMENT_IN, StockMovementKind.RETURN_IN}
)
DECREASING_KINDS = frozenset(
    {StockMovementKind.OUTBOUND, StockMovementKind.ADJUSTMENT_OUT, StockMovementKind.RETURN_OUT}
)


class LedgerEntry(Base):
    """
    Stock card row. One row per stock movement, never updated after insert.
    quantity_after = quantity_before + quantity_change, and for one item the
    rows ordered by ``sequence`` form an unbroken chain starting at zero.
    """
    __tablename__ = "stock_cards"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    item_id: Mapped[str] = mapped_column(String(36), ForeignKey("items.id"), nullable=False, index=True)
    warehouse_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("warehouses.id"), nullable=True)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)

    movement_kind: Mapped[str] = mapped_column(String(20), nullable=False)
    reference_type: Mapped[str] = mapped_column(String(30), nullable=False)  # "INBOUND", "OUTBOUND", "ADJUSTMENT"
    reference_id: Mapped[str] = mapped_column(String(36), nullable=False)
    reference_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)  # e.g. GRN/2026/10/0001

    quantity_before: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity_change: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity_after: Mapped[int] = mapped_column(Integer, nullable=False)
    note: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("item_id", "sequence", name="uq_stock_cards_item_sequence"),
        CheckConstraint("quantity_change <> 0", name="ck_stock_cards_change_non_zero"),
        CheckConstraint("quantity_after = quantity_before + quantity_change", name="ck_stock_cards_arithmetic"),
        CheckConstraint("quantity_after >= 0", name="ck_stock_cards_after_non_negative"),
        Index("ix_stock_cards_reference", "reference_type", "reference_id"),
        Index("ix_stock_cards_item_created_at", "item_id", "created_at"),
    )
