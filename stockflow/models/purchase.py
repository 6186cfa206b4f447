import enum
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from stockflow.db.base import Base


class PurchaseRequestStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    PENDING_MANAGER_APPROVAL = "PENDING_MANAGER_APPROVAL"
    PENDING_PURCHASING_APPROVAL = "PENDING_PURCHASING_APPROVAL"
    CONFIRMED = "CONFIRMED"
    WAITING_PAYMENT = "WAITING_PAYMENT"
    PAYMENT_RELEASED = "PAYMENT_RELEASED"
    PO_ISSUED = "PO_ISSUED"
    REJECTED = "REJECTED"


class PurchaseRequest(Base):
    __tablename__ = "purchase_requests"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    pr_number: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    vendor_id: Mapped[str] = mapped_column(String(36), ForeignKey("vendors.id"), nullable=False, index=True)
    warehouse_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("warehouses.id"), nullable=True)
    request_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String(40), nullable=False, default=PurchaseRequestStatus.DRAFT.value)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    justification_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Point-in-time copy of sum(quantity * unit_price); recomputed on every line mutation.
    total_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=Decimal("0.00"))

    created_by_user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    submitted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    manager_decided_by_user_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("users.id"), nullable=True)
    manager_decided_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    manager_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    purchasing_decided_by_user_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("users.id"), nullable=True)
    purchasing_decided_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    purchasing_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    requires_payment: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="0")

    payment_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 2), nullable=True)
    payment_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    payment_released_by_user_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("users.id"), nullable=True)
    payment_released_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    finance_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    po_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True, unique=True)
    po_issued_by_user_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("users.id"), nullable=True)
    po_issued_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    shipping_tracking_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    estimated_shipping_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        Index("ix_purchase_requests_status_created_at", "status", "created_at"),
    )


class PurchaseRequestItem(Base):
    __tablename__ = "purchase_request_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    purchase_request_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("purchase_requests.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    item_id: Mapped[str] = mapped_column(String(36), ForeignKey("items.id"), nullable=False, index=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    total_price: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
