import enum
from datetime import date, datetime
from typing import Optional

from sqlalchemy import Date, DateTime, ForeignKey, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from stockflow.db.base import Base


class InboundStatus(str, enum.Enum):
    PENDING_VERIFICATION = "PENDING_VERIFICATION"
    PARTIAL = "PARTIAL"
    COMPLETED = "COMPLETED"


class DiscrepancyType(str, enum.Enum):
    NONE = "NONE"
    SHORTAGE = "SHORTAGE"
    OVERAGE = "OVERAGE"
    WRONG_ITEM = "WRONG_ITEM"
    DAMAGED = "DAMAGED"


class IssueStatus(str, enum.Enum):
    NONE = "NONE"
    OPEN = "OPEN"
    RESOLVED = "RESOLVED"


class DiscrepancyResolution(str, enum.Enum):
    WAIT_REMAINING = "WAIT_REMAINING"
    CLOSE_SHORT = "CLOSE_SHORT"
    KEEP_EXCESS = "KEEP_EXCESS"
    RETURN_TO_VENDOR = "RETURN_TO_VENDOR"
    ACCEPT_AS_IS = "ACCEPT_AS_IS"


class Inbound(Base):
    __tablename__ = "inbounds"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    grn_number: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    purchase_request_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("purchase_requests.id"), nullable=True, index=True
    )
    vendor_id: Mapped[str] = mapped_column(String(36), ForeignKey("vendors.id"), nullable=False, index=True)
    warehouse_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("warehouses.id"), nullable=True)
    receive_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    status: Mapped[str] = mapped_column(
        String(30), nullable=False, default=InboundStatus.PENDING_VERIFICATION.value
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_by_user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False)
    verified_by_user_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("users.id"), nullable=True)
    verified_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    verification_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        Index("ix_inbounds_status_created_at", "status", "created_at"),
    )


class InboundItem(Base):
    __tablename__ = "inbound_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    inbound_id: Mapped[str] = mapped_column(String(36), ForeignKey("inbounds.id"), nullable=False, index=True)
    item_id: Mapped[str] = mapped_column(String(36), ForeignKey("items.id"), nullable=False, index=True)

    expected_qty: Mapped[int] = mapped_column(Integer, nullable=False)
    received_qty: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    accepted_qty: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    rejected_qty: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    # Cumulative quantity posted to the stock card for this line.
    stocked_qty: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

    discrepancy_type: Mapped[str] = mapped_column(String(20), nullable=False, default=DiscrepancyType.NONE.value)
    rejection_reason: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)  # WRONG_ITEM / DAMAGED
    discrepancy_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    issue_status: Mapped[str] = mapped_column(String(20), nullable=False, default=IssueStatus.NONE.value)
    resolution: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    resolution_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    resolved_by_user_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("users.id"), nullable=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    notes: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    __table_args__ = (
        Index("ix_inbound_items_issue_status", "issue_status"),
    )
