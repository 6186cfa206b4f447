from collections import defaultdict
from collections.abc import Sequence
from datetime import date
from decimal import Decimal

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from stockflow.core.errors import InsufficientStock, QuantityOutOfRange, ValidationError
from stockflow.core.id_utils import generate_shortuuid
from stockflow.core.money import ZERO_MONEY, line_total, to_money
from stockflow.core.security_current import Actor
from stockflow.models.inbound import Inbound
from stockflow.models.inventory import LedgerEntry, StockMovementKind
from stockflow.models.returns import ReturnReason, ReturnStatus, VendorReturn, VendorReturnItem
from stockflow.schemas.returns import ReturnLineIn
from stockflow.services.approval_gate import ApprovalGate, not_creator, requires_permission
from stockflow.services.ledger_service import append_movement, lock_item
from stockflow.services.numbering_service import next_document_code
from stockflow.services.workflow import (
    ensure_transition_allowed,
    get_or_404,
    lock_or_404,
    record_transition,
    require_item,
    require_vendor,
    require_warehouse,
    utcnow,
)

DOCUMENT_TYPE = "vendor_return"
LEDGER_REFERENCE = "RETURN"

RETURN_TRANSITIONS: dict[str, set[str]] = {
    ReturnStatus.DRAFT.value: {ReturnStatus.PENDING_APPROVAL.value},
    ReturnStatus.PENDING_APPROVAL.value: {ReturnStatus.APPROVED.value, ReturnStatus.REJECTED.value},
    ReturnStatus.APPROVED.value: {ReturnStatus.SENT_TO_VENDOR.value},
    ReturnStatus.SENT_TO_VENDOR.value: {ReturnStatus.COMPLETED.value},
    # Vendor declined the goods after completion; they come back as a new movement.
    ReturnStatus.COMPLETED.value: {ReturnStatus.ITEMS_KEPT.value},
    ReturnStatus.ITEMS_KEPT.value: set(),
    ReturnStatus.REJECTED.value: set(),
}

RETURN_GATE = ApprovalGate(
    DOCUMENT_TYPE,
    {
        ReturnStatus.PENDING_APPROVAL: (requires_permission("return.create"),),
        ReturnStatus.APPROVED: (requires_permission("return.approve"), not_creator),
        ReturnStatus.REJECTED: (requires_permission("return.approve"), not_creator),
        ReturnStatus.SENT_TO_VENDOR: (requires_permission("return.ship"),),
        ReturnStatus.COMPLETED: (requires_permission("return.complete"),),
        ReturnStatus.ITEMS_KEPT: (requires_permission("return.complete"),),
    },
)

RETURN_REASONS = {member.value for member in ReturnReason}


def return_lines(db: Session, vendor_return_id: str) -> list[VendorReturnItem]:
    return db.execute(
        select(VendorReturnItem)
        .where(VendorReturnItem.vendor_return_id == vendor_return_id)
        .order_by(VendorReturnItem.id.asc())
    ).scalars().all()


def recompute_total(lines: Sequence[VendorReturnItem]) -> Decimal:
    total = ZERO_MONEY
    for line in lines:
        total += line_total(line.quantity, line.unit_price)
    return to_money(total)


def _transition(db: Session, *, actor: Actor, vendor_return: VendorReturn, to_status: str, action: str, metadata=None) -> str:
    from_status = vendor_return.status
    RETURN_GATE.ensure(actor, vendor_return, from_status, to_status)
    ensure_transition_allowed(DOCUMENT_TYPE, RETURN_TRANSITIONS, from_status, to_status)
    vendor_return.status = to_status
    record_transition(
        db,
        actor=actor,
        document_type=DOCUMENT_TYPE,
        document_id=vendor_return.id,
        action=action,
        from_status=from_status,
        to_status=to_status,
        metadata=metadata,
    )
    return from_status


def create_return(
    db: Session,
    *,
    actor: Actor,
    vendor_id: str,
    reason: str,
    lines: Sequence[ReturnLineIn],
    warehouse_id: str | None = None,
    inbound_id: str | None = None,
    return_date: date | None = None,
    notes: str | None = None,
    submit: bool = False,
) -> VendorReturn:
    require_vendor(db, vendor_id)
    require_warehouse(db, warehouse_id)
    normalized_reason = (reason or "").strip().upper()
    if normalized_reason not in RETURN_REASONS:
        raise ValidationError(
            "Unknown return reason",
            details=[{"reason": reason, "allowed": sorted(RETURN_REASONS)}],
        )
    if inbound_id is not None:
        inbound = get_or_404(db, Inbound, inbound_id, "Inbound")
        if inbound.vendor_id != vendor_id:
            raise ValidationError(
                "Inbound was received from a different vendor",
                details=[{"inbound_id": inbound_id, "vendor_id": inbound.vendor_id}],
            )
    if not lines:
        raise ValidationError("A return needs at least one line")
    for line in lines:
        require_item(db, line.item_id)
        if line.quantity <= 0:
            raise QuantityOutOfRange(
                "Return quantity must be greater than zero",
                details=[{"item_id": line.item_id, "quantity": line.quantity}],
            )
        if line.unit_price < 0:
            raise ValidationError(
                "Unit price cannot be negative",
                details=[{"item_id": line.item_id, "unit_price": str(line.unit_price)}],
            )

    vendor_return = VendorReturn(
        id=generate_shortuuid(),
        return_code=next_document_code(db, VendorReturn.return_code, "RET"),
        vendor_id=vendor_id,
        warehouse_id=warehouse_id,
        inbound_id=inbound_id,
        return_date=return_date or utcnow().date(),
        reason=normalized_reason,
        status=ReturnStatus.DRAFT.value,
        notes=notes,
        created_by_user_id=actor.id,
    )
    db.add(vendor_return)
    created: list[VendorReturnItem] = []
    for line in lines:
        row = VendorReturnItem(
            id=generate_shortuuid(),
            vendor_return_id=vendor_return.id,
            item_id=line.item_id,
            quantity=line.quantity,
            unit_price=to_money(line.unit_price),
            total_price=line_total(line.quantity, line.unit_price),
            notes=line.notes,
        )
        db.add(row)
        created.append(row)
    vendor_return.total_amount = recompute_total(created)
    db.flush()
    record_transition(
        db,
        actor=actor,
        document_type=DOCUMENT_TYPE,
        document_id=vendor_return.id,
        action="create",
        from_status=None,
        to_status=vendor_return.status,
        metadata={"return_code": vendor_return.return_code, "total_amount": str(vendor_return.total_amount)},
    )
    if submit:
        _transition(
            db,
            actor=actor,
            vendor_return=vendor_return,
            to_status=ReturnStatus.PENDING_APPROVAL.value,
            action="submit",
        )
        vendor_return.submitted_at = utcnow()
    return vendor_return


def submit_return(db: Session, *, actor: Actor, vendor_return_id: str) -> VendorReturn:
    vendor_return = lock_or_404(db, VendorReturn, vendor_return_id, "Return")
    _transition(db, actor=actor, vendor_return=vendor_return, to_status=ReturnStatus.PENDING_APPROVAL.value, action="submit")
    vendor_return.submitted_at = utcnow()
    return vendor_return


def approve_return(db: Session, *, actor: Actor, vendor_return_id: str) -> VendorReturn:
    vendor_return = lock_or_404(db, VendorReturn, vendor_return_id, "Return")
    _transition(db, actor=actor, vendor_return=vendor_return, to_status=ReturnStatus.APPROVED.value, action="approve")
    vendor_return.approved_by_user_id = actor.id
    vendor_return.approved_at = utcnow()
    return vendor_return


def reject_return(db: Session, *, actor: Actor, vendor_return_id: str, reason: str) -> VendorReturn:
    vendor_return = lock_or_404(db, VendorReturn, vendor_return_id, "Return")
    _transition(
        db,
        actor=actor,
        vendor_return=vendor_return,
        to_status=ReturnStatus.REJECTED.value,
        action="reject",
        metadata={"reason": reason},
    )
    vendor_return.rejected_by_user_id = actor.id
    vendor_return.rejected_at = utcnow()
    vendor_return.rejection_reason = reason
    return vendor_return


def ship_return(
    db: Session,
    *,
    actor: Actor,
    vendor_return_id: str,
    tracking_number: str | None = None,
    notes: str | None = None,
) -> VendorReturn:
    vendor_return = lock_or_404(db, VendorReturn, vendor_return_id, "Return")
    _transition(
        db,
        actor=actor,
        vendor_return=vendor_return,
        to_status=ReturnStatus.SENT_TO_VENDOR.value,
        action="ship",
        metadata={"tracking_number": tracking_number},
    )
    vendor_return.shipped_by_user_id = actor.id
    vendor_return.shipped_at = utcnow()
    vendor_return.tracking_number = tracking_number
    if notes:
        vendor_return.notes = notes
    return vendor_return


def complete_return(db: Session, *, actor: Actor, vendor_return_id: str) -> tuple[VendorReturn, list[LedgerEntry]]:
    """Goods have left the warehouse: one RETURN_OUT entry per line, all or nothing."""
    vendor_return = lock_or_404(db, VendorReturn, vendor_return_id, "Return")
    from_status = vendor_return.status
    RETURN_GATE.ensure(actor, vendor_return, from_status, ReturnStatus.COMPLETED.value)
    ensure_transition_allowed(DOCUMENT_TYPE, RETURN_TRANSITIONS, from_status, ReturnStatus.COMPLETED.value)

    lines = return_lines(db, vendor_return.id)
    needed_by_item: dict[str, int] = defaultdict(int)
    for line in lines:
        needed_by_item[line.item_id] += line.quantity
    for item_id in sorted(needed_by_item):
        item = lock_item(db, item_id)
        if needed_by_item[item_id] > item.current_stock:
            raise InsufficientStock(item_id=item_id, available=item.current_stock, requested=needed_by_item[item_id])

    entries: list[LedgerEntry] = []
    for line in lines:
        entry = append_movement(
            db,
            item_id=line.item_id,
            warehouse_id=vendor_return.warehouse_id,
            kind=StockMovementKind.RETURN_OUT,
            reference_type=LEDGER_REFERENCE,
            reference_id=vendor_return.id,
            reference_code=vendor_return.return_code,
            delta=-line.quantity,
        )
        if entry is not None:
            entries.append(entry)

    vendor_return.status = ReturnStatus.COMPLETED.value
    vendor_return.completed_by_user_id = actor.id
    vendor_return.completed_at = utcnow()
    record_transition(
        db,
        actor=actor,
        document_type=DOCUMENT_TYPE,
        document_id=vendor_return.id,
        action="complete",
        from_status=from_status,
        to_status=vendor_return.status,
        metadata={"ledger_entries": len(entries)},
    )
    return vendor_return, entries


def keep_items(
    db: Session,
    *,
    actor: Actor,
    vendor_return_id: str,
    notes: str | None = None,
) -> tuple[VendorReturn, list[LedgerEntry]]:
    """
    Record a vendor reversal after completion. The returned goods are booked
    back in with RETURN_IN entries; the earlier RETURN_OUT entries stay on
    the stock card.
    """
    vendor_return = lock_or_404(db, VendorReturn, vendor_return_id, "Return")
    _transition(
        db,
        actor=actor,
        vendor_return=vendor_return,
        to_status=ReturnStatus.ITEMS_KEPT.value,
        action="keep_items",
    )

    entries: list[LedgerEntry] = []
    for line in return_lines(db, vendor_return.id):
        entry = append_movement(
            db,
            item_id=line.item_id,
            warehouse_id=vendor_return.warehouse_id,
            kind=StockMovementKind.RETURN_IN,
            reference_type=LEDGER_REFERENCE,
            reference_id=vendor_return.id,
            reference_code=vendor_return.return_code,
            delta=line.quantity,
            note=notes,
        )
        if entry is not None:
            entries.append(entry)

    vendor_return.kept_by_user_id = actor.id
    vendor_return.kept_at = utcnow()
    if notes:
        vendor_return.notes = notes
    return vendor_return, entries


def get_return(db: Session, vendor_return_id: str) -> VendorReturn:
    return get_or_404(db, VendorReturn, vendor_return_id, "Return")


def list_returns(
    db: Session,
    *,
    statuses: Sequence[str] | None = None,
    vendor_id: str | None = None,
    search: str | None = None,
    limit: int,
    offset: int,
) -> tuple[list[VendorReturn], int]:
    filters = []
    if statuses:
        filters.append(VendorReturn.status.in_(list(statuses)))
    if vendor_id:
        filters.append(VendorReturn.vendor_id == vendor_id)
    if search and search.strip():
        pattern = f"%{search.strip()}%"
        filters.append(or_(VendorReturn.return_code.ilike(pattern), VendorReturn.tracking_number.ilike(pattern)))
    total = db.execute(select(func.count(VendorReturn.id)).where(*filters)).scalar_one()
    rows = db.execute(
        select(VendorReturn)
        .where(*filters)
        .order_by(VendorReturn.created_at.desc(), VendorReturn.return_code.desc())
        .offset(offset)
        .limit(limit)
    ).scalars().all()
    return rows, int(total)
