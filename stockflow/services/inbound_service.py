"""
Inbound receipt (GRN) verification.

Verification is one bulk transition over every line. Only accepted quantity
enters stock. Each non-clean line opens an issue that is resolved on its own;
resolutions that move stock do it with new ledger entries.
"""
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from stockflow.core.errors import InvalidStateTransition, QuantityOutOfRange, ValidationError
from stockflow.core.id_utils import generate_shortuuid
from stockflow.core.security_current import Actor
from stockflow.models.inbound import (
    DiscrepancyResolution,
    DiscrepancyType,
    Inbound,
    InboundItem,
    InboundStatus,
    IssueStatus,
)
from stockflow.models.inventory import LedgerEntry, StockMovementKind
from stockflow.schemas.inbound import InboundLineVerifyIn
from stockflow.services.approval_gate import ApprovalGate, requires_permission
from stockflow.services.ledger_service import append_movement
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

DOCUMENT_TYPE = "inbound"
LEDGER_REFERENCE = "INBOUND"

INBOUND_TRANSITIONS: dict[str, set[str]] = {
    InboundStatus.PENDING_VERIFICATION.value: {InboundStatus.COMPLETED.value, InboundStatus.PARTIAL.value},
    InboundStatus.PARTIAL.value: {InboundStatus.COMPLETED.value},
    InboundStatus.COMPLETED.value: set(),
}

INBOUND_GATE = ApprovalGate(
    DOCUMENT_TYPE,
    {
        (InboundStatus.PENDING_VERIFICATION.value, InboundStatus.COMPLETED.value): (
            requires_permission("inbound.verify"),
        ),
        (InboundStatus.PENDING_VERIFICATION.value, InboundStatus.PARTIAL.value): (
            requires_permission("inbound.verify"),
        ),
        (InboundStatus.PARTIAL.value, InboundStatus.COMPLETED.value): (
            requires_permission("inbound.resolve"),
        ),
        InboundStatus.COMPLETED.value: (requires_permission("inbound.verify"),),
        InboundStatus.PARTIAL.value: (requires_permission("inbound.verify"),),
    },
)

REJECTION_REASONS = {DiscrepancyType.WRONG_ITEM.value, DiscrepancyType.DAMAGED.value}

ALLOWED_RESOLUTIONS: dict[str, set[str]] = {
    DiscrepancyType.SHORTAGE.value: {
        DiscrepancyResolution.WAIT_REMAINING.value,
        DiscrepancyResolution.CLOSE_SHORT.value,
    },
    DiscrepancyType.OVERAGE.value: {
        DiscrepancyResolution.KEEP_EXCESS.value,
        DiscrepancyResolution.RETURN_TO_VENDOR.value,
    },
    DiscrepancyType.DAMAGED.value: {
        DiscrepancyResolution.RETURN_TO_VENDOR.value,
        DiscrepancyResolution.ACCEPT_AS_IS.value,
    },
    DiscrepancyType.WRONG_ITEM.value: {
        DiscrepancyResolution.RETURN_TO_VENDOR.value,
        DiscrepancyResolution.ACCEPT_AS_IS.value,
    },
}


@dataclass(frozen=True)
class InboundIssue:
    inbound: Inbound
    line: InboundItem
    quantity: int


def inbound_lines(db: Session, inbound_id: str) -> list[InboundItem]:
    return db.execute(
        select(InboundItem).where(InboundItem.inbound_id == inbound_id).order_by(InboundItem.id.asc())
    ).scalars().all()


def classify_discrepancy(
    *, expected_qty: int, received_qty: int, rejected_qty: int, rejection_reason: str | None
) -> str:
    if received_qty < expected_qty:
        return DiscrepancyType.SHORTAGE.value
    if received_qty > expected_qty:
        return DiscrepancyType.OVERAGE.value
    if rejected_qty > 0:
        return rejection_reason or DiscrepancyType.DAMAGED.value
    return DiscrepancyType.NONE.value


def issue_quantity(line: InboundItem) -> int:
    if line.discrepancy_type == DiscrepancyType.SHORTAGE.value:
        return line.expected_qty - line.received_qty
    if line.discrepancy_type == DiscrepancyType.OVERAGE.value:
        return line.received_qty - line.expected_qty
    return line.rejected_qty


def create_inbound(
    db: Session,
    *,
    actor: Actor,
    vendor_id: str,
    lines: Sequence[tuple[str, int]],
    warehouse_id: str | None = None,
    purchase_request_id: str | None = None,
    notes: str | None = None,
) -> Inbound:
    """Create a GRN awaiting verification. ``lines`` are ``(item_id, expected_qty)`` pairs."""
    require_vendor(db, vendor_id)
    require_warehouse(db, warehouse_id)
    if not lines:
        raise ValidationError("An inbound receipt needs at least one line")
    for item_id, expected_qty in lines:
        require_item(db, item_id)
        if expected_qty <= 0:
            raise QuantityOutOfRange(
                "Expected quantity must be greater than zero",
                details=[{"item_id": item_id, "expected_qty": expected_qty}],
            )

    inbound = Inbound(
        id=generate_shortuuid(),
        grn_number=next_document_code(db, Inbound.grn_number, "GRN"),
        purchase_request_id=purchase_request_id,
        vendor_id=vendor_id,
        warehouse_id=warehouse_id,
        status=InboundStatus.PENDING_VERIFICATION.value,
        notes=notes,
        created_by_user_id=actor.id,
    )
    db.add(inbound)
    for item_id, expected_qty in lines:
        db.add(
            InboundItem(
                id=generate_shortuuid(),
                inbound_id=inbound.id,
                item_id=item_id,
                expected_qty=expected_qty,
            )
        )
    db.flush()
    record_transition(
        db,
        actor=actor,
        document_type=DOCUMENT_TYPE,
        document_id=inbound.id,
        action="create",
        from_status=None,
        to_status=inbound.status,
        metadata={"grn_number": inbound.grn_number, "purchase_request_id": purchase_request_id},
    )
    return inbound


def _validate_verify_lines(
    lines: list[InboundItem], payload_lines: Sequence[InboundLineVerifyIn]
) -> dict[str, InboundLineVerifyIn]:
    by_id: dict[str, InboundLineVerifyIn] = {}
    for entry in payload_lines:
        if entry.line_id in by_id:
            raise ValidationError("Duplicate line in verification", details=[{"line_id": entry.line_id}])
        by_id[entry.line_id] = entry

    known_ids = {line.id for line in lines}
    unknown = sorted(set(by_id) - known_ids)
    if unknown:
        raise ValidationError(
            "Verification references lines outside this receipt",
            details=[{"line_id": line_id} for line_id in unknown],
        )
    missing = sorted(known_ids - set(by_id))
    if missing:
        raise ValidationError(
            "Every receipt line must be verified",
            details=[{"line_id": line_id} for line_id in missing],
        )

    for entry in payload_lines:
        quantities = {
            "received_qty": entry.received_qty,
            "accepted_qty": entry.accepted_qty,
            "rejected_qty": entry.rejected_qty,
        }
        if any(value < 0 for value in quantities.values()):
            raise QuantityOutOfRange(
                "Received, accepted and rejected quantities cannot be negative",
                details=[{"line_id": entry.line_id, **quantities}],
            )
        if entry.accepted_qty + entry.rejected_qty != entry.received_qty:
            raise QuantityOutOfRange(
                "accepted_qty + rejected_qty must equal received_qty",
                details=[{"line_id": entry.line_id, **quantities}],
            )
        if entry.rejected_qty > 0 and entry.rejection_reason not in REJECTION_REASONS:
            raise ValidationError(
                "A rejection reason (WRONG_ITEM or DAMAGED) is required when quantity is rejected",
                details=[{"line_id": entry.line_id, "rejection_reason": entry.rejection_reason}],
            )
    return by_id


def verify_inbound(
    db: Session,
    *,
    actor: Actor,
    inbound_id: str,
    payload_lines: Sequence[InboundLineVerifyIn],
    receive_date: date | None = None,
    notes: str | None = None,
) -> tuple[Inbound, list[LedgerEntry]]:
    inbound = lock_or_404(db, Inbound, inbound_id, "Inbound receipt")
    from_status = inbound.status
    INBOUND_GATE.ensure(actor, inbound, from_status, InboundStatus.COMPLETED.value)
    if from_status != InboundStatus.PENDING_VERIFICATION.value:
        raise InvalidStateTransition(DOCUMENT_TYPE, from_status, InboundStatus.COMPLETED.value)

    lines = inbound_lines(db, inbound.id)
    by_id = _validate_verify_lines(lines, payload_lines)

    has_discrepancy = False
    for line in lines:
        entry = by_id[line.id]
        line.received_qty = entry.received_qty
        line.accepted_qty = entry.accepted_qty
        line.rejected_qty = entry.rejected_qty
        line.rejection_reason = entry.rejection_reason if entry.rejected_qty > 0 else None
        line.discrepancy_notes = entry.notes
        line.discrepancy_type = classify_discrepancy(
            expected_qty=line.expected_qty,
            received_qty=entry.received_qty,
            rejected_qty=entry.rejected_qty,
            rejection_reason=line.rejection_reason,
        )
        if line.discrepancy_type == DiscrepancyType.NONE.value:
            line.issue_status = IssueStatus.NONE.value
        else:
            line.issue_status = IssueStatus.OPEN.value
            has_discrepancy = True

    to_status = InboundStatus.PARTIAL.value if has_discrepancy else InboundStatus.COMPLETED.value
    INBOUND_GATE.ensure(actor, inbound, from_status, to_status)
    ensure_transition_allowed(DOCUMENT_TYPE, INBOUND_TRANSITIONS, from_status, to_status)

    entries: list[LedgerEntry] = []
    for line in lines:
        entry = append_movement(
            db,
            item_id=line.item_id,
            warehouse_id=inbound.warehouse_id,
            kind=StockMovementKind.INBOUND,
            reference_type=LEDGER_REFERENCE,
            reference_id=inbound.id,
            reference_code=inbound.grn_number,
            delta=line.accepted_qty,
            note="Goods receipt verified",
        )
        if entry is not None:
            line.stocked_qty = line.accepted_qty
            entries.append(entry)

    now = utcnow()
    inbound.status = to_status
    inbound.receive_date = receive_date or now.date()
    inbound.verified_by_user_id = actor.id
    inbound.verified_at = now
    inbound.verification_notes = notes
    if to_status == InboundStatus.COMPLETED.value:
        inbound.completed_at = now

    record_transition(
        db,
        actor=actor,
        document_type=DOCUMENT_TYPE,
        document_id=inbound.id,
        action="verify",
        from_status=from_status,
        to_status=to_status,
        metadata={
            "open_issues": sum(1 for line in lines if line.issue_status == IssueStatus.OPEN.value),
            "accepted_total": sum(line.accepted_qty for line in lines),
        },
    )
    return inbound, entries


def _complete_if_resolved(db: Session, *, actor: Actor, inbound: Inbound) -> None:
    if inbound.status != InboundStatus.PARTIAL.value:
        return
    open_count = db.execute(
        select(func.count(InboundItem.id)).where(
            InboundItem.inbound_id == inbound.id,
            InboundItem.issue_status == IssueStatus.OPEN.value,
        )
    ).scalar_one()
    if open_count:
        return

    from_status = inbound.status
    INBOUND_GATE.ensure(actor, inbound, from_status, InboundStatus.COMPLETED.value)
    ensure_transition_allowed(DOCUMENT_TYPE, INBOUND_TRANSITIONS, from_status, InboundStatus.COMPLETED.value)
    inbound.status = InboundStatus.COMPLETED.value
    inbound.completed_at = utcnow()
    record_transition(
        db,
        actor=actor,
        document_type=DOCUMENT_TYPE,
        document_id=inbound.id,
        action="complete",
        from_status=from_status,
        to_status=inbound.status,
    )


def _open_issue_line(db: Session, inbound: Inbound, line_id: str) -> InboundItem:
    line = db.execute(
        select(InboundItem).where(InboundItem.id == line_id, InboundItem.inbound_id == inbound.id)
    ).scalar_one_or_none()
    if not line:
        raise ValidationError("Line does not belong to this receipt", details=[{"line_id": line_id}])
    if line.issue_status != IssueStatus.OPEN.value:
        raise InvalidStateTransition("inbound_issue", line.issue_status, IssueStatus.RESOLVED.value)
    return line


def _accept_rejected(db: Session, *, inbound: Inbound, line: InboundItem, note: str) -> LedgerEntry | None:
    quantity = line.rejected_qty
    entry = append_movement(
        db,
        item_id=line.item_id,
        warehouse_id=inbound.warehouse_id,
        kind=StockMovementKind.INBOUND,
        reference_type=LEDGER_REFERENCE,
        reference_id=inbound.id,
        reference_code=inbound.grn_number,
        delta=quantity,
        note=note,
    )
    line.accepted_qty += quantity
    line.rejected_qty = 0
    line.stocked_qty += quantity
    return entry


def resolve_issue(
    db: Session,
    *,
    actor: Actor,
    inbound_id: str,
    line_id: str,
    resolution: str,
    notes: str | None = None,
) -> tuple[Inbound, list[LedgerEntry]]:
    inbound = lock_or_404(db, Inbound, inbound_id, "Inbound receipt")
    line = _open_issue_line(db, inbound, line_id)

    normalized = (resolution or "").strip().upper()
    allowed = ALLOWED_RESOLUTIONS.get(line.discrepancy_type, set())
    if normalized not in allowed:
        raise ValidationError(
            f"Resolution '{resolution}' is not valid for a {line.discrepancy_type} issue",
            details=[{"line_id": line.id, "allowed": sorted(allowed)}],
        )

    entries: list[LedgerEntry] = []
    if normalized == DiscrepancyResolution.WAIT_REMAINING.value:
        # Stays open until the remainder is received or the line is closed short.
        line.resolution = normalized
        line.resolution_notes = notes
    else:
        if normalized in {DiscrepancyResolution.KEEP_EXCESS.value, DiscrepancyResolution.ACCEPT_AS_IS.value}:
            if line.rejected_qty > 0:
                entry = _accept_rejected(db, inbound=inbound, line=line, note=f"Issue resolved: {normalized}")
                if entry is not None:
                    entries.append(entry)
        elif (
            normalized == DiscrepancyResolution.RETURN_TO_VENDOR.value
            and line.discrepancy_type == DiscrepancyType.OVERAGE.value
        ):
            excess_in_stock = min(line.stocked_qty, line.received_qty - line.expected_qty)
            entry = append_movement(
                db,
                item_id=line.item_id,
                warehouse_id=inbound.warehouse_id,
                kind=StockMovementKind.RETURN_OUT,
                reference_type=LEDGER_REFERENCE,
                reference_id=inbound.id,
                reference_code=inbound.grn_number,
                delta=-excess_in_stock,
                note="Excess returned to vendor",
            )
            if entry is not None:
                line.accepted_qty -= excess_in_stock
                line.rejected_qty += excess_in_stock
                line.stocked_qty -= excess_in_stock
                entries.append(entry)

        line.issue_status = IssueStatus.RESOLVED.value
        line.resolution = normalized
        line.resolution_notes = notes
        line.resolved_by_user_id = actor.id
        line.resolved_at = utcnow()

    record_transition(
        db,
        actor=actor,
        document_type="inbound_issue",
        document_id=line.id,
        action="resolve",
        from_status=IssueStatus.OPEN.value,
        to_status=line.issue_status,
        metadata={"inbound_id": inbound.id, "resolution": normalized, "ledger_entries": len(entries)},
    )
    db.flush()
    _complete_if_resolved(db, actor=actor, inbound=inbound)
    return inbound, entries


def receive_remainder(
    db: Session,
    *,
    actor: Actor,
    inbound_id: str,
    line_id: str,
    quantity: int,
    notes: str | None = None,
) -> tuple[Inbound, list[LedgerEntry]]:
    inbound = lock_or_404(db, Inbound, inbound_id, "Inbound receipt")
    line = _open_issue_line(db, inbound, line_id)
    if line.resolution != DiscrepancyResolution.WAIT_REMAINING.value:
        raise ValidationError(
            "Remainder can only be received for a shortage marked WAIT_REMAINING",
            details=[{"line_id": line.id, "resolution": line.resolution}],
        )
    outstanding = line.expected_qty - line.received_qty
    if quantity <= 0 or quantity > outstanding:
        raise QuantityOutOfRange(
            f"Remainder quantity must be between 1 and {outstanding}",
            details=[{"line_id": line.id, "quantity": quantity, "outstanding": outstanding}],
        )

    entry = append_movement(
        db,
        item_id=line.item_id,
        warehouse_id=inbound.warehouse_id,
        kind=StockMovementKind.INBOUND,
        reference_type=LEDGER_REFERENCE,
        reference_id=inbound.id,
        reference_code=inbound.grn_number,
        delta=quantity,
        note=notes or "Shortage remainder received",
    )
    line.received_qty += quantity
    line.accepted_qty += quantity
    line.stocked_qty += quantity
    if line.received_qty == line.expected_qty:
        line.issue_status = IssueStatus.RESOLVED.value
        line.resolved_by_user_id = actor.id
        line.resolved_at = utcnow()

    record_transition(
        db,
        actor=actor,
        document_type="inbound_issue",
        document_id=line.id,
        action="receive_remainder",
        from_status=IssueStatus.OPEN.value,
        to_status=line.issue_status,
        metadata={"inbound_id": inbound.id, "quantity": quantity},
    )
    db.flush()
    _complete_if_resolved(db, actor=actor, inbound=inbound)
    return inbound, [entry] if entry is not None else []


def list_open_issues(db: Session, *, inbound_id: str | None = None) -> list[InboundIssue]:
    q = (
        select(Inbound, InboundItem)
        .join(InboundItem, InboundItem.inbound_id == Inbound.id)
        .where(InboundItem.issue_status == IssueStatus.OPEN.value)
    )
    if inbound_id:
        q = q.where(Inbound.id == inbound_id)
    rows = db.execute(q.order_by(Inbound.created_at.asc(), InboundItem.id.asc())).all()
    return [InboundIssue(inbound=inbound, line=line, quantity=issue_quantity(line)) for inbound, line in rows]


def get_inbound(db: Session, inbound_id: str) -> Inbound:
    return get_or_404(db, Inbound, inbound_id, "Inbound receipt")


def list_inbounds(
    db: Session,
    *,
    statuses: Sequence[str] | None = None,
    vendor_id: str | None = None,
    purchase_request_id: str | None = None,
    limit: int,
    offset: int,
) -> tuple[list[Inbound], int]:
    filters = []
    if statuses:
        filters.append(Inbound.status.in_(list(statuses)))
    if vendor_id:
        filters.append(Inbound.vendor_id == vendor_id)
    if purchase_request_id:
        filters.append(Inbound.purchase_request_id == purchase_request_id)
    total = db.execute(select(func.count(Inbound.id)).where(*filters)).scalar_one()
    rows = db.execute(
        select(Inbound)
        .where(*filters)
        .order_by(Inbound.created_at.desc(), Inbound.grn_number.desc())
        .offset(offset)
        .limit(limit)
    ).scalars().all()
    return rows, int(total)
