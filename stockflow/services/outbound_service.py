from collections import defaultdict
from collections.abc import Sequence

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from stockflow.core.errors import InsufficientStock, QuantityOutOfRange, ValidationError
from stockflow.core.id_utils import generate_shortuuid
from stockflow.core.security_current import Actor
from stockflow.models.inventory import LedgerEntry, StockMovementKind
from stockflow.models.outbound import Outbound, OutboundItem, OutboundStatus
from stockflow.schemas.outbound import OutboundLineIn, OutboundReleaseLineIn
from stockflow.services.approval_gate import ApprovalGate, not_approver, not_creator, requires_permission
from stockflow.services.ledger_service import append_movement, lock_item
from stockflow.services.numbering_service import next_document_code
from stockflow.services.workflow import (
    ensure_transition_allowed,
    get_or_404,
    lock_or_404,
    record_transition,
    require_item,
    require_partner,
    require_warehouse,
    utcnow,
)

DOCUMENT_TYPE = "outbound"
LEDGER_REFERENCE = "OUTBOUND"

OUTBOUND_TRANSITIONS: dict[str, set[str]] = {
    OutboundStatus.DRAFT.value: {OutboundStatus.APPROVED.value, OutboundStatus.REJECTED.value},
    OutboundStatus.APPROVED.value: {OutboundStatus.RELEASED.value, OutboundStatus.REJECTED.value},
    # Stock has left; undoing a release is a new reversing movement, not a transition.
    OutboundStatus.RELEASED.value: set(),
    OutboundStatus.REJECTED.value: set(),
}

OUTBOUND_GATE = ApprovalGate(
    DOCUMENT_TYPE,
    {
        OutboundStatus.APPROVED: (requires_permission("outbound.approve"), not_creator),
        OutboundStatus.RELEASED: (requires_permission("outbound.release"), not_creator, not_approver),
        OutboundStatus.REJECTED: (requires_permission("outbound.reject"), not_creator),
    },
)


def outbound_lines(db: Session, outbound_id: str) -> list[OutboundItem]:
    return db.execute(
        select(OutboundItem).where(OutboundItem.outbound_id == outbound_id).order_by(OutboundItem.id.asc())
    ).scalars().all()


def create_outbound(
    db: Session,
    *,
    actor: Actor,
    lines: Sequence[OutboundLineIn],
    partner_id: str | None = None,
    warehouse_id: str | None = None,
    purpose: str | None = None,
    notes: str | None = None,
) -> Outbound:
    require_partner(db, partner_id)
    require_warehouse(db, warehouse_id)
    if not lines:
        raise ValidationError("An outbound needs at least one line")
    for line in lines:
        require_item(db, line.item_id)
        if line.requested_qty <= 0:
            raise QuantityOutOfRange(
                "Requested quantity must be greater than zero",
                details=[{"item_id": line.item_id, "requested_qty": line.requested_qty}],
            )

    outbound = Outbound(
        id=generate_shortuuid(),
        outbound_code=next_document_code(db, Outbound.outbound_code, "OUT"),
        partner_id=partner_id,
        warehouse_id=warehouse_id,
        purpose=purpose,
        notes=notes,
        status=OutboundStatus.DRAFT.value,
        created_by_user_id=actor.id,
    )
    db.add(outbound)
    for line in lines:
        db.add(
            OutboundItem(
                id=generate_shortuuid(),
                outbound_id=outbound.id,
                item_id=line.item_id,
                requested_qty=line.requested_qty,
                notes=line.notes,
            )
        )
    db.flush()
    record_transition(
        db,
        actor=actor,
        document_type=DOCUMENT_TYPE,
        document_id=outbound.id,
        action="create",
        from_status=None,
        to_status=outbound.status,
        metadata={"outbound_code": outbound.outbound_code},
    )
    return outbound


def _transition(db: Session, *, actor: Actor, outbound: Outbound, to_status: str, action: str, metadata=None) -> str:
    from_status = outbound.status
    OUTBOUND_GATE.ensure(actor, outbound, from_status, to_status)
    ensure_transition_allowed(DOCUMENT_TYPE, OUTBOUND_TRANSITIONS, from_status, to_status)
    outbound.status = to_status
    record_transition(
        db,
        actor=actor,
        document_type=DOCUMENT_TYPE,
        document_id=outbound.id,
        action=action,
        from_status=from_status,
        to_status=to_status,
        metadata=metadata,
    )
    return from_status


def approve_outbound(db: Session, *, actor: Actor, outbound_id: str) -> Outbound:
    outbound = lock_or_404(db, Outbound, outbound_id, "Outbound")
    _transition(db, actor=actor, outbound=outbound, to_status=OutboundStatus.APPROVED.value, action="approve")
    outbound.approved_by_user_id = actor.id
    outbound.approved_at = utcnow()
    return outbound


def reject_outbound(db: Session, *, actor: Actor, outbound_id: str, reason: str) -> Outbound:
    outbound = lock_or_404(db, Outbound, outbound_id, "Outbound")
    _transition(
        db,
        actor=actor,
        outbound=outbound,
        to_status=OutboundStatus.REJECTED.value,
        action="reject",
        metadata={"reason": reason},
    )
    outbound.rejected_by_user_id = actor.id
    outbound.rejected_at = utcnow()
    outbound.rejection_reason = reason
    return outbound


def _release_quantities(
    lines: list[OutboundItem], requested: Sequence[OutboundReleaseLineIn] | None
) -> dict[str, int]:
    if requested is None:
        return {line.id: line.requested_qty for line in lines}

    known = {line.id for line in lines}
    quantities: dict[str, int] = {line.id: 0 for line in lines}
    seen: set[str] = set()
    for entry in requested:
        if entry.line_id not in known:
            raise ValidationError("Release references a line outside this outbound", details=[{"line_id": entry.line_id}])
        if entry.line_id in seen:
            raise ValidationError("Duplicate line in release", details=[{"line_id": entry.line_id}])
        seen.add(entry.line_id)
        quantities[entry.line_id] = entry.released_qty
    return quantities


def release_outbound(
    db: Session,
    *,
    actor: Actor,
    outbound_id: str,
    lines: Sequence[OutboundReleaseLineIn] | None = None,
    notes: str | None = None,
) -> tuple[Outbound, list[LedgerEntry]]:
    """
    Release approved goods. Every line is validated and every item's stock is
    checked before the first ledger entry is written, so a single short line
    fails the whole release.
    """
    outbound = lock_or_404(db, Outbound, outbound_id, "Outbound")
    from_status = outbound.status
    OUTBOUND_GATE.ensure(actor, outbound, from_status, OutboundStatus.RELEASED.value)
    ensure_transition_allowed(DOCUMENT_TYPE, OUTBOUND_TRANSITIONS, from_status, OutboundStatus.RELEASED.value)

    items = outbound_lines(db, outbound.id)
    quantities = _release_quantities(items, lines)
    for line in items:
        released = quantities[line.id]
        if released < 0 or released > line.requested_qty:
            raise QuantityOutOfRange(
                f"Released quantity must be between 0 and {line.requested_qty}",
                details=[{"line_id": line.id, "item_id": line.item_id, "released_qty": released}],
            )
    if sum(quantities.values()) == 0:
        raise QuantityOutOfRange("Nothing to release: every released quantity is zero")

    needed_by_item: dict[str, int] = defaultdict(int)
    for line in items:
        needed_by_item[line.item_id] += quantities[line.id]
    for item_id in sorted(needed_by_item):
        needed = needed_by_item[item_id]
        if needed == 0:
            continue
        item = lock_item(db, item_id)
        if needed > item.current_stock:
            raise InsufficientStock(item_id=item_id, available=item.current_stock, requested=needed)

    entries: list[LedgerEntry] = []
    for line in items:
        released = quantities[line.id]
        line.released_qty = released
        entry = append_movement(
            db,
            item_id=line.item_id,
            warehouse_id=outbound.warehouse_id,
            kind=StockMovementKind.OUTBOUND,
            reference_type=LEDGER_REFERENCE,
            reference_id=outbound.id,
            reference_code=outbound.outbound_code,
            delta=-released,
            note=notes,
        )
        if entry is not None:
            entries.append(entry)

    outbound.status = OutboundStatus.RELEASED.value
    outbound.released_by_user_id = actor.id
    outbound.released_at = utcnow()
    record_transition(
        db,
        actor=actor,
        document_type=DOCUMENT_TYPE,
        document_id=outbound.id,
        action="release",
        from_status=from_status,
        to_status=outbound.status,
        metadata={"released_total": sum(quantities.values()), "ledger_entries": len(entries)},
    )
    return outbound, entries


def get_outbound(db: Session, outbound_id: str) -> Outbound:
    return get_or_404(db, Outbound, outbound_id, "Outbound")


def list_outbounds(
    db: Session,
    *,
    statuses: Sequence[str] | None = None,
    partner_id: str | None = None,
    limit: int,
    offset: int,
) -> tuple[list[Outbound], int]:
    filters = []
    if statuses:
        filters.append(Outbound.status.in_(list(statuses)))
    if partner_id:
        filters.append(Outbound.partner_id == partner_id)
    total = db.execute(select(func.count(Outbound.id)).where(*filters)).scalar_one()
    rows = db.execute(
        select(Outbound)
        .where(*filters)
        .order_by(Outbound.created_at.desc(), Outbound.outbound_code.desc())
        .offset(offset)
        .limit(limit)
    ).scalars().all()
    return rows, int(total)
