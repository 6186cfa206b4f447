"""
Stock adjustments.

``qty_system`` on each line is a point-in-time copy of the item's stock taken
at submission. Approval re-reads live stock and applies the line's variance
to it, so movements between submission and approval are not lost.
"""
from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from stockflow.core.errors import InsufficientStock, QuantityOutOfRange, ValidationError
from stockflow.core.id_utils import generate_shortuuid
from stockflow.core.security_current import Actor
from stockflow.models.adjustment import (
    AdjustmentMethod,
    AdjustmentSource,
    AdjustmentStatus,
    AdjustmentType,
    DeltaDirection,
    StockAdjustment,
    StockAdjustmentItem,
)
from stockflow.models.inventory import LedgerEntry, StockMovementKind
from stockflow.schemas.adjustment import AdjustmentLineIn
from stockflow.services.approval_gate import ApprovalGate, not_creator, requires_permission
from stockflow.services.ledger_service import append_movement, lock_item
from stockflow.services.numbering_service import next_document_code
from stockflow.services.workflow import (
    ensure_transition_allowed,
    get_or_404,
    lock_or_404,
    record_transition,
    require_item,
    require_warehouse,
    utcnow,
)

DOCUMENT_TYPE = "stock_adjustment"
LEDGER_REFERENCE = "ADJUSTMENT"

ADJUSTMENT_TRANSITIONS: dict[str, set[str]] = {
    AdjustmentStatus.DRAFT.value: {AdjustmentStatus.PENDING.value},
    AdjustmentStatus.PENDING.value: {AdjustmentStatus.APPROVED.value, AdjustmentStatus.REJECTED.value},
    AdjustmentStatus.APPROVED.value: set(),
    AdjustmentStatus.REJECTED.value: set(),
}

ADJUSTMENT_GATE = ApprovalGate(
    DOCUMENT_TYPE,
    {
        AdjustmentStatus.PENDING: (requires_permission("adjustment.create"),),
        AdjustmentStatus.APPROVED: (requires_permission("adjustment.approve"), not_creator),
        AdjustmentStatus.REJECTED: (requires_permission("adjustment.approve"), not_creator),
    },
)

ADJUSTMENT_TYPES = {member.value for member in AdjustmentType}


@dataclass(frozen=True)
class SnapshotLine:
    """An adjustment line whose system quantity and variance are already known."""

    item_id: str
    qty_system: int
    qty_input: int
    notes: str | None = None


def adjustment_lines(db: Session, adjustment_id: str) -> list[StockAdjustmentItem]:
    return db.execute(
        select(StockAdjustmentItem)
        .where(StockAdjustmentItem.stock_adjustment_id == adjustment_id)
        .order_by(StockAdjustmentItem.id.asc())
    ).scalars().all()


def line_variance(line: StockAdjustmentItem, system_qty: int) -> int:
    if line.method == AdjustmentMethod.REAL_QTY.value:
        return line.qty_input - system_qty
    if line.delta_direction == DeltaDirection.DECREASE.value:
        return -line.qty_input
    return line.qty_input


def _validate_line(db: Session, line: AdjustmentLineIn) -> tuple[str, str | None]:
    require_item(db, line.item_id)
    method = (line.method or "").strip().upper()
    if method not in {AdjustmentMethod.REAL_QTY.value, AdjustmentMethod.DELTA_QTY.value}:
        raise ValidationError(
            "Adjustment method must be REAL_QTY or DELTA_QTY",
            details=[{"item_id": line.item_id, "method": line.method}],
        )
    if method == AdjustmentMethod.REAL_QTY.value:
        if line.qty_input < 0:
            raise QuantityOutOfRange(
                "Real quantity cannot be negative",
                details=[{"item_id": line.item_id, "qty_input": line.qty_input}],
            )
        return method, None

    direction = (line.delta_direction or "").strip().upper()
    if direction not in {DeltaDirection.INCREASE.value, DeltaDirection.DECREASE.value}:
        raise ValidationError(
            "DELTA_QTY lines need delta_direction INCREASE or DECREASE",
            details=[{"item_id": line.item_id, "delta_direction": line.delta_direction}],
        )
    if line.qty_input <= 0:
        raise QuantityOutOfRange(
            "Delta quantity must be greater than zero",
            details=[{"item_id": line.item_id, "qty_input": line.qty_input}],
        )
    return method, direction


def _new_header(
    db: Session,
    *,
    actor: Actor,
    adjustment_type: str,
    source: str,
    status: str,
    warehouse_id: str | None,
    notes: str | None,
    stock_opname_id: str | None = None,
) -> StockAdjustment:
    adjustment = StockAdjustment(
        id=generate_shortuuid(),
        adjustment_code=next_document_code(db, StockAdjustment.adjustment_code, "ADJ"),
        adjustment_type=adjustment_type,
        source=source,
        stock_opname_id=stock_opname_id,
        warehouse_id=warehouse_id,
        status=status,
        notes=notes,
        created_by_user_id=actor.id,
    )
    db.add(adjustment)
    return adjustment


def create_adjustment(
    db: Session,
    *,
    actor: Actor,
    adjustment_type: str,
    lines: Sequence[AdjustmentLineIn],
    warehouse_id: str | None = None,
    notes: str | None = None,
    submit: bool = False,
) -> StockAdjustment:
    normalized_type = (adjustment_type or "").strip().upper()
    if normalized_type not in ADJUSTMENT_TYPES:
        allowed = ", ".join(sorted(ADJUSTMENT_TYPES))
        raise ValidationError(f"Invalid adjustment type. Allowed: {allowed}")
    require_warehouse(db, warehouse_id)
    if not lines:
        raise ValidationError("An adjustment needs at least one line")
    validated = [(line, *_validate_line(db, line)) for line in lines]

    adjustment = _new_header(
        db,
        actor=actor,
        adjustment_type=normalized_type,
        source=AdjustmentSource.MANUAL.value,
        status=AdjustmentStatus.DRAFT.value,
        warehouse_id=warehouse_id,
        notes=notes,
    )
    for line, method, direction in validated:
        db.add(
            StockAdjustmentItem(
                id=generate_shortuuid(),
                stock_adjustment_id=adjustment.id,
                item_id=line.item_id,
                method=method,
                delta_direction=direction,
                qty_input=line.qty_input,
                notes=line.notes,
            )
        )
    db.flush()
    record_transition(
        db,
        actor=actor,
        document_type=DOCUMENT_TYPE,
        document_id=adjustment.id,
        action="create",
        from_status=None,
        to_status=adjustment.status,
        metadata={"adjustment_code": adjustment.adjustment_code, "adjustment_type": normalized_type},
    )
    if submit:
        submit_adjustment(db, actor=actor, adjustment_id=adjustment.id)
    return adjustment


def create_snapshot_adjustment(
    db: Session,
    *,
    actor: Actor,
    lines: Sequence[SnapshotLine],
    stock_opname_id: str,
    warehouse_id: str | None = None,
    notes: str | None = None,
) -> StockAdjustment:
    """
    Create a PENDING REAL_QTY adjustment from already-reconciled counts.
    The opname snapshot is kept as ``qty_system``; it still needs an
    independent approval before any stock moves.
    """
    if not lines:
        raise ValidationError("An adjustment needs at least one line")
    adjustment = _new_header(
        db,
        actor=actor,
        adjustment_type=AdjustmentType.OPNAME_RESULT.value,
        source=AdjustmentSource.OPNAME.value,
        status=AdjustmentStatus.PENDING.value,
        warehouse_id=warehouse_id,
        notes=notes,
        stock_opname_id=stock_opname_id,
    )
    adjustment.submitted_at = utcnow()
    for line in lines:
        db.add(
            StockAdjustmentItem(
                id=generate_shortuuid(),
                stock_adjustment_id=adjustment.id,
                item_id=line.item_id,
                method=AdjustmentMethod.REAL_QTY.value,
                qty_system=line.qty_system,
                qty_input=line.qty_input,
                qty_variance=line.qty_input - line.qty_system,
                notes=line.notes,
            )
        )
    db.flush()
    record_transition(
        db,
        actor=actor,
        document_type=DOCUMENT_TYPE,
        document_id=adjustment.id,
        action="create",
        from_status=None,
        to_status=adjustment.status,
        metadata={
            "adjustment_code": adjustment.adjustment_code,
            "stock_opname_id": stock_opname_id,
            "lines": len(lines),
        },
    )
    return adjustment


def _transition(db: Session, *, actor: Actor, adjustment: StockAdjustment, to_status: str, action: str, metadata=None) -> str:
    from_status = adjustment.status
    ADJUSTMENT_GATE.ensure(actor, adjustment, from_status, to_status)
    ensure_transition_allowed(DOCUMENT_TYPE, ADJUSTMENT_TRANSITIONS, from_status, to_status)
    adjustment.status = to_status
    record_transition(
        db,
        actor=actor,
        document_type=DOCUMENT_TYPE,
        document_id=adjustment.id,
        action=action,
        from_status=from_status,
        to_status=to_status,
        metadata=metadata,
    )
    return from_status


def submit_adjustment(db: Session, *, actor: Actor, adjustment_id: str) -> StockAdjustment:
    adjustment = lock_or_404(db, StockAdjustment, adjustment_id, "Stock adjustment")
    _transition(db, actor=actor, adjustment=adjustment, to_status=AdjustmentStatus.PENDING.value, action="submit")
    for line in adjustment_lines(db, adjustment.id):
        snapshot = int(require_item(db, line.item_id).current_stock)
        line.qty_system = snapshot
        line.qty_variance = line_variance(line, snapshot)
    adjustment.submitted_at = utcnow()
    return adjustment


def approve_adjustment(
    db: Session, *, actor: Actor, adjustment_id: str, notes: str | None = None
) -> tuple[StockAdjustment, list[LedgerEntry]]:
    adjustment = lock_or_404(db, StockAdjustment, adjustment_id, "Stock adjustment")
    from_status = adjustment.status
    ADJUSTMENT_GATE.ensure(actor, adjustment, from_status, AdjustmentStatus.APPROVED.value)
    ensure_transition_allowed(DOCUMENT_TYPE, ADJUSTMENT_TRANSITIONS, from_status, AdjustmentStatus.APPROVED.value)

    lines = adjustment_lines(db, adjustment.id)
    variance_by_item: dict[str, int] = defaultdict(int)
    for line in lines:
        variance_by_item[line.item_id] += int(line.qty_variance or 0)
    for item_id in sorted(variance_by_item):
        item = lock_item(db, item_id)
        live_stock = int(item.current_stock)
        if live_stock + variance_by_item[item_id] < 0:
            raise InsufficientStock(
                item_id=item_id,
                available=live_stock,
                requested=-variance_by_item[item_id],
            )

    # Increases post before decreases so each item only dips to its checked net.
    ordered = sorted(lines, key=lambda line: (line.item_id, int(line.qty_variance or 0) < 0))
    entries: list[LedgerEntry] = []
    for line in ordered:
        variance = int(line.qty_variance or 0)
        kind = StockMovementKind.ADJUSTMENT_IN if variance > 0 else StockMovementKind.ADJUSTMENT_OUT
        entry = append_movement(
            db,
            item_id=line.item_id,
            warehouse_id=adjustment.warehouse_id,
            kind=kind,
            reference_type=LEDGER_REFERENCE,
            reference_id=adjustment.id,
            reference_code=adjustment.adjustment_code,
            delta=variance,
            note=line.notes or adjustment.adjustment_type,
        )
        if entry is not None:
            entries.append(entry)

    adjustment.status = AdjustmentStatus.APPROVED.value
    adjustment.decided_by_user_id = actor.id
    adjustment.decided_at = utcnow()
    adjustment.decision_notes = notes
    record_transition(
        db,
        actor=actor,
        document_type=DOCUMENT_TYPE,
        document_id=adjustment.id,
        action="approve",
        from_status=from_status,
        to_status=adjustment.status,
        metadata={"ledger_entries": len(entries)},
    )
    return adjustment, entries


def reject_adjustment(db: Session, *, actor: Actor, adjustment_id: str, reason: str) -> StockAdjustment:
    adjustment = lock_or_404(db, StockAdjustment, adjustment_id, "Stock adjustment")
    _transition(
        db,
        actor=actor,
        adjustment=adjustment,
        to_status=AdjustmentStatus.REJECTED.value,
        action="reject",
        metadata={"reason": reason},
    )
    adjustment.decided_by_user_id = actor.id
    adjustment.decided_at = utcnow()
    adjustment.decision_notes = reason
    return adjustment


def get_adjustment(db: Session, adjustment_id: str) -> StockAdjustment:
    return get_or_404(db, StockAdjustment, adjustment_id, "Stock adjustment")


def list_adjustments(
    db: Session,
    *,
    statuses: Sequence[str] | None = None,
    adjustment_type: str | None = None,
    source: str | None = None,
    limit: int,
    offset: int,
) -> tuple[list[StockAdjustment], int]:
    filters = []
    if statuses:
        filters.append(StockAdjustment.status.in_(list(statuses)))
    if adjustment_type:
        filters.append(StockAdjustment.adjustment_type == adjustment_type.strip().upper())
    if source:
        filters.append(StockAdjustment.source == source.strip().upper())
    total = db.execute(select(func.count(StockAdjustment.id)).where(*filters)).scalar_one()
    rows = db.execute(
        select(StockAdjustment)
        .where(*filters)
        .order_by(StockAdjustment.created_at.desc(), StockAdjustment.adjustment_code.desc())
        .offset(offset)
        .limit(limit)
    ).scalars().all()
    return rows, int(total)
