"""
Stock opname reconciliation.

Counts are trusted in two tiers. Two independent counting sheets must agree
with each other first (sheet vs sheet). Only a MATCHED sheet is then compared
with the system quantities captured when the session was created. A
disagreement between sheets is never resolved automatically; an operator
rejects a sheet, which resets it for a fresh count.
"""
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from stockflow.core.config import settings
from stockflow.core.errors import InvalidStateTransition, QuantityOutOfRange, ValidationError
from stockflow.core.id_utils import generate_shortuuid
from stockflow.core.security_current import Actor
from stockflow.models.adjustment import StockAdjustment
from stockflow.models.item import Item
from stockflow.models.opname import (
    CountingSheet,
    CountingSheetLine,
    CountingSheetStatus,
    OpnameStatus,
    StockOpname,
    StockOpnameCount,
)
from stockflow.schemas.opname import SheetCountIn
from stockflow.services.adjustment_service import SnapshotLine, create_snapshot_adjustment
from stockflow.services.approval_gate import ApprovalGate, requires_permission
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

OPNAME_DOCUMENT = "stock_opname"
SHEET_DOCUMENT = "counting_sheet"

OPNAME_TRANSITIONS: dict[str, set[str]] = {
    OpnameStatus.SCHEDULED.value: {OpnameStatus.COUNTING_IN_PROGRESS.value},
    OpnameStatus.COUNTING_IN_PROGRESS.value: {OpnameStatus.COUNTING_COMPLETE.value},
    OpnameStatus.COUNTING_COMPLETE.value: {
        OpnameStatus.FINALIZED.value,
        OpnameStatus.COMPLETED_WITH_ADJUSTMENT.value,
    },
    OpnameStatus.FINALIZED.value: set(),
    OpnameStatus.COMPLETED_WITH_ADJUSTMENT.value: set(),
}

SHEET_TRANSITIONS: dict[str, set[str]] = {
    CountingSheetStatus.DRAFT.value: {CountingSheetStatus.COUNTING.value},
    CountingSheetStatus.COUNTING.value: {CountingSheetStatus.SUBMITTED.value},
    CountingSheetStatus.SUBMITTED.value: {CountingSheetStatus.MATCHED.value, CountingSheetStatus.REJECTED.value},
    CountingSheetStatus.REJECTED.value: {CountingSheetStatus.DRAFT.value},
    CountingSheetStatus.MATCHED.value: set(),
}

OPNAME_GATE = ApprovalGate(
    OPNAME_DOCUMENT,
    {
        OpnameStatus.COUNTING_IN_PROGRESS: (requires_permission("opname.count"),),
        OpnameStatus.COUNTING_COMPLETE: (requires_permission("opname.manage"),),
        OpnameStatus.FINALIZED: (requires_permission("opname.finalize"),),
        OpnameStatus.COMPLETED_WITH_ADJUSTMENT: (requires_permission("opname.finalize"),),
    },
)

SHEET_GATE = ApprovalGate(
    SHEET_DOCUMENT,
    {
        CountingSheetStatus.COUNTING: (requires_permission("opname.count"),),
        CountingSheetStatus.SUBMITTED: (requires_permission("opname.count"),),
        CountingSheetStatus.MATCHED: (requires_permission("opname.manage"),),
        CountingSheetStatus.REJECTED: (requires_permission("opname.manage"),),
        CountingSheetStatus.DRAFT: (requires_permission("opname.manage"),),
    },
)

SHEET_OPEN_STATUSES = {OpnameStatus.SCHEDULED.value, OpnameStatus.COUNTING_IN_PROGRESS.value}
# Sheets may still be compared or rejected until the session is finalized.
SHEET_REVIEW_STATUSES = SHEET_OPEN_STATUSES | {OpnameStatus.COUNTING_COMPLETE.value}


@dataclass(frozen=True)
class SheetMismatch:
    item_id: str
    sheet_a_qty: int | None
    sheet_b_qty: int | None


@dataclass(frozen=True)
class SheetComparison:
    sheet_a: CountingSheet
    sheet_b: CountingSheet
    mismatches: list[SheetMismatch]

    @property
    def matched(self) -> bool:
        return not self.mismatches


@dataclass(frozen=True)
class VarianceLine:
    item_id: str
    system_qty: int
    counted_qty: int

    @property
    def variance(self) -> int:
        return self.counted_qty - self.system_qty


def opname_counts(db: Session, opname_id: str) -> list[StockOpnameCount]:
    return db.execute(
        select(StockOpnameCount)
        .where(StockOpnameCount.stock_opname_id == opname_id)
        .order_by(StockOpnameCount.item_id.asc())
    ).scalars().all()


def opname_sheets(db: Session, opname_id: str) -> list[CountingSheet]:
    return db.execute(
        select(CountingSheet)
        .where(CountingSheet.stock_opname_id == opname_id)
        .order_by(CountingSheet.sheet_number.asc())
    ).scalars().all()


def sheet_lines(db: Session, sheet_id: str) -> list[CountingSheetLine]:
    return db.execute(
        select(CountingSheetLine)
        .where(CountingSheetLine.counting_sheet_id == sheet_id)
        .order_by(CountingSheetLine.item_id.asc())
    ).scalars().all()


def _move_opname(db: Session, *, actor: Actor, opname: StockOpname, to_status: str, action: str, metadata=None) -> None:
    from_status = opname.status
    OPNAME_GATE.ensure(actor, opname, from_status, to_status)
    ensure_transition_allowed(OPNAME_DOCUMENT, OPNAME_TRANSITIONS, from_status, to_status)
    opname.status = to_status
    record_transition(
        db,
        actor=actor,
        document_type=OPNAME_DOCUMENT,
        document_id=opname.id,
        action=action,
        from_status=from_status,
        to_status=to_status,
        metadata=metadata,
    )


def _move_sheet(db: Session, *, actor: Actor, sheet: CountingSheet, to_status: str, action: str, metadata=None) -> None:
    from_status = sheet.status
    SHEET_GATE.ensure(actor, sheet, from_status, to_status)
    ensure_transition_allowed(SHEET_DOCUMENT, SHEET_TRANSITIONS, from_status, to_status)
    sheet.status = to_status
    record_transition(
        db,
        actor=actor,
        document_type=SHEET_DOCUMENT,
        document_id=sheet.id,
        action=action,
        from_status=from_status,
        to_status=to_status,
        metadata={"stock_opname_id": sheet.stock_opname_id, **(metadata or {})},
    )


def _lock_session_of(db: Session, sheet: CountingSheet, allowed: set[str], to_status: str) -> StockOpname:
    opname = lock_or_404(db, StockOpname, sheet.stock_opname_id, "Stock opname")
    if opname.status not in allowed:
        error = InvalidStateTransition(SHEET_DOCUMENT, sheet.status, to_status)
        error.details.append({"stock_opname_id": opname.id, "opname_status": opname.status})
        raise error
    return opname


def create_opname(
    db: Session,
    *,
    actor: Actor,
    title: str,
    item_ids: Sequence[str] | None = None,
    warehouse_id: str | None = None,
    scheduled_date: date | None = None,
    notes: str | None = None,
) -> StockOpname:
    """Open a session and capture the system quantity of every audited item once."""
    require_warehouse(db, warehouse_id)
    if item_ids:
        unique_ids = list(dict.fromkeys(item_ids))
        items = [require_item(db, item_id) for item_id in unique_ids]
    else:
        items = db.execute(select(Item).where(Item.is_active.is_(True)).order_by(Item.sku.asc())).scalars().all()
    if not items:
        raise ValidationError("There are no items to count")

    opname = StockOpname(
        id=generate_shortuuid(),
        opname_code=next_document_code(db, StockOpname.opname_code, "OP"),
        title=title,
        warehouse_id=warehouse_id,
        scheduled_date=scheduled_date,
        status=OpnameStatus.SCHEDULED.value,
        notes=notes,
        created_by_user_id=actor.id,
    )
    db.add(opname)
    for item in items:
        db.add(
            StockOpnameCount(
                id=generate_shortuuid(),
                stock_opname_id=opname.id,
                item_id=item.id,
                system_qty=int(item.current_stock),
            )
        )
    db.flush()
    record_transition(
        db,
        actor=actor,
        document_type=OPNAME_DOCUMENT,
        document_id=opname.id,
        action="create",
        from_status=None,
        to_status=opname.status,
        metadata={"opname_code": opname.opname_code, "items": len(items)},
    )
    return opname


def create_counting_sheet(db: Session, *, actor: Actor, opname_id: str) -> CountingSheet:
    opname = lock_or_404(db, StockOpname, opname_id, "Stock opname")
    if opname.status not in SHEET_OPEN_STATUSES:
        raise InvalidStateTransition(SHEET_DOCUMENT, opname.status, CountingSheetStatus.DRAFT.value)

    last_number = db.execute(
        select(func.coalesce(func.max(CountingSheet.sheet_number), 0)).where(
            CountingSheet.stock_opname_id == opname.id
        )
    ).scalar_one()
    sheet = CountingSheet(
        id=generate_shortuuid(),
        stock_opname_id=opname.id,
        sheet_number=int(last_number) + 1,
        status=CountingSheetStatus.DRAFT.value,
        recount_round=0,
    )
    db.add(sheet)
    for count in opname_counts(db, opname.id):
        db.add(CountingSheetLine(id=generate_shortuuid(), counting_sheet_id=sheet.id, item_id=count.item_id))
    db.flush()
    record_transition(
        db,
        actor=actor,
        document_type=SHEET_DOCUMENT,
        document_id=sheet.id,
        action="create",
        from_status=None,
        to_status=sheet.status,
        metadata={"stock_opname_id": opname.id, "sheet_number": sheet.sheet_number},
    )
    return sheet


def save_counts(db: Session, *, actor: Actor, sheet_id: str, counts: Sequence[SheetCountIn]) -> CountingSheet:
    sheet = lock_or_404(db, CountingSheet, sheet_id, "Counting sheet")
    if sheet.status not in {CountingSheetStatus.DRAFT.value, CountingSheetStatus.COUNTING.value}:
        raise InvalidStateTransition(SHEET_DOCUMENT, sheet.status, CountingSheetStatus.COUNTING.value)
    opname = _lock_session_of(db, sheet, SHEET_OPEN_STATUSES, CountingSheetStatus.COUNTING.value)

    lines_by_item = {line.item_id: line for line in sheet_lines(db, sheet.id)}
    for count in counts:
        if count.item_id not in lines_by_item:
            raise ValidationError("Item is not part of this counting sheet", details=[{"item_id": count.item_id}])
        if count.counted_qty < 0:
            raise QuantityOutOfRange(
                "Counted quantity cannot be negative",
                details=[{"item_id": count.item_id, "counted_qty": count.counted_qty}],
            )

    if sheet.status == CountingSheetStatus.DRAFT.value:
        _move_sheet(db, actor=actor, sheet=sheet, to_status=CountingSheetStatus.COUNTING.value, action="start_count")
    if opname.status == OpnameStatus.SCHEDULED.value:
        _move_opname(db, actor=actor, opname=opname, to_status=OpnameStatus.COUNTING_IN_PROGRESS.value, action="start_count")

    for count in counts:
        line = lines_by_item[count.item_id]
        line.counted_qty = count.counted_qty
        if count.notes is not None:
            line.notes = count.notes
    if sheet.counter_user_id is None:
        sheet.counter_user_id = actor.id
    return sheet


def submit_sheet(db: Session, *, actor: Actor, sheet_id: str, counter_name: str | None = None) -> CountingSheet:
    sheet = lock_or_404(db, CountingSheet, sheet_id, "Counting sheet")
    _lock_session_of(db, sheet, SHEET_OPEN_STATUSES, CountingSheetStatus.SUBMITTED.value)
    SHEET_GATE.ensure(actor, sheet, sheet.status, CountingSheetStatus.SUBMITTED.value)
    ensure_transition_allowed(SHEET_DOCUMENT, SHEET_TRANSITIONS, sheet.status, CountingSheetStatus.SUBMITTED.value)

    uncounted = [line.item_id for line in sheet_lines(db, sheet.id) if line.counted_qty is None]
    if uncounted:
        raise ValidationError(
            "Every line must be counted before the sheet is submitted",
            details=[{"item_id": item_id} for item_id in uncounted],
        )

    _move_sheet(db, actor=actor, sheet=sheet, to_status=CountingSheetStatus.SUBMITTED.value, action="submit")
    sheet.counter_user_id = actor.id
    sheet.counter_name = (counter_name or "").strip() or actor.username
    sheet.counter_role = actor.role
    sheet.submitted_at = utcnow()
    return sheet


def compare_sheets(
    db: Session,
    *,
    actor: Actor,
    sheet_a_id: str,
    sheet_b_id: str,
    opname_id: str | None = None,
) -> SheetComparison:
    if sheet_a_id == sheet_b_id:
        raise ValidationError("A sheet cannot be compared with itself")
    sheet_a = lock_or_404(db, CountingSheet, sheet_a_id, "Counting sheet")
    sheet_b = lock_or_404(db, CountingSheet, sheet_b_id, "Counting sheet")
    if sheet_a.stock_opname_id != sheet_b.stock_opname_id:
        raise ValidationError("Sheets belong to different opname sessions")
    if opname_id is not None and sheet_a.stock_opname_id != opname_id:
        raise ValidationError("Sheets do not belong to this opname", details=[{"stock_opname_id": opname_id}])
    opname = _lock_session_of(db, sheet_a, SHEET_REVIEW_STATUSES, CountingSheetStatus.MATCHED.value)
    for sheet in (sheet_a, sheet_b):
        SHEET_GATE.ensure(actor, sheet, sheet.status, CountingSheetStatus.MATCHED.value)
        if sheet.status != CountingSheetStatus.SUBMITTED.value:
            raise InvalidStateTransition(SHEET_DOCUMENT, sheet.status, CountingSheetStatus.MATCHED.value)
    if settings.opname_require_distinct_counters and sheet_a.counter_user_id == sheet_b.counter_user_id:
        raise ValidationError(
            "Sheets must be counted by different counters",
            details=[{"counter_user_id": sheet_a.counter_user_id}],
        )

    counted_a = {line.item_id: line.counted_qty for line in sheet_lines(db, sheet_a.id)}
    counted_b = {line.item_id: line.counted_qty for line in sheet_lines(db, sheet_b.id)}
    mismatches = [
        SheetMismatch(item_id=item_id, sheet_a_qty=counted_a.get(item_id), sheet_b_qty=counted_b.get(item_id))
        for item_id in sorted(set(counted_a) | set(counted_b))
        if counted_a.get(item_id) != counted_b.get(item_id)
    ]

    sheet_a.compared_with_sheet_id = sheet_b.id
    sheet_b.compared_with_sheet_id = sheet_a.id
    if mismatches:
        record_transition(
            db,
            actor=actor,
            document_type=OPNAME_DOCUMENT,
            document_id=sheet_a.stock_opname_id,
            action="compare_mismatch",
            from_status=None,
            to_status=None,
            metadata={"sheet_a_id": sheet_a.id, "sheet_b_id": sheet_b.id, "mismatches": len(mismatches)},
        )
        return SheetComparison(sheet_a=sheet_a, sheet_b=sheet_b, mismatches=mismatches)

    for sheet in (sheet_a, sheet_b):
        _move_sheet(db, actor=actor, sheet=sheet, to_status=CountingSheetStatus.MATCHED.value, action="match")
    if opname.matched_sheet_id is None:
        opname.matched_sheet_id = sheet_a.id
    if opname.status == OpnameStatus.COUNTING_IN_PROGRESS.value:
        _move_opname(
            db,
            actor=actor,
            opname=opname,
            to_status=OpnameStatus.COUNTING_COMPLETE.value,
            action="counting_complete",
            metadata={"matched_sheets": [sheet_a.id, sheet_b.id]},
        )
    return SheetComparison(sheet_a=sheet_a, sheet_b=sheet_b, mismatches=[])


def reject_sheet(db: Session, *, actor: Actor, sheet_id: str, reason: str) -> CountingSheet:
    """Reject a submitted sheet and reset it to DRAFT for an independent recount."""
    sheet = lock_or_404(db, CountingSheet, sheet_id, "Counting sheet")
    _lock_session_of(db, sheet, SHEET_REVIEW_STATUSES, CountingSheetStatus.REJECTED.value)
    _move_sheet(
        db,
        actor=actor,
        sheet=sheet,
        to_status=CountingSheetStatus.REJECTED.value,
        action="reject",
        metadata={"reason": reason},
    )
    for line in sheet_lines(db, sheet.id):
        line.counted_qty = None
    sheet.counter_user_id = None
    sheet.counter_name = None
    sheet.counter_role = None
    sheet.submitted_at = None
    sheet.compared_with_sheet_id = None
    sheet.rejection_reason = reason
    sheet.recount_round += 1
    _move_sheet(db, actor=actor, sheet=sheet, to_status=CountingSheetStatus.DRAFT.value, action="reset")
    return sheet


def _matched_sheet(db: Session, opname: StockOpname, sheet_id: str | None) -> CountingSheet:
    chosen_id = sheet_id or opname.matched_sheet_id
    if not chosen_id:
        raise ValidationError("No matched counting sheet exists for this opname")
    sheet = get_or_404(db, CountingSheet, chosen_id, "Counting sheet")
    if sheet.stock_opname_id != opname.id:
        raise ValidationError("Sheet does not belong to this opname", details=[{"sheet_id": chosen_id}])
    if sheet.status != CountingSheetStatus.MATCHED.value:
        raise ValidationError(
            "Variance can only be computed from a MATCHED sheet",
            details=[{"sheet_id": sheet.id, "status": sheet.status}],
        )
    return sheet


def compute_variances(db: Session, *, opname: StockOpname, sheet: CountingSheet) -> list[VarianceLine]:
    counted = {line.item_id: line.counted_qty for line in sheet_lines(db, sheet.id)}
    return [
        VarianceLine(item_id=count.item_id, system_qty=count.system_qty, counted_qty=int(counted[count.item_id]))
        for count in opname_counts(db, opname.id)
    ]


def preview_variances(db: Session, *, opname_id: str, sheet_id: str | None = None) -> tuple[CountingSheet, list[VarianceLine]]:
    opname = get_or_404(db, StockOpname, opname_id, "Stock opname")
    sheet = _matched_sheet(db, opname, sheet_id)
    return sheet, compute_variances(db, opname=opname, sheet=sheet)


def finalize_opname(
    db: Session,
    *,
    actor: Actor,
    opname_id: str,
    sheet_id: str | None = None,
    create_adjustment: bool = True,
    notes: str | None = None,
) -> tuple[StockOpname, list[VarianceLine], StockAdjustment | None]:
    opname = lock_or_404(db, StockOpname, opname_id, "Stock opname")
    if opname.status != OpnameStatus.COUNTING_COMPLETE.value:
        OPNAME_GATE.ensure(actor, opname, opname.status, OpnameStatus.FINALIZED.value)
        raise InvalidStateTransition(OPNAME_DOCUMENT, opname.status, OpnameStatus.FINALIZED.value)
    sheet = _matched_sheet(db, opname, sheet_id)
    variances = compute_variances(db, opname=opname, sheet=sheet)
    nonzero = [line for line in variances if line.variance != 0]

    to_status = (
        OpnameStatus.COMPLETED_WITH_ADJUSTMENT.value
        if nonzero and create_adjustment
        else OpnameStatus.FINALIZED.value
    )
    _move_opname(
        db,
        actor=actor,
        opname=opname,
        to_status=to_status,
        action="finalize",
        metadata={"sheet_id": sheet.id, "variance_lines": len(nonzero)},
    )

    by_item = {line.item_id: line for line in variances}
    for count in opname_counts(db, opname.id):
        line = by_item[count.item_id]
        count.final_qty = line.counted_qty
        count.variance = line.variance
        count.is_matching = line.variance == 0

    adjustment = None
    if to_status == OpnameStatus.COMPLETED_WITH_ADJUSTMENT.value:
        adjustment = create_snapshot_adjustment(
            db,
            actor=actor,
            stock_opname_id=opname.id,
            warehouse_id=opname.warehouse_id,
            notes=notes or f"Result of {opname.opname_code}",
            lines=[
                SnapshotLine(item_id=line.item_id, qty_system=line.system_qty, qty_input=line.counted_qty)
                for line in nonzero
            ],
        )
        opname.adjustment_id = adjustment.id

    opname.matched_sheet_id = sheet.id
    opname.finalized_by_user_id = actor.id
    opname.finalized_at = utcnow()
    if notes:
        opname.notes = notes
    return opname, variances, adjustment


def get_opname(db: Session, opname_id: str) -> StockOpname:
    return get_or_404(db, StockOpname, opname_id, "Stock opname")


def get_sheet(db: Session, sheet_id: str) -> CountingSheet:
    return get_or_404(db, CountingSheet, sheet_id, "Counting sheet")


def list_opnames(
    db: Session,
    *,
    statuses: Sequence[str] | None = None,
    limit: int,
    offset: int,
) -> tuple[list[StockOpname], int]:
    filters = []
    if statuses:
        filters.append(StockOpname.status.in_(list(statuses)))
    total = db.execute(select(func.count(StockOpname.id)).where(*filters)).scalar_one()
    rows = db.execute(
        select(StockOpname)
        .where(*filters)
        .order_by(StockOpname.created_at.desc(), StockOpname.opname_code.desc())
        .offset(offset)
        .limit(limit)
    ).scalars().all()
    return rows, int(total)
