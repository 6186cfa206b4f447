"""
Stock card ledger.

``append_movement`` is the only code path that changes ``Item.current_stock``.
It locks the item row, appends one immutable ``LedgerEntry`` and writes the
new quantity with a compare-and-swap, all inside the caller's transaction.
Callers commit (or roll back) the session; nothing here commits.
"""
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from stockflow.core.errors import (
    InsufficientStock,
    LedgerInvariantError,
    NotFound,
    QuantityOutOfRange,
    StockConflict,
    ValidationError,
)
from stockflow.core.id_utils import generate_shortuuid
from stockflow.core.observability import log_domain_event
from stockflow.models.inventory import DECREASING_KINDS, INCREASING_KINDS, LedgerEntry, StockMovementKind
from stockflow.models.item import Item
from stockflow.services.audit_service import log_audit_event

OPENING_BALANCE_REFERENCE = "OPENING_BALANCE"


@dataclass(frozen=True)
class ReconcileResult:
    item_id: str
    current_stock: int
    replayed_stock: int
    entry_count: int
    chain_ok: bool

    @property
    def consistent(self) -> bool:
        return self.chain_ok and self.current_stock == self.replayed_stock


@dataclass(frozen=True)
class PeriodReport:
    item: Item
    period_start: datetime
    period_end: datetime
    opening_stock: int
    movements: list[LedgerEntry]

    @property
    def total_in(self) -> int:
        return sum(entry.quantity_change for entry in self.movements if entry.quantity_change > 0)

    @property
    def total_out(self) -> int:
        return -sum(entry.quantity_change for entry in self.movements if entry.quantity_change < 0)

    @property
    def closing_stock(self) -> int:
        return self.opening_stock + self.total_in - self.total_out


def lock_item(db: Session, item_id: str) -> Item:
    item = db.execute(
        select(Item)
        .where(Item.id == item_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if not item:
        raise NotFound(f"Item {item_id} not found")
    return item


def get_item_stock(db: Session, item_id: str) -> int:
    stock = db.execute(select(Item.current_stock).where(Item.id == item_id)).scalar_one_or_none()
    if stock is None:
        raise NotFound(f"Item {item_id} not found")
    return int(stock)


def _next_sequence(db: Session, item_id: str) -> int:
    current = db.execute(
        select(func.coalesce(func.max(LedgerEntry.sequence), 0)).where(LedgerEntry.item_id == item_id)
    ).scalar_one()
    return int(current) + 1


def _check_direction(kind: StockMovementKind, delta: int) -> None:
    if kind in INCREASING_KINDS and delta < 0:
        raise LedgerInvariantError(f"{kind.value} movement requires a positive delta, got {delta}")
    if kind in DECREASING_KINDS and delta > 0:
        raise LedgerInvariantError(f"{kind.value} movement requires a negative delta, got {delta}")


def append_movement(
    db: Session,
    *,
    item_id: str,
    kind: StockMovementKind,
    reference_type: str,
    reference_id: str,
    delta: int,
    reference_code: str | None = None,
    warehouse_id: str | None = None,
    note: str | None = None,
) -> LedgerEntry | None:
    """
    Append one stock movement and update the item's cached quantity.

    A zero ``delta`` is a no-op: no entry is written and ``None`` is returned.
    Raises ``InsufficientStock`` when the movement would take stock below zero
    and ``StockConflict`` when another writer changed the quantity between the
    locked read and the write.
    """
    if delta == 0:
        return None
    _check_direction(kind, delta)

    item = lock_item(db, item_id)
    before = int(item.current_stock)
    after = before + delta
    if after < 0:
        raise InsufficientStock(item_id=item_id, available=before, requested=-delta)

    entry = LedgerEntry(
        id=generate_shortuuid(),
        item_id=item_id,
        warehouse_id=warehouse_id,
        sequence=_next_sequence(db, item_id),
        movement_kind=kind.value,
        reference_type=reference_type,
        reference_id=reference_id,
        reference_code=reference_code,
        quantity_before=before,
        quantity_change=delta,
        quantity_after=after,
        note=note,
    )

    result = db.execute(
        update(Item)
        .where(Item.id == item_id, Item.current_stock == before)
        .values(current_stock=after)
    )
    if result.rowcount != 1:
        raise StockConflict(
            f"Stock for item {item_id} changed concurrently",
            details=[{"item_id": item_id, "expected_stock": before}],
        )

    db.add(entry)
    db.flush()
    log_domain_event(
        "ledger.append",
        item_id=item_id,
        kind=kind.value,
        reference_type=reference_type,
        reference_id=reference_id,
        delta=delta,
        quantity_before=before,
        quantity_after=after,
    )
    return entry


def month_bounds(year: int, month: int) -> tuple[datetime, datetime]:
    """UTC start of the month and start of the following month."""
    start = datetime(year, month, 1, tzinfo=timezone.utc)
    if month == 12:
        return start, datetime(year + 1, 1, 1, tzinfo=timezone.utc)
    return start, datetime(year, month + 1, 1, tzinfo=timezone.utc)


def period_report(db: Session, *, item_id: str, year: int, month: int) -> PeriodReport:
    """
    Stock card of one item for a calendar month.

    The opening stock is the sum of every change posted before the month,
    and the closing stock adds the month's movements to it.
    """
    item = db.execute(select(Item).where(Item.id == item_id)).scalar_one_or_none()
    if not item:
        raise NotFound(f"Item {item_id} not found")
    start, end = month_bounds(year, month)

    opening = db.execute(
        select(func.coalesce(func.sum(LedgerEntry.quantity_change), 0)).where(
            LedgerEntry.item_id == item_id, LedgerEntry.created_at < start
        )
    ).scalar_one()
    movements = db.execute(
        select(LedgerEntry)
        .where(
            LedgerEntry.item_id == item_id,
            LedgerEntry.created_at >= start,
            LedgerEntry.created_at < end,
        )
        .order_by(LedgerEntry.sequence.asc())
    ).scalars().all()

    return PeriodReport(
        item=item,
        period_start=start,
        period_end=end,
        opening_stock=int(opening),
        movements=list(movements),
    )


def has_entries(db: Session, item_id: str) -> bool:
    return db.execute(
        select(LedgerEntry.id).where(LedgerEntry.item_id == item_id).limit(1)
    ).first() is not None


def entries_for_reference(db: Session, *, reference_type: str, reference_id: str) -> list[LedgerEntry]:
    return db.execute(
        select(LedgerEntry)
        .where(LedgerEntry.reference_type == reference_type, LedgerEntry.reference_id == reference_id)
        .order_by(LedgerEntry.item_id.asc(), LedgerEntry.sequence.asc())
    ).scalars().all()


def last_entry(db: Session, item_id: str) -> LedgerEntry | None:
    return db.execute(
        select(LedgerEntry)
        .where(LedgerEntry.item_id == item_id)
        .order_by(LedgerEntry.sequence.desc())
        .limit(1)
    ).scalar_one_or_none()


def reconcile_item(db: Session, item_id: str) -> ReconcileResult:
    """Replay the item's stock card from zero and compare with ``current_stock``."""
    current = get_item_stock(db, item_id)
    entries = db.execute(
        select(LedgerEntry).where(LedgerEntry.item_id == item_id).order_by(LedgerEntry.sequence.asc())
    ).scalars().all()

    replayed = 0
    chain_ok = True
    for entry in entries:
        if entry.quantity_before != replayed:
            chain_ok = False
        if entry.quantity_after != entry.quantity_before + entry.quantity_change:
            chain_ok = False
        replayed += entry.quantity_change

    return ReconcileResult(
        item_id=item_id,
        current_stock=current,
        replayed_stock=replayed,
        entry_count=len(entries),
        chain_ok=chain_ok,
    )


def post_opening_balance(
    db: Session,
    *,
    actor_user_id: str,
    item_id: str,
    quantity: int,
    warehouse_id: str | None = None,
    note: str | None = None,
) -> LedgerEntry:
    """First stock card entry of an item; refused once the item has any movement."""
    if quantity <= 0:
        raise QuantityOutOfRange(
            "Opening balance must be greater than zero",
            details=[{"item_id": item_id, "quantity": quantity}],
        )
    lock_item(db, item_id)
    if has_entries(db, item_id):
        raise ValidationError(
            "Item already has stock movements; use a stock adjustment instead",
            details=[{"item_id": item_id}],
        )
    entry = append_movement(
        db,
        item_id=item_id,
        warehouse_id=warehouse_id,
        kind=StockMovementKind.ADJUSTMENT_IN,
        reference_type=OPENING_BALANCE_REFERENCE,
        reference_id=item_id,
        delta=quantity,
        note=note,
    )
    log_audit_event(
        db,
        actor_user_id=actor_user_id,
        action="stock.opening_balance",
        target_type="item",
        target_id=item_id,
        metadata_json={"quantity": quantity, "ledger_entry_id": entry.id},
    )
    return entry
