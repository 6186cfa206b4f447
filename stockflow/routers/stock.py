from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from stockflow.core.api_docs import error_responses
from stockflow.core.deps import get_db
from stockflow.core.errors import ValidationError
from stockflow.core.permissions import require_permission
from stockflow.core.security_current import Actor
from stockflow.models.inventory import LedgerEntry, StockMovementKind
from stockflow.schemas.common import pagination_meta
from stockflow.schemas.stock import (
    ItemStockOut,
    LedgerEntryListOut,
    LedgerEntryOut,
    OpeningBalanceIn,
    ReconcileOut,
    StockReportOut,
    StockReportPeriod,
)
from stockflow.services.ledger_service import last_entry, period_report, post_opening_balance, reconcile_item
from stockflow.services.workflow import parse_status_filter, require_item, require_warehouse

router = APIRouter(prefix="/stock", tags=["stock"])


@router.get(
    "/cards",
    response_model=LedgerEntryListOut,
    summary="List stock card entries",
    description="Ledger entries in creation order. Entries are never edited or deleted.",
    responses={
        200: {
            "description": "Paginated stock card",
            "content": {
                "application/json": {
                    "example": {
                        "items": [LedgerEntryOut.model_config["json_schema_extra"]["example"]],
                        "pagination": {
                            "total": 4,
                            "limit": 50,
                            "offset": 0,
                            "count": 1,
                            "has_next": False,
                        },
                    }
                }
            },
        },
        **error_responses(401, 403, 404, 422, 500),
    },
)
def list_stock_cards(
    item_id: str | None = Query(default=None),
    kind: str | None = Query(default=None, description="Comma-separated movement kinds"),
    reference_type: str | None = Query(default=None),
    reference_id: str | None = Query(default=None),
    date_from: date | None = Query(default=None),
    date_to: date | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission("stock.read")),
):
    filters = []
    if item_id:
        require_item(db, item_id)
        filters.append(LedgerEntry.item_id == item_id)
    kinds = parse_status_filter(kind, StockMovementKind)
    if kinds:
        filters.append(LedgerEntry.movement_kind.in_(kinds))
    if reference_type:
        filters.append(LedgerEntry.reference_type == reference_type.strip().upper())
    if reference_id:
        filters.append(LedgerEntry.reference_id == reference_id)
    if date_from and date_to and date_to < date_from:
        raise ValidationError(
            "date_to cannot be before date_from",
            details=[{"date_from": date_from.isoformat(), "date_to": date_to.isoformat()}],
        )
    if date_from:
        filters.append(func.date(LedgerEntry.created_at) >= date_from)
    if date_to:
        filters.append(func.date(LedgerEntry.created_at) <= date_to)

    total = int(db.execute(select(func.count(LedgerEntry.id)).where(*filters)).scalar_one())
    rows = db.execute(
        select(LedgerEntry)
        .where(*filters)
        .order_by(LedgerEntry.item_id.asc(), LedgerEntry.sequence.asc())
        .offset(offset)
        .limit(limit)
    ).scalars().all()
    items = [LedgerEntryOut.model_validate(row) for row in rows]
    return LedgerEntryListOut(
        items=items,
        pagination=pagination_meta(total=total, limit=limit, offset=offset, count=len(items)),
    )


@router.get(
    "/items/{item_id}",
    response_model=ItemStockOut,
    summary="Current stock of an item",
    responses=error_responses(401, 403, 404, 500),
)
def get_item_stock(
    item_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission("stock.read")),
):
    item = require_item(db, item_id)
    entry = last_entry(db, item.id)
    return ItemStockOut(
        item_id=item.id,
        sku=item.sku,
        name=item.name,
        uom=item.uom,
        current_stock=item.current_stock,
        last_entry=LedgerEntryOut.model_validate(entry) if entry else None,
    )


@router.get(
    "/items/{item_id}/reconcile",
    response_model=ReconcileOut,
    summary="Replay the stock card and compare with current stock",
    responses=error_responses(401, 403, 404, 500),
)
def reconcile_item_stock(
    item_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission("stock.read")),
):
    result = reconcile_item(db, item_id)
    return ReconcileOut(
        item_id=result.item_id,
        current_stock=result.current_stock,
        replayed_stock=result.replayed_stock,
        entry_count=result.entry_count,
        chain_ok=result.chain_ok,
        consistent=result.consistent,
    )


@router.get(
    "/items/{item_id}/report",
    response_model=StockReportOut,
    summary="Monthly stock card report of an item",
    description=(
        "Opening stock is the sum of every change posted before the month; "
        "closing stock adds the month's movements to it."
    ),
    responses=error_responses(401, 403, 404, 422, 500),
)
def get_item_stock_report(
    item_id: str,
    year: int = Query(ge=2000, le=9999),
    month: int = Query(ge=1, le=12),
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission("stock.read")),
):
    report = period_report(db, item_id=item_id, year=year, month=month)
    return StockReportOut(
        item_id=report.item.id,
        sku=report.item.sku,
        name=report.item.name,
        uom=report.item.uom,
        period=StockReportPeriod(year=year, month=month, start=report.period_start, end=report.period_end),
        opening_stock=report.opening_stock,
        total_in=report.total_in,
        total_out=report.total_out,
        closing_stock=report.closing_stock,
        movements=[LedgerEntryOut.model_validate(entry) for entry in report.movements],
    )


@router.post(
    "/opening-balance",
    response_model=LedgerEntryOut,
    status_code=201,
    summary="Post the opening balance of an item",
    description="Allowed only while the item has no stock card entries.",
    responses=error_responses(400, 401, 403, 404, 409, 422, 500),
)
def create_opening_balance(
    payload: OpeningBalanceIn,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission("stock.opening_balance")),
):
    require_warehouse(db, payload.warehouse_id)
    entry = post_opening_balance(
        db,
        actor_user_id=actor.id,
        item_id=payload.item_id,
        quantity=payload.quantity,
        warehouse_id=payload.warehouse_id,
        note=payload.note,
    )
    db.commit()
    db.refresh(entry)
    return LedgerEntryOut.model_validate(entry)
