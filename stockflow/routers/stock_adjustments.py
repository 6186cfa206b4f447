from collections.abc import Sequence

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from stockflow.core.api_docs import error_responses
from stockflow.core.deps import get_db
from stockflow.core.permissions import require_permission
from stockflow.core.security_current import Actor
from stockflow.models.adjustment import AdjustmentStatus, StockAdjustment
from stockflow.models.inventory import LedgerEntry
from stockflow.schemas.adjustment import (
    AdjustmentCreateIn,
    AdjustmentItemOut,
    AdjustmentListOut,
    AdjustmentOut,
    AdjustmentTransitionOut,
)
from stockflow.schemas.common import DecisionNotesIn, RejectIn, pagination_meta
from stockflow.schemas.stock import LedgerEntryOut
from stockflow.services.adjustment_service import (
    adjustment_lines,
    approve_adjustment,
    create_adjustment,
    get_adjustment,
    list_adjustments,
    reject_adjustment,
    submit_adjustment,
)
from stockflow.services.workflow import parse_status_filter

router = APIRouter(prefix="/stock-adjustments", tags=["stock-adjustments"])


def adjustment_out(db: Session, adjustment: StockAdjustment) -> AdjustmentOut:
    return AdjustmentOut(
        id=adjustment.id,
        adjustment_code=adjustment.adjustment_code,
        adjustment_type=adjustment.adjustment_type,
        source=adjustment.source,
        stock_opname_id=adjustment.stock_opname_id,
        warehouse_id=adjustment.warehouse_id,
        status=adjustment.status,
        notes=adjustment.notes,
        created_by_user_id=adjustment.created_by_user_id,
        submitted_at=adjustment.submitted_at,
        decided_by_user_id=adjustment.decided_by_user_id,
        decided_at=adjustment.decided_at,
        decision_notes=adjustment.decision_notes,
        items=[
            AdjustmentItemOut(
                id=line.id,
                item_id=line.item_id,
                method=line.method,
                delta_direction=line.delta_direction,
                qty_system=line.qty_system,
                qty_input=line.qty_input,
                qty_variance=line.qty_variance,
                notes=line.notes,
            )
            for line in adjustment_lines(db, adjustment.id)
        ],
        created_at=adjustment.created_at,
        updated_at=adjustment.updated_at,
    )


def _transition_out(
    db: Session, adjustment: StockAdjustment, entries: Sequence[LedgerEntry] = ()
) -> AdjustmentTransitionOut:
    return AdjustmentTransitionOut(
        adjustment=adjustment_out(db, adjustment),
        ledger_entries=[LedgerEntryOut.model_validate(entry) for entry in entries],
    )


@router.post(
    "",
    response_model=AdjustmentOut,
    status_code=201,
    summary="Create a stock adjustment",
    description=(
        "REAL_QTY lines state the counted quantity; DELTA_QTY lines state a signed change. "
        "System quantity is captured when the adjustment is submitted."
    ),
    responses=error_responses(400, 401, 403, 404, 409, 422, 500),
)
def create_stock_adjustment(
    payload: AdjustmentCreateIn,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission("adjustment.create")),
):
    adjustment = create_adjustment(
        db,
        actor=actor,
        adjustment_type=payload.adjustment_type,
        warehouse_id=payload.warehouse_id,
        notes=payload.notes,
        lines=payload.items,
        submit=payload.submit,
    )
    db.commit()
    db.refresh(adjustment)
    return adjustment_out(db, adjustment)


@router.get(
    "",
    response_model=AdjustmentListOut,
    summary="List stock adjustments",
    responses=error_responses(401, 403, 422, 500),
)
def list_stock_adjustments(
    status: str | None = Query(default=None, description="Comma-separated statuses"),
    adjustment_type: str | None = Query(default=None),
    source: str | None = Query(default=None, description="MANUAL or OPNAME"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission("adjustment.read")),
):
    rows, total = list_adjustments(
        db,
        statuses=parse_status_filter(status, AdjustmentStatus),
        adjustment_type=adjustment_type,
        source=source,
        limit=limit,
        offset=offset,
    )
    items = [adjustment_out(db, row) for row in rows]
    return AdjustmentListOut(
        items=items,
        pagination=pagination_meta(total=total, limit=limit, offset=offset, count=len(items)),
    )


@router.get(
    "/{adjustment_id}",
    response_model=AdjustmentOut,
    summary="Get a stock adjustment",
    responses=error_responses(401, 403, 404, 500),
)
def get_stock_adjustment(
    adjustment_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission("adjustment.read")),
):
    return adjustment_out(db, get_adjustment(db, adjustment_id))


@router.post(
    "/{adjustment_id}/submit",
    response_model=AdjustmentTransitionOut,
    summary="Submit for approval",
    responses=error_responses(401, 403, 404, 409, 500),
)
def submit_stock_adjustment(
    adjustment_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission("adjustment.create")),
):
    adjustment = submit_adjustment(db, actor=actor, adjustment_id=adjustment_id)
    db.commit()
    db.refresh(adjustment)
    return _transition_out(db, adjustment)


@router.post(
    "/{adjustment_id}/approve",
    response_model=AdjustmentTransitionOut,
    summary="Approve and post to stock",
    description=(
        "Applies each line's variance to live stock as ADJUSTMENT_IN or ADJUSTMENT_OUT. "
        "Rejected as a whole when any item would go below zero."
    ),
    responses=error_responses(401, 403, 404, 409, 422, 500),
)
def approve_stock_adjustment(
    adjustment_id: str,
    payload: DecisionNotesIn | None = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission("adjustment.approve")),
):
    adjustment, entries = approve_adjustment(
        db,
        actor=actor,
        adjustment_id=adjustment_id,
        notes=payload.notes if payload else None,
    )
    db.commit()
    db.refresh(adjustment)
    return _transition_out(db, adjustment, entries)


@router.post(
    "/{adjustment_id}/reject",
    response_model=AdjustmentTransitionOut,
    summary="Reject a stock adjustment",
    responses=error_responses(401, 403, 404, 409, 422, 500),
)
def reject_stock_adjustment(
    adjustment_id: str,
    payload: RejectIn,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission("adjustment.approve")),
):
    adjustment = reject_adjustment(db, actor=actor, adjustment_id=adjustment_id, reason=payload.reason)
    db.commit()
    db.refresh(adjustment)
    return _transition_out(db, adjustment)
