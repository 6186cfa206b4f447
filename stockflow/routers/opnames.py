from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from stockflow.core.api_docs import error_responses
from stockflow.core.deps import get_db
from stockflow.core.permissions import require_permission
from stockflow.core.security_current import Actor
from stockflow.models.opname import CountingSheet, OpnameStatus, StockOpname
from stockflow.routers.stock_adjustments import adjustment_out
from stockflow.schemas.common import RejectIn, pagination_meta
from stockflow.schemas.opname import (
    CountingSheetLineOut,
    CountingSheetListOut,
    CountingSheetOut,
    OpnameCountOut,
    OpnameCreateIn,
    OpnameFinalizeIn,
    OpnameFinalizeOut,
    OpnameListOut,
    OpnameOut,
    SheetComparisonOut,
    SheetCompareIn,
    SheetCountsIn,
    SheetMismatchOut,
    SheetSubmitIn,
    VarianceLineOut,
    VarianceOut,
)
from stockflow.services.opname_service import (
    VarianceLine,
    compare_sheets,
    create_counting_sheet,
    create_opname,
    finalize_opname,
    get_opname,
    get_sheet,
    list_opnames,
    opname_counts,
    opname_sheets,
    preview_variances,
    reject_sheet,
    save_counts,
    sheet_lines,
    submit_sheet,
)
from stockflow.services.workflow import parse_status_filter

router = APIRouter(prefix="/opnames", tags=["opnames"])
sheets_router = APIRouter(prefix="/counting-sheets", tags=["opnames"])


def _opname_out(db: Session, opname: StockOpname) -> OpnameOut:
    return OpnameOut(
        id=opname.id,
        opname_code=opname.opname_code,
        title=opname.title,
        warehouse_id=opname.warehouse_id,
        scheduled_date=opname.scheduled_date,
        status=opname.status,
        notes=opname.notes,
        created_by_user_id=opname.created_by_user_id,
        matched_sheet_id=opname.matched_sheet_id,
        finalized_by_user_id=opname.finalized_by_user_id,
        finalized_at=opname.finalized_at,
        adjustment_id=opname.adjustment_id,
        counts=[
            OpnameCountOut(
                id=count.id,
                item_id=count.item_id,
                system_qty=count.system_qty,
                final_qty=count.final_qty,
                variance=count.variance,
                is_matching=count.is_matching,
            )
            for count in opname_counts(db, opname.id)
        ],
        created_at=opname.created_at,
        updated_at=opname.updated_at,
    )


def _sheet_out(db: Session, sheet: CountingSheet) -> CountingSheetOut:
    lines = sheet_lines(db, sheet.id)
    return CountingSheetOut(
        id=sheet.id,
        stock_opname_id=sheet.stock_opname_id,
        sheet_number=sheet.sheet_number,
        status=sheet.status,
        recount_round=sheet.recount_round,
        counter_user_id=sheet.counter_user_id,
        counter_name=sheet.counter_name,
        counter_role=sheet.counter_role,
        submitted_at=sheet.submitted_at,
        compared_with_sheet_id=sheet.compared_with_sheet_id,
        rejection_reason=sheet.rejection_reason,
        counted_lines=sum(1 for line in lines if line.counted_qty is not None),
        total_lines=len(lines),
        lines=[
            CountingSheetLineOut(id=line.id, item_id=line.item_id, counted_qty=line.counted_qty, notes=line.notes)
            for line in lines
        ],
    )


def _variance_out(line: VarianceLine) -> VarianceLineOut:
    return VarianceLineOut(
        item_id=line.item_id,
        system_qty=line.system_qty,
        counted_qty=line.counted_qty,
        variance=line.variance,
    )


@router.post(
    "",
    response_model=OpnameOut,
    status_code=201,
    summary="Schedule a stock opname",
    description="Captures the system quantity of every audited item once; it is not refreshed later.",
    responses=error_responses(401, 403, 404, 422, 500),
)
def create_stock_opname(
    payload: OpnameCreateIn,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission("opname.manage")),
):
    opname = create_opname(
        db,
        actor=actor,
        title=payload.title,
        item_ids=payload.item_ids,
        warehouse_id=payload.warehouse_id,
        scheduled_date=payload.scheduled_date,
        notes=payload.notes,
    )
    db.commit()
    db.refresh(opname)
    return _opname_out(db, opname)


@router.get(
    "",
    response_model=OpnameListOut,
    summary="List stock opnames",
    responses=error_responses(401, 403, 422, 500),
)
def list_stock_opnames(
    status: str | None = Query(default=None, description="Comma-separated statuses"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission("opname.read")),
):
    rows, total = list_opnames(
        db,
        statuses=parse_status_filter(status, OpnameStatus),
        limit=limit,
        offset=offset,
    )
    items = [_opname_out(db, row) for row in rows]
    return OpnameListOut(
        items=items,
        pagination=pagination_meta(total=total, limit=limit, offset=offset, count=len(items)),
    )


@router.get(
    "/{opname_id}",
    response_model=OpnameOut,
    summary="Get a stock opname",
    responses=error_responses(401, 403, 404, 500),
)
def get_stock_opname(
    opname_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission("opname.read")),
):
    return _opname_out(db, get_opname(db, opname_id))


@router.post(
    "/{opname_id}/sheets",
    response_model=CountingSheetOut,
    status_code=201,
    summary="Open a counting sheet",
    responses=error_responses(401, 403, 404, 409, 500),
)
def create_sheet(
    opname_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission("opname.count")),
):
    sheet = create_counting_sheet(db, actor=actor, opname_id=opname_id)
    db.commit()
    db.refresh(sheet)
    return _sheet_out(db, sheet)


@router.get(
    "/{opname_id}/sheets",
    response_model=CountingSheetListOut,
    summary="List counting sheets with progress",
    responses=error_responses(401, 403, 404, 500),
)
def list_sheets(
    opname_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission("opname.read")),
):
    opname = get_opname(db, opname_id)
    return CountingSheetListOut(items=[_sheet_out(db, sheet) for sheet in opname_sheets(db, opname.id)])


@router.post(
    "/{opname_id}/compare",
    response_model=SheetComparisonOut,
    summary="Compare two submitted sheets",
    description=(
        "Both sheets become MATCHED when every line agrees. A mismatch is only reported; "
        "reject a sheet to have it counted again."
    ),
    responses=error_responses(401, 403, 404, 409, 422, 500),
)
def compare_opname_sheets(
    opname_id: str,
    payload: SheetCompareIn,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission("opname.manage")),
):
    comparison = compare_sheets(
        db,
        actor=actor,
        opname_id=opname_id,
        sheet_a_id=payload.sheet_a_id,
        sheet_b_id=payload.sheet_b_id,
    )
    db.commit()
    db.refresh(comparison.sheet_a)
    db.refresh(comparison.sheet_b)
    return SheetComparisonOut(
        matched=comparison.matched,
        mismatches=[
            SheetMismatchOut(item_id=row.item_id, sheet_a_qty=row.sheet_a_qty, sheet_b_qty=row.sheet_b_qty)
            for row in comparison.mismatches
        ],
        sheet_a=_sheet_out(db, comparison.sheet_a),
        sheet_b=_sheet_out(db, comparison.sheet_b),
    )


@router.get(
    "/{opname_id}/variance",
    response_model=VarianceOut,
    summary="Preview variances against the system snapshot",
    description="Read-only. Uses the given MATCHED sheet, or the session's matched sheet.",
    responses=error_responses(401, 403, 404, 422, 500),
)
def preview_opname_variance(
    opname_id: str,
    sheet_id: str | None = Query(default=None),
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission("opname.read")),
):
    sheet, variances = preview_variances(db, opname_id=opname_id, sheet_id=sheet_id)
    return VarianceOut(
        opname_id=opname_id,
        sheet_id=sheet.id,
        lines=[_variance_out(line) for line in variances],
        total_variance_lines=sum(1 for line in variances if line.variance != 0),
    )


@router.post(
    "/{opname_id}/finalize",
    response_model=OpnameFinalizeOut,
    summary="Finalize the opname",
    description=(
        "Nonzero variances create a PENDING stock adjustment that still needs its own approval; "
        "stock does not change here."
    ),
    responses=error_responses(401, 403, 404, 409, 422, 500),
)
def finalize_stock_opname(
    opname_id: str,
    payload: OpnameFinalizeIn | None = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission("opname.finalize")),
):
    payload = payload or OpnameFinalizeIn()
    opname, variances, adjustment = finalize_opname(
        db,
        actor=actor,
        opname_id=opname_id,
        sheet_id=payload.sheet_id,
        create_adjustment=payload.create_adjustment,
        notes=payload.notes,
    )
    db.commit()
    db.refresh(opname)
    if adjustment is not None:
        db.refresh(adjustment)
    return OpnameFinalizeOut(
        opname=_opname_out(db, opname),
        variances=[_variance_out(line) for line in variances],
        adjustment=adjustment_out(db, adjustment) if adjustment is not None else None,
    )


@sheets_router.get(
    "/{sheet_id}",
    response_model=CountingSheetOut,
    summary="Get a counting sheet",
    responses=error_responses(401, 403, 404, 500),
)
def get_counting_sheet(
    sheet_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission("opname.read")),
):
    return _sheet_out(db, get_sheet(db, sheet_id))


@sheets_router.put(
    "/{sheet_id}/counts",
    response_model=CountingSheetOut,
    summary="Save counted quantities",
    responses=error_responses(400, 401, 403, 404, 409, 422, 500),
)
def save_sheet_counts(
    sheet_id: str,
    payload: SheetCountsIn,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission("opname.count")),
):
    sheet = save_counts(db, actor=actor, sheet_id=sheet_id, counts=payload.counts)
    db.commit()
    db.refresh(sheet)
    return _sheet_out(db, sheet)


@sheets_router.post(
    "/{sheet_id}/submit",
    response_model=CountingSheetOut,
    summary="Submit a fully counted sheet",
    responses=error_responses(401, 403, 404, 409, 422, 500),
)
def submit_counting_sheet(
    sheet_id: str,
    payload: SheetSubmitIn | None = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission("opname.count")),
):
    sheet = submit_sheet(
        db,
        actor=actor,
        sheet_id=sheet_id,
        counter_name=payload.counter_name if payload else None,
    )
    db.commit()
    db.refresh(sheet)
    return _sheet_out(db, sheet)


@sheets_router.post(
    "/{sheet_id}/reject",
    response_model=CountingSheetOut,
    summary="Reject a sheet for recount",
    description="Clears every count and the counter identity and returns the sheet to DRAFT.",
    responses=error_responses(401, 403, 404, 409, 422, 500),
)
def reject_counting_sheet(
    sheet_id: str,
    payload: RejectIn,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission("opname.manage")),
):
    sheet = reject_sheet(db, actor=actor, sheet_id=sheet_id, reason=payload.reason)
    db.commit()
    db.refresh(sheet)
    return _sheet_out(db, sheet)
