from collections.abc import Sequence

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from stockflow.core.api_docs import error_responses
from stockflow.core.deps import get_db
from stockflow.core.permissions import require_permission
from stockflow.core.security_current import Actor
from stockflow.models.inventory import LedgerEntry
from stockflow.models.returns import ReturnStatus, VendorReturn
from stockflow.schemas.common import DecisionNotesIn, RejectIn, pagination_meta
from stockflow.schemas.returns import (
    ReturnCreateIn,
    ReturnItemOut,
    ReturnListOut,
    ReturnOut,
    ReturnShipIn,
    ReturnTransitionOut,
)
from stockflow.schemas.stock import LedgerEntryOut
from stockflow.services.return_service import (
    approve_return,
    complete_return,
    create_return,
    get_return,
    keep_items,
    list_returns,
    reject_return,
    return_lines,
    ship_return,
    submit_return,
)
from stockflow.services.workflow import parse_status_filter

router = APIRouter(prefix="/returns", tags=["returns"])


def _return_out(db: Session, vendor_return: VendorReturn) -> ReturnOut:
    return ReturnOut(
        id=vendor_return.id,
        return_code=vendor_return.return_code,
        vendor_id=vendor_return.vendor_id,
        warehouse_id=vendor_return.warehouse_id,
        inbound_id=vendor_return.inbound_id,
        return_date=vendor_return.return_date,
        reason=vendor_return.reason,
        status=vendor_return.status,
        notes=vendor_return.notes,
        total_amount=float(vendor_return.total_amount),
        created_by_user_id=vendor_return.created_by_user_id,
        submitted_at=vendor_return.submitted_at,
        approved_by_user_id=vendor_return.approved_by_user_id,
        approved_at=vendor_return.approved_at,
        rejected_by_user_id=vendor_return.rejected_by_user_id,
        rejected_at=vendor_return.rejected_at,
        rejection_reason=vendor_return.rejection_reason,
        shipped_by_user_id=vendor_return.shipped_by_user_id,
        shipped_at=vendor_return.shipped_at,
        tracking_number=vendor_return.tracking_number,
        completed_by_user_id=vendor_return.completed_by_user_id,
        completed_at=vendor_return.completed_at,
        kept_by_user_id=vendor_return.kept_by_user_id,
        kept_at=vendor_return.kept_at,
        items=[
            ReturnItemOut(
                id=line.id,
                item_id=line.item_id,
                quantity=line.quantity,
                unit_price=float(line.unit_price),
                total_price=float(line.total_price),
                notes=line.notes,
            )
            for line in return_lines(db, vendor_return.id)
        ],
        created_at=vendor_return.created_at,
        updated_at=vendor_return.updated_at,
    )


def _transition_out(
    db: Session, vendor_return: VendorReturn, entries: Sequence[LedgerEntry] = ()
) -> ReturnTransitionOut:
    db.commit()
    db.refresh(vendor_return)
    return ReturnTransitionOut(
        vendor_return=_return_out(db, vendor_return),
        ledger_entries=[LedgerEntryOut.model_validate(entry) for entry in entries],
    )


@router.post(
    "",
    response_model=ReturnOut,
    status_code=201,
    summary="Create a vendor return",
    responses=error_responses(400, 401, 403, 404, 422, 500),
)
def create_vendor_return(
    payload: ReturnCreateIn,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission("return.create")),
):
    vendor_return = create_return(
        db,
        actor=actor,
        vendor_id=payload.vendor_id,
        reason=payload.reason,
        lines=payload.items,
        warehouse_id=payload.warehouse_id,
        inbound_id=payload.inbound_id,
        return_date=payload.return_date,
        notes=payload.notes,
        submit=payload.submit,
    )
    db.commit()
    db.refresh(vendor_return)
    return _return_out(db, vendor_return)


@router.get(
    "",
    response_model=ReturnListOut,
    summary="List vendor returns",
    responses=error_responses(401, 403, 422, 500),
)
def list_vendor_returns(
    status: str | None = Query(default=None, description="Comma-separated statuses"),
    vendor_id: str | None = Query(default=None),
    q: str | None = Query(default=None, description="Search return code or tracking number"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission("return.read")),
):
    rows, total = list_returns(
        db,
        statuses=parse_status_filter(status, ReturnStatus),
        vendor_id=vendor_id,
        search=q,
        limit=limit,
        offset=offset,
    )
    items = [_return_out(db, row) for row in rows]
    return ReturnListOut(
        items=items,
        pagination=pagination_meta(total=total, limit=limit, offset=offset, count=len(items)),
    )


@router.get(
    "/{vendor_return_id}",
    response_model=ReturnOut,
    summary="Get a vendor return",
    responses=error_responses(401, 403, 404, 500),
)
def get_vendor_return(
    vendor_return_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission("return.read")),
):
    return _return_out(db, get_return(db, vendor_return_id))


@router.post(
    "/{vendor_return_id}/submit",
    response_model=ReturnTransitionOut,
    summary="Submit for approval",
    responses=error_responses(401, 403, 404, 409, 500),
)
def submit_vendor_return(
    vendor_return_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission("return.create")),
):
    vendor_return = submit_return(db, actor=actor, vendor_return_id=vendor_return_id)
    return _transition_out(db, vendor_return)


@router.post(
    "/{vendor_return_id}/approve",
    response_model=ReturnTransitionOut,
    summary="Approve a vendor return",
    description="The creator of the return cannot approve it.",
    responses=error_responses(401, 403, 404, 409, 500),
)
def approve_vendor_return(
    vendor_return_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission("return.approve")),
):
    vendor_return = approve_return(db, actor=actor, vendor_return_id=vendor_return_id)
    return _transition_out(db, vendor_return)


@router.post(
    "/{vendor_return_id}/reject",
    response_model=ReturnTransitionOut,
    summary="Reject a vendor return",
    responses=error_responses(401, 403, 404, 409, 422, 500),
)
def reject_vendor_return(
    vendor_return_id: str,
    payload: RejectIn,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission("return.approve")),
):
    vendor_return = reject_return(db, actor=actor, vendor_return_id=vendor_return_id, reason=payload.reason)
    return _transition_out(db, vendor_return)


@router.post(
    "/{vendor_return_id}/ship",
    response_model=ReturnTransitionOut,
    summary="Mark the return as sent to the vendor",
    responses=error_responses(401, 403, 404, 409, 422, 500),
)
def ship_vendor_return(
    vendor_return_id: str,
    payload: ReturnShipIn | None = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission("return.ship")),
):
    payload = payload or ReturnShipIn()
    vendor_return = ship_return(
        db,
        actor=actor,
        vendor_return_id=vendor_return_id,
        tracking_number=payload.tracking_number,
        notes=payload.notes,
    )
    return _transition_out(db, vendor_return)


@router.post(
    "/{vendor_return_id}/complete",
    response_model=ReturnTransitionOut,
    summary="Complete the return",
    description="Posts one RETURN_OUT stock card entry per line. Fails as a whole on insufficient stock.",
    responses=error_responses(401, 403, 404, 409, 422, 500),
)
def complete_vendor_return(
    vendor_return_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission("return.complete")),
):
    vendor_return, entries = complete_return(db, actor=actor, vendor_return_id=vendor_return_id)
    return _transition_out(db, vendor_return, entries)


@router.post(
    "/{vendor_return_id}/keep-items",
    response_model=ReturnTransitionOut,
    summary="Keep the goods after the vendor declined",
    description="Books the goods back in with RETURN_IN entries. Earlier RETURN_OUT entries are kept.",
    responses=error_responses(401, 403, 404, 409, 422, 500),
)
def keep_vendor_return_items(
    vendor_return_id: str,
    payload: DecisionNotesIn | None = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission("return.complete")),
):
    vendor_return, entries = keep_items(
        db,
        actor=actor,
        vendor_return_id=vendor_return_id,
        notes=payload.notes if payload else None,
    )
    return _transition_out(db, vendor_return, entries)
