from collections.abc import Sequence

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from stockflow.core.api_docs import error_responses
from stockflow.core.deps import get_db
from stockflow.core.permissions import require_permission
from stockflow.core.security_current import Actor
from stockflow.models.inbound import Inbound, InboundStatus
from stockflow.models.inventory import LedgerEntry
from stockflow.schemas.common import pagination_meta
from stockflow.schemas.inbound import (
    InboundCreateIn,
    InboundIssueListOut,
    InboundIssueOut,
    InboundItemOut,
    InboundListOut,
    InboundOut,
    InboundReceiveRemainderIn,
    InboundResolveIn,
    InboundTransitionOut,
    InboundVerifyIn,
)
from stockflow.schemas.stock import LedgerEntryOut
from stockflow.services.inbound_service import (
    create_inbound,
    get_inbound,
    inbound_lines,
    list_inbounds,
    list_open_issues,
    receive_remainder,
    resolve_issue,
    verify_inbound,
)
from stockflow.services.workflow import parse_status_filter

router = APIRouter(prefix="/inbounds", tags=["inbounds"])


def inbound_out(db: Session, inbound: Inbound) -> InboundOut:
    return InboundOut(
        id=inbound.id,
        grn_number=inbound.grn_number,
        purchase_request_id=inbound.purchase_request_id,
        vendor_id=inbound.vendor_id,
        warehouse_id=inbound.warehouse_id,
        receive_date=inbound.receive_date,
        status=inbound.status,
        notes=inbound.notes,
        created_by_user_id=inbound.created_by_user_id,
        verified_by_user_id=inbound.verified_by_user_id,
        verified_at=inbound.verified_at,
        verification_notes=inbound.verification_notes,
        completed_at=inbound.completed_at,
        items=[
            InboundItemOut(
                id=line.id,
                item_id=line.item_id,
                expected_qty=line.expected_qty,
                received_qty=line.received_qty,
                accepted_qty=line.accepted_qty,
                rejected_qty=line.rejected_qty,
                stocked_qty=line.stocked_qty,
                discrepancy_type=line.discrepancy_type,
                rejection_reason=line.rejection_reason,
                discrepancy_notes=line.discrepancy_notes,
                issue_status=line.issue_status,
                resolution=line.resolution,
                resolution_notes=line.resolution_notes,
                resolved_by_user_id=line.resolved_by_user_id,
                resolved_at=line.resolved_at,
            )
            for line in inbound_lines(db, inbound.id)
        ],
        created_at=inbound.created_at,
        updated_at=inbound.updated_at,
    )


def _transition_out(db: Session, inbound: Inbound, entries: Sequence[LedgerEntry]) -> InboundTransitionOut:
    return InboundTransitionOut(
        inbound=inbound_out(db, inbound),
        ledger_entries=[LedgerEntryOut.model_validate(entry) for entry in entries],
    )


@router.get(
    "",
    response_model=InboundListOut,
    summary="List inbound receipts",
    responses=error_responses(401, 403, 422, 500),
)
def list_inbound_receipts(
    status: str | None = Query(default=None, description="Comma-separated statuses"),
    vendor_id: str | None = Query(default=None),
    purchase_request_id: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission("inbound.read")),
):
    rows, total = list_inbounds(
        db,
        statuses=parse_status_filter(status, InboundStatus),
        vendor_id=vendor_id,
        purchase_request_id=purchase_request_id,
        limit=limit,
        offset=offset,
    )
    items = [inbound_out(db, row) for row in rows]
    return InboundListOut(
        items=items,
        pagination=pagination_meta(total=total, limit=limit, offset=offset, count=len(items)),
    )


@router.get(
    "/issues",
    response_model=InboundIssueListOut,
    summary="List open receipt issues",
    description="Shortage, overage and rejection lines that still need a resolution.",
    responses=error_responses(401, 403, 500),
)
def list_inbound_issues(
    inbound_id: str | None = Query(default=None),
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission("inbound.read")),
):
    return InboundIssueListOut(
        items=[
            InboundIssueOut(
                inbound_id=issue.inbound.id,
                grn_number=issue.inbound.grn_number,
                line_id=issue.line.id,
                item_id=issue.line.item_id,
                discrepancy_type=issue.line.discrepancy_type,
                quantity=issue.quantity,
                issue_status=issue.line.issue_status,
                resolution=issue.line.resolution,
            )
            for issue in list_open_issues(db, inbound_id=inbound_id)
        ]
    )


@router.post(
    "",
    response_model=InboundOut,
    status_code=201,
    summary="Create an inbound receipt without a purchase order",
    responses=error_responses(400, 401, 403, 404, 422, 500),
)
def create_inbound_receipt(
    payload: InboundCreateIn,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission("inbound.create")),
):
    inbound = create_inbound(
        db,
        actor=actor,
        vendor_id=payload.vendor_id,
        warehouse_id=payload.warehouse_id,
        notes=payload.notes,
        lines=[(line.item_id, line.expected_qty) for line in payload.items],
    )
    db.commit()
    db.refresh(inbound)
    return inbound_out(db, inbound)


@router.get(
    "/{inbound_id}",
    response_model=InboundOut,
    summary="Get an inbound receipt",
    responses=error_responses(401, 403, 404, 500),
)
def get_inbound_receipt(
    inbound_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission("inbound.read")),
):
    return inbound_out(db, get_inbound(db, inbound_id))


@router.post(
    "/{inbound_id}/verify",
    response_model=InboundTransitionOut,
    summary="Verify received quantities",
    description=(
        "Records received, accepted and rejected quantity for every line in one call. "
        "Only accepted quantity is posted to stock. Any discrepancy leaves the receipt PARTIAL."
    ),
    responses=error_responses(400, 401, 403, 404, 409, 422, 500),
)
def verify_inbound_receipt(
    inbound_id: str,
    payload: InboundVerifyIn,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission("inbound.verify")),
):
    inbound, entries = verify_inbound(
        db,
        actor=actor,
        inbound_id=inbound_id,
        payload_lines=payload.lines,
        receive_date=payload.receive_date,
        notes=payload.notes,
    )
    db.commit()
    db.refresh(inbound)
    return _transition_out(db, inbound, entries)


@router.post(
    "/{inbound_id}/lines/{line_id}/resolve",
    response_model=InboundTransitionOut,
    summary="Resolve a receipt issue",
    responses=error_responses(400, 401, 403, 404, 409, 422, 500),
)
def resolve_inbound_issue(
    inbound_id: str,
    line_id: str,
    payload: InboundResolveIn,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission("inbound.resolve")),
):
    inbound, entries = resolve_issue(
        db,
        actor=actor,
        inbound_id=inbound_id,
        line_id=line_id,
        resolution=payload.resolution,
        notes=payload.notes,
    )
    db.commit()
    db.refresh(inbound)
    return _transition_out(db, inbound, entries)


@router.post(
    "/{inbound_id}/lines/{line_id}/receive-remainder",
    response_model=InboundTransitionOut,
    summary="Receive the outstanding quantity of a shortage",
    responses=error_responses(400, 401, 403, 404, 409, 422, 500),
)
def receive_inbound_remainder(
    inbound_id: str,
    line_id: str,
    payload: InboundReceiveRemainderIn,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission("inbound.resolve")),
):
    inbound, entries = receive_remainder(
        db,
        actor=actor,
        inbound_id=inbound_id,
        line_id=line_id,
        quantity=payload.quantity,
        notes=payload.notes,
    )
    db.commit()
    db.refresh(inbound)
    return _transition_out(db, inbound, entries)
