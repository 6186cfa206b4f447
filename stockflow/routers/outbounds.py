from collections.abc import Sequence

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from stockflow.core.api_docs import error_responses
from stockflow.core.deps import get_db
from stockflow.core.permissions import require_permission
from stockflow.core.security_current import Actor
from stockflow.models.inventory import LedgerEntry
from stockflow.models.outbound import Outbound, OutboundStatus
from stockflow.schemas.common import RejectIn, pagination_meta
from stockflow.schemas.outbound import (
    OutboundCreateIn,
    OutboundItemOut,
    OutboundListOut,
    OutboundOut,
    OutboundReleaseIn,
    OutboundTransitionOut,
)
from stockflow.schemas.stock import LedgerEntryOut
from stockflow.services.outbound_service import (
    approve_outbound,
    create_outbound,
    get_outbound,
    list_outbounds,
    outbound_lines,
    reject_outbound,
    release_outbound,
)
from stockflow.services.workflow import parse_status_filter

router = APIRouter(prefix="/outbounds", tags=["outbounds"])


def _outbound_out(db: Session, outbound: Outbound) -> OutboundOut:
    return OutboundOut(
        id=outbound.id,
        outbound_code=outbound.outbound_code,
        partner_id=outbound.partner_id,
        warehouse_id=outbound.warehouse_id,
        purpose=outbound.purpose,
        notes=outbound.notes,
        status=outbound.status,
        created_by_user_id=outbound.created_by_user_id,
        approved_by_user_id=outbound.approved_by_user_id,
        approved_at=outbound.approved_at,
        released_by_user_id=outbound.released_by_user_id,
        released_at=outbound.released_at,
        rejected_by_user_id=outbound.rejected_by_user_id,
        rejected_at=outbound.rejected_at,
        rejection_reason=outbound.rejection_reason,
        items=[
            OutboundItemOut(
                id=line.id,
                item_id=line.item_id,
                requested_qty=line.requested_qty,
                released_qty=line.released_qty,
                notes=line.notes,
            )
            for line in outbound_lines(db, outbound.id)
        ],
        created_at=outbound.created_at,
        updated_at=outbound.updated_at,
    )


def _transition_out(db: Session, outbound: Outbound, entries: Sequence[LedgerEntry] = ()) -> OutboundTransitionOut:
    return OutboundTransitionOut(
        outbound=_outbound_out(db, outbound),
        ledger_entries=[LedgerEntryOut.model_validate(entry) for entry in entries],
    )


@router.post(
    "",
    response_model=OutboundOut,
    status_code=201,
    summary="Create an outbound request",
    responses=error_responses(400, 401, 403, 404, 422, 500),
)
def create_outbound_request(
    payload: OutboundCreateIn,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission("outbound.create")),
):
    outbound = create_outbound(
        db,
        actor=actor,
        partner_id=payload.partner_id,
        warehouse_id=payload.warehouse_id,
        purpose=payload.purpose,
        notes=payload.notes,
        lines=payload.items,
    )
    db.commit()
    db.refresh(outbound)
    return _outbound_out(db, outbound)


@router.get(
    "",
    response_model=OutboundListOut,
    summary="List outbound requests",
    responses=error_responses(401, 403, 422, 500),
)
def list_outbound_requests(
    status: str | None = Query(default=None, description="Comma-separated statuses"),
    partner_id: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission("outbound.read")),
):
    rows, total = list_outbounds(
        db,
        statuses=parse_status_filter(status, OutboundStatus),
        partner_id=partner_id,
        limit=limit,
        offset=offset,
    )
    items = [_outbound_out(db, row) for row in rows]
    return OutboundListOut(
        items=items,
        pagination=pagination_meta(total=total, limit=limit, offset=offset, count=len(items)),
    )


@router.get(
    "/{outbound_id}",
    response_model=OutboundOut,
    summary="Get an outbound request",
    responses=error_responses(401, 403, 404, 500),
)
def get_outbound_request(
    outbound_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission("outbound.read")),
):
    return _outbound_out(db, get_outbound(db, outbound_id))


@router.post(
    "/{outbound_id}/approve",
    response_model=OutboundTransitionOut,
    summary="Approve an outbound request",
    description="The creator of the request cannot approve it.",
    responses=error_responses(401, 403, 404, 409, 500),
)
def approve_outbound_request(
    outbound_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission("outbound.approve")),
):
    outbound = approve_outbound(db, actor=actor, outbound_id=outbound_id)
    db.commit()
    db.refresh(outbound)
    return _transition_out(db, outbound)


@router.post(
    "/{outbound_id}/reject",
    response_model=OutboundTransitionOut,
    summary="Reject an outbound request",
    responses=error_responses(401, 403, 404, 409, 422, 500),
)
def reject_outbound_request(
    outbound_id: str,
    payload: RejectIn,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission("outbound.reject")),
):
    outbound = reject_outbound(db, actor=actor, outbound_id=outbound_id, reason=payload.reason)
    db.commit()
    db.refresh(outbound)
    return _transition_out(db, outbound)


@router.post(
    "/{outbound_id}/release",
    response_model=OutboundTransitionOut,
    summary="Release approved goods",
    description=(
        "Posts one OUTBOUND stock card entry per line. Omit `lines` to release every "
        "line in full. Any short line fails the whole release with no entries written."
    ),
    responses=error_responses(400, 401, 403, 404, 409, 422, 500),
)
def release_outbound_request(
    outbound_id: str,
    payload: OutboundReleaseIn | None = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission("outbound.release")),
):
    payload = payload or OutboundReleaseIn()
    outbound, entries = release_outbound(
        db,
        actor=actor,
        outbound_id=outbound_id,
        lines=payload.lines,
        notes=payload.notes,
    )
    db.commit()
    db.refresh(outbound)
    return _transition_out(db, outbound, entries)
