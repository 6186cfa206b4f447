from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from stockflow.core.api_docs import error_responses
from stockflow.core.deps import get_db
from stockflow.core.permissions import require_permission
from stockflow.core.security_current import Actor
from stockflow.models.purchase import PurchaseRequest, PurchaseRequestStatus
from stockflow.routers.inbounds import inbound_out
from stockflow.schemas.common import DecisionNotesIn, RejectIn, pagination_meta
from stockflow.schemas.purchase import (
    IssuePoIn,
    IssuePoOut,
    PaymentReleaseIn,
    PurchaseConfirmIn,
    PurchaseRequestCreateIn,
    PurchaseRequestItemOut,
    PurchaseRequestListOut,
    PurchaseRequestOut,
    PurchaseRequestUpdateIn,
)
from stockflow.services.purchase_service import (
    create_purchase_request,
    delete_purchase_request,
    get_purchase_request,
    issue_purchase_order,
    list_purchase_requests,
    manager_approve,
    manager_reject,
    purchase_request_lines,
    purchasing_confirm,
    release_payment,
    submit_purchase_request,
    update_purchase_request,
)
from stockflow.services.workflow import parse_status_filter

router = APIRouter(prefix="/purchase-requests", tags=["purchase-requests"])


def _purchase_request_out(db: Session, purchase_request: PurchaseRequest) -> PurchaseRequestOut:
    return PurchaseRequestOut(
        id=purchase_request.id,
        pr_number=purchase_request.pr_number,
        vendor_id=purchase_request.vendor_id,
        warehouse_id=purchase_request.warehouse_id,
        request_date=purchase_request.request_date,
        status=purchase_request.status,
        notes=purchase_request.notes,
        justification_reason=purchase_request.justification_reason,
        total_amount=float(purchase_request.total_amount),
        created_by_user_id=purchase_request.created_by_user_id,
        submitted_at=purchase_request.submitted_at,
        manager_decided_by_user_id=purchase_request.manager_decided_by_user_id,
        manager_decided_at=purchase_request.manager_decided_at,
        manager_notes=purchase_request.manager_notes,
        purchasing_decided_by_user_id=purchase_request.purchasing_decided_by_user_id,
        purchasing_decided_at=purchase_request.purchasing_decided_at,
        purchasing_notes=purchase_request.purchasing_notes,
        requires_payment=bool(purchase_request.requires_payment),
        payment_amount=(
            float(purchase_request.payment_amount) if purchase_request.payment_amount is not None else None
        ),
        payment_date=purchase_request.payment_date,
        payment_released_by_user_id=purchase_request.payment_released_by_user_id,
        payment_released_at=purchase_request.payment_released_at,
        finance_notes=purchase_request.finance_notes,
        po_number=purchase_request.po_number,
        po_issued_by_user_id=purchase_request.po_issued_by_user_id,
        po_issued_at=purchase_request.po_issued_at,
        shipping_tracking_number=purchase_request.shipping_tracking_number,
        estimated_shipping_date=purchase_request.estimated_shipping_date,
        items=[
            PurchaseRequestItemOut(
                id=line.id,
                item_id=line.item_id,
                quantity=line.quantity,
                unit_price=float(line.unit_price),
                total_price=float(line.total_price),
                notes=line.notes,
            )
            for line in purchase_request_lines(db, purchase_request.id)
        ],
        created_at=purchase_request.created_at,
        updated_at=purchase_request.updated_at,
    )


def _committed_out(db: Session, purchase_request: PurchaseRequest) -> PurchaseRequestOut:
    db.commit()
    db.refresh(purchase_request)
    return _purchase_request_out(db, purchase_request)


@router.post(
    "",
    response_model=PurchaseRequestOut,
    status_code=201,
    summary="Create a purchase request",
    description="Creates a DRAFT request, or submits it for manager approval when `submit` is true.",
    responses=error_responses(400, 401, 403, 404, 422, 500),
)
def create_request(
    payload: PurchaseRequestCreateIn,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission("purchase.create")),
):
    purchase_request = create_purchase_request(
        db,
        actor=actor,
        vendor_id=payload.vendor_id,
        warehouse_id=payload.warehouse_id,
        request_date=payload.request_date,
        notes=payload.notes,
        justification_reason=payload.justification_reason,
        lines=payload.items,
        submit=payload.submit,
    )
    return _committed_out(db, purchase_request)


@router.get(
    "",
    response_model=PurchaseRequestListOut,
    summary="List purchase requests",
    responses=error_responses(401, 403, 422, 500),
)
def list_requests(
    status: str | None = Query(default=None, description="Comma-separated statuses"),
    vendor_id: str | None = Query(default=None),
    q: str | None = Query(default=None, description="Search PR or PO number"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission("purchase.read")),
):
    rows, total = list_purchase_requests(
        db,
        statuses=parse_status_filter(status, PurchaseRequestStatus),
        vendor_id=vendor_id,
        search=q,
        limit=limit,
        offset=offset,
    )
    items = [_purchase_request_out(db, row) for row in rows]
    return PurchaseRequestListOut(
        items=items,
        pagination=pagination_meta(total=total, limit=limit, offset=offset, count=len(items)),
    )


@router.get(
    "/{purchase_request_id}",
    response_model=PurchaseRequestOut,
    summary="Get a purchase request",
    responses=error_responses(401, 403, 404, 500),
)
def get_request(
    purchase_request_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission("purchase.read")),
):
    return _purchase_request_out(db, get_purchase_request(db, purchase_request_id))


@router.patch(
    "/{purchase_request_id}",
    response_model=PurchaseRequestOut,
    summary="Edit a DRAFT or REJECTED purchase request",
    description="Replaces every line when `items` is sent and recomputes the total.",
    responses=error_responses(400, 401, 403, 404, 409, 422, 500),
)
def update_request(
    purchase_request_id: str,
    payload: PurchaseRequestUpdateIn,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission("purchase.create")),
):
    changes = payload.model_dump(exclude_unset=True, exclude={"items"})
    purchase_request = update_purchase_request(
        db,
        actor=actor,
        purchase_request_id=purchase_request_id,
        changes=changes,
        lines=payload.items,
    )
    return _committed_out(db, purchase_request)


@router.delete(
    "/{purchase_request_id}",
    status_code=204,
    summary="Delete a DRAFT or REJECTED purchase request",
    responses=error_responses(401, 403, 404, 409, 500),
)
def delete_request(
    purchase_request_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission("purchase.create")),
):
    delete_purchase_request(db, actor=actor, purchase_request_id=purchase_request_id)
    db.commit()
    return Response(status_code=204)


@router.post(
    "/{purchase_request_id}/submit",
    response_model=PurchaseRequestOut,
    summary="Submit for manager approval",
    responses=error_responses(401, 403, 404, 409, 500),
)
def submit_request(
    purchase_request_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission("purchase.create")),
):
    purchase_request = submit_purchase_request(db, actor=actor, purchase_request_id=purchase_request_id)
    return _committed_out(db, purchase_request)


@router.post(
    "/{purchase_request_id}/manager-approve",
    response_model=PurchaseRequestOut,
    summary="Manager approval",
    responses=error_responses(401, 403, 404, 409, 422, 500),
)
def approve_request(
    purchase_request_id: str,
    payload: DecisionNotesIn | None = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission("purchase.manager_approve")),
):
    purchase_request = manager_approve(
        db,
        actor=actor,
        purchase_request_id=purchase_request_id,
        notes=payload.notes if payload else None,
    )
    return _committed_out(db, purchase_request)


@router.post(
    "/{purchase_request_id}/manager-reject",
    response_model=PurchaseRequestOut,
    summary="Manager rejection",
    description="A rejected request can be edited and submitted again by its creator.",
    responses=error_responses(401, 403, 404, 409, 422, 500),
)
def reject_request(
    purchase_request_id: str,
    payload: RejectIn,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission("purchase.manager_approve")),
):
    purchase_request = manager_reject(
        db,
        actor=actor,
        purchase_request_id=purchase_request_id,
        reason=payload.reason,
    )
    return _committed_out(db, purchase_request)


@router.post(
    "/{purchase_request_id}/confirm",
    response_model=PurchaseRequestOut,
    summary="Purchasing confirmation",
    description="Moves to CONFIRMED, or to WAITING_PAYMENT when `requires_payment` is true.",
    responses=error_responses(401, 403, 404, 409, 422, 500),
)
def confirm_request(
    purchase_request_id: str,
    payload: PurchaseConfirmIn,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission("purchase.confirm")),
):
    purchase_request = purchasing_confirm(
        db,
        actor=actor,
        purchase_request_id=purchase_request_id,
        requires_payment=payload.requires_payment,
        notes=payload.notes,
    )
    return _committed_out(db, purchase_request)


@router.post(
    "/{purchase_request_id}/release-payment",
    response_model=PurchaseRequestOut,
    summary="Record payment release",
    responses=error_responses(401, 403, 404, 409, 422, 500),
)
def release_request_payment(
    purchase_request_id: str,
    payload: PaymentReleaseIn,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission("purchase.payment")),
):
    purchase_request = release_payment(
        db,
        actor=actor,
        purchase_request_id=purchase_request_id,
        amount=payload.amount,
        payment_date=payload.payment_date,
        notes=payload.notes,
    )
    return _committed_out(db, purchase_request)


@router.post(
    "/{purchase_request_id}/issue-po",
    response_model=IssuePoOut,
    summary="Issue the purchase order",
    description="Assigns the PO number and creates the inbound receipt awaiting verification.",
    responses=error_responses(401, 403, 404, 409, 422, 500),
)
def issue_po(
    purchase_request_id: str,
    payload: IssuePoIn | None = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission("purchase.issue_po")),
):
    payload = payload or IssuePoIn()
    purchase_request, inbound = issue_purchase_order(
        db,
        actor=actor,
        purchase_request_id=purchase_request_id,
        shipping_tracking_number=payload.shipping_tracking_number,
        estimated_shipping_date=payload.estimated_shipping_date,
        notes=payload.notes,
    )
    db.commit()
    db.refresh(purchase_request)
    db.refresh(inbound)
    return IssuePoOut(
        purchase_request=_purchase_request_out(db, purchase_request),
        inbound=inbound_out(db, inbound),
    )
