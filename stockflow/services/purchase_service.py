from collections.abc import Sequence
from datetime import date
from decimal import Decimal

from sqlalchemy import delete, func, or_, select
from sqlalchemy.orm import Session

from stockflow.core.errors import (
    InvalidStateTransition,
    LedgerInvariantError,
    PermissionDenied,
    QuantityOutOfRange,
    ValidationError,
)
from stockflow.core.id_utils import generate_shortuuid
from stockflow.core.money import ZERO_MONEY, line_total, to_money
from stockflow.core.security_current import Actor
from stockflow.models.inbound import Inbound
from stockflow.models.purchase import PurchaseRequest, PurchaseRequestItem, PurchaseRequestStatus
from stockflow.schemas.purchase import PurchaseRequestLineIn
from stockflow.services.approval_gate import ApprovalGate, holds_override, not_creator, requires_permission
from stockflow.services.inbound_service import create_inbound
from stockflow.services.numbering_service import next_document_code
from stockflow.services.workflow import (
    ensure_transition_allowed,
    get_or_404,
    lock_or_404,
    record_transition,
    require_item,
    require_vendor,
    require_warehouse,
    utcnow,
)

DOCUMENT_TYPE = "purchase_request"

PURCHASE_REQUEST_TRANSITIONS: dict[str, set[str]] = {
    PurchaseRequestStatus.DRAFT.value: {PurchaseRequestStatus.PENDING_MANAGER_APPROVAL.value},
    PurchaseRequestStatus.PENDING_MANAGER_APPROVAL.value: {
        PurchaseRequestStatus.PENDING_PURCHASING_APPROVAL.value,
        PurchaseRequestStatus.REJECTED.value,
    },
    PurchaseRequestStatus.PENDING_PURCHASING_APPROVAL.value: {
        PurchaseRequestStatus.CONFIRMED.value,
        PurchaseRequestStatus.WAITING_PAYMENT.value,
    },
    PurchaseRequestStatus.CONFIRMED.value: {PurchaseRequestStatus.PO_ISSUED.value},
    PurchaseRequestStatus.WAITING_PAYMENT.value: {PurchaseRequestStatus.PAYMENT_RELEASED.value},
    PurchaseRequestStatus.PAYMENT_RELEASED.value: {PurchaseRequestStatus.PO_ISSUED.value},
    PurchaseRequestStatus.PO_ISSUED.value: set(),
    PurchaseRequestStatus.REJECTED.value: {PurchaseRequestStatus.PENDING_MANAGER_APPROVAL.value},
}

EDITABLE_STATUSES = {PurchaseRequestStatus.DRAFT.value, PurchaseRequestStatus.REJECTED.value}

PURCHASE_REQUEST_GATE = ApprovalGate(
    DOCUMENT_TYPE,
    {
        PurchaseRequestStatus.PENDING_MANAGER_APPROVAL: (requires_permission("purchase.create"),),
        PurchaseRequestStatus.PENDING_PURCHASING_APPROVAL: (
            requires_permission("purchase.manager_approve"),
            not_creator,
        ),
        PurchaseRequestStatus.REJECTED: (requires_permission("purchase.manager_approve"), not_creator),
        PurchaseRequestStatus.CONFIRMED: (requires_permission("purchase.confirm"), not_creator),
        PurchaseRequestStatus.WAITING_PAYMENT: (requires_permission("purchase.confirm"), not_creator),
        PurchaseRequestStatus.PAYMENT_RELEASED: (requires_permission("purchase.payment"), not_creator),
        PurchaseRequestStatus.PO_ISSUED: (requires_permission("purchase.issue_po"),),
    },
)


def purchase_request_lines(db: Session, purchase_request_id: str) -> list[PurchaseRequestItem]:
    return db.execute(
        select(PurchaseRequestItem)
        .where(PurchaseRequestItem.purchase_request_id == purchase_request_id)
        .order_by(PurchaseRequestItem.id.asc())
    ).scalars().all()


def recompute_total(lines: Sequence[PurchaseRequestItem]) -> Decimal:
    total = ZERO_MONEY
    for line in lines:
        total += line_total(line.quantity, line.unit_price)
    return to_money(total)


def verify_total(db: Session, purchase_request: PurchaseRequest) -> Decimal:
    """
    Recompute the total from the lines and compare with the stored copy.
    The stored value is display-only; a disagreement means some code path
    changed lines without going through ``_replace_lines``.
    """
    expected = recompute_total(purchase_request_lines(db, purchase_request.id))
    if to_money(purchase_request.total_amount) != expected:
        raise LedgerInvariantError(
            f"Purchase request {purchase_request.pr_number} total {purchase_request.total_amount} "
            f"disagrees with its lines ({expected})"
        )
    return expected


def _validate_lines(db: Session, lines: Sequence[PurchaseRequestLineIn]) -> None:
    if not lines:
        raise ValidationError("A purchase request needs at least one line")
    for line in lines:
        require_item(db, line.item_id)
        if line.quantity <= 0:
            raise QuantityOutOfRange(
                "Quantity must be greater than zero",
                details=[{"item_id": line.item_id, "quantity": line.quantity}],
            )
        if line.unit_price < 0:
            raise ValidationError(
                "Unit price cannot be negative",
                details=[{"item_id": line.item_id, "unit_price": str(line.unit_price)}],
            )


def _replace_lines(db: Session, purchase_request: PurchaseRequest, lines: Sequence[PurchaseRequestLineIn]) -> None:
    db.execute(
        delete(PurchaseRequestItem).where(PurchaseRequestItem.purchase_request_id == purchase_request.id)
    )
    created: list[PurchaseRequestItem] = []
    for line in lines:
        row = PurchaseRequestItem(
            id=generate_shortuuid(),
            purchase_request_id=purchase_request.id,
            item_id=line.item_id,
            quantity=line.quantity,
            unit_price=to_money(line.unit_price),
            total_price=line_total(line.quantity, line.unit_price),
            notes=line.notes,
        )
        db.add(row)
        created.append(row)
    purchase_request.total_amount = recompute_total(created)


def _ensure_editable(actor: Actor, purchase_request: PurchaseRequest, action: str) -> None:
    if purchase_request.status not in EDITABLE_STATUSES:
        raise InvalidStateTransition(DOCUMENT_TYPE, purchase_request.status, action.upper())
    if actor.id != purchase_request.created_by_user_id and not holds_override(actor):
        raise PermissionDenied("Only the creator can modify this purchase request")


def _transition(
    db: Session,
    *,
    actor: Actor,
    purchase_request: PurchaseRequest,
    to_status: str,
    action: str,
    metadata: dict | None = None,
) -> str:
    from_status = purchase_request.status
    PURCHASE_REQUEST_GATE.ensure(actor, purchase_request, from_status, to_status)
    ensure_transition_allowed(DOCUMENT_TYPE, PURCHASE_REQUEST_TRANSITIONS, from_status, to_status)
    purchase_request.status = to_status
    record_transition(
        db,
        actor=actor,
        document_type=DOCUMENT_TYPE,
        document_id=purchase_request.id,
        action=action,
        from_status=from_status,
        to_status=to_status,
        metadata=metadata,
    )
    return from_status


def create_purchase_request(
    db: Session,
    *,
    actor: Actor,
    vendor_id: str,
    lines: Sequence[PurchaseRequestLineIn],
    warehouse_id: str | None = None,
    request_date: date | None = None,
    notes: str | None = None,
    justification_reason: str | None = None,
    submit: bool = False,
) -> PurchaseRequest:
    require_vendor(db, vendor_id)
    require_warehouse(db, warehouse_id)
    _validate_lines(db, lines)

    purchase_request = PurchaseRequest(
        id=generate_shortuuid(),
        pr_number=next_document_code(db, PurchaseRequest.pr_number, "PR"),
        vendor_id=vendor_id,
        warehouse_id=warehouse_id,
        request_date=request_date or utcnow().date(),
        status=PurchaseRequestStatus.DRAFT.value,
        notes=notes,
        justification_reason=justification_reason,
        created_by_user_id=actor.id,
        requires_payment=False,
    )
    db.add(purchase_request)
    _replace_lines(db, purchase_request, lines)
    db.flush()
    record_transition(
        db,
        actor=actor,
        document_type=DOCUMENT_TYPE,
        document_id=purchase_request.id,
        action="create",
        from_status=None,
        to_status=purchase_request.status,
        metadata={"pr_number": purchase_request.pr_number, "total_amount": str(purchase_request.total_amount)},
    )
    if submit:
        submit_purchase_request(db, actor=actor, purchase_request_id=purchase_request.id)
    return purchase_request


def update_purchase_request(
    db: Session,
    *,
    actor: Actor,
    purchase_request_id: str,
    changes: dict,
    lines: Sequence[PurchaseRequestLineIn] | None = None,
) -> PurchaseRequest:
    purchase_request = lock_or_404(db, PurchaseRequest, purchase_request_id, "Purchase request")
    _ensure_editable(actor, purchase_request, "update")

    if "vendor_id" in changes and changes["vendor_id"] is not None:
        require_vendor(db, changes["vendor_id"])
    if changes.get("warehouse_id") is not None:
        require_warehouse(db, changes["warehouse_id"])
    for field in ("vendor_id", "warehouse_id", "request_date", "notes", "justification_reason"):
        if field in changes:
            value = changes[field]
            if field in {"vendor_id", "request_date"} and value is None:
                continue
            setattr(purchase_request, field, value)

    if lines is not None:
        _validate_lines(db, lines)
        _replace_lines(db, purchase_request, lines)

    record_transition(
        db,
        actor=actor,
        document_type=DOCUMENT_TYPE,
        document_id=purchase_request.id,
        action="update",
        from_status=purchase_request.status,
        to_status=purchase_request.status,
        metadata={"fields": sorted(changes), "lines_replaced": lines is not None},
    )
    db.flush()
    return purchase_request


def delete_purchase_request(db: Session, *, actor: Actor, purchase_request_id: str) -> None:
    purchase_request = lock_or_404(db, PurchaseRequest, purchase_request_id, "Purchase request")
    _ensure_editable(actor, purchase_request, "delete")
    record_transition(
        db,
        actor=actor,
        document_type=DOCUMENT_TYPE,
        document_id=purchase_request.id,
        action="delete",
        from_status=purchase_request.status,
        to_status=None,
        metadata={"pr_number": purchase_request.pr_number},
    )
    db.execute(
        delete(PurchaseRequestItem).where(PurchaseRequestItem.purchase_request_id == purchase_request.id)
    )
    db.delete(purchase_request)
    db.flush()


def submit_purchase_request(db: Session, *, actor: Actor, purchase_request_id: str) -> PurchaseRequest:
    purchase_request = lock_or_404(db, PurchaseRequest, purchase_request_id, "Purchase request")
    if actor.id != purchase_request.created_by_user_id and not holds_override(actor):
        raise PermissionDenied("Only the creator can submit this purchase request")
    verify_total(db, purchase_request)
    _transition(
        db,
        actor=actor,
        purchase_request=purchase_request,
        to_status=PurchaseRequestStatus.PENDING_MANAGER_APPROVAL.value,
        action="submit",
    )
    purchase_request.submitted_at = utcnow()
    return purchase_request


def manager_approve(
    db: Session, *, actor: Actor, purchase_request_id: str, notes: str | None = None
) -> PurchaseRequest:
    purchase_request = lock_or_404(db, PurchaseRequest, purchase_request_id, "Purchase request")
    _transition(
        db,
        actor=actor,
        purchase_request=purchase_request,
        to_status=PurchaseRequestStatus.PENDING_PURCHASING_APPROVAL.value,
        action="manager_approve",
    )
    purchase_request.manager_decided_by_user_id = actor.id
    purchase_request.manager_decided_at = utcnow()
    purchase_request.manager_notes = notes
    return purchase_request


def manager_reject(db: Session, *, actor: Actor, purchase_request_id: str, reason: str) -> PurchaseRequest:
    purchase_request = lock_or_404(db, PurchaseRequest, purchase_request_id, "Purchase request")
    _transition(
        db,
        actor=actor,
        purchase_request=purchase_request,
        to_status=PurchaseRequestStatus.REJECTED.value,
        action="manager_reject",
        metadata={"reason": reason},
    )
    purchase_request.manager_decided_by_user_id = actor.id
    purchase_request.manager_decided_at = utcnow()
    purchase_request.manager_notes = reason
    return purchase_request


def purchasing_confirm(
    db: Session,
    *,
    actor: Actor,
    purchase_request_id: str,
    requires_payment: bool,
    notes: str | None = None,
) -> PurchaseRequest:
    purchase_request = lock_or_404(db, PurchaseRequest, purchase_request_id, "Purchase request")
    to_status = (
        PurchaseRequestStatus.WAITING_PAYMENT.value
        if requires_payment
        else PurchaseRequestStatus.CONFIRMED.value
    )
    _transition(
        db,
        actor=actor,
        purchase_request=purchase_request,
        to_status=to_status,
        action="purchasing_confirm",
        metadata={"requires_payment": requires_payment},
    )
    purchase_request.requires_payment = requires_payment
    purchase_request.purchasing_decided_by_user_id = actor.id
    purchase_request.purchasing_decided_at = utcnow()
    purchase_request.purchasing_notes = notes
    return purchase_request


def release_payment(
    db: Session,
    *,
    actor: Actor,
    purchase_request_id: str,
    amount: Decimal,
    payment_date: date | None = None,
    notes: str | None = None,
) -> PurchaseRequest:
    purchase_request = lock_or_404(db, PurchaseRequest, purchase_request_id, "Purchase request")
    if amount <= 0:
        raise ValidationError("Payment amount must be greater than zero")
    _transition(
        db,
        actor=actor,
        purchase_request=purchase_request,
        to_status=PurchaseRequestStatus.PAYMENT_RELEASED.value,
        action="release_payment",
        metadata={"amount": str(to_money(amount))},
    )
    now = utcnow()
    purchase_request.payment_amount = to_money(amount)
    purchase_request.payment_date = payment_date or now.date()
    purchase_request.payment_released_by_user_id = actor.id
    purchase_request.payment_released_at = now
    purchase_request.finance_notes = notes
    return purchase_request


def issue_purchase_order(
    db: Session,
    *,
    actor: Actor,
    purchase_request_id: str,
    shipping_tracking_number: str | None = None,
    estimated_shipping_date: date | None = None,
    notes: str | None = None,
) -> tuple[PurchaseRequest, Inbound]:
    """
    Move the request to PO_ISSUED and create the inbound receipt that will
    receive the goods. No stock moves here; nothing has arrived yet.
    """
    purchase_request = lock_or_404(db, PurchaseRequest, purchase_request_id, "Purchase request")
    verify_total(db, purchase_request)
    _transition(
        db,
        actor=actor,
        purchase_request=purchase_request,
        to_status=PurchaseRequestStatus.PO_ISSUED.value,
        action="issue_po",
    )
    now = utcnow()
    purchase_request.po_number = next_document_code(db, PurchaseRequest.po_number, "PO", now)
    purchase_request.po_issued_by_user_id = actor.id
    purchase_request.po_issued_at = now
    purchase_request.shipping_tracking_number = shipping_tracking_number
    purchase_request.estimated_shipping_date = estimated_shipping_date

    lines = purchase_request_lines(db, purchase_request.id)
    inbound = create_inbound(
        db,
        actor=actor,
        vendor_id=purchase_request.vendor_id,
        warehouse_id=purchase_request.warehouse_id,
        purchase_request_id=purchase_request.id,
        lines=[(line.item_id, line.quantity) for line in lines],
        notes=notes or f"Receipt for {purchase_request.po_number}",
    )
    return purchase_request, inbound


def get_purchase_request(db: Session, purchase_request_id: str) -> PurchaseRequest:
    return get_or_404(db, PurchaseRequest, purchase_request_id, "Purchase request")


def list_purchase_requests(
    db: Session,
    *,
    statuses: Sequence[str] | None = None,
    vendor_id: str | None = None,
    search: str | None = None,
    limit: int,
    offset: int,
) -> tuple[list[PurchaseRequest], int]:
    filters = []
    if statuses:
        filters.append(PurchaseRequest.status.in_(list(statuses)))
    if vendor_id:
        filters.append(PurchaseRequest.vendor_id == vendor_id)
    if search:
        pattern = f"%{search.strip()}%"
        filters.append(or_(PurchaseRequest.pr_number.ilike(pattern), PurchaseRequest.po_number.ilike(pattern)))

    total = db.execute(select(func.count(PurchaseRequest.id)).where(*filters)).scalar_one()
    rows = db.execute(
        select(PurchaseRequest)
        .where(*filters)
        .order_by(PurchaseRequest.created_at.desc(), PurchaseRequest.pr_number.desc())
        .offset(offset)
        .limit(limit)
    ).scalars().all()
    return rows, int(total)
