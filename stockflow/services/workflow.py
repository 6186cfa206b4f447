"""Helpers shared by the document workflow services."""
import enum
from datetime import datetime, timezone
from typing import Any, TypeVar

from sqlalchemy import select
from sqlalchemy.orm import Session

from stockflow.core.errors import InvalidStateTransition, NotFound, ValidationError
from stockflow.core.observability import log_domain_event
from stockflow.core.security_current import Actor
from stockflow.models.item import Item, Partner, Vendor, Warehouse
from stockflow.services.audit_service import log_audit_event

ModelT = TypeVar("ModelT")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def state_value(value: Any) -> str:
    return value.value if isinstance(value, enum.Enum) else str(value)


def ensure_transition_allowed(
    document_type: str,
    transitions: dict[str, set[str]],
    current_status: str,
    next_status: str,
) -> None:
    current = state_value(current_status)
    target = state_value(next_status)
    if target not in transitions.get(current, set()):
        raise InvalidStateTransition(document_type, current, target)


def get_or_404(db: Session, model: type[ModelT], document_id: str, label: str) -> ModelT:
    found = db.execute(select(model).where(model.id == document_id)).scalar_one_or_none()
    if not found:
        raise NotFound(f"{label} not found", details=[{"id": document_id}])
    return found


def lock_or_404(db: Session, model: type[ModelT], document_id: str, label: str) -> ModelT:
    found = db.execute(
        select(model)
        .where(model.id == document_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if not found:
        raise NotFound(f"{label} not found", details=[{"id": document_id}])
    return found


def require_item(db: Session, item_id: str) -> Item:
    return get_or_404(db, Item, item_id, "Item")


def require_vendor(db: Session, vendor_id: str) -> Vendor:
    return get_or_404(db, Vendor, vendor_id, "Vendor")


def require_warehouse(db: Session, warehouse_id: str | None) -> Warehouse | None:
    if warehouse_id is None:
        return None
    return get_or_404(db, Warehouse, warehouse_id, "Warehouse")


def require_partner(db: Session, partner_id: str | None) -> Partner | None:
    if partner_id is None:
        return None
    return get_or_404(db, Partner, partner_id, "Partner")


def record_transition(
    db: Session,
    *,
    actor: Actor,
    document_type: str,
    document_id: str,
    action: str,
    from_status: str | None,
    to_status: str | None,
    metadata: dict[str, Any] | None = None,
) -> None:
    """Audit row plus one structured log line for a document state change."""
    from_value = state_value(from_status) if from_status is not None else None
    to_value = state_value(to_status) if to_status is not None else None
    log_audit_event(
        db,
        actor_user_id=actor.id,
        action=f"{document_type}.{action}",
        target_type=document_type,
        target_id=document_id,
        metadata_json={"from_status": from_value, "to_status": to_value, **(metadata or {})},
    )
    log_domain_event(
        "workflow.transition",
        document_type=document_type,
        document_id=document_id,
        action=action,
        from_status=from_value,
        to_status=to_value,
        actor_id=actor.id,
        actor_role=actor.role,
    )


def parse_status_filter(raw: str | None, allowed: type[enum.Enum]) -> list[str] | None:
    """Comma-separated status query value to a validated list, ``None`` when empty."""
    if not raw or not raw.strip():
        return None
    values = [part.strip().upper() for part in raw.split(",") if part.strip()]
    known = {member.value for member in allowed}
    unknown = [value for value in values if value not in known]
    if unknown:
        raise ValidationError(
            "Unknown status filter",
            details=[{"status": value, "allowed": sorted(known)} for value in unknown],
        )
    return values
