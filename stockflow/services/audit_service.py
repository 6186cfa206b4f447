"""
Audit trail.

Rows are written inside the caller's transaction, so a transition that rolls
back leaves no audit row behind.
"""
from datetime import date
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from stockflow.core.errors import ValidationError
from stockflow.core.id_utils import generate_shortuuid
from stockflow.models.audit_log import AuditLog


def log_audit_event(
    db: Session,
    *,
    actor_user_id: str,
    action: str,
    target_type: str,
    target_id: str | None = None,
    metadata_json: dict[str, Any] | None = None,
) -> AuditLog:
    event = AuditLog(
        id=generate_shortuuid(),
        actor_user_id=actor_user_id,
        action=action,
        target_type=target_type,
        target_id=target_id,
        metadata_json=metadata_json,
    )
    db.add(event)
    return event


def list_audit_events(
    db: Session,
    *,
    actor_user_id: str | None = None,
    action: str | None = None,
    target_type: str | None = None,
    target_id: str | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    limit: int,
    offset: int,
) -> tuple[list[AuditLog], int]:
    if start_date and end_date and end_date < start_date:
        raise ValidationError(
            "end_date cannot be before start_date",
            details=[{"start_date": start_date.isoformat(), "end_date": end_date.isoformat()}],
        )

    filters = []
    if actor_user_id:
        filters.append(AuditLog.actor_user_id == actor_user_id)
    if action:
        filters.append(AuditLog.action == action)
    if target_type:
        filters.append(AuditLog.target_type == target_type)
    if target_id:
        filters.append(AuditLog.target_id == target_id)
    if start_date:
        filters.append(func.date(AuditLog.created_at) >= start_date)
    if end_date:
        filters.append(func.date(AuditLog.created_at) <= end_date)

    total = db.execute(select(func.count(AuditLog.id)).where(*filters)).scalar_one()
    rows = db.execute(
        select(AuditLog)
        .where(*filters)
        .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .offset(offset)
        .limit(limit)
    ).scalars().all()
    return rows, int(total)
