from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.orm import InstrumentedAttribute, Session

from stockflow.core.config import settings


def document_code_prefix(prefix: str, when: datetime) -> str:
    return f"{prefix}/{when.year:04d}/{when.month:02d}/"


def next_document_code(
    db: Session,
    column: InstrumentedAttribute,
    prefix: str,
    when: datetime | None = None,
) -> str:
    """Next ``PREFIX/YYYY/MM/NNNN`` code, sequential per prefix and month."""
    when = when or datetime.now(timezone.utc)
    base = document_code_prefix(prefix, when)
    last_code = db.execute(select(func.max(column)).where(column.like(f"{base}%"))).scalar_one_or_none()

    last_number = 0
    if last_code:
        suffix = str(last_code)[len(base):]
        if suffix.isdigit():
            last_number = int(suffix)
    width = settings.document_code_sequence_width
    return f"{base}{last_number + 1:0{width}d}"
