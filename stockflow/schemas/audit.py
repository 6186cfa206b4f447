from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict

from stockflow.schemas.common import PaginationMeta


class AuditLogOut(BaseModel):
    id: str
    actor_user_id: str
    action: str
    target_type: str
    target_id: str | None = None
    metadata_json: dict[str, Any] | None = None
    created_at: datetime

    model_config = ConfigDict(
        from_attributes=True,
        json_schema_extra={
            "example": {
                "id": "2f0c6d7e-7c55-4c39-9d1b-6a4e0f5b8d21",
                "actor_user_id": "usr_mgr01",
                "action": "outbound.approve",
                "target_type": "outbound",
                "target_id": "out_123",
                "metadata_json": {"from_status": "DRAFT", "to_status": "APPROVED"},
                "created_at": "2026-10-19T09:00:00Z",
            }
        },
    )


class AuditLogListOut(BaseModel):
    items: list[AuditLogOut]
    pagination: PaginationMeta
