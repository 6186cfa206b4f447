from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator


class LoginIn(BaseModel):
    username: str
    password: str

    @field_validator("username")
    @classmethod
    def validate_username(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("username is required")
        return cleaned

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "username": "wh_ana",
                "password": "password123",
            }
        }
    )


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"


class ActorOut(BaseModel):
    id: str
    username: str
    full_name: Optional[str] = None
    role: str
    permissions: list[str]
    created_at: datetime

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "id": "usr_abc123",
                "username": "wh_ana",
                "full_name": "Ana Warehouse",
                "role": "warehouse",
                "permissions": ["inbound.read", "inbound.verify", "outbound.release"],
                "created_at": "2026-10-01T08:00:00Z",
            }
        }
    )
