from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from schemas.payment_schema import MongoDocument


class AuditLogCreate(BaseModel):
    user_id: str | None = None
    action: str
    resource: str | None = None
    resource_id: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    created_at: int


class AuditLogOut(MongoDocument):
    user_id: str | None = None
    action: str
    resource: str | None = None
    resource_id: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    created_at: int
