from __future__ import annotations

import time
from typing import Any

from core.logging_config import get_logger
from repositories.audit_repo import create_audit_log
from schemas.audit_schema import AuditLogCreate, AuditLogOut

logger = get_logger(__name__)


async def record_audit_event(
    *,
    user_id: str | None,
    action: str,
    resource: str | None = None,
    resource_id: str | None = None,
    details: dict[str, Any] | None = None,
) -> AuditLogOut:
    entry = await create_audit_log(
        AuditLogCreate(
            user_id=user_id,
            action=action,
            resource=resource,
            resource_id=resource_id,
            details=details or {},
            created_at=int(time.time()),
        )
    )
    logger.info(
        "audit_event_recorded",
        action=action,
        user_id=user_id,
        resource=resource,
        resource_id=resource_id,
    )
    return entry
