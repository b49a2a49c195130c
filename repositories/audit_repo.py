from __future__ import annotations

from core.database import db
from repositories.payment_repo import to_document
from schemas.audit_schema import AuditLogCreate, AuditLogOut


async def create_audit_log(payload: AuditLogCreate) -> AuditLogOut:
    result = await db.audit_logs.insert_one(to_document(payload))
    stored = await db.audit_logs.find_one({"_id": result.inserted_id})
    return AuditLogOut(**stored)  # type: ignore[arg-type]
