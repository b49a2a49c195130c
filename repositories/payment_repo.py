from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Any

from bson import Decimal128, ObjectId
from pydantic import BaseModel
from pymongo import ReturnDocument

from core.database import db
from schemas.payment_schema import (
    PaymentCreate,
    PaymentOut,
    PaymentRefundCreate,
    PaymentRefundOut,
    WebhookLogCreate,
    WebhookLogOut,
)

_PAYMENT_INDEXES_READY = False


async def _ensure_payment_indexes() -> None:
    global _PAYMENT_INDEXES_READY
    if _PAYMENT_INDEXES_READY:
        return
    await db.payments.create_index(
        [("provider", 1), ("provider_payment_id", 1)],
        name="idx_payment_provider_payment_id_unique",
        unique=True,
        partialFilterExpression={"provider_payment_id": {"$type": "string"}},
    )
    await db.payments.create_index([("user_id", 1), ("created_at", -1)], name="idx_payment_user_created")
    await db.payments.create_index("status", name="idx_payment_status")
    await db.payment_refunds.create_index("payment_id", name="idx_refund_payment_id")
    await db.payment_webhook_logs.create_index(
        [("provider", 1), ("event_id", 1)],
        name="idx_webhook_provider_event_unique",
        unique=True,
        partialFilterExpression={"event_id": {"$type": "string"}},
    )
    _PAYMENT_INDEXES_READY = True


def _encode_value(value: Any) -> Any:
    if isinstance(value, Decimal):
        return Decimal128(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {key: _encode_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_encode_value(item) for item in value]
    return value


def to_document(values: BaseModel | dict[str, Any]) -> dict[str, Any]:
    if isinstance(values, BaseModel):
        values = values.model_dump()
    return _encode_value(values)


def _object_id(value: str) -> ObjectId | None:
    if not ObjectId.is_valid(value):
        return None
    return ObjectId(value)


async def create_payment(payload: PaymentCreate) -> PaymentOut:
    await _ensure_payment_indexes()
    result = await db.payments.insert_one(to_document(payload))
    stored = await db.payments.find_one({"_id": result.inserted_id})
    return PaymentOut(**stored)  # type: ignore[arg-type]


async def get_payment_by_id(payment_id: str) -> PaymentOut | None:
    await _ensure_payment_indexes()
    object_id = _object_id(payment_id)
    if object_id is None:
        return None
    row = await db.payments.find_one({"_id": object_id})
    if row is None:
        return None
    return PaymentOut(**row)


async def list_payments(filter_dict: dict[str, Any], *, start: int, stop: int) -> list[PaymentOut]:
    await _ensure_payment_indexes()
    cursor = (
        db.payments.find(filter_dict)
        .sort("created_at", -1)
        .skip(start)
        .limit(max(0, stop - start))
    )
    items: list[PaymentOut] = []
    async for row in cursor:
        items.append(PaymentOut(**row))
    return items


async def count_payments(filter_dict: dict[str, Any]) -> int:
    await _ensure_payment_indexes()
    return await db.payments.count_documents(filter_dict)


async def update_payment_if_version(
    payment_id: str,
    *,
    expected_version: int,
    changes: dict[str, Any],
) -> PaymentOut | None:
    """Apply ``changes`` only while the stored row still has ``expected_version``.

    Returns None when another writer got there first.
    """
    await _ensure_payment_indexes()
    object_id = _object_id(payment_id)
    if object_id is None:
        return None
    row = await db.payments.find_one_and_update(
        {"_id": object_id, "version": expected_version},
        {"$set": {**to_document(changes), "version": expected_version + 1}},
        return_document=ReturnDocument.AFTER,
    )
    if row is None:
        return None
    return PaymentOut(**row)


async def update_payments_by_provider_payment_id(
    *,
    provider: str,
    provider_payment_id: str,
    from_statuses: list[str],
    changes: dict[str, Any],
) -> int:
    await _ensure_payment_indexes()
    result = await db.payments.update_many(
        {
            "provider": provider,
            "provider_payment_id": provider_payment_id,
            "status": {"$in": from_statuses},
        },
        {"$set": to_document(changes), "$inc": {"version": 1}},
    )
    return result.modified_count


async def get_payment_by_provider_payment_id(*, provider: str, provider_payment_id: str) -> PaymentOut | None:
    await _ensure_payment_indexes()
    row = await db.payments.find_one({"provider": provider, "provider_payment_id": provider_payment_id})
    if row is None:
        return None
    return PaymentOut(**row)


async def create_refund(payload: PaymentRefundCreate) -> PaymentRefundOut:
    await _ensure_payment_indexes()
    result = await db.payment_refunds.insert_one(to_document(payload))
    stored = await db.payment_refunds.find_one({"_id": result.inserted_id})
    return PaymentRefundOut(**stored)  # type: ignore[arg-type]


async def list_refunds_for_payment(payment_id: str) -> list[PaymentRefundOut]:
    await _ensure_payment_indexes()
    refunds: list[PaymentRefundOut] = []
    async for row in db.payment_refunds.find({"payment_id": payment_id}).sort("created_at", 1):
        refunds.append(PaymentRefundOut(**row))
    return refunds


async def get_webhook_log_by_event(provider: str, event_id: str) -> WebhookLogOut | None:
    await _ensure_payment_indexes()
    row = await db.payment_webhook_logs.find_one({"provider": provider, "event_id": event_id})
    if row is None:
        return None
    return WebhookLogOut(**row)


async def create_webhook_log(payload: WebhookLogCreate) -> WebhookLogOut:
    await _ensure_payment_indexes()
    result = await db.payment_webhook_logs.insert_one(to_document(payload))
    stored = await db.payment_webhook_logs.find_one({"_id": result.inserted_id})
    return WebhookLogOut(**stored)  # type: ignore[arg-type]


async def finish_webhook_log(
    log_id: str,
    *,
    processed: bool,
    processed_at: int | None,
    payment_id: str | None = None,
    error_message: str | None = None,
) -> WebhookLogOut | None:
    await _ensure_payment_indexes()
    object_id = _object_id(log_id)
    if object_id is None:
        return None
    changes: dict[str, Any] = {
        "processed": processed,
        "processed_at": processed_at,
        "error_message": error_message,
    }
    if payment_id is not None:
        changes["payment_id"] = payment_id
    row = await db.payment_webhook_logs.find_one_and_update(
        {"_id": object_id},
        {"$set": changes},
        return_document=ReturnDocument.AFTER,
    )
    if row is None:
        return None
    return WebhookLogOut(**row)
