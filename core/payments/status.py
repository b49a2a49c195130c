from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from core.logging_config import get_logger
from core.payments.types import PaymentStatus, RefundStatus

logger = get_logger(__name__)

# Lower-cased vendor status strings. Stripe, Razorpay and Cashfree share a few
# words ("failed", "cancelled") so one table serves all three.
PROVIDER_STATUS_MAP: dict[str, PaymentStatus] = {
    "pending": PaymentStatus.PENDING,
    "created": PaymentStatus.PENDING,
    "active": PaymentStatus.PENDING,
    "requires_payment_method": PaymentStatus.PENDING,
    "requires_confirmation": PaymentStatus.PENDING,
    "requires_action": PaymentStatus.PENDING,
    "not_attempted": PaymentStatus.PENDING,
    "processing": PaymentStatus.PROCESSING,
    "attempted": PaymentStatus.PROCESSING,
    "authorized": PaymentStatus.PROCESSING,
    "requires_capture": PaymentStatus.PROCESSING,
    "succeeded": PaymentStatus.SUCCEEDED,
    "success": PaymentStatus.SUCCEEDED,
    "captured": PaymentStatus.SUCCEEDED,
    "paid": PaymentStatus.SUCCEEDED,
    "failed": PaymentStatus.FAILED,
    "user_dropped": PaymentStatus.FAILED,
    "canceled": PaymentStatus.CANCELLED,
    "cancelled": PaymentStatus.CANCELLED,
    "void": PaymentStatus.CANCELLED,
    "expired": PaymentStatus.CANCELLED,
    "terminated": PaymentStatus.CANCELLED,
    "partially_refunded": PaymentStatus.PARTIALLY_REFUNDED,
    "refunded": PaymentStatus.REFUNDED,
}

REFUND_STATUS_MAP: dict[str, RefundStatus] = {
    "pending": RefundStatus.PENDING,
    "onhold": RefundStatus.PENDING,
    "requires_action": RefundStatus.PENDING,
    "succeeded": RefundStatus.SUCCEEDED,
    "success": RefundStatus.SUCCEEDED,
    "processed": RefundStatus.SUCCEEDED,
    "failed": RefundStatus.FAILED,
    "canceled": RefundStatus.CANCELLED,
    "cancelled": RefundStatus.CANCELLED,
}


@dataclass(frozen=True)
class StatusMapping:
    status: PaymentStatus
    raw: str
    recognized: bool


def _normalize(raw_status: Any) -> str:
    return str(raw_status or "").strip().lower()


def map_provider_status(raw_status: Any) -> StatusMapping:
    """Map a vendor payment status onto ``PaymentStatus``.

    Unknown strings map to PENDING with ``recognized=False``; callers persist the
    raw value next to it so the gap stays visible.
    """
    raw = str(raw_status or "")
    mapped = PROVIDER_STATUS_MAP.get(_normalize(raw_status))
    if mapped is None:
        logger.warning("payment_status_unrecognized", provider_status=raw)
        return StatusMapping(status=PaymentStatus.PENDING, raw=raw, recognized=False)
    return StatusMapping(status=mapped, raw=raw, recognized=True)


def map_refund_status(raw_status: Any) -> RefundStatus:
    mapped = REFUND_STATUS_MAP.get(_normalize(raw_status))
    if mapped is None:
        logger.warning("refund_status_unrecognized", provider_status=str(raw_status or ""))
        return RefundStatus.PENDING
    return mapped
