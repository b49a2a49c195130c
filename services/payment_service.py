from __future__ import annotations

import json
import math
import time
from decimal import Decimal
from typing import Any

from pymongo.errors import DuplicateKeyError

from core.errors import (
    AppException,
    ConfigurationError,
    ErrorCode,
    ProviderError,
    payment_access_denied,
    payment_conflict,
    payment_not_eligible,
    payment_webhook_invalid,
    payments_unavailable,
    resource_not_found,
    validation_failed,
)
from core.logging_config import get_logger
from core.payments import (
    CapturePaymentParams,
    CreatePaymentParams,
    PaymentProvider,
    PaymentProviderFactory,
    PaymentProviderName,
    PaymentStatus,
    RefundPaymentParams,
    RefundStatus,
    VerifyWebhookParams,
    WebhookEvent,
)
from core.payments.money import quantize
from core.payments.state import CAPTURABLE_STATUSES, can_transition, sources_for
from core.payments.status import map_provider_status, map_refund_status
from repositories import payment_repo
from schemas.payment_schema import (
    PaginationMeta,
    PaymentCreate,
    PaymentCreatedOut,
    PaymentCreateIn,
    PaymentDetailOut,
    PaymentOut,
    PaymentRefundCreate,
    PaymentRefundOut,
    WebhookLogCreate,
    WebhookLogOut,
)
from services.audit_service import record_audit_event

logger = get_logger(__name__)

WEBHOOK_EVENT_STATUS: dict[str, PaymentStatus] = {
    "payment_intent.succeeded": PaymentStatus.SUCCEEDED,
    "payment.captured": PaymentStatus.SUCCEEDED,
    "order.paid": PaymentStatus.SUCCEEDED,
    "PAYMENT_SUCCESS_WEBHOOK": PaymentStatus.SUCCEEDED,
    "payment_intent.payment_failed": PaymentStatus.FAILED,
    "payment.failed": PaymentStatus.FAILED,
    "PAYMENT_FAILED_WEBHOOK": PaymentStatus.FAILED,
    "payment_intent.canceled": PaymentStatus.CANCELLED,
    "PAYMENT_USER_DROPPED_WEBHOOK": PaymentStatus.CANCELLED,
    "payment_intent.processing": PaymentStatus.PROCESSING,
    "payment.authorized": PaymentStatus.PROCESSING,
}

# Refund bookkeeping goes through refund_payment; these only get acknowledged.
REFUND_EVENT_TYPES = frozenset({"charge.refunded", "refund.processed", "REFUND_STATUS_WEBHOOK"})

_RELEASE_ATTEMPTS = 5
_ZERO = Decimal("0.00")


def _epoch() -> int:
    return int(time.time())


def _followup_refunds_allowed() -> bool:
    from core.settings import get_settings

    return get_settings().payment_allow_followup_refunds


def get_payment_provider() -> PaymentProvider:
    try:
        return PaymentProviderFactory.get_provider()
    except RuntimeError as err:
        raise payments_unavailable(details=str(err)) from err


def _build_provider(provider_name: PaymentProviderName) -> PaymentProvider:
    from core.settings import build_provider_config

    try:
        return PaymentProviderFactory.create_provider(provider_name, build_provider_config(provider_name.value))
    except ConfigurationError as err:
        raise payments_unavailable(details={"provider": provider_name.value, "error": str(err)}) from err


def _provider_for_payment(payment: PaymentOut, provider: PaymentProvider) -> PaymentProvider:
    """Payments stay with the vendor that created them, even after the default changes."""
    if provider.name == payment.provider:
        return provider
    logger.info(
        "payment_provider_override",
        payment_id=payment.id,
        payment_provider=payment.provider.value,
        default_provider=provider.name.value,
    )
    return _build_provider(payment.provider)


async def _load_owned_payment(payment_id: str, user_id: str, *, is_admin: bool = False) -> PaymentOut:
    payment = await payment_repo.get_payment_by_id(payment_id)
    if payment is None:
        raise resource_not_found("Payment", payment_id)
    if payment.user_id != user_id and not is_admin:
        logger.warning("payment_access_denied", payment_id=payment_id, user_id=user_id)
        raise payment_access_denied(payment_id)
    return payment


async def create_payment(*, user_id: str, payload: PaymentCreateIn, provider: PaymentProvider) -> PaymentCreatedOut:
    amount = quantize(payload.amount)
    intent = await provider.create_payment(
        CreatePaymentParams(
            amount=amount,
            currency=payload.currency,
            user_id=user_id,
            customer_id=payload.customer_id,
            description=payload.description,
            payment_method=payload.payment_method,
            metadata=payload.metadata,
        )
    )

    mapping = map_provider_status(intent.status)
    now = _epoch()
    payment = await payment_repo.create_payment(
        PaymentCreate(
            user_id=user_id,
            provider=provider.name,
            provider_payment_id=intent.provider_payment_id,
            amount=amount,
            currency=payload.currency,
            status=mapping.status,
            provider_status=mapping.raw,
            status_recognized=mapping.recognized,
            payment_method=payload.payment_method,
            description=payload.description,
            metadata=payload.metadata or {},
            created_at=now,
            updated_at=now,
        )
    )

    await record_audit_event(
        user_id=user_id,
        action="PAYMENT_CREATED",
        resource="payment",
        resource_id=payment.id,
        details={
            "provider": provider.name.value,
            "amount": str(amount),
            "currency": payload.currency.value,
            "provider_payment_id": intent.provider_payment_id,
        },
    )
    logger.info(
        "payment_created",
        payment_id=payment.id,
        provider=provider.name.value,
        status=payment.status.value,
        amount=str(amount),
        currency=payload.currency.value,
    )
    return PaymentCreatedOut(**payment.model_dump(), client_secret=intent.client_secret)


async def capture_payment(
    *,
    payment_id: str,
    user_id: str,
    provider: PaymentProvider,
    amount: Decimal | None = None,
    is_admin: bool = False,
) -> PaymentOut:
    payment = await _load_owned_payment(payment_id, user_id, is_admin=is_admin)

    if payment.status == PaymentStatus.SUCCEEDED:
        raise payment_not_eligible(
            ErrorCode.PAYMENT_ALREADY_CAPTURED,
            "Payment already captured",
            payment_id=payment_id,
            status_value=payment.status.value,
        )
    if payment.status not in CAPTURABLE_STATUSES or not payment.provider_payment_id:
        raise payment_not_eligible(
            ErrorCode.PAYMENT_NOT_CAPTURABLE,
            f"Payment cannot be captured while {payment.status.value}",
            payment_id=payment_id,
            status_value=payment.status.value,
        )
    if amount is not None and quantize(amount) > payment.amount:
        raise validation_failed(
            "Capture amount exceeds payment amount",
            details={"amount": str(amount), "payment_amount": str(payment.amount)},
        )

    vendor = _provider_for_payment(payment, provider)
    intent = await vendor.capture_payment(
        CapturePaymentParams(
            payment_id=payment.provider_payment_id,
            amount=quantize(amount) if amount is not None else None,
        )
    )

    mapping = map_provider_status(intent.status)
    new_status = mapping.status
    if not can_transition(payment.status, new_status):
        logger.warning(
            "payment_capture_transition_rejected",
            payment_id=payment_id,
            current_status=payment.status.value,
            provider_status=mapping.raw,
        )
        new_status = payment.status

    now = _epoch()
    changes: dict[str, Any] = {
        "status": new_status,
        "provider_status": mapping.raw,
        "status_recognized": mapping.recognized,
        "updated_at": now,
    }
    if new_status == PaymentStatus.SUCCEEDED:
        changes["captured_at"] = now

    updated = await payment_repo.update_payment_if_version(
        payment_id,
        expected_version=payment.version,
        changes=changes,
    )
    if updated is None:
        logger.warning("payment_capture_conflict", payment_id=payment_id)
        raise payment_conflict(payment_id)

    await record_audit_event(
        user_id=user_id,
        action="PAYMENT_CAPTURED",
        resource="payment",
        resource_id=payment_id,
        details={"status": updated.status.value, "provider_status": mapping.raw},
    )
    logger.info("payment_captured", payment_id=payment_id, status=updated.status.value)
    return updated


def _status_for_refunded(amount: Decimal, refunded_amount: Decimal) -> PaymentStatus:
    if refunded_amount >= amount:
        return PaymentStatus.REFUNDED
    return PaymentStatus.PARTIALLY_REFUNDED


async def _reserve_refund(payment: PaymentOut, refund_amount: Decimal) -> PaymentOut:
    """Book ``refund_amount`` against the payment before the vendor is called.

    The version check makes concurrent refunds race on the same row; only one
    of them can claim any given part of the remaining amount.
    """
    refunded_amount = payment.refunded_amount + refund_amount
    reserved = await payment_repo.update_payment_if_version(
        payment.id,  # type: ignore[arg-type]
        expected_version=payment.version,
        changes={
            "refunded_amount": refunded_amount,
            "status": _status_for_refunded(payment.amount, refunded_amount),
            "refunded_at": _epoch(),
            "updated_at": _epoch(),
        },
    )
    if reserved is None:
        logger.warning("refund_reservation_conflict", payment_id=payment.id, amount=str(refund_amount))
        raise payment_conflict(payment.id)  # type: ignore[arg-type]
    return reserved


async def _release_refund(payment_id: str, refund_amount: Decimal) -> None:
    for _ in range(_RELEASE_ATTEMPTS):
        current = await payment_repo.get_payment_by_id(payment_id)
        if current is None:
            return
        refunded_amount = max(current.refunded_amount - refund_amount, _ZERO)
        restored = PaymentStatus.PARTIALLY_REFUNDED if refunded_amount > _ZERO else PaymentStatus.SUCCEEDED
        released = await payment_repo.update_payment_if_version(
            payment_id,
            expected_version=current.version,
            changes={"refunded_amount": refunded_amount, "status": restored, "updated_at": _epoch()},
        )
        if released is not None:
            logger.info("refund_reservation_released", payment_id=payment_id, amount=str(refund_amount))
            return
    logger.error("refund_reservation_release_failed", payment_id=payment_id, amount=str(refund_amount))


async def refund_payment(
    *,
    payment_id: str,
    user_id: str,
    provider: PaymentProvider,
    amount: Decimal | None = None,
    reason: str | None = None,
    is_admin: bool = False,
) -> PaymentRefundOut:
    payment = await _load_owned_payment(payment_id, user_id, is_admin=is_admin)

    refundable = {PaymentStatus.SUCCEEDED}
    if _followup_refunds_allowed():
        refundable.add(PaymentStatus.PARTIALLY_REFUNDED)
    if payment.status not in refundable:
        raise payment_not_eligible(
            ErrorCode.PAYMENT_NOT_REFUNDABLE,
            f"Payment cannot be refunded while {payment.status.value}",
            payment_id=payment_id,
            status_value=payment.status.value,
        )

    remaining = payment.refundable_amount
    refund_amount = quantize(amount) if amount is not None else remaining
    if refund_amount <= _ZERO or refund_amount > remaining:
        raise AppException(
            status_code=400,
            code=ErrorCode.PAYMENT_REFUND_AMOUNT_INVALID,
            message="Refund amount must be positive and no more than the refundable amount",
            details={"amount": str(refund_amount), "refundable_amount": str(remaining)},
        )

    vendor = _provider_for_payment(payment, provider)
    reserved = await _reserve_refund(payment, refund_amount)
    try:
        result = await vendor.refund_payment(
            RefundPaymentParams(
                payment_id=payment.provider_payment_id or "",
                amount=refund_amount,
                reason=reason,
            )
        )
    except Exception:
        await _release_refund(payment_id, refund_amount)
        raise

    refund_status = map_refund_status(result.status)
    now = _epoch()
    refund = await payment_repo.create_refund(
        PaymentRefundCreate(
            payment_id=payment_id,
            provider_refund_id=result.provider_refund_id,
            amount=refund_amount,
            status=refund_status,
            provider_status=result.status,
            reason=reason,
            created_at=now,
            processed_at=now if refund_status == RefundStatus.SUCCEEDED else None,
        )
    )

    if refund_status in (RefundStatus.FAILED, RefundStatus.CANCELLED):
        await _release_refund(payment_id, refund_amount)
        raise ProviderError(
            provider=vendor.name.value,
            message="Refund rejected by provider",
            vendor_message=result.status,
            details={"refund_id": refund.id},
        )

    await record_audit_event(
        user_id=user_id,
        action="PAYMENT_REFUNDED",
        resource="payment",
        resource_id=payment_id,
        details={
            "refund_id": refund.id,
            "amount": str(refund_amount),
            "refund_status": refund_status.value,
            "reason": reason,
        },
    )
    logger.info(
        "payment_refunded",
        payment_id=payment_id,
        refund_id=refund.id,
        amount=str(refund_amount),
        refunded_amount=str(reserved.refunded_amount),
        status=reserved.status.value,
    )
    return refund


async def get_payment(*, payment_id: str, user_id: str, is_admin: bool = False) -> PaymentDetailOut:
    payment = await _load_owned_payment(payment_id, user_id, is_admin=is_admin)
    refunds = await payment_repo.list_refunds_for_payment(payment_id)
    return PaymentDetailOut(**payment.model_dump(), refunds=refunds)


async def _paginate(filter_dict: dict[str, Any], *, page: int, page_size: int) -> dict[str, Any]:
    start = (page - 1) * page_size
    total_count = await payment_repo.count_payments(filter_dict)
    items = await payment_repo.list_payments(filter_dict, start=start, stop=start + page_size)
    meta = PaginationMeta(
        page=page,
        page_size=page_size,
        total_count=total_count,
        total_pages=math.ceil(total_count / page_size) if total_count else 0,
    )
    return {"items": items, "meta": meta.model_dump()}


async def list_user_payments(
    *,
    user_id: str,
    page: int = 1,
    page_size: int = 20,
    status: PaymentStatus | None = None,
) -> dict[str, Any]:
    filter_dict: dict[str, Any] = {"user_id": user_id}
    if status is not None:
        filter_dict["status"] = status.value
    return await _paginate(filter_dict, page=page, page_size=page_size)


async def list_all_payments(
    *,
    page: int = 1,
    page_size: int = 20,
    status: PaymentStatus | None = None,
    provider: PaymentProviderName | None = None,
    user_id: str | None = None,
) -> dict[str, Any]:
    filter_dict: dict[str, Any] = {}
    if status is not None:
        filter_dict["status"] = status.value
    if provider is not None:
        filter_dict["provider"] = provider.value
    if user_id:
        filter_dict["user_id"] = user_id
    return await _paginate(filter_dict, page=page, page_size=page_size)


async def _claim_webhook_log(
    provider_type: PaymentProviderName,
    event: WebhookEvent,
    payload: dict[str, Any],
    signature: str | None,
) -> WebhookLogOut:
    """Return the log row this delivery works on.

    A redelivery reuses the row of the earlier attempt, so an event whose first
    run failed is applied again instead of being dropped.
    """
    existing = await payment_repo.get_webhook_log_by_event(provider_type.value, event.id)
    if existing is not None:
        return existing
    try:
        return await payment_repo.create_webhook_log(
            WebhookLogCreate(
                provider=provider_type,
                event_type=event.type,
                event_id=event.id,
                payload=payload,
                signature=signature or "",
                verified=True,
                created_at=_epoch(),
            )
        )
    except DuplicateKeyError:
        # A concurrent delivery of the same event inserted first.
        existing = await payment_repo.get_webhook_log_by_event(provider_type.value, event.id)
        if existing is None:
            raise
        return existing


async def _apply_webhook_event(provider_name: PaymentProviderName, event: WebhookEvent) -> str | None:
    target = WEBHOOK_EVENT_STATUS.get(event.type)
    if target is None:
        if event.type in REFUND_EVENT_TYPES:
            logger.info("webhook_refund_event_acknowledged", provider=provider_name.value, event_type=event.type)
        else:
            logger.info("webhook_event_unhandled", provider=provider_name.value, event_type=event.type)
        return None

    if not event.provider_payment_id:
        logger.warning("webhook_event_without_payment", provider=provider_name.value, event_type=event.type)
        return None

    now = _epoch()
    changes: dict[str, Any] = {
        "status": target,
        "provider_status": str(event.data.get("status") or event.type),
        "status_recognized": True,
        "updated_at": now,
    }
    if target == PaymentStatus.SUCCEEDED:
        changes["captured_at"] = now

    modified = await payment_repo.update_payments_by_provider_payment_id(
        provider=provider_name.value,
        provider_payment_id=event.provider_payment_id,
        from_statuses=sources_for(target),
        changes=changes,
    )
    payment = await payment_repo.get_payment_by_provider_payment_id(
        provider=provider_name.value,
        provider_payment_id=event.provider_payment_id,
    )
    if payment is None:
        logger.warning(
            "webhook_payment_not_found",
            provider=provider_name.value,
            provider_payment_id=event.provider_payment_id,
            event_type=event.type,
        )
        return None

    if modified:
        logger.info(
            "payment_status_updated_from_webhook",
            payment_id=payment.id,
            status=target.value,
            event_type=event.type,
        )
    else:
        logger.info(
            "webhook_status_unchanged",
            payment_id=payment.id,
            current_status=payment.status.value,
            target_status=target.value,
        )
    return payment.id


async def handle_webhook(
    *,
    provider_name: str,
    body: bytes,
    signature: str | None,
    event_id_hint: str | None = None,
) -> dict[str, Any]:
    try:
        provider_type = PaymentProviderName.parse(provider_name)
    except ValueError as err:
        raise validation_failed(
            f"Unsupported payment provider '{provider_name}'",
            details={"supported": [item.value for item in PaymentProviderName]},
        ) from err

    provider = _build_provider(provider_type)
    if not provider.verify_webhook(VerifyWebhookParams(payload=body, signature=signature or "")):
        logger.warning("webhook_signature_invalid", provider=provider_type.value)
        raise payment_webhook_invalid(provider_type.value)

    try:
        payload = json.loads(body)
    except ValueError as err:
        raise validation_failed("Webhook body is not valid JSON") from err
    if not isinstance(payload, dict):
        raise validation_failed("Webhook body must be a JSON object")

    event = provider.parse_webhook_event(payload, event_id=event_id_hint)
    log = await _claim_webhook_log(provider_type, event, payload, signature)
    if log.processed:
        logger.info("webhook_duplicate", provider=provider_type.value, event_id=event.id, webhook_id=log.id)
        return {"success": True, "webhook_id": log.id, "duplicate": True}
    if log.error_message:
        logger.info(
            "webhook_retry",
            provider=provider_type.value,
            event_id=event.id,
            webhook_id=log.id,
            previous_error=log.error_message,
        )

    try:
        payment_id = await _apply_webhook_event(provider_type, event)
    except Exception as err:
        await payment_repo.finish_webhook_log(
            log.id,  # type: ignore[arg-type]
            processed=False,
            processed_at=None,
            error_message=str(err),
        )
        logger.error(
            "webhook_processing_failed",
            provider=provider_type.value,
            event_id=event.id,
            event_type=event.type,
            error=str(err),
        )
        raise

    await payment_repo.finish_webhook_log(
        log.id,  # type: ignore[arg-type]
        processed=True,
        processed_at=_epoch(),
        payment_id=payment_id,
    )
    logger.info(
        "webhook_processed",
        provider=provider_type.value,
        event_id=event.id,
        event_type=event.type,
        payment_id=payment_id,
    )
    return {"success": True, "webhook_id": log.id, "duplicate": False}
