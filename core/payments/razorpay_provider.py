from __future__ import annotations

import hashlib
import hmac
import time
from typing import Any
from uuid import uuid4

from starlette.concurrency import run_in_threadpool

from core.errors import ConfigurationError, ProviderError
from core.logging_config import get_logger
from core.payments.money import from_minor_units, to_minor_units
from core.payments.types import (
    CapturePaymentParams,
    CreatePaymentParams,
    Currency,
    PaymentIntent,
    PaymentProviderName,
    ProviderConfig,
    RefundPaymentParams,
    RefundResult,
    VerifyWebhookParams,
    WebhookEvent,
)

logger = get_logger(__name__)

# Entities a Razorpay webhook can carry, most specific first.
_WEBHOOK_ENTITIES = ("refund", "payment", "order")


def _vendor_error(err: Exception) -> tuple[str | None, str]:
    return getattr(err, "error_code", None), str(err)


def _as_bytes(payload: bytes | str) -> bytes:
    return payload if isinstance(payload, bytes) else payload.encode("utf-8")


class RazorpayPaymentProvider:
    """Razorpay orders API. Payments auto-capture, so the order id is the payment handle."""

    name = PaymentProviderName.RAZORPAY

    def __init__(self, *, client: Any | None = None) -> None:
        self._client = client
        self._key_id: str | None = None
        self._webhook_secret: str | None = None

    def initialize(self, config: ProviderConfig) -> None:
        if not config.api_key or not config.api_secret:
            raise ConfigurationError(
                "Razorpay key_id and key_secret are required (RAZORPAY_KEY_ID, RAZORPAY_KEY_SECRET)"
            )

        if self._client is None:
            try:
                import razorpay
            except ModuleNotFoundError as err:
                raise ConfigurationError("razorpay package is required for RazorpayPaymentProvider") from err
            self._client = razorpay.Client(auth=(config.api_key, config.api_secret))

        self._key_id = config.api_key
        self._webhook_secret = config.webhook_secret
        logger.info("razorpay_provider_initialized", mode=config.mode)

    def _require_initialized(self) -> Any:
        if self._client is None or not self._key_id:
            raise ConfigurationError("Razorpay provider is not initialized")
        return self._client

    def _order_to_intent(self, order: dict[str, Any]) -> PaymentIntent:
        return PaymentIntent(
            id=order["id"],
            amount=from_minor_units(order.get("amount")),
            currency=Currency(str(order.get("currency", "INR")).upper()),
            status=str(order.get("status", "")),
            provider_payment_id=order["id"],
            metadata=dict(order.get("notes") or {}),
        )

    def _raise(self, err: Exception, message: str, **context: Any) -> None:
        code, vendor_message = _vendor_error(err)
        logger.error("razorpay_call_failed", operation=message, error=vendor_message, code=code, **context)
        raise ProviderError(
            provider=self.name.value,
            message=message,
            vendor_code=code,
            vendor_message=vendor_message,
        ) from err

    async def create_payment(self, params: CreatePaymentParams) -> PaymentIntent:
        client = self._require_initialized()
        data = {
            "amount": to_minor_units(params.amount),
            "currency": params.currency.value,
            "receipt": f"receipt_{int(time.time() * 1000)}",
            "notes": {
                "userId": params.user_id,
                "description": params.description or "",
                **(params.metadata or {}),
            },
        }
        try:
            order = await run_in_threadpool(client.order.create, data=data)
        except Exception as err:
            self._raise(err, "Razorpay order creation failed")

        logger.info(
            "razorpay_order_created",
            order_id=order["id"],
            amount=str(params.amount),
            currency=params.currency.value,
        )
        intent = self._order_to_intent(order)
        return PaymentIntent(
            id=intent.id,
            amount=params.amount,
            currency=params.currency,
            status=intent.status,
            provider_payment_id=intent.provider_payment_id,
            metadata=intent.metadata,
        )

    async def capture_payment(self, params: CapturePaymentParams) -> PaymentIntent:
        # Orders are captured automatically once paid; report the current order state.
        intent = await self.get_payment_status(params.payment_id)
        logger.info("razorpay_order_fetched", order_id=intent.id, status=intent.status)
        return intent

    async def _captured_payment_id(self, order_id: str) -> str:
        client = self._require_initialized()
        try:
            payments = await run_in_threadpool(client.order.payments, order_id)
        except Exception as err:
            self._raise(err, "Razorpay order payments lookup failed", order_id=order_id)

        for item in payments.get("items", []):
            if item.get("status") == "captured":
                return item["id"]
        raise ProviderError(
            provider=self.name.value,
            message="Razorpay order has no captured payment to refund",
            details={"order_id": order_id},
        )

    async def refund_payment(self, params: RefundPaymentParams) -> RefundResult:
        client = self._require_initialized()
        payment_id = await self._captured_payment_id(params.payment_id)
        data: dict[str, Any] = {"notes": {"reason": params.reason or "Customer requested refund"}}
        if params.amount is not None:
            data["amount"] = to_minor_units(params.amount)

        try:
            refund = await run_in_threadpool(client.payment.refund, payment_id, data)
        except Exception as err:
            self._raise(err, "Razorpay refund failed", order_id=params.payment_id)

        logger.info(
            "razorpay_refund_created",
            refund_id=refund["id"],
            order_id=params.payment_id,
            status=refund.get("status"),
        )
        return RefundResult(
            id=refund["id"],
            payment_id=params.payment_id,
            amount=from_minor_units(refund.get("amount") or 0),
            status=refund.get("status") or "pending",
            provider_refund_id=refund["id"],
        )

    async def get_payment_status(self, payment_id: str) -> PaymentIntent:
        client = self._require_initialized()
        try:
            order = await run_in_threadpool(client.order.fetch, payment_id)
        except Exception as err:
            self._raise(err, "Razorpay order retrieval failed", order_id=payment_id)
        return self._order_to_intent(order)

    def verify_webhook(self, params: VerifyWebhookParams) -> bool:
        secret = params.secret or self._webhook_secret
        if not secret:
            logger.warning("razorpay_webhook_secret_missing")
            return False
        if not params.signature:
            return False

        expected = hmac.new(secret.encode("utf-8"), _as_bytes(params.payload), hashlib.sha256).hexdigest()
        return hmac.compare_digest(expected, params.signature)

    def parse_webhook_event(self, payload: dict[str, Any], *, event_id: str | None = None) -> WebhookEvent:
        event_type = str(payload.get("event") or payload.get("eventType") or "unknown")
        envelope = payload.get("payload") or {}

        data: dict[str, Any] = {}
        for entity_name in _WEBHOOK_ENTITIES:
            entity = (envelope.get(entity_name) or {}).get("entity")
            if entity:
                data = entity
                break
        if not data:
            data = envelope or payload

        # Payments on our side are keyed by order id.
        payment_entity = (envelope.get("payment") or {}).get("entity") or {}
        order_entity = (envelope.get("order") or {}).get("entity") or {}
        provider_payment_id = (
            payment_entity.get("order_id")
            or order_entity.get("id")
            or data.get("order_id")
        )

        return WebhookEvent(
            id=str(event_id or payload.get("id") or f"event_{uuid4().hex}"),
            type=event_type,
            data=data,
            provider_payment_id=provider_payment_id,
        )
