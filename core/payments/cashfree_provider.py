from __future__ import annotations

import base64
import hashlib
import hmac
import time
from typing import Any
from uuid import uuid4

import requests
from starlette.concurrency import run_in_threadpool

from core.errors import ConfigurationError, ProviderError
from core.logging_config import get_logger
from core.payments.money import quantize
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

CASHFREE_API_VERSION = "2023-08-01"
CASHFREE_BASE_URLS = {
    "test": "https://sandbox.cashfree.com/pg",
    "live": "https://api.cashfree.com/pg",
}
DEFAULT_CUSTOMER_PHONE = "9999999999"


class CashfreePaymentProvider:
    """Cashfree PG orders over its REST API. Amounts are sent in major units."""

    name = PaymentProviderName.CASHFREE

    def __init__(self, *, session: requests.Session | None = None, default_customer_phone: str | None = None) -> None:
        self._session = session or requests.Session()
        self._phone_override = default_customer_phone
        self._default_customer_phone = default_customer_phone or DEFAULT_CUSTOMER_PHONE
        self._app_id: str | None = None
        self._secret_key: str | None = None
        self._webhook_secret: str | None = None
        self._mode = "test"
        self._base_url = CASHFREE_BASE_URLS["test"]

    def initialize(self, config: ProviderConfig) -> None:
        if not config.api_key or not config.api_secret:
            raise ConfigurationError(
                "Cashfree app_id and secret_key are required (CASHFREE_APP_ID, CASHFREE_SECRET_KEY)"
            )
        self._app_id = config.api_key
        self._secret_key = config.api_secret
        self._webhook_secret = config.webhook_secret
        self._mode = "live" if config.mode == "live" else "test"
        self._base_url = CASHFREE_BASE_URLS[self._mode]
        self._default_customer_phone = (
            self._phone_override or config.options.get("default_customer_phone") or DEFAULT_CUSTOMER_PHONE
        )
        logger.info("cashfree_provider_initialized", mode=self._mode)

    def _headers(self) -> dict[str, str]:
        if not self._app_id or not self._secret_key:
            raise ConfigurationError("Cashfree provider is not initialized")
        return {
            "x-client-id": self._app_id,
            "x-client-secret": self._secret_key,
            "x-api-version": CASHFREE_API_VERSION,
            "Content-Type": "application/json",
        }

    def _request(self, method: str, path: str, *, operation: str, json: dict[str, Any] | None = None) -> Any:
        headers = self._headers()
        try:
            response = self._session.request(
                method,
                f"{self._base_url}{path}",
                json=json,
                headers=headers,
                timeout=15,
            )
        except requests.RequestException as err:
            logger.error("cashfree_call_failed", operation=operation, error=str(err))
            raise ProviderError(
                provider=self.name.value,
                message=operation,
                vendor_message=str(err),
            ) from err

        try:
            data = response.json()
        except ValueError as err:
            body_preview = (response.text or "")[:200]
            logger.error(
                "cashfree_call_failed",
                operation=operation,
                status_code=response.status_code,
                error="non-JSON response",
            )
            raise ProviderError(
                provider=self.name.value,
                message=operation,
                vendor_message=body_preview or f"HTTP {response.status_code}",
                details={"status_code": response.status_code},
            ) from err
        if response.status_code >= 400:
            vendor_code = data.get("code") if isinstance(data, dict) else None
            vendor_message = data.get("message") if isinstance(data, dict) else None
            logger.error(
                "cashfree_call_failed",
                operation=operation,
                status_code=response.status_code,
                code=vendor_code,
                error=vendor_message,
            )
            raise ProviderError(
                provider=self.name.value,
                message=operation,
                vendor_code=vendor_code,
                vendor_message=vendor_message,
                details=data,
            )
        return data

    def _order_to_intent(self, order: dict[str, Any]) -> PaymentIntent:
        return PaymentIntent(
            id=order["order_id"],
            amount=quantize(order.get("order_amount") or 0),
            currency=Currency(str(order.get("order_currency", "INR")).upper()),
            status=str(order.get("order_status", "")),
            client_secret=order.get("payment_session_id"),
            provider_payment_id=order["order_id"],
            metadata=dict(order.get("order_tags") or {}),
        )

    async def create_payment(self, params: CreatePaymentParams) -> PaymentIntent:
        metadata = dict(params.metadata or {})
        order_id = f"order_{int(time.time() * 1000)}_{params.user_id}"
        body: dict[str, Any] = {
            "order_id": order_id,
            "order_amount": float(quantize(params.amount)),
            "order_currency": params.currency.value,
            "customer_details": {
                "customer_id": params.customer_id or params.user_id,
                "customer_phone": str(metadata.pop("customer_phone", None) or self._default_customer_phone),
            },
            "order_note": params.description or "",
        }
        if metadata:
            # order_tags only accepts string values
            body["order_tags"] = {str(key): str(value) for key, value in metadata.items()}

        order = await run_in_threadpool(
            self._request, "POST", "/orders", operation="Cashfree order creation failed", json=body
        )
        logger.info(
            "cashfree_order_created",
            order_id=order.get("order_id"),
            amount=str(params.amount),
            currency=params.currency.value,
        )
        intent = self._order_to_intent(order)
        return PaymentIntent(
            id=intent.id,
            amount=params.amount,
            currency=params.currency,
            status=intent.status or "ACTIVE",
            client_secret=intent.client_secret,
            provider_payment_id=intent.provider_payment_id,
            metadata=params.metadata or {},
        )

    async def capture_payment(self, params: CapturePaymentParams) -> PaymentIntent:
        intent = await self.get_payment_status(params.payment_id)
        logger.info("cashfree_order_fetched", order_id=intent.id, status=intent.status)
        return intent

    async def refund_payment(self, params: RefundPaymentParams) -> RefundResult:
        amount = params.amount
        if amount is None:
            # Cashfree needs an explicit amount; default to the full order.
            amount = (await self.get_payment_status(params.payment_id)).amount

        refund_id = f"refund_{uuid4().hex[:20]}"
        body = {
            "refund_id": refund_id,
            "refund_amount": float(quantize(amount)),
            "refund_note": params.reason or "Customer requested refund",
        }
        refund = await run_in_threadpool(
            self._request,
            "POST",
            f"/orders/{params.payment_id}/refunds",
            operation="Cashfree refund failed",
            json=body,
        )
        logger.info(
            "cashfree_refund_created",
            refund_id=refund.get("refund_id", refund_id),
            order_id=params.payment_id,
            status=refund.get("refund_status"),
        )
        provider_refund_id = str(refund.get("cf_refund_id") or refund.get("refund_id") or refund_id)
        return RefundResult(
            id=provider_refund_id,
            payment_id=params.payment_id,
            amount=quantize(refund.get("refund_amount") or amount),
            status=refund.get("refund_status") or "PENDING",
            provider_refund_id=provider_refund_id,
        )

    async def get_payment_status(self, payment_id: str) -> PaymentIntent:
        order = await run_in_threadpool(
            self._request, "GET", f"/orders/{payment_id}", operation="Cashfree order retrieval failed"
        )
        return self._order_to_intent(order)

    def verify_webhook(self, params: VerifyWebhookParams) -> bool:
        secret = params.secret or self._webhook_secret
        if not secret:
            logger.warning("cashfree_webhook_secret_missing")
            return False
        if not params.signature:
            return False

        payload = params.payload if isinstance(params.payload, bytes) else params.payload.encode("utf-8")
        digest = hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).digest()
        expected = base64.b64encode(digest).decode("ascii")
        return hmac.compare_digest(expected, params.signature)

    def parse_webhook_event(self, payload: dict[str, Any], *, event_id: str | None = None) -> WebhookEvent:
        data = payload.get("data") or payload
        event_type = str(payload.get("type") or "unknown")
        order_id = (data.get("order") or {}).get("order_id")
        # One order emits several event types, so the order id alone is not unique.
        fallback_id = f"{event_type}:{order_id}" if order_id else f"event_{uuid4().hex}"
        return WebhookEvent(
            id=str(event_id or fallback_id),
            type=event_type,
            data=data,
            provider_payment_id=order_id,
        )
