from __future__ import annotations

from typing import Any, Protocol

from core.payments.types import (
    CapturePaymentParams,
    CreatePaymentParams,
    PaymentIntent,
    PaymentProviderName,
    ProviderConfig,
    RefundPaymentParams,
    RefundResult,
    VerifyWebhookParams,
    WebhookEvent,
)


class PaymentProvider(Protocol):
    name: PaymentProviderName

    def initialize(self, config: ProviderConfig) -> None:
        ...

    async def create_payment(self, params: CreatePaymentParams) -> PaymentIntent:
        ...

    async def capture_payment(self, params: CapturePaymentParams) -> PaymentIntent:
        ...

    async def refund_payment(self, params: RefundPaymentParams) -> RefundResult:
        ...

    async def get_payment_status(self, payment_id: str) -> PaymentIntent:
        ...

    def verify_webhook(self, params: VerifyWebhookParams) -> bool:
        ...

    def parse_webhook_event(self, payload: dict[str, Any], *, event_id: str | None = None) -> WebhookEvent:
        ...
