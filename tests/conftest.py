from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest

from core.payments import (
    CapturePaymentParams,
    CreatePaymentParams,
    Currency,
    PaymentIntent,
    PaymentProviderFactory,
    PaymentProviderName,
    ProviderConfig,
    RefundPaymentParams,
    RefundResult,
    VerifyWebhookParams,
    WebhookEvent,
)
from repositories import audit_repo, payment_repo
from tests.fake_mongo import FakeDatabase


class FakeProvider:
    """Stripe-shaped provider that records every call."""

    name = PaymentProviderName.STRIPE

    def __init__(self) -> None:
        self.calls: list[tuple[str, object]] = []
        self.create_status = "requires_payment_method"
        self.capture_status = "succeeded"
        self.refund_status = "succeeded"
        self.refund_error: Exception | None = None
        self.valid_signature = "good-signature"
        self._counter = 0

    def initialize(self, config: ProviderConfig) -> None:
        self.calls.append(("initialize", config))

    async def create_payment(self, params: CreatePaymentParams) -> PaymentIntent:
        self.calls.append(("create_payment", params))
        self._counter += 1
        intent_id = f"pi_{self._counter}"
        return PaymentIntent(
            id=intent_id,
            amount=params.amount,
            currency=params.currency,
            status=self.create_status,
            client_secret=f"{intent_id}_secret",
            provider_payment_id=intent_id,
            metadata=dict(params.metadata or {}),
        )

    async def capture_payment(self, params: CapturePaymentParams) -> PaymentIntent:
        self.calls.append(("capture_payment", params))
        return PaymentIntent(
            id=params.payment_id,
            amount=params.amount or Decimal("0.00"),
            currency=Currency.USD,
            status=self.capture_status,
            provider_payment_id=params.payment_id,
        )

    async def refund_payment(self, params: RefundPaymentParams) -> RefundResult:
        self.calls.append(("refund_payment", params))
        await asyncio.sleep(0)
        if self.refund_error is not None:
            raise self.refund_error
        self._counter += 1
        return RefundResult(
            id=f"re_{self._counter}",
            payment_id=params.payment_id,
            amount=params.amount or Decimal("0.00"),
            status=self.refund_status,
            provider_refund_id=f"re_{self._counter}",
        )

    async def get_payment_status(self, payment_id: str) -> PaymentIntent:
        self.calls.append(("get_payment_status", payment_id))
        return PaymentIntent(
            id=payment_id,
            amount=Decimal("0.00"),
            currency=Currency.USD,
            status="succeeded",
            provider_payment_id=payment_id,
        )

    def verify_webhook(self, params: VerifyWebhookParams) -> bool:
        self.calls.append(("verify_webhook", params))
        return params.signature == self.valid_signature

    def parse_webhook_event(self, payload: dict, *, event_id: str | None = None) -> WebhookEvent:
        data = (payload.get("data") or {}).get("object") or {}
        return WebhookEvent(
            id=str(event_id or payload.get("id")),
            type=str(payload.get("type")),
            data=data,
            provider_payment_id=data.get("id"),
        )

    def call_names(self) -> list[str]:
        return [name for name, _ in self.calls]


@pytest.fixture
def fake_db(monkeypatch: pytest.MonkeyPatch) -> FakeDatabase:
    database = FakeDatabase()
    monkeypatch.setattr(payment_repo, "db", database)
    monkeypatch.setattr(audit_repo, "db", database)
    monkeypatch.setattr(payment_repo, "_PAYMENT_INDEXES_READY", False)
    return database


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture(autouse=True)
def _reset_payment_provider():
    PaymentProviderFactory.reset_provider()
    yield
    PaymentProviderFactory.reset_provider()
