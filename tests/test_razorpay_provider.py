from __future__ import annotations

import hashlib
import hmac
from decimal import Decimal
from types import SimpleNamespace

import pytest

from core.errors import ConfigurationError, ProviderError
from core.payments import (
    CapturePaymentParams,
    CreatePaymentParams,
    Currency,
    PaymentProviderName,
    ProviderConfig,
    RefundPaymentParams,
    VerifyWebhookParams,
)
from core.payments.razorpay_provider import RazorpayPaymentProvider


class _BadRequestError(Exception):
    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.error_code = "BAD_REQUEST_ERROR"


class _FakeRazorpayClient:
    def __init__(self, *, payments: list[dict] | None = None) -> None:
        self.calls: list[tuple[str, tuple, dict]] = []
        self._payments = payments if payments is not None else [{"id": "pay_1", "status": "captured"}]
        self.order = SimpleNamespace(
            create=self._record("order.create", self._order_create),
            fetch=self._record("order.fetch", self._order_fetch),
            payments=self._record("order.payments", lambda order_id: {"items": self._payments}),
        )
        self.payment = SimpleNamespace(refund=self._record("payment.refund", self._refund))

    def _record(self, name, func):
        def _call(*args, **kwargs):
            self.calls.append((name, args, kwargs))
            return func(*args, **kwargs)

        return _call

    @staticmethod
    def _order_create(data):
        return {"id": "order_1", "amount": data["amount"], "currency": data["currency"], "status": "created", "notes": data["notes"]}

    @staticmethod
    def _order_fetch(order_id):
        return {"id": order_id, "amount": 10_000, "currency": "INR", "status": "paid", "notes": {}}

    @staticmethod
    def _refund(payment_id, data):
        if data.get("amount", 0) > 10_000:
            raise _BadRequestError("The refund amount provided is greater than amount captured")
        return {"id": "rfnd_1", "amount": data.get("amount", 10_000), "status": "processed"}


def _provider(client: _FakeRazorpayClient | None = None) -> RazorpayPaymentProvider:
    provider = RazorpayPaymentProvider(client=client or _FakeRazorpayClient())
    provider.initialize(
        ProviderConfig(
            provider=PaymentProviderName.RAZORPAY,
            api_key="rzp_test_key",
            api_secret="rzp_secret",
            webhook_secret="rzp_webhook_secret",
        )
    )
    return provider


def test_initialize_requires_key_and_secret():
    with pytest.raises(ConfigurationError):
        RazorpayPaymentProvider(client=_FakeRazorpayClient()).initialize(
            ProviderConfig(provider=PaymentProviderName.RAZORPAY, api_key="rzp_test_key")
        )


@pytest.mark.asyncio
async def test_create_payment_creates_order_in_paise():
    client = _FakeRazorpayClient()
    provider = _provider(client)

    intent = await provider.create_payment(
        CreatePaymentParams(amount=Decimal("499.99"), currency=Currency.INR, user_id="user-1", description="Plan")
    )

    name, _, kwargs = client.calls[0]
    assert name == "order.create"
    assert kwargs["data"]["amount"] == 49_999
    assert kwargs["data"]["notes"]["userId"] == "user-1"
    assert intent.id == "order_1"
    assert intent.provider_payment_id == "order_1"
    assert intent.status == "created"
    assert intent.amount == Decimal("499.99")


@pytest.mark.asyncio
async def test_capture_reports_current_order_state():
    client = _FakeRazorpayClient()
    provider = _provider(client)

    intent = await provider.capture_payment(CapturePaymentParams(payment_id="order_1"))

    assert [call[0] for call in client.calls] == ["order.fetch"]
    assert intent.status == "paid"
    assert intent.amount == Decimal("100.00")


@pytest.mark.asyncio
async def test_refund_targets_captured_payment_of_order():
    client = _FakeRazorpayClient(payments=[{"id": "pay_0", "status": "failed"}, {"id": "pay_1", "status": "captured"}])
    provider = _provider(client)

    result = await provider.refund_payment(
        RefundPaymentParams(payment_id="order_1", amount=Decimal("40.00"), reason="duplicate order")
    )

    name, args, _ = client.calls[-1]
    assert name == "payment.refund"
    assert args[0] == "pay_1"
    assert args[1] == {"notes": {"reason": "duplicate order"}, "amount": 4_000}
    assert result.amount == Decimal("40.00")
    assert result.status == "processed"
    assert result.payment_id == "order_1"


@pytest.mark.asyncio
async def test_refund_without_captured_payment_fails():
    provider = _provider(_FakeRazorpayClient(payments=[{"id": "pay_0", "status": "failed"}]))

    with pytest.raises(ProviderError):
        await provider.refund_payment(RefundPaymentParams(payment_id="order_1"))


@pytest.mark.asyncio
async def test_vendor_error_keeps_razorpay_error_code():
    provider = _provider()

    with pytest.raises(ProviderError) as exc_info:
        await provider.refund_payment(RefundPaymentParams(payment_id="order_1", amount=Decimal("500.00")))

    assert exc_info.value.vendor_code == "BAD_REQUEST_ERROR"
    assert "greater than amount captured" in exc_info.value.detail["message"]


def test_verify_webhook_uses_hex_hmac_of_raw_body():
    provider = _provider()
    body = b'{"event":"payment.captured"}'
    signature = hmac.new(b"rzp_webhook_secret", body, hashlib.sha256).hexdigest()

    assert provider.verify_webhook(VerifyWebhookParams(payload=body, signature=signature)) is True
    assert provider.verify_webhook(VerifyWebhookParams(payload=body.decode(), signature=signature)) is True
    assert provider.verify_webhook(VerifyWebhookParams(payload=body + b" ", signature=signature)) is False
    assert provider.verify_webhook(VerifyWebhookParams(payload=body, signature="")) is False


def test_parse_webhook_event_resolves_order_id():
    provider = _provider()

    event = provider.parse_webhook_event(
        {
            "event": "payment.captured",
            "payload": {"payment": {"entity": {"id": "pay_1", "order_id": "order_1", "status": "captured"}}},
        },
        event_id="evt_header_1",
    )

    assert event.id == "evt_header_1"
    assert event.type == "payment.captured"
    assert event.data["id"] == "pay_1"
    assert event.provider_payment_id == "order_1"

    order_event = provider.parse_webhook_event(
        {"event": "order.paid", "payload": {"order": {"entity": {"id": "order_2", "status": "paid"}}}}
    )
    assert order_event.provider_payment_id == "order_2"
    assert order_event.id.startswith("event_")
