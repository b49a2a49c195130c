from __future__ import annotations

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
from core.payments.stripe_provider import StripePaymentProvider


class _CardError(Exception):
    def __init__(self, message: str, code: str) -> None:
        super().__init__(message)
        self.code = code
        self.user_message = message


class _FakeStripe:
    def __init__(self) -> None:
        self.calls: list[tuple[str, tuple, dict]] = []
        self.fail_with: Exception | None = None
        self.PaymentIntent = SimpleNamespace(
            create=self._recorder("PaymentIntent.create", self._intent),
            capture=self._recorder("PaymentIntent.capture", self._captured),
            retrieve=self._recorder("PaymentIntent.retrieve", self._captured),
        )
        self.Refund = SimpleNamespace(create=self._recorder("Refund.create", self._refund))
        self.Webhook = SimpleNamespace(construct_event=self._construct_event)

    def _recorder(self, name, builder):
        def _call(*args, **kwargs):
            self.calls.append((name, args, kwargs))
            if self.fail_with is not None:
                raise self.fail_with
            return builder(*args, **kwargs)

        return _call

    @staticmethod
    def _intent(**kwargs):
        return SimpleNamespace(
            id="pi_123",
            amount=kwargs["amount"],
            currency=kwargs["currency"],
            status="requires_payment_method",
            client_secret="pi_123_secret",
            metadata=kwargs["metadata"],
        )

    @staticmethod
    def _captured(payment_id, **kwargs):
        return SimpleNamespace(id=payment_id, amount=10_000, currency="usd", status="succeeded", metadata={})

    @staticmethod
    def _refund(**kwargs):
        return SimpleNamespace(id="re_1", amount=kwargs.get("amount", 10_000), status="succeeded")

    @staticmethod
    def _construct_event(payload, sig_header, secret):
        if sig_header != "t=1,v1=valid":
            raise ValueError("No signatures found matching the expected signature for payload")
        return {"id": "evt_1"}


def _provider(sdk: _FakeStripe | None = None, **overrides) -> StripePaymentProvider:
    provider = StripePaymentProvider(sdk=sdk or _FakeStripe())
    config = {
        "provider": PaymentProviderName.STRIPE,
        "api_key": "sk_test_123",
        "webhook_secret": "whsec_123",
    }
    config.update(overrides)
    provider.initialize(ProviderConfig(**config))
    return provider


def test_initialize_requires_api_key():
    with pytest.raises(ConfigurationError):
        StripePaymentProvider(sdk=_FakeStripe()).initialize(
            ProviderConfig(provider=PaymentProviderName.STRIPE, api_key="")
        )


@pytest.mark.asyncio
async def test_operations_before_initialize_fail_with_configuration_error():
    with pytest.raises(ConfigurationError):
        await StripePaymentProvider(sdk=_FakeStripe()).get_payment_status("pi_123")


@pytest.mark.asyncio
async def test_create_payment_uses_minor_units_and_manual_capture():
    sdk = _FakeStripe()
    provider = _provider(sdk)

    intent = await provider.create_payment(
        CreatePaymentParams(
            amount=Decimal("100.00"),
            currency=Currency.USD,
            user_id="user-1",
            description="Order 42",
            metadata={"order": "42"},
        )
    )

    [(name, _, kwargs)] = sdk.calls
    assert name == "PaymentIntent.create"
    assert kwargs["amount"] == 10_000
    assert kwargs["currency"] == "usd"
    assert kwargs["capture_method"] == "manual"
    assert kwargs["metadata"] == {"userId": "user-1", "order": "42"}
    assert kwargs["api_key"] == "sk_test_123"
    assert intent.amount == Decimal("100.00")
    assert intent.status == "requires_payment_method"
    assert intent.client_secret == "pi_123_secret"
    assert intent.provider_payment_id == "pi_123"


@pytest.mark.asyncio
async def test_capture_passes_partial_amount():
    sdk = _FakeStripe()
    provider = _provider(sdk)

    intent = await provider.capture_payment(CapturePaymentParams(payment_id="pi_123", amount=Decimal("12.34")))

    [(name, args, kwargs)] = sdk.calls
    assert name == "PaymentIntent.capture"
    assert args == ("pi_123",)
    assert kwargs["amount_to_capture"] == 1_234
    assert intent.status == "succeeded"


@pytest.mark.asyncio
async def test_get_payment_status_retrieves_intent():
    sdk = _FakeStripe()
    provider = _provider(sdk)

    intent = await provider.get_payment_status("pi_123")

    [(name, args, kwargs)] = sdk.calls
    assert name == "PaymentIntent.retrieve"
    assert args == ("pi_123",)
    assert kwargs["api_key"] == "sk_test_123"
    assert intent.status == "succeeded"
    assert intent.amount == Decimal("100.00")
    assert intent.client_secret is None


@pytest.mark.asyncio
async def test_get_payment_status_wraps_sdk_errors():
    sdk = _FakeStripe()
    sdk.fail_with = _CardError("No such payment_intent: 'pi_missing'", "resource_missing")
    provider = _provider(sdk)

    with pytest.raises(ProviderError) as exc_info:
        await provider.get_payment_status("pi_missing")

    assert exc_info.value.vendor_code == "resource_missing"


@pytest.mark.asyncio
async def test_refund_keeps_free_text_reason_in_metadata():
    sdk = _FakeStripe()
    provider = _provider(sdk)

    result = await provider.refund_payment(
        RefundPaymentParams(payment_id="pi_123", amount=Decimal("40.00"), reason="item arrived broken")
    )

    kwargs = sdk.calls[0][2]
    assert kwargs["payment_intent"] == "pi_123"
    assert kwargs["amount"] == 4_000
    assert "reason" not in kwargs
    assert kwargs["metadata"] == {"reason": "item arrived broken"}
    assert result.amount == Decimal("40.00")
    assert result.provider_refund_id == "re_1"


@pytest.mark.asyncio
async def test_vendor_error_becomes_provider_error():
    sdk = _FakeStripe()
    sdk.fail_with = _CardError("Your card was declined.", "card_declined")
    provider = _provider(sdk)

    with pytest.raises(ProviderError) as exc_info:
        await provider.create_payment(
            CreatePaymentParams(amount=Decimal("5.00"), currency=Currency.USD, user_id="user-1")
        )

    assert exc_info.value.status_code == 502
    assert exc_info.value.vendor_code == "card_declined"
    assert exc_info.value.detail["details"]["vendor_message"] == "Your card was declined."


def test_verify_webhook_converts_sdk_errors_to_false():
    provider = _provider()

    assert provider.verify_webhook(VerifyWebhookParams(payload=b"{}", signature="t=1,v1=valid")) is True
    assert provider.verify_webhook(VerifyWebhookParams(payload=b"{}", signature="t=1,v1=forged")) is False
    assert provider.verify_webhook(VerifyWebhookParams(payload=b"{}", signature="")) is False


def test_verify_webhook_without_secret_is_false():
    provider = _provider(webhook_secret=None)

    assert provider.verify_webhook(VerifyWebhookParams(payload=b"{}", signature="t=1,v1=valid")) is False


def test_parse_webhook_event_maps_charge_events_to_intent():
    provider = _provider()

    event = provider.parse_webhook_event(
        {
            "id": "evt_9",
            "type": "charge.refunded",
            "data": {"object": {"id": "ch_1", "object": "charge", "payment_intent": "pi_123"}},
        }
    )

    assert event.id == "evt_9"
    assert event.type == "charge.refunded"
    assert event.provider_payment_id == "pi_123"

    intent_event = provider.parse_webhook_event(
        {"id": "evt_10", "type": "payment_intent.succeeded", "data": {"object": {"id": "pi_123"}}}
    )
    assert intent_event.provider_payment_id == "pi_123"
