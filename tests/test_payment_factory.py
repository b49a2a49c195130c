from __future__ import annotations

import pytest

from core.errors import ConfigurationError, payments_unavailable
from core.payments import PaymentProviderFactory, PaymentProviderName, ProviderConfig
from core.payments import factory as factory_module
from core.payments.cashfree_provider import CashfreePaymentProvider
from core.payments.razorpay_provider import RazorpayPaymentProvider
from services import payment_service


def _cashfree_config() -> ProviderConfig:
    return ProviderConfig(
        provider=PaymentProviderName.CASHFREE,
        api_key="cf_app_id",
        api_secret="cf_secret",
        webhook_secret="cf_webhook",
    )


def test_get_provider_caches_first_instance():
    first = PaymentProviderFactory.get_provider(_cashfree_config())
    second = PaymentProviderFactory.get_provider(
        ProviderConfig(provider=PaymentProviderName.STRIPE, api_key="sk_test_ignored")
    )

    assert isinstance(first, CashfreePaymentProvider)
    assert second is first


def test_reset_provider_allows_rebuild():
    first = PaymentProviderFactory.get_provider(_cashfree_config())
    PaymentProviderFactory.reset_provider()
    second = PaymentProviderFactory.get_provider(_cashfree_config())

    assert second is not first


def test_get_provider_reads_settings_when_no_config(monkeypatch: pytest.MonkeyPatch):
    from core import settings as settings_module

    class _StubSettings:
        def provider_config(self):
            return _cashfree_config()

    monkeypatch.setattr(settings_module, "get_settings", lambda: _StubSettings())

    provider = PaymentProviderFactory.get_provider()

    assert provider.name == PaymentProviderName.CASHFREE


def test_create_provider_bypasses_cache(monkeypatch: pytest.MonkeyPatch):
    class _FakeClient:
        pass

    monkeypatch.setitem(
        factory_module._PROVIDER_CLASSES,
        PaymentProviderName.RAZORPAY,
        lambda: RazorpayPaymentProvider(client=_FakeClient()),
    )
    cached = PaymentProviderFactory.get_provider(_cashfree_config())

    created = PaymentProviderFactory.create_provider(
        "RAZORPAY",
        ProviderConfig(provider=PaymentProviderName.RAZORPAY, api_key="rzp_key", api_secret="rzp_secret"),
    )

    assert isinstance(created, RazorpayPaymentProvider)
    assert PaymentProviderFactory.get_provider() is cached


def test_unknown_provider_lists_valid_choices():
    with pytest.raises(ConfigurationError) as exc_info:
        PaymentProviderFactory.create_provider("paypal", _cashfree_config())

    assert "stripe, razorpay, cashfree" in str(exc_info.value)


def test_missing_credentials_fail_fast():
    with pytest.raises(ConfigurationError):
        PaymentProviderFactory.create_provider(
            PaymentProviderName.CASHFREE,
            ProviderConfig(provider=PaymentProviderName.CASHFREE, api_key=""),
        )


def test_configure_installs_given_provider(fake_provider):
    PaymentProviderFactory.configure(fake_provider)

    assert PaymentProviderFactory.get_provider() is fake_provider
    assert payment_service.get_payment_provider() is fake_provider


def test_unconfigured_payments_answer_service_unavailable(monkeypatch: pytest.MonkeyPatch):
    def _broken_settings():
        raise RuntimeError("Missing required environment variables: STRIPE_API_KEY")

    from core import settings as settings_module

    monkeypatch.setattr(settings_module, "get_settings", _broken_settings)

    with pytest.raises(type(payments_unavailable())) as exc_info:
        payment_service.get_payment_provider()

    assert exc_info.value.status_code == 503
