from __future__ import annotations

from threading import Lock

from core.errors import ConfigurationError
from core.logging_config import get_logger
from core.payments.cashfree_provider import CashfreePaymentProvider
from core.payments.provider import PaymentProvider
from core.payments.razorpay_provider import RazorpayPaymentProvider
from core.payments.stripe_provider import StripePaymentProvider
from core.payments.types import PaymentProviderName, ProviderConfig

logger = get_logger(__name__)

_PROVIDER_CLASSES = {
    PaymentProviderName.STRIPE: StripePaymentProvider,
    PaymentProviderName.RAZORPAY: RazorpayPaymentProvider,
    PaymentProviderName.CASHFREE: CashfreePaymentProvider,
}


def _resolve_type(provider_type: PaymentProviderName | str) -> PaymentProviderName:
    try:
        if isinstance(provider_type, PaymentProviderName):
            return provider_type
        return PaymentProviderName.parse(provider_type)
    except ValueError as err:
        valid = ", ".join(item.value for item in PaymentProviderName)
        raise ConfigurationError(
            f"Unsupported payment provider '{provider_type}'. Expected one of: {valid}"
        ) from err


class PaymentProviderFactory:
    _instance: PaymentProvider | None = None
    _lock = Lock()

    @classmethod
    def get_provider(cls, config: ProviderConfig | None = None) -> PaymentProvider:
        """Return the process-wide provider, building it on first use.

        Later calls ignore ``config``; use ``reset_provider`` to rebuild.
        """
        if cls._instance is not None:
            return cls._instance

        with cls._lock:
            if cls._instance is None:
                if config is None:
                    from core.settings import get_settings

                    config = get_settings().provider_config()
                logger.info("payment_provider_initializing", provider=config.provider.value)
                cls._instance = cls.create_provider(config.provider, config)
            return cls._instance

    @classmethod
    def configure(cls, provider: PaymentProvider) -> PaymentProvider:
        with cls._lock:
            cls._instance = provider
            return provider

    @classmethod
    def reset_provider(cls) -> None:
        with cls._lock:
            cls._instance = None

    @staticmethod
    def create_provider(provider_type: PaymentProviderName | str, config: ProviderConfig) -> PaymentProvider:
        """Build and initialize a provider without touching the cached instance."""
        resolved = _resolve_type(provider_type)
        provider = _PROVIDER_CLASSES[resolved]()
        provider.initialize(config)
        return provider
