from core.payments.factory import PaymentProviderFactory
from core.payments.provider import PaymentProvider
from core.payments.types import (
    CapturePaymentParams,
    CreatePaymentParams,
    Currency,
    PaymentIntent,
    PaymentMethod,
    PaymentProviderName,
    PaymentStatus,
    ProviderConfig,
    RefundPaymentParams,
    RefundResult,
    RefundStatus,
    VerifyWebhookParams,
    WebhookEvent,
)

__all__ = [
    "CapturePaymentParams",
    "CreatePaymentParams",
    "Currency",
    "PaymentIntent",
    "PaymentMethod",
    "PaymentProvider",
    "PaymentProviderFactory",
    "PaymentProviderName",
    "PaymentStatus",
    "ProviderConfig",
    "RefundPaymentParams",
    "RefundResult",
    "RefundStatus",
    "VerifyWebhookParams",
    "WebhookEvent",
]
