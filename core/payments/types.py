from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Literal


class PaymentProviderName(str, Enum):
    STRIPE = "stripe"
    RAZORPAY = "razorpay"
    CASHFREE = "cashfree"

    @classmethod
    def parse(cls, value: str) -> "PaymentProviderName":
        return cls((value or "").strip().lower())


class Currency(str, Enum):
    USD = "USD"
    INR = "INR"
    EUR = "EUR"
    GBP = "GBP"


class PaymentMethod(str, Enum):
    CARD = "CARD"
    UPI = "UPI"
    NETBANKING = "NETBANKING"
    WALLET = "WALLET"
    EMI = "EMI"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    PARTIALLY_REFUNDED = "PARTIALLY_REFUNDED"
    REFUNDED = "REFUNDED"


class RefundStatus(str, Enum):
    PENDING = "PENDING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


@dataclass(frozen=True)
class ProviderConfig:
    provider: PaymentProviderName
    api_key: str
    api_secret: str | None = None
    webhook_secret: str | None = None
    mode: Literal["test", "live"] = "test"
    # Vendor-only settings without a common field.
    options: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class CreatePaymentParams:
    amount: Decimal
    currency: Currency
    user_id: str
    customer_id: str | None = None
    description: str | None = None
    payment_method: PaymentMethod | None = None
    metadata: dict[str, Any] | None = None


@dataclass(frozen=True)
class PaymentIntent:
    id: str
    amount: Decimal
    currency: Currency
    status: str
    provider_payment_id: str
    client_secret: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CapturePaymentParams:
    payment_id: str
    amount: Decimal | None = None


@dataclass(frozen=True)
class RefundPaymentParams:
    payment_id: str
    amount: Decimal | None = None
    reason: str | None = None


@dataclass(frozen=True)
class RefundResult:
    id: str
    payment_id: str
    amount: Decimal
    status: str
    provider_refund_id: str


@dataclass(frozen=True)
class VerifyWebhookParams:
    payload: bytes | str
    signature: str
    secret: str | None = None


@dataclass(frozen=True)
class WebhookEvent:
    id: str
    type: str
    data: dict[str, Any]
    provider_payment_id: str | None = None
