from __future__ import annotations

from decimal import Decimal
from typing import Annotated, Any

from bson import Decimal128, ObjectId
from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, model_validator

from core.payments.types import Currency, PaymentMethod, PaymentProviderName, PaymentStatus, RefundStatus


def _from_decimal128(value: Any) -> Any:
    if isinstance(value, Decimal128):
        return value.to_decimal()
    return value


MoneyAmount = Annotated[Decimal, BeforeValidator(_from_decimal128)]


class MongoDocument(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str | None = Field(default=None, alias="_id")

    @model_validator(mode="before")
    @classmethod
    def convert_objectid(cls, values):
        if isinstance(values, dict) and "_id" in values and isinstance(values["_id"], ObjectId):
            values = {**values, "_id": str(values["_id"])}
        return values


class PaymentCreateIn(BaseModel):
    amount: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    currency: Currency
    description: str | None = Field(default=None, max_length=500)
    payment_method: PaymentMethod | None = None
    customer_id: str | None = None
    metadata: dict[str, Any] | None = None


class CaptureIn(BaseModel):
    amount: Decimal | None = Field(default=None, gt=0, max_digits=12, decimal_places=2)


class RefundIn(BaseModel):
    amount: Decimal | None = Field(default=None, gt=0, max_digits=12, decimal_places=2)
    reason: str | None = Field(default=None, max_length=255)


class PaymentCreate(BaseModel):
    user_id: str
    provider: PaymentProviderName
    provider_payment_id: str | None
    amount: Decimal
    currency: Currency
    status: PaymentStatus
    provider_status: str
    status_recognized: bool = True
    payment_method: PaymentMethod | None = None
    description: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    refunded_amount: Decimal = Decimal("0.00")
    version: int = 0
    created_at: int
    updated_at: int
    captured_at: int | None = None
    refunded_at: int | None = None


class PaymentOut(MongoDocument):
    user_id: str
    provider: PaymentProviderName
    provider_payment_id: str | None = None
    amount: MoneyAmount
    currency: Currency
    status: PaymentStatus
    provider_status: str | None = None
    status_recognized: bool = True
    payment_method: PaymentMethod | None = None
    description: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    refunded_amount: MoneyAmount = Decimal("0.00")
    version: int = 0
    created_at: int
    updated_at: int
    captured_at: int | None = None
    refunded_at: int | None = None

    @property
    def refundable_amount(self) -> Decimal:
        return self.amount - self.refunded_amount


class PaymentCreatedOut(PaymentOut):
    client_secret: str | None = None


class PaymentRefundCreate(BaseModel):
    payment_id: str
    provider_refund_id: str
    amount: Decimal
    status: RefundStatus
    provider_status: str
    reason: str | None = None
    created_at: int
    processed_at: int | None = None


class PaymentRefundOut(MongoDocument):
    payment_id: str
    provider_refund_id: str
    amount: MoneyAmount
    status: RefundStatus
    provider_status: str | None = None
    reason: str | None = None
    created_at: int
    processed_at: int | None = None


class PaymentDetailOut(PaymentOut):
    refunds: list[PaymentRefundOut] = Field(default_factory=list)


class WebhookLogCreate(BaseModel):
    payment_id: str | None = None
    provider: PaymentProviderName
    event_type: str
    event_id: str | None = None
    payload: dict[str, Any]
    signature: str
    verified: bool
    processed: bool = False
    error_message: str | None = None
    created_at: int
    processed_at: int | None = None


class WebhookLogOut(MongoDocument):
    payment_id: str | None = None
    provider: PaymentProviderName
    event_type: str
    event_id: str | None = None
    payload: dict[str, Any]
    signature: str
    verified: bool
    processed: bool
    error_message: str | None = None
    created_at: int
    processed_at: int | None = None


class PaginationMeta(BaseModel):
    page: int
    page_size: int
    total_count: int
    total_pages: int
