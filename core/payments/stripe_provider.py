from __future__ import annotations

from typing import Any
from uuid import uuid4

from starlette.concurrency import run_in_threadpool

from core.errors import ConfigurationError, ProviderError
from core.logging_config import get_logger
from core.payments.money import from_minor_units, to_minor_units
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

STRIPE_REFUND_REASONS = {"duplicate", "fraudulent", "requested_by_customer"}


def _vendor_error(err: Exception) -> tuple[str | None, str]:
    code = getattr(err, "code", None)
    message = getattr(err, "user_message", None) or str(err)
    return code, message


class StripePaymentProvider:
    """Card payments through Stripe PaymentIntents in manual-capture mode."""

    name = PaymentProviderName.STRIPE

    def __init__(self, *, sdk: Any | None = None) -> None:
        self._stripe = sdk
        self._api_key: str | None = None
        self._webhook_secret: str | None = None

    def initialize(self, config: ProviderConfig) -> None:
        if not config.api_key:
            raise ConfigurationError("Stripe API key is required (STRIPE_API_KEY or PAYMENT_API_KEY)")

        if self._stripe is None:
            try:
                import stripe
            except ModuleNotFoundError as err:
                raise ConfigurationError("stripe package is required for StripePaymentProvider") from err
            self._stripe = stripe

        self._api_key = config.api_key
        self._webhook_secret = config.webhook_secret
        logger.info("stripe_provider_initialized", mode=config.mode)

    def _require_initialized(self) -> Any:
        if self._stripe is None or not self._api_key:
            raise ConfigurationError("Stripe provider is not initialized")
        return self._stripe

    def _to_intent(self, intent: Any) -> PaymentIntent:
        return PaymentIntent(
            id=intent.id,
            amount=from_minor_units(intent.amount),
            currency=Currency(str(intent.currency).upper()),
            status=intent.status,
            client_secret=getattr(intent, "client_secret", None),
            provider_payment_id=intent.id,
            metadata=dict(getattr(intent, "metadata", None) or {}),
        )

    async def create_payment(self, params: CreatePaymentParams) -> PaymentIntent:
        stripe = self._require_initialized()
        request: dict[str, Any] = {
            "amount": to_minor_units(params.amount),
            "currency": params.currency.value.lower(),
            "metadata": {"userId": params.user_id, **(params.metadata or {})},
            "capture_method": "manual",
            "api_key": self._api_key,
        }
        if params.description:
            request["description"] = params.description
        if params.customer_id:
            request["customer"] = params.customer_id

        try:
            intent = await run_in_threadpool(stripe.PaymentIntent.create, **request)
        except Exception as err:
            code, message = _vendor_error(err)
            logger.error("stripe_payment_create_failed", error=message, code=code)
            raise ProviderError(
                provider=self.name.value,
                message="Stripe payment creation failed",
                vendor_code=code,
                vendor_message=message,
            ) from err

        logger.info(
            "stripe_payment_created",
            payment_id=intent.id,
            amount=str(params.amount),
            currency=params.currency.value,
        )
        result = self._to_intent(intent)
        # Stripe echoes the amount in minor units; report the caller's major-unit amount.
        return PaymentIntent(
            id=result.id,
            amount=params.amount,
            currency=params.currency,
            status=result.status,
            client_secret=result.client_secret,
            provider_payment_id=result.provider_payment_id,
            metadata=result.metadata,
        )

    async def capture_payment(self, params: CapturePaymentParams) -> PaymentIntent:
        stripe = self._require_initialized()
        request: dict[str, Any] = {"api_key": self._api_key}
        if params.amount is not None:
            request["amount_to_capture"] = to_minor_units(params.amount)

        try:
            intent = await run_in_threadpool(stripe.PaymentIntent.capture, params.payment_id, **request)
        except Exception as err:
            code, message = _vendor_error(err)
            logger.error("stripe_payment_capture_failed", payment_id=params.payment_id, error=message)
            raise ProviderError(
                provider=self.name.value,
                message="Stripe payment capture failed",
                vendor_code=code,
                vendor_message=message,
            ) from err

        logger.info("stripe_payment_captured", payment_id=intent.id, status=intent.status)
        return self._to_intent(intent)

    async def refund_payment(self, params: RefundPaymentParams) -> RefundResult:
        stripe = self._require_initialized()
        request: dict[str, Any] = {"payment_intent": params.payment_id, "api_key": self._api_key}
        if params.amount is not None:
            request["amount"] = to_minor_units(params.amount)
        if params.reason:
            if params.reason in STRIPE_REFUND_REASONS:
                request["reason"] = params.reason
            else:
                request["metadata"] = {"reason": params.reason}

        try:
            refund = await run_in_threadpool(stripe.Refund.create, **request)
        except Exception as err:
            code, message = _vendor_error(err)
            logger.error("stripe_refund_failed", payment_id=params.payment_id, error=message)
            raise ProviderError(
                provider=self.name.value,
                message="Stripe refund failed",
                vendor_code=code,
                vendor_message=message,
            ) from err

        logger.info("stripe_refund_created", refund_id=refund.id, payment_id=params.payment_id, status=refund.status)
        return RefundResult(
            id=refund.id,
            payment_id=params.payment_id,
            amount=from_minor_units(refund.amount),
            status=refund.status or "pending",
            provider_refund_id=refund.id,
        )

    async def get_payment_status(self, payment_id: str) -> PaymentIntent:
        stripe = self._require_initialized()
        try:
            intent = await run_in_threadpool(stripe.PaymentIntent.retrieve, payment_id, api_key=self._api_key)
        except Exception as err:
            code, message = _vendor_error(err)
            logger.error("stripe_payment_status_failed", payment_id=payment_id, error=message)
            raise ProviderError(
                provider=self.name.value,
                message="Stripe payment status retrieval failed",
                vendor_code=code,
                vendor_message=message,
            ) from err
        return self._to_intent(intent)

    def verify_webhook(self, params: VerifyWebhookParams) -> bool:
        stripe = self._require_initialized()
        secret = params.secret or self._webhook_secret
        if not secret:
            logger.warning("stripe_webhook_secret_missing")
            return False
        if not params.signature:
            return False

        try:
            event = stripe.Webhook.construct_event(
                payload=params.payload,
                sig_header=params.signature,
                secret=secret,
            )
        except Exception as err:
            # construct_event raises on any tampering; the contract is a boolean.
            logger.warning("stripe_webhook_verification_failed", error=str(err))
            return False
        return event is not None

    def parse_webhook_event(self, payload: dict[str, Any], *, event_id: str | None = None) -> WebhookEvent:
        event_type = str(payload.get("type") or "unknown")
        data = (payload.get("data") or {}).get("object") or {}
        if event_type.startswith("charge.") or data.get("object") == "charge":
            provider_payment_id = data.get("payment_intent")
        else:
            provider_payment_id = data.get("id")
        return WebhookEvent(
            id=str(payload.get("id") or event_id or f"event_{uuid4().hex}"),
            type=event_type,
            data=data,
            provider_payment_id=provider_payment_id,
        )
