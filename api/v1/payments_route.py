from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request

from core.payments import PaymentProvider, PaymentProviderName, PaymentStatus
from core.response_envelope import document_paginated, document_response
from schemas.payment_schema import CaptureIn, PaymentCreateIn, RefundIn
from security.auth import verify_admin_token, verify_any_token
from security.principal import AuthPrincipal
from services.payment_service import (
    capture_payment,
    create_payment,
    get_payment,
    get_payment_provider,
    handle_webhook,
    list_all_payments,
    list_user_payments,
    refund_payment,
)

router = APIRouter(prefix="/payments", tags=["Payments"])

WEBHOOK_SIGNATURE_HEADERS = {
    "stripe": "stripe-signature",
    "razorpay": "x-razorpay-signature",
    "cashfree": "x-cashfree-signature",
}
WEBHOOK_EVENT_ID_HEADERS = {
    "razorpay": "x-razorpay-event-id",
}


@router.post("")
@document_response(
    message="Payment created",
    status_code=201,
    response_codes={401: "Unauthorized", 502: "Payment provider rejected the request", 503: "Payments not configured"},
)
async def create_payment_endpoint(
    payload: PaymentCreateIn,
    principal: AuthPrincipal = Depends(verify_any_token),
    provider: PaymentProvider = Depends(get_payment_provider),
):
    return await create_payment(user_id=principal.user_id, payload=payload, provider=provider)


@router.get("")
@document_paginated(message="Payments fetched")
async def list_payments_endpoint(
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
    status: PaymentStatus | None = Query(default=None),
    principal: AuthPrincipal = Depends(verify_any_token),
):
    return await list_user_payments(user_id=principal.user_id, page=page, page_size=page_size, status=status)


@router.get("/admin/all")
@document_paginated(message="Payments fetched")
async def list_all_payments_endpoint(
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
    status: PaymentStatus | None = Query(default=None),
    provider: PaymentProviderName | None = Query(default=None),
    user_id: str | None = Query(default=None),
    principal: AuthPrincipal = Depends(verify_admin_token),
):
    return await list_all_payments(
        page=page,
        page_size=page_size,
        status=status,
        provider=provider,
        user_id=user_id,
    )


@router.post("/webhook/{provider}")
@document_response(
    message="Webhook processed",
    response_codes={400: "Unsupported provider or malformed body", 401: "Invalid signature"},
)
async def payment_webhook(provider: str, request: Request):
    """
    Receive payment webhooks for a specific provider.

    Accepted `provider` path values:
    - `stripe` (signature in `stripe-signature`)
    - `razorpay` (signature in `x-razorpay-signature`)
    - `cashfree` (signature in `x-cashfree-signature`)
    """
    body = await request.body()
    key = provider.lower()
    signature_header = WEBHOOK_SIGNATURE_HEADERS.get(key)
    event_id_header = WEBHOOK_EVENT_ID_HEADERS.get(key)
    return await handle_webhook(
        provider_name=provider,
        body=body,
        signature=request.headers.get(signature_header) if signature_header else None,
        event_id_hint=request.headers.get(event_id_header) if event_id_header else None,
    )


@router.get("/{payment_id}")
@document_response(message="Payment fetched", response_codes={403: "Not the payment owner", 404: "Payment not found"})
async def fetch_payment(payment_id: str, principal: AuthPrincipal = Depends(verify_any_token)):
    return await get_payment(payment_id=payment_id, user_id=principal.user_id, is_admin=principal.is_admin)


@router.post("/{payment_id}/capture")
@document_response(
    message="Payment captured",
    response_codes={400: "Payment cannot be captured", 403: "Not the payment owner", 409: "Concurrent update"},
)
async def capture_payment_endpoint(
    payment_id: str,
    payload: CaptureIn | None = None,
    principal: AuthPrincipal = Depends(verify_any_token),
    provider: PaymentProvider = Depends(get_payment_provider),
):
    return await capture_payment(
        payment_id=payment_id,
        user_id=principal.user_id,
        provider=provider,
        amount=payload.amount if payload else None,
        is_admin=principal.is_admin,
    )


@router.post("/{payment_id}/refund")
@document_response(
    message="Payment refunded",
    response_codes={400: "Payment cannot be refunded", 403: "Not the payment owner", 409: "Concurrent update"},
)
async def refund_payment_endpoint(
    payment_id: str,
    payload: RefundIn,
    principal: AuthPrincipal = Depends(verify_any_token),
    provider: PaymentProvider = Depends(get_payment_provider),
):
    return await refund_payment(
        payment_id=payment_id,
        user_id=principal.user_id,
        provider=provider,
        amount=payload.amount,
        reason=payload.reason,
        is_admin=principal.is_admin,
    )
