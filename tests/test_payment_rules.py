from __future__ import annotations

from decimal import Decimal

import pytest

from core.logging_config import mask_sensitive_fields
from core.payments import PaymentStatus, RefundStatus
from core.payments.money import from_minor_units, quantize, to_minor_units
from core.payments.state import TERMINAL_STATUSES, can_transition, sources_for
from core.payments.status import PROVIDER_STATUS_MAP, map_provider_status, map_refund_status


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("requires_payment_method", PaymentStatus.PENDING),
        ("requires_capture", PaymentStatus.PROCESSING),
        ("succeeded", PaymentStatus.SUCCEEDED),
        ("canceled", PaymentStatus.CANCELLED),
        ("created", PaymentStatus.PENDING),
        ("captured", PaymentStatus.SUCCEEDED),
        ("ACTIVE", PaymentStatus.PENDING),
        ("PAID", PaymentStatus.SUCCEEDED),
        ("USER_DROPPED", PaymentStatus.FAILED),
    ],
)
def test_known_provider_statuses_map_to_one_value(raw, expected):
    mapping = map_provider_status(raw)

    assert mapping.status == expected
    assert mapping.recognized is True
    assert mapping.raw == raw


def test_status_table_is_deterministic():
    for raw, expected in PROVIDER_STATUS_MAP.items():
        assert {map_provider_status(raw).status for _ in range(3)} == {expected}


def test_unknown_provider_status_is_flagged():
    mapping = map_provider_status("on_hold_for_review")

    assert mapping.status == PaymentStatus.PENDING
    assert mapping.recognized is False
    assert mapping.raw == "on_hold_for_review"
    assert map_provider_status(None).recognized is False


def test_refund_statuses():
    assert map_refund_status("processed") == RefundStatus.SUCCEEDED
    assert map_refund_status("SUCCESS") == RefundStatus.SUCCEEDED
    assert map_refund_status("failed") == RefundStatus.FAILED
    assert map_refund_status("queued_somewhere") == RefundStatus.PENDING


def test_state_machine_edges():
    assert can_transition(PaymentStatus.PENDING, PaymentStatus.SUCCEEDED)
    assert can_transition(PaymentStatus.SUCCEEDED, PaymentStatus.PARTIALLY_REFUNDED)
    assert can_transition(PaymentStatus.PARTIALLY_REFUNDED, PaymentStatus.REFUNDED)
    assert not can_transition(PaymentStatus.SUCCEEDED, PaymentStatus.FAILED)
    assert not can_transition(PaymentStatus.FAILED, PaymentStatus.SUCCEEDED)
    assert not can_transition(PaymentStatus.REFUNDED, PaymentStatus.PARTIALLY_REFUNDED)
    assert TERMINAL_STATUSES == {PaymentStatus.FAILED, PaymentStatus.CANCELLED, PaymentStatus.REFUNDED}


def test_sources_for_excludes_target():
    assert sources_for(PaymentStatus.SUCCEEDED) == ["PENDING", "PROCESSING"]
    assert sources_for(PaymentStatus.FAILED) == ["PENDING", "PROCESSING"]
    assert sources_for(PaymentStatus.PROCESSING) == ["PENDING"]


def test_minor_unit_conversion_rounds_half_up():
    assert to_minor_units(Decimal("100.00")) == 10_000
    assert to_minor_units("0.005") == 1
    assert to_minor_units(19.99) == 1_999
    assert from_minor_units(4_000) == Decimal("40.00")
    assert from_minor_units(None) == Decimal("0.00")
    assert quantize("2.345") == Decimal("2.35")


def test_log_masking_hides_secrets():
    event = mask_sensitive_fields(
        None,
        "info",
        {"event": "x", "api_key": "sk_test_1234567", "context": {"signature": "abcdef"}, "amount": "10.00"},
    )

    assert event["api_key"] == "sk****67"
    assert event["context"]["signature"] == "ab****ef"
    assert event["amount"] == "10.00"
