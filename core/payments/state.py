from __future__ import annotations

from core.payments.types import PaymentStatus

ALLOWED_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset(
        {
            PaymentStatus.PROCESSING,
            PaymentStatus.SUCCEEDED,
            PaymentStatus.FAILED,
            PaymentStatus.CANCELLED,
        }
    ),
    PaymentStatus.PROCESSING: frozenset(
        {PaymentStatus.SUCCEEDED, PaymentStatus.FAILED, PaymentStatus.CANCELLED}
    ),
    PaymentStatus.SUCCEEDED: frozenset(
        {PaymentStatus.PARTIALLY_REFUNDED, PaymentStatus.REFUNDED}
    ),
    PaymentStatus.PARTIALLY_REFUNDED: frozenset(
        {PaymentStatus.PARTIALLY_REFUNDED, PaymentStatus.REFUNDED}
    ),
    PaymentStatus.FAILED: frozenset(),
    PaymentStatus.CANCELLED: frozenset(),
    PaymentStatus.REFUNDED: frozenset(),
}

TERMINAL_STATUSES = frozenset(status for status, targets in ALLOWED_TRANSITIONS.items() if not targets)
CAPTURABLE_STATUSES = frozenset({PaymentStatus.PENDING, PaymentStatus.PROCESSING})


def can_transition(current: PaymentStatus | str, target: PaymentStatus | str) -> bool:
    current = PaymentStatus(current)
    target = PaymentStatus(target)
    if current == target:
        return True
    return target in ALLOWED_TRANSITIONS[current]


def sources_for(target: PaymentStatus | str) -> list[str]:
    """Statuses a payment may hold for a move to ``target`` to be accepted."""
    target = PaymentStatus(target)
    return sorted(
        status.value
        for status, targets in ALLOWED_TRANSITIONS.items()
        if target in targets and status != target
    )
