from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

MINOR_UNIT_FACTOR = Decimal(100)
_CENT = Decimal("0.01")


def to_decimal(value: Decimal | int | float | str) -> Decimal:
    if isinstance(value, Decimal):
        return value
    # floats go through str() so 0.1 stays 0.1 rather than its binary expansion
    return Decimal(str(value))


def quantize(amount: Decimal | int | float | str) -> Decimal:
    return to_decimal(amount).quantize(_CENT, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Decimal | int | float | str) -> int:
    return int((quantize(amount) * MINOR_UNIT_FACTOR).to_integral_value(rounding=ROUND_HALF_UP))


def from_minor_units(amount_minor: int | str | None) -> Decimal:
    if amount_minor is None:
        return Decimal("0.00")
    return quantize(Decimal(int(amount_minor)) / MINOR_UNIT_FACTOR)
