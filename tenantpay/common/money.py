"""Conversions between API decimals and stored minor units."""

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP


def to_cents(amount: Decimal) -> int:
    return int((amount * Decimal("100")).to_integral_value(rounding=ROUND_HALF_UP))


def format_cents(value: int) -> Decimal:
    return (Decimal(value) / Decimal("100")).quantize(Decimal("0.01"))
