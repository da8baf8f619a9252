from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP


def round_amount(value) -> int:
    """
    Round a money value to whole currency units, half away from zero.

    Amounts are stored as integers (no minor units), so every derived
    charge passes through here before it is persisted.
    """
    quantized = Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return int(quantized)


def percentage_of(base, percent) -> Decimal:
    """base * percent / 100 without float drift."""
    return Decimal(str(base)) * Decimal(str(percent)) / Decimal("100")
