from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

ZERO = Decimal("0")
CENT = Decimal("0.01")


def round_money(value: Decimal) -> Decimal:
    """Half-up rounding to 2 decimal places (0.005 -> 0.01)."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def money_str(value: Optional[Decimal]) -> Optional[str]:
    """
    Serialize a Decimal amount for JSON responses.

    Amounts travel as strings so clients never see binary float drift.
    """
    if value is None:
        return None
    return str(round_money(value))
