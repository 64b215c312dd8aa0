"""Money helpers: amounts are ``Decimal`` inside services and ``float`` on the wire."""

from __future__ import annotations

from decimal import ROUND_FLOOR, Decimal
from typing import Any

ZERO = Decimal("0")
_CENT = Decimal("0.01")


def to_decimal(value: Any) -> Decimal:
    """Convert a float/int/str/None amount to a 2-place ``Decimal``."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value.quantize(_CENT)
    return Decimal(str(value)).quantize(_CENT)


def to_float(value: Any) -> float:
    if value is None:
        return 0.0
    return round(float(value), 2)


def half_up_percent(part: Decimal, whole: Decimal) -> int:
    """``part / whole * 100`` rounded half towards +infinity; 0 when *whole* is 0.

    ``half_up_percent(Decimal(-25), Decimal(1000))`` is ``-2`` (-2.5 rounds up).
    """
    if whole == 0:
        return 0
    return int((part * 100 / whole + Decimal("0.5")).to_integral_value(rounding=ROUND_FLOOR))


def safe_pct(numerator: Any, denominator: Any) -> float:
    """Return numerator / denominator × 100 rounded to 2 places; 0.0 if denom is zero.

    Unlike a progress bar this is not capped: overspent allocations report
    more than 100 %.
    """
    denominator = float(denominator or 0)
    if denominator == 0:
        return 0.0
    return round(float(numerator or 0) / denominator * 100, 2)
