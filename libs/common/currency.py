"""Currency arithmetic for INR amounts.

Stored amounts are integer paise (100 paise = ₹1). Percentages are applied
with ``Decimal`` so withholding never drifts through float rounding.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal


def percentage_of(amount: int, rate_percent: int | float | Decimal) -> int:
    """Apply a percentage to an integer paise amount, rounding half-up to a paisa.

    >>> percentage_of(10000, 10)
    1000
    >>> percentage_of(5, 10)
    1
    """
    if amount < 0:
        raise ValueError("amount must be non-negative")
    value = Decimal(amount) * Decimal(str(rate_percent)) / Decimal(100)
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
