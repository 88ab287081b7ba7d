"""
Money helpers

Amounts are whole-currency-unit integers (rupees). All rounding in the
checkout core goes through ``round_amount`` so partial, tax and percentage
figures use one rule: half-up to the nearest whole unit.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Union

Number = Union[int, float, str, Decimal]

WHOLE_UNIT = Decimal("1")


def round_amount(value: Number) -> int:
    """Round to whole currency units, half-up"""
    return int(Decimal(str(value)).quantize(WHOLE_UNIT, rounding=ROUND_HALF_UP))


def to_amount(value: Number) -> int:
    """
    Coerce a backend value (int, float or numeric string) into a whole-unit amount.

    Raises:
        ValueError: If the value is not numeric or negative
    """
    if isinstance(value, bool):
        raise ValueError("amount must be numeric")
    try:
        amount = round_amount(value)
    except ArithmeticError as e:
        raise ValueError(f"amount must be numeric: {value!r}") from e
    if amount < 0:
        raise ValueError(f"amount must not be negative: {value!r}")
    return amount


def percentage_of(total: int, percentage: Number) -> int:
    """Portion of ``total`` for ``percentage`` (0-100), rounded once"""
    return round_amount(Decimal(total) * Decimal(str(percentage)) / Decimal(100))


def tax_on(subtotal: int, rate: Number) -> int:
    """Tax for a subtotal at ``rate`` (0.18 for 18%)"""
    return round_amount(Decimal(subtotal) * Decimal(str(rate)))


def remaining(total: int, paid: int) -> int:
    """Outstanding balance, never negative"""
    return max(0, total - paid)
