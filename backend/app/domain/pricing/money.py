"""
Money helpers.

Every amount is quantized to 2 places, half-up, at the point it is computed.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Union

TWO_PLACES = Decimal("0.01")
ZERO = Decimal("0.00")

Number = Union[Decimal, int, float, str]


def to_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    # str() avoids binary float artefacts (0.1 -> 0.1000000000000000055...)
    return Decimal(str(value))


def to_money(value: Number) -> Decimal:
    return to_decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)
