"""Conversions between decimals, rationals and their text form."""

from __future__ import annotations

import math
from decimal import Decimal
from fractions import Fraction


def decimal_to_rational(value: Decimal) -> Fraction:
    """Convert a finite decimal to an exact rational."""
    if not value.is_finite():
        raise ValueError(f"cannot convert {value} to a rational")
    return Fraction(value)


def rational_to_decimal_string(value: Fraction) -> str:
    """Render a rational as the shortest plain decimal of its nearest float."""
    try:
        as_float = float(value)
    except OverflowError:
        return "-inf" if value < 0 else "inf"
    if math.isinf(as_float):
        return "-inf" if as_float < 0 else "inf"
    text = format(Decimal(repr(as_float)).normalize(), "f")
    return text