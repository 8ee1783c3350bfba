"""Geometric exponential moving average smoothing of prices."""

from __future__ import annotations

import math
from datetime import timedelta
from fractions import Fraction
from typing import Sequence


def _seconds(value: timedelta | float) -> float:
    if isinstance(value, timedelta):
        return value.total_seconds()
    return float(value)


def _round_half_away(value: float) -> float:
    if not math.isfinite(value):
        return value
    return math.copysign(math.floor(abs(value) + 0.5), value)


class GemaCalculator:
    """Smooths rising prices over a number of periods; falling prices pass through."""

    def __init__(self, periods: int, round_duration: timedelta | float) -> None:
        self.periods = periods
        self.round_duration = round_duration

    def _previous_weight(self, time_elapsed: timedelta | float) -> Fraction | None:
        # Estimate how many rounds passed between publishing and gathering,
        # rounded so that small timing differences do not change the output.
        elapsed = _seconds(time_elapsed)
        round_seconds = _seconds(self.round_duration)
        if round_seconds == 0:
            ratio = math.nan if elapsed == 0 else math.copysign(math.inf, elapsed)
        else:
            ratio = elapsed / round_seconds
        periods = float(self.periods) + _round_half_away(ratio)
        denominator = periods + 1.0
        denominator = 2.0 if math.isnan(denominator) else max(denominator, 2.0)
        factor = 2.0 / denominator
        if not math.isfinite(factor):
            return None
        return Fraction(factor)

    def smooth_synthetic_price(
        self,
        time_elapsed: timedelta | float,
        prev_prices: Sequence[Fraction],
        prices: list[Fraction],
    ) -> list[Fraction]:
        """Smooth each collateral price against its previous value."""
        if len(prev_prices) != len(prices):
            # The collateral set changed, so there is nothing to smooth against.
            return prices
        prev_weight = self._previous_weight(time_elapsed)
        if prev_weight is None:
            return prices
        curr_weight = 1 - prev_weight
        return [
            price if price < prev else price * curr_weight + prev * prev_weight
            for price, prev in zip(prices, prev_prices)
        ]

    def smooth_price(
        self, time_elapsed: timedelta | float, prev_price: int, price: int
    ) -> int:
        """Smooth a single integer price against its previous value."""
        prev_weight = self._previous_weight(time_elapsed)
        if prev_weight is None or prev_weight < 0:
            return price
        curr_weight = 1 - prev_weight
        if curr_weight < 0:
            return price
        if price < prev_price:
            return price
        return (
            price * curr_weight.numerator // curr_weight.denominator
            + prev_price * prev_weight.numerator // prev_weight.denominator
        )