"""
Volatility-adaptive grid spacing.

Spacing for a cycle is the mean of the average up-move and the average
down-move over a bounded price history, clamped to the configured
[min_spacing, max_spacing] band.
"""

import math
from collections import deque
from typing import Iterable, Iterator, Sequence


class PriceHistory:
    """
    Bounded FIFO of recent mid-prices.

    Appending past capacity evicts the oldest sample.
    """

    def __init__(self, capacity: int):
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self._prices: deque[float] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._prices.maxlen

    def append(self, price: float) -> None:
        self._prices.append(price)

    def extend(self, prices: Iterable[float]) -> None:
        self._prices.extend(prices)

    def as_list(self) -> list[float]:
        return list(self._prices)

    def __len__(self) -> int:
        return len(self._prices)

    def __iter__(self) -> Iterator[float]:
        return iter(self._prices)


def calculate_amplitude(prices: Sequence[float]) -> tuple[float, float]:
    """
    Average relative up-move and down-move between consecutive prices.

    A move of exactly zero falls into the down partition. An empty
    partition averages to 0.

    Args:
        prices: Price samples, oldest first

    Returns:
        (avg_up, avg_down), both non-negative
    """
    up_moves = []
    down_moves = []

    for previous, current in zip(prices, prices[1:]):
        change = (current - previous) / previous
        if change > 0:
            up_moves.append(change)
        else:
            down_moves.append(abs(change))

    avg_up = sum(up_moves) / len(up_moves) if up_moves else 0.0
    avg_down = sum(down_moves) / len(down_moves) if down_moves else 0.0
    return avg_up, avg_down


def calculate_volatility(prices: Sequence[float]) -> float:
    """Mean of the average up-move and average down-move; 0 with fewer than 2 samples."""
    if len(prices) < 2:
        return 0.0
    avg_up, avg_down = calculate_amplitude(prices)
    return (avg_up + avg_down) / 2


def calculate_grid_spacing(prices: Sequence[float], min_spacing: float, max_spacing: float) -> float:
    """
    Grid spacing for the current cycle.

    Args:
        prices: Price samples, oldest first
        min_spacing: Lower clamp (also the value used with fewer than 2 samples)
        max_spacing: Upper clamp

    Returns:
        Volatility clamped to [min_spacing, max_spacing]
    """
    if len(prices) < 2:
        return min_spacing
    volatility = calculate_volatility(prices)
    return min(max(volatility, min_spacing), max_spacing)


def round_to_precision(value: float, precision: int) -> float:
    """
    Round to a number of decimal places, halves away from zero.

    Scales by 10^precision, rounds to the nearest integer and scales back,
    all in binary floating point. Values whose binary form sits just below
    a half (1.005 at 2 places) round down.
    """
    multiplier = 10.0 ** precision
    scaled = math.floor(abs(value) * multiplier + 0.5)
    return math.copysign(scaled, value) / multiplier
