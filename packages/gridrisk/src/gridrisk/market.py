"""
Market trend analysis and fee-aware profit helpers.

Trend analysis compares a short and a long moving average of the price
history and confirms the direction with RSI. The profit helpers price in
the venue fee on both legs of a grid round trip.
"""

import math
from dataclasses import dataclass
from enum import StrEnum
from typing import Sequence

from gridrisk.errors import MarketAnalysisError

SHORT_MA_PERIOD = 7
LONG_MA_PERIOD = 25
RSI_PERIOD = 14
RECENT_CHANGE_SAMPLES = 5

# Below this many samples the trend is reported as sideways with neutral RSI
MIN_TREND_SAMPLES = LONG_MA_PERIOD

NEUTRAL_RSI = 50.0


class MarketTrend(StrEnum):
    UPWARD = 'upward'
    DOWNWARD = 'downward'
    SIDEWAYS = 'sideways'

    @property
    def is_bullish(self) -> bool:
        return self is MarketTrend.UPWARD

    @property
    def is_bearish(self) -> bool:
        return self is MarketTrend.DOWNWARD

    @property
    def is_sideways(self) -> bool:
        return self is MarketTrend.SIDEWAYS


@dataclass(frozen=True)
class MarketAnalysis:
    """
    Snapshot of market conditions over the price history.

    recent_change is the relative move across the last RECENT_CHANGE_SAMPLES
    prices.
    """
    volatility: float
    trend: MarketTrend
    rsi: float
    short_ma: float
    long_ma: float
    recent_change: float


def _check_prices(prices: Sequence[float]) -> None:
    for price in prices:
        if not math.isfinite(price) or price <= 0:
            raise MarketAnalysisError(f"price history contains invalid price {price}")


def calculate_market_volatility(prices: Sequence[float]) -> float:
    """
    Population standard deviation of relative changes, scaled by sqrt(len(prices)).

    Returns 0 with fewer than 2 samples.
    """
    if len(prices) < 2:
        return 0.0
    _check_prices(prices)

    changes = [(current - previous) / previous for previous, current in zip(prices, prices[1:])]
    mean = sum(changes) / len(changes)
    variance = sum((change - mean) ** 2 for change in changes) / len(changes)
    return math.sqrt(variance) * math.sqrt(len(prices))


def calculate_moving_average(prices: Sequence[float], period: int) -> float:
    """Mean of the last `period` prices, or of all of them when fewer are available."""
    if not prices:
        raise MarketAnalysisError("moving average of an empty price history")
    window = prices[-period:] if len(prices) >= period else prices
    return sum(window) / len(window)


def calculate_rsi(prices: Sequence[float], period: int = RSI_PERIOD) -> float:
    """
    Relative strength index over the last `period` changes.

    Neutral (50) without period + 1 samples; 100 when nothing fell.
    """
    if len(prices) < period + 1:
        return NEUTRAL_RSI

    gains = 0.0
    losses = 0.0
    for i in range(len(prices) - period, len(prices)):
        change = prices[i] - prices[i - 1]
        if change > 0:
            gains += change
        else:
            losses += abs(change)

    if losses == 0:
        return 100.0
    rs = gains / losses
    return 100.0 - 100.0 / (1.0 + rs)


def analyze_market_trend(prices: Sequence[float]) -> MarketAnalysis:
    """
    Classify the trend of a price history.

    Upward when the short average is more than 5% above the long one and
    RSI is above 55; downward when it is more than 5% below and RSI is
    under 45; sideways otherwise.

    Raises:
        MarketAnalysisError: If the history holds a non-positive or non-finite price
    """
    _check_prices(prices)

    if len(prices) < MIN_TREND_SAMPLES:
        last = prices[-1] if prices else 0.0
        return MarketAnalysis(
            volatility=0.0,
            trend=MarketTrend.SIDEWAYS,
            rsi=NEUTRAL_RSI,
            short_ma=last,
            long_ma=last,
            recent_change=0.0,
        )

    short_ma = calculate_moving_average(prices, SHORT_MA_PERIOD)
    long_ma = calculate_moving_average(prices, LONG_MA_PERIOD)
    rsi = calculate_rsi(prices, RSI_PERIOD)
    old_price = prices[-RECENT_CHANGE_SAMPLES]
    recent_change = (prices[-1] - old_price) / old_price

    if short_ma > long_ma * 1.05 and rsi > 55.0:
        trend = MarketTrend.UPWARD
    elif short_ma < long_ma * 0.95 and rsi < 45.0:
        trend = MarketTrend.DOWNWARD
    else:
        trend = MarketTrend.SIDEWAYS

    return MarketAnalysis(
        volatility=calculate_market_volatility(prices),
        trend=trend,
        rsi=rsi,
        short_ma=short_ma,
        long_ma=long_ma,
        recent_change=recent_change,
    )


def calculate_min_sell_price(buy_price: float, fee_rate: float, min_profit_rate: float) -> float:
    """Lowest sell price that covers both fees and still earns `min_profit_rate` on the buy cost."""
    buy_cost = buy_price * (1 + fee_rate)
    return buy_cost * (1 + min_profit_rate) / (1 - fee_rate)


def calculate_expected_profit_rate(buy_price: float, sell_price: float, fee_rate: float) -> float:
    """Round-trip return on the fee-inclusive buy cost."""
    buy_cost = buy_price * (1 + fee_rate)
    sell_revenue = sell_price * (1 - fee_rate)
    return (sell_revenue - buy_cost) / buy_cost
