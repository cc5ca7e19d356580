"""Test fixtures for gridrisk tests."""

from datetime import datetime, UTC
from decimal import Decimal

import pytest

from gridrisk.events import EventType, Fill, FillEvent, TickerEvent
from gridrisk.params import GridParameters


@pytest.fixture
def t0():
    """Fixed reference time."""
    return datetime(2025, 1, 1, tzinfo=UTC)


@pytest.fixture
def grid_params():
    """Small ladder with round numbers."""
    return GridParameters(
        asset="HYPE",
        total_capital=10000.0,
        grid_count=3,
        trade_amount=100.0,
        max_position=10.0,
        max_drawdown=0.02,
        price_precision=4,
        quantity_precision=2,
        min_grid_spacing=0.0024,
        max_grid_spacing=0.004,
        max_single_loss=0.02,
        max_daily_loss=0.02,
        max_holding_time=3600.0,
        history_length=5,
        max_active_orders=20,
    )


@pytest.fixture
def make_ticker(t0):
    """Factory for ticker events."""
    def _make(price, ts=None, symbol="HYPE"):
        ts = ts or t0
        return TickerEvent(
            event_type=EventType.TICKER,
            symbol=symbol,
            exchange_ts=ts,
            local_ts=ts,
            mid_price=Decimal(str(price)),
        )
    return _make


@pytest.fixture
def make_fills(t0):
    """Factory for fill events from (order_id, side, price, qty) tuples."""
    def _make(*entries, ts=None, symbol="HYPE"):
        ts = ts or t0
        return FillEvent(
            event_type=EventType.FILLS,
            symbol=symbol,
            exchange_ts=ts,
            local_ts=ts,
            fills=tuple(Fill(*entry) for entry in entries),
        )
    return _make


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()
