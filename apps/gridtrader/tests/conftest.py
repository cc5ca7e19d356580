"""Test fixtures for gridtrader tests."""

import itertools
from datetime import datetime, UTC
from decimal import Decimal
from unittest.mock import AsyncMock, Mock

import pytest

from gridrisk import EventType, Fill, FillEvent, GridParameters, MarginSummary, PlaceLimitIntent, TickerEvent

from gridtrader.config import RunnerConfig


@pytest.fixture
def mock_gateway():
    """Order gateway double that acknowledges every call."""
    counter = itertools.count(1)
    gateway = Mock()
    gateway.place = AsyncMock(side_effect=lambda **kwargs: f"order_{next(counter)}")
    gateway.cancel = AsyncMock(return_value=True)
    gateway.set_leverage = AsyncMock(return_value=True)
    gateway.margin_summary = AsyncMock(return_value=MarginSummary(account_value=1000.0, total_margin_used=100.0))
    return gateway


@pytest.fixture
def trader_params():
    """Two levels per side and no inter-cycle delay."""
    return GridParameters(
        asset="HYPE",
        total_capital=10000.0,
        grid_count=2,
        trade_amount=100.0,
        max_position=10.0,
        price_precision=4,
        quantity_precision=2,
        check_interval=0.0,
        leverage=3,
        max_holding_time=3600.0,
    )


@pytest.fixture
def fast_runner_config():
    """Runner settings without batch delay or retries."""
    return RunnerConfig(order_batch_delay_ms=0, performance_file=None)


@pytest.fixture
def place_intent():
    """Sample grid PlaceLimitIntent."""
    return PlaceLimitIntent.create(
        symbol="HYPE",
        side="Buy",
        price=Decimal("99.76"),
        qty=Decimal("1.0"),
        grid_level=0,
    )


@pytest.fixture
def ticker():
    """Factory for ticker events."""
    def _make(price, ts=None):
        ts = ts or datetime(2025, 1, 1, tzinfo=UTC)
        return TickerEvent(
            event_type=EventType.TICKER,
            symbol="HYPE",
            exchange_ts=ts,
            local_ts=ts,
            mid_price=Decimal(str(price)),
        )
    return _make


@pytest.fixture
def fills():
    """Factory for fill events from (order_id, side, price, qty) tuples."""
    def _make(*entries, ts=None):
        ts = ts or datetime(2025, 1, 1, tzinfo=UTC)
        return FillEvent(
            event_type=EventType.FILLS,
            symbol="HYPE",
            exchange_ts=ts,
            local_ts=ts,
            fills=tuple(Fill(*entry) for entry in entries),
        )
    return _make
