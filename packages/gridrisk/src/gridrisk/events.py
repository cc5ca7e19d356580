"""
Normalized inbound events for the grid & risk engine.

The market data feed delivers two kinds of messages: mid-price snapshots
for the traded asset and batches of our own fills. Both are immutable
(frozen dataclasses) so a recorded stream replays identically.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum


class EventType(Enum):
    """Types of events the engine can process."""
    TICKER = "ticker"
    FILLS = "fills"


@dataclass(frozen=True)
class Event:
    """
    Base event model for all engine events.

    exchange_ts is the venue timestamp; local_ts is when the message was
    received and is the clock the engine uses for daily resets and
    holding-time checks.
    """
    event_type: EventType
    symbol: str
    exchange_ts: datetime
    local_ts: datetime


@dataclass(frozen=True)
class TickerEvent(Event):
    """Mid-price snapshot for one asset."""
    mid_price: Decimal = Decimal('0')

    def __post_init__(self):
        if self.event_type != EventType.TICKER:
            raise ValueError(f"TickerEvent must have event_type=TICKER, got {self.event_type}")


@dataclass(frozen=True)
class Fill:
    """
    One fill notification entry.

    Price and size arrive as strings from the venue and are parsed by the
    engine, so malformed payloads surface as parse errors there.
    """
    order_id: str
    side: str   # 'Buy' or 'Sell'
    price: str
    qty: str
    fee: float = 0.0


@dataclass(frozen=True)
class FillEvent(Event):
    """Batch of fills for the user, one entry per fill."""
    fills: tuple[Fill, ...] = field(default_factory=tuple)

    def __post_init__(self):
        if self.event_type != EventType.FILLS:
            raise ValueError(f"FillEvent must have event_type=FILLS, got {self.event_type}")
