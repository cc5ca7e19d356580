"""
Position and resting-order state owned by the grid & risk engine.

Equity here is the simplified notional measure long - short (a quantity,
not a cash-marked value). Risk checks depend on it exactly as defined.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import StrEnum
from typing import Optional

logger = logging.getLogger(__name__)

DAILY_RESET_INTERVAL = timedelta(hours=24)


class SideType(StrEnum):
    """Order side type constants."""
    BUY = 'Buy'
    SELL = 'Sell'


@dataclass(frozen=True)
class ActiveOrder:
    """A resting ladder order acknowledged by the gateway."""
    order_id: str
    side: SideType
    price: float
    qty: float


@dataclass
class PositionState:
    """
    Quantities, per-order entry prices and loss-tracking state.

    buy_entries/sell_entries map an order id to the limit price it was
    placed at; they only ever hold ids that are also active orders.
    """
    long_position: float = 0.0
    short_position: float = 0.0
    buy_entries: dict[str, float] = field(default_factory=dict)
    sell_entries: dict[str, float] = field(default_factory=dict)
    max_equity: Optional[float] = None
    initial_equity: Optional[float] = None
    daily_pnl: float = 0.0
    last_daily_reset: Optional[datetime] = None
    position_start: Optional[datetime] = None

    @property
    def equity(self) -> float:
        return self.long_position - self.short_position

    @property
    def is_flat(self) -> bool:
        return self.long_position == 0 and self.short_position == 0

    def update_max_equity(self) -> float:
        """Track the running maximum and return current equity."""
        equity = self.equity
        if self.max_equity is None or equity > self.max_equity:
            self.max_equity = equity
        return equity

    def reset_daily_if_due(self, now: datetime) -> bool:
        """
        Zero the daily PnL once 24h have passed since the last reset.

        The first call only starts the clock.

        Returns:
            True if the counters were reset
        """
        if self.last_daily_reset is None:
            self.last_daily_reset = now
            return False
        if now - self.last_daily_reset >= DAILY_RESET_INTERVAL:
            logger.info('Daily PnL reset (was %.4f)', self.daily_pnl)
            self.daily_pnl = 0.0
            self.last_daily_reset = now
            return True
        return False

    def entry_price(self, side: str, order_id: str) -> Optional[float]:
        entries = self.buy_entries if side == SideType.BUY else self.sell_entries
        return entries.get(order_id)

    def apply_fill(self, side: str, qty: float, now: datetime) -> None:
        """Add a fill to its side and start the holding clock when a position opens."""
        if side == SideType.BUY:
            self.long_position += qty
        else:
            self.short_position += qty

        if self.is_flat:
            self.position_start = None
        elif self.position_start is None:
            self.position_start = now

    def holding_expired(self, now: datetime, max_holding_seconds: float) -> bool:
        if self.position_start is None:
            return False
        return (now - self.position_start).total_seconds() >= max_holding_seconds

    def forget_order(self, order_id: str) -> None:
        self.buy_entries.pop(order_id, None)
        self.sell_entries.pop(order_id, None)

    def clear_entries(self) -> None:
        self.buy_entries.clear()
        self.sell_entries.clear()
