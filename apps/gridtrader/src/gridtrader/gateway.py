"""Order gateway interface.

The runner needs four operations from a venue: place a limit order,
cancel it, set leverage once at startup and report account margin.
Venue adapters implement OrderGateway; PaperGateway acknowledges
everything locally and is used for replays and dry runs.
"""

import itertools
import logging
from decimal import Decimal
from typing import Protocol

from gridrisk import MarginSummary


logger = logging.getLogger(__name__)


class OrderGateway(Protocol):
    """Async order operations against a venue.

    place() returns the venue order id and raises on rejection.
    cancel() and set_leverage() return False when the venue refuses.
    margin_summary() raises if account data cannot be fetched.
    """

    async def place(
        self,
        asset: str,
        side: str,
        reduce_only: bool,
        limit_price: Decimal,
        quantity: Decimal,
        time_in_force: str = "Gtc",
    ) -> str:
        ...

    async def cancel(self, asset: str, order_id: str) -> bool:
        ...

    async def set_leverage(self, asset: str, leverage: int) -> bool:
        ...

    async def margin_summary(self, asset: str) -> MarginSummary:
        ...


class PaperGateway:
    """In-memory gateway that accepts every request.

    Resting orders are kept in `open_orders` keyed by order id so a
    replay can inspect what would be on the book.
    """

    def __init__(self, id_prefix: str = "paper", account_value: float = 0.0):
        self._ids = itertools.count(1)
        self._id_prefix = id_prefix
        self.account_value = account_value
        self.open_orders: dict[str, dict] = {}
        self.leverage: dict[str, int] = {}

    async def place(
        self,
        asset: str,
        side: str,
        reduce_only: bool,
        limit_price: Decimal,
        quantity: Decimal,
        time_in_force: str = "Gtc",
    ) -> str:
        order_id = f"{self._id_prefix}_{next(self._ids)}"
        self.open_orders[order_id] = {
            "asset": asset,
            "side": side,
            "reduce_only": reduce_only,
            "price": limit_price,
            "qty": quantity,
            "tif": time_in_force,
        }
        logger.debug(f"Paper order {order_id}: {side} {quantity} {asset} @ {limit_price}")
        return order_id

    async def cancel(self, asset: str, order_id: str) -> bool:
        return self.open_orders.pop(order_id, None) is not None

    async def set_leverage(self, asset: str, leverage: int) -> bool:
        self.leverage[asset] = leverage
        return True

    async def margin_summary(self, asset: str) -> MarginSummary:
        # Paper orders never consume margin
        return MarginSummary(account_value=self.account_value, total_margin_used=0.0)
