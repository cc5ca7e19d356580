"""
Order intent models for the grid & risk engine.

Intents represent the engine's desired actions without performing them.
The engine returns intents, and the execution layer talks to the order
gateway and reports acknowledgments back.

This separation keeps every risk decision pure and testable.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import StrEnum
import hashlib


class OrderPurpose(StrEnum):
    """Why an order is being placed."""
    GRID = 'grid'
    LIQUIDATION = 'liquidation'


@dataclass(frozen=True)
class PlaceLimitIntent:
    """
    Intent to place a limit order.

    Grid levels are tracked by the engine once the gateway acknowledges
    them; liquidation orders are reduce-only and never tracked.
    """
    symbol: str
    side: str            # 'Buy' or 'Sell'
    price: Decimal
    qty: Decimal
    reduce_only: bool
    client_order_id: str
    grid_level: int      # -1 for liquidation orders
    purpose: OrderPurpose
    time_in_force: str = 'Gtc'

    # Parameters that determine order identity for deduplication
    _IDENTITY_PARAMS = ['symbol', 'side', 'price', 'purpose']

    @classmethod
    def create(
        cls,
        symbol: str,
        side: str,
        price: Decimal,
        qty: Decimal,
        grid_level: int,
        purpose: OrderPurpose = OrderPurpose.GRID,
        reduce_only: bool = False,
    ) -> "PlaceLimitIntent":
        """
        Factory method to create a PlaceLimitIntent with deterministic client_order_id.

        The client_order_id is hashed from (symbol, side, price, purpose) so a
        retried placement of the same level carries the same id.

        Args:
            symbol: Traded asset
            side: 'Buy' or 'Sell'
            price: Limit price, already rounded to price precision
            qty: Order quantity, already rounded to quantity precision
            grid_level: Ladder index (0 is closest to the reference price)
            purpose: Grid level or liquidation
            reduce_only: Whether the order may only decrease a position

        Returns:
            PlaceLimitIntent with deterministic client_order_id
        """
        params = locals()
        id_string = "_".join(str(params[param]) for param in cls._IDENTITY_PARAMS)
        deterministic_id = hashlib.sha256(id_string.encode()).hexdigest()[:16]

        return cls(
            symbol=symbol,
            side=side,
            price=price,
            qty=qty,
            reduce_only=reduce_only,
            client_order_id=deterministic_id,
            grid_level=grid_level,
            purpose=purpose,
        )


@dataclass(frozen=True)
class CancelIntent:
    """Intent to cancel a resting order."""
    symbol: str
    order_id: str
    reason: str  # 'refresh', 'shutdown'

    price: Decimal | None = None
    side: str | None = None
