"""Intent executor for converting engine intents to gateway calls.

The executor is the bridge between the pure risk engine (gridrisk)
and the order gateway. It handles the actual order placement and
cancellation, and maps gateway exceptions onto the error taxonomy.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, UTC
from typing import Optional

from gridrisk import (
    SAFE_MARGIN_RATIO,
    CancelIntent,
    GridStrategyError,
    NetworkError,
    OrderError,
    PlaceLimitIntent,
    calculate_margin_ratio,
)

from gridtrader.gateway import OrderGateway


logger = logging.getLogger(__name__)


@dataclass
class OrderResult:
    """Result of order placement attempt."""

    success: bool
    order_id: Optional[str] = None
    error: Optional[GridStrategyError] = None
    timestamp: datetime = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.now(UTC)


@dataclass
class CancelResult:
    """Result of order cancellation attempt."""

    success: bool
    error: Optional[GridStrategyError] = None
    timestamp: datetime = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.now(UTC)


def classify_error(exc: Exception) -> GridStrategyError:
    """Map a gateway exception onto the error taxonomy.

    Connection problems and timeouts become NetworkError, anything else
    an OrderError. Taxonomy errors raised by the gateway pass through.
    """
    if isinstance(exc, GridStrategyError):
        return exc
    if isinstance(exc, (ConnectionError, TimeoutError, OSError)):
        return NetworkError(f"{type(exc).__name__}: {exc}")
    return OrderError(f"{type(exc).__name__}: {exc}")


class IntentExecutor:
    """Executes trading intents against an order gateway.

    In shadow mode, logs intents without executing them.

    Example:
        executor = IntentExecutor(gateway, shadow_mode=False)

        result = await executor.execute_place(intent)
        if result.success:
            print(f"Order placed: {result.order_id}")
    """

    def __init__(self, gateway: OrderGateway, shadow_mode: bool = False):
        """Initialize executor.

        Args:
            gateway: Order gateway for venue calls.
            shadow_mode: If True, log intents without executing.
        """
        self._gateway = gateway
        self._shadow_mode = shadow_mode

    @property
    def shadow_mode(self) -> bool:
        """Whether executor is in shadow mode."""
        return self._shadow_mode

    async def execute_place(self, intent: PlaceLimitIntent) -> OrderResult:
        """Execute a place order intent.

        Args:
            intent: PlaceLimitIntent from engine.

        Returns:
            OrderResult with success status and order_id if successful.
        """
        if self._shadow_mode:
            logger.info(
                f"[SHADOW] Would place {intent.side} order: "
                f"{intent.symbol} qty={intent.qty} price={intent.price} "
                f"reduce_only={intent.reduce_only} client_id={intent.client_order_id}"
            )
            return OrderResult(
                success=True,
                order_id=f"shadow_{intent.client_order_id}",
            )

        try:
            order_id = await self._gateway.place(
                asset=intent.symbol,
                side=intent.side,
                reduce_only=intent.reduce_only,
                limit_price=intent.price,
                quantity=intent.qty,
                time_in_force=intent.time_in_force,
            )

            logger.info(
                f"Placed {intent.side} order: {intent.symbol} "
                f"qty={intent.qty} price={intent.price} order_id={order_id}"
            )

            return OrderResult(success=True, order_id=order_id)

        except Exception as e:
            error = classify_error(e)
            logger.error(f"Failed to place order: {error}")
            return OrderResult(success=False, error=error)

    async def execute_cancel(self, intent: CancelIntent) -> CancelResult:
        """Execute a cancel order intent.

        Args:
            intent: CancelIntent from engine.

        Returns:
            CancelResult with success status.
        """
        if self._shadow_mode:
            logger.info(
                f"[SHADOW] Would cancel order: {intent.symbol} "
                f"order_id={intent.order_id} reason={intent.reason}"
            )
            return CancelResult(success=True)

        try:
            success = await self._gateway.cancel(intent.symbol, intent.order_id)

            if success:
                logger.info(
                    f"Cancelled order: {intent.symbol} "
                    f"order_id={intent.order_id} reason={intent.reason}"
                )
            else:
                logger.warning(
                    f"Cancel returned False: {intent.symbol} "
                    f"order_id={intent.order_id} (may already be filled/cancelled)"
                )

            return CancelResult(success=success)

        except Exception as e:
            error = classify_error(e)
            logger.error(f"Failed to cancel order: {error}")
            return CancelResult(success=False, error=error)

    async def set_leverage(self, asset: str, leverage: int) -> bool:
        """Set leverage once at startup. Skipped in shadow mode."""
        if self._shadow_mode:
            logger.info(f"[SHADOW] Would set leverage {leverage}x for {asset}")
            return True
        return await self._gateway.set_leverage(asset, leverage)

    async def margin_ratio(self, asset: str) -> float:
        """Account value over margin used. Shadow mode reports a safe ratio.

        Raises:
            Exception: Whatever the gateway raises when account data is unavailable.
        """
        if self._shadow_mode:
            return SAFE_MARGIN_RATIO
        summary = await self._gateway.margin_summary(asset)
        return calculate_margin_ratio(summary)
