"""
Grid & risk engine.

A pure state machine: on_event() consumes a ticker or fill batch and
returns the intents the execution layer should carry out. The engine
never talks to the gateway itself. Acknowledged ladder placements are
reported back through record_placed() so entry prices can be tracked.

Per ticker the engine runs, in order: daily reset, optional parameter
tuning, spacing update, holding-time check, drawdown check, daily-loss
check and ladder refresh. A stop (drawdown, daily loss, single-trade loss
or insufficient margin) emits liquidation intents and moves the engine to
STOPPED, after which events are ignored.
"""

import logging
import math
from datetime import datetime
from decimal import Decimal
from enum import StrEnum
from typing import Optional

from gridrisk.errors import (
    ErrorStatistics,
    FundAllocationError,
    GridStrategyError,
    MarketAnalysisError,
    PriceParseError,
    QuantityParseError,
    RebalanceError,
)
from gridrisk.events import Event, FillEvent, TickerEvent
from gridrisk.intents import CancelIntent, OrderPurpose, PlaceLimitIntent
from gridrisk.market import (
    MarketAnalysis,
    MarketTrend,
    analyze_market_trend,
    calculate_expected_profit_rate,
    calculate_market_volatility,
    calculate_min_sell_price,
)
from gridrisk.params import GridParameters
from gridrisk.parsing import parse_fill_price, parse_fill_qty
from gridrisk.performance import PerformanceAnalyzer, PerformanceRecord
from gridrisk.position import ActiveOrder, PositionState, SideType
from gridrisk.tuning import DynamicGridParams, auto_optimize
from gridrisk.volatility import PriceHistory, calculate_grid_spacing, round_to_precision

logger = logging.getLogger(__name__)

Intent = PlaceLimitIntent | CancelIntent


class EngineState(StrEnum):
    """Lifecycle of a run. LIQUIDATING is only held while exit orders are produced."""
    RUNNING = 'running'
    LIQUIDATING = 'liquidating'
    STOPPED = 'stopped'


class StopReason(StrEnum):
    """Why a run ended."""
    MAX_DRAWDOWN = 'max_drawdown'
    DAILY_LOSS = 'daily_loss'
    SINGLE_TRADE_LOSS = 'single_trade_loss'
    FEED_CLOSED = 'feed_closed'
    USER_SIGNAL = 'user_signal'
    MARGIN_INSUFFICIENT = 'margin_insufficient'

    @property
    def requires_liquidation(self) -> bool:
        """Risk stops flatten the position; operational stops do not."""
        return self in (
            StopReason.MAX_DRAWDOWN,
            StopReason.DAILY_LOSS,
            StopReason.SINGLE_TRADE_LOSS,
            StopReason.MARGIN_INSUFFICIENT,
        )


def drawdown_fraction(initial_equity: float, current_equity: float) -> float:
    """
    Fractional decline of equity from its initial value.

    With initial equity 0 the division follows IEEE semantics: a positive
    numerator gives +inf, a negative one -inf and zero gives nan, which
    never compares greater than a threshold.
    """
    numerator = initial_equity - current_equity
    if initial_equity == 0:
        if numerator > 0:
            return math.inf
        if numerator < 0:
            return -math.inf
        return math.nan
    return numerator / initial_equity


def _to_decimal(value: float) -> Decimal:
    return Decimal(repr(value))


class GridRiskEngine:
    """
    Adaptive grid strategy with drawdown, loss and holding-time limits.

    Example:
        engine = GridRiskEngine(GridParameters(asset='HYPE', total_capital=10000))
        for event in feed:
            intents = engine.on_event(event)
            ... execute intents, calling engine.record_placed() per ack ...
            if engine.state is EngineState.STOPPED:
                break
    """

    def __init__(
        self,
        params: GridParameters,
        analyzer: Optional[PerformanceAnalyzer] = None,
        error_stats: Optional[ErrorStatistics] = None,
    ):
        """
        Initialize engine.

        Args:
            params: Run parameters
            analyzer: Performance analyzer fed with every fill (a new one if omitted)
            error_stats: Shared error counters (a new one if omitted)
        """
        self.params = params
        self.analyzer = analyzer if analyzer is not None else PerformanceAnalyzer()
        self.error_stats = error_stats if error_stats is not None else ErrorStatistics()
        self.position = PositionState()
        self.history = PriceHistory(params.history_length)
        self.realized_pnl = 0.0
        self.fees_paid = 0.0
        self.last_price: Optional[float] = None
        self.last_drawdown = 0.0
        self.tuning = DynamicGridParams.from_params(params)
        self.trend = MarketTrend.SIDEWAYS

        self._spacing = params.min_grid_spacing
        self._active_orders: dict[str, ActiveOrder] = {}
        self._state = EngineState.RUNNING
        self._stop_reason: Optional[StopReason] = None
        self.transitions: list[EngineState] = [EngineState.RUNNING]

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def stop_reason(self) -> Optional[StopReason]:
        return self._stop_reason

    @property
    def spacing(self) -> float:
        """Grid spacing computed on the last ticker."""
        return self._spacing

    @property
    def active_orders(self) -> dict[str, ActiveOrder]:
        return dict(self._active_orders)

    def on_event(self, event: Event) -> list[Intent]:
        """
        Process an event and return the intents it produces.

        Events received after the engine stopped, and events for other
        assets, are ignored.
        """
        if self._state is EngineState.STOPPED:
            logger.debug('Engine stopped, ignoring %s event', event.event_type.value)
            return []

        if event.symbol != self.params.asset:
            logger.debug('Ignoring %s event for %s', event.event_type.value, event.symbol)
            return []

        if isinstance(event, TickerEvent):
            return self._on_ticker(event)
        if isinstance(event, FillEvent):
            return self._on_fills(event)

        logger.warning('Unhandled event type: %s', type(event).__name__)
        return []

    def record_placed(self, intent: PlaceLimitIntent, order_id: str) -> None:
        """Track an acknowledged ladder order and its entry price. Liquidation orders are not tracked."""
        if intent.purpose is not OrderPurpose.GRID:
            return

        side = SideType(intent.side)
        price = float(intent.price)
        self._active_orders[order_id] = ActiveOrder(order_id, side, price, float(intent.qty))
        entries = self.position.buy_entries if side is SideType.BUY else self.position.sell_entries
        entries[order_id] = price

    def record_rejected(self, intent: PlaceLimitIntent, error: GridStrategyError) -> None:
        """Count a rejected placement. The level is simply absent until the next refresh."""
        self.error_stats.record_error(error)
        logger.warning('Level %d %s @ %s rejected: %s', intent.grid_level, intent.side, intent.price, error)

    def cancel_all(self, reason: str) -> list[CancelIntent]:
        """Cancel intents for every active order; tracking is cleared immediately."""
        intents = [
            CancelIntent(
                symbol=self.params.asset,
                order_id=order.order_id,
                reason=reason,
                price=_to_decimal(order.price),
                side=order.side.value,
            )
            for order in self._active_orders.values()
        ]
        self._active_orders.clear()
        self.position.clear_entries()
        return intents

    def stop(self, reason: StopReason) -> None:
        """Stop without liquidating (feed closed or operator signal)."""
        if self._state is EngineState.STOPPED:
            return
        self._stop(reason)

    def force_liquidation(self, reason: StopReason) -> list[Intent]:
        """
        Stop on an external risk signal, such as a failed margin check.

        Returns cancels for the resting ladder followed by liquidation
        orders at the last price, or nothing if the engine already stopped.
        """
        if self._state is EngineState.STOPPED:
            return []
        logger.error('Forced liquidation: %s', reason)
        intents: list[Intent] = list(self.cancel_all(str(reason)))
        if self.last_price is not None:
            intents.extend(self._liquidate(self.last_price))
        self._stop(reason)
        return intents

    def market_analysis(self) -> MarketAnalysis:
        """Trend, RSI and moving averages over the current price history."""
        return analyze_market_trend(self.history.as_list())

    def check_order_limits(self) -> None:
        """Raise FundAllocationError when either side holds more than max_active_orders."""
        buys = sum(1 for order in self._active_orders.values() if order.side is SideType.BUY)
        sells = len(self._active_orders) - buys
        limit = self.params.max_active_orders
        if buys > limit or sells > limit:
            raise FundAllocationError(
                f"active orders exceed limit {limit}: buy={buys} sell={sells}"
            )

    def status_report(self) -> str:
        return (
            f"state={self._state} price={self.last_price} spacing={self._spacing:.6f} "
            f"trend={self.trend} long={self.position.long_position:.4f} short={self.position.short_position:.4f} "
            f"daily_pnl={self.position.daily_pnl:.4f} realized={self.realized_pnl:.4f} "
            f"fees={self.fees_paid:.4f} orders={len(self._active_orders)}"
        )

    def _on_ticker(self, event: TickerEvent) -> list[Intent]:
        now = event.local_ts
        price = float(event.mid_price)
        if not math.isfinite(price) or price <= 0:
            error = PriceParseError(f"invalid mid price {event.mid_price} for {event.symbol}")
            self.error_stats.record_error(error)
            logger.error('Skipping ticker: %s', error)
            return []
        self.last_price = price
        params = self.params

        self.position.reset_daily_if_due(now)
        self.history.append(price)
        if params.auto_optimize:
            self._tune(now)
        self._spacing = calculate_grid_spacing(
            self.history.as_list(), self.tuning.current_min_spacing, self.tuning.current_max_spacing
        )
        self._update_trend()
        equity = self.position.update_max_equity()

        intents: list[Intent] = []

        if self.position.holding_expired(now, params.max_holding_time):
            logger.warning('Holding time exceeded %.0fs, closing position', params.max_holding_time)
            intents.extend(self._liquidate(price))
            self.position.position_start = None
            self._transition(EngineState.RUNNING)

        if self.position.initial_equity is None:
            self.position.initial_equity = equity
        else:
            drawdown = drawdown_fraction(self.position.initial_equity, equity)
            self.last_drawdown = drawdown
            if math.isfinite(drawdown):
                self.analyzer.metrics.update_drawdown(drawdown)
            if drawdown > params.max_drawdown:
                logger.error('Max drawdown breached: %.4f > %.4f', drawdown, params.max_drawdown)
                intents.extend(self._liquidate(price))
                self._stop(StopReason.MAX_DRAWDOWN)
                return intents

        daily_limit = -params.total_capital * params.max_daily_loss
        if self.position.daily_pnl < daily_limit:
            logger.error('Daily loss limit breached: %.4f < %.4f', self.position.daily_pnl, daily_limit)
            intents.extend(self._liquidate(price))
            self._stop(StopReason.DAILY_LOSS)
            return intents

        intents.extend(self._refresh_ladder(price))
        return intents

    def _tune(self, now: datetime) -> None:
        # The first tuning pass is due a full interval after the first ticker
        if self.tuning.last_optimization_time is None:
            self.tuning.last_optimization_time = now
            return

        profits = [record.profit for record in self.analyzer.records]
        try:
            volatility = calculate_market_volatility(self.history.as_list())
            auto_optimize(self.tuning, self.params, profits, volatility, now)
        except (MarketAnalysisError, RebalanceError) as e:
            self.error_stats.record_error(e)
            logger.error('Parameter tuning failed: %s', e)

    def _update_trend(self) -> None:
        try:
            analysis = self.market_analysis()
        except MarketAnalysisError as e:
            self.error_stats.record_error(e)
            logger.error('Market analysis failed: %s', e)
            return
        if analysis.trend is not self.trend:
            logger.info(
                'Trend %s -> %s (rsi %.1f, ma %.4f/%.4f)',
                self.trend, analysis.trend, analysis.rsi, analysis.short_ma, analysis.long_ma,
            )
            self.trend = analysis.trend

    def _on_fills(self, event: FillEvent) -> list[Intent]:
        intents: list[Intent] = []
        single_limit = -self.params.total_capital * self.params.max_single_loss

        for fill in event.fills:
            try:
                price = parse_fill_price(fill.price)
                qty = parse_fill_qty(fill.qty)
            except (PriceParseError, QuantityParseError) as e:
                self.error_stats.record_error(e)
                logger.error('Skipping fill %s: %s', fill.order_id, e)
                continue

            side = SideType.BUY if fill.side in (SideType.BUY, 'B') else SideType.SELL
            self.fees_paid += fill.fee
            pnl = self._fill_pnl(fill.order_id, side, price, qty)
            self.position.daily_pnl += pnl
            self.realized_pnl += pnl
            self._record_trade(side, price, qty, pnl, event.local_ts)

            if pnl < single_limit:
                logger.error('Single trade loss %.4f below limit %.4f (order %s)', pnl, single_limit, fill.order_id)
                intents.extend(self._liquidate(price))
                self._stop(StopReason.SINGLE_TRADE_LOSS)
                return intents

            self.position.apply_fill(side, qty, event.local_ts)
            self._active_orders.pop(fill.order_id, None)
            self.position.forget_order(fill.order_id)

        return intents

    def _fill_pnl(self, order_id: str, side: SideType, price: float, qty: float) -> float:
        # Unknown orders (liquidations, stale ids) realize nothing
        entry = self.position.entry_price(side, order_id)
        if entry is None:
            return 0.0
        if side is SideType.BUY:
            return (entry - price) * qty
        return (price - entry) * qty

    def _record_trade(self, side: SideType, price: float, qty: float, pnl: float, now: datetime) -> None:
        capital = self.params.total_capital + self.realized_pnl
        if side is SideType.BUY:
            record = PerformanceRecord.buy_record(price, qty, capital, profit=pnl, timestamp=now)
        else:
            record = PerformanceRecord.sell_record(price, qty, pnl, capital, timestamp=now)
        self.analyzer.add_trade_record(record)

    def _refresh_ladder(self, price: float) -> list[Intent]:
        params = self.params
        intents: list[Intent] = list(self.cancel_all('refresh'))

        spacing = self._spacing
        buy_threshold = spacing + params.grid_price_offset
        sell_threshold = spacing - params.grid_price_offset
        qty = _to_decimal(round_to_precision(self.tuning.current_trade_amount / price, params.quantity_precision))

        quote_buys = self.position.long_position < params.max_position
        quote_sells = self.position.short_position < params.max_position
        if not quote_buys:
            logger.info('Long position %.4f at limit, skipping buy levels', self.position.long_position)
        if not quote_sells:
            logger.info('Short position %.4f at limit, skipping sell levels', self.position.short_position)

        unprofitable = 0
        for level in range(params.grid_count):
            if quote_buys:
                buy_price = round_to_precision(price * (1 - buy_threshold - level * spacing), params.price_precision)
                if not self._covers_min_profit(buy_price, spacing):
                    unprofitable += 1
                    if params.enforce_min_profit:
                        continue
                intents.append(PlaceLimitIntent.create(
                    symbol=params.asset,
                    side=SideType.BUY.value,
                    price=_to_decimal(buy_price),
                    qty=qty,
                    grid_level=level,
                ))
            if quote_sells:
                sell_price = round_to_precision(price * (1 + sell_threshold + level * spacing), params.price_precision)
                intents.append(PlaceLimitIntent.create(
                    symbol=params.asset,
                    side=SideType.SELL.value,
                    price=_to_decimal(sell_price),
                    qty=qty,
                    grid_level=level,
                ))

        if unprofitable:
            logger.warning(
                '%d buy levels miss min profit %.6f after fees (%s)',
                unprofitable, params.min_profit,
                'skipped' if params.enforce_min_profit else 'placed anyway',
            )
        logger.debug('Ladder refreshed at %.4f with spacing %.6f', price, spacing)
        return intents

    def _covers_min_profit(self, buy_price: float, spacing: float) -> bool:
        """Whether selling one spacing above buy_price clears min_profit per unit after both fees."""
        params = self.params
        if buy_price <= 0:
            return False
        potential_sell = buy_price * (1 + spacing)
        expected = calculate_expected_profit_rate(buy_price, potential_sell, params.fee_rate)
        required = params.min_profit / buy_price
        if expected < required:
            logger.debug(
                'Buy %.4f misses min profit: expected %.4f%% < %.4f%%, needs sell >= %.4f',
                buy_price, expected * 100, required * 100,
                calculate_min_sell_price(buy_price, params.fee_rate, required),
            )
            return False
        return True

    def _liquidate(self, price: float) -> list[PlaceLimitIntent]:
        """Reduce-only exit orders at `price` for each open side. Quantities are left to fills."""
        self._transition(EngineState.LIQUIDATING)
        params = self.params
        limit_price = _to_decimal(round_to_precision(price, params.price_precision))
        intents = []

        if self.position.long_position > 0:
            intents.append(PlaceLimitIntent.create(
                symbol=params.asset,
                side=SideType.SELL.value,
                price=limit_price,
                qty=_to_decimal(round_to_precision(self.position.long_position, params.quantity_precision)),
                grid_level=-1,
                purpose=OrderPurpose.LIQUIDATION,
                reduce_only=True,
            ))
        if self.position.short_position > 0:
            intents.append(PlaceLimitIntent.create(
                symbol=params.asset,
                side=SideType.BUY.value,
                price=limit_price,
                qty=_to_decimal(round_to_precision(self.position.short_position, params.quantity_precision)),
                grid_level=-1,
                purpose=OrderPurpose.LIQUIDATION,
                reduce_only=True,
            ))

        logger.warning(
            'Liquidating long=%.4f short=%.4f at %s',
            self.position.long_position, self.position.short_position, limit_price,
        )
        return intents

    def _stop(self, reason: StopReason) -> None:
        self._stop_reason = reason
        self._transition(EngineState.STOPPED)
        logger.warning('Engine stopped: %s', reason)

    def _transition(self, state: EngineState) -> None:
        if state is self._state:
            return
        logger.debug('State %s -> %s', self._state, state)
        self._state = state
        self.transitions.append(state)
