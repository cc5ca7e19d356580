"""Grid runner that drives GridRiskEngine with execution context.

The runner is responsible for:
- Setting leverage once before the loop starts
- Routing feed events to the engine, one cycle per event
- Executing returned intents, placing ladders in optimizer-sized batches
- Checking the margin ratio periodically and liquidating when it is too low
- Waiting the inter-cycle delay while honoring shutdown requests
- Cancelling resting orders and persisting performance and tuning on exit
"""

import asyncio
import logging
import time
from datetime import datetime, UTC
from typing import Awaitable, Callable, Optional

from gridrisk import (
    BatchTaskOptimizer,
    CancelIntent,
    EngineState,
    ErrorStatistics,
    Event,
    FundAllocationError,
    GridParameters,
    GridRiskEngine,
    GridStrategyError,
    MarginInsufficient,
    OrderError,
    OrderPurpose,
    PerformanceAnalyzer,
    PerformanceSnapshot,
    PerformanceStore,
    PlaceLimitIntent,
    StopLossError,
    StopReason,
    TuningStore,
    check_margin_ratio,
    trading_hours,
)

from gridtrader.config import RunnerConfig
from gridtrader.executor import IntentExecutor, classify_error
from gridtrader.feed import EventFeed
from gridtrader.notifier import Notifier
from gridtrader.retry import RetryPolicy


logger = logging.getLogger(__name__)


class GridRunner:
    """Runs a single grid strategy until a stop condition.

    Example:
        runner = GridRunner(
            params=config.grid.to_params(),
            feed=feed,
            executor=IntentExecutor(gateway),
            runner_config=config.runner,
        )
        reason = await runner.run()
    """

    def __init__(
        self,
        params: GridParameters,
        feed: EventFeed,
        executor: IntentExecutor,
        runner_config: Optional[RunnerConfig] = None,
        notifier: Optional[Notifier] = None,
        store: Optional[PerformanceStore] = None,
        tuning_store: Optional[TuningStore] = None,
        shutdown_event: Optional[asyncio.Event] = None,
        cycle_delay: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize runner.

        Args:
            params: Engine parameters.
            feed: Source of ticker and fill events.
            executor: Intent executor for gateway calls.
            runner_config: Batch, retry and persistence settings.
            notifier: Alert notifier (log-only if omitted).
            store: Performance store written on exit.
            tuning_store: Tuned parameter store, read at start and written on exit.
            shutdown_event: Set to request a graceful stop.
            cycle_delay: Seconds between cycles (defaults to params.check_interval).
            clock: Monotonic seconds source for batch timing and margin checks.
            sleep: Awaitable delay used between batches and retries.
        """
        self._params = params
        self._feed = feed
        self._executor = executor
        self._config = runner_config or RunnerConfig()
        self._notifier = notifier or Notifier()
        self._store = store
        self._tuning_store = tuning_store
        self._shutdown = shutdown_event or asyncio.Event()
        self._cycle_delay = params.check_interval if cycle_delay is None else cycle_delay
        self._clock = clock
        self._sleep = sleep
        self._started_at: Optional[datetime] = None
        self._last_margin_check: Optional[float] = None

        self.error_stats = ErrorStatistics()
        self.analyzer = PerformanceAnalyzer(
            max_records=self._config.max_records,
            max_snapshots=self._config.max_snapshots,
        )
        self.engine = GridRiskEngine(params, analyzer=self.analyzer, error_stats=self.error_stats)
        self.optimizer = BatchTaskOptimizer(
            initial_batch_size=self._config.initial_batch_size,
            target_execution_time=self._config.target_batch_seconds,
            min_batch_size=self._config.min_batch_size,
            max_batch_size=self._config.max_batch_size,
            clock=clock,
        )
        self._retry = RetryPolicy(enabled=self._config.retry_enabled, sleep=sleep)

    @property
    def shutdown_event(self) -> asyncio.Event:
        return self._shutdown

    def request_shutdown(self) -> None:
        """Ask the loop to stop after the current cycle."""
        self._shutdown.set()

    async def run(self) -> Optional[StopReason]:
        """Run until a risk stop, feed closure or shutdown request.

        Returns:
            Why the run stopped.

        Raises:
            OrderError: If leverage could not be set at startup.
        """
        await self._set_leverage()
        self._load_tuning()
        self._started_at = datetime.now(UTC)
        logger.info(f"Grid runner started for {self._params.asset}")

        try:
            while self.engine.state is not EngineState.STOPPED:
                event = await self._next_event()
                if event is None:
                    if self._shutdown.is_set():
                        self.engine.stop(StopReason.USER_SIGNAL)
                    else:
                        self.engine.stop(StopReason.FEED_CLOSED)
                    break

                intents = self.engine.on_event(event)
                await self._execute(intents)
                if self.engine.state is not EngineState.STOPPED:
                    await self._monitor_margin()
                self._check_order_limits()
                logger.debug(self.engine.status_report())

                if self.engine.state is EngineState.STOPPED:
                    break
                if await self._pause():
                    self.engine.stop(StopReason.USER_SIGNAL)
        finally:
            await self._shutdown_safely()

        return self.engine.stop_reason

    async def _set_leverage(self) -> None:
        asset, leverage = self._params.asset, self._params.leverage
        try:
            ok = await self._executor.set_leverage(asset, leverage)
        except Exception as e:
            error = classify_error(e)
            self.error_stats.record_error(error)
            raise OrderError(f"failed to set leverage {leverage}x for {asset}: {error}") from e

        if not ok:
            error = OrderError(f"venue refused leverage {leverage}x for {asset}")
            self.error_stats.record_error(error)
            raise error
        logger.info(f"Leverage set to {leverage}x for {asset}")

    def _load_tuning(self) -> None:
        if self._tuning_store is None or not self._params.auto_optimize:
            return
        dynamic = self._tuning_store.load_tuning(self._params.asset, self._params)
        if dynamic is not None:
            self.engine.tuning = dynamic
            logger.info(
                f"Restored tuning: spacing {dynamic.current_min_spacing:.6f}-{dynamic.current_max_spacing:.6f}, "
                f"amount {dynamic.current_trade_amount:.2f}, {dynamic.optimization_count} passes"
            )

    async def _monitor_margin(self) -> None:
        """Check the margin ratio every margin_check_interval seconds.

        An insufficient ratio liquidates and stops the engine. Failing to
        read the ratio is recorded and retried on the next due check.
        """
        now = self._clock()
        if self._last_margin_check is not None and now - self._last_margin_check < self._config.margin_check_interval:
            return

        asset = self._params.asset
        try:
            ratio = await self._executor.margin_ratio(asset)
            check_margin_ratio(ratio, self._params.margin_usage_threshold)
        except MarginInsufficient as e:
            self._record_error("margin", e)
            self._notifier.alert_error("margin", e)
            await self._execute(self.engine.force_liquidation(StopReason.MARGIN_INSUFFICIENT))
            return
        except Exception as e:
            self._record_error("margin check", classify_error(e))
            return

        self._last_margin_check = now

    async def _next_event(self) -> Optional[Event]:
        """Wait for the next event; None if the feed closed or shutdown was requested."""
        if self._shutdown.is_set():
            return None

        event_task = asyncio.ensure_future(self._feed.next_event())
        stop_task = asyncio.ensure_future(self._shutdown.wait())
        done, _ = await asyncio.wait({event_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)

        if event_task in done:
            stop_task.cancel()
            return event_task.result()

        event_task.cancel()
        return None

    async def _pause(self) -> bool:
        """Wait the inter-cycle delay. Returns True if shutdown was requested."""
        if self._shutdown.is_set():
            return True
        if self._cycle_delay <= 0:
            return False
        try:
            await asyncio.wait_for(self._shutdown.wait(), timeout=self._cycle_delay)
            return True
        except asyncio.TimeoutError:
            return False

    async def _execute(self, intents: list[PlaceLimitIntent | CancelIntent]) -> None:
        """Execute cancels and liquidations in engine order, then the ladder in batches."""
        ladder = []
        for intent in intents:
            if isinstance(intent, CancelIntent):
                await self._cancel(intent)
            elif intent.purpose is OrderPurpose.LIQUIDATION:
                await self._place_liquidation(intent)
            else:
                ladder.append(intent)

        await self._place_ladder(ladder)

    async def _cancel(self, intent: CancelIntent) -> None:
        outcome = await self._retry.run(self._executor.execute_cancel, intent)
        result = outcome.result
        if result.success:
            return
        if result.error is not None:
            self._record_error(f"cancel {intent.order_id}", result.error)
        logger.warning(f"Cancel of {intent.order_id} failed, continuing")

    async def _place_liquidation(self, intent: PlaceLimitIntent) -> None:
        result = await self._executor.execute_place(intent)
        if result.success:
            logger.warning(f"Liquidation order {result.order_id}: {intent.side} {intent.qty} @ {intent.price}")
            return
        cause = result.error or OrderError("liquidation rejected")
        error = StopLossError(f"{intent.side} {intent.qty} @ {intent.price} not placed: {cause}")
        self._record_error("liquidation", error)
        self._notifier.alert_error("liquidation", error)

    async def _place_ladder(self, ladder: list[PlaceLimitIntent]) -> None:
        pending = list(ladder)
        delay = self._config.order_batch_delay_ms / 1000

        while pending:
            size = max(self.optimizer.optimize_batch_size(len(pending)), 1)
            batch, pending = pending[:size], pending[size:]

            started = self._clock()
            for intent in batch:
                await self._place_level(intent)
            self.optimizer.record_execution_time(self._clock() - started)

            if pending and delay > 0:
                await self._sleep(delay)

    async def _place_level(self, intent: PlaceLimitIntent) -> None:
        outcome = await self._retry.run(self._executor.execute_place, intent)
        result = outcome.result
        if result.success:
            self.engine.record_placed(intent, result.order_id)
            return

        error = result.error or OrderError("placement rejected")
        self.engine.record_rejected(intent, error)
        if error.is_fatal:
            self._notifier.alert_error("place", error)

    def _check_order_limits(self) -> None:
        try:
            self.engine.check_order_limits()
        except FundAllocationError as e:
            self._record_error("order limit", e)

    def _record_error(self, context: str, error: GridStrategyError) -> None:
        self.error_stats.record_error(error)
        logger.error(f"{context}: {error}")

    def build_snapshot(self, now: Optional[datetime] = None) -> PerformanceSnapshot:
        """Point-in-time performance view of the run."""
        now = now or datetime.now(UTC)
        started = self._started_at or now
        capital = self._params.total_capital + self.engine.realized_pnl
        return PerformanceSnapshot.from_metrics(
            self.analyzer.metrics,
            total_capital=capital,
            available_funds=capital,
            position_quantity=self.engine.position.equity,
            mark_price=self.engine.last_price or 0.0,
            realized_profit=self.engine.realized_pnl,
            trading_duration_hours=trading_hours(started, now),
            initial_capital=self._params.total_capital,
            timestamp=now,
        )

    async def _shutdown_safely(self) -> None:
        """Cancel resting orders, persist performance and log the final reports."""
        cancels = self.engine.cancel_all("shutdown")
        if cancels:
            logger.info(f"Cancelling {len(cancels)} active orders")
        for intent in cancels:
            await self._cancel(intent)

        self.analyzer.update_sharpe_ratio(self._config.risk_free_rate)
        snapshot = self.build_snapshot()
        self.analyzer.add_snapshot(snapshot)

        if self._store is not None:
            try:
                self._store.save(self._params.asset, self.analyzer)
                logger.info(f"Performance saved to {self._store.file_path}")
            except OSError as e:
                logger.error(f"Failed to save performance data: {e}")

        if self._tuning_store is not None and self._params.auto_optimize:
            try:
                self._tuning_store.save_tuning(self._params.asset, self.engine.tuning)
                logger.info(f"Tuning saved to {self._tuning_store.file_path}")
            except OSError as e:
                logger.error(f"Failed to save tuning data: {e}")

        reason = self.engine.stop_reason
        logger.info(f"Grid runner stopped: {reason}")
        logger.info(snapshot.generate_report())
        logger.info(self.analyzer.detailed_report())
        logger.info(self.optimizer.performance_report())
        logger.info(self.error_stats.generate_report())

        if reason is not None and reason.requires_liquidation:
            self._notifier.alert_stop(self._params.asset, reason, self.engine.status_report())
