"""
Unit tests for GridRiskEngine.

Tests the per-ticker cycle (ladder refresh and risk checks) and fill
handling to ensure correct intent generation and state transitions.
"""

import dataclasses
import math
from datetime import timedelta
from decimal import Decimal

import pytest

from gridrisk.engine import EngineState, GridRiskEngine, StopReason, drawdown_fraction
from gridrisk.errors import ErrorKind, FundAllocationError, OrderError
from gridrisk.intents import CancelIntent, OrderPurpose, PlaceLimitIntent
from gridrisk.market import MarketTrend


@pytest.fixture
def engine(grid_params):
    return GridRiskEngine(grid_params)


def grid_intent(side, price, qty="1"):
    return PlaceLimitIntent.create(
        symbol="HYPE", side=side, price=Decimal(price), qty=Decimal(qty), grid_level=0,
    )


class TestLadder:
    """Ladder construction on ticker events."""

    def test_first_ticker_builds_interleaved_ladder(self, engine, make_ticker):
        intents = engine.on_event(make_ticker(100))

        assert all(isinstance(i, PlaceLimitIntent) for i in intents)
        assert [i.side for i in intents] == ["Buy", "Sell"] * 3
        assert [i.grid_level for i in intents] == [0, 0, 1, 1, 2, 2]
        assert [i.price for i in intents] == [
            Decimal("99.76"), Decimal("100.24"),
            Decimal("99.52"), Decimal("100.48"),
            Decimal("99.28"), Decimal("100.72"),
        ]
        assert all(i.qty == Decimal("1") for i in intents)
        assert all(not i.reduce_only and i.purpose is OrderPurpose.GRID for i in intents)
        assert engine.state is EngineState.RUNNING
        assert engine.spacing == 0.0024

    def test_refresh_cancels_previous_ladder(self, engine, make_ticker, t0):
        first = engine.on_event(make_ticker(100))
        for n, intent in enumerate(first):
            engine.record_placed(intent, f"o{n}")
        assert len(engine.active_orders) == 6

        second = engine.on_event(make_ticker(100, t0 + timedelta(seconds=10)))
        cancels = [i for i in second if isinstance(i, CancelIntent)]

        assert second[:6] == cancels
        assert {c.order_id for c in cancels} == {f"o{n}" for n in range(6)}
        assert all(c.reason == "refresh" for c in cancels)
        assert engine.active_orders == {}
        assert engine.position.buy_entries == {}
        assert engine.position.sell_entries == {}

    def test_spacing_follows_volatility(self, engine, make_ticker, t0):
        engine.on_event(make_ticker(100))
        engine.on_event(make_ticker(110, t0 + timedelta(seconds=10)))
        assert engine.spacing == 0.004

    def test_offset_shifts_thresholds(self, grid_params, make_ticker):
        engine = GridRiskEngine(dataclasses.replace(grid_params, grid_count=1, grid_price_offset=0.001))
        buy, sell = engine.on_event(make_ticker(100))

        assert buy.price == Decimal("99.66")
        assert sell.price == Decimal("100.14")

    def test_buy_levels_skipped_at_max_long(self, engine, make_ticker, make_fills):
        engine.on_event(make_fills(("x", "Buy", "100", "10")))
        intents = engine.on_event(make_ticker(100))

        assert len(intents) == 3
        assert all(i.side == "Sell" for i in intents)

    def test_sell_levels_skipped_at_max_short(self, engine, make_ticker, make_fills):
        engine.on_event(make_fills(("x", "Sell", "100", "10")))
        intents = engine.on_event(make_ticker(100))

        assert len(intents) == 3
        assert all(i.side == "Buy" for i in intents)

    def test_order_limit_check(self, grid_params, make_ticker):
        engine = GridRiskEngine(dataclasses.replace(grid_params, max_active_orders=2))
        for n, intent in enumerate(engine.on_event(make_ticker(100))):
            engine.record_placed(intent, f"o{n}")

        with pytest.raises(FundAllocationError):
            engine.check_order_limits()

    def test_order_limit_within_bounds(self, engine, make_ticker):
        for n, intent in enumerate(engine.on_event(make_ticker(100))):
            engine.record_placed(intent, f"o{n}")
        engine.check_order_limits()

    def test_unprofitable_buy_levels_placed_by_default(self, engine, make_ticker):
        """At 0.5 a 0.002 minimum profit needs ~0.4% per round trip, more than one spacing yields."""
        intents = engine.on_event(make_ticker(0.5))
        assert [i.side for i in intents] == ["Buy", "Sell"] * 3

    def test_unprofitable_buy_levels_skipped_when_enforced(self, grid_params, make_ticker):
        engine = GridRiskEngine(dataclasses.replace(grid_params, enforce_min_profit=True))
        intents = engine.on_event(make_ticker(0.5))

        assert [i.side for i in intents] == ["Sell"] * 3

    def test_profitable_buy_levels_kept_when_enforced(self, grid_params, make_ticker):
        engine = GridRiskEngine(dataclasses.replace(grid_params, enforce_min_profit=True))
        assert len(engine.on_event(make_ticker(100))) == 6


class TestFills:
    """Fill handling and realized PnL."""

    def test_buy_fill_pnl_and_cleanup(self, engine, make_fills):
        engine.record_placed(grid_intent("Buy", "100"), "b1")
        engine.on_event(make_fills(("b1", "Buy", "99", "2")))

        assert engine.position.long_position == 2.0
        assert engine.position.daily_pnl == pytest.approx(2.0)
        assert "b1" not in engine.active_orders
        assert "b1" not in engine.position.buy_entries

    def test_sell_fill_pnl(self, engine, make_fills):
        engine.record_placed(grid_intent("Sell", "100"), "s1")
        engine.on_event(make_fills(("s1", "Sell", "101", "2")))

        assert engine.position.short_position == 2.0
        assert engine.realized_pnl == pytest.approx(2.0)

    def test_unknown_order_realizes_nothing(self, engine, make_fills):
        engine.on_event(make_fills(("x", "Sell", "150", "1")))
        assert engine.position.daily_pnl == 0.0
        assert engine.position.short_position == 1.0

    def test_venue_side_codes(self, engine, make_fills):
        engine.on_event(make_fills(("x", "B", "100", "1"), ("y", "A", "100", "2")))
        assert engine.position.long_position == 1.0
        assert engine.position.short_position == 2.0

    def test_fees_accumulate_without_touching_pnl(self, engine, make_fills):
        engine.on_event(make_fills(("x", "Buy", "100", "1", 0.04), ("y", "Sell", "100", "1", 0.06)))
        assert engine.fees_paid == pytest.approx(0.1)
        assert engine.realized_pnl == 0.0
        assert "fees=0.1000" in engine.status_report()

    def test_fills_feed_analyzer(self, engine, make_fills):
        engine.record_placed(grid_intent("Sell", "100"), "s1")
        engine.on_event(make_fills(("s1", "Sell", "101", "1")))

        assert len(engine.analyzer.records) == 1
        assert engine.analyzer.metrics.total_profit == pytest.approx(1.0)
        assert engine.analyzer.records[0].total_capital == pytest.approx(10001.0)

    def test_malformed_fill_skipped(self, engine, make_fills):
        engine.on_event(make_fills(
            ("a", "Buy", "abc", "1"),
            ("b", "Buy", "100", ""),
            ("c", "Buy", "100", "1"),
        ))

        assert engine.position.long_position == 1.0
        assert engine.error_stats.count(ErrorKind.PRICE_PARSE) == 1
        assert engine.error_stats.count(ErrorKind.QUANTITY_PARSE) == 1

    def test_loss_within_single_trade_limit(self, engine, make_fills):
        """-150 against a -200 limit (10000 × 0.02) keeps running."""
        engine.record_placed(grid_intent("Buy", "100"), "b1")
        intents = engine.on_event(make_fills(("b1", "Buy", "250", "1")))

        assert intents == []
        assert engine.state is EngineState.RUNNING
        assert engine.position.daily_pnl == pytest.approx(-150.0)
        assert engine.position.long_position == 1.0

    def test_single_trade_loss_stops(self, engine, make_fills):
        """-250 against a -200 limit liquidates and stops mid-batch."""
        engine.record_placed(grid_intent("Buy", "100"), "b1")
        intents = engine.on_event(make_fills(
            ("x", "Buy", "100", "2"),
            ("b1", "Buy", "350", "1"),
            ("z", "Buy", "100", "5"),
        ))

        assert engine.state is EngineState.STOPPED
        assert engine.stop_reason is StopReason.SINGLE_TRADE_LOSS
        assert engine.transitions == [EngineState.RUNNING, EngineState.LIQUIDATING, EngineState.STOPPED]
        assert len(intents) == 1
        exit_order = intents[0]
        assert exit_order.side == "Sell"
        assert exit_order.reduce_only
        assert exit_order.purpose is OrderPurpose.LIQUIDATION
        assert exit_order.price == Decimal("350")
        assert exit_order.qty == Decimal("2")
        # The losing fill is not applied and later fills are dropped
        assert engine.position.long_position == 2.0


class TestRiskChecks:
    """Drawdown, daily loss and holding time on ticker events."""

    def test_drawdown_from_zero_equity_stops(self, engine, make_ticker, make_fills, t0):
        engine.on_event(make_ticker(100))
        engine.on_event(make_fills(("x", "Sell", "100", "1")))
        intents = engine.on_event(make_ticker(100, t0 + timedelta(seconds=10)))

        assert engine.stop_reason is StopReason.MAX_DRAWDOWN
        assert math.isinf(engine.last_drawdown)
        assert len(intents) == 1
        assert intents[0].side == "Buy"
        assert intents[0].reduce_only
        assert intents[0].qty == Decimal("1")

    def test_rising_equity_from_zero_keeps_running(self, engine, make_ticker, make_fills, t0):
        engine.on_event(make_ticker(100))
        engine.on_event(make_fills(("x", "Buy", "100", "1")))
        intents = engine.on_event(make_ticker(100, t0 + timedelta(seconds=10)))

        assert engine.state is EngineState.RUNNING
        assert len(intents) == 6

    def test_drawdown_fraction_breach(self, engine, make_ticker, make_fills, t0):
        engine.on_event(make_fills(("x", "Buy", "100", "10")))
        engine.on_event(make_ticker(100))
        assert engine.position.initial_equity == 10.0

        engine.on_event(make_fills(("y", "Sell", "100", "1")))
        intents = engine.on_event(make_ticker(100, t0 + timedelta(seconds=10)))

        assert engine.stop_reason is StopReason.MAX_DRAWDOWN
        assert engine.last_drawdown == pytest.approx(0.1)
        assert engine.analyzer.metrics.max_drawdown == pytest.approx(0.1)
        assert [(i.side, i.qty) for i in intents] == [("Sell", Decimal("10")), ("Buy", Decimal("1"))]

    def test_daily_loss_stops(self, engine, make_ticker, make_fills):
        engine.record_placed(grid_intent("Buy", "100"), "b1")
        engine.record_placed(grid_intent("Buy", "100"), "b2")
        engine.on_event(make_fills(("b1", "Buy", "250", "1"), ("b2", "Buy", "250", "1")))
        assert engine.state is EngineState.RUNNING

        intents = engine.on_event(make_ticker(100))

        assert engine.stop_reason is StopReason.DAILY_LOSS
        assert len(intents) == 1
        assert intents[0].purpose is OrderPurpose.LIQUIDATION

    def test_daily_pnl_resets_after_a_day(self, engine, make_ticker, make_fills, t0):
        engine.on_event(make_ticker(100))
        engine.record_placed(grid_intent("Buy", "100"), "b1")
        engine.on_event(make_fills(("b1", "Buy", "250", "1")))
        assert engine.position.daily_pnl == pytest.approx(-150.0)

        engine.on_event(make_ticker(100, t0 + timedelta(hours=25)))

        assert engine.position.daily_pnl == 0.0
        assert engine.state is EngineState.RUNNING

    def test_holding_time_liquidates_and_continues(self, engine, make_ticker, make_fills, t0):
        engine.on_event(make_fills(("x", "Buy", "100", "1")))
        intents = engine.on_event(make_ticker(100, t0 + timedelta(hours=2)))

        assert intents[0].purpose is OrderPurpose.LIQUIDATION
        assert intents[0].side == "Sell"
        assert len(intents) == 7
        assert engine.state is EngineState.RUNNING
        assert engine.transitions == [EngineState.RUNNING, EngineState.LIQUIDATING, EngineState.RUNNING]
        assert engine.position.position_start is None


class TestLifecycle:
    """Stop handling and acknowledgment callbacks."""

    def test_stopped_engine_ignores_events(self, engine, make_ticker, make_fills):
        engine.stop(StopReason.USER_SIGNAL)

        assert engine.on_event(make_ticker(100)) == []
        assert engine.on_event(make_fills(("x", "Buy", "100", "1"))) == []
        assert engine.position.long_position == 0.0
        assert engine.stop_reason is StopReason.USER_SIGNAL

    def test_stop_keeps_first_reason(self, engine):
        engine.stop(StopReason.FEED_CLOSED)
        engine.stop(StopReason.USER_SIGNAL)
        assert engine.stop_reason is StopReason.FEED_CLOSED

    def test_liquidation_orders_not_tracked(self, engine):
        intent = PlaceLimitIntent.create(
            symbol="HYPE", side="Sell", price=Decimal("100"), qty=Decimal("1"),
            grid_level=-1, purpose=OrderPurpose.LIQUIDATION, reduce_only=True,
        )
        engine.record_placed(intent, "liq1")
        assert engine.active_orders == {}

    def test_record_rejected_counts_error(self, engine):
        engine.record_rejected(grid_intent("Buy", "100"), OrderError("insufficient margin"))
        assert engine.error_stats.count(ErrorKind.ORDER) == 1

    def test_cancel_all(self, engine):
        engine.record_placed(grid_intent("Buy", "99"), "b1")
        cancels = engine.cancel_all("shutdown")

        assert [(c.order_id, c.reason, c.side) for c in cancels] == [("b1", "shutdown", "Buy")]
        assert engine.active_orders == {}

    def test_status_report(self, engine, make_ticker):
        engine.on_event(make_ticker(100))
        assert "state=running" in engine.status_report()


class TestStopReason:
    """Tests for StopReason."""

    @pytest.mark.parametrize("reason, liquidates", [
        (StopReason.MAX_DRAWDOWN, True),
        (StopReason.DAILY_LOSS, True),
        (StopReason.SINGLE_TRADE_LOSS, True),
        (StopReason.MARGIN_INSUFFICIENT, True),
        (StopReason.FEED_CLOSED, False),
        (StopReason.USER_SIGNAL, False),
    ])
    def test_requires_liquidation(self, reason, liquidates):
        assert reason.requires_liquidation is liquidates


class TestDrawdownFraction:
    """Tests for drawdown_fraction."""

    def test_regular(self):
        assert drawdown_fraction(10.0, 9.0) == pytest.approx(0.1)
        assert drawdown_fraction(10.0, 11.0) == pytest.approx(-0.1)

    def test_zero_initial(self):
        assert drawdown_fraction(0.0, -1.0) == math.inf
        assert drawdown_fraction(0.0, 1.0) == -math.inf
        assert math.isnan(drawdown_fraction(0.0, 0.0))


class TestEventFiltering:
    """Events for other assets and unusable ticker prices."""

    def test_ticker_for_other_asset_ignored(self, engine, make_ticker, t0):
        engine.on_event(make_ticker(20))
        intents = engine.on_event(make_ticker(60000, t0 + timedelta(seconds=10), symbol="BTC"))

        assert intents == []
        assert engine.history.as_list() == [20.0]
        assert engine.last_price == 20.0
        assert engine.spacing == 0.0024

    def test_fills_for_other_asset_ignored(self, engine, make_fills):
        engine.record_placed(grid_intent("Buy", "100"), "b1")
        intents = engine.on_event(make_fills(("b1", "Buy", "50", "3"), symbol="BTC"))

        assert intents == []
        assert engine.position.long_position == 0.0
        assert engine.realized_pnl == 0.0
        assert "b1" in engine.active_orders

    @pytest.mark.parametrize("price", [0, -5, "NaN", "Infinity"])
    def test_invalid_mid_price_skipped(self, engine, make_ticker, price):
        intents = engine.on_event(make_ticker(price))

        assert intents == []
        assert len(engine.history) == 0
        assert engine.last_price is None
        assert engine.error_stats.count(ErrorKind.PRICE_PARSE) == 1
        assert engine.state is EngineState.RUNNING

    def test_invalid_price_keeps_previous_state(self, engine, make_ticker, t0):
        engine.on_event(make_ticker(100))
        engine.on_event(make_ticker(0, t0 + timedelta(seconds=10)))
        intents = engine.on_event(make_ticker(100, t0 + timedelta(seconds=20)))

        assert engine.history.as_list() == [100.0, 100.0]
        assert len([i for i in intents if isinstance(i, PlaceLimitIntent)]) == 6
        assert not hasattr(engine, "started_at")


class TestForcedLiquidation:
    """force_liquidation() on an external risk signal."""

    def test_cancels_ladder_and_flattens(self, engine, make_ticker, make_fills):
        engine.on_event(make_fills(("x", "Buy", "100", "2")))
        for n, intent in enumerate(engine.on_event(make_ticker(100))):
            engine.record_placed(intent, f"o{n}")

        intents = engine.force_liquidation(StopReason.MARGIN_INSUFFICIENT)
        cancels = [i for i in intents if isinstance(i, CancelIntent)]
        exits = [i for i in intents if isinstance(i, PlaceLimitIntent)]

        assert len(cancels) == 6
        assert all(c.reason == "margin_insufficient" for c in cancels)
        assert [(i.side, i.price, i.qty, i.reduce_only) for i in exits] == [
            ("Sell", Decimal("100"), Decimal("2"), True),
        ]
        assert engine.state is EngineState.STOPPED
        assert engine.stop_reason is StopReason.MARGIN_INSUFFICIENT
        assert engine.active_orders == {}

    def test_without_price_only_stops(self, engine):
        assert engine.force_liquidation(StopReason.MARGIN_INSUFFICIENT) == []
        assert engine.stop_reason is StopReason.MARGIN_INSUFFICIENT

    def test_after_stop_is_noop(self, engine, make_ticker):
        engine.on_event(make_ticker(100))
        engine.stop(StopReason.FEED_CLOSED)

        assert engine.force_liquidation(StopReason.MARGIN_INSUFFICIENT) == []
        assert engine.stop_reason is StopReason.FEED_CLOSED


class TestMarketTrend:
    """Trend tracking over the price history."""

    def test_trend_follows_rising_prices(self, grid_params, make_ticker):
        engine = GridRiskEngine(dataclasses.replace(grid_params, history_length=30))
        for price in range(100, 130):
            engine.on_event(make_ticker(price))

        assert engine.trend is MarketTrend.UPWARD
        assert engine.market_analysis().rsi == 100.0
        assert "trend=upward" in engine.status_report()

    def test_short_history_is_sideways(self, engine, make_ticker):
        engine.on_event(make_ticker(100))
        assert engine.trend is MarketTrend.SIDEWAYS
        assert "trend=sideways" in engine.status_report()


class TestTuning:
    """Daily parameter tuning when auto_optimize is enabled."""

    @pytest.fixture
    def tuned_params(self, grid_params):
        return dataclasses.replace(grid_params, auto_optimize=True, max_holding_time=1e9)

    def trade(self, engine, make_fills, side, entry, fill_price, count=20):
        for n in range(count):
            engine.record_placed(grid_intent(side, entry), f"{side}{n}")
        engine.on_event(make_fills(*[(f"{side}{n}", side, fill_price, "1") for n in range(count)]))

    def test_profitable_day_widens_spacing_and_size(self, tuned_params, make_ticker, make_fills, t0):
        engine = GridRiskEngine(tuned_params)
        self.trade(engine, make_fills, "Sell", "100", "101")
        engine.on_event(make_ticker(100))
        assert engine.tuning.optimization_count == 0

        intents = engine.on_event(make_ticker(100, t0 + timedelta(hours=25)))

        assert engine.tuning.optimization_count == 1
        assert engine.tuning.current_min_spacing == pytest.approx(0.0024 * 1.03)
        assert engine.spacing == pytest.approx(0.0024 * 1.03)
        buys = [i for i in intents if isinstance(i, PlaceLimitIntent) and i.side == "Buy"]
        assert buys and all(i.qty == Decimal("1.02") for i in buys)
        assert engine.tuning.checkpoints[-1].min_spacing == 0.0024

    def test_not_due_within_a_day(self, tuned_params, make_ticker, make_fills, t0):
        engine = GridRiskEngine(tuned_params)
        self.trade(engine, make_fills, "Sell", "100", "101")
        engine.on_event(make_ticker(100))
        engine.on_event(make_ticker(100, t0 + timedelta(hours=23)))

        assert engine.tuning.optimization_count == 0
        assert engine.spacing == 0.0024

    def test_invalid_result_recorded_and_reverted(self, tuned_params, make_ticker, make_fills, t0):
        """A narrow band cannot absorb the conservative widening of max spacing."""
        engine = GridRiskEngine(dataclasses.replace(tuned_params, min_grid_spacing=0.0035))
        self.trade(engine, make_fills, "Buy", "100", "101")
        engine.on_event(make_ticker(100))
        engine.on_event(make_ticker(100, t0 + timedelta(hours=25)))

        assert engine.error_stats.count(ErrorKind.REBALANCE) == 1
        assert engine.tuning.current_min_spacing == 0.0035
        assert engine.tuning.current_max_spacing == 0.004
        assert engine.tuning.optimization_count == 0
        assert engine.state is EngineState.RUNNING

    def test_disabled_by_default(self, engine, make_ticker, make_fills, t0):
        self.trade(engine, make_fills, "Sell", "100", "101")
        engine.on_event(make_ticker(100))
        engine.on_event(make_ticker(100, t0 + timedelta(hours=25)))

        assert engine.tuning.optimization_count == 0
        assert engine.tuning.last_optimization_time is None
