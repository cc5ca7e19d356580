"""
Per-run parameters for the grid & risk engine.

GridParameters is immutable for the lifetime of a run; the live shell
builds it from the validated YAML configuration before the loop starts.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class GridParameters:
    """
    Configuration for the adaptive grid strategy.

    Attributes:
        asset: Traded asset identifier
        total_capital: Capital base for the daily and single-trade loss limits
        grid_count: Levels per side of the ladder
        trade_amount: Notional per level; quantity = trade_amount / price
        max_position: Long (or short) quantity above which that side stops quoting
        max_drawdown: Fractional equity decline that stops the run
        price_precision: Decimal places for limit prices
        quantity_precision: Decimal places for order quantities
        check_interval: Seconds to wait between cycles
        leverage: Multiplier set once at startup
        min_grid_spacing: Lower clamp for the volatility-derived spacing
        max_grid_spacing: Upper clamp for the volatility-derived spacing
        grid_price_offset: Shifts the ladder (buy threshold up, sell threshold down)
        max_single_loss: Fraction of capital a single fill may lose
        max_daily_loss: Fraction of capital the day may lose
        max_holding_time: Seconds a position may stay open before liquidation
        history_length: Price samples kept for the volatility estimate
        max_active_orders: Resting orders allowed per side
        fee_rate: Venue fee rate charged on each leg
        min_profit: Per-unit price gain a buy level's round trip should clear after fees
        margin_usage_threshold: Margin ratio (account value / margin used) below
            which the run liquidates
        enforce_min_profit: Drop buy levels whose round trip misses min_profit
        auto_optimize: Let daily tuning move the spacing band and trade amount
    """
    asset: str
    total_capital: float
    grid_count: int = 8
    trade_amount: float = 80.0
    max_position: float = 10000.0
    max_drawdown: float = 0.02
    price_precision: int = 4
    quantity_precision: int = 1
    check_interval: float = 10.0
    leverage: int = 3
    min_grid_spacing: float = 0.0024
    max_grid_spacing: float = 0.004
    grid_price_offset: float = 0.0
    max_single_loss: float = 0.01
    max_daily_loss: float = 0.02
    max_holding_time: float = 86400.0
    history_length: int = 80
    max_active_orders: int = 20
    fee_rate: float = 0.0004
    min_profit: float = 0.002
    margin_usage_threshold: float = 0.9
    enforce_min_profit: bool = False
    auto_optimize: bool = False

    def __post_init__(self):
        """Validate invariants the engine relies on."""
        if self.grid_count <= 0:
            raise ValueError(f"grid_count must be positive, got {self.grid_count}")
        if self.min_grid_spacing > self.max_grid_spacing:
            raise ValueError(
                f"min_grid_spacing ({self.min_grid_spacing}) must not exceed "
                f"max_grid_spacing ({self.max_grid_spacing})"
            )
        if self.price_precision < 0 or self.quantity_precision < 0:
            raise ValueError("precisions must be non-negative")
        if self.history_length <= 0:
            raise ValueError(f"history_length must be positive, got {self.history_length}")
        if not 0 <= self.fee_rate < 1:
            raise ValueError(f"fee_rate must be in [0, 1), got {self.fee_rate}")
