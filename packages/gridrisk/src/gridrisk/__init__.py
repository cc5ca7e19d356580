"""
gridrisk - Adaptive grid market making core with zero exchange dependencies.

This package contains the volatility estimator, the grid & risk engine,
the batch optimizer, the error taxonomy, the performance analyzer, market
trend analysis, margin checks and daily parameter tuning. Nothing here
performs I/O beyond the JSON stores, so the live shell and tests drive it
the same way.
"""

from gridrisk.events import Event, EventType, TickerEvent, Fill, FillEvent
from gridrisk.intents import PlaceLimitIntent, CancelIntent, OrderPurpose
from gridrisk.params import GridParameters
from gridrisk.volatility import (
    PriceHistory,
    calculate_amplitude,
    calculate_volatility,
    calculate_grid_spacing,
    round_to_precision,
)
from gridrisk.errors import (
    ErrorKind,
    RetryStrategy,
    ErrorStatistics,
    GridStrategyError,
    ConfigError,
    WalletError,
    ClientError,
    OrderError,
    SubscriptionError,
    PriceParseError,
    QuantityParseError,
    RiskControlTriggered,
    MarketAnalysisError,
    FundAllocationError,
    RebalanceError,
    StopLossError,
    MarginInsufficient,
    NetworkError,
)
from gridrisk.batch_optimizer import BatchTaskOptimizer
from gridrisk.performance import (
    PerformanceMetrics,
    PerformanceRecord,
    PerformanceSnapshot,
    PerformanceAnalyzer,
    trading_hours,
)
from gridrisk.position import PositionState, ActiveOrder, SideType
from gridrisk.parsing import parse_fill_price, parse_fill_qty, safe_parse_float
from gridrisk.market import (
    MarketTrend,
    MarketAnalysis,
    analyze_market_trend,
    calculate_market_volatility,
    calculate_moving_average,
    calculate_rsi,
    calculate_min_sell_price,
    calculate_expected_profit_rate,
)
from gridrisk.margin import MarginSummary, calculate_margin_ratio, check_margin_ratio, SAFE_MARGIN_RATIO
from gridrisk.tuning import ParameterCheckpoint, DynamicGridParams, auto_optimize, performance_score
from gridrisk.engine import GridRiskEngine, EngineState, StopReason, drawdown_fraction
from gridrisk.persistence import PerformanceStore, TuningStore

__version__ = "0.1.0"

__all__ = [
    "Event",
    "EventType",
    "TickerEvent",
    "Fill",
    "FillEvent",
    "PlaceLimitIntent",
    "CancelIntent",
    "OrderPurpose",
    "GridParameters",
    "PriceHistory",
    "calculate_amplitude",
    "calculate_volatility",
    "calculate_grid_spacing",
    "round_to_precision",
    "ErrorKind",
    "RetryStrategy",
    "ErrorStatistics",
    "GridStrategyError",
    "ConfigError",
    "WalletError",
    "ClientError",
    "OrderError",
    "SubscriptionError",
    "PriceParseError",
    "QuantityParseError",
    "RiskControlTriggered",
    "MarketAnalysisError",
    "FundAllocationError",
    "RebalanceError",
    "StopLossError",
    "MarginInsufficient",
    "NetworkError",
    "BatchTaskOptimizer",
    "PerformanceMetrics",
    "PerformanceRecord",
    "PerformanceSnapshot",
    "PerformanceAnalyzer",
    "trading_hours",
    "PositionState",
    "ActiveOrder",
    "SideType",
    "parse_fill_price",
    "parse_fill_qty",
    "safe_parse_float",
    "GridRiskEngine",
    "EngineState",
    "StopReason",
    "MarketTrend",
    "MarketAnalysis",
    "analyze_market_trend",
    "calculate_market_volatility",
    "calculate_moving_average",
    "calculate_rsi",
    "calculate_min_sell_price",
    "calculate_expected_profit_rate",
    "MarginSummary",
    "calculate_margin_ratio",
    "check_margin_ratio",
    "SAFE_MARGIN_RATIO",
    "ParameterCheckpoint",
    "DynamicGridParams",
    "auto_optimize",
    "performance_score",
    "drawdown_fraction",
    "PerformanceStore",
    "TuningStore",
]
