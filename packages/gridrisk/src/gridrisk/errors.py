"""
Error taxonomy for the grid strategy.

Every domain failure is a GridStrategyError subclass carrying an ErrorKind.
Severity, fatality and retry policy are looked up from tables keyed by
kind, so the mapping can be read (and tested) in one place.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum, StrEnum
from typing import Optional

logger = logging.getLogger(__name__)


class ErrorKind(StrEnum):
    """Closed set of failure kinds, in reporting order."""
    CONFIG = 'config'
    WALLET = 'wallet'
    CLIENT = 'client'
    ORDER = 'order'
    SUBSCRIPTION = 'subscription'
    PRICE_PARSE = 'price_parse'
    QUANTITY_PARSE = 'quantity_parse'
    RISK_CONTROL = 'risk_control'
    MARKET_ANALYSIS = 'market_analysis'
    FUND_ALLOCATION = 'fund_allocation'
    REBALANCE = 'rebalance'
    STOP_LOSS = 'stop_loss'
    MARGIN_INSUFFICIENT = 'margin_insufficient'
    NETWORK = 'network'


class RetryStrategy(Enum):
    """Suggested retry behavior for a failure kind."""
    NO_RETRY = 'no_retry'
    IMMEDIATE = 'immediate'
    LINEAR_BACKOFF = 'linear_backoff'
    EXPONENTIAL_BACKOFF = 'exponential_backoff'

    @property
    def max_retries(self) -> int:
        return _MAX_RETRIES[self]

    def delay(self, attempt: int) -> float:
        """
        Seconds to wait before retry number `attempt`.

        Linear backoff waits attempt × 1s; exponential backoff waits
        1s × 2^min(attempt, 5), capped at 30s.
        """
        if self is RetryStrategy.LINEAR_BACKOFF:
            return float(attempt)
        if self is RetryStrategy.EXPONENTIAL_BACKOFF:
            return min(1.0 * 2 ** min(attempt, 5), 30.0)
        return 0.0


_MAX_RETRIES = {
    RetryStrategy.NO_RETRY: 0,
    RetryStrategy.IMMEDIATE: 3,
    RetryStrategy.LINEAR_BACKOFF: 5,
    RetryStrategy.EXPONENTIAL_BACKOFF: 10,
}

# 1-5, 5 is the most severe
SEVERITY: dict[ErrorKind, int] = {
    ErrorKind.CONFIG: 5,
    ErrorKind.WALLET: 5,
    ErrorKind.CLIENT: 4,
    ErrorKind.ORDER: 2,
    ErrorKind.SUBSCRIPTION: 3,
    ErrorKind.PRICE_PARSE: 2,
    ErrorKind.QUANTITY_PARSE: 2,
    ErrorKind.RISK_CONTROL: 4,
    ErrorKind.MARKET_ANALYSIS: 2,
    ErrorKind.FUND_ALLOCATION: 3,
    ErrorKind.REBALANCE: 2,
    ErrorKind.STOP_LOSS: 3,
    ErrorKind.MARGIN_INSUFFICIENT: 5,
    ErrorKind.NETWORK: 3,
}

FATAL_KINDS = frozenset({
    ErrorKind.WALLET,
    ErrorKind.CLIENT,
    ErrorKind.MARGIN_INSUFFICIENT,
    ErrorKind.RISK_CONTROL,
})

RETRY_STRATEGY: dict[ErrorKind, RetryStrategy] = {
    ErrorKind.NETWORK: RetryStrategy.EXPONENTIAL_BACKOFF,
    ErrorKind.SUBSCRIPTION: RetryStrategy.EXPONENTIAL_BACKOFF,
    ErrorKind.ORDER: RetryStrategy.LINEAR_BACKOFF,
    ErrorKind.MARKET_ANALYSIS: RetryStrategy.IMMEDIATE,
}

NETWORK_KINDS = frozenset({ErrorKind.NETWORK, ErrorKind.SUBSCRIPTION, ErrorKind.CLIENT})
ORDER_KINDS = frozenset({ErrorKind.ORDER, ErrorKind.PRICE_PARSE, ErrorKind.QUANTITY_PARSE})
CONFIG_KINDS = frozenset({ErrorKind.CONFIG, ErrorKind.FUND_ALLOCATION})

ERROR_LABELS: dict[ErrorKind, str] = {
    ErrorKind.CONFIG: 'Configuration error',
    ErrorKind.WALLET: 'Wallet initialization failed',
    ErrorKind.CLIENT: 'Client initialization failed',
    ErrorKind.ORDER: 'Order operation failed',
    ErrorKind.SUBSCRIPTION: 'Subscription failed',
    ErrorKind.PRICE_PARSE: 'Price parse failed',
    ErrorKind.QUANTITY_PARSE: 'Quantity parse failed',
    ErrorKind.RISK_CONTROL: 'Risk control triggered',
    ErrorKind.MARKET_ANALYSIS: 'Market analysis failed',
    ErrorKind.FUND_ALLOCATION: 'Fund allocation failed',
    ErrorKind.REBALANCE: 'Grid rebalance failed',
    ErrorKind.STOP_LOSS: 'Stop loss execution failed',
    ErrorKind.MARGIN_INSUFFICIENT: 'Margin insufficient',
    ErrorKind.NETWORK: 'Network connection failed',
}


class GridStrategyError(Exception):
    """Base class for grid strategy failures."""

    kind: ErrorKind

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"{ERROR_LABELS[self.kind]}: {self.message}"

    @property
    def severity(self) -> int:
        return SEVERITY[self.kind]

    @property
    def is_fatal(self) -> bool:
        """Whether trading has to stop."""
        return self.kind in FATAL_KINDS

    @property
    def is_network_error(self) -> bool:
        return self.kind in NETWORK_KINDS

    @property
    def is_order_error(self) -> bool:
        return self.kind in ORDER_KINDS

    @property
    def is_config_error(self) -> bool:
        return self.kind in CONFIG_KINDS

    @property
    def retry_strategy(self) -> RetryStrategy:
        return RETRY_STRATEGY.get(self.kind, RetryStrategy.NO_RETRY)


class ConfigError(GridStrategyError):
    kind = ErrorKind.CONFIG


class WalletError(GridStrategyError):
    kind = ErrorKind.WALLET


class ClientError(GridStrategyError):
    kind = ErrorKind.CLIENT


class OrderError(GridStrategyError):
    kind = ErrorKind.ORDER


class SubscriptionError(GridStrategyError):
    kind = ErrorKind.SUBSCRIPTION


class PriceParseError(GridStrategyError):
    kind = ErrorKind.PRICE_PARSE


class QuantityParseError(GridStrategyError):
    kind = ErrorKind.QUANTITY_PARSE


class RiskControlTriggered(GridStrategyError):
    kind = ErrorKind.RISK_CONTROL


class MarketAnalysisError(GridStrategyError):
    kind = ErrorKind.MARKET_ANALYSIS


class FundAllocationError(GridStrategyError):
    kind = ErrorKind.FUND_ALLOCATION


class RebalanceError(GridStrategyError):
    kind = ErrorKind.REBALANCE


class StopLossError(GridStrategyError):
    kind = ErrorKind.STOP_LOSS


class MarginInsufficient(GridStrategyError):
    kind = ErrorKind.MARGIN_INSUFFICIENT


class NetworkError(GridStrategyError):
    kind = ErrorKind.NETWORK


@dataclass
class ErrorStatistics:
    """
    Per-kind and total error counters.

    Counters only grow through record_error(); reset() is the only way
    back to zero.
    """
    total_errors: int = 0
    counts: dict[ErrorKind, int] = field(default_factory=lambda: {kind: 0 for kind in ErrorKind})

    def record_error(self, error: GridStrategyError) -> None:
        self.total_errors += 1
        self.counts[error.kind] += 1
        logger.debug('Recorded %s (severity %d)', error.kind, error.severity)

    def count(self, kind: ErrorKind) -> int:
        return self.counts[kind]

    def most_frequent_kind(self) -> Optional[ErrorKind]:
        """
        Kind with the highest non-zero count.

        Ties resolve to the kind declared last in ErrorKind.
        """
        best: Optional[ErrorKind] = None
        best_count = 0
        for kind in ErrorKind:
            count = self.counts[kind]
            if count > 0 and count >= best_count:
                best, best_count = kind, count
        return best

    def reset(self) -> None:
        self.total_errors = 0
        self.counts = {kind: 0 for kind in ErrorKind}

    def generate_report(self) -> str:
        lines = ["Error statistics:", f"  total: {self.total_errors}"]
        for kind in ErrorKind:
            lines.append(f"  {ERROR_LABELS[kind]}: {self.counts[kind]}")
        return "\n".join(lines)
