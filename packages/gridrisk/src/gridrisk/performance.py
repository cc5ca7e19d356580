"""Trade performance accounting.

PerformanceMetrics aggregates completed trade outcomes; PerformanceRecord
is one trade event; PerformanceSnapshot is a frozen point-in-time view of
the metrics plus capital and position figures supplied by the caller.
PerformanceAnalyzer keeps bounded histories of both.
"""

import logging
import math
from collections import deque
from dataclasses import dataclass, field, asdict
from datetime import datetime, timedelta, UTC
from typing import Any, Optional

logger = logging.getLogger(__name__)

DEFAULT_MAX_RECORDS = 1000
DEFAULT_MAX_SNAPSHOTS = 100


@dataclass
class PerformanceMetrics:
    """Running trade statistics. Profits are in quote currency, win_rate in percent."""

    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    win_rate: float = 0.0
    total_profit: float = 0.0
    max_drawdown: float = 0.0
    sharpe_ratio: float = 0.0
    profit_factor: float = 0.0
    average_win: float = 0.0
    average_loss: float = 0.0
    largest_win: float = 0.0
    largest_loss: float = 0.0

    def update_trade(self, profit: float) -> None:
        """Account one completed trade. Zero-profit trades count toward total_trades only."""
        self.total_trades += 1
        self.total_profit += profit

        if profit > 0:
            self.winning_trades += 1
            self.largest_win = max(self.largest_win, profit)
        elif profit < 0:
            self.losing_trades += 1
            self.largest_loss = min(self.largest_loss, profit)

        self._calculate_derived_metrics()

    def _calculate_derived_metrics(self) -> None:
        if self.total_trades > 0:
            self.win_rate = self.winning_trades / self.total_trades * 100.0

        if self.winning_trades > 0:
            self.average_win = self.total_wins / self.winning_trades
        if self.losing_trades > 0:
            self.average_loss = self.total_losses / self.losing_trades

        # Left at its previous value when there are no losses
        if abs(self.total_losses) > 0:
            self.profit_factor = self.total_wins / abs(self.total_losses)

    @property
    def total_wins(self) -> float:
        """Sum of winning trades, reconstructed from the running average.

        Falls back to max(total_profit, 0) until an average exists.
        """
        if self.winning_trades > 0 and self.average_win > 0:
            return self.average_win * self.winning_trades
        return max(self.total_profit, 0.0)

    @property
    def total_losses(self) -> float:
        """Sum of losing trades (negative), reconstructed from the running average.

        Falls back to min(total_profit, 0) until an average exists.
        """
        if self.losing_trades > 0 and self.average_loss < 0:
            return self.average_loss * self.losing_trades
        return min(self.total_profit, 0.0)

    def update_drawdown(self, current_drawdown: float) -> None:
        if current_drawdown > self.max_drawdown:
            self.max_drawdown = current_drawdown

    def calculate_sharpe_ratio(self, returns: list[float], risk_free_rate: float = 0.0) -> None:
        """Sharpe ratio with the sample standard deviation; 0 with fewer than 2 returns or no spread."""
        if len(returns) < 2:
            self.sharpe_ratio = 0.0
            return

        mean_return = sum(returns) / len(returns)
        variance = sum((r - mean_return) ** 2 for r in returns) / (len(returns) - 1)
        std_dev = math.sqrt(variance)

        self.sharpe_ratio = (mean_return - risk_free_rate) / std_dev if std_dev > 0 else 0.0

    def is_performing_well(self) -> bool:
        return (
            self.win_rate >= 50.0
            and self.profit_factor >= 1.2
            and self.max_drawdown <= 0.2
            and self.total_profit > 0
        )

    def risk_score(self) -> float:
        """
        Risk score from 0 (lowest) to 100 (highest).

        Weighted blend: drawdown 40%, win rate 30%, profit factor 20%,
        Sharpe ratio 10%, capped at 100.
        """
        score = min(self.max_drawdown * 100.0, 100.0) * 0.4

        if self.win_rate >= 60.0:
            win_rate_risk = 0.0
        elif self.win_rate >= 40.0:
            win_rate_risk = (60.0 - self.win_rate) * 2.0
        else:
            win_rate_risk = 40.0 + (40.0 - self.win_rate)
        score += win_rate_risk * 0.3

        if self.profit_factor >= 1.5:
            profit_factor_risk = 0.0
        elif self.profit_factor >= 1.0:
            profit_factor_risk = (1.5 - self.profit_factor) * 40.0
        else:
            profit_factor_risk = 60.0 + (1.0 - self.profit_factor) * 40.0
        score += profit_factor_risk * 0.2

        if self.sharpe_ratio >= 1.0:
            sharpe_risk = 0.0
        elif self.sharpe_ratio >= 0.0:
            sharpe_risk = (1.0 - self.sharpe_ratio) * 30.0
        else:
            sharpe_risk = 30.0 + abs(self.sharpe_ratio) * 20.0
        score += sharpe_risk * 0.1

        return min(score, 100.0)

    def summary(self) -> str:
        return "\n".join([
            "Performance summary:",
            f"  trades: {self.total_trades}",
            f"  winning: {self.winning_trades} ({self.win_rate:.1f}%)",
            f"  losing: {self.losing_trades} ({100.0 - self.win_rate:.1f}%)",
            f"  total profit: {self.total_profit:.4f}",
            f"  max drawdown: {self.max_drawdown * 100:.2f}%",
            f"  sharpe ratio: {self.sharpe_ratio:.2f}",
            f"  profit factor: {self.profit_factor:.2f}",
            f"  average win: {self.average_win:.4f}",
            f"  average loss: {self.average_loss:.4f}",
            f"  largest win: {self.largest_win:.4f}",
            f"  largest loss: {self.largest_loss:.4f}",
        ])

    def reset(self) -> None:
        for name, default in asdict(PerformanceMetrics()).items():
            setattr(self, name, default)


@dataclass(frozen=True)
class PerformanceRecord:
    """One trade event."""

    price: float
    action: str
    profit: float
    total_capital: float
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def buy_record(cls, price: float, quantity: float, total_capital: float,
                   profit: float = 0.0, timestamp: Optional[datetime] = None) -> "PerformanceRecord":
        return cls(
            price=price,
            action=f"BUY {quantity:.4f} @ {price:.4f}",
            profit=profit,
            total_capital=total_capital,
            timestamp=timestamp or datetime.now(UTC),
        )

    @classmethod
    def sell_record(cls, price: float, quantity: float, profit: float, total_capital: float,
                    timestamp: Optional[datetime] = None) -> "PerformanceRecord":
        return cls(
            price=price,
            action=f"SELL {quantity:.4f} @ {price:.4f}",
            profit=profit,
            total_capital=total_capital,
            timestamp=timestamp or datetime.now(UTC),
        )

    def age_seconds(self, now: Optional[datetime] = None) -> float:
        now = now or datetime.now(UTC)
        return max((now - self.timestamp).total_seconds(), 0.0)

    def is_within_hours(self, hours: float, now: Optional[datetime] = None) -> bool:
        return self.age_seconds(now) <= hours * 3600

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data['timestamp'] = int(self.timestamp.timestamp())
        return data


@dataclass(frozen=True)
class PerformanceSnapshot:
    """Point-in-time aggregate. final_roi is in percent of initial capital."""

    timestamp: datetime
    total_capital: float
    available_funds: float
    position_quantity: float
    mark_price: float
    realized_profit: float
    total_trades: int
    winning_trades: int
    win_rate: float
    max_drawdown: float
    sharpe_ratio: float
    profit_factor: float
    trading_duration_hours: float
    final_roi: float

    @classmethod
    def from_metrics(
        cls,
        metrics: PerformanceMetrics,
        total_capital: float,
        available_funds: float,
        position_quantity: float,
        mark_price: float,
        realized_profit: float,
        trading_duration_hours: float,
        initial_capital: float,
        timestamp: Optional[datetime] = None,
    ) -> "PerformanceSnapshot":
        if initial_capital > 0:
            final_roi = (total_capital - initial_capital) / initial_capital * 100.0
        else:
            final_roi = 0.0

        return cls(
            timestamp=timestamp or datetime.now(UTC),
            total_capital=total_capital,
            available_funds=available_funds,
            position_quantity=position_quantity,
            mark_price=mark_price,
            realized_profit=realized_profit,
            total_trades=metrics.total_trades,
            winning_trades=metrics.winning_trades,
            win_rate=metrics.win_rate,
            max_drawdown=metrics.max_drawdown,
            sharpe_ratio=metrics.sharpe_ratio,
            profit_factor=metrics.profit_factor,
            trading_duration_hours=trading_duration_hours,
            final_roi=final_roi,
        )

    def generate_report(self) -> str:
        return "\n".join([
            f"Performance snapshot ({self.timestamp:%Y-%m-%d %H:%M:%S})",
            f"  total capital: {self.total_capital:.4f}",
            f"  available funds: {self.available_funds:.4f}",
            f"  position: {self.position_quantity:.4f} @ mark {self.mark_price:.4f}",
            f"  realized profit: {self.realized_profit:.4f}",
            f"  trades: {self.total_trades} (winning {self.winning_trades}, {self.win_rate:.1f}%)",
            f"  max drawdown: {self.max_drawdown * 100:.2f}%",
            f"  sharpe ratio: {self.sharpe_ratio:.2f}",
            f"  profit factor: {self.profit_factor:.2f}",
            f"  duration: {self.trading_duration_hours:.1f}h",
            f"  ROI: {self.final_roi:.2f}%",
        ])

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data['timestamp'] = int(self.timestamp.timestamp())
        return data


class PerformanceAnalyzer:
    """Metrics plus bounded record and snapshot histories (oldest evicted first)."""

    def __init__(self, max_records: int = DEFAULT_MAX_RECORDS, max_snapshots: int = DEFAULT_MAX_SNAPSHOTS):
        self.metrics = PerformanceMetrics()
        self.records: deque[PerformanceRecord] = deque(maxlen=max_records)
        self.snapshots: deque[PerformanceSnapshot] = deque(maxlen=max_snapshots)

    def add_trade_record(self, record: PerformanceRecord) -> None:
        self.metrics.update_trade(record.profit)
        self.records.append(record)

    def add_snapshot(self, snapshot: PerformanceSnapshot) -> None:
        self.snapshots.append(snapshot)

    def recent_records(self, hours: float, now: Optional[datetime] = None) -> list[PerformanceRecord]:
        return [record for record in self.records if record.is_within_hours(hours, now)]

    def calculate_returns(self) -> list[float]:
        """Relative capital change between consecutive records."""
        records = list(self.records)
        returns = []
        for previous, current in zip(records, records[1:]):
            if previous.total_capital > 0:
                returns.append((current.total_capital - previous.total_capital) / previous.total_capital)
        return returns

    def update_sharpe_ratio(self, risk_free_rate: float = 0.0) -> None:
        self.metrics.calculate_sharpe_ratio(self.calculate_returns(), risk_free_rate)

    def detailed_report(self, now: Optional[datetime] = None) -> str:
        recent = self.recent_records(24, now)
        recent_profit = sum(record.profit for record in recent)
        status = "healthy" if self.metrics.is_performing_well() else "needs attention"
        return "\n".join([
            self.metrics.summary(),
            "",
            "Last 24h:",
            f"  trades: {len(recent)}",
            f"  net profit: {recent_profit:.4f}",
            "",
            f"Risk score: {self.metrics.risk_score():.1f}/100",
            f"Status: {status}",
        ])

    def to_dict(self) -> dict[str, Any]:
        return {
            'metrics': asdict(self.metrics),
            'records': [record.to_dict() for record in self.records],
            'snapshots': [snapshot.to_dict() for snapshot in self.snapshots],
        }

    def reset(self) -> None:
        self.metrics.reset()
        self.records.clear()
        self.snapshots.clear()


def trading_hours(started: datetime, now: Optional[datetime] = None) -> float:
    """Hours elapsed since `started`."""
    now = now or datetime.now(UTC)
    return max((now - started) / timedelta(hours=1), 0.0)
