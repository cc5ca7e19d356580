"""
Daily auto-tuning of grid spacing and trade amount.

Once a day, given enough trade history, the recent trades are scored 0-100
and the live spacing band and per-level amount are nudged: widened and
grown after good results, tightened and shrunk after bad ones, and moved
with volatility in between. Every change leaves a checkpoint of the prior
values so a later performance decline can roll it back.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, UTC
from typing import Any, Optional, Sequence

from gridrisk.errors import RebalanceError
from gridrisk.params import GridParameters

logger = logging.getLogger(__name__)

OPTIMIZATION_INTERVAL = timedelta(hours=24)
ROLLBACK_MIN_AGE = timedelta(hours=6)
MIN_RECORDS = 20
SCORE_WINDOW = 30
MAX_CHECKPOINTS = 10
MAX_PERFORMANCE_WINDOW = 10
DEFAULT_ROLLBACK_THRESHOLD = 15.0

GOOD_SCORE = 70.0
POOR_SCORE = 30.0
HIGH_VOLATILITY = 0.02
LOW_VOLATILITY = 0.005


def performance_score(profits: Sequence[float]) -> float:
    """
    Score the last SCORE_WINDOW trade profits from 0 to 100.

    50 for a positive total, up to 30 for the win rate and 20 when the
    average win exceeds the average loss.
    """
    recent = list(profits)[-SCORE_WINDOW:]
    if not recent:
        return 0.0
    wins = [profit for profit in recent if profit > 0]
    losses = [-profit for profit in recent if profit < 0]

    score = 50.0 if sum(recent) > 0 else 0.0
    score += len(wins) / len(recent) * 30.0
    if wins and (not losses or sum(wins) / len(wins) > sum(losses) / len(losses)):
        score += 20.0
    return score


@dataclass(frozen=True)
class ParameterCheckpoint:
    """Tuned values in force before an optimization."""
    min_spacing: float
    max_spacing: float
    trade_amount: float
    checkpoint_time: datetime
    performance_before: float
    reason: str


@dataclass
class DynamicGridParams:
    """
    Live spacing band and trade amount, starting from GridParameters.

    The engine clamps spacing to [current_min_spacing, current_max_spacing]
    and sizes levels from current_trade_amount.
    """
    current_min_spacing: float
    current_max_spacing: float
    current_trade_amount: float
    last_optimization_time: Optional[datetime] = None
    optimization_count: int = 0
    performance_window: list[float] = field(default_factory=list)
    checkpoints: list[ParameterCheckpoint] = field(default_factory=list)
    rollback_threshold: float = DEFAULT_ROLLBACK_THRESHOLD

    @classmethod
    def from_params(cls, params: GridParameters) -> "DynamicGridParams":
        return cls(
            current_min_spacing=params.min_grid_spacing,
            current_max_spacing=params.max_grid_spacing,
            current_trade_amount=params.trade_amount,
        )

    def create_checkpoint(self, reason: str, performance: float, now: datetime) -> ParameterCheckpoint:
        """Remember the current values, keeping the newest MAX_CHECKPOINTS."""
        checkpoint = ParameterCheckpoint(
            min_spacing=self.current_min_spacing,
            max_spacing=self.current_max_spacing,
            trade_amount=self.current_trade_amount,
            checkpoint_time=now,
            performance_before=performance,
            reason=reason,
        )
        self.checkpoints.append(checkpoint)
        if len(self.checkpoints) > MAX_CHECKPOINTS:
            self.checkpoints.pop(0)
        logger.info('Checkpoint created (%s, score %.1f), %d kept', reason, performance, len(self.checkpoints))
        return checkpoint

    def should_rollback(self, performance: float, now: datetime) -> Optional[ParameterCheckpoint]:
        """
        Latest checkpoint if it is at least 6 hours old and the score has
        since fallen by more than rollback_threshold.
        """
        if not self.checkpoints:
            return None
        latest = self.checkpoints[-1]
        decline = latest.performance_before - performance
        if now - latest.checkpoint_time >= ROLLBACK_MIN_AGE and decline > self.rollback_threshold:
            logger.info('Score fell %.1f (threshold %.1f), rollback advised', decline, self.rollback_threshold)
            return latest
        return None

    def rollback_to_checkpoint(self, checkpoint: ParameterCheckpoint) -> None:
        """Restore the checkpoint's values and drop it."""
        logger.warning(
            'Rolling back (%s): spacing %.6f-%.6f -> %.6f-%.6f, amount %.2f -> %.2f',
            checkpoint.reason,
            self.current_min_spacing, self.current_max_spacing,
            checkpoint.min_spacing, checkpoint.max_spacing,
            self.current_trade_amount, checkpoint.trade_amount,
        )
        self.current_min_spacing = checkpoint.min_spacing
        self.current_max_spacing = checkpoint.max_spacing
        self.current_trade_amount = checkpoint.trade_amount
        if checkpoint in self.checkpoints:
            self.checkpoints.remove(checkpoint)

    def _snapshot(self) -> tuple[float, float, float]:
        return self.current_min_spacing, self.current_max_spacing, self.current_trade_amount

    def _restore(self, values: tuple[float, float, float]) -> None:
        self.current_min_spacing, self.current_max_spacing, self.current_trade_amount = values

    def to_dict(self) -> dict[str, Any]:
        def ts(value: Optional[datetime]) -> Optional[int]:
            return int(value.timestamp()) if value is not None else None

        return {
            'current_min_spacing': self.current_min_spacing,
            'current_max_spacing': self.current_max_spacing,
            'current_trade_amount': self.current_trade_amount,
            'last_optimization_time': ts(self.last_optimization_time),
            'optimization_count': self.optimization_count,
            'performance_window': list(self.performance_window),
            'checkpoints': [
                {
                    'min_spacing': cp.min_spacing,
                    'max_spacing': cp.max_spacing,
                    'trade_amount': cp.trade_amount,
                    'checkpoint_time': ts(cp.checkpoint_time),
                    'performance_before': cp.performance_before,
                    'reason': cp.reason,
                }
                for cp in self.checkpoints
            ],
            'rollback_threshold': self.rollback_threshold,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DynamicGridParams":
        """
        Rebuild from to_dict() output.

        Raises:
            KeyError, TypeError, ValueError: If the data is malformed
        """
        def dt(value: Optional[int]) -> Optional[datetime]:
            return datetime.fromtimestamp(value, UTC) if value is not None else None

        return cls(
            current_min_spacing=float(data['current_min_spacing']),
            current_max_spacing=float(data['current_max_spacing']),
            current_trade_amount=float(data['current_trade_amount']),
            last_optimization_time=dt(data.get('last_optimization_time')),
            optimization_count=int(data.get('optimization_count', 0)),
            performance_window=[float(v) for v in data.get('performance_window', [])],
            checkpoints=[
                ParameterCheckpoint(
                    min_spacing=float(cp['min_spacing']),
                    max_spacing=float(cp['max_spacing']),
                    trade_amount=float(cp['trade_amount']),
                    checkpoint_time=dt(cp['checkpoint_time']),
                    performance_before=float(cp['performance_before']),
                    reason=str(cp['reason']),
                )
                for cp in data.get('checkpoints', [])
            ],
            rollback_threshold=float(data.get('rollback_threshold', DEFAULT_ROLLBACK_THRESHOLD)),
        )


def validate_tuning(dynamic: DynamicGridParams, params: GridParameters) -> None:
    """
    Check tuned values stay within the configured envelope.

    Raises:
        RebalanceError: If the spacing band is inverted or out of bounds,
            or the trade amount is outside (0, 20% of capital]
    """
    min_spacing, max_spacing = dynamic.current_min_spacing, dynamic.current_max_spacing
    if not 0 < min_spacing < max_spacing:
        raise RebalanceError(f"spacing band {min_spacing:.6f}-{max_spacing:.6f} is not ordered")
    if min_spacing < params.min_grid_spacing * 0.5:
        raise RebalanceError(f"min spacing {min_spacing:.6f} below half of {params.min_grid_spacing}")
    if max_spacing > params.max_grid_spacing:
        raise RebalanceError(f"max spacing {max_spacing:.6f} above {params.max_grid_spacing}")
    amount = dynamic.current_trade_amount
    if not 0 < amount <= params.total_capital * 0.2:
        raise RebalanceError(f"trade amount {amount:.2f} outside (0, {params.total_capital * 0.2:.2f}]")


def auto_optimize(
    dynamic: DynamicGridParams,
    params: GridParameters,
    profits: Sequence[float],
    volatility: float,
    now: datetime,
) -> bool:
    """
    Run one tuning pass.

    Skips (False) within OPTIMIZATION_INTERVAL of the last pass or with
    fewer than MIN_RECORDS trades. When no adjustment applies, a due
    rollback is performed instead.

    Args:
        dynamic: Tuned values, updated in place
        params: Configured envelope
        profits: Trade profits, oldest first
        volatility: Market volatility of the price history
        now: Current event time

    Returns:
        True if values were changed or rolled back

    Raises:
        RebalanceError: If the new values fail validation; they are
            reverted before raising
    """
    if dynamic.last_optimization_time is not None and now - dynamic.last_optimization_time < OPTIMIZATION_INTERVAL:
        return False
    if len(profits) < MIN_RECORDS:
        logger.info('Not enough trades (%d) to tune parameters', len(profits))
        return False

    score = performance_score(profits)
    before = dynamic._snapshot()
    min_spacing, max_spacing, amount = before

    if score >= GOOD_SCORE:
        reason = 'aggressive'
        new_min = min(min_spacing * 1.03, params.max_grid_spacing * 0.8)
        new_max = min(max_spacing * 1.03, params.max_grid_spacing)
        new_amount = min(amount * 1.02, params.total_capital * 0.1)
    elif score <= POOR_SCORE:
        reason = 'conservative'
        new_min = max(min_spacing * 0.97, params.min_grid_spacing * 0.5)
        new_max = max(max_spacing * 0.97, new_min * 1.5)
        new_amount = max(amount * 0.95, params.trade_amount * 0.3)
    elif volatility > HIGH_VOLATILITY:
        reason = 'high volatility'
        new_min = min(min_spacing * 1.01, params.max_grid_spacing * 0.8)
        new_max = min(max_spacing * 1.01, params.max_grid_spacing)
        new_amount = amount
    elif volatility < LOW_VOLATILITY:
        reason = 'low volatility'
        new_min = max(min_spacing * 0.99, params.min_grid_spacing * 0.8)
        new_max = max(max_spacing * 0.99, new_min * 1.5)
        new_amount = amount
    else:
        checkpoint = dynamic.should_rollback(score, now)
        if checkpoint is not None:
            dynamic.rollback_to_checkpoint(checkpoint)
            return True
        logger.info('Score %.1f, parameters unchanged', score)
        return False

    dynamic.current_min_spacing = new_min
    dynamic.current_max_spacing = new_max
    dynamic.current_trade_amount = new_amount
    try:
        validate_tuning(dynamic, params)
    except RebalanceError:
        dynamic._restore(before)
        raise

    dynamic.checkpoints.append(ParameterCheckpoint(
        min_spacing=min_spacing,
        max_spacing=max_spacing,
        trade_amount=amount,
        checkpoint_time=now,
        performance_before=score,
        reason=reason,
    ))
    if len(dynamic.checkpoints) > MAX_CHECKPOINTS:
        dynamic.checkpoints.pop(0)

    dynamic.last_optimization_time = now
    dynamic.optimization_count += 1
    dynamic.performance_window.append(score)
    if len(dynamic.performance_window) > MAX_PERFORMANCE_WINDOW:
        dynamic.performance_window.pop(0)

    logger.info(
        'Tuning #%d (%s, score %.1f): spacing %.6f-%.6f -> %.6f-%.6f, amount %.2f -> %.2f',
        dynamic.optimization_count, reason, score,
        min_spacing, max_spacing, new_min, new_max, amount, new_amount,
    )
    return True
