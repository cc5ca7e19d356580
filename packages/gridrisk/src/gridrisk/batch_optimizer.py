"""
Self-tuning batch size controller.

Sizes bursts of homogeneous operations (ladder placements) so that the
observed wall time of a batch stays near a target. The controller keeps a
small window of recent batch durations, and after a cooldown shrinks or
grows the batch by a fixed fraction, nudged by the latency trend.

Not thread-safe: callers sharing an instance must serialize access.
"""

import logging
import statistics
import time
from collections import deque
from typing import Callable, Optional

logger = logging.getLogger(__name__)

DEFAULT_COOLDOWN_SECONDS = 30.0
EXTENDED_COOLDOWN_SECONDS = 60.0
MAX_CONSECUTIVE_ADJUSTMENTS = 5
MIN_SAMPLES = 3
MIN_TREND_SAMPLES = 5
DEVIATION_THRESHOLD = 0.2
VARIATION_THRESHOLD = 0.3
TREND_THRESHOLD = 0.1
TREND_NUDGE = 0.05


class BatchTaskOptimizer:
    """
    Adaptive batch sizing from execution latency.

    Example:
        optimizer = BatchTaskOptimizer(initial_batch_size=8, target_execution_time=5.0)

        size = optimizer.optimize_batch_size(len(pending))
        started = time.monotonic()
        ... run `size` operations ...
        optimizer.record_execution_time(time.monotonic() - started)
    """

    def __init__(
        self,
        initial_batch_size: int = 10,
        target_execution_time: float = 5.0,
        min_batch_size: int = 1,
        max_batch_size: int = 200,
        adjustment_factor: float = 0.1,
        window_size: int = 10,
        clock: Optional[Callable[[], float]] = None,
    ):
        """
        Initialize optimizer.

        Args:
            initial_batch_size: Starting optimal batch size
            target_execution_time: Desired seconds per batch
            min_batch_size: Lower bound for the optimal size
            max_batch_size: Upper bound for the optimal size
            adjustment_factor: Fraction the size moves per adjustment
            window_size: Number of recent durations kept
            clock: Monotonic seconds source (defaults to time.monotonic)
        """
        if not 0 < min_batch_size <= max_batch_size:
            raise ValueError(f"Invalid batch size range: {min_batch_size}-{max_batch_size}")
        self._clock = clock or time.monotonic
        self._execution_times: deque[float] = deque(maxlen=window_size)
        self._optimal_batch_size = min(max(initial_batch_size, min_batch_size), max_batch_size)
        self._adjustment_factor = adjustment_factor
        self._min_batch_size = min_batch_size
        self._max_batch_size = max_batch_size
        self._target_execution_time = target_execution_time
        self._consecutive_adjustments = 0
        self._last_adjustment_time = self._clock()
        self._adjustment_cooldown = DEFAULT_COOLDOWN_SECONDS
        # Positive means batches are getting slower
        self._performance_trend = 0.0

    @property
    def optimal_batch_size(self) -> int:
        return self._optimal_batch_size

    @property
    def target_execution_time(self) -> float:
        return self._target_execution_time

    @property
    def performance_trend(self) -> float:
        return self._performance_trend

    @property
    def consecutive_adjustments(self) -> int:
        return self._consecutive_adjustments

    @property
    def adjustment_cooldown(self) -> float:
        return self._adjustment_cooldown

    @property
    def execution_history_count(self) -> int:
        return len(self._execution_times)

    @property
    def batch_size_range(self) -> tuple[int, int]:
        return self._min_batch_size, self._max_batch_size

    @property
    def average_execution_time(self) -> float:
        """Mean of the window, or the target when no samples exist."""
        if not self._execution_times:
            return self._target_execution_time
        return statistics.fmean(self._execution_times)

    def optimize_batch_size(self, task_count: int) -> int:
        """
        Suggest a batch size for `task_count` pending operations.

        Returns task_count unchanged when it does not exceed the minimum.
        Within the cooldown, or with fewer than 3 samples, returns the
        current optimal size capped at task_count.
        """
        if task_count <= self._min_batch_size:
            return task_count

        if self._clock() - self._last_adjustment_time < self._adjustment_cooldown:
            return min(self._optimal_batch_size, task_count)

        if len(self._execution_times) < MIN_SAMPLES:
            return min(self._optimal_batch_size, task_count)

        avg_time = self.average_execution_time
        variation = self._coefficient_of_variation()
        self._update_performance_trend()

        if self._should_adjust(avg_time, variation):
            new_size = self._calculate_new_batch_size(avg_time, task_count)
            if new_size != self._optimal_batch_size:
                logger.info(
                    'Batch size adjusted: %d -> %d (avg %.2fs, target %.2fs)',
                    self._optimal_batch_size, new_size, avg_time, self._target_execution_time,
                )
                self._optimal_batch_size = new_size
                self._last_adjustment_time = self._clock()
                self._consecutive_adjustments += 1

                if self._consecutive_adjustments > MAX_CONSECUTIVE_ADJUSTMENTS:
                    self._adjustment_cooldown = EXTENDED_COOLDOWN_SECONDS
                    logger.info('Too many consecutive adjustments, cooldown raised to %.0fs',
                                EXTENDED_COOLDOWN_SECONDS)
        elif self._consecutive_adjustments > 0:
            self._consecutive_adjustments = 0
            self._adjustment_cooldown = DEFAULT_COOLDOWN_SECONDS

        return min(self._optimal_batch_size, task_count)

    def record_execution_time(self, duration: float) -> None:
        """Append a batch duration in seconds, evicting the oldest past the window size."""
        self._execution_times.append(duration)

        if len(self._execution_times) >= MIN_SAMPLES and len(self._execution_times) % 10 == 0:
            logger.info(
                'Batch stats: avg=%.2fs cv=%.4f size=%d trend=%s',
                self.average_execution_time,
                self._coefficient_of_variation(),
                self._optimal_batch_size,
                self._trend_label(0.0),
            )

    def needs_adjustment(self) -> bool:
        if len(self._execution_times) < MIN_SAMPLES:
            return False
        return self._should_adjust(self.average_execution_time, self._coefficient_of_variation())

    def adjustment_suggestion(self) -> Optional[str]:
        """Human-readable hint for the current window, None when no adjustment is due."""
        if not self.needs_adjustment():
            return None

        avg_time = self.average_execution_time
        target = self._target_execution_time
        if avg_time > target * (1 + DEVIATION_THRESHOLD):
            return (f"Reduce batch size: average execution time ({avg_time:.2f}s) "
                    f"exceeds target ({target:.2f}s) by more than 20%")
        if avg_time < target * (1 - DEVIATION_THRESHOLD):
            return (f"Increase batch size: average execution time ({avg_time:.2f}s) "
                    f"is more than 20% under target ({target:.2f}s)")
        return "Execution time variance is high, watch batch stability"

    def force_adjust_batch_size(self, new_size: int) -> bool:
        """
        Override the optimal size.

        Sizes outside [min, max] are rejected rather than clamped.

        Returns:
            True if the override was applied
        """
        if not self._min_batch_size <= new_size <= self._max_batch_size:
            logger.warning('Forced batch size %d outside range %d-%d, ignored',
                           new_size, self._min_batch_size, self._max_batch_size)
            return False

        old_size = self._optimal_batch_size
        self._optimal_batch_size = new_size
        self._last_adjustment_time = self._clock()
        logger.info('Batch size forced: %d -> %d', old_size, new_size)
        return True

    def set_target_execution_time(self, target: float) -> None:
        self._target_execution_time = target
        logger.info('Target execution time set to %.2fs', target)

    def set_batch_size_range(self, min_size: int, max_size: int) -> bool:
        """Replace the bounds and pull the optimal size inside them; invalid ranges are ignored."""
        if not 0 < min_size <= max_size:
            logger.warning('Invalid batch size range: %d-%d', min_size, max_size)
            return False

        self._min_batch_size = min_size
        self._max_batch_size = max_size
        self._optimal_batch_size = min(max(self._optimal_batch_size, min_size), max_size)
        logger.info('Batch size range set to %d-%d', min_size, max_size)
        return True

    def reset(self) -> None:
        """Clear history and adjustment state; the optimal size is kept."""
        self._execution_times.clear()
        self._consecutive_adjustments = 0
        self._last_adjustment_time = self._clock()
        self._adjustment_cooldown = DEFAULT_COOLDOWN_SECONDS
        self._performance_trend = 0.0
        logger.info('Batch optimizer reset')

    def performance_report(self) -> str:
        if not self._execution_times:
            return "No batch performance data yet"

        avg_time = self.average_execution_time
        if avg_time <= self._target_execution_time:
            efficiency = 100.0
        else:
            efficiency = self._target_execution_time / avg_time * 100.0

        return "\n".join([
            "Batch optimizer report:",
            f"  batch size: {self._optimal_batch_size}",
            f"  target time: {self._target_execution_time:.2f}s",
            f"  average time: {avg_time:.2f}s",
            f"  variation: {self._coefficient_of_variation():.4f}",
            f"  efficiency: {efficiency:.1f}%",
            f"  trend: {self._trend_label(TREND_NUDGE)}",
            f"  consecutive adjustments: {self._consecutive_adjustments}",
            f"  samples: {len(self._execution_times)}",
            f"  adjustment factor: {self._adjustment_factor * 100:.1f}%",
            f"  range: {self._min_batch_size}-{self._max_batch_size}",
            f"  cooldown: {self._adjustment_cooldown:.0f}s",
        ])

    def _coefficient_of_variation(self) -> float:
        """Sample standard deviation over mean; 0 with fewer than 2 samples."""
        if len(self._execution_times) < 2:
            return 0.0
        mean = self.average_execution_time
        if mean == 0:
            return 0.0
        return statistics.stdev(self._execution_times) / mean

    def _update_performance_trend(self) -> None:
        """Relative change of the newer half's mean over the older half's mean."""
        if len(self._execution_times) < MIN_TREND_SAMPLES:
            return

        samples = list(self._execution_times)
        mid = len(samples) // 2
        earlier_avg = statistics.fmean(samples[:mid])
        recent_avg = statistics.fmean(samples[mid:])
        if earlier_avg > 0:
            self._performance_trend = (recent_avg - earlier_avg) / earlier_avg

    def _should_adjust(self, avg_time: float, variation: float) -> bool:
        deviation = abs(avg_time - self._target_execution_time) / self._target_execution_time
        return deviation > DEVIATION_THRESHOLD or variation > VARIATION_THRESHOLD

    def _calculate_new_batch_size(self, avg_time: float, task_count: int) -> int:
        target = self._target_execution_time
        new_size = self._optimal_batch_size

        if avg_time > target * (1 + DEVIATION_THRESHOLD):
            new_size = int(self._optimal_batch_size * (1 - self._adjustment_factor))
        elif avg_time < target * (1 - DEVIATION_THRESHOLD):
            new_size = int(self._optimal_batch_size * (1 + self._adjustment_factor))

        if self._performance_trend > TREND_THRESHOLD:
            new_size = int(new_size * (1 - TREND_NUDGE))
        elif self._performance_trend < -TREND_THRESHOLD:
            new_size = int(new_size * (1 + TREND_NUDGE))

        return min(max(new_size, self._min_batch_size), self._max_batch_size, task_count)

    def _trend_label(self, threshold: float) -> str:
        if self._performance_trend > threshold:
            return "degrading"
        if self._performance_trend < -threshold:
            return "improving"
        return "stable"
