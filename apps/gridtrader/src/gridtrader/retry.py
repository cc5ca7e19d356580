"""Retry of failed intent execution driven by the error taxonomy.

Each failure carries a GridStrategyError whose RetryStrategy decides how
many further attempts are made and how long to wait before each one.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

from gridrisk import CancelIntent, PlaceLimitIntent, RetryStrategy

from gridtrader.executor import CancelResult, OrderResult


logger = logging.getLogger(__name__)

Intent = PlaceLimitIntent | CancelIntent
Result = OrderResult | CancelResult


@dataclass
class RetryOutcome:
    """Final result of an intent and how many attempts it took."""

    result: Result
    attempts: int


class RetryPolicy:
    """Re-executes failed intents according to their error's retry strategy.

    When disabled, every intent is executed exactly once. A failure
    without an error (a refused cancel) is never retried.

    Example:
        policy = RetryPolicy(enabled=True)
        outcome = await policy.run(executor.execute_place, intent)
        if not outcome.result.success:
            ...
    """

    def __init__(
        self,
        enabled: bool = False,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize retry policy.

        Args:
            enabled: Whether failed calls are retried at all.
            sleep: Awaitable delay function (injectable for tests).
        """
        self._enabled = enabled
        self._sleep = sleep

    @property
    def enabled(self) -> bool:
        return self._enabled

    async def run(self, execute: Callable[[Intent], Awaitable[Result]], intent: Intent) -> RetryOutcome:
        """Execute `intent`, retrying while its error's strategy allows."""
        attempts = 1
        result = await execute(intent)

        while self._enabled and not result.success and result.error is not None:
            strategy = result.error.retry_strategy
            if strategy is RetryStrategy.NO_RETRY:
                break
            if attempts > strategy.max_retries:
                logger.warning(
                    f"Retry exhausted: {type(intent).__name__} after {attempts} attempts. "
                    f"Last error: {result.error}"
                )
                break

            delay = strategy.delay(attempts)
            logger.info(
                f"Retrying {type(intent).__name__} in {delay:.1f}s "
                f"(attempt {attempts + 1}/{strategy.max_retries + 1}): {result.error}"
            )
            if delay > 0:
                await self._sleep(delay)

            attempts += 1
            result = await execute(intent)

        return RetryOutcome(result=result, attempts=attempts)
