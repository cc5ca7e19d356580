"""Tests for gridtrader retry policy."""

from unittest.mock import AsyncMock

import pytest

from gridrisk import ConfigError, NetworkError, OrderError

from gridtrader.executor import CancelResult, OrderResult
from gridtrader.retry import RetryPolicy


@pytest.fixture
def sleep():
    return AsyncMock()


def failing(error):
    return OrderResult(success=False, error=error)


class TestRetryPolicy:
    """Tests for RetryPolicy.run."""

    @pytest.mark.asyncio
    async def test_success_first_try(self, sleep, place_intent):
        execute = AsyncMock(return_value=OrderResult(success=True, order_id="1"))
        outcome = await RetryPolicy(enabled=True, sleep=sleep).run(execute, place_intent)

        assert outcome.result.success
        assert outcome.attempts == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_disabled_runs_once(self, sleep, place_intent):
        execute = AsyncMock(return_value=failing(NetworkError("down")))
        outcome = await RetryPolicy(enabled=False, sleep=sleep).run(execute, place_intent)

        assert not outcome.result.success
        assert outcome.attempts == 1
        execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_network_error_backs_off_exponentially(self, sleep, place_intent):
        execute = AsyncMock(side_effect=[
            failing(NetworkError("down")),
            failing(NetworkError("down")),
            OrderResult(success=True, order_id="7"),
        ])
        outcome = await RetryPolicy(enabled=True, sleep=sleep).run(execute, place_intent)

        assert outcome.result.order_id == "7"
        assert outcome.attempts == 3
        assert [c.args[0] for c in sleep.await_args_list] == [2.0, 4.0]

    @pytest.mark.asyncio
    async def test_order_error_exhausts_linear_backoff(self, sleep, place_intent):
        execute = AsyncMock(return_value=failing(OrderError("rejected")))
        outcome = await RetryPolicy(enabled=True, sleep=sleep).run(execute, place_intent)

        assert not outcome.result.success
        assert outcome.attempts == 6
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0, 3.0, 4.0, 5.0]

    @pytest.mark.asyncio
    async def test_no_retry_kind(self, sleep, place_intent):
        execute = AsyncMock(return_value=failing(ConfigError("bad")))
        outcome = await RetryPolicy(enabled=True, sleep=sleep).run(execute, place_intent)

        assert outcome.attempts == 1

    @pytest.mark.asyncio
    async def test_refused_cancel_not_retried(self, sleep, place_intent):
        execute = AsyncMock(return_value=CancelResult(success=False))
        outcome = await RetryPolicy(enabled=True, sleep=sleep).run(execute, place_intent)

        assert outcome.attempts == 1
