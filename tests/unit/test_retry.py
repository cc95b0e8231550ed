"""Unit tests for the shared retry policy."""

from unittest.mock import AsyncMock

import pytest

from cookie_sentinel.audit.capture.retry import RetryPolicy, retry_with_backoff
from cookie_sentinel.errors import ProbeError


class TestRetryPolicy:

    def test_exponential_delays(self):
        policy = RetryPolicy(max_attempts=4, initial_delay_ms=500)

        assert policy.delay_for(0) == 0.5
        assert policy.delay_for(1) == 1.0
        assert policy.delay_for(2) == 2.0


class TestRetryWithBackoff:

    @pytest.mark.asyncio
    async def test_succeeds_after_failures_within_budget(self):
        operation = AsyncMock(side_effect=[ProbeError("first"), ProbeError("second"), "ok"])
        sleep = AsyncMock()

        result = await retry_with_backoff(
            operation,
            RetryPolicy(max_attempts=3, initial_delay_ms=100),
            retry_on=(ProbeError,),
            sleep=sleep
        )

        assert result == "ok"
        assert operation.await_count == 3
        assert [call.args[0] for call in sleep.await_args_list] == [0.1, 0.2]

    @pytest.mark.asyncio
    async def test_raises_last_error_when_budget_exhausted(self):
        operation = AsyncMock(side_effect=[ProbeError("one"), ProbeError("two"), ProbeError("three")])
        sleep = AsyncMock()

        with pytest.raises(ProbeError, match="three"):
            await retry_with_backoff(
                operation,
                RetryPolicy(max_attempts=3, initial_delay_ms=0),
                retry_on=(ProbeError,),
                sleep=sleep
            )

        assert operation.await_count == 3
        assert sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_unlisted_exception_is_not_retried(self):
        operation = AsyncMock(side_effect=ValueError("bad"))
        sleep = AsyncMock()

        with pytest.raises(ValueError):
            await retry_with_backoff(
                operation,
                RetryPolicy(max_attempts=3),
                retry_on=(ProbeError,),
                sleep=sleep
            )

        assert operation.await_count == 1
        sleep.assert_not_awaited()
