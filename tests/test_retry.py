"""Tests for the write retry policy."""

from unittest.mock import AsyncMock

import pytest

from rm_sync.rm import (
    RMAuthError,
    RMNetworkError,
    RMNotFoundError,
    RMRateLimitError,
    RMValidationError,
)
from rm_sync.sync.retry import (
    MAX_RETRIES_EXCEEDED,
    RATE_LIMIT_EXCEEDED,
    RetryConfig,
    RetryExhaustedError,
    RetryPolicy,
    rate_limit_delay,
)


def _delays(sleep: AsyncMock) -> list[float]:
    return [call.args[0] for call in sleep.await_args_list]


class TestRateLimitDelay:
    """Test backoff computation."""

    def test_doubles_per_attempt(self) -> None:
        """Test exponential backoff."""
        assert [rate_limit_delay(n, 2.0) for n in (1, 2, 3)] == [2.0, 4.0, 8.0]

    def test_larger_retry_after_wins(self) -> None:
        """Test that a larger server hint replaces the backoff."""
        assert rate_limit_delay(1, 2.0, retry_after=10.0) == 10.0

    def test_smaller_retry_after_ignored(self) -> None:
        """Test that a smaller server hint does not shorten the backoff."""
        assert rate_limit_delay(2, 2.0, retry_after=1.0) == 4.0


class TestRetryPolicy:
    """Test RetryPolicy.run."""

    @pytest.mark.asyncio
    async def test_success_first_try(self, fake_sleep: AsyncMock) -> None:
        """Test that a successful call is not retried."""
        func = AsyncMock(return_value="ok")
        policy = RetryPolicy(sleep=fake_sleep)

        assert await policy.run(func) == "ok"
        assert func.await_count == 1
        fake_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rate_limit_then_success(self, fake_sleep: AsyncMock) -> None:
        """Test two rate limits followed by success."""
        func = AsyncMock(
            side_effect=[RMRateLimitError("slow down"), RMRateLimitError("slow down"), "ok"]
        )
        policy = RetryPolicy(sleep=fake_sleep)

        assert await policy.run(func) == "ok"
        assert func.await_count == 3
        assert _delays(fake_sleep) == [2.0, 4.0]

    @pytest.mark.asyncio
    async def test_rate_limit_exhausted(self, fake_sleep: AsyncMock) -> None:
        """Test three rate limits in a row."""
        func = AsyncMock(side_effect=RMRateLimitError("slow down"))
        policy = RetryPolicy(sleep=fake_sleep)

        with pytest.raises(RetryExhaustedError) as exc_info:
            await policy.run(func)

        assert exc_info.value.message == RATE_LIMIT_EXCEEDED
        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.last_error, RMRateLimitError)
        assert func.await_count == 3
        assert _delays(fake_sleep) == [2.0, 4.0]

    @pytest.mark.asyncio
    async def test_rate_limit_honours_retry_after(self, fake_sleep: AsyncMock) -> None:
        """Test that the server hint extends the wait."""
        func = AsyncMock(side_effect=[RMRateLimitError("slow down", retry_after=30.0), "ok"])
        policy = RetryPolicy(sleep=fake_sleep)

        await policy.run(func)

        assert _delays(fake_sleep) == [30.0]

    @pytest.mark.parametrize(
        "error",
        [
            RMAuthError("bad token"),
            RMValidationError("bad payload"),
            RMNotFoundError("gone"),
        ],
    )
    @pytest.mark.asyncio
    async def test_non_retryable_errors_raise_immediately(
        self, error: Exception, fake_sleep: AsyncMock
    ) -> None:
        """Test that auth, validation and not-found are not retried."""
        func = AsyncMock(side_effect=error)
        policy = RetryPolicy(sleep=fake_sleep)

        with pytest.raises(type(error)):
            await policy.run(func)

        assert func.await_count == 1
        fake_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_network_error_retried_with_fixed_delay(self, fake_sleep: AsyncMock) -> None:
        """Test fixed delay for generic failures."""
        func = AsyncMock(side_effect=[RMNetworkError("boom"), RMNetworkError("boom"), "ok"])
        policy = RetryPolicy(sleep=fake_sleep)

        assert await policy.run(func) == "ok"
        assert _delays(fake_sleep) == [2.0, 2.0]

    @pytest.mark.asyncio
    async def test_generic_errors_exhausted(self, fake_sleep: AsyncMock) -> None:
        """Test exhaustion message for generic failures."""
        func = AsyncMock(side_effect=RMNetworkError("server down"))
        policy = RetryPolicy(sleep=fake_sleep)

        with pytest.raises(RetryExhaustedError) as exc_info:
            await policy.run(func)

        assert exc_info.value.message == f"{MAX_RETRIES_EXCEEDED}: server down"
        assert func.await_count == 3

    @pytest.mark.asyncio
    async def test_custom_config(self, fake_sleep: AsyncMock) -> None:
        """Test a policy with a different attempt budget."""
        func = AsyncMock(side_effect=RMRateLimitError("slow down"))
        policy = RetryPolicy(
            RetryConfig(max_attempts=4, rate_limit_base_delay=1.0), sleep=fake_sleep
        )

        with pytest.raises(RetryExhaustedError):
            await policy.run(func)

        assert func.await_count == 4
        assert _delays(fake_sleep) == [1.0, 2.0, 4.0]
