"""Kind-specific retry for single RM write calls."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from rm_sync.rm.errors import (
    RMAuthError,
    RMNotFoundError,
    RMRateLimitError,
    RMValidationError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]

RATE_LIMIT_EXCEEDED = "rate limit exceeded"
MAX_RETRIES_EXCEEDED = "max retries exceeded"


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_attempts: int = 3
    rate_limit_base_delay: float = 2.0  # seconds, doubled per attempt
    retry_delay: float = 2.0  # seconds, fixed


class RetryExhaustedError(Exception):
    """All attempts for a write failed with retryable errors."""

    def __init__(self, message: str, attempts: int, last_error: BaseException | None = None):
        super().__init__(message)
        self.message = message
        self.attempts = attempts
        self.last_error = last_error


def rate_limit_delay(attempt: int, base_delay: float, retry_after: float | None = None) -> float:
    """Backoff before the attempt following `attempt` (1-based).

    Args:
        attempt: The attempt that just failed.
        base_delay: Delay after the first failure.
        retry_after: Server hint in seconds, if any.

    Returns:
        Delay in seconds: base, 2*base, 4*base, ... or the hint if larger.
    """
    delay = base_delay * (2 ** (attempt - 1))
    if retry_after is not None:
        delay = max(delay, retry_after)
    return delay


class RetryPolicy:
    """Wraps one create-or-update call.

    - Rate limits back off exponentially.
    - Auth and validation errors fail immediately.
    - Not-found errors pass through untouched so the caller can recover.
    - Anything else is retried after a fixed delay.
    """

    def __init__(self, config: RetryConfig | None = None, sleep: Sleep = asyncio.sleep) -> None:
        self.config = config or RetryConfig()
        self._sleep = sleep

    async def run(self, func: Callable[[], Awaitable[T]], description: str = "RM write") -> T:
        """Execute `func` under the policy.

        Args:
            func: Zero-argument coroutine factory performing the call.
            description: Label used in log messages.

        Returns:
            Whatever `func` returns on its first successful attempt.

        Raises:
            RMAuthError: Immediately, not retried.
            RMValidationError: Immediately, not retried.
            RMNotFoundError: Immediately, left to the caller.
            RetryExhaustedError: When every attempt failed.
        """
        attempts = self.config.max_attempts
        last_error: Exception | None = None

        for attempt in range(1, attempts + 1):
            try:
                return await func()
            except (RMAuthError, RMValidationError, RMNotFoundError):
                raise
            except RMRateLimitError as e:
                last_error = e
                if attempt >= attempts:
                    raise RetryExhaustedError(RATE_LIMIT_EXCEEDED, attempt, e) from e
                delay = rate_limit_delay(attempt, self.config.rate_limit_base_delay, e.retry_after)
            except Exception as e:
                last_error = e
                if attempt >= attempts:
                    raise RetryExhaustedError(
                        f"{MAX_RETRIES_EXCEEDED}: {e}", attempt, e
                    ) from e
                delay = self.config.retry_delay

            logger.warning(
                f"{description} attempt {attempt}/{attempts} failed: {last_error}. "
                f"Retrying in {delay:.1f}s..."
            )
            await self._sleep(delay)

        # max_attempts >= 1, so the loop always returns or raises
        raise RetryExhaustedError(MAX_RETRIES_EXCEEDED, attempts, last_error)
