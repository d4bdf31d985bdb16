"""Bounded retry with exponential backoff for provider operations.

Built on tenacity. Only errors flagged ``retryable`` (timeouts, connection
failures, provider 5xx, 429 and provider-side balance shortfalls) are
retried; everything else propagates on the first failure.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
)

from app.core.config import Settings
from app.core.exceptions import ProviderRateLimitError, RetryExhaustedError
from app.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def is_retryable(exc: BaseException) -> bool:
    return bool(getattr(exc, "retryable", False))


class BackoffWait:
    """tenacity wait strategy: ``base * 2**n`` capped, honouring Retry-After."""

    def __init__(self, base: float, cap: float) -> None:
        self.base = base
        self.cap = cap

    def __call__(self, retry_state: RetryCallState) -> float:
        delay = self.base * (2 ** (retry_state.attempt_number - 1))
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        if isinstance(exc, ProviderRateLimitError) and exc.retry_after:
            delay = max(delay, exc.retry_after)
        return min(delay, self.cap)


class RetryEngine:
    """Run an async operation up to ``max_attempts`` times."""

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 2.0,
        max_delay: float = 30.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> "RetryEngine":
        return cls(
            max_attempts=settings.RETRY_MAX_ATTEMPTS,
            base_delay=settings.RETRY_BASE_DELAY_SECONDS,
            max_delay=settings.RETRY_MAX_DELAY_SECONDS,
            **kwargs,
        )

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=BackoffWait(self.base_delay, self.max_delay),
            retry=retry_if_exception(is_retryable),
            sleep=self._sleep,
            before_sleep=before_sleep_log(logger, logging.WARNING),
        )

    async def run(self, operation: Callable[[], Awaitable[T]], description: str) -> T:
        """Await ``operation()`` with retries.

        Raises:
            RetryExhaustedError: every attempt failed with a retryable error
            Exception: the first non-retryable error, unchanged
        """
        try:
            async for attempt in self._retrying():
                with attempt:
                    return await operation()
        except RetryError as exc:
            last_error = exc.last_attempt.exception()
            attempts = exc.last_attempt.attempt_number
            logger.error("%s gave up after %s attempts: %s", description, attempts, last_error)
            raise RetryExhaustedError(description, attempts, last_error) from last_error
