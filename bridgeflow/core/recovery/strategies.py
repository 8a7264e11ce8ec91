"""
Retry Strategies

Bounded retry with exponential backoff for transient RPC and provider
failures. Anything outside ``retry_on`` propagates immediately.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Coroutine, Optional, Tuple, Type, TypeVar

from .errors import RecoverableError, RpcTimeout

T = TypeVar("T")

Sleeper = Callable[[float], Awaitable[None]]


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_attempts: int = 3
    initial_delay_seconds: float = 0.5
    max_delay_seconds: float = 10.0
    exponential_base: float = 2.0
    jitter: bool = True
    jitter_factor: float = 0.1

    def get_delay(self, attempt: int) -> float:
        """Calculate delay for a given attempt number (0-based)."""
        delay = min(
            self.initial_delay_seconds * (self.exponential_base ** attempt),
            self.max_delay_seconds,
        )
        if self.jitter:
            jitter_range = delay * self.jitter_factor
            delay += random.uniform(-jitter_range, jitter_range)
        return max(delay, 0)


class RetryStrategy:
    """
    Retries an async operation on selected error types.

    The last error is re-raised once attempts are exhausted so callers see
    the taxonomy error (e.g. ``RpcTimeout``) rather than a wrapper.
    """

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        retry_on: Tuple[Type[BaseException], ...] = (RpcTimeout,),
        sleep: Sleeper = asyncio.sleep,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or RetryConfig()
        self.retry_on = retry_on
        self._sleep = sleep
        self.logger = logger or logging.getLogger(__name__)

    async def execute(
        self,
        operation: Callable[[], Coroutine[Any, Any, T]],
        operation_name: str = "operation",
    ) -> T:
        last_error: Optional[BaseException] = None

        for attempt in range(self.config.max_attempts):
            try:
                return await operation()
            except self.retry_on as e:
                last_error = e
                if not self.should_retry(e, attempt):
                    break
                delay = self._get_delay(e, attempt)
                self.logger.warning(
                    f"{operation_name} attempt {attempt + 1}/{self.config.max_attempts} "
                    f"failed: {e}. Retrying in {delay:.1f}s"
                )
                await self._sleep(delay)

        self.logger.error(f"{operation_name} failed after {self.config.max_attempts} attempts: {last_error}")
        raise last_error or RuntimeError(f"{operation_name} failed without raising an error")

    def should_retry(self, error: BaseException, attempt: int) -> bool:
        return attempt < self.config.max_attempts - 1

    def _get_delay(self, error: BaseException, attempt: int) -> float:
        delay = self.config.get_delay(attempt)
        if isinstance(error, RecoverableError) and error.retry_after:
            # Honour a server-provided hint but never exceed the backoff cap
            delay = min(max(delay, error.retry_after), self.config.max_delay_seconds)
        return delay


class ExponentialBackoffStrategy(RetryStrategy):
    """Retry strategy with exponential backoff and jitter."""

    def __init__(
        self,
        max_attempts: int = 3,
        initial_delay: float = 0.5,
        max_delay: float = 10.0,
        exponential_base: float = 2.0,
        retry_on: Tuple[Type[BaseException], ...] = (RpcTimeout,),
        sleep: Sleeper = asyncio.sleep,
        logger: Optional[logging.Logger] = None,
    ):
        config = RetryConfig(
            max_attempts=max_attempts,
            initial_delay_seconds=initial_delay,
            max_delay_seconds=max_delay,
            exponential_base=exponential_base,
            jitter=True,
        )
        super().__init__(config, retry_on=retry_on, sleep=sleep, logger=logger)
