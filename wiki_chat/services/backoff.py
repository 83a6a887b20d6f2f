"""Retry/backoff controller for remote calls.

Policy (which errors are worth another attempt) is passed in by the caller;
this module only decides how attempts are spaced and when to stop.
"""

import asyncio
import random
from collections.abc import Awaitable, Callable
from typing import TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
)
from tenacity.wait import wait_base

from wiki_chat.core.settings import RetryConfig

logger = structlog.get_logger()

T = TypeVar("T")


class ExponentialJitterWait(wait_base):
    """``min(base * 2^n, max_delay)`` plus uniform jitter, kept in ``[0, max_delay]``.

    ``n`` is the zero-based index of the retry being scheduled.
    """

    def __init__(
        self,
        base_delay: float,
        max_delay: float,
        jitter: float,
        rng: random.Random | None = None,
    ) -> None:
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter = jitter
        self._rng = rng or random.Random()

    def delay_for(self, retry_index: int) -> float:
        delay = min(self.base_delay * 2**retry_index, self.max_delay)
        if self.jitter:
            delay += self._rng.uniform(-self.jitter, self.jitter)
        return min(max(delay, 0.0), self.max_delay)

    def __call__(self, retry_state: RetryCallState) -> float:
        return self.delay_for(retry_state.attempt_number - 1)


class BackoffController:
    """Runs an async operation with exponential backoff.

    Args:
        base_delay: Delay before the first retry, in seconds.
        max_delay: Cap for any single delay, in seconds.
        max_attempts: Total attempts including the first one.
        jitter: Maximum random offset added to or removed from each delay.
        sleep: Awaitable sleep; cancelling it aborts the whole operation.
        rng: Random source for jitter.
    """

    def __init__(
        self,
        base_delay: float = 1.0,
        max_delay: float = 32.0,
        max_attempts: int = 5,
        jitter: float = 0.25,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.wait = ExponentialJitterWait(base_delay, max_delay, jitter, rng)
        self._sleep = sleep

    @classmethod
    def from_config(cls, config: RetryConfig) -> "BackoffController":
        return cls(
            base_delay=config.base_delay,
            max_delay=config.max_delay,
            max_attempts=config.max_attempts,
            jitter=config.jitter,
        )

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        is_retryable: Callable[[Exception], bool],
        operation_name: str = "remote_call",
    ) -> T:
        """Await ``operation`` until it succeeds, fails for good, or attempts run out.

        Errors rejected by ``is_retryable`` propagate on first occurrence. On
        exhaustion the last error is re-raised. Cancellation is never retried.
        """

        def should_retry(exc: BaseException) -> bool:
            return isinstance(exc, Exception) and is_retryable(exc)

        def log_retry(retry_state: RetryCallState) -> None:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            logger.warning(
                "Retrying after failure",
                operation=operation_name,
                attempt=retry_state.attempt_number,
                max_attempts=self.max_attempts,
                delay=round(retry_state.next_action.sleep, 3)
                if retry_state.next_action
                else None,
                code=getattr(exc, "code", type(exc).__name__),
                status=getattr(exc, "status_code", None),
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self.wait,
            retry=retry_if_exception(should_retry),
            sleep=self._sleep,
            before_sleep=log_retry,
            reraise=True,
        )
        return await retrying(operation)
