"""Retry with exponential backoff.

Runs an async operation until it succeeds, the retry predicate
rejects the failure, or the attempt budget is spent. The final
error is re-raised unchanged so callers can inspect its type.
"""

import asyncio
import logging
from dataclasses import dataclass
from functools import wraps
from typing import Any, Awaitable, Callable, Optional, TypeVar

from ..errors import (
    HttpStatusError,
    NetworkError,
    RetryCancelledError,
    WebhookTimeoutError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

RetryPredicate = Callable[[BaseException, int], bool]
RetryHook = Callable[[BaseException, int, int], None]
SleepFunc = Callable[[float], Awaitable[None]]


def _always_retry(error: BaseException, attempt: int) -> bool:
    return True


@dataclass
class RetryPolicy:
    """Configuration for retry_async."""

    max_attempts: int = 3
    initial_delay_ms: int = 1000
    max_delay_ms: int = 10000
    backoff_multiplier: float = 2.0
    exponential_backoff: bool = True
    should_retry: RetryPredicate = _always_retry
    on_retry: Optional[RetryHook] = None

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.initial_delay_ms < 0 or self.max_delay_ms < 0:
            raise ValueError("delays must be non-negative")
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be at least 1")

    @classmethod
    def network_only(cls, **overrides: Any) -> "RetryPolicy":
        """Retry connection failures and timeouts, nothing else."""

        def predicate(error: BaseException, attempt: int) -> bool:
            return isinstance(error, (NetworkError, WebhookTimeoutError))

        return cls(should_retry=predicate, **overrides)

    @classmethod
    def server_errors(cls, **overrides: Any) -> "RetryPolicy":
        """Retry network failures, timeouts, 5xx and 429 responses."""

        def predicate(error: BaseException, attempt: int) -> bool:
            if isinstance(error, (NetworkError, WebhookTimeoutError)):
                return True
            if isinstance(error, HttpStatusError):
                return error.is_server_error or error.is_rate_limited
            return False

        return cls(should_retry=predicate, **overrides)


def compute_delay_ms(policy: RetryPolicy, attempt: int) -> int:
    """Delay to wait after a failed attempt (attempt is 1-based)."""
    if policy.exponential_backoff:
        delay = policy.initial_delay_ms * policy.backoff_multiplier ** (attempt - 1)
    else:
        delay = policy.initial_delay_ms
    return int(min(delay, policy.max_delay_ms))


async def _cancellable_sleep(
    seconds: float,
    cancel_event: Optional[asyncio.Event],
    sleep: SleepFunc,
) -> bool:
    """Sleep for the given time. Returns True if cancelled."""
    if cancel_event is None:
        await sleep(seconds)
        return False
    if cancel_event.is_set():
        return True
    try:
        await asyncio.wait_for(cancel_event.wait(), timeout=seconds)
    except asyncio.TimeoutError:
        return False
    return True


async def retry_async(
    fn: Callable[[], Awaitable[T]],
    policy: Optional[RetryPolicy] = None,
    *,
    sleep: Optional[SleepFunc] = None,
    cancel_event: Optional[asyncio.Event] = None,
) -> T:
    """Run fn, retrying failures according to policy.

    Args:
        fn: Zero-argument coroutine factory.
        policy: Retry configuration (defaults to RetryPolicy()).
        sleep: Sleep implementation, replaceable in tests.
        cancel_event: When set during a backoff wait, retrying stops
            and RetryCancelledError is raised.

    Returns:
        The value returned by the first successful attempt.

    Raises:
        The last error raised by fn, or RetryCancelledError.
    """
    policy = policy or RetryPolicy()
    sleep = sleep or asyncio.sleep

    attempt = 1
    while True:
        try:
            return await fn()
        except Exception as error:
            if attempt >= policy.max_attempts or not policy.should_retry(error, attempt):
                raise

            delay_ms = compute_delay_ms(policy, attempt)
            if policy.on_retry is not None:
                policy.on_retry(error, attempt, delay_ms)
            logger.debug(
                f"Attempt {attempt}/{policy.max_attempts} failed ({error}), "
                f"retrying in {delay_ms}ms"
            )

            if await _cancellable_sleep(delay_ms / 1000, cancel_event, sleep):
                raise RetryCancelledError(attempt) from error
            attempt += 1


def retryable(policy: Optional[RetryPolicy] = None):
    """Decorator applying retry_async to an async function.

    Example:
        >>> @retryable(RetryPolicy.network_only(max_attempts=5))
        ... async def fetch_status() -> dict:
        ...     ...
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            return await retry_async(lambda: func(*args, **kwargs), policy)

        return wrapper

    return decorator
