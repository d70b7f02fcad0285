"""Retry and call-logging wrappers for external calls."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

logger = structlog.get_logger()

T = TypeVar("T")


def is_network_error(error: BaseException) -> bool:
    """Connection-level failures: refused, reset, DNS, protocol."""
    return isinstance(error, (httpx.TransportError, ConnectionError)) and not is_timeout_error(error)


def is_timeout_error(error: BaseException) -> bool:
    return isinstance(error, (TimeoutError, httpx.TimeoutException))


def is_server_error(error: BaseException) -> bool:
    """HTTP 5xx responses."""
    return isinstance(error, httpx.HTTPStatusError) and error.response.status_code >= 500


def is_transient_error(error: BaseException) -> bool:
    """Errors worth retrying. Client errors (4xx) and programming errors are not."""
    return is_network_error(error) or is_timeout_error(error) or is_server_error(error)


@dataclass
class RetryPolicy:
    """
    Bounded exponential backoff settings.

    The delay before attempt ``n + 1`` is
    ``min(initial_delay * backoff_factor ** (n - 1), max_delay)``.
    """

    max_attempts: int = 3
    initial_delay: float = 0.5
    max_delay: float = 10.0
    backoff_factor: float = 2.0
    timeout: float | None = None  # per attempt, seconds
    should_retry: Callable[[BaseException], bool] = field(default=is_transient_error)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValueError("retry delays must be non-negative")
        if self.backoff_factor < 1:
            raise ValueError("backoff_factor must be >= 1")

    def delay_for(self, attempt: int) -> float:
        """Delay slept after the given (1-based) failed attempt."""
        return min(self.initial_delay * self.backoff_factor ** (attempt - 1), self.max_delay)


def _log_before_sleep(log: Any, name: str, policy: RetryPolicy) -> Callable[[RetryCallState], None]:
    def before_sleep(state: RetryCallState) -> None:
        error = state.outcome.exception() if state.outcome else None
        log.warning(
            "retry_attempt",
            operation=name,
            attempt=state.attempt_number,
            max_attempts=policy.max_attempts,
            delay=state.next_action.sleep if state.next_action else None,
            error=str(error),
            error_type=type(error).__name__,
        )

    return before_sleep


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    name: str = "operation",
    log: Any = None,
) -> T:
    """
    Run ``operation`` until it succeeds, fails with a non-retryable error,
    or ``policy.max_attempts`` is reached.

    The last exception is re-raised unchanged. Each attempt is bounded by
    ``policy.timeout`` when set.

    Args:
        operation: Zero-argument coroutine factory, called once per attempt
        policy: Backoff settings and retry predicate
        name: Operation name used in log events
        log: Bound logger; defaults to the module logger

    Returns:
        The operation's result
    """
    log = log or logger

    async def attempt() -> T:
        if policy.timeout is None:
            return await operation()
        return await asyncio.wait_for(operation(), timeout=policy.timeout)

    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=wait_exponential(
            multiplier=policy.initial_delay,
            exp_base=policy.backoff_factor,
            max=policy.max_delay,
        ),
        retry=retry_if_exception(policy.should_retry),
        before_sleep=_log_before_sleep(log, name, policy),
        reraise=True,
    )
    return await retrying(attempt)


async def with_logging(
    operation: Callable[[], Awaitable[T]],
    log: Any,
    name: str,
    **fields: Any,
) -> T:
    """Log the call, its outcome and its duration in milliseconds."""
    log.debug("external_call_started", operation=name, **fields)
    start = time.perf_counter()
    try:
        result = await operation()
    except Exception as e:
        log.warning(
            "external_call_failed",
            operation=name,
            duration_ms=round((time.perf_counter() - start) * 1000, 2),
            error=str(e),
            error_type=type(e).__name__,
            **fields,
        )
        raise
    log.debug(
        "external_call_succeeded",
        operation=name,
        duration_ms=round((time.perf_counter() - start) * 1000, 2),
        **fields,
    )
    return result
