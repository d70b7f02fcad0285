"""Single choke point for every call that leaves the process."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import httpx
import structlog

from agentic_trust_gateway.common.exceptions import (
    CircuitOpenError,
    ExternalServiceError,
    RetryExhaustedError,
    TrustGatewayError,
)
from agentic_trust_gateway.common.retry import RetryPolicy, with_logging, with_retry
from agentic_trust_gateway.observability.metrics import MetricsCollector
from agentic_trust_gateway.resilience.circuit_breaker import CircuitBreakerRegistry

logger = structlog.get_logger()

T = TypeVar("T")


class RetryGateway:
    """
    Wraps external calls with a circuit breaker, bounded retries and logging.

    Composition, outermost first: circuit breaker check, retry with backoff,
    per-attempt logging, per-attempt timeout. Transient failures that survive
    every attempt surface as ``RetryExhaustedError``; an open circuit surfaces
    as ``CircuitOpenError``. Both are ``ExternalServiceError`` and map to
    SERVICE_UNAVAILABLE.

    Example:
        ```python
        gateway = RetryGateway(RetryPolicy(max_attempts=3, timeout=2.0))

        issuer = await gateway.call(
            "chain-indexer",
            lambda: client.get(f"/issuers/{did}"),
            name="fetch_issuer",
            did=did,
        )
        ```
    """

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        breakers: CircuitBreakerRegistry | None = None,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self.policy = policy or RetryPolicy()
        self.breakers = breakers or CircuitBreakerRegistry()
        self.metrics = metrics or MetricsCollector()
        self._logger = logger.bind(component="retry_gateway")

    async def call(
        self,
        dependency: str,
        operation: Callable[[], Awaitable[T]],
        *,
        name: str | None = None,
        policy: RetryPolicy | None = None,
        **fields: Any,
    ) -> T:
        """
        Execute ``operation`` against ``dependency``.

        Args:
            dependency: Name of the external service; one breaker per name
            operation: Zero-argument coroutine factory, invoked once per attempt
            name: Operation name for logs, defaults to the dependency name
            policy: Overrides the gateway's default retry policy
            **fields: Extra key/value pairs bound into every log event

        Returns:
            The operation's result

        Raises:
            CircuitOpenError: The dependency's circuit is open
            RetryExhaustedError: Transient failures on every attempt
            ExternalServiceError: Non-retryable HTTP failure from the dependency
        """
        policy = policy or self.policy
        op_name = name or dependency
        log = self._logger.bind(dependency=dependency, operation=op_name, **fields)
        breaker = self.breakers.get_or_create(dependency)

        if not breaker.can_execute():
            self._count(dependency, "rejected")
            log.warning("external_call_rejected", reason="circuit_open")
            raise CircuitOpenError(
                f"{dependency} is unavailable",
                details={"dependency": dependency, "retryAfter": round(breaker.retry_after(), 3)},
            )

        start = time.perf_counter()
        try:
            result = await with_retry(
                lambda: with_logging(operation, log, op_name),
                policy,
                name=op_name,
                log=log,
            )
        except asyncio.CancelledError:
            breaker.release()
            self._count(dependency, "cancelled")
            raise
        except Exception as e:
            self._observe(dependency, start)
            if policy.should_retry(e):
                breaker.record_failure()
                self._count(dependency, "exhausted")
                log.error(
                    "external_call_exhausted",
                    attempts=policy.max_attempts,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                raise RetryExhaustedError(
                    f"{op_name} failed after {policy.max_attempts} attempts",
                    details={"dependency": dependency, "attempts": policy.max_attempts},
                    cause=e,
                ) from e

            # The dependency answered; it is reachable even if the answer is an error.
            breaker.record_success()
            self._count(dependency, "error")
            if isinstance(e, TrustGatewayError):
                raise
            if isinstance(e, httpx.HTTPError):
                raise ExternalServiceError(
                    f"{op_name} failed: {e}",
                    details={"dependency": dependency},
                    cause=e,
                ) from e
            raise

        breaker.record_success()
        self._observe(dependency, start)
        self._count(dependency, "success")
        return result

    def _count(self, dependency: str, outcome: str) -> None:
        self.metrics.counter(
            "external_calls_total",
            labels={"dependency": dependency, "outcome": outcome},
            description="External calls by dependency and outcome",
        ).inc()

    def _observe(self, dependency: str, start: float) -> None:
        self.metrics.histogram(
            "external_call_duration_ms",
            labels={"dependency": dependency},
            description="Wall time of external calls including retries",
        ).observe((time.perf_counter() - start) * 1000)

    def get_stats(self) -> dict[str, Any]:
        return {
            "policy": {
                "max_attempts": self.policy.max_attempts,
                "initial_delay": self.policy.initial_delay,
                "max_delay": self.policy.max_delay,
                "backoff_factor": self.policy.backoff_factor,
                "timeout": self.policy.timeout,
            },
            "breakers": self.breakers.get_all_metrics(),
        }
