"""Circuit breaker guarding calls to external dependencies."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from enum import Enum, auto
from typing import Any

import structlog

logger = structlog.get_logger()


class CircuitState(Enum):
    """Circuit breaker states."""

    CLOSED = auto()  # Calls flow through
    OPEN = auto()  # Dependency considered down, calls rejected
    HALF_OPEN = auto()  # Probing whether the dependency recovered


class CircuitBreaker:
    """
    Circuit breaker for one external dependency.

    After ``failure_threshold`` consecutive failures the circuit opens and
    calls are rejected without touching the dependency. Once
    ``recovery_timeout`` seconds pass, up to ``half_open_max_calls`` probes
    are let through; ``success_threshold`` probe successes close it again and
    any probe failure re-opens it.

    Example:
        ```python
        breaker = CircuitBreaker("proof-server", failure_threshold=5, recovery_timeout=30)

        if not breaker.can_execute():
            raise CircuitOpenError("proof-server unavailable")
        try:
            valid = await proof_client.verify(proof, subject_id=did, nonce=nonce)
        except httpx.TransportError:
            breaker.record_failure()
            raise
        breaker.record_success()
        ```
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        half_open_max_calls: int = 1,
        success_threshold: int = 1,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.half_open_max_calls = half_open_max_calls
        self.success_threshold = success_threshold
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._probe_successes = 0
        self._probes_in_flight = 0
        self._opened_at: float | None = None
        self._last_failure_at: float | None = None
        self._lock = threading.Lock()

        self._logger = logger.bind(dependency=name)

    @property
    def state(self) -> CircuitState:
        return self._state

    def retry_after(self) -> float:
        """Seconds until an open circuit admits a probe; 0 when not open."""
        if self._state != CircuitState.OPEN or self._opened_at is None:
            return 0.0
        return max(0.0, self._opened_at + self.recovery_timeout - self._clock())

    def _transition(self, state: CircuitState, event: str, **fields: Any) -> None:
        """Move to ``state`` and reset the per-state counters. Caller holds the lock."""
        previous, self._state = self._state, state
        self._probe_successes = 0
        self._probes_in_flight = 0
        if state == CircuitState.OPEN:
            self._opened_at = self._clock()
            log = self._logger.warning
        else:
            log = self._logger.info
        if state == CircuitState.CLOSED:
            self._consecutive_failures = 0
            self._opened_at = None
        log(event, from_state=previous.name, to_state=state.name, **fields)

    def can_execute(self) -> bool:
        """
        Decide whether a call may go to the dependency.

        An open circuit whose recovery timeout has elapsed turns half-open
        and admits the caller as its first probe.

        Returns:
            True if the call should proceed
        """
        with self._lock:
            if self._state == CircuitState.OPEN:
                if self.retry_after() > 0:
                    return False
                self._transition(CircuitState.HALF_OPEN, "circuit_breaker_half_open")

            if self._state == CircuitState.HALF_OPEN:
                if self._probes_in_flight >= self.half_open_max_calls:
                    return False
                self._probes_in_flight += 1
            return True

    def record_success(self) -> None:
        with self._lock:
            if self._state == CircuitState.CLOSED:
                self._consecutive_failures = 0
                return
            if self._state == CircuitState.HALF_OPEN:
                self._probe_successes += 1
                if self._probe_successes >= self.success_threshold:
                    self._transition(CircuitState.CLOSED, "circuit_breaker_closed")

    def record_failure(self) -> None:
        with self._lock:
            self._consecutive_failures += 1
            self._last_failure_at = self._clock()
            if self._state == CircuitState.HALF_OPEN:
                self._transition(CircuitState.OPEN, "circuit_breaker_reopened")
            elif (
                self._state == CircuitState.CLOSED
                and self._consecutive_failures >= self.failure_threshold
            ):
                self._transition(
                    CircuitState.OPEN,
                    "circuit_breaker_open",
                    failure_count=self._consecutive_failures,
                )

    def release(self) -> None:
        """Give back a half-open probe slot whose call ended without an outcome."""
        with self._lock:
            if self._state == CircuitState.HALF_OPEN and self._probes_in_flight > 0:
                self._probes_in_flight -= 1

    def get_metrics(self) -> dict[str, Any]:
        with self._lock:
            return {
                "state": self._state.name,
                "consecutive_failures": self._consecutive_failures,
                "probe_successes": self._probe_successes,
                "probes_in_flight": self._probes_in_flight,
                "last_failure_at": self._last_failure_at,
                "retry_after": round(self.retry_after(), 3),
            }


class CircuitBreakerRegistry:
    """
    One circuit breaker per named dependency, created on first use.

    Keyword arguments given to the registry become the defaults of every
    breaker it creates.
    """

    def __init__(self, **defaults: Any) -> None:
        self._defaults = defaults
        self._breakers: dict[str, CircuitBreaker] = {}
        self._lock = threading.Lock()

    def get_or_create(self, name: str) -> CircuitBreaker:
        with self._lock:
            breaker = self._breakers.get(name)
            if breaker is None:
                breaker = self._breakers[name] = CircuitBreaker(name, **self._defaults)
            return breaker

    def get(self, name: str) -> CircuitBreaker | None:
        return self._breakers.get(name)

    def get_all_metrics(self) -> dict[str, dict[str, Any]]:
        return {name: breaker.get_metrics() for name, breaker in list(self._breakers.items())}
