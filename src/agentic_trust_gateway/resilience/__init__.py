"""Fault tolerance for calls to external services."""

from agentic_trust_gateway.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerRegistry,
    CircuitState,
)
from agentic_trust_gateway.resilience.client import ServiceClient
from agentic_trust_gateway.resilience.gateway import RetryGateway

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "CircuitState",
    "RetryGateway",
    "ServiceClient",
]
