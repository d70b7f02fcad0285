"""Logging and metrics for the gateway."""

from agentic_trust_gateway.observability.logging import configure_logging
from agentic_trust_gateway.observability.metrics import MetricsCollector

__all__ = [
    "configure_logging",
    "MetricsCollector",
]
