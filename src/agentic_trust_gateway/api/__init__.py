"""HTTP interface for the trust gateway."""

from agentic_trust_gateway.api.app import GatewayServices, build_services, create_app

__all__ = [
    "GatewayServices",
    "build_services",
    "create_app",
]
