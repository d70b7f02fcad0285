"""Issuer and agent registry: records, repositories, cache and chain access."""

from agentic_trust_gateway.registry.models import (
    Agent,
    AgentQuery,
    Issuer,
    IssuerQuery,
)
from agentic_trust_gateway.registry.repository import (
    AgentRepository,
    InMemoryAgentRepository,
    InMemoryIssuerRepository,
    IssuerRepository,
)
from agentic_trust_gateway.registry.cache import TTLCache
from agentic_trust_gateway.registry.chain import (
    BootstrapRegistry,
    ChainRegistry,
    ChainRegistryClient,
)

__all__ = [
    "Agent",
    "AgentQuery",
    "Issuer",
    "IssuerQuery",
    "AgentRepository",
    "InMemoryAgentRepository",
    "InMemoryIssuerRepository",
    "IssuerRepository",
    "TTLCache",
    "BootstrapRegistry",
    "ChainRegistry",
    "ChainRegistryClient",
]
