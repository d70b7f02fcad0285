"""Source-of-truth registry backends, consulted when local tiers miss."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any, TypeVar
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from agentic_trust_gateway.common.exceptions import ExternalServiceError
from agentic_trust_gateway.common.types import (
    AgentRole,
    AssuranceLevel,
    IssuerDomain,
    IssuerType,
)
from agentic_trust_gateway.registry.models import Agent, Issuer, RegistryRecord
from agentic_trust_gateway.resilience.client import ServiceClient
from agentic_trust_gateway.resilience.gateway import RetryGateway


# Canonical protocol identities
TRUSTED_ISSUER_0_DID = "did:agentic:trusted_issuer_0"
ISSUER_AGENT_0_DID = "did:agentic:agent_0"
CANONICAL_AGENT_101_DID = "did:agentic:canonical_agent_101"

R = TypeVar("R", bound=RegistryRecord)


class ChainRegistry(ABC):
    """
    Abstract base class for the third lookup tier.

    Implementations include:
    - ChainRegistryClient: HTTP client for the chain indexer service
    - BootstrapRegistry: the canonical protocol records held in process
    """

    @abstractmethod
    async def fetch_issuer(self, did: str) -> Issuer | None:
        """
        Fetch an issuer from the source of truth.

        Args:
            did: Issuer DID

        Returns:
            Issuer record or None if not registered
        """
        pass

    @abstractmethod
    async def fetch_agent(self, did: str) -> Agent | None:
        pass

    @abstractmethod
    async def list_issuers(self) -> list[Issuer]:
        """All registered issuers, used for bulk sync."""
        pass

    @abstractmethod
    async def list_agents(self) -> list[Agent]:
        pass

    async def connect(self) -> None:
        """Acquire connections. No-op unless the backend is remote."""

    async def close(self) -> None:
        """Release connections. No-op unless the backend is remote."""


class ChainRegistryClient(ServiceClient, ChainRegistry):
    """
    Reads the on-chain registry through the chain indexer's HTTP API.

    Endpoints:
        GET /issuers/{did}, GET /agents/{did}: single record or 404
        GET /issuers, GET /agents: ``{"items": [...]}``
    """

    dependency = "chain-indexer"

    def __init__(
        self,
        base_url: str,
        gateway: RetryGateway,
        *,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(base_url, gateway, timeout=timeout, transport=transport)

    async def fetch_issuer(self, did: str) -> Issuer | None:
        data = await self._request(
            "GET", f"/issuers/{quote(did, safe=':')}", name="fetch_issuer", allow_not_found=True
        )
        return self._parse(Issuer, data, "fetch_issuer") if data is not None else None

    async def fetch_agent(self, did: str) -> Agent | None:
        data = await self._request(
            "GET", f"/agents/{quote(did, safe=':')}", name="fetch_agent", allow_not_found=True
        )
        return self._parse(Agent, data, "fetch_agent") if data is not None else None

    async def list_issuers(self) -> list[Issuer]:
        data = await self._request("GET", "/issuers", name="list_issuers")
        return [self._parse(Issuer, item, "list_issuers") for item in self._items(data, "list_issuers")]

    async def list_agents(self) -> list[Agent]:
        data = await self._request("GET", "/agents", name="list_agents")
        return [self._parse(Agent, item, "list_agents") for item in self._items(data, "list_agents")]

    def _items(self, data: Any, operation: str) -> list[Any]:
        items = data.get("items", []) if isinstance(data, dict) else None
        if not isinstance(items, list):
            raise self._malformed(operation)
        return items

    def _parse(self, model: type[R], data: Any, operation: str) -> R:
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise self._malformed(operation, e) from e

    def _malformed(self, operation: str, cause: Exception | None = None) -> ExternalServiceError:
        self._logger.error("indexer_response_invalid", operation=operation)
        return ExternalServiceError(
            f"{operation} returned a malformed response",
            details={"dependency": self.dependency},
            cause=cause,
        )


def bootstrap_issuers() -> list[Issuer]:
    """The root trusted issuer."""
    epoch = datetime(2025, 1, 1, tzinfo=timezone.utc)
    return [
        Issuer(
            did=TRUSTED_ISSUER_0_DID,
            type=IssuerType.CORPORATION,
            domains=frozenset({IssuerDomain.TECHNOLOGY, IssuerDomain.FINANCIAL}),
            assurance=AssuranceLevel.REGULATED_ENTITY,
            legal_name="AgenticDID Foundation",
            claimed_brand_name="AgenticDID",
            jurisdiction="US-DE",
            registered_by="system",
            created_at=epoch,
        ),
    ]


def bootstrap_agents() -> list[Agent]:
    """The canonical issuer agent and the reference local agent."""
    epoch = datetime(2025, 1, 1, tzinfo=timezone.utc)
    return [
        Agent(
            did=ISSUER_AGENT_0_DID,
            agent_id="agent_0",
            role=AgentRole.ISSUER_AGENT,
            parent_issuer_did=TRUSTED_ISSUER_0_DID,
            description="AgenticDID issuer agent for trusted_issuer_0",
            capabilities=frozenset({"kyc", "credential_issuance", "revocation"}),
            is_system_agent=True,
            created_at=epoch,
        ),
        Agent(
            did=CANONICAL_AGENT_101_DID,
            agent_id="canonical_agent_101",
            role=AgentRole.LOCAL_AGENT,
            description="Comet, the canonical local agent for users",
            capabilities=frozenset({"credential_management", "proof_generation", "task_delegation"}),
            created_at=epoch,
        ),
    ]


class BootstrapRegistry(ChainRegistry):
    """
    In-process registry seeded with the canonical protocol records.

    Used when no chain indexer is configured, and as a controllable
    source of truth in tests.
    """

    def __init__(
        self,
        issuers: Iterable[Issuer] | None = None,
        agents: Iterable[Agent] | None = None,
    ) -> None:
        self._issuers = {i.did: i for i in (bootstrap_issuers() if issuers is None else issuers)}
        self._agents = {a.did: a for a in (bootstrap_agents() if agents is None else agents)}

    def register_issuer(self, issuer: Issuer) -> None:
        self._issuers[issuer.did] = issuer

    def register_agent(self, agent: Agent) -> None:
        self._agents[agent.did] = agent

    async def fetch_issuer(self, did: str) -> Issuer | None:
        return self._issuers.get(did)

    async def fetch_agent(self, did: str) -> Agent | None:
        return self._agents.get(did)

    async def list_issuers(self) -> list[Issuer]:
        return list(self._issuers.values())

    async def list_agents(self) -> list[Agent]:
        return list(self._agents.values())
