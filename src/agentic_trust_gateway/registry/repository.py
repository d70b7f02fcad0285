"""Repository interfaces for issuer and agent records."""

from __future__ import annotations

from abc import ABC, abstractmethod

from agentic_trust_gateway.registry.models import Agent, Issuer, RegistryRecord


class RecordRepository[R: RegistryRecord](ABC):
    """
    Abstract base class for DID-keyed record stores.

    This is the second lookup tier behind the hot cache: authoritative for
    everything the gateway has already seen, but not necessarily for the chain.
    """

    @abstractmethod
    async def get(self, did: str) -> R | None:
        """
        Retrieve a record.

        Args:
            did: Record key

        Returns:
            Stored record or None
        """
        pass

    @abstractmethod
    async def put(self, record: R) -> None:
        """Insert or replace a record."""
        pass

    @abstractmethod
    async def delete(self, did: str) -> bool:
        """
        Delete a record.

        Returns:
            True if a record was removed
        """
        pass

    @abstractmethod
    async def list_all(self) -> list[R]:
        """All records, in insertion order."""
        pass

    @abstractmethod
    async def count(self) -> int:
        pass


class IssuerRepository(RecordRepository[Issuer]):
    """Store of issuer records."""


class AgentRepository(RecordRepository[Agent]):
    """Store of agent records."""


class _InMemoryRepository[R: RegistryRecord](RecordRepository[R]):
    def __init__(self) -> None:
        self._records: dict[str, R] = {}

    async def get(self, did: str) -> R | None:
        return self._records.get(did)

    async def put(self, record: R) -> None:
        self._records[record.did] = record

    async def delete(self, did: str) -> bool:
        return self._records.pop(did, None) is not None

    async def list_all(self) -> list[R]:
        return list(self._records.values())

    async def count(self) -> int:
        return len(self._records)


class InMemoryIssuerRepository(_InMemoryRepository[Issuer], IssuerRepository):
    """In-memory issuer store for tests and single-node deployments."""


class InMemoryAgentRepository(_InMemoryRepository[Agent], AgentRepository):
    """In-memory agent store for tests and single-node deployments."""
