"""Tiered issuer and agent lookup: hot cache, repository, chain."""

from __future__ import annotations

import asyncio
import contextlib
import threading
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import structlog

from agentic_trust_gateway.common.types import RiskReason
from agentic_trust_gateway.observability.metrics import MetricsCollector
from agentic_trust_gateway.policy.brands import normalize_name
from agentic_trust_gateway.policy.fraud import FraudPolicyEngine
from agentic_trust_gateway.registry.cache import TTLCache
from agentic_trust_gateway.registry.chain import ChainRegistry
from agentic_trust_gateway.registry.models import (
    Agent,
    AgentQuery,
    Issuer,
    IssuerQuery,
    RegistryRecord,
)
from agentic_trust_gateway.registry.repository import AgentRepository, IssuerRepository

logger = structlog.get_logger()


@dataclass
class _Inflight:
    task: asyncio.Task[Any]
    waiters: int = 0


class TrustIndex:
    """
    Three-tier lookup for issuers and agents.

    1. Hot TTL cache, bounded, insertion-order eviction
    2. Repository (authoritative local store)
    3. Chain registry (source of truth, slow)

    Every DID carries a generation number bumped by ``upsert`` and
    ``invalidate``. Results fetched under an older generation are returned
    to the callers that asked for them but never written to the local tiers,
    so a lookup that starts after ``invalidate(did)`` cannot observe the
    invalidated value.

    Concurrent chain lookups for the same DID share one in-flight fetch.

    Example:
        ```python
        index = TrustIndex(InMemoryIssuerRepository(), InMemoryAgentRepository(), chain)
        await index.initialize()

        issuer = await index.find_issuer("did:agentic:trusted_issuer_0")
        amazon = await index.find_issuer_by_brand("AWS")
        ```
    """

    def __init__(
        self,
        issuers: IssuerRepository,
        agents: AgentRepository,
        chain: ChainRegistry | None = None,
        engine: FraudPolicyEngine | None = None,
        *,
        cache_ttl: float = 60.0,
        max_cache_size: int = 10_000,
        sync_interval: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self._issuers = issuers
        self._agents = agents
        self._chain = chain
        self._engine = engine or FraudPolicyEngine()
        self.sync_interval = sync_interval
        self.metrics = metrics or MetricsCollector()

        self._issuer_cache: TTLCache[Issuer] = TTLCache(cache_ttl, max_cache_size, clock)
        self._agent_cache: TTLCache[Agent] = TTLCache(cache_ttl, max_cache_size, clock)

        self._lock = threading.RLock()
        self._generations: dict[str, int] = {}
        self._brand_index: dict[str, str] = {}  # normalized name -> did
        self._brand_keys: dict[str, set[str]] = {}  # did -> normalized names
        self._inflight: dict[tuple[str, str], _Inflight] = {}

        self._sync_task: asyncio.Task[None] | None = None
        self._is_syncing = False
        self._last_sync: datetime | None = None

        self._logger = logger.bind(component="trust_index")

    #region Lookups

    async def find_issuer(self, did: str) -> Issuer | None:
        """
        Resolve an issuer through the cache, repository and chain tiers.

        Args:
            did: Issuer DID

        Returns:
            Issuer record, or None if no tier knows the DID
        """
        cached = self._issuer_cache.get(did)
        if cached is not None:
            self._count("issuer", "cache")
            return cached

        generation = self._generation(did)
        stored = await self._issuers.get(did)
        if stored is not None:
            self._count("issuer", "repository")
            with self._lock:
                if self._generation(did) == generation:
                    self._issuer_cache.set(did, stored)
            return stored

        if self._chain is None:
            self._count("issuer", "miss")
            return None
        return await self._from_chain("issuer", did, self._chain.fetch_issuer)

    async def find_agent(self, did: str) -> Agent | None:
        """Resolve an agent through the cache, repository and chain tiers."""
        cached = self._agent_cache.get(did)
        if cached is not None:
            self._count("agent", "cache")
            return cached

        generation = self._generation(did)
        stored = await self._agents.get(did)
        if stored is not None:
            self._count("agent", "repository")
            with self._lock:
                if self._generation(did) == generation:
                    self._agent_cache.set(did, stored)
            return stored

        if self._chain is None:
            self._count("agent", "miss")
            return None
        return await self._from_chain("agent", did, self._chain.fetch_agent)

    async def find_issuer_by_brand(self, name: str) -> Issuer | None:
        """Resolve the issuer registered under a brand name or alias."""
        key = normalize_name(name)
        with self._lock:
            did = self._brand_index.get(key)
        if did is None:
            return None
        return await self.find_issuer(did)

    async def find_issuers(self, query: IssuerQuery | None = None) -> list[Issuer]:
        """Filter the repository's issuers."""
        query = query or IssuerQuery()
        return [i for i in await self._issuers.list_all() if query.matches(i)]

    async def find_agents(self, query: AgentQuery | None = None) -> list[Agent]:
        """Filter the repository's agents."""
        query = query or AgentQuery()
        return [a for a in await self._agents.list_all() if query.matches(a)]

    #endregion

    #region Writes

    async def upsert(self, record: Issuer | Agent) -> None:
        """
        Insert or replace a record in the repository, cache and brand index.

        Args:
            record: Issuer or Agent
        """
        if isinstance(record, Issuer):
            await self._issuers.put(record)
            with self._lock:
                self._bump(record.did, "issuer")
                self._issuer_cache.set(record.did, record)
                self._index_brand(record)
        elif isinstance(record, Agent):
            await self._agents.put(record)
            with self._lock:
                self._bump(record.did, "agent")
                self._agent_cache.set(record.did, record)
        else:
            raise TypeError(f"Cannot index {type(record).__name__}")
        self._logger.debug("record_upserted", did=record.did, kind=type(record).__name__)

    async def invalidate(self, did: str) -> None:
        """
        Forget every local copy of ``did``.

        The next lookup resolves it again from the chain registry. Cached
        copies are dropped again once the repositories have deleted the
        record, so a lookup that read the repository mid-delete cannot
        leave the old value in the cache.
        """
        with self._lock:
            self._forget(did)
        await self._issuers.delete(did)
        await self._agents.delete(did)
        with self._lock:
            self._forget(did)
        self._logger.info("record_invalidated", did=did)

    def clear_caches(self) -> None:
        """Drop the hot tier only; repositories are untouched."""
        with self._lock:
            self._issuer_cache.clear()
            self._agent_cache.clear()
        self._logger.info("caches_cleared")

    #endregion

    #region Chain Fallback

    async def _from_chain(
        self,
        kind: str,
        did: str,
        fetch: Callable[[str], Awaitable[RegistryRecord | None]],
    ) -> Any:
        key = (kind, did)
        with self._lock:
            entry = self._inflight.get(key)
            if entry is None:
                generation = self._generation(did)
                task = asyncio.ensure_future(self._fetch_and_store(kind, did, fetch, generation))
                entry = _Inflight(task)
                self._inflight[key] = entry
                task.add_done_callback(lambda t: self._inflight_done(key, entry, t))
            entry.waiters += 1

        try:
            return await asyncio.shield(entry.task)
        finally:
            entry.waiters -= 1
            if entry.waiters == 0 and not entry.task.done():
                entry.task.cancel()

    def _inflight_done(self, key: tuple[str, str], entry: _Inflight, task: asyncio.Task[Any]) -> None:
        with self._lock:
            if self._inflight.get(key) is entry:
                del self._inflight[key]
        if not task.cancelled():
            task.exception()  # mark retrieved; waiters re-raise it

    async def _fetch_and_store(
        self,
        kind: str,
        did: str,
        fetch: Callable[[str], Awaitable[RegistryRecord | None]],
        generation: int,
    ) -> RegistryRecord | None:
        self._logger.debug("chain_lookup_started", kind=kind, did=did)
        record = await fetch(did)
        if record is None:
            self._count(kind, "miss")
            return None
        self._count(kind, "chain")

        with self._lock:
            current = self._generation(did) == generation
        if not current:
            self._logger.info("chain_result_discarded", kind=kind, did=did, reason="invalidated")
            return record

        if isinstance(record, Issuer):
            await self._issuers.put(record)
            with self._lock:
                if self._generation(did) == generation:
                    self._issuer_cache.set(did, record)
                    self._index_brand(record)
        elif isinstance(record, Agent):
            await self._agents.put(record)
            with self._lock:
                if self._generation(did) == generation:
                    self._agent_cache.set(did, record)
        return record

    #endregion

    #region Brand Index

    def _index_brand(self, issuer: Issuer) -> None:
        # Caller holds self._lock.
        self._unindex_brand(issuer.did)
        if not issuer.claimed_brand_name or not normalize_name(issuer.claimed_brand_name):
            return

        brand = self._engine.match_brand(issuer.claimed_brand_name)
        verified = (
            brand is not None
            and not issuer.is_revoked
            and self._engine.detect_brand_impersonation(issuer).reason == RiskReason.VERIFIED_BRAND
        )
        if brand is not None and not verified:
            self._logger.warning(
                "brand_claim_not_indexed",
                did=issuer.did,
                claimed_brand=issuer.claimed_brand_name,
                brand=brand.brand_name,
            )
            return

        keys = {normalize_name(issuer.claimed_brand_name)}
        if verified:
            keys |= {normalize_name(n) for n in brand.names}

        owned = self._brand_keys.setdefault(issuer.did, set())
        for key in keys:
            owner = self._brand_index.get(key)
            if owner is not None and owner != issuer.did:
                if not verified:
                    continue
                self._brand_keys.get(owner, set()).discard(key)
            self._brand_index[key] = issuer.did
            owned.add(key)

    def _unindex_brand(self, did: str) -> None:
        for key in self._brand_keys.pop(did, set()):
            if self._brand_index.get(key) == did:
                del self._brand_index[key]

    #endregion

    #region Sync

    async def initialize(self) -> None:
        """Load every record from the chain registry into the local tiers."""
        if self._chain is not None:
            await self.sync_from_chain()
        self._logger.info("trust_index_initialized", issuers=await self._issuers.count())

    async def sync_from_chain(self) -> int:
        """
        Upsert every issuer and agent known to the chain registry.

        Returns:
            Number of records synced, 0 when a sync is already running
        """
        if self._chain is None:
            return 0
        if self._is_syncing:
            self._logger.debug("chain_sync_skipped", reason="already_running")
            return 0
        self._is_syncing = True
        try:
            issuers = await self._chain.list_issuers()
            agents = await self._chain.list_agents()
            for record in [*issuers, *agents]:
                await self.upsert(record)
            self._last_sync = datetime.now(timezone.utc)
            self._logger.info("chain_sync_completed", issuers=len(issuers), agents=len(agents))
            return len(issuers) + len(agents)
        finally:
            self._is_syncing = False

    def start_background_sync(self) -> None:
        """Start periodic chain sync on the running event loop."""
        if self._sync_task is None or self._sync_task.done():
            self._sync_task = asyncio.create_task(self._sync_loop())

    async def stop(self) -> None:
        if self._sync_task:
            self._sync_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sync_task
            self._sync_task = None

    async def _sync_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sync_interval)
            try:
                await self.sync_from_chain()
            except Exception as e:
                self._logger.error("chain_sync_failed", error=str(e), error_type=type(e).__name__)

    #endregion

    def _generation(self, did: str) -> int:
        return self._generations.get(did, 0)

    def _bump(self, did: str, kind: str) -> None:
        self._generations[did] = self._generation(did) + 1
        self._inflight.pop((kind, did), None)

    def _forget(self, did: str) -> None:
        # Caller holds self._lock.
        self._bump(did, "issuer")
        self._bump(did, "agent")
        self._issuer_cache.delete(did)
        self._agent_cache.delete(did)
        self._unindex_brand(did)

    def _count(self, kind: str, tier: str) -> None:
        self.metrics.counter(
            "registry_lookups_total",
            labels={"kind": kind, "tier": tier},
            description="Registry lookups by record kind and resolving tier",
        ).inc()

    async def get_stats(self) -> dict[str, Any]:
        """Get index statistics."""
        with self._lock:
            brands = len(self._brand_index)
        return {
            "issuers": {
                "total": await self._issuers.count(),
                "cached": len(self._issuer_cache),
                "brands": brands,
            },
            "agents": {
                "total": await self._agents.count(),
                "cached": len(self._agent_cache),
            },
            "sync": {
                "last_sync": self._last_sync.isoformat() if self._last_sync else None,
                "is_syncing": self._is_syncing,
                "background": self._sync_task is not None and not self._sync_task.done(),
            },
            "cache": {
                "ttl_seconds": self._issuer_cache.ttl_seconds,
                "max_size": self._issuer_cache.max_size,
                "issuer_cache": self._issuer_cache.get_stats(),
                "agent_cache": self._agent_cache.get_stats(),
            },
        }
