"""Tests for the tiered issuer/agent index and its cache."""

import asyncio

import pytest

from agentic_trust_gateway.common.types import AgentRole, IssuerDomain, IssuerType
from agentic_trust_gateway.registry.cache import TTLCache
from agentic_trust_gateway.registry.chain import (
    CANONICAL_AGENT_101_DID,
    ISSUER_AGENT_0_DID,
    TRUSTED_ISSUER_0_DID,
    BootstrapRegistry,
    ChainRegistry,
)
from agentic_trust_gateway.registry.index import TrustIndex
from agentic_trust_gateway.registry.models import Agent, AgentQuery, IssuerQuery
from agentic_trust_gateway.registry.repository import (
    InMemoryAgentRepository,
    InMemoryIssuerRepository,
)

from conftest import AMAZON, BANK, FAKE_AMAZON, HOSPITAL, FakeClock, make_issuer


class SlowChain(ChainRegistry):
    """Chain registry that blocks fetches until released."""

    def __init__(self, issuers):
        self._issuers = {i.did: i for i in issuers}
        self.release = asyncio.Event()
        self.calls = 0

    async def fetch_issuer(self, did):
        self.calls += 1
        await self.release.wait()
        return self._issuers.get(did)

    async def fetch_agent(self, did):
        return None

    async def list_issuers(self):
        return list(self._issuers.values())

    async def list_agents(self):
        return []


class SlowDeleteIssuerRepository(InMemoryIssuerRepository):
    """Issuer repository whose deletes wait on I/O."""

    def __init__(self, delay=0.05):
        super().__init__()
        self.delay = delay

    async def delete(self, did):
        await asyncio.sleep(self.delay)
        return await super().delete(did)


class SlowListChain(BootstrapRegistry):
    """Bootstrap registry whose listing blocks until released."""

    def __init__(self):
        super().__init__()
        self.release = asyncio.Event()
        self.list_calls = 0

    async def list_issuers(self):
        self.list_calls += 1
        await self.release.wait()
        return await super().list_issuers()


def _index(chain=None, clock=None, issuers=None, **kwargs):
    return TrustIndex(
        issuers if issuers is not None else InMemoryIssuerRepository(),
        InMemoryAgentRepository(),
        chain,
        clock=clock or FakeClock(),
        **kwargs,
    )


class TestTTLCache:
    """Test the hot-tier cache."""

    def test_fresh_until_ttl(self, clock):
        cache = TTLCache(ttl_seconds=60, clock=clock)
        cache.set("k", "v")

        clock.advance(59.9)
        assert cache.get("k") == "v"

        clock.advance(1.1)
        assert cache.get("k") is None

    def test_evicts_oldest_insertion(self, clock):
        cache = TTLCache(ttl_seconds=60, max_size=2, clock=clock)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.get("a")
        cache.set("c", 3)

        assert "a" not in cache
        assert cache.get("b") == 2
        assert cache.get("c") == 3
        assert cache.get_stats()["evictions"] == 1

    def test_stats_track_hits_and_misses(self, clock):
        cache = TTLCache(ttl_seconds=60, clock=clock)
        cache.set("a", 1)
        cache.get("a")
        cache.get("missing")

        stats = cache.get_stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["size"] == 1

    def test_purge_expired(self, clock):
        cache = TTLCache(ttl_seconds=10, clock=clock)
        cache.set("a", 1)
        clock.advance(5)
        cache.set("b", 2)
        clock.advance(6)

        assert cache.purge_expired() == 1
        assert len(cache) == 1

    def test_rejects_non_positive_ttl(self):
        with pytest.raises(ValueError):
            TTLCache(ttl_seconds=0)


@pytest.mark.asyncio
class TestLookups:
    """Test cache, repository and chain tiers."""

    async def test_chain_fallback_persists(self, index, chain):
        assert await index.find_issuer(HOSPITAL.did) == HOSPITAL

        stats = await index.get_stats()
        assert stats["issuers"]["total"] == 1
        assert stats["issuers"]["cached"] == 1

        chain._issuers.pop(HOSPITAL.did)
        assert await index.find_issuer(HOSPITAL.did) == HOSPITAL

    async def test_unknown_did_returns_none(self, index):
        assert await index.find_issuer("did:agentic:nobody") is None
        assert await index.find_agent("did:agentic:nobody") is None

    async def test_ttl_expiry_falls_back_to_repository(self, clock):
        index = _index(clock=clock, cache_ttl=60)
        await index.upsert(HOSPITAL)
        assert index._issuer_cache.get(HOSPITAL.did) == HOSPITAL

        clock.advance(61)
        assert index._issuer_cache.get(HOSPITAL.did) is None
        assert await index.find_issuer(HOSPITAL.did) == HOSPITAL
        assert index.metrics.get_counter(
            "registry_lookups_total", {"kind": "issuer", "tier": "repository"}
        ) == 1

    async def test_upsert_replaces_cached_value(self, index):
        await index.upsert(HOSPITAL)
        updated = HOSPITAL.model_copy(update={"legal_name": "Mercy Health"})
        await index.upsert(updated)

        assert (await index.find_issuer(HOSPITAL.did)).legal_name == "Mercy Health"

    async def test_find_agent_from_bootstrap(self):
        index = _index(BootstrapRegistry())
        agent = await index.find_agent(ISSUER_AGENT_0_DID)

        assert agent.role == AgentRole.ISSUER_AGENT
        assert agent.is_system_agent
        assert agent.parent_issuer_did == TRUSTED_ISSUER_0_DID

    async def test_queries(self):
        index = _index(BootstrapRegistry())
        await index.initialize()
        await index.upsert(HOSPITAL)

        medical = await index.find_issuers(IssuerQuery(domain=IssuerDomain.MEDICAL))
        assert [i.did for i in medical] == [HOSPITAL.did]

        corporations = await index.find_issuers(IssuerQuery(type=IssuerType.CORPORATION))
        assert [i.did for i in corporations] == [TRUSTED_ISSUER_0_DID]

        local = await index.find_agents(AgentQuery(role=AgentRole.LOCAL_AGENT))
        assert [a.did for a in local] == [CANONICAL_AGENT_101_DID]

        system = await index.find_agents(AgentQuery(is_system_agent=True))
        assert [a.did for a in system] == [ISSUER_AGENT_0_DID]

    async def test_upsert_rejects_other_types(self, index):
        with pytest.raises(TypeError):
            await index.upsert("did:agentic:x")


@pytest.mark.asyncio
class TestInvalidate:
    """Test cache consistency after invalidation."""

    async def test_invalidate_drops_cached_value(self, index, chain):
        await index.upsert(HOSPITAL)
        chain._issuers.pop(HOSPITAL.did)

        await index.invalidate(HOSPITAL.did)

        assert await index.find_issuer(HOSPITAL.did) is None

    async def test_invalidate_rereads_chain(self, index, chain):
        assert await index.find_issuer(HOSPITAL.did) == HOSPITAL
        revoked = HOSPITAL.model_copy(update={"is_revoked": True})
        chain.register_issuer(revoked)

        assert not (await index.find_issuer(HOSPITAL.did)).is_revoked
        await index.invalidate(HOSPITAL.did)
        assert (await index.find_issuer(HOSPITAL.did)).is_revoked

    async def test_stale_chain_result_not_cached(self):
        chain = SlowChain([HOSPITAL])
        index = _index(chain)

        lookup = asyncio.create_task(index.find_issuer(HOSPITAL.did))
        await asyncio.sleep(0)
        await index.invalidate(HOSPITAL.did)
        chain.release.set()

        assert await lookup == HOSPITAL
        assert index._issuer_cache.get(HOSPITAL.did) is None
        assert (await index.get_stats())["issuers"]["total"] == 0

    async def test_lookup_during_slow_delete_not_cached(self):
        index = _index(issuers=SlowDeleteIssuerRepository())
        await index.upsert(AMAZON)

        invalidation = asyncio.create_task(index.invalidate(AMAZON.did))
        await asyncio.sleep(0.01)
        assert await index.find_issuer(AMAZON.did) == AMAZON
        await invalidation

        assert index._issuer_cache.get(AMAZON.did) is None
        assert await index.find_issuer(AMAZON.did) is None
        assert await index.find_issuer_by_brand("Amazon") is None

    async def test_clear_caches_keeps_repository(self, index):
        await index.upsert(HOSPITAL)
        index.clear_caches()

        assert len(index._issuer_cache) == 0
        assert await index.find_issuer(HOSPITAL.did) == HOSPITAL


@pytest.mark.asyncio
class TestSingleFlight:
    """Test coalescing of concurrent chain lookups."""

    async def test_concurrent_lookups_share_one_fetch(self):
        chain = SlowChain([HOSPITAL])
        index = _index(chain)

        lookups = [asyncio.create_task(index.find_issuer(HOSPITAL.did)) for _ in range(10)]
        await asyncio.sleep(0)
        chain.release.set()
        results = await asyncio.gather(*lookups)

        assert all(r == HOSPITAL for r in results)
        assert chain.calls == 1

    async def test_cancelled_waiter_does_not_cancel_others(self):
        chain = SlowChain([HOSPITAL])
        index = _index(chain)

        first = asyncio.create_task(index.find_issuer(HOSPITAL.did))
        second = asyncio.create_task(index.find_issuer(HOSPITAL.did))
        await asyncio.sleep(0)
        first.cancel()
        await asyncio.sleep(0)
        chain.release.set()

        assert await second == HOSPITAL
        with pytest.raises(asyncio.CancelledError):
            await first


@pytest.mark.asyncio
class TestBrandIndex:
    """Test brand-name resolution."""

    async def test_verified_brand_indexes_aliases(self, index):
        await index.upsert(AMAZON)

        for name in ("Amazon", "  aws ", "Amazon Web Services"):
            assert (await index.find_issuer_by_brand(name)).did == AMAZON.did

    async def test_impersonator_not_indexed(self, index):
        await index.upsert(FAKE_AMAZON)
        assert await index.find_issuer_by_brand("Amazon") is None

        await index.upsert(AMAZON)
        await index.upsert(FAKE_AMAZON)
        assert (await index.find_issuer_by_brand("Amazon")).did == AMAZON.did

    async def test_unbranded_claim_indexed(self, index):
        local = make_issuer("did:agentic:corner_shop", claimed_brand_name="Corner Shop")
        await index.upsert(local)

        assert (await index.find_issuer_by_brand("corner  shop")).did == local.did

    async def test_unverified_claimant_does_not_displace(self, index):
        first = make_issuer("did:agentic:shop_a", claimed_brand_name="Corner Shop")
        second = make_issuer("did:agentic:shop_b", claimed_brand_name="Corner Shop")
        await index.upsert(first)
        await index.upsert(second)

        assert (await index.find_issuer_by_brand("Corner Shop")).did == first.did

    async def test_rebrand_removes_stale_keys(self, index):
        await index.upsert(BANK)
        assert (await index.find_issuer_by_brand("JPMorgan")).did == BANK.did

        await index.upsert(BANK.model_copy(update={"claimed_brand_name": "Example Savings"}))

        assert await index.find_issuer_by_brand("JPMorgan") is None
        assert (await index.find_issuer_by_brand("Example Savings")).did == BANK.did

    async def test_invalidate_removes_brand(self, index):
        await index.upsert(AMAZON)
        await index.invalidate(AMAZON.did)

        stats = await index.get_stats()
        assert stats["issuers"]["brands"] == 0


@pytest.mark.asyncio
class TestSync:
    """Test loading from the chain registry."""

    async def test_initialize_loads_bootstrap_records(self):
        index = _index(BootstrapRegistry())
        await index.initialize()

        stats = await index.get_stats()
        assert stats["issuers"]["total"] == 1
        assert stats["agents"]["total"] == 2
        assert stats["sync"]["last_sync"] is not None
        assert (await index.find_issuer_by_brand("AgenticDID")).did == TRUSTED_ISSUER_0_DID

    async def test_sync_picks_up_new_records(self):
        chain = BootstrapRegistry()
        index = _index(chain)
        await index.initialize()

        chain.register_agent(
            Agent(did="did:agentic:task_7", role=AgentRole.TASK_AGENT, agent_id="task_7")
        )
        assert await index.sync_from_chain() == 4
        assert (await index.find_agents(AgentQuery(role=AgentRole.TASK_AGENT)))[0].did == "did:agentic:task_7"

    async def test_overlapping_sync_skipped(self):
        chain = SlowListChain()
        index = _index(chain)

        first = asyncio.create_task(index.sync_from_chain())
        await asyncio.sleep(0)
        assert await index.sync_from_chain() == 0
        chain.release.set()

        assert await first == 3
        assert chain.list_calls == 1

    async def test_background_sync_start_stop(self):
        index = _index(BootstrapRegistry(), sync_interval=0.01)
        index.start_background_sync()
        await asyncio.sleep(0.05)
        await index.stop()

        stats = await index.get_stats()
        assert stats["sync"]["last_sync"] is not None
        assert stats["sync"]["background"] is False

    async def test_reserved_agent_id_rejected(self):
        with pytest.raises(ValueError):
            Agent(did="did:agentic:agent_5", role=AgentRole.TASK_AGENT, agent_id="agent_5")
