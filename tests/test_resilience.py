"""Tests for retries, circuit breaking and external service clients."""

import asyncio

import httpx
import pytest

from agentic_trust_gateway.common.exceptions import (
    CircuitOpenError,
    ExternalServiceError,
    RetryExhaustedError,
)
from agentic_trust_gateway.common.retry import (
    RetryPolicy,
    is_transient_error,
    with_retry,
)
from agentic_trust_gateway.registry.chain import ChainRegistryClient
from agentic_trust_gateway.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerRegistry,
    CircuitState,
)
from agentic_trust_gateway.resilience.gateway import RetryGateway
from agentic_trust_gateway.verification.proof import ProofServerClient

from conftest import HOSPITAL, FakeClock

FAST = RetryPolicy(max_attempts=3, initial_delay=0, max_delay=0)


def _request():
    return httpx.Request("GET", "http://indexer.test/issuers")


class FlakyHandler:
    """MockTransport handler failing a fixed number of times before succeeding."""

    def __init__(self, failures, error="connect", body=None):
        self.failures = failures
        self.error = error
        self.body = body if body is not None else {"items": []}
        self.calls = 0

    def __call__(self, request):
        self.calls += 1
        if self.calls <= self.failures:
            if self.error == "connect":
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(503, json={"error": "unavailable"})
        return httpx.Response(200, json=self.body)


class TestRetryPolicy:
    """Test backoff settings and error classification."""

    def test_delays(self):
        policy = RetryPolicy(initial_delay=0.5, backoff_factor=2.0, max_delay=10.0)
        assert [policy.delay_for(n) for n in (1, 2, 3, 6)] == [0.5, 1.0, 2.0, 10.0]

    def test_invalid_policy(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)
        with pytest.raises(ValueError):
            RetryPolicy(backoff_factor=0.5)

    def test_transient_classification(self):
        request = _request()
        assert is_transient_error(httpx.ConnectError("refused", request=request))
        assert is_transient_error(httpx.ReadTimeout("slow", request=request))
        assert is_transient_error(TimeoutError())
        server = httpx.HTTPStatusError("boom", request=request, response=httpx.Response(502))
        assert is_transient_error(server)
        client = httpx.HTTPStatusError("nope", request=request, response=httpx.Response(400))
        assert not is_transient_error(client)
        assert not is_transient_error(ValueError("bug"))


@pytest.mark.asyncio
class TestWithRetry:
    """Test the retry wrapper."""

    async def test_retries_then_succeeds(self):
        calls = 0

        async def operation():
            nonlocal calls
            calls += 1
            if calls < 3:
                raise ConnectionError("reset")
            return "ok"

        assert await with_retry(operation, FAST) == "ok"
        assert calls == 3

    async def test_reraises_last_error(self):
        async def operation():
            raise ConnectionError("reset")

        with pytest.raises(ConnectionError):
            await with_retry(operation, FAST)

    async def test_non_transient_not_retried(self):
        calls = 0

        async def operation():
            nonlocal calls
            calls += 1
            raise ValueError("bad input")

        with pytest.raises(ValueError):
            await with_retry(operation, FAST)
        assert calls == 1

    async def test_per_attempt_timeout(self):
        calls = 0

        async def operation():
            nonlocal calls
            calls += 1
            await asyncio.sleep(1)

        policy = RetryPolicy(max_attempts=2, initial_delay=0, max_delay=0, timeout=0.01)
        with pytest.raises(TimeoutError):
            await with_retry(operation, policy)
        assert calls == 2


class TestCircuitBreaker:
    """Test breaker state transitions."""

    def test_opens_after_threshold(self):
        breaker = CircuitBreaker("dep", failure_threshold=3, clock=FakeClock())
        for _ in range(3):
            assert breaker.can_execute()
            breaker.record_failure()

        assert breaker.state == CircuitState.OPEN
        assert not breaker.can_execute()
        assert breaker.retry_after() == 30

    def test_half_open_after_recovery(self):
        clock = FakeClock()
        breaker = CircuitBreaker("dep", failure_threshold=1, recovery_timeout=30, clock=clock)
        breaker.record_failure()

        clock.advance(30)
        assert breaker.can_execute()
        assert breaker.state == CircuitState.HALF_OPEN
        assert not breaker.can_execute()

        breaker.record_success()
        assert breaker.state == CircuitState.CLOSED

    def test_half_open_failure_reopens(self):
        clock = FakeClock()
        breaker = CircuitBreaker("dep", failure_threshold=1, recovery_timeout=30, clock=clock)
        breaker.record_failure()
        clock.advance(30)
        breaker.can_execute()

        breaker.record_failure()
        assert breaker.state == CircuitState.OPEN

    def test_release_returns_probe_slot(self):
        clock = FakeClock()
        breaker = CircuitBreaker("dep", failure_threshold=1, recovery_timeout=30, clock=clock)
        breaker.record_failure()
        clock.advance(30)
        assert breaker.can_execute()

        breaker.release()
        assert breaker.can_execute()

    def test_registry_shares_breakers(self):
        registry = CircuitBreakerRegistry(failure_threshold=2)
        assert registry.get_or_create("a") is registry.get_or_create("a")
        assert registry.get("a").failure_threshold == 2
        assert registry.get("b") is None
        assert set(registry.get_all_metrics()) == {"a"}


@pytest.mark.asyncio
class TestRetryGateway:
    """Test the composed gateway through an HTTP client."""

    async def test_transient_failures_retried(self):
        handler = FlakyHandler(failures=2, body={"items": [HOSPITAL.model_dump(mode="json", by_alias=True)]})
        gateway = RetryGateway(FAST)
        async with ChainRegistryClient(
            "http://indexer.test", gateway, transport=httpx.MockTransport(handler)
        ) as client:
            issuers = await client.list_issuers()

        assert [i.did for i in issuers] == [HOSPITAL.did]
        assert handler.calls == 3
        assert gateway.metrics.get_counter(
            "external_calls_total", {"dependency": "chain-indexer", "outcome": "success"}
        ) == 1

    async def test_server_errors_exhaust(self):
        handler = FlakyHandler(failures=10, error="status")
        gateway = RetryGateway(FAST)
        async with ChainRegistryClient(
            "http://indexer.test", gateway, transport=httpx.MockTransport(handler)
        ) as client:
            with pytest.raises(RetryExhaustedError) as exc_info:
                await client.list_issuers()

        assert handler.calls == 3
        assert exc_info.value.details == {"dependency": "chain-indexer", "attempts": 3}
        assert isinstance(exc_info.value.cause, httpx.HTTPStatusError)

    async def test_client_error_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(400, json={"error": "bad did"})

        gateway = RetryGateway(FAST)
        async with ChainRegistryClient(
            "http://indexer.test", gateway, transport=httpx.MockTransport(handler)
        ) as client:
            with pytest.raises(ExternalServiceError):
                await client.fetch_issuer("did:agentic:x")

        assert len(calls) == 1
        assert gateway.breakers.get("chain-indexer").state == CircuitState.CLOSED

    async def test_not_found_returns_none(self):
        gateway = RetryGateway(FAST)
        transport = httpx.MockTransport(lambda request: httpx.Response(404))
        async with ChainRegistryClient("http://indexer.test", gateway, transport=transport) as client:
            assert await client.fetch_issuer("did:agentic:nobody") is None
            assert await client.fetch_agent("did:agentic:nobody") is None

    async def test_circuit_opens_and_rejects(self):
        handler = FlakyHandler(failures=100)
        gateway = RetryGateway(FAST, CircuitBreakerRegistry(failure_threshold=2, recovery_timeout=60))
        async with ChainRegistryClient(
            "http://indexer.test", gateway, transport=httpx.MockTransport(handler)
        ) as client:
            for _ in range(2):
                with pytest.raises(RetryExhaustedError):
                    await client.list_agents()
            calls = handler.calls

            with pytest.raises(CircuitOpenError) as exc_info:
                await client.list_agents()
            assert 0 < exc_info.value.details["retryAfter"] <= 60

        assert handler.calls == calls
        assert gateway.get_stats()["breakers"]["chain-indexer"]["state"] == "OPEN"

    @pytest.mark.parametrize("body", [["not", "a", "mapping"], {"items": "nope"}, {"items": [{"did": 5}]}])
    async def test_malformed_listing(self, body):
        handler = FlakyHandler(failures=0, body=body)
        async with ChainRegistryClient(
            "http://indexer.test", RetryGateway(FAST), transport=httpx.MockTransport(handler)
        ) as client:
            with pytest.raises(ExternalServiceError) as exc_info:
                await client.list_issuers()

        assert not isinstance(exc_info.value, RetryExhaustedError)
        assert exc_info.value.details == {"dependency": "chain-indexer"}
        assert handler.calls == 1

    async def test_malformed_record(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"did": 5}))
        async with ChainRegistryClient("http://indexer.test", RetryGateway(FAST), transport=transport) as client:
            with pytest.raises(ExternalServiceError):
                await client.fetch_issuer("did:agentic:x")
            with pytest.raises(ExternalServiceError):
                await client.fetch_agent("did:agentic:x")

    async def test_unconnected_client(self):
        client = ChainRegistryClient("http://indexer.test", RetryGateway(FAST))
        with pytest.raises(ExternalServiceError):
            await client.list_issuers()


@pytest.mark.asyncio
class TestProofServerClient:
    """Test the proof server client."""

    async def test_verify(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"valid": True})

        async with ProofServerClient(
            "http://proof.test", RetryGateway(FAST), transport=httpx.MockTransport(handler)
        ) as client:
            assert await client.verify("zk", subject_id="did:agentic:holder_1", nonce="n" * 16)

        assert seen[0].url.path == "/verify"
        assert b'"subjectId"' in seen[0].content

    async def test_health_check_down(self):
        handler = FlakyHandler(failures=100)
        async with ProofServerClient(
            "http://proof.test", RetryGateway(FAST), transport=httpx.MockTransport(handler)
        ) as client:
            assert await client.health_check() is False
