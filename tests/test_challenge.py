"""Tests for challenge issuance and single-use consumption."""

import asyncio
from concurrent.futures import ThreadPoolExecutor

import pytest

from agentic_trust_gateway.common.exceptions import (
    ChallengeError,
    ChallengeExpiredError,
    ChallengeNotFoundError,
    ErrorCode,
)
from agentic_trust_gateway.verification.challenge import ChallengeStore


class TestChallengeStore:
    """Test the challenge lifecycle."""

    def test_issue_and_consume(self, challenges, clock):
        challenge = challenges.issue("bank.example")

        assert len(challenge.nonce) >= 32
        assert challenge.audience == "bank.example"
        assert challenge.expires_at == clock() + 60
        assert challenges.consume(challenge.nonce) == challenge

    def test_nonces_are_unique(self, challenges):
        nonces = {challenges.issue("bank.example").nonce for _ in range(200)}
        assert len(nonces) == 200

    def test_second_consume_fails(self, challenges):
        nonce = challenges.issue("bank.example").nonce
        challenges.consume(nonce)

        with pytest.raises(ChallengeNotFoundError) as exc_info:
            challenges.consume(nonce)
        assert exc_info.value.code == ErrorCode.INVALID_CHALLENGE

    def test_unknown_nonce(self, challenges):
        with pytest.raises(ChallengeNotFoundError):
            challenges.consume("never-issued-nonce-value")

    def test_expired_challenge(self, challenges, clock):
        nonce = challenges.issue("bank.example", ttl_seconds=5).nonce
        clock.advance(5)

        with pytest.raises(ChallengeExpiredError):
            challenges.consume(nonce)
        # Deleted on access
        assert len(challenges) == 0

    def test_audience_mismatch_burns_nonce(self, challenges):
        nonce = challenges.issue("bank.example").nonce

        with pytest.raises(ChallengeError):
            challenges.consume(nonce, audience="shop.example")
        with pytest.raises(ChallengeNotFoundError):
            challenges.consume(nonce, audience="bank.example")

    def test_invalid_ttl(self, challenges):
        with pytest.raises(ValueError):
            challenges.issue("bank.example", ttl_seconds=0)

    def test_sweep_expired(self, challenges, clock):
        challenges.issue("bank.example", ttl_seconds=10)
        challenges.issue("bank.example", ttl_seconds=100)
        clock.advance(50)

        assert challenges.sweep_expired() == 1
        assert len(challenges) == 1

    def test_stats(self, challenges):
        nonce = challenges.issue("bank.example").nonce
        challenges.consume(nonce)
        with pytest.raises(ChallengeNotFoundError):
            challenges.consume(nonce)

        stats = challenges.get_stats()
        assert stats["issued"] == 1
        assert stats["consumed"] == 1
        assert stats["rejected"] == 1
        assert stats["pending"] == 0


class TestReplay:
    """Test that a nonce can be consumed at most once under contention."""

    def test_concurrent_threads(self, challenges):
        nonce = challenges.issue("bank.example").nonce

        def attempt(_):
            try:
                challenges.consume(nonce)
                return True
            except ChallengeError:
                return False

        with ThreadPoolExecutor(max_workers=16) as pool:
            results = list(pool.map(attempt, range(64)))

        assert results.count(True) == 1

    @pytest.mark.asyncio
    async def test_concurrent_tasks(self, challenges):
        nonce = challenges.issue("bank.example").nonce

        async def attempt():
            await asyncio.sleep(0)
            challenges.consume(nonce)

        results = await asyncio.gather(*(attempt() for _ in range(32)), return_exceptions=True)

        assert sum(1 for r in results if r is None) == 1
        assert all(isinstance(r, ChallengeNotFoundError) for r in results if r is not None)


@pytest.mark.asyncio
class TestSweeper:
    """Test the background sweeper."""

    async def test_sweeper_removes_expired(self):
        store = ChallengeStore(default_ttl=0.01, sweep_interval=0.01)
        store.issue("bank.example")
        store.start_sweeper()
        await asyncio.sleep(0.1)
        await store.stop_sweeper()

        assert len(store) == 0
