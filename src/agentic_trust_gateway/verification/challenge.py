"""Single-use challenge nonces for replay protection."""

from __future__ import annotations

import asyncio
import contextlib
import secrets
import threading
import time
from collections.abc import Callable
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field

from agentic_trust_gateway.common.exceptions import (
    ChallengeError,
    ChallengeExpiredError,
    ChallengeNotFoundError,
)

logger = structlog.get_logger()

NONCE_BYTES = 32


class Challenge(BaseModel):
    """A nonce a presentation must answer before ``expires_at`` (unix seconds)."""

    model_config = ConfigDict(frozen=True)

    nonce: str = Field(..., min_length=16)
    audience: str
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class ChallengeStore:
    """
    Issues challenges and consumes each at most once.

    Lookup and delete happen under one lock, so among any number of
    concurrent ``consume`` calls for a nonce, from threads or tasks, exactly
    one can succeed.

    Example:
        ```python
        store = ChallengeStore()
        challenge = store.issue("bank.example", ttl_seconds=60)

        store.consume(challenge.nonce)  # Challenge
        store.consume(challenge.nonce)  # raises ChallengeNotFoundError
        ```
    """

    def __init__(
        self,
        default_ttl: float = 60.0,
        clock: Callable[[], float] = time.time,
        sweep_interval: float = 30.0,
    ) -> None:
        self.default_ttl = default_ttl
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._challenges: dict[str, Challenge] = {}
        self._lock = threading.Lock()
        self._sweeper: asyncio.Task[None] | None = None

        self._issued = 0
        self._consumed = 0
        self._rejected = 0

        self._logger = logger.bind(component="challenge_store")

    def issue(self, audience: str, ttl_seconds: float | None = None) -> Challenge:
        """
        Create and store a fresh challenge.

        Args:
            audience: Relying party the presentation is meant for
            ttl_seconds: Lifetime; defaults to the store's ``default_ttl``

        Returns:
            The stored challenge
        """
        ttl = self.default_ttl if ttl_seconds is None else ttl_seconds
        if ttl <= 0:
            raise ValueError("ttl_seconds must be positive")

        challenge = Challenge(
            nonce=secrets.token_urlsafe(NONCE_BYTES),
            audience=audience,
            expires_at=self._clock() + ttl,
        )
        with self._lock:
            self._challenges[challenge.nonce] = challenge
            self._issued += 1
        self._logger.debug("challenge_issued", audience=audience, ttl=ttl)
        return challenge

    def consume(self, nonce: str, audience: str | None = None) -> Challenge:
        """
        Atomically look up and delete a challenge.

        The nonce is burned even when the audience does not match.

        Args:
            nonce: Nonce to consume
            audience: If given, the challenge must have been issued for it

        Returns:
            The consumed challenge

        Raises:
            ChallengeNotFoundError: Unknown or already consumed
            ChallengeExpiredError: Lifetime elapsed
            ChallengeError: Audience mismatch
        """
        with self._lock:
            challenge = self._challenges.pop(nonce, None)
            if challenge is None:
                self._rejected += 1
                raise ChallengeNotFoundError("Challenge not found or already used")
            if challenge.is_expired(self._clock()):
                self._rejected += 1
                raise ChallengeExpiredError(
                    "Challenge expired",
                    details={"expires_at": challenge.expires_at},
                )
            if audience is not None and challenge.audience != audience:
                self._rejected += 1
                raise ChallengeError(
                    "Challenge was issued for a different audience",
                    details={"expected": audience, "actual": challenge.audience},
                )
            self._consumed += 1
            return challenge

    def sweep_expired(self) -> int:
        """Delete expired challenges. Returns the number removed."""
        now = self._clock()
        with self._lock:
            expired = [n for n, c in self._challenges.items() if c.is_expired(now)]
            for nonce in expired:
                del self._challenges[nonce]
        if expired:
            self._logger.debug("challenges_swept", count=len(expired))
        return len(expired)

    def start_sweeper(self) -> None:
        """Sweep expired challenges periodically on the running event loop."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_loop())

    async def stop_sweeper(self) -> None:
        if self._sweeper:
            self._sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweeper
            self._sweeper = None

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            self.sweep_expired()

    def __len__(self) -> int:
        return len(self._challenges)

    def get_stats(self) -> dict[str, Any]:
        with self._lock:
            return {
                "pending": len(self._challenges),
                "issued": self._issued,
                "consumed": self._consumed,
                "rejected": self._rejected,
                "default_ttl": self.default_ttl,
            }
