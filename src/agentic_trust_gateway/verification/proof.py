"""Delegation of zero-knowledge proof checks to the proof server."""

from __future__ import annotations

from abc import ABC, abstractmethod

import httpx

from agentic_trust_gateway.common.exceptions import ExternalServiceError
from agentic_trust_gateway.resilience.client import ServiceClient
from agentic_trust_gateway.resilience.gateway import RetryGateway


class ProofVerifier(ABC):
    """Checks that a proof is valid for a subject and challenge nonce."""

    @abstractmethod
    async def verify(self, proof: str, *, subject_id: str, nonce: str) -> bool:
        pass

    async def health_check(self) -> bool:
        return True

    async def connect(self) -> None:
        """Acquire connections. No-op unless the verifier is remote."""

    async def close(self) -> None:
        """Release connections. No-op unless the verifier is remote."""


class ProofServerClient(ServiceClient, ProofVerifier):
    """
    HTTP client for the proof server.

    ``POST /verify {"proof", "subjectId", "nonce"}`` returns ``{"valid": bool}``;
    ``GET /health`` answers 200 when the server is up.
    """

    dependency = "proof-server"

    def __init__(
        self,
        base_url: str,
        gateway: RetryGateway,
        *,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(base_url, gateway, timeout=timeout, transport=transport)

    async def verify(self, proof: str, *, subject_id: str, nonce: str) -> bool:
        data = await self._request(
            "POST",
            "/verify",
            name="verify_proof",
            json={"proof": proof, "subjectId": subject_id, "nonce": nonce},
        )
        return bool(data.get("valid", False))

    async def health_check(self) -> bool:
        try:
            await self._request("GET", "/health", name="proof_server_health")
        except ExternalServiceError as e:
            self._logger.warning("proof_server_unhealthy", error=str(e))
            return False
        return True
