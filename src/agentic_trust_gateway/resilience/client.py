"""Base class for HTTP clients of external dependencies."""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from agentic_trust_gateway.common.exceptions import ExternalServiceError
from agentic_trust_gateway.resilience.gateway import RetryGateway

logger = structlog.get_logger()


class ServiceClient:
    """
    httpx client whose every request is routed through a ``RetryGateway``.

    Subclasses set ``dependency`` (the breaker name) and build typed
    operations on top of ``_request``.
    """

    dependency: str = "service"

    def __init__(
        self,
        base_url: str,
        gateway: RetryGateway,
        *,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.gateway = gateway
        self.timeout = timeout
        self._transport = transport
        self._headers = headers or {}
        self._client: httpx.AsyncClient | None = None
        self._logger = logger.bind(dependency=self.dependency, base_url=self.base_url)

    async def __aenter__(self) -> ServiceClient:
        await self.connect()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def connect(self) -> None:
        """Open the underlying connection pool."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
                headers=self._headers,
            )
            self._logger.debug("service_client_connected")

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    def _ensure_connected(self) -> httpx.AsyncClient:
        if not self._client:
            raise ExternalServiceError(
                f"{self.dependency} client not connected. Use 'async with' or call connect()"
            )
        return self._client

    async def _request(
        self,
        method: str,
        path: str,
        *,
        name: str,
        allow_not_found: bool = False,
        **kwargs: Any,
    ) -> Any:
        """
        Send a request and decode the JSON body.

        Args:
            method: HTTP method
            path: Path relative to ``base_url``
            name: Operation name for logs and metrics
            allow_not_found: Return ``None`` on 404 instead of raising
            **kwargs: Passed through to ``httpx.AsyncClient.request``

        Returns:
            Decoded JSON body, or ``None`` for an allowed 404
        """
        client = self._ensure_connected()

        async def send() -> Any:
            response = await client.request(method, path, **kwargs)
            if allow_not_found and response.status_code == 404:
                return None
            response.raise_for_status()
            return response.json()

        return await self.gateway.call(self.dependency, send, name=name, path=path)
