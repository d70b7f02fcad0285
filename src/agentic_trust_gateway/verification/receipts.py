"""Credential receipt status: revocation, suspension and expiry."""

from __future__ import annotations

import base64
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from urllib.parse import quote

import httpx
import structlog
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from agentic_trust_gateway.resilience.client import ServiceClient
from agentic_trust_gateway.resilience.gateway import RetryGateway
from agentic_trust_gateway.verification.models import Receipt

logger = structlog.get_logger()


class ReceiptStatus(StrEnum):
    VALID = "valid"
    REVOKED = "revoked"
    EXPIRED = "expired"
    SUSPENDED = "suspended"
    UNKNOWN = "unknown"


class ReceiptCheck(BaseModel):
    """
    Status of a credential plus what its issuer bound to it.

    ``issuer_did`` and ``credential_type`` are the issuer and type the
    credential was actually issued as. They are None when the source does
    not know them, which callers must treat as unbound.
    """

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    status: ReceiptStatus
    role: str | None = None
    scopes: frozenset[str] = Field(default_factory=frozenset)
    expires_at: float | None = None
    issuer_did: str | None = None
    credential_type: str | None = None

    def is_bound_to(self, receipt: Receipt) -> bool:
        """True if the credential was issued by, and as, what ``receipt`` claims."""
        return (
            self.issuer_did is not None
            and self.credential_type is not None
            and self.issuer_did == receipt.issuer_did
            and self.credential_type == receipt.credential_type
        )


def _b64encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64decode(data: str) -> bytes:
    return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))


def sign_attestation(private_key: Ed25519PrivateKey, credential_hash: str) -> str:
    """Issuer-side: sign a credential hash, base64url without padding."""
    return _b64encode(private_key.sign(credential_hash.encode("utf-8")))


def verify_attestation(public_key: Ed25519PublicKey, credential_hash: str, attestation: str) -> bool:
    """Check an Ed25519 attestation over ``credential_hash``."""
    try:
        public_key.verify(_b64decode(attestation), credential_hash.encode("utf-8"))
    except (InvalidSignature, ValueError):
        return False
    return True


class ReceiptStatusProvider(ABC):
    """Answers whether a presented credential is still usable."""

    @abstractmethod
    async def check(self, receipt: Receipt) -> ReceiptCheck:
        """
        Look up a receipt.

        Args:
            receipt: Receipt from the presentation

        Returns:
            Status with the granted role and scopes. Unknown credentials
            return ``ReceiptStatus.UNKNOWN`` rather than raising.
        """
        pass

    async def connect(self) -> None:
        """Acquire connections. No-op unless the provider is remote."""

    async def close(self) -> None:
        """Release connections. No-op unless the provider is remote."""


@dataclass
class _ReceiptRecord:
    role: str
    issuer_did: str
    credential_type: str
    scopes: frozenset[str] = field(default_factory=frozenset)
    expires_at: float | None = None
    status: ReceiptStatus = ReceiptStatus.VALID


class InMemoryReceiptRegistry(ReceiptStatusProvider):
    """
    Receipt registry held in process.

    Every receipt is registered with the issuer and credential type it was
    issued as; ``check`` reports them so the verifier can reject a hash
    presented under another issuer. When ``attestation_keys`` holds a key
    for that issuer, the attestation must be a valid Ed25519 signature by
    that key over the credential hash; otherwise the receipt is UNKNOWN.

    Example:
        ```python
        registry = InMemoryReceiptRegistry()
        registry.register(
            "hash-123",
            role="Banker",
            scopes=["bank:transfer"],
            issuer_did="did:agentic:chase",
            credential_type="FINANCIAL_ACCOUNT",
        )
        registry.revoke("hash-123")
        ```
    """

    def __init__(
        self,
        attestation_keys: Mapping[str, Ed25519PublicKey] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._keys = dict(attestation_keys or {})
        self._clock = clock
        self._records: dict[str, _ReceiptRecord] = {}
        self._lock = threading.Lock()
        self._logger = logger.bind(component="receipt_registry")

    def register(
        self,
        credential_hash: str,
        role: str,
        scopes: Iterable[str] = (),
        *,
        issuer_did: str,
        credential_type: str,
        expires_at: float | None = None,
    ) -> None:
        with self._lock:
            self._records[credential_hash] = _ReceiptRecord(
                role=role,
                issuer_did=issuer_did,
                credential_type=credential_type,
                scopes=frozenset(scopes),
                expires_at=expires_at,
            )

    def add_attestation_key(self, issuer_did: str, public_key: Ed25519PublicKey) -> None:
        self._keys[issuer_did] = public_key

    def revoke(self, credential_hash: str) -> bool:
        return self._set_status(credential_hash, ReceiptStatus.REVOKED)

    def suspend(self, credential_hash: str) -> bool:
        return self._set_status(credential_hash, ReceiptStatus.SUSPENDED)

    def reinstate(self, credential_hash: str) -> bool:
        return self._set_status(credential_hash, ReceiptStatus.VALID)

    def _set_status(self, credential_hash: str, status: ReceiptStatus) -> bool:
        with self._lock:
            record = self._records.get(credential_hash)
            if record is None:
                return False
            record.status = status
        self._logger.info("receipt_status_changed", credential_hash=credential_hash, status=str(status))
        return True

    async def check(self, receipt: Receipt) -> ReceiptCheck:
        with self._lock:
            record = self._records.get(receipt.credential_hash)
            if record is None:
                return ReceiptCheck(status=ReceiptStatus.UNKNOWN)
            snapshot = ReceiptCheck(
                status=record.status,
                role=record.role,
                scopes=record.scopes,
                expires_at=record.expires_at,
                issuer_did=record.issuer_did,
                credential_type=record.credential_type,
            )

        key = self._keys.get(snapshot.issuer_did)
        if key is not None and not verify_attestation(key, receipt.credential_hash, receipt.attestation):
            self._logger.warning("receipt_attestation_invalid", credential_hash=receipt.credential_hash)
            return ReceiptCheck(status=ReceiptStatus.UNKNOWN)

        if snapshot.status == ReceiptStatus.VALID and snapshot.expires_at is not None:
            if self._clock() >= snapshot.expires_at:
                return snapshot.model_copy(update={"status": ReceiptStatus.EXPIRED})
        return snapshot


class HttpReceiptStatusProvider(ServiceClient, ReceiptStatusProvider):
    """
    Receipt status from a remote receipt service.

    ``GET /receipts/{credentialHash}`` returns
    ``{"status", "role", "scopes", "expiresAt", "issuerDid", "credentialType"}``
    or 404 for unknown hashes.
    """

    dependency = "receipt-service"

    def __init__(
        self,
        base_url: str,
        gateway: RetryGateway,
        *,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(base_url, gateway, timeout=timeout, transport=transport)
        self._clock = clock

    async def check(self, receipt: Receipt) -> ReceiptCheck:
        data = await self._request(
            "GET",
            f"/receipts/{quote(receipt.credential_hash, safe='')}",
            name="check_receipt",
            allow_not_found=True,
            headers={"X-Attestation": receipt.attestation} if receipt.attestation else None,
        )
        if data is None:
            return ReceiptCheck(status=ReceiptStatus.UNKNOWN)

        try:
            result = ReceiptCheck.model_validate(data)
        except ValueError:
            self._logger.warning("receipt_response_invalid", credential_hash=receipt.credential_hash)
            return ReceiptCheck(status=ReceiptStatus.UNKNOWN)

        if (
            result.status == ReceiptStatus.VALID
            and result.expires_at is not None
            and self._clock() >= result.expires_at
        ):
            return result.model_copy(update={"status": ReceiptStatus.EXPIRED})
        return result
