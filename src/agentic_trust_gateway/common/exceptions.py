"""Exception hierarchy for the Agentic Trust Gateway."""

from __future__ import annotations

from enum import StrEnum
from typing import Any


class ErrorCode(StrEnum):
    """Stable error codes surfaced to relying parties."""

    INVALID_STRUCTURE = "INVALID_STRUCTURE"
    INVALID_CHALLENGE = "INVALID_CHALLENGE"
    UNKNOWN_ISSUER = "UNKNOWN_ISSUER"
    BRAND_IMPERSONATION = "BRAND_IMPERSONATION"
    CATEGORY_NOT_ALLOWED = "CATEGORY_NOT_ALLOWED"
    DOMAIN_NOT_ALLOWED = "DOMAIN_NOT_ALLOWED"
    INSUFFICIENT_VERIFICATION = "INSUFFICIENT_VERIFICATION"
    ISSUER_REVOKED = "ISSUER_REVOKED"
    CREDENTIAL_REVOKED = "CREDENTIAL_REVOKED"
    CREDENTIAL_EXPIRED = "CREDENTIAL_EXPIRED"
    CREDENTIAL_UNKNOWN = "CREDENTIAL_UNKNOWN"
    ROLE_MISMATCH = "ROLE_MISMATCH"
    INVALID_PROOF = "INVALID_PROOF"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    CANCELLED = "CANCELLED"
    NOT_FOUND = "NOT_FOUND"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class TrustGatewayError(Exception):
    """Base exception for all gateway errors."""

    status_code: int = 500
    default_code: str = ErrorCode.INTERNAL_ERROR

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        self.cause = cause

    def __str__(self) -> str:
        if self.details:
            return f"[{self.code}] {self.message} - Details: {self.details}"
        return f"[{self.code}] {self.message}"

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to the JSON error body."""
        body: dict[str, Any] = {
            "error": self.message,
            "errorCode": str(self.code),
            "statusCode": self.status_code,
        }
        if self.details:
            body["details"] = self.details
        return body


# Validation Errors
class ValidationError(TrustGatewayError):
    """Malformed input."""

    status_code = 400
    default_code = ErrorCode.INVALID_STRUCTURE


# Lookup Errors
class NotFoundError(TrustGatewayError):
    """Requested record not found."""

    status_code = 404
    default_code = ErrorCode.NOT_FOUND


class IssuerNotFoundError(NotFoundError):
    """No issuer registered under the requested DID."""

    pass


class AgentNotFoundError(NotFoundError):
    """No agent registered under the requested DID."""

    pass


# Policy Errors
class PolicyError(TrustGatewayError):
    """Base class for policy-related errors."""

    pass


class PolicyConfigurationError(PolicyError):
    """Policy or brand table is incomplete or inconsistent."""

    pass


# Challenge Errors
class ChallengeError(TrustGatewayError):
    """Base class for challenge lifecycle errors."""

    status_code = 403
    default_code = ErrorCode.INVALID_CHALLENGE


class ChallengeNotFoundError(ChallengeError):
    """Nonce was never issued or has already been consumed."""

    pass


class ChallengeExpiredError(ChallengeError):
    """Nonce was issued but its lifetime has passed."""

    pass


# External Service Errors
class ExternalServiceError(TrustGatewayError):
    """A dependency (chain indexer, proof server, receipt service) failed."""

    status_code = 503
    default_code = ErrorCode.SERVICE_UNAVAILABLE


class CircuitOpenError(ExternalServiceError):
    """Circuit breaker is open for the dependency."""

    pass


class RetryExhaustedError(ExternalServiceError):
    """All retry attempts exhausted."""

    pass


class ServiceNotReadyError(ExternalServiceError):
    """Gateway services have not finished initializing."""

    pass


# Configuration Errors
class ConfigurationError(TrustGatewayError):
    """Configuration error."""

    pass
