"""Common utilities, types, and error hierarchy."""

from agentic_trust_gateway.common.types import (
    AgentRole,
    AssuranceLevel,
    Context,
    CredentialType,
    IssuerDomain,
    IssuerType,
    Recommendation,
    RiskReason,
    RiskScore,
)
from agentic_trust_gateway.common.exceptions import (
    ErrorCode,
    TrustGatewayError,
    ValidationError,
    NotFoundError,
    PolicyConfigurationError,
    ChallengeError,
    ExternalServiceError,
    ConfigurationError,
)
from agentic_trust_gateway.common.retry import (
    RetryPolicy,
    is_transient_error,
    with_logging,
    with_retry,
)

__all__ = [
    "AgentRole",
    "AssuranceLevel",
    "Context",
    "CredentialType",
    "IssuerDomain",
    "IssuerType",
    "Recommendation",
    "RiskReason",
    "RiskScore",
    "ErrorCode",
    "TrustGatewayError",
    "ValidationError",
    "NotFoundError",
    "PolicyConfigurationError",
    "ChallengeError",
    "ExternalServiceError",
    "ConfigurationError",
    "RetryPolicy",
    "is_transient_error",
    "with_logging",
    "with_retry",
]
