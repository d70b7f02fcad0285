"""Request and response bodies for the HTTP API."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from agentic_trust_gateway.common.exceptions import ErrorCode
from agentic_trust_gateway.common.types import (
    AssuranceLevel,
    IssuerDomain,
    IssuerType,
    Recommendation,
    RiskScore,
)
from agentic_trust_gateway.verification.models import Presentation, VerificationResult

_API = ConfigDict(alias_generator=to_camel, populate_by_name=True)

# Rejection codes that are not the caller's fault and do not mean "untrusted"
REJECTION_STATUS: dict[str, int] = {
    ErrorCode.INVALID_STRUCTURE: 400,
    ErrorCode.SERVICE_UNAVAILABLE: 503,
    ErrorCode.CANCELLED: 504,
    ErrorCode.INTERNAL_ERROR: 500,
}


def rejection_status(result: VerificationResult) -> int:
    """HTTP status for a rejected result; 403 unless the code says otherwise."""
    return REJECTION_STATUS.get(result.error_code or "", 403)


class ChallengeRequest(BaseModel):
    model_config = _API

    audience: str | None = None
    ttl_seconds: float | None = Field(default=None, gt=0, le=3600)


class ChallengeResponse(BaseModel):
    """Issued challenge. ``exp`` is unix seconds."""

    nonce: str
    aud: str
    exp: int


class PresentRequest(BaseModel):
    presentation: Presentation


class CredentialVerifiedResponse(BaseModel):
    model_config = _API

    valid: bool = True
    issuer_did: str
    issuer_type: IssuerType
    domains: list[IssuerDomain]
    assurance_level: AssuranceLevel
    credential_type: str
    risk_score: RiskScore
    recommendation: Recommendation
    risk_flags: list[str] = Field(default_factory=list)
    request_id: str | None = None

    @classmethod
    def from_result(cls, result: VerificationResult) -> CredentialVerifiedResponse:
        return cls(
            issuer_did=result.issuer_did,
            issuer_type=result.issuer_type,
            domains=list(result.domains),
            assurance_level=result.assurance,
            credential_type=result.credential_type,
            risk_score=result.risk_score,
            recommendation=result.recommendation,
            risk_flags=list(result.flags),
            request_id=result.request_id,
        )


class PresentationVerifiedResponse(BaseModel):
    """Fields a capability-token issuer needs from a verified presentation."""

    model_config = _API

    valid: bool = True
    subject_id: str
    role: str
    scopes: list[str]
    issuer_did: str | None = None
    risk_score: RiskScore | None = None
    risk_flags: list[str] = Field(default_factory=list)
    request_id: str | None = None

    @classmethod
    def from_result(cls, result: VerificationResult) -> PresentationVerifiedResponse:
        return cls(
            subject_id=result.subject_id,
            role=result.role,
            scopes=list(result.scopes),
            issuer_did=result.issuer_did,
            risk_score=result.risk_score,
            risk_flags=list(result.flags),
            request_id=result.request_id,
        )


class RejectionResponse(BaseModel):
    model_config = _API

    valid: bool = False
    error: str
    error_code: str
    status_code: int
    flags: list[str] = Field(default_factory=list)
    risk_score: RiskScore | None = None
    request_id: str | None = None

    @classmethod
    def from_result(cls, result: VerificationResult) -> RejectionResponse:
        return cls(
            error=result.reason or "Verification failed",
            error_code=result.error_code or ErrorCode.INTERNAL_ERROR,
            status_code=rejection_status(result),
            flags=list(result.flags),
            risk_score=result.risk_score,
            request_id=result.request_id,
        )


def dump(model: BaseModel) -> dict[str, Any]:
    """camelCase JSON-compatible body."""
    return model.model_dump(mode="json", by_alias=True, exclude_none=True)
