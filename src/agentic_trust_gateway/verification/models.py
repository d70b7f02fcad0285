"""Presentation, request and result types for verification."""

from __future__ import annotations

from enum import StrEnum

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from agentic_trust_gateway.common.exceptions import ErrorCode
from agentic_trust_gateway.common.types import (
    AssuranceLevel,
    IssuerDomain,
    IssuerType,
    Recommendation,
    RiskScore,
)

_WIRE = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)


class Disclosed(BaseModel):
    """Attributes the holder chose to reveal."""

    model_config = _WIRE

    role: str = ""
    scopes: tuple[str, ...] = ()


class Receipt(BaseModel):
    """Pointer to the credential a presentation is derived from."""

    model_config = _WIRE

    credential_hash: str = Field(
        default="",
        validation_alias=AliasChoices("credentialHash", "credential_hash", "cred_hash"),
    )
    attestation: str = ""
    issuer_did: str = ""
    credential_type: str = ""


class Presentation(BaseModel):
    """
    A verifiable presentation answering one challenge.

    Every field defaults to empty; completeness is checked by the verifier
    so that malformed input yields INVALID_STRUCTURE rather than a parse error.
    """

    model_config = _WIRE

    subject_id: str = Field(
        default="",
        validation_alias=AliasChoices("subjectId", "subject_id", "pid"),
    )
    proof: str = ""
    nonce: str = ""
    disclosed: Disclosed = Field(default_factory=Disclosed)
    receipt: Receipt = Field(default_factory=Receipt)


class CredentialVerificationRequest(BaseModel):
    """Issuer-level credential check: is this issuer fit to issue this type?"""

    model_config = _WIRE

    credential_type: str = ""
    issuer_did: str = ""
    proof: str = ""
    challenge: str | None = None
    subject_id: str | None = None


class VerificationState(StrEnum):
    """States of the presentation verification state machine."""

    RECEIVED = "RECEIVED"
    STRUCTURE_CHECKED = "STRUCTURE_CHECKED"
    CHALLENGE_CONSUMED = "CHALLENGE_CONSUMED"
    ISSUER_RESOLVED = "ISSUER_RESOLVED"
    RISK_ASSESSED = "RISK_ASSESSED"
    RECEIPT_CHECKED = "RECEIPT_CHECKED"
    ROLE_MATCHED = "ROLE_MATCHED"
    PROOF_VERIFIED = "PROOF_VERIFIED"
    VALID = "VALID"
    REJECTED = "REJECTED"


class VerificationResult(BaseModel):
    """Terminal outcome of a verification. Never raised, always returned."""

    model_config = _WIRE

    valid: bool
    state: VerificationState
    request_id: str | None = None

    # Success payload
    subject_id: str | None = None
    role: str | None = None
    scopes: tuple[str, ...] = ()

    # Issuer and risk
    issuer_did: str | None = None
    issuer_type: IssuerType | None = None
    domains: tuple[IssuerDomain, ...] = ()
    assurance: AssuranceLevel | None = None
    credential_type: str | None = None
    risk_score: RiskScore | None = None
    recommendation: Recommendation | None = None
    flags: tuple[str, ...] = ()

    # Failure
    error_code: str | None = None
    reason: str | None = None

    # States visited, in order
    transitions: tuple[VerificationState, ...] = ()

    @property
    def rejected(self) -> bool:
        return self.state == VerificationState.REJECTED

    def failed_with(self, code: ErrorCode | str) -> bool:
        return self.error_code == str(code)
