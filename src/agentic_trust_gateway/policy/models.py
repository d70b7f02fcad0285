"""Reference-data and result models for fraud policy evaluation."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, model_validator

from agentic_trust_gateway.common.types import (
    AssuranceLevel,
    CredentialType,
    IssuerDomain,
    IssuerType,
    Recommendation,
    RiskReason,
    RiskScore,
)


class WellKnownBrand(BaseModel):
    """A brand that only properly vetted issuers may claim."""

    model_config = ConfigDict(frozen=True)

    brand_name: str
    aliases: tuple[str, ...] = ()
    min_type: IssuerType = IssuerType.CORPORATION
    min_assurance: AssuranceLevel = AssuranceLevel.REGULATED_ENTITY
    expected_issuer_did: str | None = None

    @property
    def names(self) -> tuple[str, ...]:
        return (self.brand_name, *self.aliases)


class CredentialTypePolicy(BaseModel):
    """Which issuers may issue a credential type."""

    model_config = ConfigDict(frozen=True)

    credential_type: CredentialType
    allowed_issuer_types: frozenset[IssuerType]
    required_domains: frozenset[IssuerDomain] | None = None
    min_assurance: AssuranceLevel
    requires_stake: bool = False
    description: str = ""

    @model_validator(mode="after")
    def validate_issuer_types(self) -> CredentialTypePolicy:
        if not self.allowed_issuer_types:
            raise ValueError(f"{self.credential_type}: allowed_issuer_types must not be empty")
        if self.required_domains is not None and not self.required_domains:
            raise ValueError(f"{self.credential_type}: required_domains must be None or non-empty")
        return self


class RiskAssessment(BaseModel):
    """Outcome of one fraud check or of the whole pipeline."""

    model_config = ConfigDict(frozen=True)

    score: RiskScore
    reason: RiskReason | None = None
    flags: tuple[str, ...] = ()
    recommendation: Recommendation | None = None

    @model_validator(mode="after")
    def critical_blocks(self) -> RiskAssessment:
        if self.score == RiskScore.CRITICAL and self.recommendation != Recommendation.BLOCK:
            raise ValueError("CRITICAL risk must carry a BLOCK recommendation")
        return self

    @property
    def blocked(self) -> bool:
        return self.recommendation == Recommendation.BLOCK

    @property
    def is_critical(self) -> bool:
        return self.score == RiskScore.CRITICAL
