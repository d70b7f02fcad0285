"""Fraud and risk assessment for credential issuers."""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from agentic_trust_gateway.common.exceptions import PolicyConfigurationError
from agentic_trust_gateway.common.types import (
    CredentialType,
    IssuerType,
    Recommendation,
    RiskReason,
    RiskScore,
)
from agentic_trust_gateway.policy.brands import (
    WELL_KNOWN_BRANDS,
    match_brand,
    validate_brand_table,
)
from agentic_trust_gateway.policy.credential_policies import (
    CREDENTIAL_TYPE_POLICIES,
    get_policy,
    validate_policy_table,
)
from agentic_trust_gateway.policy.models import (
    CredentialTypePolicy,
    RiskAssessment,
    WellKnownBrand,
)
from agentic_trust_gateway.registry.models import Issuer


def _low(reason: RiskReason | None = None) -> RiskAssessment:
    return RiskAssessment(score=RiskScore.LOW, reason=reason, recommendation=Recommendation.ALLOW)


class FraudPolicyEngine:
    """
    Scores an issuer against one credential type.

    The engine holds only immutable reference data, performs no I/O and
    never mutates its inputs, so one instance can be shared by every
    request.

    Checks run in order and stop at the first CRITICAL finding:

    1. brand impersonation
    2. issuer type and domain eligibility
    3. assurance threshold
    4. revocation and active status (always evaluated)

    Example:
        ```python
        engine = FraudPolicyEngine()
        risk = engine.assess(issuer, CredentialType.MEDICAL_RECORD)
        if risk.recommendation == Recommendation.BLOCK:
            reject(risk.reason, risk.flags)
        ```
    """

    def __init__(
        self,
        policies: Mapping[CredentialType, CredentialTypePolicy] = CREDENTIAL_TYPE_POLICIES,
        brands: Iterable[WellKnownBrand] = WELL_KNOWN_BRANDS,
        *,
        require_complete: bool = True,
    ) -> None:
        validate_policy_table(policies, require_complete=require_complete)
        brands = tuple(brands)
        try:
            validate_brand_table(brands)
        except ValueError as e:
            raise PolicyConfigurationError(str(e), cause=e) from e

        self._policies = dict(policies)
        self._brands = brands

    #region Reference Data

    def get_policy(self, credential_type: CredentialType | str) -> CredentialTypePolicy | None:
        return get_policy(credential_type, self._policies)

    def get_well_known_brands(self) -> tuple[WellKnownBrand, ...]:
        return self._brands

    def match_brand(self, claimed_name: str | None) -> WellKnownBrand | None:
        return match_brand(claimed_name, self._brands)

    def is_issuer_type_allowed(
        self,
        issuer_type: IssuerType,
        credential_type: CredentialType | str,
    ) -> bool:
        policy = self.get_policy(credential_type)
        return policy is not None and issuer_type in policy.allowed_issuer_types

    #endregion

    #region Individual Checks

    def detect_brand_impersonation(self, issuer: Issuer) -> RiskAssessment:
        """
        Compare the issuer's claimed brand with the well-known brand table.

        A self-sovereign issuer claiming a well-known brand is always
        CRITICAL, whatever its assurance level or domains.
        """
        brand = self.match_brand(issuer.claimed_brand_name)
        if brand is None:
            return _low()

        if issuer.type == IssuerType.SELF_SOVEREIGN:
            return RiskAssessment(
                score=RiskScore.CRITICAL,
                reason=RiskReason.BRAND_IMPERSONATION,
                flags=(
                    f"Self-sovereign issuer claims well-known brand '{brand.brand_name}'",
                ),
                recommendation=Recommendation.BLOCK,
            )

        if brand.expected_issuer_did and issuer.did != brand.expected_issuer_did:
            return RiskAssessment(
                score=RiskScore.HIGH,
                reason=RiskReason.BRAND_IMPERSONATION,
                flags=(
                    f"Brand '{brand.brand_name}' is registered to {brand.expected_issuer_did}",
                ),
                recommendation=Recommendation.WARN,
            )

        if issuer.type != brand.min_type and issuer.type != IssuerType.GOVERNMENT_ENTITY:
            return RiskAssessment(
                score=RiskScore.HIGH,
                reason=RiskReason.INSUFFICIENT_CATEGORY,
                flags=(
                    f"Brand '{brand.brand_name}' requires a {brand.min_type} issuer, got {issuer.type}",
                ),
                recommendation=Recommendation.WARN,
            )

        if not issuer.assurance.meets(brand.min_assurance):
            return RiskAssessment(
                score=RiskScore.HIGH,
                reason=RiskReason.INSUFFICIENT_VERIFICATION,
                flags=(
                    f"Brand '{brand.brand_name}' requires {brand.min_assurance}, got {issuer.assurance}",
                ),
                recommendation=Recommendation.WARN,
            )

        return _low(RiskReason.VERIFIED_BRAND)

    def validate_eligibility(
        self,
        issuer: Issuer,
        credential_type: CredentialType | str,
    ) -> RiskAssessment:
        """Check issuer type and domain against the credential type's policy."""
        policy = self.get_policy(credential_type)
        if policy is None:
            return RiskAssessment(
                score=RiskScore.MEDIUM,
                reason=RiskReason.NO_POLICY_DEFINED,
                flags=(f"No issuer policy defined for credential type '{credential_type}'",),
                recommendation=Recommendation.WARN,
            )

        if issuer.type not in policy.allowed_issuer_types:
            allowed = ", ".join(sorted(policy.allowed_issuer_types))
            return RiskAssessment(
                score=RiskScore.CRITICAL,
                reason=RiskReason.CATEGORY_NOT_ALLOWED,
                flags=(
                    f"{issuer.type} issuers cannot issue {policy.credential_type} (allowed: {allowed})",
                    policy.description,
                ),
                recommendation=Recommendation.BLOCK,
            )

        if policy.required_domains and not (policy.required_domains & issuer.domains):
            required = ", ".join(sorted(policy.required_domains))
            return RiskAssessment(
                score=RiskScore.CRITICAL,
                reason=RiskReason.DOMAIN_NOT_ALLOWED,
                flags=(
                    f"{policy.credential_type} requires an issuer in one of: {required}",
                    policy.description,
                ),
                recommendation=Recommendation.BLOCK,
            )

        return _low(RiskReason.CATEGORY_VALID)

    def validate_assurance(
        self,
        issuer: Issuer,
        credential_type: CredentialType | str,
    ) -> RiskAssessment:
        """Check the issuer's assurance level against the policy minimum."""
        policy = self.get_policy(credential_type)
        if policy is None:
            return _low()

        if not issuer.assurance.meets(policy.min_assurance):
            return RiskAssessment(
                score=RiskScore.HIGH,
                reason=RiskReason.INSUFFICIENT_VERIFICATION,
                flags=(
                    f"{policy.credential_type} requires {policy.min_assurance}, "
                    f"issuer has {issuer.assurance}",
                ),
                recommendation=Recommendation.BLOCK,
            )

        return _low(RiskReason.VERIFICATION_LEVEL_VALID)

    def check_status(self, issuer: Issuer) -> RiskAssessment:
        if issuer.is_revoked:
            return RiskAssessment(
                score=RiskScore.CRITICAL,
                reason=RiskReason.ISSUER_REVOKED,
                flags=(f"Issuer {issuer.did} has been revoked",),
                recommendation=Recommendation.BLOCK,
            )
        if not issuer.is_active:
            return RiskAssessment(
                score=RiskScore.HIGH,
                reason=RiskReason.ISSUER_INACTIVE,
                flags=(f"Issuer {issuer.did} is inactive",),
                recommendation=Recommendation.WARN,
            )
        return _low(RiskReason.STATUS_VALID)

    #endregion

    def assess(
        self,
        issuer: Issuer,
        credential_type: CredentialType | str,
    ) -> RiskAssessment:
        """
        Run the full check pipeline.

        Args:
            issuer: Issuer of the credential being presented
            credential_type: Credential type being presented

        Returns:
            Combined assessment. The first blocking finding is the primary
            reason; a revoked issuer escalates it to CRITICAL and appends an
            ISSUER_REVOKED flag. Without a block, the most severe warning is
            returned with WARN, otherwise LOW / ALL_CHECKS_PASSED / ALLOW.
        """
        findings = [self.detect_brand_impersonation(issuer)]
        if not findings[-1].is_critical:
            findings.append(self.validate_eligibility(issuer, credential_type))
            if not findings[-1].is_critical:
                findings.append(self.validate_assurance(issuer, credential_type))
        status = self.check_status(issuer)

        return self._resolve(findings, status)

    def _resolve(self, findings: list[RiskAssessment], status: RiskAssessment) -> RiskAssessment:
        raised = [f for f in findings if f.score != RiskScore.LOW]
        blocking = [f for f in raised if f.blocked]

        if blocking:
            primary = blocking[0]
            flags = [*primary.flags, *(flag for f in raised if f is not primary for flag in f.flags)]
            score = max((f.score for f in raised), key=lambda s: s.rank)
            if status.blocked:
                score = RiskScore.CRITICAL
            flags.extend(status.flags)
            return RiskAssessment(
                score=score,
                reason=primary.reason,
                flags=tuple(flags),
                recommendation=Recommendation.BLOCK,
            )

        if status.blocked:
            return RiskAssessment(
                score=RiskScore.CRITICAL,
                reason=RiskReason.ISSUER_REVOKED,
                flags=(*status.flags, *(flag for f in raised for flag in f.flags)),
                recommendation=Recommendation.BLOCK,
            )

        if status.score != RiskScore.LOW:
            raised.append(status)

        if raised:
            worst = max(raised, key=lambda f: f.score.rank)
            return RiskAssessment(
                score=worst.score,
                reason=worst.reason,
                flags=tuple(flag for f in raised for flag in f.flags),
                recommendation=Recommendation.WARN,
            )

        return RiskAssessment(
            score=RiskScore.LOW,
            reason=RiskReason.ALL_CHECKS_PASSED,
            recommendation=Recommendation.ALLOW,
        )
