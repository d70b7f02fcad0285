"""Issuer eligibility policies and fraud detection."""

from agentic_trust_gateway.policy.brands import WELL_KNOWN_BRANDS, match_brand
from agentic_trust_gateway.policy.credential_policies import (
    CREDENTIAL_TYPE_POLICIES,
    get_policy,
    validate_policy_table,
)
from agentic_trust_gateway.policy.fraud import FraudPolicyEngine
from agentic_trust_gateway.policy.models import (
    CredentialTypePolicy,
    RiskAssessment,
    WellKnownBrand,
)

__all__ = [
    "WELL_KNOWN_BRANDS",
    "CREDENTIAL_TYPE_POLICIES",
    "CredentialTypePolicy",
    "FraudPolicyEngine",
    "RiskAssessment",
    "WellKnownBrand",
    "get_policy",
    "match_brand",
    "validate_policy_table",
]
