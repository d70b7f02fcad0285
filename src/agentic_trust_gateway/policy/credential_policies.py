"""Issuer eligibility rules per credential type."""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from agentic_trust_gateway.common.exceptions import PolicyConfigurationError
from agentic_trust_gateway.common.types import (
    AssuranceLevel,
    CredentialType,
    IssuerDomain,
    IssuerType,
)
from agentic_trust_gateway.policy.models import CredentialTypePolicy

SS = IssuerType.SELF_SOVEREIGN
CORP = IssuerType.CORPORATION
GOV = IssuerType.GOVERNMENT_ENTITY
INST = IssuerType.INSTITUTION


def _policy(
    credential_type: CredentialType,
    issuer_types: Iterable[IssuerType],
    min_assurance: AssuranceLevel,
    description: str,
    *,
    domains: Iterable[IssuerDomain] | None = None,
    requires_stake: bool = False,
) -> CredentialTypePolicy:
    return CredentialTypePolicy(
        credential_type=credential_type,
        allowed_issuer_types=frozenset(issuer_types),
        required_domains=frozenset(domains) if domains is not None else None,
        min_assurance=min_assurance,
        requires_stake=requires_stake,
        description=description,
    )


_BASIC = AssuranceLevel.BASIC_KYC
_REGULATED = AssuranceLevel.REGULATED_ENTITY
_CRITICAL = AssuranceLevel.SYSTEM_CRITICAL
_UNVERIFIED = AssuranceLevel.UNVERIFIED

_DEFAULT_POLICIES = (
    # Identity & age
    _policy(CredentialType.AGE_OVER_18, (GOV, INST), _BASIC,
            "Age verification requires a government or institutional issuer"),
    _policy(CredentialType.AGE_OVER_21, (GOV, INST), _BASIC,
            "Age verification requires a government or institutional issuer"),
    _policy(CredentialType.KYC_LEVEL_1, (CORP, GOV), _BASIC,
            "Basic KYC can be issued by verified corporations or government"),
    _policy(CredentialType.KYC_LEVEL_2, (CORP, GOV), _REGULATED,
            "Enhanced KYC requires a regulated entity or government"),
    _policy(CredentialType.IDENTITY_VERIFIED, (GOV,), _CRITICAL,
            "Identity verification must come from a government entity"),

    # Government
    _policy(CredentialType.VOTER_ELIGIBILITY, (GOV,), _CRITICAL,
            "Voter eligibility must come from a government voting authority",
            domains=(IssuerDomain.GOV_SERVICES,)),
    _policy(CredentialType.CITIZENSHIP, (GOV,), _CRITICAL,
            "Citizenship must be issued by government"),
    _policy(CredentialType.RESIDENCY, (GOV,), _CRITICAL,
            "Residency must be issued by government"),
    _policy(CredentialType.DRIVERS_LICENSE, (GOV,), _CRITICAL,
            "Drivers licenses must be issued by a DMV or other government body"),

    # Financial
    _policy(CredentialType.FINANCIAL_ACCOUNT, (CORP,), _REGULATED,
            "Financial accounts must be from regulated financial institutions",
            domains=(IssuerDomain.FINANCIAL,), requires_stake=True),
    _policy(CredentialType.CRYPTO_EXCHANGE_KYC, (CORP,), _REGULATED,
            "Crypto exchange KYC must be from a regulated exchange",
            domains=(IssuerDomain.FINANCIAL,), requires_stake=True),
    _policy(CredentialType.ACCREDITED_INVESTOR, (CORP, GOV), _REGULATED,
            "Accredited investor status from a financial institution or regulator",
            domains=(IssuerDomain.FINANCIAL, IssuerDomain.GOV_SERVICES)),

    # Medical
    _policy(CredentialType.MEDICAL_RECORD, (INST,), _REGULATED,
            "Medical records must come from healthcare institutions",
            domains=(IssuerDomain.MEDICAL,)),
    _policy(CredentialType.PRESCRIPTION, (INST,), _BASIC,
            "Prescriptions must be from licensed medical institutions",
            domains=(IssuerDomain.MEDICAL,)),
    _policy(CredentialType.MEDICAL_LICENSE, (GOV, INST), _REGULATED,
            "Medical licenses from government or medical boards"),
    _policy(CredentialType.PATIENT_CONSENT, (INST,), _BASIC,
            "Patient consent from a healthcare provider",
            domains=(IssuerDomain.MEDICAL,)),

    # Education & professional
    _policy(CredentialType.DEGREE, (INST,), _BASIC,
            "Degrees must be from accredited educational institutions",
            domains=(IssuerDomain.EDUCATION,)),
    _policy(CredentialType.PROFESSIONAL_LICENSE, (GOV, INST), _REGULATED,
            "Professional licenses from licensing boards or government"),
    _policy(CredentialType.CERTIFICATION, (CORP, INST), _BASIC,
            "Certifications from recognized institutions or corporations"),

    # Social & self-issued
    _policy(CredentialType.USER_PREFERENCE, (SS, CORP, INST), _UNVERIFIED,
            "User preferences can be self-issued or from any trusted party"),
    _policy(CredentialType.SOCIAL_ATTESTATION, (SS, CORP), _UNVERIFIED,
            "Social attestations can be from individuals or platforms"),
    _policy(CredentialType.REPUTATION, (SS, CORP, INST), _UNVERIFIED,
            "Reputation scores can be from various sources"),

    # Travel
    _policy(CredentialType.TRAVEL_AUTHORIZATION, (CORP, GOV), _BASIC,
            "Travel authorization from airlines or government"),
    _policy(CredentialType.VISA, (GOV,), _CRITICAL,
            "Visas must be issued by a government immigration authority"),

    # Commerce
    _policy(CredentialType.MERCHANT_VERIFICATION, (CORP,), _BASIC,
            "Merchant verification from payment processors or platforms"),
    _policy(CredentialType.PURCHASE_AUTHORIZATION, (CORP,), _BASIC,
            "Purchase authorization from merchants or payment platforms"),
)

CREDENTIAL_TYPE_POLICIES: Mapping[CredentialType, CredentialTypePolicy] = {
    p.credential_type: p for p in _DEFAULT_POLICIES
}


def validate_policy_table(
    policies: Mapping[CredentialType, CredentialTypePolicy],
    *,
    require_complete: bool = True,
) -> None:
    """
    Check a policy table before it is used.

    Args:
        policies: Table keyed by credential type
        require_complete: Every ``CredentialType`` must have an entry

    Raises:
        PolicyConfigurationError: Missing entries or mismatched keys
    """
    for key, policy in policies.items():
        if key != policy.credential_type:
            raise PolicyConfigurationError(
                f"Policy registered under {key} describes {policy.credential_type}",
                details={"credential_type": str(key)},
            )

    if require_complete:
        missing = sorted(str(t) for t in CredentialType if t not in policies)
        if missing:
            raise PolicyConfigurationError(
                "Credential policy table is incomplete",
                details={"missing": missing},
            )


def get_policy(
    credential_type: CredentialType | str,
    policies: Mapping[CredentialType, CredentialTypePolicy] = CREDENTIAL_TYPE_POLICIES,
) -> CredentialTypePolicy | None:
    """Look up the policy for a credential type; unknown names return None."""
    try:
        return policies.get(CredentialType(credential_type))
    except ValueError:
        return None
