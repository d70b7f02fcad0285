"""Core type definitions for the Agentic Trust Gateway."""

from __future__ import annotations

import asyncio
import uuid
from datetime import datetime
from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class IssuerType(StrEnum):
    """Legal category of a credential issuer."""

    SELF_SOVEREIGN = "SELF_SOVEREIGN"  # Individuals, unverified
    CORPORATION = "CORPORATION"  # Companies, KYC'd
    GOVERNMENT_ENTITY = "GOVERNMENT_ENTITY"  # DMV, passport office, IRS
    INSTITUTION = "INSTITUTION"  # Hospitals, universities


class IssuerDomain(StrEnum):
    """Sectors an issuer is authorised to operate in."""

    FINANCIAL = "FINANCIAL"
    MEDICAL = "MEDICAL"
    EDUCATION = "EDUCATION"
    GOV_SERVICES = "GOV_SERVICES"
    TRAVEL = "TRAVEL"
    COMMERCE = "COMMERCE"
    TECHNOLOGY = "TECHNOLOGY"
    SOCIAL = "SOCIAL"


class AssuranceLevel(StrEnum):
    """How thoroughly an issuer has been vetted. Totally ordered."""

    UNVERIFIED = "UNVERIFIED"
    BASIC_KYC = "BASIC_KYC"
    REGULATED_ENTITY = "REGULATED_ENTITY"
    SYSTEM_CRITICAL = "SYSTEM_CRITICAL"

    @property
    def rank(self) -> int:
        return _ASSURANCE_ORDER.index(self)

    def meets(self, minimum: AssuranceLevel) -> bool:
        """True if this level is at or above ``minimum``."""
        return self.rank >= minimum.rank


_ASSURANCE_ORDER = list(AssuranceLevel)


class CredentialType(StrEnum):
    """Credential classes governed by issuer eligibility policies."""

    # Identity & age
    AGE_OVER_18 = "AGE_OVER_18"
    AGE_OVER_21 = "AGE_OVER_21"
    KYC_LEVEL_1 = "KYC_LEVEL_1"
    KYC_LEVEL_2 = "KYC_LEVEL_2"
    IDENTITY_VERIFIED = "IDENTITY_VERIFIED"

    # Government
    VOTER_ELIGIBILITY = "VOTER_ELIGIBILITY"
    CITIZENSHIP = "CITIZENSHIP"
    RESIDENCY = "RESIDENCY"
    DRIVERS_LICENSE = "DRIVERS_LICENSE"

    # Financial
    FINANCIAL_ACCOUNT = "FINANCIAL_ACCOUNT"
    CRYPTO_EXCHANGE_KYC = "CRYPTO_EXCHANGE_KYC"
    ACCREDITED_INVESTOR = "ACCREDITED_INVESTOR"

    # Medical
    MEDICAL_RECORD = "MEDICAL_RECORD"
    PRESCRIPTION = "PRESCRIPTION"
    MEDICAL_LICENSE = "MEDICAL_LICENSE"
    PATIENT_CONSENT = "PATIENT_CONSENT"

    # Education & professional
    DEGREE = "DEGREE"
    PROFESSIONAL_LICENSE = "PROFESSIONAL_LICENSE"
    CERTIFICATION = "CERTIFICATION"

    # Social & self-issued
    USER_PREFERENCE = "USER_PREFERENCE"
    SOCIAL_ATTESTATION = "SOCIAL_ATTESTATION"
    REPUTATION = "REPUTATION"

    # Travel
    TRAVEL_AUTHORIZATION = "TRAVEL_AUTHORIZATION"
    VISA = "VISA"

    # Commerce
    MERCHANT_VERIFICATION = "MERCHANT_VERIFICATION"
    PURCHASE_AUTHORIZATION = "PURCHASE_AUTHORIZATION"


class AgentRole(StrEnum):
    """Roles an agent identity can act in."""

    LOCAL_AGENT = "LOCAL_AGENT"
    ISSUER_AGENT = "ISSUER_AGENT"
    TASK_AGENT = "TASK_AGENT"
    VERIFIER_AGENT = "VERIFIER_AGENT"


class RiskScore(StrEnum):
    """Severity of a risk finding. Totally ordered."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _RISK_ORDER.index(self)


_RISK_ORDER = list(RiskScore)


class Recommendation(StrEnum):
    """Action a relying party should take."""

    ALLOW = "ALLOW"
    WARN = "WARN"
    BLOCK = "BLOCK"


class RiskReason(StrEnum):
    """Stable reason codes emitted by the fraud policy checks."""

    BRAND_IMPERSONATION = "BRAND_IMPERSONATION"
    INSUFFICIENT_CATEGORY = "INSUFFICIENT_CATEGORY"
    INSUFFICIENT_VERIFICATION = "INSUFFICIENT_VERIFICATION"
    VERIFIED_BRAND = "VERIFIED_BRAND"
    NO_POLICY_DEFINED = "NO_POLICY_DEFINED"
    CATEGORY_NOT_ALLOWED = "CATEGORY_NOT_ALLOWED"
    DOMAIN_NOT_ALLOWED = "DOMAIN_NOT_ALLOWED"
    CATEGORY_VALID = "CATEGORY_VALID"
    VERIFICATION_LEVEL_VALID = "VERIFICATION_LEVEL_VALID"
    ISSUER_REVOKED = "ISSUER_REVOKED"
    ISSUER_INACTIVE = "ISSUER_INACTIVE"
    STATUS_VALID = "STATUS_VALID"
    ALL_CHECKS_PASSED = "ALL_CHECKS_PASSED"


class Context(BaseModel):
    """Per-request execution context passed through verification operations."""

    model_config = ConfigDict(frozen=False, arbitrary_types_allowed=True)

    request_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    audience: str | None = None

    # Cancellation
    timeout: float | None = None
    cancel_event: asyncio.Event | None = None

    # Custom context
    baggage: dict[str, str] = Field(default_factory=dict)

    def with_timeout(self, timeout: float) -> Context:
        """Create a new context with the given deadline in seconds."""
        new_ctx = self.model_copy()
        new_ctx.timeout = timeout
        return new_ctx

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()


class HealthStatus(BaseModel):
    """Health check information for the gateway and its dependencies."""

    status: Literal["healthy", "degraded", "unhealthy"]
    checks: dict[str, bool] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=datetime.now)
    message: str = ""
