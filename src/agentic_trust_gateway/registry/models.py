"""Issuer and agent records held by the trust registry."""

from __future__ import annotations

import re
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from agentic_trust_gateway.common.types import (
    AgentRole,
    AssuranceLevel,
    IssuerDomain,
    IssuerType,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# agent_0 .. agent_100 are reserved for protocol agents
SYSTEM_AGENT_ID_RANGE = range(0, 101)
_SYSTEM_AGENT_ID = re.compile(r"^agent_(\d+)$")


def is_system_agent_id(agent_id: str) -> bool:
    """True for agent ids in the reserved ``agent_0`` .. ``agent_100`` range."""
    match = _SYSTEM_AGENT_ID.match(agent_id)
    return match is not None and int(match.group(1)) in SYSTEM_AGENT_ID_RANGE


class RegistryRecord(BaseModel):
    """Base for records keyed by DID. Serialises with camelCase aliases."""

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    did: str = Field(..., min_length=1)

    @field_validator("did")
    @classmethod
    def validate_did(cls, v: str) -> str:
        v = v.strip()
        if not v.startswith("did:"):
            raise ValueError("DID must start with 'did:'")
        return v


class Issuer(RegistryRecord):
    """A registered credential issuer."""

    type: IssuerType
    domains: frozenset[IssuerDomain] = Field(default_factory=frozenset)
    assurance: AssuranceLevel = AssuranceLevel.UNVERIFIED
    legal_name: str
    claimed_brand_name: str | None = None
    is_revoked: bool = False
    is_active: bool = True
    created_at: datetime = Field(default_factory=_utcnow)

    # Registry bookkeeping
    jurisdiction: str | None = None
    registered_by: str | None = None
    metadata_hash: str | None = None
    updated_at: datetime | None = None
    revoked_at: datetime | None = None


class Agent(RegistryRecord):
    """An agent identity, optionally delegated by an issuer."""

    role: AgentRole
    parent_issuer_did: str | None = None
    capabilities: frozenset[str] = Field(default_factory=frozenset)
    is_active: bool = True
    agent_id: str | None = None
    description: str = ""
    is_system_agent: bool = False
    created_at: datetime = Field(default_factory=_utcnow)

    @model_validator(mode="after")
    def validate_reserved_id(self) -> Agent:
        if self.agent_id and is_system_agent_id(self.agent_id) and not self.is_system_agent:
            raise ValueError(f"agent id '{self.agent_id}' is reserved for system agents")
        return self


class IssuerQuery(BaseModel):
    """Filter over issuers. Unset fields match everything."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    type: IssuerType | None = None
    domain: IssuerDomain | None = None
    min_assurance: AssuranceLevel | None = None
    is_active: bool | None = None
    is_revoked: bool | None = None

    def matches(self, issuer: Issuer) -> bool:
        if self.type is not None and issuer.type != self.type:
            return False
        if self.domain is not None and self.domain not in issuer.domains:
            return False
        if self.min_assurance is not None and not issuer.assurance.meets(self.min_assurance):
            return False
        if self.is_active is not None and issuer.is_active != self.is_active:
            return False
        if self.is_revoked is not None and issuer.is_revoked != self.is_revoked:
            return False
        return True


class AgentQuery(BaseModel):
    """Filter over agents. Unset fields match everything."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    role: AgentRole | None = None
    parent_issuer_did: str | None = None
    capability: str | None = None
    is_active: bool | None = None
    is_system_agent: bool | None = None

    def matches(self, agent: Agent) -> bool:
        if self.role is not None and agent.role != self.role:
            return False
        if self.parent_issuer_did is not None and agent.parent_issuer_did != self.parent_issuer_did:
            return False
        if self.capability is not None and self.capability not in agent.capabilities:
            return False
        if self.is_active is not None and agent.is_active != self.is_active:
            return False
        if self.is_system_agent is not None and agent.is_system_agent != self.is_system_agent:
            return False
        return True
