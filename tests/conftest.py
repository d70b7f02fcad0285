"""Shared fixtures: fake clock, issuer factories and a wired verifier."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import pytest

from agentic_trust_gateway.common.types import AssuranceLevel, IssuerDomain, IssuerType
from agentic_trust_gateway.policy.fraud import FraudPolicyEngine
from agentic_trust_gateway.registry.chain import BootstrapRegistry
from agentic_trust_gateway.registry.index import TrustIndex
from agentic_trust_gateway.registry.models import Issuer
from agentic_trust_gateway.registry.repository import (
    InMemoryAgentRepository,
    InMemoryIssuerRepository,
)
from agentic_trust_gateway.verification.challenge import ChallengeStore
from agentic_trust_gateway.verification.models import Disclosed, Presentation, Receipt
from agentic_trust_gateway.verification.receipts import InMemoryReceiptRegistry
from agentic_trust_gateway.verification.verifier import PresentationVerifier

AUDIENCE = "bank.example"


class FakeClock:
    """Manually advanced clock, callable like ``time.monotonic``."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_issuer(
    did: str = "did:agentic:test_issuer",
    *,
    type: IssuerType = IssuerType.CORPORATION,
    domains: tuple[IssuerDomain, ...] = (IssuerDomain.FINANCIAL,),
    assurance: AssuranceLevel = AssuranceLevel.REGULATED_ENTITY,
    legal_name: str = "Test Issuer Inc",
    claimed_brand_name: str | None = None,
    **fields: Any,
) -> Issuer:
    return Issuer(
        did=did,
        type=type,
        domains=frozenset(domains),
        assurance=assurance,
        legal_name=legal_name,
        claimed_brand_name=claimed_brand_name,
        **fields,
    )


AMAZON = make_issuer(
    "did:agentic:amazon",
    domains=(IssuerDomain.COMMERCE, IssuerDomain.TECHNOLOGY),
    legal_name="Amazon.com, Inc.",
    claimed_brand_name="Amazon",
)
FAKE_AMAZON = make_issuer(
    "did:agentic:fake_amazon",
    type=IssuerType.SELF_SOVEREIGN,
    domains=(IssuerDomain.COMMERCE,),
    assurance=AssuranceLevel.UNVERIFIED,
    legal_name="Totally Amazon",
    claimed_brand_name="Amazon",
)
HOSPITAL = make_issuer(
    "did:agentic:mercy_hospital",
    type=IssuerType.INSTITUTION,
    domains=(IssuerDomain.MEDICAL,),
    legal_name="Mercy General Hospital",
)
BANK = make_issuer(
    "did:agentic:chase",
    legal_name="JPMorgan Chase & Co.",
    claimed_brand_name="Chase",
)
SMALL_LENDER = make_issuer(
    "did:agentic:small_lender",
    assurance=AssuranceLevel.BASIC_KYC,
    legal_name="Small Lender LLC",
)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def engine() -> FraudPolicyEngine:
    return FraudPolicyEngine()


@pytest.fixture
def chain() -> BootstrapRegistry:
    return BootstrapRegistry(issuers=[AMAZON, FAKE_AMAZON, HOSPITAL, BANK, SMALL_LENDER])


@pytest.fixture
def index(chain: BootstrapRegistry, engine: FraudPolicyEngine, clock: FakeClock) -> TrustIndex:
    return TrustIndex(
        InMemoryIssuerRepository(),
        InMemoryAgentRepository(),
        chain,
        engine,
        cache_ttl=60,
        clock=clock,
    )


@pytest.fixture
def challenges(clock: FakeClock) -> ChallengeStore:
    return ChallengeStore(default_ttl=60, clock=clock)


@pytest.fixture
def receipts(clock: FakeClock) -> InMemoryReceiptRegistry:
    registry = InMemoryReceiptRegistry(clock=clock)
    registry.register(
        "hash-banker",
        role="Banker",
        scopes=["bank:read", "bank:transfer"],
        issuer_did=BANK.did,
        credential_type="FINANCIAL_ACCOUNT",
    )
    registry.register(
        "hash-amazon",
        role="Shopper",
        scopes=["*"],
        issuer_did=AMAZON.did,
        credential_type="MERCHANT_VERIFICATION",
    )
    registry.register(
        "hash-fake",
        role="Shopper",
        scopes=["*"],
        issuer_did=FAKE_AMAZON.did,
        credential_type="MERCHANT_VERIFICATION",
    )
    return registry


@pytest.fixture
def verifier(
    challenges: ChallengeStore,
    index: TrustIndex,
    engine: FraudPolicyEngine,
    receipts: InMemoryReceiptRegistry,
) -> PresentationVerifier:
    return PresentationVerifier(challenges, index, engine, receipts)


@dataclass
class PresentationFactory:
    challenges: ChallengeStore

    def __call__(
        self,
        *,
        issuer: Issuer = BANK,
        credential_hash: str = "hash-banker",
        credential_type: str = "FINANCIAL_ACCOUNT",
        role: str = "Banker",
        scopes: tuple[str, ...] = ("bank:transfer",),
        nonce: str | None = None,
        audience: str = AUDIENCE,
        **overrides: Any,
    ) -> Presentation:
        if nonce is None:
            nonce = self.challenges.issue(audience).nonce
        fields: dict[str, Any] = {
            "subject_id": "did:agentic:holder_1",
            "proof": "zk-proof-bytes",
            "nonce": nonce,
            "disclosed": Disclosed(role=role, scopes=scopes),
            "receipt": Receipt(
                credential_hash=credential_hash,
                attestation="",
                issuer_did=issuer.did,
                credential_type=credential_type,
            ),
        }
        fields.update(overrides)
        return Presentation(**fields)


@pytest.fixture
def presentation(challenges: ChallengeStore) -> PresentationFactory:
    return PresentationFactory(challenges)
