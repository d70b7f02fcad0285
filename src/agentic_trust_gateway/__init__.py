"""
Agentic Trust Gateway

Issuer trust policy and presentation verification for agent credentials.
Decides whether an issuer may issue a credential type, blocks brand
impersonation, and verifies challenge-bound presentations.
"""

__version__ = "0.1.0"
__all__ = [
    "GatewayConfig",
    "FraudPolicyEngine",
    "TrustIndex",
    "ChallengeStore",
    "PresentationVerifier",
    "Issuer",
    "Agent",
]

from agentic_trust_gateway.config import GatewayConfig
from agentic_trust_gateway.policy.fraud import FraudPolicyEngine
from agentic_trust_gateway.registry.index import TrustIndex
from agentic_trust_gateway.registry.models import Agent, Issuer
from agentic_trust_gateway.verification.challenge import ChallengeStore
from agentic_trust_gateway.verification.verifier import PresentationVerifier
