"""Challenge issuance and presentation verification."""

from agentic_trust_gateway.verification.challenge import Challenge, ChallengeStore
from agentic_trust_gateway.verification.models import (
    CredentialVerificationRequest,
    Disclosed,
    Presentation,
    Receipt,
    VerificationResult,
    VerificationState,
)
from agentic_trust_gateway.verification.proof import ProofServerClient, ProofVerifier
from agentic_trust_gateway.verification.receipts import (
    HttpReceiptStatusProvider,
    InMemoryReceiptRegistry,
    ReceiptCheck,
    ReceiptStatus,
    ReceiptStatusProvider,
)
from agentic_trust_gateway.verification.verifier import PresentationVerifier, has_scope

__all__ = [
    "Challenge",
    "ChallengeStore",
    "CredentialVerificationRequest",
    "Disclosed",
    "Presentation",
    "Receipt",
    "VerificationResult",
    "VerificationState",
    "ProofServerClient",
    "ProofVerifier",
    "HttpReceiptStatusProvider",
    "InMemoryReceiptRegistry",
    "ReceiptCheck",
    "ReceiptStatus",
    "ReceiptStatusProvider",
    "PresentationVerifier",
    "has_scope",
]
