"""Presentation verification state machine."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

import structlog

from agentic_trust_gateway.common.exceptions import (
    ChallengeError,
    ErrorCode,
    ExternalServiceError,
)
from agentic_trust_gateway.common.types import Context, RiskReason
from agentic_trust_gateway.observability.metrics import MetricsCollector
from agentic_trust_gateway.policy.fraud import FraudPolicyEngine
from agentic_trust_gateway.policy.models import RiskAssessment
from agentic_trust_gateway.registry.index import TrustIndex
from agentic_trust_gateway.registry.models import Issuer
from agentic_trust_gateway.verification.challenge import ChallengeStore
from agentic_trust_gateway.verification.models import (
    CredentialVerificationRequest,
    Presentation,
    VerificationResult,
    VerificationState,
)
from agentic_trust_gateway.verification.proof import ProofVerifier
from agentic_trust_gateway.verification.receipts import ReceiptStatus, ReceiptStatusProvider

logger = structlog.get_logger()

WILDCARD_SCOPE = "*"

_RECEIPT_ERRORS = {
    ReceiptStatus.REVOKED: (ErrorCode.CREDENTIAL_REVOKED, "Credential revoked"),
    ReceiptStatus.SUSPENDED: (ErrorCode.CREDENTIAL_REVOKED, "Credential suspended"),
    ReceiptStatus.EXPIRED: (ErrorCode.CREDENTIAL_EXPIRED, "Credential expired"),
}


def has_scope(scopes: Iterable[str], required: str) -> bool:
    """True if ``scopes`` grants ``required`` exactly or through the ``*`` wildcard."""
    scopes = set(scopes)
    return required in scopes or WILDCARD_SCOPE in scopes


class _Trail:
    """States visited by one verification run."""

    def __init__(self, request_id: str) -> None:
        self.request_id = request_id
        self.states: list[VerificationState] = []
        self.fields: dict[str, Any] = {}

    def advance(self, state: VerificationState) -> None:
        self.states.append(state)

    def reject(self, code: ErrorCode | str, reason: str, **fields: Any) -> VerificationResult:
        return VerificationResult(
            valid=False,
            state=VerificationState.REJECTED,
            request_id=self.request_id,
            error_code=str(code),
            reason=reason,
            transitions=(*self.states, VerificationState.REJECTED),
            **{**self.fields, **fields},
        )

    def accept(self, **fields: Any) -> VerificationResult:
        self.advance(VerificationState.VALID)
        return VerificationResult(
            valid=True,
            state=VerificationState.VALID,
            request_id=self.request_id,
            transitions=tuple(self.states),
            **{**self.fields, **fields},
        )

    def record_issuer(self, issuer: Issuer, credential_type: str) -> None:
        self.fields.update(
            issuer_did=issuer.did,
            issuer_type=issuer.type,
            domains=tuple(sorted(issuer.domains)),
            assurance=issuer.assurance,
            credential_type=credential_type,
        )

    def record_risk(self, risk: RiskAssessment) -> None:
        self.fields.update(
            risk_score=risk.score,
            recommendation=risk.recommendation,
            flags=risk.flags,
        )


class PresentationVerifier:
    """
    Turns a presentation into a typed pass/fail result.

    ``RECEIVED -> STRUCTURE_CHECKED -> CHALLENGE_CONSUMED -> ISSUER_RESOLVED
    -> RISK_ASSESSED -> RECEIPT_CHECKED -> ROLE_MATCHED -> [PROOF_VERIFIED]
    -> VALID``; any step may end in ``REJECTED`` with an ``ErrorCode``.

    The challenge is consumed before any registry or network lookup, so a
    replayed presentation never costs more than a dictionary access.
    Verification methods never raise: dependency outages become
    SERVICE_UNAVAILABLE, anything unexpected INTERNAL_ERROR, and a cancelled
    or timed-out context CANCELLED.

    Example:
        ```python
        verifier = PresentationVerifier(challenges, index, engine, receipts)
        result = await verifier.verify_presentation(vp, Context(timeout=5.0))
        if result.valid:
            issue_capability_token(result.subject_id, result.role, result.scopes)
        ```
    """

    def __init__(
        self,
        challenges: ChallengeStore,
        index: TrustIndex,
        engine: FraudPolicyEngine,
        receipts: ReceiptStatusProvider,
        proof_verifier: ProofVerifier | None = None,
        *,
        default_timeout: float | None = None,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self._challenges = challenges
        self._index = index
        self._engine = engine
        self._receipts = receipts
        self._proof_verifier = proof_verifier
        self.default_timeout = default_timeout
        self.metrics = metrics or MetricsCollector()
        self._logger = logger.bind(component="presentation_verifier")

    async def verify_presentation(
        self,
        presentation: Presentation,
        ctx: Context | None = None,
    ) -> VerificationResult:
        """
        Verify a presentation end to end.

        Args:
            presentation: Presentation answering a previously issued challenge
            ctx: Request id, expected audience, timeout and cancel event

        Returns:
            VALID result with subject, role, scopes and risk, or REJECTED
            with ``error_code``, ``reason`` and risk flags
        """
        ctx = ctx or Context()
        log = self._logger.bind(
            request_id=ctx.request_id,
            issuer_did=presentation.receipt.issuer_did or None,
            credential_type=presentation.receipt.credential_type or None,
        )
        return await self._run(
            "presentation",
            lambda trail: self._presentation_pipeline(presentation, ctx, trail, log),
            ctx,
            log,
        )

    async def verify_credential(
        self,
        request: CredentialVerificationRequest,
        ctx: Context | None = None,
    ) -> VerificationResult:
        """
        Check that an issuer may issue a credential type, bound to a challenge.

        Runs structure, challenge, issuer, risk and (when configured) proof
        steps. A request without a challenge is rejected.
        """
        ctx = ctx or Context()
        log = self._logger.bind(
            request_id=ctx.request_id,
            issuer_did=request.issuer_did or None,
            credential_type=request.credential_type or None,
        )
        return await self._run(
            "credential",
            lambda trail: self._credential_pipeline(request, ctx, trail, log),
            ctx,
            log,
        )

    #region Execution

    async def _run(
        self,
        kind: str,
        pipeline: Callable[[_Trail], Awaitable[VerificationResult]],
        ctx: Context,
        log: Any,
    ) -> VerificationResult:
        trail = _Trail(ctx.request_id)
        trail.advance(VerificationState.RECEIVED)
        start = time.perf_counter()

        if ctx.cancelled:
            result = trail.reject(ErrorCode.CANCELLED, "Verification cancelled")
        else:
            result = await self._race(pipeline, trail, ctx, log)

        duration_ms = (time.perf_counter() - start) * 1000
        self._record(kind, result, duration_ms)
        log.info(
            "verification_completed",
            kind=kind,
            valid=result.valid,
            error_code=result.error_code,
            risk_score=result.risk_score,
            duration_ms=round(duration_ms, 2),
        )
        return result

    async def _race(
        self,
        pipeline: Callable[[_Trail], Awaitable[VerificationResult]],
        trail: _Trail,
        ctx: Context,
        log: Any,
    ) -> VerificationResult:
        task = asyncio.ensure_future(self._guarded(pipeline, trail, log))
        waiters: set[asyncio.Future[Any]] = {task}
        cancel_waiter: asyncio.Future[Any] | None = None
        if ctx.cancel_event is not None:
            cancel_waiter = asyncio.ensure_future(ctx.cancel_event.wait())
            waiters.add(cancel_waiter)

        timeout = ctx.timeout if ctx.timeout is not None else self.default_timeout
        try:
            done, _ = await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            if cancel_waiter is not None:
                cancel_waiter.cancel()

        if task in done:
            return task.result()

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        reason = "Verification cancelled" if ctx.cancelled else "Verification timed out"
        log.warning("verification_cancelled", reason=reason, state=trail.states[-1])
        return trail.reject(ErrorCode.CANCELLED, reason)

    async def _guarded(
        self,
        pipeline: Callable[[_Trail], Awaitable[VerificationResult]],
        trail: _Trail,
        log: Any,
    ) -> VerificationResult:
        try:
            return await pipeline(trail)
        except ExternalServiceError as e:
            log.error("verification_dependency_failed", error=str(e), state=trail.states[-1])
            return trail.reject(ErrorCode.SERVICE_UNAVAILABLE, "A required service is unavailable")
        except Exception:
            log.exception("verification_internal_error", state=trail.states[-1])
            return trail.reject(ErrorCode.INTERNAL_ERROR, "Internal verification error")

    def _record(self, kind: str, result: VerificationResult, duration_ms: float) -> None:
        self.metrics.counter(
            "verifications_total",
            labels={"kind": kind, "outcome": "valid" if result.valid else str(result.error_code)},
            description="Verifications by kind and outcome",
        ).inc()
        self.metrics.histogram(
            "verification_duration_ms",
            labels={"kind": kind},
            description="End-to-end verification latency",
        ).observe(duration_ms)

    #endregion

    #region Pipelines

    async def _presentation_pipeline(
        self,
        presentation: Presentation,
        ctx: Context,
        trail: _Trail,
        log: Any,
    ) -> VerificationResult:
        receipt = presentation.receipt
        disclosed = presentation.disclosed

        missing = [
            name
            for name, value in (
                ("subjectId", presentation.subject_id),
                ("proof", presentation.proof),
                ("disclosed.role", disclosed.role),
                ("receipt.credentialHash", receipt.credential_hash),
                ("receipt.issuerDid", receipt.issuer_did),
                ("receipt.credentialType", receipt.credential_type),
            )
            if not value.strip()
        ]
        if missing:
            return trail.reject(
                ErrorCode.INVALID_STRUCTURE,
                f"Invalid presentation structure, missing: {', '.join(missing)}",
            )
        trail.advance(VerificationState.STRUCTURE_CHECKED)

        rejected = self._consume_challenge(presentation.nonce, ctx, trail, log)
        if rejected:
            return rejected

        issuer_or_rejection = await self._resolve_and_assess(
            receipt.issuer_did, receipt.credential_type, trail, log
        )
        if isinstance(issuer_or_rejection, VerificationResult):
            return issuer_or_rejection

        status = await self._receipts.check(receipt)
        if status.status != ReceiptStatus.UNKNOWN and not status.is_bound_to(receipt):
            log.warning(
                "receipt_binding_mismatch",
                bound_issuer_did=status.issuer_did,
                bound_credential_type=status.credential_type,
            )
            return trail.reject(
                ErrorCode.CREDENTIAL_UNKNOWN,
                "Credential was not issued by the presented issuer as the presented type",
            )
        if status.status != ReceiptStatus.VALID:
            code, reason = _RECEIPT_ERRORS.get(
                status.status, (ErrorCode.CREDENTIAL_UNKNOWN, "Credential status unknown")
            )
            return trail.reject(code, reason)
        trail.advance(VerificationState.RECEIPT_CHECKED)

        if status.role is None or status.role != disclosed.role:
            log.warning("role_mismatch", disclosed_role=disclosed.role, policy_role=status.role)
            return trail.reject(ErrorCode.ROLE_MISMATCH, "Role mismatch")
        if status.scopes:
            excess = [s for s in disclosed.scopes if not has_scope(status.scopes, s)]
            if excess:
                log.warning("scope_mismatch", scopes=excess)
                return trail.reject(
                    ErrorCode.ROLE_MISMATCH,
                    f"Scopes not granted by credential: {', '.join(excess)}",
                )
        trail.advance(VerificationState.ROLE_MATCHED)

        rejected = await self._verify_proof(
            presentation.proof, presentation.subject_id, presentation.nonce, trail
        )
        if rejected:
            return rejected

        return trail.accept(
            subject_id=presentation.subject_id,
            role=disclosed.role,
            scopes=disclosed.scopes,
        )

    async def _credential_pipeline(
        self,
        request: CredentialVerificationRequest,
        ctx: Context,
        trail: _Trail,
        log: Any,
    ) -> VerificationResult:
        missing = [
            name
            for name, value in (
                ("credentialType", request.credential_type),
                ("issuerDid", request.issuer_did),
                ("proof", request.proof),
            )
            if not value.strip()
        ]
        if missing:
            return trail.reject(
                ErrorCode.INVALID_STRUCTURE,
                f"Missing required fields: {', '.join(missing)}",
            )
        trail.advance(VerificationState.STRUCTURE_CHECKED)

        rejected = self._consume_challenge(request.challenge or "", ctx, trail, log)
        if rejected:
            return rejected

        issuer_or_rejection = await self._resolve_and_assess(
            request.issuer_did, request.credential_type, trail, log
        )
        if isinstance(issuer_or_rejection, VerificationResult):
            return issuer_or_rejection

        rejected = await self._verify_proof(
            request.proof, request.subject_id or request.issuer_did, request.challenge or "", trail
        )
        if rejected:
            return rejected

        return trail.accept(subject_id=request.subject_id)

    #endregion

    #region Steps

    def _consume_challenge(
        self,
        nonce: str,
        ctx: Context,
        trail: _Trail,
        log: Any,
    ) -> VerificationResult | None:
        if not nonce:
            log.warning("challenge_rejected", reason="missing")
            return trail.reject(ErrorCode.INVALID_CHALLENGE, "Challenge is required")
        try:
            self._challenges.consume(nonce, audience=ctx.audience)
        except ChallengeError as e:
            log.warning("challenge_rejected", reason=e.message, error_type=type(e).__name__)
            return trail.reject(ErrorCode.INVALID_CHALLENGE, e.message)
        trail.advance(VerificationState.CHALLENGE_CONSUMED)
        return None

    async def _resolve_and_assess(
        self,
        issuer_did: str,
        credential_type: str,
        trail: _Trail,
        log: Any,
    ) -> Issuer | VerificationResult:
        issuer = await self._index.find_issuer(issuer_did)
        if issuer is None:
            return trail.reject(ErrorCode.UNKNOWN_ISSUER, f"Issuer not registered: {issuer_did}")
        trail.record_issuer(issuer, credential_type)
        trail.advance(VerificationState.ISSUER_RESOLVED)

        risk = self._engine.assess(issuer, credential_type)
        trail.record_risk(risk)
        if risk.blocked:
            if risk.reason == RiskReason.BRAND_IMPERSONATION:
                log.warning(
                    "brand_impersonation_blocked",
                    claimed_brand=issuer.claimed_brand_name,
                    issuer_type=str(issuer.type),
                )
            return trail.reject(
                str(risk.reason),
                risk.flags[0] if risk.flags else "Issuer failed risk assessment",
            )
        trail.advance(VerificationState.RISK_ASSESSED)
        return issuer

    async def _verify_proof(
        self,
        proof: str,
        subject_id: str,
        nonce: str,
        trail: _Trail,
    ) -> VerificationResult | None:
        if self._proof_verifier is None:
            return None
        if not await self._proof_verifier.verify(proof, subject_id=subject_id, nonce=nonce):
            return trail.reject(ErrorCode.INVALID_PROOF, "Proof verification failed")
        trail.advance(VerificationState.PROOF_VERIFIED)
        return None

    #endregion
