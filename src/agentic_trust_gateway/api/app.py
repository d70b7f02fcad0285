"""FastAPI application: challenge issuance, verification and registry lookup."""

from __future__ import annotations

import time
import traceback
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

import structlog
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse

from agentic_trust_gateway import __version__
from agentic_trust_gateway.api.schemas import (
    ChallengeRequest,
    ChallengeResponse,
    CredentialVerifiedResponse,
    PresentationVerifiedResponse,
    PresentRequest,
    RejectionResponse,
    dump,
    rejection_status,
)
from agentic_trust_gateway.common.exceptions import (
    AgentNotFoundError,
    ErrorCode,
    IssuerNotFoundError,
    ServiceNotReadyError,
    TrustGatewayError,
)
from agentic_trust_gateway.common.types import Context, HealthStatus
from agentic_trust_gateway.config import GatewayConfig
from agentic_trust_gateway.observability.metrics import MetricsCollector
from agentic_trust_gateway.policy.fraud import FraudPolicyEngine
from agentic_trust_gateway.registry.chain import (
    BootstrapRegistry,
    ChainRegistry,
    ChainRegistryClient,
)
from agentic_trust_gateway.registry.index import TrustIndex
from agentic_trust_gateway.registry.repository import (
    InMemoryAgentRepository,
    InMemoryIssuerRepository,
)
from agentic_trust_gateway.resilience.circuit_breaker import CircuitBreakerRegistry, CircuitState
from agentic_trust_gateway.resilience.gateway import RetryGateway
from agentic_trust_gateway.verification.challenge import ChallengeStore
from agentic_trust_gateway.verification.models import (
    CredentialVerificationRequest,
    VerificationResult,
)
from agentic_trust_gateway.verification.proof import ProofServerClient, ProofVerifier
from agentic_trust_gateway.verification.receipts import (
    HttpReceiptStatusProvider,
    InMemoryReceiptRegistry,
    ReceiptStatusProvider,
)
from agentic_trust_gateway.verification.verifier import PresentationVerifier

logger = structlog.get_logger()

REQUEST_ID_HEADER = "X-Request-ID"


@dataclass
class GatewayServices:
    """Everything a request handler needs, wired once per process."""

    config: GatewayConfig
    metrics: MetricsCollector
    gateway: RetryGateway
    challenges: ChallengeStore
    engine: FraudPolicyEngine
    chain: ChainRegistry
    index: TrustIndex
    receipts: ReceiptStatusProvider
    verifier: PresentationVerifier
    proof_verifier: ProofVerifier | None = None
    ready: bool = False
    started_at: float = field(default_factory=time.time)

    async def start(self) -> None:
        """Connect clients, load the registry and start background tasks."""
        log = logger.bind(component="gateway_services")
        await self.chain.connect()
        await self.receipts.connect()
        if self.proof_verifier is not None:
            await self.proof_verifier.connect()

        await self.index.initialize()
        self.challenges.start_sweeper()
        if self.config.background_sync:
            self.index.start_background_sync()

        self.started_at = time.time()
        self.ready = True
        log.info(
            "gateway_started",
            registry_mode=self.config.registry_mode,
            proof_server=self.proof_verifier is not None,
            environment=self.config.environment,
        )

    async def stop(self) -> None:
        self.ready = False
        await self.index.stop()
        await self.challenges.stop_sweeper()
        if self.proof_verifier is not None:
            await self.proof_verifier.close()
        await self.receipts.close()
        await self.chain.close()
        logger.info("gateway_stopped")

    @property
    def uptime_seconds(self) -> float:
        return time.time() - self.started_at


def build_services(
    config: GatewayConfig,
    *,
    chain: ChainRegistry | None = None,
    receipts: ReceiptStatusProvider | None = None,
    proof_verifier: ProofVerifier | None = None,
    metrics: MetricsCollector | None = None,
) -> GatewayServices:
    """
    Wire the gateway's components from configuration.

    Explicit ``chain``, ``receipts`` and ``proof_verifier`` arguments take
    precedence over the URLs in ``config``.
    """
    metrics = metrics or MetricsCollector()
    gateway = RetryGateway(
        config.retry_policy(),
        CircuitBreakerRegistry(
            failure_threshold=config.circuit_failure_threshold,
            recovery_timeout=config.circuit_recovery_timeout,
        ),
        metrics,
    )

    if chain is None:
        if config.registry_mode == "http":
            chain = ChainRegistryClient(config.indexer_url, gateway, timeout=config.request_timeout)
        else:
            chain = BootstrapRegistry()

    if receipts is None:
        if config.receipt_service_url:
            receipts = HttpReceiptStatusProvider(
                config.receipt_service_url, gateway, timeout=config.request_timeout
            )
        else:
            receipts = InMemoryReceiptRegistry()

    if proof_verifier is None and config.proof_server_url:
        proof_verifier = ProofServerClient(
            config.proof_server_url, gateway, timeout=config.proof_timeout
        )

    engine = FraudPolicyEngine()
    challenges = ChallengeStore(
        default_ttl=config.challenge_ttl,
        sweep_interval=config.challenge_sweep_interval,
    )
    index = TrustIndex(
        InMemoryIssuerRepository(),
        InMemoryAgentRepository(),
        chain,
        engine,
        cache_ttl=config.cache_ttl,
        max_cache_size=config.max_cache_size,
        sync_interval=config.sync_interval,
        metrics=metrics,
    )
    verifier = PresentationVerifier(
        challenges,
        index,
        engine,
        receipts,
        proof_verifier,
        default_timeout=config.verification_timeout,
        metrics=metrics,
    )
    return GatewayServices(
        config=config,
        metrics=metrics,
        gateway=gateway,
        challenges=challenges,
        engine=engine,
        chain=chain,
        index=index,
        receipts=receipts,
        verifier=verifier,
        proof_verifier=proof_verifier,
    )


def _error_response(
    message: str,
    code: str,
    status_code: int,
    request_id: str | None,
    **extra: Any,
) -> JSONResponse:
    body: dict[str, Any] = {"error": message, "errorCode": str(code), "statusCode": status_code}
    if request_id:
        body["requestId"] = request_id
    body.update(extra)
    return JSONResponse(status_code=status_code, content=body)


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


def get_services(request: Request) -> GatewayServices:
    services: GatewayServices | None = getattr(request.app.state, "services", None)
    if services is None or not services.ready:
        raise ServiceNotReadyError("Gateway services are not initialized")
    return services


def _verification_response(
    result: VerificationResult,
    success: type[CredentialVerifiedResponse] | type[PresentationVerifiedResponse],
) -> JSONResponse:
    if result.valid:
        return JSONResponse(status_code=200, content=dump(success.from_result(result)))
    status = rejection_status(result)
    return JSONResponse(status_code=status, content=dump(RejectionResponse.from_result(result)))


def create_app(
    config: GatewayConfig | None = None,
    services: GatewayServices | None = None,
) -> FastAPI:
    """
    Create the gateway application.

    Args:
        config: Settings; read from the environment when omitted
        services: Pre-wired services, e.g. with test doubles; built from
            ``config`` when omitted

    Returns:
        FastAPI app whose lifespan starts and stops ``services``
    """
    if services is not None:
        config = services.config
    config = config or GatewayConfig.from_env()
    services = services or build_services(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await services.start()
        try:
            yield
        finally:
            await services.stop()

    app = FastAPI(
        title="Agentic Trust Gateway",
        description="Issuer trust policy and presentation verification for agent credentials.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.services = services

    #region Middleware and error handling

    @app.middleware("http")
    async def request_context(request: Request, call_next: Any) -> Any:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.request_id = request_id
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )
        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as e:
            logger.exception("request_failed", error_type=type(e).__name__)
            extra = {"traceback": traceback.format_exc()} if config.debug else {}
            response = _error_response(
                "Internal server error", ErrorCode.INTERNAL_ERROR, 500, request_id, **extra
            )
        response.headers[REQUEST_ID_HEADER] = request_id
        logger.info(
            "request_completed",
            status_code=response.status_code,
            duration_ms=round((time.perf_counter() - start) * 1000, 2),
        )
        return response

    @app.exception_handler(TrustGatewayError)
    async def gateway_error_handler(request: Request, exc: TrustGatewayError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("request_error", error_code=str(exc.code), error=exc.message)
        body = exc.to_dict()
        if _request_id(request):
            body["requestId"] = _request_id(request)
        return JSONResponse(status_code=exc.status_code, content=body)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        problems = [
            {"field": ".".join(str(p) for p in err["loc"]), "error": err["msg"]}
            for err in exc.errors()
        ]
        return _error_response(
            "Invalid request body",
            ErrorCode.INVALID_STRUCTURE,
            400,
            _request_id(request),
            details={"errors": problems},
        )

    #endregion

    #region Routes

    @app.post("/challenge", tags=["verification"])
    async def issue_challenge(
        body: ChallengeRequest | None = None,
        svc: GatewayServices = Depends(get_services),
    ) -> JSONResponse:
        body = body or ChallengeRequest()
        challenge = svc.challenges.issue(
            body.audience or svc.config.default_audience,
            ttl_seconds=body.ttl_seconds,
        )
        response = ChallengeResponse(
            nonce=challenge.nonce,
            aud=challenge.audience,
            exp=int(challenge.expires_at),
        )
        return JSONResponse(status_code=200, content=dump(response))

    @app.post("/verify", tags=["verification"])
    async def verify_credential(
        body: CredentialVerificationRequest,
        request: Request,
        svc: GatewayServices = Depends(get_services),
    ) -> JSONResponse:
        ctx = Context(request_id=_request_id(request) or uuid.uuid4().hex)
        result = await svc.verifier.verify_credential(body, ctx)
        return _verification_response(result, CredentialVerifiedResponse)

    @app.post("/present", tags=["verification"])
    async def verify_presentation(
        body: PresentRequest,
        request: Request,
        svc: GatewayServices = Depends(get_services),
    ) -> JSONResponse:
        ctx = Context(request_id=_request_id(request) or uuid.uuid4().hex)
        result = await svc.verifier.verify_presentation(body.presentation, ctx)
        return _verification_response(result, PresentationVerifiedResponse)

    @app.get("/issuer/{did}", tags=["registry"])
    async def get_issuer(did: str, svc: GatewayServices = Depends(get_services)) -> JSONResponse:
        issuer = await svc.index.find_issuer(did)
        if issuer is None:
            raise IssuerNotFoundError(f"Issuer not found: {did}", details={"did": did})
        return JSONResponse(status_code=200, content=dump(issuer))

    @app.get("/agent/{did}", tags=["registry"])
    async def get_agent(did: str, svc: GatewayServices = Depends(get_services)) -> JSONResponse:
        agent = await svc.index.find_agent(did)
        if agent is None:
            raise AgentNotFoundError(f"Agent not found: {did}", details={"did": did})
        return JSONResponse(status_code=200, content=dump(agent))

    @app.get("/stats", tags=["operations"])
    async def get_stats(svc: GatewayServices = Depends(get_services)) -> dict[str, Any]:
        return {
            "index": await svc.index.get_stats(),
            "challenges": svc.challenges.get_stats(),
            "dependencies": svc.gateway.get_stats(),
            "metrics": svc.metrics.get_stats(),
            "uptimeSeconds": round(svc.uptime_seconds, 3),
            "version": __version__,
        }

    @app.get("/health", tags=["operations"])
    async def health(request: Request) -> JSONResponse:
        svc: GatewayServices = request.app.state.services
        checks = {"initialized": svc.ready}
        if svc.proof_verifier is not None:
            checks["proof_server"] = await svc.proof_verifier.health_check()
        for name, breaker in svc.gateway.breakers.get_all_metrics().items():
            checks[f"circuit:{name}"] = breaker["state"] != CircuitState.OPEN.name

        if not svc.ready:
            status = HealthStatus(status="unhealthy", checks=checks, message="Not initialized")
        elif all(checks.values()):
            status = HealthStatus(status="healthy", checks=checks)
        else:
            failing = sorted(name for name, ok in checks.items() if not ok)
            status = HealthStatus(status="degraded", checks=checks, message=", ".join(failing))
        return JSONResponse(
            status_code=503 if status.status == "unhealthy" else 200,
            content=status.model_dump(mode="json"),
        )

    @app.get("/metrics", tags=["operations"])
    async def metrics(svc: GatewayServices = Depends(get_services)) -> PlainTextResponse:
        return PlainTextResponse(svc.metrics.export_prometheus())

    #endregion

    return app
