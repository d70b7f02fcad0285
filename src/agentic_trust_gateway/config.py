"""Gateway configuration, read from ``TRUST_GATEWAY_*`` environment variables."""

from __future__ import annotations

import os
from collections.abc import Mapping
from typing import Any, Literal

import pydantic
from pydantic import BaseModel, ConfigDict, Field, model_validator

from agentic_trust_gateway.common.exceptions import ConfigurationError
from agentic_trust_gateway.common.retry import RetryPolicy

ENV_PREFIX = "TRUST_GATEWAY_"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


class GatewayConfig(BaseModel):
    """
    Runtime settings for the trust gateway.

    Every field maps to ``TRUST_GATEWAY_<FIELD_NAME>``; for example
    ``TRUST_GATEWAY_CACHE_TTL=30`` or ``TRUST_GATEWAY_REGISTRY_MODE=http``.

    Example:
        ```python
        config = GatewayConfig.from_env()
        app = create_app(config)
        ```
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    # Server
    host: str = "0.0.0.0"
    port: int = Field(default=3003, ge=1, le=65535)
    environment: str = "development"
    debug: bool = False
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    json_logs: bool = False

    # Challenges
    default_audience: str = "agenticdid.io"
    challenge_ttl: float = Field(default=60.0, gt=0)
    challenge_sweep_interval: float = Field(default=30.0, gt=0)

    # Trust index
    cache_ttl: float = Field(default=60.0, gt=0)
    max_cache_size: int = Field(default=10_000, ge=1)
    sync_interval: float = Field(default=10.0, gt=0)
    background_sync: bool = True

    # Collaborators
    registry_mode: Literal["bootstrap", "http"] = "bootstrap"
    indexer_url: str | None = None
    proof_server_url: str | None = None
    receipt_service_url: str | None = None

    # Timeouts (seconds)
    request_timeout: float = Field(default=5.0, gt=0)
    proof_timeout: float = Field(default=10.0, gt=0)
    verification_timeout: float = Field(default=30.0, gt=0)

    # Retry
    retry_max_attempts: int = Field(default=3, ge=1)
    retry_initial_delay: float = Field(default=0.5, ge=0)
    retry_max_delay: float = Field(default=10.0, ge=0)
    retry_backoff_factor: float = Field(default=2.0, ge=1)

    # Circuit breaker
    circuit_failure_threshold: int = Field(default=5, ge=1)
    circuit_recovery_timeout: float = Field(default=30.0, gt=0)

    @model_validator(mode="after")
    def _check_registry_mode(self) -> GatewayConfig:
        if self.registry_mode == "http" and not self.indexer_url:
            raise ValueError("indexer_url is required when registry_mode is 'http'")
        return self

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> GatewayConfig:
        """
        Build a config from the environment.

        Args:
            environ: Variables to read; defaults to ``os.environ``

        Returns:
            Validated config

        Raises:
            ConfigurationError: A variable is malformed or out of range
        """
        environ = os.environ if environ is None else environ
        values: dict[str, Any] = {}
        for name, field in cls.model_fields.items():
            raw = environ.get(f"{ENV_PREFIX}{name.upper()}")
            if raw is None:
                continue
            raw = raw.strip()
            if field.annotation is bool:
                values[name] = _parse_bool(name, raw)
            elif name == "log_level":
                values[name] = raw.upper()
            elif name.endswith("_url"):
                values[name] = raw or None
            else:
                values[name] = raw
        return cls.create(**values)

    @classmethod
    def create(cls, **values: Any) -> GatewayConfig:
        """Validate ``values``, raising ``ConfigurationError`` instead of pydantic errors."""
        try:
            return cls(**values)
        except pydantic.ValidationError as e:
            problems = [
                {"field": ".".join(str(p) for p in err["loc"]) or "config", "error": err["msg"]}
                for err in e.errors()
            ]
            raise ConfigurationError(
                f"Invalid gateway configuration: {problems[0]['field']}: {problems[0]['error']}",
                details={"errors": problems},
                cause=e,
            ) from e

    def retry_policy(self, timeout: float | None = None) -> RetryPolicy:
        """Retry settings for external calls, bounded per attempt by ``timeout``."""
        return RetryPolicy(
            max_attempts=self.retry_max_attempts,
            initial_delay=self.retry_initial_delay,
            max_delay=self.retry_max_delay,
            backoff_factor=self.retry_backoff_factor,
            timeout=self.request_timeout if timeout is None else timeout,
        )

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


def _parse_bool(name: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ConfigurationError(
        f"Invalid boolean for {ENV_PREFIX}{name.upper()}: {raw!r}",
        details={"field": name, "value": raw},
    )
