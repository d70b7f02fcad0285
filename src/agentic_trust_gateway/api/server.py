"""Process entry point: ``agentic-trust-gateway`` or ``python -m agentic_trust_gateway.api.server``."""

from __future__ import annotations

import structlog

from agentic_trust_gateway.api.app import create_app
from agentic_trust_gateway.common.exceptions import ConfigurationError
from agentic_trust_gateway.config import GatewayConfig
from agentic_trust_gateway.observability.logging import configure_logging

logger = structlog.get_logger()


def main() -> None:
    """Read configuration from the environment and serve with uvicorn."""
    import uvicorn

    try:
        config = GatewayConfig.from_env()
    except ConfigurationError as e:
        configure_logging()
        logger.error("invalid_configuration", error=e.message, details=e.details)
        raise SystemExit(2) from e

    configure_logging(config.log_level, json_logs=config.json_logs)
    logger.info(
        "starting_trust_gateway",
        host=config.host,
        port=config.port,
        environment=config.environment,
        registry_mode=config.registry_mode,
    )
    uvicorn.run(
        create_app(config),
        host=config.host,
        port=config.port,
        log_level=config.log_level.lower(),
    )


if __name__ == "__main__":
    main()
