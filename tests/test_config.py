"""Tests for environment-driven configuration."""

import pytest

from agentic_trust_gateway.common.exceptions import ConfigurationError
from agentic_trust_gateway.config import GatewayConfig


class TestGatewayConfig:
    """Test defaults, parsing and validation."""

    def test_defaults(self):
        config = GatewayConfig.from_env({})

        assert config.port == 3003
        assert config.registry_mode == "bootstrap"
        assert config.challenge_ttl == 60
        assert config.cache_ttl == 60
        assert not config.is_production

    def test_reads_prefixed_variables(self):
        config = GatewayConfig.from_env(
            {
                "TRUST_GATEWAY_PORT": "8080",
                "TRUST_GATEWAY_CACHE_TTL": " 30 ",
                "TRUST_GATEWAY_DEBUG": "yes",
                "TRUST_GATEWAY_BACKGROUND_SYNC": "off",
                "TRUST_GATEWAY_LOG_LEVEL": "debug",
                "TRUST_GATEWAY_ENVIRONMENT": "Production",
                "TRUST_GATEWAY_PROOF_SERVER_URL": "",
                "PORT": "9999",
            }
        )

        assert config.port == 8080
        assert config.cache_ttl == 30.0
        assert config.debug is True
        assert config.background_sync is False
        assert config.log_level == "DEBUG"
        assert config.proof_server_url is None
        assert config.is_production

    def test_invalid_boolean(self):
        with pytest.raises(ConfigurationError) as exc_info:
            GatewayConfig.from_env({"TRUST_GATEWAY_DEBUG": "maybe"})
        assert exc_info.value.details["field"] == "debug"

    def test_out_of_range_port(self):
        with pytest.raises(ConfigurationError) as exc_info:
            GatewayConfig.from_env({"TRUST_GATEWAY_PORT": "70000"})
        assert exc_info.value.details["errors"][0]["field"] == "port"

    def test_http_mode_requires_indexer(self):
        with pytest.raises(ConfigurationError):
            GatewayConfig.from_env({"TRUST_GATEWAY_REGISTRY_MODE": "http"})

        config = GatewayConfig.from_env(
            {
                "TRUST_GATEWAY_REGISTRY_MODE": "http",
                "TRUST_GATEWAY_INDEXER_URL": "http://indexer:8080",
            }
        )
        assert config.indexer_url == "http://indexer:8080"

    def test_unknown_field_rejected(self):
        with pytest.raises(ConfigurationError):
            GatewayConfig.create(listen_port=1)

    def test_frozen(self):
        config = GatewayConfig()
        with pytest.raises(ValueError):
            config.port = 1

    def test_retry_policy(self):
        config = GatewayConfig.create(retry_max_attempts=5, request_timeout=2.0)

        policy = config.retry_policy()
        assert policy.max_attempts == 5
        assert policy.timeout == 2.0
        assert config.retry_policy(timeout=9.0).timeout == 9.0
