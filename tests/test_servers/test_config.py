"""
Configuration loading tests.
"""

import pytest

from test_mocks import MOCK_SERVER_PRIVATE_KEY, MOCK_TREASURY_PULLER
from treasury_pull.adapters.evm.constants import DEFAULT_RPC_URL, DEFAULT_TOKEN_ADDRESS, PERMIT2_ADDRESS
from treasury_pull.engine.exceptions import ConfigurationError
from treasury_pull.servers.config import TreasuryConfig


CONFIG_VARIABLES = (
    "MAINNET_RPC_URL", "RPC_URL", "PRIVATE_KEY", "TREASURY_PULLER_ADDRESS", "TOKEN_ADDRESS",
    "PERMIT2_ADDRESS", "DELEGATION_STRATEGY", "AUTO_APPROVE_ROUTER", "EXPECTED_CHAIN_ID",
    "SIGNATURE_VALIDITY_SECONDS", "SERIALIZE_PER_USER", "CONSUME_ON_SUCCESS",
    "AUTHORIZATION_GRACE_SECONDS", "EVICTION_INTERVAL_SECONDS", "RPC_TIMEOUT_SECONDS",
    "RECEIPT_TIMEOUT_SECONDS", "HOST", "PORT", "LOG_LEVEL", "CORS_ORIGINS",
)


@pytest.fixture
def clean_env(monkeypatch):
    for name in CONFIG_VARIABLES:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


@pytest.fixture
def required_env(clean_env):
    clean_env.setenv("PRIVATE_KEY", MOCK_SERVER_PRIVATE_KEY)
    clean_env.setenv("TREASURY_PULLER_ADDRESS", MOCK_TREASURY_PULLER.lower())
    return clean_env


class TestFromEnv:
    """Test TreasuryConfig.from_env"""

    def test_missing_required_values_are_all_listed(self, clean_env):
        with pytest.raises(ConfigurationError) as exc_info:
            TreasuryConfig.from_env(env_file=None)

        assert exc_info.value.context["missing"] == ["PRIVATE_KEY", "TREASURY_PULLER_ADDRESS"]

    def test_invalid_address_reported(self, required_env):
        required_env.setenv("TOKEN_ADDRESS", "0x1234")
        with pytest.raises(ConfigurationError) as exc_info:
            TreasuryConfig.from_env(env_file=None)
        assert exc_info.value.context["missing"] == ["TOKEN_ADDRESS (invalid address)"]

    def test_defaults(self, required_env):
        config = TreasuryConfig.from_env(env_file=None)

        assert config.rpc_url == DEFAULT_RPC_URL
        assert config.treasury_puller_address == MOCK_TREASURY_PULLER
        assert config.token_address == DEFAULT_TOKEN_ADDRESS
        assert config.permit2_address == PERMIT2_ADDRESS
        assert config.delegation_strategy == "permit"
        assert config.auto_approve_router is True
        assert config.expected_chain_id is None
        assert config.port == 3002
        assert config.cors_origins == ["*"]

    def test_rpc_url_fallback_order(self, required_env):
        required_env.setenv("RPC_URL", "http://fallback:8545")
        assert TreasuryConfig.from_env(env_file=None).rpc_url == "http://fallback:8545"

        required_env.setenv("MAINNET_RPC_URL", "http://primary:8545")
        assert TreasuryConfig.from_env(env_file=None).rpc_url == "http://primary:8545"

    def test_overrides(self, required_env):
        required_env.setenv("DELEGATION_STRATEGY", "allowance")
        required_env.setenv("AUTO_APPROVE_ROUTER", "no")
        required_env.setenv("EXPECTED_CHAIN_ID", "11155111")
        required_env.setenv("EVICTION_INTERVAL_SECONDS", "2.5")
        required_env.setenv("CORS_ORIGINS", "http://a.example, http://b.example")
        required_env.setenv("LOG_LEVEL", "debug")

        config = TreasuryConfig.from_env(env_file=None)

        assert config.delegation_strategy == "allowance"
        assert config.auto_approve_router is False
        assert config.expected_chain_id == 11155111
        assert config.eviction_interval_seconds == 2.5
        assert config.cors_origins == ["http://a.example", "http://b.example"]
        assert config.log_level == "DEBUG"

    def test_bad_boolean(self, required_env):
        required_env.setenv("SERIALIZE_PER_USER", "maybe")
        with pytest.raises(ConfigurationError) as exc_info:
            TreasuryConfig.from_env(env_file=None)
        assert exc_info.value.context["variable"] == "SERIALIZE_PER_USER"

    def test_bad_number(self, required_env):
        required_env.setenv("PORT", "eighty")
        with pytest.raises(ConfigurationError):
            TreasuryConfig.from_env(env_file=None)

    def test_dotenv_file_loaded(self, clean_env, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text(
            f"PRIVATE_KEY={MOCK_SERVER_PRIVATE_KEY}\nTREASURY_PULLER_ADDRESS={MOCK_TREASURY_PULLER}\n"
        )
        # load_dotenv writes into os.environ; register both names so teardown removes them
        for name in ("PRIVATE_KEY", "TREASURY_PULLER_ADDRESS"):
            clean_env.setenv(name, "placeholder")
            clean_env.delenv(name)

        config = TreasuryConfig.from_env(env_file=env_file)
        assert config.treasury_puller_address == MOCK_TREASURY_PULLER


class TestDescribe:
    """Test the public configuration report."""

    def test_secrets_are_not_echoed(self):
        config = TreasuryConfig(private_key=MOCK_SERVER_PRIVATE_KEY, treasury_puller_address=MOCK_TREASURY_PULLER)
        report = config.describe()

        assert report["privateKey"] == "set"
        assert report["rpcUrl"] == "set"
        assert MOCK_SERVER_PRIVATE_KEY not in str(report)
        assert MOCK_SERVER_PRIVATE_KEY not in repr(config)
