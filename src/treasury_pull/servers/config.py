"""
Server configuration.

Values come from the process environment, optionally seeded from a dotenv
file. Missing required values are fatal at startup.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from ..adapters.evm.constants import (
    DEFAULT_RPC_URL,
    DEFAULT_TOKEN_ADDRESS,
    DEFAULT_VALIDITY_WINDOW,
    PERMIT2_ADDRESS,
    checksum,
    is_valid_evm_address,
)
from ..engine.exceptions import ConfigurationError


logger = logging.getLogger(__name__)

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


def _get(key: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    return value.strip()


def _get_bool(key: str, default: bool) -> bool:
    value = _get(key)
    if value is None:
        return default
    if value.lower() in _TRUTHY:
        return True
    if value.lower() in _FALSY:
        return False
    raise ConfigurationError(f"{key} must be a boolean", variable=key, value=value)


def _get_number(key: str, default: Optional[float], cast=int) -> Optional[float]:
    value = _get(key)
    if value is None:
        return default
    try:
        return cast(value)
    except ValueError as e:
        raise ConfigurationError(f"{key} must be numeric", variable=key, value=value) from e


def _get_address(key: str, default: Optional[str], problems: List[str]) -> Optional[str]:
    value = _get(key, default)
    if value is None:
        return None
    if not is_valid_evm_address(value):
        problems.append(f"{key} (invalid address)")
        return None
    return checksum(value)


class TreasuryConfig(BaseModel):
    """
    Deployment configuration.

    Attributes:
        rpc_url: JSON-RPC endpoint of the ledger node
        private_key: Treasury wallet key used to submit transactions
        treasury_puller_address: Treasury puller contract (also the EIP-712 verifying contract)
        token_address: Token pulled by this deployment
        permit2_address: Allowance router used by the permit strategy
        delegation_strategy: ``permit`` or ``allowance``
        auto_approve_router: Let the treasury wallet approve the router when the allowance is short
        expected_chain_id: Refuse to serve when the live chain id differs
        signature_validity_seconds: Deadline offset for new challenges
        serialize_per_user: Run same-user transfers one at a time
        consume_on_success: Burn an authorization after a confirmed pull
        authorization_grace_seconds: How long expired authorizations remain visible
        eviction_interval_seconds: Period of the background eviction sweep
        rpc_timeout_seconds: Per-request RPC timeout
        receipt_timeout_seconds: Wait window for transaction inclusion
        host: Bind address
        port: Bind port
        log_level: Root logging level
        cors_origins: Allowed CORS origins
    """
    rpc_url: str = DEFAULT_RPC_URL
    private_key: str = Field(..., repr=False)
    treasury_puller_address: str
    token_address: str = DEFAULT_TOKEN_ADDRESS
    permit2_address: str = PERMIT2_ADDRESS
    delegation_strategy: str = "permit"
    auto_approve_router: bool = True
    expected_chain_id: Optional[int] = None
    signature_validity_seconds: int = Field(default=DEFAULT_VALIDITY_WINDOW, gt=0)
    serialize_per_user: bool = True
    consume_on_success: bool = True
    authorization_grace_seconds: int = Field(default=3600, ge=0)
    eviction_interval_seconds: float = Field(default=300, gt=0)
    rpc_timeout_seconds: float = Field(default=60, gt=0)
    receipt_timeout_seconds: float = Field(default=300, gt=0)
    host: str = "0.0.0.0"
    port: int = 3002
    log_level: str = "INFO"
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])

    @classmethod
    def from_env(cls, env_file: Union[str, Path, None] = ".env") -> "TreasuryConfig":
        """
        Build the configuration from the environment.

        Args:
            env_file: Dotenv file loaded first when it exists. Variables already
                set in the process environment win.

        Raises:
            ConfigurationError: Required values missing or malformed. The
                error lists every offending variable.
        """
        if env_file is not None and Path(env_file).exists():
            load_dotenv(dotenv_path=env_file)

        missing: List[str] = []
        rpc_url = _get("MAINNET_RPC_URL") or _get("RPC_URL", DEFAULT_RPC_URL)
        private_key = _get("PRIVATE_KEY")
        if private_key is None:
            missing.append("PRIVATE_KEY")
        puller = _get_address("TREASURY_PULLER_ADDRESS", None, missing)
        if puller is None and "TREASURY_PULLER_ADDRESS (invalid address)" not in missing:
            missing.append("TREASURY_PULLER_ADDRESS")
        token = _get_address("TOKEN_ADDRESS", DEFAULT_TOKEN_ADDRESS, missing)
        permit2 = _get_address("PERMIT2_ADDRESS", PERMIT2_ADDRESS, missing)

        if missing:
            raise ConfigurationError(
                f"Missing or invalid configuration: {', '.join(missing)}",
                missing=missing,
            )

        origins = _get("CORS_ORIGINS", "*")
        return cls(
            rpc_url=rpc_url,
            private_key=private_key,
            treasury_puller_address=puller,
            token_address=token,
            permit2_address=permit2,
            delegation_strategy=_get("DELEGATION_STRATEGY", "permit"),
            auto_approve_router=_get_bool("AUTO_APPROVE_ROUTER", True),
            expected_chain_id=_get_number("EXPECTED_CHAIN_ID", None),
            signature_validity_seconds=_get_number("SIGNATURE_VALIDITY_SECONDS", DEFAULT_VALIDITY_WINDOW),
            serialize_per_user=_get_bool("SERIALIZE_PER_USER", True),
            consume_on_success=_get_bool("CONSUME_ON_SUCCESS", True),
            authorization_grace_seconds=_get_number("AUTHORIZATION_GRACE_SECONDS", 3600),
            eviction_interval_seconds=_get_number("EVICTION_INTERVAL_SECONDS", 300, float),
            rpc_timeout_seconds=_get_number("RPC_TIMEOUT_SECONDS", 60, float),
            receipt_timeout_seconds=_get_number("RECEIPT_TIMEOUT_SECONDS", 300, float),
            host=_get("HOST", "0.0.0.0"),
            port=_get_number("PORT", 3002),
            log_level=_get("LOG_LEVEL", "INFO").upper(),
            cors_origins=[origin.strip() for origin in origins.split(",") if origin.strip()],
        )

    def describe(self) -> Dict[str, Any]:
        """Report which settings are set. Secrets are reported as set/missing only."""
        return {
            "rpcUrl": "set" if self.rpc_url else "missing",
            "privateKey": "set" if self.private_key else "missing",
            "treasuryPullerAddress": self.treasury_puller_address,
            "tokenAddress": self.token_address,
            "permit2Address": self.permit2_address,
            "delegationStrategy": self.delegation_strategy,
            "autoApproveRouter": self.auto_approve_router,
            "expectedChainId": self.expected_chain_id,
            "signatureValiditySeconds": self.signature_validity_seconds,
        }
