"""
HTTP Request/Response Schema Models for the treasury pull service

This module defines the Pydantic models exchanged between wallet frontends
and the server. The delegated transfer flow consists of:
1. Client requests a compliance declaration to sign (POST /get-signature-request)
2. Client signs it in the wallet and submits the signature (POST /authorize)
3. Operator triggers the pull against the stored authorization (POST /transfer-tokens)

Address fields are format-checked here and normalized to their checksum form.
Uint256 values in the signed payload stay untyped until the server re-validates
them, since wallets send them as either numbers or decimal strings.
"""

from typing import Any, Dict

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..adapters.evm.constants import checksum, is_valid_evm_address


def _address(value: Any) -> str:
    if not is_valid_evm_address(value):
        raise ValueError("Missing or invalid userAddress")
    return checksum(value)


def _amount_text(value: Any) -> str:
    if value is None or isinstance(value, bool):
        raise ValueError("amount must be a number or numeric string")
    if isinstance(value, (int, float, str)):
        return str(value).strip()
    raise ValueError("amount must be a number or numeric string")


# ============================================================================
# Step 1: Signature challenge
# ============================================================================

class SignatureChallengeRequest(BaseModel):
    """Request for a compliance declaration to sign.

    Attributes:
        user_address: Address that will sign.
        amount: Display-unit amount the signature should cover ("0" when omitted).
    """
    model_config = ConfigDict(populate_by_name=True)
    user_address: str = Field(..., alias="userAddress")
    amount: str = Field(default="0", description="Amount in display units, e.g. '10.5'")

    @field_validator("user_address", mode="before")
    @classmethod
    def check_user_address(cls, v: Any) -> str:
        return _address(v)

    @field_validator("amount", mode="before")
    @classmethod
    def check_amount(cls, v: Any) -> str:
        return _amount_text(v)


# ============================================================================
# Step 2: Signed authorization
# ============================================================================

class AuthorizeRequest(BaseModel):
    """Signed compliance declaration submitted for verification.

    Attributes:
        user_address: Address claiming to have signed.
        signature: 0x-prefixed 65-byte signature.
        value: The signed declaration fields exactly as issued.
    """
    model_config = ConfigDict(populate_by_name=True)
    user_address: str = Field(..., alias="userAddress")
    signature: str
    value: Dict[str, Any]

    @field_validator("user_address", mode="before")
    @classmethod
    def check_user_address(cls, v: Any) -> str:
        return _address(v)


# ============================================================================
# Step 3: Transfer trigger
# ============================================================================

class TransferTokensRequest(BaseModel):
    """Request to pull tokens from a user under their stored authorization."""
    model_config = ConfigDict(populate_by_name=True)
    user_address: str = Field(..., alias="userAddress")
    amount: str

    @field_validator("user_address", mode="before")
    @classmethod
    def check_user_address(cls, v: Any) -> str:
        return _address(v)

    @field_validator("amount", mode="before")
    @classmethod
    def check_amount(cls, v: Any) -> str:
        return _amount_text(v)


# ============================================================================
# Diagnostics
# ============================================================================

class HealthResponse(BaseModel):
    """Liveness payload."""
    status: str = "healthy"
    message: str = "Treasury pull server is running"
    timestamp: str
    version: str
