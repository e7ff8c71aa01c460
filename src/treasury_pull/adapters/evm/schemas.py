"""
EVM Schema Models

Pydantic models for the signable compliance declaration, the server-held
authorization record, and transaction receipts.

Models:
    - TypedDataDomain: EIP-712 domain {name, version, chainId, verifyingContract}
    - DeclarationValue: the concrete fields a user signs
    - StructuredMessage: domain + type schema + value, the signable challenge
    - Authorization: a verified signature held by the authorization store
    - EVMTransactionReceipt: normalized receipt of an included transaction
    - OnChainAuthorizationStatus: result of the puller's checkAuthorization view
"""

import time
from typing import Annotated, Any, Dict, List, Optional

from pydantic import AfterValidator, ConfigDict, Field, model_validator

from ...schemas.bases import CanonicalModel, TransactionStatus
from .constants import MAX_UINT256, checksum, is_valid_evm_address
from .standards import ComplianceDeclarationTypedData


def _checksum_field(value: str) -> str:
    if not is_valid_evm_address(value):
        raise ValueError(f"Invalid EVM address: {value!r}")
    return checksum(value)


#: Address validated and normalized to its EIP-55 checksum form.
EVMAddress = Annotated[str, AfterValidator(_checksum_field)]


class TypedDataDomain(CanonicalModel):
    """EIP-712 domain. Never reused across deployments."""
    name: str
    version: str
    chain_id: int = Field(..., ge=1, alias="chainId")
    verifying_contract: EVMAddress = Field(..., alias="verifyingContract")


class DeclarationValue(CanonicalModel):
    """
    Concrete fields of a compliance declaration.

    ``amount`` is always expressed in the token's smallest unit. Numeric strings
    are accepted on input (wallet libraries often send uint256 as strings) and
    normalized to ``int``.
    """
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    message: str
    amount: int = Field(..., ge=0, le=MAX_UINT256)
    token: EVMAddress
    spender: EVMAddress
    nonce: int = Field(..., ge=0, le=MAX_UINT256)
    deadline: int = Field(..., ge=0, le=MAX_UINT256)

    def to_typed_message(self) -> Dict[str, Any]:
        """Message dict for EIP-712 encoding (python ints, checksum addresses)."""
        return self.model_dump(mode="python")


class StructuredMessage(CanonicalModel):
    """
    The signable challenge: ``{domain, types, primaryType, value}``.

    The value fields and the primary type schema must correspond 1:1.
    """
    domain: TypedDataDomain
    types: Dict[str, List[Dict[str, str]]]
    primary_type: str = Field(..., alias="primaryType")
    value: DeclarationValue

    @model_validator(mode="after")
    def check_schema_matches_value(self) -> "StructuredMessage":
        fields = self.types.get(self.primary_type)
        if fields is None:
            raise ValueError(f"primaryType {self.primary_type!r} is not declared in types")
        declared = [item.get("name") for item in fields]
        if len(declared) != len(set(declared)):
            raise ValueError("type schema declares a field twice")
        if set(declared) != set(DeclarationValue.model_fields):
            raise ValueError(
                f"type schema fields {sorted(declared)} do not match value fields "
                f"{sorted(DeclarationValue.model_fields)}"
            )
        return self

    @classmethod
    def from_typed_data(cls, typed_data: ComplianceDeclarationTypedData) -> "StructuredMessage":
        payload = typed_data.to_dict()
        return cls(
            domain=payload["domain"],
            types=payload["types"],
            primaryType=payload["primaryType"],
            value=payload["message"],
        )

    def to_typed_data(self) -> Dict[str, Any]:
        """
        Full EIP-712 message for ``encode_typed_data(full_message=...)``.
        """
        return {
            "types": self.types,
            "primaryType": self.primary_type,
            "domain": self.domain.model_dump(mode="python", by_alias=True),
            "message": self.value.to_typed_message(),
        }


class Authorization(CanonicalModel):
    """
    Server-held record of a verified signature.

    Created only after the signer recovered from ``signature`` over
    ``signed_value`` equals ``user_address``. Never mutated; a later
    authorization for the same user replaces it.
    """
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    user_address: EVMAddress = Field(..., alias="userAddress")
    signature: str
    signed_value: DeclarationValue = Field(..., alias="signedValue")
    received_at: float = Field(default_factory=time.time, alias="receivedAt")

    def is_expired(self, now: float) -> bool:
        return int(now) > self.signed_value.deadline

    def summary(self, now: float) -> Dict[str, Any]:
        """Public view of the record. The signature itself is not echoed."""
        return {
            "present": True,
            "amount": self.signed_value.amount,
            "nonce": self.signed_value.nonce,
            "deadline": self.signed_value.deadline,
            "expired": self.is_expired(now),
            "receivedAt": self.received_at,
        }


class EVMTransactionReceipt(CanonicalModel):
    """Normalized receipt of a transaction included on-chain."""
    tx_hash: str = Field(..., alias="txHash")
    status: TransactionStatus
    block_number: int = Field(..., ge=0, alias="blockNumber")
    gas_used: int = Field(..., ge=0, alias="gasUsed")
    effective_gas_price: int = Field(default=0, ge=0, alias="effectiveGasPrice")
    from_address: Optional[str] = Field(default=None, alias="from")
    to_address: Optional[str] = Field(default=None, alias="to")

    def is_success(self) -> bool:
        return self.status == TransactionStatus.SUCCESS


class OnChainAuthorizationStatus(CanonicalModel):
    """Result of the treasury puller's ``checkAuthorization(user, token)`` view."""
    is_authorized: bool = Field(..., alias="isAuthorized")
    is_valid: bool = Field(..., alias="isValid")
