from dataclasses import dataclass, field
from typing import Dict, Any, List

from .constants import PRIMARY_TYPE


# -----------------------------
# EIP-712 Domain
# -----------------------------

EIP712_DOMAIN_FIELDS: List[Dict[str, str]] = [
    {"name": "name", "type": "string"},
    {"name": "version", "type": "string"},
    {"name": "chainId", "type": "uint256"},
    {"name": "verifyingContract", "type": "address"},
]


@dataclass
class EIP712Domain:
    """
    EIP-712 domain separator.
    Binds a signature to one application instance on one chain.
    """
    name: str
    version: str
    chainId: int
    verifyingContract: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "chainId": self.chainId,
            "verifyingContract": self.verifyingContract,
        }


# -----------------------------
# Compliance Declaration
# -----------------------------

COMPLIANCE_DECLARATION_FIELDS: List[Dict[str, str]] = [
    {"name": "message", "type": "string"},
    {"name": "amount", "type": "uint256"},
    {"name": "token", "type": "address"},
    {"name": "spender", "type": "address"},
    {"name": "nonce", "type": "uint256"},
    {"name": "deadline", "type": "uint256"},
]


@dataclass
class ComplianceDeclarationMessage:
    """
    Message payload a user signs to let the treasury pull ``amount`` of ``token``.

    Attributes:
        message: Human-readable compliance declaration text.
        amount: Amount in the token's smallest unit (uint256).
        token: ERC20 token contract address.
        spender: Delegated puller allowed to move the tokens.
        nonce: Bitmap nonce consumed on-chain by the pull.
        deadline: Unix timestamp after which the signature is void.
    """
    message: str
    amount: int
    token: str
    spender: str
    nonce: int
    deadline: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "amount": self.amount,
            "token": self.token,
            "spender": self.spender,
            "nonce": self.nonce,
            "deadline": self.deadline,
        }


@dataclass
class ComplianceDeclarationTypedData:
    """
    Container for compliance declaration typed data usable with EIP-712 signing routines.

    ``to_dict()`` yields the ``{types, primaryType, domain, message}`` layout
    accepted by ``eth_account``'s ``encode_typed_data(full_message=...)`` and by
    wallet ``eth_signTypedData_v4`` implementations.
    """
    domain: EIP712Domain
    message: ComplianceDeclarationMessage

    primary_type: str = PRIMARY_TYPE

    types: Dict[str, List[Dict[str, str]]] = field(
        default_factory=lambda: {
            "EIP712Domain": [dict(item) for item in EIP712_DOMAIN_FIELDS],
            PRIMARY_TYPE: [dict(item) for item in COMPLIANCE_DECLARATION_FIELDS],
        }
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "types": self.types,
            "primaryType": self.primary_type,
            "domain": self.domain.to_dict(),
            "message": self.message.to_dict(),
        }
