from .evm import (
    EVMGateway,
    TypedMessageBuilder,
    SignatureVerifier,
    StructuredMessage,
    Authorization,
)
from .bases import ChainGateway, ContractCall

__all__ = [
    "EVMGateway",
    "TypedMessageBuilder",
    "SignatureVerifier",
    "StructuredMessage",
    "Authorization",
    "ChainGateway",
    "ContractCall",
]
