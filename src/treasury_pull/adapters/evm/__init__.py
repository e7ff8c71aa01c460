from .gateway import EVMGateway
from .schemas import (
    TypedDataDomain,
    DeclarationValue,
    StructuredMessage,
    Authorization,
    EVMTransactionReceipt,
    OnChainAuthorizationStatus,
)
from .signatures import (
    TypedMessageBuilder,
    sign_structured_message,
    sign_plain_message,
    typed_data_for_wallet,
)
from .verifies import (
    SignatureVerifier,
    check_signature_shape,
    signature_to_bytes,
)

__all__ = [
    "EVMGateway",
    "TypedDataDomain",
    "DeclarationValue",
    "StructuredMessage",
    "Authorization",
    "EVMTransactionReceipt",
    "OnChainAuthorizationStatus",
    "TypedMessageBuilder",
    "sign_structured_message",
    "sign_plain_message",
    "typed_data_for_wallet",
    "SignatureVerifier",
    "check_signature_shape",
    "signature_to_bytes",
]
