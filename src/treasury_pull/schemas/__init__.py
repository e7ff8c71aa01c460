from .bases import CanonicalModel, TransactionStatus
from .https import SignatureChallengeRequest, AuthorizeRequest, TransferTokensRequest, HealthResponse
from .transfers import ApprovalRecord, BalanceChange, TransferResult

__all__ = [
    "CanonicalModel",
    "TransactionStatus",
    "SignatureChallengeRequest",
    "AuthorizeRequest",
    "TransferTokensRequest",
    "HealthResponse",
    "ApprovalRecord",
    "BalanceChange",
    "TransferResult",
]
