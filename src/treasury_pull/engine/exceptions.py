"""
Exception and Error Definitions Module

Defines the error taxonomy for signature-based delegated transfers. Every
exception carries a stable ``code`` and structured context (the numeric values
involved, not just a message) so callers can decide the remediation.

Exception Hierarchy:
    TreasuryPullError (root)
    ├── InvalidInput
    ├── SignatureVerificationError
    │   ├── VerificationFailed
    │   └── AddressMismatch
    ├── TransferPreconditionError
    │   ├── NoAuthorization
    │   ├── PermitExpired
    │   ├── AmountMismatch
    │   ├── InsufficientBalance
    │   └── InsufficientAllowance
    ├── BlockchainInteractionError
    │   ├── UpstreamUnavailable
    │   ├── InclusionTimeout
    │   └── TransactionExecutionError
    │       ├── ApprovalFailed
    │       └── TransferReverted
    ├── ConfigurationError
    └── ApiResponseError
"""

from typing import Any, Dict, List, Optional


_MAX_SAFE_INTEGER = 2 ** 53


def _json_safe(value: Any) -> Any:
    """Render context values so they survive JSON transport without precision loss."""
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, int):
        # uint256 quantities can exceed the 2**53 range of JavaScript numbers
        return str(value) if abs(value) >= _MAX_SAFE_INTEGER else value
    if isinstance(value, (list, tuple)):
        return [_json_safe(item) for item in value]
    if isinstance(value, dict):
        return {key: _json_safe(item) for key, item in value.items()}
    if isinstance(value, (str, float)):
        return value
    return str(value)


class TreasuryPullError(Exception):
    """
    Root exception class for all project-specific exceptions.

    Attributes:
        message: Human-readable description
        context: Structured values describing the failure
    """

    code: str = "internal_error"

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = context

    def to_dict(self) -> Dict[str, Any]:
        """Serialize into the error body returned to API callers."""
        payload: Dict[str, Any] = {"error": self.code, "message": self.message}
        for key, value in self.context.items():
            payload[key] = _json_safe(value)
        return payload

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, context={self.context!r})"


class InvalidInput(TreasuryPullError):
    """
    Raised when caller input is malformed.

    This includes scenarios such as:
    - Invalid address format
    - Non-numeric or negative amount
    - Signature that is not exactly 65 bytes
    - Non-numeric nonce
    """

    code = "invalid_input"


class SignatureVerificationError(TreasuryPullError):
    """Base exception for rejected signatures. The user must re-sign."""

    code = "signature_rejected"


class VerificationFailed(SignatureVerificationError):
    """
    Raised when signer recovery throws or the signed payload cannot be encoded.
    """

    code = "verification_failed"


class AddressMismatch(SignatureVerificationError):
    """
    Raised when the recovered signer differs from the claimed address.

    Attributes:
        claimed: Address the caller said signed the message
        recovered: Address actually recovered from the signature
    """

    code = "address_mismatch"

    def __init__(self, claimed: str, recovered: str) -> None:
        super().__init__(
            "Recovered signer does not match the claimed address",
            claimed=claimed,
            recovered=recovered,
        )
        self.claimed = claimed
        self.recovered = recovered


class TransferPreconditionError(TreasuryPullError):
    """
    Base exception for transfer preconditions that failed before any chain write.
    """

    code = "precondition_failed"


class NoAuthorization(TransferPreconditionError):
    """Raised when no verified authorization is stored for the user."""

    code = "no_authorization"

    def __init__(self, user_address: str) -> None:
        super().__init__(
            "No authorization found for user; call /get-signature-request and /authorize first",
            user_address=user_address,
        )
        self.user_address = user_address


class PermitExpired(TransferPreconditionError):
    """
    Raised when the signed deadline has passed.

    Attributes:
        deadline: The signed deadline (unix seconds)
        current_time: Time the check ran (unix seconds)
        expired_by: Seconds past the deadline, always positive
    """

    code = "permit_expired"

    def __init__(self, deadline: int, current_time: int) -> None:
        expired_by = current_time - deadline
        super().__init__(
            "The signed authorization has expired; the user must sign a new one",
            deadline=deadline,
            current_time=current_time,
            expired_by=expired_by,
        )
        self.deadline = deadline
        self.current_time = current_time
        self.expired_by = expired_by


class AmountMismatch(TransferPreconditionError):
    """
    Raised when the requested amount differs from the signed amount.

    Attributes:
        signed_amount: Amount embedded in the signature (smallest unit)
        requested_amount: Amount requested for transfer (smallest unit)
    """

    code = "amount_mismatch"

    def __init__(self, signed_amount: int, requested_amount: int) -> None:
        super().__init__(
            "The transfer amount does not match the signed amount; re-sign with the correct amount",
            signed_amount=signed_amount,
            requested_amount=requested_amount,
        )
        self.signed_amount = signed_amount
        self.requested_amount = requested_amount


class InsufficientBalance(TransferPreconditionError):
    """
    Raised when the user's token balance cannot cover the transfer.

    Attributes:
        balance: Current balance (smallest unit)
        required: Amount required (smallest unit)
        shortfall: required - balance
    """

    code = "insufficient_balance"

    def __init__(self, balance: int, required: int) -> None:
        shortfall = required - balance
        super().__init__(
            "Insufficient user balance",
            balance=balance,
            required=required,
            shortfall=shortfall,
        )
        self.balance = balance
        self.required = required
        self.shortfall = shortfall


class InsufficientAllowance(TransferPreconditionError):
    """
    Raised when the user has not allowed the delegated spender enough tokens.

    Attributes:
        allowance: Current allowance (smallest unit)
        required: Amount required (smallest unit)
        spender: Address the allowance was checked against
        shortfall: required - allowance
    """

    code = "insufficient_allowance"

    def __init__(self, allowance: int, required: int, spender: str) -> None:
        shortfall = required - allowance
        super().__init__(
            "Insufficient allowance for transfer",
            allowance=allowance,
            required=required,
            spender=spender,
            shortfall=shortfall,
        )
        self.allowance = allowance
        self.required = required
        self.spender = spender
        self.shortfall = shortfall


class BlockchainInteractionError(TreasuryPullError):
    """
    Raised when blockchain interaction (RPC call) fails.

    This includes scenarios such as:
    - Contract call revert on a read
    - Invalid contract address
    """

    code = "blockchain_error"


class UpstreamUnavailable(BlockchainInteractionError):
    """
    Raised when the ledger node cannot be reached or keeps failing.

    Attributes:
        operation: Name of the read or write that failed
        attempts: Number of attempts made before giving up
    """

    code = "upstream_unavailable"

    def __init__(self, message: str, operation: str, attempts: int = 1, **context: Any) -> None:
        super().__init__(message, operation=operation, attempts=attempts, **context)
        self.operation = operation
        self.attempts = attempts


class InclusionTimeout(BlockchainInteractionError):
    """
    Raised when a submitted transaction was not confirmed within the wait window.

    Only the wait failed. The transaction may still be included later, so
    callers must not treat this as a reverted transfer.

    Attributes:
        tx_hash: Hash of the submitted transaction
    """

    code = "inclusion_timeout"

    def __init__(self, tx_hash: str, waited_seconds: float) -> None:
        super().__init__(
            "Transaction submitted but not yet confirmed",
            tx_hash=tx_hash,
            waited_seconds=waited_seconds,
        )
        self.tx_hash = tx_hash


class TransactionExecutionError(BlockchainInteractionError):
    """
    Raised when blockchain transaction execution fails.

    This includes scenarios such as:
    - Transaction reverted on-chain
    - Revert detected during gas estimation
    - Broadcast rejected by the node

    Attributes:
        tx_hash: Transaction hash if the transaction was broadcast
    """

    code = "transaction_failed"

    def __init__(self, message: str, tx_hash: Optional[str] = None, **context: Any) -> None:
        super().__init__(message, tx_hash=tx_hash, **context)
        self.tx_hash = tx_hash


class ApprovalFailed(TransactionExecutionError):
    """Raised when the router approval transaction fails. The transfer is aborted."""

    code = "approval_failed"


class TransferReverted(TransactionExecutionError):
    """
    Raised when the delegated pull fails on-chain.

    Attributes:
        possible_causes: Enumerated reasons a pull is known to revert for
    """

    code = "transfer_reverted"

    def __init__(
        self,
        message: str,
        possible_causes: List[str],
        tx_hash: Optional[str] = None,
        **context: Any,
    ) -> None:
        super().__init__(message, tx_hash=tx_hash, possible_causes=list(possible_causes), **context)
        self.possible_causes = list(possible_causes)


class ConfigurationError(TreasuryPullError):
    """
    Raised when configuration is missing or invalid.

    This includes scenarios such as:
    - Missing required environment variables
    - Invalid contract addresses
    - Live chain id differs from the expected chain id
    """

    code = "configuration_error"


class ApiResponseError(TreasuryPullError):
    """
    Raised by the HTTP client when the service answers with a non-2xx status.

    Attributes:
        status_code: HTTP status code
        payload: Decoded error body
    """

    code = "api_error"

    def __init__(self, status_code: int, payload: Dict[str, Any]) -> None:
        message = payload.get("message") or payload.get("error") or f"HTTP {status_code}"
        super().__init__(str(message), status_code=status_code)
        self.status_code = status_code
        self.payload = payload

    @property
    def error_code(self) -> Optional[str]:
        return self.payload.get("error")
