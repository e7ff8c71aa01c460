"""
Signature verification for compliance declarations.

``SignatureVerifier`` recovers the signer of an EIP-712 structured message
(or, as a fallback, an EIP-191 plain message) and checks it against the
claimed address. ``check_signature_shape`` is the cheap format gate run before
any chain interaction.
"""

import logging
from typing import Any, Union

from eth_account import Account
from eth_account.messages import encode_defunct, encode_typed_data

from ...engine.exceptions import AddressMismatch, InvalidInput, VerificationFailed
from .constants import SIGNATURE_HEX_LENGTH, is_valid_evm_address
from .schemas import StructuredMessage


logger = logging.getLogger(__name__)


def check_signature_shape(signature: Any, nonce: Any = None) -> None:
    """
    Reject signatures that are not exactly 65 bytes of 0x-prefixed hex, and non-numeric nonces.

    Args:
        signature: Candidate signature string
        nonce: Optional nonce to check alongside (int or decimal string)

    Raises:
        InvalidInput: On any format violation.
    """
    # ---- 1. Signature length and encoding ----
    if not isinstance(signature, str) or len(signature) != SIGNATURE_HEX_LENGTH:
        raise InvalidInput(
            "Signature must be 65 bytes (130 hex characters) with 0x prefix",
            actual_length=len(signature) if isinstance(signature, str) else None,
            expected_length=SIGNATURE_HEX_LENGTH,
        )
    if not signature.startswith("0x"):
        raise InvalidInput("Signature must be 0x-prefixed")
    try:
        bytes.fromhex(signature[2:])
    except ValueError as e:
        raise InvalidInput("Signature is not valid hex") from e

    # ---- 2. Nonce ----
    if nonce is None:
        return
    if isinstance(nonce, bool):
        raise InvalidInput("Nonce must be a valid number", actual_nonce=str(nonce))
    if isinstance(nonce, int):
        numeric = nonce >= 0
    else:
        numeric = isinstance(nonce, str) and nonce.isdigit()
    if not numeric:
        raise InvalidInput("Nonce must be a valid number", actual_nonce=str(nonce))


def signature_to_bytes(signature: str) -> bytes:
    """Convert a shape-checked 0x-hex signature to raw bytes for contract calls."""
    check_signature_shape(signature)
    return bytes.fromhex(signature[2:])


class SignatureVerifier:
    """
    Recovers signers and compares them to claimed addresses.

    Exactly one scheme is used per call: EIP-712 when given a
    ``StructuredMessage``, EIP-191 when given a plain string.
    """

    def recover(self, signature: str, message: Union[StructuredMessage, str]) -> str:
        """
        Recover the signing address.

        Raises:
            VerificationFailed: Encoding or recovery threw, or the signature is malformed.
        """
        try:
            if isinstance(message, StructuredMessage):
                signable = encode_typed_data(full_message=message.to_typed_data())
            elif isinstance(message, str):
                signable = encode_defunct(text=message)
            else:
                raise TypeError(f"Unsupported message type: {type(message).__name__}")
        except Exception as e:
            raise VerificationFailed(f"Could not encode message for verification: {e}") from e

        try:
            return Account.recover_message(signable, signature=signature)
        except Exception as e:
            raise VerificationFailed(f"Signature recovery failed: {e}") from e

    def verify(
        self,
        claimed_address: str,
        signature: str,
        message: Union[StructuredMessage, str],
    ) -> str:
        """
        Verify that ``claimed_address`` signed ``message``.

        Returns:
            The recovered (checksum) address.

        Raises:
            InvalidInput: ``claimed_address`` is not a valid address
            VerificationFailed: Recovery threw or the signature is malformed
            AddressMismatch: Recovered signer differs (case-insensitively) from the claim
        """
        if not is_valid_evm_address(claimed_address):
            raise InvalidInput("Invalid claimed address", user_address=claimed_address)

        recovered = self.recover(signature, message)
        if recovered.lower() != claimed_address.lower():
            logger.warning("Signature mismatch claimed=%s recovered=%s", claimed_address, recovered)
            raise AddressMismatch(claimed=claimed_address, recovered=recovered)
        return recovered
