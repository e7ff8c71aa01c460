"""
Compliance declaration construction and signing.

``TypedMessageBuilder`` produces the domain-separated challenge a user signs;
``sign_structured_message`` / ``sign_plain_message`` are the matching
client-side helpers used by the HTTP client and by tests.
"""

import asyncio
import logging
import time
from typing import Any, Callable, Dict, Optional

from eth_account import Account
from eth_account.messages import encode_defunct

from ...engine.exceptions import (
    BlockchainInteractionError,
    ConfigurationError,
    InvalidInput,
    PermitExpired,
    UpstreamUnavailable,
)
from ..bases import ChainGateway
from .constants import (
    COMPLIANCE_DECLARATION,
    DEFAULT_VALIDITY_WINDOW,
    DOMAIN_NAME,
    DOMAIN_VERSION,
    amount_to_value,
    checksum,
    generate_nonce,
    is_valid_evm_address,
    parse_amount,
)
from .schemas import DeclarationValue, StructuredMessage
from .standards import (
    ComplianceDeclarationMessage,
    ComplianceDeclarationTypedData,
    EIP712Domain,
)


logger = logging.getLogger(__name__)


class TypedMessageBuilder:
    """
    Builds compliance declaration challenges for one deployment.

    The domain binds every signature to the treasury puller contract on the
    live chain. Building a challenge never touches the authorization store.

    Example:
        builder = TypedMessageBuilder(gateway, token_address=token, verifying_contract=puller)
        message = await builder.build("0xUser...", "10.5")
        typed_data = message.to_typed_data()  # hand to the wallet for eth_signTypedData_v4
    """

    def __init__(
        self,
        gateway: ChainGateway,
        *,
        token_address: str,
        verifying_contract: str,
        spender: Optional[str] = None,
        expected_chain_id: Optional[int] = None,
        validity_window: int = DEFAULT_VALIDITY_WINDOW,
        declaration: str = COMPLIANCE_DECLARATION,
        clock: Callable[[], float] = time.time,
        nonce_factory: Callable[[], int] = generate_nonce,
    ):
        if validity_window <= 0:
            raise ConfigurationError("validity_window must be positive", validity_window=validity_window)
        self._gateway = gateway
        self.token_address = checksum(token_address)
        self.verifying_contract = checksum(verifying_contract)
        self.spender = checksum(spender or verifying_contract)
        self.expected_chain_id = expected_chain_id
        self.validity_window = validity_window
        self.declaration = declaration
        self._clock = clock
        self._nonce_factory = nonce_factory
        self._decimals: Optional[int] = None

    async def build(self, user_address: str, human_amount: Any = "0") -> StructuredMessage:
        """
        Build the challenge for ``user_address`` to sign.

        Args:
            user_address: Address that will sign (format-validated)
            human_amount: Amount in display units, e.g. "10.5"

        Raises:
            InvalidInput: Invalid address or non-numeric / negative / over-precise amount
            UpstreamUnavailable: Decimals or chain id could not be resolved
            ConfigurationError: Live chain id differs from the expected chain id
        """
        if not is_valid_evm_address(user_address):
            raise InvalidInput("Missing or invalid userAddress", user_address=user_address)
        try:
            parse_amount(human_amount)
        except ValueError as e:
            raise InvalidInput(str(e), amount=str(human_amount)) from e

        decimals, chain_id = await asyncio.gather(self.resolve_decimals(), self.resolve_chain_id())
        try:
            amount = amount_to_value(amount=human_amount, decimals=decimals)
        except ValueError as e:
            raise InvalidInput(str(e), amount=str(human_amount), decimals=decimals) from e

        now = int(self._clock())
        message = ComplianceDeclarationMessage(
            message=self.declaration,
            amount=amount,
            token=self.token_address,
            spender=self.spender,
            nonce=self._nonce_factory(),
            deadline=now + self.validity_window,
        )
        structured = StructuredMessage.from_typed_data(
            ComplianceDeclarationTypedData(domain=self._domain(chain_id), message=message)
        )
        logger.info(
            "Built signature request user=%s amount=%s deadline=%s",
            user_address, amount, message.deadline,
        )
        return structured

    async def assemble(self, value: DeclarationValue) -> StructuredMessage:
        """
        Rebuild the exact structured message a client signed for ``value``.
        """
        chain_id = await self.resolve_chain_id()
        message = ComplianceDeclarationMessage(**value.to_typed_message())
        return StructuredMessage.from_typed_data(
            ComplianceDeclarationTypedData(domain=self._domain(chain_id), message=message)
        )

    def check_binding(self, value: DeclarationValue) -> None:
        """
        Reject values issued for another token or spender, or already past their deadline.
        """
        if value.token != self.token_address:
            raise InvalidInput(
                "Signed token does not match this deployment",
                signed_token=value.token,
                expected_token=self.token_address,
            )
        if value.spender != self.spender:
            raise InvalidInput(
                "Signed spender does not match this deployment",
                signed_spender=value.spender,
                expected_spender=self.spender,
            )
        now = int(self._clock())
        if now > value.deadline:
            raise PermitExpired(deadline=value.deadline, current_time=now)

    async def resolve_decimals(self) -> int:
        """Token decimals, cached after the first successful lookup."""
        if self._decimals is None:
            try:
                self._decimals = await self._gateway.get_decimals(self.token_address)
            except UpstreamUnavailable:
                raise
            except BlockchainInteractionError as e:
                raise UpstreamUnavailable(
                    f"Failed to resolve token decimals: {e.message}", operation="decimals"
                ) from e
        return self._decimals

    async def resolve_chain_id(self) -> int:
        """
        Live chain id.

        Raises:
            ConfigurationError: If it differs from ``expected_chain_id``.
        """
        chain_id = await self._gateway.get_chain_id()
        if self.expected_chain_id is not None and chain_id != self.expected_chain_id:
            raise ConfigurationError(
                "Connected chain does not match the configured chain",
                chain_id=chain_id,
                expected_chain_id=self.expected_chain_id,
            )
        return chain_id

    def _domain(self, chain_id: int) -> EIP712Domain:
        return EIP712Domain(
            name=DOMAIN_NAME,
            version=DOMAIN_VERSION,
            chainId=chain_id,
            verifyingContract=self.verifying_contract,
        )


def sign_structured_message(private_key: str, message: StructuredMessage) -> str:
    """
    Sign a structured message with EIP-712 (``eth_signTypedData_v4`` equivalent).

    Returns:
        0x-prefixed 65-byte signature (r || s || v)
    """
    signed = Account.sign_typed_data(private_key, full_message=message.to_typed_data())
    return "0x" + bytes(signed.signature).hex()


def sign_plain_message(private_key: str, text: str) -> str:
    """
    Sign a plain text message with EIP-191 (``personal_sign`` equivalent).
    """
    signed = Account.sign_message(encode_defunct(text=text), private_key)
    return "0x" + bytes(signed.signature).hex()


def typed_data_for_wallet(message: StructuredMessage) -> Dict[str, Any]:
    """
    JSON-ready typed data for browser wallets, with uint256 values as decimal strings.
    """
    typed = message.to_typed_data()
    fields = {item["name"]: item["type"] for item in message.types[message.primary_type]}
    typed["message"] = {
        key: str(val) if fields.get(key, "").startswith("uint") else val
        for key, val in typed["message"].items()
    }
    return typed
