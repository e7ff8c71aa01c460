"""
Delegation strategies.

A strategy decides which allowance the user must have granted, whether the
treasury may top up a router approval itself, and which treasury puller
entry point performs the pull. It is chosen once, at configuration time.
"""

from abc import ABC, abstractmethod
from typing import Optional

from ..adapters.bases import ContractCall
from ..adapters.evm.constants import MAX_UINT256, PERMIT2_ADDRESS, checksum
from ..adapters.evm.ERC20_ABI import get_erc20_abi, get_treasury_puller_abi
from ..adapters.evm.schemas import Authorization
from ..adapters.evm.verifies import signature_to_bytes
from .exceptions import ConfigurationError


class DelegationStrategy(ABC):
    """
    Attributes:
        name: Strategy identifier used in configuration
        treasury_puller: Treasury puller contract address
        allowance_spender: Address whose ERC20 allowance from the user is checked
        auto_approve: Whether an insufficient allowance is answered with an
            approval transaction from the treasury wallet
    """

    name: str = ""

    def __init__(self, treasury_puller: str):
        self.treasury_puller = checksum(treasury_puller)

    @property
    @abstractmethod
    def allowance_spender(self) -> str:
        ...

    @property
    def auto_approve(self) -> bool:
        return False

    @property
    def router(self) -> Optional[str]:
        """Intermediate allowance router, if the strategy uses one."""
        return None

    def build_approval_call(self, token: str) -> ContractCall:
        return ContractCall(token, get_erc20_abi(), "approve", (self.allowance_spender, MAX_UINT256))

    @abstractmethod
    def build_pull_call(self, authorization: Authorization, token: str, amount: int) -> ContractCall:
        """Contract call that moves ``amount`` of ``token`` from the user to the treasury."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(puller={self.treasury_puller}, spender={self.allowance_spender})"


class PermitBasedStrategy(DelegationStrategy):
    """
    Pull with the user's stored signature through ``pullTokensWithPermit2``.

    The user's allowance is checked against the router (Permit2 by default).
    With ``auto_approve`` the treasury wallet submits ``approve(router, max)``
    when that allowance is short.
    """

    name = "permit"

    def __init__(self, treasury_puller: str, router: str = PERMIT2_ADDRESS, auto_approve: bool = True):
        super().__init__(treasury_puller)
        self._router = checksum(router)
        self._auto_approve = auto_approve

    @property
    def allowance_spender(self) -> str:
        return self._router

    @property
    def auto_approve(self) -> bool:
        return self._auto_approve

    @property
    def router(self) -> Optional[str]:
        return self._router

    def build_pull_call(self, authorization: Authorization, token: str, amount: int) -> ContractCall:
        value = authorization.signed_value
        return ContractCall(
            self.treasury_puller,
            get_treasury_puller_abi(),
            "pullTokensWithPermit2",
            (
                authorization.user_address,
                token,
                amount,
                value.deadline,
                value.nonce,
                signature_to_bytes(authorization.signature),
            ),
        )


class AllowanceBasedStrategy(DelegationStrategy):
    """
    Pull through ``pullTokensDirect`` using a plain ERC20 allowance to the puller.

    The treasury can never grant that allowance itself, so a short allowance
    always fails with ``InsufficientAllowance``.
    """

    name = "allowance"

    @property
    def allowance_spender(self) -> str:
        return self.treasury_puller

    def build_pull_call(self, authorization: Authorization, token: str, amount: int) -> ContractCall:
        return ContractCall(
            self.treasury_puller,
            get_treasury_puller_abi(),
            "pullTokensDirect",
            (authorization.user_address, token, amount),
        )


def build_strategy(
    name: str,
    treasury_puller: str,
    router: str = PERMIT2_ADDRESS,
    auto_approve: bool = True,
) -> DelegationStrategy:
    """
    Select a strategy by configuration name (``permit`` or ``allowance``).

    Raises:
        ConfigurationError: Unknown strategy name.
    """
    normalized = (name or "").strip().lower()
    if normalized == PermitBasedStrategy.name:
        return PermitBasedStrategy(treasury_puller, router=router, auto_approve=auto_approve)
    if normalized == AllowanceBasedStrategy.name:
        return AllowanceBasedStrategy(treasury_puller)
    raise ConfigurationError(
        f"Unknown delegation strategy {name!r}",
        allowed=[PermitBasedStrategy.name, AllowanceBasedStrategy.name],
    )
