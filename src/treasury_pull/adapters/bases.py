"""
Abstract Base Classes for Chain Gateways

Defines the thin capability the transfer core uses to reach a ledger node:
read-only contract calls, transaction submission with receipt wait, and
network identity. Token reads (balance, allowance, decimals, symbol) are
derived from ``call`` so every read goes through one seam.

Core Classes:
    - ContractCall: Description of one contract function invocation
    - ChainGateway: Abstract gateway implemented by EVMGateway and test fakes
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Tuple

from .evm.ERC20_ABI import get_erc20_abi
from .evm.schemas import EVMTransactionReceipt


@dataclass(frozen=True)
class ContractCall:
    """
    One contract function invocation, used for both reads and writes.

    Attributes:
        address: Contract address
        abi: ABI containing at least ``function``
        function: Function name
        args: Positional arguments in ABI order
    """
    address: str
    abi: List[Dict[str, Any]]
    function: str
    args: Tuple[Any, ...] = ()

    def describe(self) -> str:
        """Loggable form. ``bytes`` arguments (signatures) are elided."""
        shown = ", ".join("<bytes>" if isinstance(arg, (bytes, bytearray)) else str(arg) for arg in self.args)
        return f"{self.function}({shown}) @ {self.address}"


class ChainGateway(ABC):
    """
    Abstract Base Class for ledger access.

    Key Responsibilities:
    1. call: Execute a read-only contract call and return the decoded value
    2. submit: Sign and broadcast a contract write from the treasury wallet,
       blocking until inclusion or failure
    3. get_chain_id: Report the connected network's chain id
    4. wallet_address: Address of the treasury-side signing wallet

    Failure contract:
        - Transport failures raise ``UpstreamUnavailable``
        - Contract-level read reverts raise ``BlockchainInteractionError``
        - Failed writes raise ``TransactionExecutionError``
        - A receipt wait that runs out raises ``InclusionTimeout``
    """

    @property
    @abstractmethod
    def wallet_address(self) -> str:
        """Checksum address of the treasury-side wallet that signs submissions."""

    @abstractmethod
    async def call(self, query: ContractCall) -> Any:
        """Execute a read-only contract call."""

    @abstractmethod
    async def submit(self, call: ContractCall) -> EVMTransactionReceipt:
        """Submit a contract write and wait for its receipt."""

    @abstractmethod
    async def get_chain_id(self) -> int:
        """Return the chain id of the connected network."""

    async def get_balance(self, address: str, token: str) -> int:
        return int(await self.call(ContractCall(token, get_erc20_abi(), "balanceOf", (address,))))

    async def get_allowance(self, owner: str, spender: str, token: str) -> int:
        return int(await self.call(ContractCall(token, get_erc20_abi(), "allowance", (owner, spender))))

    async def get_decimals(self, token: str) -> int:
        return int(await self.call(ContractCall(token, get_erc20_abi(), "decimals")))

    async def get_symbol(self, token: str) -> str:
        return str(await self.call(ContractCall(token, get_erc20_abi(), "symbol")))
