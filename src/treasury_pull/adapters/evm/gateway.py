"""
EVM Chain Gateway

web3.py implementation of ``ChainGateway``. Reads go through ``eth_call``;
writes are estimated, signed by the treasury wallet, broadcast, and their
receipts polled until inclusion.

Dependencies:
    - web3.py: For blockchain RPC interaction
    - eth_account: For transaction signing
"""

import asyncio
import logging
import time
from typing import Any, Optional

from eth_account import Account
from web3 import AsyncWeb3
from web3.exceptions import ContractLogicError, TransactionNotFound

from ...engine.exceptions import (
    BlockchainInteractionError,
    ConfigurationError,
    InclusionTimeout,
    TransactionExecutionError,
    UpstreamUnavailable,
)
from ...schemas.bases import TransactionStatus
from ..bases import ChainGateway, ContractCall
from .schemas import EVMTransactionReceipt


logger = logging.getLogger(__name__)

#: Safety margin applied on top of ``estimate_gas``.
GAS_BUFFER: float = 1.1

DEFAULT_RECEIPT_TIMEOUT: float = 300.0
DEFAULT_POLL_INTERVAL: float = 3.0


def _to_hex(value: Any) -> str:
    if isinstance(value, str):
        return value if value.startswith("0x") else "0x" + value
    return "0x" + bytes(value).hex()


class EVMGateway(ChainGateway):
    """
    Chain gateway backed by an ``AsyncWeb3`` HTTP provider.

    Writes from the treasury wallet are built and broadcast under a lock so two
    concurrent submissions never draw the same account nonce. The receipt wait
    happens outside the lock.

    Attributes:
        account: Treasury wallet account
        wallet_address: Checksum address of the treasury wallet

    Example:
        gateway = EVMGateway(rpc_url="https://eth.llamarpc.com", private_key="0x...")
        decimals = await gateway.get_decimals(token_address)
    """

    def __init__(
        self,
        rpc_url: str,
        private_key: str,
        request_timeout: float = 60,
        receipt_timeout: float = DEFAULT_RECEIPT_TIMEOUT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ):
        """
        Initialize the gateway.

        Args:
            rpc_url: HTTP(S) JSON-RPC endpoint
            private_key: Treasury wallet private key (0x-prefixed hex)
            request_timeout: Per-request RPC timeout in seconds
            receipt_timeout: How long ``submit`` waits for inclusion
            poll_interval: Seconds between receipt polls

        Raises:
            ConfigurationError: If the RPC URL is empty or the private key is invalid.
        """
        if not rpc_url:
            raise ConfigurationError("RPC URL is required")
        try:
            self.account = Account.from_key(private_key)
        except Exception as e:
            raise ConfigurationError("Invalid treasury wallet private key") from e

        self._wallet_address = AsyncWeb3.to_checksum_address(self.account.address)
        self._rpc_url = rpc_url
        self._request_timeout = request_timeout
        self._receipt_timeout = receipt_timeout
        self._poll_interval = poll_interval
        self._web3: Optional[AsyncWeb3] = None
        self._send_lock = asyncio.Lock()

    @property
    def wallet_address(self) -> str:
        return self._wallet_address

    def _get_web3_instance(self) -> AsyncWeb3:
        """Return the cached ``AsyncWeb3`` client, creating it on first use."""
        if self._web3 is None:
            self._web3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(
                self._rpc_url,
                request_kwargs={"timeout": self._request_timeout},
            ))
        return self._web3

    def _bind(self, web3: AsyncWeb3, call: ContractCall):
        contract = web3.eth.contract(
            address=AsyncWeb3.to_checksum_address(call.address),
            abi=call.abi,
        )
        return getattr(contract.functions, call.function)(*call.args)

    async def get_chain_id(self) -> int:
        web3 = self._get_web3_instance()
        try:
            return int(await web3.eth.chain_id)
        except Exception as e:
            raise UpstreamUnavailable(f"Failed to query chain id: {e}", operation="eth_chainId") from e

    async def call(self, query: ContractCall) -> Any:
        web3 = self._get_web3_instance()
        try:
            return await self._bind(web3, query).call()
        except ContractLogicError as e:
            raise BlockchainInteractionError(
                f"Contract call reverted: {query.describe()}",
                function=query.function,
                reason=str(e),
            ) from e
        except Exception as e:
            raise UpstreamUnavailable(
                f"RPC read failed: {query.describe()}: {e}",
                operation=query.function,
            ) from e

    async def submit(self, call: ContractCall) -> EVMTransactionReceipt:
        """
        Sign and broadcast ``call`` from the treasury wallet, then wait for inclusion.

        Steps:
            1. Estimate gas (a revert here means the transaction would fail)
            2. Read gas price and pending account nonce
            3. Build, sign and broadcast
            4. Poll for the receipt

        Raises:
            TransactionExecutionError: Estimation revert, broadcast rejection or status 0
            UpstreamUnavailable: Transport failure before broadcast
            InclusionTimeout: Broadcast succeeded but no receipt within the timeout
        """
        web3 = self._get_web3_instance()
        tx_fn = self._bind(web3, call)

        async with self._send_lock:
            try:
                gas_estimate = await tx_fn.estimate_gas({"from": self.wallet_address})
            except ContractLogicError as e:
                raise TransactionExecutionError(
                    f"Transaction would revert: {call.describe()}",
                    function=call.function,
                    reason=str(e),
                ) from e
            except Exception as e:
                raise UpstreamUnavailable(
                    f"Gas estimation failed: {e}", operation=f"estimate_gas:{call.function}"
                ) from e

            try:
                gas_price = await web3.eth.gas_price
                tx_nonce = await web3.eth.get_transaction_count(self.wallet_address, "pending")
                tx_dict = await tx_fn.build_transaction({
                    "from": self.wallet_address,
                    "gas": int(gas_estimate * GAS_BUFFER),
                    "gasPrice": gas_price,
                    "nonce": tx_nonce,
                })
            except Exception as e:
                raise UpstreamUnavailable(
                    f"Failed to build transaction: {e}", operation=f"build:{call.function}"
                ) from e

            signed_tx = self.account.sign_transaction(tx_dict)
            try:
                tx_hash = _to_hex(await web3.eth.send_raw_transaction(signed_tx.raw_transaction))
            except Exception as e:
                raise TransactionExecutionError(
                    f"Failed to broadcast transaction: {e}",
                    function=call.function,
                ) from e

        logger.info("Submitted %s tx=%s", call.describe(), tx_hash)
        return await self._wait_for_receipt(web3, tx_hash, call)

    async def _wait_for_receipt(
        self,
        web3: AsyncWeb3,
        tx_hash: str,
        call: ContractCall,
    ) -> EVMTransactionReceipt:
        started = time.monotonic()
        receipt = None
        while True:
            try:
                receipt = await web3.eth.get_transaction_receipt(tx_hash)
            except TransactionNotFound:
                receipt = None  # still pending
            except Exception as e:
                logger.warning("Receipt poll for %s failed: %s", tx_hash, e)
                receipt = None
            if receipt:
                break
            waited = time.monotonic() - started
            if waited >= self._receipt_timeout:
                raise InclusionTimeout(tx_hash=tx_hash, waited_seconds=round(waited, 3))
            await asyncio.sleep(self._poll_interval)

        status = TransactionStatus.SUCCESS if receipt.get("status") == 1 else TransactionStatus.FAILED
        result = EVMTransactionReceipt(
            tx_hash=tx_hash,
            status=status,
            block_number=receipt["blockNumber"],
            gas_used=receipt["gasUsed"],
            effective_gas_price=receipt.get("effectiveGasPrice", 0) or 0,
            from_address=receipt.get("from"),
            to_address=receipt.get("to"),
        )
        if not result.is_success():
            raise TransactionExecutionError(
                f"Transaction reverted on-chain: {call.describe()}",
                tx_hash=tx_hash,
                function=call.function,
                block_number=result.block_number,
                gas_used=result.gas_used,
            )
        logger.info(
            "Confirmed tx=%s block=%s gasUsed=%s", tx_hash, result.block_number, result.gas_used
        )
        return result
