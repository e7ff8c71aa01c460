"""
Transfer orchestration.

``TransferOrchestrator.transfer`` re-validates every precondition for a
delegated pull against the stored authorization and live chain state, and
only then submits the pull. Every failing step raises a specific error from
``engine.exceptions`` carrying the values involved.

Pipeline:
    1. Lookup        stored authorization              -> NoAuthorization
    2. Shape         signature length / nonce format    -> InvalidInput
    3. Freshness     signed deadline vs now             -> PermitExpired
    4. Reads         allowance, balance, decimals, symbol, treasury (concurrent, retried)
    5. Amount        requested vs signed amount         -> AmountMismatch
    6. Balance       user balance vs amount             -> InsufficientBalance
    7. Allowance     user allowance to the spender      -> InsufficientAllowance / ApprovalFailed
    8. Execution     delegated pull                     -> TransferReverted
    9. Result        after balances and deltas (unknown if unreadable; the pull stands)

Steps 1-3 need no chain access, so malformed or stale authorizations are
rejected before any RPC traffic.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional, TypeVar

from ..adapters.bases import ChainGateway, ContractCall
from ..adapters.evm.constants import (
    TRANSFER_REVERT_CAUSES,
    amount_to_value,
    checksum,
    is_valid_evm_address,
    parse_amount,
)
from ..adapters.evm.ERC20_ABI import get_router_probe_abi, get_treasury_puller_abi
from ..adapters.evm.verifies import check_signature_shape
from ..schemas.transfers import ApprovalRecord, BalanceChange, TransferResult
from .events import ApprovalSubmittedEvent, EventBus, TransferFailedEvent, TransferSucceededEvent
from .exceptions import (
    AmountMismatch,
    ApprovalFailed,
    BlockchainInteractionError,
    InsufficientAllowance,
    InsufficientBalance,
    InvalidInput,
    NoAuthorization,
    PermitExpired,
    TransactionExecutionError,
    TransferReverted,
    TreasuryPullError,
    UpstreamUnavailable,
)
from .stores import AuthorizationStore
from .strategies import DelegationStrategy


logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_READ_ATTEMPTS: int = 3
DEFAULT_RETRY_BACKOFF: float = 0.5


def _as_int(value: Any) -> Optional[int]:
    return None if value is None else int(value)


@dataclass(frozen=True)
class ChainSnapshot:
    """Independent reads taken together before the transfer checks."""
    allowance: int
    balance: int
    decimals: int
    symbol: str
    treasury: str


class _KeyedLocks:
    """Per-key ``asyncio.Lock`` with reference-counted cleanup."""

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._waiters: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


class TransferOrchestrator:
    """
    Executes delegated pulls against stored authorizations.

    Args:
        gateway: Chain access
        store: Authorization store (read per request, burned on success)
        strategy: Delegation strategy selected at configuration time
        token_address: Token being pulled
        event_bus: Optional lifecycle event sink
        serialize_per_user: Run same-user transfers one at a time
        consume_on_success: Burn the authorization after a confirmed pull
        max_read_attempts: Attempts for the pre- and post-transfer reads on UpstreamUnavailable
        retry_backoff: Base backoff in seconds, doubled per attempt
        clock: Time source (unix seconds)
    """

    def __init__(
        self,
        gateway: ChainGateway,
        store: AuthorizationStore,
        strategy: DelegationStrategy,
        *,
        token_address: str,
        event_bus: Optional[EventBus] = None,
        serialize_per_user: bool = True,
        consume_on_success: bool = True,
        max_read_attempts: int = DEFAULT_READ_ATTEMPTS,
        retry_backoff: float = DEFAULT_RETRY_BACKOFF,
        clock: Callable[[], float] = time.time,
    ):
        self.gateway = gateway
        self.store = store
        self.strategy = strategy
        self.token_address = checksum(token_address)
        self.event_bus = event_bus or EventBus()
        self.serialize_per_user = serialize_per_user
        self.consume_on_success = consume_on_success
        self.max_read_attempts = max(1, max_read_attempts)
        self.retry_backoff = retry_backoff
        self._clock = clock
        self._user_locks = _KeyedLocks()

    async def transfer(self, user_address: str, requested_amount: Any) -> TransferResult:
        """
        Pull ``requested_amount`` (display units) from ``user_address`` into the treasury.

        Raises:
            InvalidInput, NoAuthorization, PermitExpired, AmountMismatch,
            InsufficientBalance, InsufficientAllowance, ApprovalFailed,
            TransferReverted, UpstreamUnavailable, InclusionTimeout
        """
        if not is_valid_evm_address(user_address):
            raise InvalidInput("Invalid user address format", user_address=user_address)
        user_address = checksum(user_address)

        try:
            if self.serialize_per_user:
                async with self._user_locks.hold(user_address.lower()):
                    result = await self._run(user_address, requested_amount)
            else:
                result = await self._run(user_address, requested_amount)
        except TreasuryPullError as e:
            logger.warning("Transfer for %s failed: %s %s", user_address, e.code, e.context)
            await self.event_bus.emit(TransferFailedEvent(
                user_address=user_address,
                requested_amount=str(requested_amount),
                error_code=e.code,
                details=e.to_dict(),
            ))
            raise

        await self.event_bus.emit(TransferSucceededEvent(user_address=user_address, result=result))
        return result

    async def _run(self, user_address: str, requested_amount: Any) -> TransferResult:
        # ---- 1. Lookup ----
        authorization = await self.store.get(user_address)
        if authorization is None:
            raise NoAuthorization(user_address)
        value = authorization.signed_value

        # ---- 2. Signature shape ----
        check_signature_shape(authorization.signature, value.nonce)

        # ---- 3. Freshness ----
        now = int(self._clock())
        if now > value.deadline:
            raise PermitExpired(deadline=value.deadline, current_time=now)

        try:
            parse_amount(requested_amount)
        except ValueError as e:
            raise InvalidInput(str(e), amount=str(requested_amount)) from e

        # ---- 4. Concurrent reads ----
        snapshot = await self._with_retry("pre-transfer reads", lambda: self._read_snapshot(user_address))

        # ---- 5. Amount binding ----
        try:
            amount = amount_to_value(amount=requested_amount, decimals=snapshot.decimals)
        except ValueError as e:
            raise InvalidInput(str(e), amount=str(requested_amount), decimals=snapshot.decimals) from e
        if amount != value.amount:
            raise AmountMismatch(signed_amount=value.amount, requested_amount=amount)

        # ---- 6. Balance ----
        if snapshot.balance < amount:
            raise InsufficientBalance(balance=snapshot.balance, required=amount)

        # ---- 7. Allowance ----
        approval = await self._ensure_allowance(snapshot.allowance, amount)

        treasury_before = await self._with_retry(
            "treasury balance",
            lambda: self.gateway.get_balance(snapshot.treasury, self.token_address),
        )
        await self._probe_diagnostics(user_address)

        # ---- 8. Execution ----
        pull_call = self.strategy.build_pull_call(authorization, self.token_address, amount)
        logger.info("Pulling %s %s from %s via %s", amount, snapshot.symbol, user_address, self.strategy.name)
        try:
            receipt = await self.gateway.submit(pull_call)
        except TransactionExecutionError as e:
            raise TransferReverted(
                f"Transfer failed: {e.message}",
                possible_causes=list(TRANSFER_REVERT_CAUSES),
                tx_hash=e.tx_hash,
                nonce=value.nonce,
                deadline=value.deadline,
            ) from e

        if self.consume_on_success:
            await self.store.discard(user_address, authorization)

        # ---- 9. Result ----
        # The pull is confirmed from here on; a failed read only leaves the after balances unknown
        try:
            user_after, treasury_after = await self._with_retry(
                "post-transfer balances",
                lambda: asyncio.gather(
                    self.gateway.get_balance(user_address, self.token_address),
                    self.gateway.get_balance(snapshot.treasury, self.token_address),
                ),
            )
        except BlockchainInteractionError as e:
            logger.warning(
                "Transfer %s confirmed but after balances are unavailable: %s",
                receipt.tx_hash, e.message,
            )
            user_after = treasury_after = None

        return TransferResult(
            transaction_hash=receipt.tx_hash,
            block_number=receipt.block_number,
            gas_used=receipt.gas_used,
            amount=amount,
            decimals=snapshot.decimals,
            symbol=snapshot.symbol,
            from_address=user_address,
            to_address=snapshot.treasury,
            approval=approval,
            user=BalanceChange(before=snapshot.balance, after=_as_int(user_after)),
            treasury=BalanceChange(before=int(treasury_before), after=_as_int(treasury_after)),
        )

    async def _read_snapshot(self, user_address: str) -> ChainSnapshot:
        allowance, balance, decimals, symbol, treasury = await asyncio.gather(
            self.gateway.get_allowance(user_address, self.strategy.allowance_spender, self.token_address),
            self.gateway.get_balance(user_address, self.token_address),
            self.gateway.get_decimals(self.token_address),
            self.gateway.get_symbol(self.token_address),
            self.gateway.call(ContractCall(self.strategy.treasury_puller, get_treasury_puller_abi(), "treasury")),
        )
        return ChainSnapshot(
            allowance=int(allowance),
            balance=int(balance),
            decimals=int(decimals),
            symbol=str(symbol),
            treasury=checksum(treasury),
        )

    async def _ensure_allowance(self, allowance: int, amount: int) -> ApprovalRecord:
        spender = self.strategy.allowance_spender
        if allowance >= amount:
            return ApprovalRecord(required=False)
        if not self.strategy.auto_approve:
            raise InsufficientAllowance(allowance=allowance, required=amount, spender=spender)

        logger.info("Allowance %s < %s for spender %s, submitting approval", allowance, amount, spender)
        try:
            receipt = await self.gateway.submit(self.strategy.build_approval_call(self.token_address))
        except TransactionExecutionError as e:
            raise ApprovalFailed(
                f"Failed to approve {spender}: {e.message}",
                tx_hash=e.tx_hash,
                spender=spender,
                allowance=allowance,
                required=amount,
            ) from e

        await self.event_bus.emit(ApprovalSubmittedEvent(
            token=self.token_address, spender=spender, tx_hash=receipt.tx_hash,
        ))
        return ApprovalRecord(required=True, tx_hash=receipt.tx_hash, spender=spender)

    async def _probe_diagnostics(self, user_address: str) -> None:
        """Best-effort sanity checks. Failures are logged, never raised."""
        try:
            is_authorized, is_valid = await self.gateway.call(ContractCall(
                self.strategy.treasury_puller,
                get_treasury_puller_abi(),
                "checkAuthorization",
                (user_address, self.token_address),
            ))
            if not (is_authorized and is_valid):
                logger.warning(
                    "Puller reports user %s authorized=%s valid=%s; proceeding with signature",
                    user_address, is_authorized, is_valid,
                )
        except Exception as e:
            logger.warning("Authorization status probe failed: %s", e)

        router = self.strategy.router
        if router is None:
            return
        try:
            await self.gateway.call(ContractCall(router, get_router_probe_abi(), "DOMAIN_SEPARATOR"))
        except Exception as e:
            logger.warning("Allowance router %s not reachable: %s", router, e)

    async def _with_retry(self, operation: str, factory: Callable[[], Awaitable[T]]) -> T:
        """Run ``factory`` retrying UpstreamUnavailable with exponential backoff."""
        last_error: Optional[UpstreamUnavailable] = None
        for attempt in range(1, self.max_read_attempts + 1):
            try:
                return await factory()
            except UpstreamUnavailable as e:
                last_error = e
                if attempt == self.max_read_attempts:
                    break
                delay = self.retry_backoff * (2 ** (attempt - 1))
                logger.warning(
                    "%s failed (attempt %d/%d), retrying in %.2fs: %s",
                    operation, attempt, self.max_read_attempts, delay, e.message,
                )
                await asyncio.sleep(delay)
        raise UpstreamUnavailable(
            f"{operation} failed after {self.max_read_attempts} attempts: {last_error.message}",
            operation=operation,
            attempts=self.max_read_attempts,
        ) from last_error
