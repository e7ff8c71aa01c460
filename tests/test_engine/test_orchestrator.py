"""
Transfer Orchestrator Test Suite

Exercises the full precondition pipeline and execution against the in-memory
ledger:
- Lookup, shape and freshness checks that run before any chain access
- Amount binding, balance and allowance checks that never write
- Router approval, pull execution and balance deltas
- Retry on upstream failures, revert classification, single-use burn
- Per-user serialization
"""

import asyncio

import pytest

from test_mocks import (
    MOCK_CURRENT_TIME,
    MOCK_DEADLINE_PAST,
    MOCK_OTHER_PRIVATE_KEY,
    MOCK_SERVER_ADDRESS,
    MOCK_TOKEN_ADDRESS,
    MOCK_TREASURY_ADDRESS,
    MOCK_TREASURY_PULLER,
    MOCK_USER_ADDRESS,
    ONE_TOKEN,
    FakeChainGateway,
    create_signed_authorization,
)
from treasury_pull.adapters.evm.constants import MAX_UINT256, PERMIT2_ADDRESS, TRANSFER_REVERT_CAUSES
from treasury_pull.engine.events import (
    ApprovalSubmittedEvent,
    TransferFailedEvent,
    TransferSucceededEvent,
)
from treasury_pull.engine.exceptions import (
    AmountMismatch,
    ApprovalFailed,
    InclusionTimeout,
    InsufficientAllowance,
    InsufficientBalance,
    InvalidInput,
    NoAuthorization,
    PermitExpired,
    TransferReverted,
    UpstreamUnavailable,
)
from treasury_pull.engine.orchestrator import TransferOrchestrator
from treasury_pull.engine.strategies import AllowanceBasedStrategy, PermitBasedStrategy


# ========================================================================
# Test Fixtures
# ========================================================================

@pytest.fixture
def make_orchestrator(gateway, store, clock, permit_strategy):
    def factory(strategy=None, **kwargs):
        kwargs.setdefault("retry_backoff", 0)
        return TransferOrchestrator(
            gateway,
            store,
            strategy or permit_strategy,
            token_address=MOCK_TOKEN_ADDRESS,
            clock=clock,
            **kwargs,
        )
    return factory


@pytest.fixture
def funded_gateway(gateway):
    """User holds 100 tokens and has approved the router."""
    gateway.set_balance(MOCK_USER_ADDRESS, 100 * ONE_TOKEN)
    gateway.set_allowance(MOCK_USER_ADDRESS, PERMIT2_ADDRESS, MAX_UINT256)
    return gateway


class NodeDropsAfterPullGateway(FakeChainGateway):
    """Ledger whose reads start failing once the pull is confirmed."""

    def __init__(self, failures_after_pull: int, **kwargs):
        super().__init__(**kwargs)
        self.failures_after_pull = failures_after_pull

    async def submit(self, call):
        receipt = await super().submit(call)
        if call.function == "pullTokensWithPermit2":
            self.upstream_failures = self.failures_after_pull
        return receipt


def flaky_after_pull(store, clock, failures_after_pull):
    gateway = NodeDropsAfterPullGateway(failures_after_pull)
    gateway.set_balance(MOCK_USER_ADDRESS, 100 * ONE_TOKEN)
    gateway.set_allowance(MOCK_USER_ADDRESS, PERMIT2_ADDRESS, MAX_UINT256)
    orchestrator = TransferOrchestrator(
        gateway,
        store,
        PermitBasedStrategy(MOCK_TREASURY_PULLER),
        token_address=MOCK_TOKEN_ADDRESS,
        retry_backoff=0,
        clock=clock,
    )
    return gateway, orchestrator


async def store_authorization(store, **kwargs):
    kwargs.setdefault("amount", 10 * ONE_TOKEN)
    authorization = create_signed_authorization(**kwargs)
    await store.put(authorization.user_address, authorization)
    return authorization


# ========================================================================
# Test Classes
# ========================================================================

class TestPreChainChecks:
    """Checks that must fail before any chain interaction."""

    @pytest.mark.asyncio
    async def test_no_authorization(self, make_orchestrator, gateway):
        with pytest.raises(NoAuthorization) as exc_info:
            await make_orchestrator().transfer(MOCK_USER_ADDRESS, "10")

        assert exc_info.value.user_address == MOCK_USER_ADDRESS
        assert gateway.reads == []
        assert gateway.submitted == []

    @pytest.mark.asyncio
    async def test_short_signature_is_invalid_input_without_chain_calls(self, make_orchestrator, gateway, store):
        await store_authorization(store, signature="0x" + "ab" * 59)

        with pytest.raises(InvalidInput) as exc_info:
            await make_orchestrator().transfer(MOCK_USER_ADDRESS, "10")

        assert exc_info.value.context["actual_length"] == 120
        assert gateway.reads == []
        assert gateway.submitted == []

    @pytest.mark.asyncio
    async def test_expired_authorization(self, make_orchestrator, gateway, store):
        await store_authorization(store, deadline=MOCK_DEADLINE_PAST)

        with pytest.raises(PermitExpired) as exc_info:
            await make_orchestrator().transfer(MOCK_USER_ADDRESS, "10")

        assert exc_info.value.expired_by > 0
        assert exc_info.value.expired_by == MOCK_CURRENT_TIME - MOCK_DEADLINE_PAST
        assert gateway.reads == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", ["abc", "-1", ""])
    async def test_invalid_requested_amount(self, make_orchestrator, gateway, store, amount):
        await store_authorization(store)
        with pytest.raises(InvalidInput):
            await make_orchestrator().transfer(MOCK_USER_ADDRESS, amount)
        assert gateway.submitted == []

    @pytest.mark.asyncio
    async def test_invalid_user_address(self, make_orchestrator):
        with pytest.raises(InvalidInput):
            await make_orchestrator().transfer("0x1234", "10")


class TestReadOnlyPreconditions:
    """Checks that read the chain but never write."""

    @pytest.mark.asyncio
    async def test_amount_mismatch(self, make_orchestrator, funded_gateway, store):
        await store_authorization(store, amount=10 * ONE_TOKEN)

        with pytest.raises(AmountMismatch) as exc_info:
            await make_orchestrator().transfer(MOCK_USER_ADDRESS, "11")

        assert exc_info.value.signed_amount == 10 * ONE_TOKEN
        assert exc_info.value.requested_amount == 11 * ONE_TOKEN
        assert funded_gateway.submitted == []

    @pytest.mark.asyncio
    async def test_over_precise_amount_is_invalid_input(self, make_orchestrator, funded_gateway, store):
        await store_authorization(store)
        with pytest.raises(InvalidInput):
            await make_orchestrator().transfer(MOCK_USER_ADDRESS, "10.0000001")
        assert funded_gateway.submitted == []

    @pytest.mark.asyncio
    async def test_insufficient_balance(self, make_orchestrator, funded_gateway, store):
        funded_gateway.set_balance(MOCK_USER_ADDRESS, 4 * ONE_TOKEN)
        await store_authorization(store)

        with pytest.raises(InsufficientBalance) as exc_info:
            await make_orchestrator().transfer(MOCK_USER_ADDRESS, "10")

        assert exc_info.value.balance == 4 * ONE_TOKEN
        assert exc_info.value.required == 10 * ONE_TOKEN
        assert exc_info.value.shortfall == 6 * ONE_TOKEN
        assert funded_gateway.submitted == []

    @pytest.mark.asyncio
    async def test_allowance_strategy_reports_insufficient_allowance(self, make_orchestrator, funded_gateway, store):
        funded_gateway.set_allowance(MOCK_USER_ADDRESS, MOCK_TREASURY_PULLER, 3 * ONE_TOKEN)
        await store_authorization(store)

        with pytest.raises(InsufficientAllowance) as exc_info:
            await make_orchestrator(AllowanceBasedStrategy(MOCK_TREASURY_PULLER)).transfer(MOCK_USER_ADDRESS, "10")

        assert exc_info.value.allowance == 3 * ONE_TOKEN
        assert exc_info.value.spender == MOCK_TREASURY_PULLER
        assert funded_gateway.submitted == []

    @pytest.mark.asyncio
    async def test_permit_strategy_without_auto_approve(self, make_orchestrator, gateway, store):
        gateway.set_balance(MOCK_USER_ADDRESS, 100 * ONE_TOKEN)
        await store_authorization(store)

        strategy = PermitBasedStrategy(MOCK_TREASURY_PULLER, auto_approve=False)
        with pytest.raises(InsufficientAllowance) as exc_info:
            await make_orchestrator(strategy).transfer(MOCK_USER_ADDRESS, "10")

        assert exc_info.value.spender == PERMIT2_ADDRESS
        assert gateway.submitted == []


class TestExecution:
    """Successful pulls and their reported results."""

    @pytest.mark.asyncio
    async def test_approval_then_pull(self, make_orchestrator, gateway, store):
        """Balance 100, allowance 0: router approval is submitted, then 10 is pulled."""
        gateway.set_balance(MOCK_USER_ADDRESS, 100 * ONE_TOKEN)
        await store_authorization(store)

        result = await make_orchestrator().transfer(MOCK_USER_ADDRESS, "10")

        assert gateway.submitted_functions() == ["approve", "pullTokensWithPermit2"]
        assert result.approval.required is True
        assert result.approval.spender == PERMIT2_ADDRESS
        assert result.user.before == 100 * ONE_TOKEN
        assert result.user.after == 90 * ONE_TOKEN
        assert result.amount_transferred == 10 * ONE_TOKEN
        assert result.treasury.delta == 10 * ONE_TOKEN
        assert result.to_address == MOCK_TREASURY_ADDRESS

        response = result.to_response()
        assert response["success"] is True
        assert response["balances"]["user"]["after"] == "90"
        assert response["balances"]["user"]["transferred"] == "10"
        assert response["balances"]["treasury"]["received"] == "10"
        assert response["transfer"]["amount"] == "10"
        assert response["transfer"]["symbol"] == "USDT"
        assert response["approval"]["required"] is True

    @pytest.mark.asyncio
    async def test_existing_allowance_skips_approval(self, make_orchestrator, funded_gateway, store):
        await store_authorization(store)

        result = await make_orchestrator().transfer(MOCK_USER_ADDRESS, "10")

        assert funded_gateway.submitted_functions() == ["pullTokensWithPermit2"]
        assert result.to_response()["approval"] == {"required": False, "message": "Already approved"}

    @pytest.mark.asyncio
    async def test_allowance_strategy_pulls_directly(self, make_orchestrator, funded_gateway, store):
        funded_gateway.set_allowance(MOCK_USER_ADDRESS, MOCK_TREASURY_PULLER, 50 * ONE_TOKEN)
        await store_authorization(store)

        result = await make_orchestrator(AllowanceBasedStrategy(MOCK_TREASURY_PULLER)).transfer(
            MOCK_USER_ADDRESS, "10",
        )
        assert funded_gateway.submitted_functions() == ["pullTokensDirect"]
        assert result.user.after == 90 * ONE_TOKEN

    @pytest.mark.asyncio
    async def test_authorization_burned_after_success(self, make_orchestrator, funded_gateway, store):
        await store_authorization(store)
        orchestrator = make_orchestrator()

        await orchestrator.transfer(MOCK_USER_ADDRESS, "10")
        assert await store.get(MOCK_USER_ADDRESS) is None

        with pytest.raises(NoAuthorization):
            await orchestrator.transfer(MOCK_USER_ADDRESS, "10")
        assert funded_gateway.submitted_functions() == ["pullTokensWithPermit2"]

    @pytest.mark.asyncio
    async def test_authorization_kept_when_not_consuming(self, make_orchestrator, funded_gateway, store):
        authorization = await store_authorization(store)
        await make_orchestrator(consume_on_success=False).transfer(MOCK_USER_ADDRESS, "10")
        assert await store.get(MOCK_USER_ADDRESS) is authorization

    @pytest.mark.asyncio
    async def test_probe_failures_do_not_block_transfer(self, make_orchestrator, funded_gateway, store):
        funded_gateway.read_reverts = {"checkAuthorization", "DOMAIN_SEPARATOR"}
        await store_authorization(store)

        result = await make_orchestrator().transfer(MOCK_USER_ADDRESS, "10")
        assert result.user.after == 90 * ONE_TOKEN

    @pytest.mark.asyncio
    async def test_zero_amount_authorization(self, make_orchestrator, funded_gateway, store):
        await store_authorization(store, amount=0)
        result = await make_orchestrator().transfer(MOCK_USER_ADDRESS, "0")
        assert result.amount == 0
        assert result.to_response()["balances"]["user"]["transferred"] == "0"


class TestFailures:
    """Upstream, approval and pull failures."""

    @pytest.mark.asyncio
    async def test_transient_read_failure_is_retried(self, make_orchestrator, funded_gateway, store):
        funded_gateway.upstream_failures = 1
        await store_authorization(store)

        result = await make_orchestrator().transfer(MOCK_USER_ADDRESS, "10")
        assert result.user.after == 90 * ONE_TOKEN

    @pytest.mark.asyncio
    async def test_persistent_read_failure_is_upstream_unavailable(self, make_orchestrator, funded_gateway, store):
        funded_gateway.upstream_failures = 1000
        await store_authorization(store)

        with pytest.raises(UpstreamUnavailable) as exc_info:
            await make_orchestrator(max_read_attempts=3).transfer(MOCK_USER_ADDRESS, "10")

        assert exc_info.value.attempts == 3
        assert funded_gateway.submitted == []
        assert await store.get(MOCK_USER_ADDRESS) is not None

    @pytest.mark.asyncio
    async def test_approval_failure_aborts_transfer(self, make_orchestrator, gateway, store):
        gateway.set_balance(MOCK_USER_ADDRESS, 100 * ONE_TOKEN)
        gateway.revert_functions = {"approve"}
        await store_authorization(store)

        with pytest.raises(ApprovalFailed) as exc_info:
            await make_orchestrator().transfer(MOCK_USER_ADDRESS, "10")

        assert exc_info.value.tx_hash is not None
        assert gateway.submitted_functions() == ["approve"]
        assert gateway.balance_of(MOCK_USER_ADDRESS) == 100 * ONE_TOKEN

    @pytest.mark.asyncio
    async def test_reverted_pull(self, make_orchestrator, funded_gateway, store):
        funded_gateway.revert_functions = {"pullTokensWithPermit2"}
        authorization = await store_authorization(store)

        with pytest.raises(TransferReverted) as exc_info:
            await make_orchestrator().transfer(MOCK_USER_ADDRESS, "10")

        error = exc_info.value
        assert error.possible_causes == list(TRANSFER_REVERT_CAUSES)
        assert error.context["nonce"] == authorization.signed_value.nonce
        assert error.context["deadline"] == authorization.signed_value.deadline
        assert error.tx_hash is not None
        assert await store.get(MOCK_USER_ADDRESS) is authorization

    @pytest.mark.asyncio
    async def test_inclusion_timeout_is_not_a_revert(self, make_orchestrator, funded_gateway, store):
        funded_gateway.timeout_functions = {"pullTokensWithPermit2"}
        await store_authorization(store)

        with pytest.raises(InclusionTimeout) as exc_info:
            await make_orchestrator().transfer(MOCK_USER_ADDRESS, "10")
        assert not isinstance(exc_info.value, TransferReverted)


class TestAfterConfirmation:
    """Read failures after a confirmed pull never turn it into a failure."""

    @pytest.mark.asyncio
    async def test_transient_after_read_failure_is_retried(self, store, clock):
        gateway, orchestrator = flaky_after_pull(store, clock, failures_after_pull=1)
        await store_authorization(store)

        result = await orchestrator.transfer(MOCK_USER_ADDRESS, "10")

        assert result.balances_confirmed is True
        assert result.user.after == 90 * ONE_TOKEN
        assert result.treasury.after == 10 * ONE_TOKEN

    @pytest.mark.asyncio
    async def test_unreadable_after_balances_still_report_success(self, store, clock):
        gateway, orchestrator = flaky_after_pull(store, clock, failures_after_pull=1000)
        await store_authorization(store)
        succeeded, failed = [], []

        async def on_success(event):
            succeeded.append(event)

        async def on_failure(event):
            failed.append(event)

        orchestrator.event_bus.hook(TransferSucceededEvent, on_success)
        orchestrator.event_bus.hook(TransferFailedEvent, on_failure)

        result = await orchestrator.transfer(MOCK_USER_ADDRESS, "10")

        assert gateway.submitted_functions() == ["pullTokensWithPermit2"]
        assert gateway.balance_of(MOCK_USER_ADDRESS) == 90 * ONE_TOKEN
        assert result.transaction_hash == "0x" + format(1, "064x")
        assert result.amount == 10 * ONE_TOKEN
        assert result.user.before == 100 * ONE_TOKEN
        assert result.user.after is None
        assert result.treasury.after is None
        assert result.balances_confirmed is False
        assert await store.get(MOCK_USER_ADDRESS) is None
        assert len(succeeded) == 1
        assert failed == []

        response = result.to_response()
        assert response["success"] is True
        assert response["balancesConfirmed"] is False
        assert response["transfer"]["txHash"] == result.transaction_hash
        assert response["balances"]["user"] == {"before": "100", "after": None, "transferred": None}
        assert response["balances"]["treasury"]["received"] is None


class TestEvents:
    """Lifecycle events emitted by the orchestrator."""

    @pytest.mark.asyncio
    async def test_success_and_approval_events(self, make_orchestrator, gateway, store):
        gateway.set_balance(MOCK_USER_ADDRESS, 100 * ONE_TOKEN)
        await store_authorization(store)
        orchestrator = make_orchestrator()
        seen = []

        async def record(event):
            seen.append(event)

        orchestrator.event_bus.hook(ApprovalSubmittedEvent, record)
        orchestrator.event_bus.hook(TransferSucceededEvent, record)
        await orchestrator.transfer(MOCK_USER_ADDRESS, "10")

        assert [type(event) for event in seen] == [ApprovalSubmittedEvent, TransferSucceededEvent]
        assert seen[0].spender == PERMIT2_ADDRESS
        assert seen[1].result.amount == 10 * ONE_TOKEN

    @pytest.mark.asyncio
    async def test_failure_event_carries_error_code(self, make_orchestrator, store):
        orchestrator = make_orchestrator()
        seen = []

        async def record(event):
            seen.append(event)

        orchestrator.event_bus.hook(TransferFailedEvent, record)
        with pytest.raises(NoAuthorization):
            await orchestrator.transfer(MOCK_USER_ADDRESS, "10")

        assert seen[0].error_code == "no_authorization"
        assert seen[0].requested_amount == "10"


class TestConcurrency:
    """Same-user transfers are serialized."""

    @pytest.mark.asyncio
    async def test_concurrent_transfers_pull_once(self, make_orchestrator, funded_gateway, store):
        await store_authorization(store)
        orchestrator = make_orchestrator()

        results = await asyncio.gather(
            orchestrator.transfer(MOCK_USER_ADDRESS, "10"),
            orchestrator.transfer(MOCK_USER_ADDRESS, "10"),
            return_exceptions=True,
        )

        successes = [r for r in results if not isinstance(r, Exception)]
        failures = [r for r in results if isinstance(r, Exception)]
        assert len(successes) == 1
        assert len(failures) == 1 and isinstance(failures[0], NoAuthorization)
        assert funded_gateway.submitted_functions() == ["pullTokensWithPermit2"]
        assert funded_gateway.balance_of(MOCK_USER_ADDRESS) == 90 * ONE_TOKEN
        assert len(orchestrator._user_locks) == 0

    @pytest.mark.asyncio
    async def test_different_users_do_not_block_each_other(self, make_orchestrator, funded_gateway, store):
        mine = await store_authorization(store)
        theirs = await store_authorization(store, private_key=MOCK_OTHER_PRIVATE_KEY)
        funded_gateway.set_balance(theirs.user_address, 20 * ONE_TOKEN)
        funded_gateway.set_allowance(theirs.user_address, PERMIT2_ADDRESS, MAX_UINT256)
        orchestrator = make_orchestrator()

        first, second = await asyncio.gather(
            orchestrator.transfer(mine.user_address, "10"),
            orchestrator.transfer(theirs.user_address, "10"),
        )
        assert first.user.after == 90 * ONE_TOKEN
        assert second.user.after == 10 * ONE_TOKEN
        assert funded_gateway.balance_of(MOCK_TREASURY_ADDRESS) == 20 * ONE_TOKEN
        assert funded_gateway.wallet_address == MOCK_SERVER_ADDRESS
