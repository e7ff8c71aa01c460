"""
Transfer result models.

``TransferResult`` is produced only after an on-chain receipt confirms the
delegated pull. It keeps raw smallest-unit integers; ``to_response`` renders
the display-unit wire layout returned by the HTTP API.
"""

from typing import Any, Dict, Optional

from pydantic import Field

from .bases import CanonicalModel


def _display(value: Optional[int], decimals: int) -> Optional[str]:
    if value is None:
        return None
    # Deferred: the adapters package imports this one at load time
    from ..adapters.evm.constants import value_to_amount

    return value_to_amount(value=value, decimals=decimals)


class ApprovalRecord(CanonicalModel):
    """Whether an allowance-router approval had to be submitted before the pull."""
    required: bool
    tx_hash: Optional[str] = Field(default=None, alias="txHash")
    spender: Optional[str] = None

    def to_response(self) -> Dict[str, Any]:
        if self.required:
            return {"txHash": self.tx_hash, "required": True, "spender": self.spender}
        return {"required": False, "message": "Already approved"}


class BalanceChange(CanonicalModel):
    """
    Token balance of one party before and after the pull (smallest unit).

    ``after`` is None when the post-pull read failed. The pull itself is
    confirmed by its receipt either way.
    """
    before: int
    after: Optional[int] = None

    @property
    def delta(self) -> Optional[int]:
        if self.after is None:
            return None
        return self.after - self.before


class TransferResult(CanonicalModel):
    """
    Outcome of a confirmed delegated pull.

    Attributes:
        transaction_hash: Hash of the pull transaction
        block_number: Inclusion block
        gas_used: Gas consumed by the pull
        amount: Amount pulled (smallest unit)
        decimals: Token decimals used for display
        symbol: Token symbol
        from_address: User the tokens were pulled from
        to_address: Treasury receiving the tokens
        approval: Router approval performed before the pull, if any
        user: User balance before/after
        treasury: Treasury balance before/after
    """
    transaction_hash: str = Field(..., alias="transactionHash")
    block_number: int = Field(..., alias="blockNumber")
    gas_used: int = Field(..., alias="gasUsed")
    amount: int
    decimals: int
    symbol: str
    from_address: str = Field(..., alias="from")
    to_address: str = Field(..., alias="to")
    approval: ApprovalRecord
    user: BalanceChange
    treasury: BalanceChange

    @property
    def amount_transferred(self) -> Optional[int]:
        """Amount that actually left the user's balance, None while unknown."""
        delta = self.user.delta
        return None if delta is None else -delta

    @property
    def balances_confirmed(self) -> bool:
        return self.user.after is not None and self.treasury.after is not None

    def to_response(self) -> Dict[str, Any]:
        """Render the API layout with display-unit balance strings."""
        d = self.decimals
        return {
            "success": True,
            "transfer": {
                "txHash": self.transaction_hash,
                "blockNumber": self.block_number,
                "gasUsed": str(self.gas_used),
                "amount": _display(self.amount, d),
                "symbol": self.symbol,
                "from": self.from_address,
                "to": self.to_address,
            },
            "approval": self.approval.to_response(),
            "balancesConfirmed": self.balances_confirmed,
            "balances": {
                "user": {
                    "before": _display(self.user.before, d),
                    "after": _display(self.user.after, d),
                    "transferred": _display(self.amount_transferred, d),
                },
                "treasury": {
                    "before": _display(self.treasury.before, d),
                    "after": _display(self.treasury.after, d),
                    "received": _display(self.treasury.delta, d),
                },
            },
        }
