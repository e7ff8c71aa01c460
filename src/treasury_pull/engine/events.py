"""
Lifecycle events with typed payloads.

The orchestrator and the server emit events; integrators register async hooks
for side effects such as notifications or analytics. Hooks cannot change the
outcome of the operation that emitted the event.
"""

import asyncio
import inspect
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List

from pydantic import BaseModel, ConfigDict, Field

from ..schemas.transfers import TransferResult


logger = logging.getLogger(__name__)


# ==================== Base Event ====================

class BaseEvent(BaseModel):
    """Base class for all events in the system."""
    occurred_at: float = Field(default_factory=time.time)

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)


# ==================== Events ====================

class AuthorizationStoredEvent(BaseEvent):
    """A verified authorization was stored for a user."""
    user_address: str
    amount: int
    nonce: int
    deadline: int

    def __repr__(self) -> str:
        return f"AuthorizationStoredEvent(user={self.user_address}, amount={self.amount}, deadline={self.deadline})"


class ApprovalSubmittedEvent(BaseEvent):
    """The treasury wallet approved the allowance router for a token."""
    token: str
    spender: str
    tx_hash: str


class TransferSucceededEvent(BaseEvent):
    """A delegated pull was confirmed on-chain."""
    user_address: str
    result: TransferResult

    def __repr__(self) -> str:
        return f"TransferSucceededEvent(user={self.user_address}, tx={self.result.transaction_hash})"


class TransferFailedEvent(BaseEvent):
    """A transfer request ended with a classified error."""
    user_address: str
    requested_amount: str
    error_code: str
    details: Dict[str, Any] = Field(default_factory=dict)

    def __repr__(self) -> str:
        return f"TransferFailedEvent(user={self.user_address}, error={self.error_code})"


# ==================== Event Bus ====================

EventHookFunc = Callable[[BaseEvent], Awaitable[None]]


class EventBus:
    """Dispatches events to registered hooks."""

    def __init__(self) -> None:
        self._hooks: Dict[type, List[EventHookFunc]] = {}

    def hook(self, event_class: type, hook_func: EventHookFunc) -> None:
        """
        Register a hook for the given event class.

        Args:
            event_class: The event class to hook into.
            hook_func: Async function(event) -> None.

        Raises:
            TypeError: If hook_func is not a coroutine function.
        """
        if not inspect.iscoroutinefunction(hook_func):
            raise TypeError(f"Hook must be a coroutine function, got {type(hook_func).__name__}")

        self._hooks.setdefault(event_class, []).append(hook_func)

    async def emit(self, event: BaseEvent) -> None:
        """
        Run every hook registered for ``type(event)`` concurrently.

        Hook failures are logged and do not propagate.
        """
        hooks = self._hooks.get(type(event), [])
        if not hooks:
            return
        results = await asyncio.gather(*(hook(event) for hook in hooks), return_exceptions=True)
        for hook, result in zip(hooks, results):
            if isinstance(result, Exception):
                logger.error(
                    "Event hook %s failed for %r: %s",
                    getattr(hook, "__name__", hook), event, result,
                )
