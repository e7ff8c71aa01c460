"""
Authorization storage.

``AuthorizationStore`` is the seam the orchestrator depends on. The bundled
``InMemoryAuthorizationStore`` is process-local and cleared on restart;
callers re-request a signature after one.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional

from ..adapters.evm.schemas import Authorization


logger = logging.getLogger(__name__)


def _key(user_address: str) -> str:
    return user_address.lower()


class AuthorizationStore(ABC):
    """
    Per-user holder of the most recent verified authorization.

    Writes are atomic per key and reads observe the latest completed write.
    There is no ordering guarantee across keys.
    """

    @abstractmethod
    async def put(self, user_address: str, authorization: Authorization) -> None:
        """Store ``authorization``, replacing any earlier one for the user."""

    @abstractmethod
    async def get(self, user_address: str) -> Optional[Authorization]:
        """Return the current authorization for the user, if any."""

    @abstractmethod
    async def remove(self, user_address: str) -> Optional[Authorization]:
        """Delete and return the user's authorization."""

    @abstractmethod
    async def discard(self, user_address: str, authorization: Authorization) -> bool:
        """
        Delete the user's authorization only if it is still ``authorization``.

        Used to burn a consumed authorization without clobbering a newer one
        stored meanwhile. Returns True when a record was deleted.
        """


class InMemoryAuthorizationStore(AuthorizationStore):
    """
    Dict-backed store guarded by a lock.

    Args:
        grace_seconds: How long a record stays after its signed deadline before
            ``evict_expired`` drops it. Expired records stay visible meanwhile so
            transfers can report how long ago they expired.
        retention_seconds: Optional cap on record age measured from ``received_at``.
        clock: Time source (unix seconds)
    """

    def __init__(
        self,
        grace_seconds: float = 3600,
        retention_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._records: Dict[str, Authorization] = {}
        self._lock = threading.Lock()
        self._grace_seconds = grace_seconds
        self._retention_seconds = retention_seconds
        self._clock = clock

    async def put(self, user_address: str, authorization: Authorization) -> None:
        with self._lock:
            replaced = self._records.get(_key(user_address))
            self._records[_key(user_address)] = authorization
        if replaced is not None:
            logger.info("Replaced stored authorization for %s", user_address)

    async def get(self, user_address: str) -> Optional[Authorization]:
        now = self._clock()
        with self._lock:
            record = self._records.get(_key(user_address))
            if record is not None and self._is_stale(record, now):
                del self._records[_key(user_address)]
                record = None
        return record

    async def remove(self, user_address: str) -> Optional[Authorization]:
        with self._lock:
            return self._records.pop(_key(user_address), None)

    async def discard(self, user_address: str, authorization: Authorization) -> bool:
        with self._lock:
            if self._records.get(_key(user_address)) is authorization:
                del self._records[_key(user_address)]
                return True
        return False

    def evict_expired(self, now: Optional[float] = None) -> int:
        """
        Drop records past their deadline plus the grace period, or past retention.

        Returns:
            Number of records evicted
        """
        now = self._clock() if now is None else now
        with self._lock:
            stale = [key for key, record in self._records.items() if self._is_stale(record, now)]
            for key in stale:
                del self._records[key]
        if stale:
            logger.info("Evicted %d expired authorization(s)", len(stale))
        return len(stale)

    def _is_stale(self, record: Authorization, now: float) -> bool:
        if now > record.signed_value.deadline + self._grace_seconds:
            return True
        if self._retention_seconds is not None and now - record.received_at > self._retention_seconds:
            return True
        return False

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
