"""Lock handle: async context manager around a held lock."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from ..models import LockToken

if TYPE_CHECKING:
    from .lock_manager import LockManager

logger = logging.getLogger(__name__)


class LockHandle:
    """A handle to a held distributed lock.

    Supports ``async with`` for automatic release::

        async with await client.acquire_lock("my-resource", ttl=30):
            ...  # critical section
        # lock released

    Parameters:
        token: Proof of ownership returned by the acquire.
        lock_manager: The :class:`LockManager` that owns this lock.
    """

    def __init__(self, token: LockToken, lock_manager: LockManager) -> None:
        self._token = token
        self._manager = lock_manager
        self._released = False

    @property
    def name(self) -> str:
        return self._token.name

    @property
    def key(self) -> str:
        return self._token.key

    @property
    def token(self) -> LockToken:
        return self._token

    @property
    def is_released(self) -> bool:
        return self._released

    async def renew(self, ttl: int) -> LockToken:
        """Extend the lock TTL.

        Raises:
            LockLostError: If the key expired or was replaced.
        """
        self._token = await self._manager.renew(self._token, ttl)
        return self._token

    async def release(self) -> bool:
        """Release this lock.

        Returns:
            True if the lock was still held and is now released.
        """
        if self._released:
            return True
        try:
            result = await self._manager.release(self._token)
        except Exception:
            logger.exception("Failed to release lock '%s'", self._token.name)
            return False
        self._released = True
        return result

    async def __aenter__(self) -> LockHandle:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        await self.release()

    def __repr__(self) -> str:
        state = "released" if self._released else "held"
        return f"LockHandle(name={self._token.name!r}, token={self._token.token!r}, {state})"
