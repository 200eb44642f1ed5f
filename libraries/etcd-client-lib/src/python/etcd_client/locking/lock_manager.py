"""Distributed mutual exclusion built from in-order keys.

Each contender creates an in-order child of ``<lock_prefix>/<name>``;
the child with the lowest creation index holds the lock. A blocked
contender watches only the entry immediately before its own, so a
release wakes exactly one waiter. Waiting contenders refresh their own
key every half TTL, so a wait may outlast the TTL it was started with.

Candidate keys carry a TTL so a crashed holder cannot keep the lock
forever. The flip side is a known weak point of TTL-based locks: if a
holder stalls past its TTL the key expires and another contender gets
the lock while the first one still believes it holds it. This is only
detected on the holder's next :meth:`LockManager.renew` (which raises
:class:`LockLostError`) or :meth:`LockManager.release` (which returns
``False``). Renew well within the TTL and keep critical sections short.
"""

from __future__ import annotations

import asyncio
import logging
import socket
import uuid

from ..exceptions import (
    CompareFailedError,
    IndexTooOldError,
    KeyNotFoundError,
    LockAcquireTimeoutError,
    LockHeldError,
    LockLostError,
    PreconditionError,
)
from ..keyspace.kv_api import KeyValueApi, validate_ttl
from ..keyspace.watcher import Watcher
from ..models import LockToken, Node
from .lock_handle import LockHandle

logger = logging.getLogger(__name__)


class LockManager:
    """Acquires, renews and releases named locks.

    Parameters:
        kv: Key-space API.
        prefix: Directory under which lock directories are created.
        watch_timeout: Long-poll timeout while waiting for a predecessor.
    """

    def __init__(self, kv: KeyValueApi, prefix: str = "/_locks", watch_timeout: float | None = None) -> None:
        self._kv = kv
        self._prefix = prefix.rstrip("/")
        self._watch_timeout = watch_timeout

    # ── Public API ────────────────────────────────────────────────

    async def acquire(
        self,
        name: str,
        ttl: int = 60,
        blocking: bool = True,
        value: str | None = None,
        timeout: float | None = None,
    ) -> LockHandle:
        """Acquire the lock *name*.

        Args:
            name: The lock name.
            ttl: Seconds the lock key lives without a renew.
            blocking: Wait for the lock instead of failing when it is held.
            value: Value identifying this holder; a unique one is generated
                when omitted.
            timeout: Max seconds to wait when *blocking*. ``None`` waits
                indefinitely.

        Returns:
            A :class:`LockHandle` for the held lock.

        Raises:
            LockHeldError: If not *blocking* and another holder owns the lock.
            LockAcquireTimeoutError: If the lock was not acquired in time.
            LockLostError: If the candidate key expired while waiting.
        """
        validate_ttl(ttl)
        lock_dir = self._lock_dir(name)
        holder_value = value or f"{socket.gethostname()}:{uuid.uuid4().hex[:8]}"

        created = await self._kv.create_in_order(lock_dir, holder_value, ttl=ttl)
        candidate = created.node
        logger.debug("Lock '%s' candidate %s created at index %s", name, candidate.key, candidate.created_index)

        try:
            if timeout is None:
                token = await self._wait_for_turn(name, lock_dir, candidate, ttl, blocking)
            else:
                async with asyncio.timeout(timeout):
                    token = await self._wait_for_turn(name, lock_dir, candidate, ttl, blocking)
        except TimeoutError:
            await self._discard(candidate)
            raise LockAcquireTimeoutError(name, timeout or 0.0) from None
        except BaseException:
            await self._discard(candidate)
            raise

        logger.info("Lock '%s' acquired (%s)", name, token.token)
        return LockHandle(token=token, lock_manager=self)

    async def release(self, token: LockToken) -> bool:
        """Release a held lock.

        The lock counts as released either way; ``False`` means the key
        had already expired or been replaced, i.e. the lock was lost at
        some point before this call.

        Returns:
            True if this holder's key was deleted.
        """
        try:
            await self._kv.compare_and_delete(token.key, prev_index=token.modified_index)
        except (KeyNotFoundError, CompareFailedError) as exc:
            logger.warning("Lock '%s' was lost before release (%s): %s", token.name, token.token, exc)
            return False
        logger.info("Lock '%s' released (%s)", token.name, token.token)
        return True

    async def renew(self, token: LockToken, ttl: int) -> LockToken:
        """Extend the TTL of a held lock.

        Returns:
            A new token to use for the next renew or release.

        Raises:
            LockLostError: If the key expired or was replaced.
        """
        validate_ttl(ttl)
        try:
            info = await self._kv.compare_and_swap(
                token.key,
                token.value,
                ttl=ttl,
                prev_index=token.modified_index,
            )
        except (KeyNotFoundError, CompareFailedError) as exc:
            logger.warning("Lock '%s' lost on renew (%s): %s", token.name, token.token, exc)
            raise LockLostError(token.name, token.key, reason=str(exc)) from exc
        logger.debug("Lock '%s' renewed for %ds", token.name, ttl)
        return token.model_copy(update={"modified_index": info.node.modified_index})

    async def holder(self, name: str) -> str | None:
        """Return the value of the current holder of *name*, or None."""
        contenders = await self._contenders(self._lock_dir(name))
        return contenders[0].value if contenders else None

    async def is_locked(self, name: str) -> bool:
        return bool(await self._contenders(self._lock_dir(name)))

    # ── Private ───────────────────────────────────────────────────

    def _lock_dir(self, name: str) -> str:
        name = name.strip("/")
        if not name:
            raise PreconditionError("Lock name must not be empty.")
        return f"{self._prefix}/{name}"

    async def _contenders(self, lock_dir: str) -> list[Node]:
        try:
            listing = await self._kv.get(lock_dir, sorted=True)
        except KeyNotFoundError:
            return []
        return self._ordered(listing.node)

    @staticmethod
    def _ordered(directory: Node) -> list[Node]:
        return sorted(
            (child for child in directory.children if not child.dir),
            key=lambda child: child.created_index or 0,
        )

    async def _wait_for_turn(
        self,
        name: str,
        lock_dir: str,
        candidate: Node,
        ttl: int,
        blocking: bool,
    ) -> LockToken:
        loop = asyncio.get_running_loop()
        refresh_every = ttl / 2
        refreshed_at = loop.time()
        while True:
            listing = await self._kv.get(lock_dir, sorted=True)
            contenders = self._ordered(listing.node)
            keys = [contender.key for contender in contenders]

            if candidate.key not in keys:
                raise LockLostError(name, candidate.key or "", reason="candidate expired while waiting")

            position = keys.index(candidate.key)
            own = contenders[position]
            if position == 0:
                return LockToken(
                    name=name,
                    key=own.key or "",
                    value=own.value or "",
                    created_index=own.created_index or 0,
                    modified_index=own.modified_index or 0,
                )

            if not blocking:
                raise LockHeldError(name, holder=contenders[0].value)

            # Keep the candidate alive for as long as the wait lasts.
            remaining = refresh_every - (loop.time() - refreshed_at)
            if remaining <= 0:
                await self._refresh_candidate(name, own, ttl)
                refreshed_at = loop.time()
                continue

            predecessor = contenders[position - 1]
            logger.debug("Lock '%s' waiting for %s to go away", name, predecessor.key)
            await self._wait_for_removal(predecessor, listing.index, remaining)

    async def _refresh_candidate(self, name: str, own: Node, ttl: int) -> None:
        try:
            await self._kv.refresh(own.key or "", ttl, prev_index=own.modified_index)
        except (KeyNotFoundError, CompareFailedError) as exc:
            raise LockLostError(name, own.key or "", reason=f"candidate refresh failed: {exc}") from exc
        logger.debug("Lock '%s' candidate %s refreshed for %ds", name, own.key, ttl)

    async def _wait_for_removal(self, predecessor: Node, seen_index: int | None, timeout: float) -> None:
        start = (seen_index or predecessor.modified_index or 0) + 1
        watcher = Watcher(self._kv, predecessor.key or "", index=start, timeout=self._watch_timeout)
        try:
            async with asyncio.timeout(timeout):
                async for event in watcher:
                    if event.action.removes_node:
                        return
        except TimeoutError:
            return
        except IndexTooOldError:
            # History moved past our index; the next listing tells the truth.
            return
        finally:
            await watcher.aclose()

    async def _discard(self, candidate: Node) -> None:
        try:
            await self._kv.delete(candidate.key or "")
        except KeyNotFoundError:
            pass
        except Exception:
            logger.exception("Failed to discard lock candidate %s", candidate.key)
