"""Watcher: long-poll ``wait`` requests turned into a stream of events.

A :class:`Watcher` keeps a cursor (the next index to wait from) and
issues one long-poll per step::

    IDLE -> WAITING -> DELIVERING -> IDLE -> ...
                    -> FAILED       (error, raised to the consumer)
                    -> CANCELLED    (cancel() or consumer cancelled)

Long-poll timeouts are expected and re-polled with the same cursor.
A watcher that failed or was cancelled never restarts; create a new one.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from typing import Any

from ..exceptions import (
    DecodingError,
    IndexTooOldError,
    KeyNotFoundError,
    PreconditionError,
    TransportTimeoutError,
)
from ..models import KeySpaceInfo
from .kv_api import KeyValueApi, validate_key

logger = logging.getLogger(__name__)


class WatchState(str, enum.Enum):
    """Lifecycle of a :class:`Watcher`."""

    IDLE = "idle"
    WAITING = "waiting"
    DELIVERING = "delivering"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (WatchState.FAILED, WatchState.CANCELLED)


class Watcher:
    """Async iterator over the changes to a key or subtree.

    Usage::

        async with client.watch("/app/config", recursive=True) as watcher:
            async for event in watcher:
                print(event.action, event.node.key, event.node.value)

    Parameters:
        kv: Key-space API used for the long-poll requests.
        key: Absolute key to watch.
        index: First index to report. ``None`` starts from the current
            cluster index, so only changes made after the watch starts
            are reported. A past index replays retained history.
        recursive: Also report changes to descendants.
        timeout: Long-poll read timeout in seconds. ``None`` uses the
            client's configured watch timeout.
    """

    def __init__(
        self,
        kv: KeyValueApi,
        key: str,
        index: int | None = None,
        recursive: bool = False,
        timeout: float | None = None,
    ) -> None:
        validate_key(key)
        if index is not None and index <= 0:
            raise PreconditionError(f"Watch index must be positive, got {index}")
        self._kv = kv
        self._key = key
        self._recursive = recursive
        self._timeout = timeout
        self._cursor: int | None = index
        self._started = index is not None
        self._last_delivered = 0
        self._state = WatchState.IDLE
        self._error: BaseException | None = None
        self._task: asyncio.Future[Any] | None = None
        self._cancel_requested = False

    # ── Properties ────────────────────────────────────────────────

    @property
    def key(self) -> str:
        return self._key

    @property
    def state(self) -> WatchState:
        return self._state

    @property
    def cursor(self) -> int | None:
        """The index the next long-poll waits from (``None`` until resolved)."""
        return self._cursor

    @property
    def error(self) -> BaseException | None:
        """The error that moved the watcher to ``FAILED``."""
        return self._error

    # ── Control ───────────────────────────────────────────────────

    def cancel(self) -> None:
        """Stop the watcher, abandoning any in-flight long-poll.

        Safe to call from any task and more than once. The consumer's
        pending ``__anext__`` ends with :class:`StopAsyncIteration`.
        """
        if self._state.is_terminal:
            return
        self._cancel_requested = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
        else:
            self._state = WatchState.CANCELLED
        logger.debug("Watch on %s cancelled at cursor %s", self._key, self._cursor)

    # ── Iteration ─────────────────────────────────────────────────

    def __aiter__(self) -> Watcher:
        return self

    async def __anext__(self) -> KeySpaceInfo:
        while True:
            if self._error is not None:
                raise self._error
            if self._state is WatchState.CANCELLED or self._cancel_requested:
                self._state = WatchState.CANCELLED
                raise StopAsyncIteration

            self._state = WatchState.WAITING
            try:
                if not self._started:
                    self._cursor = await self._run(self._resolve_start_index())
                    self._started = True
                event = await self._run(
                    self._kv.watch_once(
                        self._key,
                        index=self._cursor,
                        recursive=self._recursive,
                        timeout=self._timeout,
                    )
                )
            except TransportTimeoutError:
                logger.debug("Watch on %s timed out, re-polling from %s", self._key, self._cursor)
                self._state = WatchState.IDLE
                continue
            except asyncio.CancelledError:
                self._state = WatchState.CANCELLED
                if self._cancel_requested:
                    raise StopAsyncIteration
                raise
            except IndexTooOldError as exc:
                logger.warning(
                    "Watch on %s lost history at cursor %s (%s); restart from a fresh index",
                    self._key,
                    self._cursor,
                    exc,
                )
                self._fail(exc)
                raise
            except Exception as exc:
                logger.error("Watch on %s failed at cursor %s: %s", self._key, self._cursor, exc)
                self._fail(exc)
                raise

            modified_index = event.node.modified_index
            if modified_index is None:
                body = event.model_dump_json(by_alias=True).encode()
                error = DecodingError(200, body, reason="event has no modifiedIndex")
                logger.error("Watch on %s failed at cursor %s: %s", self._key, self._cursor, error)
                self._fail(error)
                raise error
            if modified_index <= self._last_delivered or (self._cursor is not None and modified_index < self._cursor):
                logger.debug("Dropping stale event at %d for %s", modified_index, self._key)
                self._state = WatchState.IDLE
                continue

            self._state = WatchState.DELIVERING
            self._last_delivered = modified_index
            self._cursor = modified_index + 1
            return event

    # ── Context manager ───────────────────────────────────────────

    async def __aenter__(self) -> Watcher:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        await self.aclose()

    async def aclose(self) -> None:
        """Cancel the watcher; a failed watcher keeps its error."""
        self.cancel()
        if self._state is not WatchState.FAILED:
            self._state = WatchState.CANCELLED

    def __repr__(self) -> str:
        return f"Watcher(key={self._key!r}, cursor={self._cursor}, state={self._state.value})"

    # ── Private ───────────────────────────────────────────────────

    async def _run(self, coro: Any) -> Any:
        self._task = asyncio.ensure_future(coro)
        try:
            return await self._task
        finally:
            self._task = None

    async def _resolve_start_index(self) -> int | None:
        try:
            info = await self._kv.get(self._key)
            current = info.index
        except KeyNotFoundError as exc:
            current = exc.index
        if current is None:
            logger.debug("No cluster index reported for %s, waiting from now", self._key)
            return None
        return current + 1

    def _fail(self, error: BaseException) -> None:
        self._error = error
        self._state = WatchState.FAILED
