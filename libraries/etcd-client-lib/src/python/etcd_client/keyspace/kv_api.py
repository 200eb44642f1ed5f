"""Key-space operations on ``/v2/keys``.

Every write is a single request; compare-and-swap loops belong to the
callers (see :mod:`etcd_client.locking` and :mod:`etcd_client.election`).
Arguments are validated before anything is sent.
"""

from __future__ import annotations

import logging
from http import HTTPStatus

from ..exceptions import PreconditionError
from ..models import KeySpaceInfo
from ..network.dispatcher import DecodedResponse, RequestDispatcher, RequestSpec

logger = logging.getLogger(__name__)

KEYS_PATH = "/v2/keys"

_WRITE_SUCCESS = frozenset({HTTPStatus.OK, HTTPStatus.CREATED})


def _flag(value: bool) -> str:
    return "true" if value else "false"


def validate_key(key: str) -> None:
    if not key:
        raise PreconditionError("Key must not be empty.")
    if not key.startswith("/"):
        raise PreconditionError(f"Key must start with '/': {key!r}")


def validate_ttl(ttl: int | None) -> None:
    if ttl is not None and ttl <= 0:
        raise PreconditionError(f"TTL must be a positive number of seconds, got {ttl}")


class KeyValueApi:
    """Reads, writes, deletes and single-shot watches of keys and directories.

    Parameters:
        dispatcher: Sends requests with endpoint failover.
        watch_timeout: Default long-poll read timeout for :meth:`watch_once`.
    """

    def __init__(self, dispatcher: RequestDispatcher, watch_timeout: float = 60.0) -> None:
        self._dispatcher = dispatcher
        self._watch_timeout = watch_timeout

    # ── Reads ─────────────────────────────────────────────────────

    async def get(
        self,
        key: str,
        recursive: bool = False,
        sorted: bool = False,
        quorum: bool = False,
    ) -> KeySpaceInfo:
        """Read a key or directory.

        Args:
            key: Absolute key path.
            recursive: Include the whole subtree of a directory.
            sorted: Return children in key order.
            quorum: Serve the read through consensus.

        Raises:
            KeyNotFoundError: If *key* does not exist.
        """
        validate_key(key)
        params: dict[str, str] = {}
        if recursive:
            params["recursive"] = "true"
        if sorted:
            params["sorted"] = "true"
        if quorum:
            params["quorum"] = "true"
        return await self._execute(RequestSpec(method="GET", path=self._path(key), params=params))

    async def watch_once(
        self,
        key: str,
        index: int | None = None,
        recursive: bool = False,
        timeout: float | None = None,
    ) -> KeySpaceInfo:
        """Wait for the next change to *key* and return it.

        Args:
            key: Absolute key path.
            index: Return the first change at or after this index. ``None``
                waits for the next change from now.
            recursive: Also report changes to descendants.
            timeout: Read timeout in seconds; defaults to the configured
                watch timeout.

        Raises:
            TransportTimeoutError: If nothing changed before the timeout.
            IndexTooOldError: If *index* has been compacted away.
        """
        validate_key(key)
        params = {"wait": "true"}
        if recursive:
            params["recursive"] = "true"
        if index is not None:
            params["waitIndex"] = str(index)
        spec = RequestSpec(
            method="GET",
            path=self._path(key),
            params=params,
            timeout=timeout if timeout is not None else self._watch_timeout,
            long_poll=True,
        )
        return await self._execute(spec)

    # ── Writes ────────────────────────────────────────────────────

    async def set(self, key: str, value: str, ttl: int | None = None) -> KeySpaceInfo:
        """Create or overwrite a key.

        Raises:
            NotAFileError: If *key* is an existing directory.
        """
        return await self._put(key, ttl, value=value)

    async def create(self, key: str, value: str, ttl: int | None = None) -> KeySpaceInfo:
        """Create a key that must not exist yet.

        Raises:
            NodeExistError: If *key* already exists.
        """
        return await self._put(key, ttl, value=value, prevExist=_flag(False))

    async def update(self, key: str, value: str, ttl: int | None = None) -> KeySpaceInfo:
        """Overwrite a key that must already exist.

        Raises:
            KeyNotFoundError: If *key* does not exist.
        """
        return await self._put(key, ttl, value=value, prevExist=_flag(True))

    async def create_in_order(self, dir_key: str, value: str, ttl: int | None = None) -> KeySpaceInfo:
        """Create a child of *dir_key* with a unique, increasing name.

        The child is named after the index it was created at, zero
        padded, so listing the directory sorted yields creation order.

        Raises:
            NotADirError: If *dir_key* is an existing key-value pair.
        """
        validate_key(dir_key)
        validate_ttl(ttl)
        form = {"value": value}
        if ttl is not None:
            form["ttl"] = str(ttl)
        spec = RequestSpec(method="POST", path=self._path(dir_key), form=form, success=_WRITE_SUCCESS)
        return await self._execute(spec)

    async def compare_and_swap(
        self,
        key: str,
        value: str,
        ttl: int | None = None,
        prev_value: str | None = None,
        prev_index: int | None = None,
        prev_exist: bool | None = None,
    ) -> KeySpaceInfo:
        """Overwrite *key* only if every given precondition holds.

        Raises:
            PreconditionError: If no precondition is given.
            CompareFailedError: If a precondition does not hold.
            KeyNotFoundError: If *key* does not exist and existence was required.
        """
        if prev_value is None and prev_index is None and prev_exist is None:
            raise PreconditionError("compare_and_swap requires prev_value, prev_index or prev_exist.")
        conditions: dict[str, str] = {}
        if prev_value is not None:
            conditions["prevValue"] = prev_value
        if prev_index is not None:
            conditions["prevIndex"] = str(prev_index)
        if prev_exist is not None:
            conditions["prevExist"] = _flag(prev_exist)
        return await self._put(key, ttl, value=value, **conditions)

    async def refresh(
        self,
        key: str,
        ttl: int,
        prev_value: str | None = None,
        prev_index: int | None = None,
    ) -> KeySpaceInfo:
        """Reset the TTL of an existing key without notifying watchers.

        Raises:
            KeyNotFoundError: If *key* does not exist.
            CompareFailedError: If a given precondition does not hold.
        """
        if ttl is None:
            raise PreconditionError("refresh requires a ttl.")
        conditions: dict[str, str] = {"refresh": _flag(True), "prevExist": _flag(True)}
        if prev_value is not None:
            conditions["prevValue"] = prev_value
        if prev_index is not None:
            conditions["prevIndex"] = str(prev_index)
        return await self._put(key, ttl, **conditions)

    async def set_dir(self, key: str, ttl: int | None = None) -> KeySpaceInfo:
        """Make *key* an empty directory, replacing a key-value pair.

        Raises:
            NotAFileError: If *key* is already a directory.
        """
        return await self._put(key, ttl, dir=_flag(True))

    async def create_dir(self, key: str, ttl: int | None = None) -> KeySpaceInfo:
        """Create an empty directory that must not exist yet.

        Raises:
            NodeExistError: If *key* already exists.
        """
        return await self._put(key, ttl, dir=_flag(True), prevExist=_flag(False))

    async def update_dir(self, key: str, ttl: int | None = None) -> KeySpaceInfo:
        """Update the TTL of an existing directory.

        Raises:
            KeyNotFoundError: If *key* does not exist.
        """
        return await self._put(key, ttl, dir=_flag(True), prevExist=_flag(True))

    # ── Deletes ───────────────────────────────────────────────────

    async def delete(self, key: str, recursive: bool = False) -> KeySpaceInfo:
        """Delete a key, or a directory with everything under it when *recursive*.

        Raises:
            KeyNotFoundError: If *key* does not exist.
            DirNotEmptyError: If *key* is a non-empty directory and not *recursive*.
        """
        params: dict[str, str] = {}
        if recursive:
            params["recursive"] = "true"
        return await self._delete(key, params)

    async def delete_dir(self, key: str) -> KeySpaceInfo:
        """Delete an empty directory.

        Raises:
            DirNotEmptyError: If the directory has children.
        """
        return await self._delete(key, {"dir": "true"})

    async def compare_and_delete(
        self,
        key: str,
        prev_value: str | None = None,
        prev_index: int | None = None,
    ) -> KeySpaceInfo:
        """Delete *key* only if every given precondition holds.

        Raises:
            PreconditionError: If no precondition is given.
            CompareFailedError: If a precondition does not hold.
        """
        if prev_value is None and prev_index is None:
            raise PreconditionError("compare_and_delete requires prev_value or prev_index.")
        params: dict[str, str] = {}
        if prev_value is not None:
            params["prevValue"] = prev_value
        if prev_index is not None:
            params["prevIndex"] = str(prev_index)
        return await self._delete(key, params)

    # ── Private ───────────────────────────────────────────────────

    @staticmethod
    def _path(key: str) -> str:
        return f"{KEYS_PATH}{key}"

    async def _put(self, key: str, ttl: int | None, **fields: str) -> KeySpaceInfo:
        validate_key(key)
        validate_ttl(ttl)
        form = dict(fields)
        if ttl is not None:
            form["ttl"] = str(ttl)
        spec = RequestSpec(method="PUT", path=self._path(key), form=form, success=_WRITE_SUCCESS)
        return await self._execute(spec)

    async def _delete(self, key: str, params: dict[str, str]) -> KeySpaceInfo:
        validate_key(key)
        return await self._execute(RequestSpec(method="DELETE", path=self._path(key), params=params))

    async def _execute(self, spec: RequestSpec) -> KeySpaceInfo:
        response: DecodedResponse = await self._dispatcher.execute(spec, KeySpaceInfo)
        info: KeySpaceInfo = response.data
        return info.model_copy(
            update={
                "index": response.cluster_info.etcd_index,
                "cluster_info": response.cluster_info,
            }
        )
