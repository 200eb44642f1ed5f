"""Leader election on a single key per election.

The leader value lives at ``<election_prefix>/<name>``. Leaders keep
their term alive by renewing the key before its TTL runs out
(:meth:`ElectionManager.update_leader` with the current value); a
leader that stops renewing loses the key to expiration and another
candidate can :meth:`ElectionManager.nominate` itself.
"""

from __future__ import annotations

import logging

from ..exceptions import PreconditionError
from ..keyspace.kv_api import KeyValueApi
from ..models import ElectionToken, KeySpaceInfo

logger = logging.getLogger(__name__)


class ElectionManager:
    """Reads and writes election leader values with compare-and-swap.

    Every failure surfaces the underlying service error: a missing
    leader as :class:`~etcd_client.exceptions.KeyNotFoundError`, a lost
    race as :class:`~etcd_client.exceptions.CompareFailedError` or
    :class:`~etcd_client.exceptions.NodeExistError`.

    Parameters:
        kv: Key-space API.
        prefix: Directory under which election keys live.
    """

    def __init__(self, kv: KeyValueApi, prefix: str = "/_elections") -> None:
        self._kv = kv
        self._prefix = prefix.rstrip("/")

    async def get_leader(self, name: str) -> str:
        """Return the current leader value.

        Raises:
            KeyNotFoundError: If the election has no leader.
        """
        info = await self._kv.get(self._election_key(name))
        return info.node.value or ""

    async def nominate(self, name: str, value: str, ttl: int | None = None) -> ElectionToken:
        """Become leader only if there is none.

        Raises:
            NodeExistError: If a leader is already set.
        """
        info = await self._kv.create(self._election_key(name), value, ttl=ttl)
        logger.info("Election '%s': %s became leader", name, value)
        return self._token(name, info)

    async def set_leader(self, name: str, value: str, ttl: int | None = None) -> ElectionToken:
        """Unconditionally override the leader."""
        info = await self._kv.set(self._election_key(name), value, ttl=ttl)
        logger.info("Election '%s': leader set to %s", name, value)
        return self._token(name, info)

    async def update_leader(
        self,
        name: str,
        value: str,
        ttl: int | None = None,
        prev_value: str | None = None,
    ) -> ElectionToken:
        """Replace the leader value if it is still *prev_value*.

        With *prev_value* omitted the current value must equal *value*,
        which renews the leader's TTL.

        Raises:
            CompareFailedError: If another leader took over.
            KeyNotFoundError: If the leader key expired.
        """
        expected = value if prev_value is None else prev_value
        info = await self._kv.compare_and_swap(self._election_key(name), value, ttl=ttl, prev_value=expected)
        if expected != value:
            logger.info("Election '%s': leader handed over from %s to %s", name, expected, value)
        return self._token(name, info)

    async def delete_leader(self, name: str, value: str) -> None:
        """Step down: remove the leader key if it still holds *value*.

        Raises:
            CompareFailedError: If the leader is someone else.
            KeyNotFoundError: If there is no leader.
        """
        await self._kv.compare_and_delete(self._election_key(name), prev_value=value)
        logger.info("Election '%s': %s stepped down", name, value)

    def _election_key(self, name: str) -> str:
        name = name.strip("/")
        if not name:
            raise PreconditionError("Election name must not be empty.")
        return f"{self._prefix}/{name}"

    @staticmethod
    def _token(name: str, info: KeySpaceInfo) -> ElectionToken:
        return ElectionToken(
            name=name,
            key=info.node.key or "",
            value=info.node.value or "",
            modified_index=info.node.modified_index or 0,
            ttl=info.node.ttl,
        )
