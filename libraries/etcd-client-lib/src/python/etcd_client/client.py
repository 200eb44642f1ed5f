"""etcd client: main entry point.

Wires the transport, endpoint pool and dispatcher together and exposes
the key-space, watch, lock, election, membership, statistics and auth
APIs on top of them.

Usage::

    from etcd_client import EtcdClient, ClientConfig

    config = ClientConfig(endpoints=["http://10.0.0.1:2379", "http://10.0.0.2:2379"])

    async with EtcdClient(config) as client:
        await client.set("/app/config", "v1")
        info = await client.get("/app/config")
        await client.kv.compare_and_swap("/app/config", "v2", prev_value="v1")

        async with await client.acquire_lock("deploy", ttl=30):
            ...  # critical section

        async with client.watch("/app", recursive=True) as watcher:
            async for event in watcher:
                print(event.action, event.node.key)
"""

from __future__ import annotations

import logging

import httpx

from .cluster.auth_api import AuthApi
from .cluster.members_api import MembersApi
from .cluster.stats_api import StatsApi
from .config import ClientConfig
from .election.election_manager import ElectionManager
from .keyspace.kv_api import KeyValueApi
from .keyspace.watcher import Watcher
from .locking.lock_handle import LockHandle
from .locking.lock_manager import LockManager
from .models import ClusterMember, Health, KeySpaceInfo, VersionInfo
from .network.dispatcher import RequestDispatcher
from .network.endpoint_pool import EndpointPool
from .network.transport import Transport, create_transport

logger = logging.getLogger(__name__)


class EtcdClient:
    """Client for the v2 HTTP API of an etcd cluster.

    One instance is meant to be shared by every task of the process;
    close it with :meth:`aclose` or use it as an async context manager.

    Parameters:
        config: Connection settings. Defaults to a single local endpoint.
        endpoints: Shortcut overriding ``config.endpoints``.
        transport: A ready-made :class:`Transport` (the config's TLS and
            auth settings are then ignored).
        http_transport: Low-level httpx transport handed to the default
            transport, e.g. :class:`httpx.MockTransport` in tests.
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        endpoints: list[str] | None = None,
        transport: Transport | None = None,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        config = config or ClientConfig()
        if endpoints is not None:
            config = ClientConfig.model_validate({**config.model_dump(), "endpoints": list(endpoints)})
        self._config = config
        self._members: tuple[ClusterMember, ...] = ()

        # ── Networking ────────────────────────────────────────────
        self._pool = EndpointPool(config.endpoints)
        self._transport = transport or create_transport(config, http_transport=http_transport)
        self._dispatcher = RequestDispatcher(self._pool, self._transport)

        # ── APIs ──────────────────────────────────────────────────
        self._kv = KeyValueApi(self._dispatcher, watch_timeout=config.watch_timeout)
        self._locks = LockManager(self._kv, prefix=config.lock_prefix, watch_timeout=config.watch_timeout)
        self._elections = ElectionManager(self._kv, prefix=config.election_prefix)
        self._members_api = MembersApi(self._dispatcher)
        self._stats = StatsApi(self._dispatcher)
        self._auth = AuthApi(self._dispatcher)

        logger.info("EtcdClient created for %s", ", ".join(self._pool.endpoints))

    # ── Components ────────────────────────────────────────────────

    @property
    def config(self) -> ClientConfig:
        return self._config

    @property
    def pool(self) -> EndpointPool:
        return self._pool

    @property
    def kv(self) -> KeyValueApi:
        return self._kv

    @property
    def locks(self) -> LockManager:
        return self._locks

    @property
    def elections(self) -> ElectionManager:
        return self._elections

    @property
    def members_api(self) -> MembersApi:
        return self._members_api

    @property
    def stats(self) -> StatsApi:
        return self._stats

    @property
    def auth(self) -> AuthApi:
        return self._auth

    @property
    def members(self) -> tuple[ClusterMember, ...]:
        """The member snapshot from the last :meth:`refresh_members`."""
        return self._members

    # ── Key space shortcuts ───────────────────────────────────────

    async def get(self, key: str, recursive: bool = False, sorted: bool = False) -> KeySpaceInfo:
        return await self._kv.get(key, recursive=recursive, sorted=sorted)

    async def set(self, key: str, value: str, ttl: int | None = None) -> KeySpaceInfo:
        return await self._kv.set(key, value, ttl=ttl)

    async def delete(self, key: str, recursive: bool = False) -> KeySpaceInfo:
        return await self._kv.delete(key, recursive=recursive)

    def watch(
        self,
        key: str,
        index: int | None = None,
        recursive: bool = False,
        timeout: float | None = None,
    ) -> Watcher:
        """Create a :class:`Watcher` on *key*.

        The watcher issues no request until it is first iterated.
        """
        return Watcher(self._kv, key, index=index, recursive=recursive, timeout=timeout)

    async def acquire_lock(
        self,
        name: str,
        ttl: int = 60,
        blocking: bool = True,
        timeout: float | None = None,
    ) -> LockHandle:
        """Acquire a distributed lock. See :meth:`LockManager.acquire`."""
        return await self._locks.acquire(name, ttl=ttl, blocking=blocking, timeout=timeout)

    # ── Cluster ───────────────────────────────────────────────────

    async def health(self) -> dict[str, Health | Exception]:
        """Health check result per endpoint."""
        return await self._stats.health()

    async def versions(self) -> dict[str, VersionInfo | Exception]:
        """Version information per endpoint."""
        return await self._stats.versions()

    async def refresh_members(self, update_endpoints: bool = False) -> tuple[ClusterMember, ...]:
        """Fetch the member list and replace the snapshot.

        Args:
            update_endpoints: Also replace the endpoint pool with the
                members' client URLs.
        """
        members = await self._members_api.list()
        self._members = members
        logger.info("Cluster members refreshed: %s", ", ".join(m.name or m.id for m in members))

        if update_endpoints:
            client_urls = [url for member in members for url in member.client_urls]
            if client_urls:
                self._pool.replace(client_urls)
            else:
                logger.warning("No member advertises a client URL, keeping endpoints")
        return members

    # ── Lifecycle ─────────────────────────────────────────────────

    async def aclose(self) -> None:
        await self._transport.aclose()
        logger.info("EtcdClient closed")

    async def __aenter__(self) -> EtcdClient:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        await self.aclose()

    def __repr__(self) -> str:
        return f"EtcdClient(endpoints={list(self._pool.endpoints)!r})"
