"""etcd Client Library: async client for the etcd v2 HTTP API.

Reads and writes hierarchical keys with optional TTLs, watches keys
through long-polling, fails over across cluster members, and builds
distributed locks and leader election on compare-and-swap.

Quick Start::

    from etcd_client import ClientConfig, EtcdClient

    async with EtcdClient(ClientConfig.from_yaml("config.yaml")) as client:
        # Key space
        await client.set("/app/config", "v1", ttl=300)
        info = await client.get("/app/config")
        await client.kv.compare_and_swap("/app/config", "v2", prev_value="v1")

        # Watching
        async with client.watch("/app", recursive=True) as watcher:
            async for event in watcher:
                ...

        # Distributed locking
        async with await client.acquire_lock("resource-x", ttl=30):
            pass  # critical section

        # Leader election
        await client.elections.nominate("scheduler", "node-1", ttl=10)
"""

from .client import EtcdClient
from .config import ClientConfig, TlsConfig
from .election.election_manager import ElectionManager
from .exceptions import (
    AllEndpointsFailedError,
    CompareFailedError,
    DecodingError,
    DirNotEmptyError,
    EtcdClientError,
    IndexTooOldError,
    KeyNotFoundError,
    LockAcquireTimeoutError,
    LockHeldError,
    LockLostError,
    NodeExistError,
    NotADirError,
    NotAFileError,
    PermissionDeniedError,
    PreconditionError,
    RootReadOnlyError,
    ServiceError,
    TransportConnectionError,
    TransportError,
    TransportTimeoutError,
    UnexpectedStatusError,
    WatcherClearedError,
)
from .keyspace.kv_api import KeyValueApi
from .keyspace.watcher import Watcher, WatchState
from .locking.lock_handle import LockHandle
from .locking.lock_manager import LockManager
from .models import (
    Action,
    AuthChange,
    ClusterInfo,
    ClusterMember,
    ElectionToken,
    Health,
    KeySpaceInfo,
    LockToken,
    Node,
    Role,
    User,
    VersionInfo,
)

__all__ = [
    # Main entry point
    "EtcdClient",
    "ClientConfig",
    "TlsConfig",
    # Key space
    "KeyValueApi",
    "Watcher",
    "WatchState",
    # Coordination
    "ElectionManager",
    "LockHandle",
    "LockManager",
    # Models
    "Action",
    "AuthChange",
    "ClusterInfo",
    "ClusterMember",
    "ElectionToken",
    "Health",
    "KeySpaceInfo",
    "LockToken",
    "Node",
    "Role",
    "User",
    "VersionInfo",
    # Exceptions
    "AllEndpointsFailedError",
    "CompareFailedError",
    "DecodingError",
    "DirNotEmptyError",
    "EtcdClientError",
    "IndexTooOldError",
    "KeyNotFoundError",
    "LockAcquireTimeoutError",
    "LockHeldError",
    "LockLostError",
    "NodeExistError",
    "NotADirError",
    "NotAFileError",
    "PermissionDeniedError",
    "PreconditionError",
    "RootReadOnlyError",
    "ServiceError",
    "TransportConnectionError",
    "TransportError",
    "TransportTimeoutError",
    "UnexpectedStatusError",
    "WatcherClearedError",
]
