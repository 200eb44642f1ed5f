"""Data models for the etcd v2 client.

All models use Pydantic for validation. Wire names are camelCase and
are mapped through field aliases; models may be built with either the
alias or the Python field name.
"""

from __future__ import annotations

import enum
import logging
import re
from datetime import datetime
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

logger = logging.getLogger(__name__)

_WIRE_CONFIG = ConfigDict(populate_by_name=True, extra="ignore")

# The service reports nanosecond timestamps; datetime holds microseconds.
_SUB_MICROSECOND = re.compile(r"\.(\d{6})\d+")


# ── Enums ─────────────────────────────────────────────────────────


class Action(str, enum.Enum):
    """The action the service performed for a key-space request."""

    GET = "get"
    SET = "set"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    EXPIRE = "expire"
    COMPARE_AND_SWAP = "compareAndSwap"
    COMPARE_AND_DELETE = "compareAndDelete"

    @property
    def removes_node(self) -> bool:
        """Whether this action means the node no longer exists."""
        return self in (Action.DELETE, Action.EXPIRE, Action.COMPARE_AND_DELETE)


class AuthChange(str, enum.Enum):
    """Outcome of enabling or disabling the auth system."""

    CHANGED = "changed"
    UNCHANGED = "unchanged"


# ── Cluster Headers ───────────────────────────────────────────────

# Header names are matched case-insensitively.
_HEADER_CLUSTER_ID = "x-etcd-cluster-id"
_HEADER_ETCD_INDEX = "x-etcd-index"
_HEADER_RAFT_INDEX = "x-raft-index"
_HEADER_RAFT_TERM = "x-raft-term"


class ClusterInfo(BaseModel):
    """Cluster state reported in the HTTP headers of every response."""

    cluster_id: str | None = None
    """Internal identifier of the cluster."""

    etcd_index: int | None = None
    """The cluster-wide modification index at the time of the response."""

    raft_index: int | None = None
    """The Raft log index."""

    raft_term: int | None = None
    """The current Raft election term."""

    @staticmethod
    def from_headers(headers: Mapping[str, str]) -> ClusterInfo:
        """Parse cluster headers, dropping any value that cannot be decoded."""
        headers = {name.lower(): value for name, value in headers.items()}
        return ClusterInfo(
            cluster_id=headers.get(_HEADER_CLUSTER_ID),
            etcd_index=_int_header(headers, _HEADER_ETCD_INDEX),
            raft_index=_int_header(headers, _HEADER_RAFT_INDEX),
            raft_term=_int_header(headers, _HEADER_RAFT_TERM),
        )


def _int_header(headers: Mapping[str, str], name: str) -> int | None:
    raw = headers.get(name)
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        logger.error("%s header decode error: %r", name, raw)
        return None


# ── Key Space Models ──────────────────────────────────────────────


class Node(BaseModel):
    """A key-value pair or a directory in the key space."""

    model_config = _WIRE_CONFIG

    key: str | None = None
    """Full path of the node. Only the root directory omits it."""

    value: str | None = None
    """Value of a key-value pair. Directories have none."""

    dir: bool = False
    """Whether this node is a directory."""

    nodes: list[Node] | None = None
    """Children of a directory, when requested."""

    ttl: int | None = None
    """Remaining time to live in seconds."""

    expiration: datetime | None = None
    """Absolute expiration time."""

    created_index: int | None = Field(default=None, alias="createdIndex")
    """Index at which the node was created."""

    modified_index: int | None = Field(default=None, alias="modifiedIndex")
    """Index of the last mutation of the node."""

    @field_validator("expiration", mode="before")
    @classmethod
    def _trim_expiration(cls, value: Any) -> Any:
        if isinstance(value, str):
            return _SUB_MICROSECOND.sub(r".\1", value)
        return value

    @model_validator(mode="after")
    def _check_shape(self) -> Node:
        if not self.dir and self.nodes:
            raise ValueError(f"non-directory node {self.key!r} has children")
        if self.dir and self.value is not None:
            raise ValueError(f"directory node {self.key!r} has a value")
        return self

    @property
    def name(self) -> str:
        """The last path segment of the key."""
        if not self.key:
            return ""
        return self.key.rstrip("/").rsplit("/", 1)[-1]

    @property
    def children(self) -> list[Node]:
        return list(self.nodes or [])

    def leaves(self) -> list[Node]:
        """Return every non-directory node in this subtree, depth first."""
        if not self.dir:
            return [self]
        result: list[Node] = []
        for child in self.children:
            result.extend(child.leaves())
        return result


class KeySpaceInfo(BaseModel):
    """Result of a key-space operation or a watch event."""

    model_config = _WIRE_CONFIG

    action: Action
    """The action that was performed."""

    node: Node
    """The node that was operated on."""

    prev_node: Node | None = Field(default=None, alias="prevNode")
    """The state of the node before the operation, when reported."""

    index: int | None = None
    """Cluster-wide index (``X-Etcd-Index``) at which the response was produced."""

    cluster_info: ClusterInfo = Field(default_factory=ClusterInfo)
    """All cluster headers of the response."""


class ServiceErrorEnvelope(BaseModel):
    """The JSON body of an error response."""

    model_config = _WIRE_CONFIG

    error_code: int = Field(default=0, alias="errorCode")
    message: str
    cause: str | None = None
    index: int | None = None


# ── Cluster Models ────────────────────────────────────────────────


class ClusterMember(BaseModel):
    """A snapshot of one cluster member."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    id: str
    """Internal identifier of the member."""

    name: str = ""
    """Human-readable name (empty while the member has not started)."""

    peer_urls: tuple[str, ...] = Field(default=(), alias="peerURLs")
    """URLs exposing the member's peer API."""

    client_urls: tuple[str, ...] = Field(default=(), alias="clientURLs")
    """URLs exposing the member's client API."""


class MemberList(BaseModel):
    members: list[ClusterMember] = Field(default_factory=list)


class Health(BaseModel):
    """Response of the ``/health`` endpoint."""

    health: str

    @property
    def is_healthy(self) -> bool:
        return self.health == "true"


class VersionInfo(BaseModel):
    """Response of the ``/version`` endpoint."""

    model_config = _WIRE_CONFIG

    server_version: str = Field(alias="etcdserver")
    cluster_version: str = Field(alias="etcdcluster")


# ── Stats Models ──────────────────────────────────────────────────


class LeaderInfo(BaseModel):
    model_config = _WIRE_CONFIG

    leader: str = ""
    uptime: str = ""
    start_time: datetime | None = Field(default=None, alias="startTime")


class SelfStats(BaseModel):
    """Statistics of the member that served the request."""

    model_config = _WIRE_CONFIG

    id: str
    name: str = ""
    state: str = ""
    start_time: datetime | None = Field(default=None, alias="startTime")
    leader_info: LeaderInfo = Field(default_factory=LeaderInfo, alias="leaderInfo")
    recv_append_request_count: int = Field(default=0, alias="recvAppendRequestCnt")
    recv_bandwidth_rate: float | None = Field(default=None, alias="recvBandwidthRate")
    recv_pkg_rate: float | None = Field(default=None, alias="recvPkgRate")
    send_append_request_count: int = Field(default=0, alias="sendAppendRequestCnt")
    send_bandwidth_rate: float | None = Field(default=None, alias="sendBandwidthRate")
    send_pkg_rate: float | None = Field(default=None, alias="sendPkgRate")


class FollowerLatency(BaseModel):
    model_config = _WIRE_CONFIG

    current: float = 0.0
    average: float = 0.0
    standard_deviation: float = Field(default=0.0, alias="standardDeviation")
    minimum: float = 0.0
    maximum: float = 0.0


class FollowerCounts(BaseModel):
    fail: int = 0
    success: int = 0


class FollowerStats(BaseModel):
    latency: FollowerLatency = Field(default_factory=FollowerLatency)
    counts: FollowerCounts = Field(default_factory=FollowerCounts)


class LeaderStats(BaseModel):
    """Statistics the leader keeps about its followers."""

    leader: str
    followers: dict[str, FollowerStats] = Field(default_factory=dict)


class StoreStats(BaseModel):
    """Operation counters of the member's key-value store."""

    model_config = _WIRE_CONFIG

    compare_and_delete_fail: int = Field(default=0, alias="compareAndDeleteFail")
    compare_and_delete_success: int = Field(default=0, alias="compareAndDeleteSuccess")
    compare_and_swap_fail: int = Field(default=0, alias="compareAndSwapFail")
    compare_and_swap_success: int = Field(default=0, alias="compareAndSwapSuccess")
    create_fail: int = Field(default=0, alias="createFail")
    create_success: int = Field(default=0, alias="createSuccess")
    delete_fail: int = Field(default=0, alias="deleteFail")
    delete_success: int = Field(default=0, alias="deleteSuccess")
    expire_count: int = Field(default=0, alias="expireCount")
    gets_fail: int = Field(default=0, alias="getsFail")
    gets_success: int = Field(default=0, alias="getsSuccess")
    sets_fail: int = Field(default=0, alias="setsFail")
    sets_success: int = Field(default=0, alias="setsSuccess")
    update_fail: int = Field(default=0, alias="updateFail")
    update_success: int = Field(default=0, alias="updateSuccess")
    watchers: int = 0


# ── Auth Models ───────────────────────────────────────────────────


class KeyValuePermissions(BaseModel):
    read: list[str] = Field(default_factory=list)
    write: list[str] = Field(default_factory=list)


class Permissions(BaseModel):
    kv: KeyValuePermissions = Field(default_factory=KeyValuePermissions)


class Role(BaseModel):
    """An authorization role and the key prefixes it may read and write."""

    model_config = _WIRE_CONFIG

    name: str = Field(alias="role")
    permissions: Permissions = Field(default_factory=Permissions)

    def grant_kv_read_permission(self, key: str) -> None:
        self.permissions.kv.read.append(key)

    def grant_kv_write_permission(self, key: str) -> None:
        self.permissions.kv.write.append(key)


class RoleUpdate(BaseModel):
    """Permissions to grant to and revoke from an existing role."""

    model_config = _WIRE_CONFIG

    name: str = Field(alias="role")
    grant: Permissions | None = None
    revoke: Permissions | None = None


class User(BaseModel):
    """A user with the names of its roles."""

    model_config = _WIRE_CONFIG

    name: str = Field(alias="user")
    roles: list[str] = Field(default_factory=list)


class UserDetail(BaseModel):
    """A user with the full definitions of its roles."""

    model_config = _WIRE_CONFIG

    name: str = Field(alias="user")
    roles: list[Role] = Field(default_factory=list)


class NewUser(BaseModel):
    model_config = _WIRE_CONFIG

    name: str = Field(alias="user")
    password: str
    roles: list[str] | None = None


class UserUpdate(BaseModel):
    model_config = _WIRE_CONFIG

    name: str = Field(alias="user")
    password: str | None = None
    grant: list[str] | None = None
    revoke: list[str] | None = None


class AuthStatus(BaseModel):
    enabled: bool


class UserList(BaseModel):
    users: list[UserDetail] | None = None


class RoleList(BaseModel):
    roles: list[Role] | None = None


# ── Coordination Tokens ───────────────────────────────────────────


class LockToken(BaseModel):
    """Proof of lock ownership: the candidate key and the indexes it was seen at."""

    model_config = ConfigDict(frozen=True)

    name: str
    """The lock name."""

    key: str
    """Full path of the in-order candidate key."""

    value: str
    """Value written by this holder."""

    created_index: int
    """Creation index of the candidate key; orders contenders."""

    modified_index: int
    """Last modification index; compared on release and renew."""

    @property
    def token(self) -> str:
        return f"{self.key}@{self.created_index}"


class ElectionToken(BaseModel):
    """The leader value of an election as last written by this client."""

    model_config = ConfigDict(frozen=True)

    name: str
    key: str
    value: str
    modified_index: int
    ttl: int | None = None


def dump_wire(model: BaseModel) -> dict[str, Any]:
    """Serialize a model with wire (alias) names, omitting unset optionals."""
    return model.model_dump(by_alias=True, exclude_none=True)
