"""Shared fixtures: an in-memory etcd v2 member set behind httpx.MockTransport."""

from __future__ import annotations

import asyncio
import json
import time
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import parse_qsl

import httpx
import pytest
import pytest_asyncio

from etcd_client import ClientConfig, EtcdClient

ENDPOINTS = ["http://etcd-1:2379", "http://etcd-2:2379", "http://etcd-3:2379"]

_STATUS_FOR_CODE = {
    100: 404,
    101: 412,
    102: 403,
    104: 403,
    105: 412,
    107: 403,
    108: 403,
    401: 400,
}


@dataclass
class _Entry:
    key: str
    value: str | None
    dir: bool
    created_index: int
    modified_index: int
    ttl: int | None = None
    expires_at: float | None = None


@dataclass
class _Event:
    index: int
    key: str
    payload: dict[str, Any]


@dataclass
class RecordedRequest:
    method: str
    host: str
    path: str
    params: dict[str, str]
    form: dict[str, str]
    body: Any = None


class _ServiceFailure(Exception):
    def __init__(self, code: int, message: str, cause: str = "") -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.cause = cause


@dataclass
class FakeEtcd:
    """A tiny, single-process model of the etcd v2 HTTP API.

    Every endpoint host serves the same state. Hosts listed in ``down``
    refuse connections. Long-polls give up after ``wait_timeout``
    seconds with a read timeout, like a proxy closing an idle request.
    """

    cluster_id: str = "cdf818194e3a8c32"
    wait_timeout: float = 1.0
    history_size: int = 1000
    index: int = 0
    cleared_up_to: int = 0
    down: set[str] = field(default_factory=set)
    requests: list[RecordedRequest] = field(default_factory=list)
    entries: dict[str, _Entry] = field(default_factory=dict)
    history: list[_Event] = field(default_factory=list)
    members: list[dict[str, Any]] = field(
        default_factory=lambda: [
            {
                "id": f"member{i}",
                "name": f"etcd-{i}",
                "peerURLs": [f"http://etcd-{i}:2380"],
                "clientURLs": [f"http://etcd-{i}:2379"],
            }
            for i in (1, 2, 3)
        ]
    )
    auth_enabled: bool = False
    users: dict[str, dict[str, Any]] = field(default_factory=dict)
    roles: dict[str, dict[str, Any]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self._changed = asyncio.Event()

    # ── Test helpers ──────────────────────────────────────────────

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def put_value(self, key: str, value: str, ttl: int | None = None) -> _Entry:
        """Write a key directly, as another client would."""
        return self._write(key, value, dir=False, ttl=ttl, action="set")[0]

    def expire(self, key: str) -> None:
        """Expire a key as if its TTL ran out."""
        entry = self.entries[key]
        self._remove(key)
        self.index += 1
        self._record(
            key,
            {
                "action": "expire",
                "node": {"key": key, "createdIndex": entry.created_index, "modifiedIndex": self.index},
                "prevNode": self._node(entry, recursive=False, sort=False),
            },
        )

    def reap(self) -> list[str]:
        """Expire every key whose TTL has run out."""
        now = time.monotonic()
        overdue = [key for key, entry in self.entries.items() if entry.expires_at is not None and entry.expires_at <= now]
        for key in overdue:
            if key in self.entries:
                self.expire(key)
        return overdue

    def compact(self, up_to: int) -> None:
        """Drop event history at or below *up_to*."""
        self.cleared_up_to = max(self.cleared_up_to, up_to)
        self.history = [event for event in self.history if event.index > self.cleared_up_to]

    def requests_to(self, path_prefix: str) -> list[RecordedRequest]:
        return [r for r in self.requests if r.path.startswith(path_prefix)]

    # ── HTTP entry point ──────────────────────────────────────────

    async def handle(self, request: httpx.Request) -> httpx.Response:
        await request.aread()
        host = request.url.host
        path = request.url.path
        params = dict(request.url.params)
        content = request.content.decode() if request.content else ""
        form: dict[str, str] = {}
        body: Any = None
        if request.headers.get("content-type", "").startswith("application/x-www-form-urlencoded"):
            form = dict(parse_qsl(content, keep_blank_values=True))
        elif content:
            body = json.loads(content)
        self.requests.append(RecordedRequest(request.method, host, path, params, form, body))

        if host in self.down:
            raise httpx.ConnectError("connection refused", request=request)

        try:
            if path.startswith("/v2/keys"):
                return await self._keys(request, path[len("/v2/keys"):] or "/", params, form)
            if path.startswith("/v2/members"):
                return self._members(request.method, path[len("/v2/members"):], body)
            if path.startswith("/v2/stats/"):
                return self._stats(host, path[len("/v2/stats/"):])
            if path.startswith("/v2/auth"):
                return self._auth(request.method, path[len("/v2/auth"):], body)
            if path == "/health":
                return self._json(200, {"health": "true"})
            if path == "/version":
                return self._json(200, {"etcdserver": "2.3.8", "etcdcluster": "2.3.0"})
        except _ServiceFailure as failure:
            return self._json(
                _STATUS_FOR_CODE.get(failure.code, 400),
                {
                    "errorCode": failure.code,
                    "message": failure.message,
                    "cause": failure.cause,
                    "index": self.index,
                },
            )
        return httpx.Response(404, text="404 page not found\n")

    # ── Key space ─────────────────────────────────────────────────

    async def _keys(self, request: httpx.Request, key: str, params: dict[str, str], form: dict[str, str]) -> httpx.Response:
        if key != "/":
            key = key.rstrip("/")
        if request.method == "GET":
            if params.get("wait") == "true":
                wait_index = int(params["waitIndex"]) if "waitIndex" in params else None
                return await self._wait(request, key, params.get("recursive") == "true", wait_index)
            return self._get(key, params.get("recursive") == "true", params.get("sorted") == "true")
        if request.method == "PUT":
            return self._put(key, form)
        if request.method == "POST":
            return self._post(key, form)
        if request.method == "DELETE":
            return self._delete(key, params)
        return httpx.Response(405)

    def _get(self, key: str, recursive: bool, sort: bool) -> httpx.Response:
        if key == "/":
            node: dict[str, Any] = {"dir": True}
            children = [self._node(child, recursive, sort, nested=True) for child in self._children("/", sort)]
            if children:
                node["nodes"] = children
            return self._json(200, {"action": "get", "node": node})
        entry = self._lookup(key)
        return self._json(200, {"action": "get", "node": self._node(entry, recursive, sort)})

    def _put(self, key: str, form: dict[str, str]) -> httpx.Response:
        if key == "/":
            raise _ServiceFailure(107, "Root is read only", "/")
        existing = self.entries.get(key)
        prev_exist = form.get("prevExist")
        prev_value = form.get("prevValue")
        prev_index = form.get("prevIndex")
        ttl = int(form["ttl"]) if "ttl" in form else None
        is_dir = form.get("dir") == "true"

        if form.get("refresh") == "true":
            entry = self._lookup(key)
            self._compare(entry, prev_value, prev_index)
            self.index += 1
            previous = self._node(entry, recursive=False, sort=False)
            entry.ttl = ttl
            entry.expires_at = self._deadline(ttl)
            entry.modified_index = self.index
            return self._json(200, {"action": "update", "node": self._node(entry, False, False), "prevNode": previous})

        if prev_exist == "false" and existing is not None:
            raise _ServiceFailure(105, "Key already exists", key)
        if prev_exist == "true" and existing is None:
            raise _ServiceFailure(100, "Key not found", key)
        if prev_value is not None or prev_index is not None:
            entry = self._lookup(key)
            if entry.dir:
                raise _ServiceFailure(102, "Not a file", key)
            self._compare(entry, prev_value, prev_index)
            action = "compareAndSwap"
        elif prev_exist == "false":
            action = "create"
        elif prev_exist == "true":
            action = "update"
        else:
            action = "set"

        if existing is not None and existing.dir and not (is_dir and prev_exist == "true"):
            raise _ServiceFailure(102, "Not a file", key)

        entry, previous = self._write(key, None if is_dir else form.get("value", ""), dir=is_dir, ttl=ttl, action=action)
        payload = {"action": action, "node": self._node(entry, False, False)}
        if previous is not None:
            payload["prevNode"] = previous
        return self._json(201 if previous is None else 200, payload)

    def _post(self, dir_key: str, form: dict[str, str]) -> httpx.Response:
        parent = self.entries.get(dir_key)
        if parent is not None and not parent.dir:
            raise _ServiceFailure(104, "Not a directory", dir_key)
        child_key = f"{dir_key.rstrip('/')}/{self.index + 1:020d}"
        ttl = int(form["ttl"]) if "ttl" in form else None
        entry, _ = self._write(child_key, form.get("value", ""), dir=False, ttl=ttl, action="create")
        return self._json(201, {"action": "create", "node": self._node(entry, False, False)})

    def _delete(self, key: str, params: dict[str, str]) -> httpx.Response:
        if key == "/":
            raise _ServiceFailure(107, "Root is read only", "/")
        entry = self._lookup(key)
        recursive = params.get("recursive") == "true"
        prev_value = params.get("prevValue")
        prev_index = params.get("prevIndex")
        action = "delete"

        if prev_value is not None or prev_index is not None:
            if entry.dir:
                raise _ServiceFailure(102, "Not a file", key)
            self._compare(entry, prev_value, prev_index)
            action = "compareAndDelete"
        elif entry.dir:
            if not recursive and params.get("dir") != "true":
                raise _ServiceFailure(102, "Not a file", key)
            if not recursive and self._children(key, sort=False):
                raise _ServiceFailure(108, "Directory not empty", key)

        previous = self._node(entry, recursive=False, sort=False)
        self._remove(key)
        self.index += 1
        node: dict[str, Any] = {"key": key, "createdIndex": entry.created_index, "modifiedIndex": self.index}
        if entry.dir:
            node["dir"] = True
        payload = {"action": action, "node": node, "prevNode": previous}
        self._record(key, payload)
        return self._json(200, payload)

    async def _wait(self, request: httpx.Request, key: str, recursive: bool, wait_index: int | None) -> httpx.Response:
        if wait_index is not None and wait_index <= self.cleared_up_to:
            raise _ServiceFailure(
                401,
                "The event in requested index is outdated and cleared",
                f"the requested history has been cleared [{self.cleared_up_to + 1}/{wait_index}]",
            )
        start = wait_index if wait_index is not None else self.index + 1
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.wait_timeout
        while True:
            for event in self.history:
                if event.index >= start and self._matches(event.key, key, recursive):
                    return self._json(200, event.payload)
            changed = self._changed
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise httpx.ReadTimeout("timed out", request=request)
            try:
                await asyncio.wait_for(changed.wait(), remaining)
            except TimeoutError:
                raise httpx.ReadTimeout("timed out", request=request) from None

    # ── Key space internals ───────────────────────────────────────

    def _lookup(self, key: str) -> _Entry:
        entry = self.entries.get(key)
        if entry is None:
            raise _ServiceFailure(100, "Key not found", key)
        return entry

    @staticmethod
    def _compare(entry: _Entry, prev_value: str | None, prev_index: str | None) -> None:
        failures = []
        if prev_value is not None and entry.value != prev_value:
            failures.append(f"{prev_value} != {entry.value}")
        if prev_index is not None and entry.modified_index != int(prev_index):
            failures.append(f"{prev_index} != {entry.modified_index}")
        if failures:
            raise _ServiceFailure(101, "Compare failed", f"[{' '.join(failures)}]")

    def _write(self, key: str, value: str | None, dir: bool, ttl: int | None, action: str) -> tuple[_Entry, dict[str, Any] | None]:
        self._ensure_parents(key)
        self.index += 1
        existing = self.entries.get(key)
        previous = self._node(existing, False, False) if existing is not None else None
        keeps_identity = existing is not None and action in ("update", "compareAndSwap")
        created = existing.created_index if keeps_identity else self.index
        entry = _Entry(key=key, value=value, dir=dir, created_index=created, modified_index=self.index, ttl=ttl)
        entry.expires_at = self._deadline(ttl)
        self.entries[key] = entry
        payload: dict[str, Any] = {"action": action, "node": self._node(entry, False, False)}
        if previous is not None:
            payload["prevNode"] = previous
        self._record(key, payload)
        return entry, previous

    @staticmethod
    def _deadline(ttl: int | None) -> float | None:
        return time.monotonic() + ttl if ttl is not None else None

    def _ensure_parents(self, key: str) -> None:
        parts = key.strip("/").split("/")[:-1]
        path = ""
        for part in parts:
            path = f"{path}/{part}"
            entry = self.entries.get(path)
            if entry is None:
                # Parents are created at the index of the write that needs them.
                self.entries[path] = _Entry(key=path, value=None, dir=True, created_index=self.index + 1, modified_index=self.index + 1)
            elif not entry.dir:
                raise _ServiceFailure(104, "Not a directory", path)

    def _remove(self, key: str) -> None:
        for existing in [k for k in self.entries if k == key or k.startswith(key + "/")]:
            del self.entries[existing]

    def _children(self, key: str, sort: bool) -> list[_Entry]:
        prefix = "/" if key == "/" else key + "/"
        children = [
            entry
            for entry_key, entry in self.entries.items()
            if entry_key.startswith(prefix) and "/" not in entry_key[len(prefix):]
        ]
        if sort:
            children.sort(key=lambda entry: entry.key)
        return children

    def _node(self, entry: _Entry, recursive: bool, sort: bool, nested: bool = False) -> dict[str, Any]:
        node: dict[str, Any] = {
            "key": entry.key,
            "createdIndex": entry.created_index,
            "modifiedIndex": entry.modified_index,
        }
        if entry.dir:
            node["dir"] = True
            if recursive or not nested:
                children = [self._node(child, recursive, sort, nested=True) for child in self._children(entry.key, sort)]
                if children:
                    node["nodes"] = children
        else:
            node["value"] = entry.value
        if entry.ttl is not None:
            node["ttl"] = entry.ttl
            node["expiration"] = "2030-01-01T00:00:00.123456789Z"
        return node

    @staticmethod
    def _matches(event_key: str, key: str, recursive: bool) -> bool:
        if event_key == key:
            return True
        prefix = "/" if key == "/" else key + "/"
        return recursive and event_key.startswith(prefix)

    def _record(self, key: str, payload: dict[str, Any]) -> None:
        self.history.append(_Event(index=self.index, key=key, payload=payload))
        if len(self.history) > self.history_size:
            dropped = self.history.pop(0)
            self.cleared_up_to = dropped.index
        self._changed.set()
        self._changed = asyncio.Event()

    # ── Members, stats, auth ──────────────────────────────────────

    def _members(self, method: str, path: str, body: Any) -> httpx.Response:
        member_id = path.strip("/")
        if method == "GET" and not member_id:
            return self._json(200, {"members": self.members})
        if method == "POST" and not member_id:
            member = {"id": f"member{len(self.members) + 1}", "name": "", "peerURLs": body["peerURLs"], "clientURLs": []}
            self.members.append(member)
            return self._json(201, member)
        for member in self.members:
            if member["id"] == member_id:
                if method == "PUT":
                    member["peerURLs"] = body["peerURLs"]
                    return httpx.Response(204)
                if method == "DELETE":
                    self.members.remove(member)
                    return httpx.Response(204)
        return self._json(404, {"message": f"Member not found: {member_id}"})

    def _stats(self, host: str, kind: str) -> httpx.Response:
        if kind == "self":
            return self._json(
                200,
                {
                    "id": f"id-{host}",
                    "name": host,
                    "state": "StateLeader" if host == "etcd-1" else "StateFollower",
                    "startTime": "2024-01-01T00:00:00Z",
                    "leaderInfo": {"leader": "id-etcd-1", "uptime": "1h0m0s", "startTime": "2024-01-01T00:00:00Z"},
                    "recvAppendRequestCnt": 10,
                    "sendAppendRequestCnt": 20,
                },
            )
        if kind == "leader":
            return self._json(
                200,
                {
                    "leader": "id-etcd-1",
                    "followers": {
                        "id-etcd-2": {
                            "latency": {"current": 0.5, "average": 0.4, "standardDeviation": 0.1, "minimum": 0.2, "maximum": 0.9},
                            "counts": {"fail": 0, "success": 42},
                        }
                    },
                },
            )
        if kind == "store":
            return self._json(200, {"getsSuccess": 5, "setsSuccess": 3, "watchers": 1})
        return httpx.Response(404)

    def _auth(self, method: str, path: str, body: Any) -> httpx.Response:
        if path == "/enable":
            if method == "GET":
                return self._json(200, {"enabled": self.auth_enabled})
            wanted = method == "PUT"
            if self.auth_enabled == wanted:
                return httpx.Response(409)
            self.auth_enabled = wanted
            return httpx.Response(200)

        parts = path.strip("/").split("/")
        collection, name = parts[0], (parts[1] if len(parts) > 1 else None)
        if collection == "users":
            return self._auth_users(method, name, body)
        if collection == "roles":
            return self._auth_roles(method, name, body)
        return httpx.Response(404)

    def _auth_users(self, method: str, name: str | None, body: Any) -> httpx.Response:
        if name is None:
            return self._json(200, {"users": [self._user_detail(user) for user in self.users.values()]})
        user = self.users.get(name)
        if method == "GET":
            return self._json(200, self._user_detail(user)) if user else httpx.Response(404)
        if method == "DELETE":
            if user is None:
                return httpx.Response(404)
            del self.users[name]
            return httpx.Response(200)
        if user is None:
            user = {"user": name, "password": body.get("password"), "roles": list(body.get("roles") or [])}
            self.users[name] = user
            return self._json(201, {"user": name, "roles": user["roles"]})
        if body.get("password"):
            user["password"] = body["password"]
        user["roles"] = [r for r in user["roles"] if r not in (body.get("revoke") or [])]
        user["roles"] += [r for r in body.get("grant") or [] if r not in user["roles"]]
        return self._json(200, {"user": name, "roles": user["roles"]})

    def _auth_roles(self, method: str, name: str | None, body: Any) -> httpx.Response:
        if name is None:
            return self._json(200, {"roles": list(self.roles.values())})
        role = self.roles.get(name)
        if method == "GET":
            return self._json(200, role) if role else httpx.Response(404)
        if method == "DELETE":
            if role is None:
                return httpx.Response(404)
            del self.roles[name]
            return httpx.Response(200)
        if role is None:
            role = {"role": name, "permissions": body.get("permissions") or {"kv": {"read": [], "write": []}}}
            self.roles[name] = role
            return self._json(201, role)
        kv = role["permissions"]["kv"]
        for kind in ("read", "write"):
            revoke = ((body.get("revoke") or {}).get("kv") or {}).get(kind) or []
            grant = ((body.get("grant") or {}).get("kv") or {}).get(kind) or []
            kv[kind] = [k for k in kv.get(kind, []) if k not in revoke] + [k for k in grant if k not in kv.get(kind, [])]
        return self._json(200, role)

    def _user_detail(self, user: dict[str, Any] | None) -> dict[str, Any]:
        assert user is not None
        roles = [self.roles.get(r, {"role": r, "permissions": {"kv": {"read": [], "write": []}}}) for r in user["roles"]]
        return {"user": user["user"], "roles": roles}

    def _json(self, status: int, payload: Any) -> httpx.Response:
        return httpx.Response(
            status,
            json=payload,
            headers={
                "X-Etcd-Cluster-Id": self.cluster_id,
                "X-Etcd-Index": str(self.index),
                "X-Raft-Index": str(self.index + 100),
                "X-Raft-Term": "2",
            },
        )


# ── Fixtures ──────────────────────────────────────────────────────


@pytest.fixture
def endpoints() -> list[str]:
    return list(ENDPOINTS)


@pytest.fixture
def fake_etcd() -> FakeEtcd:
    return FakeEtcd()


@pytest_asyncio.fixture
async def client(fake_etcd: FakeEtcd, endpoints: list[str]):
    config = ClientConfig(endpoints=endpoints, watch_timeout=5.0)
    etcd = EtcdClient(config, http_transport=fake_etcd.transport())
    yield etcd
    await etcd.aclose()
