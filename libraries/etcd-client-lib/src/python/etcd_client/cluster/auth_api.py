"""Users, roles and the auth switch on ``/v2/auth``.

The auth endpoints answer failures with a bare status code, so every
non-success reply surfaces as
:class:`~etcd_client.exceptions.UnexpectedStatusError`.
"""

from __future__ import annotations

import logging
from http import HTTPStatus
from typing import Any

from ..models import (
    AuthChange,
    AuthStatus,
    NewUser,
    Role,
    RoleList,
    RoleUpdate,
    User,
    UserDetail,
    UserList,
    UserUpdate,
    dump_wire,
)
from ..network.dispatcher import RequestDispatcher, RequestSpec

logger = logging.getLogger(__name__)

AUTH_PATH = "/v2/auth"

_OK = frozenset({HTTPStatus.OK})
_OK_OR_CREATED = frozenset({HTTPStatus.OK, HTTPStatus.CREATED})
_TOGGLE = frozenset({HTTPStatus.OK, HTTPStatus.CONFLICT})


class AuthApi:
    """Manages the auth system of the cluster.

    Parameters:
        dispatcher: Sends requests with endpoint failover.
    """

    def __init__(self, dispatcher: RequestDispatcher) -> None:
        self._dispatcher = dispatcher

    # ── Auth switch ───────────────────────────────────────────────

    async def status(self) -> bool:
        """Return whether auth is enabled."""
        result: AuthStatus = await self._call("GET", "/enable", AuthStatus)
        return result.enabled

    async def enable(self) -> AuthChange:
        """Turn auth on. ``UNCHANGED`` when it already was."""
        return await self._toggle("PUT")

    async def disable(self) -> AuthChange:
        """Turn auth off. ``UNCHANGED`` when it already was."""
        return await self._toggle("DELETE")

    # ── Users ─────────────────────────────────────────────────────

    async def get_users(self) -> list[UserDetail]:
        result: UserList = await self._call("GET", "/users", UserList)
        return result.users or []

    async def get_user(self, name: str) -> UserDetail:
        return await self._call("GET", f"/users/{name}", UserDetail)

    async def create_user(self, user: NewUser) -> User:
        created = await self._call("PUT", f"/users/{user.name}", User, body=user, success=_OK_OR_CREATED)
        logger.info("Auth user '%s' created", user.name)
        return created

    async def update_user(self, update: UserUpdate) -> User:
        """Change a user's password or grant/revoke roles."""
        return await self._call("PUT", f"/users/{update.name}", User, body=update)

    async def delete_user(self, name: str) -> None:
        await self._call("DELETE", f"/users/{name}", None)
        logger.info("Auth user '%s' deleted", name)

    # ── Roles ─────────────────────────────────────────────────────

    async def get_roles(self) -> list[Role]:
        result: RoleList = await self._call("GET", "/roles", RoleList)
        return result.roles or []

    async def get_role(self, name: str) -> Role:
        return await self._call("GET", f"/roles/{name}", Role)

    async def create_role(self, role: Role) -> Role:
        created = await self._call("PUT", f"/roles/{role.name}", Role, body=role, success=_OK_OR_CREATED)
        logger.info("Auth role '%s' created", role.name)
        return created

    async def update_role(self, update: RoleUpdate) -> Role:
        """Grant and revoke key permissions of a role."""
        return await self._call("PUT", f"/roles/{update.name}", Role, body=update)

    async def delete_role(self, name: str) -> None:
        await self._call("DELETE", f"/roles/{name}", None)
        logger.info("Auth role '%s' deleted", name)

    # ── Private ───────────────────────────────────────────────────

    async def _toggle(self, method: str) -> AuthChange:
        spec = RequestSpec(method=method, path=f"{AUTH_PATH}/enable", success=_TOGGLE, error_envelope=False)
        response = await self._dispatcher.execute(spec)
        change = AuthChange.UNCHANGED if response.status_code == HTTPStatus.CONFLICT else AuthChange.CHANGED
        logger.info("Auth %s: %s", "enable" if method == "PUT" else "disable", change.value)
        return change

    async def _call(
        self,
        method: str,
        path: str,
        model: Any,
        body: Any = None,
        success: frozenset[int] = _OK,
    ) -> Any:
        spec = RequestSpec(
            method=method,
            path=f"{AUTH_PATH}{path}",
            json_body=dump_wire(body) if body is not None else None,
            success=success,
            error_envelope=False,
        )
        response = await self._dispatcher.execute(spec, model)
        return response.data
