"""Cluster membership on ``/v2/members``."""

from __future__ import annotations

import logging
from http import HTTPStatus

from ..models import ClusterMember, MemberList
from ..network.dispatcher import RequestDispatcher, RequestSpec

logger = logging.getLogger(__name__)

MEMBERS_PATH = "/v2/members"


class MembersApi:
    """Lists, adds, updates and removes cluster members.

    Parameters:
        dispatcher: Sends requests with endpoint failover.
    """

    def __init__(self, dispatcher: RequestDispatcher) -> None:
        self._dispatcher = dispatcher

    async def list(self) -> tuple[ClusterMember, ...]:
        """Return a snapshot of the current members."""
        response = await self._dispatcher.execute(RequestSpec(method="GET", path=MEMBERS_PATH), MemberList)
        return tuple(response.data.members)

    async def add(self, peer_urls: list[str]) -> ClusterMember:
        """Announce a new member reachable at *peer_urls*.

        The returned member has no name or client URLs until it starts.
        """
        spec = RequestSpec(
            method="POST",
            path=MEMBERS_PATH,
            json_body={"peerURLs": list(peer_urls)},
            success=frozenset({HTTPStatus.CREATED}),
        )
        response = await self._dispatcher.execute(spec, ClusterMember)
        logger.info("Member %s added with peer URLs %s", response.data.id, ", ".join(peer_urls))
        return response.data

    async def update(self, member_id: str, peer_urls: list[str]) -> None:
        """Replace the peer URLs of member *member_id*."""
        spec = RequestSpec(
            method="PUT",
            path=f"{MEMBERS_PATH}/{member_id}",
            json_body={"peerURLs": list(peer_urls)},
            success=frozenset({HTTPStatus.NO_CONTENT}),
        )
        await self._dispatcher.execute(spec)
        logger.info("Member %s peer URLs updated to %s", member_id, ", ".join(peer_urls))

    async def delete(self, member_id: str) -> None:
        """Remove member *member_id* from the cluster."""
        spec = RequestSpec(
            method="DELETE",
            path=f"{MEMBERS_PATH}/{member_id}",
            success=frozenset({HTTPStatus.NO_CONTENT}),
        )
        await self._dispatcher.execute(spec)
        logger.info("Member %s removed", member_id)
