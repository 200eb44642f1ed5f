"""Statistics, health and version of cluster members.

Leader statistics are a cluster-wide view and are fetched with
failover. Everything else describes a single member, so it is fetched
from every endpoint concurrently and reported per endpoint.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from ..models import Health, LeaderStats, SelfStats, StoreStats, VersionInfo
from ..network.dispatcher import RequestDispatcher, RequestSpec

logger = logging.getLogger(__name__)

STATS_PATH = "/v2/stats"
HEALTH_PATH = "/health"
VERSION_PATH = "/version"


class StatsApi:
    """Per-member and cluster statistics.

    Parameters:
        dispatcher: Sends requests; its pool lists the members to query.
    """

    def __init__(self, dispatcher: RequestDispatcher) -> None:
        self._dispatcher = dispatcher

    async def leader_stats(self) -> LeaderStats:
        """Return the leader's view of its followers."""
        spec = RequestSpec(method="GET", path=f"{STATS_PATH}/leader")
        response = await self._dispatcher.execute(spec, LeaderStats)
        return response.data

    async def self_stats(self) -> dict[str, SelfStats | Exception]:
        """Return each member's statistics about itself."""
        return await self._each_endpoint(f"{STATS_PATH}/self", SelfStats)

    async def store_stats(self) -> dict[str, StoreStats | Exception]:
        """Return each member's key-space operation counters."""
        return await self._each_endpoint(f"{STATS_PATH}/store", StoreStats)

    async def health(self) -> dict[str, Health | Exception]:
        """Run the health check against every member."""
        return await self._each_endpoint(HEALTH_PATH, Health)

    async def versions(self) -> dict[str, VersionInfo | Exception]:
        """Return the server and cluster version reported by every member."""
        return await self._each_endpoint(VERSION_PATH, VersionInfo)

    async def _each_endpoint(self, path: str, model: Any) -> dict[str, Any]:
        endpoints = self._dispatcher.pool.endpoints
        spec = RequestSpec(method="GET", path=path)
        results = await asyncio.gather(
            *(self._dispatcher.execute_on(endpoint, spec, model) for endpoint in endpoints),
            return_exceptions=True,
        )

        per_endpoint: dict[str, Any] = {}
        for endpoint, result in zip(endpoints, results):
            if isinstance(result, Exception):
                logger.warning("GET %s failed on %s: %s", path, endpoint, result)
                per_endpoint[endpoint] = result
            elif isinstance(result, BaseException):
                raise result
            else:
                per_endpoint[endpoint] = result.data
        return per_endpoint
