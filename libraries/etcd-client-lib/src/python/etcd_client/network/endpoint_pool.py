"""Ordered pool of cluster endpoints with a shared failover cursor."""

from __future__ import annotations

import logging
import threading
from typing import Iterable

from ..exceptions import PreconditionError

logger = logging.getLogger(__name__)


class EndpointPool:
    """Ordered, non-empty set of base URLs.

    The pool never drops an endpoint: failures are treated as
    transient and only move the cursor. All methods are safe to call
    from concurrent tasks and threads.

    Parameters:
        endpoints: Base URLs such as ``"http://10.0.0.1:2379"``.
    """

    def __init__(self, endpoints: Iterable[str]) -> None:
        self._lock = threading.Lock()
        self._endpoints = self._normalize(endpoints)
        self._cursor = 0

    # ── Public API ────────────────────────────────────────────────

    def current(self) -> str:
        """Return the active endpoint."""
        with self._lock:
            return self._endpoints[self._cursor]

    def advance(self, failed: str | None = None) -> str:
        """Rotate to the next endpoint and return it.

        When *failed* is given the rotation only happens if the cursor
        still points at it, so concurrent failovers away from the same
        endpoint rotate once instead of skipping healthy members.
        """
        with self._lock:
            if failed is None or self._endpoints[self._cursor] == failed:
                self._cursor = (self._cursor + 1) % len(self._endpoints)
                logger.debug("Endpoint cursor advanced to %s", self._endpoints[self._cursor])
            return self._endpoints[self._cursor]

    def rotation(self) -> tuple[str, ...]:
        """Snapshot of the endpoints in try order, starting at the cursor."""
        with self._lock:
            return self._endpoints[self._cursor:] + self._endpoints[: self._cursor]

    def reset(self) -> None:
        """Point the cursor back at the first endpoint."""
        with self._lock:
            self._cursor = 0

    def size(self) -> int:
        with self._lock:
            return len(self._endpoints)

    @property
    def endpoints(self) -> tuple[str, ...]:
        """Snapshot of the endpoints in order."""
        with self._lock:
            return self._endpoints

    def replace(self, endpoints: Iterable[str]) -> None:
        """Swap in a new endpoint list, keeping the cursor on the same
        endpoint when it is still present."""
        new_endpoints = self._normalize(endpoints)
        with self._lock:
            active = self._endpoints[self._cursor]
            self._endpoints = new_endpoints
            self._cursor = new_endpoints.index(active) if active in new_endpoints else 0
        logger.info("Endpoint pool replaced: %s", ", ".join(new_endpoints))

    def __len__(self) -> int:
        return self.size()

    def __repr__(self) -> str:
        return f"EndpointPool(endpoints={list(self.endpoints)!r}, current={self.current()!r})"

    # ── Private ───────────────────────────────────────────────────

    @staticmethod
    def _normalize(endpoints: Iterable[str]) -> tuple[str, ...]:
        result: list[str] = []
        for endpoint in endpoints:
            endpoint = endpoint.strip().rstrip("/")
            if not endpoint.startswith(("http://", "https://")):
                raise PreconditionError(f"Endpoint must be an http(s) URL: {endpoint!r}")
            if endpoint not in result:
                result.append(endpoint)
        if not result:
            raise PreconditionError("At least one endpoint is required.")
        return tuple(result)
