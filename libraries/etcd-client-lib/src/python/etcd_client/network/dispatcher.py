"""Request dispatcher: failover across endpoints and response decoding.

Connectivity problems are retried on the next endpoint. Application
outcomes (error envelopes) and undecodable bodies are returned to the
caller on the first attempt: the dispatcher never re-sends a request
the service has already answered.
"""

from __future__ import annotations

import json
import logging
from http import HTTPStatus
from time import time
from typing import Any

from prometheus_client import Counter, Histogram
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from ..exceptions import (
    AllEndpointsFailedError,
    DecodingError,
    ServiceError,
    TransportError,
    TransportTimeoutError,
    UnexpectedStatusError,
)
from ..models import ClusterInfo, ServiceErrorEnvelope
from .endpoint_pool import EndpointPool
from .transport import Transport, TransportResponse

logger = logging.getLogger(__name__)

REQUEST_COUNTER = Counter("etcd_client_requests_total", "Total number of requests dispatched", ["method"])
REQUEST_DURATION_HISTOGRAM = Histogram("etcd_client_request_duration_seconds", "Duration of dispatched requests in seconds", ["method"])
REQUEST_ERROR_COUNTER = Counter("etcd_client_request_errors_total", "Total number of requests that ended in an error", ["method", "kind"])
FAILOVER_COUNTER = Counter("etcd_client_failovers_total", "Total number of endpoint failovers", ["method"])


class RequestSpec(BaseModel):
    """Everything needed to issue one protocol request."""

    model_config = ConfigDict(frozen=True)

    method: str
    """HTTP method."""

    path: str
    """Path appended to the endpoint base URL, e.g. ``/v2/keys/foo``."""

    params: dict[str, str] = Field(default_factory=dict)
    """Query string parameters."""

    form: dict[str, str] | None = None
    """Url-encoded form body."""

    json_body: Any = None
    """JSON body."""

    success: frozenset[int] = frozenset({HTTPStatus.OK})
    """Status codes whose body is decoded as the success model."""

    timeout: float | None = None
    """Read timeout override in seconds."""

    long_poll: bool = False
    """Read timeouts are expected: surface them without failing over."""

    error_envelope: bool = True
    """Non-success bodies carry an error envelope; otherwise only the status is reported."""


class DecodedResponse(BaseModel):
    """A successfully decoded response."""

    status_code: int
    data: Any
    cluster_info: ClusterInfo
    endpoint: str


class RequestDispatcher:
    """Sends :class:`RequestSpec` s through a :class:`Transport` with
    failover across an :class:`EndpointPool`.

    Parameters:
        pool: The shared endpoint pool.
        transport: The transport used for every attempt.
    """

    def __init__(self, pool: EndpointPool, transport: Transport) -> None:
        self._pool = pool
        self._transport = transport
        self._adapters: dict[Any, TypeAdapter] = {}

    @property
    def pool(self) -> EndpointPool:
        return self._pool

    # ── Public API ────────────────────────────────────────────────

    async def execute(self, spec: RequestSpec, model: Any = None) -> DecodedResponse:
        """Send *spec*, failing over until one endpoint answers.

        Args:
            spec: The request to send.
            model: Type the success body is validated against. ``None``
                skips body decoding (used for empty success bodies).

        Returns:
            The decoded response.

        Raises:
            ServiceError: The service answered with an error envelope.
            DecodingError: The body could not be decoded.
            TransportTimeoutError: A long-poll request timed out.
            AllEndpointsFailedError: Every endpoint failed to answer.
        """
        start_time: float = time()
        REQUEST_COUNTER.labels(method=spec.method).inc()
        errors: dict[str, Exception] = {}
        try:
            # Every endpoint at most once per call.
            for attempt, endpoint in enumerate(self._pool.rotation()):
                try:
                    raw = await self._send(endpoint, spec)
                except TransportError as exc:
                    if spec.long_poll and isinstance(exc, TransportTimeoutError):
                        raise
                    errors[endpoint] = exc
                    self._failover(endpoint, spec, attempt, exc)
                    continue
                return self._decode(endpoint, spec, raw, model)

            raise AllEndpointsFailedError(errors)
        except Exception as e:
            REQUEST_ERROR_COUNTER.labels(method=spec.method, kind=e.__class__.__name__).inc()
            raise
        finally:
            REQUEST_DURATION_HISTOGRAM.labels(method=spec.method).observe(time() - start_time)

    async def execute_on(self, endpoint: str, spec: RequestSpec, model: Any = None) -> DecodedResponse:
        """Send *spec* to one specific endpoint, without failover."""
        REQUEST_COUNTER.labels(method=spec.method).inc()
        try:
            raw = await self._send(endpoint, spec)
            return self._decode(endpoint, spec, raw, model)
        except Exception as e:
            REQUEST_ERROR_COUNTER.labels(method=spec.method, kind=e.__class__.__name__).inc()
            raise

    # ── Private ───────────────────────────────────────────────────

    async def _send(self, endpoint: str, spec: RequestSpec) -> TransportResponse:
        url = f"{endpoint}{spec.path}"
        logger.debug("[EXTERNAL] %s %s params=%s form=%s", spec.method, url, spec.params, spec.form)
        return await self._transport.send(
            spec.method,
            url,
            params=spec.params or None,
            data=spec.form,
            json=spec.json_body,
            timeout=spec.timeout,
        )

    def _failover(self, endpoint: str, spec: RequestSpec, attempt: int, error: Exception) -> None:
        next_endpoint = self._pool.advance(endpoint)
        FAILOVER_COUNTER.labels(method=spec.method).inc()
        logger.warning(
            "%s %s failed on %s (attempt %d/%d), failing over to %s: %s",
            spec.method,
            spec.path,
            endpoint,
            attempt + 1,
            self._pool.size(),
            next_endpoint,
            error,
        )

    def _decode(self, endpoint: str, spec: RequestSpec, raw: TransportResponse, model: Any) -> DecodedResponse:
        cluster_info = ClusterInfo.from_headers(raw.headers)

        if raw.status_code in spec.success:
            if spec.long_poll and not raw.content.strip():
                # The member closed an idle long-poll without an event.
                raise TransportTimeoutError(endpoint, spec.timeout)
            data: Any = None
            if model is not None:
                try:
                    data = self._adapter(model).validate_json(raw.content)
                except ValidationError as exc:
                    raise DecodingError(raw.status_code, raw.content, reason=str(exc)) from exc
            logger.debug("Full Response: <%s | %s>", raw.status_code, data)
            return DecodedResponse(
                status_code=raw.status_code,
                data=data,
                cluster_info=cluster_info,
                endpoint=endpoint,
            )

        if not spec.error_envelope:
            raise UnexpectedStatusError(raw.status_code, spec.path)
        raise self._decode_error(raw)

    def _decode_error(self, raw: TransportResponse) -> ServiceError:
        try:
            envelope = ServiceErrorEnvelope.model_validate(json.loads(raw.content))
        except (ValueError, ValidationError) as exc:
            raise DecodingError(raw.status_code, raw.content, reason="not an error envelope") from exc
        error = ServiceError.from_envelope(envelope.model_dump(by_alias=True), status_code=raw.status_code)
        logger.debug("Full Response: <%s | %s>", raw.status_code, error)
        return error

    def _adapter(self, model: Any) -> TypeAdapter:
        adapter = self._adapters.get(model)
        if adapter is None:
            adapter = TypeAdapter(model)
            self._adapters[model] = adapter
        return adapter
