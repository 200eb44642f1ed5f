"""HTTP transports. One request, one attempt.

A :class:`Transport` turns an HTTP exchange into a
:class:`TransportResponse` or a :class:`~etcd_client.exceptions.TransportError`.
Retry and failover live in the dispatcher, never here.
"""

from __future__ import annotations

import abc
import logging
import ssl
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict

from ..config import ClientConfig, TlsConfig
from ..exceptions import TransportConnectionError, TransportError, TransportTimeoutError

logger = logging.getLogger(__name__)


class TransportResponse(BaseModel):
    """Raw outcome of a single HTTP exchange."""

    model_config = ConfigDict(frozen=True)

    status_code: int
    headers: dict[str, str]
    content: bytes


class Transport(abc.ABC):
    """Interface shared by the plain and TLS transports."""

    @abc.abstractmethod
    async def send(
        self,
        method: str,
        url: str,
        params: dict[str, str] | None = None,
        data: dict[str, str] | None = None,
        json: Any = None,
        timeout: float | None = None,
    ) -> TransportResponse:
        """Perform one HTTP request.

        Args:
            method: HTTP method.
            url: Absolute URL.
            params: Query string parameters.
            data: Form fields, sent url-encoded.
            json: JSON body (mutually exclusive with *data*).
            timeout: Read timeout override in seconds.

        Raises:
            TransportTimeoutError: If no response arrives in time.
            TransportConnectionError: On connect, TLS or protocol failure.
        """
        ...

    @abc.abstractmethod
    async def aclose(self) -> None:
        """Close pooled connections."""
        ...


class HttpTransport(Transport):
    """Plain HTTP transport backed by :class:`httpx.AsyncClient`.

    Parameters:
        config: Client settings (timeouts and basic auth are used).
        http_transport: Optional low-level httpx transport, e.g.
            :class:`httpx.MockTransport` in tests.
    """

    def __init__(
        self,
        config: ClientConfig,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config
        auth = httpx.BasicAuth(*config.basic_auth) if config.basic_auth else None
        self._http_client = httpx.AsyncClient(
            auth=auth,
            timeout=httpx.Timeout(config.request_timeout, connect=config.connect_timeout),
            verify=self._verify(),
            transport=http_transport,
        )

    def _verify(self) -> ssl.SSLContext | bool:
        return True

    async def send(
        self,
        method: str,
        url: str,
        params: dict[str, str] | None = None,
        data: dict[str, str] | None = None,
        json: Any = None,
        timeout: float | None = None,
    ) -> TransportResponse:
        request_timeout: Any = httpx.USE_CLIENT_DEFAULT
        if timeout is not None:
            request_timeout = httpx.Timeout(timeout, connect=self._config.connect_timeout)
        try:
            response = await self._http_client.request(
                method,
                url,
                params=params,
                data=data,
                json=json,
                timeout=request_timeout,
            )
        except httpx.ReadTimeout as exc:
            raise TransportTimeoutError(url, timeout or self._config.request_timeout) from exc
        except httpx.TransportError as exc:
            raise TransportConnectionError(url, reason=str(exc) or exc.__class__.__name__) from exc

        return TransportResponse(
            status_code=response.status_code,
            headers=dict(response.headers),
            content=response.content,
        )

    async def aclose(self) -> None:
        await self._http_client.aclose()


class TlsTransport(HttpTransport):
    """HTTPS transport with optional custom CA and client certificate."""

    def __init__(
        self,
        config: ClientConfig,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._tls = config.tls or TlsConfig()
        super().__init__(config, http_transport=http_transport)

    def _verify(self) -> ssl.SSLContext:
        return build_ssl_context(self._tls)


def build_ssl_context(tls: TlsConfig) -> ssl.SSLContext:
    """Create the SSL context for *tls*.

    Raises:
        TransportError: If the certificate files cannot be loaded.
    """
    try:
        context = ssl.create_default_context(cafile=tls.ca_cert)
        if tls.client_cert is not None:
            context.load_cert_chain(
                certfile=tls.client_cert,
                keyfile=tls.client_key,
                password=tls.key_password,
            )
    except (OSError, ssl.SSLError) as exc:
        raise TransportError("tls", reason=f"Cannot load TLS material: {exc}") from exc
    return context


def create_transport(
    config: ClientConfig,
    http_transport: httpx.AsyncBaseTransport | None = None,
) -> Transport:
    """Pick the transport variant for *config*."""
    if config.uses_tls:
        logger.debug("Using TLS transport (ca_cert=%s)", config.tls.ca_cert if config.tls else None)
        return TlsTransport(config, http_transport=http_transport)
    return HttpTransport(config, http_transport=http_transport)
