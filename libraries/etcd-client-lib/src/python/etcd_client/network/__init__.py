"""Networking: transports, the endpoint pool and the request dispatcher."""

from .dispatcher import DecodedResponse, RequestDispatcher, RequestSpec
from .endpoint_pool import EndpointPool
from .transport import HttpTransport, TlsTransport, Transport, TransportResponse, create_transport

__all__ = [
    "DecodedResponse",
    "EndpointPool",
    "HttpTransport",
    "RequestDispatcher",
    "RequestSpec",
    "TlsTransport",
    "Transport",
    "TransportResponse",
    "create_transport",
]
