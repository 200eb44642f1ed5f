"""Exception hierarchy for the etcd v2 client."""

from __future__ import annotations

from typing import Any


class EtcdClientError(Exception):
    """Base exception for all etcd client errors."""

    def __init__(self, message: str = "") -> None:
        self.message = message
        super().__init__(message)


# ── Client-side Validation ────────────────────────────────────────

class PreconditionError(EtcdClientError):
    """Raised when arguments are rejected before any network call."""


# ── Transport Errors ──────────────────────────────────────────────

class TransportError(EtcdClientError):
    """Raised when a single HTTP exchange with an endpoint fails."""

    def __init__(self, endpoint: str, reason: str = "") -> None:
        self.endpoint = endpoint
        self.reason = reason
        msg = f"Request to {endpoint} failed."
        if reason:
            msg += f" Reason: {reason}"
        super().__init__(msg)


class TransportConnectionError(TransportError):
    """Raised when a connection (or TLS handshake) cannot be established."""

    def __init__(self, endpoint: str, reason: str = "") -> None:
        super().__init__(endpoint, reason=reason or "Connection refused or unreachable")


class TransportTimeoutError(TransportError):
    """Raised when no response arrives within the read timeout."""

    def __init__(self, endpoint: str, timeout: float | None = None) -> None:
        self.timeout = timeout
        if timeout is None:
            reason = "Timed out"
        else:
            reason = f"Timed out after {timeout:.1f}s"
        super().__init__(endpoint, reason=reason)


class AllEndpointsFailedError(EtcdClientError):
    """Raised when every endpoint in the pool failed at the transport level."""

    def __init__(self, errors: dict[str, Exception]) -> None:
        self.errors = dict(errors)
        details = "; ".join(f"{endpoint}: {error}" for endpoint, error in self.errors.items())
        super().__init__(f"All {len(self.errors)} endpoint(s) failed. {details}")


# ── Decoding Errors ───────────────────────────────────────────────

class DecodingError(EtcdClientError):
    """Raised when a response body matches neither the success nor the error shape."""

    def __init__(self, status_code: int, body: bytes, reason: str = "") -> None:
        self.status_code = status_code
        self.body = body
        excerpt = body[:200].decode("utf-8", errors="replace")
        msg = f"Could not decode response with status {status_code}: {excerpt!r}."
        if reason:
            msg += f" Reason: {reason}"
        super().__init__(msg)


class UnexpectedStatusError(EtcdClientError):
    """Raised by endpoints that reply with a bare status and no error envelope."""

    def __init__(self, status_code: int, path: str = "") -> None:
        self.status_code = status_code
        self.path = path
        super().__init__(f"Unexpected status {status_code} for '{path}'.")


# ── Service Errors ────────────────────────────────────────────────

class ServiceError(EtcdClientError):
    """A well-formed error envelope returned by the service.

    Attributes:
        error_code: The service-defined numeric code.
        cause: The key (or index) the error refers to.
        index: The cluster index at the time of the error.
        status_code: The HTTP status of the response.
    """

    error_code: int = 0

    def __init__(
        self,
        message: str,
        error_code: int | None = None,
        cause: str | None = None,
        index: int | None = None,
        status_code: int = 0,
    ) -> None:
        if error_code is not None:
            self.error_code = error_code
        self.cause = cause
        self.index = index
        self.status_code = status_code
        msg = f"[{self.error_code}] {message}"
        if cause:
            msg += f" ({cause})"
        super().__init__(msg)
        self.message = message

    @staticmethod
    def from_envelope(envelope: dict[str, Any], status_code: int = 0) -> ServiceError:
        """Build the registered subclass for the envelope's ``errorCode``."""
        code = int(envelope.get("errorCode") or 0)
        error_class = _ERROR_CODE_CLASSES.get(code, ServiceError)
        return error_class(
            message=envelope.get("message", ""),
            error_code=code,
            cause=envelope.get("cause"),
            index=envelope.get("index"),
            status_code=status_code,
        )


class KeyNotFoundError(ServiceError):
    error_code = 100


class CompareFailedError(ServiceError):
    error_code = 101


class NotAFileError(ServiceError):
    error_code = 102


class NotADirError(ServiceError):
    error_code = 104


class NodeExistError(ServiceError):
    error_code = 105


class RootReadOnlyError(ServiceError):
    error_code = 107


class DirNotEmptyError(ServiceError):
    error_code = 108


class PermissionDeniedError(ServiceError):
    error_code = 110


class WatcherClearedError(ServiceError):
    error_code = 400


class IndexTooOldError(ServiceError):
    """The requested watch index has been compacted out of the event history.

    Restart the watch from a fresh index obtained with a ``get``.
    """

    error_code = 401


_ERROR_CODE_CLASSES: dict[int, type[ServiceError]] = {
    cls.error_code: cls
    for cls in (
        KeyNotFoundError,
        CompareFailedError,
        NotAFileError,
        NotADirError,
        NodeExistError,
        RootReadOnlyError,
        DirNotEmptyError,
        PermissionDeniedError,
        WatcherClearedError,
        IndexTooOldError,
    )
}


# ── Lock Errors ───────────────────────────────────────────────────

class LockHeldError(EtcdClientError):
    """Raised by a non-blocking acquire when another holder owns the lock."""

    def __init__(self, name: str, holder: str | None = None) -> None:
        self.name = name
        self.holder = holder
        msg = f"Lock '{name}' is held by another holder."
        if holder:
            msg += f" Holder: {holder}"
        super().__init__(msg)


class LockAcquireTimeoutError(EtcdClientError):
    """Raised when a blocking acquire does not succeed within its timeout."""

    def __init__(self, name: str, timeout: float) -> None:
        self.name = name
        self.timeout = timeout
        super().__init__(f"Failed to acquire lock '{name}' within {timeout:.1f}s.")


class LockLostError(EtcdClientError):
    """Raised when the key backing a lock expired or was removed by another actor."""

    def __init__(self, name: str, key: str, reason: str = "") -> None:
        self.name = name
        self.key = key
        msg = f"Lock '{name}' lost: key '{key}' no longer matches this holder."
        if reason:
            msg += f" Reason: {reason}"
        super().__init__(msg)
