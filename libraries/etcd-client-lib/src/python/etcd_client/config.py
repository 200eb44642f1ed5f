"""Client configuration.

Settings are plain Pydantic models so they can be built in code or
loaded from a YAML file shaped like::

    etcd:
      client:
        endpoints: ["https://10.0.0.1:2379", "https://10.0.0.2:2379"]
        username: root
        password: secret
        tls:
          ca_cert: /etc/etcd/ca.pem
          client_cert: /etc/etcd/client.pem
          client_key: /etc/etcd/client-key.pem
        request_timeout: 10.0
        watch_timeout: 60.0
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

logger = logging.getLogger(__name__)


class TlsConfig(BaseModel):
    """Trust anchors and client identity for TLS connections."""

    ca_cert: str | None = None
    """PEM file with the CA(s) to trust. ``None`` uses the system store."""

    client_cert: str | None = None
    """PEM client certificate for mutual TLS."""

    client_key: str | None = None
    """PEM private key for ``client_cert`` (may be bundled in the cert file)."""

    key_password: str | None = None
    """Password protecting ``client_key``, if any."""

    @model_validator(mode="after")
    def _check_identity(self) -> TlsConfig:
        if self.client_key is not None and self.client_cert is None:
            raise ValueError("tls.client_key requires tls.client_cert")
        return self


class ClientConfig(BaseModel):
    """Connection settings for :class:`~etcd_client.EtcdClient`."""

    endpoints: list[str] = Field(default_factory=lambda: ["http://127.0.0.1:2379"], min_length=1)
    """Base URLs of cluster members, tried in order on failure."""

    username: str | None = None
    """Username for HTTP basic auth."""

    password: str | None = None
    """Password for HTTP basic auth."""

    tls: TlsConfig | None = None
    """TLS settings. TLS is also used when any endpoint is ``https://``."""

    request_timeout: float = 10.0
    """Read timeout in seconds for regular requests."""

    connect_timeout: float = 5.0
    """Timeout in seconds for establishing a connection."""

    watch_timeout: float = 60.0
    """Read timeout for long-poll watch requests; on expiry the watch re-polls."""

    lock_prefix: str = "/_locks"
    """Directory under which lock candidates are created."""

    election_prefix: str = "/_elections"
    """Directory under which election keys live."""

    @field_validator("endpoints")
    @classmethod
    def _strip_endpoints(cls, endpoints: list[str]) -> list[str]:
        return [endpoint.strip().rstrip("/") for endpoint in endpoints]

    @field_validator("lock_prefix", "election_prefix")
    @classmethod
    def _check_prefix(cls, prefix: str) -> str:
        if not prefix.startswith("/"):
            raise ValueError(f"prefix must start with '/': {prefix!r}")
        return prefix.rstrip("/")

    @model_validator(mode="after")
    def _check_credentials(self) -> ClientConfig:
        if (self.username is None) != (self.password is None):
            raise ValueError("username and password must be given together")
        return self

    @property
    def basic_auth(self) -> tuple[str, str] | None:
        if self.username is None or self.password is None:
            return None
        return (self.username, self.password)

    @property
    def uses_tls(self) -> bool:
        return self.tls is not None or any(e.startswith("https://") for e in self.endpoints)

    @staticmethod
    def from_yaml(path: str | Path) -> ClientConfig:
        """Load the ``etcd.client`` section of a YAML file.

        Raises:
            FileNotFoundError: If *path* does not exist.
        """
        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found at: {config_path}")

        with open(config_path, "r") as f:
            raw_config = yaml.safe_load(f) or {}

        client_config = raw_config.get("etcd", {}).get("client", {})
        config = ClientConfig.model_validate(client_config)

        logger.info("ClientConfig loaded from %s (%d endpoint(s))", config_path, len(config.endpoints))
        return config
