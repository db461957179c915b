"""Tunnel configuration models."""

import ipaddress
from pathlib import Path
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from ..common.exceptions import InvalidConfig
from ..common.utils import format_address, sanitize_log_data, validate_non_empty_string
from .hostkeys import normalize_fingerprint
from .models import AuthMode, HostKeyPolicy


class TunnelConfig(BaseModel):
    """Endpoints and credentials for one SSH tunnel.

    Immutable once constructed. Exactly one authentication mode is selected
    and the fields it needs are non-empty: password mode requires
    ``password``, publickey mode requires both key file paths.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    # Local side
    local_host: str = Field(default="127.0.0.1", min_length=1, description="Local bind address")
    local_port: int = Field(ge=0, le=65535, description="Local bind port (0 = ephemeral)")

    # SSH server
    server_host: str = Field(min_length=1, description="SSH server address")
    server_port: int = Field(default=22, ge=1, le=65535, description="SSH server port")
    username: str = Field(min_length=1, description="SSH username")

    # Credentials
    auth_mode: AuthMode = Field(description="Authentication mode")
    password: str = Field(default="", repr=False, description="Password, empty = unset")
    private_key_path: Path | None = Field(default=None, description="Private key file")
    public_key_path: Path | None = Field(default=None, description="Public key file")
    passphrase: str = Field(default="", repr=False, description="Key passphrase, empty = unset")

    # Target, resolved from the SSH server's network
    remote_host: str = Field(min_length=1, description="Remote target host")
    remote_port: int = Field(ge=1, le=65535, description="Remote target port")

    # Host key trust
    host_key_policy: HostKeyPolicy = Field(default=HostKeyPolicy.STRICT)
    known_hosts_path: Path | None = Field(default=None, description="known_hosts file")
    host_key_fingerprints: tuple[str, ...] = Field(
        default=(), description="Pinned SHA256:/MD5: fingerprints"
    )

    @field_validator("local_host", "server_host", "remote_host", "username")
    @classmethod
    def validate_no_whitespace(cls, v: str) -> str:
        """Hosts and user names are single tokens."""
        v = validate_non_empty_string(v, "Value")
        if any(c.isspace() for c in v):
            raise ValueError("must not contain whitespace")
        return v

    @field_validator("local_host")
    @classmethod
    def validate_loopback(cls, v: str) -> str:
        """The local endpoint is only reachable from this machine."""
        if v.lower() == "localhost":
            return v
        try:
            loopback = ipaddress.ip_address(v).is_loopback
        except ValueError:
            loopback = False
        if not loopback:
            raise ValueError(f"local_host must be a loopback address, got {v!r}")
        return v

    @field_validator("private_key_path", "public_key_path", "known_hosts_path")
    @classmethod
    def expand_path(cls, v: Path | None) -> Path | None:
        """Expand ``~`` in file paths; an empty path means unset."""
        if v is None or str(v).strip() in ("", "."):
            return None
        return v.expanduser()

    @field_validator("host_key_fingerprints")
    @classmethod
    def validate_fingerprints(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        """Normalize pinned fingerprints."""
        return tuple(normalize_fingerprint(fp) for fp in v)

    @model_validator(mode="after")
    def validate_auth_fields(self) -> "TunnelConfig":
        """Ensure the selected auth mode has what it needs."""
        if self.auth_mode == AuthMode.PASSWORD:
            if not self.password:
                raise ValueError("password authentication requires a password")
        elif self.private_key_path is None or self.public_key_path is None:
            raise ValueError(
                "publickey authentication requires both private_key_path and public_key_path"
            )
        return self

    @classmethod
    def validated(cls, data: dict[str, Any]) -> "TunnelConfig":
        """Build a config from raw settings, raising the tunnel error type.

        Raises:
            InvalidConfig: If any field or invariant is violated
        """
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise InvalidConfig(f"Invalid tunnel configuration: {e}") from e

    @property
    def server_address(self) -> str:
        return format_address(self.server_host, self.server_port)

    @property
    def remote_address(self) -> str:
        return format_address(self.remote_host, self.remote_port)

    def log_fields(self) -> dict[str, Any]:
        """Configuration as log-safe key/values with secrets masked."""
        return sanitize_log_data(self.model_dump(mode="json"))


class TunnelOptions(BaseModel):
    """Timeouts and limits applied to a tunnel manager."""

    model_config = ConfigDict(validate_assignment=True, extra="forbid")

    connect_timeout: float = Field(default=15.0, ge=0.1, le=300.0, description="TCP connect timeout")
    handshake_timeout: float = Field(default=15.0, ge=0.1, le=300.0, description="SSH negotiation timeout")
    auth_timeout: float = Field(default=15.0, ge=0.1, le=300.0, description="Authentication timeout")
    channel_open_timeout: float = Field(default=15.0, ge=0.1, le=300.0, description="Channel open timeout")
    shutdown_grace_period: float = Field(default=5.0, ge=0.1, le=60.0, description="Forwarder stop timeout")
    poll_interval: float = Field(default=0.5, ge=0.01, le=5.0, description="Accept/relay wake-up interval")

    listen_backlog: int = Field(default=2, ge=1, le=128, description="Listen queue length")
    max_connections: int = Field(default=64, ge=1, le=1024, description="Concurrent client limit")
    keepalive_interval: int = Field(default=0, ge=0, le=3600, description="SSH keepalive seconds, 0 = off")
    buffer_size: int = Field(default=32768, ge=1024, le=1048576, description="Relay read size")
