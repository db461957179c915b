"""Tunnel state and result models."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from ..common.utils import format_address


class AuthMode(str, Enum):
    """Credential type used to authenticate against the SSH server."""

    PASSWORD = "password"
    PUBLICKEY = "publickey"


class HostKeyPolicy(str, Enum):
    """What to do with a server host key that is not yet trusted."""

    STRICT = "strict"  # Reject unknown keys
    ACCEPT_NEW = "accept-new"  # Trust on first use, remember the key
    PROMPT = "prompt"  # Ask the caller through a confirmation callback


class TunnelState(str, Enum):
    """Tunnel manager lifecycle states, in startup order."""

    UNINITIALIZED = "uninitialized"
    RUNTIME_READY = "runtime_ready"
    CONNECTED = "connected"
    SESSION_ACTIVE = "session_active"
    LISTENING = "listening"
    RUNNING = "running"
    STOPPED = "stopped"


class TunnelEndpoint(BaseModel):
    """Local address the database driver connects to."""

    model_config = ConfigDict(frozen=True)

    host: str = Field(min_length=1, description="Local bind address")
    port: int = Field(ge=1, le=65535, description="Local listening port")

    @property
    def address(self) -> str:
        """Endpoint as ``host:port``."""
        return format_address(self.host, self.port)


class ForwarderStats(BaseModel):
    """Counters for one forwarded client connection."""

    connection_id: int = Field(ge=0, description="Sequential connection number")
    client_address: str = Field(description="Peer address of the local client")
    bytes_up: int = Field(default=0, ge=0, description="Client to remote bytes")
    bytes_down: int = Field(default=0, ge=0, description="Remote to client bytes")
    opened_at: datetime = Field(default_factory=datetime.now)
    closed_at: datetime | None = Field(default=None)
    error: str | None = Field(default=None, description="Error that ended the relay")

    @property
    def is_open(self) -> bool:
        return self.closed_at is None
