"""SSH tunnel components: configuration, session, forwarding and manager."""

from .config import TunnelConfig, TunnelOptions
from .forwarder import ChannelForwarder
from .hostkeys import HostKeyVerifier, format_fingerprint, normalize_fingerprint
from .manager import TunnelManager
from .models import (
    AuthMode,
    ForwarderStats,
    HostKeyPolicy,
    TunnelEndpoint,
    TunnelState,
)
from .network import connect_outbound, listen_inbound
from .registry import ForwarderRegistry, ForwarderRegistryError
from .session import Session, SessionEstablisher, load_key_pair

__all__ = [
    # Configuration
    "TunnelConfig",
    "TunnelOptions",
    "AuthMode",
    "HostKeyPolicy",
    # Models
    "TunnelState",
    "TunnelEndpoint",
    "ForwarderStats",
    # Network
    "connect_outbound",
    "listen_inbound",
    # Session
    "Session",
    "SessionEstablisher",
    "load_key_pair",
    "HostKeyVerifier",
    "format_fingerprint",
    "normalize_fingerprint",
    # Forwarding
    "ChannelForwarder",
    "ForwarderRegistry",
    "ForwarderRegistryError",
    # Manager
    "TunnelManager",
]
