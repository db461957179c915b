"""dbtunnel - reach a private database through an SSH tunnel."""

from .api import managed_tunnel, open_tunnel
from .common.exceptions import (
    AuthFailed,
    BindFailed,
    ChannelOpenFailed,
    ConnectFailed,
    HandshakeFailed,
    HostKeyVerificationFailed,
    InvalidConfig,
    ListenFailed,
    NoSupportedAuthMethod,
    SessionInitFailed,
    TimeoutExceeded,
    TunnelError,
    TunnelManagerError,
)
from .common.logging import get_logger, setup_logging
from .common.utils import mask_sensitive_data, sanitize_log_data, validate_port
from .tunnel import (
    AuthMode,
    ForwarderStats,
    HostKeyPolicy,
    HostKeyVerifier,
    TunnelConfig,
    TunnelEndpoint,
    TunnelManager,
    TunnelOptions,
    TunnelState,
    format_fingerprint,
)

# Setup logging on package initialization
setup_logging(level="INFO")

# Package level logger
logger = get_logger(__name__)

__version__ = "0.1.0"


__all__ = [
    # High-level API
    "open_tunnel",
    "managed_tunnel",
    # Tunnel
    "TunnelManager",
    "TunnelConfig",
    "TunnelOptions",
    "TunnelEndpoint",
    "TunnelState",
    "ForwarderStats",
    "AuthMode",
    "HostKeyPolicy",
    "HostKeyVerifier",
    "format_fingerprint",
    # Exceptions
    "TunnelError",
    "InvalidConfig",
    "ConnectFailed",
    "BindFailed",
    "ListenFailed",
    "SessionInitFailed",
    "HandshakeFailed",
    "HostKeyVerificationFailed",
    "NoSupportedAuthMethod",
    "AuthFailed",
    "ChannelOpenFailed",
    "TimeoutExceeded",
    "TunnelManagerError",
    # Utilities
    "get_logger",
    "setup_logging",
    "validate_port",
    "mask_sensitive_data",
    "sanitize_log_data",
]
