"""Common utilities and shared functionality."""

from .context import ResourceStack
from .exceptions import (
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
from .logging import get_logger, setup_logging
from .runtime import RUNTIME, Runtime, RuntimeHandle
from .utils import (
    MAX_PORT,
    MIN_PORT,
    format_address,
    mask_sensitive_data,
    sanitize_log_data,
    validate_non_empty_string,
    validate_port,
)

__all__ = [
    # Resources
    "ResourceStack",
    "RUNTIME",
    "Runtime",
    "RuntimeHandle",
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
    # Logging
    "get_logger",
    "setup_logging",
    # Utils
    "validate_port",
    "validate_non_empty_string",
    "format_address",
    "mask_sensitive_data",
    "sanitize_log_data",
    "MIN_PORT",
    "MAX_PORT",
]
