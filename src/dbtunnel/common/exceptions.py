"""Custom exceptions for the SSH tunnel."""


class TunnelError(Exception):
    """Base exception for all tunnel errors.

    Attributes:
        phase: Startup phase or operation the error belongs to
    """

    phase = "tunnel"

    def __init__(self, message: str, *, phase: str | None = None):
        super().__init__(message)
        if phase is not None:
            self.phase = phase


class InvalidConfig(TunnelError):
    """Raised when tunnel configuration violates its invariants."""

    phase = "config"


class ConnectFailed(TunnelError):
    """Raised when the outbound TCP connection to the SSH server fails."""

    phase = "connect"


class BindFailed(TunnelError):
    """Raised when the local listen address cannot be bound."""

    phase = "bind"


class ListenFailed(TunnelError):
    """Raised when the bound local socket cannot enter listen state."""

    phase = "listen"


class SessionInitFailed(TunnelError):
    """Raised when the SSH session object cannot be created."""

    phase = "session"


class HandshakeFailed(TunnelError):
    """Raised when SSH transport negotiation fails.

    Attributes:
        code: Underlying protocol error as reported by the SSH engine
    """

    phase = "handshake"

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.code = code


class HostKeyVerificationFailed(TunnelError):
    """Raised when the server host key is unknown, untrusted or changed."""

    phase = "host_key"

    def __init__(self, message: str, fingerprint: str | None = None):
        super().__init__(message)
        self.fingerprint = fingerprint


class NoSupportedAuthMethod(TunnelError):
    """Raised when the server does not offer the configured auth mode."""

    phase = "authentication"

    def __init__(self, message: str, allowed: list[str] | None = None):
        super().__init__(message)
        self.allowed = allowed or []


class AuthFailed(TunnelError):
    """Raised when the server rejects the supplied credentials."""

    phase = "authentication"


class ChannelOpenFailed(TunnelError):
    """Raised when the server refuses to open a forwarding channel.

    Attributes:
        code: SSH channel open failure reason code, if known
    """

    phase = "channel"

    def __init__(self, message: str, code: int | None = None):
        super().__init__(message)
        self.code = code


class TimeoutExceeded(TunnelError):
    """Raised when a bounded operation does not finish in time."""

    phase = "timeout"

    def __init__(self, message: str, operation: str | None = None):
        super().__init__(message, phase=operation)
        self.operation = operation


class TunnelManagerError(TunnelError):
    """Raised for tunnel manager lifecycle misuse."""

    phase = "lifecycle"
