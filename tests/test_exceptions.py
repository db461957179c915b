"""Tests for the tunnel error taxonomy."""

import pytest

from dbtunnel import (
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


class TestTunnelErrors:
    """Each startup failure is its own catchable kind."""

    @pytest.mark.parametrize(
        ("error_class", "phase"),
        [
            (InvalidConfig, "config"),
            (ConnectFailed, "connect"),
            (BindFailed, "bind"),
            (ListenFailed, "listen"),
            (SessionInitFailed, "session"),
            (HandshakeFailed, "handshake"),
            (HostKeyVerificationFailed, "host_key"),
            (NoSupportedAuthMethod, "authentication"),
            (AuthFailed, "authentication"),
            (ChannelOpenFailed, "channel"),
            (TunnelManagerError, "lifecycle"),
        ],
    )
    def test_phase_and_base_class(self, error_class, phase):
        error = error_class("boom")
        assert isinstance(error, TunnelError)
        assert error.phase == phase
        assert str(error) == "boom"

    def test_auth_errors_are_distinct(self):
        """Unsupported method and rejected credentials are told apart."""
        assert not issubclass(NoSupportedAuthMethod, AuthFailed)
        assert not issubclass(AuthFailed, NoSupportedAuthMethod)

    def test_timeout_carries_operation(self):
        error = TimeoutExceeded("too slow", operation="handshake")
        assert error.operation == "handshake"
        assert error.phase == "handshake"
        assert TimeoutExceeded("too slow").phase == "timeout"

    def test_error_details(self):
        assert HandshakeFailed("x", code="kex failed").code == "kex failed"
        assert ChannelOpenFailed("x", code=2).code == 2
        assert NoSupportedAuthMethod("x", allowed=["publickey"]).allowed == ["publickey"]
        assert NoSupportedAuthMethod("x").allowed == []
        assert HostKeyVerificationFailed("x", fingerprint="SHA256:abc").fingerprint == "SHA256:abc"

    def test_phase_override(self):
        assert TunnelError("x", phase="custom").phase == "custom"
        assert TunnelError("x").phase == "tunnel"
