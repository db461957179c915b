"""SSH session establishment and the authenticated session handle."""

import socket
import threading
import time
from pathlib import Path

import paramiko

from ..common.exceptions import (
    AuthFailed,
    ChannelOpenFailed,
    HandshakeFailed,
    InvalidConfig,
    NoSupportedAuthMethod,
    SessionInitFailed,
    TimeoutExceeded,
)
from ..common.logging import get_logger
from ..common.utils import format_address
from .config import TunnelConfig, TunnelOptions
from .hostkeys import HostKeyVerifier
from .models import AuthMode

logger = get_logger(__name__)

CERT_SUFFIX = "-cert-v01@openssh.com"


class Session:
    """One authenticated SSH connection over one outbound socket.

    The session owns the socket. paramiko's transport thread serializes all
    packet writes, so forwarders may open and use channels concurrently;
    the session lock only orders channel opens against ``close()``.
    """

    def __init__(
        self,
        transport: paramiko.Transport,
        sock: socket.socket,
        server_host: str,
        server_port: int,
        fingerprint: str,
    ):
        self._transport = transport
        self._sock = sock
        self.server_host = server_host
        self.server_port = server_port
        self.fingerprint = fingerprint
        self._lock = threading.Lock()
        self._closed = False

    @property
    def is_active(self) -> bool:
        """True while the SSH transport is connected and authenticated."""
        return (
            not self._closed
            and self._transport.is_active()
            and self._transport.is_authenticated()
        )

    @property
    def transport(self) -> paramiko.Transport:
        return self._transport

    def open_channel(
        self,
        remote_host: str,
        remote_port: int,
        origin: tuple[str, int],
        timeout: float | None = None,
    ) -> paramiko.Channel:
        """Ask the server to connect to ``remote_host:remote_port`` for us.

        Args:
            remote_host: Target host as resolved by the SSH server
            remote_port: Target port
            origin: Address of the local client the channel serves
            timeout: Seconds to wait for the server's answer

        Returns:
            Open ``direct-tcpip`` channel

        Raises:
            ChannelOpenFailed: If the session is gone or the server refuses
            TimeoutExceeded: If the server does not answer in time
        """
        target = format_address(remote_host, remote_port)
        with self._lock:
            if self._closed:
                raise ChannelOpenFailed(f"Cannot open channel to {target}: session closed")

        try:
            return self._transport.open_channel(
                "direct-tcpip",
                dest_addr=(remote_host, remote_port),
                src_addr=origin,
                timeout=timeout,
            )
        except paramiko.ChannelException as e:
            raise ChannelOpenFailed(
                f"Server refused channel to {target}: {e.text}", code=e.code
            ) from e
        except paramiko.SSHException as e:
            if "timeout" in str(e).lower():
                raise TimeoutExceeded(
                    f"Opening channel to {target} timed out", operation="channel_open"
                ) from e
            raise ChannelOpenFailed(f"Cannot open channel to {target}: {e}") from e
        except (EOFError, OSError) as e:
            raise ChannelOpenFailed(f"Cannot open channel to {target}: {e}") from e

    def close(self) -> None:
        """Disconnect the SSH transport and close the socket. Idempotent."""
        with self._lock:
            if self._closed:
                return
            self._closed = True

        self._transport.close()
        self._sock.close()
        logger.info(
            "Session closed",
            server=format_address(self.server_host, self.server_port),
        )

    def __enter__(self) -> "Session":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class SessionEstablisher:
    """Drives handshake, host key check and authentication on a socket."""

    def __init__(self, options: TunnelOptions, verifier: HostKeyVerifier):
        self.options = options
        self.verifier = verifier

    def establish(self, sock: socket.socket, config: TunnelConfig) -> Session:
        """Turn a connected socket into an authenticated session.

        Args:
            sock: Socket connected to the SSH server
            config: Tunnel configuration with credentials

        Returns:
            Authenticated session owning ``sock``

        Raises:
            SessionInitFailed: If the protocol session cannot be created
            HandshakeFailed: If key exchange or negotiation fails
            HostKeyVerificationFailed: If the server key is not trusted
            NoSupportedAuthMethod: If the server does not offer the auth mode
            AuthFailed: If the credentials are rejected
            TimeoutExceeded: If handshake or authentication takes too long
        """
        log = logger.bind(server=config.server_address, username=config.username)

        try:
            transport = paramiko.Transport(sock)
        except (paramiko.SSHException, OSError, ValueError) as e:
            log.error("Could not initialize SSH session", error=str(e))
            raise SessionInitFailed(f"Could not initialize SSH session: {e}") from e

        # the handshake wait below reports the timeout
        transport.banner_timeout = self.options.handshake_timeout + 1.0
        transport.auth_timeout = self.options.auth_timeout

        try:
            self._handshake(transport, config)
            fingerprint = self.verifier.verify(
                config.server_host,
                config.server_port,
                transport.get_remote_server_key(),
            )
            self._authenticate(transport, config)
        except BaseException:
            transport.close()
            raise

        if self.options.keepalive_interval:
            transport.set_keepalive(self.options.keepalive_interval)

        log.info("Session established", fingerprint=fingerprint)
        return Session(transport, sock, config.server_host, config.server_port, fingerprint)

    def _handshake(self, transport: paramiko.Transport, config: TunnelConfig) -> None:
        done = threading.Event()
        try:
            transport.start_client(event=done)
        except paramiko.SSHException as e:
            raise HandshakeFailed(f"SSH handshake failed: {e}", code=str(e)) from e

        # the transport thread may die without setting the event
        deadline = time.monotonic() + self.options.handshake_timeout
        while not done.wait(0.1) and transport.is_active():
            if time.monotonic() < deadline:
                continue
            raise TimeoutExceeded(
                f"SSH handshake with {config.server_address} timed out after "
                f"{self.options.handshake_timeout}s",
                operation="handshake",
            )

        if not transport.is_active():
            error = transport.get_exception()
            code = str(error) if error is not None else "negotiation failed"
            logger.error("SSH handshake failed", server=config.server_address, code=code)
            raise HandshakeFailed(
                f"Error when starting up SSH session: {code}", code=code
            ) from error

        logger.debug(
            "SSH handshake complete",
            server=config.server_address,
            remote_version=transport.remote_version,
        )

    def _authenticate(self, transport: paramiko.Transport, config: TunnelConfig) -> None:
        log = logger.bind(
            server=config.server_address,
            username=config.username,
            auth_mode=config.auth_mode.value,
        )

        allowed = self._query_methods(transport, config)
        if allowed is None:
            log.warning("Server accepted authentication without credentials")
            return
        log.info("Authentication methods", methods=",".join(allowed))

        try:
            if config.auth_mode == AuthMode.PASSWORD:
                remaining = self._auth_password(transport, config, allowed)
            else:
                remaining = self._auth_publickey(transport, config, allowed)
        except paramiko.BadAuthenticationType as e:
            raise NoSupportedAuthMethod(
                f"Server does not accept {config.auth_mode.value} authentication",
                allowed=list(e.allowed_types),
            ) from e
        except paramiko.AuthenticationException as e:
            raise self._auth_error(e, config) from e
        except (paramiko.SSHException, EOFError, OSError) as e:
            raise AuthFailed(f"Connection lost during authentication: {e}") from e

        if not transport.is_authenticated():
            log.error("Partial authentication", remaining=remaining)
            raise AuthFailed(
                "Server requires further authentication: " + ",".join(remaining or [])
            )
        log.info(f"Authentication by {config.auth_mode.value} succeeded")

    def _query_methods(
        self, transport: paramiko.Transport, config: TunnelConfig
    ) -> list[str] | None:
        """Return the server's auth methods, or None if 'none' auth succeeded."""
        try:
            transport.auth_none(config.username)
        except paramiko.BadAuthenticationType as e:
            return list(e.allowed_types)
        except paramiko.AuthenticationException as e:
            raise self._auth_error(e, config) from e
        except paramiko.SSHException as e:
            raise HandshakeFailed(
                f"Lost connection while querying auth methods: {e}", code=str(e)
            ) from e
        return None

    def _auth_password(
        self, transport: paramiko.Transport, config: TunnelConfig, allowed: list[str]
    ) -> list[str]:
        if "password" in allowed:
            return transport.auth_password(config.username, config.password, fallback=False)

        if "keyboard-interactive" in allowed:
            def answer(title: str, instructions: str, prompts: list) -> list[str]:
                return [config.password for _ in prompts]

            return transport.auth_interactive(config.username, answer)

        raise NoSupportedAuthMethod(
            "No supported authentication methods found: server does not accept passwords",
            allowed=allowed,
        )

    def _auth_publickey(
        self, transport: paramiko.Transport, config: TunnelConfig, allowed: list[str]
    ) -> list[str]:
        if "publickey" not in allowed:
            raise NoSupportedAuthMethod(
                "No supported authentication methods found: server does not accept keys",
                allowed=allowed,
            )

        if config.private_key_path is None or config.public_key_path is None:
            raise InvalidConfig(
                "publickey authentication requires both private_key_path and public_key_path"
            )
        pkey = load_key_pair(
            config.private_key_path, config.public_key_path, config.passphrase or None
        )
        return transport.auth_publickey(config.username, pkey)

    @staticmethod
    def _auth_error(error: Exception, config: TunnelConfig) -> Exception:
        if "timeout" in str(error).lower():
            return TimeoutExceeded(
                f"Authentication on {config.server_address} timed out",
                operation="authentication",
            )
        logger.error(
            f"Authentication by {config.auth_mode.value} failed",
            server=config.server_address,
            username=config.username,
        )
        return AuthFailed(
            f"Authentication by {config.auth_mode.value} failed for user "
            f"{config.username!r}: {error}"
        )


def load_key_pair(
    private_key_path: Path, public_key_path: Path, passphrase: str | None = None
) -> paramiko.PKey:
    """Load a private key and check it against its public key file.

    An OpenSSH certificate given as the public key file is attached to the
    private key instead of compared.

    Raises:
        AuthFailed: If a file cannot be read or decrypted, or the pair mismatches
    """
    try:
        pkey = paramiko.PKey.from_path(
            private_key_path, passphrase=passphrase.encode() if passphrase else None
        )
    except (paramiko.PasswordRequiredException, TypeError) as e:
        raise AuthFailed(f"Private key {private_key_path} requires a passphrase") from e
    except (OSError, paramiko.SSHException, ValueError) as e:
        raise AuthFailed(f"Cannot load private key {private_key_path}: {e}") from e

    try:
        blob = paramiko.PublicBlob.from_file(str(public_key_path))
    except (OSError, ValueError) as e:
        raise AuthFailed(f"Cannot read public key {public_key_path}: {e}") from e

    if blob.key_type.endswith(CERT_SUFFIX):
        try:
            pkey.load_certificate(str(public_key_path))
        except ValueError as e:
            raise AuthFailed(f"Certificate {public_key_path} does not match key: {e}") from e
    elif blob.key_blob != pkey.asbytes():
        raise AuthFailed(
            f"Public key {public_key_path} does not match private key {private_key_path}"
        )
    return pkey
