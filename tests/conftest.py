"""Shared pytest fixtures for SSH tunnel tests.

``ssh_server`` runs an in-process SSH server on paramiko's server mode. It
accepts ``direct-tcpip`` channels and connects them to the requested
destination, the way ``sshd`` does with TCP forwarding enabled.
"""

import select
import socket
import socketserver
import threading
from pathlib import Path

import paramiko
import pytest

from dbtunnel import AuthMode, TunnelConfig, TunnelOptions, format_fingerprint

USERNAME = "tester"
PASSWORD = "s3cret"


def _bridge(channel: paramiko.Channel, destination: tuple[str, int] | None) -> None:
    """Relay one accepted server-side channel to its destination."""
    if destination is None:
        channel.close()
        return
    try:
        target = socket.create_connection(destination, timeout=5)
    except OSError:
        channel.close()
        return

    try:
        while True:
            readable, _, _ = select.select([channel, target], [], [], 0.5)
            if channel in readable:
                data = channel.recv(32768)
                if not data:
                    break
                target.sendall(data)
            if target in readable:
                data = target.recv(32768)
                if not data:
                    break
                channel.sendall(data)
    except (OSError, EOFError, paramiko.SSHException):
        pass
    finally:
        channel.close()
        target.close()


class FixtureServerInterface(paramiko.ServerInterface):
    """Server policy for one connection to the fixture SSH server."""

    def __init__(self, server: "FixtureSSHServer"):
        self.server = server
        self.destinations: dict[int, tuple[str, int]] = {}

    def get_allowed_auths(self, username):
        return ",".join(self.server.auth_methods)

    def check_auth_password(self, username, password):
        self.server.stall(self.server.auth_delay)
        if (
            "password" in self.server.auth_methods
            and username == USERNAME
            and password == self.server.password
        ):
            return paramiko.AUTH_SUCCESSFUL
        return paramiko.AUTH_FAILED

    def check_auth_publickey(self, username, key):
        if (
            "publickey" in self.server.auth_methods
            and username == USERNAME
            and self.server.authorized_key is not None
            and key.asbytes() == self.server.authorized_key.asbytes()
        ):
            return paramiko.AUTH_SUCCESSFUL
        return paramiko.AUTH_FAILED

    def check_auth_interactive(self, username, submethods):
        if "keyboard-interactive" not in self.server.auth_methods or username != USERNAME:
            return paramiko.AUTH_FAILED
        return paramiko.InteractiveQuery("", "", ("Password: ", False))

    def check_auth_interactive_response(self, responses):
        if list(responses) == [self.server.password]:
            return paramiko.AUTH_SUCCESSFUL
        return paramiko.AUTH_FAILED

    def check_channel_direct_tcpip_request(self, chanid, origin, destination):
        self.server.stall(self.server.channel_delay)
        if destination[1] in self.server.refused_ports:
            return paramiko.OPEN_FAILED_CONNECT_FAILED
        self.destinations[chanid] = destination
        return paramiko.OPEN_SUCCEEDED


class FixtureSSHServer:
    """Minimal SSH server accepting password/publickey auth and direct-tcpip."""

    def __init__(self, host_key: paramiko.PKey, authorized_key: paramiko.PKey):
        self.host_key = host_key
        self.authorized_key = authorized_key
        self.password = PASSWORD
        self.auth_methods = ["password", "publickey"]
        self.refused_ports: set[int] = set()
        # seconds the server sits on password checks and channel opens
        self.auth_delay = 0.0
        self.channel_delay = 0.0
        self.transports: list[paramiko.Transport] = []

        self._listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self._listener.bind(("127.0.0.1", 0))
        self._listener.listen(16)
        self.host, self.port = self._listener.getsockname()
        self._stopped = threading.Event()
        self._thread = threading.Thread(target=self._accept_loop, daemon=True)

    def stall(self, seconds: float) -> None:
        """Block the calling transport thread, released early by stop()."""
        if seconds:
            self._stopped.wait(seconds)

    @property
    def fingerprint(self) -> str:
        return format_fingerprint(self.host_key)

    def start(self) -> "FixtureSSHServer":
        self._thread.start()
        return self

    def stop(self) -> None:
        self._stopped.set()
        self._thread.join(5)
        self._listener.close()
        for transport in self.transports:
            transport.close()

    def _accept_loop(self) -> None:
        while not self._stopped.is_set():
            readable, _, _ = select.select([self._listener], [], [], 0.1)
            if not readable:
                continue
            sock, _ = self._listener.accept()
            threading.Thread(target=self._serve, args=(sock,), daemon=True).start()

    def _serve(self, sock: socket.socket) -> None:
        transport = paramiko.Transport(sock)
        transport.add_server_key(self.host_key)
        self.transports.append(transport)
        interface = FixtureServerInterface(self)
        try:
            transport.start_server(server=interface)
        except (paramiko.SSHException, EOFError):
            return

        while transport.is_active() and not self._stopped.is_set():
            channel = transport.accept(timeout=0.2)
            if channel is None:
                continue
            destination = interface.destinations.pop(channel.get_id(), None)
            threading.Thread(
                target=_bridge, args=(channel, destination), daemon=True
            ).start()


class EchoHandler(socketserver.BaseRequestHandler):
    def handle(self):
        while True:
            try:
                data = self.request.recv(32768)
            except OSError:
                return
            if not data:
                return
            self.request.sendall(data)


class EchoServer(socketserver.ThreadingTCPServer):
    daemon_threads = True
    allow_reuse_address = True
    block_on_close = False

    @property
    def port(self) -> int:
        return self.server_address[1]


def tcp_pair() -> tuple[socket.socket, socket.socket]:
    """Return two connected loopback TCP sockets."""
    listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    listener.bind(("127.0.0.1", 0))
    listener.listen(1)
    left = socket.create_connection(listener.getsockname())
    right, _ = listener.accept()
    listener.close()
    return left, right


def free_port() -> int:
    """Return a loopback port that nothing listens on right now."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def recv_exactly(sock: socket.socket, size: int, timeout: float = 5.0) -> bytes:
    """Read ``size`` bytes or whatever arrives before EOF."""
    sock.settimeout(timeout)
    chunks = []
    remaining = size
    while remaining:
        data = sock.recv(remaining)
        if not data:
            break
        chunks.append(data)
        remaining -= len(data)
    return b"".join(chunks)


def roundtrip(host: str, port: int, payload: bytes) -> bytes:
    """Send ``payload`` through ``host:port`` and read the echo back."""
    with socket.create_connection((host, port), timeout=5) as sock:
        sock.sendall(payload)
        return recv_exactly(sock, len(payload))


def closed_by_peer(sock: socket.socket, timeout: float = 5.0) -> bool:
    """True if the peer closed ``sock`` within ``timeout``."""
    sock.settimeout(timeout)
    try:
        return sock.recv(1024) == b""
    except ConnectionResetError:
        return True
    except TimeoutError:
        return False


@pytest.fixture(scope="session")
def host_key():
    """Server host key shared by the whole test session."""
    return paramiko.RSAKey.generate(2048)


@pytest.fixture(scope="session")
def client_key():
    """Client key pair authorized on the fixture server."""
    return paramiko.RSAKey.generate(2048)


@pytest.fixture
def key_files(tmp_path, client_key):
    """Write the client key pair to disk.

    Returns:
        tuple: (private_key_path, public_key_path)
    """
    private_path = tmp_path / "id_rsa"
    public_path = tmp_path / "id_rsa.pub"
    client_key.write_private_key_file(str(private_path))
    public_path.write_text(f"{client_key.get_name()} {client_key.get_base64()} tester@test\n")
    return private_path, public_path


@pytest.fixture
def ssh_server(host_key, client_key):
    """Running fixture SSH server, stopped after the test."""
    server = FixtureSSHServer(host_key, client_key).start()
    yield server
    server.stop()


@pytest.fixture
def echo_server():
    """TCP echo server standing in for the database."""
    server = EchoServer(("127.0.0.1", 0), EchoHandler)
    thread = threading.Thread(target=server.serve_forever, args=(0.05,), daemon=True)
    thread.start()
    yield server
    server.shutdown()
    server.server_close()
    thread.join(5)


@pytest.fixture
def fast_options():
    """Options with short timeouts so failing tests fail quickly."""
    return TunnelOptions(
        connect_timeout=5.0,
        handshake_timeout=5.0,
        auth_timeout=5.0,
        channel_open_timeout=5.0,
        shutdown_grace_period=2.0,
        poll_interval=0.05,
    )


@pytest.fixture
def make_config(ssh_server, echo_server):
    """Factory for configs pointing at the fixture servers.

    The fixture server's host key is pinned unless overridden.
    """

    def _make(**overrides) -> TunnelConfig:
        values = {
            "local_port": 0,
            "server_host": ssh_server.host,
            "server_port": ssh_server.port,
            "username": USERNAME,
            "auth_mode": AuthMode.PASSWORD,
            "password": PASSWORD,
            "remote_host": "127.0.0.1",
            "remote_port": echo_server.port,
            "host_key_fingerprints": (ssh_server.fingerprint,),
        }
        values.update(overrides)
        return TunnelConfig(**values)

    return _make


@pytest.fixture
def publickey_config(make_config, key_files):
    """Config authenticating with the client key files."""
    private_path, public_path = key_files
    return make_config(
        auth_mode=AuthMode.PUBLICKEY,
        password="",
        private_key_path=Path(private_path),
        public_key_path=Path(public_path),
    )
