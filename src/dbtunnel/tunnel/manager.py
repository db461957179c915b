"""Tunnel manager: startup state machine, accept loop and ordered teardown."""

import itertools
import select
import socket
import threading
from types import TracebackType
from typing import Literal

from ..common.context import ResourceStack
from ..common.exceptions import InvalidConfig, TunnelManagerError
from ..common.logging import get_logger
from ..common.runtime import RUNTIME, Runtime, RuntimeHandle
from ..common.utils import format_address
from .config import TunnelConfig, TunnelOptions
from .forwarder import ChannelForwarder
from .hostkeys import ConfirmCallback, HostKeyVerifier
from .models import ForwarderStats, TunnelEndpoint, TunnelState
from .network import connect_outbound, listen_inbound
from .registry import ForwarderRegistry, ForwarderRegistryError
from .session import Session, SessionEstablisher

logger = get_logger(__name__)


def _close_socket(sock: socket.socket) -> None:
    sock.close()


class TunnelManager:
    """One SSH tunnel: a local listening port forwarded through one SSH session.

    Startup walks ``runtime_ready -> connected -> session_active ->
    listening -> running``. Each acquired resource goes on a
    ``ResourceStack``; if any step fails the stack is unwound in reverse
    order and the single error is raised, so callers never see a half
    started tunnel.

    Usage:
        with TunnelManager() as tunnel:
            endpoint = tunnel.start(config)
            connect_database(endpoint.host, endpoint.port)
    """

    def __init__(
        self,
        options: TunnelOptions | None = None,
        confirm: ConfirmCallback | None = None,
        runtime: Runtime | None = None,
    ):
        """Initialize tunnel manager.

        Args:
            options: Timeouts and limits (defaults if None)
            confirm: Callback asked to trust unknown host keys under the
                ``prompt`` host key policy
            runtime: Process-wide runtime to reference (shared default if None)
        """
        self.options = options or TunnelOptions()
        self.confirm = confirm
        self._runtime = runtime or RUNTIME
        self._lock = threading.Lock()
        self._state = TunnelState.UNINITIALIZED
        self._config: TunnelConfig | None = None
        self._resources: ResourceStack | None = None
        self._session: Session | None = None
        self._endpoint: TunnelEndpoint | None = None
        self._accept_thread: threading.Thread | None = None
        self._stop_accepting = threading.Event()
        self._registry = ForwarderRegistry(max_connections=self.options.max_connections)
        self._connection_ids = itertools.count(1)

    @property
    def state(self) -> TunnelState:
        return self._state

    @property
    def config(self) -> TunnelConfig | None:
        return self._config

    @property
    def endpoint(self) -> TunnelEndpoint | None:
        """Local endpoint while running, None otherwise."""
        return self._endpoint

    @property
    def host_key_fingerprint(self) -> str | None:
        return self._session.fingerprint if self._session is not None else None

    def is_running(self) -> bool:
        """True while the tunnel accepts and forwards connections."""
        return (
            self._state == TunnelState.RUNNING
            and self._session is not None
            and self._session.is_active
            and self._accept_thread is not None
            and self._accept_thread.is_alive()
        )

    def active_connections(self) -> list[ForwarderStats]:
        """Counters of currently forwarded client connections."""
        return self._registry.stats()

    def _set_state(self, state: TunnelState) -> None:
        logger.debug("Tunnel state", previous=self._state.value, state=state.value)
        self._state = state

    def start(self, config: TunnelConfig) -> TunnelEndpoint:
        """Bring the tunnel up.

        Returns only once the local endpoint is listening and forwarding.

        Args:
            config: Validated tunnel configuration

        Returns:
            Local endpoint the database driver should connect to

        Raises:
            TunnelManagerError: If the tunnel is already started
            InvalidConfig: If ``config`` is not a TunnelConfig
            TunnelError: The precise startup failure (connect, handshake,
                host key, authentication, bind, listen, timeout)
        """
        if not isinstance(config, TunnelConfig):
            raise InvalidConfig(f"Expected TunnelConfig, got {type(config).__name__}")

        with self._lock:
            if self._state not in (TunnelState.UNINITIALIZED, TunnelState.STOPPED):
                raise TunnelManagerError(f"Tunnel is already {self._state.value}")
            handle = self._runtime.acquire(self)
            self._set_state(TunnelState.RUNTIME_READY)

        log = logger.bind(
            server=config.server_address,
            local=format_address(config.local_host, config.local_port),
            remote=config.remote_address,
        )
        log.debug("Starting tunnel", **config.log_fields())

        resources = ResourceStack()
        resources.push("runtime", handle, RuntimeHandle.release)
        try:
            log.info("Connecting to SSH server")
            sock = resources.push(
                "ssh socket",
                connect_outbound(
                    config.server_host, config.server_port, self.options.connect_timeout
                ),
                _close_socket,
            )
            self._set_state(TunnelState.CONNECTED)

            verifier = HostKeyVerifier(
                policy=config.host_key_policy,
                known_hosts_path=config.known_hosts_path,
                pinned=config.host_key_fingerprints,
                confirm=self.confirm,
            )
            session = resources.push(
                "ssh session",
                SessionEstablisher(self.options, verifier).establish(sock, config),
                Session.close,
            )
            self._set_state(TunnelState.SESSION_ACTIVE)

            listen_sock = resources.push(
                "listen socket",
                listen_inbound(config.local_host, config.local_port, self.options.listen_backlog),
                _close_socket,
            )
            self._set_state(TunnelState.LISTENING)
            host, port = listen_sock.getsockname()[:2]
            endpoint = TunnelEndpoint(host=host, port=port)

            self._stop_accepting.clear()
            accept_thread = threading.Thread(
                target=self._accept_loop,
                args=(listen_sock, session, config),
                name=f"tunnel-accept-{port}",
                daemon=True,
            )
            accept_thread.start()
        except BaseException as e:
            resources.close()
            self._set_state(TunnelState.STOPPED)
            log.error(
                "Tunnel startup failed",
                phase=getattr(e, "phase", None),
                error=str(e),
            )
            raise

        with self._lock:
            self._config = config
            self._resources = resources
            self._session = session
            self._endpoint = endpoint
            self._accept_thread = accept_thread
            self._set_state(TunnelState.RUNNING)

        log.info("Tunnel ready", endpoint=endpoint.address, fingerprint=session.fingerprint)
        return endpoint

    def _accept_loop(
        self, listen_sock: socket.socket, session: Session, config: TunnelConfig
    ) -> None:
        log = logger.bind(
            endpoint=format_address(*listen_sock.getsockname()[:2]),
            remote=config.remote_address,
        )
        log.info("Waiting for TCP connections")

        while not self._stop_accepting.is_set():
            if not session.is_active:
                log.error("SSH session lost, no longer accepting connections")
                return

            try:
                readable, _, _ = select.select([listen_sock], [], [], self.options.poll_interval)
            except (OSError, ValueError):
                break  # listen socket closed underneath us
            if not readable:
                continue

            try:
                client_sock, client_addr = listen_sock.accept()
            except OSError as e:
                if self._stop_accepting.is_set():
                    break
                log.warning("Accept failed", error=str(e))
                continue

            self._dispatch(client_sock, client_addr, session, config)

        log.debug("Accept loop finished")

    def _dispatch(
        self,
        client_sock: socket.socket,
        client_addr: tuple,
        session: Session,
        config: TunnelConfig,
    ) -> None:
        stats = ForwarderStats(
            connection_id=next(self._connection_ids),
            client_address=format_address(client_addr[0], client_addr[1]),
        )
        forwarder: ChannelForwarder | None = None
        try:
            client_sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
            forwarder = ChannelForwarder(
                session,
                client_sock,
                config.remote_host,
                config.remote_port,
                self.options,
                stats,
                on_close=self._registry.remove,
            )
            self._registry.add(forwarder)
            forwarder.start()
        except ForwarderRegistryError as e:
            logger.warning("Connection refused", client=stats.client_address, reason=str(e))
            client_sock.close()
            return
        except (OSError, RuntimeError) as e:
            # failure stays with this connection
            logger.error(
                "Could not forward connection",
                connection=stats.connection_id,
                client=stats.client_address,
                error=str(e),
            )
            if forwarder is not None:
                self._registry.remove(forwarder)
            client_sock.close()
            return

        logger.info(
            "Accepted connection",
            connection=stats.connection_id,
            client=stats.client_address,
        )

    def stop(self) -> None:
        """Stop the tunnel and release every resource.

        Stops accepting, stops all forwarders (bounded by the shutdown grace
        period), then closes the session, the listen socket, the SSH socket
        and finally the runtime reference. Safe to call on a tunnel that was
        never started or is already stopped.
        """
        with self._lock:
            if self._state != TunnelState.RUNNING:
                logger.debug("Tunnel not running, nothing to stop", state=self._state.value)
                return

            grace = self.options.shutdown_grace_period
            logger.info("Stopping tunnel", endpoint=self._endpoint.address if self._endpoint else None)

            self._stop_accepting.set()
            if self._accept_thread is not None:
                self._accept_thread.join(grace)

            stuck = self._registry.stop_all(grace)

            if self._session is not None:
                self._session.close()
            errors = self._resources.close() if self._resources is not None else []

            self._accept_thread = None
            self._session = None
            self._resources = None
            self._endpoint = None
            self._set_state(TunnelState.STOPPED)

        logger.info(
            "Tunnel stopped",
            lingering_forwarders=len(stuck),
            cleanup_errors=len(errors),
        )

    def __enter__(self) -> "TunnelManager":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> Literal[False]:
        """Context manager exit - automatically stop the tunnel."""
        try:
            self.stop()
        except Exception as e:
            logger.error("Error during context exit", error=str(e))
        return False
