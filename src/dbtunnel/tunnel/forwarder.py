"""Bidirectional relay between one local client and one SSH channel."""

import select
import socket
import threading
from collections.abc import Callable
from datetime import datetime

import paramiko

from ..common.exceptions import TunnelError
from ..common.logging import get_logger
from ..common.utils import format_address
from .config import TunnelOptions
from .models import ForwarderStats
from .session import Session

logger = get_logger(__name__)


class ChannelForwarder(threading.Thread):
    """Forward one accepted client connection through a fresh SSH channel.

    The thread opens a ``direct-tcpip`` channel to the remote target and then
    relays bytes both ways, unmodified and in order. End of stream or an I/O
    error on either side ends both directions and closes the channel and the
    client socket. Errors stay with this connection: they are logged and kept
    in ``stats.error``, never raised.
    """

    def __init__(
        self,
        session: Session,
        client_sock: socket.socket,
        remote_host: str,
        remote_port: int,
        options: TunnelOptions,
        stats: ForwarderStats,
        on_close: Callable[["ChannelForwarder"], None] | None = None,
    ):
        super().__init__(name=f"tunnel-forwarder-{stats.connection_id}", daemon=True)
        self.session = session
        self.client_sock = client_sock
        self.remote_host = remote_host
        self.remote_port = remote_port
        self.options = options
        self.stats = stats
        self._on_close = on_close
        self._channel: paramiko.Channel | None = None
        self._stop_event = threading.Event()
        self._close_lock = threading.Lock()
        self._closed = False
        self._log = logger.bind(
            connection=stats.connection_id,
            client=stats.client_address,
            remote=format_address(remote_host, remote_port),
        )

    @property
    def connection_id(self) -> int:
        return self.stats.connection_id

    def run(self) -> None:
        try:
            self._open()
            if self._channel is not None and not self._stop_event.is_set():
                self._relay(self._channel)
        except (OSError, EOFError, ValueError, paramiko.SSHException) as e:
            if self._stop_event.is_set():
                self._log.debug("Relay interrupted by shutdown", error=str(e))
            else:
                self._log.warning("Relay error", error=str(e))
                self.stats.error = str(e)
        finally:
            self._close()
            self.stats.closed_at = datetime.now()
            self._log.info(
                "Connection closed",
                bytes_up=self.stats.bytes_up,
                bytes_down=self.stats.bytes_down,
            )
            if self._on_close is not None:
                self._on_close(self)

    def _open(self) -> None:
        try:
            self._channel = self.session.open_channel(
                self.remote_host,
                self.remote_port,
                origin=self._origin(),
                timeout=self.options.channel_open_timeout,
            )
        except TunnelError as e:
            self._log.warning("Channel open failed", error=str(e), phase=e.phase)
            self.stats.error = str(e)
            return
        self._log.debug("Channel opened")

    def _origin(self) -> tuple[str, int]:
        try:
            peer = self.client_sock.getpeername()
        except OSError:
            return ("127.0.0.1", 0)
        return (peer[0], peer[1])

    def _relay(self, channel: paramiko.Channel) -> None:
        sock = self.client_sock
        bufsize = self.options.buffer_size

        while not self._stop_event.is_set():
            readable, _, _ = select.select([sock, channel], [], [], self.options.poll_interval)

            if sock in readable:
                data = sock.recv(bufsize)
                if not data:
                    self._log.debug("Client closed connection")
                    return
                channel.sendall(data)
                self.stats.bytes_up += len(data)

            if channel in readable:
                data = channel.recv(bufsize)
                if not data:
                    self._log.debug("Remote closed channel")
                    return
                sock.sendall(data)
                self.stats.bytes_down += len(data)

    def stop(self) -> None:
        """Ask the relay to finish and wake it if it is blocked."""
        self._stop_event.set()
        try:
            self.client_sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass  # already closed or never connected

    def _close(self) -> None:
        with self._close_lock:
            if self._closed:
                return
            self._closed = True

        if self._channel is not None:
            self._channel.close()
        try:
            self.client_sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        self.client_sock.close()
