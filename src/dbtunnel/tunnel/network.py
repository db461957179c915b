"""Outbound connect and inbound listen socket primitives."""

import errno
import socket

from ..common.exceptions import BindFailed, ConnectFailed, ListenFailed, TimeoutExceeded
from ..common.logging import get_logger
from ..common.utils import format_address, validate_port

logger = get_logger(__name__)

DEFAULT_BACKLOG = 2


def connect_outbound(host: str, port: int, timeout: float | None = None) -> socket.socket:
    """Open a TCP connection to ``host:port``.

    Every address ``host`` resolves to is tried in turn.

    Args:
        host: Hostname or IP literal
        port: TCP port
        timeout: Connect timeout in seconds, None to block

    Returns:
        Connected blocking socket owned by the caller

    Raises:
        ConnectFailed: If the name does not resolve or every address refuses
        TimeoutExceeded: If the connection attempt timed out
    """
    address = format_address(host, port)
    try:
        infos = socket.getaddrinfo(host, port, type=socket.SOCK_STREAM)
    except (socket.gaierror, UnicodeError) as e:
        logger.error("Cannot resolve address", address=address, error=str(e))
        raise ConnectFailed(f"Cannot resolve {address}: {e}") from e

    last_error: OSError | None = None
    timed_out = False
    for family, socktype, proto, _, sockaddr in infos:
        sock = socket.socket(family, socktype, proto)
        try:
            sock.settimeout(timeout)
            sock.connect(sockaddr)
        except TimeoutError as e:
            sock.close()
            last_error, timed_out = e, True
            continue
        except OSError as e:
            sock.close()
            last_error = e
            continue

        sock.settimeout(None)
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        logger.debug("Connected", address=address, peer=sockaddr)
        return sock

    logger.error("Failed to connect", address=address, error=str(last_error))
    if timed_out:
        raise TimeoutExceeded(
            f"Connecting to {address} timed out after {timeout}s", operation="connect"
        ) from last_error
    raise ConnectFailed(f"Failed to connect to {address}: {last_error}") from last_error


def listen_inbound(host: str, port: int, backlog: int = DEFAULT_BACKLOG) -> socket.socket:
    """Bind a listening TCP socket on ``host:port``.

    Args:
        host: Local address to bind, usually loopback
        port: Local port, 0 lets the OS choose
        backlog: Pending connection queue length

    Returns:
        Listening socket owned by the caller

    Raises:
        BindFailed: If the address cannot be bound (e.g. port in use)
        ListenFailed: If the bound socket cannot listen
    """
    address = format_address(host, port)
    try:
        validate_port(port, "Local port", allow_zero=True)
    except ValueError as e:
        raise BindFailed(f"Cannot bind to {address}: {e}") from e

    try:
        infos = socket.getaddrinfo(
            host, port, type=socket.SOCK_STREAM, flags=socket.AI_PASSIVE
        )
    except (socket.gaierror, UnicodeError) as e:
        raise BindFailed(f"Cannot resolve local address {address}: {e}") from e

    family, socktype, proto, _, sockaddr = infos[0]
    sock = socket.socket(family, socktype, proto)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind(sockaddr)
    except OSError as e:
        sock.close()
        reason = "address already in use" if e.errno == errno.EADDRINUSE else str(e)
        logger.error("Cannot bind", address=address, reason=reason)
        raise BindFailed(f"Cannot bind to {address}: {reason}") from e

    try:
        sock.listen(backlog)
    except OSError as e:
        sock.close()
        logger.error("Failed to listen", address=address, error=str(e))
        raise ListenFailed(f"Failed to listen on {address}: {e}") from e

    logger.debug("Listening", address=format_address(*sock.getsockname()[:2]))
    return sock
