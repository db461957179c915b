"""High-level API for the SSH tunnel.

This module provides simple functions for the common case of opening one
tunnel for a database connection.
"""

from collections.abc import Iterator
from contextlib import contextmanager

from .common.logging import get_logger
from .tunnel import TunnelConfig, TunnelEndpoint, TunnelManager, TunnelOptions
from .tunnel.hostkeys import ConfirmCallback

logger = get_logger(__name__)


def open_tunnel(
    config: TunnelConfig,
    *,
    options: TunnelOptions | None = None,
    confirm: ConfirmCallback | None = None,
) -> TunnelManager:
    """Start a tunnel and return its running manager.

    The caller is responsible for calling ``stop()`` on the returned manager.

    Args:
        config: Tunnel endpoints and credentials
        options: Timeouts and limits
        confirm: Host key confirmation callback for the ``prompt`` policy

    Returns:
        TunnelManager: Running manager; ``manager.endpoint`` is the local address

    Example:
        >>> tunnel = open_tunnel(config)
        >>> print(f"Database available at: {tunnel.endpoint.address}")
        127.0.0.1:27040
        >>> tunnel.stop()
    """
    manager = TunnelManager(options=options, confirm=confirm)
    endpoint = manager.start(config)
    logger.info("Tunnel opened", endpoint=endpoint.address, remote=config.remote_address)
    return manager


@contextmanager
def managed_tunnel(
    config: TunnelConfig,
    *,
    options: TunnelOptions | None = None,
    confirm: ConfirmCallback | None = None,
) -> Iterator[TunnelEndpoint]:
    """Open a tunnel with automatic cleanup.

    The tunnel is stopped when the context exits, even if an exception occurs.

    Args:
        config: Tunnel endpoints and credentials
        options: Timeouts and limits
        confirm: Host key confirmation callback for the ``prompt`` policy

    Yields:
        TunnelEndpoint: The local address to connect the database driver to

    Example:
        >>> with managed_tunnel(config) as endpoint:
        ...     client = MongoClient(endpoint.host, endpoint.port)
        # Tunnel is automatically cleaned up here
    """
    with TunnelManager(options=options, confirm=confirm) as manager:
        endpoint = manager.start(config)
        logger.info("Managed tunnel created", endpoint=endpoint.address)
        try:
            yield endpoint
        finally:
            logger.info("Managed tunnel cleaned up", endpoint=endpoint.address)
