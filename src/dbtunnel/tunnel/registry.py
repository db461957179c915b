"""Registry of live channel forwarders."""

import logging
import threading
import time

from ..common.exceptions import TunnelError
from .forwarder import ChannelForwarder
from .models import ForwarderStats

logger = logging.getLogger(__name__)


class ForwarderRegistryError(TunnelError):
    """Exception raised for forwarder registry operations."""

    phase = "registry"


class ForwarderRegistry:
    """Thread-safe store for active forwarders with add/remove/query operations."""

    def __init__(self, max_connections: int = 64):
        self.max_connections = max_connections
        self._forwarders: dict[int, ChannelForwarder] = {}
        self._lock = threading.Lock()

    def add(self, forwarder: ChannelForwarder) -> None:
        """Add forwarder to registry.

        Raises:
            ForwarderRegistryError: If the ID is taken or the limit is reached
        """
        with self._lock:
            if forwarder.connection_id in self._forwarders:
                raise ForwarderRegistryError(
                    f"Connection {forwarder.connection_id} already registered"
                )
            if len(self._forwarders) >= self.max_connections:
                raise ForwarderRegistryError(
                    f"Maximum connection limit ({self.max_connections}) reached"
                )
            self._forwarders[forwarder.connection_id] = forwarder
        logger.debug(f"Registered connection {forwarder.connection_id}")

    def remove(self, forwarder: ChannelForwarder) -> None:
        """Remove forwarder if present."""
        with self._lock:
            removed = self._forwarders.pop(forwarder.connection_id, None)
        if removed is not None:
            logger.debug(f"Unregistered connection {forwarder.connection_id}")

    def get(self, connection_id: int) -> ChannelForwarder | None:
        with self._lock:
            return self._forwarders.get(connection_id)

    def list_forwarders(self) -> list[ChannelForwarder]:
        with self._lock:
            return list(self._forwarders.values())

    def stats(self) -> list[ForwarderStats]:
        """Snapshot of per-connection counters."""
        return [f.stats.model_copy() for f in self.list_forwarders()]

    def count(self) -> int:
        with self._lock:
            return len(self._forwarders)

    def stop_all(self, grace_period: float) -> list[ChannelForwarder]:
        """Stop every forwarder and wait for them to finish.

        Args:
            grace_period: Total seconds to wait for all forwarders

        Returns:
            Forwarders still alive after the grace period
        """
        forwarders = self.list_forwarders()
        for forwarder in forwarders:
            forwarder.stop()

        deadline = time.monotonic() + grace_period
        for forwarder in forwarders:
            if forwarder.ident is not None:
                forwarder.join(max(0.0, deadline - time.monotonic()))

        stuck = [f for f in forwarders if f.is_alive()]
        if stuck:
            logger.warning(
                f"{len(stuck)} forwarder(s) still running after {grace_period}s"
            )
        else:
            logger.info(f"Stopped {len(forwarders)} forwarder(s)")
        return stuck
