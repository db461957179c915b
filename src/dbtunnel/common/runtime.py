"""Reference-counted process-wide runtime shared by all tunnels."""

import atexit
import logging
import threading
import weakref
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class _Stoppable(Protocol):
    def stop(self) -> Any: ...


class Runtime:
    """Process-wide state guarded by a single lock and counter.

    The first ``acquire()`` quiets the SSH engine's logger and registers an
    exit hook that stops any tunnel still running at interpreter shutdown.
    The last ``release()`` undoes both.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._refcount = 0
        self._owners: weakref.WeakSet[Any] = weakref.WeakSet()
        self._saved_level: int | None = None

    @property
    def refcount(self) -> int:
        with self._lock:
            return self._refcount

    @property
    def initialized(self) -> bool:
        return self.refcount > 0

    def acquire(self, owner: _Stoppable) -> "RuntimeHandle":
        """Take a reference on behalf of ``owner``.

        Returns:
            Handle whose ``release()`` drops exactly this reference
        """
        with self._lock:
            if self._refcount == 0:
                self._initialize()
            self._refcount += 1
            self._owners.add(owner)
            logger.debug(f"Runtime acquired, refcount={self._refcount}")
        return RuntimeHandle(self, owner)

    def _release(self, owner: _Stoppable) -> None:
        with self._lock:
            if self._refcount == 0:
                return
            self._refcount -= 1
            self._owners.discard(owner)
            logger.debug(f"Runtime released, refcount={self._refcount}")
            if self._refcount == 0:
                self._teardown()

    def _initialize(self) -> None:
        paramiko_logger = logging.getLogger("paramiko")
        self._saved_level = paramiko_logger.level
        if paramiko_logger.level == logging.NOTSET:
            paramiko_logger.setLevel(logging.WARNING)
        atexit.register(self._stop_owners)
        logger.info("Tunnel runtime initialized")

    def _teardown(self) -> None:
        atexit.unregister(self._stop_owners)
        if self._saved_level is not None:
            logging.getLogger("paramiko").setLevel(self._saved_level)
            self._saved_level = None
        logger.info("Tunnel runtime released")

    def _stop_owners(self) -> None:
        with self._lock:
            owners = list(self._owners)
        for owner in owners:
            try:
                owner.stop()
            except Exception as e:
                logger.error(f"Error stopping tunnel at exit: {e}")


class RuntimeHandle:
    """One reference on the runtime; releasing twice is a no-op."""

    def __init__(self, runtime: Runtime, owner: _Stoppable):
        self._runtime = runtime
        self._owner = owner
        self._released = False

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        self._runtime._release(self._owner)


RUNTIME = Runtime()
