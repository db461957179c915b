"""Scoped resource acquisition with guaranteed, ordered release."""

import logging
import threading
from collections.abc import Callable
from types import TracebackType
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ResourceStack:
    """Holds acquired resources and releases them in LIFO order.

    Each entry is a named release callback. ``close()`` runs every callback
    in reverse acquisition order; a failing callback is logged and the
    remaining ones still run.
    """

    def __init__(self) -> None:
        self._stack: list[tuple[str, Callable[[], Any]]] = []
        self._lock = threading.Lock()

    def push(self, name: str, resource: T, release: Callable[[T], Any]) -> T:
        """Register an already acquired resource and return it."""
        with self._lock:
            self._stack.append((name, lambda: release(resource)))
        return resource

    def callback(self, name: str, func: Callable[..., Any], *args: Any) -> None:
        """Register a plain release callback."""
        with self._lock:
            self._stack.append((name, lambda: func(*args)))

    def enter_context(self, name: str, context_manager: Any) -> Any:
        """Enter a context manager and schedule its exit."""
        result = context_manager.__enter__()
        with self._lock:
            self._stack.append(
                (name, lambda: context_manager.__exit__(None, None, None))
            )
        return result

    def names(self) -> list[str]:
        """Names of held resources, oldest first."""
        with self._lock:
            return [name for name, _ in self._stack]

    def __len__(self) -> int:
        with self._lock:
            return len(self._stack)

    def close(self) -> list[Exception]:
        """Release every resource in reverse order.

        Returns:
            Errors raised by release callbacks, already logged
        """
        with self._lock:
            entries, self._stack = self._stack, []

        errors: list[Exception] = []
        while entries:
            name, release = entries.pop()
            try:
                release()
                logger.debug(f"Released {name}")
            except Exception as e:
                logger.error(f"Error releasing {name}: {e}")
                errors.append(e)
        return errors

    def __enter__(self) -> "ResourceStack":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> bool:
        """Release all resources; never suppresses the exception."""
        self.close()
        return False
