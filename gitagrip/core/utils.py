"""Utility functions and decorators for gitagrip core."""

import functools
import logging
import threading
from typing import Any, Callable, TypeVar

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


def safe_handler(func: F) -> F:
    """Decorator to safely handle exceptions in event handlers.

    Handlers run on bus worker threads. An exception escaping a handler
    would kill the delivery task and starve every event queued behind it,
    so the exception is logged and the handler returns gracefully.

    Usage:
        @safe_handler
        def _on_error(self, event: Error) -> None:
            ...

    Args:
        func: The handler function to wrap.

    Returns:
        The wrapped function that catches exceptions.
    """
    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except Exception:
            logger.exception(f"Exception in handler {func.__qualname__}")
            return None
    return wrapper  # type: ignore[return-value]


class Debouncer:
    """Run a callback once, ``delay`` seconds after the last trigger.

    Every call to ``trigger`` restarts the timer. The callback runs on a
    timer thread.
    """

    def __init__(self, delay: float, callback: Callable[[], None]) -> None:
        self._delay = delay
        self._callback = callback
        self._lock = threading.Lock()
        self._timer: threading.Timer | None = None
        self._generation = 0
        self._closed = False

    def trigger(self) -> None:
        """Schedule the callback, replacing any pending schedule."""
        with self._lock:
            if self._closed:
                return
            if self._timer is not None:
                self._timer.cancel()
            self._generation += 1
            timer = threading.Timer(self._delay, self._fire, args=(self._generation,))
            timer.daemon = True
            self._timer = timer
            timer.start()

    def flush(self) -> bool:
        """Run a pending callback now. Returns True if one was pending."""
        with self._lock:
            if self._timer is None:
                return False
            self._timer.cancel()
            self._timer = None
            self._generation += 1
        self._callback()
        return True

    def cancel(self) -> None:
        """Drop any pending callback and refuse further triggers."""
        with self._lock:
            self._closed = True
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._generation += 1

    def _fire(self, generation: int) -> None:
        with self._lock:
            # A newer trigger or a flush superseded this timer
            if generation != self._generation:
                return
            self._timer = None
        self._callback()
