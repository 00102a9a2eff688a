"""Typed publish/subscribe event bus.

Producers call ``publish`` which never blocks: events go onto a single
bounded queue and are dropped (and counted) when it is full. One dispatcher
thread drains the queue and hands each event to the handlers subscribed to
its type. Every handler is fed from its own FIFO on the shared handler pool,
so it sees events (of all the types it subscribed to) in publish order
while a slow handler only delays itself.
"""

import queue
import threading
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from typing import Callable

import logbook

from .events import EVENT_TYPES, StatusUpdated
from .utils import safe_handler

log = logbook.Logger(__name__)

DEFAULT_CAPACITY = 1000

# Events a delivery task handles before yielding its worker thread
_DRAIN_BATCH = 32

# Too frequent to log individually
_QUIET_EVENTS = (StatusUpdated,)

Handler = Callable[[object], None]
Unsubscribe = Callable[[], None]


class _Subscription:
    """One handler with its delivery FIFO, shared by all its event types."""

    def __init__(self, bus: "EventBus", handler: Handler) -> None:
        self.handler = handler
        self.event_types: set[type] = set()
        self._bus = bus
        self._invoke = safe_handler(handler)
        self._lock = threading.Lock()
        self._pending: deque = deque()
        self._scheduled = False
        self.active = True

    def add_type(self, event_type: type) -> None:
        with self._lock:
            self.event_types.add(event_type)

    def remove_type(self, event_type: type) -> bool:
        """Stop receiving ``event_type``. Returns True if no types remain."""
        with self._lock:
            self.event_types.discard(event_type)
            return not self.event_types

    def deliver(self, event: object) -> bool:
        """Queue an event for this handler and schedule a drain if idle."""
        with self._lock:
            if not self.active:
                return False
            self._pending.append(event)
            if self._scheduled:
                return True
            self._scheduled = True
        if not self._bus._submit(self._drain):
            self.cancel()
        return True

    def cancel(self) -> None:
        with self._lock:
            self.active = False
            dropped = len(self._pending)
            self._pending.clear()
        self._bus._done(dropped)

    def _drain(self) -> None:
        for _ in range(_DRAIN_BATCH):
            with self._lock:
                if not self._pending:
                    self._scheduled = False
                    return
                event = self._pending.popleft()
                # Unsubscribed from this type while the event was queued
                wanted = type(event) in self.event_types
            try:
                if wanted:
                    self._invoke(event)
            finally:
                self._bus._done(1)
        # Yield the worker, keep our place in line
        if not self._bus._submit(self._drain):
            self.cancel()


class EventBus:
    """Bounded, asynchronous fan-out of events to typed handlers."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY, max_workers: int = 8) -> None:
        self._queue: queue.Queue = queue.Queue(maxsize=capacity)
        self._lock = threading.RLock()
        self._subscriptions: dict[type, list[_Subscription]] = {}
        self._by_handler: dict[Handler, _Subscription] = {}
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="bus-handler"
        )
        self._dispatcher: threading.Thread | None = None
        self._stopping = threading.Event()
        self._closed = False
        self._dropped = 0

        # Events accepted but not yet handled by every subscriber
        self._in_flight = 0
        self._idle = threading.Condition(threading.Lock())

    @property
    def dropped(self) -> int:
        """Number of events dropped because the queue was full."""
        with self._lock:
            return self._dropped

    @property
    def is_running(self) -> bool:
        return self._dispatcher is not None and self._dispatcher.is_alive()

    def start(self) -> None:
        """Start the dispatcher thread."""
        if self.is_running:
            return
        self._dispatcher = threading.Thread(
            target=self._dispatch_loop, name="event-dispatcher", daemon=True
        )
        self._dispatcher.start()

    def subscribe(self, event_type: type, handler: Handler) -> Unsubscribe:
        """Register ``handler`` for ``event_type``.

        A handler registered for several types receives all of them through
        one FIFO, in publish order. Returns a callable that removes this
        registration.
        """
        if event_type not in EVENT_TYPES:
            raise TypeError(f"Unknown event type: {event_type!r}")

        with self._lock:
            subscription = self._by_handler.get(handler)
            if subscription is None or not subscription.active:
                subscription = _Subscription(self, handler)
                self._by_handler[handler] = subscription
            subscription.add_type(event_type)
            handlers = self._subscriptions.setdefault(event_type, [])
            if subscription not in handlers:
                handlers.append(subscription)

        def unsubscribe() -> None:
            with self._lock:
                handlers = self._subscriptions.get(event_type, [])
                if subscription in handlers:
                    handlers.remove(subscription)
                if not subscription.remove_type(event_type):
                    return
                if self._by_handler.get(handler) is subscription:
                    del self._by_handler[handler]
            subscription.cancel()

        return unsubscribe

    def publish(self, event: object) -> bool:
        """Enqueue an event. Returns False if it was dropped."""
        if self._closed:
            log.debug("Bus closed, ignoring {}", type(event).__name__)
            return False

        self._begin(1)
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            self._done(1)
            with self._lock:
                self._dropped += 1
                dropped = self._dropped
            log.warning(
                "Event queue full, dropping {} ({} dropped so far)",
                type(event).__name__,
                dropped,
            )
            return False

        if not isinstance(event, _QUIET_EVENTS):
            log.debug("Published {}", event)
        return True

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until every accepted event has been handled."""
        with self._idle:
            return self._idle.wait_for(lambda: self._in_flight == 0, timeout)

    def close(self, timeout: float = 2.0) -> None:
        """Stop dispatching and shut down the handler pool."""
        if self._closed:
            return
        self._closed = True
        self._stopping.set()
        if self._dispatcher is not None:
            self._dispatcher.join(timeout)
        with self._lock:
            subscriptions = list(self._by_handler.values())
            self._subscriptions.clear()
            self._by_handler.clear()
        for subscription in subscriptions:
            subscription.cancel()
        self._executor.shutdown(wait=False, cancel_futures=True)

    def _dispatch_loop(self) -> None:
        while not self._stopping.is_set():
            try:
                event = self._queue.get(timeout=0.1)
            except queue.Empty:
                continue
            try:
                self._dispatch(event)
            finally:
                self._done(1)

    def _dispatch(self, event: object) -> None:
        # Copy under the lock so subscribe/unsubscribe never race delivery
        with self._lock:
            targets = list(self._subscriptions.get(type(event), ()))
        for subscription in targets:
            self._begin(1)
            if not subscription.deliver(event):
                self._done(1)

    def _submit(self, fn: Callable[[], None]) -> bool:
        try:
            self._executor.submit(fn)
        except RuntimeError:
            # Pool already shut down
            log.debug("Handler pool closed, discarding delivery")
            return False
        return True

    def _begin(self, count: int) -> None:
        with self._idle:
            self._in_flight += count

    def _done(self, count: int) -> None:
        if not count:
            return
        with self._idle:
            self._in_flight -= count
            if self._in_flight <= 0:
                self._in_flight = 0
                self._idle.notify_all()
