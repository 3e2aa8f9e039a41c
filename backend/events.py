"""
Realtime change feeds for patient, driver and hospital views.

Stores call bus.publish(collection, doc_id) after every mutation. Each
subscriber registers a predicate over (collection, doc_id) and a snapshot
function; on a matching change the snapshot is re-read and pushed onto the
subscriber's queue. SSE routes drain those queues.
Delivery is push-based and eventually consistent: a snapshot reflects the
store at publish time, not at the moment the client reads it.
"""

import logging
import queue
import threading
from typing import Any, Callable

logger = logging.getLogger(__name__)

_CLOSED = object()


class Subscription:
    """Handle for one live feed. Iterate or call get(); close() to stop."""

    def __init__(self, bus: "EventBus", matches: Callable[[str, str], bool],
                 snapshot: Callable[[], Any], name: str = ""):
        self.name = name
        self._bus = bus
        self._matches = matches
        self._snapshot = snapshot
        self._queue: queue.Queue = queue.Queue()
        self._lock = threading.Lock()
        self.closed = False

    def matches(self, collection: str, doc_id: str) -> bool:
        return self._matches(collection, doc_id)

    def deliver(self):
        # Read and enqueue under one lock so a slow older read can't land after a newer one.
        with self._lock:
            if self.closed:
                return
            self._queue.put_nowait(self._snapshot())

    def get(self, timeout: float = None):
        """Next snapshot. Raises queue.Empty on timeout or once closed."""
        if self.closed:
            raise queue.Empty
        item = self._queue.get(timeout=timeout)
        if item is _CLOSED:
            raise queue.Empty
        return item

    def __iter__(self):
        while not self.closed:
            try:
                yield self.get()
            except queue.Empty:
                return

    def close(self):
        self._bus.unsubscribe(self)
        with self._lock:
            if self.closed:
                return
            self.closed = True
            while True:
                try:
                    self._queue.get_nowait()
                except queue.Empty:
                    break
            # Wake a reader blocked in get().
            self._queue.put_nowait(_CLOSED)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


class EventBus:
    def __init__(self):
        self._subscribers: list[Subscription] = []
        self._lock = threading.Lock()

    def subscribe(self, matches: Callable[[str, str], bool], snapshot: Callable[[], Any],
                  name: str = "") -> Subscription:
        """Register a feed; the current snapshot is queued immediately."""
        sub = Subscription(self, matches, snapshot, name=name)
        with self._lock:
            self._subscribers.append(sub)
        try:
            sub.deliver()
        except Exception:
            self.unsubscribe(sub)
            raise
        return sub

    def unsubscribe(self, sub: Subscription):
        with self._lock:
            try:
                self._subscribers.remove(sub)
            except ValueError:
                pass

    def publish(self, collection: str, doc_id: str):
        """Fan a change out to every matching subscriber."""
        with self._lock:
            subscribers = list(self._subscribers)
        for sub in subscribers:
            if not sub.matches(collection, doc_id):
                continue
            try:
                sub.deliver()
            except Exception:
                # One broken feed must not fail the mutation that triggered it.
                logger.exception("[Events] Failed to push %s/%s to %s", collection, doc_id, sub.name)

    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)
