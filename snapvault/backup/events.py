"""
Publish/subscribe channel for progress snapshots.

Each subscriber owns a bounded buffer. Publishing never blocks: when a
subscriber's buffer is full the oldest snapshot is dropped to make room.
"""

import logging
import threading
from collections import deque
from typing import Iterator, List, Optional

from .types import BackupProgress


logger = logging.getLogger(__name__)


class Subscription:
    """
    A subscriber's view of the event bus.

    Use as an iterator (blocks until the subscription is closed) or poll with
    get(timeout). Closing unsubscribes from the bus.
    """

    def __init__(self, bus: 'EventBus', job_id: Optional[str] = None, maxsize: int = 256):
        self._bus = bus
        self.job_id = job_id
        self._events = deque(maxlen=maxsize)
        self._condition = threading.Condition()
        self.closed = False
        self.dropped = 0

    def _deliver(self, event: BackupProgress):
        if self.job_id is not None and event.id != self.job_id:
            return
        with self._condition:
            if self.closed:
                return
            if len(self._events) == self._events.maxlen:
                self.dropped += 1
            self._events.append(event)
            self._condition.notify_all()

    def get(self, timeout: Optional[float] = None) -> Optional[BackupProgress]:
        """
        Wait for the next event.

        Returns:
            The next snapshot, or None on timeout or when closed and drained
        """
        with self._condition:
            if not self._events and not self.closed:
                self._condition.wait(timeout)
            if self._events:
                return self._events.popleft()
            return None

    def drain(self) -> List[BackupProgress]:
        """Return and clear every buffered event without waiting."""
        with self._condition:
            events = list(self._events)
            self._events.clear()
            return events

    def close(self):
        self._bus.unsubscribe(self)
        with self._condition:
            self.closed = True
            self._condition.notify_all()

    def __iter__(self) -> Iterator[BackupProgress]:
        while True:
            event = self.get()
            if event is None:
                if self.closed:
                    return
                continue
            yield event

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class EventBus:
    """Broadcasts progress snapshots to every current subscriber."""

    def __init__(self, buffer_size: int = 256):
        self.buffer_size = buffer_size
        self._subscribers: List[Subscription] = []
        self._lock = threading.Lock()

    def subscribe(self, job_id: Optional[str] = None, maxsize: Optional[int] = None) -> Subscription:
        """
        Register a subscriber.

        Args:
            job_id: Only receive snapshots for this job (None = all jobs)
            maxsize: Buffer size (defaults to the bus buffer_size)
        """
        subscription = Subscription(self, job_id, maxsize or self.buffer_size)
        with self._lock:
            self._subscribers.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> bool:
        with self._lock:
            if subscription in self._subscribers:
                self._subscribers.remove(subscription)
                return True
            return False

    def publish(self, event: BackupProgress):
        with self._lock:
            subscribers = list(self._subscribers)

        for subscription in subscribers:
            try:
                subscription._deliver(event)
            except Exception as e:
                logger.error(f"Failed to deliver progress event for {event.id}: {e}")

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)
