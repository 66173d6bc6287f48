"""
Telemetry Observer Pattern

Publish/subscribe channel for telemetry updates. Consumers either register
a callback or iterate an async stream; both get the same values in the
order they were published.
"""

from typing import Any, AsyncIterator, Callable, Dict, Generic, List, Optional, TypeVar
import asyncio
import itertools
import logging

logger = logging.getLogger(__name__)


T = TypeVar("T")

# Marks the end of a stream
_DONE = object()


class _StreamSubscription:
    """Bounded queue behind one ``stream()`` consumer; keeps only the newest values."""

    def __init__(self, maxsize: int):
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0

    def put(self, value: Any) -> None:
        try:
            self.queue.put_nowait(value)
        except asyncio.QueueFull:
            self.queue.get_nowait()
            self.dropped += 1
            self.queue.put_nowait(value)


class TelemetrySubject(Generic[T]):
    """
    Subject that distributes published values to subscribers.

    Callback subscribers are called synchronously from ``notify``; a failing
    callback is logged and does not affect the others. Stream subscribers
    get a latest-wins queue so a slow consumer never blocks the publisher.
    """

    def __init__(self):
        self._callbacks: Dict[int, Callable[[T], None]] = {}
        self._streams: List[_StreamSubscription] = []
        self._ids = itertools.count(1)
        self._last_value: Optional[T] = None
        self._closed = False

    @property
    def subscriber_count(self) -> int:
        return len(self._callbacks) + len(self._streams)

    def subscribe(self, callback: Callable[[T], None]) -> int:
        """
        Subscribe a callback function to updates.

        Returns:
            Subscription ID for unsubscribing
        """
        sub_id = next(self._ids)
        self._callbacks[sub_id] = callback
        logger.debug(f"Added telemetry subscription {sub_id}")
        return sub_id

    def unsubscribe(self, subscription_id: int) -> None:
        """Unsubscribe a callback by its subscription ID."""
        if self._callbacks.pop(subscription_id, None) is not None:
            logger.debug(f"Removed telemetry subscription {subscription_id}")

    def notify(self, value: T) -> None:
        """Publish a value to every subscriber."""
        if self._closed:
            return
        self._last_value = value

        for sub_id, callback in list(self._callbacks.items()):
            try:
                callback(value)
            except Exception as e:
                logger.error(f"Error in telemetry subscription {sub_id}: {e}")

        for subscription in self._streams:
            subscription.put(value)

    async def stream(self, maxsize: int = 1) -> AsyncIterator[T]:
        """
        Async iterator over published values.

        Args:
            maxsize: Values buffered for a slow consumer (older ones are dropped)
        """
        subscription = _StreamSubscription(maxsize)
        self._streams.append(subscription)
        try:
            while not self._closed:
                value = await subscription.queue.get()
                if value is _DONE:
                    break
                yield value
        finally:
            self._streams.remove(subscription)

    def get_last_value(self) -> Optional[T]:
        """Get the last published value."""
        return self._last_value

    def close(self) -> None:
        """End all streams; later notifications are ignored."""
        if self._closed:
            return
        self._closed = True
        self.end_streams()
        self._callbacks.clear()

    def end_streams(self) -> None:
        """End the streams open right now; callbacks stay subscribed."""
        for subscription in self._streams:
            subscription.put(_DONE)
