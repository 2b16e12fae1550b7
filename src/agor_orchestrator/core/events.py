"""In-process message bus for orchestrator events."""

import asyncio
import contextlib
import logging
from collections.abc import Callable

from agor_orchestrator.models.events import BusEvent

logger = logging.getLogger(__name__)


class Subscription:
    """Event queue for one subscriber.

    Events are buffered in a bounded queue; when the queue is full the
    oldest event is dropped so a slow consumer never blocks publishers.
    """

    def __init__(
        self,
        bus: "EventBus",
        session_id: str | None = None,
        max_size: int = 1000,
    ):
        """Initialize the subscription.

        Args:
            bus: Bus this subscription is registered with
            session_id: Only receive events for this session (None = all)
            max_size: Maximum events buffered before dropping oldest
        """
        self._bus = bus
        self.session_id = session_id
        self._queue: asyncio.Queue[BusEvent] = asyncio.Queue(maxsize=max_size)
        self.dropped = 0

    def matches(self, event: BusEvent) -> bool:
        return self.session_id is None or event.session_id == self.session_id

    def deliver(self, event: BusEvent) -> None:
        """Buffer an event, dropping the oldest if full."""
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            with contextlib.suppress(asyncio.QueueEmpty):
                self._queue.get_nowait()
                self.dropped += 1
            self._queue.put_nowait(event)

    async def get(self, timeout: float | None = None) -> BusEvent | None:
        """Get next event, optionally waiting up to ``timeout`` seconds.

        Returns:
            Next event or None if timeout/empty
        """
        try:
            if timeout:
                return await asyncio.wait_for(self._queue.get(), timeout=timeout)
            return self._queue.get_nowait()
        except (asyncio.TimeoutError, asyncio.QueueEmpty):
            return None

    async def wait_for(
        self,
        predicate: Callable[[BusEvent], bool],
        timeout: float,
    ) -> BusEvent | None:
        """Wait for the first event matching ``predicate``.

        Non-matching events are consumed and discarded.

        Args:
            predicate: Event filter
            timeout: Overall deadline in seconds

        Returns:
            The matching event, or None when the deadline passes
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                return None
            try:
                event = await asyncio.wait_for(self._queue.get(), timeout=remaining)
            except asyncio.TimeoutError:
                return None
            if predicate(event):
                return event

    @property
    def pending_count(self) -> int:
        """Number of events waiting in queue."""
        return self._queue.qsize()

    def close(self) -> None:
        self._bus.unsubscribe(self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class EventBus:
    """Publish/subscribe fan-out of bus events.

    Publishing never blocks; every matching subscriber gets its own copy
    in its queue. A short history is kept for diagnostics.
    """

    def __init__(self, max_queue_size: int = 1000, max_history: int = 200):
        self._subscriptions: list[Subscription] = []
        self._max_queue_size = max_queue_size
        self._history: list[BusEvent] = []
        self._max_history = max_history
        self._event_counter = 0

    def subscribe(self, session_id: str | None = None) -> Subscription:
        """Register a subscriber for one session (or all sessions)."""
        subscription = Subscription(self, session_id=session_id, max_size=self._max_queue_size)
        self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with contextlib.suppress(ValueError):
            self._subscriptions.remove(subscription)

    def publish(self, event: BusEvent) -> None:
        """Deliver an event to every matching subscriber."""
        for subscription in list(self._subscriptions):
            if subscription.matches(event):
                subscription.deliver(event)

        self._history.append(event)
        if len(self._history) > self._max_history:
            self._history.pop(0)

        self._event_counter += 1
        logger.debug(f"Event {event.type} for session {event.session_id[:8]}")

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    @property
    def total_events(self) -> int:
        """Total events published."""
        return self._event_counter

    @property
    def history(self) -> list[BusEvent]:
        """Recent event history (read-only copy)."""
        return list(self._history)
