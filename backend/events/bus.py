"""Async event bus for query progress pub/sub.

This module provides an EventBus class that delivers QueryEvents from the
Supervisor to streaming HTTP consumers.

The event bus supports:
- Multiple subscribers per query
- Async event delivery via asyncio.Queue
- Buffering of events published before a subscriber attaches
- Stream lifecycle management (closing a stream terminates all subscribers)
"""

import asyncio
import threading
from collections import defaultdict

import structlog

from events.types import EventType, QueryEvent

logger = structlog.get_logger()


class EventBus:
    """Async pub/sub event bus keyed by query id.

    Event Buffering:
        Events published before any subscriber connects are buffered.
        When the first subscriber connects, all buffered events are
        delivered immediately.

    Attributes:
        _subscribers: Dict mapping query_id to list of subscriber queues
        _event_buffer: Dict mapping query_id to list of buffered events
        _lock: Threading lock guarding the subscription registry
    """

    # Upper bound on events buffered for a query nobody is listening to.
    MAX_BUFFER_PER_QUERY = 1000

    def __init__(self) -> None:
        """Initialize an empty event bus."""
        self._subscribers: dict[str, list[asyncio.Queue[QueryEvent]]] = defaultdict(list)
        self._event_buffer: dict[str, list[QueryEvent]] = defaultdict(list)
        self._lock = threading.Lock()
        logger.info("event_bus_initialized")

    def subscribe(self, query_id: str) -> asyncio.Queue[QueryEvent]:
        """Subscribe to events for a query.

        Buffered events for the query are delivered immediately to the
        new subscriber.

        Args:
            query_id: The query to subscribe to

        Returns:
            An asyncio.Queue that will receive QueryEvent objects
        """
        queue: asyncio.Queue[QueryEvent] = asyncio.Queue()

        with self._lock:
            self._subscribers[query_id].append(queue)
            subscriber_count = len(self._subscribers[query_id])
            buffered_events = self._event_buffer.pop(query_id, [])

        for event in buffered_events:
            queue.put_nowait(event)

        logger.debug(
            "subscriber_added",
            query_id=query_id,
            subscriber_count=subscriber_count,
            buffered_events_delivered=len(buffered_events),
        )
        return queue

    def unsubscribe(self, query_id: str, queue: asyncio.Queue[QueryEvent]) -> None:
        """Unsubscribe a queue from query events.

        If the queue is not registered, this is a no-op.

        Args:
            query_id: The query to unsubscribe from
            queue: The queue to remove
        """
        with self._lock:
            queues = self._subscribers.get(query_id)
            if not queues or queue not in queues:
                logger.debug("unsubscribe_queue_not_found", query_id=query_id)
                return
            queues.remove(queue)
            if not queues:
                del self._subscribers[query_id]

    async def publish(self, event: QueryEvent) -> None:
        """Publish an event to all subscribers for its query.

        If there are no subscribers, the event is buffered until one
        connects.

        Args:
            event: The QueryEvent to publish
        """
        with self._lock:
            subscribers = list(self._subscribers.get(event.query_id, []))

            if not subscribers:
                buffer = self._event_buffer[event.query_id]
                if len(buffer) < self.MAX_BUFFER_PER_QUERY:
                    buffer.append(event)
                return

        for queue in subscribers:
            await queue.put(event)

        logger.debug(
            "event_published",
            query_id=event.query_id,
            event_type=event.type.value,
            subscriber_count=len(subscribers),
        )

    async def close_stream(self, query_id: str) -> None:
        """Close a query's stream and notify all subscribers.

        Puts a STREAM_CLOSED sentinel into each subscriber queue so that
        consumers can break out of their read loops, then drops all
        subscribers and buffered events.

        Args:
            query_id: The query whose stream should close
        """
        with self._lock:
            queues_to_signal = self._subscribers.pop(query_id, [])
            buffered = self._event_buffer.pop(query_id, [])

        for queue in queues_to_signal:
            await queue.put(
                QueryEvent(type=EventType.STREAM_CLOSED, query_id=query_id)
            )

        logger.debug(
            "stream_closed",
            query_id=query_id,
            subscribers_removed=len(queues_to_signal),
            buffered_events_cleared=len(buffered),
        )

    def get_subscriber_count(self, query_id: str) -> int:
        """Get the number of subscribers for a query."""
        with self._lock:
            return len(self._subscribers.get(query_id, []))


# Global event bus instance
_event_bus: EventBus | None = None
_bus_lock = threading.Lock()


def get_event_bus() -> EventBus:
    """Get the global EventBus instance.

    Creates the instance on first call (lazy initialization).

    Returns:
        The global EventBus instance
    """
    global _event_bus
    if _event_bus is None:
        with _bus_lock:
            if _event_bus is None:
                _event_bus = EventBus()
    return _event_bus


def reset_event_bus() -> None:
    """Reset the global EventBus instance.

    Primarily useful for testing to ensure a clean state between runs.
    """
    global _event_bus
    with _bus_lock:
        _event_bus = None
