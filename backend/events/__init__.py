"""Event system for query progress reporting.

Key Components:
    - EventType: Enum of all event types in the system
    - QueryEvent: Pydantic model for events flowing through the system
    - EventBus: Async pub/sub implementation keyed by query id
    - LLMMetrics: Token and latency metrics for individual LLM calls

Usage:
    >>> from events import EventType, QueryEvent, get_event_bus
    >>>
    >>> bus = get_event_bus()
    >>> queue = bus.subscribe("q_123")
    >>> await bus.publish(QueryEvent(
    ...     type=EventType.STEP_STARTED,
    ...     query_id="q_123",
    ...     agent_name="ENSWalletIdentifierAgent",
    ...     data={"step_index": 0},
    ... ))
    >>> event = await queue.get()
"""

from events.bus import (
    EventBus,
    get_event_bus,
    reset_event_bus,
)
from events.types import (
    EventType,
    LLMMetrics,
    QueryEvent,
)

__all__ = [
    # Event types
    "EventType",
    "QueryEvent",
    "LLMMetrics",
    # Event bus
    "EventBus",
    "get_event_bus",
    "reset_event_bus",
]
