"""
In-process event bus.

Publishers hand events to the bus and return immediately; subscribed
handlers run as background tasks. A failing handler marks its event as
failed and is logged, it never propagates to the publisher.
"""

import asyncio
from collections import OrderedDict, defaultdict
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

import structlog
from pydantic import BaseModel, Field

logger = structlog.get_logger(__name__)


class EventPriority(str, Enum):
    """Event priority levels."""

    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"


class EventStatus(str, Enum):
    """Event processing status."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class EventMetadata(BaseModel):
    """Routing metadata attached to every event."""

    tenant_id: str | None = None
    user_id: str | None = None
    source: str | None = None


class Event(BaseModel):
    """A published event."""

    event_id: str = Field(default_factory=lambda: str(uuid4()))
    event_type: str
    payload: dict[str, Any] = Field(default_factory=dict)
    metadata: EventMetadata = Field(default_factory=EventMetadata)
    priority: EventPriority = EventPriority.NORMAL
    status: EventStatus = EventStatus.PENDING
    error_message: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


EventHandler = Callable[[Event], Awaitable[None]]

DEFAULT_HISTORY_SIZE = 1000


class EventBus:
    """
    Publish/subscribe bus dispatching handlers as asyncio tasks.

    Only the most recent ``history_size`` events stay available through
    ``get_event``; older ones are evicted as new events arrive.
    """

    def __init__(self, history_size: int = DEFAULT_HISTORY_SIZE) -> None:
        if history_size < 1:
            raise ValueError("history_size must be at least 1")
        self.history_size = history_size
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)
        self._events: OrderedDict[str, Event] = OrderedDict()
        self._pending: set[asyncio.Task[None]] = set()

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        """Register a handler for an event type."""
        self._handlers[event_type].append(handler)

    def unsubscribe(self, event_type: str, handler: EventHandler) -> None:
        """Remove a previously registered handler."""
        if handler in self._handlers.get(event_type, []):
            self._handlers[event_type].remove(handler)

    async def publish(
        self,
        event_type: str,
        payload: dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
        priority: EventPriority = EventPriority.NORMAL,
    ) -> Event:
        """Record the event and schedule its handlers."""
        event = Event(
            event_type=event_type,
            payload=payload or {},
            metadata=EventMetadata(**(metadata or {})),
            priority=priority,
        )
        self._remember(event)

        handlers = list(self._handlers.get(event_type, []))
        if not handlers:
            event.status = EventStatus.COMPLETED
            return event

        task = asyncio.create_task(self._dispatch(event, handlers))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return event

    def _remember(self, event: Event) -> None:
        self._events[event.event_id] = event
        while len(self._events) > self.history_size:
            self._events.popitem(last=False)

    @property
    def retained_count(self) -> int:
        """Number of events still available through ``get_event``."""
        return len(self._events)

    async def _dispatch(self, event: Event, handlers: list[EventHandler]) -> None:
        for handler in handlers:
            try:
                await handler(event)
            except Exception as exc:
                event.status = EventStatus.FAILED
                event.error_message = str(exc)
                logger.error(
                    "Event handler failed",
                    event_type=event.event_type,
                    event_id=event.event_id,
                    error=str(exc),
                )
                return
        event.status = EventStatus.COMPLETED

    async def get_event(self, event_id: str) -> Event | None:
        """Look up a published event by id."""
        return self._events.get(event_id)

    async def drain(self) -> None:
        """Wait until every scheduled handler has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


_event_bus: EventBus | None = None


def get_event_bus() -> EventBus:
    """Get the global event bus (singleton)."""
    global _event_bus
    if _event_bus is None:
        _event_bus = EventBus()
    return _event_bus


def reset_event_bus() -> None:
    """Reset the global event bus (mainly for testing)."""
    global _event_bus
    _event_bus = None


__all__ = [
    "Event",
    "EventBus",
    "EventHandler",
    "EventMetadata",
    "EventPriority",
    "EventStatus",
    "get_event_bus",
    "reset_event_bus",
]
