"""Event bus implementation for decoupled sync lifecycle handling."""

import asyncio
import inspect
import logging
from enum import Enum
from typing import Any
from typing import Awaitable
from typing import Callable
from typing import Dict
from typing import List

logger = logging.getLogger(__name__)

EventHandler = Callable[[Dict[str, Any]], Awaitable[None] | None]


async def _invoke(handler: EventHandler, payload: Dict[str, Any]) -> None:
    # Plain callables run inline; their exceptions surface through gather.
    result = handler(payload)
    if inspect.isawaitable(result):
        await result


class SyncEvent(str, Enum):
    """Named events emitted by the sync engine."""

    # Connectivity
    ONLINE = "online"
    OFFLINE = "offline"

    # Drain / fetch cycles
    SYNC_START = "syncStart"
    SYNC_SUCCESS = "syncSuccess"
    SYNC_ERROR = "syncError"
    SYNC_STATUS_CHANGED = "syncStatusChanged"
    SESSIONS_RECEIVED = "sessionsReceived"
    OPERATION_DROPPED = "syncOperationDropped"

    # Session mutations (emitted once the mutation is confirmed or queued)
    SESSION_STARTED = "sessionStarted"
    SESSION_ENDED = "sessionEnded"
    SESSION_UPDATED = "sessionUpdated"
    SESSION_DELETED = "sessionDeleted"

    # Account
    USER_CODE_GENERATED = "userCodeGenerated"


class EventBus:
    """Publish/subscribe hub owned by a single sync engine instance."""

    def __init__(self):
        """Initialize an empty event bus."""
        # Lists keep subscription order, handlers run in the order added.
        self._subscribers: Dict[SyncEvent, List[EventHandler]] = {}

    async def publish(self, event_type: SyncEvent, data: Dict[str, Any] | None = None) -> None:
        """Publish an event to all subscribers.

        Handlers run concurrently; a failing handler is logged and never
        affects the publisher or the other handlers.

        Args:
            event_type: The type of event being published
            data: Event payload data
        """
        handlers = list(self._subscribers.get(event_type, ()))
        if not handlers:
            return

        payload = data or {}
        logger.debug("Publishing event %s to %d handler(s)", event_type.value, len(handlers))

        results = await asyncio.gather(*(_invoke(handler, payload) for handler in handlers), return_exceptions=True)

        for handler, result in zip(handlers, results):
            if isinstance(result, Exception):
                logger.error(
                    "Error in event handler %s for %s: %s",
                    getattr(handler, "__name__", repr(handler)),
                    event_type.value,
                    result,
                )

    def subscribe(self, event_type: SyncEvent, callback: EventHandler) -> None:
        """Subscribe to an event type.

        Args:
            event_type: The event type to subscribe to
            callback: Plain or async callable receiving the payload
        """
        handlers = self._subscribers.setdefault(event_type, [])
        if callback not in handlers:
            handlers.append(callback)
        logger.debug(f"Added subscriber for event {event_type.value}")

    def unsubscribe(self, event_type: SyncEvent, callback: EventHandler) -> None:
        """Unsubscribe from an event type.

        Args:
            event_type: The event type to unsubscribe from
            callback: The callback function to remove
        """
        handlers = self._subscribers.get(event_type)
        if not handlers:
            return

        if callback in handlers:
            handlers.remove(callback)
            logger.debug(f"Removed subscriber for event {event_type.value}")

        # Clean up empty subscriber lists
        if not handlers:
            del self._subscribers[event_type]

    def subscriber_count(self, event_type: SyncEvent) -> int:
        return len(self._subscribers.get(event_type, ()))
