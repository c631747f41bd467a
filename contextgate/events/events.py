"""
Outbound notifications for contextgate.

Stores hold an explicitly injected EventDispatcher and publish to it right
after a state transition has been committed. There is no global bus: a
dispatcher delivers synchronously to the handlers subscribed on it, and a
failing handler never affects the store or the other handlers.
"""

import inspect
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from ..common.utils import get_current_time


logger = logging.getLogger(__name__)


class EventType(Enum):
    """State transitions the stores announce."""

    PERMISSION_GRANTED = "permission_granted"
    PERMISSION_REVOKED = "permission_revoked"
    PERMISSION_EXPIRED = "permission_expired"

    CONSENT_GRANTED = "consent_granted"
    CONSENT_DENIED = "consent_denied"
    CONSENT_REVOKED = "consent_revoked"
    CONSENT_EXPIRED = "consent_expired"


@dataclass
class Event:
    """
    Notification about a committed state transition.

    Attributes:
        type: What happened
        user_id: Owner of the affected record
        record_id: Permission or consent id
        actor: Who caused the transition (grantor, revoker, "system")
        timestamp: When the transition was committed
        metadata: Event-specific data
    """

    type: EventType
    user_id: str
    record_id: str
    actor: str = "system"
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=get_current_time)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert event to dictionary representation."""
        return {
            "id": self.id,
            "type": self.type.value,
            "user_id": self.user_id,
            "record_id": self.record_id,
            "actor": self.actor,
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata,
        }


class EventHandler:
    """Base class for event handlers."""

    async def handle(self, event: Event) -> None:
        """Handle an event. Override in subclasses."""
        pass


EventCallback = Callable[[Event], Union[None, Awaitable[None]]]


class EventDispatcher:
    """
    Delivers events to subscribed handlers and callbacks.

    Callbacks may be plain functions or coroutine functions.
    """

    def __init__(self):
        self._handlers: Dict[EventType, List[EventHandler]] = {}
        self._subscribers: Dict[EventType, List[EventCallback]] = {}

    def subscribe(self, event_type: EventType, handler: EventHandler) -> None:
        """Subscribe a handler to an event type."""
        self._handlers.setdefault(event_type, []).append(handler)

    def subscribe_function(self, event_type: EventType, callback: EventCallback) -> None:
        """Subscribe a function to an event type."""
        self._subscribers.setdefault(event_type, []).append(callback)

    def unsubscribe(self, event_type: EventType, handler: Union[EventHandler, EventCallback]) -> None:
        """Remove a handler or callback from an event type."""
        for registry in (self._handlers, self._subscribers):
            try:
                registry.get(event_type, []).remove(handler)
            except ValueError:
                pass

    async def publish(self, event: Event) -> None:
        """Deliver an event to everything subscribed to its type."""
        for handler in list(self._handlers.get(event.type, [])):
            try:
                await handler.handle(event)
            except Exception as e:
                logger.error(f"Event handler {type(handler).__name__} failed on {event.type.value}: {e}")

        for callback in list(self._subscribers.get(event.type, [])):
            try:
                result = callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Event subscriber failed on {event.type.value}: {e}")


async def publish_event(dispatcher: Optional[EventDispatcher], event_type: EventType,
                        user_id: str, record_id: str, actor: str = "system",
                        **metadata: Any) -> None:
    """Publish when a dispatcher is configured; no-op otherwise."""
    if dispatcher is None:
        return
    await dispatcher.publish(Event(
        type=event_type,
        user_id=user_id,
        record_id=record_id,
        actor=actor,
        metadata=metadata
    ))
