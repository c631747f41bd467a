"""
Event notifications for contextgate.
"""

from .events import (
    Event,
    EventType,
    EventHandler,
    EventDispatcher,
    publish_event,
)

__all__ = [
    "Event",
    "EventType",
    "EventHandler",
    "EventDispatcher",
    "publish_event",
]
