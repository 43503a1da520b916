"""
Dispatcher event stream.

- DispatchEvent / DispatchEventType: the unified event model
- EventBus / InMemoryEventBus: subscription-based distribution
"""

from .types import TERMINAL_EVENT_TYPES, DispatchEvent, DispatchEventType
from .bus import EventBus, EventSubscription, InMemoryEventBus

__all__ = [
    "DispatchEvent",
    "DispatchEventType",
    "TERMINAL_EVENT_TYPES",
    "EventBus",
    "InMemoryEventBus",
    "EventSubscription",
]
