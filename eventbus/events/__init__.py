"""
Event bus module.

Provides a synchronous, name-based publish/subscribe bus for decoupled
communication between in-process components.
"""

from eventbus.events.bus import EventBus, get_event_bus
from eventbus.events.errors import (
    ConsumerDispatchError,
    DuplicatePublisherError,
    EventBusClosedError,
    EventBusError,
    InvalidArgumentError,
    UnknownEventTypeError,
    UnknownPublisherError,
)
from eventbus.events.model import (
    ConsumerFailure,
    DispatchResult,
    Event,
    EventConsumer,
    EventPublisher,
    PublisherRegistration,
    Subscription,
)

__all__ = [
    "ConsumerDispatchError",
    "ConsumerFailure",
    "DispatchResult",
    "DuplicatePublisherError",
    "Event",
    "EventBus",
    "EventBusClosedError",
    "EventBusError",
    "EventConsumer",
    "EventPublisher",
    "InvalidArgumentError",
    "PublisherRegistration",
    "Subscription",
    "UnknownEventTypeError",
    "UnknownPublisherError",
    "get_event_bus",
]
