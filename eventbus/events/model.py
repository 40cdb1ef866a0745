"""
Value types shared by the event bus and its collaborators.

Provides:
- ``Event``: immutable event value handed from a publisher to consumers
- ``EventPublisher`` / ``EventConsumer``: the two collaborator protocols
- Registry records and dispatch results
"""

from __future__ import annotations

import inspect
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol, Union, runtime_checkable

from eventbus.events.errors import InvalidArgumentError


# =============================================================================
# Collaborator Protocols
# =============================================================================


@runtime_checkable
class EventPublisher(Protocol):
    """A named source of events."""

    def get_publisher_name(self) -> str: ...


@runtime_checkable
class EventConsumer(Protocol):
    """Anything able to receive an event."""

    def event_received(self, event: Event) -> None: ...


# A consumer is either an ``EventConsumer`` or a plain callable taking the event
Consumer = Union[EventConsumer, Callable[["Event"], Any]]
PublisherRef = Union[EventPublisher, str]


# =============================================================================
# Event
# =============================================================================


@dataclass(frozen=True)
class Event:
    """
    Event published on the bus.

    Attributes:
        publisher_name: Name of the publisher emitting the event
        event_type: One of the event types the publisher declared
        payload: Opaque event data, never inspected by the bus
        id: Unique event ID
        timestamp: When the event was created (UTC)
    """

    publisher_name: str
    event_type: str
    payload: Any = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_publisher(
        cls, publisher: PublisherRef, event_type: str, payload: Any = None
    ) -> Event:
        """Create an event stamped with the publisher's name."""
        return cls(
            publisher_name=publisher_name_of(publisher),
            event_type=event_type,
            payload=payload,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "publisher_name": self.publisher_name,
            "event_type": self.event_type,
            "payload": self.payload,
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
        }


# =============================================================================
# Registry Records
# =============================================================================


@dataclass(frozen=True)
class PublisherRegistration:
    """A registered publisher and the event types it may emit."""

    name: str
    event_types: tuple[str, ...]

    def declares(self, event_type: str) -> bool:
        return event_type in self.event_types


@dataclass(frozen=True)
class Subscription:
    """Binding of a consumer to a publisher name, optionally filtered."""

    consumer: Consumer
    publisher_name: str
    event_filter: frozenset[str] | None = None

    def matches(self, event_type: str) -> bool:
        return self.event_filter is None or event_type in self.event_filter

    def held_by(self, consumer: Consumer) -> bool:
        return same_consumer(self.consumer, consumer)


@dataclass(frozen=True)
class ConsumerFailure:
    """A consumer that raised while receiving an event."""

    consumer: Consumer
    error: BaseException

    @property
    def consumer_name(self) -> str:
        return consumer_name_of(self.consumer)


@dataclass
class DispatchResult:
    """Outcome of a single ``publish_sync_event`` call."""

    event: Event
    delivered: int = 0
    filtered: int = 0
    failures: list[ConsumerFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event.id,
            "publisher_name": self.event.publisher_name,
            "event_type": self.event.event_type,
            "delivered": self.delivered,
            "filtered": self.filtered,
            "failed": len(self.failures),
            "failures": [
                {
                    "consumer": f.consumer_name,
                    "error": str(f.error),
                    "error_type": type(f.error).__name__,
                }
                for f in self.failures
            ],
        }


# =============================================================================
# Helpers
# =============================================================================


def publisher_name_of(publisher: PublisherRef) -> str:
    """Resolve and validate the name of a publisher (or a bare name)."""
    if isinstance(publisher, str):
        name = publisher
    elif isinstance(publisher, EventPublisher):
        name = publisher.get_publisher_name()
    else:
        raise InvalidArgumentError(
            f"Publisher must be a name or provide get_publisher_name(), "
            f"got {type(publisher).__name__}."
        )
    if not isinstance(name, str) or not name.strip():
        raise InvalidArgumentError("Publisher name must be a non-empty string.")
    return name


def normalize_event_types(event_types: Iterable[str], what: str) -> tuple[str, ...]:
    """Validate a collection of event type names, keeping first-seen order."""
    if isinstance(event_types, str):
        raise InvalidArgumentError(
            f"{what} must be a collection of names, not a single string."
        )
    try:
        items = list(event_types)
    except TypeError:
        raise InvalidArgumentError(f"{what} must be iterable.") from None
    if not items:
        raise InvalidArgumentError(f"{what} must not be empty.")
    for item in items:
        if not isinstance(item, str) or not item:
            raise InvalidArgumentError(
                f"{what} must contain non-empty strings, got {item!r}."
            )
    return tuple(dict.fromkeys(items))


def receiver_of(consumer: Consumer) -> Callable[[Event], Any]:
    """Return the callable that delivers an event to the consumer."""
    receive = getattr(consumer, "event_received", None)
    if callable(receive):
        return receive
    if callable(consumer):
        return consumer
    raise InvalidArgumentError(
        f"Consumer must provide event_received(event) or be callable, "
        f"got {type(consumer).__name__}."
    )


def same_consumer(a: Consumer, b: Consumer) -> bool:
    # Bound methods are recreated on every attribute access
    if a is b:
        return True
    return inspect.ismethod(a) and inspect.ismethod(b) and a == b


def consumer_name_of(consumer: Consumer) -> str:
    name = getattr(consumer, "__qualname__", None)
    if name is None:
        name = type(consumer).__qualname__
    return name
