"""
Error types for the event bus.

Registration and publish errors are raised immediately to the caller.
Consumer failures are collected during delivery and surfaced afterwards
as a single ``ConsumerDispatchError``.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from eventbus.events.model import ConsumerFailure, Event


class EventBusError(Exception):
    """Base error for event bus operations."""


class InvalidArgumentError(EventBusError, ValueError):
    """Malformed publisher name, event type set, consumer or event."""


class EventBusClosedError(EventBusError):
    """The bus was torn down with ``close()``."""

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"Event bus is closed, cannot {operation}.")


class DuplicatePublisherError(EventBusError):
    """A publisher with the same name is already registered."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Publisher '{name}' is already registered.")


class UnknownPublisherError(EventBusError):
    """No publisher is registered under the name."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Publisher '{name}' is not registered.")


class UnknownEventTypeError(EventBusError):
    """Event type(s) not declared by the publisher."""

    def __init__(self, publisher_name: str, event_types: Iterable[str]):
        self.publisher_name = publisher_name
        self.event_types = tuple(sorted(event_types))
        joined = ", ".join(f"'{t}'" for t in self.event_types)
        super().__init__(
            f"Publisher '{publisher_name}' does not declare event type(s): {joined}."
        )


class ConsumerDispatchError(EventBusError):
    """One or more consumers failed while receiving an event.

    Raised only after every consumer in the dispatch snapshot was attempted.
    """

    def __init__(self, event: Event, failures: list[ConsumerFailure]):
        self.event = event
        self.failures = list(failures)
        super().__init__(
            f"{len(self.failures)} consumer(s) failed handling "
            f"'{event.event_type}' from '{event.publisher_name}' "
            f"(event_id: {event.id})."
        )

    @property
    def exceptions(self) -> list[BaseException]:
        return [failure.error for failure in self.failures]
