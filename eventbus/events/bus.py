"""
Synchronous in-process event bus.

Publishers register under a unique name with the event types they may emit.
Consumers subscribe to a publisher *name*, optionally restricted to some of
its event types, before or after the publisher itself registers.

Provides:
- Name-based publisher registry with declared event types
- Per-publisher subscriptions, delivered in registration order
- Synchronous dispatch on the publishing thread
- Snapshot delivery: registry changes made while an event is being delivered
  (including a consumer unregistering itself) apply to the next publish
- Fail-soft delivery with a bounded dead letter record of consumer failures

Example:
    bus = EventBus()
    bus.register_publisher(scanner, ["scan.started", "scan.stopped"])
    bus.register_consumer(reporter, "scanner", ["scan.stopped"])

    bus.publish_sync_event(scanner, Event.from_publisher(scanner, "scan.stopped"))
"""

from __future__ import annotations

import threading
from collections import deque
from collections.abc import Iterable
from typing import Any

from eventbus.config import BusConfig
from eventbus.events.errors import (
    ConsumerDispatchError,
    DuplicatePublisherError,
    EventBusClosedError,
    InvalidArgumentError,
    UnknownEventTypeError,
    UnknownPublisherError,
)
from eventbus.events.model import (
    Consumer,
    ConsumerFailure,
    DispatchResult,
    Event,
    PublisherRef,
    PublisherRegistration,
    Subscription,
    consumer_name_of,
    normalize_event_types,
    publisher_name_of,
    receiver_of,
)
from eventbus.logging_config import get_logger

logger = get_logger(__name__)


class EventBus:
    """
    Registry of publishers and consumers with synchronous dispatch.

    All registry state is guarded by a single lock. Delivery runs outside
    the lock against a copy of the subscriber list, so consumers may call
    back into the bus from ``event_received``.
    """

    def __init__(self, config: BusConfig | None = None):
        """
        Initialize event bus.

        Args:
            config: Bus behaviour settings (defaults to ``BusConfig()``)
        """
        self.config = config or BusConfig()
        self._lock = threading.RLock()
        self._publishers: dict[str, PublisherRegistration] = {}
        # Keyed by publisher name; list order is registration order
        self._subscriptions: dict[str, list[Subscription]] = {}
        self._dead_letters: deque[tuple[Event, ConsumerFailure]] = deque(
            maxlen=self.config.max_dead_letters
        )
        self._closed = False
        self._published = 0
        self._failed_deliveries = 0

    def __enter__(self) -> EventBus:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    def _ensure_open(self, operation: str) -> None:
        if self._closed:
            raise EventBusClosedError(operation)

    # -------------------------------------------------------------------------
    # Publishers
    # -------------------------------------------------------------------------

    def register_publisher(
        self, publisher: PublisherRef, event_types: Iterable[str]
    ) -> PublisherRegistration:
        """
        Register a publisher and the event types it may publish.

        Args:
            publisher: Publisher object or its name
            event_types: Non-empty collection of event type names

        Returns:
            The stored registration

        Raises:
            InvalidArgumentError: Bad name or empty/malformed event types
            DuplicatePublisherError: Name already registered
        """
        name = publisher_name_of(publisher)
        types = normalize_event_types(event_types, "Publisher event types")
        registration = PublisherRegistration(name=name, event_types=types)

        with self._lock:
            self._ensure_open("register publisher")
            if name in self._publishers:
                raise DuplicatePublisherError(name)
            self._publishers[name] = registration
            waiting = list(self._subscriptions.get(name, ()))

        logger.info(
            "publisher_registered",
            publisher=name,
            event_types=list(types),
            waiting_consumers=len(waiting),
        )
        for sub in waiting:
            if sub.event_filter is None:
                continue
            undeclared = sub.event_filter.difference(types)
            if undeclared:
                logger.warning(
                    "subscription_filter_undeclared_types",
                    publisher=name,
                    consumer=consumer_name_of(sub.consumer),
                    event_types=sorted(undeclared),
                )
        return registration

    def unregister_publisher(self, publisher: PublisherRef) -> None:
        """
        Remove a publisher registration.

        Subscriptions to the name are kept and become live again if a
        publisher registers under the same name later.

        Raises:
            UnknownPublisherError: Name not registered
            EventBusClosedError: Bus was closed
        """
        name = publisher_name_of(publisher)
        with self._lock:
            self._ensure_open("unregister publisher")
            if self._publishers.pop(name, None) is None:
                raise UnknownPublisherError(name)
        logger.info("publisher_unregistered", publisher=name)

    def unregister_all_publishers(self) -> int:
        """Remove every publisher registration. Returns the number removed."""
        with self._lock:
            self._ensure_open("unregister publishers")
            count = len(self._publishers)
            self._publishers.clear()
        logger.info("publishers_unregistered", count=count)
        return count

    def get_publisher_names(self) -> list[str]:
        """Names of registered publishers, in registration order."""
        with self._lock:
            return list(self._publishers)

    def get_event_types_for_publisher(self, publisher_name: str) -> list[str]:
        """Declared event types of a publisher, or ``[]`` if not registered."""
        with self._lock:
            registration = self._publishers.get(publisher_name)
        return list(registration.event_types) if registration else []

    # -------------------------------------------------------------------------
    # Consumers
    # -------------------------------------------------------------------------

    def register_consumer(
        self,
        consumer: Consumer,
        publisher_name: str,
        event_types: Iterable[str] | None = None,
    ) -> Subscription:
        """
        Subscribe a consumer to a publisher's events.

        The publisher does not need to be registered yet. Registering the
        same consumer against the same publisher again replaces its filter
        and keeps its place in the delivery order.

        Args:
            consumer: ``EventConsumer`` or callable taking the event
            publisher_name: Name of the publisher to listen to
            event_types: Event types of interest, or None for all

        Returns:
            The stored subscription

        Raises:
            InvalidArgumentError: Bad consumer, name or event types
            UnknownEventTypeError: Publisher is registered and does not
                declare the requested types (see ``BusConfig.subscription_policy``)
        """
        receiver_of(consumer)
        name = publisher_name_of(publisher_name)
        requested = (
            None
            if event_types is None
            else normalize_event_types(event_types, "Consumer event types")
        )

        with self._lock:
            self._ensure_open("register consumer")
            event_filter = self._resolve_filter(name, consumer, requested)
            subscription = Subscription(
                consumer=consumer, publisher_name=name, event_filter=event_filter
            )
            subs = self._subscriptions.setdefault(name, [])
            for index, existing in enumerate(subs):
                if existing.held_by(consumer):
                    subs[index] = subscription
                    replaced = True
                    break
            else:
                subs.append(subscription)
                replaced = False

        logger.debug(
            "consumer_registered",
            consumer=consumer_name_of(consumer),
            publisher=name,
            event_types=None if event_filter is None else sorted(event_filter),
            replaced=replaced,
        )
        return subscription

    def _resolve_filter(
        self,
        publisher_name: str,
        consumer: Consumer,
        requested: tuple[str, ...] | None,
    ) -> frozenset[str] | None:
        # Caller holds the lock
        if requested is None:
            return None
        registration = self._publishers.get(publisher_name)
        if registration is None:
            return frozenset(requested)

        unknown = [t for t in requested if not registration.declares(t)]
        if not unknown:
            return frozenset(requested)
        if self.config.strict_subscriptions:
            raise UnknownEventTypeError(publisher_name, unknown)

        narrowed = frozenset(t for t in requested if registration.declares(t))
        if not narrowed:
            raise UnknownEventTypeError(publisher_name, unknown)
        logger.warning(
            "subscription_filter_narrowed",
            consumer=consumer_name_of(consumer),
            publisher=publisher_name,
            dropped=sorted(unknown),
            kept=sorted(narrowed),
        )
        return narrowed

    def unregister_consumer(
        self, consumer: Consumer, publisher_name: str | None = None
    ) -> int:
        """
        Remove a consumer's subscription(s).

        Args:
            consumer: Consumer to remove
            publisher_name: Remove only this subscription, or None for all

        Returns:
            Number of subscriptions removed (0 if the consumer had none)
        """
        removed = 0
        with self._lock:
            names = (
                list(self._subscriptions)
                if publisher_name is None
                else [publisher_name]
            )
            for name in names:
                subs = self._subscriptions.get(name)
                if not subs:
                    continue
                kept = [s for s in subs if not s.held_by(consumer)]
                removed += len(subs) - len(kept)
                if kept:
                    self._subscriptions[name] = kept
                else:
                    del self._subscriptions[name]

        if removed:
            logger.debug(
                "consumer_unregistered",
                consumer=consumer_name_of(consumer),
                publisher=publisher_name,
                removed=removed,
            )
        return removed

    def get_subscriptions(self, publisher_name: str | None = None) -> list[Subscription]:
        """Current subscriptions, optionally for one publisher name."""
        with self._lock:
            if publisher_name is not None:
                return list(self._subscriptions.get(publisher_name, ()))
            return [s for subs in self._subscriptions.values() for s in subs]

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    def publish_sync_event(self, publisher: PublisherRef, event: Event) -> DispatchResult:
        """
        Deliver an event to every interested consumer before returning.

        Args:
            publisher: Registered publisher (or its name) emitting the event
            event: Event to deliver

        Returns:
            DispatchResult with delivery counts and consumer failures

        Raises:
            UnknownPublisherError: Publisher not registered
            InvalidArgumentError: Event names a different publisher
            UnknownEventTypeError: Event type not declared by the publisher
            ConsumerDispatchError: A consumer failed (after all were attempted,
                when ``BusConfig.raise_consumer_errors`` is set)
        """
        name = publisher_name_of(publisher)
        if not isinstance(event, Event):
            raise InvalidArgumentError(
                f"Expected an Event, got {type(event).__name__}."
            )

        with self._lock:
            self._ensure_open("publish events")
            registration = self._publishers.get(name)
            if registration is None:
                raise UnknownPublisherError(name)
            if event.publisher_name != name:
                raise InvalidArgumentError(
                    f"Event was created for publisher '{event.publisher_name}' "
                    f"but published by '{name}'."
                )
            if not registration.declares(event.event_type):
                raise UnknownEventTypeError(name, [event.event_type])
            snapshot = tuple(self._subscriptions.get(name, ()))
            self._published += 1

        result = DispatchResult(event=event)
        for sub in snapshot:
            if not sub.matches(event.event_type):
                result.filtered += 1
                continue
            try:
                receiver_of(sub.consumer)(event)
                result.delivered += 1
            except Exception as e:
                failure = ConsumerFailure(consumer=sub.consumer, error=e)
                result.failures.append(failure)
                logger.exception(
                    "event_consumer_error",
                    publisher=name,
                    event_type=event.event_type,
                    event_id=event.id,
                    consumer=failure.consumer_name,
                )

        if result.failures:
            self._record_failures(event, result.failures)

        logger.debug(
            "event_dispatched",
            publisher=name,
            event_type=event.event_type,
            event_id=event.id,
            delivered=result.delivered,
            filtered=result.filtered,
            failed=len(result.failures),
        )

        if result.failures and self.config.raise_consumer_errors:
            raise ConsumerDispatchError(event, result.failures)
        return result

    # -------------------------------------------------------------------------
    # Dead Letters
    # -------------------------------------------------------------------------

    def _record_failures(self, event: Event, failures: list[ConsumerFailure]) -> None:
        with self._lock:
            self._failed_deliveries += len(failures)
            if self._dead_letters.maxlen:
                self._dead_letters.extend((event, f) for f in failures)

    def get_dead_letters(self, limit: int = 100) -> list[tuple[Event, ConsumerFailure]]:
        """Most recent consumer failures, oldest first."""
        if limit <= 0:
            return []
        with self._lock:
            return list(self._dead_letters)[-limit:]

    def clear_dead_letters(self) -> int:
        with self._lock:
            count = len(self._dead_letters)
            self._dead_letters.clear()
        return count

    # -------------------------------------------------------------------------
    # Lifecycle & Stats
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Tear down the bus, dropping every registration."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            publishers = len(self._publishers)
            subscriptions = sum(len(s) for s in self._subscriptions.values())
            self._publishers.clear()
            self._subscriptions.clear()
            self._dead_letters.clear()
        logger.info(
            "event_bus_closed",
            publishers=publishers,
            subscriptions=subscriptions,
        )

    def get_stats(self) -> dict[str, Any]:
        """Get event bus statistics."""
        with self._lock:
            return {
                "publishers": len(self._publishers),
                "subscribed_publisher_names": len(self._subscriptions),
                "total_subscriptions": sum(
                    len(subs) for subs in self._subscriptions.values()
                ),
                "events_published": self._published,
                "failed_deliveries": self._failed_deliveries,
                "dead_letters": len(self._dead_letters),
                "closed": self._closed,
            }


# =============================================================================
# Default Instance
# =============================================================================

_event_bus: EventBus | None = None
_event_bus_lock = threading.Lock()


def get_event_bus() -> EventBus:
    """Get or create the process-wide default event bus.

    Components that own their own ``EventBus`` do not need this.
    """
    global _event_bus
    with _event_bus_lock:
        if _event_bus is None or _event_bus.closed:
            _event_bus = EventBus(BusConfig.from_env())
        return _event_bus
