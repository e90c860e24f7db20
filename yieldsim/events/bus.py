"""
Domain Event Bus — synchronous in-process pub/sub

Observers register per event class (or for every event). `publish` calls the
matching handlers in registration order and returns once all of them have run;
the engine publishes a tick's events only after that tick's portfolio mutation
is complete.

A failing observer is logged and skipped so it cannot abort the simulation,
unless the bus was built with raise_on_handler_error=True.
"""

import logging
from typing import Callable, Iterable, Optional

from .models import DomainEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[DomainEvent], None]


class DomainEventBus:
    """Callback registry with synchronous dispatch."""

    def __init__(self, raise_on_handler_error: bool = False):
        self.raise_on_handler_error = raise_on_handler_error
        self._handlers: dict[type[DomainEvent], list[EventHandler]] = {}
        self._global_handlers: list[EventHandler] = []
        self.published_count = 0
        self.handler_error_count = 0

    def subscribe(self, event_class: type[DomainEvent], handler: EventHandler) -> None:
        """Register `handler` for `event_class` and its subclasses."""
        self._handlers.setdefault(event_class, []).append(handler)

    def subscribe_all(self, handler: EventHandler) -> None:
        self._global_handlers.append(handler)

    def unsubscribe(self, event_class: Optional[type[DomainEvent]], handler: EventHandler) -> bool:
        """
        Remove a handler (event_class=None for a global handler).

        Returns:
            True if the handler was registered
        """
        handlers = self._global_handlers if event_class is None else self._handlers.get(event_class, [])
        if handler in handlers:
            handlers.remove(handler)
            return True
        return False

    def handlers_for(self, event: DomainEvent) -> list[EventHandler]:
        matched: list[EventHandler] = []
        for event_class, handlers in self._handlers.items():
            if isinstance(event, event_class):
                matched.extend(handlers)
        matched.extend(self._global_handlers)
        return matched

    def publish(self, event: DomainEvent) -> None:
        self.published_count += 1
        for handler in self.handlers_for(event):
            try:
                handler(event)
            except Exception:
                self.handler_error_count += 1
                logger.exception(
                    "Event handler %r failed for %s (%s)",
                    handler,
                    event.event_type,
                    event.event_id,
                )
                if self.raise_on_handler_error:
                    raise

    def publish_all(self, events: Iterable[DomainEvent]) -> None:
        for event in events:
            self.publish(event)


class EventRecorder:
    """Observer that keeps every event it receives (tests, audit trails)."""

    def __init__(self):
        self.events: list[DomainEvent] = []

    def __call__(self, event: DomainEvent) -> None:
        self.events.append(event)

    def of_type(self, event_class: type[DomainEvent]) -> list[DomainEvent]:
        return [e for e in self.events if isinstance(e, event_class)]

    def clear(self) -> None:
        self.events.clear()
