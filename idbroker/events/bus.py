"""
In-process publish/subscribe fan-out of domain events.
"""

import threading
from dataclasses import dataclass
from typing import Protocol

from loguru import logger

from idbroker.events.schemas import DomainEvent, EventKind
from idbroker.metrics import subscriber_failures


class EventSubscriber(Protocol):
    async def handle(self, event: DomainEvent) -> None: ...


@dataclass
class SubscriberFailure:
    subscriber: str
    kind: EventKind
    error: BaseException


class EventBus:
    """
    Subscribers of a kind are invoked in registration order, and all of them
    have run by the time emit() returns. A failing subscriber is logged and
    counted but never stops its siblings.
    """

    def __init__(self):
        self._subscribers: dict[EventKind, list[EventSubscriber]] = {}
        self._lock = threading.Lock()

    def subscribe(self, kind: EventKind, subscriber: EventSubscriber):
        with self._lock:
            self._subscribers.setdefault(kind, []).append(subscriber)

    def subscribers(self, kind: EventKind) -> list[EventSubscriber]:
        with self._lock:
            return list(self._subscribers.get(kind, []))

    async def emit(self, event: DomainEvent) -> list[SubscriberFailure]:
        failures = []
        for subscriber in self.subscribers(event.kind):
            name = type(subscriber).__name__
            try:
                await subscriber.handle(event)
            except Exception as exc:
                logger.opt(exception=exc).error(
                    f"Subscriber {name} failed handling {event.kind.value}: {exc}"
                )
                subscriber_failures.labels(kind=event.kind.value, subscriber=name).inc()
                failures.append(SubscriberFailure(subscriber=name, kind=event.kind, error=exc))
        return failures
