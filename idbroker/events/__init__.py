from idbroker.events.bus import EventBus, SubscriberFailure
from idbroker.events.schemas import ClientCreated, ClientUpdated, DomainEvent, EventKind
from idbroker.events.subscribers import BootstrapStateTracker, ClientCacheInvalidator, Subscriber

__all__ = [
    "EventBus",
    "SubscriberFailure",
    "ClientCreated",
    "ClientUpdated",
    "DomainEvent",
    "EventKind",
    "BootstrapStateTracker",
    "ClientCacheInvalidator",
    "Subscriber",
]
