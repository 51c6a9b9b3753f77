"""
Domain events published on the in-process event bus.
"""

from dataclasses import dataclass
from enum import Enum
from typing import ClassVar

from idbroker.client.schemas import ClientRecord


class EventKind(str, Enum):
    CLIENT_CREATED = "client_created"
    CLIENT_UPDATED = "client_updated"


@dataclass(frozen=True)
class DomainEvent:
    kind: ClassVar[EventKind]


@dataclass(frozen=True)
class ClientCreated(DomainEvent):
    kind: ClassVar[EventKind] = EventKind.CLIENT_CREATED
    client: ClientRecord


@dataclass(frozen=True)
class ClientUpdated(DomainEvent):
    kind: ClassVar[EventKind] = EventKind.CLIENT_UPDATED
    client: ClientRecord
