"""Base classes for the booking domain.

Line items, the booking aggregate that owns them, and the events a
decision records.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, ClassVar
from uuid import UUID, uuid4


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ValueObject(ABC):
    """Immutable value compared by its attributes."""


@dataclass
class Entity(ABC):
    """Row-backed domain object.

    Every entity is identified by the integer primary key of its row;
    two instances with the same id are the same booking line.

    Attributes:
        id: Row identifier.
    """

    id: int

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, self.__class__):
            return False
        return self.id == other.id

    def __hash__(self) -> int:
        return hash((self.__class__.__name__, self.id))


@dataclass(kw_only=True, eq=False)
class AggregateRoot(Entity):
    """Entry point to a booking and everything attached to it.

    Decisions are applied through the root so it can record the events
    that describe them. Events stay buffered until the decision has been
    persisted and are then collected for the chef notification.

    Attributes:
        created_at: When the booking was placed.
        updated_at: Last modification, moved forward by every decision.
    """

    created_at: datetime | None = field(default=None, compare=False)
    updated_at: datetime | None = field(default=None, compare=False)
    _events: list["DomainEvent"] = field(default_factory=list, init=False, repr=False, compare=False)

    def _record_event(self, event: "DomainEvent") -> None:
        self._events.append(event)

    def collect_events(self) -> list["DomainEvent"]:
        """Return and clear the events recorded since the last collection."""
        events = list(self._events)
        self._events.clear()
        return events

    def _touch(self) -> None:
        self.updated_at = _utcnow()


@dataclass(frozen=True)
class DomainEvent(ABC):
    """Something a decision did to a booking.

    Attributes:
        event_id: Unique identifier for this occurrence.
        event_type: Dotted type name, set by each subclass.
        occurred_at: When the event was recorded.
        booking_id: Kitchen booking the event belongs to.
    """

    event_type: ClassVar[str]

    event_id: UUID = field(default_factory=uuid4)
    occurred_at: datetime = field(default_factory=_utcnow)
    booking_id: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Serialize the event for notifications and audit logs."""
        return {
            "event_id": str(self.event_id),
            "event_type": self.event_type,
            "occurred_at": self.occurred_at.isoformat(),
            "booking_id": self.booking_id,
            "payload": self._payload(),
        }

    @abstractmethod
    def _payload(self) -> dict[str, Any]:
        """Event-specific data."""
