"""Domain events for kitchen booking decisions.

Domain events represent significant occurrences in the domain.
They are used for:
- Building the chef notification summary
- Audit logging of approval outcomes
"""

from dataclasses import dataclass
from typing import Any, ClassVar

from kitchen_bookings.domain.base import DomainEvent


# ============================================================================
# Kitchen Booking Events
# ============================================================================


@dataclass(frozen=True)
class KitchenBookingConfirmed(DomainEvent):
    """Event raised when a manager confirms a kitchen booking."""

    event_type: ClassVar[str] = "kitchen_booking.confirmed"

    chef_id: int | None = None
    manager_id: int = 0
    equipment_item_ids: tuple[int, ...] = ()

    def _payload(self) -> dict[str, Any]:
        """Get event-specific payload."""
        return {
            "chef_id": self.chef_id,
            "manager_id": self.manager_id,
            "equipment_item_ids": list(self.equipment_item_ids),
        }


@dataclass(frozen=True)
class KitchenBookingCancelled(DomainEvent):
    """Event raised when a manager rejects a kitchen booking."""

    event_type: ClassVar[str] = "kitchen_booking.cancelled"

    chef_id: int | None = None
    manager_id: int = 0
    equipment_item_ids: tuple[int, ...] = ()

    def _payload(self) -> dict[str, Any]:
        """Get event-specific payload."""
        return {
            "chef_id": self.chef_id,
            "manager_id": self.manager_id,
            "equipment_item_ids": list(self.equipment_item_ids),
        }


# ============================================================================
# Storage Booking Events
# ============================================================================


@dataclass(frozen=True)
class StorageBookingConfirmed(DomainEvent):
    """Event raised when a storage rental attached to a booking is approved."""

    event_type: ClassVar[str] = "storage_booking.confirmed"

    storage_booking_id: int = 0

    def _payload(self) -> dict[str, Any]:
        """Get event-specific payload."""
        return {
            "storage_booking_id": self.storage_booking_id,
        }


@dataclass(frozen=True)
class StorageBookingCancelled(DomainEvent):
    """Event raised when a storage rental attached to a booking is rejected."""

    event_type: ClassVar[str] = "storage_booking.cancelled"

    storage_booking_id: int = 0

    def _payload(self) -> dict[str, Any]:
        """Get event-specific payload."""
        return {
            "storage_booking_id": self.storage_booking_id,
        }


# ============================================================================
# Payment Events
# ============================================================================


@dataclass(frozen=True)
class UnitPaymentSettled(DomainEvent):
    """Event raised when money moved (or a hold was released) for a unit."""

    event_type: ClassVar[str] = "payment.settled"

    unit: str = ""
    operation: str = ""
    amount_cents: int = 0
    currency: str = "CAD"
    provider_reference: str | None = None

    def _payload(self) -> dict[str, Any]:
        """Get event-specific payload."""
        return {
            "unit": self.unit,
            "operation": self.operation,
            "amount_cents": self.amount_cents,
            "currency": self.currency,
            "provider_reference": self.provider_reference,
        }
