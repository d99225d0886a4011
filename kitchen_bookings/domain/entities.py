"""Domain entities for kitchen bookings.

Entities are domain objects with identity that persists across state changes.
This module contains the booking aggregate: a kitchen booking together with
the storage rentals and equipment rentals attached to it.
"""

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from zoneinfo import ZoneInfoNotFoundError

from kitchen_bookings.domain.base import AggregateRoot, Entity
from kitchen_bookings.domain.events import (
    KitchenBookingCancelled,
    KitchenBookingConfirmed,
    StorageBookingCancelled,
    StorageBookingConfirmed,
    UnitPaymentSettled,
)
from kitchen_bookings.domain.exceptions import InvalidStateTransitionError
from kitchen_bookings.domain.formatting import format_booking_slot, format_date_range
from kitchen_bookings.domain.state_machines import (
    BookingStatus,
    PaymentStatus,
    validate_booking_transition,
    validate_payment_transition,
)
from kitchen_bookings.domain.value_objects import (
    DecisionAction,
    Money,
    PaymentOperation,
    PaymentSettlement,
    UnitKind,
    UnitRef,
)


class StorageType(str, Enum):
    """Kind of storage space being rented."""

    DRY = "dry"
    COLD = "cold"
    FREEZER = "freezer"


# ============================================================================
# Billable Unit Base
# ============================================================================


@dataclass(kw_only=True, eq=False)
class BillableUnit(Entity):
    """Common state for anything that carries its own decision and payment.

    The kitchen booking and each storage booking are billable units: each
    has a capturable amount against an authorization hold and its own
    pending -> confirmed | cancelled lifecycle.

    Attributes:
        status: Decision status of the unit.
        total_price_cents: Stored price; None means no charge.
        currency: ISO 4217 currency code.
        authorization_ref: Provider authorization (payment intent) id.
        payment_status: Persisted payment status of the unit.
        captured_amount_cents: Amount already captured for this unit.
        charge_ref: Provider charge id once funds were captured.
    """

    status: BookingStatus = BookingStatus.PENDING
    total_price_cents: int | None = None
    currency: str = "CAD"
    authorization_ref: str | None = None
    payment_status: PaymentStatus = PaymentStatus.PENDING
    captured_amount_cents: int = 0
    charge_ref: str | None = None

    entity_type = "BillableUnit"

    @property
    def unit_ref(self) -> UnitRef:
        raise NotImplementedError

    @property
    def price(self) -> Money:
        """Get the stored price as money (zero when no price is stored)."""
        return Money.from_optional_cents(self.total_price_cents, self.currency)

    @property
    def is_pending(self) -> bool:
        return self.status.is_pending()

    @property
    def has_captured_funds(self) -> bool:
        return self.captured_amount_cents > 0

    def decide(self, action: DecisionAction) -> BookingStatus:
        """Move the unit out of pending.

        Args:
            action: Manager decision for this unit.

        Returns:
            The new status.

        Raises:
            InvalidStateTransitionError: If the unit is not pending.
        """
        target = action.to_status()
        if not self.status.is_pending():
            # Approval only ever moves a unit out of pending.
            raise InvalidStateTransitionError(
                entity_type=self.entity_type,
                entity_id=str(self.unit_ref.id),
                current_state=self.status.value,
                target_state=target.value,
            )
        validate_booking_transition(self.entity_type, str(self.unit_ref.id), self.status, target)
        self.status = target
        return target

    def settle(self, settlement: PaymentSettlement) -> None:
        """Record the payment state produced by a successful operation.

        Raises:
            InvalidStateTransitionError: If the payment status cannot move.
        """
        if settlement.payment_status != self.payment_status:
            validate_payment_transition(str(self.unit_ref), self.payment_status, settlement.payment_status)
        self.payment_status = settlement.payment_status
        self.captured_amount_cents = settlement.captured_amount_cents
        if settlement.charge_ref:
            self.charge_ref = settlement.charge_ref


# ============================================================================
# Kitchen Booking
# ============================================================================


@dataclass(kw_only=True, eq=False)
class KitchenBooking(BillableUnit):
    """A chef's reservation of a kitchen time slot.

    Slot times are local wall-clock "HH:MM" values in the location's
    timezone.

    Attributes:
        id: Booking identifier.
        chef_id: Paying chef.
        manager_id: Manager who owns the kitchen's location.
        kitchen_id: Booked kitchen.
        location_id: Location of the kitchen.
        booking_date: Local date of the slot.
        start_time: Slot start, "HH:MM".
        end_time: Slot end, "HH:MM".
        timezone: IANA timezone of the location.
        kitchen_name: Display name of the kitchen.
        chef_name: Display name of the chef.
    """

    manager_id: int
    kitchen_id: int
    location_id: int
    booking_date: date
    start_time: str
    end_time: str
    timezone: str
    chef_id: int | None = None
    kitchen_name: str = ""
    chef_name: str = ""

    entity_type = "KitchenBooking"

    @property
    def unit_ref(self) -> UnitRef:
        return UnitRef(kind=UnitKind.KITCHEN_BOOKING, id=self.id)

    @property
    def slot_label(self) -> str:
        """Get the formatted slot, e.g. "Mon, Jan 5, 2026, 9:00 AM – 1:00 PM NST".

        Falls back to the stored values when the timezone or times cannot
        be interpreted, e.g. "2026-01-05 09:00-13:00 (Mars/Olympus)".
        """
        try:
            return format_booking_slot(self.booking_date, self.start_time, self.end_time, self.timezone)
        except (ValueError, ZoneInfoNotFoundError):
            return f"{self.booking_date.isoformat()} {self.start_time}-{self.end_time} ({self.timezone})"


# ============================================================================
# Attached Line Items
# ============================================================================


@dataclass(kw_only=True, eq=False)
class StorageItem(BillableUnit):
    """A storage rental attached to a kitchen booking.

    The storage booking has its own lifecycle; approval decisions target
    it by storage_booking_id.

    Attributes:
        id: Storage listing identifier.
        storage_booking_id: The storage booking the decision targets.
        name: Display name of the storage listing.
        storage_type: Kind of storage.
        start_date: Optional first day of the rental window.
        end_date: Optional last day of the rental window.
    """

    storage_booking_id: int
    name: str = ""
    storage_type: StorageType = StorageType.DRY
    start_date: date | None = None
    end_date: date | None = None

    entity_type = "StorageBooking"

    @property
    def unit_ref(self) -> UnitRef:
        return UnitRef(kind=UnitKind.STORAGE_BOOKING, id=self.storage_booking_id)

    @property
    def rental_window(self) -> str:
        return format_date_range(self.start_date, self.end_date)


@dataclass(kw_only=True, eq=False)
class EquipmentItem(Entity):
    """An equipment rental bundled into a kitchen booking.

    Equipment has no decision or payment state of its own; its
    charges are part of the kitchen booking price.
    """

    equipment_booking_id: int | None = None
    name: str = ""
    total_price_cents: int | None = None


# ============================================================================
# Booking Aggregate Root
# ============================================================================


@dataclass(kw_only=True, eq=False)
class BookingAggregate(AggregateRoot):
    """Kitchen booking aggregate root.

    Loaded and persisted as one unit so a decision sees a consistent
    view of the kitchen booking and every line item attached to it.

    Attributes:
        id: Kitchen booking identifier.
        booking: The kitchen booking.
        storage_items: Attached storage rentals.
        equipment_items: Attached equipment rentals.
    """

    id: int
    booking: KitchenBooking
    storage_items: list[StorageItem] = field(default_factory=list)
    equipment_items: list[EquipmentItem] = field(default_factory=list)

    # -------------------------------------------------------------------------
    # Query Methods
    # -------------------------------------------------------------------------

    @property
    def manager_id(self) -> int:
        return self.booking.manager_id

    @property
    def chef_id(self) -> int | None:
        return self.booking.chef_id

    @property
    def status(self) -> BookingStatus:
        return self.booking.status

    @property
    def equipment_status(self) -> BookingStatus:
        """Equipment always carries the kitchen booking's disposition."""
        return self.booking.status

    def storage_item_for(self, storage_booking_id: int) -> StorageItem | None:
        """Find an attached storage item by its storage booking id.

        Args:
            storage_booking_id: Storage booking to look up.

        Returns:
            The storage item, or None if it is not attached to this booking.
        """
        for item in self.storage_items:
            if item.storage_booking_id == storage_booking_id:
                return item
        return None

    def billable_units(self) -> list[BillableUnit]:
        """Get the kitchen booking followed by every storage item."""
        return [self.booking, *self.storage_items]

    def unit(self, ref: UnitRef) -> BillableUnit | None:
        """Resolve a unit reference against this aggregate."""
        if ref.kind is UnitKind.KITCHEN_BOOKING:
            return self.booking if ref.id == self.booking.id else None
        return self.storage_item_for(ref.id)

    def has_pending_units(self) -> bool:
        return any(unit.is_pending for unit in self.billable_units())

    @property
    def captured_total_cents(self) -> int:
        return sum(unit.captured_amount_cents for unit in self.billable_units())

    # -------------------------------------------------------------------------
    # State Transitions
    # -------------------------------------------------------------------------

    def decide_kitchen(self, action: DecisionAction, manager_id: int) -> None:
        """Apply the manager's decision to the kitchen booking.

        Equipment items follow this decision.

        Args:
            action: Decision for the kitchen booking.
            manager_id: Deciding manager.

        Raises:
            InvalidStateTransitionError: If the kitchen booking is not pending.
        """
        self.booking.decide(action)
        self._touch()
        event_cls = KitchenBookingConfirmed if action is DecisionAction.CONFIRMED else KitchenBookingCancelled
        self._record_event(
            event_cls(
                booking_id=self.id,
                chef_id=self.chef_id,
                manager_id=manager_id,
                equipment_item_ids=tuple(item.id for item in self.equipment_items),
            )
        )

    def decide_storage(self, storage_booking_id: int, action: DecisionAction) -> None:
        """Apply a decision to one attached storage booking.

        Raises:
            KeyError: If the storage booking is not attached.
            InvalidStateTransitionError: If the storage booking is not pending.
        """
        item = self.storage_item_for(storage_booking_id)
        if item is None:
            raise KeyError(storage_booking_id)
        item.decide(action)
        self._touch()
        event_cls = StorageBookingConfirmed if action is DecisionAction.CONFIRMED else StorageBookingCancelled
        self._record_event(
            event_cls(
                booking_id=self.id,
                storage_booking_id=storage_booking_id,
            )
        )

    def settle_payment(self, settlement: PaymentSettlement) -> None:
        """Apply a successful payment operation to its unit.

        Raises:
            KeyError: If the unit is not part of this aggregate.
            InvalidStateTransitionError: If the payment status cannot move.
        """
        unit = self.unit(settlement.unit)
        if unit is None:
            raise KeyError(str(settlement.unit))
        unit.settle(settlement)
        if settlement.operation is not PaymentOperation.NONE:
            self._record_event(
                UnitPaymentSettled(
                    booking_id=self.id,
                    unit=str(settlement.unit),
                    operation=settlement.operation.value,
                    amount_cents=settlement.amount_cents,
                    currency=unit.currency,
                    provider_reference=settlement.provider_reference,
                )
            )
