"""Domain layer - Entities, value objects, state machines, domain events.

This module exports the core domain building blocks following DDD patterns:

- **Entities**: Objects with identity (KitchenBooking, StorageItem, BookingAggregate)
- **Value Objects**: Immutable objects compared by value (Money, ApprovalDecision, UnitRef)
- **State Machines**: Deterministic state transitions (BookingStatus, PaymentStatus)
- **Domain Events**: Represent significant domain occurrences
- **Exceptions**: Domain-specific errors and invariant violations

Example usage:
    from kitchen_bookings.domain import ApprovalDecision, DecisionAction, StorageAction

    decision = ApprovalDecision(
        booking_id=12,
        status=DecisionAction.CONFIRMED,
        storage_actions=(StorageAction(storage_booking_id=7, action=DecisionAction.CANCELLED),),
    )
    decision.action_for_storage(7)  # DecisionAction.CANCELLED
    decision.action_for_storage(8)  # DecisionAction.CONFIRMED
"""

# Base classes
from kitchen_bookings.domain.base import AggregateRoot, DomainEvent, Entity, ValueObject

# Entities
from kitchen_bookings.domain.entities import (
    BillableUnit,
    BookingAggregate,
    EquipmentItem,
    KitchenBooking,
    StorageItem,
    StorageType,
)

# Domain Events
from kitchen_bookings.domain.events import (
    KitchenBookingCancelled,
    KitchenBookingConfirmed,
    StorageBookingCancelled,
    StorageBookingConfirmed,
    UnitPaymentSettled,
)

# Exceptions
from kitchen_bookings.domain.exceptions import (
    BookingError,
    BookingNotFoundError,
    CurrencyMismatchError,
    DomainError,
    InvalidStateError,
    InvalidStateTransitionError,
    InvalidStorageReferenceError,
    ManagerAccessDeniedError,
    MoneyError,
    NegativeMoneyError,
    PaymentCaptureError,
    PaymentError,
    PaymentTimeoutError,
    PaymentVoidError,
    PersistenceError,
    RefundError,
)

# Formatting
from kitchen_bookings.domain.formatting import (
    booking_start_at,
    format_booking_slot,
    format_cents,
    format_date_range,
    format_time_of_day,
    parse_time_of_day,
)

# State Machines
from kitchen_bookings.domain.state_machines import (
    AuthorizationStatus,
    BookingStatus,
    PaymentStatus,
    validate_booking_transition,
    validate_payment_transition,
)

# Value Objects
from kitchen_bookings.domain.value_objects import (
    ApprovalDecision,
    DecisionAction,
    ManagerPrincipal,
    Money,
    PaymentOperation,
    PaymentSettlement,
    StorageAction,
    UnitKind,
    UnitRef,
)

__all__ = [
    # Base classes
    "AggregateRoot",
    "DomainEvent",
    "Entity",
    "ValueObject",
    # Entities
    "BillableUnit",
    "BookingAggregate",
    "EquipmentItem",
    "KitchenBooking",
    "StorageItem",
    "StorageType",
    # Value Objects
    "ApprovalDecision",
    "DecisionAction",
    "ManagerPrincipal",
    "Money",
    "PaymentOperation",
    "PaymentSettlement",
    "StorageAction",
    "UnitKind",
    "UnitRef",
    # State Machines
    "AuthorizationStatus",
    "BookingStatus",
    "PaymentStatus",
    "validate_booking_transition",
    "validate_payment_transition",
    # Domain Events
    "KitchenBookingConfirmed",
    "KitchenBookingCancelled",
    "StorageBookingConfirmed",
    "StorageBookingCancelled",
    "UnitPaymentSettled",
    # Formatting
    "booking_start_at",
    "format_booking_slot",
    "format_cents",
    "format_date_range",
    "format_time_of_day",
    "parse_time_of_day",
    # Exceptions
    "DomainError",
    "InvalidStateTransitionError",
    "BookingError",
    "BookingNotFoundError",
    "InvalidStateError",
    "InvalidStorageReferenceError",
    "ManagerAccessDeniedError",
    "PersistenceError",
    "PaymentError",
    "PaymentCaptureError",
    "PaymentVoidError",
    "RefundError",
    "PaymentTimeoutError",
    "MoneyError",
    "CurrencyMismatchError",
    "NegativeMoneyError",
]
