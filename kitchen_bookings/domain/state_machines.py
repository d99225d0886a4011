"""State machines for domain entities.

Deterministic state machines that define valid state transitions
for kitchen bookings, storage bookings, the per-unit payment status
and the provider-side payment authorization.
"""

from enum import Enum

from kitchen_bookings.domain.exceptions import InvalidStateTransitionError


# ============================================================================
# Booking State Machine
# ============================================================================


class BookingStatus(str, Enum):
    """Lifecycle of a kitchen booking and of a storage booking.

    State diagram:
        PENDING ──────────────────────────────► CANCELLED
          │                                        ▲
          │ approve                                │ cancel
          ▼                                        │
        CONFIRMED ─────────────────────────────────┘
          │
          │ complete
          ▼
        COMPLETED

    The approval engine only drives PENDING → CONFIRMED | CANCELLED.
    Later transitions belong to the completion/cancellation flows.
    """

    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"

    def can_transition_to(self, target: "BookingStatus") -> bool:
        """Check if transition to target state is valid.

        Args:
            target: Target state to transition to.

        Returns:
            True if transition is valid.
        """
        return target in _BOOKING_TRANSITIONS.get(self, set())

    def allowed_transitions(self) -> list["BookingStatus"]:
        """Get list of valid target states.

        Returns:
            List of states that can be transitioned to.
        """
        return list(_BOOKING_TRANSITIONS.get(self, set()))

    def is_pending(self) -> bool:
        """Check if the booking still awaits a manager decision."""
        return self == BookingStatus.PENDING


_BOOKING_TRANSITIONS: dict[BookingStatus, set[BookingStatus]] = {
    BookingStatus.PENDING: {BookingStatus.CONFIRMED, BookingStatus.CANCELLED},
    BookingStatus.CONFIRMED: {BookingStatus.COMPLETED, BookingStatus.CANCELLED},
    BookingStatus.CANCELLED: set(),  # Terminal state
    BookingStatus.COMPLETED: set(),  # Terminal state
}


# ============================================================================
# Unit Payment Status
# ============================================================================


class PaymentStatus(str, Enum):
    """Payment status stored on each billable unit.

    State diagram:
        PENDING ──► AUTHORIZED ──┬──► PAID ──► REFUNDED
                                 │
                                 └──► VOIDED

    PENDING means checkout was never completed. A unit with no charge
    moves straight to PAID on confirmation.
    """

    PENDING = "pending"
    AUTHORIZED = "authorized"
    PAID = "paid"
    VOIDED = "voided"
    REFUNDED = "refunded"

    def can_transition_to(self, target: "PaymentStatus") -> bool:
        """Check if transition to target state is valid."""
        return target in _PAYMENT_TRANSITIONS.get(self, set())


_PAYMENT_TRANSITIONS: dict[PaymentStatus, set[PaymentStatus]] = {
    PaymentStatus.PENDING: {PaymentStatus.AUTHORIZED, PaymentStatus.PAID, PaymentStatus.VOIDED},
    # AUTHORIZED -> REFUNDED: the hold was captured outside this service and refunded on cancel
    PaymentStatus.AUTHORIZED: {PaymentStatus.PAID, PaymentStatus.VOIDED, PaymentStatus.REFUNDED},
    PaymentStatus.PAID: {PaymentStatus.REFUNDED},
    PaymentStatus.VOIDED: set(),
    PaymentStatus.REFUNDED: set(),
}


# ============================================================================
# Provider Authorization Status
# ============================================================================


class AuthorizationStatus(str, Enum):
    """Status of an authorization hold at the payment provider.

    State diagram:
        REQUIRES_CAPTURE ──┬──► PARTIALLY_CAPTURED ──► CAPTURED
                           ├──► CAPTURED
                           ├──► VOIDED
                           └──► CAPTURE_FAILED
    """

    REQUIRES_CAPTURE = "requires_capture"
    PARTIALLY_CAPTURED = "partially_captured"
    CAPTURED = "captured"
    VOIDED = "voided"
    CAPTURE_FAILED = "capture_failed"

    def has_captured_funds(self) -> bool:
        """Check if any funds have been captured."""
        return self in {AuthorizationStatus.PARTIALLY_CAPTURED, AuthorizationStatus.CAPTURED}


# ============================================================================
# State Machine Helpers
# ============================================================================


def validate_booking_transition(
    entity_type: str,
    entity_id: str,
    current_status: BookingStatus,
    target_status: BookingStatus,
) -> None:
    """Validate and raise if a booking state transition is invalid.

    Args:
        entity_type: "KitchenBooking" or "StorageBooking".
        entity_id: Identifier for error message.
        current_status: Current status.
        target_status: Target status.

    Raises:
        InvalidStateTransitionError: If transition is not valid.
    """
    if not current_status.can_transition_to(target_status):
        raise InvalidStateTransitionError(
            entity_type=entity_type,
            entity_id=entity_id,
            current_state=current_status.value,
            target_state=target_status.value,
            allowed_transitions=[s.value for s in current_status.allowed_transitions()],
        )


def validate_payment_transition(
    unit_ref: str,
    current_status: PaymentStatus,
    target_status: PaymentStatus,
) -> None:
    """Validate and raise if a unit payment status transition is invalid.

    Args:
        unit_ref: Billable unit reference for error message.
        current_status: Current payment status.
        target_status: Target payment status.

    Raises:
        InvalidStateTransitionError: If transition is not valid.
    """
    if not current_status.can_transition_to(target_status):
        raise InvalidStateTransitionError(
            entity_type="Payment",
            entity_id=unit_ref,
            current_state=current_status.value,
            target_state=target_status.value,
            allowed_transitions=[s.value for s in _PAYMENT_TRANSITIONS.get(current_status, set())],
        )
