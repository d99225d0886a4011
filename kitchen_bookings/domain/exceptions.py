"""Domain exceptions.

All domain-level errors that represent business rule violations.
These exceptions are raised by entities, state machines, the booking
repository and the payment gateway, and are translated into result
codes by the application layer.
"""

from typing import Any


class DomainError(Exception):
    """Base class for all domain exceptions.

    All domain errors should inherit from this class to allow
    catching domain-specific errors at the application layer.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize domain error.

        Args:
            message: Human-readable error message.
            details: Optional dictionary with additional error context.
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}


# ============================================================================
# State Machine Errors
# ============================================================================


class InvalidStateTransitionError(DomainError):
    """Raised when an invalid state transition is attempted on an entity."""

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        current_state: str,
        target_state: str,
        allowed_transitions: list[str] | None = None,
    ) -> None:
        """Initialize invalid state transition error.

        Args:
            entity_type: Type of entity (e.g., "KitchenBooking", "StorageBooking").
            entity_id: ID of the entity.
            current_state: Current state of the entity.
            target_state: Attempted target state.
            allowed_transitions: List of allowed target states from current state.
        """
        allowed = allowed_transitions or []
        message = (
            f"Cannot transition {entity_type}({entity_id}) "
            f"from '{current_state}' to '{target_state}'. "
            f"Allowed transitions: {allowed}"
        )
        super().__init__(
            message,
            details={
                "entity_type": entity_type,
                "entity_id": entity_id,
                "current_state": current_state,
                "target_state": target_state,
                "allowed_transitions": allowed,
            },
        )


# ============================================================================
# Booking Errors
# ============================================================================


class BookingError(DomainError):
    """Base class for booking-related errors."""

    pass


class BookingNotFoundError(BookingError):
    """Raised when a kitchen booking does not exist."""

    def __init__(self, booking_id: int) -> None:
        """Initialize booking not found error.

        Args:
            booking_id: ID of the missing booking.
        """
        super().__init__(
            f"Booking {booking_id} not found",
            details={"booking_id": booking_id},
        )


class InvalidStateError(BookingError):
    """Raised when a decision is submitted for a booking that is not pending.

    Clients should treat this as "already handled".
    """

    def __init__(self, booking_id: int, current_status: str, reason: str | None = None) -> None:
        """Initialize invalid state error.

        Args:
            booking_id: ID of the booking.
            current_status: Current status of the kitchen booking.
            reason: Optional explanation.
        """
        message = reason or f"Booking {booking_id} is not pending (status '{current_status}')"
        super().__init__(
            message,
            details={"booking_id": booking_id, "current_status": current_status},
        )


class InvalidStorageReferenceError(BookingError):
    """Raised when a storage action targets a storage booking of another booking."""

    def __init__(self, booking_id: int, storage_booking_ids: list[int], reason: str = "not_attached") -> None:
        """Initialize invalid storage reference error.

        Args:
            booking_id: ID of the kitchen booking in the request.
            storage_booking_ids: Offending storage booking IDs.
            reason: Either "not_attached" or "duplicate".
        """
        super().__init__(
            f"Storage bookings {storage_booking_ids} are invalid for booking {booking_id} ({reason})",
            details={
                "booking_id": booking_id,
                "storage_booking_ids": storage_booking_ids,
                "reason": reason,
            },
        )


class ManagerAccessDeniedError(BookingError):
    """Raised when a manager does not own the booking's location."""

    def __init__(self, booking_id: int, manager_id: int) -> None:
        """Initialize access denied error.

        Args:
            booking_id: ID of the booking.
            manager_id: Authenticated manager ID.
        """
        super().__init__(
            f"Manager {manager_id} has no access to booking {booking_id}",
            details={"booking_id": booking_id, "manager_id": manager_id},
        )


class PersistenceError(BookingError):
    """Raised when the booking repository fails to commit a change.

    The repository guarantees the failed write left no partial state.
    """

    def __init__(self, booking_id: int, reason: str) -> None:
        """Initialize persistence error.

        Args:
            booking_id: ID of the booking being written.
            reason: Underlying failure description.
        """
        super().__init__(
            f"Failed to persist booking {booking_id}: {reason}",
            details={"booking_id": booking_id, "reason": reason},
        )


# ============================================================================
# Payment Errors
# ============================================================================


class PaymentError(DomainError):
    """Base class for payment provider errors.

    Attributes:
        reason: Machine-readable failure reason.
    """

    def __init__(self, message: str, reason: str, details: dict[str, Any] | None = None) -> None:
        """Initialize payment error.

        Args:
            message: Human-readable error message.
            reason: Machine-readable failure reason.
            details: Optional additional context.
        """
        super().__init__(message, details={"reason": reason, **(details or {})})
        self.reason = reason


class PaymentCaptureError(PaymentError):
    """Raised when a capture is rejected.

    Reasons: exceeds_authorized, authorization_expired, declined,
    insufficient_funds, missing_authorization, provider_error.
    """

    def __init__(self, authorization_ref: str | None, reason: str, message: str | None = None) -> None:
        super().__init__(
            message or f"Capture failed for authorization {authorization_ref}: {reason}",
            reason=reason,
            details={"authorization_ref": authorization_ref},
        )
        self.authorization_ref = authorization_ref


class PaymentVoidError(PaymentError):
    """Raised when an authorization cannot be voided.

    When the authorization was already captured, the captured amount and
    charge reference are carried so the caller can refund instead.
    """

    def __init__(
        self,
        authorization_ref: str,
        reason: str,
        captured_amount_cents: int = 0,
        charge_ref: str | None = None,
        message: str | None = None,
    ) -> None:
        super().__init__(
            message or f"Void failed for authorization {authorization_ref}: {reason}",
            reason=reason,
            details={
                "authorization_ref": authorization_ref,
                "captured_amount_cents": captured_amount_cents,
                "charge_ref": charge_ref,
            },
        )
        self.authorization_ref = authorization_ref
        self.captured_amount_cents = captured_amount_cents
        self.charge_ref = charge_ref


class RefundError(PaymentError):
    """Raised when a refund is rejected (exceeds_captured, provider_error)."""

    def __init__(self, charge_ref: str | None, reason: str, message: str | None = None) -> None:
        super().__init__(
            message or f"Refund failed for charge {charge_ref}: {reason}",
            reason=reason,
            details={"charge_ref": charge_ref},
        )
        self.charge_ref = charge_ref


class PaymentTimeoutError(PaymentError):
    """Raised when the payment provider does not answer in time."""

    def __init__(self, operation: str, reference: str | None, timeout_seconds: float) -> None:
        super().__init__(
            f"Payment provider timed out after {timeout_seconds}s during {operation}",
            reason="timeout",
            details={
                "operation": operation,
                "reference": reference,
                "timeout_seconds": timeout_seconds,
            },
        )


# ============================================================================
# Money Errors
# ============================================================================


class MoneyError(DomainError):
    """Base class for money-related errors."""

    pass


class CurrencyMismatchError(MoneyError):
    """Raised when attempting to combine money with different currencies."""

    def __init__(self, currency1: str, currency2: str) -> None:
        """Initialize currency mismatch error.

        Args:
            currency1: First currency code.
            currency2: Second currency code.
        """
        super().__init__(
            f"Cannot combine money with different currencies: {currency1} and {currency2}",
            details={"currency1": currency1, "currency2": currency2},
        )


class NegativeMoneyError(MoneyError):
    """Raised when attempting to create money with negative amount."""

    def __init__(self, amount: int) -> None:
        """Initialize negative money error.

        Args:
            amount: The negative amount in cents.
        """
        super().__init__(
            f"Money amount cannot be negative: {amount}",
            details={"amount": amount},
        )
