"""Value Objects for the domain layer.

Value objects are immutable objects that are defined by their attributes
rather than identity. They are interchangeable when their values are equal.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Self

from kitchen_bookings.domain.base import ValueObject
from kitchen_bookings.domain.exceptions import CurrencyMismatchError, NegativeMoneyError
from kitchen_bookings.domain.formatting import format_cents
from kitchen_bookings.domain.state_machines import BookingStatus, PaymentStatus


# ============================================================================
# Money Value Object
# ============================================================================


@dataclass(frozen=True)
class Money(ValueObject):
    """Represents monetary value with currency.

    Money is stored in the smallest currency unit (cents) to avoid
    floating-point precision issues. There is no float constructor.

    Attributes:
        amount_cents: Amount in smallest currency unit (e.g., cents).
        currency: ISO 4217 currency code (e.g., 'CAD', 'USD').
    """

    amount_cents: int
    currency: str = "CAD"

    def __post_init__(self) -> None:
        """Validate money constraints."""
        if isinstance(self.amount_cents, bool) or not isinstance(self.amount_cents, int):
            raise TypeError("Money amount must be integer cents")
        if self.amount_cents < 0:
            raise NegativeMoneyError(self.amount_cents)
        # Normalize currency to uppercase
        object.__setattr__(self, "currency", self.currency.upper())

    @classmethod
    def from_optional_cents(cls, amount_cents: int | None, currency: str = "CAD") -> Self:
        """Create money from a nullable stored price (None means no charge)."""
        return cls(amount_cents=amount_cents or 0, currency=currency)

    def __add__(self, other: "Money") -> "Money":
        """Add two money amounts.

        Raises:
            CurrencyMismatchError: If currencies don't match.
        """
        if self.currency != other.currency:
            raise CurrencyMismatchError(self.currency, other.currency)
        return Money(
            amount_cents=self.amount_cents + other.amount_cents,
            currency=self.currency,
        )

    def __sub__(self, other: "Money") -> "Money":
        """Subtract money amounts.

        Raises:
            CurrencyMismatchError: If currencies don't match.
            NegativeMoneyError: If result would be negative.
        """
        if self.currency != other.currency:
            raise CurrencyMismatchError(self.currency, other.currency)
        return Money(
            amount_cents=self.amount_cents - other.amount_cents,
            currency=self.currency,
        )

    def __str__(self) -> str:
        """Return formatted string representation (e.g., '$12.99')."""
        return format_cents(self.amount_cents, self.currency)


# ============================================================================
# Decision Types
# ============================================================================


class DecisionAction(str, Enum):
    """A manager's decision for one booking unit.

    Closed set; anything else is rejected at the API boundary.
    """

    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"

    def to_status(self) -> BookingStatus:
        """Get the booking status this decision leads to."""
        if self is DecisionAction.CONFIRMED:
            return BookingStatus.CONFIRMED
        if self is DecisionAction.CANCELLED:
            return BookingStatus.CANCELLED
        raise ValueError(f"Unhandled decision action: {self!r}")


@dataclass(frozen=True)
class StorageAction(ValueObject):
    """Per-storage-booking override inside a decision.

    Attributes:
        storage_booking_id: Target storage booking.
        action: Decision for that storage booking.
    """

    storage_booking_id: int
    action: DecisionAction


@dataclass(frozen=True)
class ApprovalDecision(ValueObject):
    """A manager's decision for a kitchen booking.

    Storage items without an entry in storage_actions follow the
    kitchen booking's decision.

    Attributes:
        booking_id: Kitchen booking being decided.
        status: Decision for the kitchen booking (and its equipment).
        storage_actions: Ordered per-storage overrides.
    """

    booking_id: int
    status: DecisionAction
    storage_actions: tuple[StorageAction, ...] = ()

    def __post_init__(self) -> None:
        """Validate decision."""
        if isinstance(self.booking_id, bool) or not isinstance(self.booking_id, int) or self.booking_id <= 0:
            raise ValueError("Booking ID must be a positive integer")

    def action_for_storage(self, storage_booking_id: int) -> DecisionAction:
        """Get the decision for a storage booking, defaulting to the kitchen decision."""
        for storage_action in self.storage_actions:
            if storage_action.storage_booking_id == storage_booking_id:
                return storage_action.action
        return self.status

    def to_dict(self) -> dict[str, object]:
        """Serialize for logging."""
        return {
            "booking_id": self.booking_id,
            "status": self.status.value,
            "storage_actions": [
                {"storage_booking_id": sa.storage_booking_id, "action": sa.action.value}
                for sa in self.storage_actions
            ],
        }


# ============================================================================
# Billable Unit Reference
# ============================================================================


class UnitKind(str, Enum):
    """Kinds of billable units."""

    KITCHEN_BOOKING = "kitchen-booking"
    STORAGE_BOOKING = "storage-booking"


@dataclass(frozen=True)
class UnitRef(ValueObject):
    """Identifies a billable unit: the kitchen booking or one storage booking."""

    kind: UnitKind
    id: int

    def idempotency_key(self, operation: str) -> str:
        """Build the payment idempotency key for an operation on this unit.

        Args:
            operation: "capture", "void" or "refund".

        Returns:
            Key such as "storage-booking-7:void".
        """
        return f"{self.kind.value}-{self.id}:{operation}"

    def __str__(self) -> str:
        return f"{self.kind.value}-{self.id}"


# ============================================================================
# Authenticated Principal
# ============================================================================


@dataclass(frozen=True)
class ManagerPrincipal(ValueObject):
    """Authenticated manager injected by the auth middleware."""

    manager_id: int


# ============================================================================
# Payment Settlement
# ============================================================================


class PaymentOperation(str, Enum):
    """Money movement performed for a billable unit during a decision."""

    CAPTURE = "capture"
    VOID = "void"
    REFUND = "refund"
    RELEASE = "release"
    NONE = "none"

    def moves_money(self) -> bool:
        """Check if this operation reaches the payment provider."""
        return self in {PaymentOperation.CAPTURE, PaymentOperation.VOID, PaymentOperation.REFUND}


@dataclass(frozen=True)
class PaymentSettlement(ValueObject):
    """Result of a successful payment operation, as persisted on the unit.

    Attributes:
        unit: Billable unit the settlement belongs to.
        operation: Operation that was performed.
        payment_status: Resulting unit payment status.
        captured_amount_cents: Amount held as captured after the operation.
        charge_ref: Provider charge reference, when funds were captured.
        provider_reference: Provider id of the capture/void/refund object.
        amount_cents: Amount moved by this operation (captured or refunded).
    """

    unit: UnitRef
    operation: PaymentOperation
    payment_status: PaymentStatus
    captured_amount_cents: int = 0
    charge_ref: str | None = None
    provider_reference: str | None = None
    amount_cents: int = 0
