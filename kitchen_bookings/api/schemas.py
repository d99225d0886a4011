"""API schemas for the Kitchen Bookings API.

Pydantic models for request/response validation and serialization.
Field names are snake_case in Python and camelCase on the wire.
"""

from datetime import date, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model serialized with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================================
# Common Schemas
# ============================================================================


class ErrorResponse(BaseModel):
    """Standard error response.

    All API errors follow this format for consistency.
    """

    error_code: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Human-readable error message")
    details: Any = Field(default_factory=list, description="Additional error details")
    request_id: str | None = Field(default=None, description="Request ID for correlation")


class DecisionActionEnum(str, Enum):
    """Decision values accepted on the wire."""

    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class BookingStatusEnum(str, Enum):
    """Booking statuses returned on the wire."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


# ============================================================================
# Decision Schemas
# ============================================================================


class StorageActionSchema(CamelModel):
    """Override for one storage booking."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    storage_booking_id: int = Field(..., gt=0, description="Storage booking ID")
    action: DecisionActionEnum = Field(..., description="Decision for this storage booking")


class DecisionRequest(CamelModel):
    """Manager decision for a kitchen booking.

    Storage bookings not listed in storage_actions follow status.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    status: DecisionActionEnum = Field(..., description="Decision for the kitchen booking")
    storage_actions: list[StorageActionSchema] = Field(
        default_factory=list, description="Per-storage-booking overrides"
    )

    @field_validator("storage_actions", mode="before")
    @classmethod
    def null_means_no_overrides(cls, value: Any) -> Any:
        return [] if value is None else value


class UnitResultSchema(CamelModel):
    """What the decision did to one billable unit."""

    unit: str = Field(..., description="Unit reference, e.g. storage-booking-7")
    requested: BookingStatusEnum
    status: BookingStatusEnum = Field(..., description="Status after the decision")
    operation: str = Field(..., description="Payment operation performed or attempted")
    succeeded: bool
    skipped: bool = Field(default=False, description="Already decided before this request")
    amount_cents: int = Field(default=0, description="Amount captured or refunded")
    error_code: str | None = None
    error: str | None = None


class StorageResultSchema(UnitResultSchema):
    """Result for one storage booking."""

    storage_booking_id: int
    name: str = ""


class DecisionResponse(CamelModel):
    """Outcome of a manager decision."""

    booking_id: int
    status: BookingStatusEnum = Field(..., description="Kitchen booking status")
    kitchen_result: UnitResultSchema
    storage_results: list[StorageResultSchema] = Field(default_factory=list)
    equipment_followed: bool = Field(
        ..., description="Whether equipment rentals took the kitchen booking's outcome"
    )
    equipment_status: BookingStatusEnum = Field(..., description="Status of equipment rentals")
    partial_failure: bool = False
    notified: bool = Field(default=False, description="Whether the chef was notified")


# ============================================================================
# Booking Detail Schemas
# ============================================================================


class PaymentSchema(CamelModel):
    """Payment state of a billable unit."""

    total_price_cents: int | None = None
    currency: str
    payment_status: str
    captured_amount_cents: int = 0
    has_authorization: bool = False


class StorageItemSchema(CamelModel):
    """Storage rental attached to a booking."""

    storage_booking_id: int
    storage_listing_id: int
    name: str
    storage_type: str
    status: BookingStatusEnum
    start_date: date | None = None
    end_date: date | None = None
    rental_window: str = ""
    payment: PaymentSchema


class EquipmentItemSchema(CamelModel):
    """Equipment rental bundled into a booking."""

    equipment_booking_id: int
    equipment_listing_id: int
    name: str
    total_price_cents: int | None = None


class BookingDetailResponse(CamelModel):
    """Booking with every line item and its payment state."""

    booking_id: int
    chef_id: int | None = None
    chef_name: str = ""
    kitchen_id: int
    kitchen_name: str = ""
    status: BookingStatusEnum
    booking_date: date
    start_time: str
    end_time: str
    timezone: str
    slot: str = Field(..., description="Formatted slot in the location's timezone")
    payment: PaymentSchema
    storage_items: list[StorageItemSchema] = Field(default_factory=list)
    equipment_items: list[EquipmentItemSchema] = Field(default_factory=list)
    equipment_status: BookingStatusEnum
    captured_total: str = Field(..., description="Formatted total captured across units")
    has_pending_units: bool
    updated_at: datetime | None = None
