"""Manager booking endpoints.

Provides:
- GET /api/manager/bookings/{id} - booking with every line item and its payment state
- POST /api/manager/bookings/{id}/decision - confirm or cancel a booking
"""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Path, Request, status

from kitchen_bookings.api.middleware import get_principal
from kitchen_bookings.api.schemas import (
    BookingDetailResponse,
    DecisionRequest,
    DecisionResponse,
    EquipmentItemSchema,
    ErrorResponse,
    PaymentSchema,
    StorageItemSchema,
    StorageResultSchema,
    UnitResultSchema,
)
from kitchen_bookings.application.approval_service import (
    ACCESS_DENIED,
    BOOKING_NOT_FOUND,
    INVALID_STATE,
    INVALID_STORAGE_REFERENCE,
    PAYMENT_FAILED,
    PERSISTENCE_FAILED,
    ApplyDecisionResult,
    BookingApprovalService,
    get_approval_service,
)
from kitchen_bookings.domain.entities import BillableUnit, BookingAggregate
from kitchen_bookings.domain.formatting import format_cents
from kitchen_bookings.domain.value_objects import (
    ApprovalDecision,
    DecisionAction,
    ManagerPrincipal,
    StorageAction,
)

router = APIRouter(prefix="/api/manager/bookings", tags=["Bookings"])

# Error code -> HTTP status
ERROR_STATUS = {
    BOOKING_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ACCESS_DENIED: status.HTTP_403_FORBIDDEN,
    INVALID_STORAGE_REFERENCE: status.HTTP_400_BAD_REQUEST,
    INVALID_STATE: status.HTTP_409_CONFLICT,
    PAYMENT_FAILED: status.HTTP_502_BAD_GATEWAY,
    PERSISTENCE_FAILED: status.HTTP_502_BAD_GATEWAY,
}


# ============================================================================
# Dependencies
# ============================================================================


def get_service(request: Request) -> BookingApprovalService:
    """Get approval service with request ID."""
    request_id = getattr(request.state, "request_id", None)
    return get_approval_service(request_id=request_id)


# ============================================================================
# Converters
# ============================================================================


def _payment_to_schema(unit: BillableUnit) -> PaymentSchema:
    return PaymentSchema(
        total_price_cents=unit.total_price_cents,
        currency=unit.currency,
        payment_status=unit.payment_status.value,
        captured_amount_cents=unit.captured_amount_cents,
        has_authorization=bool(unit.authorization_ref),
    )


def aggregate_to_detail(aggregate: BookingAggregate) -> BookingDetailResponse:
    """Convert a booking aggregate to the detail response."""
    booking = aggregate.booking
    return BookingDetailResponse(
        booking_id=aggregate.id,
        chef_id=booking.chef_id,
        chef_name=booking.chef_name,
        kitchen_id=booking.kitchen_id,
        kitchen_name=booking.kitchen_name,
        status=booking.status.value,
        booking_date=booking.booking_date,
        start_time=booking.start_time,
        end_time=booking.end_time,
        timezone=booking.timezone,
        slot=booking.slot_label,
        payment=_payment_to_schema(booking),
        storage_items=[
            StorageItemSchema(
                storage_booking_id=item.storage_booking_id,
                storage_listing_id=item.id,
                name=item.name,
                storage_type=item.storage_type.value,
                status=item.status.value,
                start_date=item.start_date,
                end_date=item.end_date,
                rental_window=item.rental_window,
                payment=_payment_to_schema(item),
            )
            for item in aggregate.storage_items
        ],
        equipment_items=[
            EquipmentItemSchema(
                equipment_booking_id=item.equipment_booking_id,
                equipment_listing_id=item.id,
                name=item.name,
                total_price_cents=item.total_price_cents,
            )
            for item in aggregate.equipment_items
        ],
        equipment_status=aggregate.equipment_status.value,
        captured_total=format_cents(aggregate.captured_total_cents, booking.currency),
        has_pending_units=aggregate.has_pending_units(),
        updated_at=aggregate.updated_at,
    )


def result_to_response(result: ApplyDecisionResult) -> DecisionResponse:
    """Convert a decision result to the response body."""
    aggregate = result.aggregate
    names = {item.storage_booking_id: item.name for item in aggregate.storage_items}
    return DecisionResponse(
        booking_id=aggregate.id,
        status=aggregate.status.value,
        kitchen_result=UnitResultSchema(**result.kitchen_result.to_dict()),
        storage_results=[
            StorageResultSchema(
                storage_booking_id=r.unit.id,
                name=names.get(r.unit.id, ""),
                **r.to_dict(),
            )
            for r in result.storage_results
        ],
        equipment_followed=result.equipment_followed,
        equipment_status=aggregate.equipment_status.value,
        partial_failure=result.partial_failure,
        notified=result.notified,
    )


def request_to_decision(booking_id: int, request: DecisionRequest) -> ApprovalDecision:
    """Convert the request body to a domain decision."""
    return ApprovalDecision(
        booking_id=booking_id,
        status=DecisionAction(request.status.value),
        storage_actions=tuple(
            StorageAction(
                storage_booking_id=sa.storage_booking_id,
                action=DecisionAction(sa.action.value),
            )
            for sa in request.storage_actions
        ),
    )


def _raise_for(error_code: str | None, message: str | None, details) -> None:
    code = error_code or "DECISION_FAILED"
    raise HTTPException(
        status_code=ERROR_STATUS.get(code, status.HTTP_400_BAD_REQUEST),
        detail={
            "error_code": code,
            "message": message or "Request failed",
            "details": details if details else [],
        },
    )


# ============================================================================
# Endpoints
# ============================================================================


@router.get(
    "/{booking_id}",
    response_model=BookingDetailResponse,
    responses={
        403: {"model": ErrorResponse, "description": "Booking belongs to another manager"},
        404: {"model": ErrorResponse, "description": "Booking not found"},
    },
    summary="Get booking",
    description="Get a booking with its storage and equipment rentals and their payment state.",
)
async def get_booking(
    booking_id: Annotated[int, Path(gt=0, description="Kitchen booking ID")],
    principal: Annotated[ManagerPrincipal, Depends(get_principal)],
    service: Annotated[BookingApprovalService, Depends(get_service)],
) -> BookingDetailResponse:
    """Get booking details.

    Shows what a partially failed decision left pending before the
    manager retries it.
    """
    result = await service.get_booking(booking_id, principal)
    if not result.success:
        _raise_for(result.error_code, result.error, [])
    return aggregate_to_detail(result.aggregate)


@router.post(
    "/{booking_id}/decision",
    response_model=DecisionResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Malformed payload or foreign storage booking"},
        403: {"model": ErrorResponse, "description": "Booking belongs to another manager"},
        404: {"model": ErrorResponse, "description": "Booking not found"},
        409: {"model": ErrorResponse, "description": "Booking already decided or decision in progress"},
        502: {"model": ErrorResponse, "description": "Payment provider or persistence failure"},
    },
    summary="Decide booking",
    description=(
        "Confirm or cancel a kitchen booking. Storage bookings follow the "
        "kitchen decision unless overridden; equipment always follows it."
    ),
)
async def decide_booking(
    booking_id: Annotated[int, Path(gt=0, description="Kitchen booking ID")],
    request: DecisionRequest,
    principal: Annotated[ManagerPrincipal, Depends(get_principal)],
    service: Annotated[BookingApprovalService, Depends(get_service)],
) -> DecisionResponse:
    """Apply a manager decision to a booking.

    Confirmed units are captured, cancelled units have their hold voided
    or their captured funds refunded. When some payments fail the
    response is 502 with a per-unit report; the failed units stay
    pending and the same decision can be retried.

    Args:
        booking_id: Kitchen booking ID.
        request: Decision body.
        principal: Authenticated manager.
        service: Approval service.

    Returns:
        Outcome per unit.

    Raises:
        HTTPException: On any rejected or failed decision.
    """
    decision = request_to_decision(booking_id, request)
    result = await service.apply_decision(decision, principal)

    if not result.success:
        _raise_for(result.error_code, result.error, result.details)

    return result_to_response(result)
