"""Booking approval application service.

Applies a manager's decision to a kitchen booking and every storage and
equipment rental attached to it, and reconciles each billable unit with
its payment authorization:

- confirmed units are captured for their stored price
- cancelled units have their hold voided, or captured funds refunded
- units whose payment fails stay pending so the manager can retry

No database transaction is held while the payment provider is called:
the booking is claimed with a short decision lock, payments run, and
the outcomes are committed in one final transaction.
"""

import asyncio
import uuid
from dataclasses import dataclass, field, replace
from typing import Any

import structlog

from kitchen_bookings.application.notification_service import (
    NotificationDispatcher,
    OutcomeSummary,
    StorageOutcomeLine,
    dispatch_best_effort,
    get_notification_dispatcher,
)
from kitchen_bookings.domain.base import DomainEvent
from kitchen_bookings.domain.entities import BillableUnit, BookingAggregate
from kitchen_bookings.domain.exceptions import (
    BookingNotFoundError,
    DomainError,
    InvalidStateError,
    InvalidStorageReferenceError,
    ManagerAccessDeniedError,
    PaymentError,
    PaymentTimeoutError,
    PaymentVoidError,
    PersistenceError,
)
from kitchen_bookings.domain.formatting import format_cents
from kitchen_bookings.domain.state_machines import BookingStatus, PaymentStatus
from kitchen_bookings.domain.value_objects import (
    ApprovalDecision,
    DecisionAction,
    ManagerPrincipal,
    PaymentOperation,
    PaymentSettlement,
    UnitRef,
)
from kitchen_bookings.infrastructure.booking_repository import BookingRepository, get_booking_repository
from kitchen_bookings.infrastructure.config import settings
from kitchen_bookings.infrastructure.payment_gateway import PaymentGateway, get_payment_gateway

logger = structlog.get_logger()


# ============================================================================
# Error Codes
# ============================================================================


BOOKING_NOT_FOUND = "BOOKING_NOT_FOUND"
ACCESS_DENIED = "ACCESS_DENIED"
INVALID_STORAGE_REFERENCE = "INVALID_STORAGE_REFERENCE"
INVALID_STATE = "INVALID_STATE"
PAYMENT_FAILED = "PAYMENT_FAILED"
PERSISTENCE_FAILED = "PERSISTENCE_FAILED"


# ============================================================================
# Service Result Types
# ============================================================================


@dataclass
class UnitResult:
    """What a decision did to one billable unit.

    Attributes:
        unit: The billable unit.
        requested: Outcome the decision asked for.
        status: Status after the decision (still pending if payment failed).
        operation: Payment operation performed or attempted.
        succeeded: Whether the unit reached the requested outcome.
        skipped: True when the unit was already decided before this request.
        amount_cents: Amount captured or refunded.
        error_code: Payment failure reason.
        error: Human-readable failure message.
    """

    unit: UnitRef
    requested: BookingStatus
    status: BookingStatus
    operation: PaymentOperation = PaymentOperation.NONE
    succeeded: bool = True
    skipped: bool = False
    amount_cents: int = 0
    error_code: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "unit": str(self.unit),
            "requested": self.requested.value,
            "status": self.status.value,
            "operation": self.operation.value,
            "succeeded": self.succeeded,
            "skipped": self.skipped,
            "amount_cents": self.amount_cents,
            "error_code": self.error_code,
            "error": self.error,
        }


@dataclass
class ApplyDecisionResult:
    """Result of applying a manager decision."""

    aggregate: BookingAggregate | None = None
    kitchen_result: UnitResult | None = None
    storage_results: list[UnitResult] = field(default_factory=list)
    partial_failure: bool = False
    notified: bool = False
    success: bool = True
    error: str | None = None
    error_code: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def equipment_followed(self) -> bool:
        """Equipment rentals carry the kitchen booking's disposition."""
        return bool(self.aggregate and self.aggregate.equipment_items)

    @property
    def unit_results(self) -> list[UnitResult]:
        results = [self.kitchen_result] if self.kitchen_result else []
        return results + list(self.storage_results)


@dataclass
class GetBookingResult:
    """Result of looking up a booking."""

    aggregate: BookingAggregate | None = None
    success: bool = True
    error: str | None = None
    error_code: str | None = None


@dataclass
class PlannedPayment:
    """A payment operation planned for one billable unit."""

    unit: BillableUnit
    action: DecisionAction
    operation: PaymentOperation
    amount_cents: int = 0

    @property
    def ref(self) -> UnitRef:
        return self.unit.unit_ref


# ============================================================================
# Booking Approval Service
# ============================================================================


class BookingApprovalService:
    """Application service for manager booking decisions."""

    def __init__(
        self,
        repository: BookingRepository,
        gateway: PaymentGateway,
        dispatcher: NotificationDispatcher,
        payment_timeout_seconds: float | None = None,
        lock_ttl_seconds: int | None = None,
        request_id: str | None = None,
    ) -> None:
        """Initialize service.

        Args:
            repository: Booking aggregate repository.
            gateway: Payment gateway.
            dispatcher: Chef notification dispatcher.
            payment_timeout_seconds: Bound for each provider call.
            lock_ttl_seconds: Lifetime of a decision lock.
            request_id: Optional request ID for logging.
        """
        self.repository = repository
        self.gateway = gateway
        self.dispatcher = dispatcher
        self.payment_timeout_seconds = (
            payment_timeout_seconds if payment_timeout_seconds is not None else settings.payment_timeout_seconds
        )
        self.lock_ttl_seconds = (
            lock_ttl_seconds if lock_ttl_seconds is not None else settings.decision_lock_ttl_seconds
        )
        self.request_id = request_id
        self._log = logger.bind(request_id=request_id) if request_id else logger

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    async def get_booking(self, booking_id: int, principal: ManagerPrincipal) -> GetBookingResult:
        """Load a booking the manager owns.

        Args:
            booking_id: Kitchen booking ID.
            principal: Authenticated manager.

        Returns:
            GetBookingResult with the aggregate or an error code.
        """
        aggregate = await self.repository.load_for_approval(booking_id)
        if aggregate is None:
            error = BookingNotFoundError(booking_id)
            return GetBookingResult(success=False, error=error.message, error_code=BOOKING_NOT_FOUND)
        if aggregate.manager_id != principal.manager_id:
            error = ManagerAccessDeniedError(booking_id, principal.manager_id)
            return GetBookingResult(success=False, error=error.message, error_code=ACCESS_DENIED)
        return GetBookingResult(aggregate=aggregate)

    # -------------------------------------------------------------------------
    # Decisions
    # -------------------------------------------------------------------------

    async def apply_decision(
        self,
        decision: ApprovalDecision,
        principal: ManagerPrincipal,
    ) -> ApplyDecisionResult:
        """Apply a manager's decision to a booking.

        Args:
            decision: The validated decision.
            principal: Authenticated manager.

        Returns:
            ApplyDecisionResult. On payment failure the result carries
            error_code PAYMENT_FAILED and the per-unit report; units that
            succeeded are persisted, failed ones stay pending.
        """
        log = self._log.bind(booking_id=decision.booking_id, manager_id=principal.manager_id)
        step = "load"
        lock_token: str | None = None

        try:
            aggregate = await self.repository.load_for_approval(decision.booking_id)
            if aggregate is None:
                return self._failure(BookingNotFoundError(decision.booking_id), BOOKING_NOT_FOUND)

            step = "authorize"
            if aggregate.manager_id != principal.manager_id:
                log.warning("Manager denied access to booking")
                return self._failure(
                    ManagerAccessDeniedError(decision.booking_id, principal.manager_id), ACCESS_DENIED
                )

            step = "validate_storage"
            reference_error = self._check_storage_references(aggregate, decision)
            if reference_error is not None:
                return self._failure(reference_error, INVALID_STORAGE_REFERENCE)

            step = "check_state"
            state_error = self._check_decidable(aggregate, decision)
            if state_error is not None:
                return self._failure(state_error, INVALID_STATE)

            step = "lock"
            token = uuid.uuid4().hex
            if not await self.repository.acquire_decision_lock(decision.booking_id, token, self.lock_ttl_seconds):
                log.info("Decision already in progress for booking")
                return self._failure(
                    InvalidStateError(
                        decision.booking_id,
                        aggregate.status.value,
                        reason=f"Another decision for booking {decision.booking_id} is in progress",
                    ),
                    INVALID_STATE,
                )
            lock_token = token

            # Re-read under the lock; a concurrent decision may have committed
            aggregate = await self.repository.load_for_approval(decision.booking_id)
            if aggregate is None:
                return self._failure(BookingNotFoundError(decision.booking_id), BOOKING_NOT_FOUND)
            state_error = self._check_decidable(aggregate, decision)
            if state_error is not None:
                return self._failure(state_error, INVALID_STATE)

            step = "plan"
            plan = self._plan_payments(aggregate, decision)
            log.info(
                "Applying booking decision",
                decision=decision.to_dict(),
                operations=[f"{p.ref}:{p.operation.value}" for p in plan],
            )

            step = "payments"
            outcomes = await self._execute_plan(plan)

            step = "apply"
            reports: dict[UnitRef, UnitResult] = {}
            settlements: list[PaymentSettlement] = []
            for planned, (settlement, failure) in zip(plan, outcomes):
                reports[planned.ref] = self._unit_result(planned, settlement, failure)
                if settlement is None:
                    continue
                if planned.ref == aggregate.booking.unit_ref:
                    aggregate.decide_kitchen(planned.action, principal.manager_id)
                else:
                    aggregate.decide_storage(planned.ref.id, planned.action)
                aggregate.settle_payment(settlement)
                settlements.append(settlement)

            result = self._build_result(aggregate, decision, reports)

            step = "persist"
            if settlements:
                kitchen_ref = aggregate.booking.unit_ref
                settled_refs = {s.unit for s in settlements}
                kitchen_outcome = aggregate.booking.status if kitchen_ref in settled_refs else None
                storage_outcomes = {
                    s.unit.id: aggregate.storage_item_for(s.unit.id).status
                    for s in settlements
                    if s.unit != kitchen_ref
                }
                try:
                    await self.repository.persist_decisions(
                        decision.booking_id,
                        kitchen_outcome,
                        storage_outcomes,
                        payments=settlements,
                        lock_token=token,
                    )
                except PersistenceError as e:
                    log.error(
                        "Payments executed but booking decision was not persisted",
                        error=e.message,
                        units=[r.to_dict() for r in result.unit_results],
                    )
                    return self._persistence_failure(aggregate, decision, reports, e)

            step = "notify"
            events = aggregate.collect_events()
            if settlements:
                result.notified = await self._notify(aggregate, result, events)

            if result.partial_failure:
                failed = [r for r in result.unit_results if not r.succeeded]
                log.warning(
                    "Booking decision partially failed",
                    failed_units=[r.to_dict() for r in failed],
                )
                result.success = False
                result.error_code = PAYMENT_FAILED
                result.error = f"Payment failed for {len(failed)} unit(s) of booking {decision.booking_id}"
                result.details = {"units": [r.to_dict() for r in result.unit_results]}
            else:
                log.info("Booking decision applied", status=aggregate.status.value)
            return result

        except Exception:
            log.exception(
                "Unexpected error applying booking decision",
                decision=decision.to_dict(),
                step=step,
            )
            raise
        finally:
            if lock_token is not None:
                await self.repository.release_decision_lock(decision.booking_id, lock_token)

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    @staticmethod
    def _check_storage_references(
        aggregate: BookingAggregate,
        decision: ApprovalDecision,
    ) -> InvalidStorageReferenceError | None:
        ids = [action.storage_booking_id for action in decision.storage_actions]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            return InvalidStorageReferenceError(decision.booking_id, duplicates, reason="duplicate")
        foreign = [i for i in ids if aggregate.storage_item_for(i) is None]
        if foreign:
            return InvalidStorageReferenceError(decision.booking_id, foreign)
        return None

    @staticmethod
    def _check_decidable(aggregate: BookingAggregate, decision: ApprovalDecision) -> InvalidStateError | None:
        if not aggregate.has_pending_units():
            return InvalidStateError(decision.booking_id, aggregate.status.value)
        kitchen_status = aggregate.booking.status
        if not kitchen_status.is_pending() and kitchen_status != decision.status.to_status():
            return InvalidStateError(
                decision.booking_id,
                kitchen_status.value,
                reason=(
                    f"Booking {decision.booking_id} is already {kitchen_status.value}; "
                    f"only its pending storage bookings can still be decided"
                ),
            )
        return None

    # -------------------------------------------------------------------------
    # Payment planning and execution
    # -------------------------------------------------------------------------

    def _plan_payments(self, aggregate: BookingAggregate, decision: ApprovalDecision) -> list[PlannedPayment]:
        """Plan one payment operation per pending billable unit.

        Confirmed units capture their stored price. Cancelled units refund
        what was already captured, or void their hold. A cancelled unit
        whose hold is shared with a unit that is (or will be) captured, or
        that a sibling already voids in this plan, only has its share
        released.
        """
        decided: list[tuple[BillableUnit, DecisionAction]] = []
        if aggregate.booking.is_pending:
            decided.append((aggregate.booking, decision.status))
        for item in aggregate.storage_items:
            if item.is_pending:
                decided.append((item, decision.action_for_storage(item.storage_booking_id)))

        captured_refs = {
            unit.authorization_ref
            for unit in aggregate.billable_units()
            if unit.authorization_ref and unit.has_captured_funds
        }
        captured_refs |= {
            unit.authorization_ref
            for unit, action in decided
            if unit.authorization_ref and action is DecisionAction.CONFIRMED
        }

        plan: list[PlannedPayment] = []
        voided_refs: set[str] = set()
        for unit, action in decided:
            if action is DecisionAction.CONFIRMED:
                if unit.has_captured_funds:
                    plan.append(PlannedPayment(unit, action, PaymentOperation.NONE))
                else:
                    plan.append(PlannedPayment(unit, action, PaymentOperation.CAPTURE, unit.price.amount_cents))
                continue

            if unit.has_captured_funds and unit.charge_ref:
                plan.append(PlannedPayment(unit, action, PaymentOperation.REFUND, unit.captured_amount_cents))
            elif not unit.authorization_ref:
                plan.append(PlannedPayment(unit, action, PaymentOperation.NONE))
            elif unit.authorization_ref in captured_refs or unit.authorization_ref in voided_refs:
                plan.append(PlannedPayment(unit, action, PaymentOperation.RELEASE))
            else:
                voided_refs.add(unit.authorization_ref)
                plan.append(PlannedPayment(unit, action, PaymentOperation.VOID))
        return plan

    @staticmethod
    def _batch(plan: list[PlannedPayment]) -> list[list[PlannedPayment]]:
        """Group planned operations into provider calls.

        A provider captures an authorization only once, so confirmed units
        sharing a hold are captured together for their summed price. Every
        other operation is its own call.
        """
        batches: list[list[PlannedPayment]] = []
        captures: dict[str, list[PlannedPayment]] = {}
        for planned in plan:
            hold = planned.unit.authorization_ref
            if planned.operation is not PaymentOperation.CAPTURE or not hold:
                batches.append([planned])
                continue
            if hold not in captures:
                captures[hold] = []
                batches.append(captures[hold])
            captures[hold].append(planned)
        return batches

    async def _execute_plan(
        self,
        plan: list[PlannedPayment],
    ) -> list[tuple[PaymentSettlement | None, PaymentError | None]]:
        """Run every provider call concurrently.

        Returns:
            One (settlement, failure) pair per planned operation, in plan order.
        """
        batches = self._batch(plan)
        results = await asyncio.gather(*(self._execute(batch) for batch in batches))
        outcomes: dict[UnitRef, tuple[PaymentSettlement | None, PaymentError | None]] = {}
        for batch, batch_outcomes in zip(batches, results):
            for planned, outcome in zip(batch, batch_outcomes):
                outcomes[planned.ref] = outcome
        return [outcomes[planned.ref] for planned in plan]

    async def _execute(
        self,
        batch: list[PlannedPayment],
    ) -> list[tuple[PaymentSettlement | None, PaymentError | None]]:
        """Run one provider call under the payment timeout.

        A failure applies to every unit of the batch.
        """
        lead = batch[0]
        if not lead.operation.moves_money():
            return [(self._settle(lead, lead.operation), None)]

        units = [str(planned.ref) for planned in batch]
        try:
            settlements = await asyncio.wait_for(self._perform(batch), timeout=self.payment_timeout_seconds)
        except asyncio.TimeoutError:
            reference = (
                lead.unit.charge_ref
                if lead.operation is PaymentOperation.REFUND
                else lead.unit.authorization_ref
            )
            error = PaymentTimeoutError(lead.operation.value, reference, self.payment_timeout_seconds)
            self._log.warning(
                "Payment provider timed out",
                units=units,
                operation=lead.operation.value,
            )
            return [(None, error)] * len(batch)
        except PaymentError as e:
            self._log.warning(
                "Payment operation failed",
                units=units,
                operation=lead.operation.value,
                reason=e.reason,
            )
            return [(None, e)] * len(batch)
        return [(settlement, None) for settlement in settlements]

    async def _perform(self, batch: list[PlannedPayment]) -> list[PaymentSettlement]:
        lead = batch[0]
        unit = lead.unit

        if lead.operation is PaymentOperation.CAPTURE:
            # Keyed by the first unit on the hold; a retry plans the same batch
            capture = await self.gateway.capture(
                unit.authorization_ref,
                sum(planned.amount_cents for planned in batch),
                lead.ref.idempotency_key("capture"),
            )
            return [
                PaymentSettlement(
                    unit=planned.ref,
                    operation=PaymentOperation.CAPTURE,
                    payment_status=PaymentStatus.PAID,
                    captured_amount_cents=planned.unit.captured_amount_cents + planned.amount_cents,
                    charge_ref=capture.provider_charge_id,
                    provider_reference=capture.provider_charge_id,
                    amount_cents=planned.amount_cents,
                )
                for planned in batch
            ]

        if lead.operation is PaymentOperation.REFUND:
            return [await self._refund(unit, unit.charge_ref, lead.amount_cents)]

        try:
            await self.gateway.void(unit.authorization_ref, lead.ref.idempotency_key("void"))
        except PaymentVoidError as e:
            if e.reason != "already_captured" or not e.charge_ref or e.captured_amount_cents <= 0:
                raise
            self._log.info(
                "Authorization already captured, refunding instead of voiding",
                unit=str(lead.ref),
                captured_amount_cents=e.captured_amount_cents,
            )
            return [await self._refund(unit, e.charge_ref, e.captured_amount_cents)]
        return [self._settle(lead, PaymentOperation.VOID)]

    async def _refund(self, unit: BillableUnit, charge_ref: str, amount_cents: int) -> PaymentSettlement:
        refund = await self.gateway.refund(charge_ref, amount_cents, unit.unit_ref.idempotency_key("refund"))
        return PaymentSettlement(
            unit=unit.unit_ref,
            operation=PaymentOperation.REFUND,
            payment_status=PaymentStatus.REFUNDED,
            captured_amount_cents=max(unit.captured_amount_cents - refund.refunded_amount_cents, 0),
            charge_ref=charge_ref,
            provider_reference=refund.refund_id,
            amount_cents=refund.refunded_amount_cents,
        )

    @staticmethod
    def _settle(planned: PlannedPayment, operation: PaymentOperation) -> PaymentSettlement:
        """Settlement for operations that need no provider answer."""
        unit = planned.unit
        if operation in (PaymentOperation.VOID, PaymentOperation.RELEASE):
            payment_status = PaymentStatus.VOIDED
        else:
            payment_status = unit.payment_status
        return PaymentSettlement(
            unit=planned.ref,
            operation=operation,
            payment_status=payment_status,
            captured_amount_cents=unit.captured_amount_cents,
        )

    # -------------------------------------------------------------------------
    # Results
    # -------------------------------------------------------------------------

    @staticmethod
    def _unit_result(
        planned: PlannedPayment,
        settlement: PaymentSettlement | None,
        failure: PaymentError | None,
    ) -> UnitResult:
        requested = planned.action.to_status()
        if settlement is not None:
            return UnitResult(
                unit=planned.ref,
                requested=requested,
                status=requested,
                operation=settlement.operation,
                amount_cents=settlement.amount_cents,
            )
        return UnitResult(
            unit=planned.ref,
            requested=requested,
            status=planned.unit.status,
            operation=planned.operation,
            succeeded=False,
            amount_cents=planned.amount_cents,
            error_code=failure.reason if failure else None,
            error=failure.message if failure else None,
        )

    @staticmethod
    def _skipped_result(unit: BillableUnit, requested: BookingStatus) -> UnitResult:
        return UnitResult(unit=unit.unit_ref, requested=requested, status=unit.status, skipped=True)

    def _build_result(
        self,
        aggregate: BookingAggregate,
        decision: ApprovalDecision,
        reports: dict[UnitRef, UnitResult],
    ) -> ApplyDecisionResult:
        booking = aggregate.booking
        kitchen_result = reports.get(booking.unit_ref) or self._skipped_result(
            booking, decision.status.to_status()
        )
        storage_results = [
            reports.get(item.unit_ref)
            or self._skipped_result(item, decision.action_for_storage(item.storage_booking_id).to_status())
            for item in aggregate.storage_items
        ]
        return ApplyDecisionResult(
            aggregate=aggregate,
            kitchen_result=kitchen_result,
            storage_results=storage_results,
            partial_failure=any(not r.succeeded for r in reports.values()),
        )

    def _persistence_failure(
        self,
        aggregate: BookingAggregate,
        decision: ApprovalDecision,
        reports: dict[UnitRef, UnitResult],
        error: PersistenceError,
    ) -> ApplyDecisionResult:
        # Payments went through but nothing was written: every decided unit is still pending
        unpersisted = {
            ref: replace(report, status=BookingStatus.PENDING) for ref, report in reports.items()
        }
        result = self._build_result(aggregate, decision, unpersisted)
        result.success = False
        result.error = error.message
        result.error_code = PERSISTENCE_FAILED
        result.details = {"units": [r.to_dict() for r in result.unit_results]}
        return result

    @staticmethod
    def _failure(error: DomainError, error_code: str) -> ApplyDecisionResult:
        return ApplyDecisionResult(
            success=False,
            error=error.message,
            error_code=error_code,
            details=error.details,
        )

    async def _notify(
        self,
        aggregate: BookingAggregate,
        result: ApplyDecisionResult,
        events: list[DomainEvent],
    ) -> bool:
        """Send the chef summary; the decision is already committed."""
        try:
            summary = self._summarize(aggregate, result, events)
        except (ValueError, TypeError) as e:
            self._log.warning(
                "Chef notification could not be built",
                booking_id=aggregate.id,
                error=str(e),
            )
            return False
        return await dispatch_best_effort(self.dispatcher, aggregate.chef_id, aggregate.id, summary)

    @staticmethod
    def _summarize(
        aggregate: BookingAggregate,
        result: ApplyDecisionResult,
        events: list[DomainEvent],
    ) -> OutcomeSummary:
        booking = aggregate.booking
        return OutcomeSummary(
            booking_id=aggregate.id,
            kitchen_name=booking.kitchen_name,
            slot=booking.slot_label,
            kitchen_status=booking.status.value,
            storage_outcomes=[
                StorageOutcomeLine(
                    storage_booking_id=item.storage_booking_id,
                    name=item.name,
                    status=item.status.value,
                    rental_window=item.rental_window,
                )
                for item in aggregate.storage_items
            ],
            equipment_followed=result.equipment_followed,
            captured_total=format_cents(aggregate.captured_total_cents, booking.currency),
            failed_units=[str(r.unit) for r in result.unit_results if not r.succeeded],
            events=[event.to_dict() for event in events],
        )


def get_approval_service(request_id: str | None = None) -> BookingApprovalService:
    """Create approval service instance.

    Args:
        request_id: Optional request ID for logging.

    Returns:
        BookingApprovalService instance.
    """
    return BookingApprovalService(
        repository=get_booking_repository(),
        gateway=get_payment_gateway(),
        dispatcher=get_notification_dispatcher(request_id),
        request_id=request_id,
    )
