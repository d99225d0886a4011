"""Tests for the booking approval service.

Covers:
- Default propagation and per-storage overrides
- Payment capture, void, release and refund per billable unit
- Partial failure reporting and retry
- All-or-nothing persistence
- Rejections that must not touch the payment provider
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import stripe

from kitchen_bookings.application.approval_service import (
    ACCESS_DENIED,
    BOOKING_NOT_FOUND,
    INVALID_STATE,
    INVALID_STORAGE_REFERENCE,
    PAYMENT_FAILED,
    PERSISTENCE_FAILED,
    BookingApprovalService,
)
from kitchen_bookings.application.notification_service import NotificationError
from kitchen_bookings.domain.state_machines import BookingStatus, PaymentStatus
from kitchen_bookings.domain.value_objects import (
    ApprovalDecision,
    DecisionAction,
    ManagerPrincipal,
    PaymentOperation,
    StorageAction,
)
from kitchen_bookings.infrastructure.booking_repository import InMemoryBookingRepository
from kitchen_bookings.infrastructure.payment_gateway import StripePaymentGateway

CONFIRMED = DecisionAction.CONFIRMED
CANCELLED = DecisionAction.CANCELLED


def decide(status: DecisionAction, booking_id: int = 12, **overrides: DecisionAction) -> ApprovalDecision:
    """Build a decision; overrides are given as s<storage_booking_id>=action."""
    return ApprovalDecision(
        booking_id=booking_id,
        status=status,
        storage_actions=tuple(
            StorageAction(storage_booking_id=int(key[1:]), action=action) for key, action in overrides.items()
        ),
    )


class FlakyStorageWriteRepository(InMemoryBookingRepository):
    """Fails writing one storage row until fail_on is cleared."""

    def __init__(self, fail_on: int | None) -> None:
        super().__init__()
        self.fail_on = fail_on

    def _write_storage_item(self, staged, storage_booking_id, outcome, settlement) -> None:
        if storage_booking_id == self.fail_on:
            raise RuntimeError("deadlock detected")
        super()._write_storage_item(staged, storage_booking_id, outcome, settlement)


@pytest.fixture
async def booking(seed, make_aggregate, make_storage):
    """Kitchen booking 12 with storage bookings 7 and 8, each on its own hold."""
    return await seed(make_aggregate(storage=[make_storage(7), make_storage(8)]))


# ============================================================================
# Dispositions
# ============================================================================


class TestDefaultPropagation:
    """Storage bookings without an override follow the kitchen decision."""

    async def test_confirm_all(self, service, repository, gateway, manager, booking) -> None:
        result = await service.apply_decision(decide(CONFIRMED), manager)

        assert result.success
        assert not result.partial_failure
        assert result.kitchen_result.operation is PaymentOperation.CAPTURE
        assert [r.status for r in result.storage_results] == [BookingStatus.CONFIRMED] * 2

        stored = await repository.load_for_approval(12)
        assert stored.booking.status is BookingStatus.CONFIRMED
        assert stored.booking.payment_status is PaymentStatus.PAID
        assert stored.captured_total_cents == 15000
        assert [c.amount_cents for c in gateway.calls_for("capture")] == [10000, 2500, 2500]

    async def test_cancel_all_voids_every_hold(self, service, repository, gateway, manager, booking) -> None:
        result = await service.apply_decision(decide(CANCELLED), manager)

        assert result.success
        assert sorted(c.reference for c in gateway.calls_for("void")) == [
            "pi_kitchen_12",
            "pi_storage_7",
            "pi_storage_8",
        ]
        assert gateway.calls_for("capture") == []

        stored = await repository.load_for_approval(12)
        assert all(unit.status is BookingStatus.CANCELLED for unit in stored.billable_units())
        assert all(unit.payment_status is PaymentStatus.VOIDED for unit in stored.billable_units())


class TestIndependentOverride:
    """A storage override applies to that storage booking only."""

    async def test_confirm_kitchen_cancel_one_storage(self, service, repository, gateway, manager, booking) -> None:
        result = await service.apply_decision(decide(CONFIRMED, s7=CANCELLED), manager)

        assert result.success
        by_id = {r.unit.id: r for r in result.storage_results}
        assert by_id[7].status is BookingStatus.CANCELLED
        assert by_id[7].operation is PaymentOperation.VOID
        assert by_id[8].status is BookingStatus.CONFIRMED

        stored = await repository.load_for_approval(12)
        assert stored.booking.status is BookingStatus.CONFIRMED
        assert stored.storage_item_for(7).status is BookingStatus.CANCELLED
        assert stored.storage_item_for(8).status is BookingStatus.CONFIRMED
        assert gateway.get_authorization("pi_storage_7").status.value == "voided"

    async def test_cancel_kitchen_keep_storage(self, service, repository, manager, booking) -> None:
        result = await service.apply_decision(decide(CANCELLED, s8=CONFIRMED), manager)

        assert result.success
        stored = await repository.load_for_approval(12)
        assert stored.booking.status is BookingStatus.CANCELLED
        assert stored.storage_item_for(7).status is BookingStatus.CANCELLED
        assert stored.storage_item_for(8).status is BookingStatus.CONFIRMED
        assert stored.storage_item_for(8).captured_amount_cents == 2500


class TestEquipmentFollowsKitchen:
    """Equipment carries the kitchen booking's disposition."""

    async def test_equipment_cancelled_with_kitchen(self, service, seed, make_aggregate, make_equipment, manager) -> None:
        await seed(make_aggregate(equipment=[make_equipment(3), make_equipment(4)]))

        result = await service.apply_decision(decide(CANCELLED), manager)

        assert result.success
        assert result.equipment_followed
        assert result.aggregate.equipment_status is BookingStatus.CANCELLED

    async def test_no_equipment(self, service, manager, booking) -> None:
        result = await service.apply_decision(decide(CONFIRMED), manager)
        assert not result.equipment_followed


class TestZeroAmount:
    """Units without a price confirm without reaching the provider."""

    async def test_free_booking_confirms(self, service, seed, make_aggregate, make_storage, gateway, manager, repository) -> None:
        await seed(
            make_aggregate(
                price_cents=None,
                authorization_ref=None,
                storage=[make_storage(7, price_cents=0, authorization_ref=None)],
            )
        )

        result = await service.apply_decision(decide(CONFIRMED), manager)

        assert result.success
        assert gateway.calls == []
        stored = await repository.load_for_approval(12)
        assert stored.booking.status is BookingStatus.CONFIRMED
        assert stored.booking.payment_status is PaymentStatus.PAID
        assert stored.captured_total_cents == 0


# ============================================================================
# Payment paths
# ============================================================================


class TestSharedHold:
    """Units sharing one authorization hold."""

    @pytest.fixture
    async def shared(self, seed, make_aggregate, make_storage):
        return await seed(
            make_aggregate(authorization_ref="pi_shared", storage=[make_storage(7, authorization_ref="pi_shared")])
        )

    async def test_cancelled_share_is_released(self, service, repository, gateway, manager, shared) -> None:
        """Voiding the shared hold would cancel the confirmed kitchen charge."""
        result = await service.apply_decision(decide(CONFIRMED, s7=CANCELLED), manager)

        assert result.success
        assert result.storage_results[0].operation is PaymentOperation.RELEASE
        assert gateway.calls_for("void") == []
        assert gateway.get_authorization("pi_shared").amount_captured_cents == 10000

        stored = await repository.load_for_approval(12)
        assert stored.storage_item_for(7).status is BookingStatus.CANCELLED
        assert stored.storage_item_for(7).payment_status is PaymentStatus.VOIDED

    async def test_cancel_all_voids_once(self, service, gateway, manager, shared) -> None:
        result = await service.apply_decision(decide(CANCELLED), manager)

        assert result.success
        assert len(gateway.calls_for("void")) == 1
        assert result.storage_results[0].operation is PaymentOperation.RELEASE

    async def test_confirm_all_captures_hold_once(self, service, repository, gateway, manager, shared) -> None:
        result = await service.apply_decision(decide(CONFIRMED), manager)

        assert result.success
        captures = gateway.calls_for("capture")
        assert [(c.reference, c.amount_cents, c.idempotency_key) for c in captures] == [
            ("pi_shared", 12500, "kitchen-booking-12:capture")
        ]
        assert result.kitchen_result.amount_cents == 10000
        assert result.storage_results[0].amount_cents == 2500

        stored = await repository.load_for_approval(12)
        assert stored.booking.captured_amount_cents == 10000
        assert stored.storage_item_for(7).captured_amount_cents == 2500
        assert stored.booking.charge_ref == stored.storage_item_for(7).charge_ref

    async def test_confirm_all_against_stripe(self, repository, dispatcher, manager, shared) -> None:
        """Stripe rejects a second capture of the same PaymentIntent."""
        captured: set[str] = set()

        def capture(intent_id, amount_to_capture, idempotency_key):
            if intent_id in captured:
                raise stripe.InvalidRequestError(
                    "This PaymentIntent's amount could not be captured.",
                    param=None,
                    code="payment_intent_unexpected_state",
                )
            captured.add(intent_id)
            return MagicMock(latest_charge="ch_shared", amount_received=amount_to_capture)

        service = BookingApprovalService(
            repository=repository,
            gateway=StripePaymentGateway("sk_test"),
            dispatcher=dispatcher,
            payment_timeout_seconds=0.5,
            lock_ttl_seconds=60,
        )
        with patch.object(stripe.PaymentIntent, "capture", side_effect=capture) as stripe_capture:
            result = await service.apply_decision(decide(CONFIRMED), manager)

        assert result.success
        assert stripe_capture.call_count == 1
        assert stripe_capture.call_args.args == ("pi_shared",)
        assert stripe_capture.call_args.kwargs["amount_to_capture"] == 12500

        stored = await repository.load_for_approval(12)
        assert stored.booking.status is BookingStatus.CONFIRMED
        assert stored.storage_item_for(7).status is BookingStatus.CONFIRMED
        assert stored.storage_item_for(7).charge_ref == "ch_shared"

    async def test_failed_shared_capture_fails_every_unit(self, service, repository, gateway, manager, shared) -> None:
        gateway.script_failure("capture", "pi_shared", "declined")

        result = await service.apply_decision(decide(CONFIRMED), manager)

        assert result.partial_failure
        assert [r.error_code for r in result.unit_results] == ["declined", "declined"]
        stored = await repository.load_for_approval(12)
        assert stored.booking.status is BookingStatus.PENDING
        assert stored.storage_item_for(7).status is BookingStatus.PENDING


class TestRefundFallback:
    """A hold captured out of band is refunded on cancel."""

    async def test_void_of_captured_hold_refunds(self, service, repository, gateway, manager, seed, make_aggregate) -> None:
        await seed(make_aggregate())
        await gateway.capture("pi_kitchen_12", 10000, "checkout-12:capture")

        result = await service.apply_decision(decide(CANCELLED), manager)

        assert result.success
        assert result.kitchen_result.operation is PaymentOperation.REFUND
        assert result.kitchen_result.amount_cents == 10000
        assert len(gateway.calls_for("refund")) == 1

        stored = await repository.load_for_approval(12)
        assert stored.booking.status is BookingStatus.CANCELLED
        assert stored.booking.payment_status is PaymentStatus.REFUNDED


class TestPartialFailure:
    """Failed units stay pending and are reported; the rest is committed."""

    async def test_failed_void_reported(self, service, repository, gateway, manager, booking) -> None:
        gateway.script_failure("void", "pi_storage_7", "provider_error")

        result = await service.apply_decision(decide(CONFIRMED, s7=CANCELLED), manager)

        assert not result.success
        assert result.partial_failure
        assert result.error_code == PAYMENT_FAILED
        failed = [u for u in result.details["units"] if not u["succeeded"]]
        assert failed == [
            {
                "unit": "storage-booking-7",
                "requested": "cancelled",
                "status": "pending",
                "operation": "void",
                "succeeded": False,
                "skipped": False,
                "amount_cents": 0,
                "error_code": "provider_error",
                "error": "Void failed for authorization pi_storage_7: provider_error",
            }
        ]

        stored = await repository.load_for_approval(12)
        assert stored.booking.status is BookingStatus.CONFIRMED
        assert stored.storage_item_for(7).status is BookingStatus.PENDING
        assert stored.storage_item_for(8).status is BookingStatus.CONFIRMED

    async def test_retry_completes_only_failed_unit(self, service, repository, gateway, manager, booking) -> None:
        gateway.script_failure("void", "pi_storage_7", "provider_error")
        await service.apply_decision(decide(CONFIRMED, s7=CANCELLED), manager)
        gateway.clear_scripts()

        result = await service.apply_decision(decide(CONFIRMED, s7=CANCELLED), manager)

        assert result.success
        assert result.kitchen_result.skipped
        assert len([c for c in gateway.calls_for("capture") if c.outcome == "succeeded"]) == 2
        stored = await repository.load_for_approval(12)
        assert stored.storage_item_for(7).status is BookingStatus.CANCELLED

    async def test_capture_timeout_is_failure(self, repository, gateway, dispatcher, manager, booking) -> None:
        service = BookingApprovalService(repository, gateway, dispatcher, payment_timeout_seconds=0.05)
        gateway.script_latency("capture", "pi_kitchen_12", 1.0)

        result = await service.apply_decision(decide(CONFIRMED), manager)

        assert result.partial_failure
        assert result.kitchen_result.error_code == "timeout"
        assert result.kitchen_result.status is BookingStatus.PENDING
        assert all(r.succeeded for r in result.storage_results)

        stored = await repository.load_for_approval(12)
        assert stored.booking.status is BookingStatus.PENDING

    async def test_missing_authorization_blocks_confirm(self, service, seed, make_aggregate, manager, repository) -> None:
        await seed(make_aggregate(authorization_ref=None))

        result = await service.apply_decision(decide(CONFIRMED), manager)

        assert result.error_code == PAYMENT_FAILED
        assert result.kitchen_result.error_code == "missing_authorization"
        assert (await repository.load_for_approval(12)).booking.status is BookingStatus.PENDING


class TestAtomicPersistence:
    """A failed write leaves every row pending."""

    @pytest.fixture
    async def flaky(self, gateway, make_aggregate, make_storage):
        repository = FlakyStorageWriteRepository(fail_on=8)
        await repository.add(make_aggregate(storage=[make_storage(7), make_storage(8)]))
        for ref, amount in (("pi_kitchen_12", 10000), ("pi_storage_7", 2500), ("pi_storage_8", 2500)):
            gateway.authorize(ref, amount)
        return repository

    async def test_nothing_written(self, flaky, gateway, dispatcher, manager) -> None:
        service = BookingApprovalService(flaky, gateway, dispatcher)

        result = await service.apply_decision(decide(CONFIRMED), manager)

        assert not result.success
        assert result.error_code == PERSISTENCE_FAILED
        assert all(r.status is BookingStatus.PENDING for r in result.unit_results)
        stored = await flaky.load_for_approval(12)
        assert all(unit.status is BookingStatus.PENDING for unit in stored.billable_units())
        assert not flaky.is_locked(12)
        assert dispatcher.sent == []

    async def test_retry_replays_captures(self, flaky, gateway, dispatcher, manager) -> None:
        """The retry reuses the capture idempotency keys, so no money moves twice."""
        service = BookingApprovalService(flaky, gateway, dispatcher)
        await service.apply_decision(decide(CONFIRMED), manager)
        flaky.fail_on = None

        result = await service.apply_decision(decide(CONFIRMED), manager)

        assert result.success
        assert len(gateway.money_movements) == 3
        assert len([c for c in gateway.calls if c.outcome == "replayed"]) == 3
        stored = await flaky.load_for_approval(12)
        assert all(unit.status is BookingStatus.CONFIRMED for unit in stored.billable_units())


# ============================================================================
# Rejections
# ============================================================================


class TestRejections:
    """Requests rejected before any payment call."""

    async def test_booking_not_found(self, service, gateway, manager) -> None:
        result = await service.apply_decision(decide(CONFIRMED, booking_id=404), manager)
        assert result.error_code == BOOKING_NOT_FOUND

    async def test_other_manager(self, service, gateway, booking) -> None:
        result = await service.apply_decision(decide(CONFIRMED), ManagerPrincipal(manager_id=2))

        assert result.error_code == ACCESS_DENIED
        assert gateway.calls == []

    async def test_storage_of_another_booking(self, service, repository, gateway, manager, booking, seed, make_aggregate, make_storage) -> None:
        await seed(make_aggregate(booking_id=13, storage=[make_storage(9)]))

        result = await service.apply_decision(decide(CONFIRMED, s9=CANCELLED), manager)

        assert result.error_code == INVALID_STORAGE_REFERENCE
        assert result.details["storage_booking_ids"] == [9]
        assert gateway.calls == []
        assert (await repository.load_for_approval(12)).booking.status is BookingStatus.PENDING
        assert (await repository.load_for_approval(13)).storage_item_for(9).status is BookingStatus.PENDING

    async def test_duplicate_storage_actions(self, service, gateway, manager, booking) -> None:
        decision = ApprovalDecision(
            booking_id=12,
            status=CONFIRMED,
            storage_actions=(
                StorageAction(storage_booking_id=7, action=CANCELLED),
                StorageAction(storage_booking_id=7, action=CONFIRMED),
            ),
        )

        result = await service.apply_decision(decision, manager)

        assert result.error_code == INVALID_STORAGE_REFERENCE
        assert result.details["reason"] == "duplicate"
        assert gateway.calls == []

    async def test_repeated_decision_is_rejected(self, service, gateway, manager, booking) -> None:
        await service.apply_decision(decide(CONFIRMED), manager)
        calls = len(gateway.calls)

        result = await service.apply_decision(decide(CONFIRMED), manager)

        assert result.error_code == INVALID_STATE
        assert len(gateway.calls) == calls

    async def test_conflicting_kitchen_decision(self, service, seed, make_aggregate, make_storage, gateway, manager) -> None:
        await seed(make_aggregate(status=BookingStatus.CONFIRMED, storage=[make_storage(7)]))

        result = await service.apply_decision(decide(CANCELLED), manager)

        assert result.error_code == INVALID_STATE
        assert gateway.calls == []

    async def test_decision_in_progress(self, service, repository, gateway, manager, booking) -> None:
        await repository.acquire_decision_lock(12, "other-request", ttl_seconds=60)

        result = await service.apply_decision(decide(CONFIRMED), manager)

        assert result.error_code == INVALID_STATE
        assert "in progress" in result.error
        assert gateway.calls == []


class TestConcurrency:
    """Duplicate concurrent requests move money once."""

    async def test_concurrent_duplicates(self, service, gateway, manager, booking) -> None:
        gateway.latency_seconds = 0.01

        first, second = await asyncio.gather(
            service.apply_decision(decide(CONFIRMED), manager),
            service.apply_decision(decide(CONFIRMED), manager),
        )

        outcomes = sorted([first.error_code or "OK", second.error_code or "OK"])
        assert outcomes == [INVALID_STATE, "OK"]
        assert len(gateway.money_movements) == 3

    async def test_unexpected_error_releases_lock(self, service, repository, gateway, manager, booking) -> None:
        gateway.capture = AsyncMock(side_effect=ValueError("bad provider payload"))

        with pytest.raises(ValueError):
            await service.apply_decision(decide(CONFIRMED), manager)

        assert not repository.is_locked(12)


# ============================================================================
# Notifications and queries
# ============================================================================


class TestNotifications:
    """Chef notification after a decision."""

    async def test_chef_notified_with_summary(self, service, dispatcher, manager, booking) -> None:
        result = await service.apply_decision(decide(CONFIRMED, s7=CANCELLED), manager)

        assert result.notified
        chef_id, booking_id, summary = dispatcher.sent[0]
        assert (chef_id, booking_id) == (5, 12)
        assert summary.kitchen_status == "confirmed"
        assert [line.status for line in summary.storage_outcomes] == ["cancelled", "confirmed"]
        assert summary.captured_total == "$125.00"
        assert {event["event_type"] for event in summary.events} >= {
            "kitchen_booking.confirmed",
            "storage_booking.cancelled",
            "payment.settled",
        }

    async def test_failed_units_listed(self, service, gateway, dispatcher, manager, booking) -> None:
        gateway.script_failure("capture", "pi_storage_8", "insufficient_funds")

        await service.apply_decision(decide(CONFIRMED), manager)

        assert dispatcher.sent[0][2].failed_units == ["storage-booking-8"]

    async def test_notification_failure_does_not_fail_decision(self, repository, gateway, manager, booking) -> None:
        failing = AsyncMock()
        failing.notify.side_effect = NotificationError("webhook down")
        service = BookingApprovalService(repository, gateway, failing)

        result = await service.apply_decision(decide(CONFIRMED), manager)

        assert result.success
        assert not result.notified

    async def test_booking_without_chef(self, service, seed, make_aggregate, dispatcher, manager) -> None:
        await seed(make_aggregate(chef_id=None))

        result = await service.apply_decision(decide(CONFIRMED), manager)

        assert result.success
        assert dispatcher.sent == []

    async def test_unknown_timezone_still_commits_and_notifies(
        self, service, repository, seed, make_aggregate, dispatcher, manager
    ) -> None:
        await seed(make_aggregate(timezone="Mars/Olympus"))

        result = await service.apply_decision(decide(CONFIRMED), manager)

        assert result.success
        assert result.notified
        assert dispatcher.sent[0][2].slot == "2026-01-05 09:00-13:00 (Mars/Olympus)"
        stored = await repository.load_for_approval(12)
        assert stored.booking.status is BookingStatus.CONFIRMED

    async def test_summary_error_does_not_fail_committed_decision(
        self, service, repository, dispatcher, manager, booking, monkeypatch
    ) -> None:
        def broken_summary(*args):
            raise ValueError("bad slot")

        monkeypatch.setattr(BookingApprovalService, "_summarize", staticmethod(broken_summary))

        result = await service.apply_decision(decide(CONFIRMED), manager)

        assert result.success
        assert not result.notified
        assert dispatcher.sent == []
        stored = await repository.load_for_approval(12)
        assert stored.booking.status is BookingStatus.CONFIRMED
        assert not repository.is_locked(12)


class TestGetBooking:
    """Booking lookup for the owning manager."""

    async def test_found(self, service, manager, booking) -> None:
        result = await service.get_booking(12, manager)
        assert result.success
        assert len(result.aggregate.storage_items) == 2

    async def test_other_manager(self, service, booking) -> None:
        result = await service.get_booking(12, ManagerPrincipal(manager_id=2))
        assert result.error_code == ACCESS_DENIED

    async def test_missing(self, service, manager) -> None:
        result = await service.get_booking(404, manager)
        assert result.error_code == BOOKING_NOT_FOUND
