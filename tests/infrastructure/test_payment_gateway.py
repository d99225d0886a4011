"""Tests for the sandbox payment gateway."""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest
import stripe

from kitchen_bookings.domain.exceptions import PaymentCaptureError, PaymentVoidError, RefundError
from kitchen_bookings.domain.state_machines import AuthorizationStatus
from kitchen_bookings.infrastructure.config import settings
from kitchen_bookings.infrastructure.payment_gateway import (
    SandboxPaymentGateway,
    StripePaymentGateway,
)


@pytest.fixture
def sandbox() -> SandboxPaymentGateway:
    gateway = SandboxPaymentGateway()
    gateway.authorize("pi_1", 10000)
    return gateway


class TestCapture:
    """Tests for captures against an authorization hold."""

    async def test_full_capture(self, sandbox: SandboxPaymentGateway) -> None:
        result = await sandbox.capture("pi_1", 10000, "kitchen-booking-1:capture")

        assert result.captured_amount_cents == 10000
        assert result.provider_charge_id.startswith("ch_sandbox_")
        assert sandbox.get_authorization("pi_1").status is AuthorizationStatus.CAPTURED

    async def test_partial_capture(self, sandbox: SandboxPaymentGateway) -> None:
        await sandbox.capture("pi_1", 4000, "kitchen-booking-1:capture")

        authorization = sandbox.get_authorization("pi_1")
        assert authorization.status is AuthorizationStatus.PARTIALLY_CAPTURED
        assert authorization.remaining_cents == 6000

    async def test_same_key_captures_once(self, sandbox: SandboxPaymentGateway) -> None:
        first = await sandbox.capture("pi_1", 4000, "kitchen-booking-1:capture")
        second = await sandbox.capture("pi_1", 4000, "kitchen-booking-1:capture")

        assert second.replayed
        assert second.provider_charge_id == first.provider_charge_id
        assert sandbox.get_authorization("pi_1").amount_captured_cents == 4000
        assert len(sandbox.money_movements) == 1

    async def test_zero_amount_is_noop(self, sandbox: SandboxPaymentGateway) -> None:
        result = await sandbox.capture("pi_1", 0, "kitchen-booking-1:capture")

        assert result.captured_amount_cents == 0
        assert sandbox.calls == []

    async def test_zero_amount_without_authorization(self) -> None:
        """A free unit confirms even when checkout never placed a hold."""
        result = await SandboxPaymentGateway().capture(None, 0, "storage-booking-7:capture")
        assert result.captured_amount_cents == 0

    async def test_exceeding_authorized_amount(self, sandbox: SandboxPaymentGateway) -> None:
        with pytest.raises(PaymentCaptureError) as exc_info:
            await sandbox.capture("pi_1", 10001, "kitchen-booking-1:capture")
        assert exc_info.value.reason == "exceeds_authorized"

    async def test_expired_authorization(self) -> None:
        gateway = SandboxPaymentGateway()
        gateway.authorize("pi_old", 5000, expires_at=datetime.now(timezone.utc) - timedelta(minutes=1))

        with pytest.raises(PaymentCaptureError) as exc_info:
            await gateway.capture("pi_old", 5000, "kitchen-booking-1:capture")
        assert exc_info.value.reason == "authorization_expired"
        assert gateway.get_authorization("pi_old").status is AuthorizationStatus.CAPTURE_FAILED

    async def test_missing_authorization(self) -> None:
        with pytest.raises(PaymentCaptureError) as exc_info:
            await SandboxPaymentGateway().capture("pi_nope", 100, "kitchen-booking-1:capture")
        assert exc_info.value.reason == "missing_authorization"

    async def test_failures_are_not_cached(self, sandbox: SandboxPaymentGateway) -> None:
        """A retry with the same key after a failure reaches the provider again."""
        sandbox.script_failure("capture", "pi_1", "declined")
        with pytest.raises(PaymentCaptureError):
            await sandbox.capture("pi_1", 10000, "kitchen-booking-1:capture")

        sandbox.clear_scripts()
        result = await sandbox.capture("pi_1", 10000, "kitchen-booking-1:capture")
        assert not result.replayed
        assert result.captured_amount_cents == 10000

    def test_authorize_uses_configured_currency(self, monkeypatch) -> None:
        monkeypatch.setattr(settings, "default_currency", "USD")
        gateway = SandboxPaymentGateway()

        assert gateway.authorize("pi_2", 1000).currency == "USD"
        assert gateway.authorize("pi_3", 1000, currency="EUR").currency == "EUR"


class TestVoid:
    """Tests for releasing holds."""

    async def test_void_releases_hold(self, sandbox: SandboxPaymentGateway) -> None:
        result = await sandbox.void("pi_1", "kitchen-booking-1:void")

        assert result.released_amount_cents == 10000
        assert sandbox.get_authorization("pi_1").status is AuthorizationStatus.VOIDED

    async def test_void_is_idempotent(self, sandbox: SandboxPaymentGateway) -> None:
        await sandbox.void("pi_1", "kitchen-booking-1:void")
        again = await sandbox.void("pi_1", "kitchen-booking-1:void")

        assert again.replayed
        assert len(sandbox.calls_for("void")) == 2
        assert len(sandbox.money_movements) == 1

    async def test_void_after_capture_reports_captured_funds(self, sandbox: SandboxPaymentGateway) -> None:
        capture = await sandbox.capture("pi_1", 10000, "kitchen-booking-1:capture")

        with pytest.raises(PaymentVoidError) as exc_info:
            await sandbox.void("pi_1", "kitchen-booking-1:void")
        assert exc_info.value.reason == "already_captured"
        assert exc_info.value.captured_amount_cents == 10000
        assert exc_info.value.charge_ref == capture.provider_charge_id

    async def test_capture_after_void_rejected(self, sandbox: SandboxPaymentGateway) -> None:
        await sandbox.void("pi_1", "kitchen-booking-1:void")
        with pytest.raises(PaymentCaptureError) as exc_info:
            await sandbox.capture("pi_1", 100, "kitchen-booking-1:capture")
        assert exc_info.value.reason == "authorization_voided"


class TestRefund:
    """Tests for refunds of captured funds."""

    async def test_refund_captured_funds(self, sandbox: SandboxPaymentGateway) -> None:
        capture = await sandbox.capture("pi_1", 10000, "kitchen-booking-1:capture")
        refund = await sandbox.refund(capture.provider_charge_id, 10000, "kitchen-booking-1:refund")

        assert refund.refunded_amount_cents == 10000
        assert refund.refund_id.startswith("re_sandbox_")

    async def test_refund_cannot_exceed_captured(self, sandbox: SandboxPaymentGateway) -> None:
        capture = await sandbox.capture("pi_1", 4000, "kitchen-booking-1:capture")
        with pytest.raises(RefundError) as exc_info:
            await sandbox.refund(capture.provider_charge_id, 5000, "kitchen-booking-1:refund")
        assert exc_info.value.reason == "exceeds_captured"

    async def test_refund_unknown_charge(self, sandbox: SandboxPaymentGateway) -> None:
        with pytest.raises(RefundError) as exc_info:
            await sandbox.refund("ch_missing", 100, "kitchen-booking-1:refund")
        assert exc_info.value.reason == "provider_error"


class TestStripeGateway:
    """Tests for Stripe error mapping (SDK calls mocked)."""

    async def test_capture_maps_charge_id(self) -> None:
        intent = MagicMock(latest_charge="ch_123", amount_received=5000)
        with patch.object(stripe.PaymentIntent, "capture", return_value=intent) as capture:
            result = await StripePaymentGateway("sk_test").capture("pi_1", 5000, "kitchen-booking-1:capture")

        assert result.provider_charge_id == "ch_123"
        assert result.captured_amount_cents == 5000
        assert capture.call_args.kwargs["idempotency_key"] == "kitchen-booking-1:capture"

    async def test_card_error_is_declined(self) -> None:
        error = stripe.CardError("Your card was declined.", param=None, code="card_declined")
        with patch.object(stripe.PaymentIntent, "capture", side_effect=error):
            with pytest.raises(PaymentCaptureError) as exc_info:
                await StripePaymentGateway("sk_test").capture("pi_1", 5000, "kitchen-booking-1:capture")
        assert exc_info.value.reason == "declined"

    async def test_void_of_captured_intent_reports_charge(self) -> None:
        error = stripe.InvalidRequestError(
            "This PaymentIntent could not be canceled.", param=None, code="payment_intent_unexpected_state"
        )
        current = MagicMock(status="succeeded", amount_received=5000, latest_charge="ch_9")
        with (
            patch.object(stripe.PaymentIntent, "cancel", side_effect=error),
            patch.object(stripe.PaymentIntent, "retrieve", return_value=current),
        ):
            with pytest.raises(PaymentVoidError) as exc_info:
                await StripePaymentGateway("sk_test").void("pi_1", "kitchen-booking-1:void")

        assert exc_info.value.reason == "already_captured"
        assert exc_info.value.captured_amount_cents == 5000
        assert exc_info.value.charge_ref == "ch_9"

    @pytest.mark.parametrize(
        ("status", "cancellation_reason", "reason"),
        [
            ("succeeded", None, "already_captured"),
            ("canceled", "automatic", "authorization_expired"),
            ("canceled", "requested_by_customer", "authorization_voided"),
            ("processing", None, "provider_error"),
        ],
    )
    async def test_unexpected_state_reports_actual_state(self, status, cancellation_reason, reason) -> None:
        error = stripe.InvalidRequestError(
            "This PaymentIntent could not be captured.", param=None, code="payment_intent_unexpected_state"
        )
        current = MagicMock(status=status, cancellation_reason=cancellation_reason)
        with (
            patch.object(stripe.PaymentIntent, "capture", side_effect=error),
            patch.object(stripe.PaymentIntent, "retrieve", return_value=current) as retrieve,
        ):
            with pytest.raises(PaymentCaptureError) as exc_info:
                await StripePaymentGateway("sk_test").capture("pi_1", 5000, "kitchen-booking-1:capture")

        assert exc_info.value.reason == reason
        retrieve.assert_called_once_with("pi_1")
