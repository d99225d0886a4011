"""Payment gateway adapter.

Wraps the payment provider's authorization-hold operations behind a
small async interface:

- capture: move part or all of an authorization hold into a charge
- void: release an authorization hold that was never captured
- refund: return captured funds

Every operation takes an idempotency key; repeating a key returns the
first result without moving money again.
"""

import asyncio
import itertools
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone

import stripe
import structlog

from kitchen_bookings.domain.exceptions import PaymentCaptureError, PaymentVoidError, RefundError
from kitchen_bookings.domain.state_machines import AuthorizationStatus
from kitchen_bookings.infrastructure.config import settings

logger = structlog.get_logger()

# Stripe keeps manual-capture holds for seven days
DEFAULT_AUTHORIZATION_TTL = timedelta(days=7)


# ============================================================================
# Results
# ============================================================================


@dataclass
class CaptureResult:
    """Result of a capture.

    Attributes:
        authorization_ref: Authorization that was captured.
        captured_amount_cents: Amount captured by this call.
        provider_charge_id: Provider charge holding the captured funds.
        replayed: True when the idempotency key had already been used.
    """

    authorization_ref: str | None
    captured_amount_cents: int
    provider_charge_id: str | None = None
    replayed: bool = False


@dataclass
class VoidResult:
    """Result of voiding an authorization hold."""

    authorization_ref: str
    released_amount_cents: int
    replayed: bool = False


@dataclass
class RefundResult:
    """Result of a refund."""

    charge_ref: str
    refunded_amount_cents: int
    refund_id: str | None = None
    replayed: bool = False


# ============================================================================
# Gateway Interface
# ============================================================================


class PaymentGateway(ABC):
    """Abstract payment provider."""

    @abstractmethod
    async def capture(
        self,
        authorization_ref: str | None,
        amount_cents: int,
        idempotency_key: str,
    ) -> CaptureResult:
        """Capture funds from an authorization hold.

        Args:
            authorization_ref: Provider authorization (payment intent) id.
            amount_cents: Amount to capture; 0 is a no-op success.
            idempotency_key: Key identifying this capture.

        Returns:
            CaptureResult.

        Raises:
            PaymentCaptureError: If the provider rejects the capture.
        """
        ...

    @abstractmethod
    async def void(self, authorization_ref: str, idempotency_key: str) -> VoidResult:
        """Release an uncaptured authorization hold.

        Raises:
            PaymentVoidError: "already_captured" carries the captured amount
                and charge so the caller can refund instead.
        """
        ...

    @abstractmethod
    async def refund(self, charge_ref: str, amount_cents: int, idempotency_key: str) -> RefundResult:
        """Refund captured funds.

        Raises:
            RefundError: If the refund is rejected.
        """
        ...


# ============================================================================
# Sandbox Gateway
# ============================================================================


@dataclass
class PaymentAuthorization:
    """Provider-side state of one authorization hold.

    Attributes:
        authorization_ref: Hold identifier.
        amount_authorized_cents: Amount held on the card.
        currency: ISO 4217 currency code.
        amount_captured_cents: Total captured so far.
        amount_refunded_cents: Total refunded so far.
        status: Hold status.
        expires_at: When the hold lapses.
        charge_ref: Charge created by the first capture.
    """

    authorization_ref: str
    amount_authorized_cents: int
    currency: str = "CAD"
    amount_captured_cents: int = 0
    amount_refunded_cents: int = 0
    status: AuthorizationStatus = AuthorizationStatus.REQUIRES_CAPTURE
    expires_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc) + DEFAULT_AUTHORIZATION_TTL
    )
    charge_ref: str | None = None

    @property
    def remaining_cents(self) -> int:
        return self.amount_authorized_cents - self.amount_captured_cents

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or datetime.now(timezone.utc)) >= self.expires_at


@dataclass
class GatewayCall:
    """One recorded call against the sandbox gateway."""

    operation: str
    reference: str | None
    amount_cents: int | None
    idempotency_key: str
    outcome: str


class SandboxPaymentGateway(PaymentGateway):
    """In-process payment provider for development and tests.

    Enforces the same rules a real provider does: captures cannot exceed
    the remaining authorized amount or touch an expired hold, voids are
    rejected once funds were captured, and refunds cannot exceed what was
    captured. Failures and latency can be scripted per operation and
    reference.
    """

    def __init__(self, latency_seconds: float = 0.0) -> None:
        """Initialize sandbox.

        Args:
            latency_seconds: Artificial delay applied to every provider call.
        """
        self.latency_seconds = latency_seconds
        self.calls: list[GatewayCall] = []
        self._authorizations: dict[str, PaymentAuthorization] = {}
        self._results: dict[str, CaptureResult | VoidResult | RefundResult] = {}
        self._failures: dict[tuple[str, str | None], str] = {}
        self._latency: dict[tuple[str, str | None], float] = {}
        self._ids = itertools.count(1)

    # -------------------------------------------------------------------------
    # Test and seeding helpers
    # -------------------------------------------------------------------------

    def authorize(
        self,
        authorization_ref: str,
        amount_cents: int,
        currency: str | None = None,
        expires_at: datetime | None = None,
    ) -> PaymentAuthorization:
        """Seed an authorization hold, as checkout would have created it."""
        authorization = PaymentAuthorization(
            authorization_ref=authorization_ref,
            amount_authorized_cents=amount_cents,
            currency=currency or settings.default_currency,
        )
        if expires_at is not None:
            authorization.expires_at = expires_at
        self._authorizations[authorization_ref] = authorization
        return authorization

    def get_authorization(self, authorization_ref: str) -> PaymentAuthorization | None:
        return self._authorizations.get(authorization_ref)

    def script_failure(self, operation: str, reference: str | None, reason: str) -> None:
        """Make every call of an operation on a reference fail with a reason."""
        self._failures[(operation, reference)] = reason

    def script_latency(self, operation: str, reference: str | None, seconds: float) -> None:
        """Delay every call of an operation on a reference."""
        self._latency[(operation, reference)] = seconds

    def clear_scripts(self) -> None:
        self._failures.clear()
        self._latency.clear()

    def calls_for(self, operation: str) -> list[GatewayCall]:
        return [call for call in self.calls if call.operation == operation]

    @property
    def money_movements(self) -> list[GatewayCall]:
        """Calls that actually moved or released money."""
        return [call for call in self.calls if call.outcome == "succeeded"]

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _simulate_network(self, operation: str, reference: str | None) -> None:
        delay = self._latency.get((operation, reference), self.latency_seconds)
        if delay > 0:
            await asyncio.sleep(delay)

    def _record(
        self,
        operation: str,
        reference: str | None,
        amount_cents: int | None,
        idempotency_key: str,
        outcome: str,
    ) -> None:
        self.calls.append(
            GatewayCall(
                operation=operation,
                reference=reference,
                amount_cents=amount_cents,
                idempotency_key=idempotency_key,
                outcome=outcome,
            )
        )
        logger.debug(
            "Sandbox payment call",
            operation=operation,
            reference=reference,
            amount_cents=amount_cents,
            idempotency_key=idempotency_key,
            outcome=outcome,
        )

    def _replay(self, idempotency_key: str, operation: str, reference: str | None):
        previous = self._results.get(idempotency_key)
        if previous is None:
            return None
        self._record(operation, reference, None, idempotency_key, "replayed")
        return replace(previous, replayed=True)

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}_sandbox_{next(self._ids)}"

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    async def capture(
        self,
        authorization_ref: str | None,
        amount_cents: int,
        idempotency_key: str,
    ) -> CaptureResult:
        if amount_cents == 0:
            return CaptureResult(authorization_ref=authorization_ref, captured_amount_cents=0)

        replayed = self._replay(idempotency_key, "capture", authorization_ref)
        if replayed is not None:
            return replayed

        await self._simulate_network("capture", authorization_ref)

        def fail(reason: str) -> PaymentCaptureError:
            self._record("capture", authorization_ref, amount_cents, idempotency_key, reason)
            return PaymentCaptureError(authorization_ref, reason)

        scripted = self._failures.get(("capture", authorization_ref))
        if scripted:
            raise fail(scripted)

        authorization = self._authorizations.get(authorization_ref) if authorization_ref else None
        if authorization is None:
            raise fail("missing_authorization")
        if authorization.status is AuthorizationStatus.VOIDED:
            raise fail("authorization_voided")
        if authorization.is_expired():
            authorization.status = AuthorizationStatus.CAPTURE_FAILED
            raise fail("authorization_expired")
        if amount_cents > authorization.remaining_cents:
            raise fail("exceeds_authorized")

        authorization.amount_captured_cents += amount_cents
        authorization.charge_ref = authorization.charge_ref or self._next_id("ch")
        authorization.status = (
            AuthorizationStatus.CAPTURED
            if authorization.remaining_cents == 0
            else AuthorizationStatus.PARTIALLY_CAPTURED
        )

        result = CaptureResult(
            authorization_ref=authorization_ref,
            captured_amount_cents=amount_cents,
            provider_charge_id=authorization.charge_ref,
        )
        self._results[idempotency_key] = result
        self._record("capture", authorization_ref, amount_cents, idempotency_key, "succeeded")
        return result

    async def void(self, authorization_ref: str, idempotency_key: str) -> VoidResult:
        replayed = self._replay(idempotency_key, "void", authorization_ref)
        if replayed is not None:
            return replayed

        await self._simulate_network("void", authorization_ref)

        scripted = self._failures.get(("void", authorization_ref))
        if scripted:
            self._record("void", authorization_ref, None, idempotency_key, scripted)
            raise PaymentVoidError(authorization_ref, scripted)

        authorization = self._authorizations.get(authorization_ref)
        if authorization is None:
            self._record("void", authorization_ref, None, idempotency_key, "missing_authorization")
            raise PaymentVoidError(authorization_ref, "missing_authorization")
        if authorization.status.has_captured_funds():
            self._record("void", authorization_ref, None, idempotency_key, "already_captured")
            raise PaymentVoidError(
                authorization_ref,
                "already_captured",
                captured_amount_cents=authorization.amount_captured_cents - authorization.amount_refunded_cents,
                charge_ref=authorization.charge_ref,
            )

        released = 0 if authorization.status is AuthorizationStatus.VOIDED else authorization.remaining_cents
        authorization.status = AuthorizationStatus.VOIDED
        result = VoidResult(authorization_ref=authorization_ref, released_amount_cents=released)
        self._results[idempotency_key] = result
        self._record("void", authorization_ref, None, idempotency_key, "succeeded")
        return result

    async def refund(self, charge_ref: str, amount_cents: int, idempotency_key: str) -> RefundResult:
        replayed = self._replay(idempotency_key, "refund", charge_ref)
        if replayed is not None:
            return replayed

        await self._simulate_network("refund", charge_ref)

        scripted = self._failures.get(("refund", charge_ref))
        if scripted:
            self._record("refund", charge_ref, amount_cents, idempotency_key, scripted)
            raise RefundError(charge_ref, scripted)

        authorization = next(
            (a for a in self._authorizations.values() if charge_ref and a.charge_ref == charge_ref),
            None,
        )
        if authorization is None:
            self._record("refund", charge_ref, amount_cents, idempotency_key, "provider_error")
            raise RefundError(charge_ref, "provider_error", message=f"No such charge: {charge_ref}")
        refundable = authorization.amount_captured_cents - authorization.amount_refunded_cents
        if amount_cents > refundable:
            self._record("refund", charge_ref, amount_cents, idempotency_key, "exceeds_captured")
            raise RefundError(charge_ref, "exceeds_captured")

        authorization.amount_refunded_cents += amount_cents
        result = RefundResult(
            charge_ref=charge_ref,
            refunded_amount_cents=amount_cents,
            refund_id=self._next_id("re"),
        )
        self._results[idempotency_key] = result
        self._record("refund", charge_ref, amount_cents, idempotency_key, "succeeded")
        return result


# ============================================================================
# Stripe Gateway
# ============================================================================


_CARD_DECLINE_REASONS = {
    "insufficient_funds": "insufficient_funds",
    "expired_card": "declined",
    "card_declined": "declined",
}


class StripePaymentGateway(PaymentGateway):
    """Stripe PaymentIntent manual-capture adapter.

    A PaymentIntent is captured once: capturing less than the authorized
    amount releases the remainder. Units sharing a PaymentIntent are
    therefore captured in a single call for their combined price.

    The Stripe SDK is synchronous, so calls run in a worker thread.
    """

    def __init__(self, api_key: str) -> None:
        """Initialize gateway.

        Args:
            api_key: Stripe secret key.
        """
        stripe.api_key = api_key

    async def capture(
        self,
        authorization_ref: str | None,
        amount_cents: int,
        idempotency_key: str,
    ) -> CaptureResult:
        if amount_cents == 0:
            return CaptureResult(authorization_ref=authorization_ref, captured_amount_cents=0)
        if not authorization_ref:
            raise PaymentCaptureError(authorization_ref, "missing_authorization")

        try:
            intent = await asyncio.to_thread(
                stripe.PaymentIntent.capture,
                authorization_ref,
                amount_to_capture=amount_cents,
                idempotency_key=idempotency_key,
            )
        except stripe.CardError as e:
            reason = _CARD_DECLINE_REASONS.get(getattr(e, "code", None) or "", "declined")
            logger.warning("Stripe capture declined", authorization_ref=authorization_ref, code=e.code)
            raise PaymentCaptureError(authorization_ref, reason, message=e.user_message) from e
        except stripe.InvalidRequestError as e:
            reason = "provider_error"
            if e.code == "amount_too_large":
                reason = "exceeds_authorized"
            elif e.code == "payment_intent_unexpected_state":
                reason = await self._capture_state_reason(authorization_ref)
            logger.warning(
                "Stripe capture rejected", authorization_ref=authorization_ref, code=e.code, reason=reason
            )
            raise PaymentCaptureError(authorization_ref, reason, message=str(e)) from e
        except stripe.StripeError as e:
            logger.error("Stripe capture failed", authorization_ref=authorization_ref, error=str(e))
            raise PaymentCaptureError(authorization_ref, "provider_error", message=str(e)) from e

        return CaptureResult(
            authorization_ref=authorization_ref,
            captured_amount_cents=amount_cents,
            provider_charge_id=intent.latest_charge,
        )

    async def _capture_state_reason(self, authorization_ref: str) -> str:
        """Explain why a PaymentIntent cannot be captured in its current state."""
        try:
            current = await asyncio.to_thread(stripe.PaymentIntent.retrieve, authorization_ref)
        except stripe.StripeError as e:
            logger.error("Stripe retrieve failed", authorization_ref=authorization_ref, error=str(e))
            return "provider_error"
        if current.status == "succeeded":
            return "already_captured"
        if current.status == "canceled":
            # Stripe cancels uncaptured intents automatically when the hold lapses
            if current.cancellation_reason == "automatic":
                return "authorization_expired"
            return "authorization_voided"
        return "provider_error"

    async def void(self, authorization_ref: str, idempotency_key: str) -> VoidResult:
        try:
            intent = await asyncio.to_thread(
                stripe.PaymentIntent.cancel,
                authorization_ref,
                idempotency_key=idempotency_key,
            )
        except stripe.InvalidRequestError as e:
            if e.code != "payment_intent_unexpected_state":
                raise PaymentVoidError(authorization_ref, "provider_error", message=str(e)) from e
            try:
                current = await asyncio.to_thread(stripe.PaymentIntent.retrieve, authorization_ref)
            except stripe.StripeError as retrieve_error:
                raise PaymentVoidError(
                    authorization_ref, "provider_error", message=str(retrieve_error)
                ) from retrieve_error
            if current.status == "succeeded":
                raise PaymentVoidError(
                    authorization_ref,
                    "already_captured",
                    captured_amount_cents=current.amount_received,
                    charge_ref=current.latest_charge,
                ) from e
            if current.status == "canceled":
                return VoidResult(authorization_ref=authorization_ref, released_amount_cents=0)
            raise PaymentVoidError(authorization_ref, "provider_error", message=str(e)) from e
        except stripe.StripeError as e:
            logger.error("Stripe void failed", authorization_ref=authorization_ref, error=str(e))
            raise PaymentVoidError(authorization_ref, "provider_error", message=str(e)) from e

        return VoidResult(authorization_ref=authorization_ref, released_amount_cents=intent.amount)

    async def refund(self, charge_ref: str, amount_cents: int, idempotency_key: str) -> RefundResult:
        try:
            refund = await asyncio.to_thread(
                stripe.Refund.create,
                charge=charge_ref,
                amount=amount_cents,
                idempotency_key=idempotency_key,
            )
        except stripe.InvalidRequestError as e:
            reason = (
                "exceeds_captured"
                if e.code in ("charge_exceeds_source_limit", "amount_too_large")
                else "provider_error"
            )
            raise RefundError(charge_ref, reason, message=str(e)) from e
        except stripe.StripeError as e:
            logger.error("Stripe refund failed", charge_ref=charge_ref, error=str(e))
            raise RefundError(charge_ref, "provider_error", message=str(e)) from e

        return RefundResult(charge_ref=charge_ref, refunded_amount_cents=refund.amount, refund_id=refund.id)


# ============================================================================
# Factory
# ============================================================================


_payment_gateway: PaymentGateway | None = None


def get_payment_gateway() -> PaymentGateway:
    """Get or create the configured payment gateway.

    Returns:
        StripePaymentGateway when settings.payment_provider is "stripe",
        otherwise the sandbox gateway.
    """
    global _payment_gateway
    if _payment_gateway is None:
        if settings.payment_provider == "stripe":
            _payment_gateway = StripePaymentGateway(api_key=settings.stripe_api_key)
        else:
            _payment_gateway = SandboxPaymentGateway()
        logger.info("Payment gateway initialized", provider=settings.payment_provider)
    return _payment_gateway


def reset_payment_gateway() -> None:
    """Reset the gateway (for testing)."""
    global _payment_gateway
    _payment_gateway = None
