"""Chef notifications for booking decisions.

Builds a summary of what a decision did to each part of a booking and
hands it to a dispatcher. Delivery is best-effort: a failed
notification never changes the outcome of a decision.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import httpx
import structlog

from kitchen_bookings.infrastructure.config import settings

logger = structlog.get_logger()


# ============================================================================
# Summary
# ============================================================================


@dataclass
class StorageOutcomeLine:
    """One storage rental in a notification summary."""

    storage_booking_id: int
    name: str
    status: str
    rental_window: str = ""


@dataclass
class OutcomeSummary:
    """What a decision did to a booking, as told to the chef.

    Attributes:
        booking_id: Kitchen booking ID.
        kitchen_name: Display name of the kitchen.
        slot: Formatted booking slot in the location's timezone.
        kitchen_status: Resulting kitchen booking status.
        storage_outcomes: Resulting status per storage rental.
        equipment_followed: Whether equipment rentals followed the kitchen booking.
        captured_total: Formatted total captured so far.
        failed_units: Units whose payment failed and are still pending.
        events: Domain events recorded by the decision.
    """

    booking_id: int
    kitchen_name: str
    slot: str
    kitchen_status: str
    storage_outcomes: list[StorageOutcomeLine] = field(default_factory=list)
    equipment_followed: bool = False
    captured_total: str = ""
    failed_units: list[str] = field(default_factory=list)
    events: list[dict[str, Any]] = field(default_factory=list)

    @property
    def headline(self) -> str:
        name = self.kitchen_name or f"booking #{self.booking_id}"
        return f"Your booking for {name} on {self.slot} is {self.kitchen_status}"

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        return {
            "booking_id": self.booking_id,
            "headline": self.headline,
            "kitchen_name": self.kitchen_name,
            "slot": self.slot,
            "kitchen_status": self.kitchen_status,
            "storage_outcomes": [
                {
                    "storage_booking_id": line.storage_booking_id,
                    "name": line.name,
                    "status": line.status,
                    "rental_window": line.rental_window,
                }
                for line in self.storage_outcomes
            ],
            "equipment_followed": self.equipment_followed,
            "captured_total": self.captured_total,
            "failed_units": list(self.failed_units),
            "events": list(self.events),
        }


# ============================================================================
# Dispatchers
# ============================================================================


class NotificationError(Exception):
    """Raised when a notification cannot be delivered."""

    pass


class NotificationDispatcher(ABC):
    """Delivers decision summaries to chefs."""

    @abstractmethod
    async def notify(self, chef_id: int, booking_id: int, summary: OutcomeSummary) -> None:
        """Deliver a summary.

        Raises:
            NotificationError: If delivery fails.
        """
        ...


class LoggingNotificationDispatcher(NotificationDispatcher):
    """Writes notifications to the log."""

    async def notify(self, chef_id: int, booking_id: int, summary: OutcomeSummary) -> None:
        logger.info(
            "Chef notified of booking decision",
            chef_id=chef_id,
            booking_id=booking_id,
            headline=summary.headline,
            failed_units=summary.failed_units,
        )


class HttpNotificationDispatcher(NotificationDispatcher):
    """Posts summaries to the notification service webhook."""

    def __init__(self, url: str, timeout: float = 5.0, request_id: str | None = None) -> None:
        """Initialize dispatcher.

        Args:
            url: Webhook URL.
            timeout: Request timeout in seconds.
            request_id: Optional request ID for correlation.
        """
        self.url = url
        self.timeout = timeout
        self.request_id = request_id

    async def notify(self, chef_id: int, booking_id: int, summary: OutcomeSummary) -> None:
        headers = {}
        if self.request_id:
            headers["X-Request-ID"] = self.request_id
        payload = {"chef_id": chef_id, "booking_id": booking_id, "summary": summary.to_dict()}

        try:
            async with httpx.AsyncClient(timeout=self.timeout, headers=headers) as client:
                response = await client.post(self.url, json=payload)
        except httpx.RequestError as e:
            raise NotificationError(f"Notification request failed: {e}") from e

        if response.status_code >= 300:
            raise NotificationError(
                f"Notification service answered {response.status_code}: {response.text}"
            )


async def dispatch_best_effort(
    dispatcher: NotificationDispatcher,
    chef_id: int | None,
    booking_id: int,
    summary: OutcomeSummary,
) -> bool:
    """Send a notification without letting failures escape.

    Returns:
        True if the notification was delivered.
    """
    if chef_id is None:
        logger.info("Booking has no chef to notify", booking_id=booking_id)
        return False
    try:
        await dispatcher.notify(chef_id, booking_id, summary)
        return True
    except Exception as e:
        logger.warning(
            "Booking decision notification failed",
            booking_id=booking_id,
            chef_id=chef_id,
            error=str(e),
        )
        return False


# Global dispatcher instance
_dispatcher: NotificationDispatcher | None = None


def get_notification_dispatcher(request_id: str | None = None) -> NotificationDispatcher:
    """Get the configured dispatcher.

    Returns:
        HttpNotificationDispatcher when a webhook URL is configured,
        otherwise a shared LoggingNotificationDispatcher.
    """
    global _dispatcher
    if settings.notification_webhook_url:
        return HttpNotificationDispatcher(
            settings.notification_webhook_url,
            timeout=settings.notification_timeout_seconds,
            request_id=request_id,
        )
    if _dispatcher is None:
        _dispatcher = LoggingNotificationDispatcher()
    return _dispatcher


def reset_notification_dispatcher() -> None:
    """Reset dispatcher (for testing)."""
    global _dispatcher
    _dispatcher = None
