"""Application layer module.

Contains application services (use cases) that orchestrate
domain logic and infrastructure.
"""

from kitchen_bookings.application.approval_service import (
    BookingApprovalService,
    get_approval_service,
)
from kitchen_bookings.application.idempotency_service import (
    IdempotencyService,
    get_idempotency_service,
)
from kitchen_bookings.application.notification_service import (
    NotificationDispatcher,
    get_notification_dispatcher,
)

__all__ = [
    "BookingApprovalService",
    "get_approval_service",
    "IdempotencyService",
    "get_idempotency_service",
    "NotificationDispatcher",
    "get_notification_dispatcher",
]
