"""API layer module.

Contains FastAPI routers, request/response schemas and middleware.
"""

from kitchen_bookings.api.bookings import router as bookings_router
from kitchen_bookings.api.health import router as health_router

__all__ = [
    "bookings_router",
    "health_router",
]
