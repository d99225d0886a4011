"""Health check endpoints.

Provides endpoints for monitoring service health and readiness.
"""

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from kitchen_bookings.infrastructure.config import settings
from kitchen_bookings.infrastructure.database import engine

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response schema."""

    status: str
    service: str
    version: str


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Check service health.

    Returns:
        Health status with service name and version.
    """
    return HealthResponse(
        status="healthy",
        service="kitchen-bookings-api",
        version=settings.api_version,
    )


@router.get("/ready")
async def readiness_check():
    """Check if service is ready to accept requests.

    With the database booking store the database must answer a trivial
    query; the in-memory store is always ready.
    """
    if settings.booking_store != "database":
        return {"status": "ready", "booking_store": settings.booking_store}

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "unavailable", "booking_store": settings.booking_store, "error": str(e)},
        )
    return {"status": "ready", "booking_store": settings.booking_store}
